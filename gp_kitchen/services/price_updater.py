"""
Price updater
Pulls item mappings, prices and volumes from the prices API and stores them.
Upstream calls are blocking and run in a worker thread.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from gp_kitchen.layers.acquisition import AcquisitionError, get_acquisition_layer
from gp_kitchen.layers.processing import get_processing_layer
from gp_kitchen.services.item_service import get_item_service

logger = logging.getLogger(__name__)

# hours back from the current hour; the current hour has no data yet
VOLUME_4H_OFFSETS = (1, 2, 3, 4)
VOLUME_24H_OFFSETS = (1, 7, 13, 19)


def hour_start(now: Optional[float] = None) -> int:
    now = time.time() if now is None else now
    return int(now // 3600) * 3600


class PriceUpdater:
    """One method per poll, each returns the number of records written"""

    def __init__(self):
        self._acq = get_acquisition_layer()
        self._proc = get_processing_layer()
        self._items = get_item_service()

    async def update_mappings(self) -> int:
        mapping = await asyncio.to_thread(self._acq.get_mapping)
        count = await self._items.upsert_items(mapping)
        logger.info(f"updated {count} item mappings")
        return count

    async def update_latest(self) -> int:
        latest = await asyncio.to_thread(self._acq.get_latest)
        count = await self._items.bulk_upsert_prices(latest)
        logger.info(f"updated prices for {count} items")
        return count

    async def update_5m_volumes(self) -> int:
        data = await asyncio.to_thread(self._acq.get_5m)
        await self._items.bulk_upsert_5m_prices(data)
        count = await self._items.upsert_volumes("5m", self._proc.window_volumes(data))
        logger.info(f"updated 5m volumes for {count} items")
        return count

    async def _hourly_samples(self, offsets) -> List[Dict[str, dict]]:
        start = hour_start()
        samples = []
        for hours in offsets:
            ts = start - hours * 3600
            try:
                samples.append(await asyncio.to_thread(self._acq.get_1h, ts))
            except AcquisitionError as exc:
                logger.warning(f"skipping 1h sample at {ts}: {exc}")
        return samples

    async def update_4h_volumes(self) -> int:
        samples = await self._hourly_samples(VOLUME_4H_OFFSETS)
        count = await self._items.upsert_volumes("4h", self._proc.sum_volumes(samples))
        logger.info(f"updated 4h volumes for {count} items from {len(samples)} samples")
        return count

    async def update_24h_volumes(self) -> int:
        samples = await self._hourly_samples(VOLUME_24H_OFFSETS)
        volumes = self._proc.extrapolate_volumes(samples, hours=24)
        count = await self._items.upsert_volumes("24h", volumes)
        logger.info(f"updated 24h volumes for {count} items from {len(samples)} samples")
        return count

    async def update_all(self) -> None:
        """Full refresh, mappings first so prices have items to attach to"""
        await self.update_mappings()
        await self.update_24h_volumes()
        await self.update_4h_volumes()
        await self.update_5m_volumes()
        await self.update_latest()


# ── Module-level singleton ───────────────────────────────
_updater: Optional[PriceUpdater] = None


def get_price_updater() -> PriceUpdater:
    global _updater
    if _updater is None:
        _updater = PriceUpdater()
    return _updater
