"""
Layer 3 – Processing
Turns raw prices API payloads (item id → sample dict) into per-item volume
figures for the 5m, 4h and 24h windows.
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

_VOLUME_COLUMNS = ["item_id", "high", "low"]

VolumeMap = Dict[int, Dict[str, int]]


class ProcessingLayer:
    """Volume aggregation over one or more timeseries samples"""

    def sample_to_frame(self, data: Dict[str, Dict[str, Any]]) -> pd.DataFrame:
        """
        One API sample as a DataFrame

        Columns: item_id, high, low (highPriceVolume / lowPriceVolume, null → 0)
        """
        if not data:
            return pd.DataFrame(columns=_VOLUME_COLUMNS)

        rows = []
        for item_id, entry in data.items():
            try:
                iid = int(item_id)
            except (TypeError, ValueError):
                logger.debug(f"skipping non-numeric item id {item_id!r}")
                continue
            entry = entry or {}
            rows.append({
                "item_id": iid,
                "high": entry.get("highPriceVolume"),
                "low": entry.get("lowPriceVolume"),
            })

        df = pd.DataFrame(rows, columns=_VOLUME_COLUMNS)
        for col in ("high", "low"):
            df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0)
        return df

    def _concat(self, samples: List[Dict[str, Dict[str, Any]]]) -> pd.DataFrame:
        frames = [self.sample_to_frame(s) for s in samples if s]
        frames = [f for f in frames if not f.empty]
        if not frames:
            return pd.DataFrame(columns=_VOLUME_COLUMNS)
        return pd.concat(frames, ignore_index=True)

    def to_volume_map(self, df: pd.DataFrame) -> VolumeMap:
        """Indexed frame (item_id → high, low) as plain ints"""
        if df.empty:
            return {}
        return {
            int(item_id): {"high": int(row["high"]), "low": int(row["low"])}
            for item_id, row in df.iterrows()
        }

    def window_volumes(self, data: Dict[str, Dict[str, Any]]) -> VolumeMap:
        """Volumes of a single sample (the 5m window)"""
        df = self.sample_to_frame(data)
        return self.to_volume_map(df.set_index("item_id"))

    def sum_volumes(self, samples: List[Dict[str, Dict[str, Any]]]) -> VolumeMap:
        """Total volume per item over consecutive samples (the 4h window)"""
        df = self._concat(samples)
        if df.empty:
            return {}
        return self.to_volume_map(df.groupby("item_id")[["high", "low"]].sum())

    def extrapolate_volumes(
        self,
        samples: List[Dict[str, Dict[str, Any]]],
        hours: int = 24,
    ) -> VolumeMap:
        """
        Estimate volume over `hours` from spaced hourly samples

        Each item's mean over the samples it appears in, times `hours`,
        truncated to an int.
        """
        df = self._concat(samples)
        if df.empty:
            return {}
        mean = df.groupby("item_id")[["high", "low"]].mean() * hours
        return self.to_volume_map(mean.astype("int64"))


# ── Module-level singleton ───────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
