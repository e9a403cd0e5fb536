"""
Item and price service
Item metadata, current prices and aggregated volumes, plus the cached price
history proxy.
"""

import logging
import re
import time
from typing import Any, Dict, Iterable, List, Optional

from fastapi.concurrency import run_in_threadpool
from pymongo import UpdateOne

from gp_kitchen.config import settings
from gp_kitchen.db import require_mongo_db
from gp_kitchen.layers.acquisition import HISTORY_TIMESTEPS, get_acquisition_layer
from gp_kitchen.layers.analysis import COINS_ITEM_ID
from gp_kitchen.layers.cache import get_cache_layer
from gp_kitchen.layers.processing import VolumeMap

logger = logging.getLogger(__name__)

_HISTORY_CACHE_NS = "history"
_VOLUME_WINDOWS = ("5m", "4h", "24h")

# /latest field → item_prices field
_LATEST_FIELDS = {
    "high": "high_price",
    "highTime": "high_time",
    "low": "low_price",
    "lowTime": "low_time",
}

# /5m field → item_prices field
_AVERAGE_FIELDS = {
    "avgHighPrice": "avg_high_price",
    "avgLowPrice": "avg_low_price",
    "highPriceVolume": "high_volume",
    "lowPriceVolume": "low_volume",
}

_PRICE_PROJECTION = ("high_price", "high_time", "low_price", "low_time")
_VOLUME_PROJECTION = tuple(
    f"vol_{w}_{side}" for w in _VOLUME_WINDOWS for side in ("high", "low")
)


def _item_to_dict(item: dict) -> dict:
    out = {k: v for k, v in item.items() if k != "_id"}
    out["id"] = item["_id"]
    return out


class ItemService:
    """Item metadata, prices and volumes"""

    def __init__(self):
        self._acq = get_acquisition_layer()
        self._cache = get_cache_layer()

    # ── Items ─────────────────────────────────────────────

    async def upsert_items(self, mapping: Iterable[Dict[str, Any]]) -> int:
        """Store /mapping records, returns how many were written"""
        db = require_mongo_db()
        now = int(time.time())
        ops = []
        for item in mapping:
            if item.get("id") is None:
                continue
            ops.append(UpdateOne(
                {"_id": int(item["id"])},
                {"$set": {
                    "name": item.get("name"),
                    "examine": item.get("examine"),
                    "members": bool(item.get("members")),
                    "lowalch": item.get("lowalch"),
                    "highalch": item.get("highalch"),
                    "ge_limit": item.get("limit"),
                    "icon": item.get("icon"),
                    "updated_at": now,
                }},
                upsert=True,
            ))
        if ops:
            await db["items"].bulk_write(ops, ordered=False)
        return len(ops)

    async def ensure_coins(self) -> None:
        """Coins always exist and always cost 1 gp"""
        db = require_mongo_db()
        now = int(time.time())
        await db["items"].update_one(
            {"_id": COINS_ITEM_ID},
            {"$setOnInsert": {
                "name": "Coins",
                "examine": "Lovely money!",
                "members": False,
                "lowalch": 0,
                "highalch": 0,
                "ge_limit": 0,
                "icon": "Coins_10000.png",
                "updated_at": now,
            }},
            upsert=True,
        )
        await db["item_prices"].update_one(
            {"_id": COINS_ITEM_ID},
            {"$set": {
                "high_price": 1,
                "high_time": now,
                "low_price": 1,
                "low_time": now,
                "updated_at": now,
            }},
            upsert=True,
        )

    async def _attach_market_data(self, items: List[dict]) -> List[dict]:
        """Join items with current prices and 24h volumes"""
        if not items:
            return []
        ids = [i["_id"] for i in items]
        prices = await self.get_prices(ids)
        volumes = await self.get_volumes(ids)
        result = []
        for item in items:
            out = _item_to_dict(item)
            price = prices.get(item["_id"], {})
            volume = volumes.get(item["_id"], {})
            for field in _PRICE_PROJECTION:
                out[field] = price.get(field)
            out["vol_24h_high"] = volume.get("vol_24h_high")
            out["vol_24h_low"] = volume.get("vol_24h_low")
            result.append(out)
        return result

    async def get_item(self, item_id: int) -> Optional[dict]:
        db = require_mongo_db()
        item = await db["items"].find_one({"_id": item_id})
        if not item:
            return None
        return (await self._attach_market_data([item]))[0]

    async def item_exists(self, item_id: int) -> bool:
        db = require_mongo_db()
        return await db["items"].count_documents({"_id": item_id}, limit=1) > 0

    async def search_items(self, query: str, limit: Optional[int] = 20) -> List[dict]:
        """Case-insensitive substring match on the item name"""
        db = require_mongo_db()
        cursor = db["items"].find(
            {"name": {"$regex": re.escape(query), "$options": "i"}}
        ).sort("name", 1)
        if limit:
            cursor = cursor.limit(limit)
        items = await cursor.to_list(length=None)
        return await self._attach_market_data(items)

    async def get_items(self, item_ids: Iterable[int]) -> Dict[int, dict]:
        db = require_mongo_db()
        docs = await db["items"].find({"_id": {"$in": list(set(item_ids))}}).to_list(length=None)
        return {d["_id"]: d for d in docs}

    # ── Prices ────────────────────────────────────────────

    async def get_prices(self, item_ids: Iterable[int]) -> Dict[int, dict]:
        db = require_mongo_db()
        docs = await db["item_prices"].find({"_id": {"$in": list(set(item_ids))}}).to_list(length=None)
        return {d["_id"]: d for d in docs}

    async def get_volumes(self, item_ids: Iterable[int]) -> Dict[int, dict]:
        db = require_mongo_db()
        docs = await db["item_volumes"].find({"_id": {"$in": list(set(item_ids))}}).to_list(length=None)
        return {d["_id"]: d for d in docs}

    async def _known_item_ids(self) -> set:
        db = require_mongo_db()
        docs = await db["items"].find({}, {"_id": 1}).to_list(length=None)
        return {d["_id"] for d in docs}

    async def _bulk_update_prices(self, data: Dict[str, Dict[str, Any]], fields: Dict[str, str]) -> int:
        db = require_mongo_db()
        known = await self._known_item_ids()
        now = int(time.time())
        ops = []
        for raw_id, entry in data.items():
            try:
                item_id = int(raw_id)
            except (TypeError, ValueError):
                continue
            # orphan prices and the fixed coin price are never written
            if item_id not in known or item_id == COINS_ITEM_ID:
                continue
            entry = entry or {}
            update = {dst: entry[src] for src, dst in fields.items() if entry.get(src) is not None}
            update["updated_at"] = now
            ops.append(UpdateOne({"_id": item_id}, {"$set": update}, upsert=True))
        if ops:
            await db["item_prices"].bulk_write(ops, ordered=False)
        return len(ops)

    async def bulk_upsert_prices(self, latest: Dict[str, Dict[str, Any]]) -> int:
        """Store /latest prices, null fields keep their previous value"""
        return await self._bulk_update_prices(latest, _LATEST_FIELDS)

    async def bulk_upsert_5m_prices(self, averages: Dict[str, Dict[str, Any]]) -> int:
        """Store /5m averages and volumes"""
        return await self._bulk_update_prices(averages, _AVERAGE_FIELDS)

    # ── Volumes ───────────────────────────────────────────

    async def upsert_volumes(self, window: str, volumes: VolumeMap) -> int:
        """Store one window's high/low volumes, other windows stay untouched"""
        if window not in _VOLUME_WINDOWS:
            raise ValueError(f"Unknown volume window: {window}")
        db = require_mongo_db()
        now = int(time.time())
        ops = [
            UpdateOne(
                {"_id": item_id},
                {"$set": {
                    f"vol_{window}_high": vol.get("high", 0),
                    f"vol_{window}_low": vol.get("low", 0),
                    "updated_at": now,
                }},
                upsert=True,
            )
            for item_id, vol in volumes.items()
        ]
        if ops:
            await db["item_volumes"].bulk_write(ops, ordered=False)
        return len(ops)

    # ── Stats ─────────────────────────────────────────────

    async def get_price_stats(self) -> dict:
        db = require_mongo_db()
        prices = db["item_prices"]
        total = await prices.count_documents({})
        with_high = await prices.count_documents({"high_price": {"$ne": None}})
        with_low = await prices.count_documents({"low_price": {"$ne": None}})
        latest = await prices.find({}, {"updated_at": 1}).sort("updated_at", -1).limit(1).to_list(length=1)
        return {
            "total_items": total,
            "items_with_high": with_high,
            "items_with_low": with_low,
            "last_update": latest[0].get("updated_at") if latest else None,
        }

    # ── Recipe lines ──────────────────────────────────────

    async def enrich_lines(self, lines: List[dict], with_volumes: bool = False) -> List[dict]:
        """
        Join recipe lines with item name/icon and current prices

        Lines whose item no longer exists are dropped. With `with_volumes`,
        price timestamps and the 5m/4h/24h volumes are attached too.
        """
        if not lines:
            return []
        ids = [line["item_id"] for line in lines]
        items = await self.get_items(ids)
        prices = await self.get_prices(ids)
        volumes = await self.get_volumes(ids) if with_volumes else {}

        result = []
        for line in lines:
            item = items.get(line["item_id"])
            if item is None:
                continue
            price = prices.get(line["item_id"], {})
            out = {
                "id": line["id"],
                "item_id": line["item_id"],
                "quantity": line.get("quantity", 1),
                "name": item.get("name"),
                "icon": item.get("icon"),
                "high_price": price.get("high_price"),
                "low_price": price.get("low_price"),
            }
            if with_volumes:
                volume = volumes.get(line["item_id"], {})
                out["high_time"] = price.get("high_time")
                out["low_time"] = price.get("low_time")
                for field in _VOLUME_PROJECTION:
                    out[field] = volume.get(field)
            result.append(out)
        return result

    # ── Price history ─────────────────────────────────────

    async def get_price_history(self, item_id: int, timestep: str = "6h") -> Dict[str, Any]:
        """
        Price history from the prices API, cached briefly

        Raises ValueError for an unknown timestep and AcquisitionError when
        the upstream request fails.
        """
        if timestep not in HISTORY_TIMESTEPS:
            raise ValueError("Invalid timestep")
        cached = await self._cache.get(_HISTORY_CACHE_NS, str(item_id), timestep)
        if cached is not None:
            return cached

        payload = await run_in_threadpool(self._acq.get_timeseries, item_id, timestep)
        await self._cache.set(
            payload, _HISTORY_CACHE_NS, str(item_id), timestep, ttl=settings.HISTORY_CACHE_TTL
        )
        return payload


# ── Module-level singleton ───────────────────────────────
_item_service: Optional[ItemService] = None


def get_item_service() -> ItemService:
    global _item_service
    if _item_service is None:
        _item_service = ItemService()
    return _item_service
