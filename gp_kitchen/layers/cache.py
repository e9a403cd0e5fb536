"""
Layer 2 – Cache
Short-lived copies of upstream payloads (price history), grouped by namespace.

Backends are tried in order: Redis, MongoDB `data_cache`, JSON files under
CACHE_DIR/<namespace>/. Writes go to the first backend that accepts them.
"""

import hashlib
import json
import logging
import os
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from gp_kitchen.config import settings
from gp_kitchen.db import get_mongo_db, get_redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "gp_kitchen"
_MAX_KEY_LENGTH = 200


def _make_key(namespace: str, *parts: str) -> str:
    """`gp_kitchen:<namespace>:<parts...>`, long tails replaced by a digest"""
    key = ":".join([KEY_PREFIX, namespace] + [str(p) for p in parts])
    if len(key) > _MAX_KEY_LENGTH:
        key = f"{KEY_PREFIX}:{namespace}:{hashlib.sha1(key.encode()).hexdigest()}"
    return key


def _safe(name: str) -> str:
    return name.replace(":", "_").replace("/", "_").replace("\\", "_")


def _namespace_dir(namespace: str) -> str:
    return os.path.join(settings.CACHE_DIR, _safe(namespace))


def _file_path(key: str) -> str:
    _, namespace, rest = (key.split(":", 2) + ["", ""])[:3]
    return os.path.join(_namespace_dir(namespace), f"{_safe(rest) or '_'}.json")


def _expired(expires_at: Optional[datetime]) -> bool:
    if expires_at is None:
        return False
    # pymongo hands back naive datetimes unless tz_aware is set
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at < datetime.now(tz=timezone.utc)


class CacheLayer:
    """Namespaced JSON cache over whichever backends are connected"""

    async def get(self, namespace: str, *parts: str) -> Optional[Any]:
        key = _make_key(namespace, *parts)

        redis = get_redis()
        if redis is not None:
            try:
                raw = await redis.get(key)
                if raw:
                    return json.loads(raw)
            except Exception as exc:
                logger.debug(f"redis read {key} failed: {exc}")

        db = get_mongo_db()
        if db is not None:
            try:
                doc = await db["data_cache"].find_one({"_id": key})
                if doc and _expired(doc.get("expires_at")):
                    await db["data_cache"].delete_one({"_id": key})
                elif doc:
                    return doc.get("value")
            except Exception as exc:
                logger.debug(f"mongodb read {key} failed: {exc}")

        path = _file_path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                doc = json.load(fh)
            if doc.get("expires_at", 0) < datetime.now(tz=timezone.utc).timestamp():
                os.remove(path)
                return None
            return doc.get("value")
        except (OSError, ValueError) as exc:
            logger.debug(f"file read {path} failed: {exc}")
        return None

    async def set(self, value: Any, namespace: str, *parts: str, ttl: Optional[int] = None) -> None:
        ttl = settings.CACHE_TTL if ttl is None else ttl
        key = _make_key(namespace, *parts)
        # round-trip so every backend stores the same JSON-safe value
        payload = json.loads(json.dumps(value, ensure_ascii=False, default=str))
        expires_at = datetime.now(tz=timezone.utc) + timedelta(seconds=ttl)

        redis = get_redis()
        if redis is not None and ttl > 0:
            try:
                await redis.setex(key, ttl, json.dumps(payload, ensure_ascii=False))
                return
            except Exception as exc:
                logger.debug(f"redis write {key} failed: {exc}")

        db = get_mongo_db()
        if db is not None:
            try:
                await db["data_cache"].update_one(
                    {"_id": key},
                    {"$set": {"namespace": namespace, "value": payload, "expires_at": expires_at}},
                    upsert=True,
                )
                return
            except Exception as exc:
                logger.debug(f"mongodb write {key} failed: {exc}")

        path = _file_path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as fh:
                json.dump({"value": payload, "expires_at": expires_at.timestamp()}, fh, ensure_ascii=False)
        except OSError as exc:
            logger.warning(f"cache write {key} failed on every backend: {exc}")

    async def delete(self, namespace: str, *parts: str) -> None:
        key = _make_key(namespace, *parts)
        redis = get_redis()
        if redis is not None:
            try:
                await redis.delete(key)
            except Exception as exc:
                logger.debug(f"redis delete {key} failed: {exc}")
        db = get_mongo_db()
        if db is not None:
            await db["data_cache"].delete_one({"_id": key})
        path = _file_path(key)
        if os.path.exists(path):
            os.remove(path)

    async def clear(self, namespace: str) -> int:
        """Drop every entry of a namespace, returns how many were removed"""
        removed = 0
        redis = get_redis()
        if redis is not None:
            try:
                keys = [k async for k in redis.scan_iter(match=f"{KEY_PREFIX}:{namespace}:*")]
                if keys:
                    removed += await redis.delete(*keys)
            except Exception as exc:
                logger.debug(f"redis clear {namespace} failed: {exc}")

        db = get_mongo_db()
        if db is not None:
            result = await db["data_cache"].delete_many({"namespace": namespace})
            removed += result.deleted_count

        directory = _namespace_dir(namespace)
        if os.path.isdir(directory):
            for name in os.listdir(directory):
                if name.endswith(".json"):
                    os.remove(os.path.join(directory, name))
                    removed += 1

        logger.info(f"cleared {removed} cache entries in {namespace}")
        return removed

    async def stats(self) -> dict:
        """Entries per backend, broken down by namespace where the backend allows it"""
        result: dict = {}

        redis = get_redis()
        if redis is None:
            result["redis"] = {"status": "disabled"}
        else:
            try:
                keys = [k async for k in redis.scan_iter(match=f"{KEY_PREFIX}:*")]
                result["redis"] = {"status": "healthy", "keys": len(keys)}
            except Exception as exc:
                result["redis"] = {"status": "error", "error": str(exc)}

        db = get_mongo_db()
        if db is None:
            result["mongodb"] = {"status": "disabled"}
        else:
            docs = await db["data_cache"].find({}, {"namespace": 1}).to_list(length=None)
            namespaces = Counter(d.get("namespace", "") for d in docs)
            result["mongodb"] = {"status": "healthy", "documents": len(docs), "namespaces": dict(namespaces)}

        files: Counter = Counter()
        if os.path.isdir(settings.CACHE_DIR):
            for namespace in os.listdir(settings.CACHE_DIR):
                directory = os.path.join(settings.CACHE_DIR, namespace)
                if os.path.isdir(directory):
                    files[namespace] = sum(1 for f in os.listdir(directory) if f.endswith(".json"))
        result["file"] = {
            "dir": settings.CACHE_DIR,
            "files": sum(files.values()),
            "namespaces": dict(files),
        }
        return result


# ── Module-level singleton ───────────────────────────────
_cache: Optional[CacheLayer] = None


def get_cache_layer() -> CacheLayer:
    global _cache
    if _cache is None:
        _cache = CacheLayer()
    return _cache
