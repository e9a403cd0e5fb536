"""
Database connection management
MongoDB (motor, async) holds all application data, Redis backs the cache layer.
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from redis.asyncio import Redis, ConnectionPool

from gp_kitchen.config import settings

logger = logging.getLogger(__name__)

# ── Global connections ───────────────────────────────────
_mongo_client: Optional[AsyncIOMotorClient] = None
_mongo_db: Optional[AsyncIOMotorDatabase] = None
_redis_client: Optional[Redis] = None
_redis_pool: Optional[ConnectionPool] = None


class DatabaseUnavailableError(RuntimeError):
    """MongoDB is not connected"""


async def init_mongodb() -> bool:
    """Connect to MongoDB, returns whether it succeeded"""
    global _mongo_client, _mongo_db
    if not settings.MONGODB_ENABLED:
        logger.info("MongoDB disabled, skipping")
        return False
    try:
        _mongo_client = AsyncIOMotorClient(
            settings.MONGO_URI,
            maxPoolSize=settings.MONGO_MAX_CONNECTIONS,
            minPoolSize=settings.MONGO_MIN_CONNECTIONS,
            serverSelectionTimeoutMS=settings.MONGO_SERVER_SELECTION_TIMEOUT_MS,
            connectTimeoutMS=settings.MONGO_CONNECT_TIMEOUT_MS,
            socketTimeoutMS=settings.MONGO_SOCKET_TIMEOUT_MS,
        )
        _mongo_db = _mongo_client[settings.MONGODB_DATABASE]
        await _mongo_client.admin.command("ping")
        logger.info(f"MongoDB connected: {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
        return True
    except Exception as exc:
        logger.warning(f"MongoDB connection failed (running degraded): {exc}")
        _mongo_client = None
        _mongo_db = None
        return False


async def init_redis() -> bool:
    """Connect to Redis, returns whether it succeeded"""
    global _redis_client, _redis_pool
    if not settings.REDIS_ENABLED:
        logger.info("Redis disabled, skipping")
        return False
    try:
        _redis_pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=10,
        )
        _redis_client = Redis(connection_pool=_redis_pool)
        await _redis_client.ping()
        logger.info(f"Redis connected: {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        return True
    except Exception as exc:
        logger.warning(f"Redis connection failed (running degraded): {exc}")
        _redis_client = None
        _redis_pool = None
        return False


async def close_connections():
    """Close every open connection"""
    global _mongo_client, _mongo_db, _redis_client, _redis_pool
    if _mongo_client:
        _mongo_client.close()
        _mongo_client = None
        _mongo_db = None
        logger.info("MongoDB connection closed")
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None
        logger.info("Redis connection closed")


def get_mongo_db() -> Optional[AsyncIOMotorDatabase]:
    """MongoDB database handle (may be None)"""
    return _mongo_db


def require_mongo_db() -> AsyncIOMotorDatabase:
    """MongoDB database handle, raises when not connected"""
    db = get_mongo_db()
    if db is None:
        raise DatabaseUnavailableError("MongoDB is not connected")
    return db


def get_redis() -> Optional[Redis]:
    """Redis client (may be None)"""
    return _redis_client


async def ensure_indexes() -> None:
    db = require_mongo_db()
    await db["users"].create_index("username", unique=True)
    await db["items"].create_index("name")
    await db["recipes"].create_index([("user_id", ASCENDING), ("sort_order", ASCENDING)])
    await db["cookbook_recipes"].create_index(
        [("cookbook_id", ASCENDING), ("sort_order", ASCENDING)]
    )
    await db["cookbook_imports"].create_index("cookbook_id")
    await db["item_prices"].create_index("updated_at")


async def next_id(name: str) -> int:
    """Next integer id of the named sequence"""
    db = require_mongo_db()
    doc = await db["counters"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(doc["seq"])


async def check_health() -> dict:
    """Health of every connection"""
    result = {
        "mongodb": {"status": "disabled"},
        "redis": {"status": "disabled"},
    }
    if _mongo_client:
        try:
            await _mongo_client.admin.command("ping")
            result["mongodb"] = {"status": "healthy", "host": settings.MONGODB_HOST}
        except Exception as exc:
            result["mongodb"] = {"status": "unhealthy", "error": str(exc)}
    elif settings.MONGODB_ENABLED:
        result["mongodb"] = {"status": "disconnected"}

    if _redis_client:
        try:
            await _redis_client.ping()
            result["redis"] = {"status": "healthy", "host": settings.REDIS_HOST}
        except Exception as exc:
            result["redis"] = {"status": "unhealthy", "error": str(exc)}
    elif settings.REDIS_ENABLED:
        result["redis"] = {"status": "disconnected"}

    return result
