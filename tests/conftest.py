"""
Shared fixtures
MongoDB is replaced by mongomock-motor, Redis is left disconnected and the
lifespan connection hooks are patched out.
"""

import asyncio
import os
import sys
import uuid
from unittest.mock import AsyncMock, patch

import pytest

# settings are read once at import, so the environment goes first
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("POLLER_ENABLED", "false")
os.environ.setdefault("ADMIN_PASSWORD", "")
os.environ.setdefault("JWT_SECRET", "test-secret-for-session-tokens-0123456789")

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


def run(coro):
    """Run a coroutine to completion"""
    return asyncio.run(coro)


@pytest.fixture
def mongo_db():
    """Fresh in-memory database installed as the connected MongoDB"""
    from mongomock_motor import AsyncMongoMockClient

    import gp_kitchen.db as db_module

    db = AsyncMongoMockClient()[f"gp_kitchen_test_{uuid.uuid4().hex[:8]}"]
    with patch.object(db_module, "_mongo_db", db):
        yield db


@pytest.fixture
def client(mongo_db):
    from fastapi.testclient import TestClient

    from gp_kitchen.main import app

    with patch("gp_kitchen.main.init_mongodb", AsyncMock(return_value=True)), \
         patch("gp_kitchen.main.init_redis", AsyncMock(return_value=False)), \
         patch("gp_kitchen.main.close_connections", AsyncMock()):
        with TestClient(app) as c:
            yield c


# ─────────────────────────────────────────────────────────
# Seed data
# ─────────────────────────────────────────────────────────

BUCKET = 1925
MILK = 1927
FLAX = 1779
BOW_STRING = 1777

MAPPING = [
    {"id": BUCKET, "name": "Bucket", "examine": "It's a wooden bucket.", "members": False,
     "lowalch": 1, "highalch": 1, "limit": 100, "icon": "Bucket.png"},
    {"id": MILK, "name": "Bucket of milk", "examine": "It's a bucket of milk.", "members": False,
     "lowalch": 4, "highalch": 7, "limit": 100, "icon": "Bucket of milk.png"},
    {"id": FLAX, "name": "Flax", "examine": "I should use this with a spinning wheel.", "members": True,
     "lowalch": 2, "highalch": 3, "limit": 25000, "icon": "Flax.png"},
    {"id": BOW_STRING, "name": "Bow string", "examine": "I need a bow stave to attach this to.",
     "members": True, "lowalch": 36, "highalch": 54, "limit": 18000, "icon": "Bow string.png"},
]

LATEST = {
    str(BUCKET): {"high": 10, "highTime": 1700000000, "low": 8, "lowTime": 1700000010},
    str(MILK): {"high": 200, "highTime": 1700000000, "low": 150, "lowTime": 1700000010},
    str(FLAX): {"high": 60, "highTime": 1700000000, "low": 55, "lowTime": 1700000010},
    str(BOW_STRING): {"high": 110, "highTime": 1700000000, "low": 100, "lowTime": 1700000010},
}


@pytest.fixture
def seeded(mongo_db):
    """Items with prices"""
    from gp_kitchen.services.item_service import get_item_service

    async def seed():
        svc = get_item_service()
        await svc.ensure_coins()
        await svc.upsert_items(MAPPING)
        await svc.bulk_upsert_prices(LATEST)

    run(seed())
    return mongo_db


def create_user(username="alice", password="secret1", is_admin=False):
    from gp_kitchen.services.auth_service import get_auth_service
    return run(get_auth_service().create_user(username, password, is_admin=is_admin))


def bearer_login(client, username="alice", password="secret1") -> dict:
    """Log in and return bearer headers, without keeping the session cookie"""
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {resp.json()['data']['access_token']}"}
