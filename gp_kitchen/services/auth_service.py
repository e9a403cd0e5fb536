"""
Account service
Users (registered, guest, admin) stored in MongoDB, stateless JWT sessions.
"""

import hashlib
import hmac
import logging
import re
import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from gp_kitchen.config import settings
from gp_kitchen.db import next_id, require_mongo_db

logger = logging.getLogger(__name__)

_USERNAME_RE = re.compile(r"[A-Za-z0-9_]+")
_ALPHANUMERIC = string.ascii_letters + string.digits
_HASH_SCHEME = "pbkdf2_sha256"


class TokenPayload(BaseModel):
    sub: str
    exp: int
    csrf: str


class AccountError(ValueError):
    """Account operation rejected, message is user-facing"""


def _random_string(length: int) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def public_user(doc: dict) -> dict:
    """User document without secrets"""
    return {
        "id": doc["_id"],
        "username": doc["username"],
        "is_guest": bool(doc.get("is_guest")),
        "is_admin": bool(doc.get("is_admin")),
        "created_at": doc.get("created_at"),
        "last_active": doc.get("last_active"),
    }


class AuthService:
    """User accounts and sessions"""

    # ── Passwords ─────────────────────────────────────────

    @staticmethod
    def hash_password(password: str, salt: Optional[str] = None, iterations: Optional[int] = None) -> str:
        salt = salt or secrets.token_hex(16)
        iterations = iterations or settings.PASSWORD_HASH_ITERATIONS
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations)
        return f"{_HASH_SCHEME}${iterations}${salt}${digest.hex()}"

    @staticmethod
    def verify_password(password: str, password_hash: Optional[str]) -> bool:
        if not password_hash:
            return False
        try:
            scheme, iterations, salt, expected = password_hash.split("$")
        except ValueError:
            return False
        if scheme != _HASH_SCHEME:
            return False
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
        return hmac.compare_digest(digest.hex(), expected)

    # ── Sessions ──────────────────────────────────────────

    @staticmethod
    def create_session_token(user_id: int) -> tuple:
        """New session token and its CSRF secret"""
        csrf = _random_string(32)
        expire = datetime.now(tz=timezone.utc) + timedelta(days=settings.SESSION_EXPIRE_DAYS)
        payload = {"sub": str(user_id), "exp": expire, "csrf": csrf}
        token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
        return token, csrf

    @staticmethod
    def verify_token(token: str) -> Optional[TokenPayload]:
        try:
            payload = jwt.decode(
                token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
            )
            return TokenPayload(
                sub=payload["sub"], exp=int(payload["exp"]), csrf=payload.get("csrf", "")
            )
        except jwt.ExpiredSignatureError:
            logger.debug("session token expired")
        except (jwt.InvalidTokenError, KeyError) as exc:
            logger.debug(f"invalid session token: {exc}")
        return None

    # ── Users ─────────────────────────────────────────────

    async def create_user(
        self,
        username: str,
        password: Optional[str] = None,
        is_guest: bool = False,
        is_admin: bool = False,
    ) -> int:
        """Insert a user and return its id, DuplicateKeyError when the name is taken"""
        db = require_mongo_db()
        user_id = await next_id("users")
        now = int(time.time())
        await db["users"].insert_one({
            "_id": user_id,
            "username": username,
            "password_hash": self.hash_password(password) if password else None,
            "is_guest": is_guest,
            "is_admin": is_admin,
            "created_at": now,
            "last_active": now,
        })
        logger.info(f"created {'guest ' if is_guest else ''}user {username} (id {user_id})")
        return user_id

    async def create_guest_user(self) -> int:
        return await self.create_user(f"guest_{_random_string(12)}", is_guest=True)

    async def get_user(self, user_id: int) -> Optional[dict]:
        db = require_mongo_db()
        return await db["users"].find_one({"_id": user_id})

    async def get_user_by_username(self, username: str) -> Optional[dict]:
        db = require_mongo_db()
        return await db["users"].find_one({"username": username})

    async def authenticate(self, username: str, password: str) -> Optional[dict]:
        """User document when the password matches"""
        user = await self.get_user_by_username(username)
        if not user or not user.get("password_hash"):
            return None
        return user if self.verify_password(password, user["password_hash"]) else None

    async def touch_last_active(self, user_id: int) -> None:
        db = require_mongo_db()
        await db["users"].update_one({"_id": user_id}, {"$set": {"last_active": int(time.time())}})

    @staticmethod
    def validate_registration(username: str, password: str, confirm: str) -> None:
        if len(username) < 3 or len(username) > 20:
            raise AccountError("Username must be 3-20 characters")
        if not _USERNAME_RE.fullmatch(username):
            raise AccountError("Username can only contain letters, numbers, and underscores")
        if len(password) < 6:
            raise AccountError("Password must be at least 6 characters")
        if password != confirm:
            raise AccountError("Passwords do not match")

    async def register(self, username: str, password: str) -> int:
        if await self.get_user_by_username(username):
            raise AccountError("Username already taken")
        try:
            return await self.create_user(username, password)
        except DuplicateKeyError:
            raise AccountError("Username already taken")

    async def register_guest(self, user_id: int, username: str, password: str) -> None:
        """Turn a guest into a registered user, keeping its recipes"""
        if await self.get_user_by_username(username):
            raise AccountError("Username already taken")
        db = require_mongo_db()
        try:
            await db["users"].update_one(
                {"_id": user_id, "is_guest": True},
                {"$set": {
                    "username": username,
                    "password_hash": self.hash_password(password),
                    "is_guest": False,
                    "last_active": int(time.time()),
                }},
            )
        except DuplicateKeyError:
            raise AccountError("Username already taken")
        logger.info(f"guest {user_id} registered as {username}")

    async def update_password(self, user_id: int, current_password: str, new_password: str) -> None:
        user = await self.get_user(user_id)
        if not user:
            raise AccountError("User not found")
        if user.get("is_guest"):
            raise AccountError("Cannot change password for guest accounts")
        if not self.verify_password(current_password, user.get("password_hash")):
            raise AccountError("Current password is incorrect")
        if len(new_password) < 6:
            raise AccountError("Password must be at least 6 characters")
        db = require_mongo_db()
        await db["users"].update_one(
            {"_id": user_id}, {"$set": {"password_hash": self.hash_password(new_password)}}
        )

    async def cleanup_inactive_guests(self, days: Optional[int] = None, dry_run: bool = False) -> int:
        """Delete guests idle for more than `days`, with their recipes and imports"""
        if days is None:
            days = settings.GUEST_RETENTION_DAYS
        cutoff = int(time.time()) - days * 86400
        db = require_mongo_db()
        query = {"is_guest": True, "last_active": {"$lt": cutoff}}

        if dry_run:
            return await db["users"].count_documents(query)

        docs = await db["users"].find(query, {"_id": 1}).to_list(length=None)
        ids = [doc["_id"] for doc in docs]
        if not ids:
            return 0
        await db["recipes"].delete_many({"user_id": {"$in": ids}})
        await db["cookbook_imports"].delete_many({"user_id": {"$in": ids}})
        result = await db["users"].delete_many({"_id": {"$in": ids}})
        logger.info(f"deleted {result.deleted_count} guests idle for more than {days} days")
        return result.deleted_count

    async def ensure_admin(self, password: Optional[str] = None) -> Optional[int]:
        """Create the admin user if missing, returns its id"""
        username = settings.ADMIN_USERNAME
        existing = await self.get_user_by_username(username)
        if existing:
            return existing["_id"]
        password = password or settings.ADMIN_PASSWORD
        if not password:
            logger.warning("ADMIN_PASSWORD not set, admin user not created")
            return None
        return await self.create_user(username, password, is_admin=True)


# ── Module-level singleton ───────────────────────────────
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
