"""
GP Kitchen configuration
Reads settings from environment variables (and `.env`), detecting Docker
containers to pick service-discovery hostnames.
"""

import os
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """Whether we run inside a Docker container"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_mongo_host() -> str:
    """Docker uses the 'mongodb' service name, local runs use 'localhost'"""
    return "mongodb" if _is_docker() else "localhost"


def _default_redis_host() -> str:
    """Docker uses the 'redis' service name, local runs use 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class Settings(BaseSettings):
    """GP Kitchen settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Server ────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8002)
    DEBUG: bool = Field(default=False)
    DEV_MODE: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── MongoDB ───────────────────────────────────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="gp_kitchen")
    MONGODB_AUTH_SOURCE: str = Field(default="admin")
    MONGODB_ENABLED: bool = Field(default=True)
    MONGO_MAX_CONNECTIONS: int = Field(default=50)
    MONGO_MIN_CONNECTIONS: int = Field(default=5)
    MONGO_CONNECT_TIMEOUT_MS: int = Field(default=30000)
    MONGO_SOCKET_TIMEOUT_MS: int = Field(default=60000)
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    @property
    def MONGO_URI(self) -> str:
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            return (
                f"mongodb://{self.MONGODB_USERNAME}:{self.MONGODB_PASSWORD}"
                f"@{self.MONGODB_HOST}:{self.MONGODB_PORT}"
                f"/{self.MONGODB_DATABASE}?authSource={self.MONGODB_AUTH_SOURCE}"
            )
        return f"mongodb://{self.MONGODB_HOST}:{self.MONGODB_PORT}/{self.MONGODB_DATABASE}"

    # ── Redis ─────────────────────────────────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Sessions ──────────────────────────────────────────
    JWT_SECRET: str = Field(default="change-me-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")
    SESSION_EXPIRE_DAYS: int = Field(default=30)
    SESSION_COOKIE_NAME: str = Field(default="gp_kitchen_session")
    SESSION_COOKIE_SECURE: bool = Field(default=False)

    # ── Accounts ──────────────────────────────────────────
    ADMIN_USERNAME: str = Field(default="admin")
    ADMIN_PASSWORD: str = Field(default="")
    GUEST_RETENTION_DAYS: int = Field(default=30)
    PASSWORD_HASH_ITERATIONS: int = Field(default=260000)

    # ── Prices API ────────────────────────────────────────
    PRICES_API_BASE: str = Field(default="https://prices.runescape.wiki/api/v1/osrs")
    ICON_BASE_URL: str = Field(default="https://static.runelite.net/cache/item/icon")
    USER_AGENT: str = Field(default="GP-Kitchen/1.0")
    HTTP_TIMEOUT: int = Field(default=30)
    HISTORY_TIMEOUT: int = Field(default=15)

    # ── Poller (seconds) ──────────────────────────────────
    POLLER_ENABLED: bool = Field(default=False)
    PRICE_INTERVAL: int = Field(default=5)
    VOLUME_5M_INTERVAL: int = Field(default=300)
    VOLUME_4H_INTERVAL: int = Field(default=1200)
    DAILY_INTERVAL: int = Field(default=14400)

    # ── Cache ─────────────────────────────────────────────
    CACHE_TTL: int = Field(default=3600)
    HISTORY_CACHE_TTL: int = Field(default=60)
    CACHE_DIR: str = Field(default="./cache")
    ICONS_DIR: str = Field(default="./public/images/items")

    # ── Logging ───────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> Settings:
    """Global settings (singleton)"""
    return Settings()


settings = get_settings()
