"""
Price poller scheduler
APScheduler jobs that keep prices and volumes fresh.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from gp_kitchen.config import settings
from gp_kitchen.services.price_updater import get_price_updater

logger = logging.getLogger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


def _logged(name: str, func: Callable[[], Awaitable]) -> Callable[[], Awaitable[None]]:
    """Wrap a poll so a failure is logged and the schedule keeps running"""

    async def job() -> None:
        started = time.monotonic()
        logger.info(f"{name}...")
        try:
            await func()
        except Exception as exc:
            logger.error(f"{name} failed: {exc}", exc_info=True)
            return
        logger.debug(f"{name} finished in {time.monotonic() - started:.1f}s")

    job.__name__ = name.replace(" ", "_")
    return job


async def update_daily() -> None:
    updater = get_price_updater()
    await _logged("updating item mappings", updater.update_mappings)()
    await _logged("updating 24h volumes", updater.update_24h_volumes)()


def register_jobs(scheduler: AsyncIOScheduler) -> None:
    updater = get_price_updater()
    now = datetime.now(tz=timezone.utc)
    jobs = [
        ("daily", update_daily, settings.DAILY_INTERVAL),
        ("volumes_4h", _logged("updating 4h volumes", updater.update_4h_volumes), settings.VOLUME_4H_INTERVAL),
        ("volumes_5m", _logged("updating 5m volumes", updater.update_5m_volumes), settings.VOLUME_5M_INTERVAL),
        ("prices", _logged("updating prices", updater.update_latest), settings.PRICE_INTERVAL),
    ]
    for job_id, func, seconds in jobs:
        scheduler.add_job(
            func,
            trigger="interval",
            seconds=seconds,
            id=job_id,
            name=job_id,
            next_run_time=now,
            replace_existing=True,
        )


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone="UTC",
        )
    return _scheduler


def start_scheduler() -> bool:
    """Register the poll jobs and start, False when already running"""
    scheduler = get_scheduler()
    if scheduler.running:
        logger.info("scheduler already running")
        return False
    register_jobs(scheduler)
    scheduler.start()
    logger.info(
        f"price poller started (prices every {settings.PRICE_INTERVAL}s, "
        f"5m volumes every {settings.VOLUME_5M_INTERVAL}s, "
        f"4h volumes every {settings.VOLUME_4H_INTERVAL}s, "
        f"mappings + 24h volumes every {settings.DAILY_INTERVAL}s)"
    )
    return True


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("price poller stopped")
    _scheduler = None
