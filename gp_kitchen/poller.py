"""
Price poller
Fetches prices and volumes from the OSRS Wiki prices API into MongoDB.

    gp-kitchen-poller            full update (mappings, volumes, prices)
    gp-kitchen-poller --latest   latest prices only
    gp-kitchen-poller --daemon   keep polling until SIGINT / SIGTERM
"""

import argparse
import asyncio
import logging
import signal
from typing import Optional, Sequence

from gp_kitchen.config import settings
from gp_kitchen.db import close_connections, ensure_indexes, init_mongodb
from gp_kitchen.scheduler import shutdown_scheduler, start_scheduler
from gp_kitchen.services.item_service import get_item_service
from gp_kitchen.services.price_updater import get_price_updater

logger = logging.getLogger("gp_kitchen.poller")


async def _run_daemon() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    start_scheduler()
    try:
        await stop.wait()
    finally:
        shutdown_scheduler()


async def _run(daemon: bool, latest_only: bool) -> int:
    if not await init_mongodb():
        logger.error("MongoDB is not reachable, nothing to update")
        return 1
    try:
        await ensure_indexes()
        items = get_item_service()
        await items.ensure_coins()
        updater = get_price_updater()

        if latest_only:
            await updater.update_latest()
        elif daemon:
            await _run_daemon()
        else:
            await updater.update_all()
            stats = await items.get_price_stats()
            print(
                f"Items with prices: {stats['total_items']} "
                f"(high: {stats['items_with_high']}, low: {stats['items_with_low']})"
            )
    finally:
        await close_connections()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="gp-kitchen-poller",
        description="Fetch GE prices and volumes from the OSRS Wiki prices API.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("-d", "--daemon", action="store_true", help="poll continuously")
    mode.add_argument("-l", "--latest", action="store_true", help="update latest prices only")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    return asyncio.run(_run(daemon=args.daemon, latest_only=args.latest))


if __name__ == "__main__":
    raise SystemExit(main())
