"""
Management commands

    gp-kitchen create-admin
    gp-kitchen cleanup-guests [--days N] [--dry-run]
    gp-kitchen download-icons
    gp-kitchen serve
"""

import argparse
import asyncio
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence, Tuple

from gp_kitchen.config import settings
from gp_kitchen.db import close_connections, ensure_indexes, init_mongodb, require_mongo_db
from gp_kitchen.layers.acquisition import AcquisitionError, AcquisitionLayer
from gp_kitchen.services.auth_service import get_auth_service

logger = logging.getLogger("gp_kitchen.manage")

ICON_WORKERS = 8


# ── Icons ─────────────────────────────────────────────────

def missing_icon_ids(item_ids: Iterable[int], icons_dir: str) -> List[int]:
    return [i for i in item_ids if not os.path.exists(os.path.join(icons_dir, f"{i}.png"))]


def download_icons(item_ids: Sequence[int], icons_dir: str, workers: int = ICON_WORKERS) -> Tuple[int, int]:
    """
    Fetch `{id}.png` for every id, returns (downloaded, failed)

    Each worker thread builds its own client; a requests.Session is never
    shared between threads.
    """
    os.makedirs(icons_dir, exist_ok=True)
    local = threading.local()

    def fetch(item_id: int) -> bool:
        if not hasattr(local, "acq"):
            local.acq = AcquisitionLayer()
        try:
            content = local.acq.fetch_icon(item_id)
        except AcquisitionError as exc:
            logger.debug(f"icon {item_id}: {exc}")
            return False
        with open(os.path.join(icons_dir, f"{item_id}.png"), "wb") as fh:
            fh.write(content)
        return True

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(fetch, item_ids))
    downloaded = sum(results)
    return downloaded, len(results) - downloaded


# ── Commands ──────────────────────────────────────────────

async def cmd_create_admin(args) -> int:
    svc = get_auth_service()
    existing = await svc.get_user_by_username(settings.ADMIN_USERNAME)
    if existing:
        print(f"Admin user already exists (id: {existing['_id']})")
        return 0
    user_id = await svc.ensure_admin()
    if user_id is None:
        print("ADMIN_PASSWORD is not set, admin user not created")
        return 1
    print(f"Admin user created with id: {user_id}")
    return 0


async def cmd_cleanup_guests(args) -> int:
    count = await get_auth_service().cleanup_inactive_guests(args.days, dry_run=args.dry_run)
    verb = "Would delete" if args.dry_run else "Deleted"
    print(f"{verb} {count} inactive guest accounts (inactive > {args.days} days)")
    return 0


async def cmd_download_icons(args) -> int:
    icons_dir = args.icons_dir
    docs = await require_mongo_db()["items"].find({}, {"_id": 1}).sort("_id", 1).to_list(length=None)
    missing = missing_icon_ids([d["_id"] for d in docs], icons_dir)
    existing = len(docs) - len(missing)
    if not missing:
        print(f"All {existing} icons already downloaded.")
        return 0

    print(f"Found {existing} existing icons, downloading {len(missing)} missing...")
    downloaded, failed = await asyncio.to_thread(download_icons, missing, icons_dir)
    print(f"Done! Downloaded {downloaded}, failed {failed}.")
    return 0


_COMMANDS = {
    "create-admin": cmd_create_admin,
    "cleanup-guests": cmd_cleanup_guests,
    "download-icons": cmd_download_icons,
}


async def _dispatch(args) -> int:
    if not await init_mongodb():
        logger.error("MongoDB is not reachable")
        return 1
    try:
        await ensure_indexes()
        return await _COMMANDS[args.command](args)
    finally:
        await close_connections()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gp-kitchen", description="GP Kitchen management commands.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="run the web application")
    sub.add_parser("create-admin", help="create the admin user from ADMIN_PASSWORD")

    cleanup = sub.add_parser("cleanup-guests", help="delete inactive guest accounts")
    cleanup.add_argument("--days", type=int, default=settings.GUEST_RETENTION_DAYS)
    cleanup.add_argument("--dry-run", action="store_true", help="only count")

    icons = sub.add_parser("download-icons", help="fetch missing item icons")
    icons.add_argument("--icons-dir", default=settings.ICONS_DIR)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if args.command == "serve":
        from gp_kitchen.main import run
        run()
        return 0
    return asyncio.run(_dispatch(args))


if __name__ == "__main__":
    raise SystemExit(main())
