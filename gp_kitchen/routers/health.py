"""Health check routes"""

import time

from fastapi import APIRouter

from gp_kitchen import __version__
from gp_kitchen.db import check_health

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    """Service health with database status"""
    db_health = await check_health()
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "GP Kitchen",
            "databases": db_health,
        },
        "message": "Service is running",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}
