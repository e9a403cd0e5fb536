"""
Admin routes
POST /api/admin/update-prices    - refresh latest prices (dev mode only)
POST /api/admin/cleanup-guests   - purge inactive guest accounts
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from gp_kitchen.config import settings
from gp_kitchen.layers.acquisition import AcquisitionError
from gp_kitchen.models.response import ApiResponse
from gp_kitchen.routers.auth import require_admin
from gp_kitchen.services.auth_service import get_auth_service
from gp_kitchen.services.price_updater import get_price_updater

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/update-prices", response_model=ApiResponse)
async def update_prices(admin: dict = Depends(require_admin)):
    if not settings.DEV_MODE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Dev mode only")
    try:
        count = await get_price_updater().update_latest()
    except AcquisitionError as exc:
        logger.error(f"manual price update failed: {exc}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Price update failed: {exc}")
    return ApiResponse.ok(data={"updated": count}, message="Prices updated")


@router.post("/cleanup-guests", response_model=ApiResponse)
async def cleanup_guests(admin: dict = Depends(require_admin)):
    deleted = await get_auth_service().cleanup_inactive_guests(settings.GUEST_RETENTION_DAYS)
    return ApiResponse.ok(data={"deleted": deleted}, message="Inactive guest accounts cleaned up")
