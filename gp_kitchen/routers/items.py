"""
Item routes
GET /api/stats                      - price stats
GET /api/items/search?q=            - search items by name
GET /api/items/{item_id}            - item with current price
GET /api/items/{item_id}/history    - price history (proxied, cached)
"""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from gp_kitchen.layers.acquisition import AcquisitionError
from gp_kitchen.models.response import ApiResponse
from gp_kitchen.services.item_service import get_item_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["items"])

_MIN_QUERY_LENGTH = 2


@router.get("/stats", response_model=ApiResponse)
async def price_stats():
    return ApiResponse.ok(data=await get_item_service().get_price_stats())


@router.get("/items/search", response_model=ApiResponse)
async def search_items(q: str = Query(default="", description="Part of the item name")):
    q = q.strip()
    if len(q) < _MIN_QUERY_LENGTH:
        return ApiResponse.ok(data=[])
    return ApiResponse.ok(data=await get_item_service().search_items(q))


@router.get("/items/{item_id}", response_model=ApiResponse)
async def get_item(item_id: int):
    item = await get_item_service().get_item(item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return ApiResponse.ok(data=item)


@router.get("/items/{item_id}/history", response_model=ApiResponse)
async def item_history(
    item_id: int,
    timestep: str = Query(default="6h", description="5m / 1h / 6h / 24h"),
):
    try:
        history = await get_item_service().get_price_history(item_id, timestep)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except AcquisitionError as exc:
        logger.warning(f"history for item {item_id} failed: {exc}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch history")
    return ApiResponse.ok(data=history)
