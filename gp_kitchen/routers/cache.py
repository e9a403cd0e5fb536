"""
Cache management routes
GET  /api/cache/stats     - entries per backend and namespace
POST /api/cache/clear     - drop one entry or a whole namespace
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gp_kitchen.layers.cache import get_cache_layer
from gp_kitchen.models.response import ApiResponse
from gp_kitchen.routers.auth import require_admin

router = APIRouter(prefix="/api/cache", tags=["cache"])


class ClearRequest(BaseModel):
    namespace: str
    key_parts: Optional[List[str]] = None


@router.get("/stats", response_model=ApiResponse)
async def cache_stats(admin: dict = Depends(require_admin)):
    return ApiResponse.ok(data=await get_cache_layer().stats())


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: ClearRequest, admin: dict = Depends(require_admin)):
    """
    With `key_parts`, e.g. `history` + [item id, timestep], one entry is
    dropped; without them the whole namespace goes.
    """
    cache = get_cache_layer()
    if body.key_parts:
        await cache.delete(body.namespace, *body.key_parts)
        return ApiResponse.ok(
            data={"removed": 1},
            message=f"Cache cleared: {body.namespace}:{':'.join(body.key_parts)}",
        )
    removed = await cache.clear(body.namespace)
    return ApiResponse.ok(data={"removed": removed}, message=f"Cache cleared: {body.namespace}")
