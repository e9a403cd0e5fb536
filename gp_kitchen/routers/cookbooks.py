"""
Cookbook routes
Browsing and importing are public (importing creates a guest when needed);
everything else requires an admin.
"""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from gp_kitchen.layers.analysis import get_analysis_layer
from gp_kitchen.models.response import ApiResponse
from gp_kitchen.routers.auth import ensure_user, get_optional_user, require_admin
from gp_kitchen.services.cookbook_service import get_cookbook_service
from gp_kitchen.services.recipe_service import ItemNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cookbooks", tags=["cookbooks"])


class CookbookRequest(BaseModel):
    name: str = ""
    description: str = ""


class ImportRequest(BaseModel):
    recipe_ids: List[Any] = Field(default_factory=list)


class ReorderRequest(BaseModel):
    order: List[int]
    id: int
    direction: str = Field(description="up / down")


class CookbookLineRequest(BaseModel):
    item_id: int
    quantity: int = Field(default=1, ge=1)


async def _require_cookbook(cookbook_id: int) -> dict:
    cookbook = await get_cookbook_service().get_cookbook(cookbook_id)
    if cookbook is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cookbook not found")
    return cookbook


async def _require_cookbook_recipe(cookbook_id: int, recipe_id: int) -> None:
    if not await get_cookbook_service().cookbook_owns_recipe(cookbook_id, recipe_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipe not found")


# ── Public ────────────────────────────────────────────────

@router.get("", response_model=ApiResponse)
async def list_cookbooks(limit: int = Query(default=50, ge=1, le=500)):
    return ApiResponse.ok(data=await get_cookbook_service().list_cookbooks(limit=limit))


@router.post("/reorder", response_model=ApiResponse)
async def reorder_cookbooks(body: ReorderRequest, admin: dict = Depends(require_admin)):
    moved = await get_cookbook_service().swap_cookbook_order(body.order, body.id, body.direction)
    return ApiResponse.ok(data={"moved": moved})


@router.get("/{cookbook_id}", response_model=ApiResponse)
async def get_cookbook(cookbook_id: int):
    cookbook = await _require_cookbook(cookbook_id)
    cookbook["recipes"] = await get_cookbook_service().recipes.list_cookbook_recipes(cookbook_id)
    cookbook["total_recipes"] = len(cookbook["recipes"])
    return ApiResponse.ok(data=cookbook)


@router.post("/{cookbook_id}/import", response_model=ApiResponse)
async def import_cookbook(
    cookbook_id: int,
    body: ImportRequest,
    response: Response,
    user: Optional[dict] = Depends(get_optional_user),
):
    cookbook = await _require_cookbook(cookbook_id)
    user = await ensure_user(response, user)
    count = await get_cookbook_service().import_cookbook(cookbook_id, user["id"], body.recipe_ids)
    return ApiResponse.ok(
        data={"imported": count},
        message=f"Imported {count} recipe(s) from {cookbook['name']}",
    )


# ── Admin: cookbooks ──────────────────────────────────────

@router.post("", response_model=ApiResponse)
async def create_cookbook(body: CookbookRequest, admin: dict = Depends(require_admin)):
    try:
        cookbook_id = await get_cookbook_service().create_cookbook(
            body.name, body.description, created_by=admin["id"]
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return ApiResponse.ok(data={"id": cookbook_id}, message="Cookbook created")


@router.put("/{cookbook_id}", response_model=ApiResponse)
async def update_cookbook(cookbook_id: int, body: CookbookRequest, admin: dict = Depends(require_admin)):
    await _require_cookbook(cookbook_id)
    try:
        await get_cookbook_service().update_cookbook(cookbook_id, body.name, body.description)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return ApiResponse.ok(data={"id": cookbook_id}, message="Cookbook updated")


@router.delete("/{cookbook_id}", response_model=ApiResponse)
async def delete_cookbook(cookbook_id: int, admin: dict = Depends(require_admin)):
    if not await get_cookbook_service().delete_cookbook(cookbook_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cookbook not found")
    return ApiResponse.ok(data={"id": cookbook_id}, message="Cookbook deleted")


# ── Admin: cookbook recipes ───────────────────────────────

@router.post("/{cookbook_id}/recipes/reorder", response_model=ApiResponse)
async def reorder_cookbook_recipes(
    cookbook_id: int, body: ReorderRequest, admin: dict = Depends(require_admin)
):
    svc = get_cookbook_service()
    for recipe_id in body.order:
        if not await svc.cookbook_owns_recipe(cookbook_id, recipe_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    moved = await svc.recipes.swap_order(body.order, body.id, body.direction)
    return ApiResponse.ok(data={"moved": moved})


@router.post("/{cookbook_id}/recipes", response_model=ApiResponse)
async def create_cookbook_recipe(cookbook_id: int, admin: dict = Depends(require_admin)):
    await _require_cookbook(cookbook_id)
    recipe_id = await get_cookbook_service().recipes.create_cookbook_recipe(cookbook_id)
    return ApiResponse.ok(data={"id": recipe_id}, message="Recipe created")


@router.get("/{cookbook_id}/recipes/{recipe_id}", response_model=ApiResponse)
async def get_cookbook_recipe(cookbook_id: int, recipe_id: int, admin: dict = Depends(require_admin)):
    await _require_cookbook_recipe(cookbook_id, recipe_id)
    recipe = await get_cookbook_service().recipes.get_recipe(recipe_id)
    return ApiResponse.ok(data=get_analysis_layer().annotate(recipe))


@router.delete("/{cookbook_id}/recipes/{recipe_id}", response_model=ApiResponse)
async def delete_cookbook_recipe(cookbook_id: int, recipe_id: int, admin: dict = Depends(require_admin)):
    await _require_cookbook_recipe(cookbook_id, recipe_id)
    await get_cookbook_service().recipes.delete_recipe(recipe_id)
    return ApiResponse.ok(data={"id": recipe_id}, message="Recipe deleted")


async def _add_line(cookbook_id: int, recipe_id: int, kind: str, body: CookbookLineRequest) -> ApiResponse:
    await _require_cookbook_recipe(cookbook_id, recipe_id)
    try:
        line_id = await get_cookbook_service().recipes.add_line(recipe_id, kind, body.item_id, body.quantity)
    except ItemNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return ApiResponse.ok(data={"recipe_id": recipe_id, "line_id": line_id})


async def _remove_line(cookbook_id: int, recipe_id: int, kind: str, line_id: int) -> ApiResponse:
    await _require_cookbook_recipe(cookbook_id, recipe_id)
    if not await get_cookbook_service().recipes.remove_line(recipe_id, kind, line_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Line not found")
    return ApiResponse.ok(data={"recipe_id": recipe_id, "line_id": line_id})


@router.post("/{cookbook_id}/recipes/{recipe_id}/inputs", response_model=ApiResponse)
async def add_input(
    cookbook_id: int, recipe_id: int, body: CookbookLineRequest, admin: dict = Depends(require_admin)
):
    return await _add_line(cookbook_id, recipe_id, "input", body)


@router.delete("/{cookbook_id}/recipes/{recipe_id}/inputs/{line_id}", response_model=ApiResponse)
async def remove_input(cookbook_id: int, recipe_id: int, line_id: int, admin: dict = Depends(require_admin)):
    return await _remove_line(cookbook_id, recipe_id, "input", line_id)


@router.post("/{cookbook_id}/recipes/{recipe_id}/outputs", response_model=ApiResponse)
async def add_output(
    cookbook_id: int, recipe_id: int, body: CookbookLineRequest, admin: dict = Depends(require_admin)
):
    return await _add_line(cookbook_id, recipe_id, "output", body)


@router.delete("/{cookbook_id}/recipes/{recipe_id}/outputs/{line_id}", response_model=ApiResponse)
async def remove_output(cookbook_id: int, recipe_id: int, line_id: int, admin: dict = Depends(require_admin)):
    return await _remove_line(cookbook_id, recipe_id, "output", line_id)
