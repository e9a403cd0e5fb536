"""
Recipe routes
GET    /api/dashboard                                  - active recipes + price stats
GET    /api/recipes?active=1                           - current user's recipes
GET    /api/cook/recipes                               - all recipes of the user
GET    /api/cook/recipes/{id|blank}                    - one recipe
POST   /api/cook/recipes/{id}/toggle                   - toggle active
POST   /api/cook/recipes/{id}/toggle-live              - toggle live
DELETE /api/cook/recipes/{id}                          - delete
POST   /api/cook/recipes/{id|blank}/{inputs|outputs}   - add a line
DELETE /api/cook/recipes/{id}/{inputs|outputs}/{line}  - remove a line
POST   /api/cook/reorder                               - move a recipe up or down

Adding the first line to `blank` creates a guest account for anonymous
visitors. Anonymous edits of existing recipes are refused without one.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from gp_kitchen.layers.analysis import get_analysis_layer
from gp_kitchen.models.response import ApiResponse
from gp_kitchen.routers.auth import ensure_user, get_current_user, get_optional_user
from gp_kitchen.services.item_service import get_item_service
from gp_kitchen.services.recipe_service import ItemNotFoundError, get_recipe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["recipes"])

BLANK = "blank"


class LineRequest(BaseModel):
    item_id: Optional[int] = None
    quantity: int = Field(default=1, ge=1)


class ReorderRequest(BaseModel):
    order: List[int]
    id: int
    direction: str = Field(description="up / down")


def _parse_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipe not found")


async def get_editor(user: Optional[dict] = Depends(get_optional_user)) -> dict:
    """Caller editing an existing recipe; anonymous visitors own none"""
    if user is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return user


async def _owned_recipe_id(raw: str, user: dict) -> int:
    recipe_id = _parse_id(raw)
    if not await get_recipe_service().user_owns_recipe(user["id"], recipe_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return recipe_id


def blank_recipe() -> dict:
    recipe = {"id": BLANK, "active": True, "live": False, "inputs": [], "outputs": []}
    return get_analysis_layer().annotate(recipe)


# ── Browsing ──────────────────────────────────────────────

@router.get("/dashboard", response_model=ApiResponse)
async def dashboard(user: Optional[dict] = Depends(get_optional_user)):
    recipes = []
    if user is not None:
        recipes = await get_recipe_service().list_recipes(user["id"], active_only=True)
    stats = await get_item_service().get_price_stats()
    return ApiResponse.ok(data={"recipes": recipes, "stats": stats})


@router.get("/recipes", response_model=ApiResponse)
async def list_recipes(
    active: bool = Query(default=True, description="only active recipes"),
    user: Optional[dict] = Depends(get_optional_user),
):
    if user is None:
        return ApiResponse.ok(data=[])
    return ApiResponse.ok(data=await get_recipe_service().list_recipes(user["id"], active_only=active))


@router.get("/cook/recipes", response_model=ApiResponse)
async def cook_recipes(user: dict = Depends(get_current_user)):
    return ApiResponse.ok(data=await get_recipe_service().list_recipes(user["id"]))


@router.get("/cook/recipes/{recipe_id}", response_model=ApiResponse)
async def get_recipe(recipe_id: str, user: Optional[dict] = Depends(get_optional_user)):
    if recipe_id == BLANK:
        return ApiResponse.ok(data=blank_recipe())
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in")
    rid = await _owned_recipe_id(recipe_id, user)
    recipe = await get_recipe_service().get_recipe(rid)
    if recipe is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipe not found")
    return ApiResponse.ok(data=get_analysis_layer().annotate(recipe))


# ── Recipe state ──────────────────────────────────────────

@router.post("/cook/recipes/{recipe_id}/toggle", response_model=ApiResponse)
async def toggle_active(recipe_id: str, user: dict = Depends(get_editor)):
    rid = await _owned_recipe_id(recipe_id, user)
    active = await get_recipe_service().toggle_active(rid)
    return ApiResponse.ok(data={"id": rid, "active": active})


@router.post("/cook/recipes/{recipe_id}/toggle-live", response_model=ApiResponse)
async def toggle_live(recipe_id: str, user: dict = Depends(get_editor)):
    rid = await _owned_recipe_id(recipe_id, user)
    live = await get_recipe_service().toggle_live(rid, user["id"])
    return ApiResponse.ok(data={"id": rid, "live": live})


@router.delete("/cook/recipes/{recipe_id}", response_model=ApiResponse)
async def delete_recipe(recipe_id: str, user: dict = Depends(get_editor)):
    rid = await _owned_recipe_id(recipe_id, user)
    await get_recipe_service().delete_recipe(rid)
    return ApiResponse.ok(data={"id": rid}, message="Recipe deleted")


@router.post("/cook/reorder", response_model=ApiResponse)
async def reorder(body: ReorderRequest, user: dict = Depends(get_editor)):
    svc = get_recipe_service()
    for recipe_id in body.order:
        if not await svc.user_owns_recipe(user["id"], recipe_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    moved = await svc.swap_order(body.order, body.id, body.direction)
    return ApiResponse.ok(data={"moved": moved})


# ── Lines ─────────────────────────────────────────────────

async def _add_line(
    recipe_id: str, kind: str, body: LineRequest, response: Response, user: Optional[dict]
) -> ApiResponse:
    """Add a line; on `blank` the recipe (and a guest, if needed) is created once the item checks out"""
    svc = get_recipe_service()
    if recipe_id == BLANK:
        if body.item_id is None:
            return ApiResponse.ok(data={"recipe_id": None}, message="Nothing to add")
        if not await get_item_service().item_exists(body.item_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
        user = await ensure_user(response, user)
        rid = await svc.create_recipe(user["id"])
    else:
        if user is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
        rid = await _owned_recipe_id(recipe_id, user)
        if body.item_id is None:
            return ApiResponse.ok(data={"recipe_id": rid}, message="Nothing to add")

    try:
        line_id = await svc.add_line(rid, kind, body.item_id, body.quantity)
    except ItemNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return ApiResponse.ok(data={"recipe_id": rid, "line_id": line_id})


async def _remove_line(recipe_id: str, kind: str, line_id: int, user: dict) -> ApiResponse:
    rid = await _owned_recipe_id(recipe_id, user)
    removed = await get_recipe_service().remove_line(rid, kind, line_id)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Line not found")
    return ApiResponse.ok(data={"recipe_id": rid, "line_id": line_id})


@router.post("/cook/recipes/{recipe_id}/inputs", response_model=ApiResponse)
async def add_input(
    recipe_id: str,
    body: LineRequest,
    response: Response,
    user: Optional[dict] = Depends(get_optional_user),
):
    return await _add_line(recipe_id, "input", body, response, user)


@router.delete("/cook/recipes/{recipe_id}/inputs/{line_id}", response_model=ApiResponse)
async def remove_input(recipe_id: str, line_id: int, user: dict = Depends(get_editor)):
    return await _remove_line(recipe_id, "input", line_id, user)


@router.post("/cook/recipes/{recipe_id}/outputs", response_model=ApiResponse)
async def add_output(
    recipe_id: str,
    body: LineRequest,
    response: Response,
    user: Optional[dict] = Depends(get_optional_user),
):
    return await _add_line(recipe_id, "output", body, response, user)


@router.delete("/cook/recipes/{recipe_id}/outputs/{line_id}", response_model=ApiResponse)
async def remove_output(recipe_id: str, line_id: int, user: dict = Depends(get_editor)):
    return await _remove_line(recipe_id, "output", line_id, user)
