"""
Recipe service
User-owned recipes with embedded input/output lines, ordering and the live
flag. `RecipeStore` holds the line handling shared with cookbook recipes.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from gp_kitchen.db import next_id, require_mongo_db
from gp_kitchen.layers.analysis import get_analysis_layer
from gp_kitchen.services.item_service import get_item_service

logger = logging.getLogger(__name__)

LINE_KINDS = {"input": "inputs", "output": "outputs"}
DIRECTIONS = ("up", "down")


class ItemNotFoundError(LookupError):
    """Line refers to an item that does not exist"""


def swapped(ids: List[int], target: int, direction: str) -> Optional[List[int]]:
    """
    `ids` with `target` swapped with its neighbour

    None when the target is not in the list or would move out of range.
    """
    if direction not in DIRECTIONS or target not in ids:
        return None
    idx = ids.index(target)
    other = idx - 1 if direction == "up" else idx + 1
    if other < 0 or other >= len(ids):
        return None
    order = list(ids)
    order[idx], order[other] = order[other], order[idx]
    return order


class RecipeStore:
    """Recipe documents in one collection, each owned by `owner_field`"""

    collection = "recipes"
    owner_field = "user_id"

    def __init__(self):
        self._items = get_item_service()
        self._analysis = get_analysis_layer()

    @property
    def _coll(self):
        return require_mongo_db()[self.collection]

    async def _next_sort_order(self, owner_id: int) -> int:
        docs = await self._coll.find(
            {self.owner_field: owner_id}, {"sort_order": 1}
        ).sort("sort_order", -1).limit(1).to_list(length=1)
        return docs[0]["sort_order"] + 1 if docs else 0

    async def _insert(self, owner_id: int, **fields) -> int:
        recipe_id = await next_id(self.collection)
        now = int(time.time())
        doc = {
            "_id": recipe_id,
            self.owner_field: owner_id,
            "sort_order": await self._next_sort_order(owner_id),
            "inputs": [],
            "outputs": [],
            "created_at": now,
            "updated_at": now,
        }
        doc.update(fields)
        await self._coll.insert_one(doc)
        return recipe_id

    async def _enrich(self, doc: dict, with_volumes: bool = False) -> dict:
        recipe = {k: v for k, v in doc.items() if k != "_id"}
        recipe["id"] = doc["_id"]
        recipe["inputs"] = await self._items.enrich_lines(doc.get("inputs", []), with_volumes)
        recipe["outputs"] = await self._items.enrich_lines(doc.get("outputs", []), with_volumes)
        return recipe

    async def get_recipe(self, recipe_id: int) -> Optional[dict]:
        doc = await self._coll.find_one({"_id": recipe_id})
        if not doc:
            return None
        return await self._enrich(doc)

    async def owns(self, owner_id: int, recipe_id: int) -> bool:
        return await self._coll.count_documents(
            {"_id": recipe_id, self.owner_field: owner_id}, limit=1
        ) > 0

    async def delete_recipe(self, recipe_id: int) -> bool:
        result = await self._coll.delete_one({"_id": recipe_id})
        return result.deleted_count > 0

    # ── Lines ─────────────────────────────────────────────

    async def add_line(self, recipe_id: int, kind: str, item_id: int, quantity: int = 1) -> int:
        """Append an input or output line, returns the line id"""
        field = LINE_KINDS[kind]
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        if not await self._items.item_exists(item_id):
            raise ItemNotFoundError(f"Item {item_id} not found")
        line_id = await next_id("recipe_lines")
        await self._coll.update_one(
            {"_id": recipe_id},
            {
                "$push": {field: {"id": line_id, "item_id": item_id, "quantity": quantity}},
                "$set": {"updated_at": int(time.time())},
            },
        )
        return line_id

    async def remove_line(self, recipe_id: int, kind: str, line_id: int) -> bool:
        field = LINE_KINDS[kind]
        result = await self._coll.update_one(
            {"_id": recipe_id, f"{field}.id": line_id},
            {
                "$pull": {field: {"id": line_id}},
                "$set": {"updated_at": int(time.time())},
            },
        )
        return result.modified_count > 0

    # ── Ordering ──────────────────────────────────────────

    async def renumber(self, ids: List[int]) -> None:
        for order, recipe_id in enumerate(ids):
            await self._coll.update_one({"_id": recipe_id}, {"$set": {"sort_order": order}})

    async def swap_order(self, ids: List[int], target: int, direction: str) -> bool:
        """Swap `target` with its neighbour in `ids` and renumber, True when moved"""
        order = swapped(ids, target, direction)
        if order is None:
            return False
        await self.renumber(order)
        return True


class RecipeService(RecipeStore):
    """User recipes"""

    async def create_recipe(self, user_id: int) -> int:
        recipe_id = await self._insert(user_id, active=True, live=False)
        logger.debug(f"user {user_id} created recipe {recipe_id}")
        return recipe_id

    async def list_recipes(self, user_id: int, active_only: bool = False) -> List[Dict[str, Any]]:
        """Recipes in display order with volumes and profit under both modes"""
        query: Dict[str, Any] = {"user_id": user_id}
        if active_only:
            query["active"] = True
        docs = await self._coll.find(query).sort([("sort_order", 1), ("_id", 1)]).to_list(length=None)
        recipes = []
        for doc in docs:
            recipe = await self._enrich(doc, with_volumes=True)
            recipes.append(self._analysis.annotate(recipe))
        return recipes

    async def user_owns_recipe(self, user_id: int, recipe_id: int) -> bool:
        return await self.owns(user_id, recipe_id)

    async def toggle_active(self, recipe_id: int) -> Optional[bool]:
        """Flip `active`, returns the new value"""
        doc = await self._coll.find_one({"_id": recipe_id}, {"active": 1})
        if not doc:
            return None
        active = not doc.get("active", True)
        await self._coll.update_one(
            {"_id": recipe_id}, {"$set": {"active": active, "updated_at": int(time.time())}}
        )
        return active

    async def toggle_live(self, recipe_id: int, user_id: int) -> Optional[bool]:
        """
        Flip `live` and renumber the user's recipes

        The toggled recipe lands at the end of the live block when switched
        on and at the top of the dormant block when switched off.
        """
        doc = await self._coll.find_one({"_id": recipe_id, "user_id": user_id}, {"live": 1})
        if not doc:
            return None
        live = not doc.get("live", False)

        current = await self._coll.find(
            {"user_id": user_id}, {"live": 1, "sort_order": 1}
        ).to_list(length=None)
        current.sort(key=lambda r: (not r.get("live", False), r.get("sort_order", 0), r["_id"]))
        others = [r for r in current if r["_id"] != recipe_id]
        order = (
            [r["_id"] for r in others if r.get("live")]
            + [recipe_id]
            + [r["_id"] for r in others if not r.get("live")]
        )

        await self._coll.update_one(
            {"_id": recipe_id}, {"$set": {"live": live, "updated_at": int(time.time())}}
        )
        await self.renumber(order)
        return live

    async def swap_order(self, ids: List[int], target: int, direction: str) -> bool:
        """Neighbour swap, refused when the two recipes differ in `live`"""
        order = swapped(ids, target, direction)
        if order is None:
            return False
        idx = ids.index(target)
        neighbour = order[idx]
        docs = await self._coll.find(
            {"_id": {"$in": [target, neighbour]}}, {"live": 1}
        ).to_list(length=None)
        live = {d["_id"]: bool(d.get("live")) for d in docs}
        if live.get(target) != live.get(neighbour):
            return False
        await self.renumber(order)
        return True

    async def import_recipe(self, user_id: int, inputs: List[dict], outputs: List[dict], sort_order: int) -> int:
        """Copy of another recipe's lines as a new active, dormant user recipe"""
        recipe_id = await self._insert(user_id, active=True, live=False)
        lines = {"inputs": [], "outputs": []}
        for field, source in (("inputs", inputs), ("outputs", outputs)):
            for line in source:
                lines[field].append({
                    "id": await next_id("recipe_lines"),
                    "item_id": line["item_id"],
                    "quantity": line.get("quantity", 1),
                })
        await self._coll.update_one(
            {"_id": recipe_id}, {"$set": {"sort_order": sort_order, **lines}}
        )
        return recipe_id

    async def next_sort_order(self, user_id: int) -> int:
        return await self._next_sort_order(user_id)


# ── Module-level singleton ───────────────────────────────
_recipe_service: Optional[RecipeService] = None


def get_recipe_service() -> RecipeService:
    global _recipe_service
    if _recipe_service is None:
        _recipe_service = RecipeService()
    return _recipe_service
