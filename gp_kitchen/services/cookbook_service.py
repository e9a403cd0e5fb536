"""
Cookbook service
Admin-curated recipe collections that users import into their own recipes.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from gp_kitchen.db import next_id, require_mongo_db
from gp_kitchen.services.recipe_service import RecipeStore, get_recipe_service, swapped

logger = logging.getLogger(__name__)


class CookbookRecipeStore(RecipeStore):
    """Recipes belonging to a cookbook"""

    collection = "cookbook_recipes"
    owner_field = "cookbook_id"

    async def create_cookbook_recipe(self, cookbook_id: int) -> int:
        return await self._insert(cookbook_id)

    async def list_cookbook_recipes(self, cookbook_id: int) -> List[Dict[str, Any]]:
        docs = await self._coll.find(
            {"cookbook_id": cookbook_id}
        ).sort([("sort_order", 1), ("_id", 1)]).to_list(length=None)
        recipes = []
        for doc in docs:
            recipe = await self._enrich(doc, with_volumes=True)
            recipes.append(self._analysis.annotate(recipe))
        return recipes


class CookbookService:
    """Cookbooks, their recipes and imports"""

    def __init__(self):
        self.recipes = CookbookRecipeStore()

    # ── Cookbooks ─────────────────────────────────────────

    async def create_cookbook(self, name: str, description: str = "", created_by: Optional[int] = None) -> int:
        name = (name or "").strip()
        if not name:
            raise ValueError("Name is required")
        db = require_mongo_db()
        last = await db["cookbooks"].find({}, {"sort_order": 1}).sort("sort_order", -1).limit(1).to_list(length=1)
        cookbook_id = await next_id("cookbooks")
        now = int(time.time())
        await db["cookbooks"].insert_one({
            "_id": cookbook_id,
            "name": name,
            "description": description or "",
            "sort_order": last[0]["sort_order"] + 1 if last else 0,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"cookbook {cookbook_id} created: {name}")
        return cookbook_id

    async def update_cookbook(self, cookbook_id: int, name: str, description: Optional[str] = None) -> bool:
        name = (name or "").strip()
        if not name:
            raise ValueError("Name is required")
        update: Dict[str, Any] = {"name": name, "updated_at": int(time.time())}
        if description is not None:
            update["description"] = description
        db = require_mongo_db()
        result = await db["cookbooks"].update_one({"_id": cookbook_id}, {"$set": update})
        return result.matched_count > 0

    async def delete_cookbook(self, cookbook_id: int) -> bool:
        db = require_mongo_db()
        result = await db["cookbooks"].delete_one({"_id": cookbook_id})
        if result.deleted_count:
            await db["cookbook_recipes"].delete_many({"cookbook_id": cookbook_id})
            await db["cookbook_imports"].delete_many({"cookbook_id": cookbook_id})
            logger.info(f"cookbook {cookbook_id} deleted")
        return result.deleted_count > 0

    async def get_cookbook(self, cookbook_id: int) -> Optional[dict]:
        db = require_mongo_db()
        doc = await db["cookbooks"].find_one({"_id": cookbook_id})
        if not doc:
            return None
        cookbook = _cookbook_to_dict(doc)
        cookbook["import_count"] = await db["cookbook_imports"].count_documents({"cookbook_id": cookbook_id})
        return cookbook

    async def list_cookbooks(self, limit: int = 50, with_recipes: bool = True) -> List[dict]:
        """Cookbooks in display order with import and recipe counts"""
        db = require_mongo_db()
        docs = await db["cookbooks"].find().sort([("sort_order", 1), ("_id", 1)]).limit(limit).to_list(length=None)
        creators = {d.get("created_by") for d in docs if d.get("created_by") is not None}
        users = await db["users"].find({"_id": {"$in": list(creators)}}, {"username": 1}).to_list(length=None)
        usernames = {u["_id"]: u["username"] for u in users}

        cookbooks = []
        for doc in docs:
            cookbook = _cookbook_to_dict(doc)
            cookbook["import_count"] = await db["cookbook_imports"].count_documents({"cookbook_id": doc["_id"]})
            cookbook["created_by_username"] = usernames.get(doc.get("created_by"))
            if with_recipes:
                cookbook["recipes"] = await self.recipes.list_cookbook_recipes(doc["_id"])
                cookbook["total_recipes"] = len(cookbook["recipes"])
            else:
                cookbook["total_recipes"] = await db["cookbook_recipes"].count_documents({"cookbook_id": doc["_id"]})
            cookbooks.append(cookbook)
        return cookbooks

    async def swap_cookbook_order(self, ids: List[int], target: int, direction: str) -> bool:
        order = swapped(ids, target, direction)
        if order is None:
            return False
        db = require_mongo_db()
        for position, cookbook_id in enumerate(order):
            await db["cookbooks"].update_one({"_id": cookbook_id}, {"$set": {"sort_order": position}})
        return True

    # ── Cookbook recipes ──────────────────────────────────

    async def cookbook_owns_recipe(self, cookbook_id: int, recipe_id: int) -> bool:
        return await self.recipes.owns(cookbook_id, recipe_id)

    # ── Import ────────────────────────────────────────────

    async def import_cookbook(self, cookbook_id: int, user_id: int, recipe_ids: Iterable[Any]) -> int:
        """
        Copy the selected cookbook recipes into the user's recipes

        The import is recorded once per (cookbook, user). Ids that are not
        numeric or not part of the cookbook are ignored. Returns the number
        of recipes copied.
        """
        db = require_mongo_db()
        await db["cookbook_imports"].update_one(
            {"_id": f"{cookbook_id}:{user_id}"},
            {"$setOnInsert": {
                "cookbook_id": cookbook_id,
                "user_id": user_id,
                "imported_at": int(time.time()),
            }},
            upsert=True,
        )

        wanted = []
        for raw in recipe_ids:
            try:
                wanted.append(int(raw))
            except (TypeError, ValueError):
                continue

        user_recipes = get_recipe_service()
        sort_order = await user_recipes.next_sort_order(user_id)
        imported = 0
        for recipe_id in wanted:
            source = await db["cookbook_recipes"].find_one({"_id": recipe_id, "cookbook_id": cookbook_id})
            if not source:
                continue
            await user_recipes.import_recipe(
                user_id, source.get("inputs", []), source.get("outputs", []), sort_order
            )
            sort_order += 1
            imported += 1

        logger.info(f"user {user_id} imported {imported} recipes from cookbook {cookbook_id}")
        return imported


def _cookbook_to_dict(doc: dict) -> dict:
    cookbook = {k: v for k, v in doc.items() if k != "_id"}
    cookbook["id"] = doc["_id"]
    return cookbook


# ── Module-level singleton ───────────────────────────────
_cookbook_service: Optional[CookbookService] = None


def get_cookbook_service() -> CookbookService:
    global _cookbook_service
    if _cookbook_service is None:
        _cookbook_service = CookbookService()
    return _cookbook_service
