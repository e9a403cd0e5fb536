"""
Service tests against an in-memory MongoDB

Covers:
  - accounts (passwords, sessions, registration, guests, cleanup)
  - items and prices (mapping, price merge rules, volumes, search, history)
  - recipes (lines, ordering, live flag)
  - cookbooks (CRUD, cascades, import)
  - price updater, scheduler and the poller command
"""

import logging
import re
import time
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from conftest import BOW_STRING, BUCKET, FLAX, MAPPING, MILK, run


# ─────────────────────────────────────────────────────────
# 1. Accounts
# ─────────────────────────────────────────────────────────

class TestPasswords:
    def setup_method(self):
        from gp_kitchen.services.auth_service import AuthService
        self.svc = AuthService()

    def test_hash_roundtrip(self):
        hashed = self.svc.hash_password("hunter22")
        assert hashed.startswith("pbkdf2_sha256$")
        assert self.svc.verify_password("hunter22", hashed)
        assert not self.svc.verify_password("hunter23", hashed)

    def test_salted(self):
        assert self.svc.hash_password("same-pass") != self.svc.hash_password("same-pass")

    def test_malformed_hash(self):
        assert not self.svc.verify_password("x", "garbage")
        assert not self.svc.verify_password("x", None)
        assert not self.svc.verify_password("x", "md5$1$salt$abc")


class TestSessions:
    def setup_method(self):
        from gp_kitchen.services.auth_service import AuthService
        self.svc = AuthService()

    def test_token_roundtrip(self):
        token, csrf = self.svc.create_session_token(42)
        payload = self.svc.verify_token(token)
        assert payload.sub == "42"
        assert payload.csrf == csrf
        assert len(csrf) == 32

    def test_expires_in_thirty_days(self):
        token, _ = self.svc.create_session_token(1)
        payload = self.svc.verify_token(token)
        assert abs(payload.exp - (time.time() + 30 * 86400)) < 60

    def test_foreign_signature(self):
        import jwt
        forged = jwt.encode(
            {"sub": "1", "exp": int(time.time()) + 3600, "csrf": "x"}, "another-secret-that-is-long-enough-0123456789", algorithm="HS256"
        )
        assert self.svc.verify_token(forged) is None

    def test_garbage_token(self):
        assert self.svc.verify_token("not-a-token") is None

    def test_expired_token(self):
        from gp_kitchen.config import settings
        with patch.object(settings, "SESSION_EXPIRE_DAYS", -1):
            token, _ = self.svc.create_session_token(1)
        assert self.svc.verify_token(token) is None


class TestRegistrationRules:
    @pytest.mark.parametrize("username,password,confirm,message", [
        ("ab", "secret1", "secret1", "Username must be 3-20 characters"),
        ("a" * 21, "secret1", "secret1", "Username must be 3-20 characters"),
        ("bad name", "secret1", "secret1", "Username can only contain letters, numbers, and underscores"),
        ("alice\n", "secret1", "secret1", "Username can only contain letters, numbers, and underscores"),
        ("admin\r\n", "secret1", "secret1", "Username can only contain letters, numbers, and underscores"),
        ("good_name", "short", "short", "Password must be at least 6 characters"),
        ("good_name", "secret1", "secret2", "Passwords do not match"),
    ])
    def test_rejected(self, username, password, confirm, message):
        from gp_kitchen.services.auth_service import AccountError, AuthService
        with pytest.raises(AccountError, match=re.escape(message)):
            AuthService.validate_registration(username, password, confirm)

    def test_accepted(self):
        from gp_kitchen.services.auth_service import AuthService
        AuthService.validate_registration("Zezima_99", "secret1", "secret1")


class TestAuthService:
    def setup_method(self):
        from gp_kitchen.services.auth_service import AuthService
        self.svc = AuthService()

    def test_create_and_authenticate(self, mongo_db):
        async def scenario():
            uid = await self.svc.create_user("alice", "secret1")
            ok = await self.svc.authenticate("alice", "secret1")
            bad = await self.svc.authenticate("alice", "wrong-pass")
            missing = await self.svc.authenticate("bob", "secret1")
            return uid, ok, bad, missing

        uid, ok, bad, missing = run(scenario())
        assert ok["_id"] == uid
        assert bad is None and missing is None

    def test_integer_ids(self, mongo_db):
        async def scenario():
            return [await self.svc.create_user(name, "secret1") for name in ("a_1", "a_2", "a_3")]

        ids = run(scenario())
        assert ids == [ids[0], ids[0] + 1, ids[0] + 2]

    def test_guest_account(self, mongo_db):
        async def scenario():
            uid = await self.svc.create_guest_user()
            user = await self.svc.get_user(uid)
            return user, await self.svc.authenticate(user["username"], "")

        user, login = run(scenario())
        assert re.fullmatch(r"guest_[A-Za-z0-9]{12}", user["username"])
        assert user["is_guest"] is True
        assert user["password_hash"] is None
        assert login is None

    def test_register_duplicate(self, mongo_db):
        from gp_kitchen.services.auth_service import AccountError

        async def scenario():
            await self.svc.register("alice", "secret1")
            await self.svc.register("alice", "secret2")

        with pytest.raises(AccountError, match="Username already taken"):
            run(scenario())

    def test_register_guest_upgrades_in_place(self, mongo_db):
        async def scenario():
            uid = await self.svc.create_guest_user()
            await mongo_db["recipes"].insert_one({"_id": 1, "user_id": uid})
            await self.svc.register_guest(uid, "carol", "secret1")
            user = await self.svc.authenticate("carol", "secret1")
            recipes = await mongo_db["recipes"].count_documents({"user_id": uid})
            return uid, user, recipes

        uid, user, recipes = run(scenario())
        assert user["_id"] == uid
        assert user["is_guest"] is False
        assert recipes == 1

    def test_update_password_errors(self, mongo_db):
        from gp_kitchen.services.auth_service import AccountError

        async def scenario():
            uid = await self.svc.create_user("dave", "secret1")
            guest = await self.svc.create_guest_user()
            errors = []
            for args in ((9999, "x", "secret9"), (guest, "x", "secret9"), (uid, "wrong", "secret9")):
                try:
                    await self.svc.update_password(*args)
                except AccountError as exc:
                    errors.append(str(exc))
            await self.svc.update_password(uid, "secret1", "secret9")
            return errors, await self.svc.authenticate("dave", "secret9")

        errors, user = run(scenario())
        assert errors == [
            "User not found",
            "Cannot change password for guest accounts",
            "Current password is incorrect",
        ]
        assert user is not None

    def test_cleanup_inactive_guests(self, mongo_db):
        old = int(time.time()) - 31 * 86400

        async def scenario():
            stale = await self.svc.create_guest_user()
            fresh = await self.svc.create_guest_user()
            member = await self.svc.create_user("erin", "secret1")
            await mongo_db["users"].update_many(
                {"_id": {"$in": [stale, member]}}, {"$set": {"last_active": old}}
            )
            await mongo_db["recipes"].insert_many([
                {"_id": 1, "user_id": stale},
                {"_id": 2, "user_id": fresh},
            ])
            await mongo_db["cookbook_imports"].insert_one({"_id": "1:%d" % stale, "cookbook_id": 1, "user_id": stale})

            would = await self.svc.cleanup_inactive_guests(30, dry_run=True)
            still_there = await mongo_db["users"].count_documents({})
            deleted = await self.svc.cleanup_inactive_guests(30)
            remaining = [u["_id"] for u in await mongo_db["users"].find().to_list(length=None)]
            recipes = [r["_id"] for r in await mongo_db["recipes"].find().to_list(length=None)]
            imports = await mongo_db["cookbook_imports"].count_documents({})
            return stale, fresh, member, would, still_there, deleted, remaining, recipes, imports

        stale, fresh, member, would, still_there, deleted, remaining, recipes, imports = run(scenario())
        assert would == 1 and still_there == 3
        assert deleted == 1
        assert sorted(remaining) == sorted([fresh, member])
        assert recipes == [2]
        assert imports == 0

    def test_ensure_admin(self, mongo_db):
        async def scenario():
            none = await self.svc.ensure_admin()
            first = await self.svc.ensure_admin("admin-pass")
            second = await self.svc.ensure_admin("other-pass")
            admin = await self.svc.authenticate("admin", "admin-pass")
            return none, first, second, admin

        none, first, second, admin = run(scenario())
        assert none is None
        assert first == second
        assert admin["is_admin"] is True


# ─────────────────────────────────────────────────────────
# 2. Items and prices
# ─────────────────────────────────────────────────────────

class TestItemService:
    def setup_method(self):
        from gp_kitchen.services.item_service import ItemService
        self.svc = ItemService()

    def test_item_with_price(self, seeded):
        item = run(self.svc.get_item(MILK))
        assert item["id"] == MILK
        assert item["name"] == "Bucket of milk"
        assert item["ge_limit"] == 100
        assert item["high_price"] == 200
        assert item["low_price"] == 150
        assert item["vol_24h_high"] is None

    def test_missing_item(self, seeded):
        assert run(self.svc.get_item(424242)) is None

    def test_coins_fixed_price(self, seeded):
        run(self.svc.bulk_upsert_prices({"995": {"high": 7, "low": 3}}))
        coins = run(self.svc.get_item(995))
        assert coins["name"] == "Coins"
        assert coins["high_price"] == 1 and coins["low_price"] == 1

    def test_unknown_items_skipped(self, seeded):
        written = run(self.svc.bulk_upsert_prices({"424242": {"high": 1, "low": 1}, str(FLAX): {"high": 61}}))
        assert written == 1
        assert run(seeded["item_prices"].find_one({"_id": 424242})) is None

    def test_null_prices_keep_previous(self, seeded):
        run(self.svc.bulk_upsert_prices({str(BUCKET): {"high": None, "highTime": None, "low": 9, "lowTime": 1700000100}}))
        item = run(self.svc.get_item(BUCKET))
        assert item["high_price"] == 10
        assert item["high_time"] == 1700000000
        assert item["low_price"] == 9

    def test_5m_averages(self, seeded):
        run(self.svc.bulk_upsert_5m_prices({
            str(FLAX): {"avgHighPrice": 62, "highPriceVolume": 1000, "avgLowPrice": 58, "lowPriceVolume": None},
        }))
        doc = run(seeded["item_prices"].find_one({"_id": FLAX}))
        assert doc["avg_high_price"] == 62
        assert doc["avg_low_price"] == 58
        assert doc["high_volume"] == 1000
        assert "low_volume" not in doc
        assert doc["high_price"] == 60

    def test_volume_windows_independent(self, seeded):
        run(self.svc.upsert_volumes("24h", {FLAX: {"high": 2400, "low": 1200}}))
        run(self.svc.upsert_volumes("5m", {FLAX: {"high": 5, "low": 3}}))
        doc = run(seeded["item_volumes"].find_one({"_id": FLAX}))
        assert (doc["vol_24h_high"], doc["vol_24h_low"]) == (2400, 1200)
        assert (doc["vol_5m_high"], doc["vol_5m_low"]) == (5, 3)
        assert "vol_4h_high" not in doc

    def test_unknown_volume_window(self, seeded):
        with pytest.raises(ValueError):
            run(self.svc.upsert_volumes("1w", {}))

    def test_search_case_insensitive_ordered(self, seeded):
        names = [i["name"] for i in run(self.svc.search_items("BUCKET"))]
        assert names == ["Bucket", "Bucket of milk"]

    def test_search_escapes_regex(self, seeded):
        assert run(self.svc.search_items("(bucket")) == []

    def test_search_limit(self, seeded):
        assert len(run(self.svc.search_items("b", limit=1))) == 1

    def test_price_stats(self, seeded):
        stats = run(self.svc.get_price_stats())
        # four seeded items plus coins
        assert stats["total_items"] == 5
        assert stats["items_with_high"] == 5
        assert stats["last_update"] is not None

    def test_enrich_lines_drops_unknown_items(self, seeded):
        lines = [
            {"id": 1, "item_id": BUCKET, "quantity": 2},
            {"id": 2, "item_id": 424242, "quantity": 1},
        ]
        enriched = run(self.svc.enrich_lines(lines, with_volumes=True))
        assert len(enriched) == 1
        assert enriched[0]["name"] == "Bucket"
        assert enriched[0]["high_price"] == 10
        assert "vol_4h_low" in enriched[0]

    def test_history_cached(self, seeded):
        self.svc._acq = MagicMock()
        self.svc._acq.get_timeseries.return_value = {"data": [{"timestamp": 1, "avgHighPrice": 5}]}
        first = run(self.svc.get_price_history(BUCKET, "1h"))
        second = run(self.svc.get_price_history(BUCKET, "1h"))
        assert first == second == {"data": [{"timestamp": 1, "avgHighPrice": 5}]}
        self.svc._acq.get_timeseries.assert_called_once_with(BUCKET, "1h")

    def test_history_invalid_timestep(self, seeded):
        with pytest.raises(ValueError, match="Invalid timestep"):
            run(self.svc.get_price_history(BUCKET, "2h"))


# ─────────────────────────────────────────────────────────
# 3. Recipes
# ─────────────────────────────────────────────────────────

class TestRecipeService:
    def setup_method(self):
        from gp_kitchen.services.recipe_service import RecipeService
        self.svc = RecipeService()

    def _recipes(self, count, user_id=1):
        async def scenario():
            return [await self.svc.create_recipe(user_id) for _ in range(count)]
        return run(scenario())

    def _order(self, user_id=1):
        docs = run(self.svc._coll.find({"user_id": user_id}).sort("sort_order", 1).to_list(length=None))
        return [d["_id"] for d in docs]

    def test_sort_order_appends(self, seeded):
        ids = self._recipes(3)
        docs = run(seeded["recipes"].find().sort("_id", 1).to_list(length=None))
        assert [d["sort_order"] for d in docs] == [0, 1, 2]
        assert all(d["active"] and not d["live"] for d in docs)
        assert self._order() == ids

    def test_lines_and_profit(self, seeded):
        rid = self._recipes(1)[0]
        run(self.svc.add_line(rid, "input", BUCKET, 2))
        run(self.svc.add_line(rid, "output", MILK, 2))
        recipes = run(self.svc.list_recipes(1))
        recipe = recipes[0]
        assert recipe["id"] == rid
        assert [i["name"] for i in recipe["inputs"]] == ["Bucket"]
        # instant: 2 * 10 in, 2 * 150 out, tax 6
        assert recipe["input_cost"] == 20
        assert recipe["output_revenue"] == 300
        assert recipe["total_tax"] == 6
        assert recipe["profit"] == 274
        assert recipe["modes"]["patient"]["profit"] == 400 - 8 - 16

    def test_add_line_unknown_item(self, seeded):
        from gp_kitchen.services.recipe_service import ItemNotFoundError
        rid = self._recipes(1)[0]
        with pytest.raises(ItemNotFoundError):
            run(self.svc.add_line(rid, "input", 424242))

    def test_add_line_bad_quantity(self, seeded):
        rid = self._recipes(1)[0]
        with pytest.raises(ValueError):
            run(self.svc.add_line(rid, "input", BUCKET, 0))

    def test_remove_line_scoped_to_recipe(self, seeded):
        first, second = self._recipes(2)
        line_id = run(self.svc.add_line(first, "input", BUCKET))
        assert run(self.svc.remove_line(second, "input", line_id)) is False
        assert run(self.svc.remove_line(first, "output", line_id)) is False
        assert run(self.svc.remove_line(first, "input", line_id)) is True
        assert run(self.svc.get_recipe(first))["inputs"] == []

    def test_active_filter(self, seeded):
        first, second = self._recipes(2)
        assert run(self.svc.toggle_active(first)) is False
        active = run(self.svc.list_recipes(1, active_only=True))
        assert [r["id"] for r in active] == [second]
        assert len(run(self.svc.list_recipes(1))) == 2

    def test_toggle_live_reorders(self, seeded):
        a, b, c = self._recipes(3)
        assert run(self.svc.toggle_live(c, 1)) is True
        assert self._order() == [c, a, b]
        assert run(self.svc.toggle_live(b, 1)) is True
        assert self._order() == [c, b, a]
        # switched off: top of the dormant block
        assert run(self.svc.toggle_live(c, 1)) is False
        assert self._order() == [b, c, a]

    def test_toggle_live_wrong_user(self, seeded):
        rid = self._recipes(1, user_id=1)[0]
        assert run(self.svc.toggle_live(rid, 2)) is None

    def test_swap_respects_live(self, seeded):
        a, b, c = self._recipes(3)
        run(self.svc.toggle_live(c, 1))
        order = self._order()
        assert run(self.svc.swap_order(order, a, "up")) is False
        assert run(self.svc.swap_order(order, a, "down")) is True
        assert self._order() == [c, b, a]

    def test_swap_out_of_range(self, seeded):
        a, b = self._recipes(2)
        assert run(self.svc.swap_order([a, b], a, "up")) is False
        assert run(self.svc.swap_order([a, b], b, "down")) is False
        assert run(self.svc.swap_order([a, b], 999, "up")) is False
        assert run(self.svc.swap_order([a, b], a, "sideways")) is False

    def test_ownership_and_delete(self, seeded):
        rid = self._recipes(1, user_id=1)[0]
        assert run(self.svc.user_owns_recipe(1, rid)) is True
        assert run(self.svc.user_owns_recipe(2, rid)) is False
        assert run(self.svc.delete_recipe(rid)) is True
        assert run(self.svc.get_recipe(rid)) is None


class TestSwapped:
    def test_swaps_neighbour(self):
        from gp_kitchen.services.recipe_service import swapped
        assert swapped([1, 2, 3], 2, "up") == [2, 1, 3]
        assert swapped([1, 2, 3], 2, "down") == [1, 3, 2]

    def test_no_move(self):
        from gp_kitchen.services.recipe_service import swapped
        assert swapped([1, 2, 3], 1, "up") is None
        assert swapped([1, 2, 3], 3, "down") is None
        assert swapped([1, 2, 3], 4, "up") is None


# ─────────────────────────────────────────────────────────
# 4. Cookbooks
# ─────────────────────────────────────────────────────────

class TestCookbookService:
    def setup_method(self):
        from gp_kitchen.services.cookbook_service import CookbookService
        from gp_kitchen.services.recipe_service import RecipeService
        self.svc = CookbookService()
        self.user_recipes = RecipeService()

    def test_name_required(self, seeded):
        with pytest.raises(ValueError, match="Name is required"):
            run(self.svc.create_cookbook("   "))

    def test_create_update_order(self, seeded):
        async def scenario():
            first = await self.svc.create_cookbook("Skilling", "Money makers")
            second = await self.svc.create_cookbook("Herblore")
            await self.svc.update_cookbook(second, "Herblore II", "Potions")
            await self.svc.swap_cookbook_order([first, second], second, "up")
            return first, second, await self.svc.list_cookbooks()

        first, second, cookbooks = run(scenario())
        assert [c["id"] for c in cookbooks] == [second, first]
        assert cookbooks[0]["name"] == "Herblore II"
        assert cookbooks[0]["description"] == "Potions"
        assert cookbooks[1]["description"] == "Money makers"

    def test_list_counts(self, seeded):
        async def scenario():
            await seeded["users"].insert_one({"_id": 77, "username": "admin"})
            cid = await self.svc.create_cookbook("Crafting", created_by=77)
            rid = await self.svc.recipes.create_cookbook_recipe(cid)
            await self.svc.recipes.add_line(rid, "input", FLAX)
            await self.svc.recipes.add_line(rid, "output", BOW_STRING)
            await self.svc.import_cookbook(cid, 5, [])
            return await self.svc.list_cookbooks()

        cookbook = run(scenario())[0]
        assert cookbook["created_by_username"] == "admin"
        assert cookbook["total_recipes"] == 1
        assert cookbook["import_count"] == 1
        # instant: 60 in, 100 out, tax 2
        assert cookbook["recipes"][0]["profit"] == 38

    def test_delete_cascades(self, seeded):
        async def scenario():
            cid = await self.svc.create_cookbook("Temp")
            await self.svc.recipes.create_cookbook_recipe(cid)
            await self.svc.import_cookbook(cid, 5, [])
            deleted = await self.svc.delete_cookbook(cid)
            return (
                deleted,
                await seeded["cookbook_recipes"].count_documents({}),
                await seeded["cookbook_imports"].count_documents({}),
                await self.svc.delete_cookbook(cid),
            )

        assert run(scenario()) == (True, 0, 0, False)

    def test_import(self, seeded):
        async def scenario():
            cid = await self.svc.create_cookbook("Crafting")
            other = await self.svc.create_cookbook("Other")
            r1 = await self.svc.recipes.create_cookbook_recipe(cid)
            await self.svc.recipes.add_line(r1, "input", FLAX, 3)
            await self.svc.recipes.add_line(r1, "output", BOW_STRING, 3)
            r2 = await self.svc.recipes.create_cookbook_recipe(cid)
            await self.svc.recipes.add_line(r2, "input", BUCKET)
            foreign = await self.svc.recipes.create_cookbook_recipe(other)

            existing = await self.user_recipes.create_recipe(9)
            count = await self.svc.import_cookbook(cid, 9, [str(r1), "abc", foreign, r2])
            again = await self.svc.import_cookbook(cid, 9, [r2])
            imports = await seeded["cookbook_imports"].count_documents({"cookbook_id": cid})
            recipes = await self.user_recipes.list_recipes(9)
            source = await self.svc.recipes.get_recipe(r1)
            return existing, count, again, imports, recipes, source

        existing, count, again, imports, recipes, source = run(scenario())
        assert count == 2
        assert again == 1
        assert imports == 1
        assert [r["sort_order"] for r in recipes] == [0, 1, 2, 3]
        assert recipes[0]["id"] == existing
        copied = recipes[1]
        assert copied["active"] is True and copied["live"] is False
        assert [(i["item_id"], i["quantity"]) for i in copied["inputs"]] == [(FLAX, 3)]
        assert [(o["item_id"], o["quantity"]) for o in copied["outputs"]] == [(BOW_STRING, 3)]
        assert copied["inputs"][0]["id"] != source["inputs"][0]["id"]

    def test_cookbook_owns_recipe(self, seeded):
        async def scenario():
            cid = await self.svc.create_cookbook("A")
            other = await self.svc.create_cookbook("B")
            rid = await self.svc.recipes.create_cookbook_recipe(cid)
            return (
                await self.svc.cookbook_owns_recipe(cid, rid),
                await self.svc.cookbook_owns_recipe(other, rid),
            )

        assert run(scenario()) == (True, False)


# ─────────────────────────────────────────────────────────
# 5. Price updater and scheduler
# ─────────────────────────────────────────────────────────

HOUR = 1_700_000_000 // 3600 * 3600


class TestPriceUpdater:
    def setup_method(self):
        from gp_kitchen.services.price_updater import PriceUpdater
        self.updater = PriceUpdater()
        self.updater._acq = MagicMock()

    def test_hour_start(self):
        from gp_kitchen.services.price_updater import hour_start
        assert hour_start(HOUR + 1234) == HOUR

    def test_update_mappings(self, mongo_db):
        self.updater._acq.get_mapping.return_value = MAPPING
        assert run(self.updater.update_mappings()) == len(MAPPING)
        assert run(mongo_db["items"].count_documents({})) == len(MAPPING)

    def test_update_latest(self, seeded):
        self.updater._acq.get_latest.return_value = {str(BUCKET): {"high": 12, "low": 11}}
        assert run(self.updater.update_latest()) == 1
        assert run(seeded["item_prices"].find_one({"_id": BUCKET}))["high_price"] == 12

    def test_update_5m_volumes(self, seeded):
        self.updater._acq.get_5m.return_value = {
            str(FLAX): {"avgHighPrice": 61, "highPriceVolume": 900, "avgLowPrice": 57, "lowPriceVolume": 450},
        }
        assert run(self.updater.update_5m_volumes()) == 1
        volumes = run(seeded["item_volumes"].find_one({"_id": FLAX}))
        assert (volumes["vol_5m_high"], volumes["vol_5m_low"]) == (900, 450)
        assert run(seeded["item_prices"].find_one({"_id": FLAX}))["avg_high_price"] == 61

    def test_update_4h_volumes_skips_failed_samples(self, seeded):
        from gp_kitchen.layers.acquisition import AcquisitionError

        def get_1h(ts):
            if ts == HOUR - 3 * 3600:
                raise AcquisitionError("timeout")
            return {str(FLAX): {"highPriceVolume": 100, "lowPriceVolume": 10}}

        self.updater._acq.get_1h.side_effect = get_1h
        with patch("gp_kitchen.services.price_updater.hour_start", return_value=HOUR):
            run(self.updater.update_4h_volumes())

        requested = [c.args[0] for c in self.updater._acq.get_1h.call_args_list]
        assert requested == [HOUR - 3600, HOUR - 7200, HOUR - 10800, HOUR - 14400]
        volumes = run(seeded["item_volumes"].find_one({"_id": FLAX}))
        assert (volumes["vol_4h_high"], volumes["vol_4h_low"]) == (300, 30)

    def test_update_24h_volumes(self, seeded):
        samples = {
            HOUR - 1 * 3600: {str(FLAX): {"highPriceVolume": 100, "lowPriceVolume": 50}},
            HOUR - 7 * 3600: {str(FLAX): {"highPriceVolume": 200, "lowPriceVolume": 50}},
            HOUR - 13 * 3600: {str(BUCKET): {"highPriceVolume": 10, "lowPriceVolume": 0}},
            HOUR - 19 * 3600: {},
        }
        self.updater._acq.get_1h.side_effect = lambda ts: samples[ts]
        with patch("gp_kitchen.services.price_updater.hour_start", return_value=HOUR):
            run(self.updater.update_24h_volumes())

        flax = run(seeded["item_volumes"].find_one({"_id": FLAX}))
        bucket = run(seeded["item_volumes"].find_one({"_id": BUCKET}))
        assert (flax["vol_24h_high"], flax["vol_24h_low"]) == (3600, 1200)
        assert (bucket["vol_24h_high"], bucket["vol_24h_low"]) == (240, 0)

    def test_update_all_order(self):
        manager = MagicMock()
        for name in ("update_mappings", "update_24h_volumes", "update_4h_volumes", "update_5m_volumes", "update_latest"):
            mock = AsyncMock()
            setattr(self.updater, name, mock)
            manager.attach_mock(mock, name)
        run(self.updater.update_all())
        assert manager.mock_calls == [
            call.update_mappings(),
            call.update_24h_volumes(),
            call.update_4h_volumes(),
            call.update_5m_volumes(),
            call.update_latest(),
        ]


class TestScheduler:
    def test_jobs_registered(self):
        from apscheduler.schedulers.asyncio import AsyncIOScheduler

        from gp_kitchen.scheduler import register_jobs

        scheduler = AsyncIOScheduler(timezone="UTC")
        register_jobs(scheduler)
        intervals = {job.id: job.trigger.interval for job in scheduler.get_jobs()}
        assert intervals == {
            "prices": timedelta(seconds=5),
            "volumes_5m": timedelta(seconds=300),
            "volumes_4h": timedelta(seconds=1200),
            "daily": timedelta(seconds=14400),
        }

    def test_failing_job_logged(self, caplog):
        from gp_kitchen.scheduler import _logged

        job = _logged("updating prices", AsyncMock(side_effect=RuntimeError("api down")))
        with caplog.at_level(logging.ERROR, logger="gp_kitchen.scheduler"):
            run(job())
        assert "updating prices failed: api down" in caplog.text

    def test_daily_runs_both_steps_after_failure(self):
        from gp_kitchen import scheduler as scheduler_module

        updater = MagicMock()
        updater.update_mappings = AsyncMock(side_effect=RuntimeError("mapping down"))
        updater.update_24h_volumes = AsyncMock()
        with patch.object(scheduler_module, "get_price_updater", return_value=updater):
            run(scheduler_module.update_daily())
        updater.update_24h_volumes.assert_awaited_once()


class TestPoller:
    def setup_method(self):
        self.updater = MagicMock()
        self.updater.update_latest = AsyncMock(return_value=4)
        self.updater.update_all = AsyncMock()
        self.items = MagicMock()
        self.items.ensure_coins = AsyncMock()
        self.items.get_price_stats = AsyncMock(return_value={
            "total_items": 5, "items_with_high": 4, "items_with_low": 3, "last_update": None,
        })

    def _patched(self, connected=True):
        from contextlib import ExitStack

        from gp_kitchen import poller

        stack = ExitStack()
        stack.enter_context(patch.object(poller, "init_mongodb", AsyncMock(return_value=connected)))
        stack.enter_context(patch.object(poller, "ensure_indexes", AsyncMock()))
        stack.enter_context(patch.object(poller, "close_connections", AsyncMock()))
        stack.enter_context(patch.object(poller, "get_item_service", return_value=self.items))
        stack.enter_context(patch.object(poller, "get_price_updater", return_value=self.updater))
        return stack

    def test_latest_only(self):
        from gp_kitchen.poller import main

        with self._patched():
            assert main(["-l"]) == 0
        self.updater.update_latest.assert_awaited_once()
        self.updater.update_all.assert_not_awaited()
        self.items.ensure_coins.assert_awaited_once()

    def test_full_run_prints_stats(self, capsys):
        from gp_kitchen.poller import main

        with self._patched():
            assert main([]) == 0
        self.updater.update_all.assert_awaited_once()
        self.updater.update_latest.assert_not_awaited()
        assert "Items with prices: 5 (high: 4, low: 3)" in capsys.readouterr().out

    def test_daemon(self):
        from gp_kitchen import poller

        with self._patched(), patch.object(poller, "_run_daemon", AsyncMock()) as daemon:
            assert poller.main(["--daemon"]) == 0
        daemon.assert_awaited_once()
        self.updater.update_all.assert_not_awaited()

    def test_modes_are_exclusive(self):
        from gp_kitchen.poller import main

        with pytest.raises(SystemExit) as exc:
            main(["-d", "-l"])
        assert exc.value.code == 2

    def test_mongodb_unreachable(self):
        from gp_kitchen.poller import main

        with self._patched(connected=False):
            assert main(["-l"]) == 1
        self.updater.update_latest.assert_not_awaited()
