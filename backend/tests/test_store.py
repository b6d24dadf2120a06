"""Tests for the in-memory document store and the per-user accessors."""

from __future__ import annotations

import pytest

from app.models.contracts import InventoryItem, RecipePlan, ShoppingListItem, UserPreferences
from app.store import users
from app.store.documents import InMemoryDocumentStore, split_path


class TestInMemoryDocumentStore:
    @pytest.mark.asyncio
    async def test_set_then_get(self, store):
        await store.set("users/u1/inventory", [{"name": "milk"}])
        assert await store.get("users/u1/inventory") == [{"name": "milk"}]
        assert await store.get("users/u1") == {"inventory": [{"name": "milk"}]}

    @pytest.mark.asyncio
    async def test_missing_path_is_none(self, store):
        assert await store.get("users/nobody/recipes") is None

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, store):
        await store.set("a/b", {"x": 1})
        value = await store.get("a/b")
        value["x"] = 2
        assert await store.get("a/b") == {"x": 1}

    @pytest.mark.asyncio
    async def test_writes_are_copies(self, store):
        original = {"x": 1}
        await store.set("a/b", original)
        original["x"] = 2
        assert await store.get("a/b") == {"x": 1}

    @pytest.mark.asyncio
    async def test_update_merges_children(self, store):
        await store.set("prefs", {"skillLevel": "beginner", "availableTimeMinutes": 30})
        await store.update("prefs", {"skillLevel": "advanced"})
        assert await store.get("prefs") == {"skillLevel": "advanced", "availableTimeMinutes": 30}

    @pytest.mark.asyncio
    async def test_positional_child_write(self, store):
        await store.set("list", [{"name": "a"}, {"name": "b"}])
        await store.set("list/1/checked", True)
        assert await store.get("list") == [{"name": "a"}, {"name": "b", "checked": True}]

    @pytest.mark.asyncio
    async def test_delete_and_set_none(self, store):
        await store.set("a/b", 1)
        await store.set("a/c", 2)
        await store.delete("a/b")
        await store.set("a/c", None)
        assert await store.get("a") == {}

    @pytest.mark.asyncio
    async def test_subscribers_see_related_writes(self, store):
        seen = []
        unsubscribe = store.subscribe("users/u1", seen.append)

        await store.set("users/u1/inventory", ["milk"])
        await store.set("users/u2/inventory", ["eggs"])
        await store.set("users", {"u1": {"recipes": {}}})
        unsubscribe()
        await store.set("users/u1/inventory", ["bread"])

        assert seen == [{"inventory": ["milk"]}, {"recipes": {}}]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_writes(self, store):
        def boom(_value):
            raise RuntimeError("listener bug")

        store.subscribe("a", boom)
        await store.set("a", 1)
        assert await store.get("a") == 1

    def test_empty_path_rejected(self):
        with pytest.raises(ValueError):
            split_path("/")


class TestUserAccessors:
    @pytest.mark.asyncio
    async def test_inventory_round_trip(self, store):
        items = [InventoryItem(name="milk", quantity="2"), InventoryItem(name="eggs")]
        await users.set_inventory(store, "u1", items)
        assert await store.get("users/u1/inventory") == [
            {"name": "milk", "quantity": "2"},
            {"name": "eggs", "quantity": "1"},
        ]
        assert await users.get_inventory(store, "u1") == items

    @pytest.mark.asyncio
    async def test_inventory_set_replaces(self, store):
        await users.set_inventory(store, "u1", [InventoryItem(name="a"), InventoryItem(name="b")])
        await users.set_inventory(store, "u1", [InventoryItem(name="c")])
        assert [i.name for i in await users.get_inventory(store, "u1")] == ["c"]

    @pytest.mark.asyncio
    async def test_legacy_inventory_shapes_normalized(self, store):
        await store.set("users/u1/inventory", '["milk", "eggs"]')
        assert [i.name for i in await users.get_inventory(store, "u1")] == ["milk", "eggs"]

    @pytest.mark.asyncio
    async def test_empty_reads(self, store):
        assert await users.get_inventory(store, "u1") == []
        assert await users.get_shopping_list(store, "u1") == []
        assert await users.get_recipe_plan(store, "u1") is None
        assert await users.get_preferences(store, "u1") is None

    @pytest.mark.asyncio
    async def test_recipe_plan_stored_as_text_is_normalized(self, store):
        await store.set(
            "users/u1/recipes",
            '```json\n{"inventorySummary": "S", "recipes": [{"title": "Soup", "difficulty": "hard"}]}\n```',
        )
        plan = await users.get_recipe_plan(store, "u1")
        assert plan is not None
        assert plan.recipes[0].difficulty == "advanced"

    @pytest.mark.asyncio
    async def test_recipe_plan_round_trip(self, store):
        plan = RecipePlan(
            inventory_summary="S",
            shopping_list=[ShoppingListItem(name="basil", for_recipe="Pesto")],
        )
        await users.set_recipe_plan(store, "u1", plan)
        assert await users.get_recipe_plan(store, "u1") == plan

    @pytest.mark.asyncio
    async def test_preferences(self, store):
        prefs = UserPreferences(skill_level="advanced", available_time_minutes=45)
        await users.set_preferences(store, "u1", prefs)
        assert (await store.get("users/u1/preferences"))["skillLevel"] == "advanced"
        assert await users.get_preferences(store, "u1") == prefs

    @pytest.mark.asyncio
    async def test_skill_label_coerced(self, store):
        await store.set(
            "users/u1/preferences",
            {"skillLevel": "easy", "availableTimeMinutes": 20, "dietPreferences": ["vegan"]},
        )
        prefs = await users.get_preferences(store, "u1")
        assert prefs == UserPreferences(
            skill_level="beginner", available_time_minutes=20, diet_preferences=["vegan"]
        )

    @pytest.mark.asyncio
    async def test_invalid_preferences_ignored(self, store):
        await store.set("users/u1/preferences", {"availableTimeMinutes": "soon"})
        assert await users.get_preferences(store, "u1") is None

    @pytest.mark.parametrize("uid", ["", "a/b"])
    def test_user_path_rejects_bad_ids(self, uid):
        with pytest.raises(ValueError):
            users.user_path(uid, "inventory")


class TestShoppingToggle:
    @pytest.mark.asyncio
    async def test_toggle_writes_only_checked_field(self, store):
        await store.set(
            "users/u1/shopping_list",
            [{"name": "milk", "note": "oat"}, {"name": "eggs"}],
        )
        item = await users.set_shopping_item_checked(store, "u1", 0, True)

        assert item.checked is True
        assert await store.get("users/u1/shopping_list") == [
            {"name": "milk", "note": "oat", "checked": True},
            {"name": "eggs"},
        ]

    @pytest.mark.asyncio
    async def test_toggle_on_string_list_rewrites_canonical(self, store):
        await store.set("users/u1/shopping_list", "milk, eggs")
        await users.set_shopping_item_checked(store, "u1", 1, True)
        assert await store.get("users/u1/shopping_list") == [
            {"name": "milk"},
            {"name": "eggs", "checked": True},
        ]

    @pytest.mark.asyncio
    async def test_out_of_range(self, store):
        await users.set_shopping_list(store, "u1", [ShoppingListItem(name="milk")])
        with pytest.raises(IndexError):
            await users.set_shopping_item_checked(store, "u1", 3, True)
