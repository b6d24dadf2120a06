"""Per-user documents: users/{uid}/inventory, recipes, shopping_list, preferences.

Engine flows write these paths directly with whatever shape their last step
produced, so every read goes through the normalizer.
"""

from __future__ import annotations

from typing import Literal

from pydantic import ValidationError

from app.models.contracts import (
    InventoryItem,
    RecipePlan,
    ShoppingListItem,
    UserPreferences,
    dump,
)
from app.pipelines.normalizer import (
    coerce_difficulty,
    normalize_inventory,
    normalize_plan,
    normalize_shopping_list,
)
from app.store.documents import DocumentStore

UserLeaf = Literal["inventory", "recipes", "shopping_list", "preferences"]

USERS_PATH = "users"


def user_path(uid: str, leaf: UserLeaf | None = None) -> str:
    if not uid or "/" in uid:
        raise ValueError(f"Invalid user id: {uid!r}")
    return f"{USERS_PATH}/{uid}" if leaf is None else f"{USERS_PATH}/{uid}/{leaf}"


async def get_inventory(store: DocumentStore, uid: str) -> list[InventoryItem]:
    return normalize_inventory(await store.get(user_path(uid, "inventory")))


async def set_inventory(store: DocumentStore, uid: str, items: list[InventoryItem]) -> None:
    """Replace the whole list; extraction results are never merged."""
    await store.set(user_path(uid, "inventory"), dump(items))


async def get_recipe_plan(store: DocumentStore, uid: str) -> RecipePlan | None:
    raw = await store.get(user_path(uid, "recipes"))
    if not raw:
        return None
    return normalize_plan(raw)


async def set_recipe_plan(store: DocumentStore, uid: str, plan: RecipePlan) -> None:
    await store.set(user_path(uid, "recipes"), dump(plan))


async def get_shopping_list(store: DocumentStore, uid: str) -> list[ShoppingListItem]:
    return normalize_shopping_list(await store.get(user_path(uid, "shopping_list")))


async def set_shopping_list(
    store: DocumentStore, uid: str, items: list[ShoppingListItem]
) -> None:
    await store.set(user_path(uid, "shopping_list"), dump(items))


async def set_shopping_item_checked(
    store: DocumentStore, uid: str, index: int, checked: bool
) -> ShoppingListItem:
    """Flip one item's ``checked`` flag in place (the only post-creation edit)."""
    path = user_path(uid, "shopping_list")
    raw = await store.get(path)
    items = normalize_shopping_list(raw)
    if not 0 <= index < len(items):
        raise IndexError(f"Shopping list has no item {index}")
    updated = items[index].model_copy(update={"checked": checked})
    if isinstance(raw, list) and len(raw) == len(items) and isinstance(raw[index], dict):
        await store.set(f"{path}/{index}/checked", checked)
    else:
        # Legacy string/map shapes have no positional paths; store the canonical list
        items[index] = updated
        await set_shopping_list(store, uid, items)
    return updated


async def get_preferences(store: DocumentStore, uid: str) -> UserPreferences | None:
    raw = await store.get(user_path(uid, "preferences"))
    if not isinstance(raw, dict):
        return None
    data = dict(raw)
    # Hand-edited documents use the recipe labels ("easy", "Hard")
    for key in ("skillLevel", "skill_level"):
        if key in data:
            data[key] = coerce_difficulty(data[key])
    try:
        return UserPreferences.model_validate(data)
    except ValidationError:
        return None


async def set_preferences(store: DocumentStore, uid: str, prefs: UserPreferences) -> None:
    await store.set(user_path(uid, "preferences"), dump(prefs))
