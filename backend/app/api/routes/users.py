"""Per-user document endpoints.

Writes come from engine flows as often as from the UI, and flows post
whatever their last step produced: JSON strings, fenced JSON, wrapper
objects. Every PUT therefore normalizes before storing.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.api.deps import get_store
from app.models.contracts import ErrorResponse, UserPreferences, dump
from app.pipelines.errors import NormalizationError
from app.pipelines.normalizer import normalize_inventory, normalize_plan, normalize_shopping_list
from app.store import users
from app.store.documents import DocumentStore

logger = structlog.get_logger()

router = APIRouter(prefix="/users/{uid}", tags=["users"])


class CheckedUpdate(BaseModel):
    checked: bool


def _error(status: int, code: str, message: str, *, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=code, message=message, retryable=retryable).model_dump(),
    )


@router.get("/inventory")
async def get_inventory(uid: str, store: DocumentStore = Depends(get_store)):
    return dump(await users.get_inventory(store, uid))


@router.put("/inventory")
async def put_inventory(
    uid: str,
    payload: Any = Body(...),
    store: DocumentStore = Depends(get_store),
):
    items = normalize_inventory(payload)
    await users.set_inventory(store, uid, items)
    logger.info("inventory_saved", user_id=uid, item_count=len(items))
    return {"items": dump(items), "itemCount": len(items)}


@router.get("/recipes")
async def get_recipes(uid: str, store: DocumentStore = Depends(get_store)):
    plan = await users.get_recipe_plan(store, uid)
    return dump(plan) if plan is not None else {}


@router.put("/recipes")
async def put_recipes(
    uid: str,
    payload: Any = Body(...),
    store: DocumentStore = Depends(get_store),
):
    try:
        plan = normalize_plan(payload)
    except NormalizationError:
        return _error(400, "invalid_payload", "Recipe payload is empty")
    await users.set_recipe_plan(store, uid, plan)
    logger.info("recipes_saved", user_id=uid, recipe_count=len(plan.recipes))
    return dump(plan)


@router.get("/shopping_list")
async def get_shopping_list(uid: str, store: DocumentStore = Depends(get_store)):
    return dump(await users.get_shopping_list(store, uid))


@router.put("/shopping_list")
async def put_shopping_list(
    uid: str,
    payload: Any = Body(...),
    store: DocumentStore = Depends(get_store),
):
    items = normalize_shopping_list(payload)
    await users.set_shopping_list(store, uid, items)
    logger.info("shopping_list_saved", user_id=uid, item_count=len(items))
    return {"items": dump(items), "itemCount": len(items)}


@router.patch("/shopping_list/{index}")
async def toggle_shopping_item(
    uid: str,
    index: int,
    body: CheckedUpdate,
    store: DocumentStore = Depends(get_store),
):
    try:
        item = await users.set_shopping_item_checked(store, uid, index, body.checked)
    except IndexError:
        return _error(404, "item_not_found", f"No shopping list item at index {index}")
    return dump(item)


@router.get("/preferences")
async def get_preferences(uid: str, store: DocumentStore = Depends(get_store)):
    prefs = await users.get_preferences(store, uid)
    return dump(prefs or UserPreferences())


@router.put("/preferences")
async def put_preferences(
    uid: str,
    body: UserPreferences,
    store: DocumentStore = Depends(get_store),
):
    await users.set_preferences(store, uid, body)
    return dump(body)
