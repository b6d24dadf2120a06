"""Response normalizer: turns loosely-typed engine/LLM output into canonical records.

Agent steps upstream return whatever the model felt like producing. Text
payloads are tried against a fixed list of decoders, most specific first:

1. Pure JSON: '{"inventorySummary": ..., "recipes": [...]}'
2. Code-fenced JSON: '```json\\n{...}\\n```'
3. JSON embedded in prose: 'Here is your plan:\\n{...}\\nEnjoy!'

When nothing decodes, plans degrade to a summary-only record and lists fall
back to comma/newline splitting. Nothing here raises for noisy input; only a
plan with no text at all raises NormalizationError.

Pure functions, no I/O.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from typing import Any, Literal, TypeVar

import structlog
from pydantic import BaseModel

from app.models.contracts import (
    Difficulty,
    InventoryItem,
    RecipePlan,
    RecipeSuggestion,
    ShoppingListItem,
)
from app.pipelines.errors import NormalizationError

log = structlog.get_logger("kitchen.normalizer")

PayloadShape = Literal["plan", "inventory", "shopping"]

PLAN_KEYS = ("inventorySummary", "recipes")
SUMMARY_MAX_CHARS = 500
DEFAULT_MINUTES = 30
DEFAULT_QUANTITY = "1"
_MAX_DEPTH = 4

# Keys a list record may carry its name under, in priority order
_NAME_KEYS = ("name", "item", "title")

# Wrapper keys that hold the actual list, checked in this order
_LIST_WRAPPER_KEYS = ("items", "inventory", "shoppingList", "shopping_list")

_DIFFICULTY_SYNONYMS: dict[str, Difficulty] = {
    "beginner": "beginner",
    "easy": "beginner",
    "intermediate": "intermediate",
    "medium": "intermediate",
    "advanced": "advanced",
    "hard": "advanced",
}

_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\n?([\s\S]*?)```")
_SPLIT_RE = re.compile(r"[,\n]")
_MINUTES_RE = re.compile(r"\d+")

T = TypeVar("T", bound=BaseModel)


# === Text decoders ===


def strip_code_fence(text: str) -> str:
    """Return the body of the first markdown code fence, or the text unchanged."""
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text


class _Frame:
    """One open bracket during a scan."""

    __slots__ = ("start", "owner", "orphans")

    def __init__(self, start: int, owner: int) -> None:
        self.start = start
        self.owner = owner  # stack index of the nearest wanted ancestor
        self.orphans: list[tuple[int, int]] = []  # closed wanted blocks inside


def iter_json_blocks(text: str, openers: str = "{") -> Iterator[str]:
    """Yield balanced ``{...}`` (or ``[...]``) substrings in order.

    Single pass over ``text``; quotes are only tracked inside brackets. When
    an opener never closes, the complete blocks nested in it are yielded
    after the scan instead.
    """
    stack: list[_Frame] = []
    in_string = False
    escape_next = False
    for i, ch in enumerate(text):
        if not stack:
            if ch in openers:
                stack.append(_Frame(i, 0))
            continue
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            top = len(stack) - 1
            owner = top if text[stack[top].start] in openers else stack[top].owner
            stack.append(_Frame(i, owner))
        elif ch in "}]":
            frame = stack.pop()
            if text[frame.start] not in openers:
                continue
            if stack:
                stack[frame.owner].orphans.append((frame.start, i))
            else:
                yield text[frame.start : i + 1]
    for frame in stack:
        for start, end in frame.orphans:
            yield text[start : end + 1]


def _loads(text: str) -> Any | None:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _decode_json(text: str, required_keys: tuple[str, ...]) -> Any | None:
    return _loads(text)


def _decode_fenced(text: str, required_keys: tuple[str, ...]) -> Any | None:
    match = _FENCE_RE.search(text)
    if match is None:
        return None
    return _loads(match.group(1).strip())


def _decode_embedded(text: str, required_keys: tuple[str, ...]) -> Any | None:
    """Find a JSON block inside prose that mentions every required key."""
    openers = "{" if required_keys else "{["
    for block in iter_json_blocks(text, openers):
        if all(f'"{key}"' in block for key in required_keys):
            decoded = _loads(block)
            if decoded is not None:
                return decoded
    if required_keys == PLAN_KEYS:
        # First brace to last brace, for plans whose own quoting defeats the scan
        start, end = text.find("{"), text.rfind("}")
        if 0 <= start < end:
            candidate = text[start : end + 1]
            if all(f'"{key}"' in candidate for key in PLAN_KEYS):
                return _loads(candidate)
    return None


_TEXT_DECODERS: tuple[tuple[str, Callable[[str, tuple[str, ...]], Any | None]], ...] = (
    ("json", _decode_json),
    ("fenced", _decode_fenced),
    ("embedded", _decode_embedded),
)


def _decode_text(text: str, required_keys: tuple[str, ...] = ()) -> tuple[str, Any] | None:
    for variant, decoder in _TEXT_DECODERS:
        decoded = decoder(text, required_keys)
        if decoded is not None:
            return variant, decoded
    return None


# === Scalar coercion ===


def _text(value: Any) -> str:
    """Stringify any JSON value without raising."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict) and "name" in value:
        qty = _text(value.get("quantity") or value.get("amount"))
        name = _text(value["name"])
        return f"{qty} {name}".strip()
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _optional_text(value: Any) -> str | None:
    text = _text(value)
    return text or None


def _text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out = []
    for entry in value:
        text = _text(entry)
        if text:
            out.append(text)
    return out


def _minutes(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return DEFAULT_MINUTES
    if isinstance(value, int):
        return value if value > 0 else DEFAULT_MINUTES
    if isinstance(value, float):
        rounded = round(value)
        return rounded if rounded > 0 else DEFAULT_MINUTES
    match = _MINUTES_RE.search(_text(value))
    if match and int(match.group(0)) > 0:
        return int(match.group(0))
    return DEFAULT_MINUTES


def _flag(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    """Value of the first key that exists, even if that value is malformed."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def _first_truthy(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key):
            return data[key]
    return None


def coerce_difficulty(value: Any) -> Difficulty:
    """Map a difficulty label through the synonym table; unknown -> beginner."""
    return _DIFFICULTY_SYNONYMS.get(_text(value).lower(), "beginner")


# === Record coercion ===


def _coerce_recipe(raw: Any) -> RecipeSuggestion | None:
    if isinstance(raw, str):
        return RecipeSuggestion(title=raw.strip()) if raw.strip() else None
    if not isinstance(raw, dict):
        return None
    return RecipeSuggestion(
        title=_text(_first_truthy(raw, "title", "name")) or "Untitled",
        ingredients=_text_list(raw.get("ingredients")),
        steps=_text_list(_first_present(raw, "steps", "instructions")),
        difficulty=coerce_difficulty(raw.get("difficulty")),
        estimated_time_minutes=_minutes(
            _first_present(raw, "estimatedTimeMinutes", "estimated_time_minutes", "time")
        ),
        category=_optional_text(raw.get("category")),
    )


def _coerce_inventory_item(raw: Any, item_id: str | None = None) -> InventoryItem | None:
    if not isinstance(raw, dict):
        name = _text(raw)
        return InventoryItem(id=item_id, name=name) if name else None
    name = _text(_first_truthy(raw, *_NAME_KEYS))
    if not name:
        return None
    return InventoryItem(
        id=_optional_text(raw.get("id")) or item_id,
        name=name,
        quantity=_text(_first_truthy(raw, "quantity", "qty", "amount")) or DEFAULT_QUANTITY,
        category=_optional_text(raw.get("category")),
        expiry_date=_optional_text(_first_truthy(raw, "expiryDate", "expiry_date", "expiry")),
    )


def _coerce_shopping_item(raw: Any, item_id: str | None = None) -> ShoppingListItem | None:
    if not isinstance(raw, dict):
        name = _text(raw)
        return ShoppingListItem(id=item_id, name=name) if name else None
    name = _text(_first_truthy(raw, *_NAME_KEYS))
    if not name:
        return None
    for_recipe = _optional_text(_first_truthy(raw, "forRecipe", "for_recipe"))
    if for_recipe is None:
        recipes = _text_list(raw.get("forRecipes"))
        for_recipe = recipes[0] if recipes else None
    return ShoppingListItem(
        id=_optional_text(raw.get("id")) or item_id,
        name=name,
        quantity=_optional_text(raw.get("quantity")),
        category=_optional_text(raw.get("category")),
        checked=_flag(raw.get("checked")),
        for_recipe=for_recipe,
        reason=_optional_text(raw.get("reason")),
    )


def _coerce_records(raw: Any, coerce: Callable[[Any], T | None]) -> list[T]:
    if not isinstance(raw, list):
        return []
    records = []
    for entry in raw:
        record = coerce(entry)
        if record is not None:
            records.append(record)
    return records


# === Plans ===


def _is_plan_shaped(data: Any) -> bool:
    return isinstance(data, dict) and any(
        key in data for key in ("inventorySummary", "inventory_summary", "recipes")
    )


def _coerce_plan(data: dict[str, Any]) -> RecipePlan:
    return RecipePlan(
        inventory_summary=_text(
            _first_present(data, "inventorySummary", "inventory_summary", "summary")
        ),
        recipes=_coerce_records(data.get("recipes"), _coerce_recipe),
        shopping_list=_coerce_records(
            _first_present(data, "shoppingList", "shopping_list"), _coerce_shopping_item
        ),
    )


def _degraded_plan(text: str) -> RecipePlan:
    summary = text[:SUMMARY_MAX_CHARS]
    if len(text) > SUMMARY_MAX_CHARS:
        summary += "..."
    return RecipePlan(inventory_summary=summary, recipes=[], shopping_list=[])


def _walk(value: Any) -> Iterator[Any]:
    """Depth-first over nested dict/list values (the value itself first)."""
    yield value
    if isinstance(value, dict):
        for child in value.values():
            yield from _walk(child)
    elif isinstance(value, list):
        for child in value:
            yield from _walk(child)


def _plan_from_text(text: str, depth: int) -> RecipePlan | None:
    decoded = _decode_text(text, PLAN_KEYS)
    if decoded is None:
        return None
    variant, value = decoded
    if _is_plan_shaped(value):
        log.debug("plan_decoded", variant=variant)
        return _coerce_plan(value)
    if depth < _MAX_DEPTH:
        return _plan_from_value(value, depth + 1)
    return None


def _plan_from_value(value: Any, depth: int) -> RecipePlan | None:
    """Search nested envelopes for a plan-shaped dict or plan-bearing text."""
    for node in _walk(value):
        if _is_plan_shaped(node):
            return _coerce_plan(node)
        if isinstance(node, str) and depth < _MAX_DEPTH:
            plan = _plan_from_text(node.strip(), depth + 1)
            if plan is not None:
                return plan
    return None


def normalize_plan(raw: Any) -> RecipePlan:
    """Normalize any engine/LLM output into a RecipePlan.

    Raises NormalizationError only when there is no content at all.
    """
    if isinstance(raw, RecipePlan):
        raw = raw.model_dump(by_alias=True)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise NormalizationError(raw)

    if isinstance(raw, str):
        text = raw.strip()
        plan = _plan_from_text(text, 0)
    else:
        plan = _plan_from_value(raw, 0)
        text = next((n.strip() for n in _walk(raw) if isinstance(n, str) and n.strip()), "")
        if not text:
            text = _text(raw)
    if plan is not None:
        return plan

    log.warning("plan_degraded_to_summary", raw_preview=text[:200])
    return _degraded_plan(text)


# === Inventory / shopping lists ===


def _looks_like_record(data: dict[str, Any]) -> bool:
    return any(isinstance(data.get(key), str) for key in _NAME_KEYS)


def _normalize_list(raw: Any, coerce: Callable[..., T | None], depth: int = 0) -> list[T]:
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if raw is None:
        return []

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        decoded = _decode_text(text)
        if decoded is not None and depth < _MAX_DEPTH:
            return _normalize_list(decoded[1], coerce, depth + 1)
        # Bare "milk, eggs\ncheese"
        return _coerce_records([part.strip() for part in _SPLIT_RE.split(text)], coerce)

    if isinstance(raw, list):
        return _coerce_records(raw, coerce)

    if isinstance(raw, dict):
        for key in _LIST_WRAPPER_KEYS:
            if key in raw and depth < _MAX_DEPTH:
                return _normalize_list(raw[key], coerce, depth + 1)
        if _looks_like_record(raw):
            record = coerce(raw)
            return [record] if record is not None else []
        # Store snapshot: {pushKey: {...}, pushKey2: {...}}
        records = []
        for key, value in raw.items():
            record = coerce(value, item_id=str(key))
            if record is not None:
                records.append(record)
        return records

    record = coerce(raw)
    return [record] if record is not None else []


def normalize_inventory(raw: Any) -> list[InventoryItem]:
    """Normalize any inventory payload into a positional list of items."""
    return _normalize_list(raw, _coerce_inventory_item)


def normalize_shopping_list(raw: Any) -> list[ShoppingListItem]:
    """Normalize any shopping-list payload into a positional list of items."""
    return _normalize_list(raw, _coerce_shopping_item)


def normalize(
    raw: Any, shape: PayloadShape
) -> RecipePlan | list[InventoryItem] | list[ShoppingListItem]:
    if shape == "plan":
        return normalize_plan(raw)
    if shape == "inventory":
        return normalize_inventory(raw)
    if shape == "shopping":
        return normalize_shopping_list(raw)
    raise ValueError(f"Unknown payload shape: {shape!r}")
