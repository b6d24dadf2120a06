"""Kitchen OS contract models.

Shared by the pipeline client, the store gateway and the HTTP API. Attribute
names are snake_case; the wire format (engine payloads, store documents,
API bodies) is camelCase, so every model dumps with ``by_alias=True``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.config import PipelineKind

Difficulty = Literal["beginner", "intermediate", "advanced"]
JobState = Literal["RUNNING", "SUCCESS", "FAILED", "TIMED_OUT"]

__all__ = [
    "Difficulty",
    "ErrorResponse",
    "InventoryItem",
    "JobState",
    "PipelineInputs",
    "PipelineJob",
    "PipelineKind",
    "RecipePlan",
    "RecipeSuggestion",
    "ShoppingListItem",
    "UserPreferences",
    "dump",
]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def dump(value: WireModel | list[WireModel]) -> Any:
    """Serialize a record (or list of records) to its camelCase wire shape."""
    if isinstance(value, list):
        return [item.model_dump(by_alias=True, exclude_none=True) for item in value]
    return value.model_dump(by_alias=True, exclude_none=True)


# === Canonical records ===


class InventoryItem(WireModel):
    id: str | None = None  # None = identified by list position
    name: str
    quantity: str = "1"
    category: str | None = None
    expiry_date: str | None = None


class RecipeSuggestion(WireModel):
    title: str
    ingredients: list[str] = []
    steps: list[str] = []
    difficulty: Difficulty = "beginner"
    estimated_time_minutes: int = 30
    category: str | None = None


class ShoppingListItem(WireModel):
    id: str | None = None
    name: str
    quantity: str | None = None
    category: str | None = None
    checked: bool | None = None  # only field mutated after creation
    for_recipe: str | None = None
    reason: str | None = None


class RecipePlan(WireModel):
    inventory_summary: str = ""
    recipes: list[RecipeSuggestion] = []
    shopping_list: list[ShoppingListItem] = []


class UserPreferences(WireModel):
    skill_level: Difficulty = "beginner"
    available_time_minutes: int = 30
    diet_preferences: list[str] = []


# === Pipeline run ===


class PipelineInputs(WireModel):
    """Named parameters for one pipeline run.

    Only ``user_id`` is required. Falsy values fall back to the engine
    defaults (time 0 becomes 30, blank diet fields become "None").
    """

    user_id: str = Field(min_length=1)
    fridge_image: str = ""  # base64 or data URL
    manual_inventory: str = ""
    inventory: list[InventoryItem] | None = None
    skill_level: Difficulty = "beginner"
    available_time: int = 30
    dietary_restriction: str = "None"
    allergies: str = "None"
    diet_preferences: list[str] | None = None
    recipe_filter: str = ""
    run_inventory: bool = True
    run_recipes: bool = True
    run_shopping: bool = True

    @field_validator("fridge_image", "manual_inventory", "recipe_filter", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("skill_level", mode="before")
    @classmethod
    def _default_skill(cls, v: Any) -> Any:
        return v or "beginner"

    @field_validator("available_time", mode="before")
    @classmethod
    def _default_time(cls, v: Any) -> Any:
        return v or 30

    @field_validator("dietary_restriction", "allergies", mode="before")
    @classmethod
    def _default_none_text(cls, v: Any) -> Any:
        if isinstance(v, list):
            v = ", ".join(str(part) for part in v if part)
        return v or "None"


class PipelineJob(BaseModel):
    """One asynchronous engine execution. Never persisted or shared."""

    id: str
    state: JobState = "RUNNING"
    raw_output: Any = None


# === API ===


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    detail: str | None = None
