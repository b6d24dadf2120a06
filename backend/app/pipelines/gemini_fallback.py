"""In-process recipe generation for deployments without the Kestra engine.

Sends one text prompt to Gemini and runs the reply through the same
normalizer as engine output. Without an API key it returns a labelled
placeholder plan so the UI still has something to render.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.config import Settings, settings
from app.models.contracts import (
    InventoryItem,
    RecipePlan,
    RecipeSuggestion,
    ShoppingListItem,
)
from app.pipelines.errors import DispatchError, NormalizationError, PipelineTimeoutError
from app.pipelines.normalizer import normalize_plan

log = structlog.get_logger("kitchen.gemini_fallback")

GEMINI_TIMEOUT_SECONDS = 120

_PROMPT_TEMPLATE = """You are a smart fridge recipe assistant.

User inventory (one item per line):
{inventory}

User cooking profile:
- Skill level: {skill_level}
- Available time in minutes: {available_time}
- Dietary preferences: {diet}
- Allergies: {allergies}

TASK:
1. Briefly summarize what the user has, highlighting items that are expiring soon.
2. Suggest 3-5 recipes the user can cook now using primarily what they already have.
3. Produce a shopping list of missing or low-stock ingredients needed to make these recipes great.

RESPONSE FORMAT:
Return a single JSON object with exactly these keys:

{{
  "inventorySummary": string,
  "recipes": [{{
    "title": string,
    "ingredients": string[],
    "steps": string[],
    "difficulty": "beginner" | "intermediate" | "advanced",
    "estimatedTimeMinutes": integer
  }}],
  "shoppingList": [{{"name": string, "quantity": string, "forRecipe": string}}]
}}

Rules:
- Respond with JSON only, no markdown code fences or prose.
- Never include an ingredient the user is allergic to.
"""


def _inventory_line(item: InventoryItem) -> str:
    line = f"{item.name} (qty: {item.quantity}"
    if item.expiry_date:
        line += f", expiry: {item.expiry_date}"
    return line + ")"


def build_recipe_prompt(
    inventory: list[InventoryItem],
    skill_level: str,
    available_time: int,
    diet_preferences: list[str],
    allergies: str = "None",
) -> str:
    return _PROMPT_TEMPLATE.format(
        inventory="\n".join(_inventory_line(i) for i in inventory) or "No items provided.",
        skill_level=skill_level,
        available_time=available_time,
        diet=", ".join(diet_preferences) or "none",
        allergies=allergies or "None",
    )


def placeholder_plan(inventory: list[InventoryItem], available_time: int) -> RecipePlan:
    """Demo plan for a deployment with neither engine nor LLM key."""
    names = ", ".join(item.name for item in inventory) or "nothing logged yet"
    return RecipePlan(
        inventory_summary=(
            f"[Placeholder] You have {names}. No recipe service is configured: "
            "set KESTRA_URL or GOOGLE_GEMINI_API_KEY to get real suggestions."
        ),
        recipes=[
            RecipeSuggestion(
                title="Placeholder fridge stir-fry",
                ingredients=["Whatever vegetables you have", "Oil", "Salt", "Pepper"],
                steps=[
                    "Chop any vegetables that look fresh.",
                    "Heat oil in a pan.",
                    "Stir-fry the vegetables with salt and pepper for 5-7 minutes.",
                ],
                difficulty="beginner",
                estimated_time_minutes=min(available_time, 20),
            )
        ],
        shopping_list=[
            ShoppingListItem(
                name="Fresh vegetables",
                quantity="a few servings",
                reason="Base for quick stir-fry meals",
            )
        ],
    )


def extract_text(response: types.GenerateContentResponse) -> str:
    """Join all text parts of the first candidate."""
    if not response.candidates:
        return ""
    content = response.candidates[0].content
    if content is None or content.parts is None:
        return ""
    return "\n".join(part.text for part in content.parts if part.text is not None)


async def generate_recipe_plan(
    inventory: list[InventoryItem],
    skill_level: str,
    available_time: int,
    diet_preferences: list[str],
    allergies: str = "None",
    config: Settings = settings,
    client: genai.Client | None = None,
) -> RecipePlan:
    if not config.google_gemini_api_key and client is None:
        log.warning("gemini_not_configured_using_placeholder")
        return placeholder_plan(inventory, available_time)

    if client is None:
        client = genai.Client(api_key=config.google_gemini_api_key)
    prompt = build_recipe_prompt(
        inventory, skill_level, available_time, diet_preferences, allergies
    )

    log.info("gemini_recipe_start", model=config.gemini_model, inventory_count=len(inventory))
    try:
        async with asyncio.timeout(GEMINI_TIMEOUT_SECONDS):
            response = await client.aio.models.generate_content(
                model=config.gemini_model,
                contents=prompt,
            )
    except genai_errors.APIError as exc:
        log.error("gemini_api_error", status=exc.code, error=str(exc.message))
        raise DispatchError(exc.code, str(exc.message or ""), detail="Gemini API error") from exc
    except httpx.RequestError as exc:
        log.error("gemini_unreachable", error=type(exc).__name__)
        raise DispatchError(None, detail=f"Gemini unreachable: {type(exc).__name__}") from exc
    except TimeoutError as exc:
        log.error("gemini_timeout", seconds=GEMINI_TIMEOUT_SECONDS)
        raise PipelineTimeoutError("gemini-direct", 1) from exc

    text = extract_text(response)
    if not text.strip():
        log.error("gemini_empty_response", response=str(response)[:500])
        raise NormalizationError(response, detail="Gemini response missing text content")
    return normalize_plan(text)
