"""Webhook dispatcher: starts one Kestra pipeline run over HTTP.

The engine answers a webhook either with the finished output inline (when the
flow is short or configured to wait) or with execution metadata that has to be
polled. ``trigger`` tells the two apart and never retries on its own.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from app.config import PipelineKind, Settings, settings
from app.models.contracts import PipelineInputs, dump
from app.pipelines.errors import DispatchError, EngineNotConfiguredError

log = structlog.get_logger("kitchen.dispatcher")

# Output locations seen across engine flow revisions, most specific first.
# The flows never converged on one contract, so every path stays in the list.
FINAL_PLAN_PATHS: tuple[tuple[str, ...], ...] = (
    ("outputs", "final_output", "finalPlan"),
    ("finalPlan",),
)
AGENT_TEXT_PATHS: tuple[tuple[str, ...], ...] = (
    ("outputs", "format_output", "agentResponse"),
    ("outputs", "recipe_agent", "text"),
    ("outputs", "agentResponse"),
    ("agentResponse",),
)
RESULT_PATHS: tuple[tuple[str, ...], ...] = (
    ("outputs", "output_result", "result"),
    ("outputs", "result"),
)
OUTPUT_FIELD_PATHS = FINAL_PLAN_PATHS + AGENT_TEXT_PATHS + RESULT_PATHS

_BODY_PREVIEW_CHARS = 500


@dataclass(frozen=True)
class InlineResult:
    """The engine returned its output directly; hand it to the normalizer."""

    raw_output: Any


@dataclass(frozen=True)
class AsyncJob:
    """The engine accepted the run; poll ``job_id`` for the outcome."""

    job_id: str
    state: str = "CREATED"


TriggerResult = InlineResult | AsyncJob


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def extract_output(body: Any, paths: tuple[tuple[str, ...], ...] = OUTPUT_FIELD_PATHS) -> Any:
    """Return the first non-empty value found at any of ``paths``, else None."""
    for path in paths:
        value = _dig(body, path)
        if value not in (None, "", {}, []):
            return value
    return None


def build_auth_headers(config: Settings) -> dict[str, str]:
    """Bearer token wins over basic auth; at most one Authorization header."""
    if config.kestra_api_token:
        return {"Authorization": f"Bearer {config.kestra_api_token}"}
    if config.kestra_basic_auth:
        return {"Authorization": f"Basic {config.kestra_basic_auth}"}
    return {}


def webhook_url(config: Settings, kind: PipelineKind) -> str:
    key = config.webhook_key(kind)
    if not config.kestra_url or not key:
        raise EngineNotConfiguredError(kind)
    base = config.kestra_url.rstrip("/")
    return (
        f"{base}/api/v1/executions/webhook/"
        f"{config.kestra_namespace}/{config.flow_name(kind)}/{key}"
    )


def build_webhook_payload(kind: PipelineKind, inputs: PipelineInputs) -> dict[str, Any]:
    """Flow inputs for one pipeline; defaults already applied by PipelineInputs."""
    if kind == "inventory":
        return {
            "userId": inputs.user_id,
            "fridgeImage": inputs.fridge_image,
            "manualInventory": inputs.manual_inventory,
        }
    if kind == "recipes":
        return {
            "userId": inputs.user_id,
            "fridgeImage": inputs.fridge_image,
            "inventory": json.dumps(dump(inputs.inventory or [])),
            "skillLevel": inputs.skill_level,
            "availableTime": inputs.available_time,
            "dietaryRestriction": inputs.dietary_restriction,
            "allergies": inputs.allergies,
        }
    if kind == "shopping":
        return {"userId": inputs.user_id, "recipeFilter": inputs.recipe_filter}
    if kind == "main":
        return {
            "userId": inputs.user_id,
            "fridgeImage": inputs.fridge_image,
            "manualInventory": inputs.manual_inventory,
            "skillLevel": inputs.skill_level,
            "availableTime": inputs.available_time,
            "dietaryRestriction": inputs.dietary_restriction,
            "allergies": inputs.allergies,
            "runInventory": inputs.run_inventory,
            "runRecipes": inputs.run_recipes,
            "runShopping": inputs.run_shopping,
        }
    raise ValueError(f"Unknown pipeline kind: {kind!r}")


def classify_response(body: Any) -> TriggerResult:
    """Decide whether a 2xx webhook body is a finished result or a job handle."""
    if isinstance(body, dict):
        final_plan = extract_output(body, FINAL_PLAN_PATHS)
        if final_plan is not None:
            return InlineResult(final_plan)
        agent_text = extract_output(body, AGENT_TEXT_PATHS)
        if agent_text is not None:
            return InlineResult(agent_text)
        if "inventorySummary" in body or "recipes" in body:
            return InlineResult(body)
        if body.get("id") and body.get("state"):
            state = body["state"]
            current = state.get("current") if isinstance(state, dict) else state
            return AsyncJob(job_id=str(body["id"]), state=str(current or "CREATED"))
        result = extract_output(body, RESULT_PATHS)
        if result is not None:
            return InlineResult(result)
    return InlineResult(body)


class WebhookDispatcher:
    """Sends the trigger request for one pipeline. Stateless between calls."""

    def __init__(self, http_client: httpx.AsyncClient, config: Settings = settings) -> None:
        self._http = http_client
        self._config = config

    async def trigger(self, kind: PipelineKind, inputs: PipelineInputs) -> TriggerResult:
        url = webhook_url(self._config, kind)
        headers = {"Content-Type": "application/json", **build_auth_headers(self._config)}
        payload = build_webhook_payload(kind, inputs)

        log.info(
            "kestra_trigger_start",
            kind=kind,
            user_id=inputs.user_id,
            has_image=bool(inputs.fridge_image),
            image_chars=len(inputs.fridge_image),
        )
        try:
            resp = await self._http.post(
                url,
                headers=headers,
                json=payload,
                timeout=self._config.kestra_request_timeout_seconds,
            )
        except httpx.RequestError as exc:
            log.warning("kestra_trigger_unreachable", kind=kind, error=type(exc).__name__)
            raise DispatchError(None, detail=f"Engine unreachable: {type(exc).__name__}") from exc

        if not resp.is_success:
            log.error(
                "kestra_trigger_failed",
                kind=kind,
                status=resp.status_code,
                body=resp.text[:_BODY_PREVIEW_CHARS],
            )
            raise DispatchError(resp.status_code, resp.text)

        try:
            body: Any = resp.json()
        except ValueError:
            body = resp.text

        result = classify_response(body)
        if isinstance(result, AsyncJob):
            log.info("kestra_trigger_async", kind=kind, execution_id=result.job_id)
        else:
            log.info("kestra_trigger_inline", kind=kind)
        return result
