"""Pipeline client, the one entry point the API uses to run a pipeline.

dispatch -> (poll) -> normalize -> write back. Each run executes in its own
asyncio task registered under (user_id, kind): a second trigger while one is
in flight raises PipelineBusyError, and ``cancel`` aborts the run wherever it
is (usually sleeping between polls).

When KESTRA_URL is unset the client degrades instead of failing: recipes and
the full pipeline go straight to Gemini (or a placeholder plan without a
key), inventory parses the manual text locally, and shopping reads the list
off the stored recipe plan.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from typing import Any, cast

import httpx
import structlog
from google import genai

from app.config import PipelineKind, Settings, settings
from app.models.contracts import (
    InventoryItem,
    PipelineInputs,
    RecipePlan,
    ShoppingListItem,
)
from app.pipelines.dispatcher import AsyncJob, WebhookDispatcher
from app.pipelines.errors import (
    EngineNotConfiguredError,
    NormalizationError,
    PipelineBusyError,
    PipelineCancelledError,
)
from app.pipelines.gemini_fallback import generate_recipe_plan
from app.pipelines.normalizer import PayloadShape, normalize, normalize_inventory
from app.pipelines.poller import ExecutionPoller
from app.store import users
from app.store.documents import DocumentStore

log = structlog.get_logger("kitchen.pipeline")

PipelineResult = RecipePlan | list[InventoryItem] | list[ShoppingListItem]

PAYLOAD_SHAPES: dict[str, PayloadShape] = {
    "inventory": "inventory",
    "recipes": "plan",
    "shopping": "shopping",
    "main": "plan",
}


class PipelineClient:
    def __init__(
        self,
        config: Settings = settings,
        store: DocumentStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        gemini_client: genai.Client | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._http = http_client
        self._gemini = gemini_client
        self._inflight: dict[tuple[str, str], asyncio.Task[PipelineResult]] = {}

    # === One call per pipeline ===

    async def extract_inventory(self, inputs: PipelineInputs) -> list[InventoryItem]:
        return cast(list[InventoryItem], await self.run("inventory", inputs))

    async def generate_recipes(self, inputs: PipelineInputs) -> RecipePlan:
        return cast(RecipePlan, await self.run("recipes", inputs))

    async def generate_shopping_list(self, inputs: PipelineInputs) -> list[ShoppingListItem]:
        return cast(list[ShoppingListItem], await self.run("shopping", inputs))

    async def run_full_pipeline(self, inputs: PipelineInputs) -> RecipePlan:
        return cast(RecipePlan, await self.run("main", inputs))

    # === Run registry ===

    def is_running(self, user_id: str, kind: PipelineKind) -> bool:
        task = self._inflight.get((user_id, kind))
        return task is not None and not task.done()

    def cancel(self, user_id: str, kind: PipelineKind) -> bool:
        """Cancel the in-flight run for (user, kind). False if nothing is running."""
        task = self._inflight.get((user_id, kind))
        if task is None or task.done():
            return False
        log.info("pipeline_cancel_requested", kind=kind, user_id=user_id)
        task.cancel()
        return True

    async def run(self, kind: PipelineKind, inputs: PipelineInputs) -> PipelineResult:
        key = (inputs.user_id, kind)
        if self.is_running(*key):
            raise PipelineBusyError(inputs.user_id, kind)

        task = asyncio.create_task(
            self._execute(kind, inputs), name=f"pipeline:{kind}:{inputs.user_id}"
        )
        self._inflight[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                # The caller itself is being cancelled; let that propagate
                raise
            raise PipelineCancelledError(inputs.user_id, kind) from None
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    # === Execution ===

    @contextlib.asynccontextmanager
    async def _http_session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient() as client:
            yield client

    async def _execute(self, kind: PipelineKind, inputs: PipelineInputs) -> PipelineResult:
        with structlog.contextvars.bound_contextvars(pipeline=kind, user_id=inputs.user_id):
            if kind in ("recipes", "main"):
                inputs = await self._with_stored_defaults(inputs)

            if self._config.engine_configured:
                raw = await self._run_engine(kind, inputs)
                result = self._normalize(kind, raw)
            else:
                log.info("pipeline_engine_not_configured")
                result = await self._run_without_engine(kind, inputs)

            await self._write_back(kind, inputs.user_id, result)
            log.info("pipeline_completed", result_type=type(result).__name__)
            return result

    async def _run_engine(self, kind: PipelineKind, inputs: PipelineInputs) -> Any:
        async with self._http_session() as http:
            trigger = await WebhookDispatcher(http, self._config).trigger(kind, inputs)
            if isinstance(trigger, AsyncJob):
                job = await ExecutionPoller(http, self._config).poll(trigger.job_id)
                return job.raw_output
            return trigger.raw_output

    def _normalize(self, kind: PipelineKind, raw: Any) -> PipelineResult:
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            log.error("pipeline_output_empty", raw=repr(raw))
            raise NormalizationError(raw)
        try:
            return normalize(raw, PAYLOAD_SHAPES[kind])
        except NormalizationError:
            log.error("pipeline_output_unusable", raw=repr(raw))
            raise

    async def _with_stored_defaults(self, inputs: PipelineInputs) -> PipelineInputs:
        """Fill inventory and cooking preferences the caller left out from the store."""
        if self._store is None:
            return inputs
        update: dict[str, Any] = {}
        if inputs.inventory is None and not inputs.manual_inventory:
            update["inventory"] = await users.get_inventory(self._store, inputs.user_id)

        prefs = await users.get_preferences(self._store, inputs.user_id)
        if prefs is not None:
            provided = inputs.model_fields_set
            if "skill_level" not in provided:
                update["skill_level"] = prefs.skill_level
            if "available_time" not in provided:
                update["available_time"] = prefs.available_time_minutes
            if "diet_preferences" not in provided:
                update["diet_preferences"] = prefs.diet_preferences
            if "dietary_restriction" not in provided and prefs.diet_preferences:
                update["dietary_restriction"] = ", ".join(prefs.diet_preferences)
        return inputs.model_copy(update=update) if update else inputs

    async def _run_without_engine(
        self, kind: PipelineKind, inputs: PipelineInputs
    ) -> PipelineResult:
        if kind in ("recipes", "main"):
            inventory = inputs.inventory
            if inventory is None:
                inventory = normalize_inventory(inputs.manual_inventory)
            diet = inputs.diet_preferences
            if diet is None:
                diet = [] if inputs.dietary_restriction == "None" else [inputs.dietary_restriction]
            return await generate_recipe_plan(
                inventory,
                inputs.skill_level,
                inputs.available_time,
                diet,
                inputs.allergies,
                config=self._config,
                client=self._gemini,
            )

        if kind == "inventory" and inputs.manual_inventory.strip():
            return normalize_inventory(inputs.manual_inventory)

        if kind == "shopping" and self._store is not None:
            plan = await users.get_recipe_plan(self._store, inputs.user_id)
            if plan is not None:
                items = plan.shopping_list
                if inputs.recipe_filter:
                    wanted = inputs.recipe_filter.lower()
                    items = [i for i in items if (i.for_recipe or "").lower() == wanted]
                return items

        raise EngineNotConfiguredError(kind)

    async def _write_back(self, kind: PipelineKind, uid: str, result: PipelineResult) -> None:
        if self._store is None:
            return
        if kind == "inventory":
            await users.set_inventory(self._store, uid, cast(list[InventoryItem], result))
        elif kind == "shopping":
            await users.set_shopping_list(self._store, uid, cast(list[ShoppingListItem], result))
        else:
            plan = cast(RecipePlan, result)
            await users.set_recipe_plan(self._store, uid, plan)
            if kind == "main":
                await users.set_shopping_list(self._store, uid, plan.shopping_list)
