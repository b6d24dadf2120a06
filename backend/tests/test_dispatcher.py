"""Tests for the Kestra webhook dispatcher."""

from __future__ import annotations

import json

import httpx
import pytest
from conftest import KESTRA_URL, make_settings

from app.models.contracts import InventoryItem, PipelineInputs
from app.pipelines.dispatcher import (
    AsyncJob,
    InlineResult,
    WebhookDispatcher,
    build_auth_headers,
    build_webhook_payload,
    classify_response,
    extract_output,
    webhook_url,
)
from app.pipelines.errors import DispatchError, EngineNotConfiguredError

PLAN = {"inventorySummary": "S", "recipes": [], "shoppingList": []}


def _dispatcher(handler, **overrides) -> tuple[WebhookDispatcher, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookDispatcher(http, make_settings(**overrides)), http


class TestAuthHeaders:
    def test_bearer_wins_when_both_configured(self):
        config = make_settings(kestra_api_token="tok", kestra_basic_auth="dXNlcjpwYXNz")
        assert build_auth_headers(config) == {"Authorization": "Bearer tok"}

    def test_basic_when_only_basic(self):
        config = make_settings(kestra_basic_auth="dXNlcjpwYXNz")
        assert build_auth_headers(config) == {"Authorization": "Basic dXNlcjpwYXNz"}

    def test_no_header_without_credentials(self):
        assert build_auth_headers(make_settings()) == {}


class TestWebhookUrl:
    def test_url_shape(self):
        url = webhook_url(make_settings(kestra_url=KESTRA_URL + "/"), "recipes")
        assert url == (
            f"{KESTRA_URL}/api/v1/executions/webhook/ai.smartfridge/generate-recipes/recipes-key"
        )

    @pytest.mark.parametrize(
        "overrides",
        [{"kestra_url": ""}, {"kestra_shopping_webhook_key": ""}],
    )
    def test_missing_url_or_key_raises(self, overrides):
        with pytest.raises(EngineNotConfiguredError) as exc_info:
            webhook_url(make_settings(**overrides), "shopping")
        assert exc_info.value.kind == "shopping"
        assert isinstance(exc_info.value, DispatchError)


class TestWebhookPayload:
    def test_recipes_payload_applies_defaults(self):
        inputs = PipelineInputs(
            user_id="u1",
            inventory=[InventoryItem(name="milk")],
            available_time=0,
            dietary_restriction="",
            allergies=None,
            skill_level=None,
        )
        payload = build_webhook_payload("recipes", inputs)
        assert payload["availableTime"] == 30
        assert payload["dietaryRestriction"] == "None"
        assert payload["allergies"] == "None"
        assert payload["skillLevel"] == "beginner"
        assert payload["fridgeImage"] == ""
        assert json.loads(payload["inventory"]) == [{"name": "milk", "quantity": "1"}]

    def test_inventory_payload(self):
        inputs = PipelineInputs(user_id="u1", manual_inventory="milk, eggs")
        assert build_webhook_payload("inventory", inputs) == {
            "userId": "u1",
            "fridgeImage": "",
            "manualInventory": "milk, eggs",
        }

    def test_shopping_payload(self):
        inputs = PipelineInputs(user_id="u1", recipe_filter="Pesto")
        assert build_webhook_payload("shopping", inputs) == {
            "userId": "u1",
            "recipeFilter": "Pesto",
        }

    def test_main_payload_carries_run_flags(self):
        inputs = PipelineInputs(user_id="u1", run_shopping=False)
        payload = build_webhook_payload("main", inputs)
        assert payload["runInventory"] is True
        assert payload["runShopping"] is False

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            build_webhook_payload("dessert", PipelineInputs(user_id="u1"))  # type: ignore[arg-type]


class TestClassifyResponse:
    def test_final_plan_is_inline(self):
        body = {"id": "ex1", "state": {"current": "SUCCESS"}, "outputs": {"final_output": {"finalPlan": PLAN}}}
        assert classify_response(body) == InlineResult(PLAN)

    def test_agent_text_is_inline(self):
        body = {"outputs": {"format_output": {"agentResponse": "```json\n{}\n```"}}}
        assert classify_response(body) == InlineResult("```json\n{}\n```")

    def test_plan_shaped_body_is_inline(self):
        assert classify_response(PLAN) == InlineResult(PLAN)

    def test_execution_metadata_is_async(self):
        body = {"id": "ex42", "namespace": "ai.smartfridge", "state": {"current": "CREATED"}}
        assert classify_response(body) == AsyncJob(job_id="ex42", state="CREATED")

    def test_flat_state_string(self):
        assert classify_response({"id": "ex1", "state": "RUNNING"}) == AsyncJob("ex1", "RUNNING")

    def test_result_output(self):
        body = {"outputs": {"output_result": {"result": "[\"milk\"]"}}}
        assert classify_response(body) == InlineResult('["milk"]')

    def test_plain_text_body(self):
        assert classify_response("Done.") == InlineResult("Done.")

    def test_empty_values_skipped_by_extract(self):
        body = {"outputs": {"final_output": {"finalPlan": ""}, "agentResponse": "hi"}}
        assert extract_output(body) == "hi"


class TestTrigger:
    @pytest.mark.asyncio
    async def test_posts_payload_with_auth(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "ex1", "state": {"current": "CREATED"}})

        dispatcher, http = _dispatcher(handler, kestra_api_token="tok")
        async with http:
            result = await dispatcher.trigger("inventory", PipelineInputs(user_id="u1"))

        assert result == AsyncJob("ex1", "CREATED")
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url).endswith("/ai.smartfridge/manage-inventory/inventory-key")
        assert request.headers["Authorization"] == "Bearer tok"
        assert json.loads(request.content)["userId"] == "u1"

    @pytest.mark.asyncio
    async def test_inline_plan(self):
        dispatcher, http = _dispatcher(lambda request: httpx.Response(200, json=PLAN))
        async with http:
            result = await dispatcher.trigger("recipes", PipelineInputs(user_id="u1"))
        assert result == InlineResult(PLAN)

    @pytest.mark.asyncio
    async def test_non_json_body_is_text(self):
        dispatcher, http = _dispatcher(lambda request: httpx.Response(200, text="All done"))
        async with http:
            result = await dispatcher.trigger("main", PipelineInputs(user_id="u1"))
        assert result == InlineResult("All done")

    @pytest.mark.asyncio
    async def test_non_2xx_raises_dispatch_error(self):
        dispatcher, http = _dispatcher(
            lambda request: httpx.Response(404, text="Flow not found")
        )
        async with http:
            with pytest.raises(DispatchError) as exc_info:
                await dispatcher.trigger("shopping", PipelineInputs(user_id="u1"))
        assert exc_info.value.status_code == 404
        assert exc_info.value.body == "Flow not found"
        assert "Flow not found" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_network_error_raises_dispatch_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher, http = _dispatcher(handler)
        async with http:
            with pytest.raises(DispatchError) as exc_info:
                await dispatcher.trigger("recipes", PipelineInputs(user_id="u1"))
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_unconfigured_kind_sends_nothing(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=PLAN)

        dispatcher, http = _dispatcher(handler, kestra_recipes_webhook_key="")
        async with http:
            with pytest.raises(EngineNotConfiguredError):
                await dispatcher.trigger("recipes", PipelineInputs(user_id="u1"))
        assert calls == []
