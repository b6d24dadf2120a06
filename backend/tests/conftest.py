"""Shared fixtures: isolated settings, an in-memory store, and an ASGI test client."""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from app.api.deps import get_pipeline_client, get_store
from app.config import Settings
from app.main import app
from app.pipelines.client import PipelineClient
from app.store.documents import InMemoryDocumentStore

KESTRA_URL = "http://kestra.test:8080"


def make_settings(**overrides) -> Settings:
    """Engine configured with every webhook key, zero poll interval."""
    values = {
        "kestra_url": KESTRA_URL,
        "kestra_namespace": "ai.smartfridge",
        "kestra_main_webhook_key": "main-key",
        "kestra_inventory_webhook_key": "inventory-key",
        "kestra_recipes_webhook_key": "recipes-key",
        "kestra_shopping_webhook_key": "shopping-key",
        "kestra_api_token": None,
        "kestra_basic_auth": None,
        "kestra_poll_interval_seconds": 0.0,
        "kestra_poll_max_attempts": 60,
        "google_gemini_api_key": "",
    }
    values.update(overrides)
    return Settings(**values)


def json_response(method: str, url: str, body, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=body, request=httpx.Request(method, url))


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest_asyncio.fixture
async def client(store):
    """ASGI client with the store swapped in and the engine unconfigured."""
    pipeline_client = PipelineClient(config=make_settings(kestra_url=""), store=store)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_pipeline_client] = lambda: pipeline_client
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
