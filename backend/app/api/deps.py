"""Process-wide singletons handed to routes through FastAPI dependencies.

Tests swap them with ``app.dependency_overrides``.
"""

from __future__ import annotations

from app.config import settings
from app.pipelines.client import PipelineClient
from app.store.documents import DocumentStore, InMemoryDocumentStore

_store: DocumentStore = InMemoryDocumentStore()
_pipeline_client: PipelineClient | None = None


def get_store() -> DocumentStore:
    return _store


def get_pipeline_client() -> PipelineClient:
    global _pipeline_client  # noqa: PLW0603
    if _pipeline_client is None:
        _pipeline_client = PipelineClient(config=settings, store=_store)
    return _pipeline_client
