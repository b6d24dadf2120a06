"""Health check endpoint with a Kestra connectivity probe.

An unreachable or unconfigured engine does not affect the overall status
("ok"): the pipeline client degrades to the direct LLM path, so the API
stays usable and load balancers keep routing.
"""

from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter

from app.config import settings
from app.pipelines.dispatcher import build_auth_headers

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds


async def _check_kestra() -> str:
    """GET the engine's config endpoint (cheap, authenticated)."""
    if not settings.engine_configured:
        return "not_configured"
    url = f"{settings.kestra_url.rstrip('/')}/api/v1/configs"
    try:
        async with httpx.AsyncClient(timeout=_CHECK_TIMEOUT) as client:
            resp = await client.get(url, headers=build_auth_headers(settings))
        return "connected" if resp.status_code < 500 else "disconnected"
    except httpx.HTTPError as exc:
        logger.debug("health_kestra_failed", error=str(exc))
        return "disconnected"


@router.get("/health")
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": "0.1.0",
        "environment": settings.environment,
        "kestra": await _check_kestra(),
        "gemini": "configured" if settings.google_gemini_api_key else "not_configured",
    }
