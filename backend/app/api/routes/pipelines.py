"""Pipeline endpoints: thin proxy to PipelineClient.

Errors raised by the client (DispatchError, ExecutionFailedError, ...) are
rendered by the PipelineError handler in app.main.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_pipeline_client
from app.config import PipelineKind
from app.models.contracts import PipelineInputs, dump
from app.pipelines.client import PipelineClient

logger = structlog.get_logger()

router = APIRouter(tags=["pipelines"])


@router.post("/pipelines/{kind}")
async def run_pipeline(
    kind: PipelineKind,
    body: PipelineInputs,
    client: PipelineClient = Depends(get_pipeline_client),
) -> JSONResponse:
    """Run one pipeline to completion and return its canonical result.

    Blocks for as long as the engine takes (up to the polling ceiling).
    """
    logger.info(
        "pipeline_requested",
        kind=kind,
        user_id=body.user_id,
        has_image=bool(body.fridge_image),
    )
    result = await client.run(kind, body)
    return JSONResponse(content=dump(result))


@router.get("/pipelines/{kind}/{user_id}")
async def pipeline_status(
    kind: PipelineKind,
    user_id: str,
    client: PipelineClient = Depends(get_pipeline_client),
) -> dict:
    return {"kind": kind, "userId": user_id, "running": client.is_running(user_id, kind)}


@router.delete("/pipelines/{kind}/{user_id}")
async def cancel_pipeline(
    kind: PipelineKind,
    user_id: str,
    client: PipelineClient = Depends(get_pipeline_client),
) -> dict:
    """Abort an in-flight run (user navigated away or wants to retrigger)."""
    cancelled = client.cancel(user_id, kind)
    return {"status": "cancelled" if cancelled else "idle"}
