import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.routes import health, pipelines, users
from app.logging import configure_logging
from app.pipelines.errors import (
    DispatchError,
    EngineNotConfiguredError,
    NormalizationError,
    PipelineBusyError,
    PipelineCancelledError,
    PipelineError,
    PipelineTimeoutError,
)

configure_logging()

logger = structlog.get_logger()

app = FastAPI(
    title="Kitchen OS API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url=None,
)


def _status_for(exc: PipelineError) -> int:
    if isinstance(exc, EngineNotConfiguredError):
        return 503
    if isinstance(exc, PipelineTimeoutError):
        return 504
    if isinstance(exc, (PipelineBusyError, PipelineCancelledError)):
        return 409
    return 502


def _with_request_id(request: Request, response: JSONResponse) -> JSONResponse:
    response.headers["X-Request-ID"] = getattr(
        request.state, "request_id", request.headers.get("X-Request-ID", "")
    )
    return response


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request ID to every request for log correlation.

    Bound into structlog context vars and echoed in X-Request-ID so the UI
    can report it alongside an error message.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Short, kind-specific message for the UI; raw payloads stay in the logs."""
    log_fields: dict = {"path": request.url.path, "error": exc.code, "detail": str(exc)}
    if isinstance(exc, DispatchError):
        log_fields.update(status=exc.status_code, body=exc.body)
    if isinstance(exc, NormalizationError):
        log_fields["raw"] = repr(exc.raw)
    logger.warning("pipeline_error", **log_fields)

    response = JSONResponse(
        status_code=_status_for(exc),
        content={"error": exc.code, "message": exc.message, "retryable": exc.retryable},
    )
    return _with_request_id(request, response)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return the shared error shape instead of FastAPI's {"detail": [...]}."""
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    response = JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "; ".join(messages),
            "retryable": False,
        },
    )
    return _with_request_id(request, response)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )
    return _with_request_id(request, response)


app.include_router(health.router)
app.include_router(pipelines.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
