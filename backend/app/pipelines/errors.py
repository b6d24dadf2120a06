"""Typed failures raised by the pipeline client.

Each error carries a short user-facing message and an ``error`` code the API
returns verbatim. Raw engine payloads stay on the exception for logging but
are never part of the message.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    code = "pipeline_error"
    message = "Something went wrong. Please try again."
    retryable = False

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail


class DispatchError(PipelineError):
    """The engine rejected the webhook trigger (non-2xx)."""

    code = "dispatch_failed"
    message = "Could not start the pipeline."
    retryable = True

    def __init__(self, status_code: int | None, body: str = "", detail: str | None = None) -> None:
        super().__init__(detail or f"Webhook trigger failed with HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class EngineNotConfiguredError(DispatchError):
    code = "engine_not_configured"
    message = "The pipeline engine is not configured for this action."
    retryable = False

    def __init__(self, kind: str) -> None:
        super().__init__(None, detail=f"No webhook configured for pipeline {kind!r}")
        self.kind = kind


class ExecutionFailedError(PipelineError):
    code = "pipeline_failed"
    message = "The pipeline failed."

    def __init__(self, execution_id: str, state: str = "FAILED") -> None:
        super().__init__(f"Execution {execution_id} ended in state {state}")
        self.execution_id = execution_id
        self.state = state


class PipelineTimeoutError(PipelineError, TimeoutError):
    code = "pipeline_timeout"
    message = "This is taking too long. Please try again."
    retryable = True

    def __init__(self, execution_id: str, attempts: int) -> None:
        super().__init__(f"Execution {execution_id} not finished after {attempts} polls")
        self.execution_id = execution_id
        self.attempts = attempts


class NormalizationError(PipelineError):
    """The engine or LLM returned no text content at all."""

    code = "empty_result"

    def __init__(self, raw: Any = None, detail: str | None = None) -> None:
        super().__init__(detail or "No text content in pipeline output")
        self.raw = raw


class PipelineBusyError(PipelineError):
    code = "pipeline_busy"
    message = "This pipeline is already running."

    def __init__(self, user_id: str, kind: str) -> None:
        super().__init__(f"Pipeline {kind!r} already running for user {user_id}")
        self.user_id = user_id
        self.kind = kind


class PipelineCancelledError(PipelineError):
    code = "pipeline_cancelled"
    message = "The pipeline run was cancelled."
    retryable = True

    def __init__(self, user_id: str, kind: str) -> None:
        super().__init__(f"Pipeline {kind!r} cancelled for user {user_id}")
        self.user_id = user_id
        self.kind = kind
