"""Execution poller: waits for an async Kestra execution to finish.

Fixed interval, fixed attempt ceiling, no backoff. A single failed poll
(network error, non-2xx, unreadable body) is logged and costs one attempt.
FAILED ends polling immediately. The sleep between attempts is a normal
``asyncio.sleep``, so cancelling the surrounding task stops the loop.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from app.config import Settings, settings
from app.models.contracts import PipelineJob
from app.pipelines.dispatcher import build_auth_headers, extract_output
from app.pipelines.errors import ExecutionFailedError, NormalizationError, PipelineTimeoutError

log = structlog.get_logger("kitchen.poller")

SUCCESS_STATES = frozenset({"SUCCESS", "WARNING"})
FAILED_STATES = frozenset({"FAILED", "KILLED", "CANCELLED"})


def status_url(config: Settings, execution_id: str) -> str:
    return f"{config.kestra_url.rstrip('/')}/api/v1/executions/{execution_id}"


def _current_state(execution: dict[str, Any]) -> str:
    state = execution.get("state")
    if isinstance(state, dict):
        state = state.get("current")
    return str(state or "").upper()


def success_output(execution: dict[str, Any]) -> Any:
    """Pick the output of a finished execution, most specific field first."""
    output = extract_output(execution)
    if output is not None:
        return output
    outputs = execution.get("outputs")
    if outputs:
        return outputs
    raise NormalizationError(execution, detail="Execution succeeded but produced no outputs")


class ExecutionPoller:
    def __init__(self, http_client: httpx.AsyncClient, config: Settings = settings) -> None:
        self._http = http_client
        self._config = config

    async def _fetch(self, url: str, job: PipelineJob, attempt: int) -> dict[str, Any] | None:
        try:
            resp = await self._http.get(
                url,
                headers=build_auth_headers(self._config),
                timeout=self._config.kestra_request_timeout_seconds,
            )
        except httpx.RequestError as exc:
            log.warning(
                "kestra_poll_error",
                execution_id=job.id,
                attempt=attempt,
                error=type(exc).__name__,
            )
            return None
        if not resp.is_success:
            log.warning(
                "kestra_poll_http_error",
                execution_id=job.id,
                attempt=attempt,
                status=resp.status_code,
            )
            return None
        try:
            execution = resp.json()
        except ValueError:
            log.warning("kestra_poll_bad_body", execution_id=job.id, attempt=attempt)
            return None
        return execution if isinstance(execution, dict) else None

    async def poll(self, job_id: str) -> PipelineJob:
        """Poll until SUCCESS, raising on FAILED or when attempts run out."""
        job = PipelineJob(id=job_id)
        url = status_url(self._config, job_id)
        max_attempts = self._config.kestra_poll_max_attempts
        interval = self._config.kestra_poll_interval_seconds

        log.info("kestra_poll_start", execution_id=job_id, max_attempts=max_attempts)
        for attempt in range(1, max_attempts + 1):
            await asyncio.sleep(interval)

            execution = await self._fetch(url, job, attempt)
            if execution is None:
                continue

            state = _current_state(execution)
            log.debug("kestra_poll_state", execution_id=job_id, attempt=attempt, state=state)
            if state in SUCCESS_STATES:
                job.state = "SUCCESS"
                job.raw_output = success_output(execution)
                log.info("kestra_poll_succeeded", execution_id=job_id, attempts=attempt)
                return job
            if state in FAILED_STATES:
                job.state = "FAILED"
                log.error("kestra_execution_failed", execution_id=job_id, state=state)
                raise ExecutionFailedError(job_id, state)

        job.state = "TIMED_OUT"
        log.error("kestra_poll_timed_out", execution_id=job_id, attempts=max_attempts)
        raise PipelineTimeoutError(job_id, max_attempts)
