"""Shared structlog configuration for the API process.

Engine payloads (agent text, base64 fridge photos) can be megabytes long,
so a processor clips every string field before rendering.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog

from app.config import Settings, settings

MAX_FIELD_CHARS = 2000

_LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class JsonLinesFileSink:
    """structlog processor that appends each event to a file as one JSON line.

    Runs before the renderer, so the file gets JSON even when stdout uses the
    console renderer. If the file cannot be opened or written, the sink turns
    itself off and stdout logging carries on.
    """

    def __init__(self, file_path: str) -> None:
        self._render = structlog.processors.JSONRenderer()
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet
            print(f"WARNING: Could not open log file {file_path!r}: {exc}", file=sys.stderr)

    @property
    def enabled(self) -> bool:
        return self._file is not None

    def __call__(
        self, logger: Any, method: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        if self._file is None:
            return event_dict
        try:
            self._file.write(str(self._render(logger, method, dict(event_dict))) + "\n")
            self._file.flush()
        except (OSError, ValueError):
            self._file = None
            print("WARNING: Log file write failed. File logging disabled.", file=sys.stderr)
        return event_dict


def clip_long_strings(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor: truncate oversized string values in place."""
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            event_dict[key] = f"{value[:MAX_FIELD_CHARS]}... [{len(value)} chars]"
    return event_dict


def configure_logging(config: Settings = settings) -> None:
    """Console renderer in development, JSON lines everywhere else.

    With ``log_file`` set, every event is also appended to that file as JSON.
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if config.environment == "development"
        else structlog.processors.JSONRenderer()
    )
    level = _LOG_LEVEL_MAP.get(config.log_level.upper(), logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        clip_long_strings,
    ]
    if config.log_file:
        processors.append(JsonLinesFileSink(config.log_file))
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
