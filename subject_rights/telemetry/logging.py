"""Structured logging configuration.

Configures structlog with JSON output in production and a console renderer
in development.

Features:
- ISO8601 UTC timestamps
- Request context (dsar_request_id, dsar_kind) bound for the duration of
  background processing via contextvars
- Subject identifiers masked before rendering, so personal data never
  reaches the log pipeline

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "logger": "subject_rights.services.deletion",
        "event": "dsar.deletion.item_completed",
        "dsar_request_id": 42,
        "dsar_kind": "delete",
        "table": "analytics.public.orders",
        "deleted_rows": 40
    }
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

# Event keys that may carry the subject's identifying literal
_SUBJECT_KEYS = ("subject_value",)


def mask_subject_value(value: Any) -> str:
    """Mask an identifying literal, keeping only enough to correlate logs.

    "alice@example.com" -> "al***om"
    """
    text = str(value)
    if len(text) <= 4:
        return "***"
    return f"{text[:2]}***{text[-2:]}"


def redact_subject_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask subject identifiers in every log entry."""
    for key in _SUBJECT_KEYS:
        if key in event_dict and event_dict[key] is not None:
            event_dict[key] = mask_subject_value(event_dict[key])
    return event_dict


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the application.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        redact_subject_values,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_request_context(request_id: int, kind: str) -> AbstractContextManager[Mapping[str, Any]]:
    """Bind the request being processed to every log entry inside the block.

    Workers are long-lived coroutines, so the binding is scoped to a `with`
    block and restored on exit instead of sticking to the worker.
    """
    return structlog.contextvars.bound_contextvars(dsar_request_id=request_id, dsar_kind=kind)


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
