"""Telemetry package for observability.

Structured logging with request context and subject masking.
"""

from __future__ import annotations

from subject_rights.telemetry.logging import (
    bind_request_context,
    clear_context,
    configure_logging,
    mask_subject_value,
)

__all__ = [
    "bind_request_context",
    "clear_context",
    "configure_logging",
    "mask_subject_value",
]
