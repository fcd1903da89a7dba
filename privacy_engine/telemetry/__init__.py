"""Telemetry package: structured logging and request correlation."""

from __future__ import annotations

from privacy_engine.telemetry.logging import (
    RequestIdMiddleware,
    bind_subject_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "RequestIdMiddleware",
    "bind_subject_context",
    "clear_context",
    "configure_logging",
]
