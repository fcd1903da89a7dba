"""Structured logging configuration.

Configures structlog with JSON output in production and a readable console
renderer in development.

Features:
- Request ID propagation through middleware
- Data subject ID in log entries while a subject-scoped operation runs
- ISO8601 timestamps in UTC
- Stack traces for exceptions

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "event": "privacy.request.created",
        "request_id": "req_789...",
        "subject_id": "subject-42",
        "right_type": "erasure"
    }

Only identifiers are logged. Descriptions, consent text and payloads stay
out of the log stream.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.types import Processor


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
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Request ID Middleware
# ------------------------------------------------------------------ #


class RequestIdMiddleware:
    """ASGI middleware that binds a request_id for every HTTP request.

    The id is echoed back in the ``x-request-id`` response header. An
    incoming ``x-request-id`` header is reused so that callers can correlate
    their own logs with ours.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_request_id(scope) or f"req_{uuid.uuid4().hex[:16]}"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        async def send_with_request_id(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_request_id)


def _incoming_request_id(scope: dict[str, Any]) -> str | None:
    for name, value in scope.get("headers", []):
        if name == b"x-request-id":
            text = value.decode("latin-1").strip()
            # Cap length; the header is caller-controlled
            return text[:64] or None
    return None


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_subject_context(subject_id: str) -> None:
    """Bind the data subject ID to log context for the current task."""
    structlog.contextvars.bind_contextvars(subject_id=str(subject_id))


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
