"""Audit event emission.

Provides a simple, non-blocking interface for recording one audit event per
request transition, consent write and confirmed retention deletion.

Design:
- Emission happens AFTER the primary operation has been committed. A failed
  emission is logged and swallowed here, in one place, so it can never roll
  back or fail the business operation it describes.
- Delivery is at-least-once. Every event carries a unique event_id so that a
  downstream sink can deduplicate.
- String details are capped at 500 characters; audit rows are not the place
  for free text at full fidelity.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from privacy_engine.models.audit import AuditEventRecord

log = structlog.get_logger(__name__)

_DETAIL_MAX_CHARS = 500


def _truncate(text: str | None, max_chars: int = _DETAIL_MAX_CHARS) -> str | None:
    """Truncate text to max_chars, appending '...' if truncated."""
    if text is None:
        return None
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


@dataclass(frozen=True)
class AuditEvent:
    """A single auditable fact."""

    event_type: str
    entity_type: str
    entity_id: str
    occurred_at: datetime
    subject_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "subject_id": self.subject_id,
            "occurred_at": self.occurred_at.isoformat(),
            "details": _sanitize_details(self.details),
        }


class AuditEmitter(Protocol):
    async def emit(self, event: AuditEvent) -> None: ...


async def emit_safely(emitter: AuditEmitter, event: AuditEvent) -> None:
    """Emit ``event``; log and drop any failure."""
    try:
        await emitter.emit(event)
    except Exception as exc:
        log.error(
            "audit.emit_failed",
            event_id=event.event_id,
            event_type=event.event_type,
            entity_id=event.entity_id,
            error=str(exc),
        )


class LogAuditEmitter:
    """Writes audit events to the structured log stream."""

    async def emit(self, event: AuditEvent) -> None:
        log.info("audit.event", **event.to_dict())


class InMemoryAuditEmitter:
    """Collects events in a list. Used in tests and single-process tools."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


class SqlAuditEmitter:
    """Appends audit events to the privacy_audit_events table.

    Uses its own short session per event so that an audit write never shares
    a transaction with the operation it describes.

    Usage:
        emitter = SqlAuditEmitter(get_session_factory())
        await emitter.emit(event)
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def emit(self, event: AuditEvent) -> None:
        payload = event.to_dict()
        async with self._session_factory() as session:
            session.add(
                AuditEventRecord(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    subject_id=event.subject_id,
                    occurred_at=event.occurred_at,
                    details=payload["details"],
                )
            )
            await session.commit()


def _sanitize_details(details: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in details.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
        elif isinstance(value, str):
            out[key] = _truncate(value)
        elif isinstance(value, (set, frozenset)):
            out[key] = sorted(value)
        else:
            out[key] = value
    return out
