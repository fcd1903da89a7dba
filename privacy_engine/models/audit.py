"""AuditEventRecord model - immutable record of every privacy-relevant fact.

Design principles:
- Append-only: never update or delete audit rows
- event_id is unique so that at-least-once delivery can be deduplicated
  by the database itself
- details carries ids, counts and reasons only, never personal content
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from privacy_engine.database import Base


class AuditEventRecord(Base):
    __tablename__ = "privacy_audit_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # e.g. "request.created", "request.transitioned", "consent.withdrawn"
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="data_subject_request | consent | retention",
    )
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)
    subject_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )

    __table_args__ = (
        Index("ix_privacy_audit_entity", "entity_type", "entity_id"),
        Index("ix_privacy_audit_subject_time", "subject_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditEventRecord event_id={self.event_id} type={self.event_type!r}>"
