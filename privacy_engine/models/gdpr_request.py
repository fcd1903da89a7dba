"""SQLAlchemy ORM model for data subject request persistence.

Tracks the lifecycle of GDPR Art. 15-21 requests, including the mandatory
30-day deadline. Rows are never deleted; a request is itself an audit
record. ``version`` backs optimistic concurrency: every write is an
``UPDATE ... WHERE id = :id AND version = :loaded_version``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from privacy_engine.database import Base


class DataSubjectRequestRecord(Base):
    """Persistent record of a data subject rights request."""

    __tablename__ = "data_subject_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
        comment="Identifier of the data subject",
    )
    right_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="access | rectification | erasure | restrict_processing | data_portability | object",
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="pending",
        comment="pending | under_review | in_progress | completed | rejected | partially_completed",
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    data_categories: Mapped[list[str]] = mapped_column(
        JSONB, nullable=False, default=list, server_default="[]"
    )
    urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="UTC timestamp of request submission",
    )
    deadline_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Compliance deadline, 30 days from created_at",
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set when the request reaches a terminal status",
    )

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    response_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    processing_notes: Mapped[list[str]] = mapped_column(
        JSONB, nullable=False, default=list, server_default="[]"
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_dsr_subject_created", "subject_id", "created_at"),
        Index("ix_dsr_status_deadline", "status", "deadline_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DataSubjectRequestRecord id={self.id} type={self.right_type!r} "
            f"status={self.status!r} v{self.version}>"
        )
