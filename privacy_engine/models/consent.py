"""SQLAlchemy ORM model for the consent ledger.

Append-only: rows are inserted once and only ``withdrawn_at`` (plus the
version counter) is ever updated, and only while it is still NULL.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, Boolean, DateTime, Identity, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from privacy_engine.database import Base


class ConsentRecordRow(Base):
    __tablename__ = "consent_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(128), nullable=False)
    purpose: Mapped[str] = mapped_column(String(128), nullable=False)
    lawful_basis: Mapped[str] = mapped_column(String(32), nullable=False)
    is_given: Mapped[bool] = mapped_column(Boolean, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consent_method: Mapped[str] = mapped_column(String(64), nullable=False)
    consent_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict, server_default="{}"
    )
    policy_version: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Insertion order; breaks ties between records sharing a timestamp
    seq: Mapped[int] = mapped_column(BigInteger, Identity(), nullable=False, unique=True)

    __table_args__ = (
        Index("ix_consent_subject_purpose_ts", "subject_id", "purpose", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<ConsentRecordRow id={self.id} purpose={self.purpose!r} given={self.is_given}>"
