"""SQLAlchemy ORM model for configured retention policies.

Statutory floors are NOT stored here; they are code constants in
privacy_engine.compliance.retention. Rows here can only extend them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from privacy_engine.database import Base


class RetentionPolicyRecord(Base):
    __tablename__ = "retention_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    data_type: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    retention_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    lawful_basis: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    conditions: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict, server_default="{}"
    )

    __table_args__ = (UniqueConstraint("data_type", "category", name="uq_retention_type_category"),)

    def __repr__(self) -> str:
        return f"<RetentionPolicyRecord {self.data_type}/{self.category} {self.retention_seconds}s>"
