"""Create privacy engine tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17

Adds:
- data_subject_requests
  - id VARCHAR(64) PK
  - subject_id VARCHAR(128)
  - right_type / status VARCHAR(32), wire-stable codes
  - created_at / deadline_at / processed_at / completed_at TIMESTAMP WITH TIME ZONE
  - request_payload / response_payload / processing_notes / data_categories JSONB
  - version INTEGER  optimistic concurrency counter

- consent_records
  - append-only; only withdrawn_at and version are ever updated
  - seq (identity) orders records that share a timestamp

- retention_policies
  - unique (data_type, category); retention stored in seconds

- privacy_audit_events
  - append-only; event_id unique for downstream deduplication

Notes:
- No enum types; codes stored as VARCHAR so new codes need no migration.
- Statutory retention floors are code constants and are not stored.
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create request, consent, retention and audit tables."""

    # ------------------------------------------------------------------
    # data_subject_requests
    # ------------------------------------------------------------------
    op.create_table(
        "data_subject_requests",
        sa.Column("id", sa.String(64), primary_key=True, nullable=False),
        sa.Column(
            "subject_id",
            sa.String(128),
            nullable=False,
            comment="Identifier of the data subject",
        ),
        sa.Column(
            "right_type",
            sa.String(32),
            nullable=False,
            comment="access | rectification | erasure | restrict_processing | data_portability | object",
        ),
        sa.Column(
            "status",
            sa.String(32),
            nullable=False,
            server_default="pending",
            comment="pending | under_review | in_progress | completed | rejected | partially_completed",
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("data_categories", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("urgent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="UTC timestamp of request submission",
        ),
        sa.Column(
            "deadline_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="Compliance deadline, 30 days from created_at",
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "completed_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Set when the request reaches a terminal status",
        ),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("request_payload", postgresql.JSONB, nullable=True),
        sa.Column("response_payload", postgresql.JSONB, nullable=True),
        sa.Column("processing_notes", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_data_subject_requests_subject_id", "data_subject_requests", ["subject_id"])
    op.create_index("ix_dsr_subject_created", "data_subject_requests", ["subject_id", "created_at"])
    op.create_index("ix_dsr_status_deadline", "data_subject_requests", ["status", "deadline_at"])

    # ------------------------------------------------------------------
    # consent_records
    # ------------------------------------------------------------------
    op.create_table(
        "consent_records",
        sa.Column("id", sa.String(64), primary_key=True, nullable=False),
        sa.Column("subject_id", sa.String(128), nullable=False),
        sa.Column("purpose", sa.String(128), nullable=False),
        sa.Column("lawful_basis", sa.String(32), nullable=False),
        sa.Column("is_given", sa.Boolean(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consent_method", sa.String(64), nullable=False),
        sa.Column("consent_text", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("policy_version", sa.String(32), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("seq", sa.BigInteger(), sa.Identity(), nullable=False, unique=True),
    )
    op.create_index(
        "ix_consent_subject_purpose_ts",
        "consent_records",
        ["subject_id", "purpose", "timestamp"],
    )

    # ------------------------------------------------------------------
    # retention_policies
    # ------------------------------------------------------------------
    op.create_table(
        "retention_policies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("data_type", sa.String(64), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("retention_seconds", sa.Integer(), nullable=False),
        sa.Column("lawful_basis", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("conditions", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.UniqueConstraint("data_type", "category", name="uq_retention_type_category"),
    )

    # ------------------------------------------------------------------
    # privacy_audit_events
    # ------------------------------------------------------------------
    op.create_table(
        "privacy_audit_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("event_id", sa.String(64), nullable=False, unique=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column(
            "entity_type",
            sa.String(32),
            nullable=False,
            comment="data_subject_request | consent | retention",
        ),
        sa.Column("entity_id", sa.String(128), nullable=False),
        sa.Column("subject_id", sa.String(128), nullable=True),
        sa.Column(
            "occurred_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("details", postgresql.JSONB, nullable=False, server_default="{}"),
    )
    op.create_index("ix_privacy_audit_events_event_type", "privacy_audit_events", ["event_type"])
    op.create_index("ix_privacy_audit_events_subject_id", "privacy_audit_events", ["subject_id"])
    op.create_index("ix_privacy_audit_entity", "privacy_audit_events", ["entity_type", "entity_id"])
    op.create_index(
        "ix_privacy_audit_subject_time", "privacy_audit_events", ["subject_id", "occurred_at"]
    )


def downgrade() -> None:
    """Drop all privacy engine tables."""
    op.drop_table("privacy_audit_events")
    op.drop_table("retention_policies")
    op.drop_table("consent_records")
    op.drop_table("data_subject_requests")
