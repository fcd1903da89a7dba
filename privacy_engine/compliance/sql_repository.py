"""PostgreSQL-backed repositories (SQLAlchemy 2.0 async).

Drop-in replacements for the in-memory repositories. Each call opens its
own short session from the injected session factory and commits before
returning, so a returned snapshot is always durable.

Optimistic concurrency is enforced in SQL:

    UPDATE data_subject_requests
       SET ..., version = :expected + 1
     WHERE id = :id AND version = :expected

A zero rowcount is resolved by re-reading the row: missing means
NotFoundError, anything else means ConcurrencyConflict.

SQLAlchemy and socket errors are wrapped in PersistenceError here so the
core never sees a storage-specific exception.

Usage::

    init_db(settings)
    repo = SqlRequestRepository(get_session_factory())
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from privacy_engine.compliance.domain import (
    ConsentRecord,
    DataSubjectRequest,
    LawfulBasis,
    RequestStatus,
    RetentionPolicy,
    RightType,
)
from privacy_engine.core.errors import (
    AlreadyWithdrawn,
    ConcurrencyConflict,
    NotFoundError,
    PersistenceError,
)
from privacy_engine.models.consent import ConsentRecordRow
from privacy_engine.models.gdpr_request import DataSubjectRequestRecord
from privacy_engine.models.retention_policy import RetentionPolicyRecord

log = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


@asynccontextmanager
async def _session(factory: SessionFactory, operation: str) -> AsyncIterator[AsyncSession]:
    """Open a session and translate backend failures into PersistenceError."""
    try:
        async with factory() as session:
            yield session
    except (SQLAlchemyError, OSError) as exc:
        log.error("privacy.persistence.failed", operation=operation, error=str(exc))
        raise PersistenceError(operation, f"{operation} failed: {exc}") from exc


# ------------------------------------------------------------------ #
# Row <-> record mapping
# ------------------------------------------------------------------ #


def _row_to_request(row: DataSubjectRequestRecord) -> DataSubjectRequest:
    return DataSubjectRequest(
        id=row.id,
        subject_id=row.subject_id,
        right_type=RightType(row.right_type),
        status=RequestStatus(row.status),
        description=row.description,
        data_categories=frozenset(row.data_categories or ()),
        urgent=row.urgent,
        created_at=row.created_at,
        processed_at=row.processed_at,
        completed_at=row.completed_at,
        rejection_reason=row.rejection_reason,
        request_payload=row.request_payload,
        response_payload=row.response_payload,
        processing_notes=tuple(row.processing_notes or ()),
        version=row.version,
    )


def _request_values(request: DataSubjectRequest) -> dict[str, object]:
    """Mutable columns; id, subject, type and created_at never change."""
    return {
        "status": request.status.value,
        "processed_at": request.processed_at,
        "completed_at": request.completed_at,
        "rejection_reason": request.rejection_reason,
        "response_payload": request.response_payload,
        "processing_notes": list(request.processing_notes),
    }


def _row_to_consent(row: ConsentRecordRow) -> ConsentRecord:
    return ConsentRecord(
        id=row.id,
        subject_id=row.subject_id,
        purpose=row.purpose,
        lawful_basis=LawfulBasis(row.lawful_basis),
        is_given=row.is_given,
        timestamp=row.timestamp,
        consent_method=row.consent_method,
        policy_version=row.policy_version,
        consent_text=row.consent_text,
        metadata=dict(row.metadata_json or {}),
        withdrawn_at=row.withdrawn_at,
        version=row.version,
    )


def _row_to_policy(row: RetentionPolicyRecord) -> RetentionPolicy:
    return RetentionPolicy(
        data_type=row.data_type,
        category=row.category,
        retention_period=timedelta(seconds=row.retention_seconds),
        lawful_basis=LawfulBasis(row.lawful_basis),
        description=row.description,
        active=row.active,
        created_at=row.created_at,
        conditions=dict(row.conditions or {}),
    )


# ------------------------------------------------------------------ #
# Repositories
# ------------------------------------------------------------------ #


class SqlRequestRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._factory = session_factory

    async def add(self, request: DataSubjectRequest) -> DataSubjectRequest:
        async with _session(self._factory, "request.add") as session:
            session.add(
                DataSubjectRequestRecord(
                    id=request.id,
                    subject_id=request.subject_id,
                    right_type=request.right_type.value,
                    description=request.description,
                    data_categories=sorted(request.data_categories),
                    urgent=request.urgent,
                    created_at=request.created_at,
                    deadline_at=request.deadline,
                    request_payload=request.request_payload,
                    version=request.version,
                    **_request_values(request),
                )
            )
            await session.commit()
        return request

    async def get(self, request_id: str) -> DataSubjectRequest:
        async with _session(self._factory, "request.get") as session:
            row = await session.get(DataSubjectRequestRecord, request_id)
            if row is None:
                raise NotFoundError("DataSubjectRequest", request_id)
            return _row_to_request(row)

    async def save(self, request: DataSubjectRequest, expected_version: int) -> DataSubjectRequest:
        async with _session(self._factory, "request.save") as session:
            result = await session.execute(
                update(DataSubjectRequestRecord)
                .where(
                    DataSubjectRequestRecord.id == request.id,
                    DataSubjectRequestRecord.version == expected_version,
                )
                .values(**_request_values(request), version=expected_version + 1)
            )
            if result.rowcount == 0:
                await session.rollback()
                current = await session.get(DataSubjectRequestRecord, request.id)
                if current is None:
                    raise NotFoundError("DataSubjectRequest", request.id)
                raise ConcurrencyConflict(request.id, expected_version, current.version)
            await session.commit()
        return replace(request, version=expected_version + 1)

    async def list_by_subject(self, subject_id: str) -> list[DataSubjectRequest]:
        async with _session(self._factory, "request.list") as session:
            result = await session.execute(
                select(DataSubjectRequestRecord)
                .where(DataSubjectRequestRecord.subject_id == subject_id)
                .order_by(DataSubjectRequestRecord.created_at.desc())
            )
            return [_row_to_request(row) for row in result.scalars().all()]

    async def list_all(self) -> list[DataSubjectRequest]:
        async with _session(self._factory, "request.list_all") as session:
            result = await session.execute(
                select(DataSubjectRequestRecord).order_by(
                    DataSubjectRequestRecord.created_at.desc()
                )
            )
            return [_row_to_request(row) for row in result.scalars().all()]


class SqlConsentRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._factory = session_factory

    async def add(self, record: ConsentRecord) -> ConsentRecord:
        async with _session(self._factory, "consent.add") as session:
            session.add(
                ConsentRecordRow(
                    id=record.id,
                    subject_id=record.subject_id,
                    purpose=record.purpose,
                    lawful_basis=record.lawful_basis.value,
                    is_given=record.is_given,
                    timestamp=record.timestamp,
                    withdrawn_at=record.withdrawn_at,
                    consent_method=record.consent_method,
                    consent_text=record.consent_text,
                    metadata_json=dict(record.metadata),
                    policy_version=record.policy_version,
                    version=record.version,
                )
            )
            await session.commit()
        return record

    async def get(self, consent_id: str) -> ConsentRecord:
        async with _session(self._factory, "consent.get") as session:
            row = await session.get(ConsentRecordRow, consent_id)
            if row is None:
                raise NotFoundError("ConsentRecord", consent_id)
            return _row_to_consent(row)

    async def save(self, record: ConsentRecord, expected_version: int) -> ConsentRecord:
        async with _session(self._factory, "consent.save") as session:
            # withdrawn_at is the only mutable column and is write-once
            result = await session.execute(
                update(ConsentRecordRow)
                .where(
                    ConsentRecordRow.id == record.id,
                    ConsentRecordRow.version == expected_version,
                    ConsentRecordRow.withdrawn_at.is_(None),
                )
                .values(withdrawn_at=record.withdrawn_at, version=expected_version + 1)
            )
            if result.rowcount == 0:
                await session.rollback()
                current = await session.get(ConsentRecordRow, record.id)
                if current is None:
                    raise NotFoundError("ConsentRecord", record.id)
                if current.version == expected_version and current.withdrawn_at is not None:
                    raise AlreadyWithdrawn(record.id, current.withdrawn_at)
                raise ConcurrencyConflict(record.id, expected_version, current.version)
            await session.commit()
        return replace(record, version=expected_version + 1)

    async def list_by_subject(self, subject_id: str) -> list[ConsentRecord]:
        async with _session(self._factory, "consent.list") as session:
            result = await session.execute(
                select(ConsentRecordRow)
                .where(ConsentRecordRow.subject_id == subject_id)
                .order_by(ConsentRecordRow.timestamp.desc(), ConsentRecordRow.seq.desc())
            )
            return [_row_to_consent(row) for row in result.scalars().all()]

    async def list_all(self) -> list[ConsentRecord]:
        async with _session(self._factory, "consent.list_all") as session:
            result = await session.execute(
                select(ConsentRecordRow).order_by(
                    ConsentRecordRow.timestamp.desc(), ConsentRecordRow.seq.desc()
                )
            )
            return [_row_to_consent(row) for row in result.scalars().all()]


class SqlPolicyRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._factory = session_factory

    async def upsert(self, policy: RetentionPolicy) -> RetentionPolicy:
        data_type, category = policy.key
        values = {
            "data_type": data_type,
            "category": category,
            "retention_seconds": int(policy.retention_period.total_seconds()),
            "lawful_basis": policy.lawful_basis.value,
            "description": policy.description,
            "active": policy.active,
            "created_at": policy.created_at,
            "conditions": dict(policy.conditions),
        }
        stmt = pg_insert(RetentionPolicyRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_retention_type_category",
            set_={k: v for k, v in values.items() if k not in ("data_type", "category")},
        )
        async with _session(self._factory, "policy.upsert") as session:
            await session.execute(stmt)
            await session.commit()
        return policy

    async def list_all(self) -> list[RetentionPolicy]:
        async with _session(self._factory, "policy.list_all") as session:
            result = await session.execute(
                select(RetentionPolicyRecord).order_by(
                    RetentionPolicyRecord.data_type, RetentionPolicyRecord.category
                )
            )
            return [_row_to_policy(row) for row in result.scalars().all()]
