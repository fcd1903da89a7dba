"""Persistence ports and in-memory implementations.

The core only talks to storage through these protocols. Every mutable
entity carries a ``version``; ``save`` is conditional on the version the
caller loaded and bumps it by one. A mismatch raises ConcurrencyConflict,
an unknown id raises NotFoundError. Backend failures must surface as
PersistenceError.

The in-memory repositories are real implementations (used by the default
``memory`` storage backend and by the test suite), not mocks: they yield
to the event loop on every call so that concurrent writers interleave the
same way they would against a database.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from typing import Protocol, TypeVar

import structlog

from privacy_engine.compliance.domain import ConsentRecord, DataSubjectRequest, RetentionPolicy
from privacy_engine.core.errors import ConcurrencyConflict, NotFoundError, PersistenceError
from privacy_engine.core.retry import RetryConfig, persist

log = structlog.get_logger(__name__)


class RequestRepository(Protocol):
    async def add(self, request: DataSubjectRequest) -> DataSubjectRequest: ...

    async def get(self, request_id: str) -> DataSubjectRequest: ...

    async def save(
        self, request: DataSubjectRequest, expected_version: int
    ) -> DataSubjectRequest: ...

    async def list_by_subject(self, subject_id: str) -> list[DataSubjectRequest]: ...

    async def list_all(self) -> list[DataSubjectRequest]: ...


class ConsentRepository(Protocol):
    """``list_*`` return newest first, ties broken by latest insertion first."""

    async def add(self, record: ConsentRecord) -> ConsentRecord: ...

    async def get(self, consent_id: str) -> ConsentRecord: ...

    async def save(self, record: ConsentRecord, expected_version: int) -> ConsentRecord: ...

    async def list_by_subject(self, subject_id: str) -> list[ConsentRecord]: ...

    async def list_all(self) -> list[ConsentRecord]: ...


class PolicyRepository(Protocol):
    async def upsert(self, policy: RetentionPolicy) -> RetentionPolicy: ...

    async def list_all(self) -> list[RetentionPolicy]: ...


# ------------------------------------------------------------------ #
# In-memory implementations
# ------------------------------------------------------------------ #


class InMemoryRequestRepository:
    def __init__(self) -> None:
        self._rows: dict[str, DataSubjectRequest] = {}

    async def add(self, request: DataSubjectRequest) -> DataSubjectRequest:
        await asyncio.sleep(0)
        if request.id in self._rows:
            raise PersistenceError("request.add", f"Duplicate request id {request.id}")
        self._rows[request.id] = request
        return request

    async def get(self, request_id: str) -> DataSubjectRequest:
        await asyncio.sleep(0)
        try:
            return self._rows[request_id]
        except KeyError:
            raise NotFoundError("DataSubjectRequest", request_id) from None

    async def save(self, request: DataSubjectRequest, expected_version: int) -> DataSubjectRequest:
        await asyncio.sleep(0)
        # Check-and-set with no suspension point in between
        current = self._rows.get(request.id)
        if current is None:
            raise NotFoundError("DataSubjectRequest", request.id)
        if current.version != expected_version:
            raise ConcurrencyConflict(request.id, expected_version, current.version)
        stored = replace(request, version=expected_version + 1)
        self._rows[request.id] = stored
        return stored

    async def list_by_subject(self, subject_id: str) -> list[DataSubjectRequest]:
        await asyncio.sleep(0)
        rows = [r for r in self._rows.values() if r.subject_id == subject_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def list_all(self) -> list[DataSubjectRequest]:
        await asyncio.sleep(0)
        return sorted(self._rows.values(), key=lambda r: r.created_at, reverse=True)


class InMemoryConsentRepository:
    """Lists newest first; records sharing a timestamp come latest-added first."""

    def __init__(self) -> None:
        self._rows: dict[str, ConsentRecord] = {}

    async def add(self, record: ConsentRecord) -> ConsentRecord:
        await asyncio.sleep(0)
        if record.id in self._rows:
            raise PersistenceError("consent.add", f"Duplicate consent id {record.id}")
        self._rows[record.id] = record
        return record

    async def get(self, consent_id: str) -> ConsentRecord:
        await asyncio.sleep(0)
        try:
            return self._rows[consent_id]
        except KeyError:
            raise NotFoundError("ConsentRecord", consent_id) from None

    async def save(self, record: ConsentRecord, expected_version: int) -> ConsentRecord:
        await asyncio.sleep(0)
        current = self._rows.get(record.id)
        if current is None:
            raise NotFoundError("ConsentRecord", record.id)
        if current.version != expected_version:
            raise ConcurrencyConflict(record.id, expected_version, current.version)
        stored = replace(record, version=expected_version + 1)
        self._rows[record.id] = stored
        return stored

    async def list_by_subject(self, subject_id: str) -> list[ConsentRecord]:
        await asyncio.sleep(0)
        rows = [r for r in self._rows.values() if r.subject_id == subject_id]
        return sorted(reversed(rows), key=lambda r: r.timestamp, reverse=True)

    async def list_all(self) -> list[ConsentRecord]:
        await asyncio.sleep(0)
        return sorted(reversed(self._rows.values()), key=lambda r: r.timestamp, reverse=True)


class InMemoryPolicyRepository:
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], RetentionPolicy] = {}

    async def upsert(self, policy: RetentionPolicy) -> RetentionPolicy:
        await asyncio.sleep(0)
        self._rows[policy.key] = policy
        return policy

    async def list_all(self) -> list[RetentionPolicy]:
        await asyncio.sleep(0)
        return sorted(self._rows.values(), key=lambda p: p.key)


# ------------------------------------------------------------------ #
# Versioned save with retry
# ------------------------------------------------------------------ #


class _Versioned(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def version(self) -> int: ...


E = TypeVar("E", bound=_Versioned)


class _VersionedStore(Protocol[E]):
    async def get(self, entity_id: str, /) -> E: ...

    async def save(self, entity: E, expected_version: int, /) -> E: ...


async def save_versioned(
    repository: _VersionedStore[E],
    entity: E,
    expected_version: int,
    *,
    operation: str,
    retry: RetryConfig,
    already_applied: Callable[[E], bool],
) -> E:
    """Conditional save, retried on PersistenceError without double-applying.

    A failed attempt may still have committed (e.g. the connection dropped
    after COMMIT). Before every retry the entity is reloaded; if it already
    sits at ``expected_version + 1`` and ``already_applied`` recognizes the
    change, that stored snapshot is returned instead of writing again.
    """
    attempts = 0

    async def _attempt() -> E:
        nonlocal attempts
        attempts += 1
        if attempts > 1:
            stored = await repository.get(entity.id)
            if stored.version == expected_version + 1 and already_applied(stored):
                log.info(
                    "privacy.persistence.already_committed",
                    operation=operation,
                    entity_id=entity.id,
                    version=stored.version,
                )
                return stored
        return await repository.save(entity, expected_version)

    return await persist(operation, _attempt, retry)


class _AppendStore(Protocol[E]):
    async def get(self, entity_id: str, /) -> E: ...

    async def add(self, entity: E, /) -> E: ...


async def add_once(
    repository: _AppendStore[E],
    entity: E,
    *,
    operation: str,
    retry: RetryConfig,
) -> E:
    """Insert retried on PersistenceError without inserting twice.

    Before every retry the id is looked up; when an earlier attempt did
    commit, the stored entity is returned instead of inserting again.
    """
    attempts = 0

    async def _attempt() -> E:
        nonlocal attempts
        attempts += 1
        if attempts > 1:
            try:
                stored = await repository.get(entity.id)
            except NotFoundError:
                return await repository.add(entity)
            log.info(
                "privacy.persistence.already_committed",
                operation=operation,
                entity_id=entity.id,
                version=stored.version,
            )
            return stored
        return await repository.add(entity)

    return await persist(operation, _attempt, retry)
