"""Consent ledger (GDPR Art. 7).

Append-only history of consent grants and refusals. A record is never
rewritten; the only permitted change is setting ``withdrawn_at`` once.
Giving consent again after a withdrawal appends a new record, so the full
history of a purpose stays reconstructable.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

import structlog

from privacy_engine.compliance.domain import (
    ConsentRecord,
    LawfulBasis,
    parse_lawful_basis,
    require_aware,
    require_text,
)
from privacy_engine.compliance.repository import ConsentRepository, add_once, save_versioned
from privacy_engine.core.audit import AuditEmitter, AuditEvent, emit_safely
from privacy_engine.core.clock import Clock
from privacy_engine.core.errors import AlreadyWithdrawn, ValidationError
from privacy_engine.core.retry import RetryConfig, persist

log = structlog.get_logger(__name__)

DEFAULT_POLICY_VERSION = "2.0"
RECONSENT_AFTER = timedelta(days=730)


class ConsentLedger:
    """Records, withdraws and answers questions about consent."""

    def __init__(
        self,
        repository: ConsentRepository,
        clock: Clock,
        audit: AuditEmitter,
        *,
        retry: RetryConfig | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._repo = repository
        self._clock = clock
        self._audit = audit
        self._retry = retry or RetryConfig()
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    async def record_consent(
        self,
        subject_id: str,
        purpose: str,
        lawful_basis: LawfulBasis | str,
        is_given: bool,
        consent_method: str,
        *,
        consent_text: str | None = None,
        policy_version: str = DEFAULT_POLICY_VERSION,
        metadata: dict[str, Any] | None = None,
    ) -> ConsentRecord:
        """Append a new consent record. Existing records are never touched."""
        subject_id = require_text("subject_id", subject_id, max_length=128)
        purpose = require_text("purpose", purpose, max_length=128)
        basis = parse_lawful_basis(lawful_basis)
        method = require_text("consent_method", consent_method, max_length=64)
        version_label = require_text("policy_version", policy_version, max_length=32)
        if not isinstance(is_given, bool):
            raise ValidationError("is_given", "is_given must be a boolean")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata", "metadata must be an object")

        record = ConsentRecord(
            id=self._new_id(),
            subject_id=subject_id,
            purpose=purpose,
            lawful_basis=basis,
            is_given=is_given,
            timestamp=self._clock.now(),
            consent_method=method,
            policy_version=version_label,
            consent_text=consent_text,
            metadata=dict(metadata or {}),
        )
        stored = await add_once(self._repo, record, operation="consent.add", retry=self._retry)

        log.info(
            "privacy.consent.recorded",
            consent_id=stored.id,
            subject_id=stored.subject_id,
            purpose=stored.purpose,
            is_given=stored.is_given,
        )
        await emit_safely(
            self._audit,
            AuditEvent(
                event_type="consent.recorded",
                entity_type="consent",
                entity_id=stored.id,
                subject_id=stored.subject_id,
                occurred_at=stored.timestamp,
                details={
                    "purpose": stored.purpose,
                    "lawful_basis": stored.lawful_basis.value,
                    "is_given": stored.is_given,
                    "policy_version": stored.policy_version,
                    "consent_method": stored.consent_method,
                },
            ),
        )
        return stored

    async def withdraw(self, consent_id: str, at: datetime | None = None) -> ConsentRecord:
        """Set ``withdrawn_at`` on a record. Raises AlreadyWithdrawn on a second call."""
        consent_id = require_text("consent_id", consent_id)
        withdrawn_at = require_aware("withdrawn_at", at) if at is not None else self._clock.now()

        current = await persist("consent.get", lambda: self._repo.get(consent_id), self._retry)
        if current.withdrawn_at is not None:
            raise AlreadyWithdrawn(current.id, current.withdrawn_at)
        if withdrawn_at < current.timestamp:
            raise ValidationError(
                "withdrawn_at",
                "withdrawn_at cannot precede the consent timestamp",
                consent_id=current.id,
            )

        updated = replace(current, withdrawn_at=withdrawn_at)
        stored = await save_versioned(
            self._repo,
            updated,
            current.version,
            operation="consent.withdraw",
            retry=self._retry,
            already_applied=lambda s: s.withdrawn_at == withdrawn_at,
        )

        log.info(
            "privacy.consent.withdrawn",
            consent_id=stored.id,
            subject_id=stored.subject_id,
            purpose=stored.purpose,
        )
        await emit_safely(
            self._audit,
            AuditEvent(
                event_type="consent.withdrawn",
                entity_type="consent",
                entity_id=stored.id,
                subject_id=stored.subject_id,
                occurred_at=withdrawn_at,
                details={"purpose": stored.purpose, "version": stored.version},
            ),
        )
        return stored

    async def withdraw_purpose(
        self, subject_id: str, purpose: str, at: datetime | None = None
    ) -> list[ConsentRecord]:
        """Withdraw every currently valid record for ``purpose``.

        Returns the withdrawn records; an empty list when nothing was valid.
        """
        purpose = require_text("purpose", purpose)
        withdrawn_at = require_aware("withdrawn_at", at) if at is not None else self._clock.now()
        withdrawn: list[ConsentRecord] = []
        for record in await self.history(subject_id):
            if record.purpose == purpose and record.is_valid:
                withdrawn.append(await self.withdraw(record.id, withdrawn_at))
        return withdrawn

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    async def get(self, consent_id: str) -> ConsentRecord:
        consent_id = require_text("consent_id", consent_id)
        return await persist("consent.get", lambda: self._repo.get(consent_id), self._retry)

    async def is_valid(self, consent_id: str) -> bool:
        return (await self.get(consent_id)).is_valid

    async def history(self, subject_id: str) -> list[ConsentRecord]:
        """All records for a subject, newest first."""
        subject_id = require_text("subject_id", subject_id)
        records = await persist(
            "consent.list", lambda: self._repo.list_by_subject(subject_id), self._retry
        )
        # Stable sort; records sharing a timestamp keep the store's latest-added-first order
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    async def latest_consent(self, subject_id: str, purpose: str) -> ConsentRecord | None:
        """Record with the greatest timestamp for (subject, purpose), or None."""
        purpose = require_text("purpose", purpose)
        for record in await self.history(subject_id):
            if record.purpose == purpose:
                return record
        return None

    async def has_valid_consent(self, subject_id: str, purpose: str) -> bool:
        latest = await self.latest_consent(subject_id, purpose)
        return latest is not None and latest.is_valid

    async def list_all(self) -> list[ConsentRecord]:
        return await persist("consent.list_all", self._repo.list_all, self._retry)

    async def stale_consents(
        self, now: datetime | None = None, max_age: timedelta = RECONSENT_AFTER
    ) -> list[ConsentRecord]:
        """Valid consents older than ``max_age`` that should be renewed."""
        now = require_aware("now", now) if now is not None else self._clock.now()
        return [r for r in await self.list_all() if r.is_valid and now - r.timestamp > max_age]
