"""Privacy service - the single entry point used by the API and by jobs.

Composes the request lifecycle manager, the consent ledger and the
retention evaluator. Cross-component reads always go through each
component's public queries; no component touches another's storage.

Usage:
    service = build_service(get_settings())
    request = await service.submit_request("subject-1", "access", "Send me my data")
    await service.transition_request(request.id, "under_review")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

import structlog

from privacy_engine.compliance.consent import ConsentLedger
from privacy_engine.compliance.domain import (
    ConsentRecord,
    DataSubjectRequest,
    LawfulBasis,
    RequestStatus,
    RetentionPolicy,
    RightType,
    require_aware,
)
from privacy_engine.compliance.lifecycle import RequestLifecycleManager
from privacy_engine.compliance.reporting import ComplianceReport, build_compliance_report
from privacy_engine.compliance.repository import (
    ConsentRepository,
    InMemoryConsentRepository,
    InMemoryPolicyRepository,
    InMemoryRequestRepository,
    PolicyRepository,
    RequestRepository,
)
from privacy_engine.compliance.retention import (
    DEFAULT_POLICIES,
    RetentionDecision,
    RetentionItem,
    RetentionPolicyEvaluator,
    validate_policy,
)
from privacy_engine.compliance.sql_repository import (
    SqlConsentRepository,
    SqlPolicyRepository,
    SqlRequestRepository,
)
from privacy_engine.config import Settings, StorageBackend
from privacy_engine.core.audit import (
    AuditEmitter,
    AuditEvent,
    LogAuditEmitter,
    SqlAuditEmitter,
    emit_safely,
)
from privacy_engine.core.clock import Clock, SystemClock
from privacy_engine.core.errors import RetentionConflict
from privacy_engine.core.retry import RetryConfig, persist
from privacy_engine.database import get_session_factory
from privacy_engine.telemetry.logging import bind_subject_context

log = structlog.get_logger(__name__)


class PrivacyService:
    """GDPR data subject rights, consent and retention behind one interface."""

    def __init__(
        self,
        *,
        requests: RequestRepository,
        consents: ConsentRepository,
        clock: Clock,
        audit: AuditEmitter,
        policies: PolicyRepository | None = None,
        retry: RetryConfig | None = None,
        reconsent_after: timedelta = timedelta(days=730),
    ) -> None:
        self._clock = clock
        self._audit = audit
        self._retry = retry or RetryConfig()
        self._policy_repo = policies
        self._reconsent_after = reconsent_after
        self.retention = RetentionPolicyEvaluator()
        self.ledger = ConsentLedger(consents, clock, audit, retry=self._retry)
        self.lifecycle = RequestLifecycleManager(
            requests,
            clock,
            audit,
            self.retention,
            consent=self.ledger,
            retry=self._retry,
        )

    def now(self) -> datetime:
        return self._clock.now()

    # ------------------------------------------------------------------ #
    # Data subject requests
    # ------------------------------------------------------------------ #

    async def submit_request(
        self,
        subject_id: str,
        right_type: RightType | str,
        description: str = "",
        categories: Iterable[str] = (),
        urgent: bool = False,
        *,
        request_payload: dict[str, Any] | None = None,
    ) -> DataSubjectRequest:
        if isinstance(subject_id, str) and subject_id.strip():
            bind_subject_context(subject_id.strip())
        return await self.lifecycle.submit(
            subject_id,
            right_type,
            description,
            categories,
            urgent,
            request_payload=request_payload,
        )

    async def get_request(self, request_id: str) -> DataSubjectRequest:
        return await self.lifecycle.get(request_id)

    async def list_requests(self, subject_id: str) -> list[DataSubjectRequest]:
        """Requests of one subject ordered by created_at, newest first."""
        return await self.lifecycle.list_for_subject(subject_id)

    async def transition_request(
        self,
        request_id: str,
        target_status: RequestStatus | str,
        notes: str = "",
        rejection_reason: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> DataSubjectRequest:
        return await self.lifecycle.transition(
            request_id,
            target_status,
            notes,
            rejection_reason,
            expected_version=expected_version,
        )

    async def list_overdue_requests(self, now: datetime | None = None) -> list[DataSubjectRequest]:
        return await self.lifecycle.list_overdue(now)

    # ------------------------------------------------------------------ #
    # Consent
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
        policy_version: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ConsentRecord:
        kwargs: dict[str, Any] = {"consent_text": consent_text, "metadata": metadata}
        if policy_version is not None:
            kwargs["policy_version"] = policy_version
        return await self.ledger.record_consent(
            subject_id, purpose, lawful_basis, is_given, consent_method, **kwargs
        )

    async def withdraw_consent(self, consent_id: str, at: datetime | None = None) -> ConsentRecord:
        return await self.ledger.withdraw(consent_id, at)

    async def latest_consent(self, subject_id: str, purpose: str) -> ConsentRecord | None:
        return await self.ledger.latest_consent(subject_id, purpose)

    async def consent_history(self, subject_id: str) -> list[ConsentRecord]:
        return await self.ledger.history(subject_id)

    async def stale_consents(self, now: datetime | None = None) -> list[ConsentRecord]:
        return await self.ledger.stale_consents(now, self._reconsent_after)

    # ------------------------------------------------------------------ #
    # Retention
    # ------------------------------------------------------------------ #

    async def register_retention_policy(self, policy: RetentionPolicy) -> RetentionPolicy:
        """Validate, persist when a store is wired, then register in the evaluator.

        A failed write leaves the evaluator untouched.
        """
        if policy.created_at is None:
            policy = replace(policy, created_at=self._clock.now())
        validate_policy(policy)
        if self._policy_repo is not None:
            await persist(
                "policy.upsert", lambda: self._policy_repo.upsert(policy), self._retry
            )
        return self.retention.register(policy)

    async def load_policies(self, *, include_defaults: bool = False) -> int:
        """Hydrate the evaluator from the policy store (and the statutory defaults)."""
        loaded = 0
        if include_defaults:
            for policy in DEFAULT_POLICIES:
                self.retention.register(policy)
                loaded += 1
        if self._policy_repo is not None:
            stored = await persist("policy.list_all", self._policy_repo.list_all, self._retry)
            for policy in stored:
                self.retention.register(policy)
                loaded += 1
        log.info("privacy.retention.policies_loaded", count=loaded)
        return loaded

    def evaluate_retention(
        self, category: str, created_at: datetime, now: datetime | None = None
    ) -> RetentionDecision:
        now = require_aware("now", now) if now is not None else self._clock.now()
        return self.retention.evaluate(category, created_at, now)

    async def record_retention_deletion(
        self, items: Iterable[RetentionItem], now: datetime | None = None
    ) -> list[RetentionItem]:
        """Audit deletions performed elsewhere, one event per item.

        Every item must be past its expiry; otherwise RetentionConflict is
        raised and no event is emitted.
        """
        now = require_aware("now", now) if now is not None else self._clock.now()
        items = list(items)
        for item in items:
            if not self.retention.should_delete(item.category, item.created_at, now):
                raise RetentionConflict(
                    item.category, self.retention.expiry_date(item.category, item.created_at)
                )
        for item in items:
            await emit_safely(
                self._audit,
                AuditEvent(
                    event_type="retention.deleted",
                    entity_type="retention",
                    entity_id=item.item_id or item.category,
                    occurred_at=now,
                    details={
                        "category": item.category,
                        "created_at": item.created_at,
                        "expiry_date": self.retention.expiry_date(item.category, item.created_at),
                    },
                ),
            )
        log.info("privacy.retention.deletions_recorded", count=len(items))
        return items

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    async def compliance_report(self, now: datetime | None = None) -> ComplianceReport:
        now = require_aware("now", now) if now is not None else self._clock.now()
        report = build_compliance_report(
            requests=await self.lifecycle.list_all(),
            consents=await self.ledger.list_all(),
            policies=self.retention.policies(),
            now=now,
            reconsent_after=self._reconsent_after,
        )
        log.info(
            "privacy.report.generated",
            requests=report.requests.total,
            overdue=report.requests.overdue,
            consents=report.consents.total,
        )
        return report


def build_service(
    settings: Settings,
    *,
    clock: Clock | None = None,
    audit: AuditEmitter | None = None,
) -> PrivacyService:
    """Wire a PrivacyService for the configured storage backend.

    The ``sql`` backend requires init_db() to have been called.
    """
    retry = RetryConfig.from_settings(settings)
    reconsent_after = timedelta(days=settings.consent_reconsent_days)

    if settings.storage_backend == StorageBackend.SQL:
        factory = get_session_factory()
        return PrivacyService(
            requests=SqlRequestRepository(factory),
            consents=SqlConsentRepository(factory),
            policies=SqlPolicyRepository(factory),
            clock=clock or SystemClock(),
            audit=audit or SqlAuditEmitter(factory),
            retry=retry,
            reconsent_after=reconsent_after,
        )

    return PrivacyService(
        requests=InMemoryRequestRepository(),
        consents=InMemoryConsentRepository(),
        policies=InMemoryPolicyRepository(),
        clock=clock or SystemClock(),
        audit=audit or LogAuditEmitter(),
        retry=retry,
        reconsent_after=reconsent_after,
    )
