"""Data subject request lifecycle (GDPR Art. 12, 15-21).

State machine:

    pending      -> under_review
    under_review -> in_progress | rejected
    in_progress  -> completed | partially_completed | rejected

Terminal: completed, rejected, partially_completed.

Every request must be answered within 30 days of receipt (Art. 12(3)).
The deadline is derived from ``created_at`` and cannot be changed.

An erasure request moved toward ``completed`` is checked against the
retention evaluator category by category. Any category still under a
statutory or extended retention period turns the outcome into
``partially_completed`` with a rejection reason naming each blocking
category and the date it may be erased.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

import structlog

from privacy_engine.compliance.consent import ConsentLedger
from privacy_engine.compliance.domain import (
    REQUEST_DEADLINE,
    TERMINAL_STATUSES,
    DataSubjectRequest,
    RequestStatus,
    RightType,
    TransitionCommand,
    is_transition_allowed,
    normalize_category,
    parse_right_type,
    parse_status,
    require_aware,
    require_text,
)
from privacy_engine.compliance.repository import RequestRepository, add_once, save_versioned
from privacy_engine.compliance.retention import RetentionPolicyEvaluator
from privacy_engine.core.audit import AuditEmitter, AuditEvent, emit_safely
from privacy_engine.core.clock import Clock
from privacy_engine.core.errors import (
    ConcurrencyConflict,
    InvalidStateTransition,
    RetentionConflict,
    ValidationError,
)
from privacy_engine.core.retry import RetryConfig, persist

log = structlog.get_logger(__name__)

_DESCRIPTION_MAX_CHARS = 5000
_CONSENT_LINKED_RIGHTS = frozenset({RightType.OBJECT, RightType.RESTRICT_PROCESSING})


def is_overdue(request: DataSubjectRequest, now: datetime) -> bool:
    """True iff the deadline has passed and the request is still open."""
    return now > request.deadline and request.status not in TERMINAL_STATUSES


def days_remaining(request: DataSubjectRequest, now: datetime) -> int:
    """Whole days left until the deadline, rounded up, clamped to [0, 30]."""
    days = math.ceil((request.deadline - now) / timedelta(days=1))
    return max(0, min(days, REQUEST_DEADLINE.days))


class RequestLifecycleManager:
    """Owns data subject requests from submission to a terminal status."""

    def __init__(
        self,
        repository: RequestRepository,
        clock: Clock,
        audit: AuditEmitter,
        retention: RetentionPolicyEvaluator,
        *,
        consent: ConsentLedger | None = None,
        retry: RetryConfig | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._repo = repository
        self._clock = clock
        self._audit = audit
        self._retention = retention
        self._consent = consent
        self._retry = retry or RetryConfig()
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

    # ------------------------------------------------------------------ #
    # Submission
    # ------------------------------------------------------------------ #

    async def submit(
        self,
        subject_id: str,
        right_type: RightType | str,
        description: str = "",
        categories: Iterable[str] = (),
        urgent: bool = False,
        *,
        request_payload: dict[str, Any] | None = None,
    ) -> DataSubjectRequest:
        """Validate and store a new request in ``pending``."""
        subject_id = require_text("subject_id", subject_id, max_length=128)
        right = parse_right_type(right_type)
        if not isinstance(description, str):
            raise ValidationError("description", "description must be a string")
        if len(description) > _DESCRIPTION_MAX_CHARS:
            raise ValidationError(
                "description",
                f"description exceeds {_DESCRIPTION_MAX_CHARS} characters",
                max_length=_DESCRIPTION_MAX_CHARS,
            )
        if not isinstance(urgent, bool):
            raise ValidationError("urgent", "urgent must be a boolean")
        data_categories = _parse_categories(categories)
        payload = _parse_request_payload(request_payload)

        now = self._clock.now()
        request = DataSubjectRequest(
            id=self._new_id(),
            subject_id=subject_id,
            right_type=right,
            status=RequestStatus.PENDING,
            description=description.strip(),
            data_categories=data_categories,
            urgent=urgent,
            created_at=now,
            request_payload=payload,
            processing_notes=(_note(now, RequestStatus.PENDING, "received"),),
        )
        stored = await add_once(self._repo, request, operation="request.add", retry=self._retry)

        log.info(
            "privacy.request.created",
            request_id=stored.id,
            subject_id=stored.subject_id,
            right_type=stored.right_type.value,
            categories=sorted(stored.data_categories),
            deadline=stored.deadline.isoformat(),
        )
        if stored.urgent:
            log.warning(
                "privacy.request.urgent",
                request_id=stored.id,
                right_type=stored.right_type.value,
                deadline=stored.deadline.isoformat(),
            )
        await emit_safely(
            self._audit,
            AuditEvent(
                event_type="request.created",
                entity_type="data_subject_request",
                entity_id=stored.id,
                subject_id=stored.subject_id,
                occurred_at=now,
                details={
                    "right_type": stored.right_type.value,
                    "categories": stored.data_categories,
                    "urgent": stored.urgent,
                    "deadline": stored.deadline,
                },
            ),
        )
        return stored

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    async def apply(self, command: TransitionCommand) -> DataSubjectRequest:
        return await self.transition(
            command.request_id,
            command.target_status,
            command.notes,
            command.rejection_reason,
            expected_version=command.expected_version,
        )

    async def transition(
        self,
        request_id: str,
        target_status: RequestStatus | str,
        notes: str = "",
        rejection_reason: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> DataSubjectRequest:
        """Move a request along one edge of the state machine.

        Raises:
            ValidationError: unknown target or missing rejection reason
            NotFoundError: unknown request id
            InvalidStateTransition: edge not in the transition table
            ConcurrencyConflict: stale ``expected_version`` or a concurrent writer won
        """
        target = parse_status(target_status)
        if not isinstance(notes, str):
            raise ValidationError("notes", "notes must be a string")
        request = await self.get(request_id)

        if expected_version is not None and expected_version != request.version:
            raise ConcurrencyConflict(request.id, expected_version, request.version)
        if not is_transition_allowed(request.status, target):
            raise InvalidStateTransition(request.id, request.status.value, target.value)

        reason = rejection_reason.strip() if rejection_reason else None
        if target == RequestStatus.REJECTED and not reason:
            raise ValidationError(
                "rejection_reason", "rejection_reason is required when rejecting a request"
            )

        now = self._clock.now()
        effective = target
        response = dict(request.response_payload or {})
        blocked: list[RetentionConflict] = []

        if request.right_type == RightType.ERASURE and target == RequestStatus.COMPLETED:
            blocked = self._retention_blocks(request, now)
            retained = {c.category for c in blocked}
            response["erased_categories"] = sorted(request.data_categories - retained)
            if blocked:
                effective = RequestStatus.PARTIALLY_COMPLETED
                reason = _retention_reason(blocked)
                response["retained_categories"] = {
                    c.category: c.retain_until.isoformat() for c in blocked
                }

        if effective in TERMINAL_STATUSES and request.right_type in _CONSENT_LINKED_RIGHTS:
            consent_summary = await self._consent_summary(request)
            if consent_summary is not None:
                response["consent"] = consent_summary

        updated = replace(
            request,
            status=effective,
            processed_at=now if effective == RequestStatus.IN_PROGRESS else request.processed_at,
            completed_at=now if effective in TERMINAL_STATUSES else None,
            rejection_reason=reason if effective in TERMINAL_STATUSES else None,
            response_payload=response or None,
            processing_notes=request.processing_notes + (_note(now, effective, notes),),
        )
        stored = await save_versioned(
            self._repo,
            updated,
            request.version,
            operation="request.transition",
            retry=self._retry,
            already_applied=lambda s: (
                s.status == effective and s.processing_notes == updated.processing_notes
            ),
        )

        log.info(
            "privacy.request.transitioned",
            request_id=stored.id,
            subject_id=stored.subject_id,
            from_status=request.status.value,
            to_status=stored.status.value,
            version=stored.version,
        )
        if effective != target:
            log.warning(
                "privacy.request.erasure_downgraded",
                request_id=stored.id,
                blocking_categories=sorted(c.category for c in blocked),
            )
        await emit_safely(
            self._audit,
            AuditEvent(
                event_type="request.transitioned",
                entity_type="data_subject_request",
                entity_id=stored.id,
                subject_id=stored.subject_id,
                occurred_at=now,
                details={
                    "from_status": request.status.value,
                    "to_status": stored.status.value,
                    "requested_status": target.value,
                    "downgraded": effective != target,
                    "blocking_categories": sorted(c.category for c in blocked),
                    "version": stored.version,
                },
            ),
        )
        return stored

    def _retention_blocks(
        self, request: DataSubjectRequest, now: datetime
    ) -> list[RetentionConflict]:
        created_by_category = _data_created_at(request)
        conflicts: list[RetentionConflict] = []
        for category in sorted(request.data_categories):
            created = created_by_category.get(category, request.created_at)
            try:
                self._retention.assert_erasable(category, created, now)
            except RetentionConflict as exc:
                conflicts.append(exc)
        return conflicts

    async def _consent_summary(self, request: DataSubjectRequest) -> dict[str, Any] | None:
        purpose = (request.request_payload or {}).get("purpose")
        if self._consent is None or not purpose:
            return None
        latest = await self._consent.latest_consent(request.subject_id, purpose)
        if latest is None:
            return {"purpose": purpose, "consent_id": None, "is_valid": False}
        return {
            "purpose": purpose,
            "consent_id": latest.id,
            "is_valid": latest.is_valid,
            "lawful_basis": latest.lawful_basis.value,
        }

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    async def get(self, request_id: str) -> DataSubjectRequest:
        request_id = require_text("request_id", request_id)
        return await persist("request.get", lambda: self._repo.get(request_id), self._retry)

    async def list_for_subject(self, subject_id: str) -> list[DataSubjectRequest]:
        """Requests of one subject, newest first."""
        subject_id = require_text("subject_id", subject_id)
        requests = await persist(
            "request.list", lambda: self._repo.list_by_subject(subject_id), self._retry
        )
        return sorted(requests, key=lambda r: r.created_at, reverse=True)

    async def list_all(self) -> list[DataSubjectRequest]:
        return await persist("request.list_all", self._repo.list_all, self._retry)

    async def list_overdue(self, now: datetime | None = None) -> list[DataSubjectRequest]:
        """Open requests past their deadline, most overdue first."""
        now = require_aware("now", now) if now is not None else self._clock.now()
        overdue = [r for r in await self.list_all() if is_overdue(r, now)]
        if overdue:
            log.warning("privacy.request.overdue", count=len(overdue))
        return sorted(overdue, key=lambda r: r.deadline)

    def is_overdue(self, request: DataSubjectRequest, now: datetime | None = None) -> bool:
        return is_overdue(request, now if now is not None else self._clock.now())

    def days_remaining(self, request: DataSubjectRequest, now: datetime | None = None) -> int:
        return days_remaining(request, now if now is not None else self._clock.now())


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _note(at: datetime, status: RequestStatus, text: str) -> str:
    text = text.strip()
    return f"{at.isoformat()} {status.value}" + (f": {text}" if text else "")


def _parse_categories(categories: Iterable[str]) -> frozenset[str]:
    if isinstance(categories, str):
        raise ValidationError("categories", "categories must be a list of strings")
    parsed: set[str] = set()
    for category in categories:
        parsed.add(normalize_category(require_text("categories", category, max_length=64)))
    return frozenset(parsed)


def _parse_request_payload(payload: dict[str, Any] | None) -> dict[str, Any] | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValidationError("request_payload", "request_payload must be an object")
    parsed = dict(payload)

    if "purpose" in parsed:
        parsed["purpose"] = require_text("request_payload.purpose", parsed["purpose"])

    if "data_created_at" in parsed:
        raw = parsed["data_created_at"]
        if not isinstance(raw, dict):
            raise ValidationError(
                "request_payload.data_created_at", "data_created_at must map category to timestamp"
            )
        normalized: dict[str, str] = {}
        for category, value in raw.items():
            key = normalize_category(require_text("request_payload.data_created_at", category))
            normalized[key] = _parse_timestamp(
                f"request_payload.data_created_at.{key}", value
            ).isoformat()
        parsed["data_created_at"] = normalized
    return parsed


def _parse_timestamp(field_name: str, value: Any) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(field_name, f"{field_name} is not an ISO-8601 timestamp") from None
    return require_aware(field_name, value)


def _data_created_at(request: DataSubjectRequest) -> dict[str, datetime]:
    raw = (request.request_payload or {}).get("data_created_at") or {}
    return {category: datetime.fromisoformat(value) for category, value in raw.items()}


def _retention_reason(conflicts: list[RetentionConflict]) -> str:
    parts = [f"{c.category} retained until {c.retain_until.date().isoformat()}" for c in conflicts]
    return "Erasure blocked by retention obligations: " + "; ".join(parts)
