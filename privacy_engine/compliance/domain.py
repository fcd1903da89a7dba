"""Shared data model for data-subject requests, consent and retention.

Records are frozen dataclasses. Components never mutate a loaded record;
they derive a new snapshot with ``dataclasses.replace`` and hand it to the
owning repository together with the version they loaded.

Enum values are wire-stable: they are persisted and exposed over the API
exactly as written here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from privacy_engine.core.errors import ValidationError

# GDPR Art. 12(3): respond within one month of receipt. Not extendable here.
REQUEST_DEADLINE = timedelta(days=30)


class RightType(StrEnum):
    """Data subject rights (GDPR Art. 15-21)."""

    ACCESS = "access"  # Art. 15
    RECTIFICATION = "rectification"  # Art. 16
    ERASURE = "erasure"  # Art. 17
    RESTRICT_PROCESSING = "restrict_processing"  # Art. 18
    DATA_PORTABILITY = "data_portability"  # Art. 20
    OBJECT = "object"  # Art. 21


class RequestStatus(StrEnum):
    """Lifecycle status of a data subject request."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    PARTIALLY_COMPLETED = "partially_completed"


class LawfulBasis(StrEnum):
    """GDPR Art. 6(1) lawful bases for processing."""

    CONSENT = "consent"
    CONTRACT = "contract"
    LEGAL_OBLIGATION = "legal_obligation"
    VITAL_INTERESTS = "vital_interests"
    PUBLIC_TASK = "public_task"
    LEGITIMATE_INTERESTS = "legitimate_interests"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    {
        RequestStatus.COMPLETED,
        RequestStatus.REJECTED,
        RequestStatus.PARTIALLY_COMPLETED,
    }
)

ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.UNDER_REVIEW}),
    RequestStatus.UNDER_REVIEW: frozenset({RequestStatus.IN_PROGRESS, RequestStatus.REJECTED}),
    RequestStatus.IN_PROGRESS: frozenset(
        {
            RequestStatus.COMPLETED,
            RequestStatus.PARTIALLY_COMPLETED,
            RequestStatus.REJECTED,
        }
    ),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.PARTIALLY_COMPLETED: frozenset(),
}


def is_transition_allowed(current: RequestStatus, target: RequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


# ------------------------------------------------------------------ #
# Records
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class DataSubjectRequest:
    """One data subject rights request.

    ``deadline`` is derived from ``created_at``, which is never rewritten,
    so the deadline cannot drift after submission.
    """

    id: str
    subject_id: str
    right_type: RightType
    status: RequestStatus
    description: str
    data_categories: frozenset[str]
    urgent: bool
    created_at: datetime
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    rejection_reason: str | None = None
    request_payload: dict[str, Any] | None = None
    response_payload: dict[str, Any] | None = None
    processing_notes: tuple[str, ...] = ()
    version: int = 1

    @property
    def deadline(self) -> datetime:
        return self.created_at + REQUEST_DEADLINE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "right_type": self.right_type.value,
            "status": self.status.value,
            "description": self.description,
            "data_categories": sorted(self.data_categories),
            "urgent": self.urgent,
            "created_at": self.created_at.isoformat(),
            "deadline": self.deadline.isoformat(),
            "processed_at": _iso(self.processed_at),
            "completed_at": _iso(self.completed_at),
            "rejection_reason": self.rejection_reason,
            "request_payload": self.request_payload,
            "response_payload": self.response_payload,
            "processing_notes": list(self.processing_notes),
            "version": self.version,
        }


@dataclass(frozen=True)
class ConsentRecord:
    """One consent event. Immutable except for the write-once withdrawn_at."""

    id: str
    subject_id: str
    purpose: str
    lawful_basis: LawfulBasis
    is_given: bool
    timestamp: datetime
    consent_method: str
    policy_version: str
    consent_text: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    withdrawn_at: datetime | None = None
    version: int = 1

    @property
    def is_valid(self) -> bool:
        return self.is_given and self.withdrawn_at is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "purpose": self.purpose,
            "lawful_basis": self.lawful_basis.value,
            "is_given": self.is_given,
            "is_valid": self.is_valid,
            "timestamp": self.timestamp.isoformat(),
            "withdrawn_at": _iso(self.withdrawn_at),
            "consent_method": self.consent_method,
            "consent_text": self.consent_text,
            "metadata": dict(self.metadata),
            "policy_version": self.policy_version,
            "version": self.version,
        }


@dataclass(frozen=True)
class RetentionPolicy:
    """Configured retention for one (data_type, category) pair."""

    data_type: str
    category: str
    retention_period: timedelta
    lawful_basis: LawfulBasis
    description: str = ""
    active: bool = True
    created_at: datetime | None = None
    conditions: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.data_type.strip().lower(), normalize_category(self.category))

    def expiry(self, creation_date: datetime) -> datetime:
        return creation_date + self.retention_period

    def should_delete(self, creation_date: datetime, now: datetime) -> bool:
        return now > self.expiry(creation_date)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_type": self.data_type,
            "category": self.category,
            "retention_days": self.retention_period.total_seconds() / 86400,
            "lawful_basis": self.lawful_basis.value,
            "description": self.description,
            "active": self.active,
            "created_at": _iso(self.created_at),
            "conditions": dict(self.conditions),
        }


@dataclass(frozen=True)
class TransitionCommand:
    """Explicit intent to move a request to another status."""

    request_id: str
    target_status: RequestStatus
    notes: str = ""
    rejection_reason: str | None = None
    expected_version: int | None = None


# ------------------------------------------------------------------ #
# Validation helpers
# ------------------------------------------------------------------ #


def normalize_category(category: str) -> str:
    return category.strip().lower()


def require_text(field_name: str, value: Any, *, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field_name, f"{field_name} is required")
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(
            field_name, f"{field_name} exceeds {max_length} characters", max_length=max_length
        )
    return text


def require_aware(field_name: str, value: Any) -> datetime:
    """Timestamps must carry an offset so they persist unambiguously."""
    if not isinstance(value, datetime):
        raise ValidationError(field_name, f"{field_name} must be a datetime")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(field_name, f"{field_name} must be timezone-aware")
    return value


def parse_right_type(value: Any) -> RightType:
    if isinstance(value, RightType):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("right_type", "right_type is required")
    try:
        return RightType(value.strip())
    except ValueError:
        raise ValidationError(
            "right_type",
            f"Unknown right_type {value!r}",
            allowed=[r.value for r in RightType],
        ) from None


def parse_status(value: Any) -> RequestStatus:
    if isinstance(value, RequestStatus):
        return value
    try:
        return RequestStatus(str(value).strip())
    except ValueError:
        raise ValidationError(
            "target_status",
            f"Unknown status {value!r}",
            allowed=[s.value for s in RequestStatus],
        ) from None


def parse_lawful_basis(value: Any) -> LawfulBasis:
    if isinstance(value, LawfulBasis):
        return value
    try:
        return LawfulBasis(str(value).strip())
    except ValueError:
        raise ValidationError(
            "lawful_basis",
            f"Unknown lawful_basis {value!r}",
            allowed=[b.value for b in LawfulBasis],
        ) from None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
