"""Domain error taxonomy for the privacy engine.

Every public operation either returns a result or raises exactly one of
these kinds. Messages are for operators and logs; user-facing wording is
localized outside the core from ``kind`` plus ``context``.

Retry semantics:
- ValidationError, InvalidStateTransition, NotFoundError, AlreadyWithdrawn:
  caller errors, never retried.
- ConcurrencyConflict: caller reloads and may retry.
- PersistenceError: retried with bounded exponential backoff by the core,
  then surfaced unchanged.
- RetentionConflict: raised by the retention evaluator; the lifecycle
  manager turns it into a partially_completed outcome.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class PrivacyError(Exception):
    """Base class for all privacy engine errors."""

    kind: str = "privacy_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def to_dict(self) -> dict[str, Any]:
        """Machine-readable representation (no localized text)."""
        return {
            "error": self.kind,
            "detail": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


class ValidationError(PrivacyError):
    """Malformed or missing input."""

    kind = "validation_error"

    def __init__(self, field: str, message: str, **context: Any) -> None:
        super().__init__(message, field=field, **context)
        self.field = field


class InvalidStateTransition(PrivacyError):
    """Requested lifecycle edge is not in the transition table."""

    kind = "invalid_state_transition"

    def __init__(self, request_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Request {request_id} cannot move from {current} to {target}",
            request_id=request_id,
            current_status=current,
            target_status=target,
        )


class NotFoundError(PrivacyError):
    """Unknown entity id."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class AlreadyWithdrawn(PrivacyError):
    """withdrawn_at is write-once."""

    kind = "already_withdrawn"

    def __init__(self, consent_id: str, withdrawn_at: datetime | None) -> None:
        super().__init__(
            f"Consent {consent_id} was already withdrawn",
            consent_id=consent_id,
            withdrawn_at=withdrawn_at,
        )


class ConcurrencyConflict(PrivacyError):
    """Optimistic version check failed."""

    kind = "concurrency_conflict"

    def __init__(
        self,
        entity_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(
            f"Version conflict on {entity_id}: expected {expected_version}, found {actual_version}",
            entity_id=entity_id,
            expected_version=expected_version,
            actual_version=actual_version,
        )


class RetentionConflict(PrivacyError):
    """Erasure blocked by an unexpired statutory or extended retention floor."""

    kind = "retention_conflict"

    def __init__(self, category: str, retain_until: datetime) -> None:
        super().__init__(
            f"Category '{category}' must be retained until {retain_until.isoformat()}",
            category=category,
            retain_until=retain_until,
        )
        self.category = category
        self.retain_until = retain_until


class PersistenceError(PrivacyError):
    """Storage/backend failure, including persistence-call timeouts."""

    kind = "persistence_error"

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(message, operation=operation)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value
