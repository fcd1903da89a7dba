"""Retention policy evaluation.

Decides how long data of a given category must be kept and whether a piece
of data is eligible for deletion. Dutch statutory minimums are constants in
this module, not policy rows: a registered policy can extend them but can
never shorten them.

Statutory floors (1 year = 365 days):
- certificates (WPBR security certificates): 7 years
- national_id (BSN): 7 years
- labor_agreement (CAO): 5 years

All operations here are pure. The periodic sweep that calls
``eligible_for_deletion`` lives outside this package.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from privacy_engine.compliance.domain import (
    LawfulBasis,
    RetentionPolicy,
    normalize_category,
    require_aware,
    require_text,
)
from privacy_engine.core.errors import RetentionConflict, ValidationError

log = structlog.get_logger(__name__)

YEAR = timedelta(days=365)

# Upper bound for a registered policy; keeps every expiry date representable
MAX_RETENTION = 100 * YEAR

STATUTORY_FLOORS: dict[str, timedelta] = {
    "certificates": 7 * YEAR,
    "national_id": 7 * YEAR,
    "labor_agreement": 5 * YEAR,
}

# Data-type names used by the recruitment platform for the same categories
CATEGORY_ALIASES: dict[str, str] = {
    "wpbr_certificates": "certificates",
    "bsn_data": "national_id",
    "cao_data": "labor_agreement",
}

DEFAULT_POLICIES: tuple[RetentionPolicy, ...] = (
    RetentionPolicy(
        data_type="wpbr_certificates",
        category="certificates",
        retention_period=7 * YEAR,
        lawful_basis=LawfulBasis.LEGAL_OBLIGATION,
        description="WPBR certificaten - 7 jaar bewaarplicht",
    ),
    RetentionPolicy(
        data_type="bsn_data",
        category="national_id",
        retention_period=7 * YEAR,
        lawful_basis=LawfulBasis.LEGAL_OBLIGATION,
        description="BSN gegevens - wettelijke bewaarplicht",
    ),
    RetentionPolicy(
        data_type="cao_data",
        category="labor_agreement",
        retention_period=5 * YEAR,
        lawful_basis=LawfulBasis.LEGAL_OBLIGATION,
        description="CAO gegevens - 5 jaar bewaarplicht",
    ),
)


def canonical_category(category: str) -> str:
    normalized = normalize_category(category)
    return CATEGORY_ALIASES.get(normalized, normalized)


def statutory_floor(category: str) -> timedelta:
    """Legal minimum for ``category``; zero when no floor applies."""
    return STATUTORY_FLOORS.get(canonical_category(category), timedelta(0))


def validate_policy(policy: RetentionPolicy) -> RetentionPolicy:
    """Raise ValidationError unless ``policy`` can be registered as-is."""
    require_text("data_type", policy.data_type, max_length=64)
    require_text("category", policy.category, max_length=64)
    if policy.retention_period <= timedelta(0):
        raise ValidationError(
            "retention_period",
            "retention_period must be positive",
            data_type=policy.data_type,
            category=policy.category,
        )
    if policy.retention_period > MAX_RETENTION:
        raise ValidationError(
            "retention_period",
            f"retention_period cannot exceed {MAX_RETENTION.days} days",
            data_type=policy.data_type,
            category=policy.category,
        )
    if policy.created_at is not None:
        require_aware("created_at", policy.created_at)
    return policy


def _expiry(created_at: datetime, retention: timedelta) -> datetime:
    try:
        return created_at + retention
    except OverflowError:
        raise ValidationError(
            "created_at",
            "created_at plus the retention period is out of range",
            created_at=created_at,
            retention_days=retention.days,
        ) from None


@dataclass(frozen=True)
class RetentionDecision:
    category: str
    expiry_date: datetime
    should_delete: bool
    retention: timedelta
    floor_applied: bool


@dataclass(frozen=True)
class RetentionItem:
    """One piece of data considered by a deletion sweep."""

    category: str
    created_at: datetime
    item_id: str | None = None


class RetentionPolicyEvaluator:
    """Holds registered policies and answers retention questions.

    Policies are keyed by (data_type, category); registering the same key
    again replaces the previous policy.
    """

    def __init__(self, policies: Iterable[RetentionPolicy] = ()) -> None:
        self._policies: dict[tuple[str, str], RetentionPolicy] = {}
        for policy in policies:
            self.register(policy)

    def register(self, policy: RetentionPolicy) -> RetentionPolicy:
        validate_policy(policy)
        replaced = policy.key in self._policies
        self._policies[policy.key] = policy
        log.info(
            "privacy.retention.policy_registered",
            data_type=policy.data_type,
            category=policy.category,
            retention_days=policy.retention_period.days,
            active=policy.active,
            replaced=replaced,
        )
        return policy

    def policies(self) -> list[RetentionPolicy]:
        return sorted(self._policies.values(), key=lambda p: p.key)

    def statutory_floor(self, category: str) -> timedelta:
        return statutory_floor(category)

    def effective_retention(self, category: str) -> timedelta:
        """Longest of the statutory floor and every active matching policy."""
        target = canonical_category(require_text("category", category))
        periods = [
            p.retention_period
            for p in self._policies.values()
            if p.active and canonical_category(p.category) == target
        ]
        return max([statutory_floor(target), *periods])

    def expiry_date(self, category: str, created_at: datetime) -> datetime:
        require_aware("created_at", created_at)
        return _expiry(created_at, self.effective_retention(category))

    def should_delete(self, category: str, created_at: datetime, now: datetime) -> bool:
        require_aware("now", now)
        return now > self.expiry_date(category, created_at)

    def evaluate(self, category: str, created_at: datetime, now: datetime) -> RetentionDecision:
        require_aware("created_at", created_at)
        require_aware("now", now)
        retention = self.effective_retention(category)
        floor = statutory_floor(category)
        expiry = _expiry(created_at, retention)
        return RetentionDecision(
            category=canonical_category(category),
            expiry_date=expiry,
            should_delete=now > expiry,
            retention=retention,
            floor_applied=floor > timedelta(0) and retention == floor,
        )

    def assert_erasable(self, category: str, created_at: datetime, now: datetime) -> None:
        """Raise RetentionConflict while a floor or extended policy still binds."""
        decision = self.evaluate(category, created_at, now)
        if decision.retention > timedelta(0) and not decision.should_delete:
            raise RetentionConflict(category, decision.expiry_date)

    def eligible_for_deletion(
        self, items: Iterable[RetentionItem], now: datetime
    ) -> list[RetentionItem]:
        """Subset of ``items`` past their expiry, in input order."""
        require_aware("now", now)
        return [item for item in items if self.should_delete(item.category, item.created_at, now)]
