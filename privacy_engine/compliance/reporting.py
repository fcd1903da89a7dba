"""Compliance report - point-in-time summary for compliance officers.

Summarizes:
- Data subject requests by right type and status, plus overdue and urgent counts
- Consent records per purpose (given / withdrawn / currently valid)
- Consents due for renewal
- Registered retention policies and the statutory floors

Pure: takes snapshots already loaded through each component's public
queries and performs no I/O of its own.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from privacy_engine.compliance.domain import (
    TERMINAL_STATUSES,
    ConsentRecord,
    DataSubjectRequest,
    RequestStatus,
    RetentionPolicy,
    RightType,
)
from privacy_engine.compliance.lifecycle import is_overdue
from privacy_engine.compliance.retention import STATUTORY_FLOORS

REPORT_VERSION = "1.0"


@dataclass
class RequestStats:
    total: int
    by_type: dict[str, int]
    by_status: dict[str, int]
    open: int
    overdue: int
    urgent_open: int
    avg_days_to_close: float | None  # None until at least one request is closed


@dataclass
class PurposeStats:
    given: int = 0
    refused: int = 0
    withdrawn: int = 0
    valid: int = 0


@dataclass
class ConsentStats:
    total: int
    by_purpose: dict[str, PurposeStats]
    due_for_renewal: int


@dataclass
class RetentionStats:
    policies: int
    active_policies: int
    statutory_floor_days: dict[str, int] = field(default_factory=dict)


@dataclass
class ComplianceReport:
    generated_at: datetime
    requests: RequestStats
    consents: ConsentStats
    retention: RetentionStats
    report_version: str = REPORT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "report_version": self.report_version,
            "requests": vars(self.requests).copy(),
            "consents": {
                "total": self.consents.total,
                "due_for_renewal": self.consents.due_for_renewal,
                "by_purpose": {p: vars(s).copy() for p, s in self.consents.by_purpose.items()},
            },
            "retention": vars(self.retention).copy(),
        }


def build_compliance_report(
    *,
    requests: Iterable[DataSubjectRequest],
    consents: Iterable[ConsentRecord],
    policies: Iterable[RetentionPolicy],
    now: datetime,
    reconsent_after: timedelta = timedelta(days=730),
) -> ComplianceReport:
    requests = list(requests)
    consents = list(consents)
    policies = list(policies)

    by_type = Counter(r.right_type.value for r in requests)
    by_status = Counter(r.status.value for r in requests)
    open_requests = [r for r in requests if r.status not in TERMINAL_STATUSES]
    closed_days = [
        (r.completed_at - r.created_at) / timedelta(days=1)
        for r in requests
        if r.completed_at is not None
    ]

    request_stats = RequestStats(
        total=len(requests),
        # Every enum code appears, zero counts included
        by_type={t.value: by_type.get(t.value, 0) for t in RightType},
        by_status={s.value: by_status.get(s.value, 0) for s in RequestStatus},
        open=len(open_requests),
        overdue=sum(1 for r in open_requests if is_overdue(r, now)),
        urgent_open=sum(1 for r in open_requests if r.urgent),
        avg_days_to_close=round(sum(closed_days) / len(closed_days), 2) if closed_days else None,
    )

    by_purpose: dict[str, PurposeStats] = {}
    for record in consents:
        stats = by_purpose.setdefault(record.purpose, PurposeStats())
        if record.is_given:
            stats.given += 1
        else:
            stats.refused += 1
        if record.withdrawn_at is not None:
            stats.withdrawn += 1
        if record.is_valid:
            stats.valid += 1

    consent_stats = ConsentStats(
        total=len(consents),
        by_purpose=dict(sorted(by_purpose.items())),
        due_for_renewal=sum(
            1 for r in consents if r.is_valid and now - r.timestamp > reconsent_after
        ),
    )

    retention_stats = RetentionStats(
        policies=len(policies),
        active_policies=sum(1 for p in policies if p.active),
        statutory_floor_days={c: p.days for c, p in STATUTORY_FLOORS.items()},
    )

    return ComplianceReport(
        generated_at=now,
        requests=request_stats,
        consents=consent_stats,
        retention=retention_stats,
    )
