"""GDPR/AVG compliance core.

Key components:
- RequestLifecycleManager: data subject requests from submission to a terminal status
- ConsentLedger: append-only consent history with write-once withdrawal
- RetentionPolicyEvaluator: retention periods with Dutch statutory floors
- PrivacyService: the boundary used by the API and by external jobs
- build_compliance_report: point-in-time summary for compliance officers
"""

from __future__ import annotations

from privacy_engine.compliance.consent import ConsentLedger
from privacy_engine.compliance.domain import (
    ConsentRecord,
    DataSubjectRequest,
    LawfulBasis,
    RequestStatus,
    RetentionPolicy,
    RightType,
    TransitionCommand,
)
from privacy_engine.compliance.lifecycle import RequestLifecycleManager, days_remaining, is_overdue
from privacy_engine.compliance.reporting import ComplianceReport, build_compliance_report
from privacy_engine.compliance.retention import (
    DEFAULT_POLICIES,
    STATUTORY_FLOORS,
    RetentionDecision,
    RetentionItem,
    RetentionPolicyEvaluator,
)
from privacy_engine.compliance.service import PrivacyService, build_service

__all__ = [
    "ConsentLedger",
    "ConsentRecord",
    "DataSubjectRequest",
    "LawfulBasis",
    "RequestStatus",
    "RetentionPolicy",
    "RightType",
    "TransitionCommand",
    "RequestLifecycleManager",
    "days_remaining",
    "is_overdue",
    "ComplianceReport",
    "build_compliance_report",
    "DEFAULT_POLICIES",
    "STATUTORY_FLOORS",
    "RetentionDecision",
    "RetentionItem",
    "RetentionPolicyEvaluator",
    "PrivacyService",
    "build_service",
]
