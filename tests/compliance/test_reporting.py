"""Tests for the compliance report."""

from datetime import timedelta

from privacy_engine.compliance.domain import (
    ConsentRecord,
    DataSubjectRequest,
    LawfulBasis,
    RequestStatus,
    RightType,
)
from privacy_engine.compliance.reporting import REPORT_VERSION, build_compliance_report
from privacy_engine.compliance.retention import DEFAULT_POLICIES


def _request(t0, request_id, status, *, right=RightType.ACCESS, urgent=False, completed_after=None):
    return DataSubjectRequest(
        id=request_id,
        subject_id="subject-1",
        right_type=right,
        status=status,
        description="",
        data_categories=frozenset(),
        urgent=urgent,
        created_at=t0,
        completed_at=t0 + completed_after if completed_after is not None else None,
    )


def _consent(t0, consent_id, purpose, *, given=True, withdrawn=False, age=timedelta(0)):
    return ConsentRecord(
        id=consent_id,
        subject_id="subject-1",
        purpose=purpose,
        lawful_basis=LawfulBasis.CONSENT,
        is_given=given,
        timestamp=t0 - age,
        consent_method="web_form",
        policy_version="2.0",
        withdrawn_at=t0 if withdrawn else None,
    )


class TestComplianceReport:
    def test_empty_report_lists_every_code(self, t0):
        report = build_compliance_report(requests=[], consents=[], policies=[], now=t0)

        assert report.requests.total == 0
        assert set(report.requests.by_type) == {r.value for r in RightType}
        assert set(report.requests.by_status) == {s.value for s in RequestStatus}
        assert all(count == 0 for count in report.requests.by_status.values())
        assert report.requests.avg_days_to_close is None
        assert report.retention.statutory_floor_days == {
            "certificates": 2555,
            "national_id": 2555,
            "labor_agreement": 1825,
        }

    def test_request_counts(self, t0):
        requests = [
            _request(t0, "r1", RequestStatus.PENDING, urgent=True),
            _request(t0, "r2", RequestStatus.IN_PROGRESS, right=RightType.ERASURE),
            _request(t0, "r3", RequestStatus.COMPLETED, completed_after=timedelta(days=10)),
            _request(
                t0,
                "r4",
                RequestStatus.PARTIALLY_COMPLETED,
                right=RightType.ERASURE,
                completed_after=timedelta(days=20),
            ),
        ]

        report = build_compliance_report(
            requests=requests, consents=[], policies=[], now=t0 + timedelta(days=31)
        )

        assert report.requests.total == 4
        assert report.requests.by_type["erasure"] == 2
        assert report.requests.by_status["partially_completed"] == 1
        assert report.requests.open == 2
        assert report.requests.overdue == 2
        assert report.requests.urgent_open == 1
        assert report.requests.avg_days_to_close == 15.0

    def test_consent_counts_per_purpose(self, t0):
        consents = [
            _consent(t0, "c1", "marketing"),
            _consent(t0, "c2", "marketing", withdrawn=True),
            _consent(t0, "c3", "marketing", given=False),
            _consent(t0, "c4", "profiling", age=timedelta(days=800)),
        ]

        report = build_compliance_report(requests=[], consents=consents, policies=[], now=t0)

        marketing = report.consents.by_purpose["marketing"]
        assert (marketing.given, marketing.refused, marketing.withdrawn, marketing.valid) == (2, 1, 1, 1)
        assert list(report.consents.by_purpose) == ["marketing", "profiling"]
        assert report.consents.due_for_renewal == 1

    def test_to_dict_is_plain_data(self, t0):
        report = build_compliance_report(
            requests=[_request(t0, "r1", RequestStatus.PENDING)],
            consents=[_consent(t0, "c1", "marketing")],
            policies=DEFAULT_POLICIES,
            now=t0,
        )

        data = report.to_dict()

        assert data["report_version"] == REPORT_VERSION
        assert data["generated_at"] == t0.isoformat()
        assert data["requests"]["total"] == 1
        assert data["consents"]["by_purpose"]["marketing"]["valid"] == 1
        assert data["retention"]["policies"] == 3
        assert data["retention"]["active_policies"] == 3
