"""Privacy API endpoints (GDPR/AVG).

POST /api/v1/privacy/requests                     - Submit a data subject request
GET  /api/v1/privacy/requests?subject_id=         - List a subject's requests, newest first
GET  /api/v1/privacy/requests/overdue             - Open requests past the 30-day deadline
GET  /api/v1/privacy/requests/{id}                - Get one request
POST /api/v1/privacy/requests/{id}/transitions    - Move a request through its lifecycle
POST /api/v1/privacy/consents                     - Record a consent decision
GET  /api/v1/privacy/consents?subject_id=         - Consent history, newest first
GET  /api/v1/privacy/consents/latest              - Latest consent for subject + purpose
POST /api/v1/privacy/consents/{id}/withdraw       - Withdraw a consent
POST /api/v1/privacy/retention/policies           - Register a retention policy
GET  /api/v1/privacy/retention/policies           - List registered policies
GET  /api/v1/privacy/retention/evaluate           - Expiry / deletion eligibility for a category
GET  /api/v1/privacy/report                       - Compliance report
GET  /api/v1/privacy/labels?locale=nl             - Display labels for wire codes

Domain errors are mapped to HTTP by privacy_error_handler; the body is
always {"error": <kind>, "detail": ..., "context": {...}}.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from privacy_engine.compliance.domain import (
    ConsentRecord,
    DataSubjectRequest,
    RetentionPolicy,
    parse_lawful_basis,
)
from privacy_engine.compliance.labels import DEFAULT_LOCALE, label_table
from privacy_engine.compliance.lifecycle import days_remaining, is_overdue
from privacy_engine.compliance.service import PrivacyService
from privacy_engine.core.errors import PrivacyError, ValidationError

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/privacy", tags=["privacy"])

_STATUS_BY_KIND: dict[str, int] = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_state_transition": status.HTTP_409_CONFLICT,
    "concurrency_conflict": status.HTTP_409_CONFLICT,
    "already_withdrawn": status.HTTP_409_CONFLICT,
    "retention_conflict": status.HTTP_409_CONFLICT,
    "persistence_error": status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def privacy_error_handler(request: Request, exc: PrivacyError) -> JSONResponse:
    status_code = _STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    log_method = log.error if status_code >= 500 else log.info
    log_method(
        "privacy.api.error",
        path=request.url.path,
        method=request.method,
        kind=exc.kind,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_privacy_service(request: Request) -> PrivacyService:
    """The service instance wired at startup (see main.lifespan)."""
    return request.app.state.privacy_service


# ------------------------------------------------------------------ #
# Request / response models
# ------------------------------------------------------------------ #


class SubmitRequestBody(BaseModel):
    subject_id: str
    right_type: str = Field(description="access | rectification | erasure | ...")
    description: str = ""
    data_categories: list[str] = Field(default_factory=list)
    urgent: bool = False
    request_payload: dict[str, Any] | None = None


class TransitionBody(BaseModel):
    target_status: str
    notes: str = ""
    rejection_reason: str | None = None
    expected_version: int | None = Field(
        default=None, description="Version the caller last saw; stale values return 409"
    )


class RequestSnapshotResponse(BaseModel):
    id: str
    subject_id: str
    right_type: str
    status: str
    description: str
    data_categories: list[str]
    urgent: bool
    created_at: datetime
    deadline: datetime
    processed_at: datetime | None
    completed_at: datetime | None
    rejection_reason: str | None
    request_payload: dict[str, Any] | None
    response_payload: dict[str, Any] | None
    processing_notes: list[str]
    version: int
    days_remaining: int
    overdue: bool


class ConsentBody(BaseModel):
    subject_id: str
    purpose: str
    lawful_basis: str
    is_given: bool
    consent_method: str
    consent_text: str | None = None
    policy_version: str | None = None
    metadata: dict[str, Any] | None = None


class WithdrawBody(BaseModel):
    withdrawn_at: datetime | None = None


class ConsentResponse(BaseModel):
    id: str
    subject_id: str
    purpose: str
    lawful_basis: str
    is_given: bool
    is_valid: bool
    timestamp: datetime
    withdrawn_at: datetime | None
    consent_method: str
    consent_text: str | None
    metadata: dict[str, Any]
    policy_version: str
    version: int


class LatestConsentResponse(BaseModel):
    subject_id: str
    purpose: str
    has_valid_consent: bool
    consent: ConsentResponse | None


class PolicyBody(BaseModel):
    data_type: str
    category: str
    retention_days: float
    lawful_basis: str
    description: str = ""
    active: bool = True
    conditions: dict[str, Any] = Field(default_factory=dict)


class PolicyResponse(BaseModel):
    data_type: str
    category: str
    retention_days: float
    lawful_basis: str
    description: str
    active: bool
    created_at: datetime | None
    conditions: dict[str, Any]


class RetentionEvaluationResponse(BaseModel):
    category: str
    created_at: datetime
    expiry_date: datetime
    should_delete: bool
    retention_days: float
    floor_applied: bool


def _request_response(request: DataSubjectRequest, now: datetime) -> RequestSnapshotResponse:
    return RequestSnapshotResponse(
        **request.to_dict(),
        days_remaining=days_remaining(request, now),
        overdue=is_overdue(request, now),
    )


def _consent_response(record: ConsentRecord) -> ConsentResponse:
    return ConsentResponse(**record.to_dict())


def _policy_response(policy: RetentionPolicy) -> PolicyResponse:
    return PolicyResponse(**policy.to_dict())


def _retention_period(days: float) -> timedelta:
    try:
        return timedelta(days=days)
    except (OverflowError, ValueError):
        raise ValidationError(
            "retention_period", "retention_days is out of range", retention_days=str(days)
        ) from None


# ------------------------------------------------------------------ #
# Data subject requests
# ------------------------------------------------------------------ #


@router.post(
    "/requests",
    response_model=RequestSnapshotResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_request(
    body: SubmitRequestBody,
    service: PrivacyService = Depends(get_privacy_service),
) -> RequestSnapshotResponse:
    """Submit a data subject request. The 30-day deadline starts now."""
    request = await service.submit_request(
        body.subject_id,
        body.right_type,
        body.description,
        body.data_categories,
        body.urgent,
        request_payload=body.request_payload,
    )
    return _request_response(request, request.created_at)


@router.get("/requests", response_model=list[RequestSnapshotResponse])
async def list_requests(
    subject_id: str = Query(..., min_length=1),
    service: PrivacyService = Depends(get_privacy_service),
) -> list[RequestSnapshotResponse]:
    now = service.now()
    return [_request_response(r, now) for r in await service.list_requests(subject_id)]


@router.get("/requests/overdue", response_model=list[RequestSnapshotResponse])
async def list_overdue_requests(
    service: PrivacyService = Depends(get_privacy_service),
) -> list[RequestSnapshotResponse]:
    now = service.now()
    return [_request_response(r, now) for r in await service.list_overdue_requests(now)]


@router.get("/requests/{request_id}", response_model=RequestSnapshotResponse)
async def get_request(
    request_id: str,
    service: PrivacyService = Depends(get_privacy_service),
) -> RequestSnapshotResponse:
    return _request_response(await service.get_request(request_id), service.now())


@router.post("/requests/{request_id}/transitions", response_model=RequestSnapshotResponse)
async def transition_request(
    request_id: str,
    body: TransitionBody,
    service: PrivacyService = Depends(get_privacy_service),
) -> RequestSnapshotResponse:
    """Move a request along the lifecycle.

    An erasure request sent to ``completed`` may come back as
    ``partially_completed`` when retention obligations block some categories.
    """
    request = await service.transition_request(
        request_id,
        body.target_status,
        body.notes,
        body.rejection_reason,
        expected_version=body.expected_version,
    )
    return _request_response(request, service.now())


# ------------------------------------------------------------------ #
# Consent
# ------------------------------------------------------------------ #


@router.post("/consents", response_model=ConsentResponse, status_code=status.HTTP_201_CREATED)
async def record_consent(
    body: ConsentBody,
    service: PrivacyService = Depends(get_privacy_service),
) -> ConsentResponse:
    record = await service.record_consent(
        body.subject_id,
        body.purpose,
        body.lawful_basis,
        body.is_given,
        body.consent_method,
        consent_text=body.consent_text,
        policy_version=body.policy_version,
        metadata=body.metadata,
    )
    return _consent_response(record)


@router.get("/consents", response_model=list[ConsentResponse])
async def consent_history(
    subject_id: str = Query(..., min_length=1),
    service: PrivacyService = Depends(get_privacy_service),
) -> list[ConsentResponse]:
    return [_consent_response(r) for r in await service.consent_history(subject_id)]


@router.get("/consents/latest", response_model=LatestConsentResponse)
async def latest_consent(
    subject_id: str = Query(..., min_length=1),
    purpose: str = Query(..., min_length=1),
    service: PrivacyService = Depends(get_privacy_service),
) -> LatestConsentResponse:
    record = await service.latest_consent(subject_id, purpose)
    return LatestConsentResponse(
        subject_id=subject_id,
        purpose=purpose,
        has_valid_consent=record is not None and record.is_valid,
        consent=_consent_response(record) if record is not None else None,
    )


@router.post("/consents/{consent_id}/withdraw", response_model=ConsentResponse)
async def withdraw_consent(
    consent_id: str,
    body: WithdrawBody | None = None,
    service: PrivacyService = Depends(get_privacy_service),
) -> ConsentResponse:
    at = body.withdrawn_at if body is not None else None
    return _consent_response(await service.withdraw_consent(consent_id, at))


# ------------------------------------------------------------------ #
# Retention
# ------------------------------------------------------------------ #


@router.post(
    "/retention/policies",
    response_model=PolicyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_retention_policy(
    body: PolicyBody,
    service: PrivacyService = Depends(get_privacy_service),
) -> PolicyResponse:
    """Register or replace the policy for (data_type, category).

    Statutory floors still apply: a shorter period never shortens them.
    """
    policy = RetentionPolicy(
        data_type=body.data_type,
        category=body.category,
        retention_period=_retention_period(body.retention_days),
        lawful_basis=parse_lawful_basis(body.lawful_basis),
        description=body.description,
        active=body.active,
        conditions=body.conditions,
    )
    return _policy_response(await service.register_retention_policy(policy))


@router.get("/retention/policies", response_model=list[PolicyResponse])
async def list_retention_policies(
    service: PrivacyService = Depends(get_privacy_service),
) -> list[PolicyResponse]:
    return [_policy_response(p) for p in service.retention.policies()]


@router.get("/retention/evaluate", response_model=RetentionEvaluationResponse)
async def evaluate_retention(
    category: str = Query(..., min_length=1),
    created_at: datetime = Query(..., description="ISO-8601 with offset"),
    now: datetime | None = Query(default=None, description="Defaults to the current time"),
    service: PrivacyService = Depends(get_privacy_service),
) -> RetentionEvaluationResponse:
    decision = service.evaluate_retention(category, created_at, now)
    return RetentionEvaluationResponse(
        category=decision.category,
        created_at=created_at,
        expiry_date=decision.expiry_date,
        should_delete=decision.should_delete,
        retention_days=decision.retention / timedelta(days=1),
        floor_applied=decision.floor_applied,
    )


# ------------------------------------------------------------------ #
# Reporting / labels
# ------------------------------------------------------------------ #


@router.get("/report")
async def compliance_report(
    service: PrivacyService = Depends(get_privacy_service),
) -> dict[str, Any]:
    report = await service.compliance_report()
    return report.to_dict()


@router.get("/labels")
async def labels(locale: str = Query(default=DEFAULT_LOCALE)) -> dict[str, Any]:
    return {"locale": locale, "labels": label_table(locale)}
