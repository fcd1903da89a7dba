"""Display labels for wire codes (Dutch and English).

Presentation only. The core never reads these; clients look labels up by
the same stable codes used on the wire.
"""

from __future__ import annotations

from enum import StrEnum

from privacy_engine.compliance.domain import LawfulBasis, RequestStatus, RightType
from privacy_engine.core.errors import ValidationError

SUPPORTED_LOCALES = ("nl", "en")
DEFAULT_LOCALE = "nl"

_LABELS: dict[str, dict[StrEnum, str]] = {
    "nl": {
        RightType.ACCESS: "Recht op inzage",
        RightType.RECTIFICATION: "Recht op rectificatie",
        RightType.ERASURE: "Recht op verwijdering",
        RightType.RESTRICT_PROCESSING: "Recht op beperking van de verwerking",
        RightType.DATA_PORTABILITY: "Recht op overdraagbaarheid van gegevens",
        RightType.OBJECT: "Recht van bezwaar",
        RequestStatus.PENDING: "Ontvangen",
        RequestStatus.UNDER_REVIEW: "In behandeling",
        RequestStatus.IN_PROGRESS: "Wordt uitgevoerd",
        RequestStatus.COMPLETED: "Voltooid",
        RequestStatus.REJECTED: "Afgewezen",
        RequestStatus.PARTIALLY_COMPLETED: "Gedeeltelijk voltooid",
        LawfulBasis.CONSENT: "Toestemming",
        LawfulBasis.CONTRACT: "Uitvoering van een overeenkomst",
        LawfulBasis.LEGAL_OBLIGATION: "Wettelijke verplichting",
        LawfulBasis.VITAL_INTERESTS: "Vitale belangen",
        LawfulBasis.PUBLIC_TASK: "Taak van algemeen belang",
        LawfulBasis.LEGITIMATE_INTERESTS: "Gerechtvaardigd belang",
    },
    "en": {
        RightType.ACCESS: "Right of access",
        RightType.RECTIFICATION: "Right to rectification",
        RightType.ERASURE: "Right to erasure",
        RightType.RESTRICT_PROCESSING: "Right to restriction of processing",
        RightType.DATA_PORTABILITY: "Right to data portability",
        RightType.OBJECT: "Right to object",
        RequestStatus.PENDING: "Received",
        RequestStatus.UNDER_REVIEW: "Under review",
        RequestStatus.IN_PROGRESS: "In progress",
        RequestStatus.COMPLETED: "Completed",
        RequestStatus.REJECTED: "Rejected",
        RequestStatus.PARTIALLY_COMPLETED: "Partially completed",
        LawfulBasis.CONSENT: "Consent",
        LawfulBasis.CONTRACT: "Performance of a contract",
        LawfulBasis.LEGAL_OBLIGATION: "Legal obligation",
        LawfulBasis.VITAL_INTERESTS: "Vital interests",
        LawfulBasis.PUBLIC_TASK: "Public task",
        LawfulBasis.LEGITIMATE_INTERESTS: "Legitimate interests",
    },
}


def _check_locale(locale: str) -> str:
    if locale not in _LABELS:
        raise ValidationError(
            "locale", f"Unsupported locale {locale!r}", allowed=list(SUPPORTED_LOCALES)
        )
    return locale


def label(code: StrEnum, locale: str = DEFAULT_LOCALE) -> str:
    return _LABELS[_check_locale(locale)][code]


def label_table(locale: str = DEFAULT_LOCALE) -> dict[str, dict[str, str]]:
    """All labels for ``locale`` grouped by code family."""
    table = _LABELS[_check_locale(locale)]
    return {
        "right_type": {r.value: table[r] for r in RightType},
        "status": {s.value: table[s] for s in RequestStatus},
        "lawful_basis": {b.value: table[b] for b in LawfulBasis},
    }
