import pytest

from privacy_engine.compliance.domain import LawfulBasis, RequestStatus, RightType
from privacy_engine.compliance.labels import DEFAULT_LOCALE, SUPPORTED_LOCALES, label, label_table
from privacy_engine.core.errors import ValidationError


class TestLabels:
    def test_default_locale_is_dutch(self):
        assert DEFAULT_LOCALE == "nl"
        assert label(RightType.ERASURE) == "Recht op verwijdering"

    def test_english_labels(self):
        assert label(RequestStatus.PARTIALLY_COMPLETED, "en") == "Partially completed"
        assert label(LawfulBasis.LEGAL_OBLIGATION, "en") == "Legal obligation"

    @pytest.mark.parametrize("locale", SUPPORTED_LOCALES)
    def test_every_code_has_a_label(self, locale):
        table = label_table(locale)

        assert set(table["right_type"]) == {r.value for r in RightType}
        assert set(table["status"]) == {s.value for s in RequestStatus}
        assert set(table["lawful_basis"]) == {b.value for b in LawfulBasis}
        assert all(text for group in table.values() for text in group.values())

    def test_unknown_locale(self):
        with pytest.raises(ValidationError) as exc_info:
            label_table("de")
        assert exc_info.value.field == "locale"
