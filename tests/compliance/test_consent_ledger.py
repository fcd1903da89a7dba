"""Tests for the append-only consent ledger."""

import asyncio
from datetime import timedelta

import pytest

from privacy_engine.compliance.consent import DEFAULT_POLICY_VERSION, ConsentLedger
from privacy_engine.compliance.domain import ConsentRecord, LawfulBasis
from privacy_engine.core.errors import (
    AlreadyWithdrawn,
    NotFoundError,
    PersistenceError,
    ValidationError,
)


class TestRecordConsent:
    @pytest.mark.asyncio
    async def test_record_given_consent(self, ledger, t0):
        record = await ledger.record_consent(
            "subject-1",
            "marketing",
            "consent",
            True,
            "web_form",
            consent_text="Ik ga akkoord met nieuwsbrieven",
            metadata={"ip": "203.0.113.7"},
        )

        assert record.is_valid is True
        assert record.timestamp == t0
        assert record.lawful_basis == LawfulBasis.CONSENT
        assert record.policy_version == DEFAULT_POLICY_VERSION
        assert record.metadata == {"ip": "203.0.113.7"}
        assert record.withdrawn_at is None

    @pytest.mark.asyncio
    async def test_refusal_is_recorded_but_not_valid(self, ledger):
        record = await ledger.record_consent("subject-1", "profiling", "consent", False, "app")
        assert record.is_given is False
        assert record.is_valid is False

    @pytest.mark.asyncio
    async def test_unknown_lawful_basis(self, ledger):
        with pytest.raises(ValidationError) as exc_info:
            await ledger.record_consent("subject-1", "marketing", "because", True, "web_form")
        assert exc_info.value.field == "lawful_basis"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["subject_id", "purpose", "consent_method"])
    async def test_required_text_fields(self, ledger, field):
        kwargs = {
            "subject_id": "subject-1",
            "purpose": "marketing",
            "lawful_basis": "consent",
            "is_given": True,
            "consent_method": "web_form",
        }
        kwargs[field] = "  "
        with pytest.raises(ValidationError) as exc_info:
            await ledger.record_consent(**kwargs)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_is_given_must_be_boolean(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.record_consent("subject-1", "marketing", "consent", "yes", "web_form")

    @pytest.mark.asyncio
    async def test_emits_recorded_event(self, ledger, audit_sink):
        record = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")

        events = audit_sink.of_type("consent.recorded")
        assert [e.entity_id for e in events] == [record.id]
        assert events[0].details["purpose"] == "marketing"


class TestWithdraw:
    @pytest.mark.asyncio
    async def test_withdraw_sets_timestamp_once(self, ledger, clock, t0):
        record = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        assert await ledger.is_valid(record.id) is True

        clock.advance(days=3)
        withdrawn = await ledger.withdraw(record.id)

        assert withdrawn.withdrawn_at == t0 + timedelta(days=3)
        assert withdrawn.version == record.version + 1
        assert await ledger.is_valid(record.id) is False

        with pytest.raises(AlreadyWithdrawn) as exc_info:
            await ledger.withdraw(record.id)
        assert exc_info.value.context["withdrawn_at"] == t0 + timedelta(days=3)

        stored = await ledger.get(record.id)
        assert stored.withdrawn_at == t0 + timedelta(days=3)

    @pytest.mark.asyncio
    async def test_other_fields_unchanged_after_withdrawal(self, ledger, clock):
        record = await ledger.record_consent(
            "subject-1", "marketing", "consent", True, "web_form", consent_text="text"
        )
        clock.advance(hours=1)
        withdrawn = await ledger.withdraw(record.id)

        for attr in ("subject_id", "purpose", "lawful_basis", "is_given", "timestamp", "consent_text"):
            assert getattr(withdrawn, attr) == getattr(record, attr)

    @pytest.mark.asyncio
    async def test_withdraw_before_timestamp_rejected(self, ledger, t0):
        record = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        with pytest.raises(ValidationError) as exc_info:
            await ledger.withdraw(record.id, t0 - timedelta(seconds=1))
        assert exc_info.value.field == "withdrawn_at"

    @pytest.mark.asyncio
    async def test_withdraw_unknown_consent(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.withdraw("missing")

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_one_wins(self, ledger):
        record = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")

        results = await asyncio.gather(
            ledger.withdraw(record.id),
            ledger.withdraw(record.id),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, ConsentRecord)]
        assert len(successes) == 1
        assert len([r for r in results if isinstance(r, Exception)]) == 1

    @pytest.mark.asyncio
    async def test_withdraw_emits_event(self, ledger, audit_sink):
        record = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        await ledger.withdraw(record.id)
        assert [e.entity_id for e in audit_sink.of_type("consent.withdrawn")] == [record.id]


class TestHistory:
    @pytest.mark.asyncio
    async def test_regrant_appends_new_record(self, ledger, clock):
        first = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        clock.advance(days=1)
        await ledger.withdraw(first.id)
        clock.advance(days=1)
        second = await ledger.record_consent("subject-1", "marketing", "consent", True, "app")

        history = await ledger.history("subject-1")
        assert [r.id for r in history] == [second.id, first.id]
        assert (await ledger.latest_consent("subject-1", "marketing")).id == second.id
        assert await ledger.has_valid_consent("subject-1", "marketing") is True

    @pytest.mark.asyncio
    async def test_refusal_at_same_instant_wins(self, ledger):
        grant = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        refusal = await ledger.record_consent("subject-1", "marketing", "consent", False, "web_form")
        assert grant.timestamp == refusal.timestamp

        history = await ledger.history("subject-1")
        assert [r.id for r in history] == [refusal.id, grant.id]
        assert (await ledger.latest_consent("subject-1", "marketing")).id == refusal.id
        assert await ledger.has_valid_consent("subject-1", "marketing") is False

    @pytest.mark.asyncio
    async def test_regrant_at_same_instant_wins(self, ledger):
        first = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        await ledger.withdraw(first.id)
        second = await ledger.record_consent("subject-1", "marketing", "consent", True, "app")

        assert (await ledger.latest_consent("subject-1", "marketing")).id == second.id
        assert await ledger.has_valid_consent("subject-1", "marketing") is True

    @pytest.mark.asyncio
    async def test_latest_consent_per_purpose(self, ledger, clock):
        marketing = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        clock.advance(minutes=5)
        await ledger.record_consent("subject-1", "profiling", "consent", False, "web_form")

        latest = await ledger.latest_consent("subject-1", "marketing")
        assert latest.id == marketing.id
        assert await ledger.latest_consent("subject-1", "analytics") is None
        assert await ledger.has_valid_consent("subject-1", "profiling") is False

    @pytest.mark.asyncio
    async def test_history_is_scoped_to_subject(self, ledger):
        await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        await ledger.record_consent("subject-2", "marketing", "consent", True, "web_form")

        history = await ledger.history("subject-2")
        assert {r.subject_id for r in history} == {"subject-2"}

    @pytest.mark.asyncio
    async def test_withdraw_purpose_only_touches_valid_records(self, ledger, clock):
        granted = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        clock.advance(minutes=1)
        refused = await ledger.record_consent("subject-1", "marketing", "consent", False, "app")
        clock.advance(minutes=1)
        other = await ledger.record_consent("subject-1", "profiling", "consent", True, "app")

        withdrawn = await ledger.withdraw_purpose("subject-1", "marketing")

        assert [r.id for r in withdrawn] == [granted.id]
        assert (await ledger.get(refused.id)).withdrawn_at is None
        assert (await ledger.get(other.id)).is_valid is True
        assert await ledger.withdraw_purpose("subject-1", "marketing") == []

    @pytest.mark.asyncio
    async def test_stale_consents(self, ledger, clock, t0):
        old = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")
        clock.advance(days=400)
        await ledger.record_consent("subject-2", "marketing", "consent", True, "web_form")
        withdrawn = await ledger.record_consent("subject-3", "marketing", "consent", True, "app")
        await ledger.withdraw(withdrawn.id)

        stale = await ledger.stale_consents(now=t0 + timedelta(days=731))

        assert [r.id for r in stale] == [old.id]
        assert await ledger.stale_consents(now=t0 + timedelta(days=730)) == []


class TestPersistenceRetry:
    @pytest.mark.asyncio
    async def test_transient_add_failure_is_retried(self, consent_repo, clock, audit_sink, fast_retry):
        failures = {"left": 2}
        original_add = consent_repo.add

        async def flaky_add(record):
            if failures["left"]:
                failures["left"] -= 1
                raise PersistenceError("consent.add", "connection refused")
            return await original_add(record)

        consent_repo.add = flaky_add
        ledger = ConsentLedger(consent_repo, clock, audit_sink, retry=fast_retry)

        record = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")

        assert (await ledger.get(record.id)).id == record.id
        assert len(audit_sink.of_type("consent.recorded")) == 1

    @pytest.mark.asyncio
    async def test_add_committed_before_failure_is_not_duplicated(
        self, consent_repo, clock, audit_sink, fast_retry
    ):
        calls = {"add": 0}
        original_add = consent_repo.add

        async def add_then_fail(record):
            calls["add"] += 1
            stored = await original_add(record)
            if calls["add"] == 1:
                raise PersistenceError("consent.add", "connection reset after commit")
            return stored

        consent_repo.add = add_then_fail
        ledger = ConsentLedger(consent_repo, clock, audit_sink, retry=fast_retry)

        record = await ledger.record_consent("subject-1", "marketing", "consent", True, "web_form")

        assert calls["add"] == 1
        assert [r.id for r in await ledger.history("subject-1")] == [record.id]
        assert len(audit_sink.of_type("consent.recorded")) == 1
