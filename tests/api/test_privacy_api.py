"""Tests for the privacy HTTP API.

The app is built with create_app() and driven through httpx's ASGI
transport. The lifespan is not run; the test service is attached to
app.state directly.
"""

from datetime import datetime, timedelta

import httpx
import pytest

from privacy_engine.api.privacy import get_privacy_service
from privacy_engine.config import get_settings
from privacy_engine.core.errors import PersistenceError
from privacy_engine.main import create_app


@pytest.fixture
def app(service, fake_settings):
    test_app = create_app()
    test_app.state.privacy_service = service
    test_app.dependency_overrides[get_settings] = lambda: fake_settings
    return test_app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _submit(client, **overrides):
    body = {"subject_id": "subject-1", "right_type": "access", "description": "Kopie graag"}
    body.update(overrides)
    response = await client.post("/api/v1/privacy/requests", json=body)
    assert response.status_code == 201, response.text
    return response.json()


async def _transition(client, request_id, target, **extra):
    return await client.post(
        f"/api/v1/privacy/requests/{request_id}/transitions",
        json={"target_status": target, **extra},
    )


class TestRequestEndpoints:
    """POST/GET /api/v1/privacy/requests."""

    @pytest.mark.asyncio
    async def test_submit_returns_snapshot(self, client, t0):
        data = await _submit(client, urgent=True, data_categories=["Profile"])

        assert data["status"] == "pending"
        assert data["version"] == 1
        assert data["urgent"] is True
        assert data["data_categories"] == ["profile"]
        assert data["days_remaining"] == 30
        assert data["overdue"] is False
        assert datetime.fromisoformat(data["deadline"]) == t0 + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_submit_unknown_right_type_is_422(self, client):
        response = await client.post(
            "/api/v1/privacy/requests", json={"subject_id": "subject-1", "right_type": "forget"}
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["context"]["field"] == "right_type"

    @pytest.mark.asyncio
    async def test_get_and_list(self, client):
        created = await _submit(client)

        fetched = await client.get(f"/api/v1/privacy/requests/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["id"] == created["id"]

        listed = await client.get("/api/v1/privacy/requests", params={"subject_id": "subject-1"})
        assert [r["id"] for r in listed.json()] == [created["id"]]

    @pytest.mark.asyncio
    async def test_unknown_request_is_404(self, client):
        response = await client.get("/api/v1/privacy/requests/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, client):
        created = await _submit(client)

        for target in ("under_review", "in_progress", "completed"):
            response = await _transition(client, created["id"], target)
            assert response.status_code == 200, response.text

        data = response.json()
        assert data["status"] == "completed"
        assert data["completed_at"] is not None
        assert data["version"] == 4

    @pytest.mark.asyncio
    async def test_illegal_transition_is_409(self, client):
        created = await _submit(client)

        response = await _transition(client, created["id"], "completed")

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "invalid_state_transition"
        assert body["context"]["current_status"] == "pending"

    @pytest.mark.asyncio
    async def test_stale_version_is_409(self, client):
        created = await _submit(client)
        await _transition(client, created["id"], "under_review")

        response = await _transition(client, created["id"], "in_progress", expected_version=1)

        assert response.status_code == 409
        assert response.json()["error"] == "concurrency_conflict"

    @pytest.mark.asyncio
    async def test_erasure_blocked_by_retention(self, client):
        created = await _submit(client, right_type="erasure", data_categories=["national_id"])
        await _transition(client, created["id"], "under_review")
        await _transition(client, created["id"], "in_progress")

        response = await _transition(client, created["id"], "completed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "partially_completed"
        assert "national_id" in data["rejection_reason"]

    @pytest.mark.asyncio
    async def test_overdue_listing(self, client, clock):
        created = await _submit(client)
        clock.advance(days=31)

        response = await client.get("/api/v1/privacy/requests/overdue")

        assert response.status_code == 200
        data = response.json()
        assert [r["id"] for r in data] == [created["id"]]
        assert data[0]["overdue"] is True
        assert data[0]["days_remaining"] == 0


class TestConsentEndpoints:
    @pytest.mark.asyncio
    async def test_record_withdraw_and_latest(self, client):
        response = await client.post(
            "/api/v1/privacy/consents",
            json={
                "subject_id": "subject-1",
                "purpose": "marketing",
                "lawful_basis": "consent",
                "is_given": True,
                "consent_method": "web_form",
            },
        )
        assert response.status_code == 201
        consent = response.json()
        assert consent["is_valid"] is True
        assert consent["policy_version"] == "2.0"

        withdrawn = await client.post(f"/api/v1/privacy/consents/{consent['id']}/withdraw")
        assert withdrawn.status_code == 200
        assert withdrawn.json()["is_valid"] is False

        again = await client.post(f"/api/v1/privacy/consents/{consent['id']}/withdraw", json={})
        assert again.status_code == 409
        assert again.json()["error"] == "already_withdrawn"

        latest = await client.get(
            "/api/v1/privacy/consents/latest",
            params={"subject_id": "subject-1", "purpose": "marketing"},
        )
        assert latest.json()["has_valid_consent"] is False
        assert latest.json()["consent"]["id"] == consent["id"]

    @pytest.mark.asyncio
    async def test_latest_without_history(self, client):
        response = await client.get(
            "/api/v1/privacy/consents/latest",
            params={"subject_id": "subject-9", "purpose": "marketing"},
        )
        assert response.status_code == 200
        assert response.json()["consent"] is None

    @pytest.mark.asyncio
    async def test_history(self, client):
        for purpose in ("marketing", "profiling"):
            await client.post(
                "/api/v1/privacy/consents",
                json={
                    "subject_id": "subject-1",
                    "purpose": purpose,
                    "lawful_basis": "legitimate_interests",
                    "is_given": True,
                    "consent_method": "app",
                },
            )

        response = await client.get("/api/v1/privacy/consents", params={"subject_id": "subject-1"})

        assert {c["purpose"] for c in response.json()} == {"marketing", "profiling"}


class TestRetentionEndpoints:
    @pytest.mark.asyncio
    async def test_register_and_list_policy(self, client):
        response = await client.post(
            "/api/v1/privacy/retention/policies",
            json={
                "data_type": "chat",
                "category": "messages",
                "retention_days": 90,
                "lawful_basis": "legitimate_interests",
            },
        )
        assert response.status_code == 201
        assert response.json()["retention_days"] == 90

        listed = await client.get("/api/v1/privacy/retention/policies")
        assert [p["category"] for p in listed.json()] == ["messages"]

    @pytest.mark.asyncio
    async def test_non_positive_period_is_422(self, client):
        response = await client.post(
            "/api/v1/privacy/retention/policies",
            json={
                "data_type": "chat",
                "category": "messages",
                "retention_days": 0,
                "lawful_basis": "consent",
            },
        )
        assert response.status_code == 422
        assert response.json()["context"]["field"] == "retention_period"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("retention_days", [999_999_999, 1e20])
    async def test_out_of_range_period_is_422(self, client, retention_days):
        response = await client.post(
            "/api/v1/privacy/retention/policies",
            json={
                "data_type": "archive",
                "category": "archive",
                "retention_days": retention_days,
                "lawful_basis": "legal_obligation",
            },
        )

        assert response.status_code == 422
        assert response.json()["context"]["field"] == "retention_period"
        listed = await client.get("/api/v1/privacy/retention/policies")
        assert "archive" not in [p["category"] for p in listed.json()]

    @pytest.mark.asyncio
    async def test_evaluate_expiry_out_of_range_is_422(self, client):
        response = await client.get(
            "/api/v1/privacy/retention/evaluate",
            params={"category": "national_id", "created_at": "9999-12-01T00:00:00+00:00"},
        )

        assert response.status_code == 422
        assert response.json()["context"]["field"] == "created_at"

    @pytest.mark.asyncio
    async def test_evaluate(self, client, t0):
        created_at = t0 - timedelta(days=365 * 2)
        response = await client.get(
            "/api/v1/privacy/retention/evaluate",
            params={"category": "labor_agreement", "created_at": created_at.isoformat()},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["should_delete"] is False
        assert data["floor_applied"] is True
        assert data["retention_days"] == 365 * 5


class TestReportingEndpoints:
    @pytest.mark.asyncio
    async def test_report(self, client):
        await _submit(client)

        response = await client.get("/api/v1/privacy/report")

        assert response.status_code == 200
        data = response.json()
        assert data["requests"]["total"] == 1
        assert data["requests"]["by_status"]["pending"] == 1

    @pytest.mark.asyncio
    async def test_labels(self, client):
        response = await client.get("/api/v1/privacy/labels", params={"locale": "en"})

        assert response.status_code == 200
        assert response.json()["labels"]["right_type"]["erasure"] == "Right to erasure"

    @pytest.mark.asyncio
    async def test_unknown_locale_is_422(self, client):
        response = await client.get("/api/v1/privacy/labels", params={"locale": "fr"})
        assert response.status_code == 422


class TestPlatform:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_readiness_memory_backend(self, client):
        response = await client.get("/health/ready")
        assert response.json()["status"] == "ready"
        assert response.json()["storage"] == "memory"

    @pytest.mark.asyncio
    async def test_request_id_header_is_echoed(self, client):
        response = await client.get("/health", headers={"x-request-id": "trace-123"})
        assert response.headers["x-request-id"] == "trace-123"

        generated = await client.get("/health")
        assert generated.headers["x-request-id"].startswith("req_")

    @pytest.mark.asyncio
    async def test_persistence_error_is_503(self, app):
        class _DownService:
            async def get_request(self, request_id):
                raise PersistenceError("request.get", "request.get timed out after 5.0s")

            def now(self):
                raise AssertionError("not reached")

        app.dependency_overrides[get_privacy_service] = lambda: _DownService()
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.get("/api/v1/privacy/requests/req-1")

        assert response.status_code == 503
        assert response.json()["error"] == "persistence_error"

    @pytest.mark.asyncio
    async def test_unhandled_error_is_500(self, app):
        class _BrokenService:
            async def get_request(self, request_id):
                raise RuntimeError("boom")

        app.dependency_overrides[get_privacy_service] = lambda: _BrokenService()
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.get("/api/v1/privacy/requests/req-1")

        assert response.status_code == 500
        assert response.json()["error"] == "internal_error"
