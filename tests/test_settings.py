"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from privacy_engine.config import Environment, Settings, StorageBackend, get_settings

_SAFE_DB = "postgresql+asyncpg://privacy:S3cure-Rotated-Value@db:5432/privacy"


class TestSettings:
    """Test Settings model and validation."""

    def test_default_settings_load_correctly(self):
        settings = Settings()

        assert settings.environment == Environment.DEV
        assert settings.debug is True  # Auto-set from DEV environment
        assert settings.storage_backend == StorageBackend.MEMORY
        assert settings.persistence_max_attempts == 3
        assert settings.consent_reconsent_days == 730
        assert settings.load_default_policies is True

    def test_production_rejects_memory_backend(self):
        with pytest.raises(RuntimeError) as exc_info:
            Settings(environment=Environment.PROD, database_url=_SAFE_DB)

        assert "PRODUCTION STARTUP BLOCKED" in str(exc_info.value)
        assert "PRIVACY_STORAGE_BACKEND" in str(exc_info.value)

    def test_production_rejects_default_database_password(self):
        with pytest.raises(RuntimeError) as exc_info:
            Settings(environment=Environment.PROD, storage_backend=StorageBackend.SQL)

        assert "PRIVACY_DATABASE_URL" in str(exc_info.value)

    def test_production_with_safe_configuration(self):
        settings = Settings(
            environment=Environment.PROD,
            storage_backend=StorageBackend.SQL,
            database_url=_SAFE_DB,
            debug=False,
        )
        assert settings.is_prod is True
        assert settings.is_dev is False
        assert settings.debug is False
        assert settings.json_logs is True

    def test_is_dev_property_returns_true_for_test(self):
        settings = Settings(environment=Environment.TEST)
        assert settings.is_dev is True
        assert settings.is_prod is False
        assert settings.json_logs is False

    def test_log_json_override(self):
        assert Settings(environment=Environment.TEST, log_json=True).json_logs is True

    def test_retry_window_must_be_ordered(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(
                persistence_retry_min_wait_seconds=5,
                persistence_retry_max_wait_seconds=1,
            )
        assert "persistence_retry_max_wait_seconds" in str(exc_info.value)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"persistence_max_attempts": 0},
            {"persistence_timeout_seconds": 0},
            {"consent_reconsent_days": 0},
            {"log_level": "VERBOSE"},
        ],
    )
    def test_field_bounds(self, kwargs):
        with pytest.raises(ValidationError):
            Settings(**kwargs)

    def test_environment_variables_use_prefix(self, monkeypatch):
        monkeypatch.setenv("PRIVACY_STORAGE_BACKEND", "sql")
        monkeypatch.setenv("PRIVACY_PERSISTENCE_MAX_ATTEMPTS", "5")

        settings = Settings()

        assert settings.storage_backend == StorageBackend.SQL
        assert settings.persistence_max_attempts == 5

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()
