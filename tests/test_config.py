"""
Unit tests for shared configuration and error responses.
"""

import pytest

from shared.config import AuditConfig, load_config
from shared.errors import ConfigurationError, PersistenceError, SessionNotFoundError
from shared.logging import request_id_var
from shared.test_helpers import TestDataFactory


class TestLoadConfig:
    """Test cases for load_config."""

    def test_load_config_with_all_values(self):
        config = load_config(_env_file=None, **TestDataFactory.config_values())

        assert config.session_ttl == 3600
        assert config.audit_retention_seconds == 360
        assert config.audit_config() == AuditConfig(
            issuer="https://issuer.example",
            event_name_prefix="IPV_TEST_CRI",
            topic="issuer.audit.events.test",
        )

    def test_load_config_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ISSUER_SESSION_TTL", "120")
        values = TestDataFactory.config_values()
        values.pop("session_ttl")

        config = load_config(_env_file=None, **values)

        assert config.session_ttl == 120

    def test_missing_required_value(self):
        values = TestDataFactory.config_values()
        values.pop("audit_event_name_prefix")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(_env_file=None, **values)

        assert "audit_event_name_prefix" in exc_info.value.details["fields"]
        assert exc_info.value.status_code == 500

    @pytest.mark.parametrize("overrides", [
        {"session_ttl": 0},
        {"authorization_code_ttl": -5},
        {"audit_event_table_name": "audit; drop table x"},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            load_config(_env_file=None, **TestDataFactory.config_values(**overrides))


class TestIssuerException:
    """Test cases for error responses."""

    def test_to_response_carries_request_id(self):
        token = request_id_var.set("req-1")
        try:
            response = SessionNotFoundError("sess-1").to_response()
        finally:
            request_id_var.reset(token)

        assert response.request_id == "req-1"
        assert response.code == "NOT_FOUND"
        assert response.details == {"session_id": "sess-1"}

    def test_persistence_error_names_store(self):
        error = PersistenceError("redis", "timeout")
        assert error.message == "redis: timeout"
        assert error.status_code == 503
