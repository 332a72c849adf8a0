"""
Infrastructure Tests

Tests:
- Settings parsing and production validation
- JSON log output for reconciliation audit events
- Sentry event redaction

Run with: pytest tests/test_infrastructure.py -v
"""

import json
import logging
import sys

import pytest

from config import Settings
from logging_config import (
    JSONFormatter,
    RequestContextFilter,
    clear_request_context,
    set_request_context,
)
from reconciliation.services.audit import ReconciliationAuditEvent, log_reconciliation_event
from sentry_integration import filter_sensitive_data


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestSettings:

    def test_internal_api_keys_combined(self):
        settings = make_settings(INTERNAL_API_KEY="primary", INTERNAL_API_KEYS="old-1, old-2,")
        assert settings.internal_api_keys == ["primary", "old-1", "old-2"]

    def test_database_url_from_components(self):
        settings = make_settings(
            DATABASE_URL="",
            POSTGRES_HOST="db",
            POSTGRES_USER="recon",
            POSTGRES_PASSWORD="pw",
        )
        assert settings.get_database_url() == "postgresql+asyncpg://recon:pw@db:5432/reconciliation"

    def test_missing_database_config(self):
        settings = make_settings(DATABASE_URL="", POSTGRES_HOST="", POSTGRES_USER="")
        with pytest.raises(ValueError):
            settings.get_database_url()

    def test_production_rules(self):
        settings = make_settings(
            ENVIRONMENT="production",
            DATABASE_URL="postgresql+asyncpg://u:p@localhost/db",
            CORS_ORIGINS="*",
            DEBUG=True,
            INTERNAL_API_KEY="",
            INTERNAL_API_KEYS="",
        )
        errors = settings.validate_production_config()

        assert "CORS_ORIGINS cannot be '*' in production" in errors
        assert "DATABASE_URL cannot point to localhost in production" in errors
        assert "DEBUG should be False in production" in errors
        assert "INTERNAL_API_KEY is required in production" in errors

    def test_dev_origins_only_outside_production(self):
        dev = make_settings(ENVIRONMENT="development", CORS_ORIGINS="https://ops.example.com")
        prod = make_settings(ENVIRONMENT="production", CORS_ORIGINS="https://ops.example.com")

        assert "http://localhost:3000" in dev.cors_origins_list
        assert prod.cors_origins_list == ["https://ops.example.com"]


class TestJSONLogging:

    def test_audit_event_fields(self, caplog):
        """Test audit fields are top-level and details stay under 'extra'."""
        with caplog.at_level(logging.INFO, logger="reconciliation.services.audit"):
            log_reconciliation_event(
                ReconciliationAuditEvent.MATCH_CONFIRMED,
                {"case_id": "case-1", "method": "AUTO"},
                payment_record_id="pay-1",
                actor="system"
            )

        record = caplog.records[-1]
        data = json.loads(JSONFormatter(service_name="payment-reconciliation").format(record))

        assert data["message"] == "Reconciliation event: reconciliation.match_confirmed"
        assert data["service"] == "payment-reconciliation"
        assert data["event"] == "reconciliation.match_confirmed"
        assert data["payment_record_id"] == "pay-1"
        assert data["actor"] == "system"
        assert data["extra"]["details"] == {"case_id": "case-1", "method": "AUTO"}

    def test_request_context(self):
        record = logging.LogRecord("test.ctx", logging.INFO, __file__, 1, "hello", (), None)

        set_request_context(request_id="req-123", user_id="user-9")
        try:
            RequestContextFilter().filter(record)
        finally:
            clear_request_context()

        data = json.loads(JSONFormatter().format(record))
        assert data["extra"] == {"request_id": "req-123", "user_id": "user-9"}

        RequestContextFilter().filter(record)
        assert record.request_id is None

    def test_exception_info(self):
        try:
            raise RuntimeError("store down")
        except RuntimeError:
            record = logging.LogRecord(
                "test.json", logging.ERROR, __file__, 1, "sweep failed", (), sys.exc_info()
            )

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "ERROR"
        assert data["exception"]["type"] == "RuntimeError"
        assert data["exception"]["message"] == "store down"
        assert "extra" not in data


class TestSentryFiltering:

    def test_redacts_api_key_header(self):
        event = {
            "request": {
                "headers": {"X-Internal-Api-Key": "secret", "X-User-Id": "user-1"},
                "data": {"payment_amount": "150.00", "password": "pw"},
            },
            "extra": {"nested": {"token": "abc"}, "payment_record_id": "pay-1"},
        }

        result = filter_sensitive_data(event, {})

        assert result["request"]["headers"]["X-Internal-Api-Key"] == "[REDACTED]"
        assert result["request"]["headers"]["X-User-Id"] == "user-1"
        assert result["request"]["data"]["password"] == "[REDACTED]"
        assert result["extra"]["nested"]["token"] == "[REDACTED]"
        assert result["extra"]["payment_record_id"] == "pay-1"
