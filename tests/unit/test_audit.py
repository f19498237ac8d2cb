"""Tests for the security audit service."""

import logging

from usermanager.services.audit import AuditEvent, SecurityAuditService

AUDIT_LOGGER = "usermanager.security.audit"


class TestRecordEvent:
    """Tests for record_event formatting and levels."""

    def test_success_logged_at_info(self, audit, caplog):
        """Test that successful events are logged at INFO."""
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER):
            audit.record_event(AuditEvent.LOGIN_SUCCESS, "user-1", "10.0.0.1 (curl)", True, {"login": "alice"})

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.getMessage() == (
            "Security event: login_success, User: user-1, Client: 10.0.0.1 (curl), "
            "Status: SUCCESS, Details: login=alice"
        )

    def test_failure_logged_at_warning(self, audit, caplog):
        """Test that failed events are logged at WARNING."""
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER):
            audit.record_event(AuditEvent.LOGIN_FAILED, "alice", None, False)

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "Client: unknown" in record.getMessage()
        assert "Details" not in record.getMessage()

    def test_critical_events_logged_at_error(self, audit, caplog):
        """Test that block events are logged at ERROR regardless of outcome."""
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER):
            audit.record_event(AuditEvent.AUTHENTICATION_BLOCKED, "alice", "10.0.0.1", False)
            audit.record_event(AuditEvent.LOGIN_BLOCKED, "alice", "10.0.0.1", False)

        assert [r.levelno for r in caplog.records[-2:]] == [logging.ERROR, logging.ERROR]

    def test_structured_entry_attached(self, audit, caplog):
        """Test that the record carries the entry for the JSON formatter."""
        with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER):
            audit.record_event(AuditEvent.LOGOUT, "user-1", "laptop", True)

        entry = caplog.records[-1].security_event
        assert entry["event"] == "logout"
        assert entry["status"] == "SUCCESS"

    def test_anonymous_user(self, audit):
        """Test that a missing user is recorded as anonymous."""
        audit.record_event("custom_event", None, None, True)

        assert audit.recent_events("custom_event")[0]["user"] == "anonymous"

    def test_never_raises(self, audit, caplog):
        """Test that an unprintable detail value does not propagate."""

        class Unprintable:
            def __str__(self):
                raise RuntimeError("boom")

            __repr__ = __str__

        with caplog.at_level(logging.ERROR, logger=AUDIT_LOGGER):
            audit.record_event(AuditEvent.LOGIN_ERROR, "alice", None, False, {"value": Unprintable()})

        assert "Failed to record security event" in caplog.records[-1].getMessage()


class TestSanitization:
    """Tests for redaction of sensitive details."""

    def test_sensitive_keys_redacted(self, audit):
        """Test that passwords and tokens never reach the log."""
        audit.record_event(
            AuditEvent.LOGIN_FAILED,
            "alice",
            None,
            False,
            {"password": "hunter2", "refresh_token": "abc", "reason": "invalid_password"},
        )

        details = audit.recent_events("login_failed")[0]["details"]
        assert details == {
            "password": "[REDACTED]",
            "refresh_token": "[REDACTED]",
            "reason": "invalid_password",
        }

    def test_nested_details_redacted(self, audit):
        """Test that redaction applies to nested dictionaries."""
        audit.record_event("custom_event", "alice", None, True, {"request": {"api_key": "k", "path": "/x"}})

        details = audit.recent_events("custom_event")[0]["details"]
        assert details == {"request": {"api_key": "[REDACTED]", "path": "/x"}}


class TestRecentEvents:
    def test_bounded(self):
        audit = SecurityAuditService(max_recent=2)
        for i in range(3):
            audit.record_event("custom_event", f"user-{i}", None, True)

        assert [e["user"] for e in audit.recent_events()] == ["user-1", "user-2"]

    def test_clear(self, audit):
        audit.record_event(AuditEvent.LOGOUT, "user-1", None, True)
        audit.clear()

        assert audit.recent_events() == []

    def test_is_critical(self):
        assert SecurityAuditService.is_critical("authentication_blocked") is True
        assert SecurityAuditService.is_critical("brute_force_detected") is True
        assert SecurityAuditService.is_critical("login_success") is False
