"""Security Audit Logging Service.

Records security-relevant authentication events:
- Logins (success, failure, blocked, error)
- Token refresh and logout
- Brute-force blocks and failed attempt bookkeeping

Recording an event never raises; a broken audit sink must not turn a
successful login into a failed one.
"""

import logging
import threading
from collections import deque
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger("usermanager.security.audit")


class AuditEvent(str, Enum):
    """Security audit event types."""

    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGIN_BLOCKED = "login_blocked"
    LOGIN_ERROR = "login_error"
    TOKEN_REFRESH = "token_refresh"
    LOGOUT = "logout"
    LOGOUT_FAILED = "logout_failed"
    LOGOUT_ALL_SESSIONS = "logout_all_sessions"
    LOGOUT_OTHER_DEVICES = "logout_other_devices"
    AUTHENTICATION_BLOCKED = "authentication_blocked"
    FAILED_AUTHENTICATION_ATTEMPT = "failed_authentication_attempt"


# Substrings marking an event as critical regardless of outcome
CRITICAL_MARKERS = ("_blocked", "brute_force", "privilege_escalation", "suspicious", "violation")

SENSITIVE_KEYS = {"password", "secret", "token", "api_key", "credential"}


class SecurityAuditService:
    """Writes audit records to the security logger and keeps recent ones in memory."""

    _instance: "SecurityAuditService | None" = None
    _lock = threading.Lock()

    def __init__(self, max_recent: int = 500):
        self._recent: deque[dict[str, Any]] = deque(maxlen=max_recent)

    @classmethod
    def get_instance(cls) -> "SecurityAuditService":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @staticmethod
    def is_critical(event_type: str) -> bool:
        return any(marker in event_type for marker in CRITICAL_MARKERS)

    def record_event(
        self,
        event_type: AuditEvent | str,
        user_id: str | None,
        client_info: str | None,
        success: bool,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record a security event. Failures are logged, never raised."""
        try:
            name = event_type.value if isinstance(event_type, AuditEvent) else str(event_type)
            safe_details = self._sanitize_details(details or {})
            entry = {
                "event": name,
                "user": user_id or "anonymous",
                "client": client_info or "unknown",
                "status": "SUCCESS" if success else "FAILURE",
                "details": safe_details,
                "timestamp": datetime.now(UTC).isoformat(),
            }
            self._recent.append(entry)

            detail_text = ", ".join(f"{k}={v}" for k, v in safe_details.items())
            message = (
                f"Security event: {name}, User: {entry['user']}, Client: {entry['client']}, "
                f"Status: {entry['status']}"
            )
            if detail_text:
                message += f", Details: {detail_text}"

            if self.is_critical(name):
                level = logging.ERROR
            elif success:
                level = logging.INFO
            else:
                level = logging.WARNING
            logger.log(level, message, extra={"security_event": entry})
        except Exception as e:
            logger.error(f"Failed to record security event {event_type}: {e}")

    def recent_events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        """Return recorded events, newest last, optionally filtered by type."""
        events = list(self._recent)
        if event_type is None:
            return events
        return [e for e in events if e["event"] == event_type]

    def clear(self) -> None:
        self._recent.clear()

    def _sanitize_details(self, details: dict[str, Any]) -> dict[str, Any]:
        """Redact passwords, tokens and similar values from audit details."""
        sanitized: dict[str, Any] = {}
        for key, value in details.items():
            key_lower = key.lower()
            if any(s in key_lower for s in SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]" if value is not None else None
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_details(value)
            else:
                sanitized[key] = value
        return sanitized


def get_audit_service() -> SecurityAuditService:
    """Get the process-wide audit service."""
    return SecurityAuditService.get_instance()
