"""Security metrics exported through Prometheus."""

import threading

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge


class SecurityMetrics:
    """Counters for the authentication hot path.

    Use get_instance() for the process-wide collector registered with the
    default Prometheus registry; tests pass their own CollectorRegistry.
    """

    _instance: "SecurityMetrics | None" = None
    _lock = threading.Lock()

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self.login_success = Counter(
            "auth_login_success", "Successful logins", registry=registry
        )
        self.login_failure = Counter(
            "auth_login_failure", "Failed or blocked logins", registry=registry
        )
        self.token_validation = Counter(
            "auth_token_validation", "Successfully validated tokens", registry=registry
        )
        self.token_refresh = Counter(
            "auth_token_refresh", "Refreshed tokens", registry=registry
        )
        self.logout = Counter("auth_logout", "Single-token logouts", registry=registry)
        self.token_blacklisted = Counter(
            "auth_token_blacklisted", "Tokens added to the revocation list", registry=registry
        )
        self.token_rejected = Counter(
            "auth_token_rejected", "Tokens rejected because they were revoked", registry=registry
        )
        self.user_blacklisted = Counter(
            "auth_user_blacklisted", "Users with all sessions revoked", registry=registry
        )
        self.blacklist_size = Gauge(
            "auth_token_blacklist_size", "Active revocation entries", registry=registry
        )

    @classmethod
    def get_instance(cls) -> "SecurityMetrics":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def increment_login_success(self) -> None:
        self.login_success.inc()

    def increment_login_failure(self) -> None:
        self.login_failure.inc()

    def increment_token_validation(self) -> None:
        self.token_validation.inc()

    def increment_token_refresh(self) -> None:
        self.token_refresh.inc()

    def increment_logout(self) -> None:
        self.logout.inc()

    def increment_blacklisted_tokens(self) -> None:
        self.token_blacklisted.inc()

    def increment_rejected_tokens(self) -> None:
        self.token_rejected.inc()

    def increment_users_blacklisted(self) -> None:
        self.user_blacklisted.inc()

    def set_blacklist_size(self, size: int) -> None:
        self.blacklist_size.set(size)
