"""Process-wide security components built once from settings."""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from usermanager.services.accounts import CredentialStore, PasswordVerifier, RolePermissionStore
from usermanager.services.audit import SecurityAuditService
from usermanager.services.auth import AuthenticationService
from usermanager.services.brute_force import BruteForceGuard
from usermanager.services.kv_store import KeyValueStore, create_kv_store
from usermanager.services.metrics import SecurityMetrics
from usermanager.services.revocation import RevocationStore
from usermanager.services.token_codec import TokenCodec, create_token_codec

logger = logging.getLogger(__name__)


class SecurityContext:
    """Shared store, codec, revocation list and brute-force guard.

    These hold no per-request state and are shared by every request; the
    credential and permission stores are bound per request because they
    need a database session.
    """

    _instance: "SecurityContext | None" = None
    _lock = threading.Lock()

    def __init__(
        self,
        store: KeyValueStore,
        codec: TokenCodec,
        audit: SecurityAuditService | None = None,
        metrics: SecurityMetrics | None = None,
        brute_force_fail_open: bool = True,
        revocation_fail_open: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.codec = codec
        self.audit = audit or SecurityAuditService.get_instance()
        self.metrics = metrics or SecurityMetrics.get_instance()
        self.revocation_fail_open = revocation_fail_open
        self.clock = clock
        self.revocation = RevocationStore(store, metrics=self.metrics, clock=clock)
        self.guard = BruteForceGuard(
            store, audit=self.audit, fail_open=brute_force_fail_open, clock=clock
        )
        self.password_verifier = PasswordVerifier()

    @classmethod
    def from_settings(cls, app_settings: Any) -> "SecurityContext":
        store = create_kv_store(
            app_settings.redis_url, socket_timeout=app_settings.redis_socket_timeout
        )
        return cls(
            store=store,
            codec=create_token_codec(app_settings),
            brute_force_fail_open=app_settings.brute_force_fail_open,
            revocation_fail_open=app_settings.revocation_check_fail_open,
        )

    @classmethod
    def get_instance(cls) -> "SecurityContext":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    from usermanager.core.config import settings

                    cls._instance = cls.from_settings(settings)
        return cls._instance

    @classmethod
    def set_instance(cls, instance: "SecurityContext | None") -> None:
        with cls._lock:
            cls._instance = instance

    def auth_service(
        self,
        credentials: CredentialStore | None = None,
        permissions: RolePermissionStore | None = None,
    ) -> AuthenticationService:
        """Build an orchestrator over the shared components.

        Token validation needs no account stores; password login does.
        """
        return AuthenticationService(
            codec=self.codec,
            revocation=self.revocation,
            guard=self.guard,
            credentials=credentials,
            permissions=permissions,
            password_verifier=self.password_verifier,
            audit=self.audit,
            metrics=self.metrics,
            revocation_fail_open=self.revocation_fail_open,
            clock=self.clock,
        )

    async def close(self) -> None:
        await self.store.close()
