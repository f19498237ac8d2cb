"""Authentication orchestration: login, token validation, refresh and logout.

Composes the token codec, the revocation store and the brute-force guard
with the credential and permission stores. Every outcome is audited and
counted; audit and metrics failures never change the outcome.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import NoReturn

from usermanager.services.accounts import (
    Account,
    CredentialStore,
    PasswordVerifier,
    RolePermissionStore,
)
from usermanager.services.audit import AuditEvent, SecurityAuditService
from usermanager.services.brute_force import BruteForceGuard
from usermanager.services.errors import (
    AccountLockedError,
    AuthError,
    InvalidCredentialsError,
    InvalidTokenError,
    ServiceUnavailableError,
    StoreUnavailableError,
    TokenError,
    TokenExpiredError,
    TokenMismatchError,
    TokenRevokedError,
)
from usermanager.services.metrics import SecurityMetrics
from usermanager.services.revocation import RevocationStore, session_field
from usermanager.services.token_codec import TokenClaims, TokenCodec

logger = logging.getLogger(__name__)

LOGOUT_ALL_REASON = "user_initiated_logout_all"


@dataclass
class ClientContext:
    """Where a request came from, for throttling and audit."""

    ip: str | None = None
    session_id: str | None = None
    client_info: str = "unknown"


@dataclass
class AuthenticationResult:
    """A validated token and the identity it carries."""

    token: str
    user_id: str
    login: str
    roles: list[str]
    permissions: list[str]
    expires_at: int

    @classmethod
    def from_claims(cls, token: str, claims: TokenClaims) -> "AuthenticationResult":
        return cls(
            token=token,
            user_id=claims.subject,
            login=claims.login,
            roles=list(claims.roles),
            permissions=list(claims.permissions),
            expires_at=claims.expires_at,
        )


class AuthenticationService:
    """Single entry point for the authentication flows.

    ``revocation_fail_open`` decides what happens when the revocation list
    cannot be read: fail closed (ServiceUnavailableError) by default, or log
    and continue with signature verification only.
    """

    def __init__(
        self,
        codec: TokenCodec,
        revocation: RevocationStore,
        guard: BruteForceGuard,
        credentials: CredentialStore | None = None,
        permissions: RolePermissionStore | None = None,
        password_verifier: PasswordVerifier | None = None,
        audit: SecurityAuditService | None = None,
        metrics: SecurityMetrics | None = None,
        revocation_fail_open: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.codec = codec
        self.revocation = revocation
        self.guard = guard
        self.credentials = credentials
        self.permissions = permissions
        self.password_verifier = password_verifier or PasswordVerifier()
        self.audit = audit or SecurityAuditService.get_instance()
        self.metrics = metrics or SecurityMetrics.get_instance()
        self.revocation_fail_open = revocation_fail_open
        self._clock = clock

    # --- Login ---

    async def authenticate(
        self, login: str, password: str, client: ClientContext | None = None
    ) -> AuthenticationResult:
        """Authenticate by login and password and issue a session token.

        Raises AccountLockedError before any account lookup when the client IP
        or login is blocked. Unknown login and wrong password both raise the
        same InvalidCredentialsError.
        """
        client = client or ClientContext()

        try:
            blocked = await self.guard.is_blocked(client.ip, login)
        except StoreUnavailableError as e:
            raise ServiceUnavailableError() from e

        if blocked:
            self.audit.record_event(
                AuditEvent.LOGIN_BLOCKED, login, client.client_info, False, {"ip": client.ip}
            )
            self.metrics.increment_login_failure()
            raise AccountLockedError()

        if self.credentials is None or self.permissions is None:
            raise RuntimeError("Password login requires credential and permission stores")

        try:
            account = await self.credentials.find_account_by_login(login)
            if account is None:
                self.password_verifier.burn(password)
                await self._reject(login, client, "user_not_found")
            elif not self.password_verifier.matches(password, account.password_hash):
                await self._reject(login, client, "invalid_password")
            elif not account.is_active:
                await self._reject(login, client, "account_inactive")
            return await self._complete_login(account, client)
        except AuthError:
            raise
        except StoreUnavailableError as e:
            self.audit.record_event(
                AuditEvent.LOGIN_ERROR, login, client.client_info, False, {"error": "store_unavailable"}
            )
            raise ServiceUnavailableError() from e
        except Exception as e:
            logger.exception(f"Unexpected error authenticating {login}")
            self.audit.record_event(
                AuditEvent.LOGIN_ERROR, login, client.client_info, False, {"error": type(e).__name__}
            )
            raise InvalidCredentialsError("Authentication failed") from e

    async def _reject(self, login: str, client: ClientContext, reason: str) -> NoReturn:
        try:
            blocked_now = await self.guard.register_failed_attempt(client.ip, login, client.session_id)
        except StoreUnavailableError as e:
            raise ServiceUnavailableError() from e

        self.audit.record_event(
            AuditEvent.LOGIN_FAILED, login, client.client_info, False, {"reason": reason}
        )
        self.metrics.increment_login_failure()
        if blocked_now:
            raise AccountLockedError()
        raise InvalidCredentialsError()

    async def _complete_login(self, account: Account, client: ClientContext) -> AuthenticationResult:
        await self.guard.reset_attempts(client.ip, account.login, client.session_id)

        permissions = await self.permissions.get_permissions_for_user(account.id)
        token = self.codec.issue(
            account.id,
            account.login,
            account.role_names,
            permissions,
            {"client_info": client.client_info, "auth_time": int(self._clock() * 1000)},
        )
        result = AuthenticationResult.from_claims(token, self.codec.verify(token))

        try:
            await self.revocation.register_user_token(account.id, token, client.client_info)
        except StoreUnavailableError as e:
            logger.warning(f"Session registration skipped for user {account.id}: {e}")

        await self.credentials.record_login(account.id)

        self.audit.record_event(
            AuditEvent.LOGIN_SUCCESS,
            account.id,
            client.client_info,
            True,
            {"login": account.login, "roles": result.roles, "expires_at": result.expires_at},
        )
        self.metrics.increment_login_success()
        logger.info(f"User {account.login} authenticated")
        return result

    # --- Tokens ---

    async def _ensure_not_revoked(self, token: str) -> None:
        try:
            revoked = await self.revocation.is_revoked(token)
        except StoreUnavailableError as e:
            if not self.revocation_fail_open:
                logger.error(f"Revocation check unavailable, rejecting token: {e}")
                raise ServiceUnavailableError() from e
            logger.warning(f"Revocation check unavailable, continuing without it: {e}")
            return
        if revoked:
            raise TokenRevokedError()

    def _verify(self, token: str) -> TokenClaims:
        try:
            return self.codec.verify(token)
        except TokenExpiredError as e:
            logger.debug("Token validation failed: token expired")
            raise InvalidTokenError() from e
        except TokenError as e:
            logger.debug(f"Token validation failed: {e}")
            raise InvalidTokenError() from e

    async def validate_token(self, token: str) -> AuthenticationResult:
        """Validate a bearer token.

        The revocation list is consulted before the signature so a revoked
        token reports TokenRevokedError even when it is otherwise valid.
        """
        await self._ensure_not_revoked(token)
        claims = self._verify(token)
        self.metrics.increment_token_validation()
        return AuthenticationResult.from_claims(token, claims)

    async def refresh_token(self, token: str, client_info: str | None = None) -> AuthenticationResult:
        """Issue a new token for a valid, unrevoked one."""
        await self._ensure_not_revoked(token)
        try:
            new_token = self.codec.refresh(token)
        except TokenError as e:
            logger.debug(f"Token refresh failed: {e}")
            raise InvalidTokenError() from e

        result = AuthenticationResult.from_claims(new_token, self.codec.verify(new_token))
        self.audit.record_event(
            AuditEvent.TOKEN_REFRESH, result.user_id, client_info, True, {"login": result.login}
        )
        self.metrics.increment_token_refresh()
        return result

    # --- Logout ---

    async def logout(self, token: str, user_id: str, device_info: str | None = None) -> None:
        """Revoke ``token`` for the rest of its lifetime.

        Raises TokenMismatchError when the token was issued to another user.
        """
        try:
            claims = self._verify(token)
            if claims.subject != user_id:
                raise TokenMismatchError()
            try:
                await self.revocation.revoke(token, claims.expires_at)
            except StoreUnavailableError as e:
                raise ServiceUnavailableError() from e
        except AuthError as e:
            self.audit.record_event(
                AuditEvent.LOGOUT_FAILED, user_id, device_info, False, {"error": e.error_code}
            )
            raise

        self.audit.record_event(
            AuditEvent.LOGOUT, user_id, device_info, True, {"expires_at": claims.expires_at}
        )
        self.metrics.increment_logout()
        logger.info(f"User {user_id} logged out")

    async def logout_all_sessions(self, user_id: str, device_info: str | None = None) -> None:
        """Mark every session of ``user_id`` as revoked.

        This records a user-level marker only; tokens already issued are not
        enumerated and remain valid until they expire.
        """
        try:
            await self.revocation.revoke_all_for_user(user_id, LOGOUT_ALL_REASON)
        except StoreUnavailableError as e:
            self.audit.record_event(
                AuditEvent.LOGOUT_FAILED,
                user_id,
                device_info,
                False,
                {"error": "store_unavailable", "scope": "all_sessions"},
            )
            raise ServiceUnavailableError() from e

        self.audit.record_event(
            AuditEvent.LOGOUT_ALL_SESSIONS, user_id, device_info, True, {"reason": LOGOUT_ALL_REASON}
        )
        logger.info(f"User {user_id} logged out from all sessions")

    async def logout_other_devices(
        self, user_id: str, current_token: str, device_info: str | None = None
    ) -> int:
        """Record a request to end every session except the current one.

        Returns how many other sessions are registered for the user. Only a
        digest prefix of each token is tracked, so those sessions cannot be
        revoked individually and expire naturally.
        """
        claims = self._verify(current_token)
        if claims.subject != user_id:
            self.audit.record_event(
                AuditEvent.LOGOUT_FAILED, user_id, device_info, False, {"error": "token_mismatch"}
            )
            raise TokenMismatchError()

        try:
            sessions = await self.revocation.get_user_sessions(user_id)
        except StoreUnavailableError as e:
            raise ServiceUnavailableError() from e

        current_field = session_field(current_token)
        others = sum(1 for field in sessions if field != current_field)
        self.audit.record_event(
            AuditEvent.LOGOUT_OTHER_DEVICES, user_id, device_info, True, {"other_sessions": others}
        )
        logger.info(f"User {user_id} requested logout from {others} other sessions")
        return others
