"""Brute-force protection for authentication endpoints.

Failed attempts are counted per client IP, per username and per client
session in the shared key-value store, so every instance sees the same
counts. Crossing the IP or username threshold blocks that scope; each new
block of the same scope lasts twice as long as the previous one, up to a cap.

Session counters are advisory: reaching their threshold is logged but never
blocks.
"""

import logging
import time
from collections.abc import Callable

from usermanager.services.audit import AuditEvent, SecurityAuditService
from usermanager.services.errors import StoreUnavailableError
from usermanager.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

IP_ATTEMPT_PREFIX = "auth_attempt:ip:"
USERNAME_ATTEMPT_PREFIX = "auth_attempt:username:"
SESSION_ATTEMPT_PREFIX = "auth_attempt:session:"
IP_BLOCK_PREFIX = "block:ip:"
USERNAME_BLOCK_PREFIX = "block:username:"
HISTORY_SUFFIX = ":history"

MAX_ATTEMPTS_PER_IP = 10
MAX_ATTEMPTS_PER_USERNAME = 5
MAX_ATTEMPTS_PER_SESSION = 3

IP_WINDOW_SECONDS = 3600
USERNAME_WINDOW_SECONDS = 3600
SESSION_WINDOW_SECONDS = 1800

INITIAL_BLOCK_SECONDS = 5 * 60
MAX_BLOCK_SECONDS = 24 * 3600
BLOCK_MULTIPLIER = 2
HISTORY_RETENTION_SECONDS = 30 * 24 * 3600

# Decrement applied to IP and username counters after a successful login
SUCCESS_COUNTER_REDUCTION = 2

UNKNOWN_SESSION = "unknown"


def block_duration(history_count: int) -> int:
    """Block length in seconds for a scope blocked ``history_count`` times, this one included."""
    if history_count <= 1:
        return INITIAL_BLOCK_SECONDS
    duration = INITIAL_BLOCK_SECONDS * BLOCK_MULTIPLIER ** (history_count - 1)
    return min(duration, MAX_BLOCK_SECONDS)


class BruteForceGuard:
    """Throttles repeated failed authentication attempts.

    When ``fail_open`` is set, store failures are logged and treated as
    "not blocked" so an outage of the store does not lock every user out;
    otherwise StoreUnavailableError propagates.
    """

    def __init__(
        self,
        store: KeyValueStore,
        audit: SecurityAuditService | None = None,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._audit = audit or SecurityAuditService.get_instance()
        self.fail_open = fail_open
        self._clock = clock

    def _handle_store_error(self, operation: str, error: StoreUnavailableError) -> None:
        if not self.fail_open:
            raise error
        logger.error(f"Brute-force {operation} skipped, key-value store unavailable: {error}")

    async def is_blocked(self, ip: str | None, username: str | None) -> bool:
        """True when either the IP or the username has an active block."""
        try:
            ip_blocked = bool(ip) and await self._store.exists(IP_BLOCK_PREFIX + ip)
            username_blocked = bool(username) and await self._store.exists(
                USERNAME_BLOCK_PREFIX + username
            )
        except StoreUnavailableError as e:
            self._handle_store_error("block check", e)
            return False

        if ip_blocked or username_blocked:
            self._audit.record_event(
                AuditEvent.AUTHENTICATION_BLOCKED,
                username,
                ip,
                False,
                {"ip_blocked": ip_blocked, "username_blocked": username_blocked},
            )
            return True
        return False

    async def register_failed_attempt(
        self, ip: str | None, username: str | None, session_id: str | None
    ) -> bool:
        """Count a failed attempt in every scope.

        Returns True only when this call created a new block; a scope that is
        already blocked is neither re-blocked nor reported again.
        """
        try:
            return await self._register_failed_attempt(ip, username, session_id)
        except StoreUnavailableError as e:
            self._handle_store_error("attempt registration", e)
            return False

    async def _register_failed_attempt(
        self, ip: str | None, username: str | None, session_id: str | None
    ) -> bool:
        ip_attempts = 0
        username_attempts = 0
        session_attempts = 0

        if ip:
            ip_attempts = await self._increment(IP_ATTEMPT_PREFIX + ip, IP_WINDOW_SECONDS)
        if username:
            username_attempts = await self._increment(
                USERNAME_ATTEMPT_PREFIX + username, USERNAME_WINDOW_SECONDS
            )
        if session_id and session_id != UNKNOWN_SESSION:
            session_attempts = await self._increment(
                SESSION_ATTEMPT_PREFIX + session_id, SESSION_WINDOW_SECONDS
            )

        blocked = False

        if ip and ip_attempts >= MAX_ATTEMPTS_PER_IP:
            if await self._block(IP_BLOCK_PREFIX + ip):
                logger.warning(f"IP {ip} blocked after {ip_attempts} failed attempts")
                blocked = True

        if username and username_attempts >= MAX_ATTEMPTS_PER_USERNAME:
            if await self._block(USERNAME_BLOCK_PREFIX + username):
                logger.warning(f"Username {username} blocked after {username_attempts} failed attempts")
                blocked = True

        if session_attempts >= MAX_ATTEMPTS_PER_SESSION:
            logger.warning(
                f"Session {session_id} reached {session_attempts} failed attempts (advisory)"
            )

        self._audit.record_event(
            AuditEvent.FAILED_AUTHENTICATION_ATTEMPT,
            username,
            ip,
            False,
            {
                "ip_attempts": ip_attempts,
                "username_attempts": username_attempts,
                "session_attempts": session_attempts,
                "blocked": blocked,
            },
        )
        return blocked

    async def reset_attempts(
        self, ip: str | None, username: str | None, session_id: str | None
    ) -> None:
        """Relax counters after a successful login.

        The session counter is dropped; IP and username counters are only
        reduced so one lucky success does not hand out a fresh budget.
        """
        try:
            if session_id and session_id != UNKNOWN_SESSION:
                await self._store.delete(SESSION_ATTEMPT_PREFIX + session_id)
            if ip:
                await self._reduce(IP_ATTEMPT_PREFIX + ip)
            if username:
                await self._reduce(USERNAME_ATTEMPT_PREFIX + username)
        except StoreUnavailableError as e:
            self._handle_store_error("attempt reset", e)

    async def block_remaining_seconds(self, ip: str | None, username: str | None) -> int:
        """Seconds until both scopes are unblocked; 0 when neither is blocked."""
        remaining = 0.0
        try:
            if ip:
                remaining = max(remaining, await self._store.ttl(IP_BLOCK_PREFIX + ip))
            if username:
                remaining = max(remaining, await self._store.ttl(USERNAME_BLOCK_PREFIX + username))
        except StoreUnavailableError as e:
            self._handle_store_error("block ttl lookup", e)
            return 0
        return int(remaining + 0.999) if remaining > 0 else 0

    async def _increment(self, key: str, window_seconds: int) -> int:
        # The window starts with the first attempt and is never extended
        return await self._store.increment_with_expiry(key, 1, window_seconds)

    async def _reduce(self, key: str) -> None:
        value = await self._store.incrby(key, -SUCCESS_COUNTER_REDUCTION)
        if value <= 0:
            await self._store.delete(key)

    async def _block(self, block_key: str) -> bool:
        """Create a block unless one is active. Returns True if created.

        Only the caller whose create-if-absent wins bumps the block history,
        so concurrent failures at the threshold produce exactly one block.
        """
        created = await self._store.set(
            block_key,
            str(int(self._clock() * 1000)),
            ttl_seconds=INITIAL_BLOCK_SECONDS,
            nx=True,
        )
        if not created:
            return False

        history_count = await self._store.increment_with_expiry(
            block_key + HISTORY_SUFFIX, 1, HISTORY_RETENTION_SECONDS
        )
        duration = block_duration(history_count)
        if duration != INITIAL_BLOCK_SECONDS:
            await self._store.expire(block_key, duration)
        logger.info(f"Created block {block_key} for {duration}s (block #{history_count})")
        return True
