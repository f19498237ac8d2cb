"""Token revocation (blacklist) backed by the shared key-value store.

Revocation entries live exactly as long as the token they revoke would
have. Tokens are stored as SHA-256 digests so the store never holds a usable
bearer credential.
"""

import hashlib
import logging
import time
from collections.abc import Callable

from usermanager.services.kv_store import KeyValueStore
from usermanager.services.metrics import SecurityMetrics

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "blacklisted_token:"
USER_PREFIX = "blacklisted_user:"
USER_TOKENS_PREFIX = "user_tokens:"

USER_MARKER_TTL_SECONDS = 7 * 24 * 3600
USER_TOKENS_TTL_SECONDS = 30 * 24 * 3600
TOKEN_FIELD_LENGTH = 32


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _token_key(token: str) -> str:
    return TOKEN_PREFIX + _digest(token)


def session_field(token: str) -> str:
    """Identifier a token is registered under in its user's session hash."""
    return _digest(token)[:TOKEN_FIELD_LENGTH]


class RevocationStore:
    """Blacklist of revoked tokens plus per-user revocation markers.

    ``register_user_token`` is part of the interface so callers never need to
    probe for it; a store without session tracking can override it as a no-op.
    """

    def __init__(
        self,
        store: KeyValueStore,
        metrics: SecurityMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._metrics = metrics or SecurityMetrics.get_instance()
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def revoke(self, token: str, expires_at_ms: int) -> None:
        """Revoke ``token`` until its natural expiry.

        Store failures propagate: a revocation that was not written must not
        be reported as done.
        """
        now_ms = self._now_ms()
        ttl_ms = expires_at_ms - now_ms
        if ttl_ms <= 0:
            logger.warning("Token already expired, not adding to blacklist")
            return

        await self._store.set(_token_key(token), str(now_ms), ttl_seconds=ttl_ms / 1000)
        self._metrics.increment_blacklisted_tokens()
        logger.debug(f"Token blacklisted for {ttl_ms} ms")

    async def is_revoked(self, token: str) -> bool:
        """Single key lookup; store failures propagate to the caller's policy."""
        revoked = await self._store.exists(_token_key(token))
        if revoked:
            self._metrics.increment_rejected_tokens()
            logger.debug("Rejected blacklisted token")
        return revoked

    async def revoke_all_for_user(self, user_id: str, reason: str) -> None:
        """Record a mass-revocation marker for ``user_id``.

        Issued tokens are not enumerated or individually revoked; they keep
        validating until they expire.
        """
        marker = f"{self._now_ms()}:{reason}"
        await self._store.set(USER_PREFIX + user_id, marker, ttl_seconds=USER_MARKER_TTL_SECONDS)
        self._metrics.increment_users_blacklisted()

        sessions = await self._store.hgetall(USER_TOKENS_PREFIX + user_id)
        logger.info(
            f"All tokens blacklisted for user {user_id}, reason: {reason} "
            f"({len(sessions)} registered sessions)"
        )

    async def is_user_revoked(self, user_id: str) -> bool:
        return await self._store.exists(USER_PREFIX + user_id)

    async def get_user_revocation_reason(self, user_id: str) -> str | None:
        marker = await self._store.get(USER_PREFIX + user_id)
        if marker is None:
            return None
        _, _, reason = marker.partition(":")
        return reason

    async def register_user_token(self, user_id: str, token: str, device_info: str) -> None:
        """Record an issued token under its user for session bookkeeping."""
        name = USER_TOKENS_PREFIX + user_id
        await self._store.hset(name, session_field(token), device_info)
        await self._store.expire(name, USER_TOKENS_TTL_SECONDS)
        logger.debug(f"Token registered for user {user_id} from device: {device_info}")

    async def get_user_sessions(self, user_id: str) -> dict[str, str]:
        """Registered sessions for ``user_id``: session field to device info."""
        return await self._store.hgetall(USER_TOKENS_PREFIX + user_id)

    async def size(self) -> int:
        """Approximate number of active revocation entries."""
        return await self._store.count_keys(TOKEN_PREFIX)

    async def report_size(self) -> int:
        """Publish the blacklist size; run periodically from the app lifespan."""
        size = await self.size()
        self._metrics.set_blacklist_size(size)
        logger.info(f"Token blacklist maintenance: {size} active entries")
        return size
