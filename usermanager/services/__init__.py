# usermanager Services
from usermanager.services.audit import AuditEvent, SecurityAuditService, get_audit_service
from usermanager.services.auth import AuthenticationResult, AuthenticationService, ClientContext
from usermanager.services.brute_force import BruteForceGuard
from usermanager.services.kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_kv_store,
)
from usermanager.services.metrics import SecurityMetrics
from usermanager.services.revocation import RevocationStore
from usermanager.services.security import SecurityContext
from usermanager.services.token_codec import (
    EncryptedTokenCodec,
    SignedTokenCodec,
    TokenClaims,
    TokenCodec,
    create_token_codec,
)

__all__ = [
    "AuditEvent",
    "AuthenticationResult",
    "AuthenticationService",
    "BruteForceGuard",
    "ClientContext",
    "EncryptedTokenCodec",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "RevocationStore",
    "SecurityAuditService",
    "SecurityContext",
    "SecurityMetrics",
    "SignedTokenCodec",
    "TokenClaims",
    "TokenCodec",
    "create_kv_store",
    "create_token_codec",
    "get_audit_service",
]
