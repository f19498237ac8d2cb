"""Session token issuance and verification.

Two codecs share one interface and are selected once at startup:

- SignedTokenCodec: an HS256-signed JWT.
- EncryptedTokenCodec: the signed JWT wrapped in a compact JWE
  (alg=dir, enc=A256GCM, cty=JWT) so claims are not readable by clients.

A token is either valid or invalid; there is no partially-valid state.
"""

import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from base64 import urlsafe_b64decode, urlsafe_b64encode
from binascii import Error as BinasciiError
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import jwt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jwt.exceptions import PyJWTError

from usermanager.services.errors import TokenExpiredError, TokenInvalidError

logger = logging.getLogger(__name__)

SIGNING_ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["sub", "login", "iat", "exp"]
RESERVED_CLAIMS = frozenset({"sub", "login", "roles", "permissions", "iat", "exp", "jti"})

JWE_HEADER = {"alg": "dir", "enc": "A256GCM", "cty": "JWT"}
IV_LENGTH = 12
TAG_LENGTH = 16


@dataclass
class TokenClaims:
    """Verified claims of a session token. Instants are epoch milliseconds."""

    subject: str
    login: str
    roles: list[str]
    permissions: list[str]
    issued_at: int
    expires_at: int
    token_id: str | None = None
    custom_claims: dict[str, Any] = field(default_factory=dict)


class TokenCodec(ABC):
    """Issues, verifies and refreshes session tokens."""

    def __init__(
        self,
        secret_key: str,
        validity_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        if not secret_key:
            raise ValueError("Token signing secret must not be empty")
        if validity_seconds <= 0:
            raise ValueError("Token validity must be positive")
        self._secret_key = secret_key
        self.validity_seconds = validity_seconds
        self._clock = clock

    @abstractmethod
    def issue(
        self,
        subject: str,
        login: str,
        roles: list[str] | set[str],
        permissions: list[str] | set[str],
        custom_claims: dict[str, Any] | None = None,
    ) -> str: ...

    @abstractmethod
    def verify(self, token: str) -> TokenClaims: ...

    def refresh(self, token: str) -> str:
        """Re-issue a valid token with a fresh validity window.

        Custom claims are not carried over.
        """
        claims = self.verify(token)
        return self.issue(claims.subject, claims.login, claims.roles, claims.permissions)


class SignedTokenCodec(TokenCodec):
    """HS256-signed JWT codec."""

    def _sign(self, payload: dict[str, Any]) -> str:
        # PyJWT 2.x returns str; older type stubs may declare bytes
        return str(jwt.encode(payload, self._secret_key, algorithm=SIGNING_ALGORITHM))

    def issue(
        self,
        subject: str,
        login: str,
        roles: list[str] | set[str],
        permissions: list[str] | set[str],
        custom_claims: dict[str, Any] | None = None,
    ) -> str:
        now = int(self._clock())
        payload: dict[str, Any] = {
            key: value
            for key, value in (custom_claims or {}).items()
            if key not in RESERVED_CLAIMS
        }
        payload.update(
            {
                "sub": str(subject),
                "login": login,
                "roles": sorted(roles),
                "permissions": sorted(permissions),
                "iat": now,
                "exp": now + self.validity_seconds,
                "jti": secrets.token_hex(16),
            }
        )
        return self._sign(payload)

    def _decode(self, token: str) -> dict[str, Any]:
        try:
            # Time-based claims are checked against our own clock below
            return jwt.decode(
                token,
                self._secret_key,
                algorithms=[SIGNING_ALGORITHM],
                options={
                    "require": REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except PyJWTError as e:
            raise TokenInvalidError(f"Invalid token: {e}") from e

    def verify(self, token: str) -> TokenClaims:
        if not token:
            raise TokenInvalidError("Token is empty")

        payload = self._decode(token)

        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(exp, int | float) or not isinstance(iat, int | float):
            raise TokenInvalidError("Token has non-numeric time claims")
        if exp <= iat:
            raise TokenInvalidError("Token expiry precedes issue time")
        if self._clock() >= exp:
            raise TokenExpiredError("Token has expired")

        roles = payload.get("roles", [])
        permissions = payload.get("permissions", [])
        if not isinstance(roles, list) or not isinstance(permissions, list):
            raise TokenInvalidError("Token has malformed role or permission claims")

        return TokenClaims(
            subject=str(payload["sub"]),
            login=str(payload["login"]),
            roles=[str(r) for r in roles],
            permissions=[str(p) for p in permissions],
            issued_at=int(iat * 1000),
            expires_at=int(exp * 1000),
            token_id=payload.get("jti"),
            custom_claims={k: v for k, v in payload.items() if k not in RESERVED_CLAIMS},
        )


def _b64url_encode(data: bytes) -> str:
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    return urlsafe_b64decode(data + "=" * (-len(data) % 4))


class EncryptedTokenCodec(SignedTokenCodec):
    """Signed JWT wrapped in a compact-serialization JWE using AES-256-GCM.

    Layout: ``header..iv.ciphertext.tag``; the encrypted key part is empty
    because the content key is the shared key itself (alg=dir). The encoded
    protected header is bound to the ciphertext as AAD.
    """

    def __init__(
        self,
        secret_key: str,
        encryption_key: bytes,
        validity_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(secret_key, validity_seconds=validity_seconds, clock=clock)
        if len(encryption_key) != 32:
            raise ValueError("Token encryption key must be exactly 32 bytes")
        self._aesgcm = AESGCM(encryption_key)
        self._protected_header = _b64url_encode(
            json.dumps(JWE_HEADER, separators=(",", ":")).encode("utf-8")
        )

    @classmethod
    def from_hex_key(
        cls,
        secret_key: str,
        encryption_key_hex: str,
        validity_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> "EncryptedTokenCodec":
        try:
            key = bytes.fromhex(encryption_key_hex)
        except ValueError as e:
            raise ValueError(f"Token encryption key must be valid hexadecimal: {e}") from e
        return cls(secret_key, key, validity_seconds=validity_seconds, clock=clock)

    def issue(
        self,
        subject: str,
        login: str,
        roles: list[str] | set[str],
        permissions: list[str] | set[str],
        custom_claims: dict[str, Any] | None = None,
    ) -> str:
        signed = super().issue(subject, login, roles, permissions, custom_claims)
        return self._encrypt(signed)

    def verify(self, token: str) -> TokenClaims:
        if not token:
            raise TokenInvalidError("Token is empty")
        return super().verify(self._decrypt(token))

    def _encrypt(self, signed_token: str) -> str:
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = self._aesgcm.encrypt(
            iv, signed_token.encode("utf-8"), self._protected_header.encode("ascii")
        )
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ".".join(
            [
                self._protected_header,
                "",
                _b64url_encode(iv),
                _b64url_encode(ciphertext),
                _b64url_encode(tag),
            ]
        )

    def _decrypt(self, token: str) -> str:
        parts = token.split(".")
        if len(parts) != 5:
            raise TokenInvalidError("Token is not an encrypted token")
        header_b64, encrypted_key, iv_b64, ciphertext_b64, tag_b64 = parts
        if encrypted_key:
            raise TokenInvalidError("Unsupported key management algorithm")

        try:
            header = json.loads(_b64url_decode(header_b64))
            iv = _b64url_decode(iv_b64)
            ciphertext = _b64url_decode(ciphertext_b64)
            tag = _b64url_decode(tag_b64)
        except (BinasciiError, ValueError) as e:
            raise TokenInvalidError(f"Malformed encrypted token: {e}") from e

        if not isinstance(header, dict) or header.get("alg") != "dir" or header.get("enc") != "A256GCM":
            raise TokenInvalidError("Unsupported encryption algorithm")
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise TokenInvalidError("Malformed encrypted token")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, header_b64.encode("ascii"))
        except InvalidTag as e:
            raise TokenInvalidError("Token decryption failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TokenInvalidError("Encrypted token payload is not text") from e


def create_token_codec(app_settings: Any, clock: Callable[[], float] = time.time) -> TokenCodec:
    """Build the codec selected by TOKEN_FORMAT."""
    if app_settings.token_format == "jwe":
        logger.info("Issuing encrypted session tokens (JWE A256GCM)")
        return EncryptedTokenCodec.from_hex_key(
            app_settings.effective_jwt_secret_key,
            app_settings.token_encryption_key,
            validity_seconds=app_settings.token_validity_seconds,
            clock=clock,
        )
    return SignedTokenCodec(
        app_settings.effective_jwt_secret_key,
        validity_seconds=app_settings.token_validity_seconds,
        clock=clock,
    )
