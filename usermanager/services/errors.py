"""Authentication error taxonomy.

Every error carries the HTTP status and a stable machine-readable code so the
API layer can render it without inspecting the message. Messages are
deliberately generic: unknown-user and wrong-password failures are
indistinguishable, and codec failure causes are only logged.
"""


class AuthError(Exception):
    """Base authentication error."""

    status_code: int = 401
    error_code: str = "authentication_error"
    message: str = "Authentication failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class InvalidCredentialsError(AuthError):
    """Login or password is wrong, or the account cannot sign in."""

    error_code = "invalid_credentials"
    message = "Invalid credentials"


class AccountLockedError(AuthError):
    """Client IP or username is currently blocked by the brute-force guard."""

    status_code = 429
    error_code = "account_locked"
    message = "Too many failed authentication attempts. Please try again later."


class InvalidTokenError(AuthError):
    """Token failed validation at the orchestrator level."""

    error_code = "invalid_token"
    message = "Invalid or expired token"


class TokenRevokedError(AuthError):
    """Token is on the revocation list."""

    error_code = "token_revoked"
    message = "Token has been revoked"


class TokenMismatchError(AuthError):
    """Token subject does not match the user it was presented for."""

    error_code = "token_mismatch"
    message = "Token does not belong to the specified user"


class AuthenticationRequiredError(AuthError):
    """A protected endpoint was called without a valid token."""

    error_code = "authentication_required"
    message = "Authentication required"


class MissingTokenError(AuthError):
    """The Authorization header is absent or not a bearer token."""

    status_code = 400
    error_code = "missing_token"
    message = "Missing or invalid authorization header"


class ServiceUnavailableError(AuthError):
    """A security dependency could not be consulted and the policy is fail-closed."""

    status_code = 503
    error_code = "service_unavailable"
    message = "Authentication service temporarily unavailable"


# --- Token codec errors ---


class TokenError(AuthError):
    """Token codec error."""

    error_code = "invalid_token"
    message = "Invalid token"


class TokenInvalidError(TokenError):
    """Malformed token, bad signature, failed decryption or missing claims."""

    pass


class TokenExpiredError(TokenError):
    """Token is past its expiry instant."""

    message = "Invalid or expired token"


# --- Key-value store errors ---


class StoreUnavailableError(Exception):
    """The shared key-value store could not be reached in time."""

    pass
