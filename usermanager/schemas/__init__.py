from usermanager.schemas.auth import (
    AuthenticationResponse,
    LoginRequest,
    LogoutOthersResponse,
    MessageResponse,
    PrincipalResponse,
    RefreshRequest,
)

__all__ = [
    "AuthenticationResponse",
    "LoginRequest",
    "LogoutOthersResponse",
    "MessageResponse",
    "PrincipalResponse",
    "RefreshRequest",
]
