"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from usermanager.core import get_db
from usermanager.core.request_utils import (
    get_bearer_token,
    get_client_info,
    get_client_ip,
    get_session_id,
)
from usermanager.schemas.auth import (
    AuthenticationResponse,
    LoginRequest,
    LogoutOthersResponse,
    MessageResponse,
    PrincipalResponse,
    RefreshRequest,
)
from usermanager.services.accounts import (
    CredentialStore,
    RolePermissionStore,
    SqlCredentialStore,
    SqlRolePermissionStore,
)
from usermanager.services.auth import AuthenticationResult, AuthenticationService, ClientContext
from usermanager.services.errors import (
    AccountLockedError,
    AuthenticationRequiredError,
    MissingTokenError,
)
from usermanager.services.security import SecurityContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def get_security_context() -> SecurityContext:
    """Dependency to get the shared security components."""
    return SecurityContext.get_instance()


def get_credential_store(db: AsyncSession = Depends(get_db)) -> CredentialStore:
    return SqlCredentialStore(db)


def get_permission_store(db: AsyncSession = Depends(get_db)) -> RolePermissionStore:
    return SqlRolePermissionStore(db)


def get_auth_service(
    security: SecurityContext = Depends(get_security_context),
    credentials: CredentialStore = Depends(get_credential_store),
    permissions: RolePermissionStore = Depends(get_permission_store),
) -> AuthenticationService:
    """Dependency to get auth service."""
    return security.auth_service(credentials, permissions)


def get_token_service(
    security: SecurityContext = Depends(get_security_context),
) -> AuthenticationService:
    """Auth service for token-only flows; needs no database session."""
    return security.auth_service()


def require_bearer_token(request: Request) -> str:
    """Dependency returning the bearer token, or 400 when the header is absent."""
    token = get_bearer_token(request)
    if token is None:
        raise MissingTokenError()
    return token


def get_current_principal(request: Request) -> AuthenticationResult:
    """Dependency returning the caller authenticated by BearerAuthMiddleware."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise AuthenticationRequiredError()
    return principal


async def get_logout_principal(
    request: Request,
    token: str = Depends(require_bearer_token),
    auth_service: AuthenticationService = Depends(get_token_service),
) -> AuthenticationResult:
    """Principal for the presented token, as resolved by BearerAuthMiddleware.

    The middleware keeps a refused token anonymous without saying why; only
    then is the token validated again to answer with the precise error code.
    """
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return principal
    return await auth_service.validate_token(token)


def _client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip=get_client_ip(request),
        session_id=get_session_id(request),
        client_info=get_client_info(request),
    )


def _response(result: AuthenticationResult) -> AuthenticationResponse:
    return AuthenticationResponse(
        token=result.token,
        user_id=result.user_id,
        login=result.login,
        roles=result.roles,
        permissions=result.permissions,
        expires_at=result.expires_at,
    )


@router.post("/login", response_model=AuthenticationResponse)
async def login(
    body: LoginRequest,
    request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service),
) -> AuthenticationResponse:
    """Authenticate with login and password and get a session token.

    Repeated failures from one IP or for one login are blocked with 429.
    """
    client = _client_context(request)
    try:
        result = await auth_service.authenticate(body.login, body.password, client)
    except AccountLockedError:
        request.state.retry_after = await auth_service.guard.block_remaining_seconds(
            client.ip, body.login
        )
        raise
    return _response(result)


@router.post("/refresh", response_model=AuthenticationResponse)
async def refresh(
    body: RefreshRequest,
    request: Request,
    auth_service: AuthenticationService = Depends(get_token_service),
) -> AuthenticationResponse:
    """Exchange a valid token for a new one with a fresh validity window."""
    result = await auth_service.refresh_token(body.token, get_client_info(request))
    return _response(result)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    token: str = Depends(require_bearer_token),
    principal: AuthenticationResult = Depends(get_logout_principal),
    auth_service: AuthenticationService = Depends(get_token_service),
) -> MessageResponse:
    """Revoke the presented token for the rest of its lifetime."""
    await auth_service.logout(token, principal.user_id, get_client_info(request))
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    request: Request,
    principal: AuthenticationResult = Depends(get_logout_principal),
    auth_service: AuthenticationService = Depends(get_token_service),
) -> MessageResponse:
    """Record a logout from every session of the caller."""
    await auth_service.logout_all_sessions(principal.user_id, get_client_info(request))
    return MessageResponse(message="Logged out from all sessions")


@router.post("/logout-others", response_model=LogoutOthersResponse)
async def logout_others(
    request: Request,
    token: str = Depends(require_bearer_token),
    principal: AuthenticationResult = Depends(get_logout_principal),
    auth_service: AuthenticationService = Depends(get_token_service),
) -> LogoutOthersResponse:
    """Record a logout from every session except the current one."""
    others = await auth_service.logout_other_devices(
        principal.user_id, token, get_client_info(request)
    )
    return LogoutOthersResponse(message="Logged out from other devices", other_sessions=others)


@router.get("/me", response_model=PrincipalResponse)
async def me(
    principal: AuthenticationResult = Depends(get_current_principal),
) -> PrincipalResponse:
    """Get the identity carried by the current token."""
    return PrincipalResponse(
        user_id=principal.user_id,
        login=principal.login,
        roles=principal.roles,
        permissions=principal.permissions,
        expires_at=principal.expires_at,
    )
