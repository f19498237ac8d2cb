"""Bearer token authentication middleware.

Resolves ``Authorization: Bearer <token>`` into a principal on
``request.state.principal`` for every request. Invalid, expired and revoked
tokens leave the request anonymous; protected routes answer 401 through
their dependency, so the rejection reason never reaches the client.

The revocation list is read from the shared store on every request; no
result is cached in the process.
"""

import logging

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from usermanager.api.error_handling import error_response
from usermanager.core.request_utils import get_bearer_token
from usermanager.services.errors import AuthError, ServiceUnavailableError
from usermanager.services.security import SecurityContext

logger = logging.getLogger(__name__)

# Paths that never need a principal
EXCLUDED_PATHS = [
    "/health",
    "/metrics",
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
]


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Attach the authenticated principal, if any, to the request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.principal = None

        if request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        for excluded in EXCLUDED_PATHS:
            if path == excluded or path.startswith(excluded + "/"):
                return await call_next(request)

        token = get_bearer_token(request)
        if token is not None:
            service = SecurityContext.get_instance().auth_service()
            try:
                request.state.principal = await service.validate_token(token)
            except ServiceUnavailableError as e:
                return error_response(e)
            except AuthError as e:
                logger.debug(f"Bearer token rejected on {path}: {e.error_code}")

        return await call_next(request)
