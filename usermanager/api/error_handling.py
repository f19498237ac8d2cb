"""Exception handlers that render authentication errors as a stable envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from usermanager.services.errors import AccountLockedError, AuthError

logger = logging.getLogger(__name__)


def error_response(exc: AuthError, headers: dict[str, str] | None = None) -> JSONResponse:
    """Build the JSON error body: generic message plus machine-readable code."""
    response_headers = dict(headers or {})
    if exc.status_code == 401:
        response_headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.error_code},
        headers=response_headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for the authentication error taxonomy."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}"
        )
        headers = {}
        retry_after = getattr(request.state, "retry_after", None)
        if isinstance(exc, AccountLockedError) and retry_after:
            headers["Retry-After"] = str(retry_after)
        return error_response(exc, headers)
