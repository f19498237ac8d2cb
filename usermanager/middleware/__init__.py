"""Middleware module for usermanager."""

from usermanager.middleware.bearer_auth import BearerAuthMiddleware
from usermanager.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "BearerAuthMiddleware",
    "SecurityHeadersMiddleware",
]
