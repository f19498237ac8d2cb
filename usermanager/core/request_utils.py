"""Request utility functions for handling common request operations."""

import ipaddress
import logging

from fastapi import Request

from usermanager.core.config import settings

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-ID"


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> str | None:
    """Get the client IP address from a request.

    Priority order:
    1. X-Real-IP, only when the direct peer is a trusted proxy
    2. Direct client connection

    X-Forwarded-For is NOT trusted as it can be easily spoofed. Attempt
    counters are keyed by this value, so an attacker who could choose it
    would reset their own counter on every request.

    Args:
        request: The FastAPI request object

    Returns:
        Client IP address or None if not available
    """
    if request.client and request.client.host in settings.trusted_proxy_ips_list:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP: {real_ip}")

    if request.client:
        return request.client.host

    return None


def get_session_id(request: Request) -> str | None:
    """Return the client-supplied session identifier, if any."""
    session_id = request.headers.get(SESSION_HEADER, "").strip()
    return session_id or None


def get_client_info(request: Request) -> str:
    """Describe the calling client for audit records and session tracking."""
    user_agent = request.headers.get("User-Agent", "unknown")
    return f"{get_client_ip(request) or 'unknown'} ({user_agent[:200]})"


def get_bearer_token(request: Request) -> str | None:
    """Extract the bearer token from the Authorization header."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()  # Remove "Bearer " prefix
    return token or None
