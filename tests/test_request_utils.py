"""Tests for request utility functions."""

from unittest.mock import MagicMock

from usermanager.core.request_utils import (
    _is_valid_ip,
    get_bearer_token,
    get_client_info,
    get_client_ip,
    get_session_id,
)


def _request(headers: dict[str, str] | None = None, client_host: str | None = "10.0.0.5"):
    """Create a mock FastAPI request."""
    request = MagicMock()
    request.headers = headers or {}
    if client_host is None:
        request.client = None
    else:
        request.client = MagicMock()
        request.client.host = client_host
    return request


class TestIsValidIP:
    """Tests for _is_valid_ip function."""

    def test_valid_addresses(self):
        """Test valid IPv4 and IPv6 addresses."""
        assert _is_valid_ip("192.168.1.1") is True
        assert _is_valid_ip("::1") is True
        assert _is_valid_ip("2001:db8::1") is True

    def test_invalid_addresses(self):
        """Test invalid IP addresses."""
        assert _is_valid_ip("") is False
        assert _is_valid_ip("not-an-ip") is False
        assert _is_valid_ip("256.1.1.1") is False
        assert _is_valid_ip("192.168.1.1:8080") is False


class TestGetClientIP:
    """Tests for get_client_ip function."""

    def test_direct_connection(self):
        """Test that the peer address is used without proxy headers."""
        assert get_client_ip(_request()) == "10.0.0.5"

    def test_real_ip_from_trusted_proxy(self):
        """Test that X-Real-IP is honored when the peer is a trusted proxy."""
        request = _request({"X-Real-IP": "203.0.113.7"}, client_host="127.0.0.1")

        assert get_client_ip(request) == "203.0.113.7"

    def test_real_ip_from_untrusted_peer_ignored(self):
        """Test that X-Real-IP from an arbitrary peer cannot spoof the address."""
        request = _request({"X-Real-IP": "203.0.113.7"}, client_host="10.0.0.5")

        assert get_client_ip(request) == "10.0.0.5"

    def test_invalid_real_ip_ignored(self):
        """Test that a malformed X-Real-IP falls back to the peer address."""
        request = _request({"X-Real-IP": "not-an-ip"}, client_host="127.0.0.1")

        assert get_client_ip(request) == "127.0.0.1"

    def test_forwarded_for_not_trusted(self):
        """Test that X-Forwarded-For is never used."""
        request = _request({"X-Forwarded-For": "203.0.113.7"}, client_host="127.0.0.1")

        assert get_client_ip(request) == "127.0.0.1"

    def test_no_client(self):
        """Test that a request without peer information returns None."""
        assert get_client_ip(_request(client_host=None)) is None


class TestClientDetails:
    """Tests for session id, client info and bearer extraction."""

    def test_session_id(self):
        assert get_session_id(_request({"X-Session-ID": " abc "})) == "abc"
        assert get_session_id(_request()) is None

    def test_client_info(self):
        request = _request({"User-Agent": "curl/8.0"})

        assert get_client_info(request) == "10.0.0.5 (curl/8.0)"

    def test_client_info_truncates_user_agent(self):
        request = _request({"User-Agent": "x" * 500})

        assert get_client_info(request) == f"10.0.0.5 ({'x' * 200})"

    def test_client_info_without_user_agent(self):
        assert get_client_info(_request(client_host=None)) == "unknown (unknown)"

    def test_bearer_token(self):
        assert get_bearer_token(_request({"Authorization": "Bearer abc.def"})) == "abc.def"

    def test_bearer_token_missing_or_other_scheme(self):
        assert get_bearer_token(_request()) is None
        assert get_bearer_token(_request({"Authorization": "Basic abc"})) is None
        assert get_bearer_token(_request({"Authorization": "Bearer "})) is None
