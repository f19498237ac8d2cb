"""Tests for configuration validation.

Tests the Settings validation to ensure invalid configurations
are rejected at startup.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from usermanager.core.config import Settings


def _settings(**overrides) -> Settings:
    values = {"jwt_secret_key": "s" * 32, "redis_url": "redis://localhost:6379/0"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSecretKeyValidation:
    """Tests for JWT secret key validation."""

    def test_valid_secret_accepted(self):
        """Test that a 32-character secret is accepted."""
        assert _settings().jwt_secret_key == "s" * 32

    def test_short_secret_rejected(self):
        """Test that a short secret is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            _settings(jwt_secret_key="too-short")

        assert "32" in str(exc_info.value)

    def test_missing_secret_uses_stable_fallback(self):
        """Test that an unset secret falls back to one random key per process."""
        config = _settings(jwt_secret_key="")

        assert len(config.effective_jwt_secret_key) >= 32
        assert config.effective_jwt_secret_key == _settings(jwt_secret_key="").effective_jwt_secret_key

    def test_secret_read_from_environment(self):
        """Test that JWT_SECRET_KEY is read from the environment."""
        with patch.dict(os.environ, {"JWT_SECRET_KEY": "e" * 40}, clear=False):
            config = Settings(_env_file=None)

        assert config.effective_jwt_secret_key == "e" * 40


class TestTokenFormatValidation:
    """Tests for token format and encryption key validation."""

    def test_jwe_requires_encryption_key(self):
        """Test that TOKEN_FORMAT=jwe without a key is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            _settings(token_format="jwe")

        assert "TOKEN_ENCRYPTION_KEY" in str(exc_info.value)

    def test_jwe_with_key_accepted(self):
        """Test that a 64 hex character key enables encrypted tokens."""
        config = _settings(token_format="jwe", token_encryption_key="ab" * 32)

        assert config.token_format == "jwe"

    def test_malformed_encryption_key_rejected(self):
        """Test that a key that is not 64 hex characters is rejected."""
        with pytest.raises(ValidationError):
            _settings(token_encryption_key="z" * 64)
        with pytest.raises(ValidationError):
            _settings(token_encryption_key="0" * 32)

    def test_unknown_format_rejected(self):
        """Test that only jwt and jwe are accepted."""
        with pytest.raises(ValidationError):
            _settings(token_format="paseto")

    def test_non_positive_validity_rejected(self):
        """Test that token validity must be positive."""
        with pytest.raises(ValidationError):
            _settings(token_validity_seconds=0)


class TestFailurePolicyDefaults:
    """Tests for the store failure policy defaults."""

    def test_defaults(self):
        """Test that brute-force fails open and revocation fails closed."""
        config = _settings()

        assert config.brute_force_fail_open is True
        assert config.revocation_check_fail_open is False


class TestListParsing:
    """Tests for comma-separated settings."""

    def test_cors_origins_list(self):
        """Test that origins are split and trimmed."""
        config = _settings(cors_origins="http://a.test, http://b.test ,")

        assert config.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_trusted_proxy_ips_list(self):
        """Test the default trusted proxies are loopback only."""
        assert _settings().trusted_proxy_ips_list == ["127.0.0.1", "::1"]


class TestSecurityConfigurationCheck:
    """Tests for startup security warnings."""

    def test_secure_configuration_has_no_warnings(self):
        """Test that a complete configuration produces no warnings."""
        assert _settings().check_security_configuration() == []

    def test_missing_secret_warns(self):
        """Test that a missing secret is reported."""
        warnings = _settings(jwt_secret_key="").check_security_configuration()

        assert any("JWT_SECRET_KEY" in w for w in warnings)

    def test_missing_redis_warns(self):
        """Test that the in-process store is reported."""
        warnings = _settings(redis_url="").check_security_configuration()

        assert any("REDIS_URL" in w for w in warnings)

    def test_fail_open_revocation_warns(self):
        """Test that accepting revoked tokens during outages is reported."""
        warnings = _settings(revocation_check_fail_open=True).check_security_configuration()

        assert any("REVOCATION_CHECK_FAIL_OPEN" in w for w in warnings)

    def test_debug_warns(self):
        """Test that debug mode is reported."""
        warnings = _settings(debug=True).check_security_configuration()

        assert any("DEBUG" in w for w in warnings)
