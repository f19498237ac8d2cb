"""usermanager - authentication and session revocation service."""

__version__ = "0.1.0"
