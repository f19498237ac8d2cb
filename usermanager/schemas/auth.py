"""Pydantic schemas for authentication API."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes with camelCase field names; accepts either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(BaseModel):
    """Request for login."""

    login: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)


class RefreshRequest(BaseModel):
    """Request for token refresh."""

    token: str = Field(..., min_length=1)


class AuthenticationResponse(CamelModel):
    """Issued token and the identity it carries."""

    token: str
    user_id: str
    login: str
    roles: list[str]
    permissions: list[str]
    expires_at: int = Field(description="Token expiry as epoch milliseconds")


class PrincipalResponse(CamelModel):
    """Identity of the authenticated caller."""

    user_id: str
    login: str
    roles: list[str]
    permissions: list[str]
    expires_at: int


class LogoutOthersResponse(CamelModel):
    """Result of a logout-other-devices request."""

    message: str
    other_sessions: int


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str
