"""Request/response schemas for auth and user-management endpoints."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
)


class LoginRequest(BaseModel):
    """Credentials for login."""

    username: str = Field(..., min_length=1, max_length=255, description="Username")
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN, description="Password")


class RefreshRequest(BaseModel):
    """Refresh token to exchange for a new token pair."""

    refresh_token: str = Field(..., min_length=1, max_length=255, description="Refresh token")


class LogoutRequest(BaseModel):
    """Optional refresh token to revoke on logout."""

    refresh_token: str | None = Field(default=None, max_length=255, description="Refresh token")


class Identity(BaseModel):
    """Verified caller: who they are and which resources they may reach."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: Literal["admin", "client"]
    assigned_resources: list[str] = Field(default_factory=list)


class TokenPairResponse(BaseModel):
    """Access + refresh tokens returned by login and refresh."""

    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="Opaque single-use refresh token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class LoginResponse(TokenPairResponse):
    """Token pair plus the authenticated user."""

    user: Identity


class LogoutResponse(BaseModel):
    success: bool = True
    message: str


class LogoutAllResponse(LogoutResponse):
    revoked_count: int


class UserCreateRequest(BaseModel):
    """Admin request to create a user."""

    username: str = Field(..., min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN)
    password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    role: Literal["admin", "client"] = "client"
    assigned_resources: list[str] = Field(default_factory=list)


class UserUpdateRequest(BaseModel):
    """Admin request to update a user; omitted fields are left unchanged."""

    username: str | None = Field(default=None, min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN)
    password: str | None = Field(default=None, min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    role: Literal["admin", "client"] | None = None
    assigned_resources: list[str] | None = None


class UsersListResponse(BaseModel):
    """Response for GET /users (admin only)."""

    users: list[Identity]
