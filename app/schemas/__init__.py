"""Pydantic request/response schemas."""

from app.schemas.auth import (
    Identity,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    TokenPairResponse,
)
from app.schemas.health import HealthResponse

__all__ = [
    "HealthResponse",
    "Identity",
    "LoginRequest",
    "LoginResponse",
    "RefreshRequest",
    "TokenPairResponse",
]
