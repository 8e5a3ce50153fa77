"""Login throttling with slowapi: a fixed number of attempts per client IP and window.

Usage on a route (the endpoint must take a ``request: Request`` argument):

    @limiter.limit(login_rate_limit)
    def login(body: LoginRequest, request: Request, ...):
        ...
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)


def login_rate_limit() -> str:
    """Limit string for /auth/login, e.g. '10 per 5 minutes'."""
    current = get_settings()
    return f"{current.LOGIN_RATE_LIMIT_ATTEMPTS} per {current.LOGIN_RATE_LIMIT_WINDOW_MINUTES} minutes"


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Answer 429 with a Retry-After hint."""
    logger.warning(
        "Rate limit exceeded",
        extra={"limit": str(exc.detail), "client": get_remote_address(request), "path": request.url.path},
    )
    window_seconds = get_settings().LOGIN_RATE_LIMIT_WINDOW_MINUTES * 60
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many login attempts. Please try again later."},
        headers={"Retry-After": str(window_seconds)},
    )
