"""Session endpoints and auth dependencies (get_current_user, require_admin, require_resource_access)."""

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.rate_limit import limiter, login_rate_limit
from app.models.user import ROLE_ADMIN
from app.schemas.auth import (
    Identity,
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    LogoutRequest,
    LogoutResponse,
    RefreshRequest,
    TokenPairResponse,
)
from app.services.audit import AuditTrail
from app.services.authorization import can_access
from app.services.errors import (
    AuthError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from app.services.refresh_ledger import RefreshTokenLedger, RequestMeta
from app.services.session import SessionService
from app.services.tokens import TokenService, build_token_service
from app.services.user_store import SqlUserStore

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


def http_error(e: AuthError) -> HTTPException:
    """Translate a service error into the HTTP response the caller sees."""
    if isinstance(e, UnauthorizedError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers=_BEARER_CHALLENGE,
        )
    if isinstance(e, BadRequestError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    if isinstance(e, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


@lru_cache
def get_token_service() -> TokenService:
    """Token signer/verifier built once from settings and the PEM files on disk."""
    return build_token_service(get_settings())


def get_session_service(
    db: Annotated[Session, Depends(get_db)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
) -> SessionService:
    settings = get_settings()
    ledger = RefreshTokenLedger(
        db,
        ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        token_bytes=settings.REFRESH_TOKEN_BYTES,
    )
    return SessionService(
        SqlUserStore(db),
        ledger,
        tokens,
        AuditTrail(db),
        reuse_revokes_all=settings.REFRESH_REUSE_REVOKES_ALL,
    )


def request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None:
        raise UnauthorizedError("Not authenticated")
    return credentials.credentials


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    sessions: Annotated[SessionService, Depends(get_session_service)],
) -> Identity:
    """Dependency: require valid Bearer JWT and return the caller's identity. Raises 401 if missing or invalid."""
    try:
        return sessions.authenticate(_bearer_token(credentials))
    except AuthError as e:
        raise http_error(e) from e


def require_admin(
    current_user: Annotated[Identity, Depends(get_current_user)],
) -> Identity:
    """Dependency: require authenticated user with role 'admin'. Raises 403 for non-admin."""
    if current_user.role != ROLE_ADMIN:
        logger.warning(
            "Authorization failed",
            extra={"user_id": current_user.id, "required_role": ROLE_ADMIN, "user_role": current_user.role},
        )
        raise http_error(ForbiddenError("Admin access required"))
    return current_user


def require_resource_access(
    resource_id: str,
    current_user: Annotated[Identity, Depends(get_current_user)],
) -> Identity:
    """Dependency for routes with a {resource_id} path parameter. Raises 403 when not entitled."""
    if not resource_id:
        raise http_error(BadRequestError("Resource id is required"))
    if not can_access(current_user, resource_id):
        logger.warning(
            "Resource access denied",
            extra={"user_id": current_user.id, "resource_id": resource_id},
        )
        raise http_error(ForbiddenError("You do not have access to this device"))
    return current_user


@router.post("/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)
def login(
    body: LoginRequest,
    request: Request,
    sessions: Annotated[SessionService, Depends(get_session_service)],
) -> LoginResponse:
    """
    Authenticate with username and password; returns an access token and a refresh token.
    Include the access token in the Authorization header as: Bearer <access_token>
    Limited per client IP (LOGIN_RATE_LIMIT_ATTEMPTS per LOGIN_RATE_LIMIT_WINDOW_MINUTES); 429 when exceeded.
    """
    try:
        result = sessions.login(body.username, body.password, request_meta(request))
    except AuthError as e:
        raise http_error(e) from e
    return LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        user=result.identity,
    )


@router.post("/refresh", response_model=TokenPairResponse)
def refresh(
    body: RefreshRequest,
    request: Request,
    sessions: Annotated[SessionService, Depends(get_session_service)],
) -> TokenPairResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    try:
        result = sessions.refresh(body.refresh_token, request_meta(request))
    except AuthError as e:
        raise http_error(e) from e
    return TokenPairResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
    )


@router.post("/logout", response_model=LogoutResponse)
def logout(
    body: LogoutRequest,
    request: Request,
    current_user: Annotated[Identity, Depends(get_current_user)],
    sessions: Annotated[SessionService, Depends(get_session_service)],
) -> LogoutResponse:
    """Revoke the given refresh token. Safe to repeat."""
    try:
        sessions.logout(body.refresh_token, current_user, request_meta(request))
    except AuthError as e:
        raise http_error(e) from e
    return LogoutResponse(message="Logged out")


@router.post("/logout-all", response_model=LogoutAllResponse)
def logout_all(
    request: Request,
    current_user: Annotated[Identity, Depends(get_current_user)],
    sessions: Annotated[SessionService, Depends(get_session_service)],
) -> LogoutAllResponse:
    """Sign out everywhere: revoke every refresh token of the caller."""
    try:
        count = sessions.logout_all(current_user, request_meta(request))
    except AuthError as e:
        raise http_error(e) from e
    return LogoutAllResponse(message="Logged out on all devices", revoked_count=count)


@router.get("/me", response_model=Identity)
def me(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    sessions: Annotated[SessionService, Depends(get_session_service)],
) -> Identity:
    """Return the caller's account as currently stored (role changes show here before the next refresh)."""
    try:
        return sessions.current_identity(_bearer_token(credentials))
    except AuthError as e:
        raise http_error(e) from e
