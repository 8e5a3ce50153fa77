"""User management (admin only): list, create and update accounts."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.v1.auth import http_error, request_meta, require_admin
from app.core.database import get_db
from app.schemas.auth import Identity, UserCreateRequest, UserUpdateRequest, UsersListResponse
from app.services import audit
from app.services.audit import AuditTrail
from app.services.errors import AuthError
from app.services.user_store import SqlUserStore

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=UsersListResponse)
def list_users(
    _admin: Annotated[Identity, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> UsersListResponse:
    """List all users (admin only)."""
    users = SqlUserStore(db).list_users()
    return UsersListResponse(users=[Identity.model_validate(u) for u in users])


@router.post("", response_model=Identity, status_code=status.HTTP_201_CREATED)
def create_user(
    body: UserCreateRequest,
    request: Request,
    admin: Annotated[Identity, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> Identity:
    """Create a user. Admin accounts never keep assigned resources."""
    try:
        user = SqlUserStore(db).create_user(body)
    except AuthError as e:
        raise http_error(e) from e
    meta = request_meta(request)
    AuditTrail(db).record(
        audit.USER_CREATED,
        user_id=admin.id,
        target_id=str(user.id),
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        details={"role": user.role},
    )
    logger.info("User created", extra={"user_id": user.id, "created_by": admin.id})
    return Identity.model_validate(user)


@router.put("/{user_id}", response_model=Identity)
def update_user(
    user_id: int,
    body: UserUpdateRequest,
    request: Request,
    admin: Annotated[Identity, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> Identity:
    """Update a user. Changes reach access tokens at the user's next refresh."""
    try:
        user = SqlUserStore(db).update_user(user_id, body)
    except AuthError as e:
        raise http_error(e) from e
    meta = request_meta(request)
    AuditTrail(db).record(
        audit.USER_UPDATED,
        user_id=admin.id,
        target_id=str(user.id),
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        details={"fields": sorted(body.model_dump(exclude_unset=True, exclude={"password"}))},
    )
    logger.info("User updated", extra={"user_id": user.id, "updated_by": admin.id})
    return Identity.model_validate(user)
