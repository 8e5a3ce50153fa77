"""Credential store lookups and the admin-side user writes."""

from typing import Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.security import hash_password, normalize_username
from app.models.user import ROLE_ADMIN, User
from app.schemas.auth import UserCreateRequest, UserUpdateRequest
from app.services.errors import ConflictError, NotFoundError


class UserStore(Protocol):
    """What the session service needs from the credential store."""

    def find_by_username(self, username: str) -> User | None: ...

    def find_by_id(self, user_id: int) -> User | None: ...


class SqlUserStore:
    """UserStore backed by the users table."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_by_username(self, username: str) -> User | None:
        return (
            self._db.query(User)
            .filter(User.username == normalize_username(username))
            .first()
        )

    def find_by_id(self, user_id: int) -> User | None:
        return self._db.get(User, user_id)

    def list_users(self) -> list[User]:
        return self._db.query(User).order_by(User.id).all()

    def create_user(self, body: UserCreateRequest) -> User:
        """Create a user; ConflictError if the normalized username is taken."""
        if self.find_by_username(body.username) is not None:
            raise ConflictError("Username already exists.")
        user = User(
            username=body.username,
            password_hash=hash_password(body.password),
            role=body.role,
            assigned_resources=[] if body.role == ROLE_ADMIN else list(body.assigned_resources),
        )
        self._db.add(user)
        self._commit_unique()
        self._db.refresh(user)
        return user

    def update_user(self, user_id: int, body: UserUpdateRequest) -> User:
        """Apply the provided fields; omitted fields stay as they are."""
        user = self.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        if body.username is not None:
            other = self.find_by_username(body.username)
            if other is not None and other.id != user.id:
                raise ConflictError("Username already exists.")
            user.username = body.username
        if body.password is not None:
            user.password_hash = hash_password(body.password)
        if body.role is not None:
            user.role = body.role
        if body.assigned_resources is not None and not user.is_admin:
            user.assigned_resources = list(body.assigned_resources)
        self._commit_unique()
        self._db.refresh(user)
        return user

    def _commit_unique(self) -> None:
        try:
            self._db.commit()
        except IntegrityError as e:
            self._db.rollback()
            raise ConflictError("Username already exists.") from e
