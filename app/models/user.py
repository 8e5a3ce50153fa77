"""ORM model for application users (auth and RBAC)."""

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Integer, String, event, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import validates

from app.core.security import normalize_username
from app.models.base import Base

ROLE_ADMIN = "admin"
ROLE_CLIENT = "client"
ROLES = (ROLE_ADMIN, ROLE_CLIENT)


class User(Base):
    """
    User account for JWT authentication and role-based access control.

    role: 'admin' or 'client'. Clients only see the resources (device ids) listed
    in assigned_resources; admins see everything and always have an empty list.
    """

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("role IN ('admin', 'client')", name="ck_users_role"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default=ROLE_CLIENT)
    assigned_resources = Column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=list,
    )
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @validates("username")
    def _normalize_username(self, _key: str, value: str) -> str:
        return normalize_username(value)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@event.listens_for(User, "before_insert")
@event.listens_for(User, "before_update")
def _clear_admin_resources(_mapper, _connection, target: User) -> None:
    """Admins implicitly reach every resource; their assigned list is always stored empty."""
    if target.is_admin:
        target.assigned_resources = []
    elif target.assigned_resources is None:
        target.assigned_resources = []
