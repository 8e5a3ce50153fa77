"""SQLAlchemy ORM models."""

from app.models.audit_log import AuditLog
from app.models.base import Base
from app.models.refresh_token import RefreshToken
from app.models.user import User

__all__ = ["AuditLog", "Base", "RefreshToken", "User"]
