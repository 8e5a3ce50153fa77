"""ORM model for the security audit trail (logins, refreshes, revocations)."""

from sqlalchemy import JSON, Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB

from app.models.base import Base


class AuditLog(Base):
    """Append-only audit entry. Purged after AUDIT_RETENTION_DAYS by the retention job."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(64), nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    target_id = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    timestamp = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
