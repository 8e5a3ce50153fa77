"""Security audit trail. Audit writes never fail the operation being audited."""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import AuditLog

logger = logging.getLogger(__name__)

LOGIN_SUCCESS = "LOGIN_SUCCESS"
LOGIN_FAILED = "LOGIN_FAILED"
LOGOUT = "LOGOUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
TOKEN_REVOKED = "TOKEN_REVOKED"
TOKEN_REUSE_DETECTED = "TOKEN_REUSE_DETECTED"
USER_CREATED = "USER_CREATED"
USER_UPDATED = "USER_UPDATED"


class AuditTrail:
    def __init__(self, db: Session) -> None:
        self._db = db

    def record(
        self,
        action: str,
        *,
        user_id: int | None = None,
        target_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        entry = AuditLog(
            action=action,
            user_id=user_id,
            target_id=target_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details or {},
        )
        try:
            self._db.add(entry)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error("Failed to write audit entry %s: %s", action, e)
            return None
        return entry
