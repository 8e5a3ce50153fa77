"""Data retention: purge expired refresh tokens and audit entries older than AUDIT_RETENTION_DAYS."""

import logging
from datetime import datetime, timezone, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.models import AuditLog
from app.services.refresh_ledger import RefreshTokenLedger

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)


def run_retention(session: Session, settings: "Settings") -> tuple[int, int]:
    """
    Delete expired refresh tokens and stale audit entries.

    Returns (tokens_deleted, audit_entries_deleted). Idempotent: safe to run repeatedly.
    Token validity never depends on this sweep; lookups exclude expired rows on their own.
    """
    if not settings.RETENTION_ENABLED:
        logger.info("Retention is disabled (RETENTION_ENABLED=false); skipping.")
        return (0, 0)

    now = datetime.now(timezone.utc)
    tokens_deleted = RefreshTokenLedger(session).purge_expired(before=now)
    audit_cutoff = now - timedelta(days=settings.AUDIT_RETENTION_DAYS)
    audit_deleted = (
        session.query(AuditLog)
        .filter(AuditLog.timestamp < audit_cutoff)
        .delete(synchronize_session=False)
    )
    session.commit()

    if tokens_deleted > 0 or audit_deleted > 0:
        logger.info(
            "Retention run: audit_cutoff=%s, tokens_deleted=%s, audit_deleted=%s",
            audit_cutoff.isoformat(),
            tokens_deleted,
            audit_deleted,
        )
    return (tokens_deleted, audit_deleted)
