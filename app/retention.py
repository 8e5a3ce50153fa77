"""
CLI entrypoint for the data retention job. Run from cron, e.g.:

  python -m app.retention

Or hourly: 0 * * * * cd /path/to/nodeguard && .venv/bin/python -m app.retention
"""

import logging
import sys

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.core.logging import configure_logging
from app.services.retention import run_retention

logger = logging.getLogger(__name__)


def main() -> int:
    """Run retention: purge expired refresh tokens and old audit entries."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    db = SessionLocal()
    try:
        tokens_deleted, audit_deleted = run_retention(db, settings)
        logger.info(
            "Retention completed: tokens_deleted=%s audit_deleted=%s",
            tokens_deleted,
            audit_deleted,
        )
        return 0
    except Exception as e:
        logger.exception("Retention job failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
