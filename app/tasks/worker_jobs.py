import logging

from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

import app.db.models  # noqa: F401
from app.db.session import SessionLocal
from app.services.email_service import process_pending_emails

logger = logging.getLogger(__name__)


def process_email_queue(limit: int = 50) -> dict:
    """Process queued/failed emails (retry send). Run periodically via Celery beat."""
    db: Session = SessionLocal()
    try:
        try:
            result = process_pending_emails(db, limit=limit)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if result["processed"]:
            logger.info("email queue drained", extra={"sent": result["sent"], "failed": result["failed"]})
        return result
    finally:
        db.close()
