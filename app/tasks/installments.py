import logging
import time

from app.celery_app import celery_app
from app.db import SessionLocal
from app.metrics import observe_job
from app.services import financing as financing_service

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.installments.mark_overdue_installments")
def mark_overdue_installments():
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        counts = financing_service.installments.mark_overdue(session)
        logger.info(
            "Overdue sweep moved %d installments across %d tenants",
            sum(counts.values()),
            len(counts),
        )
        return counts
    except Exception:
        status = "error"
        session.rollback()
        logger.exception("Overdue sweep failed.")
        raise
    finally:
        session.close()
        duration = time.monotonic() - start
        observe_job("installments_mark_overdue", status, duration)
