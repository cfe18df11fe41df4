"""Celery configuration and beat schedule built from settings."""

import logging
from datetime import timedelta

from app.config import settings

logger = logging.getLogger(__name__)

MIN_SWEEP_INTERVAL_SECONDS = 60


def get_celery_config() -> dict:
    return {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "timezone": "UTC",
    }


def build_beat_schedule() -> dict:
    interval = max(settings.overdue_sweep_interval_seconds, MIN_SWEEP_INTERVAL_SECONDS)
    logger.debug("Overdue sweep scheduled every %ss", interval)
    return {
        "installments_mark_overdue": {
            "task": "app.tasks.installments.mark_overdue_installments",
            "schedule": timedelta(seconds=interval),
        }
    }
