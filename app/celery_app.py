"""Celery application for the daily sweeps.

Celery beat is the production path for the daily sweeps. Start beat and a
worker with:
    celery -A app.celery_app beat -l info
    celery -A app.celery_app worker -Q sweeps -l info --concurrency=1

The API process leaves the sweeps to beat unless ``SCHEDULER_RUN_SWEEPS=true``
(single-process deployments only, or each sweep would run twice).
"""

from celery import Celery
from celery.schedules import crontab

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("jobflow_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds
celery_app.conf.timezone = settings.DEFAULT_TIMEZONE

celery_app.conf.task_routes = {
    "app.workers.sweeps.*": {"queue": "sweeps"},
}

celery_app.conf.beat_schedule = {
    "daily-reminder-sweep": {
        "task": "app.workers.sweeps.reminder_sweep",
        "schedule": crontab(hour=settings.REMINDER_SWEEP_HOUR, minute=0),
    },
    "daily-followup-sweep": {
        "task": "app.workers.sweeps.followup_sweep",
        "schedule": crontab(hour=settings.FOLLOWUP_SWEEP_HOUR, minute=0),
    },
    "daily-cleanup-sweep": {
        "task": "app.workers.sweeps.cleanup_sweep",
        "schedule": crontab(hour=settings.CLEANUP_SWEEP_HOUR, minute=0),
    },
}

# --- Ensure tasks are registered ---
import app.workers.sweeps  # noqa: E402,F401
