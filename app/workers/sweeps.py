"""Daily sweep tasks, run by Celery beat instead of the in-process scheduler."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

import db
from app.celery_app import celery_app
from app.services.scheduler import Scheduler
from app.utils.clock import SystemClock
from config import settings

_LOGGER = logging.getLogger(__name__)


def _scheduler() -> Scheduler:
    return Scheduler(
        clock=SystemClock(),
        tz=settings.DEFAULT_TIMEZONE,
        run_sweeps=False,
        idle_days=settings.IDLE_CONTEXT_DAYS,
    )


async def _run(name: str):
    scheduler = _scheduler()
    try:
        return await getattr(scheduler, name)()
    finally:
        # each task gets a fresh event loop; pooled connections cannot outlive it
        await db.dispose_engine()


def _sweep(task, name: str):
    try:
        result = asyncio.run(_run(name))
    except SQLAlchemyError as exc:
        _LOGGER.warning("%s failed, retrying: %s", name, exc)
        raise task.retry(exc=exc)
    _LOGGER.info("%s finished: %s", name, result)
    return result


@celery_app.task(name="app.workers.sweeps.reminder_sweep", bind=True, max_retries=3)
def reminder_sweep(self):  # noqa: D401
    """Day-before reminders for tomorrow's jobs."""
    return _sweep(self, "reminder_sweep")


@celery_app.task(name="app.workers.sweeps.followup_sweep", bind=True, max_retries=3)
def followup_sweep(self):  # noqa: D401
    """Rating follow-ups for yesterday's completed jobs."""
    return _sweep(self, "followup_sweep")


@celery_app.task(name="app.workers.sweeps.cleanup_sweep", bind=True, max_retries=3)
def cleanup_sweep(self):  # noqa: D401
    """Expired dashboard sessions and stale idle contexts."""
    return _sweep(self, "cleanup_sweep")
