"""
Scheduler / reminder engine.

Owns two kinds of timed work:

* one-shot **pending timers** per job (day-before reminder, day-of reminder,
  completion follow-up), held in an in-memory registry keyed by
  ``(job_id, purpose)``;
* three **daily sweeps** (reminders, follow-ups, housekeeping) that scan the
  database and act as a backstop for timers lost on restart.

Time comes from an injected clock and every entry point takes an explicit
``now`` so tests can drive it without waiting. ``start()`` runs a polling loop
as an asyncio task; ``run_pending()`` is the single step it repeats.

Fire handlers always reload the job and its parties. A job that left the
expected status is skipped, and delivery stamps on the job row make every
notice go out at most once.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

import db
from app.services.notifications import notify
from app.types.job import JobStatus
from app.utils import texts
from app.utils.clock import Clock, SystemClock
from db.models import Job, as_utc

_LOGGER = logging.getLogger(__name__)

DAY_BEFORE_AT = time(18, 0)
DAY_OF_DEFAULT_AT = time(8, 0)
DAY_OF_LEAD = timedelta(hours=2)
FOLLOW_UP_AT = time(18, 0)


class TimerPurpose(str, enum.Enum):
    DAY_BEFORE = "day_before"
    DAY_OF = "day_of"
    FOLLOW_UP = "follow_up"


REMINDER_PURPOSES = (TimerPurpose.DAY_BEFORE, TimerPurpose.DAY_OF)


@dataclass(frozen=True)
class PendingTimer:
    job_id: int
    purpose: TimerPurpose
    fire_at: datetime


class TimerRegistry:
    """Pending timers keyed by ``(job_id, purpose)`` with a per-job index."""

    def __init__(self) -> None:
        self._timers: dict[tuple[int, TimerPurpose], PendingTimer] = {}
        self._by_job: dict[int, set[TimerPurpose]] = {}

    def __len__(self) -> int:
        return len(self._timers)

    def __contains__(self, key: tuple[int, TimerPurpose]) -> bool:
        return key in self._timers

    def add(self, timer: PendingTimer) -> Optional[PendingTimer]:
        """Insert or replace; returns the timer that was replaced, if any."""
        key = (timer.job_id, timer.purpose)
        previous = self._timers.get(key)
        self._timers[key] = timer
        self._by_job.setdefault(timer.job_id, set()).add(timer.purpose)
        return previous

    def get(self, job_id: int, purpose: TimerPurpose) -> Optional[PendingTimer]:
        return self._timers.get((job_id, purpose))

    def for_job(self, job_id: int) -> list[PendingTimer]:
        return sorted(
            (self._timers[(job_id, p)] for p in self._by_job.get(job_id, ())),
            key=lambda t: t.fire_at,
        )

    def cancel(self, job_id: int, purpose: TimerPurpose) -> bool:
        timer = self._timers.pop((job_id, purpose), None)
        if timer is None:
            return False
        purposes = self._by_job.get(job_id)
        if purposes is not None:
            purposes.discard(purpose)
            if not purposes:
                del self._by_job[job_id]
        return True

    def cancel_all(self, job_id: int) -> int:
        purposes = list(self._by_job.get(job_id, ()))
        for purpose in purposes:
            self.cancel(job_id, purpose)
        return len(purposes)

    def pop_due(self, now: datetime) -> list[PendingTimer]:
        due = sorted((t for t in self._timers.values() if t.fire_at <= now), key=lambda t: t.fire_at)
        for timer in due:
            self.cancel(timer.job_id, timer.purpose)
        return due


@dataclass
class _Sweep:
    name: str
    hour: int
    run: Callable[[datetime], Awaitable[object]]
    next_run: Optional[datetime] = field(default=None)


class Scheduler:
    def __init__(
        self,
        clock: Clock | None = None,
        tz: tzinfo | str = "UTC",
        poll_interval: float = 30.0,
        run_sweeps: bool = False,
        reminder_hour: int = 9,
        followup_hour: int = 18,
        cleanup_hour: int = 0,
        idle_days: int = 7,
    ) -> None:
        self.clock = clock or SystemClock()
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz
        self.poll_interval = poll_interval
        self.run_sweeps = run_sweeps
        self.idle_days = idle_days
        self.registry = TimerRegistry()
        self._task: asyncio.Task | None = None
        self._sweeps = [
            _Sweep("reminders", reminder_hour, self.reminder_sweep),
            _Sweep("follow-ups", followup_hour, self.followup_sweep),
            _Sweep("cleanup", cleanup_hour, self.cleanup_sweep),
        ]
        self._handlers: dict[TimerPurpose, Callable[[int, datetime], Awaitable[bool]]] = {
            TimerPurpose.DAY_BEFORE: self._send_day_before,
            TimerPurpose.DAY_OF: self._send_day_of,
            TimerPurpose.FOLLOW_UP: self._send_followup,
        }

    # ------------------------------------------------------------------
    # Time helpers
    # ------------------------------------------------------------------
    def _now(self, now: datetime | None) -> datetime:
        return now if now is not None else self.clock.now()

    def _at(self, day: date, at: time) -> datetime:
        return datetime.combine(day, at, tzinfo=self.tz).astimezone(timezone.utc)

    def local_date(self, now: datetime | None = None) -> date:
        return self._now(now).astimezone(self.tz).date()

    def reminder_times(self, job: Job) -> dict[TimerPurpose, datetime]:
        day = job.scheduled_date
        day_before = self._at(day - timedelta(days=1), DAY_BEFORE_AT)
        if job.scheduled_time is not None:
            day_of = self._at(day, job.scheduled_time) - DAY_OF_LEAD
        else:
            day_of = self._at(day, DAY_OF_DEFAULT_AT)
        return {TimerPurpose.DAY_BEFORE: day_before, TimerPurpose.DAY_OF: day_of}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register_reminders(self, job: Job, now: datetime | None = None) -> list[PendingTimer]:
        """(Re)register both reminders for a scheduled job; past fire times are skipped."""
        for purpose in REMINDER_PURPOSES:
            self.registry.cancel(job.id, purpose)
        if job.scheduled_date is None:
            _LOGGER.warning("Job %s has no scheduled date; no reminders registered", job.id)
            return []

        now = self._now(now)
        registered = []
        for purpose, fire_at in self.reminder_times(job).items():
            if fire_at <= now:
                _LOGGER.info("Skipping %s reminder for job %s: %s already passed", purpose.value, job.id, fire_at)
                continue
            timer = PendingTimer(job.id, purpose, fire_at)
            self.registry.add(timer)
            registered.append(timer)
        return registered

    def register_followup(self, job: Job, now: datetime | None = None) -> Optional[PendingTimer]:
        now = self._now(now)
        completed = as_utc(job.completion_date) or now
        fire_at = self._at(completed.astimezone(self.tz).date() + timedelta(days=1), FOLLOW_UP_AT)
        self.registry.cancel(job.id, TimerPurpose.FOLLOW_UP)
        if fire_at <= now:
            return None
        timer = PendingTimer(job.id, TimerPurpose.FOLLOW_UP, fire_at)
        self.registry.add(timer)
        return timer

    def cancel(self, job_id: int, purpose: TimerPurpose) -> bool:
        return self.registry.cancel(job_id, purpose)

    def cancel_reminders(self, job_id: int) -> None:
        for purpose in REMINDER_PURPOSES:
            self.registry.cancel(job_id, purpose)

    def cancel_all(self, job_id: int) -> int:
        return self.registry.cancel_all(job_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def run_pending(self, now: datetime | None = None) -> int:
        """Fire every due timer, then any daily sweep whose time has come.

        Returns the number of timers fired.
        """
        now = self._now(now)
        fired = 0
        for timer in self.registry.pop_due(now):
            try:
                await self._handlers[timer.purpose](timer.job_id, now)
                fired += 1
            except Exception:
                _LOGGER.exception("Timer %s for job %s failed", timer.purpose.value, timer.job_id)

        if self.run_sweeps:
            for sweep in self._sweeps:
                if sweep.next_run is None:
                    sweep.next_run = self._next_occurrence(sweep.hour, now, inclusive=True)
                if now < sweep.next_run:
                    continue
                sweep.next_run = self._next_occurrence(sweep.hour, now, inclusive=False)
                try:
                    await sweep.run(now)
                except Exception:
                    _LOGGER.exception("Daily %s sweep failed", sweep.name)
        return fired

    def _next_occurrence(self, hour: int, now: datetime, inclusive: bool) -> datetime:
        candidate = self._at(self.local_date(now), time(hour, 0))
        if candidate < now or (candidate == now and not inclusive):
            candidate = self._at(self.local_date(now) + timedelta(days=1), time(hour, 0))
        return candidate

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="jobflow-scheduler")
            _LOGGER.info("Scheduler started (poll every %ss)", self.poll_interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            _LOGGER.info("Scheduler stopped with %d pending timers", len(self.registry))

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_pending()
            except Exception:
                _LOGGER.exception("Scheduler tick failed")
            await asyncio.sleep(self.poll_interval)

    # ------------------------------------------------------------------
    # Fire handlers
    # ------------------------------------------------------------------
    async def _load(self, job_id: int, expected: JobStatus):
        job = await db.get_job(job_id)
        if job is None or job.status is not expected:
            _LOGGER.info(
                "Skipping timer for job %s: status is %s, expected %s",
                job_id, getattr(job, "status", None), expected.value,
            )
            return None, None, None
        contractor = await db.get_contractor(job.contractor_id)
        customer = await db.get_customer(job.customer_id)
        if contractor is None or customer is None:
            _LOGGER.warning("Job %s is missing its contractor or customer; skipping", job_id)
            return None, None, None
        return job, contractor, customer

    async def _send_day_before(self, job_id: int, now: datetime) -> bool:
        job, contractor, customer = await self._load(job_id, JobStatus.SCHEDULED)
        if job is None or job.day_before_reminded_at is not None:
            return False
        await notify(contractor.phone_number, texts.day_before_to_contractor(job, customer.phone_number))
        await notify(customer.phone_number, texts.day_before_to_customer(job, contractor.business_name))
        await db.update_job(job.id, day_before_reminded_at=now)
        return True

    async def _send_day_of(self, job_id: int, now: datetime) -> bool:
        job, contractor, customer = await self._load(job_id, JobStatus.SCHEDULED)
        if job is None or job.day_of_reminded_at is not None:
            return False
        await notify(contractor.phone_number, texts.day_of_to_contractor(job, customer.phone_number))
        await db.update_job(job.id, day_of_reminded_at=now)
        return True

    async def _send_followup(self, job_id: int, now: datetime) -> bool:
        job, contractor, customer = await self._load(job_id, JobStatus.COMPLETED)
        if job is None or job.followup_sent_at is not None or job.customer_rating is not None:
            return False
        await notify(customer.phone_number, texts.completion_followup(contractor.business_name))
        await db.update_job(job.id, followup_sent_at=now)
        return True

    # ------------------------------------------------------------------
    # Daily sweeps
    # ------------------------------------------------------------------
    async def reminder_sweep(self, now: datetime | None = None) -> int:
        """Day-before reminders for tomorrow's jobs that no timer is covering."""
        now = self._now(now)
        tomorrow = self.local_date(now) + timedelta(days=1)
        sent = 0
        for job in await db.jobs_scheduled_on(tomorrow):
            if (job.id, TimerPurpose.DAY_BEFORE) in self.registry or job.day_before_reminded_at:
                continue
            if await self._send_day_before(job.id, now):
                sent += 1
        _LOGGER.info("Reminder sweep for %s sent %d reminders", tomorrow, sent)
        return sent

    async def followup_sweep(self, now: datetime | None = None) -> int:
        """Follow-ups for jobs completed yesterday and still unrated."""
        now = self._now(now)
        today = self.local_date(now)
        start, end = self._at(today - timedelta(days=1), time(0)), self._at(today, time(0))
        sent = 0
        for job in await db.jobs_completed_between(start, end):
            if (job.id, TimerPurpose.FOLLOW_UP) in self.registry:
                continue
            if job.customer_rating is not None or job.followup_sent_at is not None:
                continue
            if await self._send_followup(job.id, now):
                sent += 1
        _LOGGER.info("Follow-up sweep sent %d follow-ups", sent)
        return sent

    async def cleanup_sweep(self, now: datetime | None = None) -> tuple[int, int]:
        """Purge expired dashboard sessions and blank long-idle conversation contexts."""
        now = self._now(now)
        purged = await db.purge_expired_sessions(now)
        reset = await db.reset_idle_contexts(now - timedelta(days=self.idle_days))
        _LOGGER.info("Cleanup removed %d sessions, reset %d idle conversations", purged, reset)
        return purged, reset
