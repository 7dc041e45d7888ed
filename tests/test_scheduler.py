from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy import update

import db
from app.services.lifecycle import Actor
from app.services.scheduler import PendingTimer, Scheduler, TimerPurpose, TimerRegistry
from app.types.conversation import ConversationState, IdleContext, JobScheduledContext
from app.types.job import JobStatus
from conftest import CONTRACTOR_PHONE, CUSTOMER_PHONE, START, TZ, to
from db.models import Conversation

UTC = timezone.utc


def test_registry_add_replace_cancel():
    registry = TimerRegistry()
    first = PendingTimer(1, TimerPurpose.DAY_BEFORE, START)
    assert registry.add(first) is None
    replacement = PendingTimer(1, TimerPurpose.DAY_BEFORE, START + timedelta(hours=1))
    assert registry.add(replacement) == first
    registry.add(PendingTimer(1, TimerPurpose.DAY_OF, START + timedelta(hours=2)))
    registry.add(PendingTimer(2, TimerPurpose.FOLLOW_UP, START))
    assert len(registry) == 3
    assert registry.get(1, TimerPurpose.DAY_BEFORE) == replacement

    assert registry.cancel_all(1) == 2
    assert registry.for_job(1) == []
    assert (2, TimerPurpose.FOLLOW_UP) in registry
    assert not registry.cancel(1, TimerPurpose.DAY_OF)


def test_registry_pops_due_in_fire_order():
    registry = TimerRegistry()
    registry.add(PendingTimer(1, TimerPurpose.DAY_OF, START + timedelta(minutes=5)))
    registry.add(PendingTimer(2, TimerPurpose.DAY_BEFORE, START))
    registry.add(PendingTimer(3, TimerPurpose.DAY_BEFORE, START + timedelta(days=1)))
    due = registry.pop_due(START + timedelta(minutes=5))
    assert [t.job_id for t in due] == [2, 1]
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_scheduled_job_gets_day_before_and_day_of_timers(lifecycle, scheduler, make_job, make_contractor, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.APPROVED)

    job = await lifecycle.schedule(job.id, date(2026, 10, 19), time(9, 0))

    timers = scheduler.registry.for_job(job.id)
    assert [(t.purpose, t.fire_at) for t in timers] == [
        # 18:00 today and 07:00 tomorrow, Los Angeles time
        (TimerPurpose.DAY_BEFORE, datetime(2026, 10, 19, 1, 0, tzinfo=UTC)),
        (TimerPurpose.DAY_OF, datetime(2026, 10, 19, 14, 0, tzinfo=UTC)),
    ]

    await lifecycle.set_status(job.id, JobStatus.CANCELLED)
    assert scheduler.registry.for_job(job.id) == []


@pytest.mark.asyncio
async def test_past_fire_times_are_skipped(lifecycle, scheduler, make_job, make_contractor, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.APPROVED)
    # later today: the day-before time has already passed
    job = await lifecycle.schedule(job.id, date(2026, 10, 18), time(16, 0))
    assert [t.purpose for t in scheduler.registry.for_job(job.id)] == [TimerPurpose.DAY_OF]


@pytest.mark.asyncio
async def test_timers_fire_once(lifecycle, scheduler, clock, make_job, make_contractor, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.APPROVED)
    await lifecycle.schedule(job.id, date(2026, 10, 19), time(9, 0))
    sent.clear()

    assert await scheduler.run_pending(clock.advance(hours=1)) == 0
    assert sent == []

    assert await scheduler.run_pending(clock.advance(hours=8)) == 1
    assert any("tomorrow" in body for body in to(sent, CONTRACTOR_PHONE))
    assert any("tomorrow" in body for body in to(sent, CUSTOMER_PHONE))
    assert (await db.get_job(job.id)).day_before_reminded_at is not None

    sent.clear()
    assert await scheduler.run_pending(clock.advance(hours=14)) == 1
    [day_of] = sent
    assert day_of[0] == CONTRACTOR_PHONE
    assert "today" in day_of[1]
    assert len(scheduler.registry) == 0

    # a second firing finds the stamp and sends nothing
    sent.clear()
    scheduler.registry.add(PendingTimer(job.id, TimerPurpose.DAY_BEFORE, clock.now()))
    await scheduler.run_pending(clock.now())
    assert sent == []


@pytest.mark.asyncio
async def test_stale_timer_is_skipped(scheduler, clock, make_job, make_contractor, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.SCHEDULED, scheduled_date=date(2026, 10, 19))
    scheduler.register_reminders(job)
    # moved on without going through the lifecycle
    await db.update_job(job.id, status=JobStatus.IN_PROGRESS)

    await scheduler.run_pending(clock.advance(days=2))
    assert sent == []
    assert len(scheduler.registry) == 0


@pytest.mark.asyncio
async def test_followup_after_completion(lifecycle, scheduler, clock, make_job, make_contractor, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.IN_PROGRESS)
    await lifecycle.complete(job.id, actor=Actor.CONTRACTOR)
    [timer] = scheduler.registry.for_job(job.id)
    # 18:00 the next day, Los Angeles time
    assert timer.fire_at == datetime(2026, 10, 20, 1, 0, tzinfo=UTC)

    sent.clear()
    await scheduler.run_pending(clock.advance(days=1, hours=8))
    [followup] = to(sent, CUSTOMER_PHONE)
    assert "rate your experience" in followup
    assert (await db.get_job(job.id)).followup_sent_at is not None




@pytest.mark.asyncio
async def test_reminder_sweep_backstops_lost_timers(scheduler, clock, make_job, make_contractor, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.SCHEDULED, scheduled_date=date(2026, 10, 19))
    await make_job(contractor, status=JobStatus.SCHEDULED, scheduled_date=date(2026, 10, 25), phone="+13105550444")

    assert await scheduler.reminder_sweep(clock.now()) == 1
    assert len(to(sent, CUSTOMER_PHONE)) == 1
    assert (await db.get_job(job.id)).day_before_reminded_at is not None
    assert await scheduler.reminder_sweep(clock.now()) == 0


@pytest.mark.asyncio
async def test_followup_sweep_skips_rated_jobs(scheduler, clock, make_job, make_contractor, sent):
    contractor = await make_contractor()
    yesterday = START - timedelta(days=1)
    await make_job(contractor, status=JobStatus.COMPLETED, completion_date=yesterday)
    await make_job(
        contractor, status=JobStatus.COMPLETED, completion_date=yesterday, customer_rating=4, phone="+13105550555"
    )

    assert await scheduler.followup_sweep(clock.now()) == 1
    assert len(to(sent, CUSTOMER_PHONE)) == 1
    assert to(sent, "+13105550555") == []


@pytest.mark.asyncio
async def test_cleanup_sweep(scheduler, clock, make_contractor, sent):
    contractor = await make_contractor()
    await db.create_dashboard_session(contractor.id, "expired", "123456", START - timedelta(minutes=1))
    await db.create_dashboard_session(contractor.id, "live", "654321", START + timedelta(minutes=10))

    await db.save_conversation("+13105550601", IdleContext())
    await db.save_conversation("+13105550602", IdleContext())
    await db.save_conversation("+13105550603", JobScheduledContext(job_id=1))
    async with db.session_scope() as s:
        for phone, age in (("+13105550601", 30), ("+13105550602", 1), ("+13105550603", 30)):
            await s.execute(
                update(Conversation)
                .where(Conversation.phone_number == phone)
                .values(updated_at=START - timedelta(days=age), context={"stale": True} if age > 7 else {})
            )
        await s.commit()

    assert await scheduler.cleanup_sweep(clock.now()) == (1, 1)
    assert (await db.get_conversation("+13105550601")).context == {}
    stale_scheduled = await db.get_conversation("+13105550603")
    assert stale_scheduled.state is ConversationState.JOB_SCHEDULED


@pytest.mark.asyncio
async def test_daily_sweeps_run_once_per_day(clock):
    scheduler = Scheduler(clock=clock, tz=TZ, run_sweeps=True, reminder_hour=9, followup_hour=18, cleanup_hour=0)
    runs = []

    async def record(now=None):
        runs.append(now)

    for sweep in scheduler._sweeps:
        sweep.run = record

    await scheduler.run_pending(clock.now())      # 10:00, all of today's slots have passed
    assert runs == []
    await scheduler.run_pending(clock.advance(hours=8))   # 18:00
    assert len(runs) == 1
    await scheduler.run_pending(clock.advance(minutes=1))
    assert len(runs) == 1
    await scheduler.run_pending(clock.advance(hours=15))  # 09:01 next day: cleanup and reminders
    assert len(runs) == 3


@pytest.mark.asyncio
async def test_start_and_stop(scheduler, database):
    scheduler.start()
    await scheduler.stop()
    assert scheduler._task is None
