"""
Job lifecycle manager.

The job graph is data: ``TRANSITIONS`` maps ``(status, action)`` to the
target status and the effects entering it triggers. Status writes are a
compare-and-set on the job row, so a transition that lost a race is
reported exactly like one that was never on the graph.

Effects run after the status is durable. Each one is isolated: a failing
notification or calendar call is logged and the remaining effects still run.
Notices addressed to the party that triggered the transition are skipped,
that party gets a conversational reply instead.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Any, Awaitable, Callable, Optional

import db
from app.services.calendar import CalendarGateway, NullCalendar
from app.services.notifications import notify
from app.services.quoting import QuotingEngine
from app.services.scheduler import Scheduler
from app.types.conversation import (
    ContractorResponseContext,
    IdleContext,
    JobScheduledContext,
)
from app.types.job import JobStatus
from app.utils import texts
from app.utils.clock import Clock, SystemClock
from db.models import Contractor, Customer, Job

_LOGGER = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────────────────────────────
class LifecycleError(Exception):
    """Base class for job lifecycle failures."""


class InvalidTransition(LifecycleError, ValueError):
    def __init__(self, job_id: int, status: Optional[JobStatus], requested: str, reason: str | None = None):
        self.job_id = job_id
        self.status = status
        self.requested = requested
        self.reason = reason or (
            f"job {job_id} is {status.value if status else 'unknown'}, cannot {requested}"
        )
        super().__init__(self.reason)


class JobNotFound(LifecycleError, LookupError):
    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"job {job_id} not found")


# ──────────────────────────────────────────────────────────────────────
# Transition table
# ──────────────────────────────────────────────────────────────────────
class Actor(str, enum.Enum):
    CUSTOMER = "customer"
    CONTRACTOR = "contractor"
    ADMIN = "admin"
    SYSTEM = "system"


class JobAction(str, enum.Enum):
    QUOTE = "quote"
    APPROVE = "approve"
    SCHEDULE = "schedule"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    PASS = "pass"
    REASSIGN = "reassign"
    EXHAUST = "exhaust"


class Effect(str, enum.Enum):
    NOTIFY_CONTRACTOR_REQUEST = "notify_contractor_request"
    NOTIFY_CUSTOMER_APPROVED = "notify_customer_approved"
    CONFIRM_SCHEDULE = "confirm_schedule"
    REGISTER_REMINDERS = "register_reminders"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    CANCEL_REMINDERS = "cancel_reminders"
    NOTIFY_CUSTOMER_ON_THE_WAY = "notify_customer_on_the_way"
    REQUEST_INVOICE = "request_invoice"
    REGISTER_FOLLOWUP = "register_followup"
    CANCEL_TIMERS = "cancel_timers"
    NOTIFY_CUSTOMER_CANCELLED = "notify_customer_cancelled"
    FIND_ALTERNATIVE = "find_alternative"
    NOTIFY_CUSTOMER_REASSIGNED = "notify_customer_reassigned"
    NOTIFY_CUSTOMER_EXHAUSTED = "notify_customer_exhausted"
    SYNC_CUSTOMER_CONVERSATION = "sync_customer_conversation"


@dataclass(frozen=True)
class Transition:
    target: JobStatus
    effects: tuple[Effect, ...] = ()
    stamp: Optional[str] = None  # timestamp column set to "now" on entry


_CANCEL = Transition(
    JobStatus.CANCELLED,
    (Effect.CANCEL_TIMERS, Effect.NOTIFY_CUSTOMER_CANCELLED, Effect.SYNC_CUSTOMER_CONVERSATION),
)
_SCHEDULE = Transition(
    JobStatus.SCHEDULED,
    (
        Effect.CONFIRM_SCHEDULE,
        Effect.REGISTER_REMINDERS,
        Effect.CREATE_CALENDAR_EVENT,
        Effect.SYNC_CUSTOMER_CONVERSATION,
    ),
)

TRANSITIONS: dict[tuple[JobStatus, JobAction], Transition] = {
    (JobStatus.PENDING, JobAction.QUOTE): Transition(JobStatus.QUOTED, (Effect.NOTIFY_CONTRACTOR_REQUEST,)),
    (JobStatus.PENDING, JobAction.CANCEL): _CANCEL,
    (JobStatus.QUOTED, JobAction.APPROVE): Transition(JobStatus.APPROVED, (Effect.NOTIFY_CUSTOMER_APPROVED,)),
    (JobStatus.QUOTED, JobAction.PASS): Transition(JobStatus.CONTRACTOR_PASSED, (Effect.FIND_ALTERNATIVE,)),
    (JobStatus.QUOTED, JobAction.CANCEL): _CANCEL,
    (JobStatus.APPROVED, JobAction.SCHEDULE): _SCHEDULE,
    (JobStatus.APPROVED, JobAction.CANCEL): _CANCEL,
    (JobStatus.SCHEDULED, JobAction.SCHEDULE): _SCHEDULE,
    (JobStatus.SCHEDULED, JobAction.START): Transition(
        JobStatus.IN_PROGRESS, (Effect.CANCEL_REMINDERS, Effect.NOTIFY_CUSTOMER_ON_THE_WAY)
    ),
    (JobStatus.SCHEDULED, JobAction.CANCEL): _CANCEL,
    (JobStatus.IN_PROGRESS, JobAction.COMPLETE): Transition(
        JobStatus.COMPLETED,
        (Effect.REQUEST_INVOICE, Effect.REGISTER_FOLLOWUP, Effect.SYNC_CUSTOMER_CONVERSATION),
        stamp="completion_date",
    ),
    (JobStatus.IN_PROGRESS, JobAction.CANCEL): _CANCEL,
    (JobStatus.CONTRACTOR_PASSED, JobAction.REASSIGN): Transition(
        JobStatus.QUOTED,
        (
            Effect.NOTIFY_CONTRACTOR_REQUEST,
            Effect.NOTIFY_CUSTOMER_REASSIGNED,
            Effect.SYNC_CUSTOMER_CONVERSATION,
        ),
    ),
    (JobStatus.CONTRACTOR_PASSED, JobAction.EXHAUST): Transition(
        JobStatus.NO_CONTRACTORS_AVAILABLE,
        (Effect.NOTIFY_CUSTOMER_EXHAUSTED, Effect.SYNC_CUSTOMER_CONVERSATION),
    ),
    (JobStatus.CONTRACTOR_PASSED, JobAction.CANCEL): _CANCEL,
}

# actions the manager takes on its own; never requested from outside
INTERNAL_ACTIONS = frozenset({JobAction.REASSIGN, JobAction.EXHAUST})


def _entry_transitions() -> dict[JobStatus, Transition]:
    """First edge into each status; what a forced admin write replays."""
    entries: dict[JobStatus, Transition] = {}
    for transition in TRANSITIONS.values():
        entries.setdefault(transition.target, transition)
    return entries


ENTRY_TRANSITIONS = _entry_transitions()


@dataclass
class EffectContext:
    job: Job
    previous: JobStatus
    actor: Actor
    contractor: Optional[Contractor]
    customer: Optional[Customer]


EffectHandler = Callable[[EffectContext], Awaitable[None]]


# ──────────────────────────────────────────────────────────────────────
# Manager
# ──────────────────────────────────────────────────────────────────────
class JobLifecycle:
    def __init__(
        self,
        scheduler: Scheduler,
        quoting: QuotingEngine,
        calendar: CalendarGateway | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.quoting = quoting
        self.calendar = calendar or NullCalendar()
        self.clock = clock or scheduler.clock or SystemClock()
        self.handlers: dict[Effect, EffectHandler] = {
            Effect.NOTIFY_CONTRACTOR_REQUEST: self._notify_contractor_request,
            Effect.NOTIFY_CUSTOMER_APPROVED: self._notify_customer_approved,
            Effect.CONFIRM_SCHEDULE: self._confirm_schedule,
            Effect.REGISTER_REMINDERS: self._register_reminders,
            Effect.CREATE_CALENDAR_EVENT: self._create_calendar_event,
            Effect.CANCEL_REMINDERS: self._cancel_reminders,
            Effect.NOTIFY_CUSTOMER_ON_THE_WAY: self._notify_customer_on_the_way,
            Effect.REQUEST_INVOICE: self._request_invoice,
            Effect.REGISTER_FOLLOWUP: self._register_followup,
            Effect.CANCEL_TIMERS: self._cancel_timers,
            Effect.NOTIFY_CUSTOMER_CANCELLED: self._notify_customer_cancelled,
            Effect.FIND_ALTERNATIVE: self._find_alternative,
            Effect.NOTIFY_CUSTOMER_REASSIGNED: self._notify_customer_reassigned,
            Effect.NOTIFY_CUSTOMER_EXHAUSTED: self._notify_customer_exhausted,
            Effect.SYNC_CUSTOMER_CONVERSATION: self._sync_customer_conversation,
        }

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------
    async def _require(self, job_id: int) -> Job:
        job = await db.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def apply(
        self,
        job_id: int,
        action: JobAction,
        *,
        actor: Actor,
        values: dict[str, Any] | None = None,
    ) -> Job:
        """Move *job_id* along the ``action`` edge and run its effects.

        Raises ``InvalidTransition`` (nothing written) when the job's current
        status has no such edge, or when another writer moved it first.
        """
        job = await self._require(job_id)
        transition = TRANSITIONS.get((job.status, action))
        if transition is None:
            raise InvalidTransition(job_id, job.status, action.value)

        values = dict(values or {})
        if transition.stamp and transition.stamp not in values:
            values[transition.stamp] = self.clock.now()

        updated = await db.transition_job(job_id, job.status, transition.target, **values)
        if updated is None:
            current = await db.get_job(job_id)
            raise InvalidTransition(
                job_id, getattr(current, "status", None), action.value,
                reason=f"job {job_id} changed status while {action.value} was in progress",
            )
        _LOGGER.info(
            "Job %s: %s -> %s (%s by %s)",
            job_id, job.status.value, transition.target.value, action.value, actor.value,
        )
        await self._run_effects(updated, job.status, actor, transition.effects)
        return await self._require(job_id)

    async def _run_effects(
        self, job: Job, previous: JobStatus, actor: Actor, effects: tuple[Effect, ...]
    ) -> None:
        if not effects:
            return
        ctx = EffectContext(
            job=job,
            previous=previous,
            actor=actor,
            contractor=await db.get_contractor(job.contractor_id),
            customer=await db.get_customer(job.customer_id),
        )
        for effect in effects:
            try:
                await self.handlers[effect](ctx)
            except Exception:
                _LOGGER.exception("Effect %s for job %s failed", effect.value, job.id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def quote(self, job_id: int, contractor_id: int, actor: Actor = Actor.CUSTOMER) -> Job:
        """Assign *contractor_id* and send them the request."""
        contractor = await db.get_contractor(contractor_id)
        if contractor is None or not contractor.is_active:
            job = await self._require(job_id)
            raise InvalidTransition(
                job_id, job.status, JobAction.QUOTE.value,
                reason=f"contractor {contractor_id} is not available",
            )
        return await self.apply(job_id, JobAction.QUOTE, actor=actor, values={"contractor_id": contractor_id})

    async def approve(
        self,
        job_id: int,
        actor: Actor = Actor.CONTRACTOR,
        scheduled_date: date | None = None,
        scheduled_time: time | None = None,
    ) -> Job:
        job = await self.apply(job_id, JobAction.APPROVE, actor=actor)
        if scheduled_date is not None:
            job = await self.schedule(job_id, scheduled_date, scheduled_time, actor=actor)
        return job

    async def schedule(
        self,
        job_id: int,
        scheduled_date: date,
        scheduled_time: time | None = None,
        actor: Actor = Actor.ADMIN,
    ) -> Job:
        """Schedule an approved job, or reschedule a scheduled one."""
        if scheduled_date is None:
            job = await self._require(job_id)
            raise InvalidTransition(job_id, job.status, JobAction.SCHEDULE.value, reason="a date is required")
        return await self.apply(
            job_id,
            JobAction.SCHEDULE,
            actor=actor,
            values={
                "scheduled_date": scheduled_date,
                "scheduled_time": scheduled_time,
                "day_before_reminded_at": None,
                "day_of_reminded_at": None,
            },
        )

    async def pass_job(self, job_id: int, actor: Actor = Actor.CONTRACTOR) -> Job:
        job = await self._require(job_id)
        passed = list(job.passed_contractor_ids or [])
        if job.contractor_id is not None and job.contractor_id not in passed:
            passed.append(job.contractor_id)
        return await self.apply(job_id, JobAction.PASS, actor=actor, values={"passed_contractor_ids": passed})

    async def start(self, job_id: int, actor: Actor = Actor.CONTRACTOR) -> Job:
        return await self.apply(job_id, JobAction.START, actor=actor)

    async def complete(self, job_id: int, actor: Actor = Actor.CONTRACTOR) -> Job:
        return await self.apply(job_id, JobAction.COMPLETE, actor=actor)

    async def cancel(self, job_id: int, actor: Actor) -> Job:
        return await self.apply(job_id, JobAction.CANCEL, actor=actor)

    async def set_status(
        self,
        job_id: int,
        status: JobStatus,
        force: bool = False,
        actor: Actor = Actor.ADMIN,
    ) -> Job:
        """Administrative status change.

        Follows the graph when an edge leads to *status*. An off-graph change
        is rejected unless ``force`` is set, in which case the status is
        written directly and the effects of entering it are replayed.
        """
        status = JobStatus(status)
        job = await self._require(job_id)
        for (source, action), transition in TRANSITIONS.items():
            if source is job.status and transition.target is status and action not in INTERNAL_ACTIONS:
                if action is JobAction.SCHEDULE:
                    return await self.schedule(job_id, job.scheduled_date, job.scheduled_time, actor=actor)
                if action is JobAction.QUOTE:
                    return await self.quote(job_id, job.contractor_id, actor=actor)
                if action is JobAction.PASS:
                    return await self.pass_job(job_id, actor=actor)
                return await self.apply(job_id, action, actor=actor)

        if not force:
            raise InvalidTransition(job_id, job.status, f"move to {status.value}")

        _LOGGER.warning(
            "Forced status change on job %s: %s -> %s by %s",
            job_id, job.status.value, status.value, actor.value,
        )
        entry = ENTRY_TRANSITIONS.get(status)
        values: dict[str, Any] = {"status": status}
        if entry is not None and entry.stamp:
            values[entry.stamp] = self.clock.now()
        updated = await db.update_job(job_id, **values)
        if entry is not None:
            await self._run_effects(updated, job.status, actor, entry.effects)
        return await self._require(job_id)

    async def custom_quote(self, job_id: int, amount: float, actor: Actor = Actor.CONTRACTOR) -> Job:
        """Record a negotiated price. The status does not change."""
        job = await self._require(job_id)
        if job.status is not JobStatus.QUOTED:
            raise InvalidTransition(job_id, job.status, "send a custom quote")
        job = await db.update_job(job_id, final_quote=amount)
        contractor = await db.get_contractor(job.contractor_id)
        customer = await db.get_customer(job.customer_id)
        name = contractor.business_name if contractor else "your contractor"
        if customer is not None:
            await notify(customer.phone_number, texts.custom_quote(name, amount, job.service_category))
        return job

    async def send_invoice(self, job_id: int, amount: float, description: str) -> Job:
        job = await self._require(job_id)
        if job.status is not JobStatus.COMPLETED:
            raise InvalidTransition(job_id, job.status, "send an invoice")
        job = await db.update_job(job_id, final_quote=amount, invoice_sent=True)
        contractor = await db.get_contractor(job.contractor_id)
        customer = await db.get_customer(job.customer_id)
        if contractor is not None and customer is not None:
            await notify(customer.phone_number, texts.invoice_to_customer(contractor, amount, description))
        return job

    async def record_rating(self, job_id: int, rating: int, feedback: str | None = None) -> Job:
        job = await self._require(job_id)
        if job.status is not JobStatus.COMPLETED:
            raise InvalidTransition(job_id, job.status, "rate")
        if not 1 <= rating <= 5:
            raise InvalidTransition(job_id, job.status, "rate", reason="rating must be between 1 and 5")
        self.scheduler.cancel_all(job_id)
        return await db.update_job(job_id, customer_rating=rating, customer_feedback=feedback)

    # ------------------------------------------------------------------
    # Effect handlers
    # ------------------------------------------------------------------
    async def _tell_customer(self, ctx: EffectContext, body: str) -> None:
        if ctx.actor is Actor.CUSTOMER:
            return
        if ctx.customer is None:
            _LOGGER.warning("Job %s has no customer to notify", ctx.job.id)
            return
        await notify(ctx.customer.phone_number, body)

    async def _tell_contractor(self, ctx: EffectContext, body: str) -> None:
        if ctx.actor is Actor.CONTRACTOR:
            return
        if ctx.contractor is None:
            _LOGGER.warning("Job %s has no contractor to notify", ctx.job.id)
            return
        await notify(ctx.contractor.phone_number, body)

    async def _notify_contractor_request(self, ctx: EffectContext) -> None:
        phone = ctx.customer.phone_number if ctx.customer else "unknown"
        await self._tell_contractor(ctx, texts.new_job_request(ctx.job, phone))

    async def _notify_customer_approved(self, ctx: EffectContext) -> None:
        if ctx.contractor is None:
            _LOGGER.warning("Approved job %s has no contractor", ctx.job.id)
            return
        await self._tell_customer(ctx, texts.job_approved(ctx.contractor))

    async def _confirm_schedule(self, ctx: EffectContext) -> None:
        if ctx.previous is JobStatus.SCHEDULED:
            body = texts.rescheduled(ctx.job)
            await self._tell_customer(ctx, body)
            await self._tell_contractor(ctx, body)
            return
        if ctx.contractor is not None:
            await self._tell_customer(ctx, texts.schedule_to_customer(ctx.job, ctx.contractor))
        if ctx.customer is not None:
            await self._tell_contractor(ctx, texts.schedule_to_contractor(ctx.job, ctx.customer.phone_number))

    async def _register_reminders(self, ctx: EffectContext) -> None:
        self.scheduler.register_reminders(ctx.job, now=self.clock.now())

    async def _create_calendar_event(self, ctx: EffectContext) -> None:
        if ctx.contractor is None:
            return
        event_id = await self.calendar.create_event(ctx.contractor, ctx.job, ctx.customer)
        if event_id:
            await db.update_job(ctx.job.id, calendar_event_id=event_id)

    async def _cancel_reminders(self, ctx: EffectContext) -> None:
        self.scheduler.cancel_reminders(ctx.job.id)

    async def _notify_customer_on_the_way(self, ctx: EffectContext) -> None:
        name = ctx.contractor.business_name if ctx.contractor else "Your contractor"
        await self._tell_customer(ctx, texts.on_the_way(name))

    async def _request_invoice(self, ctx: EffectContext) -> None:
        phone = ctx.customer.phone_number if ctx.customer else "your customer"
        await self._tell_contractor(ctx, texts.invoice_request(phone))

    async def _register_followup(self, ctx: EffectContext) -> None:
        self.scheduler.register_followup(ctx.job, now=self.clock.now())

    async def _cancel_timers(self, ctx: EffectContext) -> None:
        self.scheduler.cancel_all(ctx.job.id)

    async def _notify_customer_cancelled(self, ctx: EffectContext) -> None:
        by = ctx.contractor.business_name if ctx.actor is Actor.CONTRACTOR and ctx.contractor else None
        await self._tell_customer(ctx, texts.job_cancelled(ctx.job.service_category, by))

    async def _find_alternative(self, ctx: EffectContext) -> None:
        job = ctx.job
        excluded = set(job.passed_contractor_ids or [])
        if job.contractor_id is not None:
            excluded.add(job.contractor_id)
        candidates = (
            await db.find_available_contractors(job.customer_zip, exclude_ids=excluded)
            if job.customer_zip
            else []
        )
        best = self.quoting.find_best_contractor(job, candidates)
        if best is None:
            _LOGGER.info("No alternative contractor for job %s", job.id)
            await self.apply(job.id, JobAction.EXHAUST, actor=Actor.SYSTEM)
            return

        _LOGGER.info("Reassigning job %s to contractor %s", job.id, best.contractor.id)
        await self.apply(
            job.id,
            JobAction.REASSIGN,
            actor=Actor.SYSTEM,
            values={
                "contractor_id": best.contractor.id,
                "estimated_cost_min": best.quote.min_cost,
                "estimated_cost_max": best.quote.max_cost,
                "final_quote": None,
            },
        )

    async def _notify_customer_reassigned(self, ctx: EffectContext) -> None:
        name = ctx.contractor.business_name if ctx.contractor else "a new contractor"
        await self._tell_customer(ctx, texts.reassigned(ctx.job, name))

    async def _notify_customer_exhausted(self, ctx: EffectContext) -> None:
        await self._tell_customer(ctx, texts.NO_OTHER_CONTRACTORS)

    async def _sync_customer_conversation(self, ctx: EffectContext) -> None:
        """Keep the customer's conversation in step with the job it is about."""
        if ctx.customer is None:
            return
        phone = ctx.customer.phone_number
        conversation = await db.get_conversation(phone)
        if conversation is None or conversation.current_job_id != ctx.job.id:
            return

        job = ctx.job
        if job.status.is_terminal:
            await db.save_conversation(phone, IdleContext(), customer_id=ctx.customer.id)
        elif job.status is JobStatus.SCHEDULED:
            await db.save_conversation(
                phone, JobScheduledContext(job_id=job.id), job_id=job.id, customer_id=ctx.customer.id
            )
        elif job.status is JobStatus.QUOTED and job.contractor_id is not None:
            await db.save_conversation(
                phone,
                ContractorResponseContext(
                    job_id=job.id, contractor_id=job.contractor_id, customer_id=ctx.customer.id
                ),
                job_id=job.id,
                contractor_id=job.contractor_id,
                customer_id=ctx.customer.id,
            )
