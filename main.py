import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Optional

import telnyx
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

import db
from app.services.contractor_desk import ContractorDesk
from app.services.conversation import ConversationEngine, InboundMessage
from app.services.intake_agent import build_intake_agent
from app.services.lifecycle import InvalidTransition, JobLifecycle, JobNotFound
from app.services.notifications import notify
from app.services.quoting import QuotingEngine
from app.services.scheduler import Scheduler
from app.types.job import JobStatus
from app.utils.clock import SystemClock
from config import settings

logging.basicConfig(
    level=settings.LOGLEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_LOGGER = logging.getLogger(__name__)

# Configure telnyx public key
if settings.TELNYX_PUBLIC_KEY:
    telnyx.public_key = settings.TELNYX_PUBLIC_KEY

# --------------------------------------------
# Wiring
# --------------------------------------------
clock = SystemClock()
scheduler = Scheduler(
    clock=clock,
    tz=settings.DEFAULT_TIMEZONE,
    poll_interval=settings.SCHEDULER_POLL_SECONDS,
    run_sweeps=settings.SCHEDULER_RUN_SWEEPS,
    reminder_hour=settings.REMINDER_SWEEP_HOUR,
    followup_hour=settings.FOLLOWUP_SWEEP_HOUR,
    cleanup_hour=settings.CLEANUP_SWEEP_HOUR,
    idle_days=settings.IDLE_CONTEXT_DAYS,
)
quoting = QuotingEngine(strategy=settings.QUOTE_STRATEGY, holidays=settings.HOLIDAYS)
lifecycle = JobLifecycle(scheduler, quoting, clock=clock)
engine = ConversationEngine(
    lifecycle,
    quoting,
    build_intake_agent(),
    desk=ContractorDesk(lifecycle),
    selection=settings.CONTRACTOR_SELECTION,
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Tables are managed via Alembic migrations
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await db.dispose_engine()


app = FastAPI(lifespan=lifespan)


# --------------------------------------------
# SMS webhook
# --------------------------------------------
@app.post("/v1/sms/telnyx", response_class=PlainTextResponse)
async def telnyx_webhook(request: Request):
    raw_body = await request.body()
    sig = request.headers.get("telnyx-signature-ed25519")
    ts = request.headers.get("telnyx-timestamp")

    try:
        if settings.TELNYX_PUBLIC_KEY:
            event = telnyx.Webhook.construct_event(raw_body.decode(), sig, ts)
            data = event.data
            event_type = data.get("event_type")
            payload = data["payload"]
        else:  # dev mode: skip signature verification
            data = (await request.json())["data"]
            event_type = data.get("event_type")
            payload = data["payload"]
    except Exception as exc:
        _LOGGER.warning("Rejected webhook: %s", exc)
        raise HTTPException(400, "Bad signature")

    if payload.get("type") == "ping":
        return PlainTextResponse("PONG")

    # TelnyxObject -> dict if needed
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()

    if event_type and event_type != "message.received":
        return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)

    sender = payload.get("from") or payload.get("from_", {})
    if hasattr(sender, "to_dict"):
        sender = sender.to_dict()
    from_num = sender.get("phone_number")
    recipients = payload.get("to") or [{}]
    to_num = recipients[0].get("phone_number") if isinstance(recipients, list) else recipients
    text = payload.get("text") or ""

    if not from_num:
        return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)

    reply = await engine.handle_inbound(
        InboundMessage(
            from_number=from_num,
            to_number=to_num or settings.TELNYX_FROM_NUMBER or "",
            body=text,
            transport_message_id=payload.get("id"),
        )
    )
    if reply.body:
        await notify(reply.to, reply.body)
    return PlainTextResponse("OK")


# --------------------------------------------
# Admin surface
# --------------------------------------------
class StatusChange(BaseModel):
    status: JobStatus
    force: bool = False


class ScheduleRequest(BaseModel):
    date: dt.date
    time: Optional[dt.time] = None


def _require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Admin API disabled: ADMIN_API_TOKEN not set")
    if x_admin_token != settings.ADMIN_API_TOKEN:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Bad admin token")


def _job_view(job) -> dict:
    return {
        "id": job.id,
        "job_uuid": job.job_uuid,
        "status": job.status.value,
        "contractor_id": job.contractor_id,
        "scheduled_date": job.scheduled_date.isoformat() if job.scheduled_date else None,
        "scheduled_time": job.scheduled_time.isoformat() if job.scheduled_time else None,
    }


@app.post("/v1/admin/jobs/{job_id}/status", dependencies=[Depends(_require_admin)])
async def change_job_status(job_id: int, change: StatusChange):
    try:
        job = await lifecycle.set_status(job_id, change.status, force=change.force)
    except JobNotFound as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(exc))
    except InvalidTransition as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, exc.reason)
    return _job_view(job)


@app.post("/v1/admin/jobs/{job_id}/schedule", dependencies=[Depends(_require_admin)])
async def schedule_job(job_id: int, request: ScheduleRequest):
    try:
        job = await lifecycle.schedule(job_id, request.date, request.time)
    except JobNotFound as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(exc))
    except InvalidTransition as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, exc.reason)
    return _job_view(job)
