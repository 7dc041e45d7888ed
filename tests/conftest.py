from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

import db
from app.services.conversation import ConversationEngine
from app.services.intake_agent import ScriptedIntakeAgent
from app.services.lifecycle import JobLifecycle
from app.services.quoting import QuotingEngine
from app.services.scheduler import Scheduler
from app.types.job import JobStatus, Urgency
from app.utils import sms as sms_util
from app.utils.sms import SendResult

TZ = "America/Los_Angeles"
# Sunday 2026-10-18 10:00 in Los Angeles (PDT, UTC-7)
START = datetime(2026, 10, 18, 17, 0, tzinfo=timezone.utc)

CUSTOMER_PHONE = "+13105550100"
CONTRACTOR_PHONE = "+13105550199"


class FrozenClock:
    def __init__(self, now: datetime = START):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **delta) -> datetime:
        self._now += timedelta(**delta)
        return self._now


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'jobflow.db'}")
    monkeypatch.delenv("DATABASE_PUBLIC_URL", raising=False)
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


@pytest.fixture
def sent(monkeypatch):
    """Every SMS handed to the transport, as (to, body)."""
    outbox = []

    def fake_send_sms(to, body):
        outbox.append((to, body))
        return SendResult(success=True, message_id=f"fake-{len(outbox)}")

    monkeypatch.setattr(sms_util, "send_sms", fake_send_sms)
    return outbox


def to(outbox, phone):
    return [body for recipient, body in outbox if recipient == phone]


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def scheduler(clock):
    return Scheduler(clock=clock, tz=TZ, run_sweeps=False)


@pytest.fixture
def quoting():
    return QuotingEngine()


@pytest.fixture
def lifecycle(scheduler, quoting, clock):
    return JobLifecycle(scheduler, quoting, clock=clock)


@pytest.fixture
def engine(lifecycle, quoting):
    return ConversationEngine(lifecycle, quoting, ScriptedIntakeAgent())


@pytest.fixture
def make_contractor(database):
    async def factory(**overrides):
        fields = dict(
            phone_number=CONTRACTOR_PHONE,
            business_name="Ace Plumbing",
            trade_type="plumber",
            service_area_zip="90210",
            services_offered=["drain cleaning", "pipe repair"],
            base_service_fee=75.0,
            hourly_rate=100.0,
            emergency_markup=0.25,
            available_hours={"monday": "8-5"},
        )
        fields.update(overrides)
        return await db.create_contractor(**fields)

    return factory


@pytest.fixture
def make_job(database):
    async def factory(contractor=None, status=JobStatus.PENDING, phone=CUSTOMER_PHONE, **overrides):
        customer = await db.get_or_create_customer(phone)
        fields = dict(
            customer_id=customer.id,
            contractor_id=contractor.id if contractor else None,
            problem_description="Kitchen sink is leaking",
            service_category="plumbing",
            urgency_level=Urgency.MEDIUM,
            customer_address="123 Main St 90210",
            customer_zip="90210",
            estimated_cost_min=150,
            estimated_cost_max=250,
            status=status,
        )
        fields.update(overrides)
        return await db.create_job(**fields)

    return factory
