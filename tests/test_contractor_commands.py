import re
from datetime import date, timedelta

import pytest
from sqlalchemy import select

import db
from app.types.conversation import ConversationState
from app.types.job import JobStatus
from app.utils import texts
from conftest import CONTRACTOR_PHONE, CUSTOMER_PHONE, START, to
from db.models import DashboardSession

TODAY = date(2026, 10, 18)


@pytest.mark.asyncio
async def test_customer_request_to_contractor_approval(engine, make_contractor, sent):
    await make_contractor()

    await engine.process(CUSTOMER_PHONE, "My kitchen sink is leaking")
    await engine.process(CUSTOMER_PHONE, "2")
    offer = await engine.process(CUSTOMER_PHONE, "123 Main St 90210")
    assert "Ace Plumbing" in offer
    assert await engine.process(CUSTOMER_PHONE, "YES") == texts.request_sent("Ace Plumbing")
    [request] = to(sent, CONTRACTOR_PHONE)
    assert "My kitchen sink is leaking" in request
    assert CUSTOMER_PHONE in request

    reply = await engine.process(CONTRACTOR_PHONE, "A")
    assert reply == texts.approve_ack(CUSTOMER_PHONE)

    customer_messages = to(sent, CUSTOMER_PHONE)
    assert len(customer_messages) == 1
    assert "Ace Plumbing" in customer_messages[0]

    conversation = await db.get_conversation(CUSTOMER_PHONE)
    job = await db.get_job(conversation.current_job_id)
    assert job.status is JobStatus.APPROVED
    assert await engine.process(CUSTOMER_PHONE, "when?") == texts.awaiting_schedule("Ace Plumbing")

    # nothing left to approve
    assert await engine.process(CONTRACTOR_PHONE, "a") == texts.NO_PENDING_REQUESTS


@pytest.mark.asyncio
async def test_contractor_texts_skip_customer_flow(engine, make_contractor, database):
    await make_contractor()
    assert await engine.process(CONTRACTOR_PHONE, "hello there") == texts.CONTRACTOR_HELP
    assert (await db.get_conversation(CONTRACTOR_PHONE)).state is ConversationState.IDLE


@pytest.mark.asyncio
async def test_call_customer(engine, make_contractor, make_job):
    contractor = await make_contractor()
    await make_job(contractor, status=JobStatus.QUOTED)
    assert await engine.process(CONTRACTOR_PHONE, "C") == texts.call_customer(CUSTOMER_PHONE)


@pytest.mark.asyncio
async def test_custom_quote(engine, make_contractor, make_job, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.QUOTED)

    assert await engine.process(CONTRACTOR_PHONE, "Q $300") == texts.custom_quote_ack(300)
    [message] = to(sent, CUSTOMER_PHONE)
    assert "$300" in message
    job = await db.get_job(job.id)
    assert job.final_quote == 300
    assert job.status is JobStatus.QUOTED


@pytest.mark.asyncio
async def test_on_the_way_starts_todays_job(engine, make_contractor, make_job, sent):
    contractor = await make_contractor()
    await make_job(contractor, status=JobStatus.SCHEDULED, scheduled_date=TODAY + timedelta(days=3))
    job = await make_job(contractor, status=JobStatus.SCHEDULED, scheduled_date=TODAY)

    assert await engine.process(CONTRACTOR_PHONE, "OTW") == texts.ON_THE_WAY_ACK
    assert (await db.get_job(job.id)).status is JobStatus.IN_PROGRESS
    assert to(sent, CUSTOMER_PHONE) == [texts.on_the_way("Ace Plumbing")]


@pytest.mark.asyncio
async def test_on_the_way_without_job_today(engine, make_contractor, make_job):
    contractor = await make_contractor()
    await make_job(contractor, status=JobStatus.SCHEDULED, scheduled_date=TODAY + timedelta(days=1))
    assert await engine.process(CONTRACTOR_PHONE, "on the way") == texts.NO_JOB_TODAY


@pytest.mark.asyncio
async def test_job_done_then_invoice(engine, make_contractor, make_job, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.IN_PROGRESS)

    assert await engine.process(CONTRACTOR_PHONE, "Job done") == texts.invoice_request(CUSTOMER_PHONE)
    job = await db.get_job(job.id)
    assert job.status is JobStatus.COMPLETED
    assert job.completion_date is not None

    reply = await engine.process(CONTRACTOR_PHONE, "INVOICE 150 Fixed the kitchen drain")
    assert reply == texts.invoice_ack(150)
    [invoice] = to(sent, CUSTOMER_PHONE)
    assert "Fixed the kitchen drain" in invoice
    assert "$150" in invoice
    job = await db.get_job(job.id)
    assert job.invoice_sent
    assert job.final_quote == 150

    assert await engine.process(CONTRACTOR_PHONE, "INVOICE 90 Again") == texts.NO_INVOICE_CANDIDATE


@pytest.mark.asyncio
async def test_invoice_usage(engine, make_contractor):
    await make_contractor()
    assert await engine.process(CONTRACTOR_PHONE, "INVOICE 150") == texts.INVOICE_USAGE


@pytest.mark.asyncio
async def test_job_done_without_active_job(engine, make_contractor):
    await make_contractor()
    assert await engine.process(CONTRACTOR_PHONE, "JOB DONE") == texts.NO_JOB_IN_PROGRESS


@pytest.mark.asyncio
async def test_dashboard_link(engine, make_contractor):
    contractor = await make_contractor()
    reply = await engine.process(CONTRACTOR_PHONE, "dashboard")

    token = re.search(r"/dashboard/login\?token=([0-9a-f]{32})", reply).group(1)
    code = re.search(r"Verification code: (\d{6})", reply).group(1)
    async with db.session_scope() as s:
        row = (await s.execute(select(DashboardSession).where(DashboardSession.session_token == token))).scalar_one()
    assert row.contractor_id == contractor.id
    assert row.verification_code == code
    assert not row.is_verified
    assert row.expires_at.replace(tzinfo=START.tzinfo) > START
