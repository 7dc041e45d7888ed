from datetime import date

import httpx
import pytest
import pytest_asyncio

import db
import main
from app.services.intake_agent import ASK_PROBLEM, ScriptedIntakeAgent
from app.types.job import JobStatus
from conftest import CONTRACTOR_PHONE, CUSTOMER_PHONE, to

ADMIN = {"X-Admin-Token": "s3cret"}


@pytest_asyncio.fixture
async def client(database, sent, monkeypatch):
    monkeypatch.setattr(main.settings, "ADMIN_API_TOKEN", "s3cret")
    monkeypatch.setattr(main.settings, "TELNYX_PUBLIC_KEY", None)
    monkeypatch.setattr(main.engine, "agent", ScriptedIntakeAgent())
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


def _inbound(sender, text, event_type="message.received"):
    return {
        "data": {
            "event_type": event_type,
            "payload": {
                "id": "msg-123",
                "from": {"phone_number": sender},
                "to": [{"phone_number": "+18885550000"}],
                "text": text,
            },
        }
    }


@pytest.mark.asyncio
async def test_inbound_sms_gets_a_reply(client, sent):
    response = await client.post("/v1/sms/telnyx", json=_inbound(CUSTOMER_PHONE, "hi"))
    assert response.status_code == 200
    assert response.text == "OK"
    assert to(sent, CUSTOMER_PHONE) == [ASK_PROBLEM]

    directions = [m.direction for m in await db.messages_for_phone(CUSTOMER_PHONE)]
    assert directions == ["inbound", "outbound"]


@pytest.mark.asyncio
async def test_other_events_are_ignored(client, sent):
    response = await client.post("/v1/sms/telnyx", json=_inbound(CUSTOMER_PHONE, "hi", "message.sent"))
    assert response.text == "IGNORED"
    assert sent == []


@pytest.mark.asyncio
async def test_ping(client):
    response = await client.post("/v1/sms/telnyx", json={"data": {"payload": {"type": "ping"}}})
    assert response.text == "PONG"


@pytest.mark.asyncio
async def test_malformed_webhook(client):
    response = await client.post("/v1/sms/telnyx", json={"unexpected": True})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_admin_requires_token(client):
    response = await client.post("/v1/admin/jobs/1/status", json={"status": "cancelled"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_admin_schedule(client, make_contractor, make_job, sent):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.APPROVED)

    response = await client.post(
        f"/v1/admin/jobs/{job.id}/schedule", json={"date": "2030-03-14", "time": "09:30"}, headers=ADMIN
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "scheduled"
    assert body["scheduled_date"] == "2030-03-14"
    assert body["scheduled_time"] == "09:30:00"
    assert len(to(sent, CUSTOMER_PHONE)) == 1
    assert len(to(sent, CONTRACTOR_PHONE)) == 1
    assert (await db.get_job(job.id)).scheduled_date == date(2030, 3, 14)

    main.scheduler.cancel_all(job.id)


@pytest.mark.asyncio
async def test_admin_status_change(client, make_contractor, make_job):
    contractor = await make_contractor()
    job = await make_job(contractor, status=JobStatus.PENDING)

    response = await client.post(f"/v1/admin/jobs/{job.id}/status", json={"status": "completed"}, headers=ADMIN)
    assert response.status_code == 409

    response = await client.post(
        f"/v1/admin/jobs/{job.id}/status", json={"status": "completed", "force": True}, headers=ADMIN
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    main.scheduler.cancel_all(job.id)


@pytest.mark.asyncio
async def test_admin_unknown_job(client):
    response = await client.post("/v1/admin/jobs/999/status", json={"status": "cancelled"}, headers=ADMIN)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_disabled_without_configured_token(client, make_contractor, make_job, sent, monkeypatch):
    monkeypatch.setattr(main.settings, "ADMIN_API_TOKEN", None)
    job = await make_job(await make_contractor())

    for headers in ({}, {"X-Admin-Token": ""}):
        response = await client.post(
            f"/v1/admin/jobs/{job.id}/status", json={"status": "completed", "force": True}, headers=headers
        )
        assert response.status_code == 503

    assert (await db.get_job(job.id)).status is JobStatus.PENDING
    assert sent == []
