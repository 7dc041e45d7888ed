"""
Async persistence gateway for the JobFlow backend.
Uses SQLAlchemy 2.0 (asyncpg in production, aiosqlite in tests) – no raw SQL
strings in app code. Every helper opens its own short session and commits;
nothing here spans more than one entity per transaction.
"""

from __future__ import annotations

import os
from datetime import date, datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.types.conversation import ConversationContext, ConversationState
from app.types.job import JobStatus
from db.models import (
    Base,
    Contractor,
    Conversation,
    Customer,
    DashboardSession,
    Job,
    Message,
    utcnow,
)

# ──────────────────────────────────────────────────────────────────────
# 1. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("postgres://") or url.startswith("postgresql://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url


def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        kwargs: dict[str, Any] = {}
        if url.startswith("postgresql"):
            kwargs.update(pool_size=5, max_overflow=5)
        _engine = create_async_engine(url, **kwargs)
    return _engine


def session_scope() -> AsyncSession:
    """A fresh session; use as ``async with session_scope() as s``."""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker()


# ──────────────────────────────────────────────────────────────────────
# 2. DDL helper (tests / local dev; production uses Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None


# ──────────────────────────────────────────────────────────────────────
# 3. CRUD helpers
# ──────────────────────────────────────────────────────────────────────

# 3.1 Contractors ------------------------------------------------------
async def create_contractor(**fields: Any) -> Contractor:
    contractor = Contractor(**fields)
    async with session_scope() as s:
        s.add(contractor)
        await s.commit()
    return contractor


async def get_contractor(contractor_id: int | None) -> Contractor | None:
    if contractor_id is None:
        return None
    async with session_scope() as s:
        return await s.get(Contractor, contractor_id)


async def get_contractor_by_phone(phone: str) -> Contractor | None:
    async with session_scope() as s:
        res = await s.execute(select(Contractor).where(Contractor.phone_number == phone))
        return res.scalar_one_or_none()


async def find_available_contractors(
    zip_code: str, exclude_ids: Iterable[int] = ()
) -> list[Contractor]:
    """Active contractors serving *zip_code*, oldest first."""
    stmt = select(Contractor).where(
        Contractor.service_area_zip == zip_code,
        Contractor.is_active.is_(True),
    )
    excluded = [cid for cid in exclude_ids if cid is not None]
    if excluded:
        stmt = stmt.where(Contractor.id.not_in(excluded))
    async with session_scope() as s:
        res = await s.execute(stmt.order_by(Contractor.id))
        return list(res.scalars())


async def first_active_contractor() -> Contractor | None:
    async with session_scope() as s:
        res = await s.execute(
            select(Contractor).where(Contractor.is_active.is_(True)).order_by(Contractor.id).limit(1)
        )
        return res.scalar_one_or_none()


# 3.2 Customers --------------------------------------------------------
async def get_customer(customer_id: int | None) -> Customer | None:
    if customer_id is None:
        return None
    async with session_scope() as s:
        return await s.get(Customer, customer_id)


async def get_customer_by_phone(phone: str) -> Customer | None:
    async with session_scope() as s:
        res = await s.execute(select(Customer).where(Customer.phone_number == phone))
        return res.scalar_one_or_none()


async def get_or_create_customer(phone: str) -> Customer:
    existing = await get_customer_by_phone(phone)
    if existing is not None:
        return existing
    customer = Customer(phone_number=phone)
    async with session_scope() as s:
        s.add(customer)
        try:
            await s.commit()
        except IntegrityError:
            # another request created it first
            await s.rollback()
            return await get_customer_by_phone(phone)
    return customer


async def update_customer(customer_id: int, **values: Any) -> None:
    async with session_scope() as s:
        await s.execute(update(Customer).where(Customer.id == customer_id).values(**values))
        await s.commit()


# 3.3 Jobs -------------------------------------------------------------
async def create_job(**fields: Any) -> Job:
    job = Job(**fields)
    async with session_scope() as s:
        s.add(job)
        await s.commit()
    return job


async def get_job(job_id: int | None) -> Job | None:
    if job_id is None:
        return None
    async with session_scope() as s:
        return await s.get(Job, job_id)


async def update_job(job_id: int, **values: Any) -> Job | None:
    async with session_scope() as s:
        await s.execute(update(Job).where(Job.id == job_id).values(updated_at=utcnow(), **values))
        await s.commit()
    return await get_job(job_id)


async def transition_job(
    job_id: int, expected: JobStatus, target: JobStatus, **values: Any
) -> Job | None:
    """Compare-and-set the status. Returns None when the row was not in *expected*."""
    async with session_scope() as s:
        res = await s.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == expected)
            .values(status=target, updated_at=utcnow(), **values)
        )
        await s.commit()
        if res.rowcount == 0:
            return None
    return await get_job(job_id)


async def jobs_for_contractor(
    contractor_id: int, statuses: Sequence[JobStatus] | None = None
) -> list[Job]:
    """Newest first."""
    stmt = select(Job).where(Job.contractor_id == contractor_id)
    if statuses:
        stmt = stmt.where(Job.status.in_(list(statuses)))
    async with session_scope() as s:
        res = await s.execute(stmt.order_by(Job.created_at.desc(), Job.id.desc()))
        return list(res.scalars())


async def latest_job_for_customer(
    customer_id: int, statuses: Sequence[JobStatus] | None = None
) -> Job | None:
    stmt = select(Job).where(Job.customer_id == customer_id)
    if statuses:
        stmt = stmt.where(Job.status.in_(list(statuses)))
    async with session_scope() as s:
        res = await s.execute(stmt.order_by(Job.created_at.desc(), Job.id.desc()).limit(1))
        return res.scalar_one_or_none()


async def jobs_scheduled_on(day: date) -> list[Job]:
    async with session_scope() as s:
        res = await s.execute(
            select(Job)
            .where(Job.status == JobStatus.SCHEDULED, Job.scheduled_date == day)
            .order_by(Job.id)
        )
        return list(res.scalars())


async def jobs_completed_between(start: datetime, end: datetime) -> list[Job]:
    async with session_scope() as s:
        res = await s.execute(
            select(Job)
            .where(
                Job.status == JobStatus.COMPLETED,
                Job.completion_date >= start,
                Job.completion_date < end,
            )
            .order_by(Job.id)
        )
        return list(res.scalars())


# 3.4 Conversations ----------------------------------------------------
async def get_conversation(phone: str) -> Conversation | None:
    async with session_scope() as s:
        res = await s.execute(select(Conversation).where(Conversation.phone_number == phone))
        return res.scalar_one_or_none()


async def get_or_create_conversation(phone: str) -> Conversation:
    existing = await get_conversation(phone)
    if existing is not None:
        return existing
    conversation = Conversation(phone_number=phone, state=ConversationState.IDLE, context={})
    async with session_scope() as s:
        s.add(conversation)
        try:
            await s.commit()
        except IntegrityError:
            await s.rollback()
            return await get_conversation(phone)
    return conversation


async def save_conversation(
    phone: str,
    context: ConversationContext,
    *,
    job_id: int | None = None,
    contractor_id: int | None = None,
    customer_id: int | None = None,
) -> None:
    """Replace state, context and links in one write."""
    await get_or_create_conversation(phone)
    async with session_scope() as s:
        await s.execute(
            update(Conversation)
            .where(Conversation.phone_number == phone)
            .values(
                state=context.STATE,
                context=context.to_json(),
                current_job_id=job_id,
                contractor_id=contractor_id,
                customer_id=customer_id,
                updated_at=utcnow(),
            )
        )
        await s.commit()


async def reset_idle_contexts(before: datetime) -> int:
    async with session_scope() as s:
        res = await s.execute(
            update(Conversation)
            .where(
                Conversation.state == ConversationState.IDLE,
                Conversation.updated_at < before,
            )
            .values(context={})
            .execution_options(synchronize_session=False)
        )
        await s.commit()
        return res.rowcount or 0


# 3.5 Messages ---------------------------------------------------------
async def insert_message(
    *,
    from_number: str,
    to_number: str,
    body: str,
    direction: str,
    transport_message_id: str | None = None,
    conversation_id: int | None = None,
) -> Message:
    message = Message(
        from_number=from_number,
        to_number=to_number,
        body=body,
        direction=direction,
        transport_message_id=transport_message_id,
        conversation_id=conversation_id,
    )
    async with session_scope() as s:
        s.add(message)
        await s.commit()
    return message


async def messages_for_phone(phone: str) -> list[Message]:
    async with session_scope() as s:
        res = await s.execute(
            select(Message)
            .where((Message.from_number == phone) | (Message.to_number == phone))
            .order_by(Message.id)
        )
        return list(res.scalars())


# 3.6 Dashboard sessions -----------------------------------------------
async def create_dashboard_session(
    contractor_id: int, token: str, code: str, expires_at: datetime
) -> DashboardSession:
    session_row = DashboardSession(
        contractor_id=contractor_id,
        session_token=token,
        verification_code=code,
        expires_at=expires_at,
    )
    async with session_scope() as s:
        s.add(session_row)
        await s.commit()
    return session_row


async def purge_expired_sessions(now: datetime) -> int:
    async with session_scope() as s:
        res = await s.execute(delete(DashboardSession).where(DashboardSession.expires_at < now))
        await s.commit()
        return res.rowcount or 0
