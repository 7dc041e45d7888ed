"""ORM models for contractors, customers, jobs, conversations, the message
audit log and dashboard sessions."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Date, DateTime, Enum as SAEnum, ForeignKey, Index, String, Text, Time, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.types.conversation import ConversationState
from app.types.job import JobStatus, Urgency


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands timestamps back naive; they are always stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _enum(enum_cls) -> SAEnum:
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    pass


# ──────────────────────────────────────────────────────────────────────
# Parties
# ──────────────────────────────────────────────────────────────────────
class Contractor(Base):
    __tablename__ = "contractors"

    id:               Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    phone_number:     Mapped[str] = mapped_column(String(32), unique=True, index=True)
    business_name:    Mapped[str] = mapped_column(String(200))
    trade_type:       Mapped[str] = mapped_column(String(100))
    service_area_zip: Mapped[str] = mapped_column(String(10), index=True)
    service_radius:   Mapped[int] = mapped_column(default=25)
    services_offered: Mapped[list[str]] = mapped_column(JSON, default=list)
    base_service_fee: Mapped[float | None]
    hourly_rate:      Mapped[float | None]
    emergency_markup: Mapped[float | None]
    available_hours:  Mapped[dict[str, str]] = mapped_column(JSON, default=dict)
    is_active:        Mapped[bool] = mapped_column(default=True)
    created_at:       Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at:       Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Customer(Base):
    __tablename__ = "customers"

    id:           Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    phone_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    name:         Mapped[str | None] = mapped_column(String(200))
    address:      Mapped[str | None] = mapped_column(Text)
    zip_code:     Mapped[str | None] = mapped_column(String(10))
    created_at:   Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at:   Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ──────────────────────────────────────────────────────────────────────
# Jobs
# ──────────────────────────────────────────────────────────────────────
class Job(Base):
    __tablename__ = "jobs"

    id:                  Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_uuid:            Mapped[str] = mapped_column(String(36), unique=True, default=lambda: str(uuid4()))
    customer_id:         Mapped[int] = mapped_column(ForeignKey("customers.id"), index=True)
    contractor_id:       Mapped[int | None] = mapped_column(ForeignKey("contractors.id"), index=True)
    problem_description: Mapped[str] = mapped_column(Text)
    service_category:    Mapped[str] = mapped_column(String(64), default="general_handyman")
    urgency_level:       Mapped[Urgency] = mapped_column(_enum(Urgency), default=Urgency.MEDIUM)
    customer_address:    Mapped[str | None] = mapped_column(Text)
    customer_zip:        Mapped[str | None] = mapped_column(String(10))
    estimated_cost_min:  Mapped[int | None]
    estimated_cost_max:  Mapped[int | None]
    final_quote:         Mapped[float | None]
    status:              Mapped[JobStatus] = mapped_column(_enum(JobStatus), default=JobStatus.PENDING, index=True)
    scheduled_date:      Mapped[date | None] = mapped_column(Date)
    scheduled_time:      Mapped[time | None] = mapped_column(Time)
    completion_date:     Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    customer_rating:     Mapped[int | None]
    customer_feedback:   Mapped[str | None] = mapped_column(Text)
    notes:               Mapped[str | None] = mapped_column(Text)
    invoice_sent:        Mapped[bool] = mapped_column(default=False)
    calendar_event_id:   Mapped[str | None] = mapped_column(String(255))
    # contractors who passed on this job; never offered it again
    passed_contractor_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    # delivery stamps; cleared when the job is rescheduled
    day_before_reminded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    day_of_reminded_at:     Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    followup_sent_at:       Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at:          Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at:          Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_jobs_scheduled_date", "scheduled_date"),
    )


# ──────────────────────────────────────────────────────────────────────
# Conversations & audit log
# ──────────────────────────────────────────────────────────────────────
class Conversation(Base):
    __tablename__ = "conversations"

    id:             Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    phone_number:   Mapped[str] = mapped_column(String(32), unique=True, index=True)
    state:          Mapped[ConversationState] = mapped_column(
        _enum(ConversationState), default=ConversationState.IDLE
    )
    context:        Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    current_job_id: Mapped[int | None] = mapped_column(ForeignKey("jobs.id"))
    contractor_id:  Mapped[int | None] = mapped_column(ForeignKey("contractors.id"))
    customer_id:    Mapped[int | None] = mapped_column(ForeignKey("customers.id"))
    created_at:     Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at:     Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Message(Base):
    __tablename__ = "messages"

    id:                   Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    conversation_id:      Mapped[int | None] = mapped_column(ForeignKey("conversations.id"), index=True)
    from_number:          Mapped[str] = mapped_column(String(32))
    to_number:            Mapped[str] = mapped_column(String(32))
    body:                 Mapped[str] = mapped_column(Text)
    direction:            Mapped[str] = mapped_column(String(8))
    transport_message_id: Mapped[str | None] = mapped_column(String(128))
    created_at:           Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class DashboardSession(Base):
    __tablename__ = "dashboard_sessions"

    id:                Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    contractor_id:     Mapped[int] = mapped_column(ForeignKey("contractors.id"))
    session_token:     Mapped[str] = mapped_column(String(64), unique=True, index=True)
    verification_code: Mapped[str | None] = mapped_column(String(6))
    is_verified:       Mapped[bool] = mapped_column(default=False)
    expires_at:        Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at:        Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
