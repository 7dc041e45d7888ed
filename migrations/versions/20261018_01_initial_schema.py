"""initial JobFlow schema

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20261018_01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.TIMESTAMP(timezone=True)


def upgrade() -> None:
    op.create_table(
        "contractors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("business_name", sa.String(200), nullable=False),
        sa.Column("trade_type", sa.String(100), nullable=False),
        sa.Column("service_area_zip", sa.String(10), nullable=False),
        sa.Column("service_radius", sa.Integer(), nullable=False, server_default="25"),
        sa.Column("services_offered", sa.JSON(), nullable=False),
        sa.Column("base_service_fee", sa.Float(), nullable=True),
        sa.Column("hourly_rate", sa.Float(), nullable=True),
        sa.Column("emergency_markup", sa.Float(), nullable=True),
        sa.Column("available_hours", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
    )
    op.create_index("ix_contractors_phone_number", "contractors", ["phone_number"], unique=True)
    op.create_index("ix_contractors_service_area_zip", "contractors", ["service_area_zip"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("zip_code", sa.String(10), nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
    )
    op.create_index("ix_customers_phone_number", "customers", ["phone_number"], unique=True)

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_uuid", sa.String(36), nullable=False, unique=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("contractor_id", sa.Integer(), sa.ForeignKey("contractors.id"), nullable=True),
        sa.Column("problem_description", sa.Text(), nullable=False),
        sa.Column("service_category", sa.String(64), nullable=False),
        sa.Column("urgency_level", sa.String(32), nullable=False),
        sa.Column("customer_address", sa.Text(), nullable=True),
        sa.Column("customer_zip", sa.String(10), nullable=True),
        sa.Column("estimated_cost_min", sa.Integer(), nullable=True),
        sa.Column("estimated_cost_max", sa.Integer(), nullable=True),
        sa.Column("final_quote", sa.Float(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time", sa.Time(), nullable=True),
        sa.Column("completion_date", TS, nullable=True),
        sa.Column("customer_rating", sa.Integer(), nullable=True),
        sa.Column("customer_feedback", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("invoice_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("calendar_event_id", sa.String(255), nullable=True),
        sa.Column("passed_contractor_ids", sa.JSON(), nullable=False),
        sa.Column("day_before_reminded_at", TS, nullable=True),
        sa.Column("day_of_reminded_at", TS, nullable=True),
        sa.Column("followup_sent_at", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
    )
    op.create_index("ix_jobs_customer_id", "jobs", ["customer_id"])
    op.create_index("ix_jobs_contractor_id", "jobs", ["contractor_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_scheduled_date", "jobs", ["scheduled_date"])

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("state", sa.String(32), nullable=False),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("current_job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=True),
        sa.Column("contractor_id", sa.Integer(), sa.ForeignKey("contractors.id"), nullable=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
    )
    op.create_index("ix_conversations_phone_number", "conversations", ["phone_number"], unique=True)

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=True),
        sa.Column("from_number", sa.String(32), nullable=False),
        sa.Column("to_number", sa.String(32), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("transport_message_id", sa.String(128), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])

    op.create_table(
        "dashboard_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("contractor_id", sa.Integer(), sa.ForeignKey("contractors.id"), nullable=False),
        sa.Column("session_token", sa.String(64), nullable=False),
        sa.Column("verification_code", sa.String(6), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", TS, nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_dashboard_sessions_session_token", "dashboard_sessions", ["session_token"], unique=True)


def downgrade() -> None:
    op.drop_table("dashboard_sessions")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("jobs")
    op.drop_table("customers")
    op.drop_table("contractors")
