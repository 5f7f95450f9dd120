"""Initial schema for events, generation jobs, tickets, payments and webhook deliveries."""

from __future__ import annotations
from typing import Union, Sequence

from alembic import op
import sqlalchemy as sa
from planner_core.models.types import GUID, JSONType, UTCDateTime

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", UTCDateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", UTCDateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    """Initial schema for events, generation jobs, tickets, payments and webhook deliveries."""
    ticket_kind_ref = sa.Enum("paid", "free", name="ticket_kind", native_enum=False)
    delivery_outcome_ref = sa.Enum(
        "in_progress",
        "ok",
        "applied_late",
        "ignored",
        "error",
        name="webhook_delivery_outcome",
        native_enum=False,
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organizer_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("event_date", UTCDateTime(), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("max_attendees", sa.Integer(), nullable=True),
        sa.Column("deleted_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_events")),
    )
    op.create_index(op.f("ix_events_organizer"), "events", ["organizer_id"], unique=False)

    op.create_table(
        "guests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("deleted_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_guests")),
    )

    op.create_table(
        "event_guests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("guest_id", sa.Integer(), nullable=False),
        sa.Column("invitation_code", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("is_present", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], name=op.f("fk_event_guests_event_id_events")),
        sa.ForeignKeyConstraint(["guest_id"], ["guests.id"], name=op.f("fk_event_guests_guest_id_guests")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_event_guests")),
        sa.UniqueConstraint("event_id", "guest_id", name="uq_event_guests_event_guest"),
        sa.UniqueConstraint("invitation_code", name=op.f("uq_event_guests_invitation_code")),
    )
    op.create_index(op.f("ix_event_guests_event"), "event_guests", ["event_id"], unique=False)

    op.create_table(
        "ticket_types",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("type", ticket_kind_ref, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], name=op.f("fk_ticket_types_event_id_events")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_ticket_types")),
    )
    op.create_index(op.f("ix_ticket_types_event"), "ticket_types", ["event_id"], unique=False)

    op.create_table(
        "ticket_generation_jobs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("details", JSONType(), nullable=False),
        sa.Column("tickets_processed", sa.Integer(), nullable=False),
        sa.Column("tickets_total", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("correlation_id", GUID(), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("started_at", UTCDateTime(), nullable=True),
        sa.Column("completed_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["event_id"], ["events.id"], name=op.f("fk_ticket_generation_jobs_event_id_events")
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_ticket_generation_jobs")),
    )
    op.create_index(op.f("ix_ticket_generation_jobs_event"), "ticket_generation_jobs", ["event_id"], unique=False)
    op.create_index(op.f("ix_ticket_generation_jobs_status"), "ticket_generation_jobs", ["status"], unique=False)
    op.create_index(
        op.f("ix_ticket_generation_jobs_correlation"), "ticket_generation_jobs", ["correlation_id"], unique=False
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_guest_id", sa.Integer(), nullable=False),
        sa.Column("ticket_type_id", sa.Integer(), nullable=False),
        sa.Column("ticket_template_id", sa.Integer(), nullable=True),
        sa.Column("ticket_code", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("qr_code_data", sa.Text(), nullable=True),
        sa.Column("ticket_file_url", sa.String(length=1024), nullable=True),
        sa.Column("ticket_file_path", sa.String(length=1024), nullable=True),
        sa.Column("generated_at", UTCDateTime(), nullable=True),
        sa.Column("generation_job_id", sa.Integer(), nullable=True),
        sa.Column("payment_status", sa.String(length=32), nullable=True),
        sa.Column("payment_intent_id", sa.String(length=128), nullable=True),
        sa.Column("is_validated", sa.Boolean(), nullable=False),
        sa.Column("validated_at", UTCDateTime(), nullable=True),
        sa.Column("deleted_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["event_guest_id"], ["event_guests.id"], name=op.f("fk_tickets_event_guest_id_event_guests")
        ),
        sa.ForeignKeyConstraint(
            ["ticket_type_id"], ["ticket_types.id"], name=op.f("fk_tickets_ticket_type_id_ticket_types")
        ),
        sa.ForeignKeyConstraint(
            ["generation_job_id"],
            ["ticket_generation_jobs.id"],
            name=op.f("fk_tickets_generation_job_id_ticket_generation_jobs"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tickets")),
        sa.UniqueConstraint("ticket_code", name=op.f("uq_tickets_ticket_code")),
    )
    op.create_index(op.f("ix_tickets_generation_job"), "tickets", ["generation_job_id"], unique=False)
    op.create_index(op.f("ix_tickets_event_guest"), "tickets", ["event_guest_id"], unique=False)
    op.create_index(op.f("ix_tickets_payment_intent"), "tickets", ["payment_intent_id"], unique=False)

    op.create_table(
        "webhook_deliveries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("dedup_key", sa.String(length=64), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("job_id", sa.String(length=128), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("received_at", UTCDateTime(), nullable=False),
        sa.Column("signature_ok", sa.Boolean(), nullable=False),
        sa.Column("normalized_payload", JSONType(), nullable=False),
        sa.Column("outcome", delivery_outcome_ref, nullable=False),
        sa.Column("response_body", JSONType(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_webhook_deliveries")),
        sa.UniqueConstraint("dedup_key", name=op.f("uq_webhook_deliveries_dedup_key")),
    )
    op.create_index(op.f("ix_webhook_deliveries_job"), "webhook_deliveries", ["job_id"], unique=False)
    op.create_index(
        op.f("ix_webhook_deliveries_source_outcome"), "webhook_deliveries", ["source", "outcome"], unique=False
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_intent_id", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=True),
        sa.Column("template_id", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("gateway", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("ticket_ids", JSONType(), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("completed_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_payments")),
        sa.UniqueConstraint("payment_intent_id", name=op.f("uq_payments_payment_intent_id")),
    )
    op.create_index(op.f("ix_payments_user"), "payments", ["user_id"], unique=False)
    op.create_index(op.f("ix_payments_event"), "payments", ["event_id"], unique=False)

    op.create_table(
        "system_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("resource_type", sa.String(length=64), nullable=True),
        sa.Column("resource_id", sa.String(length=64), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("context", JSONType(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_system_logs")),
    )
    op.create_index(op.f("ix_system_logs_action"), "system_logs", ["action"], unique=False)
    op.create_index(op.f("ix_system_logs_resource"), "system_logs", ["resource_type", "resource_id"], unique=False)


def downgrade() -> None:
    """Drop every table created by the initial schema."""
    op.drop_index(op.f("ix_system_logs_resource"), table_name="system_logs")
    op.drop_index(op.f("ix_system_logs_action"), table_name="system_logs")
    op.drop_table("system_logs")
    op.drop_index(op.f("ix_payments_event"), table_name="payments")
    op.drop_index(op.f("ix_payments_user"), table_name="payments")
    op.drop_table("payments")
    op.drop_index(op.f("ix_webhook_deliveries_source_outcome"), table_name="webhook_deliveries")
    op.drop_index(op.f("ix_webhook_deliveries_job"), table_name="webhook_deliveries")
    op.drop_table("webhook_deliveries")
    op.drop_index(op.f("ix_tickets_payment_intent"), table_name="tickets")
    op.drop_index(op.f("ix_tickets_event_guest"), table_name="tickets")
    op.drop_index(op.f("ix_tickets_generation_job"), table_name="tickets")
    op.drop_table("tickets")
    op.drop_index(op.f("ix_ticket_generation_jobs_correlation"), table_name="ticket_generation_jobs")
    op.drop_index(op.f("ix_ticket_generation_jobs_status"), table_name="ticket_generation_jobs")
    op.drop_index(op.f("ix_ticket_generation_jobs_event"), table_name="ticket_generation_jobs")
    op.drop_table("ticket_generation_jobs")
    op.drop_index(op.f("ix_ticket_types_event"), table_name="ticket_types")
    op.drop_table("ticket_types")
    op.drop_index(op.f("ix_event_guests_event"), table_name="event_guests")
    op.drop_table("event_guests")
    op.drop_table("guests")
    op.drop_index(op.f("ix_events_organizer"), table_name="events")
    op.drop_table("events")
