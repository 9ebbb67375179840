"""Initial schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 10:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


booking_status_enum = sa.Enum(
    "draft",
    "pending",
    "scheduled",
    "in_progress",
    "completed",
    "cancelled",
    "cancelled_no_show",
    "declined",
    name="booking_status_enum",
    native_enum=False,
)
reservation_status_enum = sa.Enum("held", "released", "captured", name="reservation_status_enum", native_enum=False)
ledger_entry_type_enum = sa.Enum(
    "top_up",
    "reserve",
    "release",
    "capture",
    "payout",
    name="ledger_entry_type_enum",
    native_enum=False,
)
outbox_status_enum = sa.Enum("pending", "processed", "failed", name="outbox_status_enum", native_enum=False)


def _id_col() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_col() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def _updated_col() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "credit_accounts",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("held", sa.Integer(), nullable=False),
        sa.CheckConstraint("held >= 0", name="ck_credit_accounts_held_non_negative"),
        sa.CheckConstraint("held <= balance", name="ck_credit_accounts_held_within_balance"),
    )
    op.create_index("ix_credit_accounts_account_id", "credit_accounts", ["account_id"], unique=True)

    op.create_table(
        "credit_reservations",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", reservation_status_enum, nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_credit_reservations_amount_positive"),
        sa.UniqueConstraint("booking_id", name="uq_credit_reservations_booking_id"),
    )
    op.create_index("ix_credit_reservations_account_id", "credit_reservations", ["account_id"], unique=False)
    op.create_index("ix_credit_reservations_status", "credit_reservations", ["status"], unique=False)

    op.create_table(
        "ledger_entries",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("entry_type", ledger_entry_type_enum, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
    )
    op.create_index("ix_ledger_entries_account_id", "ledger_entries", ["account_id"], unique=False)
    op.create_index("ix_ledger_entries_booking_id", "ledger_entries", ["booking_id"], unique=False)

    op.create_table(
        "availability_windows",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("payee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_windows_day_of_week_range"),
        sa.CheckConstraint("end_time > start_time", name="ck_availability_windows_end_after_start"),
    )
    op.create_index("ix_availability_windows_payee_id", "availability_windows", ["payee_id"], unique=False)

    op.create_table(
        "payee_rates",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("payee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.CheckConstraint("credits > 0", name="ck_payee_rates_credits_positive"),
        sa.UniqueConstraint("payee_id", "duration_minutes", name="uq_payee_rates_payee_duration"),
    )
    op.create_index("ix_payee_rates_payee_id", "payee_rates", ["payee_id"], unique=False)

    op.create_table(
        "bookings",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("payer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("payee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("credits_reserved", sa.Integer(), nullable=False),
        sa.Column("payee_payout", sa.Integer(), nullable=False),
        sa.Column("platform_fee", sa.Integer(), nullable=False),
        sa.Column("status", booking_status_enum, nullable=False),
        sa.Column("room_name", sa.String(length=128), nullable=True),
        sa.Column("room_url", sa.String(length=512), nullable=True),
        sa.Column("payer_token", sa.Text(), nullable=True),
        sa.Column("payee_token", sa.Text(), nullable=True),
        sa.Column("payer_joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payee_joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("both_joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=512), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("credits_reserved = payee_payout + platform_fee", name="ck_bookings_split_balanced"),
        sa.CheckConstraint("payee_payout >= 0 AND platform_fee >= 0", name="ck_bookings_split_non_negative"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_bookings_duration_positive"),
        sa.CheckConstraint("scheduled_end > scheduled_start", name="ck_bookings_end_after_start"),
    )
    op.create_index("ix_bookings_payer_id", "bookings", ["payer_id"], unique=False)
    op.create_index("ix_bookings_payee_id", "bookings", ["payee_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_payee_id_scheduled_start", "bookings", ["payee_id", "scheduled_start"], unique=False)
    op.execute(
        """
        ALTER TABLE bookings ADD CONSTRAINT ex_bookings_payee_no_overlap
        EXCLUDE USING gist (
            payee_id WITH =,
            tstzrange(scheduled_start, scheduled_end, '[)') WITH &&
        )
        WHERE (status NOT IN ('completed', 'cancelled', 'cancelled_no_show', 'declined'))
        """,
    )

    op.create_table(
        "audit_logs",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "outbox_events",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("aggregate_type", sa.String(length=64), nullable=False),
        sa.Column("aggregate_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", outbox_status_enum, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retries", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_outbox_events_aggregate",
        "outbox_events",
        ["aggregate_type", "aggregate_id"],
        unique=False,
    )
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"], unique=False)
    op.create_index(
        "ix_outbox_events_status_occurred_at",
        "outbox_events",
        ["status", "occurred_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status_occurred_at", table_name="outbox_events")
    op.drop_index("ix_outbox_events_event_type", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate", table_name="outbox_events")
    op.drop_table("outbox_events")

    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_payee_no_overlap")
    op.drop_index("ix_bookings_payee_id_scheduled_start", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_payee_id", table_name="bookings")
    op.drop_index("ix_bookings_payer_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_payee_rates_payee_id", table_name="payee_rates")
    op.drop_table("payee_rates")

    op.drop_index("ix_availability_windows_payee_id", table_name="availability_windows")
    op.drop_table("availability_windows")

    op.drop_index("ix_ledger_entries_booking_id", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_account_id", table_name="ledger_entries")
    op.drop_table("ledger_entries")

    op.drop_index("ix_credit_reservations_status", table_name="credit_reservations")
    op.drop_index("ix_credit_reservations_account_id", table_name="credit_reservations")
    op.drop_table("credit_reservations")

    op.drop_index("ix_credit_accounts_account_id", table_name="credit_accounts")
    op.drop_table("credit_accounts")
