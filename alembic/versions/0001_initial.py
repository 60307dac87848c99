"""initial payments schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "schools",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("payrexx_instance", sa.String(length=120), nullable=True),
        sa.Column("payrexx_key", sa.String(length=255), nullable=True),
        sa.Column("bookings_comission_cash", sa.Numeric(5, 2), nullable=True),
        sa.Column("conditions_url", sa.String(length=500), nullable=True),
        _created_at(),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("first_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("address", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("cp", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("province", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("country", sa.String(length=2), nullable=False, server_default=""),
        _created_at(),
    )
    op.create_index("ix_clients_email", "clients", ["email"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_school_id", "users", ["school_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("school_id", sa.String(length=36), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("client_main_id", sa.String(length=36), nullable=True),
        sa.Column("price_total", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="CHF"),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("paid_total", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("payment_method_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("payrexx_reference", sa.String(length=120), nullable=True),
        sa.Column("payrexx_transaction", sa.Text(), nullable=True),
        sa.Column("payrexx_refund", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("source", sa.String(length=20), nullable=False, server_default="panel"),
        sa.Column("status", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifecycle", sa.String(length=12), nullable=False, server_default="active"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_bookings_school_id", "bookings", ["school_id"])
    op.create_index("ix_bookings_client_main_id", "bookings", ["client_main_id"])
    op.create_index("ix_bookings_payrexx_reference", "bookings", ["payrexx_reference"], unique=True)

    op.create_table(
        "booking_users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("client_id", sa.String(length=36), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("lifecycle", sa.String(length=12), nullable=False, server_default="active"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_booking_users_booking_id", "booking_users", ["booking_id"])
    op.create_index("ix_booking_users_client_id", "booking_users", ["client_id"])

    op.create_table(
        "booking_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("actor", sa.String(length=320), nullable=False, server_default="system"),
        sa.Column("description", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        _created_at(),
    )
    op.create_index("ix_booking_logs_booking_id", "booking_logs", ["booking_id"])
    op.create_index("ix_booking_logs_action", "booking_logs", ["action"])

    op.create_table(
        "vouchers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=False),
        sa.Column("remaining_balance", sa.Numeric(10, 2), nullable=False),
        sa.Column("payed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("client_id", sa.String(length=36), nullable=True),
        sa.Column("school_id", sa.String(length=36), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("payrexx_reference", sa.String(length=120), nullable=True),
        sa.Column("payrexx_transaction", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_vouchers_code", "vouchers", ["code"], unique=True)
    op.create_index("ix_vouchers_client_id", "vouchers", ["client_id"])
    op.create_index("ix_vouchers_school_id", "vouchers", ["school_id"])
    op.create_index("ix_vouchers_payrexx_reference", "vouchers", ["payrexx_reference"], unique=True)

    op.create_table(
        "vouchers_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("voucher_id", sa.String(length=36), sa.ForeignKey("vouchers.id"), nullable=False),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=True),
        _created_at(),
    )
    op.create_index("ix_vouchers_log_voucher_id", "vouchers_log", ["voucher_id"])
    op.create_index("ix_vouchers_log_booking_id", "vouchers_log", ["booking_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="paid"),
        sa.Column("notes", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("payrexx_reference", sa.String(length=120), nullable=True),
        sa.Column("payrexx_transaction", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_school_id", "payments", ["school_id"])
    op.create_index("ix_payments_payrexx_reference", "payments", ["payrexx_reference"])

    op.create_table(
        "email_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("to_email", sa.String(length=320), nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="queued"),
        sa.Column("related_reference", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_email_logs_to_email", "email_logs", ["to_email"])


def downgrade() -> None:
    for table in ("email_logs", "payments", "vouchers_log", "vouchers", "booking_logs",
                  "booking_users", "bookings", "users", "clients", "schools"):
        op.drop_table(table)
