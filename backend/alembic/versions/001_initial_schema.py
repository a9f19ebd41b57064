"""Initial schema: users, trips, seat holds, bookings, receipts, loyalty ledger.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'customer'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.CheckConstraint("loyalty_points >= 0", name="check_loyalty_points_non_negative"),
        sa.CheckConstraint("role IN ('customer', 'admin', 'driver')", name="check_user_role"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "trips",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("origin", sa.String(100), nullable=False),
        sa.Column("destination", sa.String(100), nullable=False),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("arrival_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_seats", sa.Integer(), nullable=False),
        sa.Column("seat_layout", sa.JSON(), nullable=False),
        sa.Column("available_seats", sa.Integer(), nullable=False),
        sa.Column("bus_number", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("available_seats >= 0", name="check_trip_available_non_negative"),
        sa.CheckConstraint("total_seats > 0", name="check_trip_total_positive"),
        sa.CheckConstraint("available_seats <= total_seats", name="check_trip_available_lte_total"),
        sa.CheckConstraint("price >= 0", name="check_trip_price_non_negative"),
    )
    op.create_index("ix_trips_id", "trips", ["id"])
    # Search is always route + departure window
    op.create_index("ix_trips_route_departure", "trips", ["origin", "destination", "departure_time"])
    op.create_index("ix_trips_departure", "trips", ["departure_time"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_reference", sa.String(20), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("passenger_name", sa.String(200), nullable=False),
        sa.Column("passenger_phone", sa.String(20), nullable=False),
        sa.Column("passenger_email", sa.String(255), nullable=True),
        sa.Column("seat_numbers", sa.JSON(), nullable=False),
        sa.Column("subtotal_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("loyalty_discount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_provider", sa.String(20), nullable=True),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("payment_gateway_status", sa.String(50), nullable=True),
        sa.Column("payment_gateway_response", sa.JSON(), nullable=True),
        sa.Column("loyalty_points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_points_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("ticket", sa.String(2000), nullable=True),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("review_reason", sa.String(500), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        sa.CheckConstraint("loyalty_points_used >= 0", name="check_booking_points_used_non_negative"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED', 'COMPLETED')", name="check_booking_status"
        ),
        sa.CheckConstraint(
            "payment_status IN ('PENDING', 'COMPLETED', 'FAILED')", name="check_booking_payment_status"
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_booking_reference", "bookings", ["booking_reference"], unique=True)
    op.create_index("ix_bookings_payment_reference", "bookings", ["payment_reference"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_trip_id", "bookings", ["trip_id"])
    # Expiry sweep: PENDING bookings by age
    op.create_index("ix_bookings_status_created", "bookings", ["status", "created_at"])

    op.create_table(
        "seat_holds",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("seat_number", sa.String(10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        # One active holder per seat per trip; the last line of defence against double sale
        sa.UniqueConstraint("trip_id", "seat_number", name="uq_seat_hold_trip_seat"),
    )
    op.create_index("ix_seat_holds_trip_id", "seat_holds", ["trip_id"])
    op.create_index("ix_seat_holds_booking_id", "seat_holds", ["booking_id"])

    op.create_table(
        "payment_receipts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False, unique=True),
        sa.Column("payment_reference", sa.String(100), nullable=False),
        sa.Column("file_path", sa.String(500), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(50), nullable=False),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("reviewed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.String(500), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="check_receipt_status"),
        sa.CheckConstraint("file_size > 0", name="check_receipt_size_positive"),
    )
    op.create_index("ix_payment_receipts_id", "payment_receipts", ["id"])
    op.create_index("ix_payment_receipts_payment_reference", "payment_receipts", ["payment_reference"])

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("points_change", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("booking_id", "transaction_type", name="uq_loyalty_booking_type"),
        sa.CheckConstraint(
            "transaction_type IN ('earned', 'redeemed', 'expired', 'bonus')",
            name="check_loyalty_transaction_type",
        ),
    )
    op.create_index("ix_loyalty_transactions_id", "loyalty_transactions", ["id"])
    op.create_index("ix_loyalty_transactions_user_id", "loyalty_transactions", ["user_id"])


def downgrade() -> None:
    op.drop_table("loyalty_transactions")
    op.drop_table("payment_receipts")
    op.drop_table("seat_holds")
    op.drop_table("bookings")
    op.drop_table("trips")
    op.drop_table("users")
