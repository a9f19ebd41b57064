"""
Booking model: a traveler's claim on seats of one trip plus its payment attempt.

Key design decisions:
- Never deleted; cancellation is a status so the audit trail survives
- `booking_reference` is the human-facing handle, `payment_reference` the rail-facing one
- The current payment attempt lives in payment_* columns; re-initialising replaces it
- `needs_review` parks a booking whose gateway amount disagreed with the total
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from app.core.clock import ensure_utc
from app.db.base import Base, TimestampMixin


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"

    TERMINAL = (CONFIRMED, CANCELLED, COMPLETED)


class PaymentStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_reference = Column(String(20), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)

    passenger_name = Column(String(200), nullable=False)
    passenger_phone = Column(String(20), nullable=False)
    passenger_email = Column(String(255), nullable=True)
    seat_numbers = Column(JSON, nullable=False)

    subtotal_amount = Column(Numeric(12, 2), nullable=False)
    loyalty_discount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)

    # Current payment attempt
    payment_provider = Column(String(20), nullable=True)
    payment_reference = Column(String(100), unique=True, nullable=True, index=True)
    payment_gateway_status = Column(String(50), nullable=True)
    payment_gateway_response = Column(JSON, nullable=True)

    loyalty_points_earned = Column(Integer, nullable=False, default=0)
    loyalty_points_used = Column(Integer, nullable=False, default=0)

    ticket = Column(String(2000), nullable=True)

    needs_review = Column(Boolean, nullable=False, default=False)
    review_reason = Column(String(500), nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="bookings")
    trip = relationship("Trip", back_populates="bookings", lazy="joined")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        CheckConstraint("loyalty_points_used >= 0", name="check_booking_points_used_non_negative"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED', 'COMPLETED')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "payment_status IN ('PENDING', 'COMPLETED', 'FAILED')",
            name="check_booking_payment_status",
        ),
        # Expiry sweep scans PENDING bookings by age
        Index("ix_bookings_status_created", "status", "created_at"),
    )

    def effective_status(self, now: datetime) -> str:
        """CONFIRMED bookings whose trip has departed are reported as COMPLETED."""
        if self.status == BookingStatus.CONFIRMED and self.trip is not None:
            if ensure_utc(self.trip.departure_time) <= now:
                return BookingStatus.COMPLETED
        return self.status

    def __repr__(self) -> str:
        return f"<Booking(ref={self.booking_reference}, trip={self.trip_id}, status={self.status})>"
