"""
A seat held by a PENDING or CONFIRMED booking.

Rows are deleted when the booking is released, so the unique constraint on
(trip_id, seat_number) means "no two active bookings share a seat".
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import relationship

from app.db.base import Base


class SeatHold(Base):
    __tablename__ = "seat_holds"

    id = Column(Integer, primary_key=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    seat_number = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    trip = relationship("Trip", back_populates="holds")

    __table_args__ = (
        UniqueConstraint("trip_id", "seat_number", name="uq_seat_hold_trip_seat"),
    )

    def __repr__(self) -> str:
        return f"<SeatHold(trip={self.trip_id}, seat={self.seat_number}, booking={self.booking_id})>"
