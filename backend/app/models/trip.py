"""
Trip model with seat inventory tracking.

Key design decisions:
- `seat_layout` is the ordered list of sellable seat identifiers
- `available_seats` is denormalized (avoids COUNT over seat_holds on every read)
- `version` column enables optimistic locking for concurrent reservation
- CHECK constraints keep 0 <= available_seats <= total_seats at the DB level
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


def default_seat_layout(total_seats: int) -> list[str]:
    return [str(n) for n in range(1, total_seats + 1)]


class Trip(Base, TimestampMixin):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    origin = Column(String(100), nullable=False)
    destination = Column(String(100), nullable=False)
    departure_time = Column(DateTime(timezone=True), nullable=False)
    arrival_time = Column(DateTime(timezone=True), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    total_seats = Column(Integer, nullable=False)
    seat_layout = Column(JSON, nullable=False)
    available_seats = Column(Integer, nullable=False)
    bus_number = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    holds = relationship("SeatHold", back_populates="trip", lazy="noload")
    bookings = relationship("Booking", back_populates="trip", lazy="noload")

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="check_trip_available_non_negative"),
        CheckConstraint("total_seats > 0", name="check_trip_total_positive"),
        CheckConstraint("available_seats <= total_seats", name="check_trip_available_lte_total"),
        CheckConstraint("price >= 0", name="check_trip_price_non_negative"),
        # Search pattern: route + departure window
        Index("ix_trips_route_departure", "origin", "destination", "departure_time"),
        Index("ix_trips_departure", "departure_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<Trip(id={self.id}, {self.origin}->{self.destination}, "
            f"available={self.available_seats}/{self.total_seats})>"
        )
