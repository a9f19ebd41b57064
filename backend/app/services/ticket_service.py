"""
Digital tickets and boarding verification.

A ticket is an HS256 token over {ref, bid, trip, seats}. It carries no
time-varying claims, so issuing twice for the same booking yields the same
payload and a scan's outcome depends only on (payload, now, trip schedule,
booking state).

Scan states:
  invalid         signature/claims do not check out, or booking never confirmed
  too_early       now < departure - BOARDING_WINDOW_MINUTES
  boarding        inside the window, up to departure + BOARDING_GRACE_MINUTES
  boarding_ended  past the grace period, or booking/trip cancelled or completed
"""

import io
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import qrcode
import qrcode.image.svg
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ensure_utc
from app.core.config import get_settings
from app.core.exceptions import TicketExpired, TicketInvalid, TicketScanError, TicketTooEarly
from app.core.logging import get_logger
from app.core.metrics import record_ticket_scan
from app.models.booking import Booking, BookingStatus
from app.models.trip import Trip

logger = get_logger(__name__)

TICKET_ALGORITHM = "HS256"


class BoardingState:
    INVALID = "invalid"
    TOO_EARLY = "too_early"
    BOARDING = "boarding"
    BOARDING_ENDED = "boarding_ended"


@dataclass
class TicketVerification:
    valid: bool
    state: str
    message: str
    booking_summary: Optional[dict[str, Any]] = None


def evaluate_boarding_window(
    departure: datetime,
    now: datetime,
    window_minutes: int,
    grace_minutes: int,
) -> str:
    departure = ensure_utc(departure)
    now = ensure_utc(now)
    if now < departure - timedelta(minutes=window_minutes):
        return BoardingState.TOO_EARLY
    if now <= departure + timedelta(minutes=grace_minutes):
        return BoardingState.BOARDING
    return BoardingState.BOARDING_ENDED


def render_qr_svg(payload: str) -> bytes:
    image = qrcode.make(payload, image_factory=qrcode.image.svg.SvgPathImage)
    buffer = io.BytesIO()
    image.save(buffer)
    return buffer.getvalue()


class TicketService:
    def __init__(self, db: AsyncSession):
        self.db = db
        settings = get_settings()
        self.secret = settings.TICKET_SIGNING_SECRET
        self.window_minutes = settings.BOARDING_WINDOW_MINUTES
        self.grace_minutes = settings.BOARDING_GRACE_MINUTES

    def issue(self, booking: Booking, trip: Trip) -> str:
        claims = {
            "ref": booking.booking_reference,
            "bid": booking.id,
            "trip": trip.id,
            "seats": list(booking.seat_numbers),
        }
        return jwt.encode(claims, self.secret, algorithm=TICKET_ALGORITHM)

    def _decode(self, payload: str) -> dict:
        try:
            claims = jwt.decode(payload, self.secret, algorithms=[TICKET_ALGORITHM])
        except JWTError:
            raise TicketInvalid("Ticket signature is not valid")
        if not all(key in claims for key in ("ref", "bid", "trip", "seats")):
            raise TicketInvalid("Ticket is missing required fields")
        return claims

    def evaluate(self, claims: dict, booking: Optional[Booking], trip: Optional[Trip], now: datetime) -> dict:
        """Pure scan decision. Raises a TicketScanError subclass unless boarding is allowed."""
        if booking is None or trip is None:
            raise TicketInvalid("Ticket does not match any booking")
        if (
            booking.id != claims["bid"]
            or trip.id != claims["trip"]
            or booking.trip_id != trip.id
            or list(booking.seat_numbers) != list(claims["seats"])
        ):
            raise TicketInvalid("Ticket does not match the booking on record")

        if booking.status == BookingStatus.CANCELLED:
            if booking.confirmed_at is None:
                raise TicketInvalid("Booking was never confirmed")
            raise TicketExpired("Booking has been cancelled")
        if booking.status == BookingStatus.PENDING:
            raise TicketInvalid("Booking is not confirmed")
        if booking.status == BookingStatus.COMPLETED:
            raise TicketExpired("Trip already completed for this booking")
        if not trip.is_active:
            raise TicketExpired("Trip has been cancelled")

        state = evaluate_boarding_window(trip.departure_time, now, self.window_minutes, self.grace_minutes)
        if state == BoardingState.TOO_EARLY:
            raise TicketTooEarly(f"Boarding opens {self.window_minutes} minutes before departure")
        if state == BoardingState.BOARDING_ENDED:
            raise TicketExpired("Boarding for this trip has ended")

        return {
            "booking_reference": booking.booking_reference,
            "passenger_name": booking.passenger_name,
            "seat_numbers": list(booking.seat_numbers),
            "origin": trip.origin,
            "destination": trip.destination,
            "departure_time": ensure_utc(trip.departure_time).isoformat(),
            "bus_number": trip.bus_number,
        }

    async def verify(self, payload: str, now: datetime) -> TicketVerification:
        try:
            claims = self._decode(payload)
            result = await self.db.execute(
                select(Booking)
                .where(Booking.booking_reference == claims["ref"])
                .execution_options(populate_existing=True)
            )
            booking = result.scalar_one_or_none()
            trip = booking.trip if booking is not None else None
            summary = self.evaluate(claims, booking, trip, now)
        except TicketScanError as e:
            record_ticket_scan(e.state)
            logger.info("ticket_scanned", state=e.state, reason=e.message)
            return TicketVerification(valid=False, state=e.state, message=e.message)

        record_ticket_scan(BoardingState.BOARDING)
        logger.info("ticket_scanned", state=BoardingState.BOARDING, booking_ref=summary["booking_reference"])
        return TicketVerification(
            valid=True,
            state=BoardingState.BOARDING,
            message="Ticket valid, passenger may board",
            booking_summary=summary,
        )
