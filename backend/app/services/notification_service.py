"""
Outbound traveler notifications.

The dispatcher is the single seam through which booking lifecycle events
leave the engine. The default implementation emits a structured log event;
an SMS or e-mail sender plugs in by subclassing and overriding `send`.
Delivery failures are logged and never abort the booking transition that
triggered them.
"""

from collections import deque
from typing import Any

from app.core.logging import get_logger

logger = get_logger(__name__)


class NotificationEvent:
    BOOKING_CONFIRMED = "booking_confirmed"
    PAYMENT_RECEIVED = "payment_received"
    DEPARTURE_REMINDER = "departure_reminder"


class NotificationDispatcher:
    def __init__(self):
        self.recent: deque[tuple[str, dict[str, Any]]] = deque(maxlen=500)

    async def send(self, event: str, data: dict[str, Any]) -> None:
        logger.info("notification_sent", notification=event, **data)

    async def dispatch(self, event: str, data: dict[str, Any]) -> bool:
        try:
            await self.send(event, data)
        except Exception as e:  # noqa: BLE001 - delivery is best effort
            logger.error("notification_failed", notification=event, error=str(e))
            return False
        self.recent.append((event, data))
        return True


def booking_payload(booking, trip) -> dict[str, Any]:
    return {
        "booking_ref": booking.booking_reference,
        "passenger_name": booking.passenger_name,
        "passenger_phone": booking.passenger_phone,
        "passenger_email": booking.passenger_email,
        "origin": trip.origin,
        "destination": trip.destination,
        "departure_time": trip.departure_time.isoformat(),
        "seat_numbers": list(booking.seat_numbers),
        "total_amount": str(booking.total_amount),
    }
