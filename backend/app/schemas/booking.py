"""
Pydantic schemas for booking-related request/response validation.

Seat count and passenger rules are enforced by the booking service so they
surface as domain validation errors rather than schema errors.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class PassengerDetails(BaseModel):
    name: str = Field(..., max_length=200)
    phone: str = Field(..., max_length=20)
    email: Optional[str] = Field(None, max_length=255)


class BookingCreate(BaseModel):
    trip_id: int
    passenger: PassengerDetails
    seat_numbers: list[str]
    loyalty_points_to_use: int = 0


class BookingResponse(BaseModel):
    id: int
    booking_reference: str
    trip_id: int
    user_id: int
    passenger_name: str
    passenger_phone: str
    passenger_email: Optional[str]
    seat_numbers: list[str]
    subtotal_amount: Decimal
    loyalty_discount: Decimal
    total_amount: Decimal
    status: str
    payment_status: str
    payment_provider: Optional[str]
    payment_reference: Optional[str]
    loyalty_points_earned: int
    loyalty_points_used: int
    needs_review: bool
    review_reason: Optional[str]
    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    message: str
    booking_reference: str
    status: str
    payment_status: str


def booking_response(booking, now: datetime) -> BookingResponse:
    """Serialize a booking, reporting departed CONFIRMED bookings as COMPLETED."""
    response = BookingResponse.model_validate(booking)
    response.status = booking.effective_status(now)
    return response
