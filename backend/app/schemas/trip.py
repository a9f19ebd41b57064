"""
Pydantic schemas for trip search and seat inventory.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class TripCreate(BaseModel):
    origin: str = Field(..., min_length=1, max_length=100)
    destination: str = Field(..., min_length=1, max_length=100)
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    total_seats: int = Field(..., gt=0, le=100)
    seat_layout: Optional[list[str]] = None
    bus_number: Optional[str] = Field(None, max_length=50)


class TripResponse(BaseModel):
    id: int
    origin: str
    destination: str
    departure_time: datetime
    arrival_time: Optional[datetime]
    price: Decimal
    total_seats: int
    available_seats: int
    bus_number: Optional[str]
    is_active: bool

    model_config = {"from_attributes": True}


class TripListResponse(BaseModel):
    trips: list[TripResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class SeatMapResponse(BaseModel):
    trip_id: int
    total: int
    available: int
    held_seat_numbers: list[str]
    available_seat_numbers: list[str]
