"""
Trip catalogue: creation and search.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ensure_utc, utcnow
from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.models.trip import Trip, default_seat_layout
from app.schemas.trip import TripCreate

logger = get_logger(__name__)


async def create_trip(db: AsyncSession, trip_data: TripCreate) -> Trip:
    """Create a trip with every seat available."""
    departure = ensure_utc(trip_data.departure_time)
    arrival = ensure_utc(trip_data.arrival_time) if trip_data.arrival_time else None
    if departure <= utcnow():
        raise ValidationError("Departure time must be in the future")
    if arrival and arrival <= departure:
        raise ValidationError("Arrival time must be after departure")

    layout = trip_data.seat_layout or default_seat_layout(trip_data.total_seats)
    if len(layout) != trip_data.total_seats or len(set(layout)) != len(layout):
        raise ValidationError("Seat layout must list total_seats distinct seat numbers")

    trip = Trip(
        origin=trip_data.origin.strip(),
        destination=trip_data.destination.strip(),
        departure_time=departure,
        arrival_time=arrival,
        price=trip_data.price,
        total_seats=trip_data.total_seats,
        seat_layout=layout,
        available_seats=trip_data.total_seats,
        bus_number=trip_data.bus_number,
        is_active=True,
    )
    db.add(trip)
    await db.flush()
    await db.refresh(trip)

    logger.info(
        "trip_created",
        trip_id=trip.id,
        origin=trip.origin,
        destination=trip.destination,
        seats=trip.total_seats,
    )
    return trip


async def get_trip(db: AsyncSession, trip_id: int) -> Trip:
    result = await db.execute(
        select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
    )
    trip = result.scalar_one_or_none()
    if not trip:
        raise NotFoundError(f"Trip {trip_id} not found")
    return trip


async def search_trips(
    db: AsyncSession,
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    travel_date: Optional[date] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Trip], int]:
    """
    Active, upcoming trips filtered by route and day.
    Uses ix_trips_route_departure for the route + departure filter.
    """
    query = select(Trip).where(Trip.is_active.is_(True), Trip.departure_time > utcnow())

    if origin:
        query = query.where(func.lower(Trip.origin) == origin.strip().lower())
    if destination:
        query = query.where(func.lower(Trip.destination) == destination.strip().lower())
    if travel_date:
        day_start = datetime.combine(travel_date, time.min, tzinfo=timezone.utc)
        query = query.where(
            Trip.departure_time >= day_start,
            Trip.departure_time < day_start + timedelta(days=1),
        )

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    trips_query = (
        query
        .order_by(Trip.departure_time.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(trips_query)
    return list(result.scalars().all()), total
