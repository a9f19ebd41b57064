"""
Trip endpoints: admin creation, cached search, live seat maps.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_inventory, get_trip_cache
from app.core.security import require_roles
from app.core.logging import get_logger
from app.db.session import get_db
from app.models.user import User, UserRole
from app.schemas.trip import SeatMapResponse, TripCreate, TripListResponse, TripResponse
from app.services.cache_service import TripSnapshotCache, make_trip_list_key
from app.services.inventory_service import TripInventory
from app.services.trip_service import create_trip, get_trip, search_trips

logger = get_logger(__name__)
router = APIRouter(prefix="/trips", tags=["Trips"])


@router.post("/", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip_endpoint(
    trip_data: TripCreate,
    admin: User = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
    cache: TripSnapshotCache = Depends(get_trip_cache),
):
    trip = await create_trip(db, trip_data)
    await db.commit()
    await cache.invalidate_trips(trip.id)
    return trip


@router.get("/", response_model=TripListResponse)
async def search_trips_endpoint(
    origin: Optional[str] = Query(None, max_length=100),
    destination: Optional[str] = Query(None, max_length=100),
    travel_date: Optional[date] = Query(None, alias="date"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    cache: TripSnapshotCache = Depends(get_trip_cache),
):
    """
    Search upcoming trips. Results are cached in Redis and invalidated
    whenever a reservation or release changes availability.
    """
    key = make_trip_list_key(origin, destination, travel_date.isoformat() if travel_date else None, page, page_size)
    cached = await cache.get(key)
    if cached:
        logger.info("trip_search_cache_hit", page=page)
        cached["cached"] = True
        return TripListResponse(**cached)

    trips, total = await search_trips(db, origin, destination, travel_date, page, page_size)
    response_data = {
        "trips": [TripResponse.model_validate(t).model_dump(mode="json") for t in trips],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await cache.set(key, response_data)
    return TripListResponse(**response_data)


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip_endpoint(trip_id: int, db: AsyncSession = Depends(get_db)):
    """Single trip with a live seat count. Not cached."""
    return await get_trip(db, trip_id)


@router.get("/{trip_id}/seats", response_model=SeatMapResponse)
async def seat_map_endpoint(trip_id: int, inventory: TripInventory = Depends(get_inventory)):
    return await inventory.snapshot(trip_id)
