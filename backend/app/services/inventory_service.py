"""
Trip inventory: seat holds and the denormalized availability counter.

CONCURRENCY STRATEGY
====================

Three layers, from cheapest to strongest:

  1. Per-trip asyncio lock (`trip_lock`). Every writer of a trip's holds
     (booking creation, cancellation, payment failure, expiry) takes it, so
     within one process there is a single writer per trip and the
     "already held?" pre-check below is exact.

  2. Optimistic locking on trips.version for the counter:
       UPDATE trips SET available_seats = available_seats - :n, version = version + 1
       WHERE id = :trip_id AND version = :v AND available_seats >= :n
     rows_affected == 0 means another process touched the trip; re-read and
     retry up to MAX_RETRY_ATTEMPTS.

  3. UNIQUE (trip_id, seat_number) on seat_holds. Two processes racing for
     the same seat cannot both insert; the loser gets an IntegrityError,
     reported as SeatConflict.

Callers own the transaction. After a SeatConflict raised from the insert step
the session must be rolled back, which also undoes the counter decrement.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ensure_utc, utcnow
from app.core.config import get_settings
from app.core.exceptions import NotFoundError, SeatConflict, ValidationError
from app.core.locks import KeyedLock
from app.core.logging import get_logger
from app.core.metrics import seat_reserve_retries
from app.models.seat_hold import SeatHold
from app.models.trip import Trip

logger = get_logger(__name__)


class TripInventory:
    def __init__(self, db: AsyncSession, locks: KeyedLock):
        self.db = db
        self.locks = locks
        self.max_retry_attempts = get_settings().MAX_RETRY_ATTEMPTS

    @asynccontextmanager
    async def trip_lock(self, trip_id: int) -> AsyncIterator[None]:
        async with self.locks.hold(("trip", trip_id)):
            yield

    async def _load_trip(self, trip_id: int) -> Trip:
        result = await self.db.execute(
            select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
        )
        trip = result.scalar_one_or_none()
        if not trip:
            raise NotFoundError(f"Trip {trip_id} not found")
        return trip

    async def held_seat_numbers(self, trip_id: int) -> list[str]:
        result = await self.db.execute(
            select(SeatHold.seat_number).where(SeatHold.trip_id == trip_id)
        )
        return list(result.scalars().all())

    async def reserve(self, trip_id: int, seat_numbers: list[str], booking_id: int) -> Trip:
        """
        Hold `seat_numbers` on the trip for `booking_id`.
        Caller must hold trip_lock(trip_id) and own the transaction.
        """
        if not seat_numbers:
            raise ValidationError("At least one seat must be selected")
        if len(set(seat_numbers)) != len(seat_numbers):
            raise ValidationError("Duplicate seat numbers in request")

        trip = await self._load_trip(trip_id)
        if not trip.is_active:
            raise ValidationError(f"Trip {trip_id} is not open for booking")
        if ensure_utc(trip.departure_time) <= utcnow():
            raise ValidationError(f"Trip {trip_id} has already departed")

        unknown = [s for s in seat_numbers if s not in trip.seat_layout]
        if unknown:
            raise ValidationError(f"Seats not on this bus: {', '.join(unknown)}")

        held = set(await self.held_seat_numbers(trip_id))
        taken = [s for s in seat_numbers if s in held]
        if taken:
            logger.warning("seat_conflict", trip_id=trip_id, seats=taken, booking_id=booking_id)
            raise SeatConflict(trip_id, taken)

        count = len(seat_numbers)
        for attempt in range(1, self.max_retry_attempts + 1):
            if trip.available_seats < count:
                logger.warning(
                    "seat_conflict",
                    trip_id=trip_id,
                    requested=count,
                    available=trip.available_seats,
                    booking_id=booking_id,
                )
                raise SeatConflict(trip_id, seat_numbers)

            result = await self.db.execute(
                update(Trip)
                .where(
                    Trip.id == trip_id,
                    Trip.version == trip.version,
                    Trip.available_seats >= count,
                )
                .values(
                    available_seats=Trip.available_seats - count,
                    version=Trip.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                break

            # Another process changed the trip since we read it
            seat_reserve_retries.inc()
            logger.info(
                "seat_reserve_retry",
                trip_id=trip_id,
                attempt=attempt,
                reason="version_conflict",
            )
            trip = await self._load_trip(trip_id)
        else:
            raise SeatConflict(trip_id, seat_numbers)

        self.db.add_all(
            SeatHold(trip_id=trip_id, seat_number=seat, booking_id=booking_id)
            for seat in seat_numbers
        )
        try:
            await self.db.flush()
        except IntegrityError:
            logger.warning("seat_conflict", trip_id=trip_id, seats=seat_numbers, source="constraint")
            raise SeatConflict(trip_id, seat_numbers)

        trip = await self._load_trip(trip_id)
        logger.info(
            "seats_reserved",
            trip_id=trip_id,
            booking_id=booking_id,
            seats=seat_numbers,
            available=trip.available_seats,
        )
        return trip

    async def release(self, trip_id: int, seat_numbers: list[str], booking_id: int) -> int:
        """
        Return `booking_id`'s holds on `seat_numbers` to the trip.

        Idempotent: only holds owned by the booking are deleted and the counter
        moves by the number of rows actually deleted, so a second call is a no-op.
        Caller must hold trip_lock(trip_id) and own the transaction.
        """
        if not seat_numbers:
            return 0

        result = await self.db.execute(
            delete(SeatHold)
            .where(
                SeatHold.trip_id == trip_id,
                SeatHold.booking_id == booking_id,
                SeatHold.seat_number.in_(seat_numbers),
            )
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount or 0
        if released:
            await self.db.execute(
                update(Trip)
                .where(Trip.id == trip_id)
                .values(
                    available_seats=Trip.available_seats + released,
                    version=Trip.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
        logger.info("seats_released", trip_id=trip_id, booking_id=booking_id, released=released)
        return released

    async def snapshot(self, trip_id: int) -> dict:
        trip = await self._load_trip(trip_id)
        held = await self.held_seat_numbers(trip_id)
        held_set = set(held)
        return {
            "trip_id": trip.id,
            "total": trip.total_seats,
            "available": trip.available_seats,
            "held_seat_numbers": [s for s in trip.seat_layout if s in held_set],
            "available_seat_numbers": [s for s in trip.seat_layout if s not in held_set],
        }
