"""
Booking orchestration: from seat selection to a payable booking.

CONCURRENCY STRATEGY
====================

Problem:
  Two travelers pick the same seat on the same trip at the same moment.
  Both see it free, both pay, one bus seat is sold twice.

Solution:
  Creation runs entirely inside the per-trip lock:

    1. INSERT the booking (PENDING) and flush to get its id
    2. TripInventory.reserve: insert seat holds (unique per trip+seat) and
       decrement trips.available_seats with a versioned compare-and-swap
    3. COMMIT

  Any failure after step 2 rolls the transaction back, which is the
  compensating release: the holds and the counter change vanish with the
  booking row. A SeatConflict is surfaced to the traveler as "seats no longer
  available"; we never silently substitute other seats.

  State changes on an existing booking (cancel, expire) take the per-booking
  lock first and the trip lock second, the same order the reconciliation
  engine uses, and move status with
    UPDATE bookings ... WHERE id = :id AND status = 'PENDING'
  so a cancel racing a payment confirmation has exactly one winner.
"""

import re
import secrets
import string
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import get_settings
from app.core.exceptions import (
    BookingEngineError,
    InsufficientLoyaltyPoints,
    NotFoundError,
    PermissionDeniedError,
    SeatConflict,
    ValidationError,
)
from app.core.locks import KeyedLock
from app.core.logging import bind_booking_context, get_logger
from app.core.metrics import (
    booking_latency,
    payment_initializations,
    record_booking_attempt,
    record_seats_released,
)
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.payment_receipt import PaymentReceipt, ReceiptStatus
from app.models.trip import Trip
from app.models.user import User, UserRole
from app.schemas.booking import PassengerDetails
from app.services.cache_service import TripSnapshotCache
from app.services.inventory_service import TripInventory
from app.services.loyalty_service import LoyaltyLedger
from app.services.payments.base import Payer, PaymentInitialization, quantize_amount
from app.services.payments.factory import PaymentAdapterFactory
from app.services.ticket_service import TicketService

logger = get_logger(__name__)

PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")
REFERENCE_ALPHABET = string.digits + string.ascii_uppercase
MAX_REFERENCE_ATTEMPTS = 10


def validate_passenger(passenger: PassengerDetails) -> PassengerDetails:
    name = (passenger.name or "").strip()
    if not name:
        raise ValidationError("Passenger name is required")
    phone = re.sub(r"[\s-]", "", passenger.phone or "")
    if not PHONE_PATTERN.match(phone):
        raise ValidationError("Passenger phone must be 7-15 digits with an optional leading +")
    email = (passenger.email or "").strip() or None
    return PassengerDetails(name=name, phone=phone, email=email)


class BookingOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        locks: KeyedLock,
        adapters: Optional[PaymentAdapterFactory] = None,
        cache: Optional[TripSnapshotCache] = None,
    ):
        self.db = db
        self.locks = locks
        self.adapters = adapters
        self.cache = cache or TripSnapshotCache(None)
        self.inventory = TripInventory(db, locks)
        self.loyalty = LoyaltyLedger(db)
        self.settings = get_settings()

    async def _generate_reference(self) -> str:
        prefix = self.settings.BOOKING_REFERENCE_PREFIX
        for _ in range(MAX_REFERENCE_ATTEMPTS):
            stamp = str(int(time.time() * 1000))[-6:]
            suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(4))
            reference = f"{prefix}{stamp}{suffix}"
            exists = await self.db.execute(
                select(Booking.id).where(Booking.booking_reference == reference)
            )
            if exists.first() is None:
                return reference
        raise BookingEngineError("Could not generate a unique booking reference")

    async def _get_trip(self, trip_id: int) -> Trip:
        trip = await self.db.get(Trip, trip_id)
        if not trip:
            raise NotFoundError(f"Trip {trip_id} not found")
        return trip

    async def _load(self, booking_ref: str) -> Booking:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.booking_reference == booking_ref)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError(f"Booking {booking_ref} not found")
        return booking

    @staticmethod
    def _check_access(booking: Booking, actor: User) -> None:
        if actor.role != UserRole.ADMIN and booking.user_id != actor.id:
            raise PermissionDeniedError("You do not have access to this booking")

    async def create_booking(
        self,
        user: User,
        trip_id: int,
        passenger: PassengerDetails,
        seat_numbers: list[str],
        loyalty_points_to_use: int = 0,
    ) -> Booking:
        """
        Reserve seats and create a PENDING booking.
        Loyalty points are checked against the balance not already held by other
        PENDING bookings; they are spent when payment is confirmed.
        """
        user_id = user.id
        user_email = user.email
        with booking_latency.time():
            try:
                passenger = validate_passenger(passenger)
                if not seat_numbers:
                    raise ValidationError("At least one seat must be selected")
                if len(seat_numbers) > self.settings.MAX_SEATS_PER_BOOKING:
                    raise ValidationError(
                        f"At most {self.settings.MAX_SEATS_PER_BOOKING} seats per booking"
                    )
                if loyalty_points_to_use < 0:
                    raise ValidationError("Loyalty points to use cannot be negative")

                trip = await self._get_trip(trip_id)
                subtotal = quantize_amount(Decimal(trip.price) * len(seat_numbers))

                discount = Decimal("0.00")
                if loyalty_points_to_use > 0:
                    spendable = await self.loyalty.spendable(user_id)
                    if spendable < loyalty_points_to_use:
                        raise InsufficientLoyaltyPoints(loyalty_points_to_use, spendable)
                    discount = self.loyalty.discount_for(loyalty_points_to_use)
                    if discount >= subtotal:
                        raise ValidationError("Loyalty discount must be less than the booking amount")

                reference = await self._generate_reference()
            except BookingEngineError:
                record_booking_attempt("invalid")
                raise

            bind_booking_context(booking_ref=reference)
            async with self.inventory.trip_lock(trip_id):
                try:
                    booking = Booking(
                        booking_reference=reference,
                        user_id=user_id,
                        trip_id=trip_id,
                        passenger_name=passenger.name,
                        passenger_phone=passenger.phone,
                        passenger_email=passenger.email or user_email,
                        seat_numbers=list(seat_numbers),
                        subtotal_amount=subtotal,
                        loyalty_discount=discount,
                        total_amount=subtotal - discount,
                        status=BookingStatus.PENDING,
                        payment_status=PaymentStatus.PENDING,
                        loyalty_points_used=loyalty_points_to_use,
                    )
                    booking.trip = trip
                    self.db.add(booking)
                    await self.db.flush()

                    await self.inventory.reserve(trip_id, list(seat_numbers), booking.id)
                    await self.db.commit()
                    await self.db.refresh(booking)
                except SeatConflict:
                    await self.db.rollback()
                    record_booking_attempt("conflict")
                    raise
                except BookingEngineError:
                    await self.db.rollback()
                    record_booking_attempt("invalid")
                    raise
                except Exception as e:
                    await self.db.rollback()
                    record_booking_attempt("error")
                    logger.error("booking_compensated", trip_id=trip_id, seats=seat_numbers, error=str(e))
                    raise

        await self.cache.invalidate_trips(trip_id)
        record_booking_attempt("success")
        logger.info(
            "booking_created",
            booking_ref=reference,
            user_id=user_id,
            trip_id=trip_id,
            seats=seat_numbers,
            total=str(booking.total_amount),
        )
        return booking

    async def start_payment(self, booking_ref: str, provider: str, actor: User) -> tuple[Booking, PaymentInitialization]:
        if self.adapters is None:
            raise BookingEngineError("Payment rails are not configured")
        actor_email = actor.email
        booking = await self._load(booking_ref)
        self._check_access(booking, actor)
        provider = getattr(provider, "value", provider)
        bind_booking_context(booking_ref=booking_ref)

        async with self.locks.hold(("booking", booking.id)):
            booking = await self._load(booking_ref)
            if booking.status != BookingStatus.PENDING:
                raise ValidationError(f"Booking is {booking.status}; payment can only start on PENDING bookings")
            if booking.needs_review:
                raise ValidationError("Booking payment is under review")

            receipt = await self.db.execute(
                select(PaymentReceipt.id).where(
                    PaymentReceipt.booking_id == booking.id,
                    PaymentReceipt.status == ReceiptStatus.PENDING,
                )
            )
            if receipt.first() is not None:
                raise ValidationError("A bank transfer receipt for this booking is awaiting review")

            adapter = self.adapters.get(provider)
            payer = Payer(
                email=booking.passenger_email or actor_email,
                name=booking.passenger_name,
                phone=booking.passenger_phone,
            )
            init = await adapter.initialize(booking.booking_reference, booking.total_amount, payer)

            previous = booking.payment_reference
            booking.payment_provider = adapter.provider
            booking.payment_reference = init.provider_reference
            booking.payment_gateway_status = "initialized"
            booking.payment_gateway_response = init.raw or None
            booking.payment_status = PaymentStatus.PENDING
            await self.db.commit()

        payment_initializations.labels(provider=adapter.provider).inc()
        bind_booking_context(payment_reference=init.provider_reference)
        logger.info(
            "payment_initialized",
            booking_ref=booking_ref,
            provider=adapter.provider,
            payment_reference=init.provider_reference,
            replaced=previous,
        )
        return booking, init

    async def _cancel_pending(self, booking: Booking, reason: str) -> bool:
        """PENDING -> CANCELLED with seats released. False if the booking already left PENDING."""
        now = utcnow()
        async with self.inventory.trip_lock(booking.trip_id):
            try:
                cas = await self.db.execute(
                    update(Booking)
                    .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
                    .values(
                        status=BookingStatus.CANCELLED,
                        payment_status=PaymentStatus.FAILED,
                        cancelled_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if cas.rowcount != 1:
                    await self.db.rollback()
                    await self.db.refresh(booking)
                    return False

                booking.status = BookingStatus.CANCELLED
                booking.payment_status = PaymentStatus.FAILED
                booking.cancelled_at = now
                released = await self.inventory.release(
                    booking.trip_id, list(booking.seat_numbers), booking.id
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        record_seats_released(reason, released)
        await self.cache.invalidate_trips(booking.trip_id)
        logger.info("booking_cancelled", booking_ref=booking.booking_reference, reason=reason, released=released)
        return True

    async def cancel_booking(self, booking_ref: str, actor: User) -> Booking:
        booking = await self._load(booking_ref)
        self._check_access(booking, actor)
        bind_booking_context(booking_ref=booking_ref)

        async with self.locks.hold(("booking", booking.id)):
            booking = await self._load(booking_ref)
            if booking.status == BookingStatus.CANCELLED:
                logger.info("booking_cancel_noop", booking_ref=booking_ref)
                return booking
            if booking.status != BookingStatus.PENDING:
                raise ValidationError(f"Booking is {booking.status} and cannot be cancelled")
            await self._cancel_pending(booking, reason="cancelled")
        return booking

    async def expire_booking(self, booking_ref: str) -> bool:
        """Used by the hold-expiry sweep."""
        booking = await self._load(booking_ref)
        async with self.locks.hold(("booking", booking.id)):
            booking = await self._load(booking_ref)
            if booking.status != BookingStatus.PENDING or booking.needs_review:
                return False
            return await self._cancel_pending(booking, reason="expired")

    async def complete_booking(self, booking_ref: str) -> Booking:
        """Administrative override: CONFIRMED -> COMPLETED."""
        booking = await self._load(booking_ref)
        async with self.locks.hold(("booking", booking.id)):
            booking = await self._load(booking_ref)
            if booking.status == BookingStatus.COMPLETED:
                return booking
            if booking.status != BookingStatus.CONFIRMED:
                raise ValidationError(f"Only CONFIRMED bookings can be completed (is {booking.status})")

            cas = await self.db.execute(
                update(Booking)
                .where(Booking.id == booking.id, Booking.status == BookingStatus.CONFIRMED)
                .values(status=BookingStatus.COMPLETED)
                .execution_options(synchronize_session=False)
            )
            if cas.rowcount == 1:
                booking.status = BookingStatus.COMPLETED
            await self.db.commit()
            await self.db.refresh(booking)

        logger.info("booking_completed", booking_ref=booking_ref)
        return booking

    async def get_booking(self, booking_ref: str, actor: User) -> Booking:
        booking = await self._load(booking_ref)
        self._check_access(booking, actor)
        return booking

    async def list_user_bookings(self, user_id: int) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
        )
        return list(result.scalars().unique().all())

    async def get_ticket(self, booking_ref: str, actor: User) -> str:
        booking = await self.get_booking(booking_ref, actor)
        if booking.status not in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
            raise ValidationError("Tickets are only available for confirmed bookings")
        if not booking.ticket:
            booking.ticket = TicketService(self.db).issue(booking, booking.trip)
            await self.db.commit()
        return booking.ticket
