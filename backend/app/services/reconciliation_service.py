"""
Reconciliation: folding gateway verification results into booking state.

Results arrive from three directions (client-driven verify polls, gateway
webhooks, admin receipt/review decisions), possibly many times and
concurrently for the same payment. Every path ends in `reconcile`, which:

  - takes the per-booking lock (single writer per booking in this process)
  - moves PENDING -> terminal with a compare-and-swap
        UPDATE bookings SET status = ... WHERE id = :id AND status = 'PENDING'
    so across processes exactly one delivery wins the transition
  - treats any delivery for an already-terminal booking as a logged no-op

The winner of a success transition redeems the booking's reserved loyalty
points, credits new points, issues the ticket and notifies the traveler.
The winner of a failure transition releases the seats.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.exceptions import PaymentVerificationMismatch, ValidationError, NotFoundError
from app.core.locks import KeyedLock
from app.core.logging import bind_booking_context, get_logger
from app.core.metrics import record_reconciliation, record_seats_released
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.services.cache_service import TripSnapshotCache
from app.services.inventory_service import TripInventory
from app.services.loyalty_service import LoyaltyLedger
from app.services.notification_service import NotificationDispatcher, NotificationEvent, booking_payload
from app.services.payments.base import VerificationResult, VerificationStatus, quantize_amount
from app.services.payments.factory import PaymentAdapterFactory
from app.services.ticket_service import TicketService

logger = get_logger(__name__)


class ReconciliationOutcome:
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    ALREADY_FINAL = "already_final"
    UNKNOWN_REFERENCE = "unknown_reference"


@dataclass
class ReconciliationResult:
    outcome: str
    payment_reference: str
    booking: Optional[Booking] = None
    message: str = ""


class ReconciliationEngine:
    def __init__(
        self,
        db: AsyncSession,
        locks: KeyedLock,
        adapters: PaymentAdapterFactory,
        notifier: NotificationDispatcher,
        cache: Optional[TripSnapshotCache] = None,
    ):
        self.db = db
        self.locks = locks
        self.adapters = adapters
        self.notifier = notifier
        self.cache = cache or TripSnapshotCache(None)
        self.inventory = TripInventory(db, locks)
        self.loyalty = LoyaltyLedger(db)
        self.tickets = TicketService(db)

    async def _load_by_payment_reference(self, payment_reference: str) -> Optional[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.payment_reference == payment_reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load_by_booking_reference(self, booking_ref: str) -> Booking:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.booking_reference == booking_ref)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError(f"Booking {booking_ref} not found")
        return booking

    def _finish(self, outcome: str, payment_reference: str, booking: Optional[Booking], message: str):
        record_reconciliation(outcome)
        return ReconciliationResult(outcome, payment_reference, booking, message)

    async def reconcile(self, payment_reference: str, result: VerificationResult) -> ReconciliationResult:
        bind_booking_context(payment_reference=payment_reference)
        booking = await self._load_by_payment_reference(payment_reference)
        if booking is None:
            logger.warning("reconcile_unknown_reference", payment_reference=payment_reference)
            return self._finish(
                ReconciliationOutcome.UNKNOWN_REFERENCE, payment_reference, None, "Unknown payment reference"
            )

        async with self.locks.hold(("booking", booking.id)):
            # Re-read under the lock; another delivery may have just finished
            booking = await self._load_by_payment_reference(payment_reference)
            if booking is None:
                # Payment was re-initialized while we waited; this reference is retired
                logger.warning("reconcile_reference_replaced", payment_reference=payment_reference)
                return self._finish(
                    ReconciliationOutcome.UNKNOWN_REFERENCE, payment_reference, None, "Unknown payment reference"
                )
            bind_booking_context(booking_ref=booking.booking_reference)
            try:
                outcome = await self._apply(booking, result)
            except Exception:
                await self.db.rollback()
                raise
        return outcome

    async def _apply(self, booking: Booking, result: VerificationResult) -> ReconciliationResult:
        reference = booking.payment_reference
        if booking.status in BookingStatus.TERMINAL:
            logger.info(
                "reconcile_already_final",
                booking_ref=booking.booking_reference,
                status=booking.status,
                verification=result.status,
            )
            return self._finish(
                ReconciliationOutcome.ALREADY_FINAL, reference, booking, f"Booking already {booking.status}"
            )

        booking.payment_gateway_status = result.gateway_status or result.status
        booking.payment_gateway_response = result.raw or None

        if booking.needs_review:
            # Parked bookings only move through resolve_review
            await self.db.commit()
            logger.info(
                "reconcile_held_for_review",
                booking_ref=booking.booking_reference,
                verification=result.status,
            )
            return self._finish(
                ReconciliationOutcome.UNDER_REVIEW, reference, booking, booking.review_reason or "Awaiting manual review"
            )

        if result.status == VerificationStatus.SUCCESS:
            try:
                self._check_amount(booking, result.amount_confirmed)
            except PaymentVerificationMismatch as e:
                return await self._flag_for_review(booking, e)
            return await self._confirm(booking)

        if result.status == VerificationStatus.FAILED:
            return await self._fail(booking, reason="payment_failed")

        await self.db.commit()
        logger.info("reconcile_pending", booking_ref=booking.booking_reference)
        return self._finish(ReconciliationOutcome.PENDING, reference, booking, "Payment is still pending")

    def _check_amount(self, booking: Booking, confirmed: Optional[Decimal]) -> None:
        expected = quantize_amount(booking.total_amount)
        if confirmed is None or quantize_amount(confirmed) != expected:
            raise PaymentVerificationMismatch(booking.booking_reference, expected, confirmed)

    async def _flag_for_review(self, booking: Booking, error: PaymentVerificationMismatch) -> ReconciliationResult:
        booking.needs_review = True
        booking.review_reason = (
            f"Amount mismatch: expected {error.expected}, gateway confirmed {error.confirmed}"
        )
        await self.db.commit()
        logger.warning(
            "payment_amount_mismatch",
            booking_ref=booking.booking_reference,
            expected=str(error.expected),
            confirmed=str(error.confirmed),
        )
        return self._finish(
            ReconciliationOutcome.UNDER_REVIEW, booking.payment_reference, booking, error.message
        )

    async def _confirm(self, booking: Booking) -> ReconciliationResult:
        now = utcnow()
        cas = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
            .values(
                status=BookingStatus.CONFIRMED,
                payment_status=PaymentStatus.COMPLETED,
                confirmed_at=now,
                needs_review=False,
                review_reason=None,
            )
            .execution_options(synchronize_session=False)
        )
        if cas.rowcount != 1:
            await self.db.rollback()
            await self.db.refresh(booking)
            logger.info("reconcile_lost_race", booking_ref=booking.booking_reference)
            return self._finish(
                ReconciliationOutcome.ALREADY_FINAL, booking.payment_reference, booking, "Booking already final"
            )

        booking.status = BookingStatus.CONFIRMED
        booking.payment_status = PaymentStatus.COMPLETED
        booking.confirmed_at = now
        booking.needs_review = False
        booking.review_reason = None

        trip = booking.trip
        await self.loyalty.redeem_for_booking(booking.user_id, booking.id, booking.loyalty_points_used)
        booking.loyalty_points_earned = await self.loyalty.credit(
            booking.user_id, booking.id, booking.total_amount
        )
        booking.ticket = self.tickets.issue(booking, trip)
        await self.db.commit()

        logger.info(
            "booking_confirmed",
            booking_ref=booking.booking_reference,
            points_earned=booking.loyalty_points_earned,
        )
        payload = booking_payload(booking, trip)
        await self.notifier.dispatch(NotificationEvent.BOOKING_CONFIRMED, payload)
        await self.notifier.dispatch(
            NotificationEvent.PAYMENT_RECEIVED,
            {**payload, "payment_reference": booking.payment_reference, "provider": booking.payment_provider},
        )
        return self._finish(
            ReconciliationOutcome.CONFIRMED, booking.payment_reference, booking, "Payment confirmed"
        )

    async def _fail(self, booking: Booking, reason: str) -> ReconciliationResult:
        now = utcnow()
        async with self.inventory.trip_lock(booking.trip_id):
            cas = await self.db.execute(
                update(Booking)
                .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
                .values(
                    status=BookingStatus.CANCELLED,
                    payment_status=PaymentStatus.FAILED,
                    cancelled_at=now,
                    needs_review=False,
                )
                .execution_options(synchronize_session=False)
            )
            if cas.rowcount != 1:
                await self.db.rollback()
                await self.db.refresh(booking)
                return self._finish(
                    ReconciliationOutcome.ALREADY_FINAL, booking.payment_reference, booking, "Booking already final"
                )

            booking.status = BookingStatus.CANCELLED
            booking.payment_status = PaymentStatus.FAILED
            booking.cancelled_at = now
            booking.needs_review = False
            released = await self.inventory.release(booking.trip_id, list(booking.seat_numbers), booking.id)
            await self.db.commit()

        record_seats_released(reason, released)
        await self.cache.invalidate_trips(booking.trip_id)
        logger.info("booking_payment_failed", booking_ref=booking.booking_reference, reason=reason, released=released)
        return self._finish(
            ReconciliationOutcome.CANCELLED, booking.payment_reference, booking, "Payment failed, booking cancelled"
        )

    async def poll(self, payment_reference: str) -> ReconciliationResult:
        """Ask the booking's rail for the payment's status and fold it in."""
        booking = await self._load_by_payment_reference(payment_reference)
        if booking is None:
            logger.warning("reconcile_unknown_reference", payment_reference=payment_reference)
            return self._finish(
                ReconciliationOutcome.UNKNOWN_REFERENCE, payment_reference, None, "Unknown payment reference"
            )
        if booking.status in BookingStatus.TERMINAL:
            return self._finish(
                ReconciliationOutcome.ALREADY_FINAL, payment_reference, booking, f"Booking already {booking.status}"
            )

        adapter = self.adapters.get(booking.payment_provider)
        result = await adapter.verify(payment_reference)
        return await self.reconcile(payment_reference, result)

    async def handle_webhook(self, provider: str, body: bytes, headers: Mapping[str, str]) -> ReconciliationResult:
        """
        Signature first, then re-verify with the gateway rather than trusting
        the delivery body, then the same reconcile path as a poll.
        """
        adapter = self.adapters.get(provider)
        reference = adapter.parse_webhook(body, headers)
        if not reference:
            logger.warning("webhook_missing_reference", provider=provider)
            return self._finish(ReconciliationOutcome.UNKNOWN_REFERENCE, "", None, "No payment reference")
        return await self.poll(reference)

    async def resolve_review(self, booking_ref: str, approve: bool, reviewer_id: int) -> ReconciliationResult:
        """Manual decision on a booking parked for an amount mismatch."""
        booking = await self._load_by_booking_reference(booking_ref)
        async with self.locks.hold(("booking", booking.id)):
            booking = await self._load_by_booking_reference(booking_ref)
            bind_booking_context(booking_ref=booking_ref, payment_reference=booking.payment_reference)
            if booking.status in BookingStatus.TERMINAL:
                return self._finish(
                    ReconciliationOutcome.ALREADY_FINAL,
                    booking.payment_reference or "",
                    booking,
                    f"Booking already {booking.status}",
                )
            if not booking.needs_review:
                raise ValidationError(f"Booking {booking_ref} is not awaiting review")

            logger.info("payment_review_resolved", booking_ref=booking_ref, approve=approve, reviewer_id=reviewer_id)
            try:
                if approve:
                    return await self._confirm(booking)
                return await self._fail(booking, reason="review_rejected")
            except Exception:
                await self.db.rollback()
                raise
