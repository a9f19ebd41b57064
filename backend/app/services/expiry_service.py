"""
Periodic housekeeping run from the app lifespan.

  - Stale holds: PENDING bookings older than BOOKING_HOLD_MINUTES that are not
    parked for review and have no receipt awaiting review are cancelled and
    their seats released, unless their payment rail reports them paid.
  - Departure reminders: CONFIRMED bookings departing within
    DEPARTURE_REMINDER_HOURS get one `departure_reminder` notification.

Each booking is handled in its own transaction so one failure does not stall
the sweep.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import utcnow
from app.core.config import get_settings
from app.core.exceptions import PaymentGatewayError
from app.core.locks import KeyedLock
from app.core.logging import get_logger
from app.models.booking import Booking, BookingStatus
from app.models.payment_receipt import PaymentReceipt, ReceiptStatus
from app.models.trip import Trip
from app.services.booking_service import BookingOrchestrator
from app.services.cache_service import TripSnapshotCache
from app.services.notification_service import NotificationDispatcher, NotificationEvent, booking_payload
from app.services.payments.factory import PaymentAdapterFactory
from app.services.reconciliation_service import ReconciliationEngine, ReconciliationOutcome

logger = get_logger(__name__)


async def expire_stale_bookings(
    db: AsyncSession,
    locks: KeyedLock,
    cache: Optional[TripSnapshotCache] = None,
    now: Optional[datetime] = None,
    reconciliation: Optional[ReconciliationEngine] = None,
) -> int:
    """
    Cancel PENDING bookings whose hold has run out.

    A booking that already has a payment reference is polled on its rail
    first and only expired if the rail still reports it unpaid; without a
    reconciliation engine such bookings are left for a later pass.
    """
    settings = get_settings()
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.BOOKING_HOLD_MINUTES)

    pending_receipts = select(PaymentReceipt.booking_id).where(
        PaymentReceipt.status == ReceiptStatus.PENDING
    )
    result = await db.execute(
        select(Booking.booking_reference, Booking.payment_reference).where(
            Booking.status == BookingStatus.PENDING,
            Booking.needs_review.is_(False),
            Booking.created_at < cutoff,
            Booking.id.not_in(pending_receipts),
        )
    )
    stale = list(result.all())

    orchestrator = BookingOrchestrator(db, locks, cache=cache)
    expired = 0
    for booking_ref, payment_reference in stale:
        try:
            if payment_reference:
                if reconciliation is None:
                    logger.info("booking_expiry_unverified", booking_ref=booking_ref)
                    continue
                polled = await reconciliation.poll(payment_reference)
                if polled.outcome != ReconciliationOutcome.PENDING:
                    logger.info("booking_expiry_skipped", booking_ref=booking_ref, outcome=polled.outcome)
                    continue
            if await orchestrator.expire_booking(booking_ref):
                expired += 1
        except PaymentGatewayError as e:
            logger.warning("booking_expiry_deferred", booking_ref=booking_ref, error=e.message)
        except Exception as e:  # noqa: BLE001
            await db.rollback()
            logger.error("booking_expiry_failed", booking_ref=booking_ref, error=str(e))

    if expired:
        logger.info("stale_bookings_expired", count=expired)
    return expired


async def send_departure_reminders(
    db: AsyncSession,
    notifier: NotificationDispatcher,
    now: Optional[datetime] = None,
) -> int:
    settings = get_settings()
    now = now or utcnow()
    horizon = now + timedelta(hours=settings.DEPARTURE_REMINDER_HOURS)

    result = await db.execute(
        select(Booking)
        .join(Trip, Booking.trip_id == Trip.id)
        .where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.reminder_sent_at.is_(None),
            Trip.departure_time > now,
            Trip.departure_time <= horizon,
        )
    )
    sent = 0
    for booking in result.scalars().unique().all():
        claimed = await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.reminder_sent_at.is_(None))
            .values(reminder_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if claimed.rowcount != 1:
            continue
        await notifier.dispatch(NotificationEvent.DEPARTURE_REMINDER, booking_payload(booking, booking.trip))
        sent += 1

    if sent:
        logger.info("departure_reminders_sent", count=sent)
    return sent


async def run_sweep_once(
    session_factory: async_sessionmaker,
    locks: KeyedLock,
    notifier: NotificationDispatcher,
    cache: Optional[TripSnapshotCache] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> tuple[int, int]:
    async with session_factory() as db:
        reconciliation = None
        if http_client is not None:
            adapters = PaymentAdapterFactory(http_client, db)
            reconciliation = ReconciliationEngine(db, locks, adapters, notifier, cache=cache)
        expired = await expire_stale_bookings(db, locks, cache, reconciliation=reconciliation)
    async with session_factory() as db:
        reminded = await send_departure_reminders(db, notifier)
    return expired, reminded


async def sweep_forever(
    session_factory: async_sessionmaker,
    locks: KeyedLock,
    notifier: NotificationDispatcher,
    cache: Optional[TripSnapshotCache] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> None:
    interval = get_settings().EXPIRY_SWEEP_INTERVAL_SECONDS
    logger.info("expiry_sweep_started", interval_seconds=interval)
    while True:
        try:
            await run_sweep_once(session_factory, locks, notifier, cache, http_client)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001 - keep sweeping after a bad pass
            logger.error("expiry_sweep_failed", error=str(e))
        await asyncio.sleep(interval)
