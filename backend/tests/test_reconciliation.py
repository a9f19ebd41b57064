"""
Tests for payment reconciliation: polls, webhooks, duplicates and races.
"""

import asyncio
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select, update

from app.core.exceptions import PaymentGatewayError, ValidationError, WebhookSignatureError
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.loyalty import LoyaltyTransaction
from app.models.seat_hold import SeatHold
from app.models.trip import Trip
from app.models.user import User
from app.services.booking_service import BookingOrchestrator
from app.services.notification_service import NotificationDispatcher, NotificationEvent
from app.services.payments.base import VerificationResult, VerificationStatus
from app.services.payments.factory import PaymentAdapterFactory
from app.services.reconciliation_service import ReconciliationEngine, ReconciliationOutcome

from conftest import opay_webhook, paystack_webhook


@pytest.fixture
def notifier() -> NotificationDispatcher:
    return NotificationDispatcher()


@pytest.fixture
def engine(db_session, locks, adapters, notifier) -> ReconciliationEngine:
    return ReconciliationEngine(db_session, locks, adapters, notifier)


async def _reload(db, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_successful_poll_confirms_booking(engine, gateway, make_booking, test_user, test_trip, notifier, db_session):
    booking = await make_booking(test_user, test_trip, ["1", "2"], provider="paystack")
    gateway.settle_paystack(booking.payment_reference, amount_kobo=1_000_000)

    result = await engine.poll(booking.payment_reference)

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    confirmed = await _reload(db_session, booking.id)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment_status == PaymentStatus.COMPLETED
    assert confirmed.confirmed_at is not None
    assert confirmed.ticket
    assert confirmed.loyalty_points_earned == 100
    assert confirmed.payment_gateway_status == "success"

    events = [event for event, _ in notifier.recent]
    assert events == [NotificationEvent.BOOKING_CONFIRMED, NotificationEvent.PAYMENT_RECEIVED]


@pytest.mark.asyncio
async def test_unpaid_poll_stays_pending(engine, make_booking, test_user, test_trip, db_session):
    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack")

    result = await engine.poll(booking.payment_reference)

    assert result.outcome == ReconciliationOutcome.PENDING
    assert (await _reload(db_session, booking.id)).status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_amount_mismatch_goes_to_review(engine, gateway, make_booking, test_user, test_trip, db_session):
    """A gateway that confirms less than the total never confirms the booking."""
    booking = await make_booking(test_user, test_trip, ["1", "2"], provider="paystack")
    gateway.settle_paystack(booking.payment_reference, amount_kobo=500_000)

    result = await engine.poll(booking.payment_reference)

    assert result.outcome == ReconciliationOutcome.UNDER_REVIEW
    parked = await _reload(db_session, booking.id)
    assert parked.status == BookingStatus.PENDING
    assert parked.needs_review is True
    assert "5000.00" in parked.review_reason
    assert parked.ticket is None

    holds = (await db_session.execute(select(SeatHold).where(SeatHold.booking_id == booking.id))).scalars().all()
    assert len(holds) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("later_status, later_kobo", [("reversed", 1_000_000), ("success", 1_000_000)])
async def test_parked_booking_ignores_later_deliveries(
    engine, gateway, make_booking, test_user, test_trip, db_session, later_status, later_kobo
):
    """Once parked for review, only an admin decision moves the booking."""
    trip_id = test_trip.id
    booking = await make_booking(test_user, test_trip, ["1", "2"], provider="paystack")
    booking_id = booking.id
    reference = booking.payment_reference
    gateway.settle_paystack(reference, amount_kobo=800_000)
    assert (await engine.poll(reference)).outcome == ReconciliationOutcome.UNDER_REVIEW

    gateway.settle_paystack(reference, status=later_status, amount_kobo=later_kobo)
    result = await engine.poll(reference)

    assert result.outcome == ReconciliationOutcome.UNDER_REVIEW
    parked = await _reload(db_session, booking_id)
    assert parked.status == BookingStatus.PENDING
    assert parked.needs_review is True
    assert parked.payment_gateway_status == later_status
    assert parked.ticket is None
    holds = (await db_session.execute(select(SeatHold).where(SeatHold.booking_id == booking_id))).scalars().all()
    assert len(holds) == 2
    trip = (await db_session.execute(
        select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
    )).scalar_one()
    assert trip.available_seats == 10


@pytest.mark.asyncio
async def test_failed_payment_releases_seats(engine, gateway, make_booking, test_user, test_trip, db_session):
    trip_id = test_trip.id
    booking = await make_booking(test_user, test_trip, ["3", "4"], provider="paystack")
    gateway.settle_paystack(booking.payment_reference, status="abandoned")

    result = await engine.poll(booking.payment_reference)

    assert result.outcome == ReconciliationOutcome.CANCELLED
    cancelled = await _reload(db_session, booking.id)
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.FAILED
    trip = (await db_session.execute(
        select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
    )).scalar_one()
    assert trip.available_seats == 12


@pytest.mark.asyncio
async def test_duplicate_delivery_is_noop(engine, gateway, make_booking, test_user, test_trip, db_session):
    """The same success delivered twice confirms once and credits points once."""
    user_id = test_user.id
    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack")
    gateway.settle_paystack(booking.payment_reference, amount_kobo=500_000)

    first = await engine.poll(booking.payment_reference)
    second = await engine.poll(booking.payment_reference)

    assert first.outcome == ReconciliationOutcome.CONFIRMED
    assert second.outcome == ReconciliationOutcome.ALREADY_FINAL

    user = (await db_session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )).scalar_one()
    assert user.loyalty_points == 50
    ledger = (await db_session.execute(
        select(LoyaltyTransaction).where(LoyaltyTransaction.user_id == user_id)
    )).scalars().all()
    assert len(ledger) == 1


@pytest.mark.asyncio
async def test_late_failure_after_confirmation_is_ignored(engine, gateway, make_booking, test_user, test_trip, db_session):
    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack")
    gateway.settle_paystack(booking.payment_reference, amount_kobo=500_000)
    await engine.poll(booking.payment_reference)

    result = await engine.reconcile(
        booking.payment_reference, VerificationResult(status=VerificationStatus.FAILED, gateway_status="reversed")
    )

    assert result.outcome == ReconciliationOutcome.ALREADY_FINAL
    assert (await _reload(db_session, booking.id)).status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_concurrent_deliveries_transition_once(
    session_factory, locks, http_client, gateway, make_booking, test_user, test_trip
):
    """Webhook and several polls race on separate sessions; one wins, loyalty is credited once."""
    user_id = test_user.id
    booking = await make_booking(test_user, test_trip, ["5", "6"], provider="paystack")
    reference = booking.payment_reference
    gateway.settle_paystack(reference, amount_kobo=1_000_000)
    notifier = NotificationDispatcher()

    async def deliver(via_webhook: bool):
        async with session_factory() as db:
            engine = ReconciliationEngine(db, locks, PaymentAdapterFactory(http_client, db), notifier)
            if via_webhook:
                body, headers = paystack_webhook(reference)
                result = await engine.handle_webhook("paystack", body, headers)
            else:
                result = await engine.poll(reference)
            return result.outcome

    outcomes = await asyncio.gather(*(deliver(i % 2 == 0) for i in range(6)))

    assert outcomes.count(ReconciliationOutcome.CONFIRMED) == 1
    assert set(outcomes) <= {ReconciliationOutcome.CONFIRMED, ReconciliationOutcome.ALREADY_FINAL}

    async with session_factory() as db:
        user = await db.get(User, user_id)
        assert user.loyalty_points == 100
        entries = (await db.execute(
            select(LoyaltyTransaction).where(LoyaltyTransaction.user_id == user_id)
        )).scalars().all()
        assert [e.points_change for e in entries] == [100]
    assert len([e for e, _ in notifier.recent if e == NotificationEvent.BOOKING_CONFIRMED]) == 1


@pytest.mark.asyncio
async def test_paystack_webhook_reverifies_with_gateway(engine, gateway, make_booking, test_user, test_trip):
    """The delivery body says success but the gateway does not; the booking stays pending."""
    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack")
    body, headers = paystack_webhook(booking.payment_reference)

    result = await engine.handle_webhook("paystack", body, headers)

    assert result.outcome == ReconciliationOutcome.PENDING
    assert gateway.calls(f"/transaction/verify/{booking.payment_reference}") == 1


@pytest.mark.asyncio
async def test_webhook_bad_signature_rejected(engine, make_booking, test_user, test_trip, db_session):
    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack")
    body, _ = paystack_webhook(booking.payment_reference)

    with pytest.raises(WebhookSignatureError):
        await engine.handle_webhook("paystack", body, {"x-paystack-signature": "0" * 128})
    assert (await _reload(db_session, booking.id)).status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_opay_webhook_confirms(engine, gateway, make_booking, test_user, test_trip, db_session):
    booking = await make_booking(test_user, test_trip, ["2"], provider="opay")
    gateway.settle_opay(booking.payment_reference)
    body, headers = opay_webhook(booking.payment_reference)

    result = await engine.handle_webhook("opay", body, headers)

    assert result.outcome == ReconciliationOutcome.CONFIRMED
    assert (await _reload(db_session, booking.id)).payment_provider == "opay"


@pytest.mark.asyncio
async def test_unknown_reference(engine):
    result = await engine.reconcile("SAH_PST_0_NOPE", VerificationResult(status=VerificationStatus.SUCCESS))
    assert result.outcome == ReconciliationOutcome.UNKNOWN_REFERENCE
    assert result.booking is None


@pytest.mark.asyncio
async def test_gateway_timeout_leaves_booking_pending(engine, gateway, make_booking, test_user, test_trip, db_session):
    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack")
    gateway.fail_with = httpx.ReadTimeout

    with pytest.raises(PaymentGatewayError) as exc_info:
        await engine.poll(booking.payment_reference)
    assert exc_info.value.retryable is True
    assert (await _reload(db_session, booking.id)).status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_reinitialize_replaces_payment_reference(
    engine, make_booking, test_user, test_trip, locks, adapters, db_session
):
    """Only the current attempt's reference reconciles; the replaced one is unknown."""
    user = test_user
    booking = await make_booking(user, test_trip, ["1"], provider="paystack")
    old_reference = booking.payment_reference

    orchestrator = BookingOrchestrator(db_session, locks, adapters=adapters)
    booking, init = await orchestrator.start_payment(booking.booking_reference, "opay", user)
    assert booking.payment_reference == init.provider_reference != old_reference

    result = await engine.reconcile(old_reference, VerificationResult(status=VerificationStatus.SUCCESS))
    assert result.outcome == ReconciliationOutcome.UNKNOWN_REFERENCE


@pytest.mark.asyncio
async def test_reference_replaced_while_waiting_for_lock(
    engine, make_booking, test_user, test_trip, locks, session_factory, db_session
):
    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack")
    booking_id = booking.id
    old_reference = booking.payment_reference
    key = ("booking", booking_id)

    async with locks.hold(key):
        task = asyncio.create_task(
            engine.reconcile(old_reference, VerificationResult(status=VerificationStatus.SUCCESS))
        )
        # Wait until the delivery has found the booking and queued behind us
        for _ in range(200):
            if locks._waiters.get(key, 0) > 1:
                break
            await asyncio.sleep(0.01)
        assert locks._waiters.get(key, 0) > 1

        async with session_factory() as other:
            await other.execute(
                update(Booking).where(Booking.id == booking_id).values(payment_reference="SAH_OPY_REPLACED")
            )
            await other.commit()

    result = await task

    assert result.outcome == ReconciliationOutcome.UNKNOWN_REFERENCE
    assert (await _reload(db_session, booking_id)).status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_resolve_review_approve_and_reject(engine, gateway, make_booking, test_user, admin_user, test_trip, db_session):
    admin_id = admin_user.id
    approved = await make_booking(test_user, test_trip, ["1"], provider="paystack")
    rejected = await make_booking(test_user, test_trip, ["2"], provider="paystack")
    for booking in (approved, rejected):
        gateway.settle_paystack(booking.payment_reference, amount_kobo=100)
        assert (await engine.poll(booking.payment_reference)).outcome == ReconciliationOutcome.UNDER_REVIEW

    result = await engine.resolve_review(approved.booking_reference, True, admin_id)
    assert result.outcome == ReconciliationOutcome.CONFIRMED
    assert (await _reload(db_session, approved.id)).needs_review is False

    result = await engine.resolve_review(rejected.booking_reference, False, admin_id)
    assert result.outcome == ReconciliationOutcome.CANCELLED

    again = await engine.resolve_review(rejected.booking_reference, True, admin_id)
    assert again.outcome == ReconciliationOutcome.ALREADY_FINAL


@pytest.mark.asyncio
async def test_resolve_review_requires_parked_booking(engine, make_booking, test_user, admin_user, test_trip):
    admin_id = admin_user.id
    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack")
    with pytest.raises(ValidationError):
        await engine.resolve_review(booking.booking_reference, True, admin_id)


@pytest.mark.asyncio
async def test_confirmation_spends_reserved_points(engine, gateway, make_booking, test_user, test_trip, db_session):
    """Points chosen at checkout discount the total and are spent only on confirmation."""
    user_id = test_user.id
    test_user.loyalty_points = 300
    await db_session.commit()

    booking = await make_booking(test_user, test_trip, ["1"], provider="paystack", points=200)
    assert booking.loyalty_discount == Decimal("200.00")
    assert booking.total_amount == Decimal("4800.00")
    user = (await db_session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )).scalar_one()
    assert user.loyalty_points == 300

    gateway.settle_paystack(booking.payment_reference, amount_kobo=480_000)
    await engine.poll(booking.payment_reference)

    user = (await db_session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )).scalar_one()
    # 300 - 200 redeemed + floor(4800 * 0.01) earned
    assert user.loyalty_points == 148
