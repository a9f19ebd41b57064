"""
Tests for the loyalty ledger: earning, redemption, tiers and the API.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.core.exceptions import InsufficientLoyaltyPoints, ValidationError
from app.models.loyalty import LoyaltyTransaction, LoyaltyTransactionType
from app.models.user import User
from app.services.loyalty_service import LoyaltyLedger, next_tier_for, points_for_amount, tier_for

RATE = Decimal("0.01")


@pytest.mark.parametrize(
    "amount, points",
    [
        (Decimal("99.99"), 0),
        (Decimal("100.00"), 1),
        (Decimal("199.99"), 1),
        (Decimal("5000.00"), 50),
        (Decimal("12345.67"), 123),
    ],
)
def test_points_are_floored(amount, points):
    assert points_for_amount(amount, RATE) == points


@pytest.mark.parametrize(
    "lifetime, tier",
    [(0, "bronze"), (1999, "bronze"), (2000, "silver"), (4999, "silver"), (5000, "gold"), (10000, "platinum")],
)
def test_tier_thresholds(lifetime, tier):
    assert tier_for(lifetime) == tier


def test_next_tier():
    assert next_tier_for(1500) == ("silver", 500)
    assert next_tier_for(12000) == (None, 0)


async def _set_points(db, user: User, points: int) -> int:
    user.loyalty_points = points
    await db.commit()
    return user.id


async def _points(db, user_id: int) -> int:
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one().loyalty_points


@pytest.mark.asyncio
async def test_redeem_deducts_and_records(db_session, test_user):
    user_id = await _set_points(db_session, test_user, 120)
    ledger = LoyaltyLedger(db_session)

    discount = await ledger.redeem(user_id, 70, "Snack voucher")
    await db_session.commit()

    assert discount == Decimal("70.00")
    assert await _points(db_session, user_id) == 50
    entry = (await db_session.execute(select(LoyaltyTransaction))).scalar_one()
    assert entry.points_change == -70
    assert entry.transaction_type == LoyaltyTransactionType.REDEEMED


@pytest.mark.asyncio
async def test_redeem_more_than_balance_rejected(db_session, test_user):
    user_id = await _set_points(db_session, test_user, 10)
    ledger = LoyaltyLedger(db_session)

    with pytest.raises(InsufficientLoyaltyPoints) as exc_info:
        await ledger.redeem(user_id, 11)
    assert exc_info.value.balance == 10
    await db_session.rollback()
    assert await _points(db_session, user_id) == 10


@pytest.mark.asyncio
async def test_redeem_rejects_non_positive(db_session, test_user):
    with pytest.raises(ValidationError):
        await LoyaltyLedger(db_session).redeem(test_user.id, 0)


@pytest.mark.asyncio
async def test_stale_balance_cannot_overspend(session_factory, db_session, test_user):
    """Two sessions both read 100 points, then each tries to spend 80; only the first can."""
    user_id = await _set_points(db_session, test_user, 100)

    async with session_factory() as first, session_factory() as second:
        assert await LoyaltyLedger(first).balance(user_id) == 100
        assert await LoyaltyLedger(second).balance(user_id) == 100

        await LoyaltyLedger(first).redeem(user_id, 80)
        await first.commit()

        with pytest.raises(InsufficientLoyaltyPoints):
            await LoyaltyLedger(second).redeem(user_id, 80)
        await second.rollback()

    assert await _points(db_session, user_id) == 20


@pytest.mark.asyncio
async def test_credit_once_per_booking(db_session, test_user):
    user_id = test_user.id
    ledger = LoyaltyLedger(db_session)

    assert await ledger.credit(user_id, 41, Decimal("7500.00")) == 75
    assert await ledger.credit(user_id, 41, Decimal("7500.00")) == 0
    await db_session.commit()

    assert await _points(db_session, user_id) == 75


@pytest.mark.asyncio
async def test_redeem_for_booking_shortfall_takes_what_is_left(db_session, test_user):
    """Points reserved at checkout but spent elsewhere meanwhile: redeem the remainder, never go negative."""
    user_id = await _set_points(db_session, test_user, 30)
    ledger = LoyaltyLedger(db_session)

    assert await ledger.redeem_for_booking(user_id, 7, 50) == 30
    assert await ledger.redeem_for_booking(user_id, 7, 50) == 0
    await db_session.commit()

    assert await _points(db_session, user_id) == 0


@pytest.mark.asyncio
async def test_summary_reports_tier_from_lifetime_earnings(db_session, test_user):
    user_id = test_user.id
    ledger = LoyaltyLedger(db_session)
    await ledger.award_bonus(user_id, 2500, "Launch promotion")
    await ledger.redeem(user_id, 1000)
    await db_session.commit()

    summary = await ledger.summary(user_id)

    assert summary["balance"] == 1500
    assert summary["lifetime_earned"] == 2500
    assert summary["tier"] == "silver"
    assert summary["next_tier"] == "gold"
    assert summary["points_to_next_tier"] == 2500
    assert len(summary["transactions"]) == 2


@pytest.mark.asyncio
async def test_loyalty_api(client: AsyncClient, auth_headers, admin_headers, test_user):
    user_id = test_user.id

    bonus = await client.post(
        "/api/v1/loyalty/bonus",
        json={"user_id": user_id, "points": 300, "description": "Apology for delay"},
        headers=admin_headers,
    )
    assert bonus.status_code == 200
    assert bonus.json()["balance"] == 300

    redeem = await client.post("/api/v1/loyalty/redeem", json={"points": 100}, headers=auth_headers)
    assert redeem.status_code == 200
    assert redeem.json() == {"points_redeemed": 100, "discount": "100.00", "balance": 200}

    summary = await client.get("/api/v1/loyalty/", headers=auth_headers)
    assert summary.status_code == 200
    assert summary.json()["balance"] == 200
    assert summary.json()["tier"] == "bronze"

    too_much = await client.post("/api/v1/loyalty/redeem", json={"points": 1000}, headers=auth_headers)
    assert too_much.status_code == 400


@pytest.mark.asyncio
async def test_bonus_requires_admin(client: AsyncClient, auth_headers, test_user):
    response = await client.post(
        "/api/v1/loyalty/bonus",
        json={"user_id": test_user.id, "points": 10, "description": "self-service"},
        headers=auth_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_points_held_by_pending_booking_are_not_spendable(
    client: AsyncClient, auth_headers, admin_headers, test_user, test_trip
):
    await client.post(
        "/api/v1/loyalty/bonus",
        json={"user_id": test_user.id, "points": 300, "description": "Welcome"},
        headers=admin_headers,
    )

    def booking_json(seat: str, points: int) -> dict:
        return {
            "trip_id": test_trip.id,
            "passenger": {"name": "Amina Bello", "phone": "08031234567"},
            "seat_numbers": [seat],
            "loyalty_points_to_use": points,
        }

    first = await client.post("/api/v1/bookings/", json=booking_json("1", 200), headers=auth_headers)
    assert first.status_code == 201
    reference = first.json()["booking_reference"]

    second = await client.post("/api/v1/bookings/", json=booking_json("2", 200), headers=auth_headers)
    assert second.status_code == 400
    assert second.json()["code"] == "insufficient_loyalty_points"

    redeem = await client.post("/api/v1/loyalty/redeem", json={"points": 200}, headers=auth_headers)
    assert redeem.status_code == 400
    assert redeem.json()["code"] == "insufficient_loyalty_points"

    # The unreserved remainder is still spendable
    small = await client.post("/api/v1/loyalty/redeem", json={"points": 100}, headers=auth_headers)
    assert small.status_code == 200
    assert small.json()["balance"] == 200

    # Cancelling frees the hold
    assert (await client.post(f"/api/v1/bookings/{reference}/cancel", headers=auth_headers)).status_code == 200
    again = await client.post("/api/v1/loyalty/redeem", json={"points": 200}, headers=auth_headers)
    assert again.status_code == 200
    assert again.json()["balance"] == 0
