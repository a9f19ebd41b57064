"""
Loyalty ledger.

The ledger (loyalty_transactions) is append-only and the source of truth;
users.loyalty_points is a cached balance that only ever moves in the same
transaction as a ledger append. Redemption decrements the cache with a
conditional UPDATE so the balance can never go negative, even when two
redemptions race.
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import InsufficientLoyaltyPoints, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.metrics import loyalty_points as loyalty_points_counter
from app.models.booking import Booking, BookingStatus
from app.models.loyalty import LoyaltyTransaction, LoyaltyTransactionType
from app.models.user import User

logger = get_logger(__name__)

RECENT_TRANSACTIONS = 50


@dataclass(frozen=True)
class TierBenefits:
    discount_percent: int
    points_multiplier: Decimal
    priority_support: bool


# (name, lifetime points threshold), ascending
TIERS = [
    ("bronze", 0),
    ("silver", 2000),
    ("gold", 5000),
    ("platinum", 10000),
]

TIER_BENEFITS = {
    "bronze": TierBenefits(0, Decimal("1"), False),
    "silver": TierBenefits(5, Decimal("1.2"), False),
    "gold": TierBenefits(10, Decimal("1.5"), True),
    "platinum": TierBenefits(15, Decimal("2"), True),
}


def points_for_amount(amount: Decimal, earn_rate: Decimal) -> int:
    """floor(amount × rate) in exact decimal arithmetic."""
    return int((Decimal(amount) * Decimal(earn_rate)).to_integral_value(rounding=ROUND_FLOOR))


def tier_for(lifetime_points: int) -> str:
    current = TIERS[0][0]
    for name, threshold in TIERS:
        if lifetime_points >= threshold:
            current = name
    return current


def next_tier_for(lifetime_points: int) -> tuple[Optional[str], int]:
    for name, threshold in TIERS:
        if lifetime_points < threshold:
            return name, threshold - lifetime_points
    return None, 0


class LoyaltyLedger:
    def __init__(self, db: AsyncSession):
        self.db = db
        settings = get_settings()
        self.earn_rate = settings.LOYALTY_EARN_RATE
        self.point_value = settings.LOYALTY_POINT_VALUE

    def discount_for(self, points: int) -> Decimal:
        return (Decimal(points) * self.point_value).quantize(Decimal("0.01"))

    async def _append(
        self,
        user_id: int,
        points_change: int,
        transaction_type: str,
        description: Optional[str],
        booking_id: Optional[int] = None,
    ) -> LoyaltyTransaction:
        entry = LoyaltyTransaction(
            user_id=user_id,
            booking_id=booking_id,
            points_change=points_change,
            transaction_type=transaction_type,
            description=description,
        )
        self.db.add(entry)
        await self.db.flush()
        loyalty_points_counter.labels(transaction_type=transaction_type).inc(abs(points_change))
        return entry

    async def _has_entry(self, booking_id: int, transaction_type: str) -> bool:
        result = await self.db.execute(
            select(LoyaltyTransaction.id).where(
                LoyaltyTransaction.booking_id == booking_id,
                LoyaltyTransaction.transaction_type == transaction_type,
            )
        )
        return result.first() is not None

    async def balance(self, user_id: int) -> int:
        result = await self.db.execute(select(User.loyalty_points).where(User.id == user_id))
        points = result.scalar_one_or_none()
        if points is None:
            raise NotFoundError(f"User {user_id} not found")
        return points

    async def reserved_points(self, user_id: int) -> int:
        """Points promised to PENDING bookings at checkout but not yet spent."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Booking.loyalty_points_used), 0)).where(
                Booking.user_id == user_id,
                Booking.status == BookingStatus.PENDING,
            )
        )
        return int(result.scalar_one())

    async def spendable(self, user_id: int) -> int:
        return max(await self.balance(user_id) - await self.reserved_points(user_id), 0)

    async def credit(self, user_id: int, booking_id: int, amount: Decimal) -> int:
        """Credit points for a paid booking. At most once per booking."""
        if await self._has_entry(booking_id, LoyaltyTransactionType.EARNED):
            logger.info("loyalty_credit_skipped", user_id=user_id, booking_id=booking_id, reason="already_credited")
            return 0

        points = points_for_amount(amount, self.earn_rate)
        if points <= 0:
            return 0

        await self._append(
            user_id,
            points,
            LoyaltyTransactionType.EARNED,
            f"Earned from booking payment of {amount}",
            booking_id=booking_id,
        )
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(loyalty_points=User.loyalty_points + points)
            .execution_options(synchronize_session=False)
        )
        logger.info("loyalty_credited", user_id=user_id, booking_id=booking_id, points=points)
        return points

    async def redeem(
        self,
        user_id: int,
        points: int,
        description: Optional[str] = None,
        booking_id: Optional[int] = None,
    ) -> Decimal:
        """
        Spend points; returns the currency discount they are worth.

        Without a booking_id the points held by the user's PENDING bookings
        are off limits.
        """
        if points <= 0:
            raise ValidationError("Points to redeem must be positive")

        reserved = 0 if booking_id is not None else await self.reserved_points(user_id)
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id, User.loyalty_points >= points + reserved)
            .values(loyalty_points=User.loyalty_points - points)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = max(await self.balance(user_id) - reserved, 0)
            logger.warning(
                "loyalty_redeem_rejected", user_id=user_id, requested=points, available=available, reserved=reserved
            )
            raise InsufficientLoyaltyPoints(points, available)

        await self._append(
            user_id,
            -points,
            LoyaltyTransactionType.REDEEMED,
            description or f"Redeemed {points} points",
            booking_id=booking_id,
        )
        logger.info("loyalty_redeemed", user_id=user_id, booking_id=booking_id, points=points)
        return self.discount_for(points)

    async def redeem_for_booking(self, user_id: int, booking_id: int, points: int) -> int:
        """
        Spend the points a booking reserved at checkout, once.

        If the balance was spent elsewhere in the meantime, redeem whatever is
        left and log the shortfall for review instead of failing the payment.
        """
        if points <= 0 or await self._has_entry(booking_id, LoyaltyTransactionType.REDEEMED):
            return 0

        balance = await self.balance(user_id)
        to_redeem = min(points, balance)
        if to_redeem < points:
            logger.warning(
                "loyalty_redeem_shortfall",
                user_id=user_id,
                booking_id=booking_id,
                reserved=points,
                available=balance,
            )
        if to_redeem <= 0:
            return 0

        await self.redeem(
            user_id, to_redeem, f"Redeemed for booking discount ({points} reserved)", booking_id=booking_id
        )
        return to_redeem

    async def award_bonus(self, user_id: int, points: int, description: str) -> int:
        if points <= 0:
            raise ValidationError("Bonus points must be positive")
        await self.balance(user_id)

        await self._append(user_id, points, LoyaltyTransactionType.BONUS, description)
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(loyalty_points=User.loyalty_points + points)
            .execution_options(synchronize_session=False)
        )
        logger.info("loyalty_bonus_awarded", user_id=user_id, points=points)
        return await self.balance(user_id)

    async def lifetime_earned(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(LoyaltyTransaction.points_change), 0)).where(
                LoyaltyTransaction.user_id == user_id,
                LoyaltyTransaction.transaction_type.in_(
                    [LoyaltyTransactionType.EARNED, LoyaltyTransactionType.BONUS]
                ),
            )
        )
        return int(result.scalar_one())

    async def recent_transactions(self, user_id: int, limit: int = RECENT_TRANSACTIONS) -> list[LoyaltyTransaction]:
        result = await self.db.execute(
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.user_id == user_id)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def summary(self, user_id: int) -> dict:
        balance = await self.balance(user_id)
        lifetime = await self.lifetime_earned(user_id)
        tier = tier_for(lifetime)
        next_tier, points_to_next = next_tier_for(lifetime)
        benefits = TIER_BENEFITS[tier]
        return {
            "balance": balance,
            "lifetime_earned": lifetime,
            "tier": tier,
            "benefits": {
                "discount_percent": benefits.discount_percent,
                "points_multiplier": benefits.points_multiplier,
                "priority_support": benefits.priority_support,
            },
            "next_tier": next_tier,
            "points_to_next_tier": points_to_next,
            "transactions": await self.recent_transactions(user_id),
        }
