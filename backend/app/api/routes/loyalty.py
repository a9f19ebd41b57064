"""
Loyalty endpoints: balance and tier, standalone redemption, admin bonuses.
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_loyalty_ledger
from app.core.security import get_current_user, require_roles
from app.models.user import User, UserRole
from app.schemas.loyalty import BonusRequest, LoyaltySummary, RedeemRequest, RedeemResponse
from app.services.loyalty_service import LoyaltyLedger

router = APIRouter(prefix="/loyalty", tags=["Loyalty"])


@router.get("/", response_model=LoyaltySummary)
async def loyalty_summary(
    user: User = Depends(get_current_user),
    ledger: LoyaltyLedger = Depends(get_loyalty_ledger),
):
    return await ledger.summary(user.id)


@router.post("/redeem", response_model=RedeemResponse)
async def redeem_points(
    request_data: RedeemRequest,
    user: User = Depends(get_current_user),
    ledger: LoyaltyLedger = Depends(get_loyalty_ledger),
):
    user_id = user.id
    discount = await ledger.redeem(user_id, request_data.points, request_data.description)
    await ledger.db.commit()
    return RedeemResponse(
        points_redeemed=request_data.points,
        discount=discount,
        balance=await ledger.balance(user_id),
    )


@router.post("/bonus", response_model=RedeemResponse)
async def award_bonus(
    request_data: BonusRequest,
    admin: User = Depends(require_roles(UserRole.ADMIN)),
    ledger: LoyaltyLedger = Depends(get_loyalty_ledger),
):
    balance = await ledger.award_bonus(request_data.user_id, request_data.points, request_data.description)
    await ledger.db.commit()
    return RedeemResponse(points_redeemed=0, discount=0, balance=balance)
