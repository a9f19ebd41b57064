"""
Pydantic schemas for the loyalty ledger.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class LoyaltyTransactionResponse(BaseModel):
    id: int
    booking_id: Optional[int]
    points_change: int
    transaction_type: str
    description: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class TierBenefits(BaseModel):
    discount_percent: int
    points_multiplier: Decimal
    priority_support: bool


class LoyaltySummary(BaseModel):
    balance: int
    lifetime_earned: int
    tier: str
    benefits: TierBenefits
    next_tier: Optional[str]
    points_to_next_tier: int
    transactions: list[LoyaltyTransactionResponse]


class RedeemRequest(BaseModel):
    points: int = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=255)


class RedeemResponse(BaseModel):
    points_redeemed: int
    discount: Decimal
    balance: int


class BonusRequest(BaseModel):
    user_id: int
    points: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)
