"""
Pydantic schemas for payment initialization, verification and receipts.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class PaymentProvider(str, Enum):
    PAYSTACK = "paystack"
    OPAY = "opay"
    BANK_TRANSFER = "bank_transfer"


class PaymentInitializeRequest(BaseModel):
    booking_reference: str
    provider: PaymentProvider


class PaymentInitializeResponse(BaseModel):
    booking_reference: str
    provider: PaymentProvider
    payment_reference: str
    amount: Decimal
    currency: str
    redirect_url: Optional[str] = None
    instructions: Optional[dict[str, Any]] = None


class PaymentVerifyResponse(BaseModel):
    booking_reference: Optional[str]
    payment_reference: str
    outcome: str
    booking_status: Optional[str] = None
    payment_status: Optional[str] = None
    message: str


class ReceiptResponse(BaseModel):
    id: int
    booking_id: int
    payment_reference: str
    original_filename: str
    file_size: int
    mime_type: str
    amount_paid: Decimal
    status: str
    review_notes: Optional[str]
    reviewed_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class ReceiptDecision(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class ReviewDecision(BaseModel):
    approve: bool
    notes: Optional[str] = Field(None, max_length=500)
