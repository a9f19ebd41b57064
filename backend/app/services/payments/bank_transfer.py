"""
Manual bank transfer rail.

`initialize` hands back the configured account details; the traveler pays
offline and uploads a receipt. `verify` reads that receipt: nothing uploaded
or awaiting review is pending, approved is success for the receipt amount,
rejected is a failed payment.
"""

from decimal import Decimal
from typing import Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.models.payment_receipt import PaymentReceipt, ReceiptStatus
from app.services.payments.base import (
    PaymentAdapter,
    Payer,
    PaymentInitialization,
    VerificationResult,
    VerificationStatus,
    generate_payment_reference,
    quantize_amount,
)

logger = get_logger(__name__)


class BankTransferAdapter(PaymentAdapter):
    provider = "bank_transfer"
    reference_code = "BNK"

    def __init__(self, db: AsyncSession):
        self.db = db

    async def initialize(self, booking_ref: str, amount: Decimal, payer: Payer) -> PaymentInitialization:
        settings = get_settings()
        reference = generate_payment_reference(settings.PAYMENT_REFERENCE_PREFIX, self.reference_code)
        instructions = {
            "accounts": settings.BANK_TRANSFER_ACCOUNTS,
            "amount": str(quantize_amount(amount)),
            "currency": settings.CURRENCY,
            "narration": reference,
            "note": (
                "Use the payment reference as the transfer narration, then upload the "
                "receipt. Your seats stay held while the receipt is reviewed."
            ),
        }
        logger.info("bank_transfer_initialized", booking_ref=booking_ref, payment_reference=reference)
        return PaymentInitialization(
            provider_reference=reference,
            instructions=instructions,
            raw={"instructions": instructions},
        )

    async def verify(self, provider_reference: str) -> VerificationResult:
        result = await self.db.execute(
            select(PaymentReceipt)
            .where(PaymentReceipt.payment_reference == provider_reference)
            .execution_options(populate_existing=True)
        )
        receipt = result.scalar_one_or_none()
        if receipt is None:
            return VerificationResult(status=VerificationStatus.PENDING, gateway_status="NO_RECEIPT")

        raw = {"receipt_id": receipt.id, "status": receipt.status, "amount_paid": str(receipt.amount_paid)}
        if receipt.status == ReceiptStatus.APPROVED:
            return VerificationResult(
                status=VerificationStatus.SUCCESS,
                amount_confirmed=quantize_amount(receipt.amount_paid),
                paid_at=receipt.reviewed_at,
                gateway_status=receipt.status,
                raw=raw,
            )
        if receipt.status == ReceiptStatus.REJECTED:
            return VerificationResult(status=VerificationStatus.FAILED, gateway_status=receipt.status, raw=raw)
        return VerificationResult(status=VerificationStatus.PENDING, gateway_status=receipt.status, raw=raw)

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> str:
        raise ValidationError("Bank transfers are confirmed by receipt review, not webhooks")
