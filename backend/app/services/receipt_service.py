"""
Bank transfer receipts.

Upload binds an image to a booking and its current payment reference.
Admin approval or rejection records the decision on the receipt and then
runs the ordinary reconciliation poll, so the bank rail goes through the same
state machine as the hosted gateways.
"""

import os
import uuid
from decimal import Decimal
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.config import get_settings
from app.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from app.core.logging import bind_booking_context, get_logger
from app.models.booking import Booking, BookingStatus
from app.models.payment_receipt import PaymentReceipt, ReceiptStatus
from app.models.user import User, UserRole
from app.services.payments.bank_transfer import BankTransferAdapter
from app.services.payments.base import quantize_amount
from app.services.reconciliation_service import ReconciliationEngine, ReconciliationResult

logger = get_logger(__name__)

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class ReceiptService:
    def __init__(self, db: AsyncSession, reconciliation: ReconciliationEngine):
        self.db = db
        self.reconciliation = reconciliation
        self.settings = get_settings()

    async def _booking(self, booking_ref: str) -> Booking:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.booking_reference == booking_ref)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError(f"Booking {booking_ref} not found")
        return booking

    async def get_for_booking(self, booking_id: int) -> Optional[PaymentReceipt]:
        result = await self.db.execute(
            select(PaymentReceipt)
            .where(PaymentReceipt.booking_id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _store(self, content: bytes, content_type: str) -> str:
        upload_dir = Path(self.settings.RECEIPT_UPLOAD_DIR)
        upload_dir.mkdir(parents=True, exist_ok=True)
        path = upload_dir / f"{uuid.uuid4().hex}{EXTENSIONS[content_type]}"
        path.write_bytes(content)
        return str(path)

    async def upload(
        self,
        booking_ref: str,
        payment_reference: str,
        amount_paid: Decimal,
        content: bytes,
        filename: str,
        content_type: str,
        actor: User,
    ) -> PaymentReceipt:
        bind_booking_context(booking_ref=booking_ref, payment_reference=payment_reference)
        content_type = (content_type or "").lower()
        if content_type not in self.settings.RECEIPT_ALLOWED_TYPES or content_type not in EXTENSIONS:
            raise ValidationError("Receipt must be a JPEG, PNG or WebP image")
        if not content:
            raise ValidationError("Receipt file is empty")
        if len(content) > self.settings.RECEIPT_MAX_BYTES:
            raise ValidationError(
                f"Receipt exceeds {self.settings.RECEIPT_MAX_BYTES // (1024 * 1024)} MB limit"
            )
        if amount_paid <= 0:
            raise ValidationError("Amount paid must be positive")

        booking = await self._booking(booking_ref)
        if actor.role != UserRole.ADMIN and booking.user_id != actor.id:
            raise PermissionDeniedError("You do not have access to this booking")
        if booking.status != BookingStatus.PENDING:
            raise ValidationError(f"Booking is {booking.status}; receipts are only accepted while PENDING")
        if booking.payment_provider != BankTransferAdapter.provider:
            raise ValidationError("Booking is not set up for bank transfer payment")
        if booking.payment_reference != payment_reference:
            raise ValidationError("Payment reference does not match this booking")
        if await self.get_for_booking(booking.id) is not None:
            raise ValidationError("A receipt has already been uploaded for this booking")

        path = self._store(content, content_type)
        receipt = PaymentReceipt(
            booking_id=booking.id,
            payment_reference=payment_reference,
            file_path=path,
            original_filename=os.path.basename(filename or "receipt"),
            file_size=len(content),
            mime_type=content_type,
            amount_paid=quantize_amount(amount_paid),
            status=ReceiptStatus.PENDING,
        )
        self.db.add(receipt)
        await self.db.flush()
        await self.db.commit()
        await self.db.refresh(receipt)

        logger.info("receipt_uploaded", booking_ref=booking_ref, receipt_id=receipt.id, size=len(content))
        return receipt

    async def decide(
        self,
        booking_ref: str,
        approve: bool,
        reviewer: User,
        notes: Optional[str] = None,
    ) -> tuple[PaymentReceipt, ReconciliationResult]:
        reviewer_id = reviewer.id
        booking = await self._booking(booking_ref)
        receipt = await self.get_for_booking(booking.id)
        if receipt is None:
            raise NotFoundError(f"No receipt uploaded for booking {booking_ref}")
        if receipt.status != ReceiptStatus.PENDING:
            raise ValidationError(f"Receipt already {receipt.status}")

        receipt.status = ReceiptStatus.APPROVED if approve else ReceiptStatus.REJECTED
        receipt.reviewed_by = reviewer_id
        receipt.reviewed_at = utcnow()
        receipt.review_notes = notes
        payment_reference = receipt.payment_reference
        await self.db.commit()

        logger.info("receipt_reviewed", booking_ref=booking_ref, approved=approve, reviewer_id=reviewer_id)
        outcome = await self.reconciliation.poll(payment_reference)
        await self.db.refresh(receipt)
        return receipt, outcome
