"""
Uploaded proof of a manual bank transfer. One receipt per booking.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String

from app.db.base import Base, TimestampMixin


class ReceiptStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentReceipt(Base, TimestampMixin):
    __tablename__ = "payment_receipts"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    payment_reference = Column(String(100), nullable=False, index=True)
    file_path = Column(String(500), nullable=False)
    original_filename = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(50), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=ReceiptStatus.PENDING)
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="check_receipt_status"),
        CheckConstraint("file_size > 0", name="check_receipt_size_positive"),
    )
