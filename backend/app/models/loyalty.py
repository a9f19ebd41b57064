"""
Append-only loyalty ledger.

The (booking_id, transaction_type) unique constraint is the storage-level
guard against crediting or redeeming twice for the same booking. Rows with a
NULL booking_id (bonuses, standalone redemptions) are not constrained.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)

from app.db.base import Base


class LoyaltyTransactionType:
    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    BONUS = "bonus"


class LoyaltyTransaction(Base):
    __tablename__ = "loyalty_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    points_change = Column(Integer, nullable=False)
    transaction_type = Column(String(20), nullable=False)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("booking_id", "transaction_type", name="uq_loyalty_booking_type"),
        CheckConstraint(
            "transaction_type IN ('earned', 'redeemed', 'expired', 'bonus')",
            name="check_loyalty_transaction_type",
        ),
    )
