from app.models.user import User, UserRole
from app.models.trip import Trip
from app.models.seat_hold import SeatHold
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.payment_receipt import PaymentReceipt, ReceiptStatus
from app.models.loyalty import LoyaltyTransaction, LoyaltyTransactionType

__all__ = [
    "User", "UserRole",
    "Trip",
    "SeatHold",
    "Booking", "BookingStatus", "PaymentStatus",
    "PaymentReceipt", "ReceiptStatus",
    "LoyaltyTransaction", "LoyaltyTransactionType",
]
