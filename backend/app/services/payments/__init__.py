from app.services.payments.base import (
    Payer,
    PaymentAdapter,
    PaymentInitialization,
    VerificationResult,
    VerificationStatus,
)
from app.services.payments.bank_transfer import BankTransferAdapter
from app.services.payments.factory import PaymentAdapterFactory
from app.services.payments.opay import OPayAdapter
from app.services.payments.paystack import PaystackAdapter

__all__ = [
    "BankTransferAdapter",
    "OPayAdapter",
    "Payer",
    "PaymentAdapter",
    "PaymentAdapterFactory",
    "PaymentInitialization",
    "PaystackAdapter",
    "VerificationResult",
    "VerificationStatus",
]
