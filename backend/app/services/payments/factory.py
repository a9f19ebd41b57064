"""
Adapter selection by provider.
"""

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import ValidationError
from app.services.payments.bank_transfer import BankTransferAdapter
from app.services.payments.base import PaymentAdapter
from app.services.payments.opay import OPayAdapter
from app.services.payments.paystack import PaystackAdapter


class PaymentAdapterFactory:
    def __init__(self, http_client: httpx.AsyncClient, db: AsyncSession):
        self.http_client = http_client
        self.db = db

    def get(self, provider: str) -> PaymentAdapter:
        settings = get_settings()
        timeout = settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        provider = getattr(provider, "value", provider)

        if provider == PaystackAdapter.provider:
            return PaystackAdapter(
                self.http_client,
                secret_key=settings.PAYSTACK_SECRET_KEY,
                base_url=settings.PAYSTACK_BASE_URL,
                timeout=timeout,
            )
        if provider == OPayAdapter.provider:
            return OPayAdapter(
                self.http_client,
                merchant_id=settings.OPAY_MERCHANT_ID,
                public_key=settings.OPAY_PUBLIC_KEY,
                secret_key=settings.OPAY_SECRET_KEY,
                base_url=settings.OPAY_BASE_URL,
                timeout=timeout,
            )
        if provider == BankTransferAdapter.provider:
            return BankTransferAdapter(self.db)
        raise ValidationError(f"Unsupported payment provider: {provider}")
