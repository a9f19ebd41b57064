"""
Paystack hosted checkout.

Amounts are sent and received in kobo. Webhooks are signed with
HMAC-SHA512(raw body, secret key), hex-encoded in `x-paystack-signature`.
"""

import hashlib
import hmac
import json
from datetime import datetime
from decimal import Decimal
from typing import Mapping

import httpx

from app.core.config import get_settings
from app.core.exceptions import PaymentGatewayError, WebhookSignatureError
from app.core.logging import get_logger
from app.services.payments.base import (
    HttpPaymentAdapter,
    Payer,
    PaymentInitialization,
    VerificationResult,
    VerificationStatus,
    from_minor_units,
    generate_payment_reference,
    parse_json_body,
    to_minor_units,
)

logger = get_logger(__name__)

FAILED_STATUSES = {"failed", "abandoned", "reversed"}


def _parse_paid_at(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class PaystackAdapter(HttpPaymentAdapter):
    provider = "paystack"
    reference_code = "PST"

    def __init__(self, client: httpx.AsyncClient, secret_key: str, base_url: str, timeout: float):
        super().__init__(client, base_url, timeout)
        self.secret_key = secret_key

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def initialize(self, booking_ref: str, amount: Decimal, payer: Payer) -> PaymentInitialization:
        settings = get_settings()
        reference = generate_payment_reference(settings.PAYMENT_REFERENCE_PREFIX, self.reference_code)
        body = {
            "email": payer.email,
            "amount": to_minor_units(amount),
            "reference": reference,
            "currency": settings.CURRENCY,
            "callback_url": f"{settings.PAYMENT_CALLBACK_BASE_URL}/booking/success?reference={reference}",
            "metadata": {"booking_reference": booking_ref, "customer_name": payer.name},
            "channels": ["card", "bank", "ussd", "qr", "bank_transfer"],
        }
        data = await self._request(
            "initialize",
            "POST",
            "/transaction/initialize",
            headers=self._headers(),
            content=json.dumps(body).encode(),
        )
        if not data.get("status"):
            raise PaymentGatewayError(self.provider, data.get("message") or "initialize rejected")

        payload = data.get("data") or {}
        logger.info("paystack_initialized", booking_ref=booking_ref, payment_reference=reference)
        return PaymentInitialization(
            provider_reference=payload.get("reference") or reference,
            redirect_url=payload.get("authorization_url"),
            raw=data,
        )

    async def verify(self, provider_reference: str) -> VerificationResult:
        data = await self._request(
            "verify",
            "GET",
            f"/transaction/verify/{provider_reference}",
            headers=self._headers(),
        )
        payload = data.get("data") or {}
        gateway_status = str(payload.get("status") or "").lower()

        if gateway_status == "success":
            status = VerificationStatus.SUCCESS
        elif gateway_status in FAILED_STATUSES:
            status = VerificationStatus.FAILED
        else:
            status = VerificationStatus.PENDING

        amount = payload.get("amount")
        return VerificationResult(
            status=status,
            amount_confirmed=from_minor_units(amount) if amount is not None else None,
            paid_at=_parse_paid_at(payload.get("paid_at")),
            gateway_status=gateway_status or None,
            raw=data,
        )

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> str:
        signature = headers.get("x-paystack-signature") or ""
        expected = hmac.new(self.secret_key.encode(), body, hashlib.sha512).hexdigest()
        if not self.secret_key or not hmac.compare_digest(expected.encode(), signature.encode()):
            raise WebhookSignatureError("Invalid Paystack signature")

        payload = parse_json_body(body)
        reference = (payload.get("data") or {}).get("reference")
        logger.info("paystack_webhook_received", webhook_event=payload.get("event"), payment_reference=reference)
        return reference or ""
