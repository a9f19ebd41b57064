"""
OPay cashier.

Requests carry MerchantId, the public key as bearer, a Timestamp and an
HMAC-SHA512 Signature over (JSON body + timestamp) keyed by the secret key.
Amounts are kobo. Webhooks are signed with HMAC-SHA512(raw body, secret key)
in the `signature` header.
"""

import hashlib
import hmac
import json
import time
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

OK_CODE = "00000"
FAILED_STATUSES = {"FAIL", "CLOSE"}
PENDING_STATUSES = {"PENDING", "INITIAL"}


class OPayAdapter(HttpPaymentAdapter):
    provider = "opay"
    reference_code = "OPY"

    def __init__(
        self,
        client: httpx.AsyncClient,
        merchant_id: str,
        public_key: str,
        secret_key: str,
        base_url: str,
        timeout: float,
    ):
        super().__init__(client, base_url, timeout)
        self.merchant_id = merchant_id
        self.public_key = public_key
        self.secret_key = secret_key

    def sign(self, body: str, timestamp: str) -> str:
        return hmac.new(
            self.secret_key.encode(), (body + timestamp).encode(), hashlib.sha512
        ).hexdigest()

    async def _signed_post(self, operation: str, path: str, payload: dict) -> dict:
        body = json.dumps(payload, separators=(",", ":"))
        timestamp = str(int(time.time() * 1000))
        headers = {
            "MerchantId": self.merchant_id,
            "Authorization": f"Bearer {self.public_key}",
            "Content-Type": "application/json",
            "Timestamp": timestamp,
            "Signature": self.sign(body, timestamp),
        }
        data = await self._request(operation, "POST", path, headers=headers, content=body.encode())
        if data.get("code") != OK_CODE:
            raise PaymentGatewayError(self.provider, data.get("message") or f"{operation} rejected")
        return data

    async def initialize(self, booking_ref: str, amount: Decimal, payer: Payer) -> PaymentInitialization:
        settings = get_settings()
        reference = generate_payment_reference(settings.PAYMENT_REFERENCE_PREFIX, self.reference_code)
        payload = {
            "reference": reference,
            "mchShortName": settings.APP_NAME,
            "productName": "Bus ticket",
            "productDesc": f"Booking {booking_ref}",
            "userInfo": {
                "userEmail": payer.email,
                "userName": payer.name,
                "userMobile": payer.phone,
            },
            "amount": str(to_minor_units(amount)),
            "currency": settings.CURRENCY,
            "osType": "WEB",
            "callbackUrl": f"{settings.PAYMENT_CALLBACK_BASE_URL}/api/v1/payments/webhook/opay",
            "returnUrl": f"{settings.PAYMENT_CALLBACK_BASE_URL}/booking/success?reference={reference}",
        }
        data = await self._signed_post("initialize", "/api/v3/cashier/initialize", payload)
        logger.info("opay_initialized", booking_ref=booking_ref, payment_reference=reference)
        return PaymentInitialization(
            provider_reference=reference,
            redirect_url=(data.get("data") or {}).get("cashierUrl"),
            raw=data,
        )

    async def verify(self, provider_reference: str) -> VerificationResult:
        data = await self._signed_post(
            "verify", "/api/v3/cashier/status", {"reference": provider_reference, "orderNo": ""}
        )
        payload = data.get("data") or {}
        gateway_status = str(payload.get("status") or "").upper()

        if gateway_status == "SUCCESS":
            status = VerificationStatus.SUCCESS
        elif gateway_status in FAILED_STATUSES:
            status = VerificationStatus.FAILED
        else:
            status = VerificationStatus.PENDING

        amount = payload.get("amount")
        if isinstance(amount, dict):
            amount = amount.get("total")
        return VerificationResult(
            status=status,
            amount_confirmed=from_minor_units(amount) if amount is not None else None,
            gateway_status=gateway_status or None,
            raw=data,
        )

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> str:
        signature = headers.get("signature") or ""
        expected = hmac.new(self.secret_key.encode(), body, hashlib.sha512).hexdigest()
        if not self.secret_key or not hmac.compare_digest(expected.encode(), signature.encode()):
            raise WebhookSignatureError("Invalid OPay signature")

        payload = parse_json_body(body)
        inner = payload.get("payload") if isinstance(payload.get("payload"), dict) else payload
        reference = inner.get("reference")
        logger.info("opay_webhook_received", status=inner.get("status"), payment_reference=reference)
        return reference or ""
