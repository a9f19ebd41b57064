"""
Uniform payment adapter interface.

Every rail (hosted gateways and the manual bank transfer) is driven through the
same three calls. Amounts cross this boundary as Decimal in the canonical
currency unit (NGN, 2 dp); adapters convert to the rail's minor units.
Downstream code never branches on which provider it is talking to.
"""

import json
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

import httpx

from app.core.exceptions import PaymentGatewayError
from app.core.logging import get_logger
from app.core.metrics import record_gateway_error

logger = get_logger(__name__)

TWO_PLACES = Decimal("0.01")


class VerificationStatus:
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class Payer:
    email: str
    name: str
    phone: str


@dataclass
class PaymentInitialization:
    provider_reference: str
    redirect_url: Optional[str] = None
    instructions: Optional[dict[str, Any]] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class VerificationResult:
    status: str
    amount_confirmed: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    gateway_status: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


def quantize_amount(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """NGN -> kobo."""
    return int(quantize_amount(amount) * 100)


def from_minor_units(value: Any) -> Decimal:
    """kobo (int or numeric string) -> NGN."""
    return quantize_amount(Decimal(str(value)) / 100)


def generate_payment_reference(prefix: str, provider_code: str) -> str:
    return f"{prefix}_{provider_code}_{int(time.time() * 1000)}_{secrets.token_hex(3)}".upper()


def parse_json_body(body: bytes) -> dict:
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class PaymentAdapter(ABC):
    provider: str
    reference_code: str

    @abstractmethod
    async def initialize(self, booking_ref: str, amount: Decimal, payer: Payer) -> PaymentInitialization:
        ...

    @abstractmethod
    async def verify(self, provider_reference: str) -> VerificationResult:
        ...

    @abstractmethod
    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> str:
        """Check the delivery signature and return the payment reference it is about."""


class HttpPaymentAdapter(PaymentAdapter):
    """Shared transport for hosted gateways: bounded timeout, errors normalized."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, timeout: float):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        headers: Optional[dict[str, str]] = None,
        content: Optional[bytes] = None,
    ) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(
                method, url, headers=headers, content=content, timeout=self.timeout
            )
        except httpx.TimeoutException:
            record_gateway_error(self.provider, operation)
            logger.warning("payment_gateway_timeout", provider=self.provider, operation=operation)
            raise PaymentGatewayError(self.provider, f"{operation} timed out")
        except httpx.TransportError as e:
            record_gateway_error(self.provider, operation)
            logger.warning(
                "payment_gateway_unreachable",
                provider=self.provider,
                operation=operation,
                error=str(e),
            )
            raise PaymentGatewayError(self.provider, f"{operation} failed: {e}")

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"raw": response.text}

        if response.status_code >= 400:
            record_gateway_error(self.provider, operation)
            logger.warning(
                "payment_gateway_rejected",
                provider=self.provider,
                operation=operation,
                status_code=response.status_code,
            )
            message = data.get("message") if isinstance(data, dict) else None
            raise PaymentGatewayError(
                self.provider, f"{operation} returned {response.status_code}: {message or 'error'}"
            )
        return data if isinstance(data, dict) else {"data": data}
