"""
Pytest fixtures for test database, client, payment gateways and authentication.

Each test gets its own SQLite file so concurrent sessions see a real shared
database. Payment gateways are served in-process by httpx.MockTransport.
"""

import hashlib
import hmac
import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

# Settings are read once and cached; point them at test values before the app is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_ENABLED"] = "false"
os.environ["EXPIRY_SWEEP_ENABLED"] = "false"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_paystack_secret"
os.environ["OPAY_MERCHANT_ID"] = "256620000000001"
os.environ["OPAY_PUBLIC_KEY"] = "OPAYPUB_test"
os.environ["OPAY_SECRET_KEY"] = "OPAYPRV_test_secret"
os.environ["RECEIPT_UPLOAD_DIR"] = tempfile.mkdtemp(prefix="receipts-")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.main import app
from app.api.deps import get_http_client
from app.core.locks import KeyedLock
from app.core.security import create_access_token, hash_password
from app.db.base import Base
from app.db.session import get_db
from app.models.trip import Trip, default_seat_layout
from app.models.user import User, UserRole
from app.schemas.booking import PassengerDetails
from app.services.booking_service import BookingOrchestrator
from app.services.notification_service import NotificationDispatcher
from app.services.payments.factory import PaymentAdapterFactory

PAYSTACK_SECRET = os.environ["PAYSTACK_SECRET_KEY"]
OPAY_SECRET = os.environ["OPAY_SECRET_KEY"]


class FakeGateway:
    """
    Paystack and OPay endpoints kept in memory.

    Initialization registers the transaction as unpaid; tests settle it with
    `settle_paystack` / `settle_opay` before polling or sending a webhook.
    """

    def __init__(self):
        self.paystack: dict[str, dict] = {}
        self.opay: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with = None

    def settle_paystack(self, reference: str, status: str = "success", amount_kobo: int | None = None):
        tx = self.paystack[reference]
        tx["status"] = status
        if amount_kobo is not None:
            tx["amount"] = amount_kobo
        tx["paid_at"] = "2026-10-17T09:30:00.000Z"

    def settle_opay(self, reference: str, status: str = "SUCCESS", amount_kobo: int | None = None):
        tx = self.opay[reference]
        tx["status"] = status
        if amount_kobo is not None:
            tx["amount"]["total"] = amount_kobo

    def calls(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with("gateway unavailable", request=request)

        path = request.url.path
        if path == "/transaction/initialize":
            body = json.loads(request.content)
            reference = body["reference"]
            self.paystack[reference] = {"status": "ongoing", "amount": body["amount"], "reference": reference}
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": f"https://checkout.paystack.test/{reference}",
                    "access_code": "ac_test",
                    "reference": reference,
                },
            })
        if path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            tx = self.paystack.get(reference)
            if tx is None:
                return httpx.Response(404, json={"status": False, "message": "Transaction reference not found"})
            return httpx.Response(200, json={"status": True, "message": "Verification successful", "data": dict(tx)})
        if path == "/api/v3/cashier/initialize":
            body = json.loads(request.content)
            reference = body["reference"]
            self.opay[reference] = {
                "reference": reference,
                "status": "INITIAL",
                "amount": {"total": int(body["amount"]), "currency": body["currency"]},
            }
            return httpx.Response(200, json={
                "code": "00000",
                "message": "SUCCESSFUL",
                "data": {"reference": reference, "cashierUrl": f"https://cashier.opay.test/{reference}"},
            })
        if path == "/api/v3/cashier/status":
            body = json.loads(request.content)
            tx = self.opay.get(body["reference"])
            if tx is None:
                return httpx.Response(200, json={"code": "02006", "message": "order not found"})
            return httpx.Response(200, json={"code": "00000", "message": "SUCCESSFUL", "data": dict(tx)})
        return httpx.Response(404, json={"message": "not found"})


def paystack_webhook(reference: str, event: str = "charge.success") -> tuple[bytes, dict]:
    body = json.dumps({"event": event, "data": {"reference": reference, "status": "success"}}).encode()
    signature = hmac.new(PAYSTACK_SECRET.encode(), body, hashlib.sha512).hexdigest()
    return body, {"x-paystack-signature": signature, "content-type": "application/json"}


def opay_webhook(reference: str, status: str = "SUCCESS") -> tuple[bytes, dict]:
    body = json.dumps({"payload": {"reference": reference, "status": status}, "type": "transaction-status"}).encode()
    signature = hmac.new(OPAY_SECRET.encode(), body, hashlib.sha512).hexdigest()
    return body, {"signature": signature, "content-type": "application/json"}


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh SQLite file per test; tables created from the models."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def http_client(gateway: FakeGateway) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler)) as client:
        yield client


@pytest.fixture
def adapters(http_client, db_session) -> PaymentAdapterFactory:
    return PaymentAdapterFactory(http_client, db_session)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, http_client) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and gateway dependencies."""

    async def override_get_db():
        yield db_session

    async def override_get_http_client():
        return http_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = override_get_http_client
    app.state.locks = KeyedLock()
    app.state.notifier = NotificationDispatcher()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, email: str, username: str, role: str, points: int = 0) -> User:
    user = User(
        email=email,
        username=username,
        phone="08031234567",
        hashed_password=hash_password("testpassword123"),
        role=role,
        loyalty_points=points,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "test@example.com", "testuser", UserRole.CUSTOMER)


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "other@example.com", "otheruser", UserRole.CUSTOMER)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "admin@example.com", "adminuser", UserRole.ADMIN)


@pytest_asyncio.fixture
async def driver_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "driver@example.com", "driveruser", UserRole.DRIVER)


def _headers(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def auth_token(test_user: User) -> str:
    return create_access_token(data={"sub": str(test_user.id), "role": test_user.role})


@pytest_asyncio.fixture
async def auth_headers(auth_token: str) -> dict:
    return {"Authorization": f"Bearer {auth_token}"}


@pytest_asyncio.fixture
async def other_headers(other_user: User) -> dict:
    return _headers(other_user)


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict:
    return _headers(admin_user)


@pytest_asyncio.fixture
async def driver_headers(driver_user: User) -> dict:
    return _headers(driver_user)


async def _make_trip(db: AsyncSession, departure: datetime, seats: int = 12, price: str = "5000.00") -> Trip:
    trip = Trip(
        origin="Lagos",
        destination="Abuja",
        departure_time=departure,
        arrival_time=departure + timedelta(hours=10),
        price=Decimal(price),
        total_seats=seats,
        seat_layout=default_seat_layout(seats),
        available_seats=seats,
        bus_number="SAH-101",
        is_active=True,
    )
    db.add(trip)
    await db.commit()
    await db.refresh(trip)
    return trip


@pytest_asyncio.fixture
async def test_trip(db_session: AsyncSession) -> Trip:
    """Lagos -> Abuja in two days, 12 seats at 5,000 NGN."""
    return await _make_trip(db_session, datetime.now(timezone.utc) + timedelta(days=2))


@pytest_asyncio.fixture
async def small_trip(db_session: AsyncSession) -> Trip:
    """Two-seat trip for sell-out scenarios."""
    return await _make_trip(db_session, datetime.now(timezone.utc) + timedelta(days=1), seats=2)


@pytest.fixture
def make_booking(db_session: AsyncSession, locks: KeyedLock, adapters: PaymentAdapterFactory):
    """Create a PENDING booking through the orchestrator, optionally starting payment."""

    async def _make(user: User, trip: Trip, seats: list[str], provider: str | None = None, points: int = 0):
        orchestrator = BookingOrchestrator(db_session, locks, adapters=adapters)
        booking = await orchestrator.create_booking(
            user,
            trip.id,
            PassengerDetails(name="Amina Bello", phone="08031234567", email="amina@example.com"),
            seats,
            points,
        )
        if provider:
            booking, _ = await orchestrator.start_payment(booking.booking_reference, provider, user)
        return booking

    return _make
