"""
Request-scoped wiring of services.

Process-wide collaborators (keyed locks, notifier, trip cache, outbound HTTP
client) live on app.state; services are built per request around the
request's database session.
"""

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.locks import KeyedLock
from app.db.session import get_db
from app.services.booking_service import BookingOrchestrator
from app.services.cache_service import TripSnapshotCache
from app.services.inventory_service import TripInventory
from app.services.loyalty_service import LoyaltyLedger
from app.services.notification_service import NotificationDispatcher
from app.services.payments.factory import PaymentAdapterFactory
from app.services.receipt_service import ReceiptService
from app.services.reconciliation_service import ReconciliationEngine
from app.services.ticket_service import TicketService


def get_locks(request: Request) -> KeyedLock:
    return request.app.state.locks


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def get_trip_cache(request: Request) -> TripSnapshotCache:
    return request.app.state.trip_cache


async def get_http_client(request: Request) -> httpx.AsyncClient:
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        client = httpx.AsyncClient(timeout=get_settings().PAYMENT_GATEWAY_TIMEOUT_SECONDS)
        request.app.state.http_client = client
    return client


def get_payment_adapters(
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> PaymentAdapterFactory:
    return PaymentAdapterFactory(http_client, db)


def get_inventory(
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
) -> TripInventory:
    return TripInventory(db, locks)


def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
    adapters: PaymentAdapterFactory = Depends(get_payment_adapters),
    cache: TripSnapshotCache = Depends(get_trip_cache),
) -> BookingOrchestrator:
    return BookingOrchestrator(db, locks, adapters=adapters, cache=cache)


def get_reconciliation_engine(
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
    adapters: PaymentAdapterFactory = Depends(get_payment_adapters),
    notifier: NotificationDispatcher = Depends(get_notifier),
    cache: TripSnapshotCache = Depends(get_trip_cache),
) -> ReconciliationEngine:
    return ReconciliationEngine(db, locks, adapters, notifier, cache=cache)


def get_receipt_service(
    db: AsyncSession = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> ReceiptService:
    return ReceiptService(db, engine)


def get_loyalty_ledger(db: AsyncSession = Depends(get_db)) -> LoyaltyLedger:
    return LoyaltyLedger(db)


def get_ticket_service(db: AsyncSession = Depends(get_db)) -> TicketService:
    return TicketService(db)
