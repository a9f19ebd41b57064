"""
Intercity Bus Booking Engine - Main Application Entry Point

Seat reservation, multi-rail payment reconciliation, loyalty and digital
boarding tickets:
- Seats are sold at most once per trip (per-trip lock, versioned counter, unique holds)
- Duplicate or concurrent payment callbacks fold into one booking transition
- Structured logging with request correlation, Prometheus metrics
- Redis-cached trip search with invalidation on every inventory change
"""

import asyncio
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.exception_handlers import register_exception_handlers
from app.api.middleware import RequestLoggingMiddleware
from app.api.router import api_router
from app.core.config import get_settings
from app.core.locks import KeyedLock
from app.core.logging import get_logger, setup_logging
from app.core.metrics import metrics_endpoint
from app.db.session import async_session_factory
from app.infrastructure.redis_client import close_redis, create_redis
from app.services.cache_service import TripSnapshotCache
from app.services.expiry_service import sweep_forever
from app.services.notification_service import NotificationDispatcher

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    redis_client = await create_redis()
    app.state.trip_cache = TripSnapshotCache(redis_client)
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    app.state.http_client = httpx.AsyncClient(timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS)

    sweep_task = None
    if settings.EXPIRY_SWEEP_ENABLED:
        sweep_task = asyncio.create_task(
            sweep_forever(
                async_session_factory,
                app.state.locks,
                app.state.notifier,
                app.state.trip_cache,
                app.state.http_client,
            )
        )

    yield

    if sweep_task:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
    await app.state.http_client.aclose()
    await close_redis(redis_client)
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Bus seat booking with concurrency-safe holds, payment reconciliation and boarding tickets",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Process-wide collaborators; the lifespan swaps in live Redis and HTTP clients
app.state.locks = KeyedLock()
app.state.notifier = NotificationDispatcher()
app.state.trip_cache = TripSnapshotCache(None)
app.state.http_client = None

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

app.include_router(api_router)
app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": await app.state.trip_cache.stats(),
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
