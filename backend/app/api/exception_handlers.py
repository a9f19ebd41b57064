"""
Maps domain exceptions to JSON responses: {"detail": ..., "code": ...}.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.exceptions import AuthenticationError, BookingEngineError, WebhookSignatureError
from app.core.logging import get_logger

logger = get_logger(__name__)


async def booking_engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("domain_error", error_code=exc.code, detail=exc.message)
    else:
        logger.info("domain_error", error_code=exc.code, detail=exc.message, status_code=exc.status_code)

    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    content = {"detail": exc.message, "code": exc.code}
    if getattr(exc, "retryable", False):
        content["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def webhook_signature_error_handler(request: Request, exc: WebhookSignatureError) -> JSONResponse:
    logger.warning("webhook_signature_rejected", path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


EXCEPTION_HANDLERS = {
    WebhookSignatureError: webhook_signature_error_handler,
    BookingEngineError: booking_engine_error_handler,
}


def register_exception_handlers(app) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
