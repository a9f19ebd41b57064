"""
Payment endpoints: initialize, verify, gateway webhooks, bank transfer receipts
and manual review.

Every path that learns something about a payment ends in the reconciliation
engine, so polls, webhooks and admin decisions are interchangeable and may be
repeated safely.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile, status

from app.api.deps import get_orchestrator, get_receipt_service, get_reconciliation_engine
from app.core.config import get_settings
from app.core.security import get_current_user, require_roles
from app.models.user import User, UserRole
from app.schemas.payment import (
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    PaymentProvider,
    PaymentVerifyResponse,
    ReceiptDecision,
    ReceiptResponse,
    ReviewDecision,
)
from app.services.booking_service import BookingOrchestrator
from app.services.receipt_service import ReceiptService
from app.services.reconciliation_service import (
    ReconciliationEngine,
    ReconciliationOutcome,
    ReconciliationResult,
)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _verify_response(result: ReconciliationResult, response: Response) -> PaymentVerifyResponse:
    if result.outcome == ReconciliationOutcome.UNDER_REVIEW:
        response.status_code = status.HTTP_202_ACCEPTED
    booking = result.booking
    return PaymentVerifyResponse(
        booking_reference=booking.booking_reference if booking else None,
        payment_reference=result.payment_reference,
        outcome=result.outcome,
        booking_status=booking.status if booking else None,
        payment_status=booking.payment_status if booking else None,
        message=result.message,
    )


@router.post("/initialize", response_model=PaymentInitializeResponse)
async def initialize_payment(
    request_data: PaymentInitializeRequest,
    user: User = Depends(get_current_user),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Start (or restart) payment on a PENDING booking with the chosen rail."""
    booking, init = await orchestrator.start_payment(request_data.booking_reference, request_data.provider, user)
    return PaymentInitializeResponse(
        booking_reference=booking.booking_reference,
        provider=request_data.provider,
        payment_reference=init.provider_reference,
        amount=booking.total_amount,
        currency=get_settings().CURRENCY,
        redirect_url=init.redirect_url,
        instructions=init.instructions,
    )


@router.get("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    response: Response,
    reference: str = Query(..., min_length=1),
    user: User = Depends(get_current_user),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    """
    Ask the rail for the payment's status and fold it into the booking.
    Answers 202 when the payment was parked for manual review.
    """
    result = await engine.poll(reference)
    return _verify_response(result, response)


async def _webhook(provider: PaymentProvider, request: Request, engine: ReconciliationEngine) -> dict:
    body = await request.body()
    result = await engine.handle_webhook(provider.value, body, request.headers)
    return {"status": "ok", "outcome": result.outcome}


@router.post("/webhook/paystack")
async def paystack_webhook(request: Request, engine: ReconciliationEngine = Depends(get_reconciliation_engine)):
    return await _webhook(PaymentProvider.PAYSTACK, request, engine)


@router.post("/webhook/opay")
async def opay_webhook(request: Request, engine: ReconciliationEngine = Depends(get_reconciliation_engine)):
    return await _webhook(PaymentProvider.OPAY, request, engine)


@router.post("/receipts", response_model=ReceiptResponse, status_code=status.HTTP_201_CREATED)
async def upload_receipt(
    booking_reference: str = Form(...),
    payment_reference: str = Form(...),
    amount_paid: Decimal = Form(..., gt=0),
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    receipts: ReceiptService = Depends(get_receipt_service),
):
    """Upload proof of a bank transfer (JPEG, PNG or WebP, up to 5 MB)."""
    content = await file.read()
    return await receipts.upload(
        booking_reference,
        payment_reference,
        amount_paid,
        content,
        file.filename,
        file.content_type,
        user,
    )


@router.post("/receipts/{booking_ref}/approve", response_model=PaymentVerifyResponse)
async def approve_receipt(
    booking_ref: str,
    response: Response,
    decision: ReceiptDecision | None = None,
    admin: User = Depends(require_roles(UserRole.ADMIN)),
    receipts: ReceiptService = Depends(get_receipt_service),
):
    _, result = await receipts.decide(booking_ref, True, admin, decision.notes if decision else None)
    return _verify_response(result, response)


@router.post("/receipts/{booking_ref}/reject", response_model=PaymentVerifyResponse)
async def reject_receipt(
    booking_ref: str,
    response: Response,
    decision: ReceiptDecision | None = None,
    admin: User = Depends(require_roles(UserRole.ADMIN)),
    receipts: ReceiptService = Depends(get_receipt_service),
):
    _, result = await receipts.decide(booking_ref, False, admin, decision.notes if decision else None)
    return _verify_response(result, response)


@router.post("/review/{booking_ref}", response_model=PaymentVerifyResponse)
async def resolve_review(
    booking_ref: str,
    decision: ReviewDecision,
    response: Response,
    admin: User = Depends(require_roles(UserRole.ADMIN)),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    """Settle a booking parked because the gateway confirmed a different amount."""
    result = await engine.resolve_review(booking_ref, decision.approve, admin.id)
    return _verify_response(result, response)
