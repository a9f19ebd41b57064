"""
Booking endpoints with concurrency-safe seat reservation.
"""

from fastapi import APIRouter, Depends, Response, status

from app.api.deps import get_orchestrator
from app.core.clock import utcnow
from app.core.security import get_current_user, require_roles
from app.models.user import User, UserRole
from app.schemas.booking import BookingCancelResponse, BookingCreate, BookingResponse, booking_response
from app.schemas.ticket import TicketResponse
from app.services.booking_service import BookingOrchestrator
from app.services.ticket_service import render_qr_svg

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user: User = Depends(get_current_user),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Hold the selected seats and create a PENDING booking.

    Returns 409 if any seat was taken by someone else first; pick other
    seats and try again. The hold lasts until payment is confirmed, fails,
    or the booking expires unpaid.
    """
    booking = await orchestrator.create_booking(
        user,
        booking_data.trip_id,
        booking_data.passenger,
        booking_data.seat_numbers,
        booking_data.loyalty_points_to_use,
    )
    return booking_response(booking, utcnow())


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user: User = Depends(get_current_user),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    now = utcnow()
    return [booking_response(b, now) for b in await orchestrator.list_user_bookings(user.id)]


@router.get("/{booking_ref}", response_model=BookingResponse)
async def get_booking(
    booking_ref: str,
    user: User = Depends(get_current_user),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    booking = await orchestrator.get_booking(booking_ref, user)
    return booking_response(booking, utcnow())


@router.post("/{booking_ref}/cancel", response_model=BookingCancelResponse)
async def cancel_booking(
    booking_ref: str,
    user: User = Depends(get_current_user),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Cancel an unpaid booking and release its seats. Repeating is a no-op."""
    booking = await orchestrator.cancel_booking(booking_ref, user)
    return BookingCancelResponse(
        message="Booking cancelled",
        booking_reference=booking.booking_reference,
        status=booking.status,
        payment_status=booking.payment_status,
    )


@router.post("/{booking_ref}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_ref: str,
    admin: User = Depends(require_roles(UserRole.ADMIN)),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    booking = await orchestrator.complete_booking(booking_ref)
    return booking_response(booking, utcnow())


@router.get("/{booking_ref}/ticket", response_model=TicketResponse)
async def get_ticket(
    booking_ref: str,
    user: User = Depends(get_current_user),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    payload = await orchestrator.get_ticket(booking_ref, user)
    return TicketResponse(booking_reference=booking_ref, payload=payload)


@router.get("/{booking_ref}/ticket/qr")
async def get_ticket_qr(
    booking_ref: str,
    user: User = Depends(get_current_user),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    payload = await orchestrator.get_ticket(booking_ref, user)
    return Response(content=render_qr_svg(payload), media_type="image/svg+xml")
