"""
Boarding: staff scan a ticket and learn whether the passenger may board.
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_ticket_service
from app.core.clock import utcnow
from app.core.security import require_roles
from app.models.user import User, UserRole
from app.schemas.ticket import TicketVerifyRequest, TicketVerifyResponse
from app.services.ticket_service import TicketService

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("/verify", response_model=TicketVerifyResponse)
async def verify_ticket(
    request_data: TicketVerifyRequest,
    staff: User = Depends(require_roles(UserRole.ADMIN, UserRole.DRIVER)),
    tickets: TicketService = Depends(get_ticket_service),
):
    """
    Always 200: a bad or early ticket is a scan outcome, not a request error.
    `state` is one of invalid, too_early, boarding, boarding_ended.
    """
    result = await tickets.verify(request_data.payload, utcnow())
    return TicketVerifyResponse(
        valid=result.valid,
        state=result.state,
        message=result.message,
        booking_summary=result.booking_summary,
    )
