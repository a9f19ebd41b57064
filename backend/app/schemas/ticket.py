"""
Pydantic schemas for digital tickets and boarding scans.
"""

from typing import Any, Optional

from pydantic import BaseModel


class TicketResponse(BaseModel):
    booking_reference: str
    payload: str


class TicketVerifyRequest(BaseModel):
    payload: str


class TicketVerifyResponse(BaseModel):
    valid: bool
    state: str
    message: str
    booking_summary: Optional[dict[str, Any]] = None
