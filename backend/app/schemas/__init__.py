from app.schemas.user import StaffCreate, UserCreate, UserResponse, UserLogin, Token
from app.schemas.trip import TripCreate, TripResponse, TripListResponse, SeatMapResponse
from app.schemas.booking import BookingCreate, BookingResponse, PassengerDetails
from app.schemas.payment import PaymentProvider, PaymentInitializeRequest, PaymentInitializeResponse
from app.schemas.loyalty import LoyaltySummary, RedeemRequest, BonusRequest
from app.schemas.ticket import TicketVerifyRequest, TicketVerifyResponse

__all__ = [
    "StaffCreate", "UserCreate", "UserResponse", "UserLogin", "Token",
    "TripCreate", "TripResponse", "TripListResponse", "SeatMapResponse",
    "BookingCreate", "BookingResponse", "PassengerDetails",
    "PaymentProvider", "PaymentInitializeRequest", "PaymentInitializeResponse",
    "LoyaltySummary", "RedeemRequest", "BonusRequest",
    "TicketVerifyRequest", "TicketVerifyResponse",
]
