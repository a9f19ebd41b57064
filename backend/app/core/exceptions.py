"""
Domain exceptions for the booking engine.

Services raise these instead of HTTPException so they can be driven from the
expiry sweep, the load tests and the API alike. The API layer maps them to
JSON responses in app/api/exception_handlers.py using `status_code`.
"""


class BookingEngineError(Exception):
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BookingEngineError):
    """Malformed or missing request fields; rejected before touching inventory."""

    code = "validation_error"


class NotFoundError(BookingEngineError):
    status_code = 404
    code = "not_found"


class PermissionDeniedError(BookingEngineError):
    status_code = 403
    code = "forbidden"


class SeatConflict(BookingEngineError):
    """Requested seats are already held; the caller should pick other seats."""

    status_code = 409
    code = "seat_conflict"

    def __init__(self, trip_id: int, seat_numbers: list[str]):
        self.trip_id = trip_id
        self.seat_numbers = list(seat_numbers)
        super().__init__(
            f"Seats no longer available: {', '.join(self.seat_numbers) or 'trip is full'}"
        )


class InsufficientLoyaltyPoints(BookingEngineError):
    code = "insufficient_loyalty_points"

    def __init__(self, requested: int, balance: int):
        self.requested = requested
        self.balance = balance
        super().__init__(f"Insufficient loyalty points: requested {requested}, balance {balance}")


class PaymentGatewayError(BookingEngineError):
    """Gateway timed out, was unreachable or rejected the call. Safe to retry."""

    status_code = 502
    code = "payment_gateway_error"
    retryable = True

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class PaymentVerificationMismatch(BookingEngineError):
    """Gateway result disagrees with the booking; routed to manual review."""

    status_code = 202
    code = "payment_under_review"

    def __init__(self, booking_ref: str, expected, confirmed):
        self.booking_ref = booking_ref
        self.expected = expected
        self.confirmed = confirmed
        super().__init__(
            f"Payment under review: booking {booking_ref} expected {expected}, gateway confirmed {confirmed}"
        )


class WebhookSignatureError(BookingEngineError):
    status_code = 401
    code = "invalid_signature"


class TicketScanError(BookingEngineError):
    """Base for scan outcomes that do not allow boarding."""

    state = "invalid"
    code = "ticket_invalid"


class TicketInvalid(TicketScanError):
    state = "invalid"
    code = "ticket_invalid"


class TicketTooEarly(TicketScanError):
    state = "too_early"
    code = "ticket_too_early"


class TicketExpired(TicketScanError):
    state = "boarding_ended"
    code = "ticket_expired"


class AccountConflictError(BookingEngineError):
    status_code = 409
    code = "account_exists"


class AuthenticationError(BookingEngineError):
    status_code = 401
    code = "invalid_credentials"
