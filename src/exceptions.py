"""
Error kinds raised by the reservation core.

Each carries the HTTP status the routers translate it to and a terse message
that is safe to show to the end user.
"""


class ReservationError(Exception):
    """Base class for all booking, check-in and payment errors"""

    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(ReservationError):
    status_code = 404
    default_message = "Not found"


class SlotUnavailable(ReservationError):
    status_code = 409
    default_message = "Time slot is not available for this port"


class InvalidTransition(ReservationError):
    status_code = 400

    def __init__(self, current_status: str, requested_status: str, message: str = None):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(message or f'Cannot transition from "{current_status}" to "{requested_status}"')


class Forbidden(ReservationError):
    status_code = 403
    default_message = "Forbidden"


class MalformedToken(ReservationError):
    status_code = 400
    default_message = "Invalid QR code data"


class TokenMismatch(ReservationError):
    status_code = 400
    default_message = "QR code does not match booking records"


class PaymentAmountMismatch(ReservationError):
    status_code = 400

    def __init__(self, expected_minor: int, received_minor: int):
        self.expected_minor = expected_minor
        self.received_minor = received_minor
        super().__init__("Payment amount does not match booking deposit")


class ReferenceMismatch(ReservationError):
    status_code = 400
    default_message = "Payment reference does not match this booking"


class SignatureInvalid(ReservationError):
    status_code = 400
    default_message = "Webhook signature verification failed"


class UpstreamUnavailable(ReservationError):
    status_code = 503
    default_message = "Payment gateway is not configured."
    retryable = True


class PaymentIncomplete(ReservationError):
    status_code = 400
    default_message = "Payment has not been completed"


class BookingNotPayable(ReservationError):
    status_code = 409
    default_message = "Booking was closed before its payment was verified; the deposit will be refunded"
