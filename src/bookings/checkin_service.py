from typing import Optional, Tuple
from sqlalchemy.orm import Session
import logging

from src.models import Booking
from src.exceptions import NotFound, TokenMismatch, InvalidTransition
from src.auth.schemas import Actor
from src.bookings.schemas import BookingStatus
from src.bookings.booking_service import BookingService
from src.bookings.ticket_service import CheckInTokenService

STATUS_MESSAGES = {
    BookingStatus.PENDING: "Booking is pending confirmation",
    BookingStatus.CONFIRMED: "Ready to activate",
    BookingStatus.ACTIVE: "Charging session is in progress",
    BookingStatus.COMPLETED: "Booking is already completed",
    BookingStatus.CANCELLED: "Booking has been cancelled",
    BookingStatus.NO_SHOW: "Booking was marked as no-show",
}

# Next state reached by a station-side confirmation
CHECKIN_STEPS = {
    BookingStatus.PENDING: BookingStatus.CONFIRMED,
    BookingStatus.CONFIRMED: BookingStatus.ACTIVE,
}

class CheckInService:
    """QR check-in at the station: token re-validation and confirm/activate"""

    def __init__(
        self,
        db: Session,
        booking_service: Optional[BookingService] = None,
        token_service: Optional[CheckInTokenService] = None
    ):
        self.db = db
        self.token_service = token_service or CheckInTokenService()
        self.booking_service = booking_service or BookingService(db, token_service=self.token_service)
        self.logger = logging.getLogger(self.__class__.__name__)

    def verify_token(self, raw_payload: str) -> Tuple[Booking, str]:
        """Re-validate a scanned token against the stored booking. Read-only."""
        token = self.token_service.parse(raw_payload)

        booking = self.booking_service.get_booking(token.booking_id)
        if not booking:
            raise NotFound("Booking not found")

        if not self.token_service.matches_booking(token, booking):
            self.logger.warning("Stale or tampered check-in token for booking %s", booking.id)
            raise TokenMismatch()

        return booking, STATUS_MESSAGES[BookingStatus(booking.status)]

    def confirm_at_station(self, booking_id: str, actor: Actor) -> Tuple[Booking, BookingStatus]:
        """Advance pending -> confirmed or confirmed -> active.

        Returns the booking and the status it had before the scan.
        """
        booking = self.booking_service.get_booking(booking_id)
        if not booking:
            raise NotFound("Booking not found")

        previous = BookingStatus(booking.status)
        target = CHECKIN_STEPS.get(previous)
        if target is None:
            raise InvalidTransition(previous.value, BookingStatus.CONFIRMED.value)

        booking = self.booking_service.transition_status(booking.id, target, actor)
        self.logger.info("Check-in for booking %s: %s -> %s", booking.id, previous.value, target.value)
        return booking, previous

    def scan_and_confirm(self, raw_payload: str, actor: Actor) -> Tuple[Booking, BookingStatus]:
        booking, _ = self.verify_token(raw_payload)
        return self.confirm_at_station(booking.id, actor)

    @staticmethod
    def confirmation_message(new_status: BookingStatus) -> str:
        if new_status == BookingStatus.CONFIRMED:
            return "Booking confirmed"
        return "Charging session activated"
