from typing import Optional, Tuple
from datetime import datetime
from sqlalchemy.orm import Session
import logging

from src.config import settings
from src.models import Booking
from src.exceptions import (
    NotFound, Forbidden, SlotUnavailable, ReferenceMismatch, PaymentAmountMismatch,
    PaymentIncomplete, UpstreamUnavailable, BookingNotPayable
)
from src.auth.schemas import Actor, UserRole, SYSTEM_ACTOR
from src.bookings.schemas import BookingStatus, BookingCreateRequest, BookingDetail
from src.bookings.booking_service import BookingService
from src.bookings.ticket_service import as_utc
from src.payments.gateways import (
    PaymentGateway, PendingCharge, PaymentLookupStatus, minor_units
)
from src.payments.schemas import (
    DepositIntentRequest, DepositIntentResponse, WalletInitiateRequest,
    PaymentVerifyResponse, WebhookAck
)

# Statuses at which a deposit has already been accepted
PAID_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value, BookingStatus.COMPLETED.value)

# Statuses a late payment can no longer revive
CLOSED_STATUSES = (BookingStatus.CANCELLED.value, BookingStatus.NO_SHOW.value)

INTENT_METADATA_KEYS = ("userId", "stationId", "portId", "startTime", "estimatedDuration")

class PaymentReconciliationService:
    """Ties card and wallet payment outcomes to bookings"""

    def __init__(
        self,
        db: Session,
        card_gateway: Optional[PaymentGateway] = None,
        wallet_gateway: Optional[PaymentGateway] = None,
        booking_service: Optional[BookingService] = None
    ):
        self.db = db
        self.card_gateway = card_gateway
        self.wallet_gateway = wallet_gateway
        self.booking_service = booking_service or BookingService(db)
        self.logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Card deposits
    # ------------------------------------------------------------------
    def create_deposit_intent(self, actor: Actor, request: DepositIntentRequest) -> DepositIntentResponse:
        """Open a card charge for the station deposit; no booking is written yet"""
        gateway = self._require(self.card_gateway)
        station, port = self.booking_service.resolve_station_and_port(request.station_id, request.port_id)

        deposit = station.pricing.deposit_amount
        charge = gateway.create_pending_charge(minor_units(deposit), {
            "userId": actor.user_id,
            "userName": actor.name,
            "userEmail": actor.email,
            "stationId": station.id,
            "stationName": station.name,
            "portId": port.id,
            "portNumber": port.port_number,
            "startTime": as_utc(request.start_time).isoformat(),
            "estimatedDuration": request.estimated_duration,
        })

        self.logger.info(
            "Deposit intent %s opened for %s on %s/%s", charge.reference, actor.user_id, station.id, port.id
        )

        return DepositIntentResponse(
            client_secret=charge.client_secret or "",
            payment_intent_id=charge.reference,
            amount=deposit,
            currency=settings.STRIPE_CURRENCY.upper()
        )

    def create_prepaid_booking(self, actor: Actor, request: BookingCreateRequest) -> Booking:
        """Create a booking for a card intent the client reports as paid"""
        reference = request.stripe_payment_intent_id

        existing = self.booking_service.find_by_payment_intent(reference)
        if existing:
            if existing.user_id != actor.user_id:
                raise ReferenceMismatch()
            return existing

        gateway = self._require(self.card_gateway)
        station, _ = self.booking_service.resolve_station_and_port(request.station_id, request.port_id)

        lookup = gateway.lookup(reference)
        if lookup.status != PaymentLookupStatus.COMPLETED:
            raise PaymentIncomplete()

        owner = lookup.metadata.get("userId")
        if owner and owner != actor.user_id:
            self.logger.warning("Intent %s belongs to %s, submitted by %s", reference, owner, actor.user_id)
            raise ReferenceMismatch()

        expected = minor_units(station.pricing.deposit_amount)
        if lookup.paid_amount_minor != expected:
            self.logger.error(
                "Intent %s paid %d, deposit is %d", reference, lookup.paid_amount_minor, expected
            )
            raise PaymentAmountMismatch(expected, lookup.paid_amount_minor)

        return self.booking_service.create_reservation(
            actor,
            station.id,
            request.port_id,
            request.start_time,
            request.estimated_duration,
            stripe_payment_intent_id=reference
        )

    def handle_card_webhook(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookAck:
        """Apply a signed card-provider event. Re-delivery is harmless."""
        gateway = self._require(self.card_gateway)
        event = gateway.verify_webhook_signature(raw_body, signature_header)

        if event.type == "payment_intent.succeeded":
            outcome = self._on_intent_succeeded(event.data)
        elif event.type == "payment_intent.payment_failed":
            outcome = self._on_intent_failed(event.data)
        elif event.type == "charge.refunded":
            outcome = self._on_charge_refunded(event.data)
        else:
            outcome = "ignored"

        self.logger.info("Webhook %s (%s): %s", event.id, event.type, outcome)
        return WebhookAck(event_type=event.type, outcome=outcome)

    def _on_intent_succeeded(self, intent: dict) -> str:
        intent_id = intent.get("id")
        if not intent_id:
            return "missing_reference"

        existing = self.booking_service.find_by_payment_intent(intent_id)
        if existing:
            if existing.status == BookingStatus.PENDING.value:
                self.booking_service.confirm_payment(existing, stripe_payment_intent_id=intent_id)
                return "confirmed"
            if existing.status in PAID_STATUSES:
                return "already_confirmed"
            self.logger.warning(
                "Payment succeeded for booking %s which is %s", existing.id, existing.status
            )
            return "ignored_terminal"

        metadata = intent.get("metadata") or {}
        missing = [key for key in INTENT_METADATA_KEYS if not metadata.get(key)]
        if missing:
            self.logger.error("Intent %s lacks booking metadata %s", intent_id, missing)
            return "missing_metadata"

        try:
            start_time = datetime.fromisoformat(metadata["startTime"].replace("Z", "+00:00"))
            duration = int(float(metadata["estimatedDuration"]))
        except ValueError:
            self.logger.error("Intent %s has unreadable booking metadata", intent_id)
            return "missing_metadata"

        try:
            station, _ = self.booking_service.resolve_station_and_port(metadata["stationId"], metadata["portId"])
        except NotFound:
            self.logger.error("Intent %s names unknown station/port %s/%s", intent_id,
                              metadata["stationId"], metadata["portId"])
            return "station_not_found"

        received = int(intent.get("amount_received") or intent.get("amount") or 0)
        expected = minor_units(station.pricing.deposit_amount)
        if received != expected:
            self.logger.error("Intent %s paid %d, deposit is %d; refund required", intent_id, received, expected)
            return "amount_mismatch"

        owner = Actor(
            user_id=metadata["userId"],
            name=metadata.get("userName") or "",
            email=metadata.get("userEmail") or "",
            role=UserRole.USER
        )

        try:
            booking = self.booking_service.create_reservation(
                owner, station.id, metadata["portId"], start_time, duration,
                stripe_payment_intent_id=intent_id
            )
        except SlotUnavailable:
            self.logger.error("Paid intent %s could not be booked, slot is taken; refund required", intent_id)
            return "slot_unavailable"

        self.logger.info("Booking %s created from webhook for intent %s", booking.id, intent_id)
        return "created"

    def _on_intent_failed(self, intent: dict) -> str:
        booking = self.booking_service.find_by_payment_intent(intent.get("id") or "")
        if not booking:
            return "no_booking"
        if booking.status not in (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value):
            return "unchanged"
        self.booking_service.transition_status(booking.id, BookingStatus.CANCELLED, SYSTEM_ACTOR)
        return "cancelled"

    def _on_charge_refunded(self, charge: dict) -> str:
        booking = self.booking_service.find_by_payment_intent(charge.get("payment_intent") or "")
        if not booking:
            return "no_booking"
        if booking.deposit_refunded:
            return "already_refunded"
        self.booking_service.mark_deposit_refunded(booking)
        return "refunded"

    # ------------------------------------------------------------------
    # Wallet deposits
    # ------------------------------------------------------------------
    def initiate_wallet_payment(self, actor: Actor, request: WalletInitiateRequest) -> Tuple[Booking, PendingCharge]:
        """Hold the slot as a pending booking and open a wallet checkout for it"""
        gateway = self._require(self.wallet_gateway)

        booking = self.booking_service.create_reservation(
            actor, request.station_id, request.port_id, request.start_time, request.estimated_duration
        )

        try:
            charge = gateway.create_pending_charge(minor_units(booking.deposit_amount), {
                "booking_id": booking.id,
                "purchase_order_name": f"EV charging deposit {booking.id[:8]}",
                "customer_name": actor.name,
                "customer_email": actor.email,
            })
        except UpstreamUnavailable:
            self.logger.error("Wallet checkout failed for booking %s; cancelling", booking.id)
            self.booking_service.transition_status(booking.id, BookingStatus.CANCELLED, SYSTEM_ACTOR)
            raise

        booking = self.booking_service.record_wallet_reference(booking, charge.reference)
        return booking, charge

    def verify_wallet_payment(self, actor: Actor, booking_id: str, pidx: str) -> PaymentVerifyResponse:
        """Confirm a wallet deposit by looking it up with the provider"""
        gateway = self._require(self.wallet_gateway)

        booking = self.booking_service.get_booking(booking_id)
        if not booking:
            raise NotFound("Booking not found")
        if booking.user_id != actor.user_id:
            raise Forbidden()
        if not booking.khalti_pidx or booking.khalti_pidx != pidx:
            self.logger.warning("pidx %s does not belong to booking %s", pidx, booking.id)
            raise ReferenceMismatch()

        if booking.status in PAID_STATUSES:
            return PaymentVerifyResponse(
                verified=True,
                status="Completed",
                payment_status=PaymentLookupStatus.COMPLETED,
                booking=BookingDetail.from_booking(booking)
            )

        lookup = gateway.lookup(pidx)

        if lookup.status == PaymentLookupStatus.COMPLETED:
            if booking.status in CLOSED_STATUSES:
                self.logger.error(
                    "Wallet payment %s completed for booking %s which is %s; refund required",
                    pidx, booking.id, booking.status
                )
                raise BookingNotPayable()

            expected = minor_units(booking.deposit_amount)
            if lookup.paid_amount_minor != expected:
                self.logger.error(
                    "Wallet payment %s for booking %s paid %d, deposit is %d",
                    pidx, booking.id, lookup.paid_amount_minor, expected
                )
                raise PaymentAmountMismatch(expected, lookup.paid_amount_minor)

            booking = self.booking_service.confirm_payment(
                booking, khalti_pidx=pidx, khalti_transaction_id=lookup.transaction_id
            )
            return PaymentVerifyResponse(
                verified=True,
                status=lookup.provider_status,
                payment_status=lookup.status,
                booking=BookingDetail.from_booking(booking)
            )

        if lookup.status in (PaymentLookupStatus.USER_CANCELED, PaymentLookupStatus.EXPIRED):
            if booking.status == BookingStatus.PENDING.value:
                booking = self.booking_service.transition_status(booking.id, BookingStatus.CANCELLED, SYSTEM_ACTOR)
        elif lookup.status in (PaymentLookupStatus.REFUNDED, PaymentLookupStatus.PARTIALLY_REFUNDED):
            if not booking.deposit_refunded:
                booking = self.booking_service.mark_deposit_refunded(booking)

        return PaymentVerifyResponse(
            verified=False,
            status=lookup.provider_status,
            payment_status=lookup.status,
            booking=BookingDetail.from_booking(booking)
        )

    @staticmethod
    def _require(gateway: Optional[PaymentGateway]) -> PaymentGateway:
        if gateway is None:
            raise UpstreamUnavailable()
        return gateway
