from typing import List, Dict, Optional, Tuple
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging
import math

from src.config import settings
from src.models import Booking, ChargingPort, new_id
from src.exceptions import NotFound, SlotUnavailable, InvalidTransition, Forbidden, ReferenceMismatch
from src.auth.schemas import Actor, SYSTEM_ACTOR
from src.stations.schemas import PortStatus
from src.stations.catalog import is_static_catalog_id
from src.stations.service import StationInventoryService
from src.bookings.schemas import BookingStatus, AvailabilityRequest, AvailabilityResponse
from src.bookings.ticket_service import CheckInTokenService, as_utc
from src.bookings.locks import port_locks

# Bookings that hold their time window on a port
LIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ACTIVE)

TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW)

VALID_TRANSITIONS: Dict[BookingStatus, Tuple[BookingStatus, ...]] = {
    BookingStatus.PENDING: (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    BookingStatus.CONFIRMED: (BookingStatus.ACTIVE, BookingStatus.CANCELLED, BookingStatus.NO_SHOW),
    BookingStatus.ACTIVE: (BookingStatus.COMPLETED,),
    BookingStatus.COMPLETED: (),
    BookingStatus.CANCELLED: (),
    BookingStatus.NO_SHOW: (),
}

# Transitions that return the port to the pool
RELEASING_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection: [a_start, a_end) and [b_start, b_end)"""
    return a_start < b_end and a_end > b_start

def can_transition(current: BookingStatus, requested: BookingStatus) -> bool:
    return requested in VALID_TRANSITIONS[BookingStatus(current)]

class BookingService:
    """Reservation engine: availability, creation, lifecycle and port sync"""

    def __init__(
        self,
        db: Session,
        inventory: Optional[StationInventoryService] = None,
        token_service: Optional[CheckInTokenService] = None
    ):
        self.db = db
        self.inventory = inventory or StationInventoryService(db)
        self.token_service = token_service or CheckInTokenService()
        self.logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------
    def check_availability(self, request: AvailabilityRequest) -> AvailabilityResponse:
        """Report whether a port is free for a window without writing anything"""
        station, _ = self.resolve_station_and_port(request.station_id, request.port_id)

        start = as_utc(request.start_time)
        end = start + timedelta(minutes=request.estimated_duration)

        conflict = self.find_overlapping(
            station.id, request.port_id, start, end, stale_as_of=datetime.now(timezone.utc)
        )

        if conflict:
            return AvailabilityResponse(
                available=False,
                station_id=station.id,
                port_id=request.port_id,
                start_time=start,
                end_time=end,
                message=SlotUnavailable.default_message,
                conflicting_start=conflict.start_time,
                conflicting_end=conflict.end_time
            )

        return AvailabilityResponse(
            available=True,
            station_id=station.id,
            port_id=request.port_id,
            start_time=start,
            end_time=end,
            message="Time slot is available"
        )

    def find_overlapping(
        self,
        station_id: str,
        port_id: str,
        start: datetime,
        end: datetime,
        stale_as_of: Optional[datetime] = None
    ) -> Optional[Booking]:
        """First live booking on the port whose window intersects [start, end)"""
        query = self.db.query(Booking).filter(
            Booking.station_id == station_id,
            Booking.port_id == port_id,
            Booking.status.in_([s.value for s in LIVE_STATUSES]),
            Booking.start_time < as_utc(end),
            Booking.end_time > as_utc(start)
        )

        for booking in query.order_by(Booking.start_time).all():
            if stale_as_of is not None and self._is_stale(booking, stale_as_of):
                continue
            return booking
        return None

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_reservation(
        self,
        actor: Actor,
        station_id: str,
        port_id: str,
        start_time: datetime,
        duration_minutes: int,
        stripe_payment_intent_id: Optional[str] = None
    ) -> Booking:
        """Reserve a port for [start_time, start_time + duration).

        A supplied payment intent means payment was confirmed before the
        booking existed, so the booking starts out confirmed.
        """
        start = as_utc(start_time)
        end = start + timedelta(minutes=duration_minutes)

        with port_locks.hold(station_id, port_id):
            station, _ = self.resolve_station_and_port(station_id, port_id)

            if stripe_payment_intent_id:
                existing = self.find_by_payment_intent(stripe_payment_intent_id)
                if existing:
                    return self._existing_for_intent(existing, actor)

            self.expire_stale_pending_bookings(station_id=station.id, port_id=port_id)

            if not station.is_static_catalog:
                self.inventory.lock_port(station.id, port_id)

            conflict = self.find_overlapping(station.id, port_id, start, end)
            if conflict:
                self.db.rollback()
                self.logger.warning(
                    "Slot %s-%s on %s/%s overlaps booking %s",
                    start.isoformat(), end.isoformat(), station.id, port_id, conflict.id
                )
                raise SlotUnavailable()

            booking = Booking(
                id=new_id(),
                user_id=actor.user_id,
                user_name=actor.name or "",
                user_email=actor.email or "",
                station_id=station.id,
                port_id=port_id,
                start_time=start,
                end_time=end,
                estimated_duration=duration_minutes,
                status=(BookingStatus.CONFIRMED if stripe_payment_intent_id else BookingStatus.PENDING).value,
                deposit_amount=station.pricing.deposit_amount,
                deposit_refunded=False,
                stripe_payment_intent_id=stripe_payment_intent_id or None
            )
            booking.qr_code = self.token_service.render_qr_code(self.token_service.encode(booking))

            self.db.add(booking)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                # A concurrent webhook delivery stored the same intent first
                existing = self.find_by_payment_intent(stripe_payment_intent_id) if stripe_payment_intent_id else None
                if existing:
                    return self._existing_for_intent(existing, actor)
                raise
            self.db.refresh(booking)

            self.logger.info(
                "Booking %s created (%s) on %s/%s %s-%s",
                booking.id, booking.status, station.id, port_id, start.isoformat(), end.isoformat()
            )

            if not station.is_static_catalog:
                self._sync_port(booking, PortStatus.RESERVED, booking.id)

            return booking

    def _existing_for_intent(self, booking: Booking, actor: Actor) -> Booking:
        if booking.user_id != actor.user_id and actor.user_id != SYSTEM_ACTOR.user_id:
            raise ReferenceMismatch()
        return booking

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def transition_status(self, booking_id: str, requested_status: BookingStatus, actor: Actor) -> Booking:
        """Move a booking through the state machine with port side effects"""
        booking = self.get_booking(booking_id)
        if not booking:
            raise NotFound("Booking not found")

        self._authorize(booking, actor)
        return self._apply_transition(booking, BookingStatus(requested_status), actor)

    def cancel_booking(self, booking_id: str, actor: Actor) -> Booking:
        """Cancel a booking; an in-progress charging session cannot be cancelled"""
        return self.transition_status(booking_id, BookingStatus.CANCELLED, actor)

    def confirm_payment(
        self,
        booking: Booking,
        stripe_payment_intent_id: Optional[str] = None,
        khalti_pidx: Optional[str] = None,
        khalti_transaction_id: Optional[str] = None
    ) -> Booking:
        """Record a confirmed deposit and move the booking to confirmed"""
        if stripe_payment_intent_id:
            booking.stripe_payment_intent_id = stripe_payment_intent_id
        if khalti_pidx:
            booking.khalti_pidx = khalti_pidx
        if khalti_transaction_id:
            booking.khalti_transaction_id = khalti_transaction_id
        booking.deposit_refunded = False

        return self._apply_transition(booking, BookingStatus.CONFIRMED, SYSTEM_ACTOR)

    def mark_deposit_refunded(self, booking: Booking) -> Booking:
        booking.deposit_refunded = True
        self.db.commit()
        self.db.refresh(booking)
        self.logger.info("Deposit for booking %s marked refunded", booking.id)
        return booking

    def record_wallet_reference(self, booking: Booking, pidx: str) -> Booking:
        booking.khalti_pidx = pidx
        self.db.commit()
        self.db.refresh(booking)
        return booking

    def expire_stale_pending_bookings(
        self,
        now: Optional[datetime] = None,
        station_id: Optional[str] = None,
        port_id: Optional[str] = None
    ) -> int:
        """Cancel pending bookings whose checkout window has lapsed"""
        cutoff = self.stale_cutoff(now)

        query = self.db.query(Booking).filter(
            Booking.status == BookingStatus.PENDING.value,
            Booking.created_at < cutoff
        )
        if station_id:
            query = query.filter(Booking.station_id == station_id)
        if port_id:
            query = query.filter(Booking.port_id == port_id)

        stale = [booking for booking in query.all() if self._is_stale(booking, now)]
        for booking in stale:
            self._apply_transition(booking, BookingStatus.CANCELLED, SYSTEM_ACTOR)
            self.logger.info("Expired pending booking %s created at %s", booking.id, booking.created_at)

        return len(stale)

    def _apply_transition(self, booking: Booking, requested: BookingStatus, actor: Actor) -> Booking:
        current = BookingStatus(booking.status)

        if current == BookingStatus.ACTIVE and requested == BookingStatus.CANCELLED:
            raise InvalidTransition(current.value, requested.value, "Cannot cancel an active booking")

        if not can_transition(current, requested):
            self.logger.warning(
                "Rejected transition %s -> %s for booking %s", current.value, requested.value, booking.id
            )
            raise InvalidTransition(current.value, requested.value)

        # Booking first, port second
        booking.status = requested.value
        self.db.commit()
        self.db.refresh(booking)

        self.logger.info(
            "Booking %s %s -> %s by %s", booking.id, current.value, requested.value, actor.user_id
        )

        if not is_static_catalog_id(booking.station_id):
            if requested in RELEASING_STATUSES:
                self._release_port(booking)
            elif requested == BookingStatus.ACTIVE:
                self._sync_port(booking, PortStatus.OCCUPIED, booking.id)
            elif requested == BookingStatus.CONFIRMED:
                self._sync_port(booking, PortStatus.RESERVED, booking.id)

        return booking

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Get booking by ID"""
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def get_booking_for_actor(self, booking_id: str, actor: Actor) -> Booking:
        booking = self.get_booking(booking_id)
        if not booking:
            raise NotFound("Booking not found")
        self._authorize(booking, actor)
        return booking

    def find_by_payment_intent(self, payment_intent_id: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(
            Booking.stripe_payment_intent_id == payment_intent_id
        ).first()

    def get_user_bookings(self, user_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        """Get all bookings for a user, newest first"""
        query = self.db.query(Booking).filter(Booking.user_id == user_id)
        if status:
            query = query.filter(Booking.status == BookingStatus(status).value)
        return query.order_by(Booking.created_at.desc()).all()

    def search_bookings(
        self,
        actor: Actor,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Booking], Dict[str, int]]:
        """Bookings visible to an administrator, paginated"""
        query = self.db.query(Booking)

        if status:
            query = query.filter(Booking.status == BookingStatus(status).value)

        # Station admins only see bookings for their own stations
        if not actor.is_superadmin:
            station_ids = self.inventory.get_admin_station_ids(actor.user_id)
            query = query.filter(Booking.station_id.in_(station_ids))

        total = query.count()
        bookings = query.order_by(Booking.created_at.desc()).offset((page - 1) * limit).limit(limit).all()

        return bookings, {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 0
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def resolve_station_and_port(self, station_id: str, port_id: str):
        station = self.inventory.find_station_by_id(station_id)
        if not station:
            raise NotFound("Station not found")

        port = self.inventory.find_port_within_station(station, port_id)
        if not port:
            raise NotFound("Port not found")

        return station, port

    @staticmethod
    def _authorize(booking: Booking, actor: Actor):
        if booking.user_id != actor.user_id and not actor.is_admin:
            raise Forbidden()

    @staticmethod
    def stale_cutoff(now: Optional[datetime] = None, awaiting_wallet: bool = False) -> datetime:
        """Creation time before which a pending booking counts as abandoned.

        A booking with an open wallet checkout may already be paid, so it is
        held until the checkout link itself has expired.
        """
        now = as_utc(now) if now else datetime.now(timezone.utc)
        minutes = settings.PENDING_BOOKING_EXPIRY_MINUTES
        if awaiting_wallet:
            minutes = max(minutes, settings.KHALTI_LINK_LIFETIME_MINUTES)
        return now - timedelta(minutes=minutes)

    @classmethod
    def _is_stale(cls, booking: Booking, now: Optional[datetime] = None) -> bool:
        if booking.status != BookingStatus.PENDING.value or booking.created_at is None:
            return False
        cutoff = cls.stale_cutoff(now, awaiting_wallet=bool(booking.khalti_pidx))
        return as_utc(booking.created_at) < cutoff

    def _release_port(self, booking: Booking):
        port = self.db.query(ChargingPort).filter(
            ChargingPort.station_id == booking.station_id,
            ChargingPort.id == booking.port_id
        ).first()

        if port and port.current_booking_id not in (None, booking.id):
            # A later booking holds the port now; leave its hold in place
            self.logger.info(
                "Port %s/%s held by booking %s, not released for %s",
                booking.station_id, booking.port_id, port.current_booking_id, booking.id
            )
            return

        self._sync_port(booking, PortStatus.AVAILABLE, None)

    def _sync_port(self, booking: Booking, status: PortStatus, booking_ref: Optional[str]):
        try:
            self.inventory.set_port_status(booking.station_id, booking.port_id, status, booking_ref)
        except Exception:
            self.db.rollback()
            self.logger.error(
                "Port %s/%s not set to %s after booking %s changed; left for reconciliation",
                booking.station_id, booking.port_id, status.value, booking.id, exc_info=True
            )
            raise
