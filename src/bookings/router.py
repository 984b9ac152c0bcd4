from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime, timezone

from src.database import get_db
from src.exceptions import ReservationError
from src.auth.schemas import Actor
from src.auth.dependencies import get_current_actor, require_admin
from src.bookings.schemas import (
    BookingCreateRequest, AvailabilityRequest, AvailabilityResponse, BookingStatusUpdate,
    BookingStatus, BookingDetail, BookingListResponse, AdminBookingListResponse, Pagination,
    ScanRequest, ScanResponse, ExpirySweepResult, ReconciliationReport
)
from src.bookings.booking_service import BookingService
from src.bookings.checkin_service import CheckInService
from src.bookings.reconciliation_service import PortReconciliationService
from src.payments.gateways import PaymentGateway
from src.payments.dependencies import get_card_gateway
from src.payments.service import PaymentReconciliationService

router = APIRouter()

# Reservation Endpoints
@router.post("/", response_model=BookingDetail, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingCreateRequest,
    actor: Actor = Depends(get_current_actor),
    card_gateway: Optional[PaymentGateway] = Depends(get_card_gateway),
    db: Session = Depends(get_db)
):
    """Reserve a charging port for a time window"""
    try:
        if request.stripe_payment_intent_id:
            payments = PaymentReconciliationService(db, card_gateway=card_gateway)
            booking = payments.create_prepaid_booking(actor, request)
        else:
            booking = BookingService(db).create_reservation(
                actor,
                request.station_id,
                request.port_id,
                request.start_time,
                request.estimated_duration
            )
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return BookingDetail.from_booking(booking)

@router.get("/", response_model=BookingListResponse)
def get_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Get the caller's bookings, newest first"""
    bookings = BookingService(db).get_user_bookings(actor.user_id, status_filter)
    return BookingListResponse(bookings=[BookingDetail.from_booking(b) for b in bookings])

@router.post("/check-availability", response_model=AvailabilityResponse)
def check_availability(
    request: AvailabilityRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Check whether a port is free for a time window"""
    try:
        return BookingService(db).check_availability(request)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

# Admin Endpoints
@router.get("/admin", response_model=AdminBookingListResponse)
def get_admin_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Bookings at the stations the caller administers"""
    bookings, pagination = BookingService(db).search_bookings(admin, status_filter, page, limit)
    return AdminBookingListResponse(
        bookings=[BookingDetail.from_booking(b) for b in bookings],
        pagination=Pagination(**pagination)
    )

@router.post("/scan", response_model=ScanResponse)
def scan_booking_qr(
    request: ScanRequest,
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Verify a scanned check-in code, or confirm the booking it names"""
    checkin = CheckInService(db)

    try:
        if request.action == "verify":
            booking, message = checkin.verify_token(request.qr_data)
            return ScanResponse(booking=BookingDetail.from_booking(booking), message=message)

        booking, previous = checkin.scan_and_confirm(request.qr_data, admin)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    new_status = BookingStatus(booking.status)
    return ScanResponse(
        booking=BookingDetail.from_booking(booking),
        message=checkin.confirmation_message(new_status),
        previous_status=previous,
        new_status=new_status
    )

@router.post("/maintenance/expire-pending", response_model=ExpirySweepResult)
def expire_pending_bookings(
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Cancel pending bookings whose checkout window has lapsed"""
    now = datetime.now(timezone.utc)
    service = BookingService(db)
    expired = service.expire_stale_pending_bookings(now=now)
    return ExpirySweepResult(expired_bookings=expired, cutoff=service.stale_cutoff(now))

@router.post("/maintenance/reconcile-ports", response_model=ReconciliationReport)
def reconcile_ports(
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Repair drift between port status and booking status"""
    return PortReconciliationService(db).reconcile()

# Single Booking Endpoints
@router.get("/{booking_id}", response_model=BookingDetail)
def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Get booking details"""
    try:
        booking = BookingService(db).get_booking_for_actor(booking_id, actor)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return BookingDetail.from_booking(booking)

@router.patch("/{booking_id}", response_model=BookingDetail)
def update_booking_status(
    booking_id: str,
    request: BookingStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Move a booking to a new lifecycle status"""
    try:
        booking = BookingService(db).transition_status(booking_id, request.status, actor)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return BookingDetail.from_booking(booking)

@router.delete("/{booking_id}", response_model=BookingDetail)
def cancel_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Cancel a booking"""
    try:
        booking = BookingService(db).cancel_booking(booking_id, actor)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return BookingDetail.from_booking(booking)
