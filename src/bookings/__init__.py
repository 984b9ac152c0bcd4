"""
Charging Port Reservation Module

Reserves EV charging ports for time windows and drives each booking through
its lifecycle. It includes:

- Overlap-free reservation of a port, serialized per port
- Booking state machine with port status side effects
- Signed check-in tokens rendered as QR codes
- Station-side scan to confirm and activate bookings
- Expiry of unpaid pending bookings and port/booking reconciliation

Key Components:
- booking_service.py: Reservation engine and lifecycle transitions
- ticket_service.py: Check-in token signing, parsing and QR rendering
- checkin_service.py: Scan verification and confirm/activate at the station
- reconciliation_service.py: Port status drift repair
- locks.py: Per-port serialization of check-and-insert
- router.py: FastAPI endpoints for bookings, scans and maintenance
- schemas.py: Pydantic models for booking data structures
"""

from .booking_service import BookingService, intervals_overlap, can_transition
from .ticket_service import CheckInTokenService
from .checkin_service import CheckInService
from .reconciliation_service import PortReconciliationService
from .schemas import (
    BookingStatus, BookingCreateRequest, BookingDetail, CheckInToken,
    ScanRequest, ScanResponse, ReconciliationReport
)

__all__ = [
    "BookingService",
    "intervals_overlap",
    "can_transition",
    "CheckInTokenService",
    "CheckInService",
    "PortReconciliationService",
    "BookingStatus",
    "BookingCreateRequest",
    "BookingDetail",
    "CheckInToken",
    "ScanRequest",
    "ScanResponse",
    "ReconciliationReport",
]
