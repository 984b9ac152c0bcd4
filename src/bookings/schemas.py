from pydantic import BaseModel, Field, validator
from typing import List, Optional, Literal
from datetime import datetime
from decimal import Decimal
from enum import Enum

class BookingStatus(str, Enum):
    """Booking status enumeration"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

# Reservation Request Models
class BookingCreateRequest(BaseModel):
    """Request to reserve a charging port for a time window"""
    station_id: str
    port_id: str
    start_time: datetime
    estimated_duration: int = Field(..., gt=0, le=24 * 60, description="Duration in minutes")
    stripe_payment_intent_id: Optional[str] = None

class AvailabilityRequest(BaseModel):
    """Request to check whether a port is free for a time window"""
    station_id: str
    port_id: str
    start_time: datetime
    estimated_duration: int = Field(..., gt=0, le=24 * 60)

class AvailabilityResponse(BaseModel):
    available: bool
    station_id: str
    port_id: str
    start_time: datetime
    end_time: datetime
    message: str
    conflicting_start: Optional[datetime] = None
    conflicting_end: Optional[datetime] = None

class BookingStatusUpdate(BaseModel):
    """Request to move a booking through its lifecycle"""
    status: BookingStatus

# Booking Response Models
class DepositInfo(BaseModel):
    amount: Decimal
    refunded: bool = False
    stripe_payment_intent_id: Optional[str] = None
    khalti_pidx: Optional[str] = None
    khalti_transaction_id: Optional[str] = None

class BookingDetail(BaseModel):
    """Booking snapshot returned to clients"""
    id: str
    user_id: str
    user_name: str = ""
    user_email: str = ""
    station_id: str
    port_id: str
    start_time: datetime
    end_time: datetime
    estimated_duration: int
    status: BookingStatus
    deposit: DepositInfo
    qr_code: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking) -> "BookingDetail":
        return cls(
            id=booking.id,
            user_id=booking.user_id,
            user_name=booking.user_name or "",
            user_email=booking.user_email or "",
            station_id=booking.station_id,
            port_id=booking.port_id,
            start_time=booking.start_time,
            end_time=booking.end_time,
            estimated_duration=booking.estimated_duration,
            status=BookingStatus(booking.status),
            deposit=DepositInfo(
                amount=booking.deposit_amount,
                refunded=bool(booking.deposit_refunded),
                stripe_payment_intent_id=booking.stripe_payment_intent_id,
                khalti_pidx=booking.khalti_pidx,
                khalti_transaction_id=booking.khalti_transaction_id
            ),
            qr_code=booking.qr_code,
            created_at=booking.created_at,
            updated_at=booking.updated_at
        )

class BookingListResponse(BaseModel):
    bookings: List[BookingDetail]

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

class AdminBookingListResponse(BaseModel):
    bookings: List[BookingDetail]
    pagination: Pagination

# Check-in Models
class CheckInToken(BaseModel):
    """Structured payload encoded into the booking QR code"""
    booking_id: str
    station_id: str
    port_id: str
    start_time: datetime
    end_time: datetime
    sig: Optional[str] = None

class ScanRequest(BaseModel):
    """Raw decoded QR text handed in by the scanner"""
    qr_data: str
    action: Literal["verify", "confirm"] = "verify"

    @validator('qr_data')
    def validate_qr_data(cls, v):
        if not v or not v.strip():
            raise ValueError('QR code data is required')
        return v

class ScanResponse(BaseModel):
    booking: BookingDetail
    message: str
    previous_status: Optional[BookingStatus] = None
    new_status: Optional[BookingStatus] = None

# Maintenance Models
class ExpirySweepResult(BaseModel):
    expired_bookings: int
    cutoff: datetime

class ReconciliationReport(BaseModel):
    ports_checked: int
    ports_released: int
    ports_restored: int
    released_port_ids: List[str] = []
    restored_port_ids: List[str] = []
    completed_at: datetime = Field(default_factory=datetime.now)
