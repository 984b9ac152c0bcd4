from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

from src.bookings.schemas import BookingDetail
from src.payments.gateways import PaymentLookupStatus

class DepositIntentRequest(BaseModel):
    """Slot the card deposit is being taken for"""
    station_id: str
    port_id: str
    start_time: datetime
    estimated_duration: int = Field(..., gt=0, le=24 * 60)

class DepositIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: Decimal
    currency: str

class WalletInitiateRequest(BaseModel):
    station_id: str
    port_id: str
    start_time: datetime
    estimated_duration: int = Field(..., gt=0, le=24 * 60)

class WalletInitiateResponse(BaseModel):
    booking: BookingDetail
    pidx: str
    payment_url: str

class PaymentVerifyRequest(BaseModel):
    pidx: str
    booking_id: str

class PaymentVerifyResponse(BaseModel):
    verified: bool
    status: str
    payment_status: Optional[PaymentLookupStatus] = None
    booking: BookingDetail

class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    outcome: str
