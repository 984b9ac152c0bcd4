from fastapi import APIRouter, Depends, HTTPException, Request, Header
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import Optional

from src.database import get_db
from src.exceptions import ReservationError
from src.auth.schemas import Actor
from src.auth.dependencies import get_current_actor
from src.bookings.schemas import BookingDetail
from src.payments.gateways import PaymentGateway
from src.payments.dependencies import get_card_gateway, get_wallet_gateway
from src.payments.schemas import (
    DepositIntentRequest, DepositIntentResponse, WalletInitiateRequest, WalletInitiateResponse,
    PaymentVerifyRequest, PaymentVerifyResponse, WebhookAck
)
from src.payments.service import PaymentReconciliationService

router = APIRouter()

@router.post("/create-deposit", response_model=DepositIntentResponse)
def create_deposit(
    request: DepositIntentRequest,
    actor: Actor = Depends(get_current_actor),
    card_gateway: Optional[PaymentGateway] = Depends(get_card_gateway),
    db: Session = Depends(get_db)
):
    """Open a card payment for a slot's deposit"""
    service = PaymentReconciliationService(db, card_gateway=card_gateway)

    try:
        return service.create_deposit_intent(actor, request)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

@router.post("/webhook", response_model=WebhookAck)
async def card_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    card_gateway: Optional[PaymentGateway] = Depends(get_card_gateway),
    db: Session = Depends(get_db)
):
    """Signed card-provider event delivery"""
    raw_body = await request.body()
    service = PaymentReconciliationService(db, card_gateway=card_gateway)

    try:
        return await run_in_threadpool(service.handle_card_webhook, raw_body, stripe_signature)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

@router.post("/khalti/initiate", response_model=WalletInitiateResponse)
def initiate_wallet_payment(
    request: WalletInitiateRequest,
    actor: Actor = Depends(get_current_actor),
    wallet_gateway: Optional[PaymentGateway] = Depends(get_wallet_gateway),
    db: Session = Depends(get_db)
):
    """Reserve the slot and start a wallet checkout for its deposit"""
    service = PaymentReconciliationService(db, wallet_gateway=wallet_gateway)

    try:
        booking, charge = service.initiate_wallet_payment(actor, request)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return WalletInitiateResponse(
        booking=BookingDetail.from_booking(booking),
        pidx=charge.reference,
        payment_url=charge.redirect_url
    )

@router.post("/verify", response_model=PaymentVerifyResponse)
def verify_wallet_payment(
    request: PaymentVerifyRequest,
    actor: Actor = Depends(get_current_actor),
    wallet_gateway: Optional[PaymentGateway] = Depends(get_wallet_gateway),
    db: Session = Depends(get_db)
):
    """Confirm a wallet deposit after the customer returns from checkout"""
    service = PaymentReconciliationService(db, wallet_gateway=wallet_gateway)

    try:
        return service.verify_wallet_payment(actor, request.booking_id, request.pidx)
    except ReservationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
