from typing import Optional
from src.payments.gateways import PaymentGateway, build_card_gateway, build_wallet_gateway

def get_card_gateway() -> Optional[PaymentGateway]:
    """Card gateway, or None when Stripe is not configured"""
    return build_card_gateway()

def get_wallet_gateway() -> Optional[PaymentGateway]:
    """Wallet gateway, or None when Khalti is not configured"""
    return build_wallet_gateway()
