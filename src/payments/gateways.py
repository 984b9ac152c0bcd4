"""
Payment gateway adapters.

Amounts cross this boundary in minor units (paisa) as integers; the rest of
the application works in major units with ``Decimal``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional
import json
import logging

import httpx
import stripe

from src.config import settings
from src.exceptions import SignatureInvalid, UpstreamUnavailable

def minor_units(amount) -> int:
    """Major-unit amount to integer minor units (x100)"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def major_units(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / 100).quantize(Decimal("0.01"))

class PaymentLookupStatus(str, Enum):
    """Normalized provider payment status"""
    COMPLETED = "completed"
    PENDING = "pending"
    INITIATED = "initiated"
    USER_CANCELED = "user_canceled"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    FAILED = "failed"

@dataclass
class PendingCharge:
    reference: str
    amount_minor: int
    client_secret: Optional[str] = None
    redirect_url: Optional[str] = None

@dataclass
class PaymentLookup:
    reference: str
    status: PaymentLookupStatus
    provider_status: str
    paid_amount_minor: int = 0
    transaction_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

@dataclass
class WebhookEvent:
    id: str
    type: str
    data: Dict[str, Any]

class PaymentGateway(ABC):
    """Uniform interface over the card and wallet providers"""

    name = "base"

    @abstractmethod
    def create_pending_charge(self, amount_minor: int, metadata: Dict[str, Any]) -> PendingCharge:
        """Open a charge the customer completes with the provider"""

    @abstractmethod
    def lookup(self, reference: str) -> PaymentLookup:
        """Fetch the authoritative state of a charge"""

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookEvent:
        """Authenticate a webhook delivery and decode its event"""

STRIPE_STATUS_MAP = {
    "succeeded": PaymentLookupStatus.COMPLETED,
    "processing": PaymentLookupStatus.PENDING,
    "requires_payment_method": PaymentLookupStatus.INITIATED,
    "requires_confirmation": PaymentLookupStatus.INITIATED,
    "requires_action": PaymentLookupStatus.INITIATED,
    "requires_capture": PaymentLookupStatus.PENDING,
    "canceled": PaymentLookupStatus.USER_CANCELED,
}

class StripeGateway(PaymentGateway):
    """Card payments through Stripe PaymentIntents"""

    name = "stripe"

    def __init__(
        self,
        secret_key: str,
        webhook_secret: Optional[str] = None,
        currency: Optional[str] = None,
        tolerance: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = (currency or settings.STRIPE_CURRENCY).lower()
        self.tolerance = settings.WEBHOOK_TOLERANCE_SECONDS if tolerance is None else tolerance
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout or settings.PAYMENT_TIMEOUT_SECONDS)
        self.logger = logging.getLogger(self.__class__.__name__)

    def create_pending_charge(self, amount_minor: int, metadata: Dict[str, Any]) -> PendingCharge:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=self.currency,
                metadata={key: str(value) for key, value in metadata.items() if value is not None},
                automatic_payment_methods={"enabled": True},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            self.logger.error("Stripe PaymentIntent create failed: %s", e)
            raise UpstreamUnavailable("Card payment provider is unavailable") from e

        return PendingCharge(
            reference=intent.id,
            amount_minor=amount_minor,
            client_secret=intent.client_secret,
        )

    def lookup(self, reference: str) -> PaymentLookup:
        try:
            intent = stripe.PaymentIntent.retrieve(reference, api_key=self.secret_key)
        except stripe.InvalidRequestError as e:
            self.logger.warning("Unknown Stripe PaymentIntent %s: %s", reference, e)
            return PaymentLookup(
                reference=reference,
                status=PaymentLookupStatus.FAILED,
                provider_status="not_found",
            )
        except stripe.StripeError as e:
            self.logger.error("Stripe PaymentIntent retrieve failed for %s: %s", reference, e)
            raise UpstreamUnavailable("Card payment provider is unavailable") from e

        return self.lookup_from_intent(intent)

    @staticmethod
    def lookup_from_intent(intent) -> PaymentLookup:
        provider_status = intent["status"]
        metadata = intent.get("metadata") or {}
        return PaymentLookup(
            reference=intent["id"],
            status=STRIPE_STATUS_MAP.get(provider_status, PaymentLookupStatus.FAILED),
            provider_status=provider_status,
            paid_amount_minor=int(intent.get("amount_received") or 0),
            transaction_id=intent.get("latest_charge"),
            metadata={key: str(value) for key, value in dict(metadata).items()},
        )

    def verify_webhook_signature(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookEvent:
        if not self.webhook_secret:
            raise UpstreamUnavailable("Webhook secret is not configured")
        if not signature_header:
            raise SignatureInvalid("Missing Stripe signature header")

        payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            self.logger.warning("Rejected Stripe webhook: %s", e)
            raise SignatureInvalid() from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise SignatureInvalid("Webhook payload is not valid JSON") from e

        return WebhookEvent(
            id=event.get("id", ""),
            type=event.get("type", ""),
            data=(event.get("data") or {}).get("object") or {},
        )

KHALTI_STATUS_MAP = {
    "Completed": PaymentLookupStatus.COMPLETED,
    "Pending": PaymentLookupStatus.PENDING,
    "Initiated": PaymentLookupStatus.INITIATED,
    "User canceled": PaymentLookupStatus.USER_CANCELED,
    "Expired": PaymentLookupStatus.EXPIRED,
    "Refunded": PaymentLookupStatus.REFUNDED,
    "Partially refunded": PaymentLookupStatus.PARTIALLY_REFUNDED,
}

class KhaltiGateway(PaymentGateway):
    """Khalti wallet checkout (ePayment initiate + lookup)"""

    name = "khalti"

    def __init__(
        self,
        secret_key: str,
        base_url: Optional[str] = None,
        return_url: Optional[str] = None,
        website_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None
    ):
        self.secret_key = secret_key
        self.base_url = (base_url or settings.khalti_base_url).rstrip("/")
        self.return_url = return_url or settings.KHALTI_RETURN_URL
        self.website_url = website_url or settings.KHALTI_WEBSITE_URL
        self.client = client or httpx.Client(timeout=timeout or settings.PAYMENT_TIMEOUT_SECONDS)
        self.logger = logging.getLogger(self.__class__.__name__)

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.post(
                f"{self.base_url}{path}",
                json=body,
                headers={"Authorization": f"Key {self.secret_key}"},
            )
        except httpx.HTTPError as e:
            self.logger.error("Khalti request %s failed: %s", path, e)
            raise UpstreamUnavailable("Wallet payment provider is unreachable") from e

        if response.status_code >= 500:
            self.logger.error("Khalti %s returned %s", path, response.status_code)
            raise UpstreamUnavailable("Wallet payment provider is unavailable")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable("Wallet payment provider returned an invalid response") from e

        if response.status_code >= 400 and "status" not in data:
            self.logger.error("Khalti %s rejected request (%s): %s", path, response.status_code, data)
            raise UpstreamUnavailable("Wallet payment provider rejected the request")

        return data

    def create_pending_charge(self, amount_minor: int, metadata: Dict[str, Any]) -> PendingCharge:
        body = {
            "return_url": self.return_url,
            "website_url": self.website_url,
            "amount": amount_minor,
            "purchase_order_id": metadata["booking_id"],
            "purchase_order_name": metadata.get("purchase_order_name") or "EV charging deposit",
            "customer_info": {
                "name": metadata.get("customer_name") or "",
                "email": metadata.get("customer_email") or "",
            },
        }
        data = self._post("/epayment/initiate/", body)

        if not data.get("pidx") or not data.get("payment_url"):
            self.logger.error("Khalti initiate returned no pidx for booking %s: %s", metadata["booking_id"], data)
            raise UpstreamUnavailable("Wallet payment provider rejected the request")

        return PendingCharge(
            reference=data["pidx"],
            amount_minor=amount_minor,
            redirect_url=data["payment_url"],
        )

    def lookup(self, reference: str) -> PaymentLookup:
        data = self._post("/epayment/lookup/", {"pidx": reference})
        provider_status = data.get("status") or "Unknown"

        return PaymentLookup(
            reference=data.get("pidx") or reference,
            status=KHALTI_STATUS_MAP.get(provider_status, PaymentLookupStatus.PENDING),
            provider_status=provider_status,
            paid_amount_minor=int(data.get("total_amount") or 0),
            transaction_id=data.get("transaction_id"),
        )

    def verify_webhook_signature(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookEvent:
        raise SignatureInvalid("Wallet payments are confirmed by lookup, not webhook")

def build_card_gateway() -> Optional[StripeGateway]:
    if not settings.STRIPE_SECRET_KEY:
        return None
    return StripeGateway(
        secret_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    )

def build_wallet_gateway() -> Optional[KhaltiGateway]:
    if not settings.KHALTI_SECRET_KEY:
        return None
    return KhaltiGateway(secret_key=settings.KHALTI_SECRET_KEY)
