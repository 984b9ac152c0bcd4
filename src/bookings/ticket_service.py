from typing import Dict, Optional, Any
from datetime import datetime, timezone
import base64
import hashlib
import hmac
import json
import logging
import qrcode
from qrcode import constants
from io import BytesIO

from src.config import settings
from src.exceptions import MalformedToken, TokenMismatch
from src.bookings.schemas import CheckInToken

def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to timezone-aware UTC (naive values are taken as UTC)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def _format_time(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")

def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str):
        raise MalformedToken()
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise MalformedToken()

class CheckInTokenService:
    """Builds, signs, renders and parses booking check-in tokens"""

    def __init__(self, secret_key: Optional[str] = None, require_signature: Optional[bool] = None):
        self._secret_key = (secret_key or settings.SECRET_KEY).encode()
        self.require_signature = (
            settings.CHECKIN_REQUIRE_SIGNATURE if require_signature is None else require_signature
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    def build_payload(self, booking) -> Dict[str, str]:
        """Token payload for a booking, including its signature"""
        payload = {
            "bookingId": booking.id,
            "stationId": booking.station_id,
            "portId": booking.port_id,
            "startTime": _format_time(booking.start_time),
            "endTime": _format_time(booking.end_time),
        }
        payload["sig"] = self._sign(payload)
        return payload

    def encode(self, booking) -> str:
        """Serialized token text embedded in the QR image"""
        return json.dumps(self.build_payload(booking), separators=(",", ":"))

    def render_qr_code(self, token_text: str) -> str:
        """Render token text as a PNG data URL"""
        qr = qrcode.QRCode(
            version=None,
            error_correction=constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(token_text)
        qr.make(fit=True)

        qr_image = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        qr_image.save(buffer, format="PNG")
        encoded = base64.b64encode(buffer.getvalue()).decode()
        return f"data:image/png;base64,{encoded}"

    def parse(self, raw: str) -> CheckInToken:
        """Parse scanned text into a token; signature is checked here"""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            raise MalformedToken()

        if not isinstance(data, dict):
            raise MalformedToken()

        required = ("bookingId", "stationId", "portId", "startTime", "endTime")
        if any(not data.get(key) for key in required):
            raise MalformedToken()

        sig = data.get("sig")
        if sig is not None or self.require_signature:
            unsigned = {key: data[key] for key in required}
            if not isinstance(sig, str) or not hmac.compare_digest(sig, self._sign(unsigned)):
                self.logger.warning("Rejected check-in token with bad signature for booking %s", data.get("bookingId"))
                raise TokenMismatch("QR code signature is invalid")

        return CheckInToken(
            booking_id=str(data["bookingId"]),
            station_id=str(data["stationId"]),
            port_id=str(data["portId"]),
            start_time=_parse_time(data["startTime"]),
            end_time=_parse_time(data["endTime"]),
            sig=sig
        )

    @staticmethod
    def matches_booking(token: CheckInToken, booking) -> bool:
        """Whether every token field still agrees with the stored booking"""
        return (
            token.booking_id == booking.id
            and token.station_id == str(booking.station_id)
            and token.port_id == str(booking.port_id)
            and token.start_time == as_utc(booking.start_time)
            and token.end_time == as_utc(booking.end_time)
        )

    def _sign(self, payload: Dict[str, str]) -> str:
        canonical = json.dumps(
            {key: payload[key] for key in ("bookingId", "stationId", "portId", "startTime", "endTime")},
            sort_keys=True,
            separators=(",", ":")
        )
        return hmac.new(self._secret_key, canonical.encode(), hashlib.sha256).hexdigest()
