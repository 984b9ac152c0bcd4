"""
Shared fixtures for the test suite: an isolated in-memory database, seeded
stations and signed webhook payloads.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.database import Base
from src.models import User, Station, ChargingPort
from src.auth.schemas import Actor, UserRole
import src.models  # noqa: F401

CATALOG_PATH = str(Path(__file__).resolve().parent.parent / "data" / "stations.json")

# A Wednesday morning well in the future
SLOT_START = datetime(2030, 1, 15, 10, 0, tzinfo=timezone.utc)

WEBHOOK_SECRET = "whsec_test_secret"


def create_session_factory():
    """Fresh in-memory SQLite database shared across sessions"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def seed_station(db, station_id="st-1", admin_id="admin-1", deposit="500.00", port_count=2):
    if not db.query(User).filter(User.id == admin_id).first():
        db.add(User(id=admin_id, name="Station Admin", email=f"{admin_id}@example.com", role="admin"))

    station = Station(
        id=station_id,
        admin_id=admin_id,
        name=f"Station {station_id}",
        address="Durbar Marg",
        city="Kathmandu",
        province="Bagmati",
        per_hour=Decimal("150.00"),
        deposit_amount=Decimal(deposit),
    )
    db.add(station)

    for n in range(1, port_count + 1):
        db.add(ChargingPort(
            id=f"{station_id}-p{n}",
            station_id=station_id,
            port_number=f"P{n}",
            connector_type="type2",
            power_output="7.2Kw",
            charger_type="AC",
        ))

    db.commit()
    return station


def get_port(db, port_id):
    db.expire_all()
    return db.query(ChargingPort).filter(ChargingPort.id == port_id).first()


def make_actor(user_id="user-1", role=UserRole.USER):
    return Actor(user_id=user_id, name=f"Name {user_id}", email=f"{user_id}@example.com", role=role)


def stripe_signature_header(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Stripe-Signature header value computed the way Stripe signs deliveries"""
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def intent_event(intent_id, metadata=None, amount=50000, event_type="payment_intent.succeeded"):
    return json.dumps({
        "id": f"evt_{intent_id}",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                "object": "payment_intent",
                "amount": amount,
                "amount_received": amount,
                "currency": "npr",
                "status": "succeeded",
                "metadata": metadata or {},
            }
        },
    })


def slot_metadata(user_id="user-1", station_id="st-1", port_id="st-1-p1", start=SLOT_START, duration=60):
    return {
        "userId": user_id,
        "userName": f"Name {user_id}",
        "userEmail": f"{user_id}@example.com",
        "stationId": station_id,
        "portId": port_id,
        "startTime": start.isoformat(),
        "estimatedDuration": str(duration),
    }
