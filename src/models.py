from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Numeric, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from src.database import Base

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def new_id() -> str:
    return str(uuid.uuid4())

# ================================
# Users & Roles
# ================================
class User(Base):
    __tablename__ = "users"

    # Subject id issued by the external identity provider
    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(255), nullable=False, default="User")
    email = Column(String(255), nullable=False, default="", index=True)
    role = Column(String(20), nullable=False, default="user", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    stations = relationship("Station", back_populates="admin")

# ================================
# Stations & Charging Ports
# ================================
class Station(Base):
    __tablename__ = "stations"

    id = Column(String(64), primary_key=True, default=new_id)
    admin_id = Column(String(64), ForeignKey("users.id"), index=True)
    name = Column(String(255), nullable=False, index=True)
    address = Column(String(500), default="")
    city = Column(String(100), default="", index=True)
    province = Column(String(100), default="")
    lat = Column(Numeric(10, 6))
    lng = Column(Numeric(10, 6))
    telephone = Column(String(50), default="")
    open_time = Column(String(5), default="06:00")
    close_time = Column(String(5), default="22:00")
    per_hour = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    admin = relationship("User", back_populates="stations")
    ports = relationship(
        "ChargingPort",
        back_populates="station",
        order_by="ChargingPort.port_number",
        cascade="all, delete-orphan",
    )

class ChargingPort(Base):
    __tablename__ = "charging_ports"

    id = Column(String(64), primary_key=True, default=new_id)
    station_id = Column(String(64), ForeignKey("stations.id"), nullable=False, index=True)
    port_number = Column(String(20), nullable=False)
    connector_type = Column(String(20), nullable=False, default="type2")
    power_output = Column(String(20), default="N/A")
    charger_type = Column(String(5), default="AC")
    status = Column(String(20), nullable=False, default="available", index=True)
    # Weak reference: the booking owns its own lifecycle
    current_booking_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    station = relationship("Station", back_populates="ports")

# ================================
# Bookings
# ================================
class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    user_name = Column(String(255), default="")
    user_email = Column(String(255), default="")
    # Either a persisted station id or a static catalog id ("station-<index>")
    station_id = Column(String(64), nullable=False, index=True)
    port_id = Column(String(64), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    estimated_duration = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Deposit (major currency units)
    deposit_amount = Column(Numeric(10, 2), nullable=False)
    deposit_refunded = Column(Boolean, nullable=False, default=False)
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=True)
    khalti_pidx = Column(String(255), unique=True, nullable=True)
    khalti_transaction_id = Column(String(255), nullable=True)

    qr_code = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_bookings_station_port_start", "station_id", "port_id", "start_time"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, station={self.station_id}, port={self.port_id}, status={self.status})>"
