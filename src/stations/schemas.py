from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

class PortStatus(str, Enum):
    """Charging port status enumeration"""
    AVAILABLE = "available"
    RESERVED = "reserved"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"

class ConnectorType(str, Enum):
    TYPE2 = "type2"
    CCS_SAE = "ccs/sae"
    CHADEMO = "chademo"
    TESLA = "tesla"
    WALL_SOCKET = "wall-socket"

class ChargingPort(BaseModel):
    id: str
    port_number: str
    connector_type: str
    power_output: Optional[str] = None
    charger_type: Optional[str] = None
    status: PortStatus = PortStatus.AVAILABLE
    current_booking_id: Optional[str] = None

    class Config:
        from_attributes = True

class StationLocation(BaseModel):
    address: str = ""
    city: str = ""
    province: str = ""
    lat: Optional[Decimal] = None
    lng: Optional[Decimal] = None

class StationPricing(BaseModel):
    per_hour: Decimal
    deposit_amount: Decimal

class OperatingHours(BaseModel):
    open: str = "06:00"
    close: str = "22:00"

class StationDetail(BaseModel):
    """Station as seen by the reservation core, persisted or static-catalog"""
    id: str
    name: str
    location: StationLocation
    telephone: str = ""
    operating_hours: OperatingHours = OperatingHours()
    pricing: StationPricing
    ports: List[ChargingPort] = []
    admin_id: Optional[str] = None
    is_active: bool = True
    is_static_catalog: bool = False
    created_at: Optional[datetime] = None

    def find_port(self, port_id: str) -> Optional[ChargingPort]:
        for port in self.ports:
            if port.id == port_id:
                return port
        return None

class StationSearchResult(BaseModel):
    stations: List[StationDetail]
    total: int
    page: int
    per_page: int
