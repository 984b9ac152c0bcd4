from sqlalchemy.orm import Session, joinedload
from typing import List, Optional, Tuple
import logging

from src.models import Station, ChargingPort
from src.exceptions import NotFound
from src.stations.catalog import StaticStationCatalog, is_static_catalog_id
from src.stations.schemas import (
    StationDetail, StationLocation, StationPricing, OperatingHours, PortStatus,
    ChargingPort as ChargingPortSchema
)

class StationInventoryService:
    """Station and charging-port inventory used by the reservation core"""

    def __init__(self, db: Session, catalog: Optional[StaticStationCatalog] = None):
        self.db = db
        self.catalog = catalog or StaticStationCatalog()
        self.logger = logging.getLogger(self.__class__.__name__)

    def find_station_by_id(self, station_id: str) -> Optional[StationDetail]:
        """Resolve a persisted or static-catalog station"""
        if is_static_catalog_id(station_id):
            return self.catalog.get(station_id)

        station = self.get_station_record(station_id)
        if not station:
            return None
        return self.station_to_detail(station)

    def get_station_record(self, station_id: str) -> Optional[Station]:
        return self.db.query(Station).options(
            joinedload(Station.ports)
        ).filter(Station.id == station_id).first()

    def find_port_within_station(self, station: StationDetail, port_id: str) -> Optional[ChargingPortSchema]:
        """Find a port; catalog stations resolve every id to an always-available port"""
        if station.is_static_catalog:
            return self.catalog.synthetic_port(station, port_id)
        return station.find_port(port_id)

    def lock_port(self, station_id: str, port_id: str) -> Optional[ChargingPort]:
        """Take a row lock on a persisted port for the rest of the transaction"""
        return self.db.query(ChargingPort).filter(
            ChargingPort.station_id == station_id,
            ChargingPort.id == port_id
        ).with_for_update().first()

    def set_port_status(
        self,
        station_id: str,
        port_id: str,
        status: PortStatus,
        booking_ref: Optional[str] = None
    ) -> bool:
        """Set a port's status and booking back-reference.

        Returns False without writing for static-catalog stations, which have
        no mutable inventory.
        """
        if is_static_catalog_id(station_id):
            return False

        port = self.db.query(ChargingPort).filter(
            ChargingPort.station_id == station_id,
            ChargingPort.id == port_id
        ).first()

        if not port:
            raise NotFound("Port not found")

        port.status = PortStatus(status).value
        port.current_booking_id = booking_ref
        self.db.commit()

        self.logger.info(
            "Port %s/%s -> %s (booking %s)", station_id, port_id, port.status, booking_ref
        )
        return True

    def get_stations(
        self,
        skip: int = 0,
        limit: int = 50,
        city: Optional[str] = None,
        include_catalog: bool = True
    ) -> Tuple[List[StationDetail], int]:
        """List persisted stations followed by catalog stations"""
        query = self.db.query(Station).options(joinedload(Station.ports)).filter(Station.is_active == True)
        if city:
            query = query.filter(Station.city.ilike(f"%{city}%"))

        stations = [self.station_to_detail(s) for s in query.order_by(Station.name).all()]

        if include_catalog:
            catalog_stations = self.catalog.all()
            if city:
                catalog_stations = [s for s in catalog_stations if city.lower() in s.location.city.lower()]
            stations.extend(catalog_stations)

        return stations[skip:skip + limit], len(stations)

    def get_admin_station_ids(self, admin_id: str) -> List[str]:
        """Ids of stations owned by a station administrator"""
        rows = self.db.query(Station.id).filter(Station.admin_id == admin_id).all()
        return [row[0] for row in rows]

    @staticmethod
    def station_to_detail(station: Station) -> StationDetail:
        return StationDetail(
            id=station.id,
            name=station.name,
            location=StationLocation(
                address=station.address or "",
                city=station.city or "",
                province=station.province or "",
                lat=station.lat,
                lng=station.lng
            ),
            telephone=station.telephone or "",
            operating_hours=OperatingHours(
                open=station.open_time or "06:00",
                close=station.close_time or "22:00"
            ),
            pricing=StationPricing(
                per_hour=station.per_hour,
                deposit_amount=station.deposit_amount
            ),
            ports=[ChargingPortSchema.model_validate(port) for port in station.ports],
            admin_id=station.admin_id,
            is_active=station.is_active,
            is_static_catalog=False,
            created_at=station.created_at
        )
