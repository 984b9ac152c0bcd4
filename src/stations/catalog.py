"""
Read-only station catalog bundled with the application.

Catalog stations are addressed as ``station-<index>`` (the position of the
record in the data file) and have no mutable port state: every port reports
``available`` and reservations never touch it.
"""

import json
import logging
import os
import re
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import List, Optional

from src.config import settings
from src.stations.schemas import (
    ChargingPort, ConnectorType, StationDetail, StationLocation, StationPricing, OperatingHours, PortStatus
)

STATIC_ID_PATTERN = re.compile(r"^station-(\d+)$")

logger = logging.getLogger(__name__)


def is_static_catalog_id(station_id: str) -> bool:
    return str(station_id).startswith("station-")


@lru_cache(maxsize=4)
def _load_raw_data(path: str) -> tuple:
    if not os.path.exists(path):
        logger.warning("Static station catalog %s not found; catalog is empty", path)
        return ()
    with open(path, "r", encoding="utf-8") as f:
        return tuple(json.load(f))


def _parse_decimal(value) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def _parse_station(raw: dict, index: int) -> StationDetail:
    ports = [
        ChargingPort(
            id=f"file-{index}-{p_index}",
            port_number=f"P{index + 1}-{p_index + 1}",
            connector_type=plug.get("plug") or ConnectorType.TYPE2.value,
            power_output=plug.get("power") or "N/A",
            charger_type=plug.get("type") or "N/A",
            status=PortStatus.AVAILABLE,
        )
        for p_index, plug in enumerate(raw.get("plugs") or [])
    ]

    if not ports:
        ports.append(ChargingPort(
            id=f"file-{index}-0",
            port_number=f"P{index + 1}-1",
            connector_type=ConnectorType.TYPE2.value,
            power_output="7.2Kw",
            charger_type="AC",
            status=PortStatus.AVAILABLE,
        ))

    name = raw.get("name") or "Unknown Station"

    return StationDetail(
        id=f"station-{index}",
        name=name.replace(" (Coming Soon)", ""),
        location=StationLocation(
            address=raw.get("address") or "",
            city=raw.get("city") or "",
            province=raw.get("province") or "",
            lat=_parse_decimal(raw.get("latitude") or 0),
            lng=_parse_decimal(raw.get("longitude") or 0),
        ),
        telephone=raw.get("telephone") or "",
        operating_hours=OperatingHours(open="06:00", close="22:00"),
        pricing=StationPricing(
            per_hour=settings.STATIC_CATALOG_PER_HOUR,
            deposit_amount=settings.STATIC_CATALOG_DEPOSIT,
        ),
        ports=ports,
        is_active="Coming Soon" not in name,
        is_static_catalog=True,
    )


class StaticStationCatalog:
    """Loader for the bundled station dataset"""

    def __init__(self, path: Optional[str] = None):
        self.path = path or settings.STATIC_CATALOG_PATH

    def get(self, station_id: str) -> Optional[StationDetail]:
        match = STATIC_ID_PATTERN.match(str(station_id))
        if not match:
            return None

        data = _load_raw_data(self.path)
        index = int(match.group(1))
        if index >= len(data):
            return None

        return _parse_station(data[index], index)

    def all(self) -> List[StationDetail]:
        data = _load_raw_data(self.path)
        return [_parse_station(raw, index) for index, raw in enumerate(data)]

    @staticmethod
    def synthetic_port(station: StationDetail, port_id: str) -> ChargingPort:
        """Catalog ports always resolve, even for ids the dataset does not list"""
        port = station.find_port(port_id)
        if port:
            return port
        return ChargingPort(
            id=port_id,
            port_number=port_id,
            connector_type=ConnectorType.TYPE2.value,
            power_output="N/A",
            charger_type="N/A",
            status=PortStatus.AVAILABLE,
        )
