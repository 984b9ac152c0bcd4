from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Session
import logging

from src.models import Booking, ChargingPort
from src.stations.schemas import PortStatus
from src.bookings.schemas import BookingStatus, ReconciliationReport
from src.bookings.booking_service import LIVE_STATUSES
from src.bookings.ticket_service import as_utc

HELD_PORT_STATUSES = (PortStatus.RESERVED.value, PortStatus.OCCUPIED.value)

class PortReconciliationService:
    """Repairs drift between port status and booking status.

    Booking and port are written separately, so a crash between the two
    writes leaves a port held with no live booking, or a confirmed booking
    whose port reads available. This pass is idempotent.
    """

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    def reconcile(self, now: Optional[datetime] = None) -> ReconciliationReport:
        now = as_utc(now) if now else datetime.now(timezone.utc)
        live_values = [s.value for s in LIVE_STATUSES]

        ports = self.db.query(ChargingPort).all()
        released, restored = [], []

        for port in ports:
            if port.status in HELD_PORT_STATUSES:
                holder = None
                if port.current_booking_id:
                    holder = self.db.query(Booking).filter(Booking.id == port.current_booking_id).first()

                if holder is None or holder.status not in live_values:
                    self.logger.warning(
                        "Port %s/%s was %s for booking %s with no live booking; releasing",
                        port.station_id, port.id, port.status, port.current_booking_id
                    )
                    port.status = PortStatus.AVAILABLE.value
                    port.current_booking_id = None
                    released.append(port.id)

            elif port.status == PortStatus.AVAILABLE.value and not port.current_booking_id:
                holder = self._current_holder(port, now)
                if holder is not None:
                    port.status = (
                        PortStatus.OCCUPIED.value
                        if holder.status == BookingStatus.ACTIVE.value
                        else PortStatus.RESERVED.value
                    )
                    port.current_booking_id = holder.id
                    restored.append(port.id)
                    self.logger.warning(
                        "Port %s/%s restored to %s for booking %s",
                        port.station_id, port.id, port.status, holder.id
                    )

        self.db.commit()

        self.logger.info(
            "Port reconciliation checked %d ports: %d released, %d restored",
            len(ports), len(released), len(restored)
        )

        return ReconciliationReport(
            ports_checked=len(ports),
            ports_released=len(released),
            ports_restored=len(restored),
            released_port_ids=released,
            restored_port_ids=restored
        )

    def _current_holder(self, port: ChargingPort, now: datetime) -> Optional[Booking]:
        """Earliest confirmed or active booking on the port that has not ended"""
        return self.db.query(Booking).filter(
            Booking.station_id == port.station_id,
            Booking.port_id == port.id,
            Booking.status.in_([BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value]),
            Booking.end_time > now
        ).order_by(Booking.start_time).first()
