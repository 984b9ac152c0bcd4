#!/usr/bin/env python3

from decimal import Decimal

from src.database import SessionLocal, init_db
from src.models import User, Station, ChargingPort, Booking

def create_seed_data():
    init_db()
    db = SessionLocal()

    try:
        print("Creating seed data for EV charging stations...")

        # Clear existing data (in reverse dependency order)
        print("Clearing existing data...")
        db.query(Booking).delete()
        db.query(ChargingPort).delete()
        db.query(Station).delete()
        db.query(User).filter(User.role.in_(["admin", "superadmin"])).delete(synchronize_session=False)

        # 1. Create administrators
        print("Creating administrators...")
        admins = [
            User(id="seed-superadmin", name="Platform Admin", email="superadmin@example.com", role="superadmin"),
            User(id="seed-admin-ktm", name="Kathmandu Operator", email="ktm.operator@example.com", role="admin"),
            User(id="seed-admin-pkr", name="Pokhara Operator", email="pkr.operator@example.com", role="admin"),
        ]
        db.add_all(admins)
        db.flush()

        # 2. Create stations
        print("Creating stations...")
        stations = [
            Station(
                admin_id="seed-admin-ktm", name="Durbar Marg EV Hub", address="Durbar Marg",
                city="Kathmandu", province="Bagmati", lat=Decimal("27.7123"), lng=Decimal("85.3170"),
                telephone="01-4200000", open_time="06:00", close_time="22:00",
                per_hour=Decimal("200.00"), deposit_amount=Decimal("500.00")
            ),
            Station(
                admin_id="seed-admin-ktm", name="Jawalakhel Charging Point", address="Jawalakhel Chowk",
                city="Lalitpur", province="Bagmati", lat=Decimal("27.6727"), lng=Decimal("85.3140"),
                telephone="01-5500000", open_time="07:00", close_time="21:00",
                per_hour=Decimal("150.00"), deposit_amount=Decimal("300.00")
            ),
            Station(
                admin_id="seed-admin-pkr", name="Pokhara Airport Charging Station", address="Airport Road",
                city="Pokhara", province="Gandaki", lat=Decimal("28.2009"), lng=Decimal("83.9821"),
                telephone="061-465000", open_time="00:00", close_time="23:59",
                per_hour=Decimal("180.00"), deposit_amount=Decimal("500.00")
            ),
        ]
        db.add_all(stations)
        db.flush()

        # 3. Create charging ports
        print("Creating charging ports...")
        port_layouts = [
            [("type2", "7.2Kw", "AC"), ("ccs/sae", "60Kw", "DC"), ("chademo", "50Kw", "DC")],
            [("type2", "22Kw", "AC"), ("wall-socket", "3.3Kw", "AC")],
            [("ccs/sae", "120Kw", "DC"), ("tesla", "150Kw", "DC")],
        ]

        ports = []
        for station_index, (station, layout) in enumerate(zip(stations, port_layouts)):
            for port_index, (connector, power, charger) in enumerate(layout):
                ports.append(ChargingPort(
                    station_id=station.id,
                    port_number=f"S{station_index + 1}-P{port_index + 1}",
                    connector_type=connector,
                    power_output=power,
                    charger_type=charger,
                    status="available"
                ))
        db.add_all(ports)

        # Commit all changes
        db.commit()
        print("Successfully created seed data!")
        print(f"Created:")
        print(f"  - {len(admins)} administrators")
        print(f"  - {len(stations)} stations")
        print(f"  - {len(ports)} charging ports")

    except Exception as e:
        print(f"Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    create_seed_data()
