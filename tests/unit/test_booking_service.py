"""
Unit tests for the reservation engine against an in-memory database
"""

import unittest
from datetime import datetime, timedelta, timezone

from src.models import Booking, ChargingPort
from src.exceptions import NotFound, SlotUnavailable, InvalidTransition, Forbidden
from src.auth.schemas import UserRole
from src.stations.catalog import StaticStationCatalog
from src.stations.service import StationInventoryService
from src.bookings.booking_service import BookingService
from src.bookings.schemas import BookingStatus, AvailabilityRequest
from tests.helpers import (
    create_session_factory, seed_station, get_port, make_actor, SLOT_START, CATALOG_PATH
)


class BookingServiceTestCase(unittest.TestCase):

    def setUp(self):
        self.db = create_session_factory()()
        seed_station(self.db)
        self.service = BookingService(self.db)
        self.user = make_actor("user-1")
        self.other = make_actor("user-2")
        self.admin = make_actor("admin-1", UserRole.ADMIN)

    def tearDown(self):
        self.db.close()

    def reserve(self, actor=None, port_id="st-1-p1", start=SLOT_START, minutes=60):
        return self.service.create_reservation(actor or self.user, "st-1", port_id, start, minutes)


class TestCreateReservation(BookingServiceTestCase):

    def test_new_booking_is_pending_with_deposit_and_qr(self):
        booking = self.reserve()

        self.assertEqual(booking.status, BookingStatus.PENDING.value)
        self.assertEqual(booking.estimated_duration, 60)
        self.assertEqual(str(booking.deposit_amount), "500.00")
        self.assertFalse(booking.deposit_refunded)
        self.assertTrue(booking.qr_code.startswith("data:image/png;base64,"))
        self.assertEqual(booking.user_email, "user-1@example.com")

    def test_overlap_rejected_and_adjacent_accepted(self):
        self.reserve(start=SLOT_START, minutes=60)

        with self.assertRaises(SlotUnavailable) as ctx:
            self.reserve(actor=self.other, start=SLOT_START + timedelta(minutes=30), minutes=60)
        self.assertEqual(ctx.exception.status_code, 409)

        adjacent = self.reserve(actor=self.other, start=SLOT_START + timedelta(minutes=60), minutes=30)
        self.assertEqual(adjacent.status, BookingStatus.PENDING.value)

    def test_other_port_is_independent(self):
        self.reserve(port_id="st-1-p1")
        booking = self.reserve(actor=self.other, port_id="st-1-p2")
        self.assertEqual(booking.port_id, "st-1-p2")

    def test_port_reserved_for_new_booking(self):
        booking = self.reserve()

        port = get_port(self.db, "st-1-p1")
        self.assertEqual(port.status, "reserved")
        self.assertEqual(port.current_booking_id, booking.id)

    def test_unknown_station_or_port(self):
        with self.assertRaises(NotFound):
            self.service.create_reservation(self.user, "missing", "st-1-p1", SLOT_START, 60)
        with self.assertRaises(NotFound):
            self.service.create_reservation(self.user, "st-1", "missing", SLOT_START, 60)

    def test_naive_start_time_taken_as_utc(self):
        booking = self.reserve(start=SLOT_START.replace(tzinfo=None))

        with self.assertRaises(SlotUnavailable):
            self.reserve(actor=self.other, start=SLOT_START)
        self.assertIsNotNone(booking.id)

    def test_cancelled_booking_frees_the_window(self):
        booking = self.reserve()
        self.service.cancel_booking(booking.id, self.user)

        again = self.reserve(actor=self.other)
        self.assertEqual(again.status, BookingStatus.PENDING.value)

    def test_stale_pending_booking_expires_on_create(self):
        stale = self.reserve()
        stale.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        self.db.commit()

        fresh = self.reserve(actor=self.other)

        self.db.refresh(stale)
        self.assertEqual(stale.status, BookingStatus.CANCELLED.value)
        self.assertEqual(get_port(self.db, "st-1-p1").current_booking_id, fresh.id)


class TestAvailability(BookingServiceTestCase):

    def test_reports_conflict_window(self):
        self.reserve()

        result = self.service.check_availability(AvailabilityRequest(
            station_id="st-1", port_id="st-1-p1",
            start_time=SLOT_START + timedelta(minutes=15), estimated_duration=30
        ))

        self.assertFalse(result.available)
        self.assertEqual(result.conflicting_start.replace(tzinfo=None), SLOT_START.replace(tzinfo=None))

    def test_free_window(self):
        self.reserve()

        result = self.service.check_availability(AvailabilityRequest(
            station_id="st-1", port_id="st-1-p1",
            start_time=SLOT_START + timedelta(hours=2), estimated_duration=30
        ))

        self.assertTrue(result.available)
        self.assertEqual(result.end_time, SLOT_START + timedelta(hours=2, minutes=30))

    def test_does_not_write(self):
        self.service.check_availability(AvailabilityRequest(
            station_id="st-1", port_id="st-1-p1", start_time=SLOT_START, estimated_duration=30
        ))
        self.assertEqual(self.db.query(Booking).count(), 0)
        self.assertEqual(get_port(self.db, "st-1-p1").status, "available")


class TestTransitions(BookingServiceTestCase):

    def test_full_lifecycle_port_side_effects(self):
        booking = self.reserve()

        self.service.transition_status(booking.id, BookingStatus.CONFIRMED, self.admin)
        self.assertEqual(get_port(self.db, "st-1-p1").status, "reserved")

        self.service.transition_status(booking.id, BookingStatus.ACTIVE, self.admin)
        self.assertEqual(get_port(self.db, "st-1-p1").status, "occupied")

        self.service.transition_status(booking.id, BookingStatus.COMPLETED, self.admin)
        port = get_port(self.db, "st-1-p1")
        self.assertEqual(port.status, "available")
        self.assertIsNone(port.current_booking_id)

    def test_cancel_releases_port(self):
        booking = self.reserve()
        cancelled = self.service.cancel_booking(booking.id, self.user)

        self.assertEqual(cancelled.status, BookingStatus.CANCELLED.value)
        self.assertEqual(get_port(self.db, "st-1-p1").status, "available")

    def test_cannot_cancel_active_booking(self):
        booking = self.reserve()
        self.service.transition_status(booking.id, BookingStatus.CONFIRMED, self.admin)
        self.service.transition_status(booking.id, BookingStatus.ACTIVE, self.admin)

        with self.assertRaises(InvalidTransition) as ctx:
            self.service.cancel_booking(booking.id, self.user)

        self.assertEqual(ctx.exception.message, "Cannot cancel an active booking")
        self.assertEqual(get_port(self.db, "st-1-p1").status, "occupied")

    def test_invalid_transition_leaves_state(self):
        booking = self.reserve()

        with self.assertRaises(InvalidTransition) as ctx:
            self.service.transition_status(booking.id, BookingStatus.COMPLETED, self.admin)

        self.assertEqual(ctx.exception.message, 'Cannot transition from "pending" to "completed"')
        self.db.refresh(booking)
        self.assertEqual(booking.status, BookingStatus.PENDING.value)

    def test_no_show_keeps_port_held(self):
        booking = self.reserve()
        self.service.transition_status(booking.id, BookingStatus.CONFIRMED, self.admin)
        self.service.transition_status(booking.id, BookingStatus.NO_SHOW, self.admin)

        self.assertEqual(get_port(self.db, "st-1-p1").status, "reserved")

    def test_other_user_is_forbidden(self):
        booking = self.reserve()

        with self.assertRaises(Forbidden):
            self.service.cancel_booking(booking.id, self.other)
        with self.assertRaises(Forbidden):
            self.service.get_booking_for_actor(booking.id, self.other)

    def test_unknown_booking(self):
        with self.assertRaises(NotFound):
            self.service.transition_status("missing", BookingStatus.CANCELLED, self.admin)

    def test_release_skipped_when_port_held_by_another_booking(self):
        first = self.reserve()
        second = self.reserve(actor=self.other, start=SLOT_START + timedelta(hours=2))
        self.assertEqual(get_port(self.db, "st-1-p1").current_booking_id, second.id)

        self.service.cancel_booking(first.id, self.user)

        port = get_port(self.db, "st-1-p1")
        self.assertEqual(port.status, "reserved")
        self.assertEqual(port.current_booking_id, second.id)


class TestExpirySweep(BookingServiceTestCase):

    def test_expires_only_stale_pending(self):
        stale = self.reserve()
        fresh = self.reserve(actor=self.other, port_id="st-1-p2")
        stale.created_at = datetime.now(timezone.utc) - timedelta(minutes=45)
        self.db.commit()

        expired = self.service.expire_stale_pending_bookings()

        self.assertEqual(expired, 1)
        self.db.refresh(stale)
        self.db.refresh(fresh)
        self.assertEqual(stale.status, BookingStatus.CANCELLED.value)
        self.assertEqual(fresh.status, BookingStatus.PENDING.value)
        self.assertEqual(get_port(self.db, "st-1-p1").status, "available")

    def test_confirmed_bookings_never_expire(self):
        booking = self.reserve()
        self.service.transition_status(booking.id, BookingStatus.CONFIRMED, self.admin)
        booking.created_at = datetime.now(timezone.utc) - timedelta(days=1)
        self.db.commit()

        self.assertEqual(self.service.expire_stale_pending_bookings(), 0)


class TestQueries(BookingServiceTestCase):

    def test_user_bookings_newest_first(self):
        first = self.reserve()
        second = self.reserve(start=SLOT_START + timedelta(hours=3))
        self.reserve(actor=self.other, port_id="st-1-p2")

        bookings = self.service.get_user_bookings("user-1")
        self.assertEqual([b.id for b in bookings], [second.id, first.id])

        self.service.cancel_booking(first.id, self.user)
        pending = self.service.get_user_bookings("user-1", BookingStatus.PENDING)
        self.assertEqual([b.id for b in pending], [second.id])

    def test_admin_search_scoped_to_own_stations(self):
        seed_station(self.db, station_id="st-2", admin_id="admin-2")
        self.reserve()
        self.service.create_reservation(self.other, "st-2", "st-2-p1", SLOT_START, 60)

        own, pagination = self.service.search_bookings(self.admin)
        self.assertEqual([b.station_id for b in own], ["st-1"])
        self.assertEqual(pagination["total"], 1)

        everything, pagination = self.service.search_bookings(make_actor("root", UserRole.SUPERADMIN), limit=1)
        self.assertEqual(len(everything), 1)
        self.assertEqual(pagination["total"], 2)
        self.assertEqual(pagination["total_pages"], 2)


class TestStaticCatalogStations(unittest.TestCase):

    def setUp(self):
        self.db = create_session_factory()()
        inventory = StationInventoryService(self.db, catalog=StaticStationCatalog(CATALOG_PATH))
        self.service = BookingService(self.db, inventory=inventory)
        self.user = make_actor("user-1")

    def tearDown(self):
        self.db.close()

    def test_catalog_station_uses_booking_overlap_only(self):
        booking = self.service.create_reservation(self.user, "station-0", "file-0-0", SLOT_START, 60)

        self.assertEqual(str(booking.deposit_amount), "500.00")
        self.assertEqual(self.db.query(ChargingPort).count(), 0)

        with self.assertRaises(SlotUnavailable):
            self.service.create_reservation(make_actor("user-2"), "station-0", "file-0-0", SLOT_START, 30)

    def test_catalog_accepts_unlisted_port_id(self):
        booking = self.service.create_reservation(self.user, "station-1", "any-port", SLOT_START, 60)
        cancelled = self.service.cancel_booking(booking.id, self.user)
        self.assertEqual(cancelled.status, BookingStatus.CANCELLED.value)

    def test_unknown_catalog_index(self):
        with self.assertRaises(NotFound):
            self.service.create_reservation(self.user, "station-999", "p", SLOT_START, 60)


if __name__ == "__main__":
    unittest.main()
