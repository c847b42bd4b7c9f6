#!/usr/bin/env python3
"""
Aggregate Unit Tests

Tests for ParkingFloor search and the ParkingFacility aggregate: allocation
order, the ticket lifecycle, error outcomes and concurrent use.
"""

import threading
import unittest
from datetime import datetime, timedelta
from unittest.mock import Mock

from parking_facility.domain.aggregates import ParkingFacility, ParkingFloor
from parking_facility.domain.exceptions import (
    DuplicateEntryError, FacilityFullError, VehicleNotFoundError, InvalidStateError,
    AlreadyExitedError
)
from parking_facility.domain.models import (
    SpotClass, SpotId, Vehicle, VehicleClass, ParkingSpot, DEFAULT_COMPATIBILITY,
    VehicleParkedEvent, VehicleLeftEvent
)
from parking_facility.domain.services import FixedClock, TicketIdGenerator


def compact(plate):
    return Vehicle(plate, VehicleClass.COMPACT)


class TestParkingFloor(unittest.TestCase):
    """Unit tests for ParkingFloor"""

    def setUp(self):
        self.floor = ParkingFloor.from_layout(
            1, [SpotClass.BIKE, SpotClass.CAR, SpotClass.CAR, SpotClass.TRUCK]
        )

    def test_from_layout_numbers_spots(self):
        self.assertEqual([spot.number for spot in self.floor.spots], [1, 2, 3, 4])
        self.assertEqual(self.floor.get_spot(4).spot_class, SpotClass.TRUCK)
        self.assertIsNone(self.floor.get_spot(9))

    def test_spots_kept_in_number_order(self):
        floor = ParkingFloor(2, [ParkingSpot(2, 3, SpotClass.CAR), ParkingSpot(2, 1, SpotClass.CAR)])
        self.assertEqual([spot.number for spot in floor.spots], [1, 3])

    def test_try_park_takes_lowest_compatible_spot(self):
        spot = self.floor.try_park(compact("AB-123"))
        self.assertEqual(spot.number, 2)
        spot = self.floor.try_park(compact("CD-456"))
        self.assertEqual(spot.number, 3)

    def test_try_park_returns_none_when_nothing_fits(self):
        self.floor.try_park(Vehicle("TR-1", VehicleClass.LARGE))
        self.assertIsNone(self.floor.try_park(Vehicle("TR-2", VehicleClass.LARGE)))

    def test_release_by_plate(self):
        self.floor.try_park(compact("AB-123"))
        spot = self.floor.release(compact("ab-123"))
        self.assertEqual(spot.number, 2)
        self.assertTrue(spot.is_free())
        self.assertIsNone(self.floor.release(compact("AB-123")))

    def test_counts(self):
        self.floor.try_park(compact("AB-123"))
        self.assertEqual(self.floor.total_spots, 4)
        self.assertEqual(self.floor.available_spots, 3)
        self.assertEqual(self.floor.occupied_spots, 1)
        self.assertEqual(
            self.floor.available_by_class(),
            {SpotClass.BIKE: 1, SpotClass.CAR: 1, SpotClass.TRUCK: 1}
        )

    def test_invalid_floors_rejected(self):
        with self.assertRaises(ValueError):
            ParkingFloor(0, [])
        with self.assertRaises(ValueError):
            ParkingFloor(1, [ParkingSpot(1, 1, SpotClass.CAR), ParkingSpot(1, 1, SpotClass.BIKE)])
        with self.assertRaises(ValueError):
            ParkingFloor(1, [ParkingSpot(2, 1, SpotClass.CAR)])


class FacilityTestBase(unittest.TestCase):

    def setUp(self):
        self.clock = FixedClock(datetime(2024, 1, 1, 9, 0))

    def build(self, layout, **kwargs):
        return ParkingFacility.from_layout(
            "Main Street", layout, clock=self.clock, ticket_ids=TicketIdGenerator("MS"), **kwargs
        )


class TestParkingFacility(FacilityTestBase):
    """Unit tests for the ParkingFacility aggregate"""

    def setUp(self):
        super().setUp()
        self.facility = self.build({
            1: [SpotClass.BIKE, SpotClass.CAR],
            2: [SpotClass.CAR, SpotClass.TRUCK],
        })

    def test_creation(self):
        self.assertEqual(self.facility.name, "Main Street")
        self.assertEqual(self.facility.total_spots, 4)
        self.assertEqual(self.facility.available_spots, 4)
        self.assertEqual([floor.floor_number for floor in self.facility.floors], [1, 2])

    def test_empty_or_duplicate_floors_rejected(self):
        with self.assertRaises(ValueError):
            ParkingFacility("Empty", [])
        floor = ParkingFloor.from_layout(1, [SpotClass.CAR])
        with self.assertRaises(ValueError):
            ParkingFacility("Twice", [floor, ParkingFloor.from_layout(1, [SpotClass.CAR])])

    def test_park_returns_open_record(self):
        vehicle = compact("AB-123")
        record = self.facility.park_vehicle(vehicle)
        self.assertEqual(record.vehicle, vehicle)
        self.assertTrue(record.is_open)
        self.assertEqual(record.spot_id, SpotId(1, 2))
        self.assertEqual(record.entry_time, datetime(2024, 1, 1, 9, 0))
        self.assertEqual(record.ticket_id, "TKT-MS-000001")

    def test_lower_floor_searched_first(self):
        self.facility.park_vehicle(compact("AB-123"))
        record = self.facility.park_vehicle(compact("CD-456"))
        self.assertEqual(record.spot_id, SpotId(2, 1))

    def test_floor_order_independent_of_construction_order(self):
        floors = [
            ParkingFloor.from_layout(3, [SpotClass.CAR]),
            ParkingFloor.from_layout(1, [SpotClass.CAR]),
        ]
        facility = ParkingFacility("Ordered", floors, clock=self.clock)
        self.assertEqual(facility.park_vehicle(compact("AB-123")).spot_id, SpotId(1, 1))

    def test_duplicate_entry_rejected(self):
        first = self.facility.park_vehicle(compact("AB-123"))
        with self.assertRaises(DuplicateEntryError) as ctx:
            self.facility.park_vehicle(Vehicle("ab-123", VehicleClass.LARGE))
        self.assertEqual(ctx.exception.ticket_id, first.ticket_id)
        self.assertEqual(self.facility.occupied_spots, 1)

    def test_no_compatible_spot_raises_full(self):
        self.facility.park_vehicle(Vehicle("TR-1", VehicleClass.LARGE))
        with self.assertRaises(FacilityFullError) as ctx:
            self.facility.park_vehicle(Vehicle("TR-2", VehicleClass.LARGE))
        self.assertEqual(ctx.exception.license_plate, "TR-2")
        # other classes still have room
        self.facility.park_vehicle(Vehicle("BK-1", VehicleClass.SMALL))

    def test_n_plus_one_vehicle_fails(self):
        facility = self.build({1: [SpotClass.CAR] * 3, 2: [SpotClass.CAR] * 2})
        for i in range(5):
            facility.park_vehicle(compact(f"CAR-{i}"))
        with self.assertRaises(FacilityFullError):
            facility.park_vehicle(compact("CAR-5"))
        self.assertEqual(facility.available_spots, 0)

    def test_park_then_unpark_frees_same_spot(self):
        vehicle = compact("AB-123")
        record = self.facility.park_vehicle(vehicle)
        self.clock.advance(minutes=42)

        closed = self.facility.unpark_vehicle(vehicle)

        self.assertIs(closed, record)
        self.assertTrue(closed.is_closed)
        self.assertEqual(closed.exit_time, datetime(2024, 1, 1, 9, 42))
        self.assertTrue(self.facility.get_spot(record.spot_id).is_free())
        self.assertFalse(self.facility.is_parked("AB-123"))

    def test_unpark_accepts_plate_string(self):
        self.facility.park_vehicle(compact("AB-123"))
        record = self.facility.unpark_vehicle(" ab-123 ")
        self.assertEqual(record.vehicle.plate, "AB-123")

    def test_unpark_unknown_vehicle(self):
        with self.assertRaises(VehicleNotFoundError) as ctx:
            self.facility.unpark_vehicle(compact("ZZ-999"))
        self.assertEqual(ctx.exception.license_plate, "ZZ-999")

    def test_second_unpark_raises_not_found(self):
        vehicle = compact("AB-123")
        self.facility.park_vehicle(vehicle)
        self.facility.unpark_vehicle(vehicle)
        with self.assertRaises(VehicleNotFoundError):
            self.facility.unpark_vehicle(vehicle)

    def test_unpark_by_ticket(self):
        record = self.facility.park_vehicle(compact("AB-123"))
        closed = self.facility.unpark_by_ticket(record.ticket_id)
        self.assertIs(closed, record)
        with self.assertRaises(VehicleNotFoundError) as ctx:
            self.facility.unpark_by_ticket(record.ticket_id)
        self.assertEqual(ctx.exception.ticket_id, record.ticket_id)

    def test_reparking_after_exit_issues_new_ticket(self):
        vehicle = compact("AB-123")
        first = self.facility.park_vehicle(vehicle)
        self.facility.unpark_vehicle(vehicle)
        second = self.facility.park_vehicle(vehicle)
        self.assertNotEqual(first.ticket_id, second.ticket_id)
        self.assertTrue(second.is_open)

    def test_failed_close_leaves_state_untouched(self):
        vehicle = compact("AB-123")
        record = self.facility.park_vehicle(vehicle)
        self.clock.set(datetime(2024, 1, 1, 8, 0))

        with self.assertRaises(InvalidStateError):
            self.facility.unpark_vehicle(vehicle)

        self.assertTrue(record.is_open)
        self.assertTrue(self.facility.is_parked("AB-123"))
        self.assertFalse(self.facility.get_spot(record.spot_id).is_free())
        self.facility._validate_invariants()

    def test_closing_a_closed_record_raises(self):
        record = self.facility.park_vehicle(compact("AB-123"))
        self.facility.unpark_vehicle(record.vehicle)
        with self.assertRaises(AlreadyExitedError):
            record.close(self.clock.now())

    def test_queries(self):
        record = self.facility.park_vehicle(compact("AB-123"))
        self.assertIs(self.facility.find_open_record("ab-123"), record)
        self.assertIs(self.facility.find_record_by_ticket(record.ticket_id), record)
        self.assertEqual(self.facility.locate_vehicle("AB-123"), SpotId(1, 2))
        self.assertIsNone(self.facility.locate_vehicle("ZZ-1"))
        self.assertEqual(self.facility.open_records(), [record])
        self.assertEqual(self.facility.get_occupancy_rate(), 25.0)
        self.assertEqual(
            self.facility.available_by_class(),
            {SpotClass.BIKE: 1, SpotClass.CAR: 1, SpotClass.TRUCK: 1}
        )

    def test_status_report(self):
        self.facility.park_vehicle(compact("AB-123"))
        report = self.facility.get_status_report()
        self.assertEqual(report["facility_name"], "Main Street")
        self.assertEqual(report["occupied_spots"], 1)
        self.assertEqual(report["open_tickets"], 1)
        self.assertEqual(report["available_by_class"]["car"], 1)
        self.assertEqual(report["floors"][0], {"floor_number": 1, "total_spots": 2, "available_spots": 1})

    def test_domain_events_collected(self):
        vehicle = compact("AB-123")
        self.facility.park_vehicle(vehicle)
        self.facility.unpark_vehicle(vehicle)

        self.assertTrue(self.facility.has_changes)
        events = self.facility.clear_events()
        self.assertIsInstance(events[0], VehicleParkedEvent)
        self.assertIsInstance(events[1], VehicleLeftEvent)
        self.assertEqual(events[1].license_plate, "AB-123")
        self.assertFalse(self.facility.has_changes)

    def test_version_increments_on_change(self):
        start = self.facility.version
        vehicle = compact("AB-123")
        self.facility.park_vehicle(vehicle)
        self.facility.unpark_vehicle(vehicle)
        self.assertEqual(self.facility.version, start + 2)

    def test_custom_compatibility_lets_bikes_use_car_spots(self):
        policy = DEFAULT_COMPATIBILITY.with_rule(VehicleClass.SMALL, SpotClass.CAR)
        facility = self.build({1: [SpotClass.CAR, SpotClass.BIKE]}, compatibility=policy)
        record = facility.park_vehicle(Vehicle("BK-1", VehicleClass.SMALL))
        self.assertEqual(record.spot_id, SpotId(1, 1))


class TestFailedEntryAndBadPlates(FacilityTestBase):
    """A failed entry leaves no trace; a malformed plate is simply not parked"""

    def setUp(self):
        super().setUp()
        self.facility = self.build({1: [SpotClass.CAR, SpotClass.CAR]})

    def test_clock_failure_releases_spot(self):
        clock = Mock()
        clock.now.side_effect = RuntimeError("clock unavailable")
        facility = ParkingFacility.from_layout(
            "Main Street", {1: [SpotClass.CAR]}, clock=clock, ticket_ids=TicketIdGenerator("MS")
        )

        with self.assertLogs('ParkingFacility', level='ERROR'):
            with self.assertRaises(RuntimeError):
                facility.park_vehicle(compact("AB-123"))

        self.assertEqual(facility.available_spots, 1)
        self.assertFalse(facility.is_parked("AB-123"))
        self.assertFalse(facility.has_changes)
        facility._validate_invariants()

    def test_ticket_id_failure_releases_spot(self):
        ticket_ids = Mock()
        ticket_ids.next_id.side_effect = RuntimeError("sequence exhausted")
        facility = ParkingFacility.from_layout(
            "Main Street", {1: [SpotClass.CAR]}, clock=self.clock, ticket_ids=ticket_ids
        )

        with self.assertLogs('ParkingFacility', level='ERROR'):
            with self.assertRaises(RuntimeError):
                facility.park_vehicle(compact("AB-123"))

        self.assertTrue(facility.get_spot(SpotId(1, 1)).is_free())
        facility._validate_invariants()

    def test_unpark_malformed_plate_is_not_found(self):
        self.facility.park_vehicle(compact("AB-123"))
        for plate in ("X", "!", ""):
            with self.assertRaises(VehicleNotFoundError):
                self.facility.unpark_vehicle(plate)
        self.assertEqual(self.facility.occupied_spots, 1)

    def test_lookups_with_malformed_plate(self):
        self.assertIsNone(self.facility.find_open_record("!"))
        self.assertIsNone(self.facility.locate_vehicle("X"))
        self.assertFalse(self.facility.is_parked(""))


class TestAllocationScenario(FacilityTestBase):
    """Two car spots, three compact vehicles"""

    def test_lowest_numbered_free_spot_wins(self):
        facility = self.build({1: [SpotClass.CAR, SpotClass.CAR]})

        self.assertEqual(facility.park_vehicle(compact("AB-123")).spot_id, SpotId(1, 1))
        self.assertEqual(facility.park_vehicle(compact("CD-456")).spot_id, SpotId(1, 2))
        with self.assertRaises(FacilityFullError):
            facility.park_vehicle(compact("EF-789"))

        facility.unpark_vehicle(compact("AB-123"))
        self.assertTrue(facility.get_spot(SpotId(1, 1)).is_free())

        self.assertEqual(facility.park_vehicle(compact("EF-789")).spot_id, SpotId(1, 1))


class TestConcurrentParking(FacilityTestBase):
    """Concurrent park requests must never double-book a spot"""

    def test_parallel_parks_fill_exactly_capacity(self):
        facility = self.build({1: [SpotClass.CAR] * 10, 2: [SpotClass.CAR] * 10})
        results = []
        failures = []
        lock = threading.Lock()

        def park(i):
            try:
                record = facility.park_vehicle(compact(f"CAR-{i}"))
                with lock:
                    results.append(record)
            except FacilityFullError as e:
                with lock:
                    failures.append(e)

        threads = [threading.Thread(target=park, args=(i,)) for i in range(30)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), 20)
        self.assertEqual(len(failures), 10)
        self.assertEqual(len({record.spot_id for record in results}), 20)
        self.assertEqual(len({record.ticket_id for record in results}), 20)
        facility._validate_invariants()

    def test_parallel_exits_return_each_record_once(self):
        facility = self.build({1: [SpotClass.CAR] * 5})
        vehicle = compact("AB-123")
        facility.park_vehicle(vehicle)
        closed = []
        missing = []
        lock = threading.Lock()

        def leave():
            try:
                record = facility.unpark_vehicle(vehicle)
                with lock:
                    closed.append(record)
            except VehicleNotFoundError:
                with lock:
                    missing.append(1)

        threads = [threading.Thread(target=leave) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(closed), 1)
        self.assertEqual(len(missing), 7)
        self.assertEqual(facility.available_spots, 5)


if __name__ == '__main__':
    unittest.main()
