# File: src/parking_facility/domain/aggregates.py
"""
Aggregate Roots for the Parking Facility Core
Following Domain-Driven Design (DDD) Aggregate Pattern

Aggregates:
1. ParkingFacility - Root aggregate owning floors, spots and open tickets
2. ParkingFloor - Ordered group of spots, reached only through the facility

Key Concepts:
- All modifications go through ParkingFacility methods, under one lock
- Search order is lowest floor number first, then lowest spot number
- Open tickets are indexed by plate and by ticket id; spots by SpotId
- Domain events are collected for park and exit
"""

from typing import List, Optional, Dict, Iterable, Mapping, Sequence, Union, Any
from collections import Counter
import logging
import threading

from .exceptions import (
    DuplicateEntryError, FacilityFullError, VehicleNotFoundError, InvalidStateError
)
from .models import (
    Entity, LicensePlate, Vehicle, ParkingSpot, OccupancyRecord, SpotId, SpotClass,
    SpotCompatibility, DEFAULT_COMPATIBILITY,
    DomainEvent, VehicleParkedEvent, VehicleLeftEvent
)
from .services import Clock, SystemClock, TicketIdGenerator


# ============================================================================
# BASE AGGREGATE ROOT
# ============================================================================

class AggregateRoot(Entity):
    """
    Base class for all aggregate roots
    Provides domain event collection and versioning
    """

    def __init__(self, id: Optional[str] = None):
        super().__init__(id)
        self._version: int = 1
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def version(self) -> int:
        """Get current aggregate version"""
        return self._version

    def _increment_version(self) -> None:
        self._version += 1

    def _add_domain_event(self, event: DomainEvent) -> None:
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event.__class__.__name__}")

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    @property
    def has_changes(self) -> bool:
        return len(self._changes) > 0

    def _validate_invariants(self) -> None:
        """Validate aggregate invariants - to be overridden by subclasses"""
        pass


# ============================================================================
# PARKING FLOOR
# ============================================================================

class ParkingFloor(Entity):
    """
    Entity: one floor of the facility with its spots in ascending number order.
    The order is the search order.
    """

    def __init__(self, floor_number: int, spots: Iterable[ParkingSpot]):
        if floor_number < 1:
            raise ValueError("Floor number must be at least 1")
        super().__init__(f"F{floor_number:02d}")
        self.floor_number = floor_number
        self._spots: List[ParkingSpot] = sorted(spots, key=lambda spot: spot.number)
        self._logger = logging.getLogger(self.__class__.__name__)

        numbers = [spot.number for spot in self._spots]
        if len(set(numbers)) != len(numbers):
            raise ValueError(f"Duplicate spot numbers on floor {floor_number}")
        for spot in self._spots:
            if spot.floor_number != floor_number:
                raise ValueError(
                    f"Spot {spot.location_code} does not belong to floor {floor_number}"
                )

    @classmethod
    def from_layout(
        cls,
        floor_number: int,
        spot_classes: Sequence[SpotClass],
        compatibility: SpotCompatibility = DEFAULT_COMPATIBILITY
    ) -> 'ParkingFloor':
        """Build a floor whose spots are numbered 1..n in the given class order"""
        spots = [
            ParkingSpot(floor_number, number, spot_class, compatibility)
            for number, spot_class in enumerate(spot_classes, start=1)
        ]
        return cls(floor_number, spots)

    @property
    def spots(self) -> tuple:
        return tuple(self._spots)

    def get_spot(self, number: int) -> Optional[ParkingSpot]:
        for spot in self._spots:
            if spot.number == number:
                return spot
        return None

    def try_park(self, vehicle: Vehicle) -> Optional[ParkingSpot]:
        """
        Assign the vehicle to the first spot, in spot number order, that can take it
        Returns: the assigned spot, or None if nothing on this floor fits
        """
        for spot in self._spots:
            if spot.can_accept(vehicle):
                spot.assign(vehicle)
                self._logger.debug(f"Floor {self.floor_number}: {vehicle.plate} -> {spot.location_code}")
                return spot
        return None

    def release(self, vehicle: Vehicle) -> Optional[ParkingSpot]:
        """
        Free the spot holding a vehicle with the same plate
        Returns: the freed spot, or None if the vehicle is not on this floor
        """
        for spot in self._spots:
            occupant = spot.occupant
            if occupant is not None and occupant.plate == vehicle.plate:
                spot.release()
                return spot
        return None

    @property
    def total_spots(self) -> int:
        return len(self._spots)

    @property
    def available_spots(self) -> int:
        return sum(1 for spot in self._spots if spot.is_free())

    @property
    def occupied_spots(self) -> int:
        return self.total_spots - self.available_spots

    def available_by_class(self) -> Dict[SpotClass, int]:
        counts = Counter(spot.spot_class for spot in self._spots if spot.is_free())
        return {spot_class: counts.get(spot_class, 0) for spot_class in self._classes_present()}

    def _classes_present(self) -> List[SpotClass]:
        seen = []
        for spot in self._spots:
            if spot.spot_class not in seen:
                seen.append(spot.spot_class)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "floor_number": self.floor_number,
            "total_spots": self.total_spots,
            "available_spots": self.available_spots,
            "occupied_spots": self.occupied_spots,
            "available_by_class": {
                spot_class.value: count for spot_class, count in self.available_by_class().items()
            },
            "spots": [spot.to_dict() for spot in self._spots]
        }

    def __str__(self) -> str:
        return f"Floor {self.floor_number}: {self.available_spots}/{self.total_spots} available"


# ============================================================================
# PARKING FACILITY AGGREGATE
# ============================================================================

class ParkingFacility(AggregateRoot):
    """
    Aggregate Root: the whole facility.
    Sole mutator of its floors, spots and open tickets. Every public method
    runs under a single re-entrant lock, so concurrent park and exit
    requests are serialised.
    """

    def __init__(
        self,
        name: str,
        floors: Iterable[ParkingFloor],
        clock: Optional[Clock] = None,
        ticket_ids: Optional[TicketIdGenerator] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        if not name or not name.strip():
            raise ValueError("Facility name cannot be empty")
        self.name = name.strip()
        self.clock = clock or SystemClock()
        self.ticket_ids = ticket_ids or TicketIdGenerator()

        self._floors: List[ParkingFloor] = sorted(floors, key=lambda floor: floor.floor_number)
        self._spot_index: Dict[SpotId, ParkingSpot] = {}
        self._open_by_plate: Dict[str, OccupancyRecord] = {}
        self._open_by_ticket: Dict[str, OccupancyRecord] = {}
        self._lock = threading.RLock()

        for floor in self._floors:
            for spot in floor.spots:
                self._spot_index[spot.spot_id] = spot

        self._validate_invariants()
        self._logger.info(
            f"Created ParkingFacility: {self.name} "
            f"({len(self._floors)} floors, {self.total_spots} spots)"
        )

    @classmethod
    def from_layout(
        cls,
        name: str,
        layout: Mapping[int, Sequence[SpotClass]],
        compatibility: SpotCompatibility = DEFAULT_COMPATIBILITY,
        clock: Optional[Clock] = None,
        ticket_ids: Optional[TicketIdGenerator] = None
    ) -> 'ParkingFacility':
        """Build a facility from {floor number: spot classes in spot number order}"""
        floors = [
            ParkingFloor.from_layout(floor_number, spot_classes, compatibility)
            for floor_number, spot_classes in layout.items()
        ]
        return cls(name, floors, clock=clock, ticket_ids=ticket_ids)

    def _validate_invariants(self) -> None:
        """Validate aggregate invariants"""
        if not self._floors:
            raise ValueError("A facility needs at least one floor")

        numbers = [floor.floor_number for floor in self._floors]
        if len(set(numbers)) != len(numbers):
            raise ValueError("Duplicate floor numbers detected")

        # Every open ticket points at a spot holding that vehicle
        for plate, record in self._open_by_plate.items():
            spot = self._spot_index.get(record.spot_id)
            if spot is None or spot.occupant is None or spot.occupant.plate != plate:
                raise InvalidStateError(
                    f"Ticket {record.ticket_id} does not match spot {record.spot_id}"
                )

        # Every occupied spot is covered by exactly one open ticket
        occupied = sum(1 for spot in self._spot_index.values() if not spot.is_free())
        if occupied != len(self._open_by_plate) or occupied != len(self._open_by_ticket):
            raise InvalidStateError(
                f"{occupied} occupied spots but {len(self._open_by_plate)} open tickets"
            )

        self._logger.debug("All facility invariants satisfied")

    # ========================================================================
    # PUBLIC BUSINESS METHODS
    # ========================================================================

    def park_vehicle(self, vehicle: Vehicle) -> OccupancyRecord:
        """
        Park a vehicle in the nearest compatible free spot
        Returns: the open ticket
        Raises: DuplicateEntryError if the plate already has an open ticket,
                FacilityFullError if no floor has a compatible free spot
        """
        with self._lock:
            self._logger.info(f"Parking vehicle: {vehicle}")

            existing = self._open_by_plate.get(vehicle.plate)
            if existing is not None:
                self._logger.warning(
                    f"Rejected {vehicle.plate}: already parked on ticket {existing.ticket_id}"
                )
                raise DuplicateEntryError(vehicle.plate, existing.ticket_id)

            spot = None
            for floor in self._floors:
                spot = floor.try_park(vehicle)
                if spot is not None:
                    break

            if spot is None:
                self._logger.warning(f"Rejected {vehicle.plate}: no compatible free spot")
                raise FacilityFullError(vehicle.plate, vehicle.vehicle_class)

            try:
                record = OccupancyRecord(
                    ticket_id=self.ticket_ids.next_id(),
                    vehicle=vehicle,
                    spot_id=spot.spot_id,
                    entry_time=self.clock.now()
                )
            except Exception as e:
                spot.release()
                self._logger.error(
                    f"Could not open a ticket for {vehicle.plate}, released {spot.location_code}: {e}"
                )
                raise
            self._open_by_plate[vehicle.plate] = record
            self._open_by_ticket[record.ticket_id] = record
            self._increment_version()

            self._add_domain_event(VehicleParkedEvent(
                facility_name=self.name,
                ticket_id=record.ticket_id,
                spot_id=spot.spot_id,
                license_plate=vehicle.plate,
                vehicle_class=vehicle.vehicle_class,
                timestamp=record.entry_time
            ))

            self._logger.info(
                f"Vehicle {vehicle.plate} parked in spot {spot.location_code} "
                f"(Ticket: {record.ticket_id})"
            )
            return record

    def unpark_vehicle(self, vehicle: Union[Vehicle, str]) -> OccupancyRecord:
        """
        Close the vehicle's ticket and free its spot
        Accepts a Vehicle or a plate string
        Returns: the closed ticket
        Raises: VehicleNotFoundError if the vehicle has no open ticket
        """
        plate = vehicle.plate if isinstance(vehicle, Vehicle) else self._normalise_plate(vehicle)
        with self._lock:
            record = self._open_by_plate.get(plate) if plate else None
            if record is None:
                self._logger.warning(f"Exit rejected: no open ticket for {plate or vehicle!r}")
                raise VehicleNotFoundError(license_plate=plate or str(vehicle))
            return self._close(record)

    def unpark_by_ticket(self, ticket_id: str) -> OccupancyRecord:
        """
        Same as unpark_vehicle, looked up by ticket id
        Raises: VehicleNotFoundError if no open ticket has this id
        """
        with self._lock:
            record = self._open_by_ticket.get(ticket_id)
            if record is None:
                self._logger.warning(f"Exit rejected: no open ticket {ticket_id}")
                raise VehicleNotFoundError(ticket_id=ticket_id)
            return self._close(record)

    def _close(self, record: OccupancyRecord) -> OccupancyRecord:
        spot = self._spot_index.get(record.spot_id)
        if spot is None or spot.occupant is None or spot.occupant.plate != record.vehicle.plate:
            raise InvalidStateError(
                f"Ticket {record.ticket_id} points at spot {record.spot_id} "
                f"which does not hold {record.vehicle.plate}"
            )

        # Closing first: if it fails the spot and indexes are untouched
        record.close(self.clock.now())
        spot.release()
        del self._open_by_plate[record.vehicle.plate]
        del self._open_by_ticket[record.ticket_id]
        self._increment_version()

        self._add_domain_event(VehicleLeftEvent(
            facility_name=self.name,
            ticket_id=record.ticket_id,
            spot_id=record.spot_id,
            license_plate=record.vehicle.plate,
            entry_time=record.entry_time,
            exit_time=record.exit_time
        ))

        self._logger.info(
            f"Vehicle {record.vehicle.plate} left spot {spot.location_code} "
            f"(Ticket: {record.ticket_id})"
        )
        return record

    def clear_events(self) -> List[DomainEvent]:
        with self._lock:
            return super().clear_events()

    # ========================================================================
    # QUERY METHODS (Read-only)
    # ========================================================================

    @property
    def floors(self) -> tuple:
        return tuple(self._floors)

    def get_floor(self, floor_number: int) -> Optional[ParkingFloor]:
        for floor in self._floors:
            if floor.floor_number == floor_number:
                return floor
        return None

    def get_spot(self, spot_id: SpotId) -> Optional[ParkingSpot]:
        return self._spot_index.get(SpotId(*spot_id))

    def find_open_record(self, license_plate: str) -> Optional[OccupancyRecord]:
        """Open ticket for a plate; None also for a plate that could never be parked"""
        plate = self._normalise_plate(license_plate)
        if plate is None:
            return None
        with self._lock:
            return self._open_by_plate.get(plate)

    @staticmethod
    def _normalise_plate(license_plate: str) -> Optional[str]:
        try:
            return LicensePlate(license_plate).value
        except ValueError:
            return None

    def find_record_by_ticket(self, ticket_id: str) -> Optional[OccupancyRecord]:
        with self._lock:
            return self._open_by_ticket.get(ticket_id)

    def locate_vehicle(self, license_plate: str) -> Optional[SpotId]:
        record = self.find_open_record(license_plate)
        return record.spot_id if record else None

    def is_parked(self, license_plate: str) -> bool:
        return self.find_open_record(license_plate) is not None

    def open_records(self) -> List[OccupancyRecord]:
        with self._lock:
            return list(self._open_by_ticket.values())

    @property
    def total_spots(self) -> int:
        return len(self._spot_index)

    @property
    def available_spots(self) -> int:
        with self._lock:
            return sum(floor.available_spots for floor in self._floors)

    @property
    def occupied_spots(self) -> int:
        return self.total_spots - self.available_spots

    def get_occupancy_rate(self) -> float:
        """Calculate occupancy rate (0-100)"""
        if self.total_spots == 0:
            return 0.0
        return (self.occupied_spots / self.total_spots) * 100.0

    def available_by_class(self) -> Dict[SpotClass, int]:
        totals: Dict[SpotClass, int] = {}
        with self._lock:
            for floor in self._floors:
                for spot_class, count in floor.available_by_class().items():
                    totals[spot_class] = totals.get(spot_class, 0) + count
        return totals

    def get_status_report(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "facility_name": self.name,
                "total_spots": self.total_spots,
                "available_spots": self.available_spots,
                "occupied_spots": self.occupied_spots,
                "occupancy_rate": round(self.get_occupancy_rate(), 2),
                "available_by_class": {
                    spot_class.value: count
                    for spot_class, count in self.available_by_class().items()
                },
                "floors": [
                    {
                        "floor_number": floor.floor_number,
                        "total_spots": floor.total_spots,
                        "available_spots": floor.available_spots
                    }
                    for floor in self._floors
                ],
                "open_tickets": len(self._open_by_ticket),
                "version": self.version
            }

    def __str__(self) -> str:
        return (
            f"ParkingFacility {self.name}: {self.available_spots}/{self.total_spots} available "
            f"on {len(self._floors)} floors"
        )
