# File: src/parking_facility/domain/models.py
"""
Domain Models for the Parking Facility Core
Following Domain-Driven Design (DDD) principles with rich domain models

This module contains:
1. Value Objects: LicensePlate, Money, SpotId
2. Enums: VehicleClass, SpotClass, TicketStatus
3. Compatibility policy: SpotCompatibility (vehicle class -> spot classes table)
4. Entities: Vehicle, ParkingSpot, OccupancyRecord
5. Domain Events: VehicleParkedEvent, VehicleLeftEvent

Vehicles are a single type tagged by VehicleClass. Anything that depends on
the class (which spots fit, which rate multiplier applies) is looked up in a
table, so a new class only needs new table entries.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any, Iterable, Mapping, NamedTuple, FrozenSet, Union
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
import re
import uuid

from .exceptions import AlreadyExitedError, InvalidStateError


# ============================================================================
# DOMAIN PRIMITIVES / VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)  # Value objects are immutable
class LicensePlate:
    """
    Value Object: License plate number with validation
    The plate is the identity of a vehicle inside the facility
    """
    value: str

    def __post_init__(self):
        """Validate license plate after initialization"""
        if not self.value or not self.value.strip():
            raise ValueError("License plate cannot be empty")

        # Remove whitespace and convert to uppercase
        object.__setattr__(self, 'value', self.value.strip().upper())

        if len(self.value) < 2 or len(self.value) > 10:
            raise ValueError(f"License plate must be 2-10 characters, got: {self.value}")

        # Alphanumeric with possible spaces and hyphens
        if not re.match(r'^[A-Z0-9\s\-]+$', self.value):
            raise ValueError(
                f"License plate can only contain letters, numbers, spaces, and hyphens: {self.value}"
            )

    def __str__(self) -> str:
        return self.value


CENTS = Decimal('0.01')


@dataclass(frozen=True)
class Money:
    """
    Value Object: Monetary amount with currency
    Decimal based so that fees never drift through float rounding
    """
    amount: Decimal
    currency: str = "USD"

    def __post_init__(self):
        """Validate money amount"""
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        if self.amount < Decimal('0'):
            raise ValueError("Money amount cannot be negative")

        if len(self.currency) != 3:
            raise ValueError(f"Currency must be 3-letter code: {self.currency}")

    @classmethod
    def zero(cls, currency: str = "USD") -> 'Money':
        return cls(Decimal('0.00'), currency)

    @classmethod
    def from_minor_units(cls, minor_units: int, currency: str = "USD") -> 'Money':
        """Build from an integer count of cents"""
        return cls((Decimal(minor_units) * CENTS).quantize(CENTS), currency)

    @property
    def minor_units(self) -> int:
        """Amount in cents, rounded half up"""
        return int((self.amount / CENTS).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money amounts (same currency only)"""
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency} to {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __mul__(self, multiplier: Union[Decimal, int]) -> 'Money':
        """Multiply money by a decimal or an integer count"""
        multiplier = Decimal(multiplier)
        if multiplier < Decimal('0'):
            raise ValueError("Multiplier cannot be negative")
        return Money(self.amount * multiplier, self.currency)

    def quantize(self) -> 'Money':
        """Round to whole cents"""
        return Money(self.amount.quantize(CENTS, rounding=ROUND_HALF_UP), self.currency)

    def format(self) -> str:
        """Format money for display"""
        return f"{self.amount:.2f} {self.currency}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "currency": self.currency
        }


class SpotId(NamedTuple):
    """Identity of a spot inside the facility: (floor number, spot number)"""
    floor_number: int
    spot_number: int

    @property
    def location_code(self) -> str:
        return f"F{self.floor_number:02d}-S{self.spot_number:03d}"

    def __str__(self) -> str:
        return self.location_code


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class VehicleClass(Enum):
    """Size class of a vehicle"""
    SMALL = "small"         # Bikes, scooters
    COMPACT = "compact"     # Passenger cars
    LARGE = "large"         # Trucks, vans

    def __str__(self) -> str:
        return self.value.title()


class SpotClass(Enum):
    """Physical class of a parking spot"""
    BIKE = "bike"
    CAR = "car"
    TRUCK = "truck"

    def __str__(self) -> str:
        return self.value.title()


class TicketStatus(Enum):
    """Lifecycle of an occupancy record: OPEN -> CLOSED, CLOSED is terminal"""
    OPEN = "open"
    CLOSED = "closed"


# ============================================================================
# COMPATIBILITY POLICY
# ============================================================================

class SpotCompatibility:
    """
    Table-driven rule deciding which spot classes a vehicle class may use.

    fits() is total: pairs missing from the table are incompatible rather
    than an error. Extending the rules means adding entries, either through
    the constructor or with with_rule().
    """

    def __init__(self, table: Mapping[VehicleClass, Iterable[SpotClass]]):
        self._table: Dict[VehicleClass, FrozenSet[SpotClass]] = {
            vehicle_class: frozenset(spot_classes)
            for vehicle_class, spot_classes in table.items()
        }

    def fits(self, spot_class: SpotClass, vehicle_class: VehicleClass) -> bool:
        return spot_class in self._table.get(vehicle_class, frozenset())

    def spot_classes_for(self, vehicle_class: VehicleClass) -> FrozenSet[SpotClass]:
        return self._table.get(vehicle_class, frozenset())

    def with_rule(self, vehicle_class: VehicleClass, *spot_classes: SpotClass) -> 'SpotCompatibility':
        """Return a new policy with extra allowed spot classes for vehicle_class"""
        table = dict(self._table)
        table[vehicle_class] = table.get(vehicle_class, frozenset()) | frozenset(spot_classes)
        return SpotCompatibility(table)

    def to_dict(self) -> Dict[str, Any]:
        return {
            vehicle_class.value: sorted(spot_class.value for spot_class in spot_classes)
            for vehicle_class, spot_classes in self._table.items()
        }

    def __repr__(self) -> str:
        return f"SpotCompatibility({self.to_dict()})"


DEFAULT_COMPATIBILITY = SpotCompatibility({
    VehicleClass.SMALL: [SpotClass.BIKE],
    VehicleClass.COMPACT: [SpotClass.CAR],
    VehicleClass.LARGE: [SpotClass.TRUCK],
})


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Provides identity based equality
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id or str(uuid.uuid4())

    @property
    def id(self) -> str:
        """Get entity ID"""
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


@dataclass(frozen=True)
class Vehicle:
    """
    Value: a vehicle identified by its plate and tagged with a size class.
    Accepts a plain string plate and normalises it into a LicensePlate.
    """
    license_plate: LicensePlate
    vehicle_class: VehicleClass

    def __post_init__(self):
        if isinstance(self.license_plate, str):
            object.__setattr__(self, 'license_plate', LicensePlate(self.license_plate))
        if isinstance(self.vehicle_class, str):
            object.__setattr__(self, 'vehicle_class', VehicleClass(self.vehicle_class))

    @property
    def plate(self) -> str:
        return self.license_plate.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "license_plate": self.plate,
            "vehicle_class": self.vehicle_class.value
        }

    def __str__(self) -> str:
        return f"{self.vehicle_class} [{self.license_plate}]"


class ParkingSpot(Entity):
    """
    Entity: a single parking space of a fixed class.
    Owned by its floor; holds at most one vehicle.
    """

    def __init__(
        self,
        floor_number: int,
        number: int,
        spot_class: SpotClass,
        compatibility: SpotCompatibility = DEFAULT_COMPATIBILITY
    ):
        if floor_number < 1:
            raise ValueError("Floor number must be at least 1")
        if number < 1:
            raise ValueError("Spot number must be positive")

        self.spot_id = SpotId(floor_number, number)
        super().__init__(self.spot_id.location_code)
        self.spot_class = spot_class
        self._compatibility = compatibility
        self._occupant: Optional[Vehicle] = None

    @property
    def floor_number(self) -> int:
        return self.spot_id.floor_number

    @property
    def number(self) -> int:
        return self.spot_id.spot_number

    @property
    def location_code(self) -> str:
        return self.spot_id.location_code

    @property
    def occupant(self) -> Optional[Vehicle]:
        return self._occupant

    def is_free(self) -> bool:
        return self._occupant is None

    def can_accept(self, vehicle: Vehicle) -> bool:
        """True iff the spot is free and its class fits the vehicle class"""
        return self.is_free() and self._compatibility.fits(self.spot_class, vehicle.vehicle_class)

    def assign(self, vehicle: Vehicle) -> None:
        """
        Occupy the spot with a vehicle
        Raises: InvalidStateError if occupied or incompatible
        """
        if not self.is_free():
            raise InvalidStateError(
                f"Spot {self.location_code} is already occupied by {self._occupant.plate}"
            )
        if not self._compatibility.fits(self.spot_class, vehicle.vehicle_class):
            raise InvalidStateError(
                f"Spot {self.location_code} ({self.spot_class}) cannot hold "
                f"{vehicle.vehicle_class} vehicle {vehicle.plate}"
            )
        self._occupant = vehicle

    def release(self) -> Vehicle:
        """
        Free the spot
        Returns: the vehicle that was occupying it
        Raises: InvalidStateError if the spot is already free
        """
        if self._occupant is None:
            raise InvalidStateError(f"Spot {self.location_code} is not occupied")
        vehicle = self._occupant
        self._occupant = None
        return vehicle

    def to_dict(self) -> Dict[str, Any]:
        return {
            "floor_number": self.floor_number,
            "number": self.number,
            "location_code": self.location_code,
            "spot_class": self.spot_class.value,
            "is_free": self.is_free(),
            "occupant": self._occupant.plate if self._occupant else None
        }

    def __str__(self) -> str:
        status = "Occupied" if self._occupant else "Available"
        return f"Spot {self.location_code} - {self.spot_class} - {status}"


class OccupancyRecord(Entity):
    """
    Entity: the ticket issued when a vehicle is parked.
    OPEN while the vehicle is inside, CLOSED once the exit time is stamped.
    """

    def __init__(
        self,
        ticket_id: str,
        vehicle: Vehicle,
        spot_id: SpotId,
        entry_time: datetime,
        exit_time: Optional[datetime] = None
    ):
        super().__init__(ticket_id)
        self.vehicle = vehicle
        self.spot_id = spot_id
        self.entry_time = entry_time
        self.exit_time: Optional[datetime] = None
        self.status = TicketStatus.OPEN

        if exit_time is not None:
            self.close(exit_time)

    @property
    def ticket_id(self) -> str:
        return self.id

    @property
    def is_open(self) -> bool:
        return self.status == TicketStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == TicketStatus.CLOSED

    @property
    def duration(self) -> Optional[timedelta]:
        """Length of the stay, None while the ticket is open"""
        if self.exit_time is None:
            return None
        return self.exit_time - self.entry_time

    def close(self, exit_time: datetime) -> None:
        """
        Stamp the exit time and move to CLOSED
        Raises: AlreadyExitedError if already closed,
                InvalidStateError if exit_time is before entry_time
        """
        if self.status == TicketStatus.CLOSED:
            raise AlreadyExitedError(self.ticket_id)
        if exit_time < self.entry_time:
            raise InvalidStateError(
                f"Exit time {exit_time.isoformat()} is before entry time "
                f"{self.entry_time.isoformat()} on ticket {self.ticket_id}"
            )
        self.exit_time = exit_time
        self.status = TicketStatus.CLOSED

    def as_closed(self, exit_time: datetime) -> 'OccupancyRecord':
        """Closed copy of an open ticket; this ticket is left untouched"""
        if self.is_closed:
            raise AlreadyExitedError(self.ticket_id)
        return OccupancyRecord(
            ticket_id=self.ticket_id,
            vehicle=self.vehicle,
            spot_id=self.spot_id,
            entry_time=self.entry_time,
            exit_time=exit_time
        )

    def to_dict(self) -> Dict[str, Any]:
        duration = self.duration
        return {
            "ticket_id": self.ticket_id,
            "license_plate": self.vehicle.plate,
            "vehicle_class": self.vehicle.vehicle_class.value,
            "floor_number": self.spot_id.floor_number,
            "spot_number": self.spot_id.spot_number,
            "location_code": self.spot_id.location_code,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "status": self.status.value,
            "duration_minutes": duration.total_seconds() / 60 if duration is not None else None
        }

    def __str__(self) -> str:
        return f"Ticket {self.ticket_id} [{self.status.value}] {self.vehicle.plate} @ {self.spot_id}"


# ============================================================================
# DOMAIN EVENTS
# ============================================================================

class DomainEvent(ABC):
    """
    Base class for all domain events
    Events represent something that happened in the domain
    """

    def __init__(self, timestamp: Optional[datetime] = None):
        self.event_id = str(uuid.uuid4())
        self.timestamp = timestamp or datetime.now()
        self.version = "1.0"

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization"""
        pass

    def __str__(self) -> str:
        return f"{self.__class__.__name__} at {self.timestamp}"


class VehicleParkedEvent(DomainEvent):
    """Event raised when a vehicle is parked"""

    def __init__(
        self,
        facility_name: str,
        ticket_id: str,
        spot_id: SpotId,
        license_plate: str,
        vehicle_class: VehicleClass,
        timestamp: Optional[datetime] = None
    ):
        super().__init__(timestamp)
        self.facility_name = facility_name
        self.ticket_id = ticket_id
        self.spot_id = spot_id
        self.license_plate = license_plate
        self.vehicle_class = vehicle_class

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": "vehicle.parked",
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "data": {
                "facility_name": self.facility_name,
                "ticket_id": self.ticket_id,
                "location_code": self.spot_id.location_code,
                "license_plate": self.license_plate,
                "vehicle_class": self.vehicle_class.value
            }
        }


class VehicleLeftEvent(DomainEvent):
    """Event raised when a vehicle leaves"""

    def __init__(
        self,
        facility_name: str,
        ticket_id: str,
        spot_id: SpotId,
        license_plate: str,
        entry_time: datetime,
        exit_time: datetime,
        fee: Optional[Money] = None
    ):
        super().__init__(exit_time)
        self.facility_name = facility_name
        self.ticket_id = ticket_id
        self.spot_id = spot_id
        self.license_plate = license_plate
        self.entry_time = entry_time
        self.exit_time = exit_time
        self.fee = fee

    @property
    def duration_minutes(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds() / 60

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "facility_name": self.facility_name,
            "ticket_id": self.ticket_id,
            "location_code": self.spot_id.location_code,
            "license_plate": self.license_plate,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "duration_minutes": self.duration_minutes
        }

        if self.fee is not None:
            data["fee_amount"] = str(self.fee.amount)
            data["fee_currency"] = self.fee.currency

        return {
            "event_type": "vehicle.left",
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "data": data
        }
