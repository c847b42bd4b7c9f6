"""
Parking Facility Core

Allocation of vehicles to compatible spots across a multi-floor facility,
the ticket lifecycle and fee calculation.
"""

from .domain.aggregates import ParkingFacility, ParkingFloor
from .domain.exceptions import (
    ParkingError, DuplicateEntryError, FacilityFullError, VehicleNotFoundError,
    AlreadyExitedError, TicketNotClosedError, InvalidStateError
)
from .domain.models import (
    LicensePlate, Money, SpotId, VehicleClass, SpotClass, TicketStatus,
    SpotCompatibility, DEFAULT_COMPATIBILITY, Vehicle, ParkingSpot, OccupancyRecord
)
from .domain.services import Clock, SystemClock, FixedClock, TicketIdGenerator
from .domain.strategies import RateTable, FeeCalculator
from .application.parking_service import ParkingService, ParkingServiceFactory

__version__ = "1.0.0"

__all__ = [
    'ParkingFacility', 'ParkingFloor',
    'ParkingError', 'DuplicateEntryError', 'FacilityFullError', 'VehicleNotFoundError',
    'AlreadyExitedError', 'TicketNotClosedError', 'InvalidStateError',
    'LicensePlate', 'Money', 'SpotId', 'VehicleClass', 'SpotClass', 'TicketStatus',
    'SpotCompatibility', 'DEFAULT_COMPATIBILITY', 'Vehicle', 'ParkingSpot', 'OccupancyRecord',
    'Clock', 'SystemClock', 'FixedClock', 'TicketIdGenerator',
    'RateTable', 'FeeCalculator',
    'ParkingService', 'ParkingServiceFactory',
]
