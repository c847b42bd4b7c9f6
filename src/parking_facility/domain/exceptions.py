# File: src/parking_facility/domain/exceptions.py
"""
Domain exceptions for the parking facility core

Every failure a caller can react to has its own type so that, for example,
a full facility can be told apart from an unknown vehicle. All of them
derive from ParkingError.
"""

from typing import Optional


class ParkingError(Exception):
    """Base exception for parking facility errors"""
    pass


class DuplicateEntryError(ParkingError):
    """Raised when a vehicle that already holds an open ticket tries to park"""

    def __init__(self, license_plate: str, ticket_id: Optional[str] = None):
        self.license_plate = license_plate
        self.ticket_id = ticket_id
        message = f"Vehicle {license_plate} is already parked"
        if ticket_id:
            message += f" (ticket {ticket_id})"
        super().__init__(message)


class FacilityFullError(ParkingError):
    """Raised when no compatible free spot exists on any floor"""

    def __init__(self, license_plate: str, vehicle_class: object):
        self.license_plate = license_plate
        self.vehicle_class = vehicle_class
        super().__init__(
            f"No compatible free spot for {vehicle_class} vehicle {license_plate}"
        )


class VehicleNotFoundError(ParkingError):
    """Raised when an exit is requested for a vehicle with no open ticket"""

    def __init__(self, license_plate: Optional[str] = None, ticket_id: Optional[str] = None):
        self.license_plate = license_plate
        self.ticket_id = ticket_id
        if ticket_id:
            message = f"No open ticket {ticket_id}"
        else:
            message = f"No open ticket for vehicle {license_plate}"
        super().__init__(message)


class AlreadyExitedError(ParkingError):
    """Raised when closing a ticket that is already closed"""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} is already closed")


class TicketNotClosedError(ParkingError):
    """Raised when a fee is requested for a ticket that is still open"""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} is still open; fee needs an exit time")


class InvalidStateError(ParkingError):
    """
    Raised when a spot or ticket operation is called with its precondition
    violated. Signals a bug in the caller, not a user error.
    """
    pass
