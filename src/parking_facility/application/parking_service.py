# File: src/parking_facility/application/parking_service.py
"""
Application Service Layer for the Parking Facility

This module orchestrates the use cases on top of the ParkingFacility aggregate:
1. Park a vehicle and issue a ticket
2. Exit a vehicle (by plate or ticket), charge the fee and archive the ticket
3. Quote the fee a vehicle would pay if it left now
4. Report occupancy and ticket history

Key Principles:
- Thin layer, the aggregate owns the rules
- Returns DTOs, never live domain objects
- Domain errors are logged and propagated unchanged
- Domain events are drained after each use case and published on the bus
"""

from typing import List, Optional, Union, Dict, Any
import logging
import threading

from ..domain.aggregates import ParkingFacility
from ..domain.exceptions import ParkingError, VehicleNotFoundError
from ..domain.models import (
    LicensePlate, Money, OccupancyRecord, SpotCompatibility, Vehicle, VehicleClass,
    VehicleLeftEvent, DEFAULT_COMPATIBILITY
)
from ..domain.services import Clock, TicketIdGenerator
from ..domain.strategies import FeeCalculator, RateTable
from ..infrastructure.messaging import EventBus
from ..infrastructure.repositories import InMemoryTicketRepository, TicketRepository
from .dtos import (
    ExitResultDTO, FacilityConfigDTO, FacilityStatusDTO, FeeReceiptDTO, TicketDTO
)


class ParkingService:
    """
    Main application service for parking operations

    Coordinates the facility, the fee calculator, the ticket archive and the
    event bus. Each use case runs under the service lock so that the events
    drained from the facility belong to that use case.
    """

    def __init__(
        self,
        facility: ParkingFacility,
        rate_table: RateTable,
        repository: Optional[TicketRepository] = None,
        event_bus: Optional[EventBus] = None,
        fee_calculator: Optional[FeeCalculator] = None
    ):
        self.facility = facility
        self.rate_table = rate_table
        self.repository = repository or InMemoryTicketRepository()
        self.event_bus = event_bus or EventBus()
        self.fee_calculator = fee_calculator or FeeCalculator()
        self._lock = threading.RLock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def park(self, license_plate: str, vehicle_class: Union[VehicleClass, str]) -> TicketDTO:
        """
        Park a vehicle

        Use Case: Vehicle Entry
        1. Build the vehicle (validates plate and class)
        2. Allocate the nearest compatible spot and open a ticket
        3. Publish VehicleParkedEvent

        Returns: the open ticket
        Raises: ValueError for a malformed plate or unknown class,
                DuplicateEntryError, FacilityFullError
        """
        self.logger.info(f"Processing parking request for {license_plate}")
        vehicle = Vehicle(LicensePlate(license_plate), self._vehicle_class(vehicle_class))

        with self._lock:
            try:
                record = self.facility.park_vehicle(vehicle)
            except ParkingError as e:
                self.logger.warning(f"Parking request for {vehicle.plate} rejected: {e}")
                raise
            self._publish_events()

        return TicketDTO.from_record(record)

    def exit(self, license_plate: str) -> ExitResultDTO:
        """
        Exit a vehicle by plate

        Use Case: Vehicle Exit
        1. Close the ticket and free the spot
        2. Compute the fee
        3. Archive the closed ticket
        4. Publish VehicleLeftEvent carrying the fee

        Raises: VehicleNotFoundError if the vehicle has no open ticket
        """
        self.logger.info(f"Processing exit request for {license_plate}")

        with self._lock:
            try:
                record = self.facility.unpark_vehicle(license_plate)
            except ParkingError as e:
                self.logger.warning(f"Exit request for {license_plate} rejected: {e}")
                raise
            return self._settle(record)

    def exit_by_ticket(self, ticket_id: str) -> ExitResultDTO:
        """Same as exit(), looked up by ticket id"""
        self.logger.info(f"Processing exit request for ticket {ticket_id}")

        with self._lock:
            try:
                record = self.facility.unpark_by_ticket(ticket_id)
            except ParkingError as e:
                self.logger.warning(f"Exit request for ticket {ticket_id} rejected: {e}")
                raise
            return self._settle(record)

    def quote(self, license_plate: str) -> FeeReceiptDTO:
        """
        Fee the vehicle would pay if it left now; the facility is not changed
        Raises: VehicleNotFoundError if the vehicle has no open ticket
        """
        with self._lock:
            record = self.facility.find_open_record(license_plate)
            if record is None:
                raise VehicleNotFoundError(license_plate=license_plate)
            preview = record.as_closed(self.facility.clock.now())

        return FeeReceiptDTO(**self.fee_calculator.receipt(preview, self.rate_table))

    def current_ticket(self, license_plate: str) -> Optional[TicketDTO]:
        record = self.facility.find_open_record(license_plate)
        return TicketDTO.from_record(record) if record else None

    def get_status(self) -> FacilityStatusDTO:
        return FacilityStatusDTO.from_report(self.facility.get_status_report())

    def history(self, license_plate: str) -> List[TicketDTO]:
        """Archived tickets for a plate, oldest first"""
        plate = LicensePlate(license_plate).value
        return [
            TicketDTO.from_record(entry.record, entry.fee)
            for entry in self.repository.find_by_plate(plate)
        ]

    def _settle(self, record: OccupancyRecord) -> ExitResultDTO:
        receipt = self.fee_calculator.receipt(record, self.rate_table)
        fee = Money(receipt["fee"], receipt["currency"])

        try:
            self.repository.add(record, fee)
        except Exception as e:
            self.logger.error(f"Error archiving ticket {record.ticket_id}: {e}", exc_info=True)
            raise
        finally:
            self._publish_events(fee)

        self.logger.info(
            f"Vehicle {record.vehicle.plate} exited, ticket {record.ticket_id} "
            f"charged {fee.format()}"
        )
        return ExitResultDTO(
            ticket=TicketDTO.from_record(record, fee),
            receipt=FeeReceiptDTO(**receipt)
        )

    def _publish_events(self, fee: Optional[Money] = None) -> None:
        for event in self.facility.clear_events():
            if isinstance(event, VehicleLeftEvent) and fee is not None:
                event.fee = fee
            self.event_bus.publish(event)

    @staticmethod
    def _vehicle_class(value: Union[VehicleClass, str]) -> VehicleClass:
        if isinstance(value, VehicleClass):
            return value
        try:
            return VehicleClass(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown vehicle class {value!r}; expected one of "
                f"{[vehicle_class.value for vehicle_class in VehicleClass]}"
            ) from None


# ============================================================================
# SERVICE FACTORY
# ============================================================================

class ParkingServiceFactory:
    """Factory for creating parking service instances"""

    @staticmethod
    def create_facility(
        config: FacilityConfigDTO,
        clock: Optional[Clock] = None,
        compatibility: SpotCompatibility = DEFAULT_COMPATIBILITY,
        first_sequence: int = 1
    ) -> ParkingFacility:
        return ParkingFacility.from_layout(
            config.name,
            config.layout(),
            compatibility=compatibility,
            clock=clock,
            ticket_ids=TicketIdGenerator(config.ticket_prefix, start=first_sequence)
        )

    @staticmethod
    def from_config(
        config: Union[FacilityConfigDTO, Dict[str, Any]],
        clock: Optional[Clock] = None,
        repository: Optional[TicketRepository] = None,
        event_bus: Optional[EventBus] = None,
        compatibility: SpotCompatibility = DEFAULT_COMPATIBILITY
    ) -> ParkingService:
        """
        Create a parking service from a validated (or raw dict) configuration

        The ticket sequence continues after the highest id already in the
        archive, so a restarted service never reissues an archived ticket id.
        """
        if not isinstance(config, FacilityConfigDTO):
            config = FacilityConfigDTO.from_dict(config)

        repository = repository or InMemoryTicketRepository()
        first_sequence = repository.last_sequence(config.ticket_prefix) + 1
        facility = ParkingServiceFactory.create_facility(config, clock, compatibility, first_sequence)
        logging.getLogger(ParkingServiceFactory.__name__).info(
            f"Ticket sequence for {config.name} starts at {first_sequence}"
        )
        return ParkingService(
            facility,
            config.rates.to_rate_table(),
            repository=repository,
            event_bus=event_bus
        )
