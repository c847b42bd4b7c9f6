# File: src/parking_facility/application/dtos.py
"""
Data Transfer Objects (DTOs) for the Parking Facility

This module defines DTOs for data crossing the application boundary:
1. Configuration DTOs - Facility layout and rate table, validated on load
2. Output DTOs - Tickets, fee receipts and status snapshots for callers

DTO Principles:
- Validation at creation (pydantic)
- No business logic, only data and conversion helpers
- Serialization/deserialization support
"""

from typing import Dict, List, Optional, Any
from datetime import datetime, timedelta
from decimal import Decimal
import json

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..domain.models import (
    Money, OccupancyRecord, ParkingSpot, SpotClass, VehicleClass
)
from ..domain.strategies import RateTable


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        arbitrary_types_allowed=True
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        data = self.model_dump(**kwargs)
        if exclude_none:
            data = {k: v for k, v in data.items() if v is not None}
        return data

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        """Create DTO from dictionary"""
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        """Create DTO from JSON string"""
        data = json.loads(json_str)
        return cls(**data)


# ============================================================================
# CONFIGURATION DTOs
# ============================================================================

class FloorConfigDTO(BaseDTO):
    """
    One floor of the layout.

    Either list the spot classes in spot number order with `spots`, or give
    `spot_counts` and let the floor be laid out bikes first, then cars, then
    trucks.
    """
    floor_number: int = Field(ge=1, description="Floor number, 1 is the ground floor")
    spots: List[SpotClass] = Field(default_factory=list, description="Spot classes in spot number order")
    spot_counts: Optional[Dict[SpotClass, int]] = Field(default=None, description="Spots per class")

    @model_validator(mode='after')
    def expand_spot_counts(self) -> 'FloorConfigDTO':
        if self.spot_counts:
            if self.spots:
                raise ValueError("Give either spots or spot_counts, not both")
            expanded = []
            for spot_class in SpotClass:
                count = self.spot_counts.get(spot_class, 0)
                if count < 0:
                    raise ValueError(f"Spot count for {spot_class.value} cannot be negative")
                expanded.extend([spot_class] * count)
            self.spots = expanded
            self.spot_counts = None

        if not self.spots:
            raise ValueError(f"Floor {self.floor_number} needs at least one spot")
        return self


class RateTableDTO(BaseDTO):
    """Rate table configuration"""
    base_rate: Decimal = Field(gt=0, description="Price of one billing unit before multipliers")
    currency: str = Field(default="USD", min_length=3, max_length=3, description="Currency code (ISO 4217)")
    billing_unit_minutes: int = Field(default=60, gt=0, description="Length of one billing unit")
    multipliers: Dict[VehicleClass, Decimal] = Field(default_factory=dict, description="Multiplier per vehicle class")

    @field_validator('currency')
    @classmethod
    def normalise_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator('multipliers')
    @classmethod
    def validate_multipliers(cls, v: Dict[VehicleClass, Decimal]) -> Dict[VehicleClass, Decimal]:
        for vehicle_class, multiplier in v.items():
            if multiplier < 0:
                raise ValueError(f"Multiplier for {vehicle_class.value} cannot be negative")
        return v

    def to_rate_table(self) -> RateTable:
        return RateTable(
            base_rate=Money(self.base_rate, self.currency),
            multipliers=dict(self.multipliers),
            billing_unit=timedelta(minutes=self.billing_unit_minutes)
        )


class FacilityConfigDTO(BaseDTO):
    """Complete facility configuration: layout plus rates"""
    name: str = Field(min_length=1, description="Facility name")
    ticket_prefix: str = Field(default="PK", min_length=1, max_length=8, description="Prefix for ticket ids")
    floors: List[FloorConfigDTO] = Field(min_length=1, description="Floors of the facility")
    rates: RateTableDTO

    @field_validator('ticket_prefix')
    @classmethod
    def normalise_ticket_prefix(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Ticket prefix cannot be blank")
        return v

    @field_validator('floors')
    @classmethod
    def validate_floors(cls, v: List[FloorConfigDTO]) -> List[FloorConfigDTO]:
        numbers = [floor.floor_number for floor in v]
        duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate floor numbers: {duplicates}")
        return sorted(v, key=lambda floor: floor.floor_number)

    def layout(self) -> Dict[int, List[SpotClass]]:
        """Floor number -> spot classes, ascending floor number"""
        return {floor.floor_number: list(floor.spots) for floor in self.floors}


# ============================================================================
# OUTPUT DTOs
# ============================================================================

class SpotDTO(BaseDTO):
    """Parking spot snapshot"""
    floor_number: int
    spot_number: int
    location_code: str
    spot_class: str
    is_free: bool
    occupant: Optional[str] = None

    @classmethod
    def from_spot(cls, spot: ParkingSpot) -> 'SpotDTO':
        return cls(
            floor_number=spot.floor_number,
            spot_number=spot.number,
            location_code=spot.location_code,
            spot_class=spot.spot_class.value,
            is_free=spot.is_free(),
            occupant=spot.occupant.plate if spot.occupant else None
        )


class TicketDTO(BaseDTO):
    """Occupancy record (ticket) snapshot"""
    ticket_id: str
    license_plate: str
    vehicle_class: str
    floor_number: int
    spot_number: int
    location_code: str
    entry_time: datetime
    exit_time: Optional[datetime] = None
    status: str
    fee: Optional[Decimal] = None
    currency: Optional[str] = None

    @classmethod
    def from_record(cls, record: OccupancyRecord, fee: Optional[Money] = None) -> 'TicketDTO':
        return cls(
            ticket_id=record.ticket_id,
            license_plate=record.vehicle.plate,
            vehicle_class=record.vehicle.vehicle_class.value,
            floor_number=record.spot_id.floor_number,
            spot_number=record.spot_id.spot_number,
            location_code=record.spot_id.location_code,
            entry_time=record.entry_time,
            exit_time=record.exit_time,
            status=record.status.value,
            fee=fee.amount if fee else None,
            currency=fee.currency if fee else None
        )


class FeeReceiptDTO(BaseDTO):
    """Fee breakdown for a closed (or hypothetically closed) ticket"""
    ticket_id: str
    license_plate: str
    vehicle_class: str
    entry_time: datetime
    exit_time: datetime
    billed_units: int = Field(ge=0)
    billing_unit_minutes: int = Field(gt=0)
    unit_rate: Decimal
    multiplier: Decimal
    fee: Decimal = Field(ge=0)
    currency: str

    @property
    def duration_minutes(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds() / 60

    def fee_money(self) -> Money:
        return Money(self.fee, self.currency)

    def display(self) -> str:
        return (
            f"{self.license_plate}: {self.billed_units} x {self.unit_rate:.2f} = "
            f"{self.fee:.2f} {self.currency}"
        )


class ExitResultDTO(BaseDTO):
    """Result of a completed exit"""
    ticket: TicketDTO
    receipt: FeeReceiptDTO

    @property
    def fee(self) -> Decimal:
        return self.receipt.fee


class FloorStatusDTO(BaseDTO):
    floor_number: int
    total_spots: int
    available_spots: int


class FacilityStatusDTO(BaseDTO):
    """Facility occupancy snapshot"""
    facility_name: str
    total_spots: int
    available_spots: int
    occupied_spots: int
    occupancy_rate: float = Field(ge=0, le=100)
    available_by_class: Dict[str, int] = Field(default_factory=dict)
    floors: List[FloorStatusDTO] = Field(default_factory=list)
    open_tickets: int = 0

    @classmethod
    def from_report(cls, report: Dict[str, Any]) -> 'FacilityStatusDTO':
        return cls(**report)

    @property
    def is_full(self) -> bool:
        return self.available_spots == 0
