# File: src/parking_facility/domain/strategies.py
"""
Pricing for the parking facility core

The fee depends on the vehicle class only through a multiplier looked up in
an injected RateTable, so the calculator never branches on vehicle class and
new classes are priced by adding a table entry.

Billing rules:
- billed units = ceil(stay / billing unit); any partial unit is a full unit
- fee = base rate x class multiplier x billed units, rounded to cents
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Mapping
from datetime import timedelta
from decimal import Decimal
import logging

from .exceptions import TicketNotClosedError
from .models import Money, OccupancyRecord, VehicleClass


DEFAULT_MULTIPLIER = Decimal('1')


@dataclass(frozen=True)
class RateTable:
    """
    Value Object: base rate per billing unit plus per-class multipliers
    Classes missing from the table are billed at the plain base rate
    """
    base_rate: Money
    multipliers: Mapping[VehicleClass, Decimal] = field(default_factory=dict)
    billing_unit: timedelta = timedelta(hours=1)

    def __post_init__(self):
        if self.billing_unit <= timedelta(0):
            raise ValueError("Billing unit must be a positive duration")

        normalised = {}
        for vehicle_class, multiplier in self.multipliers.items():
            multiplier = Decimal(str(multiplier))
            if multiplier < Decimal('0'):
                raise ValueError(f"Multiplier for {vehicle_class} cannot be negative")
            normalised[vehicle_class] = multiplier
        object.__setattr__(self, 'multipliers', normalised)

    def multiplier_for(self, vehicle_class: VehicleClass) -> Decimal:
        return self.multipliers.get(vehicle_class, DEFAULT_MULTIPLIER)

    def unit_rate(self, vehicle_class: VehicleClass) -> Money:
        """Price of one billing unit for the given class"""
        return self.base_rate * self.multiplier_for(vehicle_class)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_rate": self.base_rate.to_dict(),
            "billing_unit_minutes": self.billing_unit.total_seconds() / 60,
            "multipliers": {
                vehicle_class.value: str(multiplier)
                for vehicle_class, multiplier in self.multipliers.items()
            }
        }


def billable_units(duration: timedelta, billing_unit: timedelta) -> int:
    """Whole billing units for a stay, partial units rounded up"""
    if duration < timedelta(0):
        raise ValueError("Duration cannot be negative")
    units, remainder = divmod(duration, billing_unit)
    if remainder > timedelta(0):
        units += 1
    return units


class FeeCalculator:
    """
    Domain Service: computes the fee for a closed occupancy record.
    Stateless; the same closed record always yields the same fee.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def compute_fee(self, record: OccupancyRecord, rate_table: RateTable) -> Money:
        """
        Fee for a closed record
        Raises: TicketNotClosedError if the record is still open
        """
        units = self._billed_units(record, rate_table)
        fee = (rate_table.unit_rate(record.vehicle.vehicle_class) * units).quantize()

        self.logger.debug(
            f"Ticket {record.ticket_id}: {units} unit(s) x "
            f"{rate_table.unit_rate(record.vehicle.vehicle_class).format()} = {fee.format()}"
        )
        return fee

    def receipt(self, record: OccupancyRecord, rate_table: RateTable) -> Dict[str, Any]:
        """Fee breakdown for a closed record, ready for a FeeReceiptDTO"""
        units = self._billed_units(record, rate_table)
        vehicle_class = record.vehicle.vehicle_class
        return {
            "ticket_id": record.ticket_id,
            "license_plate": record.vehicle.plate,
            "vehicle_class": vehicle_class.value,
            "entry_time": record.entry_time,
            "exit_time": record.exit_time,
            "billed_units": units,
            "billing_unit_minutes": int(rate_table.billing_unit.total_seconds() // 60),
            "unit_rate": rate_table.unit_rate(vehicle_class).quantize().amount,
            "multiplier": rate_table.multiplier_for(vehicle_class),
            "fee": self.compute_fee(record, rate_table).amount,
            "currency": rate_table.base_rate.currency
        }

    @staticmethod
    def _billed_units(record: OccupancyRecord, rate_table: RateTable) -> int:
        if not record.is_closed:
            raise TicketNotClosedError(record.ticket_id)
        return billable_units(record.duration, rate_table.billing_unit)
