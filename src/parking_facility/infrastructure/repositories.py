# File: src/parking_facility/infrastructure/repositories.py
"""
Ticket archive for the Parking Facility

Closed occupancy records leave the facility together with their fee and are
handed to a TicketRepository. Two implementations:
1. InMemoryTicketRepository - For tests and single-process use
2. SQLAlchemyTicketRepository - Relational storage through the SQLAlchemy ORM

The domain model never sees the ORM: TicketMapper converts both ways.
Fees are stored as integer minor units (cents) to avoid float columns.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Callable
import logging
import threading

from sqlalchemy import create_engine, Column, Integer, String, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from ..domain.exceptions import InvalidStateError
from ..domain.models import Money, OccupancyRecord, SpotId, Vehicle, VehicleClass
from ..domain.services import SystemClock, TicketIdGenerator


@dataclass(frozen=True)
class ArchivedTicket:
    """A closed ticket and the fee charged for it"""
    record: OccupancyRecord
    fee: Money

    @property
    def ticket_id(self) -> str:
        return self.record.ticket_id

    @property
    def license_plate(self) -> str:
        return self.record.vehicle.plate


# ============================================================================
# REPOSITORY INTERFACE
# ============================================================================

class TicketRepository(ABC):
    """Archive of closed tickets"""

    @abstractmethod
    def add(self, record: OccupancyRecord, fee: Money) -> ArchivedTicket:
        """Archive a closed record with its fee"""
        pass

    @abstractmethod
    def get(self, ticket_id: str) -> Optional[ArchivedTicket]:
        pass

    @abstractmethod
    def find_by_plate(self, license_plate: str) -> List[ArchivedTicket]:
        """Archived tickets for a plate, oldest entry first"""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def last_sequence(self, prefix: str) -> int:
        """Highest archived sequence issued under prefix, 0 when there is none"""
        pass

    @staticmethod
    def _highest_sequence(ticket_ids: Iterable[str], prefix: str) -> int:
        sequences = (TicketIdGenerator.parse_sequence(ticket_id, prefix) for ticket_id in ticket_ids)
        return max((sequence for sequence in sequences if sequence is not None), default=0)

    @staticmethod
    def _ensure_closed(record: OccupancyRecord) -> None:
        if not record.is_closed:
            raise InvalidStateError(f"Ticket {record.ticket_id} is still open and cannot be archived")


# ============================================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================================

class InMemoryTicketRepository(TicketRepository):
    """In-memory archive for testing"""

    def __init__(self):
        self._storage: Dict[str, ArchivedTicket] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def add(self, record: OccupancyRecord, fee: Money) -> ArchivedTicket:
        self._ensure_closed(record)
        with self._lock:
            if record.ticket_id in self._storage:
                raise InvalidStateError(f"Ticket {record.ticket_id} is already archived")
            entry = ArchivedTicket(record, fee)
            self._storage[record.ticket_id] = entry
        self._logger.debug(f"Archived ticket {record.ticket_id}")
        return entry

    def get(self, ticket_id: str) -> Optional[ArchivedTicket]:
        return self._storage.get(ticket_id)

    def find_by_plate(self, license_plate: str) -> List[ArchivedTicket]:
        with self._lock:
            matches = [entry for entry in self._storage.values() if entry.license_plate == license_plate]
        return sorted(matches, key=lambda entry: entry.record.entry_time)

    def count(self) -> int:
        return len(self._storage)

    def last_sequence(self, prefix: str) -> int:
        with self._lock:
            return self._highest_sequence(list(self._storage), prefix)


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class TicketModel(Base):
    """SQLAlchemy model for an archived ticket"""
    __tablename__ = 'parking_tickets'

    ticket_id = Column(String(40), primary_key=True)
    license_plate = Column(String(10), nullable=False, index=True)
    vehicle_class = Column(String(20), nullable=False)
    floor_number = Column(Integer, nullable=False)
    spot_number = Column(Integer, nullable=False)
    entry_time = Column(DateTime, nullable=False)
    exit_time = Column(DateTime, nullable=False)
    fee_minor_units = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default='USD')
    archived_at = Column(DateTime, default=lambda: SystemClock().now())

    def __repr__(self):
        return f"<TicketModel(ticket_id='{self.ticket_id}', license_plate='{self.license_plate}')>"


class TicketMapper:
    """Maps between archived tickets and ORM models"""

    @staticmethod
    def to_orm(record: OccupancyRecord, fee: Money) -> TicketModel:
        return TicketModel(
            ticket_id=record.ticket_id,
            license_plate=record.vehicle.plate,
            vehicle_class=record.vehicle.vehicle_class.value,
            floor_number=record.spot_id.floor_number,
            spot_number=record.spot_id.spot_number,
            entry_time=record.entry_time,
            exit_time=record.exit_time,
            fee_minor_units=fee.minor_units,
            currency=fee.currency
        )

    @staticmethod
    def to_domain(model: TicketModel) -> ArchivedTicket:
        record = OccupancyRecord(
            ticket_id=model.ticket_id,
            vehicle=Vehicle(model.license_plate, VehicleClass(model.vehicle_class)),
            spot_id=SpotId(model.floor_number, model.spot_number),
            entry_time=model.entry_time,
            exit_time=model.exit_time
        )
        return ArchivedTicket(record, Money.from_minor_units(model.fee_minor_units, model.currency))


# ============================================================================
# SQLALCHEMY IMPLEMENTATION
# ============================================================================

class SQLAlchemyTicketRepository(TicketRepository):
    """SQLAlchemy backed archive; each add is committed on its own"""

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    def add(self, record: OccupancyRecord, fee: Money) -> ArchivedTicket:
        self._ensure_closed(record)
        try:
            if self.session.get(TicketModel, record.ticket_id) is not None:
                raise InvalidStateError(f"Ticket {record.ticket_id} is already archived")

            model = TicketMapper.to_orm(record, fee)
            self.session.add(model)
            self.session.commit()

            self._logger.debug(f"Archived ticket {model.ticket_id}")
            return ArchivedTicket(record, fee)
        except IntegrityError as e:
            self.session.rollback()
            self._logger.error(f"Integrity error archiving ticket {record.ticket_id}: {e}")
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error archiving ticket {record.ticket_id}: {e}")
            raise

    def get(self, ticket_id: str) -> Optional[ArchivedTicket]:
        try:
            model = self.session.get(TicketModel, ticket_id)
            if model:
                return TicketMapper.to_domain(model)
            return None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting ticket {ticket_id}: {e}")
            raise

    def find_by_plate(self, license_plate: str) -> List[ArchivedTicket]:
        try:
            models = (
                self.session.query(TicketModel)
                .filter(TicketModel.license_plate == license_plate)
                .order_by(TicketModel.entry_time)
                .all()
            )
            return [TicketMapper.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding tickets for {license_plate}: {e}")
            raise

    def count(self) -> int:
        try:
            return self.session.query(TicketModel).count()
        except SQLAlchemyError as e:
            self._logger.error(f"Database error counting tickets: {e}")
            raise

    def last_sequence(self, prefix: str) -> int:
        try:
            rows = (
                self.session.query(TicketModel.ticket_id)
                .filter(TicketModel.ticket_id.like(f"TKT-{prefix}-%"))
                .all()
            )
            return self._highest_sequence((row.ticket_id for row in rows), prefix)
        except SQLAlchemyError as e:
            self._logger.error(f"Database error reading ticket sequence for {prefix}: {e}")
            raise


def create_session_factory(database_url: str = "sqlite:///:memory:", echo: bool = False) -> Callable[[], Session]:
    """Create the engine, make sure the tables exist and return a session factory"""
    engine = create_engine(database_url, echo=echo)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
