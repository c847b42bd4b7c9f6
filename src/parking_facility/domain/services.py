# File: src/parking_facility/domain/services.py
"""
Domain services used by the facility aggregate: time source and ticket ids.

Both are injected into ParkingFacility so tests can pin the time and the
ticket sequence.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, runtime_checkable
import itertools
import threading


@runtime_checkable
class Clock(Protocol):
    """Source of the current time for entry and exit stamps"""

    def now(self) -> datetime:
        ...


class SystemClock:
    """
    Wall clock in UTC, returned naive so it round-trips through SQLite.
    Local time would jump when daylight saving starts or ends.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """Clock that only moves when told to"""

    def __init__(self, start: datetime):
        self._current = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._current = moment

    def advance(self, delta: Optional[timedelta] = None, **kwargs) -> datetime:
        """Move forward by delta, or by timedelta(**kwargs)"""
        step = delta if delta is not None else timedelta(**kwargs)
        with self._lock:
            self._current = self._current + step
            return self._current


class TicketIdGenerator:
    """
    Issues ticket ids of the form TKT-<prefix>-<sequence>.

    The sequence is a counter guarded by a lock, so two park events in the
    same clock tick still get distinct ids.
    """

    def __init__(self, prefix: str = "PK", start: int = 1):
        if start < 1:
            raise ValueError("Ticket sequence must start at 1 or above")
        self.prefix = prefix.strip().upper() or "PK"
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            sequence = next(self._counter)
        return self.format_id(self.prefix, sequence)

    @staticmethod
    def format_id(prefix: str, sequence: int) -> str:
        return f"TKT-{prefix}-{sequence:06d}"

    @staticmethod
    def parse_sequence(ticket_id: str, prefix: str) -> Optional[int]:
        """Sequence number of an id issued under prefix, None for any other id"""
        head = f"TKT-{prefix}-"
        if not ticket_id.startswith(head):
            return None
        tail = ticket_id[len(head):]
        return int(tail) if tail.isdigit() else None
