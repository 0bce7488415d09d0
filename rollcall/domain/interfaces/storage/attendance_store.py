"""Attendance store interface."""
from abc import ABC, abstractmethod
from datetime import date
from typing import List, Optional

from ...entities.attendance import AttendanceEvent


class AttendanceStore(ABC):
    """Persistent store of attendance events.

    Implementations must enforce at most one arrival per (identity, calendar day)
    themselves, with a uniqueness constraint or a conditional insert. The
    in-process decider cannot guarantee it across processes.
    """

    @abstractmethod
    async def insert(self, event: AttendanceEvent) -> AttendanceEvent:
        """
        Persist a new event.

        Raises:
            DuplicateArrivalError: If an arrival for (identity, day) already exists
            PersistenceError: If the write fails for any other reason
        """
        pass

    @abstractmethod
    async def find_arrival(self, identity_id: str, day: date) -> Optional[AttendanceEvent]:
        """
        Get the arrival recorded for ``identity_id`` on ``day``, if any.

        Raises:
            PersistenceError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def list_for_day(self, day: date) -> List[AttendanceEvent]:
        """Get every event timestamped on ``day``, oldest first."""
        pass

    @abstractmethod
    async def normalize_legacy_statuses(self) -> int:
        """
        Rewrite legacy status values into canonical ones.

        Returns:
            Number of rows updated
        """
        pass
