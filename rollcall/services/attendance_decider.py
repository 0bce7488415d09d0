"""
Attendance status decisions and write-once arrival recording.

At most one arrival is recorded per (identity, calendar day). The decider keeps
an in-process cache of recorded arrivals, checks the store before writing, and
relies on the store's uniqueness constraint for cross-process races.
"""
import asyncio
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from rollcall.core.config import settings
from rollcall.core.exceptions import DuplicateArrivalError, PersistenceError
from rollcall.core.logging import get_logger
from rollcall.core.utils.retry import Sleep, retry_async
from rollcall.domain.entities.attendance import AttendanceEvent, AttendanceStatus, CutoffTime
from rollcall.domain.interfaces.notification.dispatcher import AttendanceEventPublisher
from rollcall.domain.interfaces.storage.attendance_store import AttendanceStore
from rollcall.domain.value_objects.attendance import RecordOutcome

logger = get_logger(__name__)


def decide_status(identity_id: Optional[str], at: datetime, cutoff: CutoffTime) -> AttendanceStatus:
    """Status for a recognition at ``at``.

    Unrecognized faces are ``UNAUTHORIZED``. Recognized faces are ``LATE`` when
    ``at`` is strictly after the cutoff on the same day, otherwise ``PRESENT``.
    """
    if identity_id is None:
        return AttendanceStatus.UNAUTHORIZED
    if at > cutoff.on(at.date()):
        return AttendanceStatus.LATE
    return AttendanceStatus.PRESENT


def normalize_status(identity_id: Optional[str], status: AttendanceStatus) -> AttendanceStatus:
    """Recognized identities are never unauthorized; legacy rows said so anyway."""
    if identity_id is not None and status == AttendanceStatus.UNAUTHORIZED:
        return AttendanceStatus.PRESENT
    return status


class AttendanceDecider:
    """
    Decides and records attendance events.

    Attributes:
        store: Attendance store the events are written to
        publisher: Optional change feed notified of newly created events
    """

    def __init__(
        self,
        store: AttendanceStore,
        publisher: Optional[AttendanceEventPublisher] = None,
        *,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.max_attempts = max_attempts if max_attempts is not None else settings.PERSISTENCE_MAX_ATTEMPTS
        self.backoff_base = backoff_base if backoff_base is not None else settings.PERSISTENCE_BACKOFF_BASE
        self._sleep = sleep
        self._arrivals: Dict[Tuple[str, date], AttendanceEvent] = {}
        self._current_day: Optional[date] = None

    def decide(self, identity_id: Optional[str], at: datetime, cutoff: CutoffTime) -> AttendanceStatus:
        return decide_status(identity_id, at, cutoff)

    async def record(
        self,
        identity_id: Optional[str],
        status: AttendanceStatus,
        confidence: Optional[float] = None,
        *,
        at: Optional[datetime] = None,
        image_ref: Optional[str] = None,
        name: Optional[str] = None,
    ) -> RecordOutcome:
        """Persist an attendance event unless the arrival already exists.

        A second arrival for the same identity on the same day returns the
        existing event with ``created=False``. Events without an identity are
        always written.

        Raises:
            PersistenceError: If the store keeps failing after bounded retries
        """
        at = at or datetime.now()
        status = normalize_status(identity_id, status)

        if identity_id is not None:
            existing = await self._existing_arrival(identity_id, at.date())
            if existing is not None:
                logger.info(
                    "Arrival already recorded",
                    identity_id=identity_id,
                    day=at.date().isoformat(),
                    status=existing.status.value
                )
                return RecordOutcome(event=existing, created=False)

        event = AttendanceEvent(
            identity_id=identity_id,
            status=status,
            confidence=confidence,
            timestamp=at,
            image_ref=image_ref,
            name=name
        )

        try:
            stored = await retry_async(
                lambda: self._insert(event),
                attempts=self.max_attempts,
                base_delay=self.backoff_base,
                max_delay=self.backoff_base * 2 ** self.max_attempts,
                retry_on=(_TransientWriteError,),
                sleep=self._sleep,
                description="record attendance"
            )
        except _TransientWriteError as e:
            raise e.cause from e
        except DuplicateArrivalError:
            # lost the race to another writer; the stored row wins
            winner = await self.store.find_arrival(identity_id, at.date())
            if winner is None:
                raise
            self._remember(winner)
            logger.info("Arrival recorded concurrently", identity_id=identity_id, event_id=winner.event_id)
            return RecordOutcome(event=winner, created=False)

        self._remember(stored)
        logger.info(
            "Recorded attendance",
            identity_id=identity_id,
            status=stored.status.value,
            confidence=confidence,
            event_id=stored.event_id
        )

        if self.publisher is not None:
            await self.publisher.publish(stored)

        return RecordOutcome(event=stored, created=True)

    def forget_day(self, day: date) -> None:
        """Drop cached arrivals for ``day``."""
        self._arrivals = {key: event for key, event in self._arrivals.items() if key[1] != day}

    async def _existing_arrival(self, identity_id: str, day: date) -> Optional[AttendanceEvent]:
        cached = self._arrivals.get((identity_id, day))
        if cached is not None:
            return cached
        found = await self.store.find_arrival(identity_id, day)
        if found is not None:
            self._remember(found)
        return found

    async def _insert(self, event: AttendanceEvent) -> AttendanceEvent:
        try:
            return await self.store.insert(event)
        except DuplicateArrivalError:
            raise
        except PersistenceError as e:
            raise _TransientWriteError(e) from e

    def _remember(self, event: AttendanceEvent) -> None:
        """Cache arrivals of the latest day only; earlier days are left to the store."""
        day = event.arrival_date
        if day is None:
            return
        if self._current_day is None or day > self._current_day:
            if self._arrivals:
                logger.debug("Dropping cached arrivals", day=str(self._current_day), count=len(self._arrivals))
            self._arrivals = {}
            self._current_day = day
        if day == self._current_day:
            self._arrivals[(event.identity_id, day)] = event


class _TransientWriteError(Exception):
    """Retryable wrapper so duplicate-arrival rejections are never retried."""

    def __init__(self, cause: PersistenceError):
        super().__init__(str(cause))
        self.cause = cause
