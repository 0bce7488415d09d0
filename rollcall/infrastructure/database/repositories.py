"""Database repositories implementing the storage interfaces."""
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rollcall.core.exceptions import DuplicateArrivalError, PersistenceError
from rollcall.core.logging import get_logger
from rollcall.domain.entities.attendance import AttendanceEvent, AttendanceStatus
from rollcall.domain.entities.face import FaceDescriptor
from rollcall.domain.interfaces.storage.attendance_store import AttendanceStore
from rollcall.domain.interfaces.storage.gallery_store import GalleryStore
from rollcall.domain.interfaces.storage.settings_store import SettingsStore
from rollcall.infrastructure.database.models import AttendanceRecord, AttendanceSetting, FaceDescriptorRecord
from rollcall.infrastructure.database.session import session_scope
from rollcall.services.attendance_decider import normalize_status

logger = get_logger(__name__)


def _persistence_error(action: str, error: Exception) -> PersistenceError:
    logger.error("Database operation failed", action=action, error=str(error))
    return PersistenceError(f"Failed to {action}: {error}", details={"action": action})


class GalleryRepository(GalleryStore):
    """Repository for enrolled face descriptors."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize repository.

        Args:
            session_factory: Factory producing database sessions
        """
        self._session_factory = session_factory

    async def load_all(self) -> List[FaceDescriptor]:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(FaceDescriptorRecord).order_by(FaceDescriptorRecord.created_at)
                )
                records = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise _persistence_error("load gallery", e) from e

        descriptors = []
        for record in records:
            try:
                descriptors.append(FaceDescriptor(
                    identity_id=record.identity_id,
                    vector=record.vector,
                    name=record.name,
                    image_ref=record.image_ref
                ))
            except (ValidationError, TypeError, ValueError) as e:
                logger.error("Skipping malformed descriptor", identity_id=record.identity_id, error=str(e))
        return descriptors

    async def upsert(self, descriptor: FaceDescriptor) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(FaceDescriptorRecord).where(
                        FaceDescriptorRecord.identity_id == descriptor.identity_id
                    )
                )
                record = result.scalar_one_or_none()
                if record is None:
                    record = FaceDescriptorRecord(identity_id=descriptor.identity_id)
                    session.add(record)
                record.vector = [float(v) for v in descriptor.vector]
                record.dimension = descriptor.dimension
                record.name = descriptor.name
                record.image_ref = descriptor.image_ref
        except SQLAlchemyError as e:
            raise _persistence_error("store descriptor", e) from e

    async def delete(self, identity_id: str) -> bool:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    delete(FaceDescriptorRecord).where(FaceDescriptorRecord.identity_id == identity_id)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise _persistence_error("delete descriptor", e) from e


class AttendanceRepository(AttendanceStore):
    """Repository for attendance events.

    Legacy rows that stored ``unauthorized`` for a recognized identity are read
    back as ``present``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, event: AttendanceEvent) -> AttendanceEvent:
        record = AttendanceRecord(
            id=event.event_id,
            identity_id=event.identity_id,
            arrival_date=event.arrival_date,
            status=normalize_status(event.identity_id, event.status).value,
            confidence=event.confidence,
            timestamp=event.timestamp,
            image_ref=event.image_ref,
            name=event.name
        )
        try:
            async with session_scope(self._session_factory) as session:
                session.add(record)
        except IntegrityError as e:
            raise DuplicateArrivalError(
                f"Arrival already recorded for {event.identity_id} on {event.arrival_date}",
                details={"identity_id": event.identity_id, "day": str(event.arrival_date)}
            ) from e
        except SQLAlchemyError as e:
            raise _persistence_error("record attendance", e) from e
        return self._to_event(record)

    async def find_arrival(self, identity_id: str, day: date) -> Optional[AttendanceEvent]:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(AttendanceRecord).where(
                        AttendanceRecord.identity_id == identity_id,
                        AttendanceRecord.arrival_date == day
                    )
                )
                record = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise _persistence_error("read attendance", e) from e
        return self._to_event(record) if record is not None else None

    async def list_for_day(self, day: date) -> List[AttendanceEvent]:
        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(AttendanceRecord)
                    .where(AttendanceRecord.timestamp >= start, AttendanceRecord.timestamp < end)
                    .order_by(AttendanceRecord.timestamp)
                )
                records = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise _persistence_error("list attendance", e) from e
        return [self._to_event(record) for record in records]

    async def normalize_legacy_statuses(self) -> int:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    update(AttendanceRecord)
                    .where(
                        AttendanceRecord.identity_id.is_not(None),
                        AttendanceRecord.status == AttendanceStatus.UNAUTHORIZED.value
                    )
                    .values(status=AttendanceStatus.PRESENT.value)
                )
                updated = result.rowcount
        except SQLAlchemyError as e:
            raise _persistence_error("normalize attendance statuses", e) from e

        if updated:
            logger.info("Normalized legacy attendance statuses", rows=updated)
        return updated

    @staticmethod
    def _to_event(record: AttendanceRecord) -> AttendanceEvent:
        return AttendanceEvent(
            event_id=record.id,
            identity_id=record.identity_id,
            status=normalize_status(record.identity_id, AttendanceStatus(record.status)),
            confidence=record.confidence,
            timestamp=record.timestamp,
            image_ref=record.image_ref,
            name=record.name
        )


class SettingsRepository(SettingsStore):
    """Repository for key/value attendance settings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[str]:
        try:
            async with session_scope(self._session_factory) as session:
                record = await session.get(AttendanceSetting, key)
                return record.value if record is not None else None
        except SQLAlchemyError as e:
            raise _persistence_error("read setting", e) from e

    async def set(self, key: str, value: str) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                record = await session.get(AttendanceSetting, key)
                if record is None:
                    session.add(AttendanceSetting(key=key, value=value))
                else:
                    record.value = value
        except SQLAlchemyError as e:
            raise _persistence_error("store setting", e) from e
