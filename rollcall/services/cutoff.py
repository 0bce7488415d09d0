"""Daily cutoff time configuration, persisted in the settings store."""
from datetime import datetime
from typing import Optional

from rollcall.core.config import settings
from rollcall.core.exceptions import InvalidCutoffError, PersistenceError
from rollcall.core.logging import get_logger
from rollcall.domain.entities.attendance import CutoffTime
from rollcall.domain.interfaces.storage.settings_store import SettingsStore

logger = get_logger(__name__)

CUTOFF_KEY = "cutoff_time"


def default_cutoff() -> CutoffTime:
    return CutoffTime(hour=settings.DEFAULT_CUTOFF_HOUR, minute=settings.DEFAULT_CUTOFF_MINUTE)


class CutoffService:
    """Reads and writes the cutoff separating present from late."""

    def __init__(self, store: SettingsStore) -> None:
        self.store = store

    async def get_cutoff(self) -> CutoffTime:
        """Stored cutoff, or the default when it is unset or unreadable."""
        try:
            raw = await self.store.get(CUTOFF_KEY)
        except PersistenceError as e:
            logger.warning("Could not read cutoff time, using default", error=str(e))
            return default_cutoff()

        if raw is None:
            return default_cutoff()

        try:
            return CutoffTime.parse(raw)
        except ValueError as e:
            logger.warning("Stored cutoff time is malformed, using default", value=raw, error=str(e))
            return default_cutoff()

    async def set_cutoff(self, hour: int, minute: int) -> CutoffTime:
        """Validate and persist a new cutoff.

        Raises:
            InvalidCutoffError: If hour or minute is out of range
            PersistenceError: If the store rejects the write
        """
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise InvalidCutoffError(
                "Cutoff hour must be 0-23 and minute 0-59",
                details={"hour": hour, "minute": minute}
            )
        cutoff = CutoffTime(hour=hour, minute=minute)
        await self.store.set(CUTOFF_KEY, str(cutoff))
        logger.info("Cutoff time updated", cutoff=str(cutoff))
        return cutoff

    async def format_cutoff(self) -> str:
        """Current cutoff in 12-hour form, e.g. ``9:00 AM``."""
        return (await self.get_cutoff()).format_12h()

    async def is_past_cutoff(self, at: Optional[datetime] = None, cutoff: Optional[CutoffTime] = None) -> bool:
        at = at or datetime.now()
        cutoff = cutoff or await self.get_cutoff()
        return at > cutoff.on(at.date())
