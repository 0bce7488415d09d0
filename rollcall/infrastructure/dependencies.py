"""FastAPI dependency providers."""
from fastapi import Depends

from rollcall.core.container import ServiceContainer, container
from rollcall.core.exceptions import ServiceNotInitializedError
from rollcall.infrastructure.database.repositories import AttendanceRepository
from rollcall.services.alert_rules import AlertRuleEngine
from rollcall.services.attendance_decider import AttendanceDecider
from rollcall.services.cutoff import CutoffService
from rollcall.services.gallery import GalleryService
from rollcall.services.recognition_engine import RecognitionEngine


async def get_container() -> ServiceContainer:
    """Dependency provider for the global ServiceContainer instance."""
    if not container.is_initialized:
        raise ServiceNotInitializedError("Service container is not initialized")
    return container


async def get_cutoff_service(cont: ServiceContainer = Depends(get_container)) -> CutoffService:
    return cont.cutoff_service


async def get_gallery_service(cont: ServiceContainer = Depends(get_container)) -> GalleryService:
    return cont.gallery_service


async def get_recognition_engine(cont: ServiceContainer = Depends(get_container)) -> RecognitionEngine:
    return cont.engine


async def get_attendance_decider(cont: ServiceContainer = Depends(get_container)) -> AttendanceDecider:
    return cont.decider


async def get_attendance_store(cont: ServiceContainer = Depends(get_container)) -> AttendanceRepository:
    return cont.attendance_store


async def get_alert_engine(cont: ServiceContainer = Depends(get_container)) -> AlertRuleEngine:
    return cont.alert_engine
