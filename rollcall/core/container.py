"""Service container for dependency injection."""
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from rollcall.core.logging import get_logger
from rollcall.domain.interfaces.notification.dispatcher import NotificationDispatcher
from rollcall.domain.interfaces.recognition.face_detector import FaceDetector
from rollcall.domain.interfaces.recognition.frame_source import FrameSource
from rollcall.domain.value_objects.recognition import ModelTier
from rollcall.infrastructure.database import (
    AttendanceRepository,
    GalleryRepository,
    SettingsRepository,
    build_engine,
    build_session_factory,
    create_schema,
)
from rollcall.services.alert_rules import AlertRuleEngine
from rollcall.services.attendance_decider import AttendanceDecider
from rollcall.services.capture_session import CaptureSession
from rollcall.services.cutoff import CutoffService
from rollcall.services.event_feed import AttendanceEventFeed
from rollcall.services.gallery import GalleryService
from rollcall.services.model_loader import ModelLoader
from rollcall.services.recognition_engine import RecognitionEngine
from rollcall.services.similarity_index import SimilarityIndex

logger = get_logger(__name__)


class ServiceContainer:
    """Container for application services.

    This container manages the lifecycle and dependencies of all services in the application.
    It ensures proper initialization order and provides a single source of truth for service instances.

    Example:
        ```python
        container = ServiceContainer()
        await container.initialize()

        # Get services from container
        cutoff = await container.cutoff_service.get_cutoff()
        session = container.create_session(OpenCVFrameSource(0))
        ```
    """

    def __init__(self) -> None:
        """Initialize empty container."""
        # Infrastructure
        self.db_engine: Optional[AsyncEngine] = None
        self.gallery_store: Optional[GalleryRepository] = None
        self.attendance_store: Optional[AttendanceRepository] = None
        self.settings_store: Optional[SettingsRepository] = None

        # Recognition
        self.detector: Optional[FaceDetector] = None
        self.index: Optional[SimilarityIndex] = None
        self.loaders: Dict[ModelTier, ModelLoader] = {}
        self.engine: Optional[RecognitionEngine] = None

        # Domain services
        self.event_feed: Optional[AttendanceEventFeed] = None
        self.gallery_service: Optional[GalleryService] = None
        self.cutoff_service: Optional[CutoffService] = None
        self.decider: Optional[AttendanceDecider] = None
        self.alert_engine: Optional[AlertRuleEngine] = None

    @property
    def is_initialized(self) -> bool:
        return self.engine is not None

    async def initialize(
        self,
        detector: Optional[FaceDetector] = None,
        database_url: Optional[str] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        """Initialize all services in the correct order."""
        self.db_engine = build_engine(database_url)
        await create_schema(self.db_engine)
        session_factory = build_session_factory(self.db_engine)
        self.gallery_store = GalleryRepository(session_factory)
        self.attendance_store = AttendanceRepository(session_factory)
        self.settings_store = SettingsRepository(session_factory)

        if detector is None:
            from rollcall.services.recognition.insight_face import InsightFaceDetector
            detector = InsightFaceDetector()
        self.detector = detector
        self.index = SimilarityIndex(metric=detector.metric)
        self.loaders = {
            tier: ModelLoader(tier.value, lambda tier=tier: detector.load(tier))
            for tier in ModelTier
        }
        # Single-image recognition shares the gallery and loaders; camera sessions get their own engine
        self.engine = RecognitionEngine(detector, self.index, loaders=self.loaders)

        self.event_feed = AttendanceEventFeed()
        self.gallery_service = GalleryService(self.gallery_store, self.index)
        self.cutoff_service = CutoffService(self.settings_store)
        self.decider = AttendanceDecider(self.attendance_store, publisher=self.event_feed)
        self.alert_engine = AlertRuleEngine(dispatcher=dispatcher)

        await self.attendance_store.normalize_legacy_statuses()
        loaded = await self.gallery_service.refresh()
        logger.info("Service container initialized", gallery_size=loaded, metric=self.index.metric.value)

    def create_session(self, source: FrameSource) -> CaptureSession:
        """Build a capture session with its own tracker and scheduler."""
        engine = RecognitionEngine(self.detector, self.index, loaders=self.loaders)
        return CaptureSession(
            source,
            engine,
            self.decider,
            alerts=self.alert_engine,
            cutoff_service=self.cutoff_service
        )

    async def cleanup(self) -> None:
        """Cleanup all services in reverse order of initialization."""
        self.alert_engine = None
        self.decider = None
        self.cutoff_service = None
        self.gallery_service = None
        self.event_feed = None

        self.engine = None
        self.loaders = {}
        self.index = None
        self.detector = None

        self.gallery_store = None
        self.attendance_store = None
        self.settings_store = None
        if self.db_engine is not None:
            await self.db_engine.dispose()
            self.db_engine = None


# Global container instance
container = ServiceContainer()
