"""Shared fixtures: in-memory collaborators and a scriptable detector."""
import asyncio
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import pytest

from rollcall.core.exceptions import CameraUnavailableError, DuplicateArrivalError, PersistenceError
from rollcall.domain.entities.attendance import AttendanceEvent
from rollcall.domain.entities.face import BoundingBox, Detection, FaceDescriptor
from rollcall.domain.interfaces import (
    AttendanceEventPublisher,
    AttendanceStore,
    FaceDetector,
    FrameSource,
    GalleryStore,
    NotificationDispatcher,
    SettingsStore,
)
from rollcall.domain.value_objects.attendance import Notification
from rollcall.domain.value_objects.recognition import DetectionProfile, ModelTier


class FakeDetector(FaceDetector):
    """Returns ``self.detections`` for every frame; loads can be made to fail.

    Setting ``gate`` holds detection until the event is set; ``started`` is set
    when a detection call begins.
    """

    def __init__(self) -> None:
        self.detections: List[Detection] = []
        self.load_failures = 0
        self.load_calls: List[ModelTier] = []
        self.detect_calls: List[Tuple[ModelTier, DetectionProfile]] = []
        self._loaded = set()
        self.gate: Optional[asyncio.Event] = None
        self.started: Optional[asyncio.Event] = None

    async def load(self, tier: ModelTier) -> None:
        self.load_calls.append(tier)
        if self.load_failures > 0:
            self.load_failures -= 1
            raise RuntimeError("model weights unavailable")
        self._loaded.add(tier)

    def is_loaded(self, tier: ModelTier) -> bool:
        return tier in self._loaded

    async def detect(self, image, tier, profile) -> List[Detection]:
        self.detect_calls.append((tier, profile))
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        found = [d for d in self.detections if d.confidence >= profile.score_threshold]
        return [d.model_copy() for d in found[:profile.max_faces]]

    async def embed(self, image, box):
        raise AssertionError("fake detections always carry embeddings")


class InMemoryAttendanceStore(AttendanceStore):
    def __init__(self) -> None:
        self.events: List[AttendanceEvent] = []
        self.failures = 0
        self.insert_calls = 0

    async def insert(self, event: AttendanceEvent) -> AttendanceEvent:
        self.insert_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("database unavailable")
        if event.arrival_date is not None and await self.find_arrival(event.identity_id, event.arrival_date):
            raise DuplicateArrivalError("duplicate arrival")
        self.events.append(event)
        return event

    async def find_arrival(self, identity_id: str, day: date) -> Optional[AttendanceEvent]:
        for event in self.events:
            if event.identity_id == identity_id and event.arrival_date == day:
                return event
        return None

    async def list_for_day(self, day: date) -> List[AttendanceEvent]:
        return sorted((e for e in self.events if e.timestamp.date() == day), key=lambda e: e.timestamp)

    async def normalize_legacy_statuses(self) -> int:
        return 0


class InMemoryGalleryStore(GalleryStore):
    def __init__(self) -> None:
        self.descriptors: Dict[str, FaceDescriptor] = {}
        self.fail = False

    async def load_all(self) -> List[FaceDescriptor]:
        return list(self.descriptors.values())

    async def upsert(self, descriptor: FaceDescriptor) -> None:
        if self.fail:
            raise PersistenceError("database unavailable")
        self.descriptors[descriptor.identity_id] = descriptor

    async def delete(self, identity_id: str) -> bool:
        return self.descriptors.pop(identity_id, None) is not None


class InMemorySettingsStore(SettingsStore):
    def __init__(self) -> None:
        self.values: Dict[str, str] = {}
        self.fail = False

    async def get(self, key: str) -> Optional[str]:
        if self.fail:
            raise PersistenceError("settings unavailable")
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.fail:
            raise PersistenceError("settings unavailable")
        self.values[key] = value


class FakeFrameSource(FrameSource):
    def __init__(self, shape=(480, 640, 3)) -> None:
        self.shape = shape
        self.fail_open = False
        self.opened = False
        self.release_calls = 0
        self.reads = 0

    @property
    def is_open(self) -> bool:
        return self.opened

    async def open(self) -> None:
        if self.fail_open:
            raise CameraUnavailableError("no camera")
        self.opened = True

    async def read(self) -> np.ndarray:
        if not self.opened:
            raise CameraUnavailableError("camera closed")
        self.reads += 1
        return np.zeros(self.shape, dtype=np.uint8)

    async def release(self) -> None:
        self.release_calls += 1
        self.opened = False


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self) -> None:
        self.sent: List[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)


class RecordingPublisher(AttendanceEventPublisher):
    def __init__(self) -> None:
        self.published: List[AttendanceEvent] = []

    async def publish(self, event: AttendanceEvent) -> None:
        self.published.append(event)


class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep that only records delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_detection(vector, x=10.0, y=10.0, size=50.0, confidence=0.99) -> Detection:
    return Detection(
        bounding_box=BoundingBox(x=x, y=y, width=size, height=size),
        confidence=confidence,
        embedding=np.asarray(vector, dtype=np.float32)
    )


@pytest.fixture
def detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture
def attendance_store() -> InMemoryAttendanceStore:
    return InMemoryAttendanceStore()


@pytest.fixture
def gallery_store() -> InMemoryGalleryStore:
    return InMemoryGalleryStore()


@pytest.fixture
def settings_store() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def frame_source() -> FakeFrameSource:
    return FakeFrameSource()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def detection_factory() -> Callable[..., Detection]:
    return make_detection
