"""Tests for frame-level recognition."""
from datetime import datetime
from functools import partial

import numpy as np
import pytest

from rollcall.core.exceptions import ModelUnavailableError
from rollcall.domain.entities.attendance import AttendanceStatus, CutoffTime
from rollcall.domain.entities.face import BoundingBox
from rollcall.domain.value_objects.recognition import ModelTier, RecognitionMode, SimilarityMetric
from rollcall.services.model_loader import ModelLoader
from rollcall.services.recognition_engine import RecognitionEngine
from rollcall.services.similarity_index import SimilarityIndex

ALICE = [1.0, 0.0, 0.0, 0.0]
BOB = [0.0, 0.0, 1.0, 0.0]
CUTOFF = CutoffTime(hour=9, minute=0)
FRAME = np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def index() -> SimilarityIndex:
    index = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN, threshold=0.6)
    index.add("alice", ALICE, name="Alice")
    index.add("bob", BOB, name="Bob")
    return index


@pytest.fixture
def engine(detector, index) -> RecognitionEngine:
    return RecognitionEngine(detector, index)


def morning(hour: int, minute: int) -> datetime:
    return datetime(2024, 3, 4, hour, minute)


class TestProcessFrame:
    """Matching and status decisions per detection."""

    async def test_known_face_before_cutoff_is_present(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(ALICE)]

        result = await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 59), now=0.0)

        outcome = result.outcomes[0]
        assert outcome.recognized
        assert outcome.identity_id == "alice"
        assert outcome.status == AttendanceStatus.PRESENT
        assert outcome.confidence == pytest.approx(1.0)
        assert outcome.stable_id == "face_1"

    async def test_known_face_after_cutoff_is_late(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(ALICE)]

        result = await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(9, 1), now=0.0)

        assert result.outcomes[0].status == AttendanceStatus.LATE

    async def test_distant_face_is_unauthorized(self, engine, detector, detection_factory):
        detector.detections = [detection_factory([1.0, 0.8, 0.0, 0.0])]

        result = await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=0.0)

        outcome = result.outcomes[0]
        assert not outcome.recognized
        assert outcome.identity_id is None
        assert outcome.status == AttendanceStatus.UNAUTHORIZED
        assert outcome.error is None

    async def test_empty_frame(self, engine):
        result = await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=0.0)

        assert result.face_count == 0
        assert result.outcomes == []

    async def test_multiple_faces(self, engine, detector, detection_factory):
        detector.detections = [
            detection_factory(ALICE, x=10),
            detection_factory(BOB, x=300),
            detection_factory([0.0, 1.0, 0.0, 0.0], x=500),
        ]

        result = await engine.process_frame(FRAME, RecognitionMode.MULTIPLE, cutoff=CUTOFF, at=morning(8, 0), now=0.0)

        assert result.face_count == 3
        assert [o.identity_id for o in result.outcomes] == ["alice", "bob", None]
        assert len({o.stable_id for o in result.outcomes}) == 3

    async def test_single_mode_processes_most_confident_face(self, engine, detector, detection_factory):
        detector.detections = [
            detection_factory(BOB, x=300, confidence=0.7),
            detection_factory(ALICE, x=10, confidence=0.95),
        ]

        result = await engine.process_frame(FRAME, RecognitionMode.SINGLE, cutoff=CUTOFF, at=morning(8, 0), now=0.0)

        assert result.face_count == 2
        assert [o.identity_id for o in result.outcomes] == ["alice"]

    async def test_wrong_dimension_is_skipped_not_raised(self, engine, detector, detection_factory):
        detector.detections = [
            detection_factory([1.0, 0.0, 0.0], x=10),
            detection_factory(BOB, x=300),
        ]

        result = await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=0.0)

        broken, ok = result.outcomes
        assert not broken.recognized
        assert "dimensions" in broken.error
        assert ok.identity_id == "bob"

    async def test_face_cap(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(BOB, x=100 * i) for i in range(5)]

        result = await engine.process_frame(
            FRAME,
            RecognitionMode.MULTIPLE,
            cutoff=CUTOFF,
            at=morning(8, 0),
            now=0.0,
            max_faces=2,
            enable_tracking=False
        )

        assert len(result.outcomes) == 2
        assert all(o.stable_id is None for o in result.outcomes)

    async def test_region_boxes_are_in_frame_coordinates(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(ALICE, x=10, y=10)]

        result = await engine.process_frame(
            FRAME,
            cutoff=CUTOFF,
            at=morning(8, 0),
            now=0.0,
            region=BoundingBox(x=100, y=50, width=200, height=200)
        )

        box = result.outcomes[0].bounding_box
        assert (box.x, box.y) == (110, 60)

    async def test_cached_detections_are_reused(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(ALICE)]

        await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=0.0, cache_key="image_a")
        await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=0.1, cache_key="image_a")

        assert len(detector.detect_calls) == 1


class TestTracking:
    """Tracked faces reuse their previous match."""

    async def test_stationary_face_is_not_rematched(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(ALICE)]

        first = await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=0.0)
        second = await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(9, 30), now=1.0)

        reused = second.outcomes[0]
        assert first.outcomes[0].reprocessed
        assert not reused.reprocessed
        assert reused.stable_id == first.outcomes[0].stable_id
        assert reused.identity_id == "alice"
        assert reused.status == AttendanceStatus.LATE

    async def test_moved_face_is_rematched(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(ALICE, x=10)]
        await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=0.0)

        detector.detections = [detection_factory(ALICE, x=80)]
        result = await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=1.0)

        assert result.outcomes[0].reprocessed
        assert result.outcomes[0].stable_id == "face_1"


class TestModels:

    async def test_metric_mismatch_is_rejected(self, detector):
        with pytest.raises(ValueError):
            RecognitionEngine(detector, SimilarityIndex(metric=SimilarityMetric.COSINE))

    async def test_loads_requested_tier_once(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(ALICE)]

        await engine.process_frame(FRAME, tier=ModelTier.ACCURATE, cutoff=CUTOFF, at=morning(8, 0), now=0.0)
        await engine.process_frame(FRAME, tier=ModelTier.ACCURATE, cutoff=CUTOFF, at=morning(8, 0), now=1.0)

        assert detector.load_calls == [ModelTier.ACCURATE]

    async def test_unavailable_model_surfaces(self, detector, index, sleep):
        detector.load_failures = 100
        loaders = {
            tier: ModelLoader(tier.value, partial(detector.load, tier), max_attempts=2, sleep=sleep)
            for tier in ModelTier
        }
        engine = RecognitionEngine(detector, index, loaders=loaders)

        with pytest.raises(ModelUnavailableError):
            await engine.process_frame(FRAME, cutoff=CUTOFF, at=morning(8, 0), now=0.0)

        assert detector.detect_calls == []

    async def test_preview_uses_fast_tier_without_matching(self, engine, detector, detection_factory):
        detector.detections = [detection_factory(ALICE)]

        result = await engine.preview(FRAME)

        assert result.tier == ModelTier.FAST
        assert result.face_count == 1
        assert not result.outcomes[0].recognized
        assert detector.detect_calls[0][1].input_size == 320
