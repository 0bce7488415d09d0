"""Tests for frame skipping, detection caching and region selection."""
import pytest

from rollcall.domain.entities.face import BoundingBox
from rollcall.domain.value_objects.recognition import ModelTier, RecognitionMode
from rollcall.services.detection_scheduler import DetectionScheduler, image_cache_key, video_cache_key


@pytest.fixture
def scheduler(clock) -> DetectionScheduler:
    return DetectionScheduler(frame_skip=3, cache_ttl=1.0, roi_padding=50, roi_center_ratio=0.6, clock=clock)


class TestFrameSkipping:

    def test_every_third_frame_with_counter(self, scheduler):
        decisions = [scheduler.should_process() for _ in range(6)]

        assert decisions == [False, False, True, False, False, True]
        assert scheduler.stats()["frames_skipped"] == 4

    def test_explicit_frame_index(self, scheduler):
        assert scheduler.should_process(0)
        assert not scheduler.should_process(1)
        assert scheduler.should_process(9)

    def test_capture_is_never_skipped(self, scheduler):
        assert all(scheduler.should_process(1, capture=True) for _ in range(5))


class TestDetectionCache:

    async def test_result_reused_within_ttl(self, scheduler, clock):
        calls = []

        async def compute():
            calls.append(clock.now)
            return ["detections"]

        first = await scheduler.get_or_compute("video_1", compute)
        clock.advance(0.5)
        second = await scheduler.get_or_compute("video_1", compute)

        assert first is second
        assert len(calls) == 1
        assert scheduler.stats()["cache_hits"] == 1

    async def test_stale_entry_recomputed(self, scheduler, clock):
        calls = []

        async def compute():
            calls.append(clock.now)
            return len(calls)

        await scheduler.get_or_compute("image_a", compute)
        clock.advance(1.0)
        result = await scheduler.get_or_compute("image_a", compute)

        assert result == 2

    async def test_failures_are_not_cached(self, scheduler):
        async def failing():
            raise RuntimeError("boom")

        async def working():
            return "ok"

        with pytest.raises(RuntimeError):
            await scheduler.get_or_compute("k", failing)
        assert await scheduler.get_or_compute("k", working) == "ok"

    def test_cache_keys(self):
        assert video_cache_key(now=12.3456) == video_cache_key(now=12.35)
        assert video_cache_key(now=12.3456) != video_cache_key(now=12.46)
        assert image_cache_key("photo.jpg") == "image_photo.jpg"


class TestRegionOfInterest:

    def test_centered_region_without_prior_box(self, scheduler):
        region = scheduler.detection_region(1000, 500)

        assert (region.x, region.y) == (pytest.approx(200), pytest.approx(100))
        assert (region.width, region.height) == (pytest.approx(600), pytest.approx(300))

    def test_padded_region_around_last_box(self, scheduler):
        region = scheduler.detection_region(640, 480, BoundingBox(x=100, y=100, width=80, height=80))

        assert region == BoundingBox(x=50, y=50, width=180, height=180)

    def test_padded_region_clipped_to_frame(self, scheduler):
        region = scheduler.detection_region(640, 480, BoundingBox(x=10, y=400, width=60, height=70))

        assert region.x == 0
        assert region.y == 350
        assert region.x + region.width == 120
        assert region.y + region.height == 480


class TestProfiles:

    def test_tier_selection(self):
        assert DetectionScheduler.select_tier(capture=False) == ModelTier.FAST
        assert DetectionScheduler.select_tier(capture=True) == ModelTier.ACCURATE

    def test_preview_profile(self):
        profile = DetectionScheduler.profile_for(RecognitionMode.MULTIPLE, ModelTier.FAST)

        assert (profile.input_size, profile.score_threshold, profile.max_faces) == (320, 0.4, 60)

    def test_classroom_profile(self):
        profile = DetectionScheduler.profile_for(RecognitionMode.CLASSROOM, ModelTier.ACCURATE, max_faces=50)

        assert (profile.input_size, profile.score_threshold, profile.max_faces) == (416, 0.3, 50)

    def test_large_face_cap_enables_classroom_mode(self):
        assert DetectionScheduler.resolve_mode(RecognitionMode.MULTIPLE, 30) == RecognitionMode.CLASSROOM
        assert DetectionScheduler.resolve_mode(RecognitionMode.MULTIPLE, 20) == RecognitionMode.MULTIPLE

    def test_face_cap_never_exceeds_maximum(self):
        profile = DetectionScheduler.profile_for(RecognitionMode.MULTIPLE, ModelTier.ACCURATE, max_faces=500)

        assert profile.max_faces == 60
