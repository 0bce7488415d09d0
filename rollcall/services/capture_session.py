"""
Capture session: one video source, its preview loop and explicit captures.

The session owns the per-source state (tracker, scheduler caches) through its
engine. A live preview loop runs the fast tier on every Nth frame; an explicit
capture runs the accurate tier, records attendance and evaluates alerts. Only
one capture runs at a time, and a capture whose session was stopped meanwhile
is discarded.
"""
import asyncio
import time
from collections import deque
from datetime import datetime
from typing import Awaitable, Callable, Deque, List, Optional, Sequence, Union

from rollcall.core.config import settings
from rollcall.core.exceptions import (
    CaptureInProgressError,
    PersistenceError,
    RollcallError,
    SessionNotActiveError,
)
from rollcall.core.logging import get_logger
from rollcall.domain.entities.attendance import AttendanceEvent, AttendanceStatus, CutoffTime
from rollcall.domain.entities.face import BoundingBox, Detection
from rollcall.domain.interfaces.recognition.frame_source import FrameSource
from rollcall.domain.value_objects.attendance import (
    AlertContext,
    BatchAttendanceResult,
    CaptureResult,
    PendingWrite,
    RecordOutcome,
    TriggeredAlert,
)
from rollcall.domain.value_objects.recognition import DetectionOutcome, FrameResult, RecognitionMode
from rollcall.services.alert_rules import AlertRuleEngine
from rollcall.services.attendance_decider import AttendanceDecider
from rollcall.services.cutoff import CutoffService, default_cutoff
from rollcall.services.detection_scheduler import video_cache_key
from rollcall.services.recognition_engine import RecognitionEngine

logger = get_logger(__name__)

PreviewCallback = Callable[[FrameResult], Union[None, Awaitable[None]]]


class CaptureSession:
    """
    Drives recognition for one camera.

    Example:
        ```python
        session = CaptureSession(OpenCVFrameSource(0), engine, decider, alerts, cutoff_service)
        await session.start()
        result = await session.capture(RecognitionMode.SINGLE)
        await session.stop()
        ```
    """

    def __init__(
        self,
        source: FrameSource,
        engine: RecognitionEngine,
        decider: AttendanceDecider,
        alerts: Optional[AlertRuleEngine] = None,
        cutoff_service: Optional[CutoffService] = None,
        *,
        preview_interval: Optional[float] = None,
        on_preview: Optional[PreviewCallback] = None,
        record_unrecognized: Optional[bool] = None,
        stats_window: int = 100,
    ) -> None:
        self.source = source
        self.engine = engine
        self.decider = decider
        self.alerts = alerts
        self.cutoff_service = cutoff_service
        self.preview_interval = (
            preview_interval if preview_interval is not None else settings.PREVIEW_INTERVAL_SECONDS
        )
        self.on_preview = on_preview
        self.record_unrecognized = (
            record_unrecognized if record_unrecognized is not None else settings.RECORD_UNRECOGNIZED
        )

        self.last_preview: Optional[FrameResult] = None
        self._running = False
        self._generation = 0
        self._preview_task: Optional[asyncio.Task] = None
        self._capture_lock = asyncio.Lock()
        self._last_box: Optional[BoundingBox] = None
        self._pending: List[PendingWrite] = []

        self._processing_times: Deque[float] = deque(maxlen=stats_window)
        self._total_captures = 0
        self._faces_seen = 0
        self._faces_recognized = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_writes(self) -> List[PendingWrite]:
        return list(self._pending)

    async def start(self, preview: bool = True) -> None:
        """Open the source and start the preview loop.

        Raises:
            CameraUnavailableError: If the source cannot be opened
        """
        if self._running:
            return
        await self.source.open()
        self._running = True
        self._generation += 1
        if preview:
            self._preview_task = asyncio.create_task(self._preview_loop())
        logger.info("Capture session started", preview=preview)

    async def stop(self) -> None:
        """Stop the preview loop, release the source and drop per-source state."""
        if not self._running and self._preview_task is None:
            await self.source.release()
            return

        self._running = False
        self._generation += 1
        task, self._preview_task = self._preview_task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error("Preview loop had failed", error=str(e), error_type=type(e).__name__)
        finally:
            await self.source.release()
            self.engine.tracker.reset()
            self.engine.scheduler.reset()
            self._last_box = None
        logger.info("Capture session stopped", total_captures=self._total_captures)

    async def capture(
        self,
        mode: RecognitionMode = RecognitionMode.SINGLE,
        *,
        max_faces: Optional[int] = None,
        image_ref: Optional[str] = None,
        context: Optional[AlertContext] = None,
    ) -> CaptureResult:
        """Recognize the current frame with the accurate tier and record attendance.

        Writes that fail after retries are returned in ``failed_writes`` and
        kept for ``retry_pending``. A capture that raises leaves the tracker as
        it was before the capture.

        Raises:
            SessionNotActiveError: If the session is not running or was stopped meanwhile
            CaptureInProgressError: If another capture is running
            ModelUnavailableError: If the accurate model cannot be loaded
            CameraUnavailableError: If no frame can be read
        """
        if not self._running:
            raise SessionNotActiveError("Capture session is not running")
        if self._capture_lock.locked():
            raise CaptureInProgressError("A capture is already in progress")

        async with self._capture_lock:
            generation = self._generation
            snapshot = self.engine.tracker.snapshot()
            try:
                frame = await self.source.read()
                cutoff = await self._cutoff()
                at = datetime.now()
                result = await self.engine.process_frame(
                    frame,
                    mode,
                    tier=self.engine.scheduler.select_tier(capture=True),
                    cutoff=cutoff,
                    at=at,
                    max_faces=max_faces
                )
            except Exception:
                if generation == self._generation:
                    self.engine.tracker.restore(snapshot)
                else:
                    self.engine.tracker.reset()
                raise

            if generation != self._generation:
                # the stopped session's tracker must not carry this frame forward
                self.engine.tracker.reset()
                logger.warning("Discarding capture from a stopped session")
                raise SessionNotActiveError("Capture session was stopped during the capture")

            capture = await self._apply(result, at, image_ref, context)
            self._update_stats(result)
            return capture

    async def retry_pending(self) -> List[RecordOutcome]:
        """Retry writes that failed in earlier captures. Still-failing writes stay pending."""
        pending, self._pending = self._pending, []
        outcomes = []
        for write in pending:
            try:
                outcomes.append(await self.decider.record(
                    write.identity_id,
                    write.status,
                    write.confidence,
                    at=write.timestamp
                ))
            except PersistenceError as e:
                self._pending.append(write.model_copy(update={"error": str(e)}))
        if self._pending:
            logger.warning("Attendance writes still pending", count=len(self._pending))
        return outcomes

    async def process_batch(
        self,
        items: Sequence[Union[DetectionOutcome, Detection]],
        *,
        cutoff: Optional[CutoffTime] = None,
        at: Optional[datetime] = None,
    ) -> BatchAttendanceResult:
        """Record attendance for a batch of faces.

        Outcomes carry their recognition already; raw detections with an
        embedding are matched against the gallery first.
        """
        cutoff = cutoff or await self._cutoff()
        at = at or datetime.now()
        result = BatchAttendanceResult()

        for item in items:
            result.processed += 1
            identity_id, confidence = self._batch_identity(item, result)
            if identity_id is None:
                continue

            result.recognized += 1
            status = self.decider.decide(identity_id, at, cutoff)
            try:
                outcome = await self.decider.record(
                    identity_id,
                    status,
                    confidence,
                    at=at,
                    name=self._display_name(identity_id)
                )
            except PersistenceError as e:
                result.errors.append(f"Failed to record attendance for {identity_id}: {e}")
                continue
            if outcome.created:
                result.recorded += 1

        logger.info(
            "Batch attendance processed",
            processed=result.processed,
            recognized=result.recognized,
            recorded=result.recorded,
            errors=len(result.errors)
        )
        return result

    async def run_batch_pass(self, max_faces: Optional[int] = None) -> BatchAttendanceResult:
        """Classroom pass: detect every face of the current frame and record them all."""
        if not self._running:
            raise SessionNotActiveError("Capture session is not running")
        if self._capture_lock.locked():
            raise CaptureInProgressError("A capture is already in progress")

        async with self._capture_lock:
            generation = self._generation
            frame = await self.source.read()
            cutoff = await self._cutoff()
            at = datetime.now()
            frame_result = await self.engine.process_frame(
                frame,
                RecognitionMode.CLASSROOM,
                tier=self.engine.scheduler.select_tier(capture=True),
                cutoff=cutoff,
                at=at,
                enable_tracking=False,
                max_faces=max_faces or settings.MAX_FACES_PER_FRAME
            )
            if generation != self._generation:
                raise SessionNotActiveError("Capture session was stopped during the batch pass")

            self._update_stats(frame_result)
            return await self.process_batch(frame_result.outcomes, cutoff=cutoff, at=at)

    def stats(self) -> dict:
        times = list(self._processing_times)
        return {
            "running": self._running,
            "total_captures": self._total_captures,
            "average_processing_time_ms": sum(times) / len(times) if times else 0.0,
            "recognition_rate": self._faces_recognized / self._faces_seen if self._faces_seen else 0.0,
            "pending_writes": len(self._pending),
            "tracker": self.engine.tracker.stats(time.monotonic()),
            "scheduler": self.engine.scheduler.stats(),
            "models": [loader.status() for loader in self.engine.loaders.values()],
        }

    async def _apply(
        self,
        result: FrameResult,
        at: datetime,
        image_ref: Optional[str],
        context: Optional[AlertContext],
    ) -> CaptureResult:
        records: List[RecordOutcome] = []
        failed: List[PendingWrite] = []
        alerts: List[TriggeredAlert] = []
        base_context = (context or AlertContext()).model_copy(update={"face_count": result.face_count})

        for outcome in result.outcomes:
            identity_id = outcome.identity_id if outcome.recognized else None
            event: Optional[AttendanceEvent] = None

            if identity_id is not None or self.record_unrecognized:
                try:
                    record = await self.decider.record(
                        identity_id,
                        outcome.status,
                        outcome.confidence,
                        at=at,
                        image_ref=image_ref,
                        name=self._display_name(identity_id)
                    )
                except PersistenceError as e:
                    logger.error("Attendance write failed", identity_id=identity_id, error=str(e))
                    failed.append(PendingWrite(
                        identity_id=identity_id,
                        status=outcome.status,
                        confidence=outcome.confidence,
                        timestamp=at,
                        error=str(e)
                    ))
                    continue
                records.append(record)
                if record.created:
                    event = record.event
            else:
                # unrecognized faces still raise alerts without being stored
                event = AttendanceEvent(
                    status=AttendanceStatus.UNAUTHORIZED,
                    confidence=outcome.confidence,
                    timestamp=at,
                    image_ref=image_ref
                )

            if event is not None and self.alerts is not None:
                alerts.extend(await self.alerts.evaluate(event, base_context))

        self._pending.extend(failed)
        return CaptureResult(frame=result, records=records, alerts=alerts, failed_writes=failed)

    async def _preview_loop(self) -> None:
        scheduler = self.engine.scheduler
        while self._running:
            try:
                frame = await self.source.read()
                if scheduler.should_process():
                    height, width = frame.shape[:2]
                    region = scheduler.detection_region(width, height, self._last_box)
                    preview = await self.engine.preview(frame, region=region, cache_key=video_cache_key())
                    best = preview.best
                    self._last_box = best.bounding_box if best is not None else None
                    self.last_preview = preview
                    if self.on_preview is not None:
                        maybe = self.on_preview(preview)
                        if asyncio.iscoroutine(maybe):
                            await maybe
            except RollcallError as e:
                logger.warning("Preview frame failed", error=str(e), error_type=type(e).__name__)
            except Exception:
                logger.exception("Unexpected error in preview frame")
            await asyncio.sleep(self.preview_interval)

    async def _cutoff(self) -> CutoffTime:
        if self.cutoff_service is None:
            return default_cutoff()
        return await self.cutoff_service.get_cutoff()

    def _batch_identity(self, item: Union[DetectionOutcome, Detection], result: BatchAttendanceResult):
        if isinstance(item, DetectionOutcome):
            if item.recognized and item.identity_id is not None:
                return item.identity_id, item.confidence
            return None, None

        if item.embedding is None:
            result.errors.append("Detection without embedding skipped")
            return None, None
        try:
            match = self.engine.index.match(item.embedding)
        except RollcallError as e:
            result.errors.append(str(e))
            return None, None
        if not match.recognized:
            return None, None
        return match.identity_id, match.score

    def _display_name(self, identity_id: Optional[str]) -> Optional[str]:
        if identity_id is None:
            return None
        descriptor = self.engine.index.get(identity_id)
        return descriptor.name if descriptor is not None else None

    def _update_stats(self, result: FrameResult) -> None:
        self._total_captures += 1
        self._processing_times.append(result.processing_time_ms)
        self._faces_seen += len(result.outcomes)
        self._faces_recognized += len(result.recognized)
