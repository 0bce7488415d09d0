"""Attendance, gallery, recognition and alert-rule API endpoints."""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from rollcall.api.models.attendance import (
    AlertRuleUpdate,
    AttendanceEventResponse,
    CutoffRequest,
    CutoffResponse,
    EnrollImageRequest,
    EnrollRequest,
    EnrollResponse,
    RecognizeRequest,
    RecognizeResponse,
    TriggeredAlertResponse,
    decode_base64_image,
)
from rollcall.core.exceptions import (
    AlertRuleNotFoundError,
    DimensionMismatchError,
    InvalidCutoffError,
    InvalidImageError,
    ModelUnavailableError,
    PersistenceError,
)
from rollcall.core.logging import get_logger
from rollcall.core.utils.image import bytes_to_numpy_array
from rollcall.domain.entities.alerts import AlertRule
from rollcall.domain.value_objects.recognition import ModelTier, RecognitionMode
from rollcall.infrastructure.database.repositories import AttendanceRepository
from rollcall.infrastructure.dependencies import (
    get_alert_engine,
    get_attendance_decider,
    get_attendance_store,
    get_cutoff_service,
    get_gallery_service,
    get_recognition_engine,
)
from rollcall.services.alert_rules import AlertRuleEngine
from rollcall.services.attendance_decider import AttendanceDecider
from rollcall.services.cutoff import CutoffService
from rollcall.services.gallery import GalleryService
from rollcall.services.recognition_engine import RecognitionEngine

logger = get_logger(__name__)
router = APIRouter(
    responses={
        400: {"description": "Invalid request"},
        500: {"description": "Internal server error"}
    }
)


def _model_unavailable(e: ModelUnavailableError) -> HTTPException:
    logger.error("Recognition model unavailable", error=str(e), **e.details)
    retry_after = e.details.get("retry_after")
    headers = {"Retry-After": str(int(retry_after) + 1)} if retry_after else None
    return HTTPException(status_code=503, detail="Recognition model unavailable", headers=headers)


def _persistence_failed(e: PersistenceError) -> HTTPException:
    logger.error("Persistence failure", error=str(e))
    return HTTPException(status_code=500, detail="Failed to access attendance data")


# Cutoff

@router.get("/attendance/cutoff", response_model=CutoffResponse, tags=["attendance"])
async def get_cutoff(service: CutoffService = Depends(get_cutoff_service)) -> CutoffResponse:
    """Get the cutoff separating present from late."""
    return CutoffResponse.from_cutoff(await service.get_cutoff())


@router.put("/attendance/cutoff", response_model=CutoffResponse, tags=["attendance"])
async def update_cutoff(
    request: CutoffRequest,
    service: CutoffService = Depends(get_cutoff_service)
) -> CutoffResponse:
    """Update the cutoff time."""
    try:
        cutoff = await service.set_cutoff(request.hour, request.minute)
    except InvalidCutoffError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise _persistence_failed(e)
    return CutoffResponse.from_cutoff(cutoff)


@router.get("/attendance/today", response_model=List[AttendanceEventResponse], tags=["attendance"])
async def list_today(
    store: AttendanceRepository = Depends(get_attendance_store)
) -> List[AttendanceEventResponse]:
    """Attendance events recorded today, oldest first."""
    try:
        events = await store.list_for_day(date.today())
    except PersistenceError as e:
        raise _persistence_failed(e)
    return [AttendanceEventResponse.from_event(event) for event in events]


# Gallery

@router.post("/gallery", response_model=EnrollResponse, status_code=status.HTTP_201_CREATED, tags=["gallery"])
async def enroll(
    request: EnrollRequest,
    service: GalleryService = Depends(get_gallery_service)
) -> EnrollResponse:
    """Enroll or replace an identity's descriptor."""
    try:
        descriptor = await service.enroll(request.identity_id, request.vector, request.name, request.image_ref)
    except DimensionMismatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise _persistence_failed(e)
    return EnrollResponse(identity_id=descriptor.identity_id, dimension=descriptor.dimension, name=descriptor.name)


@router.post(
    "/gallery/image",
    response_model=EnrollResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["gallery"]
)
async def enroll_from_image(
    request: EnrollImageRequest,
    service: GalleryService = Depends(get_gallery_service),
    engine: RecognitionEngine = Depends(get_recognition_engine)
) -> EnrollResponse:
    """Enroll the most confident face of an image."""
    try:
        image = bytes_to_numpy_array(decode_base64_image(request.image))
        await engine.ensure_ready(ModelTier.ACCURATE)
        profile = engine.scheduler.profile_for(RecognitionMode.SINGLE, ModelTier.ACCURATE)
        detections = await engine.detector.detect_and_embed(image, ModelTier.ACCURATE, profile)
        if not detections:
            raise HTTPException(status_code=400, detail="No face detected in image")
        best = max(detections, key=lambda d: d.confidence)
        descriptor = await service.enroll(request.identity_id, best.embedding, request.name, request.image_ref)
    except InvalidImageError as e:
        logger.error("Invalid image format", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid image format. Only JPEG and PNG are supported.")
    except DimensionMismatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ModelUnavailableError as e:
        raise _model_unavailable(e)
    except PersistenceError as e:
        raise _persistence_failed(e)
    return EnrollResponse(identity_id=descriptor.identity_id, dimension=descriptor.dimension, name=descriptor.name)


@router.delete("/gallery/{identity_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["gallery"])
async def deregister(
    identity_id: str,
    service: GalleryService = Depends(get_gallery_service)
) -> Response:
    """Remove an identity from the gallery."""
    try:
        removed = await service.deregister(identity_id)
    except PersistenceError as e:
        raise _persistence_failed(e)
    if not removed:
        raise HTTPException(status_code=404, detail=f"Identity not found: {identity_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Recognition

@router.post("/recognize", response_model=RecognizeResponse, tags=["recognition"])
async def recognize(
    request: RecognizeRequest,
    engine: RecognitionEngine = Depends(get_recognition_engine),
    decider: AttendanceDecider = Depends(get_attendance_decider),
    cutoff_service: CutoffService = Depends(get_cutoff_service)
) -> RecognizeResponse:
    """Recognize the faces of a single image, optionally recording attendance."""
    try:
        image = bytes_to_numpy_array(decode_base64_image(request.image))
        cutoff = await cutoff_service.get_cutoff()
        frame = await engine.process_frame(
            image,
            request.mode,
            tier=ModelTier.ACCURATE,
            cutoff=cutoff,
            enable_tracking=False,
            max_faces=request.max_faces
        )
    except InvalidImageError as e:
        logger.error("Invalid image format", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid image format. Only JPEG and PNG are supported.")
    except ModelUnavailableError as e:
        raise _model_unavailable(e)

    recorded = {}
    if request.record:
        try:
            for i, outcome in enumerate(frame.outcomes):
                if not outcome.recognized:
                    continue
                descriptor = engine.index.get(outcome.identity_id)
                result = await decider.record(
                    outcome.identity_id,
                    outcome.status,
                    outcome.confidence,
                    image_ref=request.image_ref,
                    name=descriptor.name if descriptor else None
                )
                recorded[i] = result.created
        except PersistenceError as e:
            raise _persistence_failed(e)

    return RecognizeResponse.from_frame(frame, recorded)


# Alert rules

@router.get("/alerts/rules", response_model=List[AlertRule], tags=["alerts"])
async def list_rules(alerts: AlertRuleEngine = Depends(get_alert_engine)) -> List[AlertRule]:
    return alerts.get_rules()


@router.post("/alerts/rules", response_model=AlertRule, status_code=status.HTTP_201_CREATED, tags=["alerts"])
async def add_rule(rule: AlertRule, alerts: AlertRuleEngine = Depends(get_alert_engine)) -> AlertRule:
    try:
        return alerts.add_rule(rule)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/alerts/rules/{rule_id}", response_model=AlertRule, tags=["alerts"])
async def update_rule(
    rule_id: str,
    update: AlertRuleUpdate,
    alerts: AlertRuleEngine = Depends(get_alert_engine)
) -> AlertRule:
    try:
        return alerts.update_rule(rule_id, **update.changes())
    except AlertRuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/alerts/rules/{rule_id}/toggle", response_model=AlertRule, tags=["alerts"])
async def toggle_rule(rule_id: str, alerts: AlertRuleEngine = Depends(get_alert_engine)) -> AlertRule:
    try:
        return alerts.toggle_rule(rule_id)
    except AlertRuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/alerts/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["alerts"])
async def delete_rule(rule_id: str, alerts: AlertRuleEngine = Depends(get_alert_engine)) -> Response:
    try:
        alerts.delete_rule(rule_id)
    except AlertRuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/alerts/history", response_model=List[TriggeredAlertResponse], tags=["alerts"])
async def alert_history(
    limit: Optional[int] = Query(None, ge=1, le=500),
    alerts: AlertRuleEngine = Depends(get_alert_engine)
) -> List[TriggeredAlertResponse]:
    return [
        TriggeredAlertResponse(
            rule_id=alert.rule_id,
            rule_name=alert.rule_name,
            priority=alert.priority,
            messages=alert.messages,
            event_id=alert.event.event_id,
            triggered_at=alert.triggered_at
        )
        for alert in alerts.history(limit)
    ]
