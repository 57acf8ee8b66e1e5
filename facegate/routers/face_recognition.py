from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, File, Form, Query, Request, Response, UploadFile, status

from facegate.core.exceptions import ValidationError
from facegate.core.rate_limit import WEBHOOK_RATE_LIMIT, limiter
from facegate.dependencies import get_face_service
from facegate.models.face import FaceEventType
from facegate.schemas.face import (
    CleanupResult,
    ConnectionStatus,
    CreateFaceRecordDto,
    DeviceFaceOut,
    FaceEventPage,
    FaceRecordOut,
    FaceRecordPage,
    FaceStats,
    RecognitionResult,
    RecognizeBase64Request,
    SetupWebhookRequest,
    SnapshotOut,
    SnapshotRequest,
    WebhookAck,
    WebhookSetupResult,
)
from facegate.services.face_recognition import FaceRecognitionService
from facegate.services.security import require_api_key

router = APIRouter(prefix="/face-recognition", tags=["face-recognition"])

admin = [Depends(require_api_key)]


@router.post("/enroll", response_model=FaceRecordOut, status_code=status.HTTP_201_CREATED, dependencies=admin)
async def enroll_face(body: CreateFaceRecordDto, service: FaceRecognitionService = Depends(get_face_service)):
    """Enroll a face on the device, then persist the record and log an ENROLLED event."""
    return await service.enroll(body)


@router.post("/recognize", response_model=RecognitionResult, dependencies=admin)
async def recognize_face(
    file: UploadFile = File(...),
    camera_id: Optional[str] = Form(None, alias="cameraId"),
    location: Optional[str] = Form(None),
    service: FaceRecognitionService = Depends(get_face_service),
):
    content = await file.read()
    if not content:
        raise ValidationError("Uploaded image is empty", {"field": "file"})
    return await service.recognize(content, camera_id=camera_id, location=location)


@router.post("/recognize-base64", response_model=RecognitionResult, dependencies=admin)
async def recognize_face_base64(
    body: RecognizeBase64Request,
    service: FaceRecognitionService = Depends(get_face_service),
):
    return await service.recognize(body.image_data, camera_id=body.camera_id, location=body.location)


@router.get("/records", response_model=FaceRecordPage, dependencies=admin)
async def list_records(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: Optional[str] = Query(None, alias="userId"),
    face_id: Optional[str] = Query(None, alias="faceId"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    service: FaceRecognitionService = Depends(get_face_service),
):
    filters = {"user_id": user_id, "face_id": face_id, "is_active": is_active}
    return await service.get_records(page, limit, filters)


@router.get("/records/{record_id}", response_model=FaceRecordOut, dependencies=admin)
async def get_record(record_id: UUID, service: FaceRecognitionService = Depends(get_face_service)):
    return await service.get_record(record_id)


@router.put("/records/{record_id}", response_model=FaceRecordOut, dependencies=admin)
async def update_record(
    record_id: UUID,
    patch: Dict[str, Any] = Body(..., examples=[{"confidence": 0.9, "isActive": False}]),
    service: FaceRecognitionService = Depends(get_face_service),
):
    """Partial update of imageData, faceData, confidence or isActive. faceId and userId are immutable."""
    return await service.update(record_id, patch)


@router.delete("/records/{record_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=admin)
async def delete_record(record_id: UUID, service: FaceRecognitionService = Depends(get_face_service)):
    await service.delete(record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/events", response_model=FaceEventPage, dependencies=admin)
async def list_events(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    face_record_id: Optional[UUID] = Query(None, alias="faceRecordId"),
    face_id: Optional[str] = Query(None, alias="faceId"),
    event_type: Optional[FaceEventType] = Query(None, alias="eventType"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    service: FaceRecognitionService = Depends(get_face_service),
):
    filters = {
        "face_record_id": face_record_id,
        "face_id": face_id,
        "event_type": event_type,
        "start_date": start_date,
        "end_date": end_date,
    }
    return await service.get_events(page, limit, {k: v for k, v in filters.items() if v is not None})


@router.get("/stats", response_model=FaceStats, dependencies=admin)
async def get_stats(
    recent: int = Query(10, ge=0, le=100),
    service: FaceRecognitionService = Depends(get_face_service),
):
    return await service.get_stats(recent)


@router.post("/webhook", response_model=WebhookAck)
@limiter.limit(WEBHOOK_RATE_LIMIT)
async def receive_webhook(request: Request, service: FaceRecognitionService = Depends(get_face_service)):
    """Public device callback. Responds 200 only after the signature verifies and the event is stored."""
    raw = await request.body()
    event = await service.handle_webhook(raw)
    return WebhookAck(success=True, event_id=event.id)


@router.post("/cleanup", response_model=CleanupResult, dependencies=admin)
async def cleanup_records(service: FaceRecognitionService = Depends(get_face_service)):
    return await service.cleanup()


@router.post("/test-connection", response_model=ConnectionStatus, dependencies=admin)
async def test_connection(service: FaceRecognitionService = Depends(get_face_service)):
    return await service.test_connection()


@router.get("/faces/list", response_model=List[DeviceFaceOut], dependencies=admin)
async def list_device_faces(service: FaceRecognitionService = Depends(get_face_service)):
    return await service.list_device_faces()


@router.post("/snapshot", response_model=SnapshotOut, dependencies=admin)
async def capture_snapshot(
    body: Optional[SnapshotRequest] = None,
    service: FaceRecognitionService = Depends(get_face_service),
):
    channel = body.channel if body else "1"
    return SnapshotOut(image_data=await service.capture_snapshot(channel), channel=channel)


@router.post("/setup-webhook", response_model=WebhookSetupResult, dependencies=admin)
async def setup_webhook(
    body: Optional[SetupWebhookRequest] = None,
    service: FaceRecognitionService = Depends(get_face_service),
):
    body = body or SetupWebhookRequest()
    return await service.setup_webhook(body.url, body.host_id)
