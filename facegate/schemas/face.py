from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from facegate.core.exceptions import ValidationError
from facegate.models.face import FaceEventType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def http_url(value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError("url must be an http(s) URL")
    return value


# ---------------------------------------------------------------- inputs


class CreateFaceRecordDto(CamelModel):
    user_id: Optional[str] = Field(None, max_length=64)
    face_id: str = Field(min_length=1, max_length=128)
    image_data: str = Field(min_length=1)
    face_data: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    name: Optional[str] = Field(None, max_length=128, description="Display name sent to the device")


class UpdateFaceRecordDto(CamelModel):
    """Partial update. faceId and userId are immutable and rejected as unknown fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    image_data: Optional[str] = Field(None, min_length=1)
    face_data: Optional[str] = Field(None, min_length=1)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    is_active: Optional[bool] = None


class FaceRecordQuery(CamelModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    user_id: Optional[str] = None
    face_id: Optional[str] = None
    is_active: Optional[bool] = None

    def filters(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"page", "limit"}, exclude_none=True)


class FaceEventQuery(CamelModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    face_record_id: Optional[UUID] = None
    face_id: Optional[str] = None
    event_type: Optional[FaceEventType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None


class RecognizeBase64Request(CamelModel):
    image_data: str = Field(min_length=1)
    camera_id: Optional[str] = Field(None, max_length=128)
    location: Optional[str] = Field(None, max_length=255)


class SnapshotRequest(CamelModel):
    channel: str = Field("1", min_length=1, max_length=16, pattern=r"^[0-9]+$")


class SetupWebhookRequest(CamelModel):
    url: Optional[str] = Field(None, description="Defaults to BASE_URL + FACE_WEBHOOK_ENDPOINT")
    host_id: int = Field(1, ge=1)

    @field_validator("url")
    @classmethod
    def _http_url(cls, v: Optional[str]) -> Optional[str]:
        return http_url(v) if v is not None else None


# ---------------------------------------------------------------- webhook

# Device firmwares and integrations name the same event differently
EVENT_TYPE_ALIASES = {
    "FACE_DETECTED": FaceEventType.DETECTED,
    "FACEDETECTION": FaceEventType.DETECTED,
    "FACE_RECOGNIZED": FaceEventType.RECOGNIZED,
    "FACERECOGNITION": FaceEventType.RECOGNIZED,
    "FACE_UNKNOWN": FaceEventType.UNKNOWN,
    "UNKNOWN_FACE": FaceEventType.UNKNOWN,
}


class WebhookPayload(CamelModel):
    event_type: FaceEventType
    face_id: str = Field(min_length=1, max_length=128)
    confidence: float = Field(ge=0.0, le=1.0)
    timestamp: datetime
    signature: str = Field(min_length=1)
    camera_id: Optional[str] = Field(None, max_length=128)
    location: Optional[str] = Field(None, max_length=255)
    image_data: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _lift_camera(cls, data: Any) -> Any:
        # {"camera": {"id": ..., "location": ...}} is accepted as well as flat fields
        if isinstance(data, dict) and isinstance(data.get("camera"), dict):
            data = dict(data)
            camera = data.pop("camera")
            data.setdefault("cameraId", camera.get("id"))
            data.setdefault("location", camera.get("location"))
        return data

    @field_validator("event_type", mode="before")
    @classmethod
    def _event_alias(cls, v: Any) -> Any:
        if isinstance(v, str):
            key = v.strip().upper()
            if key in EVENT_TYPE_ALIASES:
                return EVENT_TYPE_ALIASES[key]
            return key
        return v

    @field_validator("camera_id", mode="before")
    @classmethod
    def _camera_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class WebhookAck(CamelModel):
    success: bool = True
    event_id: Optional[int] = None


# ---------------------------------------------------------------- outputs


class FaceRecordOut(CamelModel):
    id: UUID
    user_id: Optional[str] = None
    face_id: str
    image_data: str
    face_data: str
    confidence: float
    is_active: bool
    created_at: datetime
    updated_at: datetime


class FaceRecordPage(CamelModel):
    items: List[FaceRecordOut]
    total: int
    page: int
    limit: int
    total_pages: int


class FaceEventOut(CamelModel):
    id: int
    face_record_id: Optional[UUID] = None
    face_id: Optional[str] = None
    event_type: FaceEventType
    confidence: float
    timestamp: datetime
    camera_id: Optional[str] = None
    location: Optional[str] = None
    image_data: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class FaceEventPage(CamelModel):
    items: List[FaceEventOut]
    total: int
    page: int
    limit: int
    total_pages: int


class BoundingBox(CamelModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class RecognizedFace(FaceRecordOut):
    match_confidence: float
    bounding_box: BoundingBox


class UnknownFace(CamelModel):
    face_id: Optional[str] = None
    confidence: float
    bounding_box: BoundingBox
    reason: Literal["low_confidence", "not_enrolled"]


class RecognitionResult(CamelModel):
    recognized_faces: List[RecognizedFace] = []
    unknown_faces: List[UnknownFace] = []


class FaceStats(CamelModel):
    total_records: int
    active_records: int
    total_events: int
    events_by_type: Dict[str, int]
    recent_events: List[FaceEventOut]


class CleanupResult(CamelModel):
    deleted_count: int
    retention_days: int


class ConnectionStatus(CamelModel):
    success: bool
    device_url: str
    device_info: Optional[Dict[str, Any]] = None


class SnapshotOut(CamelModel):
    image_data: str
    channel: str


class DeviceFaceOut(CamelModel):
    face_id: Optional[str] = None
    name: Optional[str] = None
    create_time: Optional[str] = None


class WebhookSetupResult(CamelModel):
    success: bool
    url: str
    device_response: Optional[Any] = None


def parse_dto(model: type, data: Any):
    """Coerce a dict (or an instance) into ``model``, raising our ValidationError"""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data or {})
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}",
            {"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
        ) from exc
