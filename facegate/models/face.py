from enum import Enum

from tortoise import fields
from tortoise.models import Model

from .base import BaseModel


class FaceEventType(str, Enum):
    DETECTED = "DETECTED"
    RECOGNIZED = "RECOGNIZED"
    UNKNOWN = "UNKNOWN"
    ENROLLED = "ENROLLED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"


class FaceRecord(BaseModel):
    # Weak reference to an external user; no FK so records outlive users
    user_id = fields.CharField(max_length=64, null=True, index=True)
    face_id = fields.CharField(max_length=128, unique=True)
    image_data = fields.TextField()
    face_data = fields.TextField()
    confidence = fields.FloatField(default=0.0)
    is_active = fields.BooleanField(default=True, index=True)

    class Meta:
        table = "face_records"
        ordering = ["-created_at"]

    def __str__(self):
        return f"FaceRecord({self.face_id})"


class FaceRecognitionEvent(Model):
    """Append-only log. The integer pk doubles as insertion order."""

    id = fields.BigIntField(pk=True)
    face_record_id = fields.UUIDField(null=True, index=True)
    face_id = fields.CharField(max_length=128, null=True, index=True)
    event_type = fields.CharEnumField(FaceEventType, max_length=16, index=True)
    confidence = fields.FloatField(default=0.0)
    timestamp = fields.DatetimeField(index=True)
    camera_id = fields.CharField(max_length=128, null=True)
    location = fields.CharField(max_length=255, null=True)
    image_data = fields.TextField(null=True)
    metadata = fields.JSONField(null=True)

    class Meta:
        table = "face_recognition_events"
