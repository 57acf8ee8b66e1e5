# Import all models for Tortoise ORM registration
from .base import BaseModel
from .face import FaceEventType, FaceRecognitionEvent, FaceRecord

__all__ = [
    "BaseModel",
    "FaceEventType",
    "FaceRecord",
    "FaceRecognitionEvent",
]
