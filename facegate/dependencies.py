from fastapi import Depends, Request

from facegate.services.cache import CacheStore
from facegate.services.face_events import FaceEventService
from facegate.services.face_recognition import FaceRecognitionService
from facegate.services.isapi_client import IsapiClient


def get_isapi_client(request: Request) -> IsapiClient:
    return request.app.state.isapi


def get_cache(request: Request) -> CacheStore:
    return request.app.state.cache


def get_event_service() -> FaceEventService:
    return FaceEventService()


def get_face_service(
    device: IsapiClient = Depends(get_isapi_client),
    cache: CacheStore = Depends(get_cache),
    events: FaceEventService = Depends(get_event_service),
) -> FaceRecognitionService:
    return FaceRecognitionService(device, cache, events)
