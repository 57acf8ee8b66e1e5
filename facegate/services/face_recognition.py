"""
Face orchestration: enroll, recognize, update, delete and clean up face records.

The device is the source of truth for matching; this service applies the
confidence policy, keeps the local record store in step with the device,
appends to the event log and invalidates cached reads.

Record lifecycle: absent -> enrolled (active) -> [updated]* -> inactive | deleted.
"""

import json
import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

import pydantic
from pydantic.alias_generators import to_camel
from tortoise.exceptions import IntegrityError

from facegate.config import settings as default_settings
from facegate.core.exceptions import (
    ConflictError,
    FaceGateError,
    NotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from facegate.models.face import FaceEventType, FaceRecord
from facegate.services import metrics
from facegate.services.cache import CacheStore
from facegate.services.face_events import FaceEventService
from facegate.services.isapi_client import IsapiClient
from facegate.services.webhook import parse_webhook
from facegate.schemas.face import (
    BoundingBox,
    CleanupResult,
    ConnectionStatus,
    CreateFaceRecordDto,
    DeviceFaceOut,
    FaceEventOut,
    FaceEventPage,
    FaceRecordOut,
    FaceRecordPage,
    FaceRecordQuery,
    FaceStats,
    RecognitionResult,
    RecognizedFace,
    UnknownFace,
    UpdateFaceRecordDto,
    WebhookPayload,
    WebhookSetupResult,
    parse_dto,
)
from facegate.utils.imagedata import decode_image_data

log = logging.getLogger("facegate.faces")

RECORDS_CACHE_PREFIX = "face_recognition:face_records:"
RECORD_CACHE_PREFIX = "face_recognition:face_record:"
IMMUTABLE_FIELDS = {"faceId", "face_id", "userId", "user_id"}


def records_cache_key(page: int, limit: int, filters: Dict[str, Any]) -> str:
    return f"{RECORDS_CACHE_PREFIX}{page}:{limit}:{json.dumps(filters, sort_keys=True, default=str)}"


def record_cache_key(record_id: Union[str, UUID]) -> str:
    return f"{RECORD_CACHE_PREFIX}{record_id}"


def _record_id(value: Union[str, UUID]) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ValidationError("Invalid face record id", {"id": str(value)}) from exc


class FaceRecognitionService:
    def __init__(
        self,
        device: IsapiClient,
        cache: CacheStore,
        events: Optional[FaceEventService] = None,
        settings=None,
    ):
        self.device = device
        self.cache = cache
        self.events = events or FaceEventService()
        self.settings = settings or default_settings

    @property
    def confidence_threshold(self) -> float:
        return self.settings.FACE_RECOGNITION_CONFIDENCE_THRESHOLD

    @property
    def retention_days(self) -> int:
        return self.settings.FACE_RECOGNITION_STORAGE_RETENTION_DAYS

    async def _invalidate(self, *record_ids: Union[str, UUID]) -> None:
        await self.cache.delete_prefix(RECORDS_CACHE_PREFIX)
        for record_id in record_ids:
            await self.cache.delete(record_cache_key(record_id))

    async def _get_or_404(self, record_id: Union[str, UUID]) -> FaceRecord:
        record = await FaceRecord.get_or_none(id=_record_id(record_id))
        if record is None:
            raise NotFoundError(f"Face record {record_id} not found", {"id": str(record_id)})
        return record

    # ------------------------------------------------------------------ enroll

    async def enroll(self, data: Union[CreateFaceRecordDto, Dict[str, Any]]) -> FaceRecordOut:
        dto: CreateFaceRecordDto = parse_dto(CreateFaceRecordDto, data)
        image = decode_image_data(dto.image_data)

        # Duplicate check precedes any device call
        if await FaceRecord.filter(face_id=dto.face_id).exists():
            raise ConflictError(f"Face {dto.face_id} is already enrolled", {"faceId": dto.face_id})

        await self.device.enroll_face(dto.face_id, image, name=dto.name)

        try:
            record = await FaceRecord.create(
                user_id=dto.user_id,
                face_id=dto.face_id,
                image_data=dto.image_data,
                face_data=dto.face_data,
                confidence=dto.confidence,
                is_active=True,
            )
        except IntegrityError as exc:
            log.warning("Face %s enrolled on device but a concurrent enrollment won the insert", dto.face_id)
            raise ConflictError(f"Face {dto.face_id} is already enrolled", {"faceId": dto.face_id}) from exc

        await self.events.record(
            FaceEventType.ENROLLED,
            face_record_id=record.id,
            face_id=record.face_id,
            confidence=record.confidence,
            metadata={"userId": record.user_id, "source": "enrollment"},
        )
        await self._invalidate()
        log.info("Enrolled face %s as record %s", record.face_id, record.id)
        return FaceRecordOut.model_validate(record)

    # ------------------------------------------------------------------ recognize

    async def recognize(
        self,
        image: Union[bytes, str],
        *,
        camera_id: Optional[str] = None,
        location: Optional[str] = None,
    ) -> RecognitionResult:
        """
        Match an image against the device library and classify every candidate.

        A candidate is recognized only when its confidence is at or above the
        threshold and a local active record exists for its face id. Everything
        else is unknown, tagged ``low_confidence`` or ``not_enrolled``. Faces
        the device detected without matching carry no face id.
        """
        if isinstance(image, str):
            image = decode_image_data(image)
        if not image:
            raise ValidationError("Image is empty", {"field": "image"})

        matches = await self.device.search_faces(image)
        threshold = self.confidence_threshold

        candidates = [m.face_id for m in matches if m.face_id and m.confidence >= threshold]
        records = {}
        if candidates:
            rows = await FaceRecord.filter(face_id__in=candidates, is_active=True)
            records = {r.face_id: r for r in rows}

        recognized: List[RecognizedFace] = []
        unknown: List[UnknownFace] = []
        for match in matches:
            box = BoundingBox(**match.bounding_box)
            if match.confidence < threshold:
                unknown.append(
                    UnknownFace(face_id=match.face_id, confidence=match.confidence, bounding_box=box, reason="low_confidence")
                )
                continue
            record = records.get(match.face_id) if match.face_id else None
            if record is None:
                unknown.append(
                    UnknownFace(face_id=match.face_id, confidence=match.confidence, bounding_box=box, reason="not_enrolled")
                )
                continue
            recognized.append(
                RecognizedFace(
                    **FaceRecordOut.model_validate(record).model_dump(),
                    match_confidence=match.confidence,
                    bounding_box=box,
                )
            )
            await self.events.record(
                FaceEventType.RECOGNIZED,
                face_record_id=record.id,
                face_id=record.face_id,
                confidence=match.confidence,
                camera_id=camera_id,
                location=location,
                metadata={"source": "recognition", "boundingBox": box.model_dump(), "userId": record.user_id},
            )

        if unknown:
            await self.events.record(
                FaceEventType.DETECTED,
                confidence=max(u.confidence for u in unknown),
                camera_id=camera_id,
                location=location,
                metadata={
                    "source": "recognition",
                    "unknownFaceCount": len(unknown),
                    "faceIds": [u.face_id for u in unknown],
                    "reasons": [u.reason for u in unknown],
                },
            )

        metrics.record_recognition("recognized", len(recognized))
        metrics.record_recognition("unknown", len(unknown))
        log.info("Recognition: %d recognized, %d unknown", len(recognized), len(unknown))
        return RecognitionResult(recognized_faces=recognized, unknown_faces=unknown)

    # ------------------------------------------------------------------ reads

    async def get_records(
        self,
        page: int = 1,
        limit: int = 10,
        filters: Optional[Dict[str, Any]] = None,
    ) -> FaceRecordPage:
        query: FaceRecordQuery = parse_dto(FaceRecordQuery, {**(filters or {}), "page": page, "limit": limit})
        where = query.filters()
        key = records_cache_key(query.page, query.limit, where)

        cached = await self.cache.get(key)
        if cached is not None:
            try:
                return FaceRecordPage.model_validate(cached)
            except pydantic.ValidationError:
                log.warning("Discarding malformed cache entry %s", key)

        qs = FaceRecord.filter(**where)
        total = await qs.count()
        rows = await qs.order_by("-created_at", "id").offset((query.page - 1) * query.limit).limit(query.limit)
        result = FaceRecordPage(
            items=[FaceRecordOut.model_validate(r) for r in rows],
            total=total,
            page=query.page,
            limit=query.limit,
            total_pages=math.ceil(total / query.limit) if total else 0,
        )
        await self.cache.set(
            key,
            result.model_dump(mode="json", by_alias=True),
            ttl=self.settings.CACHE_TTL_SECONDS,
            prefix=RECORDS_CACHE_PREFIX,
        )
        return result

    async def get_record(self, record_id: Union[str, UUID]) -> FaceRecordOut:
        key = record_cache_key(_record_id(record_id))
        cached = await self.cache.get(key)
        if cached is not None:
            try:
                return FaceRecordOut.model_validate(cached)
            except pydantic.ValidationError:
                log.warning("Discarding malformed cache entry %s", key)

        record = await self._get_or_404(record_id)
        out = FaceRecordOut.model_validate(record)
        # Dropped by key on write, so no prefix index
        await self.cache.set(key, out.model_dump(mode="json", by_alias=True), ttl=self.settings.CACHE_TTL_SECONDS)
        return out

    # ------------------------------------------------------------------ writes

    async def update(
        self,
        record_id: Union[str, UUID],
        patch: Union[UpdateFaceRecordDto, Dict[str, Any]],
    ) -> FaceRecordOut:
        if isinstance(patch, dict):
            locked = sorted(IMMUTABLE_FIELDS & set(patch))
            if locked:
                raise ValidationError("faceId and userId cannot be changed", {"fields": locked})
        dto: UpdateFaceRecordDto = parse_dto(UpdateFaceRecordDto, patch)
        changes = dto.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            raise ValidationError("No fields to update")
        if "image_data" in changes:
            decode_image_data(changes["image_data"])

        record = await self._get_or_404(record_id)
        record.update_from_dict(changes)
        # Last write wins; concurrent updates are not serialized
        await record.save(update_fields=[*changes, "updated_at"])

        updated_fields = [to_camel(name) for name in changes]
        await self.events.record(
            FaceEventType.UPDATED,
            face_record_id=record.id,
            face_id=record.face_id,
            confidence=record.confidence,
            metadata={"updatedFields": updated_fields, "source": "update"},
        )
        await self._invalidate(record.id)
        log.info("Updated face record %s: %s", record.id, ", ".join(updated_fields))
        return FaceRecordOut.model_validate(record)

    async def delete(self, record_id: Union[str, UUID]) -> None:
        record = await self._get_or_404(record_id)

        # Device delete first; the local row goes only after it succeeds
        await self.device.delete_face(record.face_id)

        rid, face_id, confidence, user_id = record.id, record.face_id, record.confidence, record.user_id
        await record.delete()
        await self.events.record(
            FaceEventType.DELETED,
            face_record_id=rid,
            face_id=face_id,
            confidence=confidence,
            metadata={"reason": "deleted", "userId": user_id, "source": "delete"},
        )
        await self._invalidate(rid)
        log.info("Deleted face record %s (face %s)", rid, face_id)

    async def cleanup(self, retention_days: Optional[int] = None) -> CleanupResult:
        """Purge inactive records older than the retention window. Active records are never touched."""
        days = self.retention_days if retention_days is None else retention_days
        if days < 0:
            raise ValidationError("retention_days must be >= 0", {"retentionDays": days})
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        stale = await FaceRecord.filter(is_active=False, created_at__lt=cutoff)
        purged = []
        for record in stale:
            rid, face_id, confidence = record.id, record.face_id, record.confidence
            await record.delete()
            await self.events.record(
                FaceEventType.DELETED,
                face_record_id=rid,
                face_id=face_id,
                confidence=confidence,
                metadata={"reason": "retention_cleanup", "retentionDays": days, "source": "cleanup"},
            )
            purged.append(rid)

        if purged:
            await self._invalidate(*purged)
        log.info("Retention cleanup removed %d inactive records older than %d days", len(purged), days)
        return CleanupResult(deleted_count=len(purged), retention_days=days)

    # ------------------------------------------------------------------ webhook

    async def process_webhook_event(self, payload: WebhookPayload) -> FaceEventOut:
        record = await FaceRecord.get_or_none(face_id=payload.face_id)
        metadata = dict(payload.metadata or {})
        metadata.update(
            {
                "source": "webhook",
                "webhookEvent": True,
                "receivedAt": datetime.now(timezone.utc).isoformat(),
            }
        )
        event = await self.events.record(
            payload.event_type,
            face_record_id=record.id if record else None,
            face_id=payload.face_id,
            confidence=payload.confidence,
            timestamp=payload.timestamp,
            camera_id=payload.camera_id,
            location=payload.location,
            image_data=payload.image_data,
            metadata=metadata,
        )
        log.info("Webhook %s event for face %s stored as %s", payload.event_type.value, payload.face_id, event.id)
        return FaceEventOut.model_validate(event)

    async def handle_webhook(self, raw_body: Union[bytes, str, Dict[str, Any]], secret: Optional[str] = None) -> FaceEventOut:
        try:
            payload = parse_webhook(raw_body, secret or self.settings.FACE_WEBHOOK_SECRET)
        except ValidationError:
            metrics.record_webhook("invalid")
            raise
        except WebhookSignatureError:
            metrics.record_webhook("rejected")
            raise
        event = await self.process_webhook_event(payload)
        metrics.record_webhook("accepted")
        return event

    # ------------------------------------------------------------------ events

    async def get_events(self, page: int = 1, limit: int = 10, filters: Optional[Dict[str, Any]] = None) -> FaceEventPage:
        return await self.events.get_events(page, limit, filters)

    async def get_stats(self, recent: int = 10) -> FaceStats:
        return await self.events.get_stats(recent)

    # ------------------------------------------------------------------ device passthrough

    async def test_connection(self) -> ConnectionStatus:
        try:
            info = await self.device.get_device_info()
        except FaceGateError as exc:
            log.warning("Device connection test failed: %s", exc)
            return ConnectionStatus(success=False, device_url=self.device.base_url)
        return ConnectionStatus(success=True, device_url=self.device.base_url, device_info=info)

    async def list_device_faces(self) -> List[DeviceFaceOut]:
        return [DeviceFaceOut.model_validate(face) for face in await self.device.list_faces()]

    async def capture_snapshot(self, channel: str = "1") -> str:
        return await self.device.capture_snapshot(channel)

    async def setup_webhook(self, url: Optional[str] = None, host_id: int = 1) -> WebhookSetupResult:
        target = url or self.settings.webhook_url
        response = await self.device.set_event_listener(target, host_id)
        log.info("Registered webhook %s on device %s", target, self.device.base_url)
        return WebhookSetupResult(success=True, url=target, device_response=response)
