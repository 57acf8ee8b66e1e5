import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from tortoise.functions import Count

from facegate.models.face import FaceEventType, FaceRecognitionEvent, FaceRecord
from facegate.schemas.face import FaceEventOut, FaceEventPage, FaceEventQuery, FaceStats, parse_dto

log = logging.getLogger("facegate.events")

# Newest first; equal timestamps keep insertion order
EVENT_ORDERING = ("-timestamp", "id")


class FaceEventService:
    """Append-only event log plus the read-side queries over it."""

    async def record(
        self,
        event_type: FaceEventType,
        *,
        face_record_id: Optional[UUID] = None,
        face_id: Optional[str] = None,
        confidence: float = 0.0,
        timestamp: Optional[datetime] = None,
        camera_id: Optional[str] = None,
        location: Optional[str] = None,
        image_data: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FaceRecognitionEvent:
        event = await FaceRecognitionEvent.create(
            event_type=event_type,
            face_record_id=face_record_id,
            face_id=face_id,
            confidence=confidence,
            timestamp=timestamp or datetime.now(timezone.utc),
            camera_id=camera_id,
            location=location,
            image_data=image_data,
            metadata=metadata or {},
        )
        log.debug("Recorded %s event %s for face %s", event_type.value, event.id, face_id)
        return event

    async def get_events(
        self,
        page: int = 1,
        limit: int = 10,
        filters: Optional[Dict[str, Any]] = None,
    ) -> FaceEventPage:
        query: FaceEventQuery = parse_dto(FaceEventQuery, {**(filters or {}), "page": page, "limit": limit})

        qs = FaceRecognitionEvent.all()
        if query.face_record_id:
            qs = qs.filter(face_record_id=query.face_record_id)
        if query.face_id:
            qs = qs.filter(face_id=query.face_id)
        if query.event_type:
            qs = qs.filter(event_type=query.event_type)
        if query.start_date:
            qs = qs.filter(timestamp__gte=query.start_date)
        if query.end_date:
            qs = qs.filter(timestamp__lte=query.end_date)

        total = await qs.count()
        rows = await qs.order_by(*EVENT_ORDERING).offset((query.page - 1) * query.limit).limit(query.limit)
        return FaceEventPage(
            items=[FaceEventOut.model_validate(r) for r in rows],
            total=total,
            page=query.page,
            limit=query.limit,
            total_pages=math.ceil(total / query.limit) if total else 0,
        )

    async def get_stats(self, recent: int = 10) -> FaceStats:
        total_records = await FaceRecord.all().count()
        active_records = await FaceRecord.filter(is_active=True).count()
        total_events = await FaceRecognitionEvent.all().count()

        histogram = {kind.value: 0 for kind in FaceEventType}
        rows = (
            await FaceRecognitionEvent.annotate(count=Count("id"))
            .group_by("event_type")
            .values("event_type", "count")
        )
        for row in rows:
            histogram[FaceEventType(row["event_type"]).value] = row["count"]

        recent_rows = []
        if recent > 0:
            recent_rows = await FaceRecognitionEvent.all().order_by(*EVENT_ORDERING).limit(recent)
        return FaceStats(
            total_records=total_records,
            active_records=active_records,
            total_events=total_events,
            events_by_type=histogram,
            recent_events=[FaceEventOut.model_validate(r) for r in recent_rows],
        )
