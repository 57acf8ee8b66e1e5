import base64
from datetime import datetime, timedelta, timezone

import pytest

from facegate.core.exceptions import (
    ConflictError,
    DeviceConnectionError,
    IsapiOperationError,
    NotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from facegate.models.face import FaceEventType, FaceRecognitionEvent, FaceRecord
from facegate.services.face_recognition import RECORD_CACHE_PREFIX, RECORDS_CACHE_PREFIX, record_cache_key
from facegate.services.webhook import sign_body

from .fakes import WEBHOOK_SECRET, failure_envelope, image_b64


def enroll_body(face_id: str, **overrides) -> dict:
    body = {
        "faceId": face_id,
        "userId": f"user-{face_id}",
        "imageData": image_b64(face_id),
        "faceData": "embedding-v1",
        "confidence": 0.9,
    }
    body.update(overrides)
    return body


async def event_types():
    return [e.event_type for e in await FaceRecognitionEvent.all().order_by("id")]


# ---------------------------------------------------------------- enroll


async def test_enroll_creates_record_device_face_and_event(face_service, device):
    record = await face_service.enroll(enroll_body("alice"))

    assert record.face_id == "alice"
    assert record.is_active is True
    assert "alice" in device.faces
    assert await event_types() == [FaceEventType.ENROLLED]
    event = await FaceRecognitionEvent.get(event_type=FaceEventType.ENROLLED)
    assert event.face_record_id == record.id


async def test_duplicate_enroll_conflicts_without_touching_device(face_service, device):
    await face_service.enroll(enroll_body("alice"))
    calls_before = len(device.face_calls)

    with pytest.raises(ConflictError):
        await face_service.enroll(enroll_body("alice", userId="someone-else"))

    assert len(device.face_calls) == calls_before
    assert await FaceRecord.all().count() == 1


async def test_device_rejection_persists_nothing(face_service, device):
    device.enroll_failure = failure_envelope("faceLibraryFull")

    with pytest.raises(IsapiOperationError):
        await face_service.enroll(enroll_body("alice"))

    assert await FaceRecord.all().count() == 0
    assert await FaceRecognitionEvent.all().count() == 0


async def test_unreachable_device_persists_nothing(face_service, device):
    device.offline = True
    with pytest.raises(DeviceConnectionError):
        await face_service.enroll(enroll_body("alice"))
    assert await FaceRecord.all().count() == 0


async def test_enroll_rejects_non_base64_image(face_service, device):
    with pytest.raises(ValidationError):
        await face_service.enroll(enroll_body("alice", imageData="***not-base64***"))
    assert device.calls == []


async def test_enroll_rejects_out_of_range_confidence(face_service):
    with pytest.raises(ValidationError):
        await face_service.enroll(enroll_body("alice", confidence=1.2))


# ---------------------------------------------------------------- recognize


async def test_threshold_is_inclusive(face_service, device):
    await face_service.enroll(enroll_body("A"))
    await face_service.enroll(enroll_body("B"))
    device.search_override = [
        {"faceID": "A", "similarity": 70},
        {"faceID": "B", "similarity": 69.99},
    ]

    result = await face_service.recognize(b"\xff\xd8\xffframe", camera_id="cam-1", location="Lobby")

    assert [f.face_id for f in result.recognized_faces] == ["A"]
    assert result.recognized_faces[0].match_confidence == pytest.approx(0.70)
    assert [(f.face_id, f.reason) for f in result.unknown_faces] == [("B", "low_confidence")]


async def test_recognize_logs_one_event_per_recognized_and_one_for_unknowns(face_service, device):
    await face_service.enroll(enroll_body("A"))
    device.search_override = [
        {"faceID": "A", "similarity": 91},
        {"faceID": "ghost", "similarity": 99},
        {"faceID": "blur", "similarity": 12},
    ]

    await face_service.recognize(b"\xff\xd8\xffframe", camera_id="cam-1")

    recognized = await FaceRecognitionEvent.filter(event_type=FaceEventType.RECOGNIZED)
    detected = await FaceRecognitionEvent.filter(event_type=FaceEventType.DETECTED)
    assert len(recognized) == 1
    assert recognized[0].camera_id == "cam-1"
    assert recognized[0].confidence == pytest.approx(0.91)
    assert len(detected) == 1
    assert detected[0].metadata["unknownFaceCount"] == 2
    assert detected[0].metadata["reasons"] == ["not_enrolled", "low_confidence"]


async def test_device_match_without_local_record_is_not_enrolled(face_service, device):
    frame = b"\xff\xd8\xffghost-face"
    device.faces["ghost"] = b"multipart..." + frame

    result = await face_service.recognize(frame)

    assert result.recognized_faces == []
    assert [(f.face_id, f.reason) for f in result.unknown_faces] == [("ghost", "not_enrolled")]


async def test_unmatched_detections_are_reported_as_unknown(face_service, device):
    await face_service.enroll(enroll_body("A"))
    device.search_override = [
        {"similarity": 40, "boundingBox": {"x": 5, "y": 6, "width": 50, "height": 60}},
        {"similarity": 88},
        {"faceID": "A", "similarity": 93},
    ]

    result = await face_service.recognize(b"\xff\xd8\xffstranger", camera_id="cam-2")

    assert [f.face_id for f in result.recognized_faces] == ["A"]
    assert [(f.face_id, f.reason) for f in result.unknown_faces] == [
        (None, "low_confidence"),
        (None, "not_enrolled"),
    ]
    assert result.unknown_faces[0].bounding_box.width == 50

    detected = await FaceRecognitionEvent.filter(event_type=FaceEventType.DETECTED)
    assert len(detected) == 1
    assert detected[0].face_record_id is None
    assert detected[0].confidence == pytest.approx(0.88)
    assert detected[0].metadata["faceIds"] == [None, None]
    assert detected[0].metadata["reasons"] == ["low_confidence", "not_enrolled"]


async def test_inactive_record_is_not_recognized(face_service):
    record = await face_service.enroll(enroll_body("alice"))
    await face_service.update(record.id, {"isActive": False})

    result = await face_service.recognize(image_b64("alice"))

    assert result.recognized_faces == []
    assert result.unknown_faces[0].reason == "not_enrolled"


async def test_no_faces_means_no_events(face_service, device):
    device.search_override = []
    result = await face_service.recognize(b"\xff\xd8\xffempty-scene")
    assert result.recognized_faces == [] and result.unknown_faces == []
    assert await FaceRecognitionEvent.all().count() == 0


async def test_enroll_recognize_delete_round_trip(face_service, device):
    record = await face_service.enroll(enroll_body("alice"))

    first = await face_service.recognize(image_b64("alice"), location="Front door")
    assert [f.id for f in first.recognized_faces] == [record.id]
    assert first.recognized_faces[0].bounding_box.width == 100

    await face_service.delete(record.id)
    assert "alice" not in device.faces

    # A terminal whose library lags behind still reports the deleted face
    device.search_override = [{"faceID": "alice", "similarity": 97}]
    second = await face_service.recognize(image_b64("alice"))
    assert second.recognized_faces == []
    assert [(f.face_id, f.reason) for f in second.unknown_faces] == [("alice", "not_enrolled")]
    assert await event_types() == [
        FaceEventType.ENROLLED,
        FaceEventType.RECOGNIZED,
        FaceEventType.DELETED,
        FaceEventType.DETECTED,
    ]


# ---------------------------------------------------------------- update / delete


async def test_update_changes_mutable_fields_and_logs_them(face_service):
    record = await face_service.enroll(enroll_body("alice"))

    updated = await face_service.update(record.id, {"confidence": 0.5, "isActive": False})

    assert updated.confidence == 0.5
    assert updated.is_active is False
    assert updated.face_id == "alice"
    event = await FaceRecognitionEvent.get(event_type=FaceEventType.UPDATED)
    assert sorted(event.metadata["updatedFields"]) == ["confidence", "isActive"]


@pytest.mark.parametrize(
    "patch",
    [{"faceId": "bob"}, {"userId": "u2"}, {}, {"confidence": None}, {"nickname": "x"}, {"confidence": 3}],
)
async def test_update_rejections(face_service, patch):
    record = await face_service.enroll(enroll_body("alice"))
    with pytest.raises(ValidationError):
        await face_service.update(record.id, patch)
    assert await FaceRecognitionEvent.filter(event_type=FaceEventType.UPDATED).count() == 0


async def test_update_missing_record_is_not_found(face_service):
    with pytest.raises(NotFoundError):
        await face_service.update("00000000-0000-0000-0000-000000000000", {"confidence": 0.5})


async def test_malformed_record_id_is_validation_error(face_service):
    with pytest.raises(ValidationError):
        await face_service.get_record("not-a-uuid")


async def test_device_delete_failure_keeps_local_record(face_service, device):
    record = await face_service.enroll(enroll_body("alice"))
    device.delete_failure = failure_envelope("faceNotExist")

    with pytest.raises(IsapiOperationError):
        await face_service.delete(record.id)

    assert await FaceRecord.filter(id=record.id).exists()
    assert FaceEventType.DELETED not in await event_types()


async def test_delete_sends_device_delete_before_local_removal(face_service, device):
    record = await face_service.enroll(enroll_body("alice"))
    await face_service.delete(record.id)

    assert device.calls[-1] == ("DELETE", "/ISAPI/Intelligent/FDLib/FaceDataRecord")
    assert not await FaceRecord.filter(id=record.id).exists()
    event = await FaceRecognitionEvent.get(event_type=FaceEventType.DELETED)
    assert event.metadata["reason"] == "deleted"
    assert event.face_record_id == record.id


# ---------------------------------------------------------------- cleanup


async def test_cleanup_purges_only_old_inactive_records(face_service, device):
    for face_id in ("active-1", "active-2", "old-inactive", "new-inactive"):
        await face_service.enroll(enroll_body(face_id))
    await FaceRecord.filter(face_id__in=["old-inactive", "new-inactive"]).update(is_active=False)
    long_ago = datetime.now(timezone.utc) - timedelta(days=31)
    await FaceRecord.filter(face_id__in=["old-inactive", "active-1"]).update(created_at=long_ago)
    device_calls = len(device.calls)

    result = await face_service.cleanup()

    assert result.deleted_count == 1
    assert result.retention_days == 30
    remaining = sorted(r.face_id for r in await FaceRecord.all())
    assert remaining == ["active-1", "active-2", "new-inactive"]
    event = await FaceRecognitionEvent.get(event_type=FaceEventType.DELETED)
    assert event.face_id == "old-inactive"
    assert event.metadata["reason"] == "retention_cleanup"
    assert len(device.calls) == device_calls


async def test_cleanup_rejects_negative_retention(face_service):
    with pytest.raises(ValidationError):
        await face_service.cleanup(-1)


# ---------------------------------------------------------------- cache


async def test_record_listing_is_cached_and_invalidated_on_write(face_service, cache):
    await face_service.enroll(enroll_body("alice"))
    first = await face_service.get_records(1, 10)
    assert first.total == 1
    assert len(cache._index[RECORDS_CACHE_PREFIX]) == 1

    await face_service.enroll(enroll_body("bob"))
    second = await face_service.get_records(1, 10)
    assert second.total == 2


async def test_cached_listing_is_served_until_invalidated(face_service):
    await face_service.enroll(enroll_body("alice"))
    await face_service.get_records(1, 10)

    # Direct store writes bypass invalidation
    await FaceRecord.filter(face_id="alice").update(confidence=0.1)
    stale = await face_service.get_records(1, 10)
    assert stale.items[0].confidence == 0.9


async def test_single_record_cache_dropped_after_update(face_service):
    record = await face_service.enroll(enroll_body("alice"))
    assert (await face_service.get_record(record.id)).confidence == 0.9

    await face_service.update(record.id, {"confidence": 0.4})
    assert (await face_service.get_record(record.id)).confidence == 0.4


async def test_single_record_reads_are_not_prefix_indexed(face_service, cache):
    record = await face_service.enroll(enroll_body("alice"))
    await face_service.get_record(record.id)

    assert record_cache_key(record.id) in cache._data
    assert RECORD_CACHE_PREFIX not in cache._index


async def test_records_filters_and_pagination(face_service):
    for face_id in ("a", "b", "c"):
        await face_service.enroll(enroll_body(face_id))
    await face_service.enroll(enroll_body("d", userId="shared"))
    await face_service.enroll(enroll_body("e", userId="shared"))

    page = await face_service.get_records(1, 2)
    assert page.total == 5
    assert page.total_pages == 3
    assert len(page.items) == 2

    shared = await face_service.get_records(1, 10, {"userId": "shared"})
    assert sorted(r.face_id for r in shared.items) == ["d", "e"]


# ---------------------------------------------------------------- webhook


def signed_webhook(**overrides) -> dict:
    body = {
        "eventType": "FACE_RECOGNIZED",
        "faceId": "alice",
        "confidence": 0.93,
        "timestamp": "2026-10-18T09:30:00+02:00",
        "camera": {"id": "gate-2", "location": "Gate"},
    }
    body.update(overrides)
    return {**body, "signature": sign_body(body, WEBHOOK_SECRET)}


async def test_webhook_event_links_known_face(face_service):
    record = await face_service.enroll(enroll_body("alice"))

    event = await face_service.handle_webhook(signed_webhook())

    assert event.event_type is FaceEventType.RECOGNIZED
    assert event.face_record_id == record.id
    assert event.camera_id == "gate-2"
    assert event.timestamp == datetime(2026, 10, 18, 7, 30, tzinfo=timezone.utc)
    assert event.metadata["webhookEvent"] is True


async def test_webhook_for_unknown_face_is_still_stored(face_service):
    event = await face_service.handle_webhook(signed_webhook(faceId="stranger", eventType="UNKNOWN"))
    assert event.face_record_id is None
    assert event.face_id == "stranger"


async def test_webhook_bad_signature_writes_nothing(face_service):
    body = signed_webhook()
    body["confidence"] = 0.1
    with pytest.raises(WebhookSignatureError):
        await face_service.handle_webhook(body)
    assert await FaceRecognitionEvent.all().count() == 0


# ---------------------------------------------------------------- device passthrough


async def test_connection_status_reports_device_info(face_service, device):
    status = await face_service.test_connection()
    assert status.success is True
    assert status.device_info["model"] == "DS-K1T671M"

    device.offline = True
    status = await face_service.test_connection()
    assert status.success is False
    assert status.device_info is None


async def test_setup_webhook_defaults_to_configured_url(face_service, device):
    result = await face_service.setup_webhook()
    assert result.url == "http://facegate.test/face-recognition/webhook"
    assert b"facegate.test" in device.requests[-1].content


async def test_snapshot_is_jpeg_data_uri(face_service):
    uri = await face_service.capture_snapshot()
    encoded = uri.split(",", 1)[1]
    assert base64.b64decode(encoded).startswith(b"\xff\xd8\xff")
