"""rq jobs. Run a worker with: rq worker face_maintenance --with-scheduler"""

import asyncio
import logging

from facegate.config import settings
from facegate.db import close_db, init_db
from facegate.services.cache import build_cache
from facegate.services.face_recognition import FaceRecognitionService
from facegate.services.isapi_client import IsapiClient
from facegate.services.queue import enqueue_cleanup

log = logging.getLogger("facegate.jobs")


async def _run_cleanup() -> int:
    await init_db()
    device = IsapiClient.from_settings(settings)
    cache = build_cache(settings)
    try:
        result = await FaceRecognitionService(device, cache).cleanup()
        return result.deleted_count
    finally:
        await device.aclose()
        await cache.aclose()
        await close_db()


def cleanup_face_records(reschedule: bool = True) -> int:
    count = asyncio.run(_run_cleanup())
    log.info("Scheduled cleanup removed %d face records", count)
    hours = settings.FACE_CLEANUP_INTERVAL_HOURS
    if reschedule and hours > 0:
        enqueue_cleanup(delay_seconds=hours * 3600)
    return count
