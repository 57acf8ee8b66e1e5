import logging
from datetime import timedelta
from typing import Optional

import redis
from rq import Queue

from facegate.config import settings

log = logging.getLogger("facegate.jobs")

# Choose backend with env: JOBS_BACKEND=rq | inline
CLEANUP_QUEUE = "face_maintenance"
CLEANUP_JOB = "facegate.workers.tasks.cleanup_face_records"


def jobs_backend() -> str:
    return (settings.JOBS_BACKEND or "inline").strip().lower()


def get_cleanup_queue() -> Queue:
    return Queue(CLEANUP_QUEUE, connection=redis.from_url(settings.REDIS_URL))


def enqueue_cleanup(delay_seconds: int = 0) -> Optional[str]:
    """
    Queue the retention cleanup job. Delayed jobs need an rq worker started
    with ``--with-scheduler``. With the inline backend nothing is queued and
    cleanup runs only through the API.
    """
    backend = jobs_backend()
    if backend != "rq":
        log.info("[INLINE] cleanup_face_records not queued (JOBS_BACKEND=%s)", backend)
        return None
    queue = get_cleanup_queue()
    if delay_seconds > 0:
        job = queue.enqueue_in(timedelta(seconds=delay_seconds), CLEANUP_JOB)
    else:
        job = queue.enqueue(CLEANUP_JOB)
    log.info("Queued %s on %s as %s (delay %ss)", CLEANUP_JOB, CLEANUP_QUEUE, job.get_id(), delay_seconds)
    return job.get_id()
