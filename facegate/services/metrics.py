"""
Prometheus metrics for FaceGate
Counters for device traffic, digest challenges, recognition outcomes and webhooks
"""

import time

from fastapi import Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from facegate.config import settings

REQUESTS_TOTAL = Counter(
    "facegate_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "facegate_http_request_seconds",
    "Request duration in seconds",
    ["method", "path"],
)

DEVICE_REQUESTS = Counter(
    "facegate_device_requests_total",
    "Requests sent to the ISAPI device",
    ["method", "outcome"],
)

DIGEST_CHALLENGES = Counter(
    "facegate_digest_challenges_total",
    "Digest challenges answered by the transport client",
)

RECOGNITION_OUTCOMES = Counter(
    "facegate_recognition_faces_total",
    "Faces returned by recognition, by outcome",
    ["outcome"],
)

WEBHOOK_OUTCOMES = Counter(
    "facegate_webhook_events_total",
    "Inbound device webhooks, by outcome",
    ["outcome"],
)

ENABLED = settings.METRICS_ENABLED


async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    if not ENABLED:
        return Response(b"metrics disabled", media_type="text/plain")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def metrics_middleware(app):
    """Add request metrics middleware to the FastAPI app"""
    if not ENABLED:
        return

    @app.middleware("http")
    async def _metrics(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        path = request.url.path
        REQUESTS_TOTAL.labels(
            method=request.method,
            path=path,
            status=str(response.status_code),
        ).inc()
        REQUEST_DURATION.labels(method=request.method, path=path).observe(time.time() - start)
        return response


def record_device_request(method: str, outcome: str):
    if ENABLED:
        DEVICE_REQUESTS.labels(method=method.upper(), outcome=outcome).inc()


def record_digest_challenge():
    if ENABLED:
        DIGEST_CHALLENGES.inc()


def record_recognition(outcome: str, count: int = 1):
    if ENABLED and count:
        RECOGNITION_OUTCOMES.labels(outcome=outcome).inc(count)


def record_webhook(outcome: str):
    if ENABLED:
        WEBHOOK_OUTCOMES.labels(outcome=outcome).inc()
