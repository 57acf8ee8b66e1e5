import logging
import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from facegate.config import settings

log = logging.getLogger("facegate.http")

# Responses under these prefixes can carry face images and biometric templates
NO_STORE_PREFIXES = ("/face-recognition", "/hikvision")

BASE_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
}

API_CSP = "default-src 'none'; frame-ancestors 'none'; base-uri 'none';"
# Swagger UI and ReDoc pull their bundles from jsDelivr
DOCS_CSP = (
    "default-src 'self'; "
    "img-src 'self' data: https:; "
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "connect-src 'self';"
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        response: Response = await call_next(request)
        path = request.url.path
        response.headers.update(BASE_HEADERS)
        response.headers["Content-Security-Policy"] = DOCS_CSP if path.startswith(("/docs", "/redoc")) else API_CSP
        if path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        if (settings.APP_ENV or "").strip().lower() == "production":
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response


class ErrorEnvelopeMiddleware(BaseHTTPMiddleware):
    """Unexpected exceptions become a 500 in the same envelope as domain errors."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            log.exception(
                "Unhandled error on %s %s [rid=%s]",
                request.method,
                request.url.path,
                getattr(request.state, "rid", "-"),
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": "Internal server error",
                    "details": {},
                    "path": request.url.path,
                },
            )
        response.headers["server-timing"] = f"total;dur={(time.perf_counter() - start) * 1000:.2f}"
        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]
        request.state.rid = rid
        response: Response = await call_next(request)
        response.headers["x-request-id"] = rid
        log.debug("%s %s -> %s [rid=%s]", request.method, request.url.path, response.status_code, rid)
        return response
