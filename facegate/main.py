# Top imports
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import sentry_sdk
import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from facegate import __version__
from facegate.config import settings
from facegate.core.exceptions import FaceGateError
from facegate.core.middleware import ErrorEnvelopeMiddleware, RequestIdMiddleware, SecurityHeadersMiddleware
from facegate.core.rate_limit import limiter
from facegate.db import close_db, init_db
from facegate.routers import router
from facegate.services.cache import build_cache
from facegate.services.isapi_client import IsapiClient
from facegate.services.metrics import metrics_endpoint, metrics_middleware
from facegate.services.security import insecure_production_settings

# Logging setup
logging.basicConfig(
    level=(settings.LOG_LEVEL or "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
log = logging.getLogger("facegate.app")

# Initialize Sentry if DSN is provided
if settings.SENTRY_DSN:
    sentry_sdk.init(dsn=settings.SENTRY_DSN, traces_sample_rate=0.1, environment=settings.APP_ENV)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("Starting FaceGate %s...", __version__)
    if (settings.APP_ENV or "").strip().lower() == "production":
        problems = insecure_production_settings()
        if problems:
            raise RuntimeError(f"Insecure settings for production: {', '.join(problems)}")

    await init_db()
    app.state.cache = build_cache(settings)
    app.state.isapi = IsapiClient.from_settings(settings)
    log.info("Device client targeting %s", settings.device_base_url)

    yield

    # Shutdown
    log.info("Shutting down FaceGate...")
    await app.state.isapi.aclose()
    await app.state.cache.aclose()
    await close_db()
    log.info("Database connections closed")


app = FastAPI(
    title="FaceGate API",
    description="Face enrollment, recognition and event logging against ISAPI access-control terminals",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


def _envelope(request: Request, status_code: int, error: str, message: str, details=None, headers=None):
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": details or {}, "path": request.url.path},
        headers=headers,
    )


@app.exception_handler(FaceGateError)
async def facegate_error_handler(request: Request, exc: FaceGateError):
    if exc.http_status >= 500:
        log.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
    return _envelope(request, exc.http_status, exc.code, exc.message, jsonable_encoder(exc.details))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _envelope(
        request,
        400,
        "validation_error",
        "Request validation failed",
        {"errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _envelope(
        request,
        exc.status_code,
        "http_error",
        str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include routers
app.include_router(router)
log.info("Registered routes count: %s", len(app.routes))

# Middleware setup
app.add_middleware(GZipMiddleware, minimum_size=1024)
app.add_middleware(ErrorEnvelopeMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIdMiddleware)

# Enable Prometheus metrics if METRICS_ENABLED=1
metrics_middleware(app)


@app.get("/metrics", include_in_schema=False)
async def prometheus_metrics():
    return await metrics_endpoint()


# Universal health endpoint (always present)
@app.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    uvicorn.run("facegate.main:app", host="0.0.0.0", port=8999, reload=False, log_level="info")
