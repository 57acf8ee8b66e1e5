"""
Pytest configuration and fixtures for FaceGate tests
"""

import os

# Test-friendly environment before any facegate import reads settings
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")
os.environ.setdefault("METRICS_ENABLED", "1")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ["FACE_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ADMIN_API_KEY"] = ""

import httpx  # noqa: E402
import pytest  # noqa: E402

from facegate.config import Settings  # noqa: E402
from facegate.db import close_db, init_db  # noqa: E402
from facegate.services.cache import MemoryCacheStore  # noqa: E402
from facegate.services.digest_auth import DeviceCredentials  # noqa: E402
from facegate.services.face_recognition import FaceRecognitionService  # noqa: E402
from facegate.services.isapi_client import IsapiClient  # noqa: E402

from .fakes import DEVICE_URL, WEBHOOK_SECRET, FakeIsapiDevice  # noqa: E402


@pytest.fixture(scope="function")
async def db_setup():
    """Fresh in-memory SQLite database for each test."""
    await init_db("sqlite://:memory:")
    try:
        yield
    finally:
        await close_db()


@pytest.fixture
def test_settings():
    return Settings(
        FACE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        FACE_RECOGNITION_CONFIDENCE_THRESHOLD=0.7,
        FACE_RECOGNITION_STORAGE_RETENTION_DAYS=30,
        CACHE_TTL_SECONDS=60,
        BASE_URL="http://facegate.test",
    )


@pytest.fixture
def device():
    return FakeIsapiDevice()


@pytest.fixture
async def isapi_client(device):
    client = IsapiClient(DEVICE_URL, DeviceCredentials("admin", "secret"), transport=device.transport())
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def cache():
    return MemoryCacheStore(default_ttl=60)


@pytest.fixture
async def face_service(db_setup, isapi_client, cache, test_settings):
    return FaceRecognitionService(isapi_client, cache, settings=test_settings)


@pytest.fixture
async def api_client(db_setup, isapi_client, cache):
    from facegate.dependencies import get_cache, get_isapi_client
    from facegate.main import app

    app.dependency_overrides[get_isapi_client] = lambda: isapi_client
    app.dependency_overrides[get_cache] = lambda: cache
    app.state.cache = cache
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
