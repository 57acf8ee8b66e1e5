import os
import time

import psutil
from fastapi import APIRouter, Depends, Request
from tortoise import Tortoise
from tortoise.exceptions import BaseORMException

from facegate.dependencies import get_cache, get_isapi_client
from facegate.models.face import FaceRecord
from facegate.services.cache import CacheStore
from facegate.services.isapi_client import IsapiClient

router = APIRouter(prefix="/ops", tags=["ops"])

STARTED_AT = time.time()


@router.get("/db-health")
async def db_health():
    """Round-trips the default connection and reports the face-record count"""
    try:
        await Tortoise.get_connection("default").execute_query("SELECT 1")
        return {"db_ok": True, "face_records": await FaceRecord.all().count()}
    except (BaseORMException, OSError) as e:
        return {"db_ok": False, "error": str(e)}


@router.get("/cache-health")
async def cache_health(cache: CacheStore = Depends(get_cache)):
    return {"cache_ok": await cache.ping(), "backend": type(cache).__name__}


@router.get("/device-health")
async def device_health(device: IsapiClient = Depends(get_isapi_client)):
    started = time.perf_counter()
    ok = await device.test_connection()
    return {
        "device_ok": ok,
        "device_url": device.base_url,
        "latency_ms": round((time.perf_counter() - started) * 1000, 1),
    }


@router.get("/metrics")
async def process_metrics():
    try:
        memory = psutil.Process().memory_info().rss
        system = psutil.virtual_memory()
        memory_mb, system_percent = round(memory / 1024 / 1024, 2), system.percent
    except (psutil.Error, OSError):
        memory_mb, system_percent = 0, 0

    return {
        "uptime_seconds": round(time.time() - STARTED_AT, 2),
        "process_rss_mb": memory_mb,
        "system_memory_percent": system_percent,
        "process_id": os.getpid(),
    }


@router.get("/routes")
async def list_routes(request: Request):
    routes = [
        {"path": r.path, "methods": sorted(getattr(r, "methods", None) or []), "name": r.name}
        for r in request.app.routes
        if hasattr(r, "path")
    ]
    return {"count": len(routes), "routes": routes}
