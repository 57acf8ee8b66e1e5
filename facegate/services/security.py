import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from facegate.config import DEFAULT_WEBHOOK_SECRET, settings

log = logging.getLogger("facegate.security")

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(api_key: Optional[str] = Security(api_key_header)) -> None:
    """Guard admin routes with ``X-API-Key`` when ADMIN_API_KEY is configured; open otherwise."""
    expected = settings.ADMIN_API_KEY
    if not expected:
        return
    if not api_key or not hmac.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
        log.warning("Rejected admin request with missing or invalid API key")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key")


def insecure_production_settings() -> list:
    """Names of settings that still hold development defaults"""
    problems = []
    secret = settings.FACE_WEBHOOK_SECRET or ""
    if secret == DEFAULT_WEBHOOK_SECRET or len(secret) < 32:
        problems.append("FACE_WEBHOOK_SECRET")
    if not settings.HIKVISION_PASSWORD:
        problems.append("HIKVISION_PASSWORD")
    return problems
