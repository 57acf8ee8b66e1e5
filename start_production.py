#!/usr/bin/env python3
"""
FaceGate production startup script
"""

import logging

import uvicorn

from facegate.config import settings
from facegate.services.queue import enqueue_cleanup

log = logging.getLogger("facegate.startup")


def start_production_server():
    base = settings.BASE_URL.rstrip("/")
    log.info("Starting FaceGate production server")
    log.info("API documentation: %s/docs", base)
    log.info("Device webhook target: %s", settings.webhook_url)

    # Seed the self-rescheduling retention job (no-op with the inline backend)
    enqueue_cleanup()

    uvicorn.run(
        "facegate.main:app",
        host="0.0.0.0",
        port=8999,
        reload=False,
        workers=2,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    start_production_server()
