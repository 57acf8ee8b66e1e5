#!/usr/bin/env python3
"""
Initialize the FaceGate database (container entrypoint / first deploy)
"""

import asyncio
import logging
import sys

from tortoise.exceptions import BaseORMException

from facegate.db import close_db, init_db

log = logging.getLogger("facegate.init_db")


async def initialize_database() -> bool:
    log.info("Initializing FaceGate database...")
    try:
        await init_db(max_retries=10, delay_seconds=2.0)
        log.info("Database initialized successfully")
        return True
    except (BaseORMException, OSError) as e:
        log.error("Database initialization failed: %s", e)
        return False
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    success = asyncio.run(initialize_database())
    if not success:
        sys.exit(1)
