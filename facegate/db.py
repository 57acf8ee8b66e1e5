import asyncio
import logging
from typing import Optional

from tortoise import Tortoise
from tortoise.exceptions import DBConnectionError

from facegate.config import settings

_logger = logging.getLogger("facegate.db")

MODELS = [
    "facegate.models.face",
    "aerich.models",
]


def _tortoise_url(db_url: Optional[str] = None) -> str:
    """Normalize the database URL for Tortoise ORM (postgresql:// -> postgres://)."""
    url = (db_url or settings.DATABASE_URL).strip().strip('"').strip("'")
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgres://", 1)
    return url


def build_tortoise_config(db_url: Optional[str] = None) -> dict:
    return {
        "connections": {"default": _tortoise_url(db_url)},
        "apps": {
            "models": {
                "models": MODELS,
                "default_connection": "default",
            }
        },
        "use_tz": True,
        "timezone": "UTC",
    }


# Consumed by aerich (see [tool.aerich] in pyproject.toml)
TORTOISE_ORM = build_tortoise_config()


async def init_db(
    db_url: Optional[str] = None,
    max_retries: int = 3,
    delay_seconds: float = 0.5,
    generate_schemas: bool = True,
) -> None:
    """Initialize Tortoise in the current event loop, retrying while the database comes up."""
    config = build_tortoise_config(db_url)
    for attempt in range(1, max_retries + 1):
        try:
            await Tortoise.init(config=config)
            if generate_schemas:
                await Tortoise.generate_schemas(safe=True)
            _logger.info("Database initialized successfully")
            return
        except (DBConnectionError, OSError) as exc:
            if attempt == max_retries:
                _logger.error("Database unavailable after %s attempts: %s", attempt, exc)
                raise
            _logger.info(
                "DB init failed (attempt %s/%s): %s; retrying in %.1fs",
                attempt,
                max_retries,
                exc,
                delay_seconds,
            )
            await asyncio.sleep(delay_seconds)


async def close_db() -> None:
    """Close database connections in the current event loop."""
    await Tortoise.close_connections()
