"""Point the configured terminal's HTTP host notification at this service's webhook."""

import argparse
import asyncio
import logging

from facegate.config import settings
from facegate.services.isapi_client import IsapiClient

log = logging.getLogger("facegate.scripts")


async def main(url: str, host_id: int) -> None:
    async with IsapiClient.from_settings(settings) as client:
        if not await client.test_connection():
            raise SystemExit(f"Device {client.base_url} is not reachable")
        await client.set_event_listener(url, host_id)
        log.info("Device %s now posts events to %s (host %s)", client.base_url, url, host_id)
        await client.test_event_listener(host_id)
        log.info("Test notification sent")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--url", default=settings.webhook_url)
    parser.add_argument("--host-id", type=int, default=1)
    args = parser.parse_args()
    asyncio.run(main(args.url, args.host_id))
