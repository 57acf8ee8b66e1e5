#!/usr/bin/env python3
"""
Aerich migration runner for FaceGate. Configuration lives under [tool.aerich]
in pyproject.toml; this applies pending migrations, creating the schema on a
fresh database.
"""

import logging
import subprocess
import sys

log = logging.getLogger("facegate.migrations")


def run(*args: str) -> bool:
    log.info("Running aerich %s", " ".join(args))
    result = subprocess.run(["aerich", *args], capture_output=True, text=True)
    if result.stdout.strip():
        log.info(result.stdout.strip())
    if result.returncode != 0:
        log.error("aerich %s failed: %s", " ".join(args), result.stderr.strip())
        return False
    return True


def setup_migrations() -> bool:
    # init-db fails harmlessly when the aerich table already exists
    run("init-db")
    return run("upgrade")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    if not setup_migrations():
        sys.exit(1)
