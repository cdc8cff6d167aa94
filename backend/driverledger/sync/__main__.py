"""Run the synchronizer on its own, without the HTTP API.

Usage:
    cd backend
    python -m driverledger.sync
"""

import asyncio
import logging
import sys

from driverledger.config import Settings, configure_logging
from driverledger.sync.runtime import sync_runtime
from driverledger.sync.synchronizer import SyncStartupError

logger = logging.getLogger("driverledger.sync")


async def run(settings: Settings) -> None:
    async with sync_runtime(settings):
        await asyncio.Event().wait()


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        asyncio.run(run(settings))
    except SyncStartupError as e:
        logger.error("Failed to start sync service: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
