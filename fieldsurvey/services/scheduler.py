"""Sync scheduler — runs a full sync cycle every SYNC_INTERVAL_SECONDS."""

import asyncio
import logging

from fieldsurvey.core.config import settings
from fieldsurvey.services.sync.manager import SyncManager

logger = logging.getLogger(__name__)


async def run_sync_cycle(manager: SyncManager) -> None:
    result = await manager.sync_all()
    if result.push.outcomes or result.pull_error:
        logger.info(
            "Sync cycle: %d synced, %d failed, pull %s",
            len(result.push.synced),
            len(result.push.failed),
            "failed" if result.pull_error else "ok",
        )


async def sync_loop(manager: SyncManager, interval: int | None = None) -> None:
    """Background loop that runs a push-then-pull cycle on a fixed interval."""
    interval = interval or settings.SYNC_INTERVAL_SECONDS
    logger.info("Sync scheduler started (interval: %ds)", interval)

    if not settings.SYNC_ON_STARTUP:
        await asyncio.sleep(interval)

    while True:
        try:
            await run_sync_cycle(manager)
        except Exception:
            logger.exception("Error in sync loop")

        await asyncio.sleep(interval)
