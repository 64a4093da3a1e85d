"""
HubSpot pull task for Celery workers.

Runs the incremental HubSpot sync for the managed domain on the beat
schedule or on demand.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro: Any) -> Any:
    """Run an async function in a sync context (for Celery tasks).

    Creates a fresh event loop and disposes any existing database connections
    to avoid 'Future attached to different loop' errors with asyncpg.
    """
    from models.database import dispose_engine

    # Dispose existing connections - they're tied to a previous (closed) event loop
    dispose_engine()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _pull_hubspot_data() -> dict[str, Any]:
    """
    Internal async function running one full pull.

    Returns the run status with per-account counts and failed operations.
    """
    from services.sync_orchestrator import pull_data_from_hubspot

    started_at = datetime.now(timezone.utc).isoformat()
    try:
        accounts = await pull_data_from_hubspot()
    except Exception as e:
        error_msg = str(e)
        logger.error(f"HubSpot pull failed: {error_msg}")
        return {
            "status": "failed",
            "error": error_msg,
            "started_at": started_at,
        }

    failed_operations = sum(len(result["failed"]) for result in accounts.values())
    logger.info(
        f"HubSpot pull complete for {len(accounts)} accounts, "
        f"{failed_operations} failed operations"
    )
    return {
        "status": "completed",
        "accounts": accounts,
        "failed_operations": failed_operations,
        "started_at": started_at,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }


@celery_app.task(bind=True, name="workers.tasks.sync.pull_hubspot_data")
def pull_hubspot_data(self: Any) -> dict[str, Any]:
    """
    Celery task pulling recently modified HubSpot records.

    This is the hourly task that runs via Beat schedule.

    Returns:
        Dict with run status and per-account results
    """
    logger.info(f"Task {self.request.id}: Starting HubSpot pull")
    return run_async(_pull_hubspot_data())
