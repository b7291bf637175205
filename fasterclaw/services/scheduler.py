"""
Periodic background jobs.

Uses APScheduler for in-process scheduling. Currently a single job: pulling
live instance status from the providers so that machines stopped or
destroyed outside the API are reflected in the database.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from fasterclaw.config import Settings
from fasterclaw.services.encryption import TokenCipher
from fasterclaw.services.instance_service import InstanceLifecycle
from fasterclaw.services.providers import ProviderRegistry
from fasterclaw.services.provisioning import ProvisioningQueue

logger = logging.getLogger(__name__)


def setup_scheduler(
    session_factory: async_sessionmaker,
    registry: ProviderRegistry,
    queue: ProvisioningQueue,
    cipher: TokenCipher,
    settings: Settings,
) -> Optional[AsyncIOScheduler]:
    """
    Build the scheduler with the status sync job.

    Returns None when ``STATUS_SYNC_INTERVAL_SECONDS`` is 0.
    """
    interval = settings.status_sync_interval_seconds
    if interval <= 0:
        logger.info("Instance status sync disabled")
        return None

    async def sync_instance_status():
        try:
            changed = await InstanceLifecycle.sync_all(session_factory, registry, queue, cipher, settings)
        except Exception:
            logger.exception("Instance status sync run failed")
            return
        if changed:
            logger.info("Status sync updated %d instance(s)", changed)

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sync_instance_status,
        trigger=IntervalTrigger(seconds=interval),
        id="instance_status_sync",
        name="Instance Status Sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Scheduler configured: instance status sync every %ds", interval)
    return scheduler
