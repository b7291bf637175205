"""
Tests for the periodic instance status sync
"""

import pytest

from fasterclaw.db import Instance, async_session_maker
from fasterclaw.services.instance_service import InstanceLifecycle
from fasterclaw.services.scheduler import setup_scheduler


def test_scheduler_disabled(registry, queue, cipher, settings):
    disabled = settings.model_copy(update={"status_sync_interval_seconds": 0})
    assert setup_scheduler(async_session_maker, registry, queue, cipher, disabled) is None


def test_scheduler_registers_sync_job(registry, queue, cipher, settings):
    scheduler = setup_scheduler(async_session_maker, registry, queue, cipher, settings)
    job = scheduler.get_job("instance_status_sync")
    assert job is not None
    assert job.max_instances == 1
    assert job.coalesce is True


@pytest.mark.asyncio
async def test_sync_all_updates_changed_instances(running_instance, provider, registry, queue, cipher, settings):
    provider.live_status = "STOPPED"

    changed = await InstanceLifecycle.sync_all(async_session_maker, registry, queue, cipher, settings)

    assert changed == 1
    async with async_session_maker() as db:
        assert (await db.get(Instance, running_instance["id"])).status == "STOPPED"

    assert await InstanceLifecycle.sync_all(async_session_maker, registry, queue, cipher, settings) == 0
