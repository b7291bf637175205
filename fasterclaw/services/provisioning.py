"""
Durable background provisioning.

Every provisioning attempt is written to ``provisioning_tasks`` before it is
scheduled on the event loop, so attempts interrupted by a restart are picked
up again by ``recover()`` at startup.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fasterclaw.config import Settings
from fasterclaw.db.models import Instance, InstanceStatus, ProvisioningTask, TaskStatus
from fasterclaw.errors import ServiceError
from fasterclaw.services.encryption import TokenCipher
from fasterclaw.services.providers import CreateInstanceConfig, ProviderRegistry, ProviderTarget
from fasterclaw.services.transitions import InstanceLocks, transition

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


def resolve_ai_provider(model: str) -> str:
    """Map a model name onto the vendor whose key it needs."""
    if model.startswith(("gpt-", "o1-", "o3-", "o4-")):
        return "openai"
    if model.startswith("claude-"):
        return "anthropic"
    if model.startswith("gemini-"):
        return "google"
    return "anthropic"


def api_key_for_provider(ai_provider: str, settings: Settings) -> str:
    keys = {
        "openai": ("OPENAI_KEY", settings.openai_key),
        "anthropic": ("ANTHROPIC_API_KEY", settings.anthropic_api_key),
        "google": ("GEMINI_API_KEY", settings.gemini_api_key),
    }
    env_name, key = keys[ai_provider]
    if not key:
        raise ServiceError(f'Missing API key for provider "{ai_provider}". Set {env_name}.')
    return key


class ProvisioningQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        registry: ProviderRegistry,
        cipher: TokenCipher,
        settings: Settings,
        locks: Optional[InstanceLocks] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.cipher = cipher
        self.settings = settings
        self.locks = locks or InstanceLocks()
        self._running: Set[asyncio.Task] = set()

    async def enqueue(self, db: AsyncSession, instance_id: str, kind: str = "create") -> ProvisioningTask:
        """Persist a task row, then schedule it on the loop."""
        task = ProvisioningTask(instance_id=instance_id, kind=kind, status=TaskStatus.PENDING.value)
        db.add(task)
        await db.commit()
        await db.refresh(task)
        self._spawn(task.id)
        logger.info("Queued %s provisioning task %s for instance %s", kind, task.id, instance_id)
        return task

    def _spawn(self, task_id: str) -> None:
        job = asyncio.create_task(self.run(task_id), name=f"provision-{task_id}")
        self._running.add(job)
        job.add_done_callback(self._running.discard)

    @property
    def in_flight(self) -> int:
        return len(self._running)

    async def drain(self) -> None:
        """Wait for every scheduled task (tests and shutdown)."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def recover(self) -> int:
        """Re-schedule tasks left PENDING or RUNNING by a previous process."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(ProvisioningTask).where(
                    ProvisioningTask.status.in_([TaskStatus.PENDING.value, TaskStatus.RUNNING.value])
                )
            )
            tasks = list(result.scalars().all())
            for task in tasks:
                task.status = TaskStatus.PENDING.value
            await db.commit()
        for task in tasks:
            self._spawn(task.id)
        if tasks:
            logger.info("Recovered %d provisioning task(s)", len(tasks))
        return len(tasks)

    async def run(self, task_id: str) -> None:
        async with self.session_factory() as db:
            task = await db.get(ProvisioningTask, task_id)
            if task is None or task.status not in (TaskStatus.PENDING.value, TaskStatus.RUNNING.value):
                return
            instance = await db.get(Instance, task.instance_id)
            if instance is None or instance.status != InstanceStatus.CREATING.value:
                await self._finish(db, task, TaskStatus.FAILED, "Instance is no longer awaiting provisioning")
                return

            task.status = TaskStatus.RUNNING.value
            task.attempts += 1
            task.started_at = datetime.utcnow()
            await db.commit()

            try:
                provider = self.registry.get(instance.provider)
                ai_provider = resolve_ai_provider(instance.ai_model)
                telegram_token = None
                if instance.encrypted_telegram_bot_token:
                    telegram_token = self.cipher.decrypt(instance.encrypted_telegram_bot_token)
                result = await provider.create_instance(
                    CreateInstanceConfig(
                        instance_id=instance.id,
                        user_id=instance.user_id,
                        name=instance.name,
                        ai_provider=ai_provider,
                        ai_api_key=api_key_for_provider(ai_provider, self.settings),
                        ai_model=instance.ai_model,
                        region=instance.region,
                        telegram_bot_token=telegram_token,
                    )
                )
            except Exception as e:
                logger.exception("Failed to provision instance %s", instance.id)
                message = e.message if isinstance(e, ServiceError) else "Provisioning failed"
                async with self.locks(instance.id):
                    await transition(
                        db, instance.id, [InstanceStatus.CREATING.value],
                        status=InstanceStatus.FAILED.value,
                        error_message=message[:MAX_ERROR_LENGTH],
                    )
                await self._finish(db, task, TaskStatus.FAILED, str(e) or message)
                return

            async with self.locks(instance.id):
                applied = await transition(
                    db, instance.id, [InstanceStatus.CREATING.value],
                    status=InstanceStatus.RUNNING.value,
                    error_message=None,
                    **provider.instance_fields(result),
                )
            if not applied:
                # Deleted while provisioning; do not leak the new resources
                logger.warning("Instance %s left CREATING during provisioning; tearing down", instance.id)
                try:
                    await provider.delete_instance(ProviderTarget.from_fields(provider.instance_fields(result)))
                except Exception:
                    logger.exception("Teardown of orphaned resources for %s failed", instance.id)
                await self._finish(db, task, TaskStatus.FAILED, "Instance changed state during provisioning")
                return

            logger.info("Instance %s provisioned on %s", instance.id, provider.name)
            await self._finish(db, task, TaskStatus.SUCCEEDED, None)

    async def _finish(self, db: AsyncSession, task: ProvisioningTask, status: TaskStatus, error: Optional[str]) -> None:
        task.status = status.value
        task.error = error[:MAX_ERROR_LENGTH] if error else None
        task.finished_at = datetime.utcnow()
        await db.commit()
