"""
Instance lifecycle: ownership, subscription gating, state machine and chat.

    CREATING -> RUNNING | FAILED
    RUNNING  <-> STOPPED
    FAILED   -> CREATING (retry)
    *        -> DELETED  (soft delete)

Every transition runs under the instance's advisory lock and is applied with a
conditional UPDATE, so a concurrent writer that got there first yields 409.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fasterclaw.config import Settings
from fasterclaw.db.models import (
    ChatMessage,
    Instance,
    InstanceIntegration,
    InstanceStatus,
    Subscription,
    SubscriptionStatus,
    User,
)
from fasterclaw.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PayloadTooLargeError,
    ServiceError,
    UnsupportedMediaError,
)
from fasterclaw.services.encryption import DecryptionError, TokenCipher, mask_token
from fasterclaw.services.providers import PROVIDER_FIELDS, InstanceProvider, ProviderRegistry, ProviderTarget
from fasterclaw.services.provisioning import ProvisioningQueue
from fasterclaw.services.transitions import transition

logger = logging.getLogger(__name__)

ACCEPTED_MIME_TYPES = frozenset({
    "text/plain",
    "text/csv",
    "text/markdown",
    "application/json",
    "application/pdf",
    "application/xml",
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "application/zip",
    "application/gzip",
})
UPLOAD_CHUNK_BYTES = 64 * 1024

UPDATABLE_FIELDS = ("name", "ai_model", "region")

# Statuses that do not count towards the plan's instance limit
_UNCOUNTED = (InstanceStatus.DELETED.value, InstanceStatus.FAILED.value)
# Statuses the periodic sync leaves alone
_UNSYNCED = (InstanceStatus.DELETED.value, InstanceStatus.FAILED.value, InstanceStatus.CREATING.value)
_ALIVE = [s.value for s in InstanceStatus if s is not InstanceStatus.DELETED]


def chat_session_id(user_id: str, instance_id: str) -> str:
    return f"web-{user_id}-{instance_id}"


def compose_chat_message(message: str, file_path: Optional[str] = None) -> str:
    if file_path:
        return f"[Attached file: {file_path}]\n\n{message}"
    return message


async def validate_telegram_token(http: httpx.AsyncClient, token: str) -> Dict[str, Any]:
    """Check a bot token against Telegram's getMe."""
    try:
        response = await http.get(f"https://api.telegram.org/bot{token}/getMe", timeout=10)
        data = response.json()
    except (httpx.HTTPError, ValueError):
        logger.exception("Failed to validate Telegram token")
        return {"valid": False, "error": "Failed to connect to Telegram API"}

    if data.get("ok") and data.get("result"):
        return {
            "valid": True,
            "botUsername": data["result"].get("username"),
            "botName": data["result"].get("first_name"),
        }
    return {"valid": False, "error": data.get("description") or "Invalid bot token"}


class InstanceLifecycle:
    def __init__(
        self,
        db: AsyncSession,
        registry: ProviderRegistry,
        queue: ProvisioningQueue,
        cipher: TokenCipher,
        settings: Settings,
    ):
        self.db = db
        self.registry = registry
        self.queue = queue
        self.cipher = cipher
        self.settings = settings
        self.locks = queue.locks

    # ── Lookup ──────────────────────────────────────────────

    async def get_owned(self, user_id: str, instance_id: str) -> Instance:
        """Instance owned by ``user_id``; absent, foreign and DELETED all read as 404."""
        result = await self.db.execute(
            select(Instance).where(
                Instance.id == instance_id,
                Instance.user_id == user_id,
                Instance.status != InstanceStatus.DELETED.value,
            )
        )
        instance = result.scalar_one_or_none()
        if instance is None:
            raise NotFoundError("Instance not found")
        return instance

    async def list_for(self, user_id: str) -> List[Instance]:
        result = await self.db.execute(
            select(Instance)
            .where(Instance.user_id == user_id, Instance.status != InstanceStatus.DELETED.value)
            .order_by(Instance.created_at.desc())
        )
        return list(result.scalars().all())

    def masked_telegram_token(self, instance: Instance) -> Optional[str]:
        if not instance.encrypted_telegram_bot_token:
            return None
        try:
            return mask_token(self.cipher.decrypt(instance.encrypted_telegram_bot_token))
        except DecryptionError:
            logger.warning("Stored Telegram token for instance %s cannot be decrypted", instance.id)
            return None

    # ── Create / update ─────────────────────────────────────

    async def check_subscription(self, user_id: str) -> None:
        if not self.settings.subscription_required:
            return
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
        )
        subscriptions = list(result.scalars().all())
        active = next((s for s in subscriptions if s.status == SubscriptionStatus.ACTIVE.value), None)
        if active is None:
            raise ForbiddenError("Active subscription required. Please subscribe to create instances.")

        count = await self.db.scalar(
            select(func.count(Instance.id)).where(
                Instance.user_id == user_id,
                Instance.status.not_in(_UNCOUNTED),
            )
        )
        if active.instance_limit != -1 and count >= active.instance_limit:
            raise ForbiddenError(
                f"Instance limit reached ({active.instance_limit}). "
                "Please upgrade your plan or delete existing instances."
            )

    async def create(
        self,
        user: User,
        name: str,
        region: Optional[str] = None,
        ai_model: Optional[str] = None,
        provider: Optional[str] = None,
        telegram_bot_token: Optional[str] = None,
    ) -> Instance:
        await self.check_subscription(user.id)
        kind = provider or self.registry.default
        self.registry.get(kind)

        instance = Instance(
            user_id=user.id,
            name=name,
            provider=kind,
            status=InstanceStatus.CREATING.value,
            region=region or self.settings.fly_default_region,
            ai_model=ai_model or "claude-sonnet-4-0",
            encrypted_telegram_bot_token=self.cipher.encrypt(telegram_bot_token) if telegram_bot_token else None,
        )
        self.db.add(instance)
        await self.db.commit()
        await self.db.refresh(instance)
        logger.info("Instance %s created for user %s on %s", instance.id, user.id, kind)

        await self.queue.enqueue(self.db, instance.id, kind="create")
        return instance

    async def update(self, instance: Instance, fields: Dict[str, Any]) -> Instance:
        values = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS and v is not None}
        async with self.locks(instance.id):
            await self.db.refresh(instance)
            if instance.status != InstanceStatus.STOPPED.value:
                raise InvalidStateError("Instance must be stopped before updating configuration")
            if values and not await transition(
                self.db, instance.id, [InstanceStatus.STOPPED.value], **values
            ):
                raise ConflictError("Instance status changed concurrently")
            await self.db.refresh(instance)
        return instance

    # ── Start / stop / delete / retry ───────────────────────

    async def _power(
        self,
        instance: Instance,
        expected: InstanceStatus,
        target_status: InstanceStatus,
        operation: Callable[[InstanceProvider], Callable[[ProviderTarget], Awaitable[None]]],
    ) -> Instance:
        async with self.locks(instance.id):
            await self.db.refresh(instance)
            if instance.status != expected.value:
                raise InvalidStateError(
                    f"Instance is not {'stopped' if expected is InstanceStatus.STOPPED else 'running'}"
                )
            provider = self.registry.get(instance.provider)
            target = ProviderTarget.from_instance(instance)
            if not provider.has_resources(target):
                raise InvalidStateError("Instance has no provider resources")

            await operation(provider)(target)

            if not await transition(self.db, instance.id, [expected.value], status=target_status.value):
                raise ConflictError("Instance status changed concurrently")
            await self.db.refresh(instance)
        logger.info("Instance %s is now %s", instance.id, instance.status)
        return instance

    async def start(self, instance: Instance) -> Instance:
        return await self._power(instance, InstanceStatus.STOPPED, InstanceStatus.RUNNING, lambda p: p.start_instance)

    async def stop(self, instance: Instance) -> Instance:
        return await self._power(instance, InstanceStatus.RUNNING, InstanceStatus.STOPPED, lambda p: p.stop_instance)

    async def _teardown(self, instance: Instance) -> None:
        provider = self.registry.get(instance.provider)
        try:
            await provider.delete_instance(ProviderTarget.from_instance(instance))
        except Exception:
            logger.exception("Failed to tear down provider resources for instance %s", instance.id)

    async def delete(self, instance: Instance) -> None:
        async with self.locks(instance.id):
            await self.db.refresh(instance)
            if instance.status == InstanceStatus.DELETED.value:
                raise NotFoundError("Instance not found")
            await self._teardown(instance)
            await self.db.execute(
                delete(InstanceIntegration).where(InstanceIntegration.instance_id == instance.id)
            )
            if not await transition(self.db, instance.id, _ALIVE, status=InstanceStatus.DELETED.value):
                raise NotFoundError("Instance not found")
        self.locks.discard(instance.id)
        logger.info("Instance %s deleted", instance.id)

    async def retry(self, instance: Instance) -> Instance:
        async with self.locks(instance.id):
            await self.db.refresh(instance)
            if instance.status != InstanceStatus.FAILED.value:
                raise InvalidStateError("Only failed instances can be retried")
            # Partial resources from the failed attempt
            await self._teardown(instance)
            cleared = {field: None for field in PROVIDER_FIELDS}
            if not await transition(
                self.db, instance.id, [InstanceStatus.FAILED.value],
                status=InstanceStatus.CREATING.value, error_message=None, **cleared,
            ):
                raise ConflictError("Instance status changed concurrently")
            await self.db.refresh(instance)
        await self.queue.enqueue(self.db, instance.id, kind="retry")
        return instance

    # ── Status sync ─────────────────────────────────────────

    async def sync(self, instance: Instance) -> Instance:
        """Pull live status from the provider and store it."""
        async with self.locks(instance.id):
            await self.db.refresh(instance)
            provider = self.registry.get(instance.provider)
            target = ProviderTarget.from_instance(instance)
            if not provider.has_resources(target):
                return instance
            observed = instance.status
            live = await provider.get_instance_status(target)
            if live == InstanceStatus.UNKNOWN.value or live == observed:
                return instance
            values: Dict[str, Any] = {"status": live}
            if live == InstanceStatus.DELETED.value:
                # Resources vanished underneath us; keep the record retryable
                values = {"status": InstanceStatus.FAILED.value, "error_message": "Provider resources no longer exist"}
            if not await transition(self.db, instance.id, [observed], **values):
                raise ConflictError("Instance status changed concurrently")
            await self.db.refresh(instance)
        logger.info("Instance %s synced: %s -> %s", instance.id, observed, instance.status)
        return instance

    @classmethod
    async def sync_all(
        cls,
        session_factory: async_sessionmaker,
        registry: ProviderRegistry,
        queue: ProvisioningQueue,
        cipher: TokenCipher,
        settings: Settings,
    ) -> int:
        """Sync every live, provisioned instance. Returns how many changed."""
        changed = 0
        async with session_factory() as db:
            result = await db.execute(select(Instance).where(Instance.status.not_in(_UNSYNCED)))
            instances = list(result.scalars().all())
            lifecycle = cls(db, registry, queue, cipher, settings)
            for instance in instances:
                before = instance.status
                try:
                    await lifecycle.sync(instance)
                except (ServiceError, httpx.HTTPError):
                    logger.exception("Status sync failed for instance %s", instance.id)
                    continue
                if instance.status != before:
                    changed += 1
        return changed

    # ── Chat ────────────────────────────────────────────────

    def _require_running(self, instance: Instance) -> None:
        if instance.status != InstanceStatus.RUNNING.value:
            raise InvalidStateError(f"Instance is not running. Current status: {instance.status}")

    async def chat(self, user: User, instance: Instance, message: str, file_path: Optional[str] = None) -> str:
        self._require_running(instance)
        sent_at = datetime.utcnow()
        provider = self.registry.get(instance.provider)
        reply = await provider.send_message(
            ProviderTarget.from_instance(instance),
            chat_session_id(user.id, instance.id),
            compose_chat_message(message, file_path),
        )
        # Reply must sort after the prompt
        replied_at = max(datetime.utcnow(), sent_at + timedelta(microseconds=1))
        self.db.add_all([
            ChatMessage(instance_id=instance.id, user_id=user.id, role="user", content=message, created_at=sent_at),
            ChatMessage(instance_id=instance.id, user_id=user.id, role="assistant", content=reply.response,
                        created_at=replied_at),
        ])
        await self.db.commit()
        return reply.response

    async def upload(
        self,
        instance: Instance,
        read: Callable[[int], Awaitable[bytes]],
        filename: str,
        mime_type: str,
    ) -> Dict[str, Any]:
        """Copy an attachment into the instance workspace.

        ``read(n)`` yields the body in chunks (``UploadFile.read``); nothing is
        read until the instance and type checks pass, and reading stops as soon
        as the size limit is crossed.
        """
        self._require_running(instance)
        if mime_type not in ACCEPTED_MIME_TYPES:
            raise UnsupportedMediaError(f"Unsupported file type: {mime_type}")

        limit = self.settings.max_upload_bytes
        buffer = bytearray()
        while True:
            chunk = await read(UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            buffer.extend(chunk)
            if len(buffer) > limit:
                logger.warning("Upload %r to instance %s exceeds %s bytes", filename, instance.id, limit)
                raise PayloadTooLargeError(f"File too large. Maximum size is {limit} bytes")
        if not buffer:
            raise InvalidStateError("Empty file")

        data = bytes(buffer)
        provider = self.registry.get(instance.provider)
        result = await provider.upload_file(ProviderTarget.from_instance(instance), data, filename)
        return {
            "filePath": result.file_path,
            "fileName": filename,
            "fileSize": len(data),
            "mimeType": mime_type,
        }

    async def history(self, user: User, instance: Instance) -> List[ChatMessage]:
        result = await self.db.execute(
            select(ChatMessage)
            .where(ChatMessage.instance_id == instance.id, ChatMessage.user_id == user.id)
            .order_by(ChatMessage.created_at, ChatMessage.id)
        )
        return list(result.scalars().all())
