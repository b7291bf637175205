"""Atomic instance status transitions."""

import asyncio
from datetime import datetime
from typing import Dict, Iterable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from fasterclaw.db.models import Instance


class InstanceLocks:
    """Per-instance in-process advisory locks."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def __call__(self, instance_id: str) -> asyncio.Lock:
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = self._locks[instance_id] = asyncio.Lock()
        return lock

    def discard(self, instance_id: str) -> None:
        lock = self._locks.get(instance_id)
        if lock is not None and not lock.locked():
            del self._locks[instance_id]


async def transition(
    db: AsyncSession,
    instance_id: str,
    expected: Iterable[str],
    **values,
) -> bool:
    """``UPDATE instances SET ... WHERE id = :id AND status IN :expected``.

    Commits and returns False when another writer moved the status first.
    """
    result = await db.execute(
        update(Instance)
        .where(Instance.id == instance_id, Instance.status.in_(list(expected)))
        .values(updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1
