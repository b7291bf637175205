"""
Async engine and session factory.

SQLite (aiosqlite) is the development default; production points
DATABASE_URL at PostgreSQL (asyncpg). Schema changes ship as Alembic
revisions, ``init_db`` only exists for local runs and tests.
"""

from typing import Any, AsyncIterator, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fasterclaw.config import settings
from fasterclaw.db.models import Base


def engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            # Every session must see the same in-memory database
            options["poolclass"] = StaticPool
        else:
            # Provisioning workers and requests write concurrently
            options["connect_args"]["timeout"] = 30
        return options
    return {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True}


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(url, echo=echo, **engine_options(url))


engine = build_engine(settings.database_url, echo=settings.debug)

# Instances and tasks are read after commit by background workers
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session."""
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
