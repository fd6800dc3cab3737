"""Database engine construction and session management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config.settings import settings

# Import models so they are attached to Base.metadata before table creation
from app.models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: Optional[str] = None, *, echo: Optional[bool] = None) -> AsyncEngine:
    """Create an async engine with environment-appropriate pooling."""

    url = url or settings.database.url
    is_sqlite = url.startswith("sqlite")

    engine_options: dict[str, Any] = {
        "echo": settings.debug if echo is None else echo,
        "future": True,
    }
    if not is_sqlite:
        engine_options["pool_pre_ping"] = True

    if is_sqlite or settings.database.serverless or settings.debug:
        # Disable pooling when working with serverless databases (or in debug).
        engine_options["poolclass"] = NullPool

    engine = create_async_engine(url, **engine_options)

    if is_sqlite:
        # Cascades and SET NULL rules are declared on the foreign keys.
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a session inside one transaction: commit on exit, roll back on error."""

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping(engine: AsyncEngine) -> None:
    """Run a trivial query; raises when the database is unreachable."""

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def init_models(engine: AsyncEngine) -> None:
    """Create database tables if they do not exist."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Ensured database tables in default schema.")


async def dispose_engine(engine: AsyncEngine) -> None:
    """Dispose of the engine and release pooled connections."""

    await engine.dispose()
