"""Async engine lifecycle and unit-of-work helpers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from loyalty_ledger.core.settings import settings


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(url: str | None = None, *, echo: bool | None = None) -> async_sessionmaker[AsyncSession]:
    """Create the process-wide engine once and return its session factory."""

    global _engine, _session_factory

    if _session_factory is not None:
        return _session_factory

    database_url = url or settings.database_url
    _engine = create_async_engine(
        database_url,
        echo=settings.database_echo if echo is None else echo,
        future=True,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False, class_=AsyncSession)
    logger.info("Initialized database engine", dialect=_engine.dialect.name)
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database engine is not initialized; call init_engine() first")
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the engine and forget the session factory."""

    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        logger.info("Disposed database engine")
    _engine = None
    _session_factory = None


async def get_session() -> AsyncIterator[AsyncSession]:
    async with get_session_factory()() as session:
        yield session


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit the session on success; roll it back and re-raise on any failure."""

    try:
        yield session
    except BaseException:
        await session.rollback()
        raise
    else:
        await session.commit()
