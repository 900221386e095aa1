"""
Async database session management for the job store.

The engine is built from DatabaseConfig (settings.yaml `database:`):

  postgresql://  → postgresql+asyncpg://     pooled (pool_size / max_overflow)
  mysql://       → mysql+aiomysql://         pooled
  sqlite://      → sqlite+aiosqlite://       no pool settings

Usage:
    await init_db()                    # create tables (API start-up, worker script)
    async with get_session() as db:    # one transaction per store call
        await db.execute(...)
    await close_db()                   # dispose the engine
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import DatabaseConfig, get_settings
from database.models import Base

logger = structlog.get_logger()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

_ASYNC_DRIVERS = (
    ("postgresql+psycopg2://", "postgresql+asyncpg://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("mysql+pymysql://", "mysql+aiomysql://"),
    ("mysql://", "mysql+aiomysql://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)


def _to_async_url(db_url: str) -> str:
    """Swap a sync driver prefix for the async driver the stores need."""
    for sync_prefix, async_prefix in _ASYNC_DRIVERS:
        if db_url.startswith(sync_prefix):
            return async_prefix + db_url[len(sync_prefix):]
    return db_url


def _engine_kwargs(db_url: str, config: Optional[DatabaseConfig] = None) -> dict[str, Any]:
    config = config or DatabaseConfig()
    kwargs: dict[str, Any] = {"echo": config.echo}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        return kwargs
    kwargs.update(
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_recycle=config.pool_recycle,
        pool_pre_ping=True,
    )
    return kwargs


def _redact(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


def get_engine(db_url: Optional[str] = None, config: Optional[DatabaseConfig] = None) -> AsyncEngine:
    """Return the process-wide engine, creating it from config on first use."""
    global _engine
    if _engine is None:
        config = config or get_settings().database
        if db_url:
            config = replace(config, url=db_url)
        url = _to_async_url(config.url)
        _engine = create_async_engine(url, **_engine_kwargs(url, config))
        logger.info("database_engine_created",
                    dialect=_engine.dialect.name,
                    url=_redact(str(_engine.url)),
                    pool_size=None if url.startswith("sqlite") else config.pool_size)
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Commit on clean exit, roll back and re-raise otherwise."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(db_url: Optional[str] = None, config: Optional[DatabaseConfig] = None) -> None:
    engine = get_engine(db_url, config)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized",
                dialect=engine.dialect.name,
                tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("database_closed")
