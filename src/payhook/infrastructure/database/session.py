# src/payhook/infrastructure/database/session.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Async SQLAlchemy engine/session factory and DI dependency.

This module owns the application-global async engine and
``async_sessionmaker``, plus an async context manager that yields an
``AsyncSession``.

Lifecycle:
    * Call ``init_engine_and_sessionmaker(settings)`` at app startup (lifespan).
    * Use ``get_db_session()`` in request dependencies and middleware.
    * Call ``dispose_engine()`` during shutdown.

Notes:
    * Repositories commit their own atomic writes; the session wrapper only
      rolls back whatever is left open and closes the session.
    * ``create_engine_for_url`` is shared with the CLI, which builds its own
      engine per command.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from sqlalchemy.exc import IllegalStateChangeError, InvalidRequestError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from payhook.config.settings import Settings, get_settings

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def create_engine_for_url(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``database_url``.

    In-memory SQLite URLs get a single shared connection so every session
    sees the same database.

    Args:
        database_url: Async SQLAlchemy URL.
        echo: Log emitted SQL.

    Returns:
        AsyncEngine: The new engine.
    """
    if database_url.startswith("sqlite") and (
        ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:")
    ):
        return create_async_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


def init_engine_and_sessionmaker(settings: Settings) -> None:
    """Initialize the global async engine and sessionmaker (idempotent).

    Args:
        settings: Application settings providing ``database_url``.

    Raises:
        ValueError: If ``database_url`` is empty.
    """
    global _engine, _sessionmaker

    if not settings.database_url:
        raise ValueError("database_url must be configured")
    if _engine is not None:
        return

    _engine = create_engine_for_url(settings.database_url, echo=settings.database_echo)
    _sessionmaker = make_sessionmaker(_engine)


async def dispose_engine() -> None:
    """Dispose the global engine at application shutdown."""
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the initialized async sessionmaker.

    Raises:
        RuntimeError: If the sessionmaker is not yet initialized.
    """
    if _sessionmaker is None:
        raise RuntimeError("DB sessionmaker not initialized (call init_engine_and_sessionmaker)")
    return _sessionmaker


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a new ``AsyncSession``.

    Yields:
        AsyncSession: A non-expiring SQLAlchemy async session.

    Notes:
        Lifespan-less test transports are supported via lazy init.
    """
    if _sessionmaker is None:
        init_engine_and_sessionmaker(get_settings())

    session = get_sessionmaker()()
    try:
        yield session
    finally:
        try:
            tx = session.get_transaction()
            if tx and tx.is_active:
                await session.rollback()
        except InvalidRequestError:
            # Session was still provisioning a connection.
            pass

        with suppress(InvalidRequestError, IllegalStateChangeError):
            await session.close()


__all__ = [
    "create_engine_for_url",
    "dispose_engine",
    "get_db_session",
    "get_sessionmaker",
    "init_engine_and_sessionmaker",
    "make_sessionmaker",
]
