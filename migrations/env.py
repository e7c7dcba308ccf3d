# migrations/env.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Alembic Environment (migrations/env.py)

Purpose:
    Run payhook migrations offline (SQL script) or online through an async
    engine, against the project metadata.

Design:
    - Loads env vars from .env + .env.<ENVIRONMENT> (without overriding exported vars).
    - Resolves the database URL from ``DATABASE_URL`` or alembic.ini.
    - Refuses to run if ENVIRONMENT is missing.
    - Keeps the version table next to the payhook tables (``DB_SCHEMA``).
    - Logs only masked connection information.

Environment variables:
    ENVIRONMENT         Required. Any value accepted by ``payhook.config.settings``.
    DATABASE_URL        Async SQLAlchemy URL.
    DB_SCHEMA           Optional schema for payhook tables.
    ECHO_SQL            If "1", enable SQL echo in online runs.
    ALEMBIC_SHOW_URL    If "1", log masked URL during runs.

Usage:
    ENVIRONMENT=development alembic upgrade head
    ENVIRONMENT=development alembic upgrade head --sql
"""

from __future__ import annotations

import asyncio
import logging
import logging.config
import os
from pathlib import Path
from urllib.parse import urlparse, urlunparse

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

config = context.config

if config.config_file_name is not None:
    logging.config.fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

_VERSION_TABLE = "alembic_version"


def _load_env_files() -> None:
    """Load .env and .env.<ENVIRONMENT> from the repo root (no override)."""
    root = Path(__file__).resolve().parents[1]

    base = root / ".env"
    if base.exists():
        load_dotenv(base, override=False)

    env = (os.getenv("ENVIRONMENT") or "").strip().lower()
    if env:
        env_file = root / f".env.{env}"
        if env_file.exists():
            load_dotenv(env_file, override=False)


_load_env_files()

# DB_SCHEMA is read at import time by the models module, so import after env loading.
from payhook.infrastructure.database.models import metadata as target_metadata  # noqa: E402
from payhook.infrastructure.database.models.base import DEFAULT_DB_SCHEMA  # noqa: E402


def _mask_url(url: str) -> str:
    parts = urlparse(url)
    user = parts.username or ""
    host = parts.hostname or ""
    port = f":{parts.port}" if parts.port else ""
    auth = f"{user}:****@" if user else ""
    return urlunparse((parts.scheme, f"{auth}{host}{port}", parts.path or "", "", "", ""))


def _get_db_url() -> str:
    """Resolve the database URL from ``DATABASE_URL`` or alembic.ini.

    Raises:
        RuntimeError: If no database URL can be resolved.
    """
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("Database URL not configured (DATABASE_URL/sqlalchemy.url).")
    return url


def _require_environment() -> str:
    env = (os.getenv("ENVIRONMENT") or "").strip().lower()
    if not env:
        raise RuntimeError(
            "ENVIRONMENT is required for migrations (e.g., ENVIRONMENT=development)."
        )
    return env


def _resolve_url() -> str:
    env = _require_environment()
    url = _get_db_url()
    if os.getenv("ALEMBIC_SHOW_URL") == "1":
        logger.info("Using DATABASE_URL (masked) for %s: %s", env, _mask_url(url))
    return url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (SQL script output)."""
    context.configure(
        url=_resolve_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        include_schemas=DEFAULT_DB_SCHEMA is not None,
        version_table=_VERSION_TABLE,
        version_table_schema=DEFAULT_DB_SCHEMA,
    )

    with context.begin_transaction():
        context.run_migrations()


def _configure_and_run(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        include_schemas=DEFAULT_DB_SCHEMA is not None,
        version_table=_VERSION_TABLE,
        version_table_schema=DEFAULT_DB_SCHEMA,
    )

    with context.begin_transaction():
        context.run_migrations()


async def _run_migrations_async() -> None:
    connectable = create_async_engine(
        _resolve_url(), echo=os.getenv("ECHO_SQL") == "1", poolclass=pool.NullPool
    )
    async with connectable.connect() as connection:
        await connection.run_sync(_configure_and_run)
    await connectable.dispose()


def run_migrations_online() -> None:
    """Entry point used by Alembic for online migrations."""
    asyncio.run(_run_migrations_async())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
