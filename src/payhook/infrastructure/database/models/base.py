# src/payhook/infrastructure/database/models/base.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Declarative base and shared column types for payhook tables.

Purpose:
    Provide the project-wide SQLAlchemy Declarative Base with deterministic
    naming conventions (stable Alembic diffs), an optional schema, and the
    portable column types used by the models.

Layer:
    infrastructure/database

Notes:
    * ``DB_SCHEMA`` is read from the environment at import time so Alembic
      and the application agree on table placement. Unset means the
      connection's default schema.
    * ``JSONType`` renders as JSONB on PostgreSQL and JSON elsewhere, so the
      repositories also run against SQLite in tests.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime

from sqlalchemy import JSON, MetaData
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import DateTime

__all__ = [
    "DEFAULT_DB_SCHEMA",
    "NAMING_CONVENTIONS",
    "Base",
    "JSONType",
    "TimestampMixin",
    "metadata",
    "now_utc",
]

#: Schema for all payhook tables; ``None`` uses the connection default.
DEFAULT_DB_SCHEMA: str | None = os.getenv("DB_SCHEMA") or None

#: Ref: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTIONS: dict[str, str] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTIONS, schema=DEFAULT_DB_SCHEMA)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def now_utc() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative Base for all payhook ORM models."""

    metadata = metadata


class TimestampMixin:
    """Mixin providing ``created_at`` and ``updated_at`` audit columns (UTC)."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=now_utc,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=now_utc,
        onupdate=now_utc,
    )
