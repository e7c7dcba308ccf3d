# src/payhook/adapters/repositories/base_repository.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""BaseRepository: shared mechanics for payhook repositories.

Purpose:
    * Dialect-aware ``INSERT ... ON CONFLICT`` construction (PostgreSQL and
      SQLite share the same API).
    * Conditional writes that commit immediately and report affected rows.
    * Fetch helpers that refresh identity-mapped rows.
    * UTC normalization for values read back from drivers that drop tzinfo.

Layer: adapters / repositories

Notes:
    * No business logic; repositories translate between rows and entities.
    * Every write method is one atomic statement committed before returning,
      so concurrent workers observe claims immediately.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, nulls_last
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.dml import Delete, Update

from payhook.domain.exceptions.base import DomainError

TModel = TypeVar("TModel")


class BaseRepository(Generic[TModel]):  # noqa: UP046
    """Base class for SQLAlchemy repositories."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository.

        Args:
            session: Async SQLAlchemy session bound to the target database.
        """
        self._session: AsyncSession = session

    # ------------------------------------------------------------------
    # Timestamp utilities
    # ------------------------------------------------------------------

    @staticmethod
    def as_utc(value: datetime | None) -> datetime | None:
        """Return ``value`` as an aware UTC datetime.

        SQLite returns naive datetimes; they are stored as UTC, so tzinfo is
        attached rather than converted.
        """
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @classmethod
    def require_utc(cls, value: datetime | None, column: str) -> datetime:
        """Like :meth:`as_utc` for NOT NULL columns.

        Raises:
            DomainError: If the driver returned NULL for ``column``.
        """
        converted = cls.as_utc(value)
        if converted is None:
            raise DomainError(
                f"Column {column!r} is unexpectedly NULL.", details={"column": column}
            )
        return converted

    # ------------------------------------------------------------------
    # Statement builders
    # ------------------------------------------------------------------

    def insert(self, model: type[Any]) -> Any:
        """Return a dialect-specific ``insert()`` supporting ``on_conflict_*``.

        Raises:
            NotImplementedError: For dialects without ``ON CONFLICT`` support.
        """
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise NotImplementedError(f"ON CONFLICT inserts are not supported for {dialect!r}")

    @staticmethod
    def order_by_latest(stmt: Select[Any], timestamp_col: Any, pk_col: Any) -> Select[Any]:
        """Order by ``timestamp DESC NULLS LAST, pk ASC``."""
        return stmt.order_by(nulls_last(timestamp_col.desc()), pk_col.asc())

    # ------------------------------------------------------------------
    # Execution helpers
    # ------------------------------------------------------------------

    async def fetch_optional(self, stmt: Select[Any]) -> TModel | None:
        """Execute a statement and return zero or one row."""
        res = await self._session.execute(stmt.execution_options(populate_existing=True))
        return res.scalars().first()

    async def fetch_all(self, stmt: Select[Any]) -> list[TModel]:
        """Execute a statement and return all rows as a list."""
        res = await self._session.execute(stmt.execution_options(populate_existing=True))
        return list(res.scalars().all())

    async def execute_write(self, stmt: Update | Delete) -> int:
        """Execute a conditional UPDATE/DELETE, commit, and return the row count."""
        result = await self._session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return int(getattr(result, "rowcount", 0) or 0)

    async def execute_claim(self, stmt: Any) -> Any | None:
        """Execute an ``INSERT ... RETURNING``, commit, and return the claimed key."""
        result = await self._session.execute(stmt)
        claimed = result.scalar_one_or_none()
        await self._session.commit()
        return claimed


__all__ = ["BaseRepository"]
