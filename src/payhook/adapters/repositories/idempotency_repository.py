# src/payhook/adapters/repositories/idempotency_repository.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""SQLAlchemy implementation of the idempotency storage port.

Layer:
    adapters/repositories

Notes:
    The claim is a single statement::

        INSERT INTO idempotency_keys (...) VALUES (...)
        ON CONFLICT (key) DO UPDATE SET ... WHERE idempotency_keys.expires_at < :now
        RETURNING key

    A fresh key inserts; an expired key is overwritten in place; a live key
    returns no row and the claim fails.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, null, select, update

from payhook.adapters.repositories.base_repository import BaseRepository
from payhook.domain.entities.idempotency_record import IdempotencyRecord, StoredResponse
from payhook.domain.enums.processing import IdempotencyStatus
from payhook.infrastructure.database.models.idempotency import IdempotencyKey


class SqlAlchemyIdempotencyRepository(BaseRepository[IdempotencyKey]):
    """Idempotency records stored in ``idempotency_keys``."""

    async def get_by_key(self, key: str) -> IdempotencyRecord | None:
        row = await self.fetch_optional(select(IdempotencyKey).where(IdempotencyKey.key == key))
        return None if row is None else self._to_entity(row)

    async def insert_if_absent(self, record: IdempotencyRecord, *, now: datetime) -> bool:
        stmt = self.insert(IdempotencyKey).values(
            key=record.key,
            request_hash=record.request_hash,
            status=record.status.value,
            created_at=record.created_at,
            updated_at=record.created_at,
            expires_at=record.expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[IdempotencyKey.key],
            set_={
                "request_hash": stmt.excluded.request_hash,
                "status": stmt.excluded.status,
                "status_code": null(),
                "response_body": null(),
                "response_media_type": null(),
                "response_encoding": null(),
                "created_at": stmt.excluded.created_at,
                "updated_at": stmt.excluded.updated_at,
                "expires_at": stmt.excluded.expires_at,
            },
            where=IdempotencyKey.expires_at < now,
        ).returning(IdempotencyKey.key)
        return await self.execute_claim(stmt) is not None

    async def complete(
        self, key: str, *, request_hash: str, response: StoredResponse, now: datetime
    ) -> bool:
        stmt = (
            update(IdempotencyKey)
            .where(
                IdempotencyKey.key == key,
                IdempotencyKey.request_hash == request_hash,
                IdempotencyKey.status == IdempotencyStatus.PROCESSING.value,
            )
            .values(
                status=IdempotencyStatus.COMPLETED.value,
                status_code=response.status_code,
                response_body=response.body if response.body is not None else null(),
                response_media_type=response.media_type,
                response_encoding=response.encoding,
                updated_at=now,
            )
        )
        return await self.execute_write(stmt) == 1

    async def release(self, key: str, *, request_hash: str) -> bool:
        stmt = delete(IdempotencyKey).where(
            IdempotencyKey.key == key,
            IdempotencyKey.request_hash == request_hash,
            IdempotencyKey.status == IdempotencyStatus.PROCESSING.value,
        )
        return await self.execute_write(stmt) == 1

    async def purge_expired(self, *, now: datetime) -> int:
        return await self.execute_write(
            delete(IdempotencyKey).where(IdempotencyKey.expires_at < now)
        )

    def _to_entity(self, row: IdempotencyKey) -> IdempotencyRecord:
        status = IdempotencyStatus(row.status)
        response = None
        if status is IdempotencyStatus.COMPLETED and row.status_code is not None:
            response = StoredResponse(
                status_code=row.status_code,
                body=row.response_body,
                media_type=row.response_media_type,
                encoding=row.response_encoding or "json",
            )
        return IdempotencyRecord(
            key=row.key,
            request_hash=row.request_hash,
            status=status,
            created_at=self.require_utc(row.created_at, "created_at"),
            expires_at=self.require_utc(row.expires_at, "expires_at"),
            response=response,
        )


__all__ = ["SqlAlchemyIdempotencyRepository"]
