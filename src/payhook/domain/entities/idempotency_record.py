# src/payhook/domain/entities/idempotency_record.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Idempotency record entity.

Purpose:
    Represent one client-supplied idempotency key, the fingerprint of the
    request that claimed it, and (once completed) the response to replay.

Layer:
    domain

Notes:
    Expiry is lazy: a record whose ``expires_at`` lies in the past is treated
    as absent by the guard even if storage still holds it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from payhook.domain.enums.processing import IdempotencyStatus
from payhook.domain.exceptions.idempotency import IdempotencyError, InvalidIdempotencyKey

MAX_KEY_LENGTH = 255


def validate_idempotency_key(key: str) -> str:
    """Validate a client-supplied idempotency key.

    Args:
        key: Raw key as received from the caller.

    Returns:
        The key, unchanged.

    Raises:
        InvalidIdempotencyKey: If the key is blank or longer than
            :data:`MAX_KEY_LENGTH`.
    """
    if not key or not key.strip():
        raise InvalidIdempotencyKey("Idempotency key must not be empty.")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidIdempotencyKey(
            "Idempotency key is too long.",
            details={"max_length": MAX_KEY_LENGTH, "length": len(key)},
        )
    return key


BODY_ENCODINGS = frozenset({"json", "base64"})


@dataclass(frozen=True)
class StoredResponse:
    """Response captured from a completed operation.

    Args:
        status_code: HTTP-style status code of the result.
        body: ``None`` when the result had no body. Otherwise a JSON value
            when ``encoding`` is ``"json"``, or the base64 text of the raw
            bytes when it is ``"base64"``.
        media_type: Original ``Content-Type``, if any.
        encoding: How ``body`` is represented.
    """

    status_code: int
    body: Any = None
    media_type: str | None = None
    encoding: str = "json"

    def __post_init__(self) -> None:
        if not 100 <= self.status_code <= 599:
            raise IdempotencyError(
                "status_code must be a valid HTTP status.",
                details={"status_code": self.status_code},
            )
        if self.encoding not in BODY_ENCODINGS:
            raise IdempotencyError(
                "Unknown response body encoding.", details={"encoding": self.encoding}
            )
        if self.encoding == "base64" and not isinstance(self.body, str):
            raise IdempotencyError("A base64 body must be a string.")


@dataclass(frozen=True)
class IdempotencyRecord:
    """Idempotency slot for a single key.

    Args:
        key: Client-supplied key, unique while unexpired.
        request_hash: Fingerprint of the request that claimed the key.
        status: ``PROCESSING`` until the operation finishes, then ``COMPLETED``.
        created_at: Claim time (UTC).
        expires_at: Time after which the record is treated as absent.
        response: Stored response; present only when ``COMPLETED``.

    Raises:
        InvalidIdempotencyKey: If ``key`` or ``request_hash`` is blank.
        IdempotencyError: If the status/response pairing is inconsistent.
    """

    key: str
    request_hash: str
    status: IdempotencyStatus
    created_at: datetime
    expires_at: datetime
    response: StoredResponse | None = None

    def __post_init__(self) -> None:
        validate_idempotency_key(self.key)
        if not self.request_hash:
            raise InvalidIdempotencyKey("request_hash must not be empty.")
        if self.expires_at <= self.created_at:
            raise IdempotencyError(
                "expires_at must be after created_at.",
                details={
                    "created_at": self.created_at.isoformat(),
                    "expires_at": self.expires_at.isoformat(),
                },
            )
        if self.status is IdempotencyStatus.COMPLETED and self.response is None:
            raise IdempotencyError("A completed record must carry a response.")
        if self.status is IdempotencyStatus.PROCESSING and self.response is not None:
            raise IdempotencyError("A processing record cannot carry a response.")

    @classmethod
    def start(
        cls, *, key: str, request_hash: str, now: datetime, ttl_seconds: int
    ) -> IdempotencyRecord:
        """Build a fresh ``PROCESSING`` record expiring ``ttl_seconds`` after ``now``."""
        return cls(
            key=key,
            request_hash=request_hash,
            status=IdempotencyStatus.PROCESSING,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def matches(self, request_hash: str) -> bool:
        return self.request_hash == request_hash

    def complete(self, response: StoredResponse) -> IdempotencyRecord:
        """Return the ``COMPLETED`` form of this record.

        Raises:
            IdempotencyError: If the record is already completed.
        """
        if self.status is IdempotencyStatus.COMPLETED:
            raise IdempotencyError(
                "Idempotency record is already completed.", details={"key": self.key}
            )
        return replace(self, status=IdempotencyStatus.COMPLETED, response=response)


__all__ = [
    "BODY_ENCODINGS",
    "MAX_KEY_LENGTH",
    "IdempotencyRecord",
    "StoredResponse",
    "validate_idempotency_key",
]
