# src/payhook/domain/services/retry_backoff.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Exponential retry backoff with proportional jitter.

Purpose:
    Compute when a failed webhook event is next due.

Layer:
    domain/services

Notes:
    delay = min(cap, base * 2**retry_count), scaled by a uniform factor in
    ``[1 - jitter_ratio, 1 + jitter_ratio]`` and capped again. With
    ``base > 0`` and ``jitter_ratio < 1`` the delay is always positive, so
    ``next_retry_at`` is strictly after the failure time.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta

# 2**32 seconds already exceeds any sensible cap.
_MAX_EXPONENT = 32


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Backoff configuration for webhook redelivery.

    Args:
        base_seconds: Delay multiplied by ``2**retry_count``.
        cap_seconds: Upper bound for any single delay.
        jitter_ratio: Half-width of the uniform jitter band, as a fraction of
            the delay.

    Raises:
        ValueError: If the configuration could yield a non-positive delay.
    """

    base_seconds: float = 1.0
    cap_seconds: float = 3600.0
    jitter_ratio: float = 0.1

    def __post_init__(self) -> None:
        if self.base_seconds <= 0:
            raise ValueError("base_seconds must be positive")
        if self.cap_seconds < self.base_seconds:
            raise ValueError("cap_seconds must be >= base_seconds")
        if not 0 <= self.jitter_ratio < 1:
            raise ValueError("jitter_ratio must be in [0, 1)")

    def delay_seconds(self, retry_count: int, *, rng: random.Random | None = None) -> float:
        """Return the delay before attempt number ``retry_count + 1``.

        Args:
            retry_count: Failures recorded so far (after incrementing).
            rng: Optional random source for deterministic tests.

        Returns:
            float: Delay in seconds, in ``(0, cap_seconds]``.
        """
        exponent = min(max(retry_count, 0), _MAX_EXPONENT)
        delay = min(self.cap_seconds, self.base_seconds * (2**exponent))
        if self.jitter_ratio:
            source = rng if rng is not None else random
            delay *= 1 + source.uniform(-self.jitter_ratio, self.jitter_ratio)  # noqa: S311
        return min(delay, self.cap_seconds)

    def next_attempt_at(
        self, retry_count: int, *, now: datetime, rng: random.Random | None = None
    ) -> datetime:
        return now + timedelta(seconds=self.delay_seconds(retry_count, rng=rng))


__all__ = ["RetryBackoffPolicy"]
