# src/payhook/infrastructure/resilience/retry.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Retry utilities (async) with jittered exponential backoff.

Used around infrastructure calls that can fail transiently, such as a
worker poll that loses its database connection.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry attempts."""

    total: int  # retries after the first attempt
    base: float  # base backoff seconds
    cap: float  # max backoff seconds
    jitter: bool = True  # full jitter

    def backoff(self, attempt: int) -> float:
        delay = min(self.cap, self.base * (2**attempt))
        if self.jitter:
            delay = random.uniform(0, delay)  # noqa: S311
        return delay


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retry_on: Callable[[Exception], bool],
) -> T:
    """Call ``fn`` until it succeeds or the retry budget is exhausted.

    Args:
        fn: Zero-arg async function to execute.
        policy: Attempt count and backoff.
        retry_on: Returns True for exceptions worth another attempt.

    Returns:
        The return value of ``fn``.

    Raises:
        Exception: The last exception when retries are exhausted or the
            exception is not retryable.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= policy.total or not retry_on(exc):
                raise
            delay = policy.backoff(attempt)
            logger.warning(
                "retry.scheduled",
                extra={
                    "extra": {
                        "attempt": attempt + 1,
                        "delay_s": round(delay, 3),
                        "exc_type": type(exc).__name__,
                    }
                },
            )
        await asyncio.sleep(delay)
        attempt += 1


__all__ = ["RetryPolicy", "retry_async"]
