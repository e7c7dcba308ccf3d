# src/payhook/infrastructure/clock/system_clock.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Wall-clock implementation of the :class:`~payhook.application.interfaces.clock.Clock` port."""

from __future__ import annotations

from datetime import UTC, datetime


class SystemClock:
    """Clock backed by the system time, always UTC-aware."""

    def now(self) -> datetime:
        return datetime.now(UTC)


__all__ = ["SystemClock"]
