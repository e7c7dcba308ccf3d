# src/payhook/application/interfaces/clock.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Clock port.

Layer:
    application

Notes:
    Use cases never call ``datetime.now`` directly; tests inject a clock they
    can advance.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        raise NotImplementedError


__all__ = ["Clock"]
