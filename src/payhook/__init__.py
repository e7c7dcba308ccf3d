# src/payhook/__init__.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Payhook: webhook delivery processing and request idempotency."""

__version__ = "0.1.0"
