# src/payhook/infrastructure/observability/metrics.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Prometheus metrics (registry-aware, hot-reload safe).

Accessors return a collector bound to the **current**
``prometheus_client.REGISTRY``. Each collector is created once per registry;
when tests swap the default registry the cache resets, so there are no
duplicate-registration errors.

Example:
    get_webhook_ingest_total().labels(provider="stripe", outcome="accepted").inc()
"""

from __future__ import annotations

import threading
from typing import Final, TypeVar

import prometheus_client as prom
from prometheus_client import Counter, Histogram
from prometheus_client.metrics import MetricWrapperBase

__all__ = [
    "get_idempotency_requests_total",
    "get_webhook_batch_duration_seconds",
    "get_webhook_dispatch_total",
    "get_webhook_ingest_total",
]

TMetric = TypeVar("TMetric", bound=MetricWrapperBase)

_BUCKETS: Final[tuple[float, ...]] = (
    0.010,
    0.050,
    0.100,
    0.250,
    0.500,
    1.000,
    2.500,
    5.000,
    10.000,
    30.000,
    60.000,
)

_registry_id: int | None = None
_cache: dict[str, MetricWrapperBase] = {}
_lock = threading.RLock()


def _ensure_registry() -> None:
    """Reset the cache if the active registry changed."""
    global _registry_id
    rid = id(prom.REGISTRY)
    if _registry_id != rid:
        _cache.clear()
        _registry_id = rid


def _lookup_existing(name: str, kind: type[TMetric]) -> TMetric | None:
    """Return a collector already registered under ``name`` on the active registry."""
    mapping = getattr(prom.REGISTRY, "_names_to_collectors", None)
    if not isinstance(mapping, dict):
        return None
    # Counters register under both ``name`` and ``name_total``.
    for candidate in (name, f"{name}_total"):
        collector = mapping.get(candidate)
        if isinstance(collector, kind):
            return collector
    return None


def _get_or_create(
    kind: type[TMetric], name: str, help_text: str, labelnames: tuple[str, ...], **kwargs: object
) -> TMetric:
    with _lock:
        _ensure_registry()
        cached = _cache.get(name)
        if isinstance(cached, kind):
            return cached

        existing = _lookup_existing(name, kind)
        if existing is None:
            existing = kind(name, help_text, labelnames, registry=prom.REGISTRY, **kwargs)
        _cache[name] = existing
        return existing


def get_webhook_ingest_total() -> Counter:
    """Counter of ingest attempts by provider and outcome.

    Outcomes: ``accepted``, ``duplicate``, ``invalid_signature``,
    ``unknown_provider``, ``invalid_payload``.
    """
    return _get_or_create(
        Counter,
        "payhook_webhook_ingest",
        "Webhook ingest attempts",
        ("provider", "outcome"),
    )


def get_webhook_dispatch_total() -> Counter:
    """Counter of dispatch results by event type and outcome."""
    return _get_or_create(
        Counter,
        "payhook_webhook_dispatch",
        "Webhook dispatch results",
        ("event_type", "outcome"),
    )


def get_webhook_batch_duration_seconds() -> Histogram:
    """Histogram of the wall time spent dispatching one ready batch."""
    return _get_or_create(
        Histogram,
        "payhook_webhook_batch_duration_seconds",
        "Wall time to dispatch one ready batch",
        (),
        buckets=_BUCKETS,
    )


def get_idempotency_requests_total() -> Counter:
    """Counter of guarded requests by outcome.

    Outcomes: ``executed``, ``replayed``, ``in_progress``, ``mismatch``,
    ``invalid``, ``released``.
    """
    return _get_or_create(
        Counter,
        "payhook_idempotency_requests",
        "Idempotency guard outcomes",
        ("outcome",),
    )
