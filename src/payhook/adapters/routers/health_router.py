# src/payhook/adapters/routers/health_router.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Liveness and Prometheus scrape endpoints.

Layer:
    adapters/routers
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/healthz", include_in_schema=False)
async def healthz() -> JSONResponse:
    """Report that the process is serving requests."""
    return JSONResponse({"status": "ok"})


@router.get("/metrics", include_in_schema=False)
async def metrics_probe() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = ["router"]
