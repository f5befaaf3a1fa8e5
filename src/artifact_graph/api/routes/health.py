"""Health check endpoint.

GET /v1/health — reports whether the graph engine is reachable.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Service health check.

    Pings the configured graph engine. Returns "healthy" when it responds
    and "unhealthy" otherwise.
    """
    engine_ok = False
    try:
        engine_ok = await request.app.state.engine.ping()
    except Exception:
        logger.warning("health_check_engine_failed")

    return {
        "status": "healthy" if engine_ok else "unhealthy",
        "backend": request.app.state.settings.graph.backend,
        "engine": engine_ok,
        "version": "0.1.0",
    }
