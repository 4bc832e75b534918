"""
Health Check Endpoints

Provides:
1. /health - Database connectivity, resolution cache stats and uptime
2. /health/live - Simple liveness probe (for k8s)
3. /health/ready - Readiness probe (for k8s)
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Application start time for uptime calculation
_start_time = datetime.now(timezone.utc)


async def _check_database(request: Request) -> Dict[str, Any]:
    """Run ``SELECT 1`` through the application's session factory."""
    session_factory = request.app.state.session_factory
    started = time.perf_counter()
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": "Database unavailable"}
    return {"status": "healthy", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """
    Comprehensive health check endpoint.

    Returns 200 if the database answers, 503 otherwise. Cache statistics
    are informational.
    """
    db_check = await _check_database(request)
    uptime = datetime.now(timezone.utc) - _start_time
    healthy = db_check["status"] == "healthy"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "uptime": str(uptime).split(".")[0],
            "checks": {
                "database": db_check,
                "cache": request.app.state.cache.stats(),
            },
        },
    )


@router.get("/health/live")
async def liveness_probe() -> Response:
    """If the server responds, it's alive."""
    return Response(content="OK", media_type="text/plain")


@router.get("/health/ready")
async def readiness_probe(request: Request) -> JSONResponse:
    db_check = await _check_database(request)
    if db_check["status"] == "healthy":
        return JSONResponse(content={"status": "ready", "database": "connected"}, status_code=200)
    return JSONResponse(
        content={"status": "not_ready", "reason": db_check.get("error", "Database unavailable")},
        status_code=503,
    )
