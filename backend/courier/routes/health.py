# backend/courier/routes/health.py
"""
Health check endpoints for monitoring and load balancer probes.
"""

import asyncio
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import SQLAlchemyError

from ..api.dependencies.realtime import get_connection_registry
from ..core.config import settings
from ..database import check_database_connection
from ..schemas.health import HealthResponse, LiveResponse
from ..services.messaging.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    registry: ConnectionRegistry = Depends(get_connection_registry),
) -> HealthResponse:
    """
    Health check endpoint.

    Reports store connectivity and the number of connected users. Returns
    503 when the store cannot be reached.
    """
    database_ok = True
    try:
        await asyncio.to_thread(check_database_connection)
    except SQLAlchemyError as exc:
        logger.error(f"Health check: database unreachable: {exc}")
        database_ok = False
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        service="courier",
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        database="ok" if database_ok else "unreachable",
        connected_users=registry.user_count,
        live_connections=registry.connection_count,
    )


@router.get("/live", response_model=LiveResponse)
def liveness() -> LiveResponse:
    """Lightweight liveness probe that doesn't hit the database."""
    return LiveResponse(status="ok")
