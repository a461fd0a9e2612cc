# backend/qachat/routes/v1/health.py
"""
Health check endpoints for monitoring and load balancer probes.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text

from ...api.dependencies.database import get_session_factory
from ...core.broadcast import is_broadcast_initialized
from ...core.config import settings
from ...core.constants import API_VERSION, BRAND_NAME
from ...schemas.message_responses import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _database_ok(request: Request) -> bool:
    db = get_session_factory(request)()
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"[HEALTH] Database check failed: {e}")
        return False
    finally:
        db.close()


@router.get("", response_model=HealthResponse)
def health_check(request: Request, response: Response) -> HealthResponse:
    """
    Health check endpoint.

    Reports the database, the fan-out backend and the number of live
    sockets in this worker. Degraded dependencies return 503.
    """
    hub = getattr(request.app.state, "hub", None)
    checks = {
        "database": _database_ok(request),
        "broadcast": is_broadcast_initialized(),
        "connections": hub.registry.connection_count() if hub is not None else 0,
    }
    healthy = bool(checks["database"]) and bool(checks["broadcast"])
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        service=f"{BRAND_NAME.lower().replace(' ', '-')}-api",
        version=API_VERSION,
        environment=settings.environment,
        checks=checks,
    )
