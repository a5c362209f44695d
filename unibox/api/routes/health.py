"""
Health check endpoints.
"""

import time
from typing import Any

from fastapi import APIRouter, Request

from unibox.core.config.settings import settings
from unibox.core.logging.logger import get_app_logger

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Application status plus the state of the shared services."""
    start_time = time.time()
    logger = get_app_logger()

    state = request.app.state
    http_session = getattr(state, "http_session", None)
    services = {
        "http_session": (
            "operational" if http_session is not None and not http_session.closed
            else "unavailable"
        ),
        "repository": type(getattr(state, "repository", None)).__name__,
        "meta_app": "configured" if settings.has_meta_app else "not_configured",
    }
    is_healthy = services["http_session"] == "operational"

    health_data = {
        "status": "healthy" if is_healthy else "unhealthy",
        "timestamp": time.time(),
        "response_time_ms": round((time.time() - start_time) * 1000, 2),
        "environment": {
            "environment": settings.environment,
            "version": settings.version,
            "log_level": settings.log_level,
            "graph_api_version": settings.graph_api_version,
        },
        "services": services,
    }

    logger.debug(f"Health check completed - Status: {health_data['status']}")
    return health_data
