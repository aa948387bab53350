"""Health check endpoints for the web adapter."""

import time
from typing import Any

import psutil
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from agent_router.adapters.web.hub import BroadcastHub
from agent_router.config import HealthConfig
from agent_router.core.registry import AgentRegistry
from agent_router.utils.telemetry import get_logger

logger = get_logger(__name__)


def check_memory(max_usage_percent: float) -> tuple[bool, dict[str, Any]]:
    """Check process memory usage against a threshold.

    Returns:
        Tuple of (within_limits, memory_info)
    """
    try:
        process = psutil.Process()
        memory_info = process.memory_info()
        memory_percent = process.memory_percent()
    except psutil.Error as e:
        logger.warning("Memory check failed", error=str(e))
        return False, {"error": str(e)}

    return memory_percent < max_usage_percent, {
        "usage_percent": memory_percent,
        "rss_mb": memory_info.rss / 1024 / 1024,
        "threshold_percent": max_usage_percent,
    }


def create_health_router(
    registry: AgentRegistry,
    hub: BroadcastHub,
    config: HealthConfig | None = None,
) -> APIRouter:
    """Create health check router.

    The probes only read from the registry and hub; none requires the
    shared secret.
    """
    config = config or HealthConfig()
    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health_check() -> dict[str, Any]:
        """Liveness plus current agent and subscriber counts."""
        return {
            "status": "ok",
            "agents": registry.count(),
            "subscribers": hub.subscriber_count,
            "timestamp": time.time(),
        }

    @router.get("/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness check endpoint.

        Returns:
            JSON response indicating if service is ready to accept traffic
        """
        memory_ok, memory_info = check_memory(config.max_memory_usage_percent)
        response_data = {
            "status": "ready" if memory_ok else "not_ready",
            "timestamp": time.time(),
            "checks": {"memory": {"healthy": memory_ok, **memory_info}},
        }
        status_code = (
            status.HTTP_200_OK if memory_ok else status.HTTP_503_SERVICE_UNAVAILABLE
        )
        return JSONResponse(content=response_data, status_code=status_code)

    @router.get("/live")
    async def liveness_check() -> dict[str, Any]:
        return {"status": "alive", "timestamp": time.time()}

    return router
