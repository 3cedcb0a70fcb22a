"""
Health and Status Endpoints
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from pulse_agent import __version__
from pulse_agent.agent.context import AgentContext
from pulse_agent.utils.logger import setup_logger
from ..dependencies import get_agent_context

logger = setup_logger(__name__)
router = APIRouter(tags=["health"])

# Track API start time for uptime calculation
API_START_TIME = time.time()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Liveness probe."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": int(time.time() - API_START_TIME),
    }


@router.get("/health/behaviors")
async def behavior_health(context: AgentContext = Depends(get_agent_context)) -> Dict[str, Any]:
    """
    Behavior health and engine metrics.

    Returns:
        Health monitor status, engine metrics and scheduler state
    """
    health = context.registry.get_health_status()
    scheduler = context.scheduler
    schedules = {}
    if scheduler is not None:
        schedules = {
            behavior_id: {
                "active": schedule.active,
                "last_run": schedule.last_run.isoformat() if schedule.last_run else None,
                "next_run": schedule.next_run.isoformat() if schedule.next_run else None,
            }
            for behavior_id, schedule in scheduler.schedules.items()
        }
    if not health.get("healthy", True):
        logger.warning(f"[ENGINE] Unhealthy behaviors: {health.get('unhealthy')}")
    return {
        "status": "healthy" if health.get("healthy", True) else "degraded",
        "health": health,
        "metrics": context.registry.get_metrics(),
        "scheduler": {
            "running": bool(scheduler and scheduler.is_running),
            "schedules": schedules,
        },
    }
