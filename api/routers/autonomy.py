"""
Autonomy API Router

Endpoints for inspecting behaviors, toggling them and running one on demand.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from pulse_agent.agent.context import AgentContext
from pulse_agent.utils.logger import setup_logger
from ..dependencies import get_agent_context

logger = setup_logger(__name__)

router = APIRouter(prefix="/api/autonomy", tags=["autonomy"])


# ==================== Request/Response Models ====================

class BehaviorResponse(BaseModel):
    id: str
    name: str
    description: str
    priority: int
    enabled: bool


class BehaviorUpdate(BaseModel):
    """Request model for updating a behavior."""
    enabled: Optional[bool] = None
    config: Dict[str, Any] = Field(default_factory=dict, description="Behavior config overrides")


class ManualTrigger(BaseModel):
    issue_id: Optional[str] = None
    team_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _to_response(behavior) -> BehaviorResponse:
    return BehaviorResponse(
        id=behavior.id,
        name=behavior.name,
        description=behavior.description,
        priority=behavior.priority,
        enabled=behavior.enabled,
    )


# ==================== Endpoints ====================

@router.get("/behaviors", response_model=List[BehaviorResponse])
async def list_behaviors(context: AgentContext = Depends(get_agent_context)):
    behaviors = sorted(context.engine.behaviors.values(), key=lambda b: b.priority, reverse=True)
    return [_to_response(b) for b in behaviors]


@router.put("/behaviors/{behavior_id}", response_model=BehaviorResponse)
async def update_behavior(
    behavior_id: str,
    update: BehaviorUpdate,
    context: AgentContext = Depends(get_agent_context)
):
    registry = context.registry
    try:
        if update.config:
            registry.update_behavior_config(behavior_id, update.config)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown behavior: {behavior_id}")
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid configuration: {e}")

    if update.enabled is not None and not registry.set_behavior_enabled(behavior_id, update.enabled):
        raise HTTPException(status_code=404, detail=f"Unknown behavior: {behavior_id}")

    behavior = context.engine.behaviors.get(behavior_id)
    if behavior is None:
        raise HTTPException(status_code=404, detail=f"Behavior {behavior_id} is not registered")
    logger.info(f"[ENGINE] Behavior {behavior_id} updated via API")
    return _to_response(behavior)


@router.post("/behaviors/{behavior_id}/trigger")
async def trigger_behavior(
    behavior_id: str,
    request: ManualTrigger,
    context: AgentContext = Depends(get_agent_context)
) -> Dict[str, Any]:
    if behavior_id not in context.engine.behaviors:
        raise HTTPException(status_code=404, detail=f"Behavior {behavior_id} is not registered")

    issue = None
    if request.issue_id:
        issue = await context.linear.get_issue(request.issue_id)
        if issue is None:
            raise HTTPException(status_code=404, detail=f"Issue {request.issue_id} not found")

    result = await context.webhooks.trigger_manual_behavior(
        behavior_id,
        issue=issue,
        team={"id": request.team_id} if request.team_id else None,
        metadata=request.metadata,
    )
    return {
        "triggered": result is not None,
        "result": result.to_dict() if result else None,
    }


@router.get("/metrics")
async def get_metrics(context: AgentContext = Depends(get_agent_context)) -> Dict[str, Any]:
    return context.registry.get_metrics()
