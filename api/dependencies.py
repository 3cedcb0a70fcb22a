"""
API Dependencies
Shared dependencies for FastAPI routers. The AgentContext is built by the
lifespan and kept on app.state; routers receive it through Depends.
"""
from fastapi import HTTPException, Request

from pulse_agent.agent.context import AgentContext
from pulse_agent.utils.logger import setup_logger

logger = setup_logger(__name__)


def get_agent_context(request: Request) -> AgentContext:
    """Return the AgentContext built at startup (503 while it is missing)."""
    context = getattr(request.app.state, "agent_context", None)
    if context is None:
        logger.error("Agent context requested before startup completed")
        raise HTTPException(status_code=503, detail="Agent is not initialized")
    return context
