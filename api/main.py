"""
Pulse Agent API - Main Application
Linear webhooks, health and behavior management over FastAPI
"""
import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from pulse_agent import __version__
from pulse_agent.agent.context import AgentContext, build_agent_context
from pulse_agent.integrations.slack import SlackClient, SlackEventHandler, validate_slack_settings
from pulse_agent.utils.config import ConfigDefaults, load_config
from pulse_agent.utils.logger import setup_logger

# Import routers
from api.routers import autonomy, health, linear_webhooks

logger = setup_logger(__name__)


# ============================================
# APPLICATION LIFECYCLE
# ============================================

def _start_slack(context: AgentContext) -> Optional[SlackClient]:
    """Connect the Slack mention surface when it is enabled and configured."""
    if not validate_slack_settings(context.config.slack):
        return None
    slack_client = SlackClient(context.config.slack)
    slack_client.register_event_handler(
        SlackEventHandler(slack_client, context.mention_handler, loop=asyncio.get_running_loop())
    )
    slack_client.start()
    return slack_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    A context already placed on app.state (tests) is used as-is.
    """
    # Startup
    context: Optional[AgentContext] = getattr(app.state, "agent_context", None)
    if context is None:
        config = load_config(os.getenv("PULSE_CONFIG", ConfigDefaults.CONFIG_PATH_DEFAULT))
        context = build_agent_context(config)
        app.state.agent_context = context

    await context.start()
    logger.info("[OK] Autonomous behavior engine started")

    slack_client = None
    try:
        slack_client = _start_slack(context)
    except Exception as e:
        logger.warning(f"[SLACK] Could not start Slack integration: {e}")

    yield

    # Shutdown
    if slack_client is not None:
        try:
            slack_client.stop()
        except Exception as e:
            logger.warning(f"[SLACK] Error stopping Slack client: {e}")
    try:
        await context.stop()
        logger.info("[OK] Autonomous behavior engine stopped")
    except asyncio.CancelledError:
        logger.info("Engine shutdown cancelled")
    except Exception as e:
        logger.warning(f"Error stopping engine: {e}")

    logger.info("Shutting down Pulse Agent API")


# ============================================
# APPLICATION SETUP
# ============================================

def create_app(context: Optional[AgentContext] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        context: Prebuilt AgentContext; built from configuration at startup when omitted
    """
    app = FastAPI(
        title="Pulse Agent API",
        description="Conversational ART planning and autonomous workflow automation for Linear",
        version=__version__,
        lifespan=lifespan,
    )
    if context is not None:
        app.state.agent_context = context

    app.include_router(health.router)            # Liveness and behavior health
    app.include_router(linear_webhooks.router)   # Linear webhook deliveries
    app.include_router(autonomy.router)          # Behavior management
    return app


app = create_app()


# ============================================
# MAIN ENTRY POINT
# ============================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=os.getenv("HOST", ConfigDefaults.SERVER_HOST_DEFAULT),
        port=int(os.getenv("PORT", str(ConfigDefaults.SERVER_PORT_DEFAULT))),
    )
