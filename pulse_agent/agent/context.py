"""
Agent Context

Explicit wiring of every long-lived component. The API lifespan and the
CLI each build one and pass it down; nothing reaches for a global.
"""
from dataclasses import dataclass
from typing import Optional

from .executor import CommandExecutor
from .intent.command_interpreter import CommandInterpreter, ParserConfig
from .mention_handler import MentionHandler
from .parsers.parameter_extractor import ParameterExtractor
from .parsers.parameter_validator import ParameterValidator
from ..autonomy.engine import AutonomousBehaviorEngine, EngineConfig
from ..autonomy.registry import BehaviorRegistry
from ..autonomy.scheduler import BehaviorScheduler
from ..autonomy.webhooks import WebhookIntegration
from ..integrations.error_handler import IntegrationErrorHandler
from ..integrations.linear import LinearClient, LinearService, TransitionRepository
from ..utils.config import Config
from ..utils.logger import setup_logger
from ..workflow.progress import ProgressEngine
from ..workflow.progress_config import ProgressConfigHolder, get_progress_config
from ..workflow.state_transitions import StateTransitionHandler

logger = setup_logger(__name__)


@dataclass
class AgentContext:
    config: Config
    progress_config: ProgressConfigHolder
    error_handler: IntegrationErrorHandler
    linear: LinearService
    progress_engine: ProgressEngine
    transitions: StateTransitionHandler
    interpreter: CommandInterpreter
    extractor: ParameterExtractor
    validator: ParameterValidator
    executor: CommandExecutor
    mention_handler: MentionHandler
    engine: AutonomousBehaviorEngine
    registry: BehaviorRegistry
    webhooks: WebhookIntegration
    scheduler: Optional[BehaviorScheduler] = None

    async def start(self) -> None:
        await self.engine.initialize()

    async def stop(self) -> None:
        await self.engine.shutdown()
        await self.linear.client.close()


def build_agent_context(config: Config, linear_client: Optional[LinearClient] = None) -> AgentContext:
    """
    Build the agent from configuration.

    Args:
        config: Loaded application configuration
        linear_client: Client to use instead of one built from config.linear

    Raises:
        ConfigValidationError: The progress overrides in config.progress are invalid
    """
    progress_config = ProgressConfigHolder(get_progress_config(config.environment))
    if config.progress:
        progress_config.update(config.progress)

    error_handler = IntegrationErrorHandler(progress_config)
    linear = LinearService(linear_client or LinearClient(config=config), error_handler)
    progress_engine = ProgressEngine(progress_config)
    transitions = StateTransitionHandler(TransitionRepository(linear), progress_config)

    interpreter = CommandInterpreter(ParserConfig.from_settings(config.parser, config.linear.agent_mention))
    extractor = ParameterExtractor()
    validator = ParameterValidator(linear)
    executor = CommandExecutor(
        tracker=linear,
        progress_engine=progress_engine,
        timeout_seconds=config.executor.command_timeout_seconds,
    )

    engine = AutonomousBehaviorEngine(EngineConfig.from_settings(config.engine))
    registry = BehaviorRegistry(engine, linear, config.engine, progress_engine)
    registered = registry.register_all()

    scheduler = None
    if config.engine.scheduler_enabled:
        scheduler = BehaviorScheduler(engine, tick_seconds=config.engine.scheduler_tick_seconds)
        engine.scheduler = scheduler

    mention_handler = MentionHandler(interpreter, extractor, validator, executor, engine)
    webhooks = WebhookIntegration(
        engine,
        tracker=linear,
        mention_handler=mention_handler,
        agent_mention=config.linear.agent_mention,
    )

    logger.info(
        f"Agent context built (environment={config.environment}, behaviors={registered}, "
        f"scheduler={'on' if scheduler else 'off'}, linear={'configured' if linear.is_available else 'missing'})"
    )
    return AgentContext(
        config=config,
        progress_config=progress_config,
        error_handler=error_handler,
        linear=linear,
        progress_engine=progress_engine,
        transitions=transitions,
        interpreter=interpreter,
        extractor=extractor,
        validator=validator,
        executor=executor,
        mention_handler=mention_handler,
        engine=engine,
        registry=registry,
        webhooks=webhooks,
        scheduler=scheduler,
    )
