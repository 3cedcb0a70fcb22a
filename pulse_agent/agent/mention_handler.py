"""
Mention Handler

One pipeline for every surface the agent is mentioned on (Linear comments,
Slack threads): parse, extract, validate, execute, then render plain text.
"""
import uuid
from typing import TYPE_CHECKING, List, Optional

from .executor import CommandExecutor, CommandResult, CommandTimeoutError
from .intent.command_interpreter import CommandInterpreter, IssueContext, ParsedIntent
from .parsers.parameter_extractor import ParameterExtractor
from .parsers.parameter_validator import ParameterValidator, ValidationResult
from ..autonomy.types import BehaviorContext, BehaviorTrigger, BehaviorTriggerType
from ..utils.logger import setup_logger

if TYPE_CHECKING:
    from ..autonomy.engine import AutonomousBehaviorEngine

logger = setup_logger(__name__)

FALLBACK_REPLY = "Sorry, I encountered an error processing your request. Please try again."


class MentionHandler:
    """
    Usage:
        handler = MentionHandler(interpreter, extractor, validator, executor)
        reply = await handler.handle("status check for team ENG", IssueContext.from_issue(issue))
    """

    def __init__(
        self,
        interpreter: CommandInterpreter,
        extractor: ParameterExtractor,
        validator: ParameterValidator,
        executor: CommandExecutor,
        engine: Optional["AutonomousBehaviorEngine"] = None
    ):
        self.interpreter = interpreter
        self.extractor = extractor
        self.validator = validator
        self.executor = executor
        self.engine = engine

    async def handle(self, text: str, issue_context: Optional[IssueContext] = None) -> str:
        """
        Answer one mention. Never raises; failures become FALLBACK_REPLY.
        """
        try:
            return await self._handle(text, issue_context or IssueContext())
        except CommandTimeoutError as e:
            logger.warning(f"Mention timed out: {e}")
            return (
                f"That {e.intent.value.replace('_', ' ')} request took longer than {e.timeout:g}s. "
                "Please try again in a moment."
            )
        except Exception as e:
            logger.error(f"Failed to handle mention '{text[:100]}': {e}", exc_info=True)
            return FALLBACK_REPLY

    async def _handle(self, text: str, context: IssueContext) -> str:
        parsed = self.interpreter.parse(text, context)
        logger.info(f"Mention classified as {parsed.intent.value} (confidence={parsed.confidence:.2f})")

        if not parsed.is_known:
            return render_unknown(parsed)

        params = self.extractor.extract(parsed)
        validation = await self.validator.validate(parsed.intent, params)
        if not validation.valid:
            return render_validation_errors(validation)

        result = await self.executor.execute(parsed, params)
        await self._notify_engine(parsed, result)
        return render_result(result, validation.warnings)

    async def _notify_engine(self, parsed: ParsedIntent, result: CommandResult) -> None:
        """Let command-completion behaviors react to a successful command."""
        if self.engine is None or not result.success:
            return
        context = parsed.context
        trigger = BehaviorTrigger(
            id=f"command-{uuid.uuid4().hex[:12]}",
            type=BehaviorTriggerType.COMMAND_COMPLETION,
            context=BehaviorContext(
                trigger=BehaviorTriggerType.COMMAND_COMPLETION,
                team={"id": context.team_id} if context.team_id else None,
                metadata={"intent": parsed.intent.value, "issue_id": context.issue_id, "result": result.data},
            ),
        )
        try:
            await self.engine.process_trigger(trigger)
        except Exception as e:
            logger.warning(f"[ENGINE] Command completion trigger failed: {e}")


def render_unknown(parsed: ParsedIntent) -> str:
    suggestions: List[str] = parsed.metadata.get("suggestions") or []
    lines = ["I'm not sure what you'd like me to do."]
    if suggestions:
        lines.append("Did you mean:")
        lines.extend(f"- `{s}`" for s in suggestions)
    lines.append("Say `help` to see everything I can do.")
    return "\n".join(lines)


def render_validation_errors(validation: ValidationResult) -> str:
    lines = ["I couldn't run that command:"]
    lines.extend(f"- {error.message}" for error in validation.errors)
    for suggestion in validation.suggestions:
        options = ", ".join(str(s) for s in suggestion.suggestions[:5])
        lines.append(f"Possible values for {suggestion.parameter}: {options}")
    return "\n".join(lines)


def render_result(result: CommandResult, warnings: Optional[List[str]] = None) -> str:
    lines = [result.message]
    if warnings:
        lines.append("")
        lines.extend(f"Note: {w}" for w in warnings)
    return "\n".join(lines)
