"""
Command Executor

Dispatches a classified command to its handler under a wall-clock
timeout. Planning operations beyond help and status are registered by
the host as handlers; anything unregistered reports itself unavailable.
"""
import asyncio
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .intent.command_interpreter import ParsedIntent
from .intent.patterns import ALL_PATTERNS, CommandIntent
from .parsers.parameter_extractor import ExtractedParameters
from ..utils.config import ConfigDefaults
from ..utils.logger import setup_logger
from ..workflow.progress import ProgressEngine, work_item_from_issue

logger = setup_logger(__name__)


class CommandTimeoutError(Exception):
    """A command handler did not finish within the configured timeout."""

    def __init__(self, intent: CommandIntent, timeout: float):
        super().__init__(f"Command {intent.value} timed out after {timeout:g}s")
        self.intent = intent
        self.timeout = timeout


@dataclass
class CommandResult:
    intent: CommandIntent
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    execution_time: float = 0.0  # ms

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["intent"] = self.intent.value
        return result


CommandHandler = Callable[[ParsedIntent, ExtractedParameters], Awaitable[CommandResult]]


class CommandExecutor:
    """
    Usage:
        executor = CommandExecutor(tracker=linear_service, timeout_seconds=30)
        executor.register_handler(CommandIntent.ART_PLAN, plan_art)
        result = await executor.execute(parsed, params)
    """

    def __init__(
        self,
        tracker=None,
        progress_engine: Optional[ProgressEngine] = None,
        handlers: Optional[Dict[CommandIntent, CommandHandler]] = None,
        timeout_seconds: float = ConfigDefaults.EXECUTOR_TIMEOUT_SECONDS,
        issue_limit: int = 250
    ):
        self.tracker = tracker
        self.progress_engine = progress_engine or ProgressEngine()
        self.timeout_seconds = timeout_seconds
        self.issue_limit = issue_limit
        self._handlers: Dict[CommandIntent, CommandHandler] = {
            CommandIntent.HELP: self._help,
            CommandIntent.STATUS_CHECK: self._status_check,
        }
        self._handlers.update(handlers or {})

    def register_handler(self, intent: CommandIntent, handler: CommandHandler) -> None:
        self._handlers[intent] = handler

    def has_handler(self, intent: CommandIntent) -> bool:
        return intent in self._handlers

    async def execute(self, parsed: ParsedIntent, params: ExtractedParameters) -> CommandResult:
        """
        Run the handler for the parsed intent.

        Raises:
            CommandTimeoutError: The handler did not finish in time. It is
                left running and its eventual result is discarded.
        """
        start = time.monotonic()
        handler = self._handlers.get(parsed.intent)
        if handler is None:
            logger.info(f"No handler registered for {parsed.intent.value}")
            return CommandResult(
                intent=parsed.intent,
                success=False,
                message=f"The {parsed.intent.value.replace('_', ' ')} command is not available yet.",
                data={"reason": "not_available"},
            )

        task = asyncio.ensure_future(handler(parsed, params))
        done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
        if task not in done:
            logger.warning(f"Command {parsed.intent.value} exceeded {self.timeout_seconds}s, discarding result")
            task.add_done_callback(_consume_result)
            raise CommandTimeoutError(parsed.intent, self.timeout_seconds)

        result = task.result()
        result.execution_time = (time.monotonic() - start) * 1000
        logger.info(f"Executed {parsed.intent.value} in {result.execution_time:.0f}ms (success={result.success})")
        return result

    # Built-in handlers

    async def _help(self, parsed: ParsedIntent, params: ExtractedParameters) -> CommandResult:
        commands = [
            {"intent": p.intent.value, "description": p.description, "examples": list(p.examples[:2])}
            for p in ALL_PATTERNS
        ]
        lines = ["Here's what I can do:"]
        for command in commands:
            example = f" (e.g. \"{command['examples'][0]}\")" if command["examples"] else ""
            lines.append(f"- {command['description']}{example}")
        return CommandResult(parsed.intent, True, "\n".join(lines), {"commands": commands})

    async def _status_check(self, parsed: ParsedIntent, params: ExtractedParameters) -> CommandResult:
        if self.tracker is None:
            return CommandResult(parsed.intent, False, "Status checks need a Linear connection.")

        scope = params.get("scope") or {}
        team_id = await self._resolve_team_id(params.get("team_id")) or (
            scope.get("id") if scope.get("type") == "team" else None
        )
        issues = await self.tracker.get_issues(team_id=team_id, limit=self.issue_limit)
        if scope.get("type") == "project" and scope.get("id"):
            issues = [i for i in issues if (i.get("project") or {}).get("id") == scope["id"]]

        progress = self.progress_engine.calculate_progress_with_edge_cases(
            [work_item_from_issue(issue) for issue in issues]
        )
        scope_name = scope.get("name") or team_id or "workspace"
        message = format_status(scope_name, progress, params.get("format", "table"))
        return CommandResult(
            parsed.intent,
            True,
            message,
            {"scope": scope, "team_id": team_id, "issue_count": len(issues), "progress": progress.to_dict()},
        )

    async def _resolve_team_id(self, team: Optional[str]) -> Optional[str]:
        """Map a team id, key or name from the command text to a team id."""
        if not team:
            return None
        needle = team.lower()
        for candidate in await self.tracker.get_teams():
            values = [candidate.get("id"), candidate.get("key"), candidate.get("name")]
            if any(v and v.lower() == needle for v in values):
                return candidate.get("id")
        return team


def _consume_result(task: "asyncio.Future") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning(f"Timed-out command finished with an error: {task.exception()}")


def format_status(scope_name: str, progress, output_format: str = "table") -> str:
    rows: List[List[str]] = [
        ["Completion", f"{progress.percentage:g}%"],
        ["Weighted completion", f"{progress.weighted_percentage:g}%"],
        ["Points", f"{progress.completed_points:g} / {progress.total_points:g}"],
        ["Readiness", progress.readiness_level],
    ]
    header = f"Status for {scope_name}"
    if output_format == "table":
        body = ["| Metric | Value |", "| --- | --- |"] + [f"| {k} | {v} |" for k, v in rows]
    else:
        body = [f"- {k}: {v}" for k, v in rows]
    alerts = [f"- [{a.type}] {a.message}" for a in progress.alerts]
    return "\n".join([header, ""] + body + ([""] + ["Alerts:"] + alerts if alerts else []))
