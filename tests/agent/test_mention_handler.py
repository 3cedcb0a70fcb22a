"""
Tests for the mention pipeline: parse, extract, validate, execute, reply
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from pulse_agent.agent.executor import CommandExecutor, CommandTimeoutError
from pulse_agent.agent.intent import CommandIntent, CommandInterpreter, IssueContext
from pulse_agent.agent.mention_handler import FALLBACK_REPLY, MentionHandler
from pulse_agent.agent.parsers import ParameterExtractor, ParameterValidator
from pulse_agent.autonomy.types import BehaviorTriggerType


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.process_trigger = AsyncMock(return_value=[])
    return engine


@pytest.fixture
def handler(tracker, engine):
    return MentionHandler(
        CommandInterpreter(),
        ParameterExtractor(),
        ParameterValidator(tracker),
        CommandExecutor(tracker=tracker),
        engine,
    )


class TestMentionHandler:
    """Plain-text replies for every outcome"""

    @pytest.mark.asyncio
    async def test_help_reply_and_completion_trigger(self, handler, engine):
        reply = await handler.handle("help", IssueContext(issue_id="issue-1", team_id="team-1"))

        assert reply.startswith("Here's what I can do:")
        engine.process_trigger.assert_awaited_once()
        trigger = engine.process_trigger.await_args.args[0]
        assert trigger.type == BehaviorTriggerType.COMMAND_COMPLETION
        assert trigger.context.team == {"id": "team-1"}
        assert trigger.context.metadata["intent"] == "help"

    @pytest.mark.asyncio
    async def test_unknown_lists_suggestions(self, handler, engine):
        reply = await handler.handle("xyzzy foo")

        assert reply.startswith("I'm not sure what you'd like me to do.")
        assert "help" in reply
        engine.process_trigger.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validation_errors_are_listed(self, handler):
        reply = await handler.handle("decompose this story", IssueContext(issue_id="issue-404"))

        assert reply.startswith("I couldn't run that command:")
        assert "Issue not found: issue-404" in reply

    @pytest.mark.asyncio
    async def test_unavailable_command(self, handler, engine, tracker, issue_factory):
        tracker.get_issue.return_value = issue_factory("issue-1")

        reply = await handler.handle("decompose this story", IssueContext(issue_id="issue-1"))

        assert "not available yet" in reply
        engine.process_trigger.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_internal_failure_returns_fallback(self, handler):
        handler.interpreter = MagicMock()
        handler.interpreter.parse.side_effect = RuntimeError("boom")

        assert await handler.handle("help") == FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_timeout_reply(self, handler):
        handler.executor = MagicMock()
        handler.executor.execute = AsyncMock(side_effect=CommandTimeoutError(CommandIntent.HELP, 30))

        reply = await handler.handle("help")

        assert "took longer than 30s" in reply

    @pytest.mark.asyncio
    async def test_engine_failure_does_not_change_reply(self, handler, engine):
        engine.process_trigger.side_effect = RuntimeError("engine down")

        reply = await handler.handle("help")

        assert reply.startswith("Here's what I can do:")
