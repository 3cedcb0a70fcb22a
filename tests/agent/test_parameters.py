"""
Tests for parameter extraction and validation
"""
from datetime import datetime, timezone

import pytest

from pulse_agent.agent.intent import CommandIntent, IssueContext, ParsedIntent
from pulse_agent.agent.parsers import ExtractedParameters, ParameterExtractor, ParameterValidator, ValidationErrorCode


def parsed(intent: CommandIntent, text: str, context: IssueContext = None) -> ParsedIntent:
    return ParsedIntent(
        intent=intent,
        confidence=0.9,
        raw_text=text,
        normalized_text=text.lower(),
        context=context or IssueContext(),
        timestamp=datetime.now(timezone.utc),
    )


@pytest.fixture
def extractor():
    return ParameterExtractor()


@pytest.fixture
def validator(tracker):
    tracker.get_teams.return_value = [
        {"id": "team-1", "key": "ENG", "name": "Engineering"},
        {"id": "team-2", "key": "PLAT", "name": "Platform Core"},
    ]
    return ParameterValidator(tracker)


class TestParameterExtractor:
    """Explicit, inferred and default parameters"""

    def test_explicit_pi_and_team(self, extractor):
        params = extractor.extract(parsed(CommandIntent.ART_PLAN, "plan PI-2025-Q1 for team ENG"))
        assert params.get("pi_id") == "PI-2025-Q1"
        assert params.get("team_id") == "eng"
        assert params.explicit == {"pi_id", "team_id"}
        assert "timeframe" not in params.parameters

    def test_relative_timeframe(self, extractor):
        params = extractor.extract(parsed(CommandIntent.ART_PLAN, "plan next pi"))
        assert params.get("timeframe") == {"type": "next", "period": "pi", "value": "next pi"}
        assert not params.defaults

    def test_art_plan_defaults_to_current_pi(self, extractor):
        params = extractor.extract(parsed(CommandIntent.ART_PLAN, "start art planning"))
        assert params.get("timeframe") == {"type": "current", "period": "pi"}
        assert params.defaults == {"timeframe"}

    def test_inferred_from_issue_context(self, extractor):
        context = IssueContext(issue_id="issue-7", team_id="team-1", estimate=13, labels=["PI-2025-Q2"])
        params = extractor.extract(parsed(CommandIntent.STORY_DECOMPOSE, "decompose this story", context))
        assert params.get("story_id") == "issue-7"
        assert params.get("story_points") == 13
        assert params.get("pi_id") == "PI-2025-Q2"
        assert params.get("target_size") == 5
        assert params.inferred == {"story_id", "story_points", "pi_id", "team_id"}
        assert params.defaults == {"target_size"}

    def test_explicit_beats_inferred(self, extractor):
        context = IssueContext(team_id="team-1", team_name="Engineering")
        params = extractor.extract(parsed(CommandIntent.STATUS_CHECK, "status for team platform", context))
        assert params.get("team_id") == "platform"
        assert "team_id" in params.explicit
        assert "team_id" not in params.inferred
        assert params.get("scope") == {"type": "team", "id": "team-1", "name": "Engineering", "explicit": False}
        assert params.get("format") == "table"

    def test_project_scope_wins(self, extractor):
        context = IssueContext(team_id="team-1", project_id="proj-1", project_name="Checkout")
        params = extractor.extract(parsed(CommandIntent.DEPENDENCY_MAP, "map dependencies", context))
        assert params.get("scope")["type"] == "project"
        assert params.get("direction") == "both"
        assert params.get("max_depth") == 3

    def test_points_phrase_is_not_target_size(self, extractor):
        params = extractor.extract(parsed(CommandIntent.STORY_DECOMPOSE, "decompose LIN-42 into 3 points"))
        assert params.get("story_id") == "42"
        assert params.get("story_points") == 3
        assert params.get("target_size") == 5
        assert "target_size" in params.defaults

    def test_hash_story_reference(self, extractor):
        params = extractor.extract(parsed(CommandIntent.STORY_SCORE, "score story #128"))
        assert params.get("story_id") == "128"


class TestParameterValidator:
    """Structured validation errors and suggestions"""

    @pytest.mark.asyncio
    async def test_valid_team_by_key(self, validator):
        result = await validator.validate(CommandIntent.STATUS_CHECK, ExtractedParameters(parameters={"team_id": "ENG"}))
        assert result.valid
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_unknown_team_suggests_similar(self, validator):
        result = await validator.validate(
            CommandIntent.STATUS_CHECK, ExtractedParameters(parameters={"team_id": "platform"})
        )
        assert not result.valid
        assert result.errors[0].code == ValidationErrorCode.NOT_FOUND
        assert result.suggestions[0].suggestions == ["Platform Core"]

    @pytest.mark.asyncio
    async def test_invalid_pi_format(self, validator):
        result = await validator.validate(CommandIntent.ART_PLAN, ExtractedParameters(parameters={"pi_id": "PI-2025-Q7"}))
        assert not result.valid
        assert result.errors[0].parameter == "pi_id"
        assert result.errors[0].code == ValidationErrorCode.INVALID_FORMAT

    @pytest.mark.asyncio
    async def test_missing_required_story(self, validator):
        result = await validator.validate(CommandIntent.STORY_SCORE, ExtractedParameters())
        assert [e.code for e in result.errors] == [ValidationErrorCode.MISSING_REQUIRED]

    @pytest.mark.asyncio
    async def test_non_fibonacci_points(self, validator, tracker, issue_factory):
        tracker.get_issue.return_value = issue_factory("issue-7")
        params = ExtractedParameters(parameters={"story_id": "issue-7", "story_points": 4})
        result = await validator.validate(CommandIntent.STORY_SCORE, params)
        assert result.errors[0].parameter == "story_points"
        assert result.errors[0].context["valid_values"] == [1, 2, 3, 5, 8, 13, 21]

    @pytest.mark.asyncio
    async def test_exclusive_parameters(self, validator):
        params = ExtractedParameters(parameters={
            "pi_id": "PI-2025-Q1",
            "timeframe": {"type": "next", "period": "pi"},
        })
        result = await validator.validate(CommandIntent.ART_PLAN, params)
        assert result.errors[0].code == ValidationErrorCode.INCOMPATIBLE_PARAMS

    @pytest.mark.asyncio
    async def test_target_size_out_of_range(self, validator, tracker, issue_factory):
        tracker.get_issue.return_value = issue_factory("issue-7")
        params = ExtractedParameters(parameters={"story_id": "issue-7", "target_size": 12})
        result = await validator.validate(CommandIntent.STORY_DECOMPOSE, params)
        assert result.errors[0].code == ValidationErrorCode.OUT_OF_RANGE

    @pytest.mark.asyncio
    async def test_missing_story_not_found(self, validator, tracker):
        tracker.get_issue.return_value = None
        params = ExtractedParameters(parameters={"story_id": "issue-404"})
        result = await validator.validate(CommandIntent.STORY_SCORE, params)
        assert result.errors[0].code == ValidationErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_story_permission_error(self, validator, tracker):
        tracker.get_issue.side_effect = Exception("Permission denied for issue")
        params = ExtractedParameters(parameters={"story_id": "issue-7"})
        result = await validator.validate(CommandIntent.STORY_SCORE, params)
        assert result.errors[0].code == ValidationErrorCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_default_and_inferred_warnings(self, validator, tracker, issue_factory):
        tracker.get_issue.return_value = issue_factory("issue-7")
        params = ExtractedParameters(
            parameters={"story_id": "issue-7", "target_size": 5},
            inferred={"story_id"},
            defaults={"target_size"},
        )
        result = await validator.validate(CommandIntent.STORY_DECOMPOSE, params)
        assert result.valid
        assert result.warnings == [
            "Using default target size of 5 points for decomposition",
            "Using inferred values: story_id. Specify explicitly to override.",
        ]
