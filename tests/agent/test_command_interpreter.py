"""
Tests for the command interpreter and pattern registry
"""
import re
from unittest.mock import MagicMock

import pytest

from pulse_agent.agent.intent import (
    CommandIntent,
    CommandInterpreter,
    ConfidenceFactors,
    ConfidenceWeights,
    IssueContext,
    ParserConfig,
    PatternDefinition,
    combine_confidence,
    get_patterns_by_priority,
)
from pulse_agent.agent.intent.command_interpreter import command_structure, keyword_density, pattern_match_score
from pulse_agent.agent.intent.patterns import get_all_examples, get_pattern_for_intent


@pytest.fixture
def interpreter():
    return CommandInterpreter()


class TestPatternRegistry:
    """Static registry ordering and lookups"""

    def test_patterns_sorted_by_priority(self):
        priorities = [p.priority for p in get_patterns_by_priority()]
        assert priorities == sorted(priorities, reverse=True)
        assert priorities[0] == 10

    def test_every_known_intent_has_examples(self):
        examples = get_all_examples()
        for intent in CommandIntent:
            if intent == CommandIntent.UNKNOWN:
                continue
            assert examples[intent], intent

    def test_lookup_by_intent(self):
        definition = get_pattern_for_intent(CommandIntent.HELP)
        assert definition.intent == CommandIntent.HELP
        assert get_pattern_for_intent(CommandIntent.UNKNOWN) is None


class TestConfidenceFactors:
    """Pure scoring helpers"""

    def test_exact_match_gets_bonus(self):
        pattern = re.compile(r"\bhelp\b")
        assert pattern_match_score("help", pattern) == 1.0
        assert pattern_match_score("please help", pattern) == pytest.approx(4 / 11)

    def test_keyword_density_floor(self):
        assert keyword_density("plan it", ["plan", "art", "pi", "iteration"]) == 0.6
        assert keyword_density("nothing here", ["plan"]) == 0.0
        assert keyword_density("anything", []) == 0.8

    def test_command_structure(self):
        assert command_structure("plan this pi") == 1.0
        assert command_structure("could you maybe") == pytest.approx(0.8)

    def test_combine_confidence_is_weighted_sum(self):
        factors = ConfidenceFactors(1.0, 0.5, 0.5, 0.0)
        weights = ConfidenceWeights(pattern_match=0.5, keyword_density=0.5, command_structure=0.0, context_relevance=0.0)
        assert combine_confidence(factors, weights) == pytest.approx(0.75)


class TestParse:
    """Classification of mention text"""

    def test_plan_art_for_next_pi(self, interpreter):
        parsed = interpreter.parse("plan art for next PI")
        assert parsed.intent == CommandIntent.ART_PLAN
        assert parsed.confidence > 0.8
        assert parsed.confidence == pytest.approx(0.83)

    def test_mention_is_stripped(self, interpreter):
        parsed = interpreter.parse("@saafepulse help")
        assert parsed.normalized_text == "help"
        assert parsed.intent == CommandIntent.HELP

    def test_status(self, interpreter):
        parsed = interpreter.parse("status")
        assert parsed.intent == CommandIntent.STATUS_CHECK
        assert parsed.confidence >= 0.8

    def test_weak_match_degrades_to_unknown(self, interpreter):
        text = "please could you maybe think about the pi planning thing sometime later today"
        parsed = interpreter.parse(text)
        assert parsed.intent == CommandIntent.UNKNOWN
        assert parsed.confidence == 0.0
        assert parsed.metadata["pattern_confidence"] < 0.8
        assert parsed.metadata["suggestions"]

    def test_gibberish_returns_suggestions(self, interpreter):
        parsed = interpreter.parse("xyzzy foo")
        assert parsed.intent == CommandIntent.UNKNOWN
        assert not parsed.is_known
        assert 1 <= len(parsed.metadata["suggestions"]) <= 3

    def test_greeting_maps_to_help(self, interpreter):
        parsed = interpreter.parse("hello")
        assert parsed.intent == CommandIntent.HELP
        assert parsed.confidence == 0.7

    def test_empty_text(self, interpreter):
        parsed = interpreter.parse("")
        assert parsed.intent == CommandIntent.UNKNOWN

    def test_non_string_input_never_raises(self, interpreter):
        parsed = interpreter.parse(None)
        assert parsed.intent == CommandIntent.UNKNOWN
        assert parsed.metadata["warnings"]

    def test_context_is_carried(self, interpreter):
        context = IssueContext(issue_id="issue-9", team_id="team-1")
        parsed = interpreter.parse("help", context)
        assert parsed.context is context
        assert parsed.to_dict()["intent"] == "help"

    def test_raised_threshold_rejects_match(self):
        interpreter = CommandInterpreter(ParserConfig(min_confidence=0.9))
        parsed = interpreter.parse("plan art for next PI")
        assert parsed.intent == CommandIntent.UNKNOWN


class TestEarlyTermination:
    """A near-certain match stops evaluation of lower-priority definitions"""

    def test_high_confidence_short_circuits(self):
        never_checked = MagicMock()
        never_checked.search = MagicMock(return_value=None)
        patterns = [
            PatternDefinition(
                intent=CommandIntent.STATUS_CHECK,
                patterns=(re.compile(r"^plan$"),),
                priority=10,
                min_confidence=0.8,
                keywords=("plan",),
            ),
            PatternDefinition(
                intent=CommandIntent.HELP,
                patterns=(never_checked,),
                priority=1,
                min_confidence=0.7,
                keywords=("plan",),
            ),
        ]
        interpreter = CommandInterpreter(ParserConfig(patterns=patterns))

        parsed = interpreter.parse("plan")

        assert parsed.intent == CommandIntent.STATUS_CHECK
        assert parsed.confidence >= 0.95
        never_checked.search.assert_not_called()
