"""
Command Interpreter

Turns @saafepulse mention text into a confidence-scored ParsedIntent.

Matching walks the pattern registry in priority order. The first regex
that matches inside a definition is scored by four independent factors
which are combined by a configurable linear weighting. Anything below
the minimum confidence degrades to UNKNOWN with suggestions: running the
wrong command is worse than running none.
"""
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Pattern

from .patterns import CommandIntent, PatternDefinition, get_patterns_by_priority
from ...utils.config import ConfigDefaults, ParserSettings
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

EARLY_TERMINATION_CONFIDENCE = 0.95
GREETING_CONFIDENCE = 0.7
MIN_SUGGESTION_SIMILARITY = 0.2
MAX_SUGGESTIONS = 3

IMPERATIVE_VERBS = {
    'plan', 'analyze', 'decompose', 'show', 'help', 'check', 'create',
    'execute', 'map', 'break', 'split', 'status', 'optimize',
}
COMMON_COMMAND_WORDS = {'this', 'the', 'pi', 'art', 'story', 'issue'}
GREETINGS = ('hi', 'hello', 'hey', 'help', 'what can you do')

_EDGE_PUNCTUATION = re.compile(r'^[^\w"]+|[^\w"]+$')
_WHITESPACE = re.compile(r'\s+')


# ============================================
# DATA TYPES
# ============================================

@dataclass(frozen=True)
class IssueContext:
    """Read-only snapshot of the issue the mention was made on."""
    issue_id: str = ""
    issue_identifier: str = ""
    issue_title: str = ""
    team_id: str = ""
    team_name: Optional[str] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    state: Optional[str] = None
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    priority: Optional[int] = None
    estimate: Optional[float] = None
    current_pi: Optional[str] = None
    current_iteration: Optional[str] = None

    @classmethod
    def from_issue(cls, issue: Optional[Dict[str, Any]]) -> "IssueContext":
        """Build from a Linear issue dict (GraphQL / webhook shape)."""
        if not issue:
            return cls()
        team = issue.get("team") or {}
        project = issue.get("project") or {}
        assignee = issue.get("assignee") or {}
        state = issue.get("state") or {}
        labels = issue.get("labels") or []
        if isinstance(labels, dict):
            labels = labels.get("nodes", [])
        return cls(
            issue_id=issue.get("id", ""),
            issue_identifier=issue.get("identifier", ""),
            issue_title=issue.get("title", ""),
            team_id=team.get("id") or issue.get("teamId", ""),
            team_name=team.get("name"),
            project_id=project.get("id") or issue.get("projectId"),
            project_name=project.get("name"),
            labels=[label.get("name", "") if isinstance(label, dict) else str(label) for label in labels],
            state=state.get("name") if isinstance(state, dict) else state,
            assignee_id=assignee.get("id") or issue.get("assigneeId"),
            assignee_name=assignee.get("name"),
            priority=issue.get("priority"),
            estimate=issue.get("estimate"),
        )


@dataclass
class ConfidenceWeights:
    pattern_match: float = ConfigDefaults.PARSER_WEIGHT_PATTERN_MATCH
    keyword_density: float = ConfigDefaults.PARSER_WEIGHT_KEYWORD_DENSITY
    command_structure: float = ConfigDefaults.PARSER_WEIGHT_COMMAND_STRUCTURE
    context_relevance: float = ConfigDefaults.PARSER_WEIGHT_CONTEXT_RELEVANCE


@dataclass
class ParserConfig:
    min_confidence: float = ConfigDefaults.PARSER_MIN_CONFIDENCE
    weights: ConfidenceWeights = field(default_factory=ConfidenceWeights)
    debug: bool = False
    mention: str = ConfigDefaults.LINEAR_AGENT_MENTION
    # Replaces the default registry when set (mainly for tests)
    patterns: Optional[List[PatternDefinition]] = None

    @classmethod
    def from_settings(cls, settings: ParserSettings, mention: str = ConfigDefaults.LINEAR_AGENT_MENTION) -> "ParserConfig":
        return cls(
            min_confidence=settings.min_confidence,
            weights=ConfidenceWeights(
                pattern_match=settings.pattern_match_weight,
                keyword_density=settings.keyword_density_weight,
                command_structure=settings.command_structure_weight,
                context_relevance=settings.context_relevance_weight,
            ),
            debug=settings.debug,
            mention=mention,
        )


@dataclass(frozen=True)
class ConfidenceFactors:
    pattern_match_score: float
    keyword_density: float
    command_structure: float
    context_relevance: float


@dataclass(frozen=True)
class CommandSuggestion:
    command: str
    intent: CommandIntent
    similarity: float
    description: str = ""


@dataclass(frozen=True)
class ParsedIntent:
    intent: CommandIntent
    confidence: float
    raw_text: str
    normalized_text: str
    context: IssueContext
    timestamp: datetime
    matched_pattern: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_known(self) -> bool:
        return self.intent != CommandIntent.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["intent"] = self.intent.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class _Match:
    matched: bool = False
    confidence: float = 0.0
    intent: Optional[CommandIntent] = None
    pattern: Optional[str] = None
    factors: Optional[ConfidenceFactors] = None


# ============================================
# CONFIDENCE FACTORS
# ============================================

def pattern_match_score(text: str, pattern: Pattern) -> float:
    """Coverage of the matched substring, plus 0.2 for an exact full match."""
    match = pattern.search(text)
    if not match or not text:
        return 0.0
    coverage = len(match.group(0)) / len(text)
    exact_bonus = 0.2 if match.group(0) == text else 0.0
    return min(1.0, coverage + exact_bonus)


def keyword_density(text: str, keywords: List[str]) -> float:
    if not keywords:
        return 0.8

    matched = set()
    for word in text.split():
        for keyword in keywords:
            if keyword.lower() in word.lower():
                matched.add(keyword)

    score = len(matched) / len(keywords)
    return max(0.6, score) if matched else score


def command_structure(text: str) -> float:
    words = text.split()
    score = 0.6

    if words and words[0] in IMPERATIVE_VERBS:
        score += 0.3

    if len(words) == 1:
        score += 0.1
    elif 2 <= len(words) <= 10:
        score += 0.2

    if any(w.lower() in COMMON_COMMAND_WORDS for w in words):
        score += 0.1

    return min(1.0, score)


def context_relevance(intent: CommandIntent, context: IssueContext) -> float:
    score = 0.5

    if intent == CommandIntent.STORY_DECOMPOSE and context.estimate and context.estimate > 5:
        score += 0.3

    if intent in (CommandIntent.ART_PLAN, CommandIntent.ART_OPTIMIZE) and any(
        'planning' in label.lower() for label in context.labels
    ):
        score += 0.2

    if intent == CommandIntent.STATUS_CHECK:
        score += 0.1

    return min(1.0, score)


def combine_confidence(factors: ConfidenceFactors, weights: ConfidenceWeights) -> float:
    return (
        factors.pattern_match_score * weights.pattern_match
        + factors.keyword_density * weights.keyword_density
        + factors.command_structure * weights.command_structure
        + factors.context_relevance * weights.context_relevance
    )


# ============================================
# INTERPRETER
# ============================================

class CommandInterpreter:
    """
    Natural language command parser.

    Usage:
        interpreter = CommandInterpreter()
        parsed = interpreter.parse("@saafepulse plan this PI", IssueContext(team_id="team-1"))
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self.patterns = get_patterns_by_priority(self.config.patterns)
        self._mention_re = re.compile(rf'@{re.escape(self.config.mention)}\s*', re.IGNORECASE)
        logger.debug(
            f"Command interpreter initialized ({len(self.patterns)} patterns, "
            f"min_confidence={self.config.min_confidence})"
        )

    def parse(self, text: str, context: Optional[IssueContext] = None) -> ParsedIntent:
        """
        Classify mention text.

        Never raises: internal failures come back as UNKNOWN with confidence 0
        and a warning in metadata.
        """
        context = context or IssueContext()
        start = time.perf_counter()

        try:
            normalized = self.normalize_text(text)
            logger.debug(f"Parsing command '{text}' -> '{normalized}' (issue={context.issue_id})")

            best = self._match_patterns(normalized, context)

            metadata: Dict[str, Any] = {
                "processing_time": (time.perf_counter() - start) * 1000,
                "matched_pattern": best.pattern,
                "pattern_confidence": best.confidence,
            }
            if self.config.debug:
                metadata["debug"] = {
                    "normalized_text": normalized,
                    "tried_patterns": len(self.patterns),
                    "factors": asdict(best.factors) if best.factors else None,
                }

            if not best.matched or best.confidence < self.config.min_confidence:
                logger.debug(
                    f"Command below confidence threshold (intent={best.intent}, "
                    f"confidence={best.confidence:.2f}, min={self.config.min_confidence})"
                )
                return self._handle_unknown(text, normalized, context, metadata)

            return ParsedIntent(
                intent=best.intent,
                confidence=best.confidence,
                raw_text=text,
                normalized_text=normalized,
                matched_pattern=best.pattern,
                context=context,
                timestamp=datetime.now(timezone.utc),
                metadata=metadata,
            )
        except Exception as e:
            logger.error(f"Command parsing error for '{text}': {e}")
            return ParsedIntent(
                intent=CommandIntent.UNKNOWN,
                confidence=0.0,
                raw_text=text or "",
                normalized_text=(text or "").lower().strip() if isinstance(text, str) else "",
                context=context,
                timestamp=datetime.now(timezone.utc),
                metadata={
                    "processing_time": (time.perf_counter() - start) * 1000,
                    "warnings": [f"Parsing error: {e}"],
                },
            )

    def normalize_text(self, text: str) -> str:
        text = text.lower().strip()
        text = self._mention_re.sub('', text)
        text = _WHITESPACE.sub(' ', text)
        text = _EDGE_PUNCTUATION.sub('', text)
        return text.strip()

    def _match_patterns(self, text: str, context: IssueContext) -> _Match:
        best = _Match()
        for definition in self.patterns:
            result = self._match_definition(text, definition, context)
            if result.confidence > best.confidence:
                best = result
                if result.confidence >= EARLY_TERMINATION_CONFIDENCE:
                    break
        return best

    def _match_definition(self, text: str, definition: PatternDefinition, context: IssueContext) -> _Match:
        for pattern in definition.patterns:
            if not pattern.search(text):
                continue
            factors = ConfidenceFactors(
                pattern_match_score=pattern_match_score(text, pattern),
                keyword_density=keyword_density(text, list(definition.keywords)),
                command_structure=command_structure(text),
                context_relevance=context_relevance(definition.intent, context),
            )
            confidence = combine_confidence(factors, self.config.weights)
            return _Match(
                matched=True,
                intent=definition.intent,
                pattern=pattern.pattern,
                confidence=max(confidence, (definition.min_confidence or 0) * 0.9),
                factors=factors,
            )
        return _Match()

    # ------------------------------------------------------------------
    # Unknown commands
    # ------------------------------------------------------------------

    def _handle_unknown(
        self,
        raw_text: str,
        normalized: str,
        context: IssueContext,
        metadata: Dict[str, Any]
    ) -> ParsedIntent:
        suggestions = self.find_suggestions(normalized)
        metadata["suggestions"] = [s.command for s in suggestions]

        intent, confidence = CommandIntent.UNKNOWN, 0.0
        if len(normalized.split(' ')) <= 1 and self._is_greeting(normalized):
            intent, confidence = CommandIntent.HELP, GREETING_CONFIDENCE

        return ParsedIntent(
            intent=intent,
            confidence=confidence,
            raw_text=raw_text,
            normalized_text=normalized,
            context=context,
            timestamp=datetime.now(timezone.utc),
            metadata=metadata,
        )

    def find_suggestions(self, text: str) -> List[CommandSuggestion]:
        """Up to three commands resembling the text, best first."""
        suggestions = []
        for definition in self.patterns:
            similarity = self._similarity(text, definition)
            if similarity > MIN_SUGGESTION_SIMILARITY and definition.examples:
                suggestions.append(CommandSuggestion(
                    command=definition.examples[0],
                    intent=definition.intent,
                    similarity=similarity,
                    description=definition.description,
                ))

        if not suggestions:
            help_definition = next((p for p in self.patterns if p.intent == CommandIntent.HELP), None)
            if help_definition and help_definition.examples:
                suggestions.append(CommandSuggestion(
                    command=help_definition.examples[0],
                    intent=CommandIntent.HELP,
                    similarity=0.5,
                    description=help_definition.description or "Show available commands",
                ))

        suggestions.sort(key=lambda s: s.similarity, reverse=True)
        return suggestions[:MAX_SUGGESTIONS]

    @staticmethod
    def _similarity(text: str, definition: PatternDefinition) -> float:
        words = text.split(' ')
        keywords = definition.keywords

        matches = 0
        for word in words:
            if any(keyword in word or word in keyword for keyword in keywords):
                matches += 1

        example_match = any(
            example_word in word or word in example_word
            for example in definition.examples
            for example_word in example.lower().split()
            for word in words
        )

        keyword_score = matches / len(keywords) if keywords else 0.0
        example_score = 0.5 if example_match else 0.0
        return max(keyword_score, example_score)

    @staticmethod
    def _is_greeting(text: str) -> bool:
        return any(greeting in text for greeting in GREETINGS)
