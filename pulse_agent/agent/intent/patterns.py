"""
Command Pattern Registry

Static table mapping natural language variations to command intents.
Loaded once at import; never mutated.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple


class CommandIntent(str, Enum):
    # Planning
    ART_PLAN = "art_plan"
    ART_OPTIMIZE = "art_optimize"
    # Analysis
    VALUE_ANALYZE = "value_analyze"
    DEPENDENCY_MAP = "dependency_map"
    # Management
    STORY_DECOMPOSE = "story_decompose"
    STORY_SCORE = "story_score"
    # Information
    STATUS_CHECK = "status_check"
    HELP = "help"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PatternDefinition:
    intent: CommandIntent
    patterns: Tuple[Pattern, ...]
    priority: int
    min_confidence: float
    keywords: Tuple[str, ...] = ()
    examples: Tuple[str, ...] = ()
    description: str = ""


def _compile(*expressions: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(expression, re.IGNORECASE) for expression in expressions)


ART_PLAN_PATTERNS = PatternDefinition(
    intent=CommandIntent.ART_PLAN,
    priority=10,
    min_confidence=0.85,
    patterns=_compile(
        r"\b(plan|planning)\s+(this\s+)?pi\b",
        r"\bplan\s+pi[-]?\d{4}[-]?q\d+\b",
        r"\bplan\s+pi[-]?[\w-]+\b",
        r"\bplan\s+(the\s+)?art\b(\s+for\s+(the\s+)?(next|this|current)\s+pi)?",
        r"\b(execute|run|start)\s+art\s+planning\b",
        r"\b(execute|run|start)\s+pi\s+planning\b",
        r"\b(create|generate|build)\s+(an?\s+)?iteration\s+plan\b",
        r"\b(create|generate|build)\s+(an?\s+)?pi\s+plan\b",
        r"\bpi\s+planning\b",
        r"\bart\s+planning\b",
        r"\bplan\s+(our|the)\s+iterations?\b",
    ),
    keywords=("plan", "planning", "pi", "art", "iteration", "program increment"),
    examples=(
        "plan this PI",
        "plan PI-2025-Q1",
        "execute ART planning",
        "create iteration plan",
        "start PI planning",
        "ART planning for next quarter",
    ),
    description="Execute ART planning for a Program Increment",
)

ART_OPTIMIZE_PATTERNS = PatternDefinition(
    intent=CommandIntent.ART_OPTIMIZE,
    priority=9,
    min_confidence=0.85,
    patterns=_compile(
        r"\b(optimize|improve|enhance)\s+(the\s+)?art\b",
        r"\bart\s+(optimization|improvement|enhancement)\b",
        r"\b(check|verify|validate)\s+art\s+readiness\b",
        r"\breadiness\s+(check|score|assessment)\b",
        r"\b(optimize|improve)\s+(our\s+)?agile\s+release\s+train\b",
    ),
    keywords=("optimize", "improve", "readiness", "art", "agile release train"),
    examples=(
        "optimize ART",
        "check ART readiness",
        "validate ART readiness score",
        "improve our agile release train",
    ),
    description="Optimize ART configuration and check readiness",
)

VALUE_ANALYZE_PATTERNS = PatternDefinition(
    intent=CommandIntent.VALUE_ANALYZE,
    priority=8,
    min_confidence=0.8,
    patterns=_compile(
        r"\b(analyze|check|assess)\s+value\s+delivery\b",
        r"\bvalue\s+(analysis|assessment|check)\b",
        r"\b(check|verify|validate)\s+working\s+software\b",
        r"\bworking\s+software\s+(check|validation|assessment)\b",
        r"\b(show|display|list)\s+value\s+streams?\b",
        r"\bvalue\s+stream\s+(analysis|mapping)\b",
    ),
    keywords=("value", "delivery", "working software", "value stream", "analyze"),
    examples=(
        "analyze value delivery",
        "check working software",
        "show value streams",
        "value analysis for this PI",
        "assess value delivery metrics",
    ),
    description="Analyze value delivery and working software metrics",
)

STORY_DECOMPOSE_PATTERNS = PatternDefinition(
    intent=CommandIntent.STORY_DECOMPOSE,
    priority=10,
    min_confidence=0.9,
    patterns=_compile(
        r"\b(decompose|break\s+down|split)\s+(this\s+)?(story|issue|ticket)?\b",
        r"^decompose\s+this$",
        r"\b(help|assist)\s+(me\s+)?(decompose|break\s+down|split)\b",
        r"\bstory\s+decomposition\b",
        r"\b(make|split)\s+(this\s+)?(story\s+)?smaller\b",
        r"\bbreak\s+(this\s+)?into\s+smaller\s+(stories|tasks|pieces)\b",
        r"\b(this\s+)?(story|issue)\s+is\s+too\s+(big|large)\b",
    ),
    keywords=("decompose", "break", "split", "smaller", "story", "breakdown"),
    examples=(
        "decompose this story",
        "help me break down this issue",
        "split this into smaller stories",
        "make this smaller",
        "this story is too big",
        "break this into smaller pieces",
    ),
    description="Decompose large stories into smaller, manageable pieces",
)

DEPENDENCY_MAP_PATTERNS = PatternDefinition(
    intent=CommandIntent.DEPENDENCY_MAP,
    priority=8,
    min_confidence=0.85,
    patterns=_compile(
        r"\b(map|show|display|list)\s+(the\s+)?dependenc(ies|y)\b",
        r"\bdependenc(y|ies)\s+(map|mapping|analysis|graph)\b",
        r"\b(find|identify|analyze)\s+dependenc(ies|y)\b",
        r"\bwhat\s+(are\s+the\s+)?dependenc(ies|y)\b",
        r"\b(check|verify)\s+dependenc(ies|y)\b",
    ),
    keywords=("dependency", "dependencies", "map", "graph", "connections"),
    examples=(
        "map dependencies",
        "show dependency graph",
        "what are the dependencies?",
        "analyze dependencies for this epic",
        "dependency mapping",
    ),
    description="Map and analyze dependencies between issues",
)

STORY_SCORE_PATTERNS = PatternDefinition(
    intent=CommandIntent.STORY_SCORE,
    priority=8,
    min_confidence=0.85,
    patterns=_compile(
        r"\b(score|estimate)\s+(this\s+)?(story|issue|ticket)\b",
        r"\b(calculate|compute)\s+(story\s+)?points?\b",
        r"\bwsjf\s+(score|scoring|calculation)\b",
        r"\b(apply|calculate|compute)\s+wsjf\b",
        r"\bestimate\s+(story\s+)?points?\b",
        r"\bhow\s+many\s+points?\b",
    ),
    keywords=("score", "estimate", "points", "wsjf", "story points"),
    examples=(
        "score this story",
        "estimate story points",
        "calculate WSJF",
        "apply WSJF scoring",
        "how many points?",
    ),
    description="Apply WSJF scoring or estimate story points",
)

STATUS_CHECK_PATTERNS = PatternDefinition(
    intent=CommandIntent.STATUS_CHECK,
    priority=7,
    min_confidence=0.8,
    patterns=_compile(
        r"^status$",
        r"\b(show|check|display)\s+(art\s+)?status\b",
        r"\bstatus\s+(check|report|update)\b",
        r"\b(what'?s?|show)\s+the\s+(current\s+)?status\b",
        r"\bart\s+(health|status|report)\b",
        r"\b(show|display)\s+(current\s+)?iterations?\b",
        r"\bhealth\s+check\b",
    ),
    keywords=("status", "health", "report", "current", "iteration"),
    examples=(
        "status",
        "show ART status",
        "what's the current status?",
        "ART health check",
        "show current iteration",
    ),
    description="Check current ART status and health metrics",
)

HELP_PATTERNS = PatternDefinition(
    intent=CommandIntent.HELP,
    priority=5,
    min_confidence=0.7,
    patterns=_compile(
        r"\bhelp\b",
        r"\bwhat\s+can\s+(you|i)\s+do\b",
        r"\b(show|list|display)\s+(available\s+)?commands?\b",
        r"\bhow\s+(do|can)\s+i\s+use\b",
        r"\bwhat\s+commands?\b",
        r"\b(guide|tutorial|instructions)\b",
    ),
    keywords=("help", "commands", "what", "how", "guide"),
    examples=(
        "help",
        "what can you do?",
        "show commands",
        "how do I use this?",
        "list available commands",
    ),
    description="Show available commands and usage help",
)

ALL_PATTERNS: Tuple[PatternDefinition, ...] = (
    ART_PLAN_PATTERNS,
    ART_OPTIMIZE_PATTERNS,
    VALUE_ANALYZE_PATTERNS,
    STORY_DECOMPOSE_PATTERNS,
    DEPENDENCY_MAP_PATTERNS,
    STORY_SCORE_PATTERNS,
    STATUS_CHECK_PATTERNS,
    HELP_PATTERNS,
)

PATTERN_REGISTRY: Dict[CommandIntent, PatternDefinition] = {p.intent: p for p in ALL_PATTERNS}


def get_pattern_for_intent(intent: CommandIntent) -> Optional[PatternDefinition]:
    return PATTERN_REGISTRY.get(CommandIntent(intent))


def get_patterns_by_priority(patterns: Optional[List[PatternDefinition]] = None) -> List[PatternDefinition]:
    """Highest priority first; ties keep registry order."""
    return sorted(patterns if patterns is not None else ALL_PATTERNS, key=lambda p: p.priority, reverse=True)


def get_all_examples() -> Dict[CommandIntent, List[str]]:
    return {p.intent: list(p.examples) for p in ALL_PATTERNS}
