"""
Parameter Extractor

Pulls typed parameters out of a ParsedIntent: explicit values from the
command text, inferred values from the issue context, then intent
defaults. Explicit beats inferred, inferred beats default.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from ..intent.command_interpreter import IssueContext, ParsedIntent
from ..intent.patterns import CommandIntent
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

PI_ID = re.compile(r'\b(?:PI[-\s]?)?(\d{4}[-\s]?Q\d+)\b', re.IGNORECASE)
TEAM_ID = re.compile(r'\bteam\s+([A-Za-z0-9_-]+)\b', re.IGNORECASE)
TEAM_MENTION = re.compile(r'@([A-Za-z0-9_-]+)\b', re.IGNORECASE)
ITERATION = re.compile(r'\b(?:iteration|sprint)[-\s]?(\d+)\b', re.IGNORECASE)
STORY_ID = re.compile(r'(?:\b(?:LIN-|story-)|#)(\d+)\b', re.IGNORECASE)
TIME_REF = re.compile(r'\b(this|current|next|previous|last)\s+(pi|sprint|iteration|quarter|month|week)\b', re.IGNORECASE)
SPECIFIC_TIME = re.compile(r'\b(?:in|for)\s+(?:Q\d+|(\d{4}[-\s]?Q\d+))\b', re.IGNORECASE)
STORY_POINTS = re.compile(r'\b(\d+)\s*(?:points?|pts?|story[-\s]?points?)\b', re.IGNORECASE)
TARGET_SIZE = re.compile(r'\b(?:into|max|maximum|target)\s*(\d+)\s*(?:points?|pts?)?\b', re.IGNORECASE)
DEPTH = re.compile(r'\b(summary|detailed|full|brief|comprehensive)\s*(?:analysis|report|view)?\b', re.IGNORECASE)
DIRECTION = re.compile(r'\b(upstream|downstream|both|all)\s*(?:dependencies|deps)?\b', re.IGNORECASE)
FORMAT = re.compile(r'\b(?:as|in|format)\s*(table|list|graph|markdown|md|tree)\b', re.IGNORECASE)
LABEL_PI = re.compile(r'PI[-\s]?(\d{4}[-\s]?Q\d+)', re.IGNORECASE)

ANALYSIS_INTENTS = (CommandIntent.VALUE_ANALYZE, CommandIntent.DEPENDENCY_MAP, CommandIntent.STATUS_CHECK)

DEFAULT_TARGET_SIZE = 5
DEFAULT_MAX_DEPTH = 3

_TIME_TYPES = {
    'this': 'current',
    'current': 'current',
    'next': 'next',
    'previous': 'previous',
    'last': 'previous',
}


@dataclass
class ExtractedParameters:
    parameters: Dict[str, Any] = field(default_factory=dict)
    explicit: Set[str] = field(default_factory=set)
    inferred: Set[str] = field(default_factory=set)
    raw: Dict[str, str] = field(default_factory=dict)
    # Keys filled from intent defaults rather than text or context
    defaults: Set[str] = field(default_factory=set)

    def get(self, key: str, default: Any = None) -> Any:
        return self.parameters.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parameters": dict(self.parameters),
            "explicit": sorted(self.explicit),
            "inferred": sorted(self.inferred),
            "defaults": sorted(self.defaults),
            "raw": dict(self.raw),
        }


def normalize_pi_id(pi_id: str) -> str:
    """PI-YYYY-QN"""
    cleaned = re.sub(r'\s+', '-', pi_id).upper()
    return cleaned if cleaned.startswith('PI-') else f'PI-{cleaned}'


def normalize_depth(depth: str) -> str:
    depth = depth.lower()
    if depth in ('brief', 'summary'):
        return 'summary'
    if depth in ('comprehensive', 'full'):
        return 'full'
    return 'detailed'


def normalize_format(output_format: str) -> str:
    output_format = output_format.lower()
    return {'md': 'markdown', 'tree': 'graph'}.get(output_format, output_format)


class ParameterExtractor:
    """
    Usage:
        params = ParameterExtractor().extract(parsed_intent)
        params.get("pi_id")
    """

    def extract(self, parsed: ParsedIntent) -> ExtractedParameters:
        text = parsed.normalized_text
        try:
            explicit = self._extract_explicit(text)
            inferred = self._infer_from_context(parsed.intent, parsed.context)

            result = ExtractedParameters(raw=explicit.raw)
            for key, value in inferred.parameters.items():
                result.parameters[key] = value
                result.inferred.add(key)
            for key, value in explicit.parameters.items():
                result.parameters[key] = value
                result.explicit.add(key)
                result.inferred.discard(key)

            self._apply_intent_defaults(result, parsed.intent)

            logger.debug(
                f"Parameters extracted for {parsed.intent.value}: "
                f"explicit={sorted(result.explicit)} inferred={sorted(result.inferred)}"
            )
            return result
        except Exception as e:
            logger.error(f"Parameter extraction error for '{text}' ({parsed.intent.value}): {e}")
            return ExtractedParameters(raw={"text": text})

    def _extract_explicit(self, text: str) -> ExtractedParameters:
        params = ExtractedParameters()
        values, raw = params.parameters, params.raw

        match = PI_ID.search(text)
        if match:
            values['pi_id'] = normalize_pi_id(match.group(1))
            raw['pi_id'] = match.group(0)

        match = TEAM_ID.search(text) or TEAM_MENTION.search(text)
        if match:
            values['team_id'] = match.group(1)
            raw['team_id'] = match.group(0)

        match = ITERATION.search(text)
        if match:
            values['iteration_id'] = f"iteration-{match.group(1)}"
            raw['iteration_id'] = match.group(0)

        match = STORY_ID.search(text)
        if match:
            values['story_id'] = match.group(1)
            raw['story_id'] = match.group(0)

        match = TIME_REF.search(text)
        if match:
            modifier, period = match.group(1).lower(), match.group(2).lower()
            values['timeframe'] = {
                'type': _TIME_TYPES.get(modifier, 'relative'),
                'period': period,
                'value': match.group(0),
            }
            raw['timeframe'] = match.group(0)
        else:
            match = SPECIFIC_TIME.search(text)
            if match:
                value = match.group(1) or re.sub(r'^(?:in|for)\s+', '', match.group(0), flags=re.IGNORECASE)
                values['timeframe'] = {'type': 'specific', 'value': value}
                raw['timeframe'] = match.group(0)

        match = STORY_POINTS.search(text)
        if match:
            values['story_points'] = int(match.group(1))
            raw['story_points'] = match.group(0)

        match = TARGET_SIZE.search(text)
        if match:
            phrase = match.group(0).lower()
            # "into 3 points" describes story points, not a target size
            if not ('into' in phrase and 'point' in phrase):
                values['target_size'] = int(match.group(1))
                raw['target_size'] = match.group(0)

        match = DEPTH.search(text)
        if match:
            values['depth'] = normalize_depth(match.group(1))
            raw['depth'] = match.group(0)

        match = DIRECTION.search(text)
        if match:
            values['direction'] = match.group(1).lower()
            raw['direction'] = match.group(0)

        match = FORMAT.search(text)
        if match:
            values['format'] = normalize_format(match.group(1))
            raw['format'] = match.group(0)

        return params

    def _infer_from_context(self, intent: CommandIntent, context: IssueContext) -> ExtractedParameters:
        params = ExtractedParameters()
        values = params.parameters

        if context.team_id:
            values['team_id'] = context.team_id

        current_pi = self.infer_current_pi(context)
        if current_pi:
            values['pi_id'] = current_pi

        if intent == CommandIntent.STORY_DECOMPOSE and context.issue_id:
            values['story_id'] = context.issue_id
            if context.estimate:
                values['story_points'] = context.estimate

        if intent in ANALYSIS_INTENTS:
            values['scope'] = self.infer_scope(context)

        return params

    @staticmethod
    def _apply_intent_defaults(params: ExtractedParameters, intent: CommandIntent) -> None:
        values = params.parameters

        def default(key: str, value: Any) -> None:
            if not values.get(key):
                values[key] = value
                params.defaults.add(key)

        if intent == CommandIntent.ART_PLAN:
            if not values.get('pi_id') and not values.get('timeframe'):
                default('timeframe', {'type': 'current', 'period': 'pi'})
        elif intent == CommandIntent.STORY_DECOMPOSE:
            default('target_size', DEFAULT_TARGET_SIZE)
        elif intent == CommandIntent.DEPENDENCY_MAP:
            default('direction', 'both')
            default('max_depth', DEFAULT_MAX_DEPTH)
        elif intent == CommandIntent.VALUE_ANALYZE:
            default('depth', 'summary')
        elif intent == CommandIntent.STATUS_CHECK:
            default('format', 'table')

    @staticmethod
    def infer_current_pi(context: IssueContext) -> Optional[str]:
        for label in context.labels:
            match = LABEL_PI.search(label)
            if match:
                return normalize_pi_id(match.group(1))
        if context.current_pi:
            return normalize_pi_id(context.current_pi)
        return None

    @staticmethod
    def infer_scope(context: IssueContext) -> Dict[str, Any]:
        if context.project_id:
            return {'type': 'project', 'id': context.project_id, 'name': context.project_name, 'explicit': False}
        return {'type': 'team', 'id': context.team_id, 'name': context.team_name, 'explicit': False}
