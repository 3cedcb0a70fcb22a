"""
Intent recognition: pattern registry and command interpreter.
"""
from .command_interpreter import (
    CommandInterpreter,
    ConfidenceFactors,
    ConfidenceWeights,
    IssueContext,
    ParsedIntent,
    ParserConfig,
    combine_confidence,
)
from .patterns import CommandIntent, PatternDefinition, get_patterns_by_priority

__all__ = [
    'CommandIntent',
    'CommandInterpreter',
    'ConfidenceFactors',
    'ConfidenceWeights',
    'IssueContext',
    'ParsedIntent',
    'ParserConfig',
    'PatternDefinition',
    'combine_confidence',
    'get_patterns_by_priority',
]
