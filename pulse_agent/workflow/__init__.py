"""
Workflow rules: progress calculation, state transitions and their configuration.
"""
from .progress_config import (
    ConfigValidationError,
    ProgressConfigHolder,
    ProgressTrackerConfig,
    get_progress_config,
    validate_progress_config,
)
from .progress import ProgressEngine, ProgressResult, WorkItem
from .state_transitions import (
    StateTransitionHandler,
    TransitionCommitError,
    TransitionContext,
    TransitionResult,
    TransitionWorkItem,
)

__all__ = [
    'ConfigValidationError',
    'ProgressConfigHolder',
    'ProgressTrackerConfig',
    'get_progress_config',
    'validate_progress_config',
    'ProgressEngine',
    'ProgressResult',
    'WorkItem',
    'StateTransitionHandler',
    'TransitionCommitError',
    'TransitionContext',
    'TransitionResult',
    'TransitionWorkItem',
]
