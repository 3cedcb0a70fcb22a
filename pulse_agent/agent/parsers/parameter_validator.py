"""
Parameter Validator

Checks extracted parameters against Linear data and business rules,
producing structured errors and suggestions rather than exceptions.
"""
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .parameter_extractor import DEFAULT_TARGET_SIZE, ExtractedParameters
from ..intent.patterns import CommandIntent
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

PI_FORMAT = re.compile(r'^PI-\d{4}-Q[1-4]$')
FIBONACCI_POINTS = (1, 2, 3, 5, 8, 13, 21)
TARGET_SIZE_RANGE = (1, 8)
MAX_DEPTH_RANGE = (1, 10)
MAX_TEAM_SUGGESTIONS = 3


class ValidationErrorCode(str, Enum):
    MISSING_REQUIRED = "missing_required"
    INVALID_FORMAT = "invalid_format"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    INCOMPATIBLE_PARAMS = "incompatible_params"
    OUT_OF_RANGE = "out_of_range"
    AMBIGUOUS_VALUE = "ambiguous_value"


@dataclass
class ValidationError:
    parameter: str
    message: str
    code: ValidationErrorCode
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParameterSuggestion:
    parameter: str
    current_value: Any
    suggestions: List[str]
    confidence: float


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[ParameterSuggestion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IntentRequirements:
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    exclusive: Tuple[Tuple[str, ...], ...] = ()


INTENT_REQUIREMENTS: Dict[CommandIntent, IntentRequirements] = {
    CommandIntent.ART_PLAN: IntentRequirements(
        optional=('pi_id', 'team_id', 'timeframe'),
        exclusive=(('pi_id', 'timeframe'),),
    ),
    CommandIntent.ART_OPTIMIZE: IntentRequirements(optional=('team_id', 'pi_id')),
    CommandIntent.VALUE_ANALYZE: IntentRequirements(optional=('scope', 'timeframe', 'depth')),
    CommandIntent.STORY_DECOMPOSE: IntentRequirements(
        required=('story_id',),
        optional=('target_size', 'story_points'),
    ),
    CommandIntent.DEPENDENCY_MAP: IntentRequirements(optional=('from_id', 'direction', 'max_depth', 'scope')),
    CommandIntent.STORY_SCORE: IntentRequirements(required=('story_id',), optional=('story_points',)),
    CommandIntent.STATUS_CHECK: IntentRequirements(optional=('scope', 'format', 'timeframe')),
    CommandIntent.HELP: IntentRequirements(),
    CommandIntent.UNKNOWN: IntentRequirements(),
}


class TeamAndIssueLookup(Protocol):
    """The slice of LinearService the validator needs."""

    async def get_teams(self) -> List[Dict[str, Any]]:
        ...

    async def get_issue(self, issue_id: str) -> Optional[Dict[str, Any]]:
        ...


class ParameterValidator:
    """Validate parameters for an intent against the tracking system."""

    def __init__(self, tracker: TeamAndIssueLookup):
        self.tracker = tracker

    async def validate(self, intent: CommandIntent, params: ExtractedParameters) -> ValidationResult:
        errors: List[ValidationError] = []
        suggestions: List[ParameterSuggestion] = []
        warnings: List[str] = []

        try:
            requirements = INTENT_REQUIREMENTS.get(intent, IntentRequirements())
            self._validate_required(params, requirements, errors)
            await self._validate_values(params, errors, suggestions)
            self._validate_compatibility(params, requirements, errors)
            warnings = self._implicit_warnings(params)
        except Exception as e:
            logger.error(f"Parameter validation error for {intent.value}: {e}")
            return ValidationResult(
                valid=False,
                errors=[ValidationError(
                    parameter='validation',
                    message='Unable to validate parameters at this time',
                    code=ValidationErrorCode.PERMISSION_DENIED,
                    context={'error': str(e)},
                )],
            )

        valid = not errors
        logger.debug(
            f"Parameter validation complete for {intent.value}: valid={valid}, "
            f"errors={len(errors)}, warnings={len(warnings)}"
        )
        return ValidationResult(valid=valid, errors=errors, warnings=warnings, suggestions=suggestions)

    @staticmethod
    def _validate_required(
        params: ExtractedParameters,
        requirements: IntentRequirements,
        errors: List[ValidationError]
    ) -> None:
        for name in requirements.required:
            if params.get(name) is None:
                errors.append(ValidationError(
                    parameter=name,
                    message=f"Missing required parameter: {name}",
                    code=ValidationErrorCode.MISSING_REQUIRED,
                ))

    async def _validate_values(
        self,
        params: ExtractedParameters,
        errors: List[ValidationError],
        suggestions: List[ParameterSuggestion]
    ) -> None:
        if params.get('team_id'):
            await self._validate_team(str(params.get('team_id')), errors, suggestions)

        if params.get('story_id'):
            await self._validate_story(str(params.get('story_id')), errors)

        pi_id = params.get('pi_id')
        if pi_id and not PI_FORMAT.match(pi_id):
            errors.append(ValidationError(
                parameter='pi_id',
                message=f"Invalid PI format: {pi_id}. Expected format: PI-YYYY-QN",
                code=ValidationErrorCode.INVALID_FORMAT,
                context={'expected': 'PI-YYYY-QN', 'example': 'PI-2025-Q1'},
            ))

        points = params.get('story_points')
        if points is not None and points not in FIBONACCI_POINTS:
            errors.append(ValidationError(
                parameter='story_points',
                message=f"Invalid story points: {points}. Use Fibonacci sequence",
                code=ValidationErrorCode.INVALID_FORMAT,
                context={'valid_values': list(FIBONACCI_POINTS)},
            ))

        self._validate_range(params, 'target_size', TARGET_SIZE_RANGE, "Target size must be between 1 and 8 points", errors)
        self._validate_range(params, 'max_depth', MAX_DEPTH_RANGE, "Max depth must be between 1 and 10", errors)

    @staticmethod
    def _validate_range(
        params: ExtractedParameters,
        name: str,
        bounds: Tuple[int, int],
        message: str,
        errors: List[ValidationError]
    ) -> None:
        value = params.get(name)
        low, high = bounds
        if value is not None and not low <= value <= high:
            errors.append(ValidationError(
                parameter=name,
                message=message,
                code=ValidationErrorCode.OUT_OF_RANGE,
                context={'min': low, 'max': high},
            ))

    async def _validate_team(
        self,
        team_id: str,
        errors: List[ValidationError],
        suggestions: List[ParameterSuggestion]
    ) -> None:
        try:
            teams = await self.tracker.get_teams()
        except Exception as e:
            logger.warning(f"Unable to validate team ID {team_id}: {e}")
            return

        wanted = team_id.lower()
        if any(
            t.get('id') == team_id or t.get('key') == team_id or (t.get('name') or '').lower() == wanted
            for t in teams
        ):
            return

        errors.append(ValidationError(
            parameter='team_id',
            message=f"Team not found: {team_id}",
            code=ValidationErrorCode.NOT_FOUND,
        ))
        similar = [
            t.get('name', '')
            for t in teams
            if wanted in (t.get('name') or '').lower() or wanted in (t.get('key') or '').lower()
        ][:MAX_TEAM_SUGGESTIONS]
        if similar:
            suggestions.append(ParameterSuggestion(
                parameter='team_id',
                current_value=team_id,
                suggestions=similar,
                confidence=0.8,
            ))

    async def _validate_story(self, story_id: str, errors: List[ValidationError]) -> None:
        try:
            issue = await self.tracker.get_issue(story_id)
        except Exception as e:
            if 'permission' in str(e).lower():
                errors.append(ValidationError(
                    parameter='story_id',
                    message=f"No access to issue: {story_id}",
                    code=ValidationErrorCode.PERMISSION_DENIED,
                ))
            else:
                errors.append(ValidationError(
                    parameter='story_id',
                    message=f"Invalid issue ID: {story_id}",
                    code=ValidationErrorCode.INVALID_FORMAT,
                ))
            return

        if not issue:
            errors.append(ValidationError(
                parameter='story_id',
                message=f"Issue not found: {story_id}",
                code=ValidationErrorCode.NOT_FOUND,
            ))

    @staticmethod
    def _validate_compatibility(
        params: ExtractedParameters,
        requirements: IntentRequirements,
        errors: List[ValidationError]
    ) -> None:
        for exclusive_set in requirements.exclusive:
            provided = [name for name in exclusive_set if params.get(name) is not None]
            if len(provided) > 1:
                errors.append(ValidationError(
                    parameter=','.join(provided),
                    message=f"Cannot specify both: {' and '.join(provided)}",
                    code=ValidationErrorCode.INCOMPATIBLE_PARAMS,
                    context={'exclusive': list(exclusive_set)},
                ))

    @staticmethod
    def _implicit_warnings(params: ExtractedParameters) -> List[str]:
        warnings = []
        default_target = (
            params.get('target_size') == DEFAULT_TARGET_SIZE and 'target_size' not in params.explicit
        )
        if default_target:
            warnings.append(f"Using default target size of {DEFAULT_TARGET_SIZE} points for decomposition")

        inferred = sorted(
            key for key in params.inferred
            if params.get(key) is not None and not (key == 'target_size' and default_target)
        )
        if inferred:
            warnings.append(f"Using inferred values: {', '.join(inferred)}. Specify explicitly to override.")
        return warnings
