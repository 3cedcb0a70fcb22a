"""
Progress Tracker Configuration

Business-rule configuration shared by the progress engine, the state
transition handler and the integration error handler. Values are loaded
once per environment, validated, and swapped wholesale on update so a
calculation in flight keeps a consistent snapshot.
"""
import copy
import threading
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..utils.config import get_environment
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

EpicProgressStrategy = Literal["simple", "weighted", "milestone"]
ConcurrentUpdateStrategy = Literal["merge", "latest", "conflict"]


class ConfigValidationError(Exception):
    """Raised when a progress tracker configuration breaks its own invariants."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Invalid configuration: {', '.join(errors)}")
        self.errors = errors


class ProgressCalculationSettings(BaseModel):
    zero_point_story_weight: float = 1
    parent_epic_progress_strategy: EpicProgressStrategy = "weighted"
    include_moved_stories: bool = True
    enabler_story_multiplier: float = 1.2


class ThresholdSettings(BaseModel):
    art_readiness_warning: float = 85
    art_readiness_critical: float = 70
    capacity_utilization_max: float = 95
    capacity_utilization_min: float = 70
    progress_variance_threshold: float = 15


class StateTransitionSettings(BaseModel):
    allow_partial_epic_completion: bool = False
    require_dependency_completion: bool = True
    auto_progress_parent_epics: bool = True
    allow_incomplete_subtasks: bool = False


class IntegrationSettings(BaseModel):
    linear_api_retry_attempts: int = 3
    webhook_delay_tolerance: int = 5000  # ms
    concurrent_update_strategy: ConcurrentUpdateStrategy = "merge"
    rate_limit_backoff_multiplier: float = 2
    max_backoff_delay: int = 300000  # ms


class MonitoringSettings(BaseModel):
    track_edge_cases: bool = True
    log_business_rule_decisions: bool = True
    alert_on_threshold_breach: bool = True
    metrics_collection_interval: int = 60000  # ms


class ProgressTrackerConfig(BaseModel):
    """Process-wide business rule configuration"""
    progress_calculation: ProgressCalculationSettings = Field(default_factory=ProgressCalculationSettings)
    thresholds: ThresholdSettings = Field(default_factory=ThresholdSettings)
    state_transition: StateTransitionSettings = Field(default_factory=StateTransitionSettings)
    integration: IntegrationSettings = Field(default_factory=IntegrationSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)


def get_progress_config(environment: Optional[str] = None) -> ProgressTrackerConfig:
    """
    Build the default configuration for an environment.

    Args:
        environment: "production", "test" or anything else for development.
            Defaults to PULSE_ENV / ENVIRONMENT.

    Returns:
        A fresh ProgressTrackerConfig
    """
    environment = (environment or get_environment()).lower()
    config = ProgressTrackerConfig()

    if environment == "production":
        config.thresholds.art_readiness_warning = 90
        config.thresholds.art_readiness_critical = 75
        config.integration.linear_api_retry_attempts = 5
        config.monitoring.metrics_collection_interval = 30000

    if environment == "test":
        config.integration.linear_api_retry_attempts = 1
        config.integration.webhook_delay_tolerance = 1000
        config.monitoring.metrics_collection_interval = 1000

    return config


def validate_progress_config(config: ProgressTrackerConfig) -> List[str]:
    """Return the list of invariant violations (empty when valid)."""
    errors: List[str] = []
    thresholds = config.thresholds
    integration = config.integration

    if thresholds.art_readiness_warning <= thresholds.art_readiness_critical:
        errors.append("ART readiness warning threshold must be higher than critical threshold")
    if thresholds.capacity_utilization_max <= thresholds.capacity_utilization_min:
        errors.append("Maximum capacity utilization must be higher than minimum")
    if thresholds.progress_variance_threshold < 0 or thresholds.progress_variance_threshold > 100:
        errors.append("Progress variance threshold must be between 0 and 100")
    if integration.linear_api_retry_attempts < 0:
        errors.append("Linear API retry attempts must be non-negative")
    if integration.max_backoff_delay < integration.webhook_delay_tolerance:
        errors.append("Maximum backoff delay should be greater than webhook delay tolerance")

    return errors


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ProgressConfigHolder:
    """
    Single shared, validated ProgressTrackerConfig.

    Readers take `.current` once per operation; updates build a new object
    and replace the reference, never mutating the published one.
    """

    def __init__(self, config: Optional[ProgressTrackerConfig] = None):
        config = config or get_progress_config()
        errors = validate_progress_config(config)
        if errors:
            logger.error(f"[PROGRESS] Invalid progress tracker configuration: {errors}")
            raise ConfigValidationError(errors)
        self._config = config
        self._lock = threading.Lock()

    @property
    def current(self) -> ProgressTrackerConfig:
        return self._config

    def update(self, overrides: Dict[str, Any]) -> ProgressTrackerConfig:
        """
        Deep-merge overrides into a copy, validate, then publish it.

        Raises:
            ConfigValidationError: the merged config is invalid; the old one stays.
        """
        with self._lock:
            merged = _deep_merge(self._config.model_dump(), overrides)
            candidate = ProgressTrackerConfig.model_validate(merged)
            errors = validate_progress_config(candidate)
            if errors:
                logger.warning(f"[PROGRESS] Rejected configuration update: {errors}")
                raise ConfigValidationError(errors)
            self._config = candidate

        logger.info(f"[PROGRESS] Configuration updated: {sorted(overrides)}")
        return candidate
