"""
Behavior Registry

Builds the built-in behaviors from configuration and keeps the engine's
registrations in step with enable/disable and config changes.
"""
from typing import Any, Callable, Dict, Optional

from .behaviors import (
    AnomalyDetectionBehavior,
    AnomalyDetectionConfig,
    ARTHealthConfig,
    ARTHealthMonitoringBehavior,
    DependencyDetectionBehavior,
    DependencyDetectionConfig,
    PeriodicReportingBehavior,
    PeriodicReportingConfig,
    StoryMonitoringBehavior,
    StoryMonitoringConfig,
    WorkflowAutomationBehavior,
    WorkflowAutomationConfig,
)
from .behaviors.anomaly_detection import AnomalyThresholds
from .behaviors.periodic_reporting import ReportType
from .engine import AutonomousBehaviorEngine, EngineConfig
from .types import AutonomousBehavior
from ..utils.config import EngineSettings
from ..utils.logger import setup_logger
from ..workflow.progress import ProgressEngine

logger = setup_logger(__name__)


class BehaviorRegistry:
    """
    Owns behavior construction for an engine.

    Per-behavior overrides come from `EngineSettings.behaviors[behavior_id]`
    and are passed to that behavior's config dataclass.
    """

    def __init__(
        self,
        engine: AutonomousBehaviorEngine,
        tracker,
        settings: Optional[EngineSettings] = None,
        progress_engine: Optional[ProgressEngine] = None
    ):
        self.engine = engine
        self.tracker = tracker
        self.settings = settings or EngineSettings()
        self.progress_engine = progress_engine or ProgressEngine()
        self._overrides: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in self.settings.behaviors.items()}
        self._factories: Dict[str, Callable[[Dict[str, Any]], AutonomousBehavior]] = {
            StoryMonitoringBehavior.id: self._story_monitoring,
            ARTHealthMonitoringBehavior.id: self._art_health,
            DependencyDetectionBehavior.id: lambda o: DependencyDetectionBehavior(
                self.tracker, DependencyDetectionConfig(**o)
            ),
            WorkflowAutomationBehavior.id: lambda o: WorkflowAutomationBehavior(
                self.tracker, WorkflowAutomationConfig(**o)
            ),
            PeriodicReportingBehavior.id: self._periodic_reporting,
            AnomalyDetectionBehavior.id: self._anomaly_detection,
        }

    # Factories

    def _story_monitoring(self, overrides: Dict[str, Any]) -> StoryMonitoringBehavior:
        options = {"max_story_points": self.engine.config.story_point_threshold, **overrides}
        return StoryMonitoringBehavior(self.tracker, StoryMonitoringConfig(**options))

    def _art_health(self, overrides: Dict[str, Any]) -> ARTHealthMonitoringBehavior:
        options = {"min_readiness_score": self.engine.config.art_readiness_threshold, **overrides}
        return ARTHealthMonitoringBehavior(self.tracker, self.progress_engine, ARTHealthConfig(**options))

    def _periodic_reporting(self, overrides: Dict[str, Any]) -> PeriodicReportingBehavior:
        options = dict(overrides)
        if "report_types" in options:
            options["report_types"] = [ReportType(t) for t in options["report_types"]]
        return PeriodicReportingBehavior(self.tracker, PeriodicReportingConfig(**options))

    def _anomaly_detection(self, overrides: Dict[str, Any]) -> AnomalyDetectionBehavior:
        options = dict(overrides)
        if isinstance(options.get("thresholds"), dict):
            options["thresholds"] = AnomalyThresholds(**options["thresholds"])
        return AnomalyDetectionBehavior(self.tracker, AnomalyDetectionConfig(**options))

    # Registration

    def build(self, behavior_id: str) -> AutonomousBehavior:
        factory = self._factories.get(behavior_id)
        if factory is None:
            raise KeyError(f"Unknown behavior: {behavior_id}")
        return factory(self._overrides.get(behavior_id, {}))

    def register_all(self) -> int:
        """Register every built-in behavior whose flag is on; returns how many were registered."""
        count = 0
        for behavior_id in self._factories:
            if not self.engine.config.enabled_behaviors.get(behavior_id, True):
                logger.info(f"[ENGINE] Behavior {behavior_id} disabled by configuration")
                continue
            self.engine.register_behavior(self.build(behavior_id))
            count += 1
        return count

    def set_behavior_enabled(self, behavior_id: str, enabled: bool) -> bool:
        """Enable or disable a behavior, registering it first if it was never built."""
        if behavior_id not in self._factories:
            return False
        self.engine.update_configuration(enabled_behaviors={behavior_id: enabled})
        if enabled and behavior_id not in self.engine.behaviors:
            self.engine.register_behavior(self.build(behavior_id))
        elif behavior_id in self.engine.behaviors:
            self.engine.set_behavior_enabled(behavior_id, enabled)
        return True

    def update_engine_config(self, **changes: Any) -> EngineConfig:
        return self.engine.update_configuration(**changes)

    def update_behavior_config(self, behavior_id: str, overrides: Dict[str, Any]) -> AutonomousBehavior:
        """Merge overrides for a behavior, then rebuild and re-register it."""
        if behavior_id not in self._factories:
            raise KeyError(f"Unknown behavior: {behavior_id}")
        merged = {**self._overrides.get(behavior_id, {}), **overrides}
        behavior = self._factories[behavior_id](merged)
        self._overrides[behavior_id] = merged

        previous = self.engine.behaviors.get(behavior_id)
        if previous is not None:
            behavior.enabled = previous.enabled
        self.engine.register_behavior(behavior)
        logger.info(f"[ENGINE] Updated configuration for {behavior_id}: {sorted(overrides)}")
        return behavior

    def get_health_status(self) -> Dict[str, Any]:
        return self.engine.get_health_status()

    def get_metrics(self) -> Dict[str, Any]:
        return self.engine.get_metrics()
