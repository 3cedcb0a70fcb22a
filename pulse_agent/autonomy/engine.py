"""
Autonomous Behavior Engine

Matches incoming triggers to registered behaviors and runs them in
priority order, one at a time, so a later behavior can see what an
earlier one did. A global rate budget protects the workspace: when it is
exhausted the whole trigger is dropped.
"""
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from .health_monitor import BehaviorHealthMonitor
from .types import AutonomousBehavior, BehaviorContext, BehaviorResult, BehaviorTrigger, BehaviorTriggerType
from ..utils.config import ConfigDefaults, EngineSettings
from ..utils.logger import setup_logger

if TYPE_CHECKING:
    from .scheduler import BehaviorScheduler

logger = setup_logger(__name__)


def _default_enabled_behaviors() -> Dict[str, bool]:
    return {behavior_id: True for behavior_id in ConfigDefaults.BEHAVIOR_IDS}


@dataclass(frozen=True)
class EngineConfig:
    story_point_threshold: int = ConfigDefaults.ENGINE_STORY_POINT_THRESHOLD
    art_readiness_threshold: float = ConfigDefaults.ENGINE_ART_READINESS_THRESHOLD
    enabled_behaviors: Dict[str, bool] = field(default_factory=_default_enabled_behaviors)
    slack_notifications: bool = True
    email_notifications: bool = False
    max_per_minute: int = ConfigDefaults.ENGINE_MAX_PER_MINUTE
    max_per_hour: int = ConfigDefaults.ENGINE_MAX_PER_HOUR
    max_comments_per_issue: int = ConfigDefaults.ENGINE_MAX_COMMENTS_PER_ISSUE

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "EngineConfig":
        return cls(
            story_point_threshold=settings.story_point_threshold,
            art_readiness_threshold=settings.art_readiness_threshold,
            enabled_behaviors=dict(settings.enabled_behaviors),
            slack_notifications=settings.slack_notifications,
            email_notifications=settings.email_notifications,
            max_per_minute=settings.max_per_minute,
            max_per_hour=settings.max_per_hour,
            max_comments_per_issue=settings.max_comments_per_issue,
        )


class AutonomousBehaviorEngine:
    """
    Usage:
        engine = AutonomousBehaviorEngine(EngineConfig())
        engine.register_behavior(StoryMonitoringBehavior(linear_service))
        results = await engine.process_trigger(trigger)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        health_monitor: Optional[BehaviorHealthMonitor] = None
    ):
        self.config = config or EngineConfig()
        self.health_monitor = health_monitor or BehaviorHealthMonitor()
        self.scheduler: Optional["BehaviorScheduler"] = None
        self._behaviors: Dict[str, AutonomousBehavior] = {}
        self._execution_counts: Dict[str, int] = {}
        self._last_execution_times: Dict[str, datetime] = {}

        enabled = [k for k, v in self.config.enabled_behaviors.items() if v]
        logger.info(f"[ENGINE] Autonomous behavior engine initialized (enabled={enabled})")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.start()
        logger.info(f"[ENGINE] Engine started with {len(self._behaviors)} behaviors")

    async def shutdown(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        self.health_monitor.cleanup()
        logger.info("[ENGINE] Engine shut down")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @property
    def behaviors(self) -> Dict[str, AutonomousBehavior]:
        return dict(self._behaviors)

    def register_behavior(self, behavior: AutonomousBehavior) -> None:
        if behavior.id in self._behaviors:
            logger.warning(f"[ENGINE] Behavior {behavior.id} already registered, replacing")
        self._behaviors[behavior.id] = behavior
        self._execution_counts[behavior.id] = 0
        logger.info(f"[ENGINE] Registered behavior {behavior.id} ({behavior.name}, enabled={behavior.enabled})")

    def unregister_behavior(self, behavior_id: str) -> bool:
        if self._behaviors.pop(behavior_id, None) is None:
            return False
        self._execution_counts.pop(behavior_id, None)
        self._last_execution_times.pop(behavior_id, None)
        logger.info(f"[ENGINE] Unregistered behavior {behavior_id}")
        return True

    def set_behavior_enabled(self, behavior_id: str, enabled: bool) -> bool:
        behavior = self._behaviors.get(behavior_id)
        if behavior is None:
            return False
        behavior.enabled = enabled
        logger.info(f"[ENGINE] Behavior {behavior_id} enabled={enabled}")
        return True

    def update_configuration(self, **changes: Any) -> EngineConfig:
        """Swap in a copy of the config with the given fields replaced."""
        if "enabled_behaviors" in changes:
            changes["enabled_behaviors"] = {**self.config.enabled_behaviors, **changes["enabled_behaviors"]}
        self.config = replace(self.config, **changes)
        logger.info(f"[ENGINE] Configuration updated: {sorted(changes)}")
        return self.config

    # ------------------------------------------------------------------
    # Trigger processing
    # ------------------------------------------------------------------

    async def process_trigger(
        self,
        trigger: BehaviorTrigger,
        behavior_ids: Optional[Iterable[str]] = None
    ) -> List[BehaviorResult]:
        """
        Run the behaviors that apply to a trigger, highest priority first.

        Args:
            trigger: The event to process
            behavior_ids: Restrict execution to these behaviors (scheduled and manual runs)

        Returns:
            One result per applicable behavior; empty when the rate budget is spent
        """
        start = time.monotonic()
        logger.info(f"[ENGINE] Processing trigger {trigger.id} ({trigger.type.value})")

        if not self._check_rate_limits():
            logger.warning(f"[ENGINE] Rate limit exceeded, skipping trigger {trigger.id}")
            return []

        applicable = self._find_applicable_behaviors(trigger, behavior_ids)
        logger.debug(f"[ENGINE] Applicable behaviors: {[b.id for b in applicable]}")

        results = []
        for behavior in applicable:
            results.append(await self._execute_behavior(behavior, trigger.context))

        logger.info(
            f"[ENGINE] Trigger {trigger.id} complete: {len(results)} executed, "
            f"{sum(1 for r in results if r.success)} succeeded, {(time.monotonic() - start) * 1000:.0f}ms"
        )
        return results

    async def _execute_behavior(self, behavior: AutonomousBehavior, context: BehaviorContext) -> BehaviorResult:
        start = time.monotonic()
        try:
            if not await behavior.should_trigger(context):
                logger.debug(f"[ENGINE] Behavior {behavior.id} declined to trigger")
                return BehaviorResult(
                    success=True,
                    execution_time=(time.monotonic() - start) * 1000,
                    behavior_id=behavior.id,
                )

            result = await behavior.execute(context)
            elapsed = (time.monotonic() - start) * 1000
            result.behavior_id = behavior.id
            self._update_metrics(behavior.id, result.success, elapsed, result.error)

            if result.actions:
                logger.info(
                    f"[ENGINE] Behavior {behavior.id} took {len(result.actions)} actions: "
                    f"{[(a.type, a.target, a.result) for a in result.actions]}"
                )
            return result
        except Exception as e:
            elapsed = (time.monotonic() - start) * 1000
            logger.error(f"[ENGINE] Behavior {behavior.id} failed: {e}", exc_info=True)
            self._update_metrics(behavior.id, False, elapsed, str(e))
            return BehaviorResult(
                success=False,
                error=str(e),
                execution_time=elapsed,
                behavior_id=behavior.id,
            )

    def _find_applicable_behaviors(
        self,
        trigger: BehaviorTrigger,
        behavior_ids: Optional[Iterable[str]] = None
    ) -> List[AutonomousBehavior]:
        # An explicit selection replaces the trigger-type filter, not the enabled checks
        wanted = set(behavior_ids) if behavior_ids is not None else None
        applicable = [
            behavior for behavior_id, behavior in self._behaviors.items()
            if behavior.enabled
            and self.config.enabled_behaviors.get(behavior_id, True) is not False
            and (behavior_id in wanted if wanted is not None else self.applies_to_trigger(behavior, trigger.type))
        ]
        return sorted(applicable, key=lambda b: b.priority, reverse=True)

    @staticmethod
    def applies_to_trigger(behavior: AutonomousBehavior, trigger_type: BehaviorTriggerType) -> bool:
        if trigger_type == BehaviorTriggerType.SCHEDULE:
            return "periodic" in behavior.id or "monitoring" in behavior.id
        if trigger_type == BehaviorTriggerType.COMMAND_COMPLETION:
            return "monitoring" in behavior.id or "detection" in behavior.id
        return True

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _check_rate_limits(self) -> bool:
        """Global budget: counts behaviors whose last execution falls inside each window."""
        now = self._now()
        minute_ago = now - timedelta(minutes=1)
        hour_ago = now - timedelta(hours=1)

        minute_count = sum(1 for t in self._last_execution_times.values() if t > minute_ago)
        hour_count = sum(1 for t in self._last_execution_times.values() if t > hour_ago)

        return minute_count < self.config.max_per_minute and hour_count < self.config.max_per_hour

    def _update_metrics(self, behavior_id: str, success: bool, execution_time: float, error: Optional[str]) -> None:
        self._execution_counts[behavior_id] = self._execution_counts.get(behavior_id, 0) + 1
        self._last_execution_times[behavior_id] = self._now()
        self.health_monitor.record_execution(behavior_id, success, execution_time, error)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.health_monitor.get_metrics()
        metrics["execution_counts"] = dict(self._execution_counts)
        metrics["last_execution_times"] = {k: v.isoformat() for k, v in self._last_execution_times.items()}
        metrics["registered_behaviors"] = sorted(self._behaviors)
        metrics["config"] = asdict(self.config)
        return metrics

    def get_health_status(self) -> Dict[str, Any]:
        return self.health_monitor.get_health_status(self._behaviors.keys())
