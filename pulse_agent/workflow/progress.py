"""
Progress Calculation Engine

Computes weighted completion metrics for a set of work items under the
configured business rules, and raises threshold-based alerts.

Every call is independent: the rule and edge-case audit trail is built
locally and returned in the result, so two calls over the same items and
configuration produce identical results.
"""
import math
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Union

from .progress_config import ProgressConfigHolder, ProgressTrackerConfig, get_progress_config
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

DONE = "Done"
IN_PROGRESS = "In Progress"
TODO = "Todo"
CANCELED = "Canceled"

EXCELLENT_READINESS = 95
DEPENDENCY_CAP = 90
PARTIAL_EPIC_PENALTY = 5


@dataclass
class WorkItem:
    """Transient projection of a work item used only for aggregate calculation."""
    id: str
    story_points: float
    state: str
    type: str = "Story"  # Story | Enabler | Epic | Feature
    title: str = ""
    parent_epic_id: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    moved_from_iteration: bool = False


@dataclass
class ProgressAlert:
    type: str  # critical | warning | info
    message: str
    threshold: Optional[float] = None
    actual: Optional[float] = None
    recommendation: Optional[str] = None


@dataclass
class ProgressResult:
    percentage: float
    weighted_percentage: float
    completed_points: float
    total_points: float
    readiness_level: str  # critical | warning | good | excellent
    alerts: List[ProgressAlert] = field(default_factory=list)
    business_rules_applied: List[str] = field(default_factory=list)
    edge_cases_handled: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def round_half_up(value: float) -> int:
    """Round .5 upward, the way percentages are reported to users."""
    return int(math.floor(value + 0.5))


class _Trace:
    """Ordered, de-duplicated record of the rules and edge cases that fired."""

    def __init__(self, track_edge_cases: bool = True):
        self.track_edge_cases = track_edge_cases
        self.rules: Dict[str, None] = {}
        self.edge_cases: Dict[str, None] = {}

    def rule(self, name: str) -> None:
        self.rules[name] = None

    def edge_case(self, name: str) -> None:
        if self.track_edge_cases:
            self.edge_cases[name] = None


class ProgressEngine:
    """
    Progress calculation with edge-case handling.

    Usage:
        engine = ProgressEngine(ProgressConfigHolder())
        result = engine.calculate_progress_with_edge_cases(items)
    """

    def __init__(self, config: Union[ProgressConfigHolder, ProgressTrackerConfig, None] = None):
        if isinstance(config, ProgressConfigHolder):
            self._holder = config
        else:
            self._holder = ProgressConfigHolder(config or get_progress_config())

    @property
    def config(self) -> ProgressTrackerConfig:
        return self._holder.current

    def calculate_progress_with_edge_cases(self, items: Iterable[WorkItem]) -> ProgressResult:
        """
        Calculate progress for a snapshot of work items.

        Args:
            items: Work items; not modified.

        Returns:
            ProgressResult with percentages, readiness, alerts and the audit trail
        """
        config = self.config
        trace = _Trace(config.monitoring.track_edge_cases)
        items = list(items)

        if not items:
            trace.edge_case("empty-work-items")
            return self._empty_result(trace)

        processed = self._preprocess(items, config, trace)
        percentage, weighted, completed, total = self._base_progress(processed, config, trace)
        percentage, weighted = self._apply_business_rules(percentage, weighted, processed, config, trace)
        alerts = []
        if config.monitoring.alert_on_threshold_breach:
            alerts = self._generate_alerts(percentage, weighted, processed, config)

        result = ProgressResult(
            percentage=percentage,
            weighted_percentage=weighted,
            completed_points=completed,
            total_points=total,
            readiness_level=self.determine_readiness_level(percentage, config),
            alerts=alerts,
            business_rules_applied=list(trace.rules),
            edge_cases_handled=list(trace.edge_cases),
        )

        if config.monitoring.log_business_rule_decisions:
            logger.info(
                f"[PROGRESS] {result.percentage}% (weighted {result.weighted_percentage}%), "
                f"readiness={result.readiness_level}, rules={result.business_rules_applied}, "
                f"edge_cases={result.edge_cases_handled}, alerts={len(result.alerts)}"
            )
        return result

    # ------------------------------------------------------------------
    # Calculation steps
    # ------------------------------------------------------------------

    def _preprocess(self, items: List[WorkItem], config: ProgressTrackerConfig, trace: _Trace) -> List[WorkItem]:
        settings = config.progress_calculation
        processed = []
        for item in items:
            points = item.story_points or 0

            if points == 0:
                trace.edge_case("zero-point-story")
                points = settings.zero_point_story_weight
                self._log_decision(config, f"zero-point story {item.id} weighted as {points}")

            if item.type == "Enabler":
                trace.rule("enabler-multiplier")
                points *= settings.enabler_story_multiplier

            if item.moved_from_iteration and not settings.include_moved_stories:
                trace.edge_case("moved-story-excluded")
                points = 0
                self._log_decision(config, f"moved story {item.id} excluded")

            processed.append(replace(item, story_points=points))
        return processed

    def _base_progress(self, items: List[WorkItem], config: ProgressTrackerConfig, trace: _Trace):
        total = sum(item.story_points for item in items)
        completed = sum(item.story_points for item in items if item.state == DONE)

        if total == 0:
            trace.edge_case("zero-total-points")
            return 0, 0, 0, 0

        percentage = round_half_up(completed / total * 100)
        weighted = self._weighted_progress(items, completed, total, config, trace)
        return percentage, weighted, completed, total

    def _weighted_progress(
        self,
        items: List[WorkItem],
        completed: float,
        total: float,
        config: ProgressTrackerConfig,
        trace: _Trace
    ) -> int:
        strategy = config.progress_calculation.parent_epic_progress_strategy

        if strategy == "weighted":
            trace.rule("weighted-progress-calculation")
            weighted_complete = sum(i.story_points ** 2 for i in items if i.state == DONE)
            weighted_total = sum(i.story_points ** 2 for i in items)
            return round_half_up(weighted_complete / weighted_total * 100) if weighted_total > 0 else 0

        if strategy == "milestone":
            trace.rule("milestone-progress-calculation")
            milestones = [i for i in items if i.type in ("Epic", "Feature")]
            done = [i for i in milestones if i.state == DONE]
            return round_half_up(len(done) / len(milestones) * 100) if milestones else 0

        return round_half_up(completed / total * 100)

    def _apply_business_rules(
        self,
        percentage: float,
        weighted: float,
        items: List[WorkItem],
        config: ProgressTrackerConfig,
        trace: _Trace
    ):
        rules = config.state_transition

        if rules.require_dependency_completion and self._done_with_incomplete_dependencies(items):
            trace.rule("dependency-completion-required")
            trace.edge_case("incomplete-dependencies")
            percentage = min(percentage, DEPENDENCY_CAP)
            weighted = min(weighted, DEPENDENCY_CAP)
            self._log_decision(config, f"progress capped at {DEPENDENCY_CAP}% by incomplete dependencies")

        if not rules.allow_partial_epic_completion:
            partial_epics = self._partially_completed_epics(items)
            if partial_epics:
                trace.rule("partial-epic-completion-blocked")
                trace.edge_case("partial-epic-completion")
                penalty = len(partial_epics) * PARTIAL_EPIC_PENALTY
                percentage = max(0, percentage - penalty)
                weighted = max(0, weighted - penalty)
                self._log_decision(config, f"{len(partial_epics)} partially completed epics, -{penalty}%")

        return percentage, weighted

    @staticmethod
    def _done_with_incomplete_dependencies(items: List[WorkItem]) -> List[WorkItem]:
        by_id = {item.id: item for item in items}
        flagged = []
        for item in items:
            if item.state != DONE:
                continue
            for dep_id in item.dependencies or []:
                dep = by_id.get(dep_id)
                if dep is not None and dep.state != DONE:
                    flagged.append(item)
                    break
        return flagged

    @staticmethod
    def _partially_completed_epics(items: List[WorkItem]) -> List[WorkItem]:
        partial = []
        for epic in items:
            if epic.type != "Epic" or epic.state != DONE:
                continue
            children = [i for i in items if i.parent_epic_id == epic.id]
            if any(child.state not in (DONE, CANCELED) for child in children):
                partial.append(epic)
        return partial

    # ------------------------------------------------------------------
    # Alerts and readiness
    # ------------------------------------------------------------------

    def _generate_alerts(
        self,
        percentage: float,
        weighted: float,
        items: List[WorkItem],
        config: ProgressTrackerConfig
    ) -> List[ProgressAlert]:
        thresholds = config.thresholds
        alerts: List[ProgressAlert] = []

        if percentage < thresholds.art_readiness_critical:
            alerts.append(ProgressAlert(
                type="critical",
                message="ART readiness is critically low",
                threshold=thresholds.art_readiness_critical,
                actual=percentage,
                recommendation="Immediate action required to improve PI planning readiness",
            ))
        elif percentage < thresholds.art_readiness_warning:
            alerts.append(ProgressAlert(
                type="warning",
                message="ART readiness is below target",
                threshold=thresholds.art_readiness_warning,
                actual=percentage,
                recommendation="Review and prioritize remaining work items",
            ))

        utilization = self.capacity_utilization(items)
        if utilization > thresholds.capacity_utilization_max:
            alerts.append(ProgressAlert(
                type="warning",
                message="Team capacity is over-utilized",
                threshold=thresholds.capacity_utilization_max,
                actual=utilization,
                recommendation="Consider redistributing work or adjusting commitments",
            ))
        elif utilization < thresholds.capacity_utilization_min:
            alerts.append(ProgressAlert(
                type="info",
                message="Team capacity is under-utilized",
                threshold=thresholds.capacity_utilization_min,
                actual=utilization,
                recommendation="Consider taking on additional work items",
            ))

        variance = abs(percentage - weighted)
        if variance > thresholds.progress_variance_threshold:
            alerts.append(ProgressAlert(
                type="warning",
                message="High variance between simple and weighted progress",
                threshold=thresholds.progress_variance_threshold,
                actual=variance,
                recommendation="Review story point estimates and work distribution",
            ))

        return alerts

    @staticmethod
    def capacity_utilization(items: List[WorkItem]) -> int:
        """In-progress points as a percentage of all non-canceled points."""
        in_progress = sum(i.story_points for i in items if i.state == IN_PROGRESS)
        active = sum(i.story_points for i in items if i.state != CANCELED)
        return round_half_up(in_progress / active * 100) if active > 0 else 0

    @staticmethod
    def determine_readiness_level(percentage: float, config: ProgressTrackerConfig) -> str:
        if percentage >= EXCELLENT_READINESS:
            return "excellent"
        if percentage >= config.thresholds.art_readiness_warning:
            return "good"
        if percentage >= config.thresholds.art_readiness_critical:
            return "warning"
        return "critical"

    @staticmethod
    def _empty_result(trace: _Trace) -> ProgressResult:
        return ProgressResult(
            percentage=0,
            weighted_percentage=0,
            completed_points=0,
            total_points=0,
            readiness_level="critical",
            alerts=[ProgressAlert(
                type="info",
                message="No work items to track",
                recommendation="Add work items to begin tracking progress",
            )],
            business_rules_applied=list(trace.rules),
            edge_cases_handled=list(trace.edge_cases),
        )

    @staticmethod
    def _log_decision(config: ProgressTrackerConfig, message: str) -> None:
        if config.monitoring.log_business_rule_decisions:
            logger.debug(f"[PROGRESS] {message}")


# ----------------------------------------------------------------------
# Linear issue projection
# ----------------------------------------------------------------------

_STATE_TYPE_MAP = {
    "completed": DONE,
    "canceled": CANCELED,
    "started": IN_PROGRESS,
}

_TYPE_LABELS = {"enabler": "Enabler", "epic": "Epic", "feature": "Feature"}


def work_item_from_issue(issue: Dict[str, Any]) -> WorkItem:
    """Project a Linear issue dict onto a progress WorkItem."""
    state = issue.get("state") or {}
    state_name = state.get("name", "") if isinstance(state, dict) else str(state)
    state_type = state.get("type", "") if isinstance(state, dict) else ""

    if state_name in (DONE, CANCELED, IN_PROGRESS, TODO):
        normalized_state = state_name
    else:
        normalized_state = _STATE_TYPE_MAP.get(state_type, TODO)

    labels = issue.get("labels") or []
    if isinstance(labels, dict):
        labels = labels.get("nodes", [])
    label_names = [
        (label.get("name", "") if isinstance(label, dict) else str(label)).lower()
        for label in labels
    ]
    item_type = next((_TYPE_LABELS[name] for name in label_names if name in _TYPE_LABELS), "Story")

    parent = issue.get("parent") or {}
    return WorkItem(
        id=issue.get("id", ""),
        title=issue.get("title", ""),
        story_points=issue.get("estimate") or 0,
        state=normalized_state,
        type=item_type,
        parent_epic_id=parent.get("id") if isinstance(parent, dict) else None,
    )
