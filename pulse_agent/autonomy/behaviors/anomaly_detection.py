"""
Anomaly detection: compares a team's recent delivery metrics against a
longer baseline and reports velocity drops, cycle-time spikes, blockage,
estimation drift and WIP overload.
"""
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .common import elapsed_ms, failed_action, label_names, parse_timestamp, post_comment, state_name
from ..types import BehaviorAction, BehaviorContext, BehaviorNotification, BehaviorResult, BehaviorTriggerType
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

URGENT_PRIORITY = 1
LARGE_ESTIMATE = 8
WIP_PER_PERSON = 3
DEFAULT_CYCLE_TIME_DAYS = 7.0


@dataclass(frozen=True)
class AnomalyThresholds:
    velocity_deviation: float = 30
    cycle_time_increase: float = 50
    blockage_rate: float = 20
    estimation_accuracy: float = 40
    wip_excess: float = 50


@dataclass(frozen=True)
class AnomalyDetectionConfig:
    lookback_days: int = 30
    baseline_days: int = 90
    thresholds: AnomalyThresholds = field(default_factory=AnomalyThresholds)
    issue_limit: int = 250


@dataclass
class TeamMetrics:
    velocity: float = 0.0
    avg_cycle_time: float = 0.0
    blockage_rate: float = 0.0
    estimation_variance: float = 0.0
    wip_count: int = 0
    team_size: int = 1
    blocked_ids: List[str] = field(default_factory=list)
    in_progress_ids: List[str] = field(default_factory=list)


@dataclass
class Anomaly:
    type: str
    severity: str
    description: str
    metrics: Dict[str, Any]
    recommendation: str
    affected_items: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _days_between(start: Any, end: Any) -> Optional[float]:
    s, e = parse_timestamp(start), parse_timestamp(end)
    if s is None or e is None:
        return None
    return (e - s).total_seconds() / 86400


def _completed_since(issues: List[Dict[str, Any]], since: datetime) -> List[Dict[str, Any]]:
    result = []
    for issue in issues:
        completed = parse_timestamp(issue.get("completedAt"))
        if completed is not None and completed >= since:
            result.append(issue)
    return result


def _avg(values: List[float], default: float = 0.0) -> float:
    return sum(values) / len(values) if values else default


def compute_metrics(issues: List[Dict[str, Any]], since: datetime, now: datetime) -> TeamMetrics:
    """Delivery metrics for issues completed or active since `since`."""
    completed = _completed_since(issues, since)
    recent = [
        i for i in issues
        if (parse_timestamp(i.get("updatedAt")) or now) >= since
    ]
    blocked = [i for i in recent if "blocked" in [n.lower() for n in label_names(i)]]
    in_progress = [i for i in recent if state_name(i) in ("In Progress", "In Review")]

    weeks = max(1.0, (now - since).total_seconds() / timedelta(weeks=1).total_seconds())
    cycle_times = [d for d in (_days_between(i.get("createdAt"), i.get("completedAt")) for i in completed) if d is not None]

    variances = []
    for issue in completed:
        estimate = issue.get("estimate")
        actual = _days_between(issue.get("startedAt") or issue.get("createdAt"), issue.get("completedAt"))
        # One point is treated as one day of work
        if estimate and actual is not None:
            variances.append(abs(actual - estimate) / estimate)

    assignees = {(i.get("assignee") or {}).get("id") for i in issues} - {None}
    return TeamMetrics(
        velocity=sum(i.get("estimate") or 0 for i in completed) / weeks,
        avg_cycle_time=_avg(cycle_times),
        blockage_rate=len(blocked) / len(recent) * 100 if recent else 0.0,
        estimation_variance=_avg(variances) * 100,
        wip_count=len(in_progress),
        team_size=max(1, len(assignees)),
        blocked_ids=[i["id"] for i in blocked],
        in_progress_ids=[i["id"] for i in in_progress],
    )


def baseline_metrics(issues: List[Dict[str, Any]], since: datetime, now: datetime) -> TeamMetrics:
    baseline = compute_metrics(issues, since, now)
    if baseline.avg_cycle_time == 0:
        baseline.avg_cycle_time = DEFAULT_CYCLE_TIME_DAYS
    return baseline


def detect_anomalies(current: TeamMetrics, baseline: TeamMetrics, thresholds: AnomalyThresholds) -> List[Anomaly]:
    anomalies = []

    if baseline.velocity > 0:
        drop = (baseline.velocity - current.velocity) / baseline.velocity * 100
        if drop > thresholds.velocity_deviation:
            anomalies.append(Anomaly(
                type="velocity_drop",
                severity="high" if drop > 50 else "medium",
                description=f"Team velocity dropped {round(drop)}% below average",
                metrics={"current": current.velocity, "baseline": baseline.velocity, "drop_percentage": drop},
                recommendation="Review recent blockers, team capacity and story sizing",
            ))

    if baseline.avg_cycle_time > 0 and current.avg_cycle_time > 0:
        increase = (current.avg_cycle_time - baseline.avg_cycle_time) / baseline.avg_cycle_time * 100
        if increase > thresholds.cycle_time_increase:
            anomalies.append(Anomaly(
                type="cycle_time_spike",
                severity="high" if increase > 100 else "medium",
                description=f"Average cycle time increased {round(increase)}%",
                metrics={"current": current.avg_cycle_time, "baseline": baseline.avg_cycle_time,
                         "increase_percentage": increase},
                recommendation="Look for workflow bottlenecks and slow handoffs",
                affected_items=current.in_progress_ids,
            ))

    if current.blockage_rate > thresholds.blockage_rate:
        anomalies.append(Anomaly(
            type="blockage_increase",
            severity="high" if current.blockage_rate > 30 else "medium",
            description=f"{round(current.blockage_rate)}% of issues are blocked",
            metrics={"blockage_rate": current.blockage_rate, "blocked_count": len(current.blocked_ids)},
            recommendation="Hold a dependency resolution session and escalate external blockers",
            affected_items=current.blocked_ids,
        ))

    if current.estimation_variance > thresholds.estimation_accuracy:
        anomalies.append(Anomaly(
            type="estimation_drift",
            severity="medium",
            description=f"Completed work deviated {round(current.estimation_variance)}% from its estimates",
            metrics={"estimation_variance": current.estimation_variance},
            recommendation="Recalibrate estimates in the next refinement session",
        ))

    wip_limit = current.team_size * WIP_PER_PERSON
    wip_excess = (current.wip_count - wip_limit) / wip_limit * 100
    if wip_excess > thresholds.wip_excess:
        anomalies.append(Anomaly(
            type="wip_violation",
            severity="medium",
            description=f"WIP is {round(wip_excess)}% over the recommended limit",
            metrics={"wip": current.wip_count, "wip_limit": wip_limit, "excess_percentage": wip_excess},
            recommendation="Finish in-progress work before starting new items",
            affected_items=current.in_progress_ids,
        ))

    return anomalies


class AnomalyDetectionBehavior:
    id = "anomaly_detection"
    name = "Anomaly Detector"
    description = "Detects unusual patterns in team metrics"
    priority = 50

    def __init__(self, tracker, config: Optional[AnomalyDetectionConfig] = None):
        self.tracker = tracker
        self.config = config or AnomalyDetectionConfig()
        self.enabled = True

    async def should_trigger(self, context: BehaviorContext) -> bool:
        if context.trigger == BehaviorTriggerType.SCHEDULE:
            return True
        issue = context.issue
        if not issue or context.previous_state is None:
            return False
        return (
            state_name(issue) == "Blocked"
            or issue.get("priority") == URGENT_PRIORITY
            or (issue.get("estimate") or 0) > LARGE_ESTIMATE
        )

    async def execute(self, context: BehaviorContext) -> BehaviorResult:
        start = time.monotonic()
        now = datetime.now(timezone.utc)

        if context.team_id:
            teams = [context.team or {"id": context.team_id}]
        else:
            teams = await self.tracker.get_teams()

        actions: List[BehaviorAction] = []
        found: List[Anomaly] = []
        for team in teams:
            try:
                anomalies = await self.analyze_team(team["id"], now)
            except Exception as e:
                logger.error(f"[ENGINE] Failed to analyze team {team['id']}: {e}")
                actions.append(failed_action("analysis", team["id"], "Failed to analyze team metrics", e))
                continue
            if not anomalies:
                continue

            found.extend(anomalies)
            logger.info(
                f"[ENGINE] {len(anomalies)} anomalies for team {team['id']}: {[a.type for a in anomalies]}"
            )
            target = (context.issue or {}).get("id") or (await self._find_or_create_anomaly_issue(team["id"]))["id"]
            actions.append(await post_comment(
                self.tracker,
                target,
                self.build_report(team, anomalies),
                "Posted anomaly report",
                team_id=team["id"],
                anomalies=[a.to_dict() for a in anomalies],
            ))

        high = [a for a in found if a.severity == "high"]
        notification = None
        if found:
            notification = BehaviorNotification(
                title="Critical Anomalies Detected" if high else "Anomalies Detected",
                message=f"{len(found)} anomalies detected ({len(high)} high severity)",
                priority="high" if high else "medium",
                channels=["linear", "slack"],
                data={"anomalies": [a.type for a in found]},
            )

        return BehaviorResult(
            success=True,
            actions=actions,
            execution_time=elapsed_ms(start),
            should_notify=bool(found),
            notification=notification,
        )

    async def analyze_team(self, team_id: str, now: datetime) -> List[Anomaly]:
        baseline_start = now - timedelta(days=self.config.baseline_days)
        issues = await self.tracker.get_issues(
            team_id=team_id,
            limit=self.config.issue_limit,
            updated_after=baseline_start.isoformat(),
        )
        current = compute_metrics(issues, now - timedelta(days=self.config.lookback_days), now)
        baseline = baseline_metrics(issues, baseline_start, now)
        return detect_anomalies(current, baseline, self.config.thresholds)

    async def _find_or_create_anomaly_issue(self, team_id: str) -> Dict[str, Any]:
        title = "Anomaly Reports"
        existing = await self.tracker.get_issues(team_id=team_id, title=title, limit=1)
        if existing:
            return existing[0]
        return await self.tracker.create_issue(title=title, team_id=team_id, description="Automated anomaly reports")

    @staticmethod
    def build_report(team: Dict[str, Any], anomalies: List[Anomaly]) -> str:
        lines = [f"Anomaly report for {team.get('name') or team['id']}", ""]
        for i, anomaly in enumerate(sorted(anomalies, key=lambda a: a.severity != "high"), 1):
            lines.append(f"{i}. [{anomaly.severity}] {anomaly.description}. {anomaly.recommendation}.")
        return "\n".join(lines)

    def update_config(self, **overrides: Any) -> None:
        if isinstance(overrides.get("thresholds"), dict):
            overrides["thresholds"] = replace(self.config.thresholds, **overrides["thresholds"])
        self.config = replace(self.config, **overrides)
