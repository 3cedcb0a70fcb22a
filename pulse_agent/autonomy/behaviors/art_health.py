"""
ART health monitor: periodically measures a team's readiness with the
progress engine and raises an alert comment when it falls below the
configured minimum.
"""
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .common import elapsed_ms, label_names, post_comment, success_action
from ..types import BehaviorContext, BehaviorNotification, BehaviorResult
from ...utils.logger import setup_logger
from ...workflow.progress import ProgressEngine, ProgressResult, work_item_from_issue

logger = setup_logger(__name__)

CRITICAL_READINESS = 0.7


@dataclass(frozen=True)
class ARTHealthConfig:
    min_readiness_score: float = 0.85
    check_frequency_hours: float = 24
    # Empty means every team
    monitored_teams: List[str] = field(default_factory=list)
    issue_limit: int = 250


def current_pi_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"PI-{now.year}-Q{(now.month - 1) // 3 + 1}"


class ARTHealthMonitoringBehavior:
    id = "art_health_monitoring"
    name = "ART Health Monitor"
    description = "Monitors ART readiness and alerts on issues"
    priority = 90

    def __init__(self, tracker, progress_engine: Optional[ProgressEngine] = None, config: Optional[ARTHealthConfig] = None):
        self.tracker = tracker
        self.progress_engine = progress_engine or ProgressEngine()
        self.config = config or ARTHealthConfig()
        self.enabled = True
        self._last_check_times: Dict[str, float] = {}

    async def should_trigger(self, context: BehaviorContext) -> bool:
        team_id = context.team_id
        if not team_id:
            return False
        if self.config.monitored_teams and team_id not in self.config.monitored_teams:
            return False

        last_check = self._last_check_times.get(team_id)
        if last_check is not None:
            hours_since = (time.time() - last_check) / 3600
            if hours_since < self.config.check_frequency_hours:
                return False
        return True

    async def execute(self, context: BehaviorContext) -> BehaviorResult:
        start = time.monotonic()
        team_id = context.team_id
        if not team_id:
            raise ValueError("Team ID is required for ART health monitoring")

        self._last_check_times[team_id] = time.time()
        pi_id = context.metadata.get("pi_id") or current_pi_id()

        issues = await self.tracker.get_issues(team_id=team_id, limit=self.config.issue_limit)
        pi_issues = [i for i in issues if pi_id in label_names(i)] or issues
        progress = self.progress_engine.calculate_progress_with_edge_cases(
            [work_item_from_issue(issue) for issue in pi_issues]
        )
        readiness = progress.percentage / 100

        logger.info(
            f"[ENGINE] ART health for team {team_id} ({pi_id}): readiness {readiness:.2f} "
            f"(min {self.config.min_readiness_score})"
        )

        if readiness >= self.config.min_readiness_score:
            return BehaviorResult(
                success=True,
                actions=[success_action("analysis", team_id, "ART health check passed", readiness_score=readiness)],
                execution_time=elapsed_ms(start),
            )

        target = context.issue or await self._find_or_create_planning_issue(team_id, pi_id)
        action = await post_comment(
            self.tracker,
            target["id"],
            self.build_report(pi_id, readiness, progress),
            "Posted ART health alert",
            readiness_score=readiness,
            alerts=len(progress.alerts),
        )

        team_name = (context.team or {}).get("name") or team_id
        return BehaviorResult(
            success=True,
            actions=[action],
            execution_time=elapsed_ms(start),
            should_notify=True,
            notification=BehaviorNotification(
                title=f"ART Health Alert: {team_name}",
                message=f"ART readiness has dropped to {round(readiness * 100)}% for {pi_id}.",
                priority="high" if readiness < CRITICAL_READINESS else "medium",
                channels=["linear", "slack"],
                data={"team_id": team_id, "readiness_score": readiness, "issue_id": target["id"]},
            ),
        )

    async def _find_or_create_planning_issue(self, team_id: str, pi_id: str) -> Dict[str, Any]:
        title = f"{pi_id} Planning"
        existing = await self.tracker.get_issues(team_id=team_id, title=title, limit=1)
        if existing:
            return existing[0]
        logger.info(f"[ENGINE] Creating planning issue '{title}' for team {team_id}")
        return await self.tracker.create_issue(
            title=title,
            team_id=team_id,
            description=f"Planning and tracking for {pi_id}",
        )

    def build_report(self, pi_id: str, readiness: float, progress: ProgressResult) -> str:
        score = round(readiness * 100)
        status = "Critical" if readiness < CRITICAL_READINESS else "Warning"
        lines = [
            f"ART health alert for {pi_id}",
            "",
            f"Readiness score: {score}% (threshold {round(self.config.min_readiness_score * 100)}%), status: {status}",
            f"Completed {progress.completed_points:g} of {progress.total_points:g} weighted points "
            f"({progress.weighted_percentage:g}% weighted)",
        ]
        if progress.alerts:
            lines += ["", "Findings:"]
            for i, alert in enumerate(progress.alerts, 1):
                suffix = f" Recommendation: {alert.recommendation}" if alert.recommendation else ""
                lines.append(f"{i}. [{alert.type}] {alert.message}.{suffix}")
        lines += ["", "Reply with `@saafepulse check ART readiness` for a full assessment."]
        return "\n".join(lines)

    def update_config(self, **overrides: Any) -> None:
        self.config = replace(self.config, **overrides)
