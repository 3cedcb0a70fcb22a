"""
Periodic reporting: schedule-driven team reports (weekly summary, sprint
review, velocity, blockers, upcoming work) posted to a per-team
reporting issue.
"""
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .common import elapsed_ms, failed_action, label_names, parse_timestamp, state_name, success_action
from ..types import BehaviorAction, BehaviorContext, BehaviorNotification, BehaviorResult, BehaviorTriggerType
from ...utils.logger import setup_logger

logger = setup_logger(__name__)


class ReportType(str, Enum):
    WEEKLY_SUMMARY = "weekly_summary"
    SPRINT_REVIEW = "sprint_review"
    VELOCITY_REPORT = "velocity_report"
    BLOCKERS_REPORT = "blockers_report"
    UPCOMING_WORK = "upcoming_work"


# Look-back window of each report, also used as its minimum interval
REPORT_WINDOWS = {
    ReportType.WEEKLY_SUMMARY: timedelta(days=7),
    ReportType.SPRINT_REVIEW: timedelta(days=14),
    ReportType.VELOCITY_REPORT: timedelta(days=30),
    ReportType.BLOCKERS_REPORT: timedelta(days=1),
    ReportType.UPCOMING_WORK: timedelta(days=7),
}

REPORT_TITLES = {
    ReportType.WEEKLY_SUMMARY: "Weekly Summary",
    ReportType.SPRINT_REVIEW: "Sprint Review",
    ReportType.VELOCITY_REPORT: "Velocity",
    ReportType.BLOCKERS_REPORT: "Blockers",
    ReportType.UPCOMING_WORK: "Upcoming Work",
}

IN_PROGRESS_STATES = ("In Progress", "In Review")
UPCOMING_STATES = ("Todo", "Backlog")


@dataclass(frozen=True)
class PeriodicReportingConfig:
    report_types: List[ReportType] = field(
        default_factory=lambda: [ReportType.WEEKLY_SUMMARY, ReportType.VELOCITY_REPORT]
    )
    # Empty means every team
    team_ids: List[str] = field(default_factory=list)
    issue_limit: int = 250


@dataclass
class ReportData:
    report_type: ReportType
    team_id: str
    team_name: str
    start: datetime
    end: datetime
    metrics: Dict[str, Any]
    completed: List[Dict[str, Any]] = field(default_factory=list)
    in_progress: List[Dict[str, Any]] = field(default_factory=list)
    blocked: List[Dict[str, Any]] = field(default_factory=list)
    upcoming: List[Dict[str, Any]] = field(default_factory=list)


def _points(issues: List[Dict[str, Any]]) -> float:
    return sum(issue.get("estimate") or 0 for issue in issues)


def gather_report_data(
    report_type: ReportType,
    team: Dict[str, Any],
    issues: List[Dict[str, Any]],
    now: Optional[datetime] = None
) -> ReportData:
    """Bucket a team's issues for a report window and compute its metrics."""
    end = now or datetime.now(timezone.utc)
    start = end - REPORT_WINDOWS[report_type]

    completed = []
    for issue in issues:
        if state_name(issue) != "Done":
            continue
        finished = parse_timestamp(issue.get("completedAt") or issue.get("updatedAt"))
        if finished is not None and finished >= start:
            completed.append(issue)
    in_progress = [i for i in issues if state_name(i) in IN_PROGRESS_STATES]
    blocked = [i for i in issues if "blocked" in [n.lower() for n in label_names(i)]]
    upcoming = [
        i for i in issues
        if state_name(i) in UPCOMING_STATES and 1 <= (i.get("priority") or 0) <= 2
    ]

    completed_points = _points(completed)
    weeks = max(1.0, (end - start).total_seconds() / timedelta(weeks=1).total_seconds())
    return ReportData(
        report_type=report_type,
        team_id=team["id"],
        team_name=team.get("name") or team["id"],
        start=start,
        end=end,
        metrics={
            "completed_issues": len(completed),
            "completed_points": completed_points,
            "in_progress_issues": len(in_progress),
            "in_progress_points": _points(in_progress),
            "blocked_issues": len(blocked),
            "velocity": round(completed_points / weeks),
        },
        completed=completed[:10],
        in_progress=in_progress[:10],
        blocked=blocked,
        upcoming=upcoming[:5],
    )


def render_report(data: ReportData) -> str:
    m = data.metrics
    lines = [
        f"{REPORT_TITLES[data.report_type]} report for {data.team_name}",
        f"Period: {data.start.date().isoformat()} to {data.end.date().isoformat()}",
        "",
        f"Completed: {m['completed_issues']} issues ({m['completed_points']:g} points)",
        f"In progress: {m['in_progress_issues']} issues ({m['in_progress_points']:g} points)",
        f"Blocked: {m['blocked_issues']} issues",
        f"Velocity: {m['velocity']} points/week",
    ]

    sections = {
        ReportType.WEEKLY_SUMMARY: ("Completed this week", data.completed),
        ReportType.SPRINT_REVIEW: ("Delivered this sprint", data.completed),
        ReportType.BLOCKERS_REPORT: ("Blocked issues", data.blocked),
        ReportType.UPCOMING_WORK: ("High-priority upcoming work", data.upcoming),
    }
    if data.report_type in sections:
        heading, issues = sections[data.report_type]
        lines += ["", f"{heading}:"]
        lines += [f"- {i.get('identifier') or i.get('id')}: {i.get('title', '')}" for i in issues] or ["- none"]
    elif data.report_type == ReportType.VELOCITY_REPORT and m["velocity"] < 10:
        lines += ["", "Velocity is below 10 points/week. Review blockers and story sizes."]
    return "\n".join(lines)


class PeriodicReportingBehavior:
    id = "periodic_reporting"
    name = "Periodic Reporter"
    description = "Generates periodic team reports"
    priority = 40

    def __init__(self, tracker, config: Optional[PeriodicReportingConfig] = None):
        self.tracker = tracker
        self.config = config or PeriodicReportingConfig()
        self.enabled = True
        self._last_report_times: Dict[ReportType, datetime] = {}

    def _requested_types(self, context: BehaviorContext) -> List[ReportType]:
        requested = context.metadata.get("report_type")
        if requested:
            return [ReportType(requested)]
        return list(self.config.report_types)

    def _is_due(self, report_type: ReportType, now: datetime) -> bool:
        last = self._last_report_times.get(report_type)
        return last is None or now - last >= REPORT_WINDOWS[report_type]

    async def should_trigger(self, context: BehaviorContext) -> bool:
        if context.trigger != BehaviorTriggerType.SCHEDULE:
            return False
        now = datetime.now(timezone.utc)
        return any(self._is_due(t, now) for t in self._requested_types(context))

    async def execute(self, context: BehaviorContext) -> BehaviorResult:
        start = time.monotonic()
        now = datetime.now(timezone.utc)
        due = [t for t in self._requested_types(context) if self._is_due(t, now)]
        teams = await self._target_teams(context)
        logger.info(f"[ENGINE] Generating reports {[t.value for t in due]} for {len(teams)} team(s)")

        actions: List[BehaviorAction] = []
        for team in teams:
            try:
                issues = await self.tracker.get_issues(team_id=team["id"], limit=self.config.issue_limit)
            except Exception as e:
                logger.error(f"[ENGINE] Failed to load issues for team {team['id']}: {e}")
                actions.extend(failed_action("report", team["id"], f"Failed to generate {t.value} report", e) for t in due)
                continue
            for report_type in due:
                actions.append(await self._post_report(gather_report_data(report_type, team, issues, now)))

        for report_type in due:
            self._last_report_times[report_type] = now

        posted = [a for a in actions if a.result == "success"]
        return BehaviorResult(
            success=True,
            actions=actions,
            execution_time=elapsed_ms(start),
            should_notify=bool(posted),
            notification=BehaviorNotification(
                title="Periodic Reports Generated",
                message=f"Generated {len(posted)} reports",
                priority="low",
                channels=["linear"],
                data={"reports": [a.data for a in posted]},
            ) if posted else None,
        )

    async def _target_teams(self, context: BehaviorContext) -> List[Dict[str, Any]]:
        if context.team_id:
            return [context.team or {"id": context.team_id}]
        teams = await self.tracker.get_teams()
        if self.config.team_ids:
            teams = [t for t in teams if t.get("id") in self.config.team_ids]
        return teams

    async def _post_report(self, data: ReportData) -> BehaviorAction:
        try:
            issue = await self._find_or_create_reporting_issue(data.team_id, data.report_type)
            await self.tracker.create_comment(issue["id"], render_report(data))
            logger.info(f"[ENGINE] Posted {data.report_type.value} report for team {data.team_id}")
            return success_action(
                "report",
                issue["id"],
                f"Posted {data.report_type.value} report",
                team_id=data.team_id,
                report_type=data.report_type.value,
                metrics=data.metrics,
            )
        except Exception as e:
            logger.error(f"[ENGINE] Failed to post {data.report_type.value} report for {data.team_id}: {e}")
            return failed_action("report", data.team_id, f"Failed to post {data.report_type.value} report", e)

    async def _find_or_create_reporting_issue(self, team_id: str, report_type: ReportType) -> Dict[str, Any]:
        title = f"{REPORT_TITLES[report_type]} Reports"
        existing = await self.tracker.get_issues(team_id=team_id, title=title, limit=1)
        if existing:
            return existing[0]
        return await self.tracker.create_issue(
            title=title,
            team_id=team_id,
            description=f"Automated {report_type.value} reports",
        )

    def update_config(self, **overrides: Any) -> None:
        if "report_types" in overrides:
            overrides["report_types"] = [ReportType(t) for t in overrides["report_types"]]
        self.config = replace(self.config, **overrides)
