"""
Tests for the built-in autonomous behaviors
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from pulse_agent.autonomy import BehaviorContext, BehaviorTriggerType
from pulse_agent.autonomy.behaviors import (
    AnomalyDetectionBehavior,
    ARTHealthConfig,
    ARTHealthMonitoringBehavior,
    DependencyDetectionBehavior,
    PeriodicReportingBehavior,
    ReportType,
    StoryMonitoringBehavior,
    WorkflowAutomationBehavior,
)
from pulse_agent.autonomy.behaviors.anomaly_detection import Anomaly, TeamMetrics, detect_anomalies
from pulse_agent.autonomy.behaviors.periodic_reporting import gather_report_data, render_report
from pulse_agent.workflow.progress import ProgressEngine

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def webhook(issue=None, previous=None, team=None, **metadata) -> BehaviorContext:
    return BehaviorContext(
        trigger=BehaviorTriggerType.WEBHOOK, issue=issue, team=team, previous_state=previous, metadata=metadata
    )


def scheduled(team=None, **metadata) -> BehaviorContext:
    return BehaviorContext(trigger=BehaviorTriggerType.SCHEDULE, team=team, metadata=metadata)


def by_title(issues, titled=None):
    """get_issues side effect: the team's issues, or `titled` for exact-title lookups."""
    def lookup(**kwargs):
        if kwargs.get("title"):
            return titled or []
        return issues
    return lookup


class TestStoryMonitoring:
    """Decomposition suggestions for large fresh stories"""

    @pytest.fixture
    def behavior(self, tracker):
        return StoryMonitoringBehavior(tracker)

    @pytest.fixture
    def large_story(self, issue_factory):
        now = iso(datetime.now(timezone.utc))
        return issue_factory("issue-1", state="Backlog", estimate=13, createdAt=now, updatedAt=now,
                             assignee={"id": "user-1"})

    @pytest.mark.asyncio
    async def test_large_fresh_story_triggers(self, behavior, large_story):
        assert await behavior.should_trigger(webhook(large_story))

    @pytest.mark.asyncio
    async def test_small_old_or_labeled_stories_do_not(self, behavior, large_story, issue_factory):
        assert not await behavior.should_trigger(webhook({**large_story, "estimate": 5}))

        old = iso(datetime.now(timezone.utc) - timedelta(days=1))
        assert not await behavior.should_trigger(webhook({**large_story, "createdAt": old, "updatedAt": old}))

        labeled = {**large_story, "labels": {"nodes": [{"id": "l1", "name": "Epic"}]}}
        assert not await behavior.should_trigger(webhook(labeled))

        with_children = {**large_story, "children": {"nodes": [{"id": "child-1"}]}}
        assert not await behavior.should_trigger(webhook(with_children))

    @pytest.mark.asyncio
    async def test_already_suggested(self, behavior, tracker, large_story):
        tracker.get_issue_comments.return_value = [{"body": "Proactive decomposition suggestion\n..."}]
        assert not await behavior.should_trigger(webhook(large_story))

    @pytest.mark.asyncio
    async def test_execute_posts_suggestion(self, behavior, tracker, large_story):
        result = await behavior.execute(webhook(large_story))

        assert result.success
        body = tracker.create_comment.await_args.args[1]
        assert "13 story points" in body
        assert result.should_notify
        assert result.notification.recipients == ["user-1"]

    @pytest.mark.asyncio
    async def test_comment_failure_is_a_failed_action(self, behavior, tracker, large_story):
        tracker.create_comment.side_effect = RuntimeError("forbidden")

        result = await behavior.execute(webhook(large_story))

        assert not result.success
        assert result.actions[0].result == "failed"


class TestARTHealth:
    """Readiness measured through the progress engine"""

    @pytest.fixture
    def behavior(self, tracker, progress_config):
        return ARTHealthMonitoringBehavior(tracker, ProgressEngine(progress_config), ARTHealthConfig())

    @pytest.mark.asyncio
    async def test_requires_team_and_respects_frequency(self, behavior, tracker, issue_factory):
        assert not await behavior.should_trigger(scheduled())

        context = scheduled(team={"id": "team-1"}, pi_id="PI-2026-Q4")
        assert await behavior.should_trigger(context)

        tracker.get_issues.return_value = [issue_factory("issue-1", state="Done", estimate=5)]
        await behavior.execute(context)
        assert not await behavior.should_trigger(context)

    @pytest.mark.asyncio
    async def test_healthy_team_gets_no_comment(self, behavior, tracker, issue_factory):
        tracker.get_issues.return_value = [issue_factory("issue-1", state="Done", estimate=5)]

        result = await behavior.execute(scheduled(team={"id": "team-1"}, pi_id="PI-2026-Q4"))

        assert result.actions[0].type == "analysis"
        assert not result.should_notify
        tracker.create_comment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_low_readiness_alerts_on_planning_issue(self, behavior, tracker, issue_factory):
        tracker.get_issues.side_effect = by_title([issue_factory("issue-1", state="Todo", estimate=5)])

        result = await behavior.execute(scheduled(team={"id": "team-1", "name": "Engineering"}, pi_id="PI-2026-Q4"))

        tracker.create_issue.assert_awaited_once()
        assert tracker.create_issue.await_args.kwargs["title"] == "PI-2026-Q4 Planning"
        issue_id, body = tracker.create_comment.await_args.args
        assert issue_id == "created-issue"
        assert body.startswith("ART health alert for PI-2026-Q4")
        assert result.notification.priority == "high"
        assert result.notification.title == "ART Health Alert: Engineering"

    @pytest.mark.asyncio
    async def test_pi_labels_narrow_the_issue_set(self, behavior, tracker, issue_factory):
        tracker.get_issues.return_value = [
            issue_factory("issue-1", state="Done", estimate=5, labels=["PI-2026-Q4"]),
            issue_factory("issue-2", state="Todo", estimate=8),
        ]

        result = await behavior.execute(scheduled(team={"id": "team-1"}, pi_id="PI-2026-Q4"))

        assert result.actions[0].data["readiness_score"] == 1.0


class TestDependencyDetection:
    """Candidate scoring and cycle detection"""

    @pytest.fixture
    def behavior(self, tracker):
        return DependencyDetectionBehavior(tracker)

    @pytest.fixture
    def issues(self, issue_factory):
        return [
            issue_factory("issue-1", title="Checkout flow", description="This depends on ENG-2 for payments"),
            issue_factory("issue-2", title="Payment API"),
            issue_factory("issue-3", title="Update docs"),
        ]

    @pytest.mark.asyncio
    async def test_should_trigger(self, behavior, issues, issue_factory):
        assert await behavior.should_trigger(webhook(issues[0]))
        assert not await behavior.should_trigger(webhook(issues[2]))
        assert await behavior.should_trigger(webhook(issue_factory("issue-4", estimate=8)))
        closed = issue_factory("issue-5", state="Done", description="blocked by ENG-2")
        assert not await behavior.should_trigger(webhook(closed))

    @pytest.mark.asyncio
    async def test_explicit_reference_is_suggested(self, behavior, tracker, issues):
        tracker.get_issues.return_value = issues

        candidates = await behavior.detect_potential_dependencies(issues[0])

        assert [c.identifier for c in candidates] == ["ENG-2"]
        assert candidates[0].score == 1.0
        assert candidates[0].relation_type == "depends"

    @pytest.mark.asyncio
    async def test_execute_comments_once(self, behavior, tracker, issues):
        tracker.get_issues.return_value = issues

        result = await behavior.execute(webhook(issues[0]))
        assert result.actions[0].data["suggested_count"] == 1
        assert "Potential dependency suggestion" in tracker.create_comment.await_args.args[1]

        tracker.create_comment.reset_mock()
        tracker.get_issue_comments.return_value = [{"body": tracker_body(behavior, issues)}]
        result = await behavior.execute(webhook(issues[0]))
        assert result.actions == []
        tracker.create_comment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_circular_dependencies(self, behavior, tracker, issues):
        graph = {"issue-1": "issue-2", "issue-2": "issue-1"}
        tracker.get_issue_relations.side_effect = lambda issue_id: [
            {"type": "blocks", "direction": "outgoing", "related_issue": {"id": graph[issue_id]}}
        ]

        cycles = await behavior.detect_circular_dependencies("issue-1")
        assert cycles == [["issue-1", "issue-2", "issue-1"]]

        result = await behavior.execute(webhook(issues[0]))
        assert result.should_notify
        assert result.notification.priority == "high"


def tracker_body(behavior, issues):
    from pulse_agent.autonomy.behaviors.dependency_detection import DependencyCandidate
    return behavior.build_suggestion([DependencyCandidate(issues[1], 1.0, "depends")])


class TestWorkflowAutomation:
    """Reactions to state changes"""

    @pytest.fixture
    def behavior(self, tracker):
        return WorkflowAutomationBehavior(tracker)

    @pytest.mark.asyncio
    async def test_should_trigger_on_changes_only(self, behavior, issue_factory):
        issue = issue_factory("issue-1", state="In Progress")
        assert await behavior.should_trigger(webhook(issue, {"stateId": "state-Todo"}))
        assert not await behavior.should_trigger(webhook(issue, {"stateId": "state-In Progress"}))
        assert not await behavior.should_trigger(webhook(issue))

    @pytest.mark.asyncio
    async def test_label_rules(self, behavior, tracker, issue_factory):
        issue = issue_factory("issue-1", state="In Progress", labels=["ready-for-dev"])

        result = await behavior.execute(webhook(issue, {"stateId": "state-Todo"}))

        tracker.add_labels.assert_awaited_once_with("issue-1", "team-1", ["in-development"])
        tracker.remove_labels.assert_awaited_once_with("issue-1", ["label-ready-for-dev"])
        assert [a.type for a in result.actions] == ["update", "update"]

    @pytest.mark.asyncio
    async def test_done_parent_lists_open_children(self, behavior, tracker, issue_factory):
        issue = issue_factory("issue-1", state="Done", children=[
            {"id": "child-1", "identifier": "ENG-9", "title": "Sub task", "state": {"name": "Todo"}},
            {"id": "child-2", "identifier": "ENG-10", "title": "Done task", "state": {"name": "Done"}},
        ])

        result = await behavior.execute(webhook(issue, {"stateId": "state-In Review"}))

        bodies = [c.args[1] for c in tracker.create_comment.await_args_list]
        assert any("ENG-9: Sub task (Todo)" in body and "ENG-10" not in body for body in bodies)
        tracker.update_issue_state.assert_not_awaited()
        assert any(a.data.get("incomplete") == ["child-1"] for a in result.actions)

    @pytest.mark.asyncio
    async def test_handoff_checklist(self, behavior, tracker, issue_factory):
        issue = issue_factory("issue-1", state="In Review")

        await behavior.execute(webhook(issue, {"stateId": "state-In Progress"}))

        added = [c.args[2] for c in tracker.add_labels.await_args_list]
        assert ["handoff-needed"] in added
        assert any("Handoff checklist" in c.args[1] for c in tracker.create_comment.await_args_list)

    @pytest.mark.asyncio
    async def test_blocked_issue_notifies(self, behavior, tracker, issue_factory):
        tracker.get_issue_relations.return_value = [{
            "type": "blocks",
            "direction": "incoming",
            "issue": {"id": "b1", "identifier": "ENG-5", "title": "API", "state": {"name": "In Progress"}},
        }]
        issue = issue_factory("issue-1", state="Todo", assignee={"id": "user-1"})

        result = await behavior.execute(webhook(issue, {"priority": 1}))

        assert result.should_notify
        assert result.notification.recipients == ["user-1"]
        assert result.notification.data["blockers"] == ["ENG-5"]
        tracker.add_labels.assert_awaited_once_with("issue-1", "team-1", ["blocked"])

    @pytest.mark.asyncio
    async def test_stale_in_progress(self, behavior, tracker, issue_factory):
        updated = iso(datetime.now(timezone.utc) - timedelta(days=20))
        issue = issue_factory("issue-1", state="In Progress", updatedAt=updated)

        result = await behavior.execute(webhook(issue, {"priority": 1}))

        tracker.add_labels.assert_awaited_once_with("issue-1", "team-1", ["stale"])
        assert result.actions[-1].data["days"] == 20


class TestPeriodicReporting:
    """Schedule-driven team reports"""

    @pytest.fixture
    def behavior(self, tracker):
        return PeriodicReportingBehavior(tracker)

    @pytest.fixture
    def issues(self, issue_factory):
        return [
            issue_factory("issue-1", state="Done", estimate=5, completedAt=iso(NOW - timedelta(days=3))),
            issue_factory("issue-2", state="Done", estimate=8, completedAt=iso(NOW - timedelta(days=40))),
            issue_factory("issue-3", state="In Progress", estimate=3, labels=["blocked"]),
            issue_factory("issue-4", state="Todo", priority=1),
        ]

    def test_gather_weekly_summary(self, issues):
        data = gather_report_data(ReportType.WEEKLY_SUMMARY, {"id": "team-1", "name": "Engineering"}, issues, NOW)

        assert data.metrics == {
            "completed_issues": 1,
            "completed_points": 5,
            "in_progress_issues": 1,
            "in_progress_points": 3,
            "blocked_issues": 1,
            "velocity": 5,
        }
        assert [i["id"] for i in data.upcoming] == ["issue-4"]
        assert render_report(data).startswith("Weekly Summary report for Engineering")

    def test_velocity_report_warns_when_low(self, issues):
        data = gather_report_data(ReportType.VELOCITY_REPORT, {"id": "team-1"}, issues, NOW)
        assert "below 10 points/week" in render_report(data)

    @pytest.mark.asyncio
    async def test_only_scheduled_triggers(self, behavior):
        assert not await behavior.should_trigger(webhook())
        assert await behavior.should_trigger(scheduled())

    @pytest.mark.asyncio
    async def test_requested_report_is_posted_once_per_window(self, behavior, tracker, issues):
        tracker.get_issues.side_effect = by_title(issues)
        context = scheduled(team={"id": "team-1", "name": "Engineering"}, report_type="blockers_report")

        result = await behavior.execute(context)

        assert tracker.create_issue.await_args.kwargs["title"] == "Blockers Reports"
        issue_id, body = tracker.create_comment.await_args.args
        assert issue_id == "created-issue"
        assert body.startswith("Blockers report for Engineering")
        assert result.notification.message == "Generated 1 reports"
        assert not await behavior.should_trigger(context)

    @pytest.mark.asyncio
    async def test_existing_reporting_issue_is_reused(self, behavior, tracker, issues):
        tracker.get_issues.side_effect = by_title(issues, titled=[{"id": "reports-1"}])

        await behavior.execute(scheduled(team={"id": "team-1"}, report_type="weekly_summary"))

        tracker.create_issue.assert_not_awaited()
        assert tracker.create_comment.await_args.args[0] == "reports-1"

    @pytest.mark.asyncio
    async def test_all_teams_when_unscoped(self, behavior, tracker):
        tracker.get_issues.side_effect = RuntimeError("Linear down")

        result = await behavior.execute(scheduled())

        tracker.get_teams.assert_awaited_once()
        assert {a.result for a in result.actions} == {"failed"}
        assert result.notification is None


class TestAnomalyDetection:
    """Metric comparison against the baseline"""

    @pytest.fixture
    def behavior(self, tracker):
        return AnomalyDetectionBehavior(tracker)

    def test_velocity_drop_and_wip(self):
        current = TeamMetrics(velocity=2, wip_count=5)
        baseline = TeamMetrics(velocity=10, avg_cycle_time=7)

        anomalies = detect_anomalies(current, baseline, AnomalyDetectionBehavior(None).config.thresholds)

        assert [(a.type, a.severity) for a in anomalies] == [("velocity_drop", "high"), ("wip_violation", "medium")]

    def test_steady_team_has_no_anomalies(self):
        assert detect_anomalies(TeamMetrics(), TeamMetrics(), AnomalyDetectionBehavior(None).config.thresholds) == []

    @pytest.mark.asyncio
    async def test_should_trigger(self, behavior, issue_factory):
        assert await behavior.should_trigger(scheduled())
        urgent = issue_factory("issue-1", priority=1)
        assert await behavior.should_trigger(webhook(urgent, {"priority": 3}))
        assert not await behavior.should_trigger(webhook(urgent))
        assert not await behavior.should_trigger(webhook(issue_factory("issue-2"), {"priority": 2}))

    @pytest.mark.asyncio
    async def test_report_posted_for_team(self, behavior, tracker):
        high = Anomaly("blockage_increase", "high", "40% of issues are blocked", {}, "Escalate", ["issue-1"])
        behavior.analyze_team = AsyncMock(return_value=[high])
        tracker.get_issues.side_effect = by_title([])

        result = await behavior.execute(scheduled(team={"id": "team-1", "name": "Engineering"}))

        assert tracker.create_issue.await_args.kwargs["title"] == "Anomaly Reports"
        body = tracker.create_comment.await_args.args[1]
        assert body.startswith("Anomaly report for Engineering")
        assert result.notification.title == "Critical Anomalies Detected"

    @pytest.mark.asyncio
    async def test_analysis_failure_is_a_failed_action(self, behavior):
        behavior.analyze_team = AsyncMock(side_effect=RuntimeError("timeout"))

        result = await behavior.execute(scheduled(team={"id": "team-1"}))

        assert result.success
        assert result.actions[0].result == "failed"
        assert not result.should_notify

    @pytest.mark.asyncio
    async def test_analyze_team_with_quiet_history(self, behavior, tracker):
        assert await behavior.analyze_team("team-1", NOW) == []
        assert "updated_after" in tracker.get_issues.await_args.kwargs
