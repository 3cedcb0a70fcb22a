"""
Story size monitor: suggests decomposition for freshly created or
re-estimated stories above the point threshold.
"""
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .common import children, elapsed_ms, has_comment_containing, label_names, minutes_since, post_comment, state_name
from ..types import BehaviorContext, BehaviorNotification, BehaviorResult
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

SUGGESTION_MARKER = "decomposition suggestion"


@dataclass(frozen=True)
class StoryMonitoringConfig:
    max_story_points: int = 5
    ignore_labels: List[str] = field(default_factory=lambda: ["decomposed", "epic", "feature"])
    monitor_states: List[str] = field(default_factory=lambda: ["backlog", "unstarted", "started"])
    recent_window_minutes: int = 5


class StoryMonitoringBehavior:
    id = "story_monitoring"
    name = "Story Size Monitor"
    description = "Monitors stories and suggests decomposition for large stories"
    priority = 80

    def __init__(self, tracker, config: Optional[StoryMonitoringConfig] = None):
        self.tracker = tracker
        self.config = config or StoryMonitoringConfig()
        self.enabled = True

    async def should_trigger(self, context: BehaviorContext) -> bool:
        issue = context.issue
        if not issue:
            return False

        window = self.config.recent_window_minutes
        created = minutes_since(issue.get("createdAt"))
        updated = minutes_since(issue.get("updatedAt"))
        if not ((created is not None and created < window) or (updated is not None and updated < window)):
            return False

        estimate = issue.get("estimate") or 0
        if estimate <= self.config.max_story_points:
            return False

        current_state = state_name(issue).lower()
        if not any(state in current_state for state in self.config.monitor_states):
            return False

        if any(label.lower() in self.config.ignore_labels for label in label_names(issue)):
            return False

        if children(issue):
            logger.debug(f"Story {issue.get('id')} already has children, skipping")
            return False

        if await has_comment_containing(self.tracker, issue["id"], SUGGESTION_MARKER):
            logger.debug(f"Decomposition already suggested for {issue.get('id')}")
            return False

        return True

    async def execute(self, context: BehaviorContext) -> BehaviorResult:
        start = time.monotonic()
        issue = context.issue
        estimate = issue.get("estimate") or 0
        identifier = issue.get("identifier") or issue["id"]

        logger.info(f"[ENGINE] Story {identifier} has {estimate} points, suggesting decomposition")
        action = await post_comment(
            self.tracker,
            issue["id"],
            self.build_comment(issue),
            "Posted decomposition suggestion",
            story_points=estimate,
        )

        should_notify = estimate > self.config.max_story_points * 2
        notification = None
        if should_notify:
            owner = (issue.get("assignee") or {}).get("id") or (issue.get("creator") or {}).get("id")
            notification = BehaviorNotification(
                title="Large Story Detected",
                message=f"Story {identifier} has {estimate} points. Consider decomposition.",
                recipients=[owner] if owner else [],
                data={"issue_id": issue["id"], "issue_identifier": identifier, "story_points": estimate},
            )

        return BehaviorResult(
            success=action.result == "success",
            actions=[action],
            execution_time=elapsed_ms(start),
            should_notify=should_notify,
            notification=notification,
        )

    def build_comment(self, issue: Dict[str, Any]) -> str:
        estimate = issue.get("estimate")
        max_points = self.config.max_story_points
        return "\n".join([
            "Proactive decomposition suggestion",
            "",
            f"This story has {estimate} story points, above the recommended maximum of {max_points}.",
            f"Consider breaking \"{issue.get('title', '')}\" into 2-3 smaller stories by:",
            "1. Functional boundaries: separate core functionality from advanced features",
            "2. User journeys: split by user flow or persona",
            "3. Technical layers: frontend, backend and integration as separate stories",
            "",
            "Reply with `@saafepulse decompose this story` to get a proposed breakdown.",
        ])

    def update_config(self, **overrides: Any) -> None:
        self.config = replace(self.config, **overrides)
