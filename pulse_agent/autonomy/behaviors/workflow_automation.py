"""
Workflow automation: keeps labels in step with state changes, flags
blocked and stale work, posts handoff checklists and points out
incomplete sub-issues when a parent is closed.
"""
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .common import (
    children,
    elapsed_ms,
    failed_action,
    label_names,
    minutes_since,
    post_comment,
    state_name,
    success_action,
)
from ..types import BehaviorAction, BehaviorContext, BehaviorNotification, BehaviorResult
from ...utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class LabelRule:
    add: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)


def _default_label_rules() -> Dict[str, LabelRule]:
    return {
        "In Progress": LabelRule(add=["in-development"], remove=["ready-for-dev"]),
        "In Review": LabelRule(add=["needs-review"], remove=["in-development"]),
        "Done": LabelRule(add=["completed"], remove=["in-development", "needs-review", "blocked"]),
    }


@dataclass(frozen=True)
class WorkflowAutomationConfig:
    auto_label_on_state: bool = True
    auto_notify_on_blocked: bool = True
    check_subtasks_on_done: bool = True
    label_rules: Dict[str, LabelRule] = field(default_factory=_default_label_rules)
    handoff_states: List[str] = field(default_factory=lambda: ["In Review", "Ready for QA", "Ready for Deploy"])
    stale_after_days: int = 14


def _label_ids(issue: Optional[Dict[str, Any]]) -> set:
    labels = (issue or {}).get("labels") or []
    if isinstance(labels, dict):
        labels = labels.get("nodes", [])
    return {label.get("id") for label in labels if isinstance(label, dict)}


def changed_fields(issue: Dict[str, Any], previous: Dict[str, Any]) -> List[str]:
    """
    Fields that differ between an issue and its previous values.

    `previous` is either a nested snapshot (state, labels, assignee) or
    Linear's webhook `updatedFrom` (stateId, labelIds, assigneeId). Only
    keys present in `previous` count as changes.
    """
    changed = []
    if "state" in previous and state_name(previous) != state_name(issue):
        changed.append("state")
    elif "stateId" in previous and previous["stateId"] != (issue.get("state") or {}).get("id"):
        changed.append("state")

    if "labels" in previous and _label_ids(previous) != _label_ids(issue):
        changed.append("labels")
    elif "labelIds" in previous and set(previous["labelIds"] or []) != _label_ids(issue):
        changed.append("labels")

    current_assignee = (issue.get("assignee") or {}).get("id")
    if "assignee" in previous and (previous["assignee"] or {}).get("id") != current_assignee:
        changed.append("assignee")
    elif "assigneeId" in previous and previous["assigneeId"] != current_assignee:
        changed.append("assignee")

    if "priority" in previous and previous["priority"] != issue.get("priority"):
        changed.append("priority")
    return changed


def _stakeholders(issue: Dict[str, Any]) -> List[str]:
    ids = [
        (issue.get("assignee") or {}).get("id"),
        (issue.get("creator") or {}).get("id"),
        ((issue.get("parent") or {}).get("assignee") or {}).get("id"),
    ]
    return list(dict.fromkeys(i for i in ids if i))


class WorkflowAutomationBehavior:
    id = "workflow_automation"
    name = "Workflow Automator"
    description = "Automates common workflow tasks"
    priority = 60

    def __init__(self, tracker, config: Optional[WorkflowAutomationConfig] = None):
        self.tracker = tracker
        self.config = config or WorkflowAutomationConfig()
        self.enabled = True

    async def should_trigger(self, context: BehaviorContext) -> bool:
        issue, previous = context.issue, context.previous_state
        if not issue or not previous:
            return False

        return bool(changed_fields(issue, previous))

    async def execute(self, context: BehaviorContext) -> BehaviorResult:
        start = time.monotonic()
        issue = context.issue
        if not issue:
            raise ValueError("Issue context is required for workflow automation")

        previous = context.previous_state or {}
        current_state = state_name(issue)
        identifier = issue.get("identifier") or issue["id"]
        logger.info(
            f"[ENGINE] Workflow automation for {identifier}: "
            f"{state_name(previous) or 'unchanged'} -> {current_state}"
        )

        actions: List[BehaviorAction] = []
        notification = None

        if "state" in changed_fields(issue, previous):
            if self.config.auto_label_on_state:
                actions.extend(await self._apply_label_rules(issue, current_state))
            if self.config.check_subtasks_on_done and current_state == "Done":
                actions.extend(await self._report_incomplete_children(issue))
            if current_state in self.config.handoff_states:
                actions.extend(await self._handoff(issue))

        blockers = await self._active_blockers(issue)
        if self.config.auto_notify_on_blocked and (blockers or self._has_blocked_label(issue)):
            actions.extend(await self._handle_blocked(issue, blockers))
            notification = BehaviorNotification(
                title="Issue Blocked",
                message=f"{identifier} is blocked by {len(blockers)} open issue(s).",
                priority="high",
                recipients=_stakeholders(issue),
                data={"issue_id": issue["id"], "blockers": [b.get("identifier") or b.get("id") for b in blockers]},
            )

        actions.extend(await self._check_stale(issue))

        return BehaviorResult(
            success=True,
            actions=actions,
            execution_time=elapsed_ms(start),
            should_notify=notification is not None,
            notification=notification,
        )

    async def _apply_label_rules(self, issue: Dict[str, Any], state: str) -> List[BehaviorAction]:
        rule = self.config.label_rules.get(state)
        if rule is None:
            return []

        actions = []
        present = set(label_names(issue))
        to_add = [name for name in rule.add if name not in present]
        if to_add:
            actions.append(await self._add_labels(issue, to_add))

        labels = (issue.get("labels") or {})
        nodes = labels.get("nodes", []) if isinstance(labels, dict) else labels
        to_remove = [label for label in nodes if isinstance(label, dict) and label.get("name") in rule.remove]
        if to_remove:
            names = [label["name"] for label in to_remove]
            try:
                await self.tracker.remove_labels(issue["id"], [label["id"] for label in to_remove])
                actions.append(success_action("update", issue["id"], f"Removed labels: {', '.join(names)}"))
            except Exception as e:
                logger.error(f"[ENGINE] Failed to remove labels {names} from {issue['id']}: {e}")
                actions.append(failed_action("update", issue["id"], f"Failed to remove labels: {', '.join(names)}", e))
        return actions

    async def _add_labels(self, issue: Dict[str, Any], names: List[str]) -> BehaviorAction:
        team_id = (issue.get("team") or {}).get("id")
        try:
            await self.tracker.add_labels(issue["id"], team_id, names)
            return success_action("update", issue["id"], f"Added labels: {', '.join(names)}")
        except Exception as e:
            logger.error(f"[ENGINE] Failed to add labels {names} to {issue['id']}: {e}")
            return failed_action("update", issue["id"], f"Failed to add labels: {', '.join(names)}", e)

    async def _report_incomplete_children(self, issue: Dict[str, Any]) -> List[BehaviorAction]:
        incomplete = [c for c in children(issue) if state_name(c) not in ("Done", "Canceled")]
        if not incomplete:
            return []
        lines = ["This issue was closed while these sub-issues are still open:", ""]
        lines += [
            f"- {c.get('identifier') or c.get('id')}: {c.get('title', '')} ({state_name(c) or 'Unknown'})"
            for c in incomplete
        ]
        lines += ["", "Close or move them so the parent's progress stays accurate."]
        action = await post_comment(
            self.tracker,
            issue["id"],
            "\n".join(lines),
            "Listed incomplete sub-issues",
            incomplete=[c.get("id") for c in incomplete],
        )
        return [action]

    async def _handoff(self, issue: Dict[str, Any]) -> List[BehaviorAction]:
        actions = []
        if "handoff-needed" not in label_names(issue):
            actions.append(await self._add_labels(issue, ["handoff-needed"]))
        actions.append(await post_comment(self.tracker, issue["id"], self.build_handoff_checklist(), "Added handoff checklist"))
        return actions

    async def _active_blockers(self, issue: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Open issues with a `blocks` relation pointing at this one."""
        try:
            relations = await self.tracker.get_issue_relations(issue["id"])
        except Exception as e:
            logger.error(f"[ENGINE] Failed to load relations for {issue['id']}: {e}")
            return []
        return [
            r.get("issue") or {}
            for r in relations
            if r.get("type") == "blocks"
            and r.get("direction") == "incoming"
            and state_name(r.get("issue")) not in ("Done", "Canceled")
        ]

    @staticmethod
    def _has_blocked_label(issue: Dict[str, Any]) -> bool:
        return any("blocked" in name.lower() for name in label_names(issue))

    async def _handle_blocked(self, issue: Dict[str, Any], blockers: List[Dict[str, Any]]) -> List[BehaviorAction]:
        actions = []
        if not self._has_blocked_label(issue):
            actions.append(await self._add_labels(issue, ["blocked"]))
        if blockers:
            lines = ["This issue is blocked and cannot proceed.", "", "Blocking issues:"]
            lines += [
                f"{i}. {b.get('identifier') or b.get('id')}: {b.get('title', '')} ({state_name(b) or 'Unknown'})"
                for i, b in enumerate(blockers, 1)
            ]
            lines += ["", "Contact the owners of the blocking issues, or escalate if this is on the critical path."]
            actions.append(await post_comment(self.tracker, issue["id"], "\n".join(lines), "Added blocked notification"))
        return actions

    async def _check_stale(self, issue: Dict[str, Any]) -> List[BehaviorAction]:
        if state_name(issue) != "In Progress":
            return []
        minutes = minutes_since(issue.get("updatedAt"))
        if minutes is None:
            return []
        days = minutes / (60 * 24)
        if days <= self.config.stale_after_days:
            return []

        actions = []
        if "stale" not in label_names(issue):
            actions.append(await self._add_labels(issue, ["stale"]))
        body = (
            f"This issue has been in progress for {round(days)} days without updates. "
            "Update its status, move it to blocked, split it up or close it if it is no longer relevant."
        )
        actions.append(await post_comment(self.tracker, issue["id"], body, "Marked issue as stale", days=round(days)))
        return actions

    @staticmethod
    def build_handoff_checklist() -> str:
        return "\n".join([
            "Handoff checklist",
            "",
            "- [ ] All acceptance criteria met",
            "- [ ] Code reviewed and approved",
            "- [ ] Tests written and passing",
            "- [ ] Documentation and deployment notes updated",
            "- [ ] Known issues documented",
            "- [ ] Next team notified with context",
        ])

    def update_config(self, **overrides: Any) -> None:
        self.config = replace(self.config, **overrides)
