"""
Helpers shared by the behavior implementations.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..types import BehaviorAction
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

CLOSED_STATE_NAMES = ("Done", "Canceled", "Duplicate")


def label_names(issue: Optional[Dict[str, Any]]) -> List[str]:
    """Label names of a Linear issue, accepting `labels.nodes`, a list, or `labelIds`-only payloads."""
    if not issue:
        return []
    labels = issue.get("labels") or []
    if isinstance(labels, dict):
        labels = labels.get("nodes", [])
    return [label.get("name", "") if isinstance(label, dict) else str(label) for label in labels]


def state_name(issue: Optional[Dict[str, Any]]) -> str:
    if not issue:
        return ""
    state = issue.get("state") or {}
    return state.get("name", "") if isinstance(state, dict) else str(state)


def children(issue: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not issue:
        return []
    nodes = issue.get("children") or []
    if isinstance(nodes, dict):
        nodes = nodes.get("nodes", [])
    return nodes


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Linear timestamps are ISO-8601 with a trailing Z."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def minutes_since(value: Any, now: Optional[datetime] = None) -> Optional[float]:
    timestamp = parse_timestamp(value)
    if timestamp is None:
        return None
    now = now or datetime.now(timezone.utc)
    return (now - timestamp).total_seconds() / 60


def elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


def success_action(action_type: str, target: str, description: str, **data: Any) -> BehaviorAction:
    return BehaviorAction(type=action_type, target=target, description=description, result="success", data=data)


def failed_action(action_type: str, target: str, description: str, error: Exception) -> BehaviorAction:
    return BehaviorAction(
        type=action_type,
        target=target,
        description=description,
        result="failed",
        data={"error": str(error)},
    )


async def post_comment(tracker, issue_id: str, body: str, description: str, **data: Any) -> BehaviorAction:
    """Post a comment and report it as an action; failures become a failed action."""
    try:
        await tracker.create_comment(issue_id, body)
        logger.info(f"[ENGINE] {description} on {issue_id}")
        return success_action("comment", issue_id, description, **data)
    except Exception as e:
        logger.error(f"[ENGINE] Failed to post comment on {issue_id}: {e}")
        return failed_action("comment", issue_id, f"Failed: {description}", e)


async def has_comment_containing(tracker, issue_id: str, marker: str) -> bool:
    """True when an existing comment already contains the marker text (case-insensitive)."""
    try:
        comments = await tracker.get_issue_comments(issue_id)
    except Exception as e:
        logger.error(f"[ENGINE] Failed to check existing comments on {issue_id}: {e}")
        return False
    marker = marker.lower()
    return any(marker in (comment.get("body") or "").lower() for comment in comments)
