"""
Work item repository backed by Linear, used by the StateTransitionHandler.
"""
from typing import Any, Dict, List, Optional

from .service import LinearService
from ...utils.logger import setup_logger
from ...workflow.progress import work_item_from_issue
from ...workflow.state_transitions import TransitionWorkItem

logger = setup_logger(__name__)

CONTAINER_TYPES = ("Epic", "Feature")


class TransitionRepository:
    """
    Projects Linear issues onto TransitionWorkItem and writes state changes back.

    Incoming "blocks" relations count as both dependencies and blockers.
    Children are child items for epics/features and subtasks for everything else.
    """

    def __init__(self, service: LinearService):
        self.service = service

    async def load_item(self, item_id: str) -> Optional[TransitionWorkItem]:
        issue = await self.service.get_issue(item_id)
        if not issue:
            return None
        relations = await self.service.get_issue_relations(item_id)
        return self.to_work_item(issue, relations)

    async def load_items(self, item_ids: List[str]) -> List[TransitionWorkItem]:
        items = []
        for item_id in item_ids:
            item = await self.load_item(item_id)
            if item is None:
                logger.warning(f"[TRANSITION] Work item {item_id} not found in Linear")
                continue
            items.append(item)
        return items

    async def apply_state(self, item_id: str, state: str) -> None:
        await self.service.update_issue_state(item_id, state)

    @staticmethod
    def to_work_item(issue: Dict[str, Any], relations: Optional[List[Dict[str, Any]]] = None) -> TransitionWorkItem:
        projected = work_item_from_issue(issue)
        state = (issue.get("state") or {}).get("name") or projected.state

        children = [c.get("id") for c in (issue.get("children") or {}).get("nodes", []) if c.get("id")]
        blockers = [
            r["issue"]["id"]
            for r in relations or []
            if r.get("type") == "blocks" and r.get("direction") == "incoming" and (r.get("issue") or {}).get("id")
        ]

        is_container = projected.type in CONTAINER_TYPES
        return TransitionWorkItem(
            id=issue.get("id", ""),
            state=state,
            type=projected.type,
            title=issue.get("title", ""),
            parent_id=projected.parent_epic_id,
            child_ids=children if is_container else [],
            subtask_ids=[] if is_container else children,
            dependency_ids=blockers,
            blocked_by_ids=list(blockers),
        )
