"""
Linear Service

Every tracking-system call made by the agent goes through here so that
it inherits the retry, rate-limit and concurrency policy of the
IntegrationErrorHandler. Exhausted retries surface as IntegrationError.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .client import LinearClient
from ..error_handler import IntegrationErrorHandler
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")


class LinearService:
    """Retrying facade over LinearClient used by behaviors, the executor and validators."""

    def __init__(self, client: LinearClient, error_handler: Optional[IntegrationErrorHandler] = None):
        self.client = client
        self.error_handler = error_handler or IntegrationErrorHandler()

    @property
    def is_available(self) -> bool:
        return self.client.is_available

    async def _call(self, context: str, operation: Callable[[], Awaitable[T]]) -> T:
        result = await self.error_handler.execute_with_retry(operation, context)
        if not result.success:
            raise result.error
        return result.result

    async def _write(self, key: str, context: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Writes to the same entity are serialized under the configured strategy."""
        return await self.error_handler.execute_with_concurrency_control(
            key,
            lambda: self._call(context, operation),
            context,
        )

    # Reads

    async def get_issue(self, issue_id: str) -> Optional[Dict[str, Any]]:
        return await self._call("get_issue", lambda: self.client.get_issue(issue_id))

    async def get_issues(
        self,
        team_id: Optional[str] = None,
        state: Optional[str] = None,
        limit: int = 100,
        updated_after: Optional[str] = None,
        title: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return await self._call(
            "get_issues",
            lambda: self.client.get_issues(
                team_id=team_id, state=state, limit=limit, updated_after=updated_after, title=title
            ),
        )

    async def get_teams(self) -> List[Dict[str, Any]]:
        return await self._call("get_teams", self.client.get_teams)

    async def get_states(self, team_id: str) -> List[Dict[str, Any]]:
        return await self._call("get_states", lambda: self.client.get_states(team_id))

    async def get_issue_relations(self, issue_id: str) -> List[Dict[str, Any]]:
        return await self._call("get_issue_relations", lambda: self.client.get_issue_relations(issue_id))

    async def get_issue_comments(self, issue_id: str) -> List[Dict[str, Any]]:
        return await self._call("get_issue_comments", lambda: self.client.get_issue_comments(issue_id))

    async def get_viewer(self) -> Dict[str, Any]:
        return await self._call("get_viewer", self.client.get_viewer)

    # Writes

    async def create_issue(
        self,
        title: str,
        team_id: str,
        description: Optional[str] = None,
        priority: Optional[int] = None
    ) -> Dict[str, Any]:
        return await self._write(
            f"team:{team_id}:create",
            "create_issue",
            lambda: self.client.create_issue(title, team_id, description=description, priority=priority),
        )

    async def create_comment(self, issue_id: str, body: str) -> Dict[str, Any]:
        logger.debug(f"Posting comment on {issue_id} ({len(body)} chars)")
        return await self._write(
            f"comment:{issue_id}", "create_comment", lambda: self.client.create_comment(issue_id, body)
        )

    async def update_comment(self, comment_id: str, body: str) -> Dict[str, Any]:
        return await self._write(
            f"comment:{comment_id}", "update_comment", lambda: self.client.update_comment(comment_id, body)
        )

    async def update_issue(self, issue_id: str, **fields) -> Dict[str, Any]:
        return await self._write(
            f"issue:{issue_id}", "update_issue", lambda: self.client.update_issue(issue_id, **fields)
        )

    async def update_issue_state(self, issue_id: str, state_name: str) -> Dict[str, Any]:
        return await self._write(
            f"issue:{issue_id}",
            "update_issue_state",
            lambda: self.client.update_issue_state(issue_id, state_name),
        )

    async def add_labels(self, issue_id: str, team_id: str, names: List[str]) -> None:
        if not names:
            return
        await self._write(
            f"issue:{issue_id}", "add_labels", lambda: self.client.add_labels(issue_id, team_id, names)
        )

    async def remove_labels(self, issue_id: str, label_ids: List[str]) -> None:
        if not label_ids:
            return
        await self._write(
            f"issue:{issue_id}", "remove_labels", lambda: self.client.remove_labels(issue_id, label_ids)
        )
