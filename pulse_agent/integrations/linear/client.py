import asyncio
import os
from typing import Any, Dict, List, Optional

from linear_api import LinearClient as LinearSDK

from ...utils.config import Config
from ...utils.logger import setup_logger

logger = setup_logger(__name__)


ISSUE_FIELDS = """
    id
    identifier
    title
    description
    estimate
    priority
    createdAt
    updatedAt
    startedAt
    completedAt
    state { id name type }
    team { id key name }
    project { id name }
    assignee { id name }
    creator { id name }
    parent { id identifier }
    labels { nodes { id name } }
    children { nodes { id identifier title estimate state { id name type } } }
"""


class LinearAuthenticationException(Exception):
    """Raised when Linear authentication fails."""

    def __init__(self, message: str = "Linear authentication failed"):
        super().__init__(message)
        self.status_code = 401


class LinearAPIException(Exception):
    """Raised when Linear API call fails."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict]] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        code: Optional[str] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message)
        self.errors = errors or []
        self.status_code = status_code
        self.headers = headers or {}
        self.code = code
        self.retry_after = retry_after


def _to_api_exception(error: Exception, operation: str) -> LinearAPIException:
    """Carry HTTP status, headers and error codes from SDK failures."""
    if isinstance(error, (LinearAPIException, LinearAuthenticationException)):
        return error

    response = getattr(error, "response", None)
    status_code = getattr(error, "status_code", None) or getattr(response, "status_code", None)
    headers = dict(getattr(response, "headers", None) or {})
    errors = getattr(error, "errors", None) or []

    code = None
    for item in errors:
        extensions = item.get("extensions", {}) if isinstance(item, dict) else {}
        code = extensions.get("code") or code

    retry_after = None
    retry_header = {k.lower(): v for k, v in headers.items()}.get("retry-after")
    if retry_header:
        try:
            retry_after = float(retry_header)
        except ValueError:
            retry_after = None

    return LinearAPIException(
        f"{operation} failed: {error}",
        errors=errors,
        status_code=status_code if isinstance(status_code, int) else None,
        headers=headers,
        code=code,
        retry_after=retry_after,
    )


class LinearClient:
    """
    Linear API client wrapper using the linear-api SDK.
    Uses asyncio.to_thread to wrap synchronous SDK calls.

    Issues are returned as dicts in Linear's GraphQL shape
    (camelCase keys, `labels.nodes`, `children.nodes`).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[Config] = None
    ):
        """
        Initialize Linear client.

        Args:
            api_key: Linear API Key (Personal or OAuth)
            config: Application configuration
        """
        self.api_key = api_key or (config.linear.api_key if config else None) or os.getenv("LINEAR_API_KEY")
        self.config = config
        self._sdk: Optional[LinearSDK] = None

    @property
    def sdk(self) -> LinearSDK:
        """Lazy initialization of the SDK."""
        if self._sdk is None:
            if not self.api_key:
                raise LinearAuthenticationException("No Linear API key configured")
            self._sdk = LinearSDK(api_key=self.api_key)
        return self._sdk

    @property
    def is_available(self) -> bool:
        """Check if Linear client is available and configured."""
        return bool(self.api_key)

    async def _graphql(self, operation: str, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        def _execute():
            return self.sdk.execute_graphql(query, variables or {}) or {}

        try:
            return await asyncio.to_thread(_execute)
        except Exception as e:
            logger.error(f"Error during Linear {operation}: {e}")
            raise _to_api_exception(e, operation)

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def get_issue(self, issue_id: str) -> Optional[Dict[str, Any]]:
        """Get a single issue by ID or identifier."""
        query = f"""
        query GetIssue($id: String!) {{
            issue(id: $id) {{ {ISSUE_FIELDS} }}
        }}
        """
        result = await self._graphql("get_issue", query, {"id": issue_id})
        return result.get("issue")

    async def get_issues(
        self,
        team_id: Optional[str] = None,
        state: Optional[str] = None,
        limit: int = 100,
        updated_after: Optional[str] = None,
        title: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get issues, optionally filtered by team, state name, update time or exact title."""
        query = f"""
        query GetIssues($filter: IssueFilter, $first: Int) {{
            issues(filter: $filter, first: $first) {{
                nodes {{ {ISSUE_FIELDS} }}
            }}
        }}
        """
        filters: Dict[str, Any] = {}
        if team_id:
            filters["team"] = {"id": {"eq": team_id}}
        if state:
            filters["state"] = {"name": {"eq": state}}
        if updated_after:
            filters["updatedAt"] = {"gte": updated_after}
        if title:
            filters["title"] = {"eq": title}

        result = await self._graphql("get_issues", query, {"filter": filters, "first": limit})
        return result.get("issues", {}).get("nodes", [])

    async def create_issue(
        self,
        title: str,
        team_id: str,
        description: Optional[str] = None,
        priority: Optional[int] = None
    ) -> Dict[str, Any]:
        """Create a new issue."""
        query = f"""
        mutation IssueCreate($input: IssueCreateInput!) {{
            issueCreate(input: $input) {{
                success
                issue {{ {ISSUE_FIELDS} }}
            }}
        }}
        """
        issue_input = {"title": title, "teamId": team_id, "description": description, "priority": priority}
        issue_input = {k: v for k, v in issue_input.items() if v is not None}
        result = await self._graphql("create_issue", query, {"input": issue_input})
        return result.get("issueCreate", {}).get("issue", {})

    async def update_issue(self, issue_id: str, **fields) -> Dict[str, Any]:
        """Update an issue with IssueUpdateInput fields (stateId, labelIds, priority...)."""
        query = f"""
        mutation IssueUpdate($id: String!, $input: IssueUpdateInput!) {{
            issueUpdate(id: $id, input: $input) {{
                success
                issue {{ {ISSUE_FIELDS} }}
            }}
        }}
        """
        result = await self._graphql("update_issue", query, {"id": issue_id, "input": fields})
        return result.get("issueUpdate", {}).get("issue", {})

    async def update_issue_state(self, issue_id: str, state_name: str) -> Dict[str, Any]:
        """Move an issue to the named workflow state of its team."""
        issue = await self.get_issue(issue_id)
        if not issue:
            raise LinearAPIException(f"Issue not found: {issue_id}", status_code=404)

        states = await self.get_states(issue["team"]["id"])
        state = next((s for s in states if s.get("name", "").lower() == state_name.lower()), None)
        if state is None:
            raise LinearAPIException(f"Unknown state '{state_name}' for team {issue['team']['id']}", status_code=400)

        return await self.update_issue(issue_id, stateId=state["id"])

    async def get_issue_relations(self, issue_id: str) -> List[Dict[str, Any]]:
        """
        Get relations touching an issue, in both directions.

        Returns:
            List of {id, type, direction, issue, related_issue}
        """
        query = """
        query IssueRelations($id: String!) {
            issue(id: $id) {
                id
                relations { nodes { id type relatedIssue { id identifier title state { name type } } } }
                inverseRelations { nodes { id type issue { id identifier title state { name type } } } }
            }
        }
        """
        result = await self._graphql("get_issue_relations", query, {"id": issue_id})
        issue = result.get("issue") or {}

        relations = []
        for node in issue.get("relations", {}).get("nodes", []):
            relations.append({
                "id": node.get("id"),
                "type": node.get("type"),
                "direction": "outgoing",
                "issue": {"id": issue_id},
                "related_issue": node.get("relatedIssue") or {},
            })
        for node in issue.get("inverseRelations", {}).get("nodes", []):
            relations.append({
                "id": node.get("id"),
                "type": node.get("type"),
                "direction": "incoming",
                "issue": node.get("issue") or {},
                "related_issue": {"id": issue_id},
            })
        return relations

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def get_issue_comments(self, issue_id: str) -> List[Dict[str, Any]]:
        """Get comments for an issue."""
        query = """
        query IssueComments($id: String!) {
            issue(id: $id) {
                comments { nodes { id body createdAt user { id name } } }
            }
        }
        """
        result = await self._graphql("get_issue_comments", query, {"id": issue_id})
        return (result.get("issue") or {}).get("comments", {}).get("nodes", [])

    async def create_comment(self, issue_id: str, body: str) -> Dict[str, Any]:
        """Add a comment to an issue."""
        query = """
        mutation CommentCreate($input: CommentCreateInput!) {
            commentCreate(input: $input) {
                success
                comment { id body createdAt }
            }
        }
        """
        variables = {"input": {"issueId": issue_id, "body": body}}
        result = await self._graphql("create_comment", query, variables)
        return result.get("commentCreate", {}).get("comment", {})

    async def update_comment(self, comment_id: str, body: str) -> Dict[str, Any]:
        """Replace the body of an existing comment."""
        query = """
        mutation CommentUpdate($id: String!, $input: CommentUpdateInput!) {
            commentUpdate(id: $id, input: $input) {
                success
                comment { id body updatedAt }
            }
        }
        """
        result = await self._graphql("update_comment", query, {"id": comment_id, "input": {"body": body}})
        return result.get("commentUpdate", {}).get("comment", {})

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    async def get_or_create_label(self, team_id: str, name: str) -> Dict[str, Any]:
        """Find a team label by name, creating it when missing."""
        query = """
        query FindLabel($filter: IssueLabelFilter) {
            issueLabels(filter: $filter) { nodes { id name } }
        }
        """
        label_filter = {"name": {"eqIgnoreCase": name}, "team": {"id": {"eq": team_id}}}
        result = await self._graphql("find_label", query, {"filter": label_filter})
        nodes = result.get("issueLabels", {}).get("nodes", [])
        if nodes:
            return nodes[0]

        mutation = """
        mutation LabelCreate($input: IssueLabelCreateInput!) {
            issueLabelCreate(input: $input) { success issueLabel { id name } }
        }
        """
        created = await self._graphql("create_label", mutation, {"input": {"name": name, "teamId": team_id}})
        return created.get("issueLabelCreate", {}).get("issueLabel", {})

    async def add_labels(self, issue_id: str, team_id: str, names: List[str]) -> None:
        """Attach labels (by name) to an issue."""
        mutation = """
        mutation AddLabel($id: String!, $labelId: String!) {
            issueAddLabel(id: $id, labelId: $labelId) { success }
        }
        """
        for name in names:
            label = await self.get_or_create_label(team_id, name)
            await self._graphql("add_label", mutation, {"id": issue_id, "labelId": label["id"]})

    async def remove_labels(self, issue_id: str, label_ids: List[str]) -> None:
        """Detach labels (by id) from an issue."""
        mutation = """
        mutation RemoveLabel($id: String!, $labelId: String!) {
            issueRemoveLabel(id: $id, labelId: $labelId) { success }
        }
        """
        for label_id in label_ids:
            await self._graphql("remove_label", mutation, {"id": issue_id, "labelId": label_id})

    # ------------------------------------------------------------------
    # Teams and workflow states
    # ------------------------------------------------------------------

    async def get_teams(self) -> List[Dict[str, Any]]:
        """Get all teams using the SDK."""
        try:
            def _get():
                teams_dict = self.sdk.teams.get_all()
                return [t.model_dump() if hasattr(t, 'model_dump') else t.__dict__ for t in teams_dict.values()]

            return await asyncio.to_thread(_get)
        except Exception as e:
            logger.error(f"Error fetching teams: {e}")
            raise _to_api_exception(e, "get_teams")

    async def get_states(self, team_id: str) -> List[Dict[str, Any]]:
        """Get workflow states for a team using the SDK."""
        try:
            def _get():
                states = self.sdk.teams.get_states(team_id)
                return [s.model_dump() if hasattr(s, 'model_dump') else s.__dict__ for s in states]

            return await asyncio.to_thread(_get)
        except Exception as e:
            logger.error(f"Error fetching states for team {team_id}: {e}")
            raise _to_api_exception(e, "get_states")

    async def get_viewer(self) -> Dict[str, Any]:
        """Get the authenticated user using the SDK."""
        try:
            def _get():
                viewer = self.sdk.users.get_me()
                return viewer.model_dump() if hasattr(viewer, 'model_dump') else viewer.__dict__

            return await asyncio.to_thread(_get)
        except Exception as e:
            logger.error(f"Error fetching viewer: {e}")
            raise _to_api_exception(e, "get_viewer")

    async def close(self):
        """No-op for the SDK client."""
        pass
