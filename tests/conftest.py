"""
Pytest configuration and fixtures
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from pulse_agent.utils.config import Config, LinearConfig
from pulse_agent.workflow.progress_config import ProgressConfigHolder, get_progress_config


def make_issue(
    issue_id: str = "issue-1",
    title: str = "Implement login flow",
    state: str = "Todo",
    estimate=None,
    labels=None,
    team_id: str = "team-1",
    **extra
):
    """Linear GraphQL-shaped issue dict."""
    issue = {
        "id": issue_id,
        "identifier": f"ENG-{issue_id.split('-')[-1]}",
        "title": title,
        "description": extra.pop("description", ""),
        "estimate": estimate,
        "priority": extra.pop("priority", 3),
        "state": {"id": f"state-{state}", "name": state},
        "team": {"id": team_id, "name": "Engineering", "key": "ENG"},
        "labels": {"nodes": [{"id": f"label-{name}", "name": name} for name in (labels or [])]},
        "children": {"nodes": extra.pop("children", [])},
        "comments": {"nodes": extra.pop("comments", [])},
    }
    issue.update(extra)
    return issue


@pytest.fixture
def issue_factory():
    return make_issue


@pytest.fixture
def tracker():
    """Mock LinearService: every call is an AsyncMock with a harmless default."""
    service = MagicMock()
    service.is_available = True
    service.get_issue = AsyncMock(return_value=None)
    service.get_issues = AsyncMock(return_value=[])
    service.get_teams = AsyncMock(return_value=[{"id": "team-1", "key": "ENG", "name": "Engineering"}])
    service.get_states = AsyncMock(return_value=[])
    service.get_issue_relations = AsyncMock(return_value=[])
    service.get_issue_comments = AsyncMock(return_value=[])
    service.get_viewer = AsyncMock(return_value={"id": "agent-user"})
    service.create_issue = AsyncMock(return_value={"id": "created-issue"})
    service.create_comment = AsyncMock(return_value={"id": "comment-1"})
    service.update_comment = AsyncMock(return_value={"id": "comment-1"})
    service.update_issue = AsyncMock(return_value={})
    service.update_issue_state = AsyncMock(return_value={})
    service.add_labels = AsyncMock(return_value=None)
    service.remove_labels = AsyncMock(return_value=None)
    return service


@pytest.fixture
def progress_config():
    return ProgressConfigHolder(get_progress_config("development"))


@pytest.fixture
def test_config():
    """Test configuration"""
    return Config(
        environment="test",
        linear=LinearConfig(api_key="lin_api_test", webhook_secret="whsec-test"),
    )
