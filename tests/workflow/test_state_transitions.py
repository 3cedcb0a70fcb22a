"""
Tests for the state transition validator
"""
from typing import Dict, List

import pytest

from pulse_agent.workflow.state_transitions import (
    StateTransitionHandler,
    TransitionCommitError,
    TransitionContext,
    TransitionWorkItem,
    is_valid_state_transition,
)


class InMemoryRepository:
    """Work item store recording every state write."""

    def __init__(self, *items: TransitionWorkItem):
        self.items: Dict[str, TransitionWorkItem] = {item.id: item for item in items}
        self.writes: List[tuple] = []
        self.fail_on = set()

    async def load_item(self, item_id):
        return self.items.get(item_id)

    async def load_items(self, item_ids):
        return [self.items[i] for i in item_ids if i in self.items]

    async def apply_state(self, item_id, state):
        if (item_id, state) in self.fail_on:
            raise RuntimeError(f"write to {item_id} rejected")
        self.writes.append((item_id, state))
        self.items[item_id].state = state


@pytest.fixture
def handler_for(progress_config):
    def build(repository):
        return StateTransitionHandler(repository, progress_config)
    return build


class TestStateMachine:
    """Structural transitions"""

    def test_valid_edges(self):
        assert is_valid_state_transition("Backlog", "Todo")
        assert is_valid_state_transition("In Review", "Done")
        assert is_valid_state_transition("Done", "In Review")
        assert not is_valid_state_transition("Backlog", "Done")
        assert not is_valid_state_transition("Done", "Todo")

    @pytest.mark.asyncio
    async def test_illegal_edge_fails_even_with_force(self, handler_for):
        item = TransitionWorkItem(id="story-1", state="Backlog")
        repository = InMemoryRepository(item)

        result = await handler_for(repository).handle_state_transition(
            item, "Done", TransitionContext(force=True)
        )

        assert not result.success
        assert result.violations[0].rule == "invalid-state-transition"
        assert result.violations[0].message == "Cannot transition from Backlog to Done"
        assert repository.writes == []
        assert not result.rollback_performed


class TestBusinessRules:
    """Dependencies, blockers, epics and subtasks"""

    @pytest.mark.asyncio
    async def test_incomplete_dependency_blocks_done(self, handler_for):
        dep = TransitionWorkItem(id="dep-1", state="In Progress")
        item = TransitionWorkItem(id="story-1", state="In Review", dependency_ids=["dep-1"])
        repository = InMemoryRepository(item, dep)

        result = await handler_for(repository).handle_state_transition(item, "Done")

        assert not result.success
        assert [v.rule for v in result.violations] == ["incomplete-dependencies"]
        assert repository.writes == []

    @pytest.mark.asyncio
    async def test_forced_dependency_bypass_rolls_back_in_transaction(self, handler_for):
        dep = TransitionWorkItem(id="dep-1", state="In Progress", title="Payment API")
        item = TransitionWorkItem(id="story-1", state="In Review", dependency_ids=["dep-1"])
        repository = InMemoryRepository(item, dep)

        result = await handler_for(repository).handle_state_transition(
            item, "Done", TransitionContext(force=True)
        )

        assert not result.success
        assert result.rollback_performed
        assert "dependency-validation" in [v.rule for v in result.violations]
        assert repository.writes == [("story-1", "Done"), ("story-1", "In Review")]
        assert repository.items["story-1"].state == "In Review"

    @pytest.mark.asyncio
    async def test_active_blockers_only_warn(self, handler_for):
        blocker = TransitionWorkItem(id="blocker-1", state="Todo")
        item = TransitionWorkItem(id="story-1", state="Todo", blocked_by_ids=["blocker-1"])
        repository = InMemoryRepository(item, blocker)

        result = await handler_for(repository).handle_state_transition(item, "In Progress")

        assert result.success
        assert result.violations[0].rule == "active-blockers"
        assert result.violations[0].severity == "warning"

    @pytest.mark.asyncio
    async def test_epic_with_open_children_cannot_close(self, handler_for):
        child = TransitionWorkItem(id="story-1", state="Todo", parent_id="epic-1")
        epic = TransitionWorkItem(id="epic-1", state="In Review", type="Epic", child_ids=["story-1"])
        repository = InMemoryRepository(epic, child)

        result = await handler_for(repository).handle_state_transition(epic, "Done")

        assert not result.success
        assert result.violations[0].rule == "incomplete-epic-children"

    @pytest.mark.asyncio
    async def test_incomplete_subtasks_roll_back(self, handler_for):
        subtask = TransitionWorkItem(id="task-1", state="Todo")
        item = TransitionWorkItem(id="story-1", state="In Review", subtask_ids=["task-1"])
        repository = InMemoryRepository(item, subtask)

        result = await handler_for(repository).handle_state_transition(item, "Done")

        assert not result.success
        assert result.rollback_performed
        assert repository.items["story-1"].state == "In Review"

    @pytest.mark.asyncio
    async def test_forced_subtasks_are_recorded(self, handler_for):
        subtask = TransitionWorkItem(id="task-1", state="Todo")
        item = TransitionWorkItem(id="story-1", state="In Review", subtask_ids=["task-1"])
        repository = InMemoryRepository(item, subtask)

        result = await handler_for(repository).handle_state_transition(
            item, "Done", TransitionContext(force=True)
        )

        assert result.success
        assert [v.rule for v in result.violations] == ["incomplete-subtasks"]
        assert repository.items["story-1"].state == "Done"


class TestCascade:
    """Upward propagation to parents"""

    @pytest.mark.asyncio
    async def test_last_child_done_completes_parent(self, handler_for):
        sibling = TransitionWorkItem(id="story-2", state="Canceled", parent_id="epic-1")
        item = TransitionWorkItem(id="story-1", state="In Review", parent_id="epic-1")
        epic = TransitionWorkItem(id="epic-1", state="In Progress", type="Epic", child_ids=["story-1", "story-2"])
        repository = InMemoryRepository(item, sibling, epic)

        result = await handler_for(repository).handle_state_transition(item, "Done")

        assert result.success
        assert len(result.cascaded_updates) == 1
        update = result.cascaded_updates[0]
        assert (update.item_id, update.from_state, update.to_state) == ("epic-1", "In Progress", "Done")
        assert repository.items["epic-1"].state == "Done"

    @pytest.mark.asyncio
    async def test_started_child_starts_parent(self, handler_for):
        item = TransitionWorkItem(id="story-1", state="Todo", parent_id="epic-1")
        epic = TransitionWorkItem(id="epic-1", state="Todo", type="Epic", child_ids=["story-1"])
        repository = InMemoryRepository(item, epic)

        result = await handler_for(repository).handle_state_transition(item, "In Progress")

        assert result.success
        assert result.cascaded_updates[0].to_state == "In Progress"

    @pytest.mark.asyncio
    async def test_cascade_failure_restores_everything(self, handler_for):
        item = TransitionWorkItem(id="story-1", state="In Review", parent_id="epic-1")
        epic = TransitionWorkItem(id="epic-1", state="In Progress", type="Epic", child_ids=["story-1"])
        repository = InMemoryRepository(item, epic)
        repository.fail_on.add(("epic-1", "Done"))

        result = await handler_for(repository).handle_state_transition(item, "Done")

        assert not result.success
        assert result.rollback_performed
        assert result.cascaded_updates == []
        assert repository.items["story-1"].state == "In Review"

    @pytest.mark.asyncio
    async def test_failed_rollback_raises(self, handler_for):
        item = TransitionWorkItem(id="story-1", state="In Review", parent_id="epic-1")
        epic = TransitionWorkItem(id="epic-1", state="In Progress", type="Epic", child_ids=["story-1"])
        repository = InMemoryRepository(item, epic)
        repository.fail_on.update({("epic-1", "Done"), ("story-1", "In Review")})

        with pytest.raises(TransitionCommitError) as exc_info:
            await handler_for(repository).handle_state_transition(item, "Done")

        assert exc_info.value.errors
