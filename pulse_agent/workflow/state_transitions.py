"""
State Transition Validator

Enforces workflow business rules when a work item changes state:
- structural state machine check (never bypassable)
- dependency, blocker, epic-children and subtask rules
- upward cascading of parent states
- transactional rollback through a compensating-action log
"""
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from .progress_config import ProgressConfigHolder, ProgressTrackerConfig
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

BACKLOG = "Backlog"
TODO = "Todo"
IN_PROGRESS = "In Progress"
IN_REVIEW = "In Review"
DONE = "Done"
CANCELED = "Canceled"

WORK_ITEM_STATES = (BACKLOG, TODO, IN_PROGRESS, IN_REVIEW, DONE, CANCELED)

VALID_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    BACKLOG: (TODO, CANCELED),
    TODO: (IN_PROGRESS, BACKLOG, CANCELED),
    IN_PROGRESS: (IN_REVIEW, TODO, CANCELED),
    IN_REVIEW: (DONE, IN_PROGRESS, CANCELED),
    DONE: (IN_REVIEW,),  # reopening
    CANCELED: (BACKLOG, TODO),  # uncanceling
}

CLOSED_STATES = (DONE, CANCELED)
INVALID_TRANSITION_RULE = "invalid-state-transition"


class TransitionCommitError(Exception):
    """Raised inside a transition transaction, or when rolling one back fails."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


@dataclass
class TransitionWorkItem:
    id: str
    state: str
    type: str = "Story"  # Story | Enabler | Epic | Feature
    title: str = ""
    parent_id: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)
    dependency_ids: List[str] = field(default_factory=list)
    blocked_by_ids: List[str] = field(default_factory=list)
    subtask_ids: List[str] = field(default_factory=list)


@dataclass
class TransitionContext:
    user_id: str = ""
    team_id: str = ""
    reason: Optional[str] = None
    force: bool = False


@dataclass
class BusinessRuleViolation:
    rule: str
    severity: str  # warning | error
    message: str
    recommendation: Optional[str] = None


@dataclass
class CascadedUpdate:
    item_id: str
    item_type: str
    from_state: str
    to_state: str
    reason: str


@dataclass
class TransitionResult:
    success: bool
    item_id: str
    from_state: str
    to_state: str
    cascaded_updates: List[CascadedUpdate] = field(default_factory=list)
    violations: List[BusinessRuleViolation] = field(default_factory=list)
    rollback_performed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WorkItemRepository(Protocol):
    """Source of truth for work items (see integrations.linear.repository)."""

    async def load_item(self, item_id: str) -> Optional[TransitionWorkItem]:
        ...

    async def load_items(self, item_ids: List[str]) -> List[TransitionWorkItem]:
        ...

    async def apply_state(self, item_id: str, state: str) -> None:
        ...


def is_valid_state_transition(from_state: str, to_state: str) -> bool:
    return to_state in VALID_TRANSITIONS.get(from_state, ())


class _Transaction:
    """Applies state writes and records their inverse so they can be undone."""

    def __init__(self, repository: WorkItemRepository):
        self.repository = repository
        self.id = f"txn_{int(time.time() * 1000)}"
        self._log: List[Tuple[str, str, str]] = []
        self.committed = False

    async def apply(self, item_id: str, from_state: str, to_state: str) -> None:
        logger.info(f"[TRANSITION] {self.id}: {item_id} {from_state} -> {to_state}")
        await self.repository.apply_state(item_id, to_state)
        self._log.append((item_id, from_state, to_state))

    def commit(self) -> None:
        self.committed = True
        logger.debug(f"[TRANSITION] Transaction {self.id} committed ({len(self._log)} writes)")

    async def rollback(self) -> None:
        """
        Restore every applied write in reverse order.

        Raises:
            TransitionCommitError: one or more compensating writes failed.
        """
        failures = []
        for item_id, from_state, _ in reversed(self._log):
            try:
                await self.repository.apply_state(item_id, from_state)
            except Exception as e:
                logger.error(f"[TRANSITION] Failed to restore {item_id} to {from_state}: {e}", exc_info=True)
                failures.append(f"{item_id}: {e}")
        self._log.clear()

        if failures:
            raise TransitionCommitError(f"Rollback of {self.id} incomplete", failures)
        logger.warning(f"[TRANSITION] Transaction {self.id} rolled back")


class StateTransitionHandler:
    """
    Validates and applies work item state transitions.

    Usage:
        handler = StateTransitionHandler(repository, ProgressConfigHolder())
        result = await handler.handle_state_transition(item, "Done", TransitionContext())
    """

    def __init__(
        self,
        repository: WorkItemRepository,
        config: Union[ProgressConfigHolder, ProgressTrackerConfig, None] = None
    ):
        self.repository = repository
        if isinstance(config, ProgressConfigHolder):
            self._holder = config
        else:
            self._holder = ProgressConfigHolder(config)

    @property
    def config(self) -> ProgressTrackerConfig:
        return self._holder.current

    async def handle_state_transition(
        self,
        item: TransitionWorkItem,
        new_state: str,
        context: Optional[TransitionContext] = None
    ) -> TransitionResult:
        """
        Validate and apply a state change, cascading to parents.

        Args:
            item: Current projection of the item
            new_state: Target state
            context: Caller context; `force` bypasses error rules except the state machine

        Returns:
            TransitionResult; rollback_performed is set when a started transaction was undone

        Raises:
            TransitionCommitError: the rollback itself failed
        """
        context = context or TransitionContext()
        rules = self.config.state_transition
        start = time.monotonic()
        result = TransitionResult(
            success=False,
            item_id=item.id,
            from_state=item.state,
            to_state=new_state,
        )

        try:
            result.violations = await self._validate_transition(item, new_state)
        except Exception as e:
            logger.error(f"[TRANSITION] Validation of {item.id} failed: {e}", exc_info=True)
            return result

        errors = [v for v in result.violations if v.severity == "error"]
        structural = any(v.rule == INVALID_TRANSITION_RULE for v in errors)
        if structural or (errors and not context.force):
            logger.warning(
                f"[TRANSITION] {item.id} {item.state} -> {new_state} blocked: "
                f"{[v.rule for v in errors]}"
            )
            return result

        transaction = _Transaction(self.repository)
        try:
            await transaction.apply(item.id, item.state, new_state)

            if rules.auto_progress_parent_epics:
                result.cascaded_updates.extend(
                    await self._update_parent_states(item, new_state, transaction)
                )

            if rules.require_dependency_completion:
                dependency_violations = await self._validate_dependencies(item, new_state)
                if dependency_violations:
                    result.violations.extend(dependency_violations)
                    raise TransitionCommitError("Dependency validation failed")

            if not rules.allow_incomplete_subtasks:
                subtask_violations = await self._validate_subtasks(item, new_state)
                if subtask_violations:
                    result.violations.extend(subtask_violations)
                    if not context.force:
                        raise TransitionCommitError("Subtask validation failed")

            transaction.commit()
            result.success = True
            logger.info(
                f"[TRANSITION] {item.id} {item.state} -> {new_state} completed "
                f"({len(result.cascaded_updates)} cascaded, {(time.monotonic() - start) * 1000:.0f}ms)"
            )
        except Exception as e:
            logger.error(f"[TRANSITION] {item.id} {item.state} -> {new_state} failed: {e}", exc_info=True)
            await transaction.rollback()
            result.rollback_performed = True
            result.cascaded_updates = []

        return result

    async def _validate_transition(self, item: TransitionWorkItem, new_state: str) -> List[BusinessRuleViolation]:
        rules = self.config.state_transition
        violations: List[BusinessRuleViolation] = []

        if not is_valid_state_transition(item.state, new_state):
            violations.append(BusinessRuleViolation(
                rule=INVALID_TRANSITION_RULE,
                severity="error",
                message=f"Cannot transition from {item.state} to {new_state}",
                recommendation="Follow the standard workflow: Backlog -> Todo -> In Progress -> In Review -> Done",
            ))

        if new_state == DONE and rules.require_dependency_completion and item.dependency_ids:
            incomplete = await self._incomplete(item.dependency_ids)
            if incomplete:
                violations.append(BusinessRuleViolation(
                    rule="incomplete-dependencies",
                    severity="error",
                    message=f"Cannot complete item with {len(incomplete)} incomplete dependencies",
                    recommendation="Complete all dependencies before marking this item as Done",
                ))

        if new_state == IN_PROGRESS and item.blocked_by_ids:
            active = await self._incomplete(item.blocked_by_ids)
            if active:
                violations.append(BusinessRuleViolation(
                    rule="active-blockers",
                    severity="warning",
                    message=f"Item has {len(active)} active blockers",
                    recommendation="Consider resolving blockers before starting work",
                ))

        if item.type == "Epic" and new_state == DONE and not rules.allow_partial_epic_completion:
            incomplete = await self._incomplete(item.child_ids)
            if incomplete:
                violations.append(BusinessRuleViolation(
                    rule="incomplete-epic-children",
                    severity="error",
                    message=f"Epic has {len(incomplete)} incomplete child items",
                    recommendation="Complete all child items before closing the epic",
                ))

        return violations

    async def _update_parent_states(
        self,
        item: TransitionWorkItem,
        new_state: str,
        transaction: _Transaction
    ) -> List[CascadedUpdate]:
        if not item.parent_id:
            return []

        parent = await self.repository.load_item(item.parent_id)
        if parent is None:
            return []

        siblings = await self.repository.load_items(parent.child_ids) if parent.child_ids else []
        others = [s for s in siblings if s.id != item.id]

        parent_new_state = None
        reason = ""
        if new_state == DONE:
            if all(s.state in CLOSED_STATES for s in others) and parent.state != DONE:
                parent_new_state = DONE
                reason = f"All child items of {parent.id} are done or canceled"
        elif new_state == IN_PROGRESS:
            if parent.state in (BACKLOG, TODO):
                parent_new_state = IN_PROGRESS
                reason = f"Child item {item.id} started work"
        elif new_state == CANCELED:
            if all(s.state == CANCELED for s in others) and parent.state != CANCELED:
                parent_new_state = CANCELED
                reason = f"All child items of {parent.id} were canceled"

        if parent_new_state is None:
            return []

        await transaction.apply(parent.id, parent.state, parent_new_state)
        updates = [CascadedUpdate(
            item_id=parent.id,
            item_type=parent.type,
            from_state=parent.state,
            to_state=parent_new_state,
            reason=reason,
        )]
        updates.extend(await self._update_parent_states(parent, parent_new_state, transaction))
        return updates

    async def _validate_dependencies(self, item: TransitionWorkItem, new_state: str) -> List[BusinessRuleViolation]:
        if new_state != DONE or not item.dependency_ids:
            return []
        incomplete = await self._incomplete(item.dependency_ids)
        if not incomplete:
            return []
        return [BusinessRuleViolation(
            rule="dependency-validation",
            severity="error",
            message=f"{len(incomplete)} dependencies must be completed first",
            recommendation=", ".join(dep.title or dep.id for dep in incomplete),
        )]

    async def _validate_subtasks(self, item: TransitionWorkItem, new_state: str) -> List[BusinessRuleViolation]:
        if new_state != DONE or not item.subtask_ids:
            return []
        incomplete = await self._incomplete(item.subtask_ids)
        if not incomplete:
            return []
        return [BusinessRuleViolation(
            rule="incomplete-subtasks",
            severity="error",
            message=f"{len(incomplete)} subtasks must be completed first",
            recommendation="Complete all subtasks before marking parent as Done",
        )]

    async def _incomplete(self, item_ids: List[str]) -> List[TransitionWorkItem]:
        if not item_ids:
            return []
        items = await self.repository.load_items(item_ids)
        return [i for i in items if i.state not in CLOSED_STATES]
