"""
Autonomous behavior data model.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


class BehaviorTriggerType(str, Enum):
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    COMMAND_COMPLETION = "command_completion"
    MANUAL = "manual"


@dataclass
class BehaviorContext:
    """What a behavior gets to look at. Issue/team are Linear GraphQL-shaped dicts."""
    trigger: BehaviorTriggerType
    issue: Optional[Dict[str, Any]] = None
    team: Optional[Dict[str, Any]] = None
    user: Optional[Dict[str, Any]] = None
    # Webhook `updatedFrom`: previous values of the fields that changed
    previous_state: Optional[Dict[str, Any]] = None
    current_iteration: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def team_id(self) -> Optional[str]:
        if self.team and self.team.get("id"):
            return self.team["id"]
        if self.issue:
            return (self.issue.get("team") or {}).get("id") or self.issue.get("teamId")
        return None


@dataclass
class BehaviorTrigger:
    id: str
    type: BehaviorTriggerType
    context: BehaviorContext
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class BehaviorAction:
    type: str  # comment | update | notify | analysis | report
    target: str
    description: str
    result: str = "success"  # success | failed | skipped
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BehaviorNotification:
    title: str
    message: str
    priority: str = "medium"  # low | medium | high | urgent
    channels: List[str] = field(default_factory=lambda: ["linear"])
    recipients: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BehaviorResult:
    success: bool
    actions: List[BehaviorAction] = field(default_factory=list)
    error: Optional[str] = None
    execution_time: float = 0.0  # ms
    should_notify: bool = False
    notification: Optional[BehaviorNotification] = None
    behavior_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@runtime_checkable
class AutonomousBehavior(Protocol):
    """
    Capability every behavior provides.

    should_trigger is a cheap applicability check; execute does the work.
    """
    id: str
    name: str
    description: str
    priority: int
    enabled: bool

    async def should_trigger(self, context: BehaviorContext) -> bool:
        ...

    async def execute(self, context: BehaviorContext) -> BehaviorResult:
        ...
