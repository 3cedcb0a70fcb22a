"""
Behavior Scheduler

Interval and cron schedules that submit SCHEDULE triggers to the engine
from a background asyncio task.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from croniter import croniter

from .engine import AutonomousBehaviorEngine
from .types import BehaviorContext, BehaviorResult, BehaviorTrigger, BehaviorTriggerType
from ..utils.config import ConfigDefaults
from ..utils.logger import setup_logger

logger = setup_logger(__name__)


class CronExpression:
    """
    Five-field cron expression evaluated with croniter.

    Day of week 7 is accepted as Sunday. When both day fields are
    restricted a time matches if either one does, as in classic cron.
    """

    def __init__(self, expression: str):
        parts = expression.split()
        if len(parts) != 5:
            raise ValueError(f"Cron expression needs 5 fields, got {len(parts)}: {expression!r}")
        if not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression: {expression!r}")
        self.expression = " ".join(parts)

    def matches(self, dt: datetime) -> bool:
        return croniter.match(self.expression, dt)

    def next_run(self, after: datetime) -> datetime:
        """First matching minute strictly after `after`."""
        return croniter(self.expression, after).get_next(datetime)

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"


@dataclass
class BehaviorSchedule:
    behavior_id: str
    interval: Optional[timedelta] = None
    cron: Optional[CronExpression] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    active: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None

    def compute_next_run(self, after: datetime) -> datetime:
        if self.cron is not None:
            return self.cron.next_run(after)
        return after + self.interval


def default_schedules() -> List[BehaviorSchedule]:
    return [
        BehaviorSchedule("periodic_reporting", cron=CronExpression("0 9 * * 1"),
                         metadata={"report_type": "weekly_summary"}),
        BehaviorSchedule("art_health_monitoring", interval=timedelta(hours=24)),
        BehaviorSchedule("anomaly_detection", interval=timedelta(hours=6)),
    ]


class BehaviorScheduler:
    """
    Usage:
        scheduler = BehaviorScheduler(engine)
        scheduler.add_schedule(BehaviorSchedule("anomaly_detection", interval=timedelta(hours=6)))
        await scheduler.start()
    """

    def __init__(
        self,
        engine: AutonomousBehaviorEngine,
        tick_seconds: float = ConfigDefaults.ENGINE_SCHEDULER_TICK_SECONDS,
        schedules: Optional[List[BehaviorSchedule]] = None
    ):
        self.engine = engine
        self.tick_seconds = tick_seconds
        self.is_running = False
        self._task: Optional[asyncio.Task] = None
        self._schedules: Dict[str, BehaviorSchedule] = {}
        for schedule in schedules if schedules is not None else default_schedules():
            self.add_schedule(schedule)

    @property
    def schedules(self) -> Dict[str, BehaviorSchedule]:
        return dict(self._schedules)

    def add_schedule(self, schedule: BehaviorSchedule, now: Optional[datetime] = None) -> None:
        if (schedule.interval is None) == (schedule.cron is None):
            raise ValueError("A schedule needs exactly one of interval or cron")
        now = now or datetime.now(timezone.utc)
        schedule.next_run = schedule.compute_next_run(now)
        self._schedules[schedule.behavior_id] = schedule
        kind = f"cron {schedule.cron.expression}" if schedule.cron else f"every {schedule.interval}"
        logger.info(f"[ENGINE] Scheduled {schedule.behavior_id} ({kind}), next run {schedule.next_run.isoformat()}")

    def remove_schedule(self, behavior_id: str) -> bool:
        removed = self._schedules.pop(behavior_id, None) is not None
        if removed:
            logger.info(f"[ENGINE] Removed schedule for {behavior_id}")
        return removed

    def set_schedule_active(self, behavior_id: str, active: bool) -> bool:
        schedule = self._schedules.get(behavior_id)
        if schedule is None:
            return False
        schedule.active = active
        return True

    async def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"[ENGINE] Scheduler started with {len(self._schedules)} schedules")

    async def stop(self) -> None:
        self.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[ENGINE] Scheduler stopped")

    async def _run_loop(self) -> None:
        while self.is_running:
            try:
                await self.run_pending()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[ENGINE] Scheduler tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.tick_seconds)

    async def run_pending(self, now: Optional[datetime] = None) -> List[BehaviorResult]:
        """Fire every active schedule whose next run has arrived."""
        now = now or datetime.now(timezone.utc)
        results: List[BehaviorResult] = []
        for schedule in list(self._schedules.values()):
            if not schedule.active or schedule.next_run is None or schedule.next_run > now:
                continue
            schedule.last_run = now
            schedule.next_run = schedule.compute_next_run(now)
            results.extend(await self._trigger(schedule, now))
        return results

    async def _trigger(self, schedule: BehaviorSchedule, now: datetime) -> List[BehaviorResult]:
        trigger = BehaviorTrigger(
            id=f"schedule-{schedule.behavior_id}-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}",
            type=BehaviorTriggerType.SCHEDULE,
            context=BehaviorContext(
                trigger=BehaviorTriggerType.SCHEDULE,
                team=({"id": schedule.metadata["team_id"]} if schedule.metadata.get("team_id") else None),
                metadata={**schedule.metadata, "scheduled_behavior": schedule.behavior_id},
            ),
            payload={"behavior_id": schedule.behavior_id, "scheduled_time": now.isoformat()},
            timestamp=now,
        )
        logger.info(f"[ENGINE] Triggering scheduled behavior {schedule.behavior_id} ({trigger.id})")
        try:
            return await self.engine.process_trigger(trigger, behavior_ids=[schedule.behavior_id])
        except Exception as e:
            logger.error(f"[ENGINE] Scheduled trigger for {schedule.behavior_id} failed: {e}", exc_info=True)
            return []
