"""
Behavior health monitoring: execution history, per-behavior stats and
health checks surfaced through /health/behaviors.
"""
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, Iterable, List, Optional

from ..utils.logger import setup_logger

logger = setup_logger(__name__)

MAX_HISTORY_SIZE = 10000
RECENT_ERROR_LIMIT = 10
MIN_SUCCESS_RATE = 0.8
SLOW_EXECUTION_MS = 5000
REPEATED_ERROR_COUNT = 3
HISTORY_RETENTION = timedelta(days=7)


@dataclass
class ExecutionRecord:
    behavior_id: str
    success: bool
    execution_time: float
    timestamp: datetime
    error: Optional[str] = None


@dataclass
class _BehaviorStats:
    total_executions: int = 0
    success_count: int = 0
    total_time: float = 0.0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    recent_errors: Deque[str] = field(default_factory=lambda: deque(maxlen=RECENT_ERROR_LIMIT))


@dataclass
class BehaviorHealth:
    behavior_id: str
    healthy: bool
    success_rate: float
    avg_execution_time: float
    total_executions: int
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("last_success", "last_failure"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class BehaviorHealthMonitor:
    """Tracks behavior execution health and provides metrics."""

    def __init__(self):
        self._history: Deque[ExecutionRecord] = deque(maxlen=MAX_HISTORY_SIZE)
        self._stats: Dict[str, _BehaviorStats] = {}

    def record_execution(
        self,
        behavior_id: str,
        success: bool,
        execution_time: float,
        error: Optional[str] = None
    ) -> None:
        record = ExecutionRecord(
            behavior_id=behavior_id,
            success=success,
            execution_time=execution_time,
            timestamp=datetime.now(timezone.utc),
            error=error,
        )
        self._history.append(record)

        stats = self._stats.setdefault(behavior_id, _BehaviorStats())
        stats.total_executions += 1
        stats.total_time += execution_time
        if success:
            stats.success_count += 1
            stats.last_success = record.timestamp
        else:
            stats.last_failure = record.timestamp
            if error:
                stats.recent_errors.append(error)

    def get_behavior_health(self, behavior_id: str) -> BehaviorHealth:
        stats = self._stats.get(behavior_id)
        if stats is None or stats.total_executions == 0:
            # Nothing ran yet
            return BehaviorHealth(
                behavior_id=behavior_id,
                healthy=True,
                success_rate=1.0,
                avg_execution_time=0.0,
                total_executions=0,
            )

        success_rate = stats.success_count / stats.total_executions
        avg_time = stats.total_time / stats.total_executions
        issues = []

        if success_rate < MIN_SUCCESS_RATE:
            issues.append(f"Low success rate: {success_rate * 100:.1f}%")

        if stats.last_failure and (not stats.last_success or stats.last_failure >= stats.last_success):
            issues.append("Last execution failed")

        if avg_time > SLOW_EXECUTION_MS:
            issues.append(f"Slow execution: {avg_time:.0f}ms average")

        for error, count in Counter(stats.recent_errors).items():
            if count >= REPEATED_ERROR_COUNT:
                issues.append(f'Repeated error: "{error}" ({count} times)')

        return BehaviorHealth(
            behavior_id=behavior_id,
            healthy=not issues,
            success_rate=success_rate,
            avg_execution_time=avg_time,
            total_executions=stats.total_executions,
            last_success=stats.last_success,
            last_failure=stats.last_failure,
            issues=issues,
        )

    def get_health_status(self, behavior_ids: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Health for the given behaviors (defaults to every behavior seen so far).

        Returns:
            {"healthy": bool, "behaviors": [...], "unhealthy": [ids]}
        """
        ids = list(behavior_ids) if behavior_ids is not None else list(self._stats)
        statuses = [self.get_behavior_health(behavior_id) for behavior_id in ids]
        unhealthy = [s.behavior_id for s in statuses if not s.healthy]
        return {
            "healthy": not unhealthy,
            "behaviors": [s.to_dict() for s in statuses],
            "unhealthy": unhealthy,
        }

    def get_metrics(self, window: timedelta = timedelta(hours=24)) -> Dict[str, Any]:
        end = datetime.now(timezone.utc)
        start = end - window
        records = [r for r in self._history if start <= r.timestamp <= end]

        total = len(records)
        successful = sum(1 for r in records if r.success)
        by_behavior: Dict[str, int] = {}
        for record in records:
            by_behavior[record.behavior_id] = by_behavior.get(record.behavior_id, 0) + 1

        return {
            "total_executions": total,
            "successful_executions": successful,
            "failed_executions": total - successful,
            "avg_execution_time": sum(r.execution_time for r in records) / total if total else 0.0,
            "by_behavior": by_behavior,
            "period": {"start": start.isoformat(), "end": end.isoformat()},
        }

    def get_recent_executions(self, behavior_id: str, limit: int = 10) -> List[ExecutionRecord]:
        records = [r for r in self._history if r.behavior_id == behavior_id]
        return list(reversed(records[-limit:]))

    def cleanup(self, max_age: timedelta = HISTORY_RETENTION) -> int:
        """Drop history older than max_age; returns how many records went."""
        cutoff = datetime.now(timezone.utc) - max_age
        kept = [r for r in self._history if r.timestamp > cutoff]
        removed = len(self._history) - len(kept)
        self._history = deque(kept, maxlen=MAX_HISTORY_SIZE)
        if removed:
            logger.info(f"[ENGINE] Cleaned up {removed} old execution records")
        return removed

    def reset_behavior_stats(self, behavior_id: str) -> None:
        self._stats.pop(behavior_id, None)
        self._history = deque(
            (r for r in self._history if r.behavior_id != behavior_id),
            maxlen=MAX_HISTORY_SIZE,
        )
        logger.info(f"[ENGINE] Reset statistics for {behavior_id}")
