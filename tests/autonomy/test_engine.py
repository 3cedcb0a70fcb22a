"""
Tests for the behavior engine, registry and health monitor
"""
import pytest

from pulse_agent.autonomy import (
    AutonomousBehaviorEngine,
    BehaviorContext,
    BehaviorHealthMonitor,
    BehaviorRegistry,
    BehaviorResult,
    BehaviorTrigger,
    BehaviorTriggerType,
    EngineConfig,
)
from pulse_agent.autonomy.behaviors import ReportType
from pulse_agent.utils.config import EngineSettings
from pulse_agent.workflow.progress import ProgressEngine


class FakeBehavior:
    name = "Fake"
    description = "Records its executions"

    def __init__(self, behavior_id, priority=50, trigger=True, error=None, log=None):
        self.id = behavior_id
        self.priority = priority
        self.enabled = True
        self.trigger = trigger
        self.error = error
        self.log = log if log is not None else []

    async def should_trigger(self, context):
        return self.trigger

    async def execute(self, context):
        self.log.append(self.id)
        if self.error:
            raise self.error
        return BehaviorResult(success=True)


def make_trigger(trigger_type=BehaviorTriggerType.WEBHOOK, trigger_id="t-1"):
    return BehaviorTrigger(id=trigger_id, type=trigger_type, context=BehaviorContext(trigger=trigger_type))


@pytest.fixture
def engine():
    return AutonomousBehaviorEngine(EngineConfig())


class TestTriggerProcessing:
    """Selection, ordering and isolation"""

    @pytest.mark.asyncio
    async def test_priority_order(self, engine):
        log = []
        engine.register_behavior(FakeBehavior("story_monitoring", priority=80, log=log))
        engine.register_behavior(FakeBehavior("art_health_monitoring", priority=90, log=log))
        engine.register_behavior(FakeBehavior("periodic_reporting", priority=40, log=log))

        results = await engine.process_trigger(make_trigger())

        assert log == ["art_health_monitoring", "story_monitoring", "periodic_reporting"]
        assert [r.behavior_id for r in results] == log

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, engine):
        engine.register_behavior(FakeBehavior("dependency_detection", priority=70, error=RuntimeError("boom")))
        engine.register_behavior(FakeBehavior("workflow_automation", priority=60))

        results = await engine.process_trigger(make_trigger())

        assert [(r.behavior_id, r.success) for r in results] == [
            ("dependency_detection", False),
            ("workflow_automation", True),
        ]
        assert results[0].error == "boom"
        assert engine.health_monitor.get_behavior_health("dependency_detection").last_failure is not None

    @pytest.mark.asyncio
    async def test_declined_behavior_is_not_counted(self, engine):
        engine.register_behavior(FakeBehavior("story_monitoring", trigger=False))

        results = await engine.process_trigger(make_trigger())

        assert results[0].success
        assert results[0].actions == []
        assert engine.get_metrics()["execution_counts"] == {"story_monitoring": 0}

    @pytest.mark.asyncio
    async def test_schedule_trigger_filters_by_id(self, engine):
        log = []
        engine.register_behavior(FakeBehavior("periodic_reporting", log=log))
        engine.register_behavior(FakeBehavior("dependency_detection", log=log))

        await engine.process_trigger(make_trigger(BehaviorTriggerType.SCHEDULE))
        assert log == ["periodic_reporting"]

        await engine.process_trigger(make_trigger(BehaviorTriggerType.SCHEDULE), behavior_ids=["dependency_detection"])
        assert log == ["periodic_reporting", "dependency_detection"]

    @pytest.mark.asyncio
    async def test_command_completion_filter(self, engine):
        log = []
        engine.register_behavior(FakeBehavior("workflow_automation", log=log))
        engine.register_behavior(FakeBehavior("anomaly_detection", log=log))
        engine.register_behavior(FakeBehavior("story_monitoring", log=log))

        await engine.process_trigger(make_trigger(BehaviorTriggerType.COMMAND_COMPLETION))

        assert log == ["anomaly_detection", "story_monitoring"]

    @pytest.mark.asyncio
    async def test_disabled_behaviors_are_skipped(self, engine):
        log = []
        disabled = FakeBehavior("story_monitoring", log=log)
        disabled.enabled = False
        engine.register_behavior(disabled)
        engine.register_behavior(FakeBehavior("anomaly_detection", log=log))
        engine.update_configuration(enabled_behaviors={"anomaly_detection": False})

        assert await engine.process_trigger(make_trigger()) == []
        assert log == []
        assert engine.config.enabled_behaviors["story_monitoring"] is True

    @pytest.mark.asyncio
    async def test_rate_limit_drops_whole_trigger(self):
        engine = AutonomousBehaviorEngine(EngineConfig(max_per_minute=1))
        log = []
        engine.register_behavior(FakeBehavior("story_monitoring", log=log))

        assert len(await engine.process_trigger(make_trigger(trigger_id="t-1"))) == 1
        before = engine.get_metrics()

        assert await engine.process_trigger(make_trigger(trigger_id="t-2")) == []

        after = engine.get_metrics()
        assert log == ["story_monitoring"]
        assert after["execution_counts"] == before["execution_counts"] == {"story_monitoring": 1}
        assert after["last_execution_times"] == before["last_execution_times"]
        assert after["total_executions"] == before["total_executions"] == 1
        assert engine.health_monitor.get_behavior_health("story_monitoring").total_executions == 1

    def test_unregister(self, engine):
        engine.register_behavior(FakeBehavior("story_monitoring"))
        assert engine.unregister_behavior("story_monitoring")
        assert not engine.unregister_behavior("story_monitoring")
        assert not engine.set_behavior_enabled("story_monitoring", False)


class TestBehaviorRegistry:
    """Construction of the built-in behaviors"""

    @pytest.fixture
    def registry(self, tracker, progress_config):
        engine = AutonomousBehaviorEngine(EngineConfig(story_point_threshold=8,
                                                       enabled_behaviors={"anomaly_detection": False}))
        settings = EngineSettings(behaviors={"periodic_reporting": {"report_types": ["blockers_report"]}})
        return BehaviorRegistry(engine, tracker, settings, ProgressEngine(progress_config))

    def test_register_all_respects_flags(self, registry):
        assert registry.register_all() == 5
        assert "anomaly_detection" not in registry.engine.behaviors

    def test_engine_thresholds_and_overrides(self, registry):
        registry.register_all()
        behaviors = registry.engine.behaviors

        assert behaviors["story_monitoring"].config.max_story_points == 8
        assert behaviors["art_health_monitoring"].config.min_readiness_score == 0.85
        assert behaviors["periodic_reporting"].config.report_types == [ReportType.BLOCKERS_REPORT]

    def test_enabling_registers_missing_behavior(self, registry):
        registry.register_all()

        assert registry.set_behavior_enabled("anomaly_detection", True)
        assert registry.engine.behaviors["anomaly_detection"].enabled
        assert not registry.set_behavior_enabled("unknown", True)

    def test_disabling_keeps_registration(self, registry):
        registry.register_all()
        registry.set_behavior_enabled("story_monitoring", False)

        assert not registry.engine.behaviors["story_monitoring"].enabled
        assert registry.engine.config.enabled_behaviors["story_monitoring"] is False

    def test_update_behavior_config_rebuilds(self, registry):
        registry.register_all()
        registry.set_behavior_enabled("story_monitoring", False)
        before = registry.engine.behaviors["story_monitoring"]

        updated = registry.update_behavior_config("story_monitoring", {"max_story_points": 13})

        assert updated is not before
        assert updated.config.max_story_points == 13
        assert not updated.enabled

    def test_update_behavior_config_errors(self, registry):
        with pytest.raises(KeyError):
            registry.update_behavior_config("unknown", {})
        with pytest.raises(TypeError):
            registry.update_behavior_config("story_monitoring", {"no_such_field": 1})


class TestHealthMonitor:
    """Per-behavior health checks"""

    def test_unseen_behavior_is_healthy(self):
        health = BehaviorHealthMonitor().get_behavior_health("story_monitoring")
        assert health.healthy
        assert health.total_executions == 0

    def test_repeated_failures(self):
        monitor = BehaviorHealthMonitor()
        monitor.record_execution("story_monitoring", True, 10)
        for _ in range(3):
            monitor.record_execution("story_monitoring", False, 10, "Linear unavailable")

        health = monitor.get_behavior_health("story_monitoring")

        assert not health.healthy
        assert health.success_rate == 0.25
        assert "Last execution failed" in health.issues
        assert 'Repeated error: "Linear unavailable" (3 times)' in health.issues
        assert monitor.get_health_status(["story_monitoring"])["unhealthy"] == ["story_monitoring"]

    def test_slow_execution(self):
        monitor = BehaviorHealthMonitor()
        monitor.record_execution("anomaly_detection", True, 6000)
        assert monitor.get_behavior_health("anomaly_detection").issues == ["Slow execution: 6000ms average"]

    def test_metrics_and_reset(self):
        monitor = BehaviorHealthMonitor()
        monitor.record_execution("a", True, 10)
        monitor.record_execution("b", False, 30, "x")

        metrics = monitor.get_metrics()
        assert metrics["total_executions"] == 2
        assert metrics["failed_executions"] == 1
        assert metrics["avg_execution_time"] == 20
        assert [r.behavior_id for r in monitor.get_recent_executions("a")] == ["a"]

        monitor.reset_behavior_stats("b")
        assert monitor.get_metrics()["by_behavior"] == {"a": 1}
        assert monitor.cleanup() == 0
