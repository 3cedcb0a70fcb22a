"""
Autonomous behavior system: engine, built-in behaviors, scheduling and
webhook entry points.
"""
from .engine import AutonomousBehaviorEngine, EngineConfig
from .health_monitor import BehaviorHealthMonitor
from .registry import BehaviorRegistry
from .scheduler import BehaviorSchedule, BehaviorScheduler, CronExpression
from .types import (
    AutonomousBehavior,
    BehaviorAction,
    BehaviorContext,
    BehaviorNotification,
    BehaviorResult,
    BehaviorTrigger,
    BehaviorTriggerType,
)
from .webhooks import WebhookIntegration, verify_signature

__all__ = [
    'AutonomousBehavior',
    'AutonomousBehaviorEngine',
    'BehaviorAction',
    'BehaviorContext',
    'BehaviorHealthMonitor',
    'BehaviorNotification',
    'BehaviorRegistry',
    'BehaviorResult',
    'BehaviorSchedule',
    'BehaviorScheduler',
    'BehaviorTrigger',
    'BehaviorTriggerType',
    'CronExpression',
    'EngineConfig',
    'WebhookIntegration',
    'verify_signature',
]
