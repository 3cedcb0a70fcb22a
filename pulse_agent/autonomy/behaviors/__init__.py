"""
Built-in autonomous behaviors.
"""
from .anomaly_detection import AnomalyDetectionBehavior, AnomalyDetectionConfig
from .art_health import ARTHealthConfig, ARTHealthMonitoringBehavior
from .dependency_detection import DependencyDetectionBehavior, DependencyDetectionConfig
from .periodic_reporting import PeriodicReportingBehavior, PeriodicReportingConfig, ReportType
from .story_monitoring import StoryMonitoringBehavior, StoryMonitoringConfig
from .workflow_automation import WorkflowAutomationBehavior, WorkflowAutomationConfig

__all__ = [
    'ARTHealthConfig',
    'ARTHealthMonitoringBehavior',
    'AnomalyDetectionBehavior',
    'AnomalyDetectionConfig',
    'DependencyDetectionBehavior',
    'DependencyDetectionConfig',
    'PeriodicReportingBehavior',
    'PeriodicReportingConfig',
    'ReportType',
    'StoryMonitoringBehavior',
    'StoryMonitoringConfig',
    'WorkflowAutomationBehavior',
    'WorkflowAutomationConfig',
]
