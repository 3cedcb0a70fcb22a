"""
Configuration management
"""
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


# ============================================
# CONFIGURATION DEFAULTS
# ============================================

class ConfigDefaults:
    """Default configuration values as constants"""

    # Environment
    ENVIRONMENT_DEFAULT = "development"

    # Linear defaults
    LINEAR_AGENT_MENTION = "saafepulse"

    # Slack defaults
    SLACK_BOT_NAME = "saafepulse"

    # Command parser defaults
    PARSER_MIN_CONFIDENCE = 0.8
    PARSER_WEIGHT_PATTERN_MATCH = 0.4
    PARSER_WEIGHT_KEYWORD_DENSITY = 0.3
    PARSER_WEIGHT_COMMAND_STRUCTURE = 0.2
    PARSER_WEIGHT_CONTEXT_RELEVANCE = 0.1

    # Behavior engine defaults
    ENGINE_STORY_POINT_THRESHOLD = 5
    ENGINE_ART_READINESS_THRESHOLD = 0.85
    ENGINE_MAX_PER_MINUTE = 10
    ENGINE_MAX_PER_HOUR = 100
    ENGINE_MAX_COMMENTS_PER_ISSUE = 5
    ENGINE_SCHEDULER_TICK_SECONDS = 60
    BEHAVIOR_IDS = (
        "story_monitoring",
        "art_health_monitoring",
        "dependency_detection",
        "workflow_automation",
        "periodic_reporting",
        "anomaly_detection",
    )

    # Command executor defaults
    EXECUTOR_TIMEOUT_SECONDS = 30.0

    # Logging defaults
    LOGGING_LEVEL_INFO = "INFO"

    # Server defaults
    SERVER_HOST_DEFAULT = "0.0.0.0"
    SERVER_PORT_DEFAULT = 8000

    # Config file defaults
    CONFIG_PATH_DEFAULT = "config/config.yaml"


# ============================================
# CONFIGURATION MODELS
# ============================================

class LinearConfig(BaseModel):
    """Linear workspace configuration"""
    api_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    agent_mention: str = ConfigDefaults.LINEAR_AGENT_MENTION


class SlackSettings(BaseModel):
    """Slack mention surface configuration"""
    enabled: bool = False
    app_token: Optional[str] = None
    bot_token: Optional[str] = None
    bot_name: str = ConfigDefaults.SLACK_BOT_NAME


class ParserSettings(BaseModel):
    """Command parser configuration"""
    min_confidence: float = ConfigDefaults.PARSER_MIN_CONFIDENCE
    pattern_match_weight: float = ConfigDefaults.PARSER_WEIGHT_PATTERN_MATCH
    keyword_density_weight: float = ConfigDefaults.PARSER_WEIGHT_KEYWORD_DENSITY
    command_structure_weight: float = ConfigDefaults.PARSER_WEIGHT_COMMAND_STRUCTURE
    context_relevance_weight: float = ConfigDefaults.PARSER_WEIGHT_CONTEXT_RELEVANCE
    debug: bool = False


def _default_enabled_behaviors() -> Dict[str, bool]:
    return {behavior_id: True for behavior_id in ConfigDefaults.BEHAVIOR_IDS}


class EngineSettings(BaseModel):
    """Autonomous behavior engine configuration"""
    story_point_threshold: int = ConfigDefaults.ENGINE_STORY_POINT_THRESHOLD
    art_readiness_threshold: float = ConfigDefaults.ENGINE_ART_READINESS_THRESHOLD
    enabled_behaviors: Dict[str, bool] = Field(default_factory=_default_enabled_behaviors)
    slack_notifications: bool = True
    email_notifications: bool = False
    max_per_minute: int = ConfigDefaults.ENGINE_MAX_PER_MINUTE
    max_per_hour: int = ConfigDefaults.ENGINE_MAX_PER_HOUR
    max_comments_per_issue: int = ConfigDefaults.ENGINE_MAX_COMMENTS_PER_ISSUE
    scheduler_enabled: bool = True
    scheduler_tick_seconds: int = ConfigDefaults.ENGINE_SCHEDULER_TICK_SECONDS
    # Per-behavior overrides, keyed by behavior id
    behaviors: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class ExecutorSettings(BaseModel):
    """Command executor configuration"""
    command_timeout_seconds: float = ConfigDefaults.EXECUTOR_TIMEOUT_SECONDS


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = ConfigDefaults.LOGGING_LEVEL_INFO
    file: Optional[str] = None


class ServerConfig(BaseModel):
    """Server configuration"""
    host: str = ConfigDefaults.SERVER_HOST_DEFAULT
    port: int = ConfigDefaults.SERVER_PORT_DEFAULT


class Config(BaseModel):
    """Main configuration"""
    environment: str = ConfigDefaults.ENVIRONMENT_DEFAULT
    linear: LinearConfig = LinearConfig()
    slack: SlackSettings = SlackSettings()
    parser: ParserSettings = ParserSettings()
    engine: EngineSettings = EngineSettings()
    executor: ExecutorSettings = ExecutorSettings()
    logging: LoggingConfig = LoggingConfig()
    server: ServerConfig = ServerConfig()
    # Overrides applied on top of the environment's progress tracker defaults
    progress: Dict[str, Any] = Field(default_factory=dict)


def get_environment() -> str:
    """Resolve the deployment environment name."""
    return (
        os.getenv("PULSE_ENV")
        or os.getenv("ENVIRONMENT")
        or ConfigDefaults.ENVIRONMENT_DEFAULT
    ).lower()


def load_config(config_path: str = ConfigDefaults.CONFIG_PATH_DEFAULT) -> Config:
    """
    Load configuration from YAML file and environment variables.

    A missing file is not an error: the defaults plus environment are used.
    """
    load_dotenv()

    config_dict: Dict[str, Any] = {}
    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

    config_dict = _replace_env_vars(config_dict)
    config_dict.setdefault("environment", get_environment())

    linear = config_dict.setdefault("linear", {})
    linear.setdefault("api_key", os.getenv("LINEAR_API_KEY"))
    linear.setdefault("webhook_secret", os.getenv("LINEAR_WEBHOOK_SECRET"))

    slack = config_dict.setdefault("slack", {})
    slack.setdefault("app_token", os.getenv("SLACK_APP_TOKEN"))
    slack.setdefault("bot_token", os.getenv("SLACK_BOT_TOKEN"))
    if os.getenv("SLACK_BOT_NAME"):
        slack.setdefault("bot_name", os.getenv("SLACK_BOT_NAME"))

    return Config(**config_dict)


def _replace_env_vars(obj: Any) -> Any:
    """
    Recursively replace ${VAR} placeholders with environment variables.
    """
    if isinstance(obj, dict):
        return {k: _replace_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_replace_env_vars(item) for item in obj]
    elif isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        var_name = obj[2:-1]
        env_value = os.getenv(var_name)
        if env_value:
            return env_value
        return None
    return obj
