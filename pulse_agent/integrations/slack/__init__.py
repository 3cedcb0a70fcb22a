"""
Slack integration: Socket Mode mention surface.
"""
from .client import SlackClient
from .config import validate_slack_settings
from .event_handler import FALLBACK_REPLY, SlackEventHandler

__all__ = [
    'FALLBACK_REPLY',
    'SlackClient',
    'SlackEventHandler',
    'validate_slack_settings',
]
