"""
Slack Integration Configuration

Validation of the SlackSettings section loaded by utils.config.
"""
from ...utils.config import SlackSettings
from ...utils.logger import setup_logger

logger = setup_logger(__name__)


def validate_slack_settings(settings: SlackSettings) -> bool:
    """
    Validate that the Slack mention surface can start.

    Returns:
        True if configuration is valid, False otherwise
    """
    if not settings.enabled:
        logger.info("[SLACK] Slack integration disabled")
        return False

    missing = []
    if not settings.app_token:
        missing.append('SLACK_APP_TOKEN')
    if not settings.bot_token:
        missing.append('SLACK_BOT_TOKEN')

    if missing:
        logger.error(f"[SLACK] Missing required Slack configuration: {', '.join(missing)}")
        return False

    if not settings.app_token.startswith('xapp-'):
        logger.warning(f"[SLACK] SLACK_APP_TOKEN should start with 'xapp-' (got: {settings.app_token[:10]}...)")

    # Regular bot tokens (xoxb-*) and token rotation tokens (xoxe.xoxp-*)
    if not settings.bot_token.startswith(('xoxb-', 'xoxe.xoxp-')):
        logger.warning(
            f"[SLACK] SLACK_BOT_TOKEN should start with 'xoxb-' or 'xoxe.xoxp-' (got: {settings.bot_token[:10]}...)"
        )

    logger.info("[SLACK] Slack configuration validated successfully")
    return True
