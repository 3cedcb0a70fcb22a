"""
Slack Client Wrapper

Socket Mode connection for receiving mentions, WebClient for replies.
"""
from typing import Any, Callable, Dict, Optional

from slack_sdk import WebClient
from slack_sdk.socket_mode import SocketModeClient

from ...utils.config import SlackSettings
from ...utils.logger import setup_logger

logger = setup_logger(__name__)


class SlackClient:
    """
    Slack client wrapper for Socket Mode communication.
    """

    def __init__(self, settings: SlackSettings):
        if not settings.app_token:
            raise ValueError("SLACK_APP_TOKEN is required (set environment variable or config)")
        if not settings.bot_token:
            raise ValueError("SLACK_BOT_TOKEN is required (set environment variable or config)")

        self.settings = settings
        self.web_client = WebClient(token=settings.bot_token)
        self.socket_client = SocketModeClient(
            app_token=settings.app_token,
            web_client=self.web_client
        )
        logger.info("[SLACK] Slack client initialized (Socket Mode)")

    def start(self):
        """Connect the Socket Mode client (runs its own thread)."""
        logger.info("[SLACK] Starting Socket Mode client...")
        self.socket_client.connect()
        logger.info("[SLACK] Socket Mode client connected")

    def stop(self):
        logger.info("[SLACK] Stopping Socket Mode client...")
        self.socket_client.disconnect()

    def post_message(
        self,
        channel: str,
        text: str,
        thread_ts: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Post a message to a Slack channel or thread.

        Args:
            channel: Channel ID or DM ID
            text: Message text to post
            thread_ts: Optional thread timestamp to reply in thread

        Returns:
            API response dictionary
        """
        try:
            response = self.web_client.chat_postMessage(
                channel=channel,
                text=text,
                thread_ts=thread_ts
            )
            if response.get('ok'):
                logger.info(f"[SLACK] Posted message to channel {channel}")
            else:
                logger.error(f"[SLACK] Failed to post message: {response.get('error', 'Unknown error')}")
            return response
        except Exception as e:
            logger.error(f"[SLACK] Error posting message to Slack: {e}", exc_info=True)
            raise

    def register_event_handler(self, handler: Callable):
        """
        Register a Socket Mode request listener.

        Args:
            handler: Function taking (client, req)
        """
        self.socket_client.socket_mode_request_listeners.append(handler)
        logger.info("[SLACK] Registered Socket Mode listener")
