"""
Slack Event Handler

Routes @saafepulse mentions in Slack to the MentionHandler and replies in
the thread. A reply is always posted, falling back to a fixed sentence.
"""
import asyncio
import re
from typing import Optional

from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse

from .client import SlackClient
from ...agent.mention_handler import FALLBACK_REPLY, MentionHandler
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

EMPTY_QUERY_REPLY = "Hi! I'm here to help with ART planning. Try `@saafepulse help`."


class SlackEventHandler:
    """
    Handles Slack app_mention events.
    """

    def __init__(
        self,
        slack_client: SlackClient,
        mention_handler: MentionHandler,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ):
        """
        Args:
            slack_client: SlackClient instance
            mention_handler: Shared MentionHandler from the AgentContext
            loop: Event loop to run handlers on; Socket Mode calls back from its own thread
        """
        self.slack_client = slack_client
        self.mention_handler = mention_handler
        self.bot_name = slack_client.settings.bot_name
        self.loop = loop
        logger.info(f"[SLACK] Event handler initialized (bot_name={self.bot_name})")

    def __call__(self, client, req: SocketModeRequest):
        """Socket Mode listener entry point."""
        if req.type != "events_api":
            return
        event = req.payload.get('event', {})
        if event.get('type') == 'app_mention':
            self.handle_app_mention(req)

    def handle_app_mention(self, req: SocketModeRequest):
        """Acknowledge the event immediately, then answer it."""
        event = req.payload.get('event', {})
        channel_id = event.get('channel')
        thread_ts = event.get('thread_ts') or event.get('ts')

        req_ack = SocketModeResponse(envelope_id=req.envelope_id)
        self.slack_client.socket_client.send_socket_mode_response(req_ack)

        logger.info(f"[SLACK] Received app_mention from user {event.get('user')} in channel {channel_id}")
        coro = self.process_mention(event.get('text', ''), channel_id, thread_ts)

        if self.loop is not None and self.loop.is_running():
            asyncio.run_coroutine_threadsafe(coro, self.loop)
        else:
            asyncio.run(coro)

    async def process_mention(self, text: str, channel_id: str, thread_ts: Optional[str] = None) -> str:
        """
        Produce and post the reply for one mention.

        Returns:
            The text that was posted
        """
        query = self.extract_user_query(text)
        if not query:
            reply = EMPTY_QUERY_REPLY
        else:
            try:
                reply = await self.mention_handler.handle(query)
            except Exception as e:
                logger.error(f"[SLACK] Error processing query: {e}", exc_info=True)
                reply = FALLBACK_REPLY

        try:
            self.slack_client.post_message(channel_id, reply, thread_ts=thread_ts)
        except Exception as e:
            logger.error(f"[SLACK] Failed to post reply to {channel_id}: {e}", exc_info=True)
        return reply

    def extract_user_query(self, text: str) -> str:
        """Remove <@U123> user-id mentions and @bot_name from the message."""
        text = re.sub(r'<@[A-Z0-9]+>', '', text)
        text = re.sub(rf'@{re.escape(self.bot_name)}', '', text, flags=re.IGNORECASE)
        return text.strip()
