"""
Webhook Integration

Turns Linear webhook payloads into behavior triggers, answers agent
mentions left in comments, and offers scheduled/manual entry points.
"""
import hashlib
import hmac
import re
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from .engine import AutonomousBehaviorEngine
from .types import BehaviorAction, BehaviorContext, BehaviorResult, BehaviorTrigger, BehaviorTriggerType
from ..agent.intent.command_interpreter import IssueContext
from ..utils.config import ConfigDefaults
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

TRIGGERING_EVENTS = {
    ("Issue", "create"),
    ("Issue", "update"),
    ("Issue", "remove"),
    ("Comment", "create"),
    ("IssueLabel", "create"),
    ("IssueLabel", "remove"),
    ("Project", "update"),
    ("Cycle", "update"),
}

MENTION_REPLY_ID = "mention_reply"


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check Linear's `linear-signature` header: hex HMAC-SHA256 of the raw body."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def new_trigger_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class WebhookIntegration:
    """
    Usage:
        integration = WebhookIntegration(engine, linear_service, mention_handler)
        results = await integration.handle_webhook(payload)
    """

    def __init__(
        self,
        engine: AutonomousBehaviorEngine,
        tracker=None,
        mention_handler=None,
        agent_mention: str = ConfigDefaults.LINEAR_AGENT_MENTION,
        fetch_full_issue: bool = True
    ):
        self.engine = engine
        self.tracker = tracker
        self.mention_handler = mention_handler
        self.agent_mention = agent_mention
        self.fetch_full_issue = fetch_full_issue
        self._mention_pattern = re.compile(rf"@{re.escape(agent_mention)}\b", re.IGNORECASE)
        self._agent_user_id: Optional[str] = None
        self._agent_user_loaded = False

    async def handle_webhook(self, payload: Dict[str, Any]) -> List[BehaviorResult]:
        entity_type = payload.get("type")
        action = payload.get("action")
        if (entity_type, action) not in TRIGGERING_EVENTS:
            logger.debug(f"[WEBHOOK] Ignoring {entity_type}.{action}")
            return []

        logger.info(f"[WEBHOOK] Processing {entity_type}.{action}")
        context = await self.build_context(payload)
        results: List[BehaviorResult] = []

        if entity_type == "Comment" and action == "create":
            reply = await self._answer_mention(payload.get("data") or {}, context.issue)
            if reply is not None:
                results.append(reply)

        trigger = BehaviorTrigger(
            id=new_trigger_id("webhook"),
            type=BehaviorTriggerType.WEBHOOK,
            context=context,
            payload=payload,
        )
        results.extend(await self.engine.process_trigger(trigger))
        return results

    async def build_context(self, payload: Dict[str, Any]) -> BehaviorContext:
        entity_type = payload.get("type")
        action = payload.get("action")
        data = payload.get("data") or {}
        metadata: Dict[str, Any] = {"event": f"{entity_type}.{action}", "created_at": payload.get("createdAt")}

        issue = None
        team = None
        previous_state = None
        current_iteration = None

        if entity_type == "Issue":
            issue = data if action == "remove" else await self._load_issue(data.get("id"), data)
            if action == "update":
                previous_state = payload.get("updatedFrom") or {}
        elif entity_type in ("Comment", "IssueLabel"):
            embedded = data.get("issue") or {}
            issue_id = data.get("issueId") or embedded.get("id")
            if issue_id:
                issue = await self._load_issue(issue_id, embedded or None)
            metadata["comment" if entity_type == "Comment" else "label"] = data
        elif entity_type == "Project":
            metadata["project"] = data
            metadata["previous"] = payload.get("updatedFrom") or {}
        elif entity_type == "Cycle":
            current_iteration = data
            metadata["cycle"] = data
            metadata["previous"] = payload.get("updatedFrom") or {}

        if issue and issue.get("team"):
            team = issue["team"]
        elif data.get("teamId"):
            team = {"id": data["teamId"]}
        elif data.get("team"):
            team = data["team"]

        return BehaviorContext(
            trigger=BehaviorTriggerType.WEBHOOK,
            issue=issue,
            team=team,
            user=data.get("user") or payload.get("actor"),
            previous_state=previous_state,
            current_iteration=current_iteration,
            metadata=metadata,
        )

    async def _load_issue(
        self,
        issue_id: Optional[str],
        fallback: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """Fetch the full issue (children, relations, labels); webhook data is the fallback."""
        if not issue_id or not self.fetch_full_issue or self.tracker is None:
            return fallback
        try:
            issue = await self.tracker.get_issue(issue_id)
        except Exception as e:
            logger.warning(f"[WEBHOOK] Could not load issue {issue_id}, using webhook data: {e}")
            return fallback
        return issue or fallback

    # ------------------------------------------------------------------
    # Mentions in comments
    # ------------------------------------------------------------------

    def extract_mention(self, body: str) -> Optional[str]:
        """Text addressed to the agent, or None when the comment doesn't mention it."""
        if not body or not self._mention_pattern.search(body):
            return None
        return self._mention_pattern.sub(" ", body).strip()

    async def _is_own_comment(self, comment: Dict[str, Any]) -> bool:
        author_id = comment.get("userId") or (comment.get("user") or {}).get("id")
        if comment.get("botActor"):
            return True
        if not author_id or self.tracker is None:
            return False
        if not self._agent_user_loaded:
            self._agent_user_loaded = True
            try:
                self._agent_user_id = (await self.tracker.get_viewer()).get("id")
            except Exception as e:
                logger.warning(f"[WEBHOOK] Could not resolve the agent's own user: {e}")
        return author_id == self._agent_user_id

    async def _answer_mention(
        self,
        comment: Dict[str, Any],
        issue: Optional[Dict[str, Any]]
    ) -> Optional[BehaviorResult]:
        if self.mention_handler is None or self.tracker is None:
            return None
        query = self.extract_mention(comment.get("body") or "")
        if query is None:
            return None
        if await self._is_own_comment(comment):
            logger.debug("[WEBHOOK] Skipping the agent's own comment")
            return None

        issue_id = comment.get("issueId") or (issue or {}).get("id")
        if not issue_id:
            logger.warning("[WEBHOOK] Mention without an issue, nothing to reply to")
            return None

        start = time.monotonic()
        logger.info(f"[WEBHOOK] Mention on {issue_id}: {query[:100]}")
        reply = await self.mention_handler.handle(query, IssueContext.from_issue(issue))

        action, error = await self._post_reply(issue_id, reply)
        return BehaviorResult(
            success=error is None,
            actions=[action],
            error=error,
            execution_time=(time.monotonic() - start) * 1000,
            behavior_id=MENTION_REPLY_ID,
        )

    async def _post_reply(self, issue_id: str, reply: str) -> Tuple[BehaviorAction, Optional[str]]:
        try:
            await self.tracker.create_comment(issue_id, reply)
            return BehaviorAction("comment", issue_id, "Replied to mention"), None
        except Exception as e:
            logger.error(f"[WEBHOOK] Failed to post mention reply on {issue_id}: {e}", exc_info=True)
            return BehaviorAction("comment", issue_id, "Failed to reply to mention", "failed", {"error": str(e)}), str(e)

    # ------------------------------------------------------------------
    # Other entry points
    # ------------------------------------------------------------------

    async def trigger_scheduled_behaviors(
        self,
        team_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> List[BehaviorResult]:
        trigger = BehaviorTrigger(
            id=new_trigger_id("schedule"),
            type=BehaviorTriggerType.SCHEDULE,
            context=BehaviorContext(
                trigger=BehaviorTriggerType.SCHEDULE,
                team={"id": team_id} if team_id else None,
                metadata=dict(metadata or {}),
            ),
        )
        logger.info(f"[WEBHOOK] Triggering scheduled behaviors ({trigger.id})")
        return await self.engine.process_trigger(trigger)

    async def trigger_manual_behavior(
        self,
        behavior_id: str,
        issue: Optional[Dict[str, Any]] = None,
        team: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[BehaviorResult]:
        """Run one behavior on demand; None when it is unknown, disabled or rate limited."""
        trigger = BehaviorTrigger(
            id=new_trigger_id("manual"),
            type=BehaviorTriggerType.MANUAL,
            context=BehaviorContext(
                trigger=BehaviorTriggerType.MANUAL,
                issue=issue,
                team=team or (issue or {}).get("team"),
                metadata=dict(metadata or {}),
            ),
            payload={"behavior_id": behavior_id},
        )
        logger.info(f"[WEBHOOK] Manual trigger of {behavior_id} ({trigger.id})")
        results = await self.engine.process_trigger(trigger, behavior_ids=[behavior_id])
        return results[0] if results else None
