"""
Linear Webhook Endpoint

Verifies Linear's signature, then hands the payload to the webhook
integration and returns the behavior results.
"""
import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from pulse_agent.agent.context import AgentContext
from pulse_agent.autonomy.webhooks import verify_signature
from pulse_agent.utils.logger import setup_logger
from ..dependencies import get_agent_context

logger = setup_logger(__name__)
router = APIRouter(prefix="/integrations/linear", tags=["Linear Webhooks"])

SIGNATURE_HEADER = "linear-signature"


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def handle_linear_webhook(
    request: Request,
    context: AgentContext = Depends(get_agent_context)
) -> Dict[str, Any]:
    body = await request.body()

    secret = context.config.linear.webhook_secret
    if secret:
        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            logger.warning("[WEBHOOK] Rejected webhook without signature")
            raise HTTPException(status_code=401, detail="Missing webhook signature")
        if not verify_signature(body, signature, secret):
            logger.warning("[WEBHOOK] Rejected webhook with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")

    results = await context.webhooks.handle_webhook(payload)
    logger.info(
        f"[WEBHOOK] {payload.get('type')}.{payload.get('action')} produced {len(results)} results"
    )
    return {"success": True, "results": [result.to_dict() for result in results]}
