"""Payment provider webhook endpoint.

The signature is verified against the raw request body, so the body is
read unparsed. Verified deliveries are always acknowledged with 200.
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from orderflow.api.deps import get_webhook_handler
from orderflow.api.schemas import WebhookAck
from orderflow.errors import SignatureError
from orderflow.services.webhook_handler import StripeWebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    handler: StripeWebhookHandler = Depends(get_webhook_handler),
) -> WebhookAck:
    """Receive a Stripe webhook.

    Raises:
        HTTPException: 400 if the webhook secret is unset or the signature
            does not verify.
    """
    payload = await request.body()
    try:
        event = handler.verify(payload, stripe_signature)
    except SignatureError as e:
        raise HTTPException(status_code=400, detail=e.message) from None

    # Fulfillment is blocking database work
    await run_in_threadpool(handler.handle_event, event)
    return WebhookAck(received=True)
