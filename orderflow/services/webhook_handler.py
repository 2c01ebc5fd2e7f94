"""Routing of verified payment webhooks to the fulfillment service.

Once a delivery's signature has been verified it is always acknowledged.
Fulfillment errors are logged here and never returned to the provider:
the client status poll and the reconciliation sweep retry the same work.
"""

import logging

from orderflow.errors import SignatureError
from orderflow.services.fulfillment_service import (
    OrderFulfillmentService,
    PaymentDetails,
)
from orderflow.services.payment_gateway import (
    PENDING_ORDER_METADATA_KEY,
    WebhookEvent,
    to_checkout_session,
    verify_webhook,
)
from orderflow.utils.redaction import redact_for_logging, sanitize_error_message

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"
PAYMENT_FAILED = "payment_intent.payment_failed"


class StripeWebhookHandler:
    """Verifies and dispatches Stripe webhook deliveries.

    Args:
        fulfillment: Service that performs the state transitions.
        webhook_secret: Signing secret. Empty means every delivery is
            rejected.
    """

    def __init__(self, fulfillment: OrderFulfillmentService, webhook_secret: str) -> None:
        self.fulfillment = fulfillment
        self.webhook_secret = webhook_secret.strip()

    def verify(self, payload: bytes, signature: str | None) -> WebhookEvent:
        """Verify a raw delivery.

        Raises:
            SignatureError: If the secret is unset or verification fails.
        """
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not configured, rejecting webhook")
            raise SignatureError("Webhook not configured")
        try:
            return verify_webhook(payload, signature, self.webhook_secret)
        except SignatureError as e:
            logger.error("Webhook signature verification failed: %s", e.message)
            raise

    def handle(self, payload: bytes, signature: str | None) -> dict:
        """Verify and process one delivery.

        Returns:
            ``{"received": True}`` for every verified delivery.

        Raises:
            SignatureError: If verification fails.
        """
        event = self.verify(payload, signature)
        self.handle_event(event)
        return {"received": True}

    def handle_event(self, event: WebhookEvent) -> None:
        """Dispatch a verified event. Never raises."""
        logger.info("Received Stripe event %s (%s)", event.type, event.id)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Event object: %s", redact_for_logging(dict(event.data_object)))

        if event.type == CHECKOUT_COMPLETED:
            self._handle_checkout_completed(event)
        elif event.type == CHECKOUT_EXPIRED:
            self._handle_checkout_expired(event)
        elif event.type == PAYMENT_FAILED:
            logger.warning(
                "Payment failed for intent %s", event.data_object.get("id")
            )
        else:
            logger.info("Unhandled event type: %s", event.type)

    def _pending_order_id(self, event: WebhookEvent) -> str | None:
        metadata = event.data_object.get("metadata") or {}
        return metadata.get(PENDING_ORDER_METADATA_KEY)

    def _handle_checkout_completed(self, event: WebhookEvent) -> None:
        pending_order_id = self._pending_order_id(event)
        if not pending_order_id:
            logger.error(
                "No %s in checkout session metadata (event %s)",
                PENDING_ORDER_METADATA_KEY, event.id,
            )
            return

        logger.info("Processing checkout completion for order %s", pending_order_id)
        try:
            session = to_checkout_session(event.data_object)
            outcome = self.fulfillment.fulfill_order(
                pending_order_id, PaymentDetails.from_session(session)
            )
            logger.info("Order %s: %s", pending_order_id, outcome.value)
        except Exception as e:
            logger.error(
                "Failed to fulfill order %s: %s",
                pending_order_id, sanitize_error_message(str(e)),
            )

    def _handle_checkout_expired(self, event: WebhookEvent) -> None:
        pending_order_id = self._pending_order_id(event)
        if not pending_order_id:
            return

        logger.info("Checkout expired for order %s", pending_order_id)
        try:
            self.fulfillment.expire_order(pending_order_id)
        except Exception as e:
            logger.error(
                "Failed to expire order %s: %s",
                pending_order_id, sanitize_error_message(str(e)),
            )
