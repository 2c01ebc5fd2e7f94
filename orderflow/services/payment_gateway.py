"""Payment gateway adapter over the Stripe SDK.

Three operations: create a hosted checkout session, retrieve one, and
verify+parse an inbound webhook. Results are normalized into plain
dataclasses so the fulfillment logic never touches SDK objects. There is
no business logic in this module.

The API key is passed on every call rather than assigned to the ``stripe``
module global, so several configurations can coexist in one process.

Example:
    gateway = StripeGateway(config.stripe)
    session = gateway.create_checkout_session(
        pending_order_id=order.id, amount=15000, currency="usd", ...
    )
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import stripe

from orderflow.config import StripeConfig
from orderflow.errors import ConfigurationError, SignatureError, ValidationError

logger = logging.getLogger(__name__)

PENDING_ORDER_METADATA_KEY = "pendingOrderId"


@dataclass(frozen=True)
class CheckoutSession:
    """Provider-owned checkout session, as far as this service cares."""

    id: str
    url: str | None = None
    status: str | None = None
    payment_status: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    payment_intent: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def pending_order_id(self) -> str | None:
        return self.metadata.get(PENDING_ORDER_METADATA_KEY)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def is_expired(self) -> bool:
        return self.status == "expired"


@dataclass(frozen=True)
class WebhookEvent:
    """A verified webhook delivery."""

    id: str
    type: str
    data_object: Mapping[str, Any]


class PaymentGateway(Protocol):
    """Checkout operations the order services depend on."""

    def create_checkout_session(
        self,
        pending_order_id: str,
        amount: int,
        currency: str,
        customer_email: str | None,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        ...

    def get_checkout_session(self, session_id: str) -> CheckoutSession:
        ...


def to_plain(value: Any) -> Any:
    """Convert SDK objects into plain dicts and lists, recursively.

    ``StripeObject`` is not a ``dict`` in current SDK releases, so nothing
    past this adapter may call mapping methods on it. Plain dicts and lists
    pass through with their nested SDK objects converted.
    """
    if isinstance(value, stripe.StripeObject):
        value = value.to_dict()
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_plain(item) for item in value]
    return value


def _payment_intent_id(value: Any) -> str | None:
    """payment_intent is an id string, or an object when expanded."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return value.get("id")
    return None


def to_checkout_session(obj: Any) -> CheckoutSession:
    """Normalize a Stripe checkout session (SDK object or dict) to a dataclass."""
    obj = to_plain(obj)
    metadata = obj.get("metadata") or {}
    return CheckoutSession(
        id=obj["id"],
        url=obj.get("url"),
        status=obj.get("status"),
        payment_status=obj.get("payment_status"),
        amount_total=obj.get("amount_total"),
        currency=obj.get("currency"),
        payment_intent=_payment_intent_id(obj.get("payment_intent")),
        metadata={str(k): str(v) for k, v in dict(metadata).items()},
    )


def verify_webhook(payload: bytes, signature: str | None, secret: str) -> WebhookEvent:
    """Verify a webhook signature and parse the event.

    Args:
        payload: Raw, unparsed request body.
        signature: Value of the ``stripe-signature`` header.
        secret: Webhook signing secret.

    Returns:
        The verified WebhookEvent.

    Raises:
        SignatureError: If the secret is unset, the signature is missing or
            does not match, or the payload is not a valid event.
    """
    if not secret:
        raise SignatureError("Webhook secret not configured")
    if not signature:
        raise SignatureError("Missing stripe-signature header")

    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise SignatureError("Webhook signature verification failed") from e
    except ValueError as e:
        raise SignatureError("Webhook payload could not be parsed") from e

    body = to_plain(event)
    data = body.get("data") or {}
    return WebhookEvent(
        id=str(body.get("id", "")),
        type=str(body.get("type", "")),
        data_object=data.get("object") or {},
    )


class StripeGateway:
    """PaymentGateway backed by Stripe hosted checkout.

    Raises:
        ConfigurationError: On construction when no secret key is set.
    """

    def __init__(self, config: StripeConfig) -> None:
        if not config.payments_enabled:
            raise ConfigurationError("Payment processing is not configured")
        self._api_key = config.secret_key.strip()
        self._product_name = config.product_name

    def create_checkout_session(
        self,
        pending_order_id: str,
        amount: int,
        currency: str,
        customer_email: str | None,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        """Create a one-line-item hosted checkout session.

        Args:
            pending_order_id: Correlation key written to session metadata.
            amount: Total in minor currency units.
            currency: ISO currency code.
            customer_email: Prefilled payer email, if known.
            description: Human-readable line item description.
            success_url: Redirect after payment; may contain
                ``{CHECKOUT_SESSION_ID}``.
            cancel_url: Redirect when the payer abandons checkout.
            metadata: Extra metadata merged under the pending order id.

        Raises:
            ValidationError: If ``pending_order_id`` is empty.
            stripe.StripeError: On provider failure.
        """
        if not pending_order_id:
            raise ValidationError("pending_order_id is required for checkout")

        session_metadata = dict(metadata or {})
        session_metadata[PENDING_ORDER_METADATA_KEY] = pending_order_id

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": self._product_name,
                            "description": description,
                        },
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": session_metadata,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                idempotency_key=f"checkout_{pending_order_id}",
                **params,
            )
        except stripe.StripeError as e:
            logger.error(
                "Checkout session creation failed for pending order %s: %s",
                pending_order_id, type(e).__name__,
            )
            raise

        result = to_checkout_session(session)
        logger.info(
            "Created checkout session %s for pending order %s",
            result.id, pending_order_id,
        )
        return result

    def get_checkout_session(self, session_id: str) -> CheckoutSession:
        """Retrieve a checkout session's live state.

        Raises:
            stripe.StripeError: On provider failure.
        """
        session = stripe.checkout.Session.retrieve(session_id, api_key=self._api_key)
        return to_checkout_session(session)
