"""Tests for Stripe webhook verification and dispatch."""

import logging
from unittest.mock import MagicMock, patch

import pytest
import stripe

from orderflow.errors import SignatureError
from orderflow.services.fulfillment_service import FulfillmentOutcome, PaymentDetails
from orderflow.services.payment_gateway import WebhookEvent
from orderflow.services.webhook_handler import (
    CHECKOUT_COMPLETED,
    CHECKOUT_EXPIRED,
    PAYMENT_FAILED,
    StripeWebhookHandler,
)


@pytest.fixture
def fulfillment() -> MagicMock:
    mock = MagicMock()
    mock.fulfill_order.return_value = FulfillmentOutcome.fulfilled
    return mock


@pytest.fixture
def handler(fulfillment) -> StripeWebhookHandler:
    return StripeWebhookHandler(fulfillment, "whsec_test")


def _session_event(event_type: str, metadata: dict | None = None) -> WebhookEvent:
    return WebhookEvent(
        id="evt_1",
        type=event_type,
        data_object={
            "id": "cs_test_1",
            "object": "checkout.session",
            "status": "complete",
            "payment_status": "paid",
            "amount_total": 20000,
            "currency": "usd",
            "payment_intent": "pi_123",
            "metadata": metadata if metadata is not None else {"pendingOrderId": "po-1"},
        },
    )


class TestVerify:
    """Tests for StripeWebhookHandler.verify."""

    def test_rejects_when_secret_unset(self, fulfillment):
        handler = StripeWebhookHandler(fulfillment, "  ")
        with pytest.raises(SignatureError, match="not configured"):
            handler.verify(b"{}", "t=1,v1=abc")

    def test_rejects_missing_signature(self, handler):
        with pytest.raises(SignatureError):
            handler.verify(b"{}", None)

    def test_rejects_bad_signature(self, handler):
        with patch(
            "orderflow.services.payment_gateway.stripe.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("bad", "t=1,v1=abc"),
        ):
            with pytest.raises(SignatureError):
                handler.verify(b"{}", "t=1,v1=abc")

    def test_parses_verified_event(self, handler):
        event = {
            "id": "evt_9",
            "type": CHECKOUT_COMPLETED,
            "data": {"object": {"id": "cs_9"}},
        }
        with patch(
            "orderflow.services.payment_gateway.stripe.Webhook.construct_event",
            return_value=event,
        ) as construct:
            parsed = handler.verify(b"raw-body", "t=1,v1=abc")

        construct.assert_called_once_with(b"raw-body", "t=1,v1=abc", "whsec_test")
        assert parsed.id == "evt_9"
        assert parsed.data_object["id"] == "cs_9"


class TestHandleEvent:
    """Tests for StripeWebhookHandler.handle_event routing."""

    def test_checkout_completed_fulfills(self, handler, fulfillment):
        handler.handle_event(_session_event(CHECKOUT_COMPLETED))

        fulfillment.fulfill_order.assert_called_once_with(
            "po-1",
            PaymentDetails(
                session_id="cs_test_1",
                payment_intent_id="pi_123",
                amount_paid=20000,
                currency="usd",
            ),
        )

    def test_missing_metadata_is_dropped(self, handler, fulfillment):
        handler.handle_event(_session_event(CHECKOUT_COMPLETED, metadata={}))
        fulfillment.fulfill_order.assert_not_called()

    def test_fulfillment_error_is_swallowed(self, handler, fulfillment):
        fulfillment.fulfill_order.side_effect = RuntimeError("database is locked")

        handler.handle_event(_session_event(CHECKOUT_COMPLETED))

        fulfillment.fulfill_order.assert_called_once()

    def test_checkout_expired_expires(self, handler, fulfillment):
        handler.handle_event(_session_event(CHECKOUT_EXPIRED))
        fulfillment.expire_order.assert_called_once_with("po-1")

    def test_payment_failed_only_logs(self, handler, fulfillment):
        handler.handle_event(
            WebhookEvent(id="evt_2", type=PAYMENT_FAILED, data_object={"id": "pi_1"})
        )
        fulfillment.fulfill_order.assert_not_called()
        fulfillment.expire_order.assert_not_called()

    def test_unknown_event_is_ignored(self, handler, fulfillment):
        handler.handle_event(
            WebhookEvent(id="evt_3", type="customer.created", data_object={})
        )
        assert fulfillment.method_calls == []

    def test_debug_log_redacts_customer_email(self, handler, caplog):
        event = WebhookEvent(
            id="evt_4",
            type="customer.created",
            data_object={"id": "cus_1", "customer_email": "agent@realty.test"},
        )
        with caplog.at_level(logging.DEBUG, logger="orderflow.services.webhook_handler"):
            handler.handle_event(event)

        assert "a***@realty.test" in caplog.text
        assert "agent@realty.test" not in caplog.text


def test_handle_acknowledges_verified_delivery(handler, fulfillment):
    event = {
        "id": "evt_1",
        "type": CHECKOUT_COMPLETED,
        "data": {"object": _session_event(CHECKOUT_COMPLETED).data_object},
    }
    fulfillment.fulfill_order.side_effect = RuntimeError("boom")
    with patch(
        "orderflow.services.payment_gateway.stripe.Webhook.construct_event",
        return_value=event,
    ):
        assert handler.handle(b"{}", "t=1,v1=abc") == {"received": True}
