"""Exactly-once fulfillment of paid pending orders.

A pending order moves PENDING_PAYMENT -> FULFILLED or PENDING_PAYMENT ->
EXPIRED and never leaves either terminal state. Two independent callers
race to fulfill the same order: the payment webhook and the client polling
order status. The transition is therefore a conditional update
(``... WHERE status = 'PENDING_PAYMENT'``) whose affected-row count
decides the winner, and the project insert shares its transaction. The
loser sees zero rows, rolls back, and reports the order as already
processed. ``projects.pending_order_id`` is unique as a second guard.

Every operation here is safe to call any number of times.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from orderflow.db.models import (
    PendingOrder,
    PendingOrderStatus,
    Project,
    ProjectStatus,
    generate_uuid,
    utc_now,
    utc_now_iso,
)
from orderflow.errors import NotFoundError
from orderflow.services.address_resolver import ResolvedAddress
from orderflow.services.order_payload import decode_order_payload
from orderflow.services.orders_service import build_project
from orderflow.services.payment_gateway import CheckoutSession, PaymentGateway
from orderflow.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


# Valid state transitions for pending orders
VALID_TRANSITIONS: dict[PendingOrderStatus, list[PendingOrderStatus]] = {
    PendingOrderStatus.pending_payment: [
        PendingOrderStatus.fulfilled,
        PendingOrderStatus.expired,
    ],
    PendingOrderStatus.fulfilled: [],  # terminal
    PendingOrderStatus.expired: [],  # terminal
}


def can_transition(current: str, target: PendingOrderStatus) -> bool:
    """Whether ``current`` may move to ``target``."""
    return target in VALID_TRANSITIONS.get(PendingOrderStatus(current), [])


class FulfillmentOutcome(str, Enum):
    """Result of a fulfill attempt. Both values are success."""

    fulfilled = "fulfilled"
    already_processed = "already_processed"


@dataclass(frozen=True)
class PaymentDetails:
    """What the gateway reported about a completed payment."""

    session_id: str
    payment_intent_id: str | None
    amount_paid: int = 0
    currency: str = "usd"

    @classmethod
    def from_session(cls, session: CheckoutSession) -> "PaymentDetails":
        return cls(
            session_id=session.id,
            payment_intent_id=session.payment_intent,
            amount_paid=session.amount_total or 0,
            currency=session.currency or "usd",
        )


@dataclass(frozen=True)
class OrderStatusResult:
    """Client-facing view of a pending order.

    ``degraded`` is True when the live gateway check could not be made, in
    which case ``status`` is the last stored value and may be stale.
    """

    status: str
    project_id: str | None
    project: dict[str, Any] | None
    degraded: bool = False


@dataclass
class ReconcileSummary:
    """Counts from one reconciliation sweep."""

    checked: int = 0
    fulfilled: int = 0
    expired: int = 0
    errors: int = 0


class OrderFulfillmentService:
    """Drives pending orders to their terminal state.

    Args:
        db: SQLAlchemy session. Every public method ends its own transaction.
        gateway: Payment gateway for live session checks. Optional; without
            it status checks report ``degraded``.
    """

    def __init__(self, db: Session, gateway: PaymentGateway | None = None) -> None:
        self.db = db
        self.gateway = gateway

    def _transition(
        self,
        pending_order_id: str,
        target: PendingOrderStatus,
        **values: Any,
    ) -> bool:
        """Conditionally move a PENDING_PAYMENT order to ``target``.

        Returns:
            True if this call performed the transition, False if the order
            had already left PENDING_PAYMENT.
        """
        stmt = (
            update(PendingOrder)
            .where(
                PendingOrder.id == pending_order_id,
                PendingOrder.status == PendingOrderStatus.pending_payment.value,
            )
            .values(status=target.value, updated_at=utc_now_iso(), **values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def fulfill_order(
        self, pending_order_id: str, payment: PaymentDetails
    ) -> FulfillmentOutcome:
        """Create the project for a paid pending order, exactly once.

        Args:
            pending_order_id: Order to fulfill.
            payment: Payment details from the gateway.

        Returns:
            ``fulfilled`` if this call created the project, otherwise
            ``already_processed``.

        Raises:
            NotFoundError: If the pending order does not exist.
            OrderPayloadError: If the stored payload cannot be decoded.
        """
        try:
            order = self.db.get(PendingOrder, pending_order_id, populate_existing=True)
            if order is None:
                raise NotFoundError("PendingOrder", pending_order_id)
            if not can_transition(order.status, PendingOrderStatus.fulfilled):
                logger.info(
                    "Pending order %s already processed: %s", pending_order_id, order.status
                )
                self.db.rollback()
                return FulfillmentOutcome.already_processed

            payload = decode_order_payload(order.order_payload)
            intent = payload.intent
            project_id = generate_uuid()
            now_iso = utc_now_iso()

            claimed = self._transition(
                pending_order_id,
                PendingOrderStatus.fulfilled,
                project_id=project_id,
                payment_intent_id=payment.payment_intent_id,
                completed_at=now_iso,
            )
            if not claimed:
                logger.info(
                    "Pending order %s fulfilled concurrently, nothing to do",
                    pending_order_id,
                )
                self.db.rollback()
                return FulfillmentOutcome.already_processed

            address = ResolvedAddress(
                address_line1=intent.address_line1,
                address_line2=intent.address_line2,
                city=intent.city,
                region=intent.region,
                postal_code=intent.postal_code,
                country_code=intent.country_code,
                lat=intent.lat,
                lng=intent.lng,
            )
            project = build_project(
                org_id=order.provider_org_id,
                customer_id=payload.customer_id,
                intent=intent,
                address=address,
                status=ProjectStatus.booked.value,
            )
            project.id = project_id
            project.pending_order_id = pending_order_id
            project.payment_amount_cents = payment.amount_paid
            project.payment_currency = payment.currency
            project.payment_intent_id = payment.payment_intent_id
            project.paid_at = now_iso
            self.db.add(project)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Fulfilled pending order %s as project %s", pending_order_id, project_id
        )
        return FulfillmentOutcome.fulfilled

    def expire_order(self, pending_order_id: str) -> bool:
        """Expire an unpaid pending order.

        No-op for unknown orders and for orders already FULFILLED or EXPIRED.

        Returns:
            True if this call expired the order.
        """
        try:
            order = self.db.get(PendingOrder, pending_order_id, populate_existing=True)
            if order is None or not can_transition(
                order.status, PendingOrderStatus.expired
            ):
                self.db.rollback()
                return False
            expired = self._transition(pending_order_id, PendingOrderStatus.expired)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if expired:
            logger.info("Expired pending order %s", pending_order_id)
        return expired

    def _apply_session(self, pending_order_id: str, session: CheckoutSession) -> None:
        """Act on a live checkout session: fulfill if paid, expire if expired."""
        if session.is_paid:
            logger.info(
                "Fallback fulfillment triggered for session %s", session.id
            )
            self.fulfill_order(pending_order_id, PaymentDetails.from_session(session))
        elif session.is_expired:
            self.expire_order(pending_order_id)

    def get_order_status(self, session_id: str) -> OrderStatusResult:
        """Status of the pending order behind a checkout session.

        While the order is still PENDING_PAYMENT the gateway is asked for
        the live session and the order is fulfilled or expired on the spot.
        A failed live check is logged and reported through ``degraded``;
        the stored status is still returned.

        Raises:
            NotFoundError: If no pending order has this session id.
        """
        order = self.db.scalars(
            select(PendingOrder).where(PendingOrder.stripe_session_id == session_id)
        ).first()
        if order is None:
            self.db.rollback()
            raise NotFoundError("Order", session_id)
        pending_order_id = order.id
        status = order.status
        # No transaction stays open across the gateway round trip
        self.db.rollback()

        degraded = False
        if status == PendingOrderStatus.pending_payment.value:
            if self.gateway is None:
                logger.warning(
                    "Cannot check session %s: payment gateway not configured", session_id
                )
                degraded = True
            else:
                try:
                    session = self.gateway.get_checkout_session(session_id)
                    self._apply_session(pending_order_id, session)
                except Exception as e:
                    logger.warning(
                        "Failed to check checkout session %s: %s",
                        session_id, sanitize_error_message(str(e)),
                    )
                    degraded = True

        return self._status_result(pending_order_id, degraded)

    def _status_result(self, pending_order_id: str, degraded: bool) -> OrderStatusResult:
        order = self.db.get(PendingOrder, pending_order_id, populate_existing=True)
        project_summary = None
        if order.project_id:
            project = self.db.get(Project, order.project_id)
            if project is not None:
                project_summary = {
                    "id": project.id,
                    "address_line1": project.address_line1,
                    "city": project.city,
                    "status": project.status,
                }
        result = OrderStatusResult(
            status=order.status,
            project_id=order.project_id,
            project=project_summary,
            degraded=degraded,
        )
        self.db.rollback()
        return result

    def reconcile_pending_orders(
        self, now: datetime | None = None, limit: int = 100
    ) -> ReconcileSummary:
        """Sweep PENDING_PAYMENT orders past their expiry.

        Each order's session is checked with the gateway: paid orders are
        fulfilled, the rest are expired. Orders whose session cannot be
        checked are left alone and counted as errors.

        Args:
            now: Reference time (naive UTC). Defaults to the current time.
            limit: Maximum number of orders to examine.
        """
        cutoff = now or utc_now()
        rows = self.db.execute(
            select(PendingOrder.id, PendingOrder.stripe_session_id)
            .where(
                PendingOrder.status == PendingOrderStatus.pending_payment.value,
                PendingOrder.expires_at <= cutoff,
            )
            .order_by(PendingOrder.expires_at)
            .limit(limit)
        ).all()
        self.db.rollback()

        summary = ReconcileSummary()
        for pending_order_id, session_id in rows:
            summary.checked += 1
            try:
                if session_id:
                    if self.gateway is None:
                        logger.warning(
                            "Skipping pending order %s: payment gateway not configured",
                            pending_order_id,
                        )
                        summary.errors += 1
                        continue
                    session = self.gateway.get_checkout_session(session_id)
                    if session.is_paid:
                        outcome = self.fulfill_order(
                            pending_order_id, PaymentDetails.from_session(session)
                        )
                        if outcome == FulfillmentOutcome.fulfilled:
                            summary.fulfilled += 1
                        continue
                if self.expire_order(pending_order_id):
                    summary.expired += 1
            except Exception as e:
                logger.error(
                    "Reconciliation failed for pending order %s: %s",
                    pending_order_id, sanitize_error_message(str(e)),
                )
                summary.errors += 1

        logger.info(
            "Reconciled %d pending order(s): %d fulfilled, %d expired, %d errors",
            summary.checked, summary.fulfilled, summary.expired, summary.errors,
        )
        return summary
