"""API routes for order intake and checkout status.

Endpoints:
    POST /orders/create                          create an order (or checkout)
    POST /orders/checkout                        open checkout for an agent order
    GET  /orders/status/{session_id}             status after checkout
    GET  /orders/providers/{org_id}/payment-mode provider payment mode
"""

import logging

from fastapi import APIRouter, Depends

from orderflow.api.deps import (
    get_current_user,
    get_fulfillment_service,
    get_org_context,
    get_orders_service,
    to_http_exception,
)
from orderflow.api.schemas import (
    CalendarEventResponse,
    CheckoutResponse,
    CustomerResponse,
    OrderCreatedResponse,
    OrderStatusResponse,
    PaymentModeResponse,
    PaymentRequiredResponse,
    ProjectResponse,
    ProjectSummary,
)
from orderflow.errors import DomainError
from orderflow.services.authorization import AuthenticatedUser, OrgContext
from orderflow.services.fulfillment_service import OrderFulfillmentService
from orderflow.services.order_payload import OrderIntent
from orderflow.services.orders_service import CheckoutResult, OrdersService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "/create",
    response_model=OrderCreatedResponse | PaymentRequiredResponse,
    status_code=201,
)
def create_order(
    intent: OrderIntent,
    ctx: OrgContext = Depends(get_org_context),
    user: AuthenticatedUser = Depends(get_current_user),
    service: OrdersService = Depends(get_orders_service),
) -> OrderCreatedResponse | PaymentRequiredResponse:
    """Create an order.

    Returns the created project, or a redirect to hosted checkout when the
    provider requires upfront payment.

    Raises:
        HTTPException: 400 on invalid input, 403 when not permitted,
            404 for unknown references, 409 on a scheduling conflict,
            503 when payments are required but not configured.
    """
    try:
        result = service.create_order(ctx, user, intent)
    except DomainError as e:
        raise to_http_exception(e) from None

    if isinstance(result, CheckoutResult):
        return PaymentRequiredResponse(
            checkout_url=result.checkout_url, session_id=result.session_id
        )
    return OrderCreatedResponse(
        project=ProjectResponse.model_validate(result.project),
        customer=(
            CustomerResponse.model_validate(result.customer)
            if result.customer is not None else None
        ),
        calendar_event=(
            CalendarEventResponse.model_validate(result.calendar_event)
            if result.calendar_event is not None else None
        ),
        is_new_customer=result.is_new_customer,
    )


@router.post("/checkout", response_model=CheckoutResponse, status_code=201)
def create_checkout(
    intent: OrderIntent,
    user: AuthenticatedUser = Depends(get_current_user),
    service: OrdersService = Depends(get_orders_service),
) -> CheckoutResponse:
    """Open hosted checkout for an agent order with a package."""
    try:
        result = service.create_checkout_session(None, user, intent)
    except DomainError as e:
        raise to_http_exception(e) from None
    return CheckoutResponse(checkout_url=result.checkout_url, session_id=result.session_id)


@router.get("/status/{session_id}", response_model=OrderStatusResponse)
def get_order_status(
    session_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: OrderFulfillmentService = Depends(get_fulfillment_service),
) -> OrderStatusResponse:
    """Status of the order behind a checkout session.

    Polling this endpoint also completes orders whose payment webhook is
    late or lost.
    """
    try:
        result = service.get_order_status(session_id)
    except DomainError as e:
        raise to_http_exception(e) from None
    return OrderStatusResponse(
        status=result.status,
        project_id=result.project_id,
        project=ProjectSummary(**result.project) if result.project else None,
        degraded=result.degraded,
    )


@router.get("/providers/{org_id}/payment-mode", response_model=PaymentModeResponse)
def get_provider_payment_mode(
    org_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: OrdersService = Depends(get_orders_service),
) -> PaymentModeResponse:
    """Payment mode a provider uses for agent orders."""
    try:
        mode = service.get_provider_payment_mode(org_id)
    except DomainError as e:
        raise to_http_exception(e) from None
    return PaymentModeResponse(payment_mode=mode)
