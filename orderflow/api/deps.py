"""FastAPI dependency providers.

Configuration is read from ``app.state.config``, populated once by the
application lifespan. Tests override these providers through
``app.dependency_overrides``.
"""

import logging

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from orderflow.config import AppConfig
from orderflow.db.connection import get_db
from orderflow.errors import ConflictError, DomainError
from orderflow.services.address_resolver import AddressResolver
from orderflow.services.authorization import (
    AuthenticatedUser,
    OrgContext,
    load_org_context,
    load_user,
)
from orderflow.services.calendar_sync import CalendarSyncService
from orderflow.services.fulfillment_service import OrderFulfillmentService
from orderflow.services.orders_service import OrdersService
from orderflow.services.payment_gateway import PaymentGateway, StripeGateway
from orderflow.services.webhook_handler import StripeWebhookHandler

logger = logging.getLogger(__name__)


def to_http_exception(exc: DomainError) -> HTTPException:
    """Translate a domain error into the HTTPException a route raises."""
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=exc.status_code,
            detail={"message": exc.message, "conflicts": exc.conflicts},
        )
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def get_config(request: Request) -> AppConfig:
    """Return the config loaded at startup."""
    return request.app.state.config


def get_current_user(
    x_user_id: str | None = Header(None),
    db: Session = Depends(get_db),
) -> AuthenticatedUser:
    """Resolve the caller from the upstream-authenticated user id header.

    Raises:
        HTTPException: 401 if the header is missing or the user is unknown.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    user = load_user(db, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def get_org_context(
    user: AuthenticatedUser = Depends(get_current_user),
    x_org_id: str | None = Header(None),
    db: Session = Depends(get_db),
) -> OrgContext:
    """Resolve the acting organization for the caller.

    Raises:
        HTTPException: 403 if the header is missing, the org is unknown, or
            the caller is not a member.
    """
    if not x_org_id:
        raise HTTPException(status_code=403, detail="Organization context required")
    try:
        return load_org_context(db, user, x_org_id)
    except DomainError as e:
        raise to_http_exception(e) from None


def get_payment_gateway(config: AppConfig = Depends(get_config)) -> PaymentGateway | None:
    """Stripe gateway, or None when no secret key is configured."""
    if not config.stripe.payments_enabled:
        return None
    return StripeGateway(config.stripe)


def get_address_resolver(config: AppConfig = Depends(get_config)) -> AddressResolver:
    return AddressResolver(config.geocoding)


def get_calendar_sync(config: AppConfig = Depends(get_config)) -> CalendarSyncService:
    return CalendarSyncService(config.calendar)


def get_orders_service(
    db: Session = Depends(get_db),
    config: AppConfig = Depends(get_config),
    resolver: AddressResolver = Depends(get_address_resolver),
    calendar: CalendarSyncService = Depends(get_calendar_sync),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
) -> OrdersService:
    """Dependency injector for OrdersService."""
    return OrdersService(db, config, resolver, calendar, gateway=gateway)


def get_fulfillment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
) -> OrderFulfillmentService:
    """Dependency injector for OrderFulfillmentService."""
    return OrderFulfillmentService(db, gateway=gateway)


def get_webhook_handler(
    fulfillment: OrderFulfillmentService = Depends(get_fulfillment_service),
    config: AppConfig = Depends(get_config),
) -> StripeWebhookHandler:
    """Dependency injector for StripeWebhookHandler."""
    return StripeWebhookHandler(fulfillment, config.stripe.webhook_secret)
