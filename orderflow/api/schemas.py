"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the order REST API. The wire
format is camelCase; snake_case is accepted on input as well. The order
request body itself is ``OrderIntent`` from the order payload module.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for camelCase wire models, readable from ORM objects."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Order schemas


class CustomerResponse(CamelModel):
    """Response schema for a customer relationship."""

    id: str
    org_id: str
    user_id: str | None = None
    name: str
    email: str | None = None
    phone: str | None = None


class CalendarEventResponse(CamelModel):
    """Response schema for a synced calendar event."""

    id: str
    project_id: str
    technician_id: str
    external_event_id: str
    calendar_id: str
    starts_at: datetime
    ends_at: datetime


class ProjectResponse(CamelModel):
    """Response schema for a production job."""

    id: str
    org_id: str
    customer_id: str | None = None
    status: str
    address_line1: str
    address_line2: str | None = None
    city: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country_code: str | None = None
    lat: float | None = None
    lng: float | None = None
    notes: str | None = None
    scheduled_time: datetime
    scheduled_end: datetime
    duration_minutes: int
    technician_id: str | None = None
    editor_id: str | None = None
    project_manager_id: str | None = None
    payment_amount_cents: int | None = None
    payment_currency: str | None = None
    pending_order_id: str | None = None
    created_at: str


class OrderCreatedResponse(CamelModel):
    """Response for an order that created a project immediately."""

    project: ProjectResponse
    customer: CustomerResponse | None = None
    calendar_event: CalendarEventResponse | None = None
    is_new_customer: bool


class PaymentRequiredResponse(CamelModel):
    """Response for an order that must be paid through checkout first."""

    requires_payment: Literal[True] = True
    checkout_url: str
    session_id: str


class CheckoutResponse(CamelModel):
    """Response schema for an explicit checkout request."""

    checkout_url: str
    session_id: str


class ProjectSummary(CamelModel):
    """Minimal project view returned with an order status."""

    id: str
    address_line1: str
    city: str | None = None
    status: str


class OrderStatusResponse(CamelModel):
    """Response schema for a checkout order's status."""

    status: str
    project_id: str | None = None
    project: ProjectSummary | None = None
    degraded: bool = False


class PaymentModeResponse(CamelModel):
    """Response schema for a provider's payment mode."""

    payment_mode: str


# Webhook and internal schemas


class WebhookAck(BaseModel):
    """Acknowledgement returned for every verified webhook."""

    received: bool = True


class ReconcileResponse(CamelModel):
    """Counts from a reconciliation sweep."""

    checked: int
    fulfilled: int
    expired: int
    errors: int


class ErrorDetail(BaseModel):
    """Error body for conflicts: message plus the overlapping bookings."""

    message: str
    conflicts: list[dict[str, Any]] = []
