"""Order intent schema and the versioned payload stored on pending orders.

``OrderIntent`` is what a client submits to place an order. When an order
goes through hosted checkout the intent, together with the resolved
customer relationship, is frozen into a versioned JSON payload on the
pending order and decoded strictly at fulfillment time. A payload that
does not match the current schema version raises ``OrderPayloadError``
instead of producing a half-populated project.

Example:
    raw = encode_order_payload(intent, customer_id=customer.id)
    payload = decode_order_payload(raw)
"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from orderflow.db.models import Priority, SchedulingMode
from orderflow.errors import OrderPayloadError

ORDER_PAYLOAD_VERSION = 1

DEFAULT_DURATION_MINUTES = 60


class _CamelModel(BaseModel):
    """Accepts camelCase (wire) and snake_case (internal) field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NewCustomer(_CamelModel):
    """Inline customer details for an order without a customer reference."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)
    notes: str | None = None


class OrderIntent(_CamelModel):
    """A request to create a production job.

    ``provider_org_id`` selects the agent flow: the caller orders work from
    a provider company they already hold a customer relationship with.
    Without it the caller's own organization books the job directly.
    """

    provider_org_id: str | None = None
    customer_id: str | None = None
    new_customer: NewCustomer | None = None

    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: str | None = None
    city: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country_code: str | None = None
    lat: float | None = None
    lng: float | None = None

    scheduled_time: datetime
    estimated_duration: int = Field(DEFAULT_DURATION_MINUTES, ge=1, le=24 * 60)
    media_types: list[str] = Field(default_factory=list)
    priority: Priority = Priority.standard
    scheduling_mode: SchedulingMode = SchedulingMode.scheduled
    notes: str | None = None

    technician_id: str | None = None
    editor_id: str | None = None
    project_manager_id: str | None = None

    package_id: str | None = None
    add_on_ids: list[str] = Field(default_factory=list)
    add_on_quantities: dict[str, int] = Field(default_factory=dict)

    @field_validator("scheduled_time")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        """Store scheduling instants as naive UTC."""
        if value.tzinfo is not None:
            return value.astimezone(UTC).replace(tzinfo=None)
        return value


class OrderPayload(BaseModel):
    """Version 1 of the serialized order stored on a pending order."""

    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = ORDER_PAYLOAD_VERSION
    customer_id: str = Field(..., min_length=1)
    intent: OrderIntent


def encode_order_payload(intent: OrderIntent, customer_id: str) -> str:
    """Serialize an intent and its resolved customer for storage."""
    payload = OrderPayload(customer_id=customer_id, intent=intent)
    return payload.model_dump_json()


def decode_order_payload(raw: str) -> OrderPayload:
    """Decode a stored payload, rejecting anything but the current version.

    Raises:
        OrderPayloadError: If the payload is not valid JSON or does not
            match the schema.
    """
    try:
        return OrderPayload.model_validate_json(raw)
    except PydanticValidationError as e:
        raise OrderPayloadError(
            f"Stored order payload is invalid: {e.error_count()} error(s)"
        ) from e
