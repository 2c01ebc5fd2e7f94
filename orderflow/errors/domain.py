"""Typed domain exceptions for API error mapping.

These exceptions provide stronger API contract guarantees than
string-based error message matching. Routes catch specific exception
types to return the appropriate HTTP status codes.

Usage:
    # In service layer
    raise NotFoundError("PendingOrder", pending_order_id)

    # In route handler
    try:
        status = service.get_order_status(session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""

from typing import Any


class DomainError(Exception):
    """Base exception for all domain errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Missing or malformed input. Maps to HTTP 400."""

    status_code = 400


class OrderPayloadError(ValidationError):
    """Stored order payload failed schema decoding. Maps to HTTP 400."""


class SignatureError(DomainError):
    """Webhook signature verification failed. Maps to HTTP 400."""

    status_code = 400


class ForbiddenError(DomainError):
    """Permission denied or cross-tenant access. Maps to HTTP 403."""

    status_code = 403


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    status_code = 404

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Scheduling overlap. Maps to HTTP 409.

    Attributes:
        conflicts: The overlapping commitments. Booked projects carry
            ``project_id``, ``scheduled_time`` and ``scheduled_end``; busy
            external calendar blocks carry ``type``, ``start_time`` and
            ``end_time``.
    """

    status_code = 409

    def __init__(
        self,
        message: str,
        conflicts: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.conflicts = conflicts or []


class ConfigurationError(DomainError):
    """A required secret or setting is missing. Maps to HTTP 503."""

    status_code = 503
