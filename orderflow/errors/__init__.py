"""Error types for the order intake and fulfillment service.

Every exception raised across the service boundary derives from
``DomainError`` and carries the HTTP status it maps to:

- ValidationError / OrderPayloadError / SignatureError: 400
- ForbiddenError: 403
- NotFoundError: 404
- ConflictError: 409 (carries the conflicting set)
- ConfigurationError: 503
"""

from orderflow.errors.domain import (
    ConfigurationError,
    ConflictError,
    DomainError,
    ForbiddenError,
    NotFoundError,
    OrderPayloadError,
    SignatureError,
    ValidationError,
)

__all__ = [
    "DomainError",
    "ValidationError",
    "OrderPayloadError",
    "SignatureError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ConfigurationError",
]
