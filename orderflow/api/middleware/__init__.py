"""Request middleware for the order API."""

from orderflow.api.middleware.auth import require_internal_token

__all__ = ["require_internal_token"]
