"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from orderflow.api.routes import internal, orders, webhooks

__all__ = [
    "internal",
    "orders",
    "webhooks",
]
