"""Service layer for the order service.

Provides order intake, payment checkout, and idempotent fulfillment.
"""

from orderflow.services.fulfillment_service import OrderFulfillmentService
from orderflow.services.orders_service import OrdersService

__all__ = [
    "OrdersService",
    "OrderFulfillmentService",
]
