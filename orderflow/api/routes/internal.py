"""Internal scheduler endpoints, guarded by the internal token middleware."""

import logging

from fastapi import APIRouter, Depends, Query

from orderflow.api.deps import get_fulfillment_service
from orderflow.api.schemas import ReconcileResponse
from orderflow.services.fulfillment_service import OrderFulfillmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"])


@router.post("/orders/reconcile", response_model=ReconcileResponse)
def reconcile_orders(
    limit: int = Query(100, ge=1, le=1000),
    service: OrderFulfillmentService = Depends(get_fulfillment_service),
) -> ReconcileResponse:
    """Fulfill or expire pending orders past their expiry time."""
    summary = service.reconcile_pending_orders(limit=limit)
    return ReconcileResponse(
        checked=summary.checked,
        fulfilled=summary.fulfilled,
        expired=summary.expired,
        errors=summary.errors,
    )
