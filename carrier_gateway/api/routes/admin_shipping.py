"""
Admin Shipping Label Routes

Provides endpoints for:
- Label creation (billable)
- Shipment history lookup and single-shipment detail
- Tracking refresh of a recorded shipment

Every endpoint requires the admin bearer token; the check result is
handed to the orchestrator, which rejects unauthorized callers first.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from carrier_gateway.api.deps import get_orchestrator, is_authorized_caller, read_json_body
from carrier_gateway.core.rate_limit import get_labels_limit, get_tracking_limit
from carrier_gateway.services.results import Unauthorized, to_response
from carrier_gateway.services.shipping_orchestrator import ShippingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/shipping", tags=["admin-shipping"])

MAX_LABEL_BODY_BYTES = 100_000


@router.get("/labels")
async def list_labels(
    order_id: Optional[str] = Query(None),
    carrier: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    authorized: bool = Depends(is_authorized_caller),
    orchestrator: ShippingOrchestrator = Depends(get_orchestrator),
):
    """Shipment history, newest first. Returns {data: [...]}."""
    params = {
        "order_id": order_id,
        "carrier": carrier,
        "status": status,
        "search": search,
        "from": date_from,
        "to": date_to,
        "limit": limit,
        "offset": offset,
    }
    return to_response(await orchestrator.list_shipments(params, authorized))


@router.post("/labels")
@get_labels_limit()
async def create_label(
    request: Request,
    authorized: bool = Depends(is_authorized_caller),
    orchestrator: ShippingOrchestrator = Depends(get_orchestrator),
):
    """Create a shipping label. 201 with the recorded shipment."""
    if not authorized:
        return to_response(Unauthorized())

    body, error = await read_json_body(request, MAX_LABEL_BODY_BYTES)
    if error is not None:
        return error
    return to_response(await orchestrator.create_label(body, authorized))


@router.get("/labels/{shipment_id}")
async def get_label(
    shipment_id: str,
    authorized: bool = Depends(is_authorized_caller),
    orchestrator: ShippingOrchestrator = Depends(get_orchestrator),
):
    return to_response(await orchestrator.get_shipment(shipment_id, authorized))


@router.post("/labels/{shipment_id}/tracking")
@get_tracking_limit()
async def refresh_label_tracking(
    request: Request,
    shipment_id: str,
    authorized: bool = Depends(is_authorized_caller),
    orchestrator: ShippingOrchestrator = Depends(get_orchestrator),
):
    """Poll the carrier and apply new events and status to the shipment."""
    return to_response(await orchestrator.refresh_tracking(shipment_id, authorized))
