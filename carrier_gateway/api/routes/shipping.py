"""
Public Shipping API Routes

Provides endpoints for:
- Rate quoting across active carriers
- Tracking lookups (GET query string or POST body)

Responses come from services.results.to_response so error bodies are
always {"error": ...}.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from carrier_gateway.api.deps import get_orchestrator, read_json_body
from carrier_gateway.core.rate_limit import get_rates_limit, get_tracking_limit
from carrier_gateway.services.results import ValidationError, to_response
from carrier_gateway.services.shipping_orchestrator import ShippingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])

MAX_RATES_BODY_BYTES = 10_000
MAX_TRACK_BODY_BYTES = 1_000


@router.post("/rates")
@get_rates_limit()
async def get_rates(
    request: Request,
    orchestrator: ShippingOrchestrator = Depends(get_orchestrator),
):
    """Quote every active carrier (optionally filtered by carriers[])."""
    body, error = await read_json_body(request, MAX_RATES_BODY_BYTES)
    if error is not None:
        return error
    return to_response(await orchestrator.get_rates(body))


@router.get("/track")
@get_tracking_limit()
async def track_shipment(
    request: Request,
    carrier: Optional[str] = Query(None),
    tracking_number: Optional[str] = Query(None),
    orchestrator: ShippingOrchestrator = Depends(get_orchestrator),
):
    """Tracking lookup from query parameters."""
    if not carrier or not tracking_number:
        return to_response(ValidationError("Missing required parameters"))
    return to_response(await orchestrator.track(carrier, tracking_number))


@router.post("/track")
@get_tracking_limit()
async def track_shipment_post(
    request: Request,
    orchestrator: ShippingOrchestrator = Depends(get_orchestrator),
):
    """Tracking lookup from a JSON body {carrier, tracking_number}."""
    body, error = await read_json_body(request, MAX_TRACK_BODY_BYTES)
    if error is not None:
        return error
    if not isinstance(body, dict):
        return to_response(ValidationError("Missing required fields"))
    return to_response(await orchestrator.track(body.get("carrier"), body.get("tracking_number")))
