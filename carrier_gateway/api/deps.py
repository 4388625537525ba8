"""
API dependencies
"""
import hmac
import json
from typing import Any, Optional, Tuple

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from carrier_gateway.core.config import settings
from carrier_gateway.core.database import get_db
from carrier_gateway.modules.shipping.carriers import carrier_pool
from carrier_gateway.services.shipping_orchestrator import ShippingOrchestrator

optional_bearer = HTTPBearer(auto_error=False)


async def is_authorized_caller(
    credentials: HTTPAuthorizationCredentials = Depends(optional_bearer),
) -> bool:
    """
    Whether the caller presented the admin token.

    Returns a plain boolean; the orchestrator decides what an unauthorized
    caller may do. An unset SHIPPING_ADMIN_TOKEN authorizes nobody.
    """
    expected = settings.SHIPPING_ADMIN_TOKEN
    if not expected or credentials is None:
        return False
    return hmac.compare_digest(credentials.credentials.encode(), expected.encode())


async def read_json_body(request: Request, max_bytes: int) -> Tuple[Any, Optional[JSONResponse]]:
    """
    Read and decode a size-limited JSON body.

    Returns (body, None) on success or (None, error_response).
    """
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        return None, JSONResponse(status_code=413, content={"error": "Request body too large"})

    raw = await request.body()
    if len(raw) > max_bytes:
        return None, JSONResponse(status_code=413, content={"error": "Request body too large"})

    try:
        return json.loads(raw), None
    except ValueError:
        return None, JSONResponse(status_code=400, content={"error": "Invalid JSON in request body"})


async def get_orchestrator(db: AsyncSession = Depends(get_db)) -> ShippingOrchestrator:
    """Request-scoped orchestrator over the shared carrier pool."""
    return ShippingOrchestrator(db, pool=carrier_pool)
