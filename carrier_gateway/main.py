"""
Carrier Gateway
FastAPI application entry point

- Rate limiting with SlowAPI on rates, tracking and label creation
- Carrier adapters closed on shutdown (HTTP clients and cached tokens)
- Health endpoint with DB ping
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from carrier_gateway import __version__
from carrier_gateway.api.routes import admin_shipping, shipping
from carrier_gateway.core.config import settings
from carrier_gateway.core.database import AsyncSessionLocal
from carrier_gateway.core.rate_limit import limiter, rate_limit_exceeded_handler
from carrier_gateway.modules.shipping.carriers import carrier_pool, get_registered_carriers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the registered carriers on startup; close carrier adapters on shutdown."""
    carriers = ", ".join(code.value for code in get_registered_carriers())
    logger.info(f"{settings.APP_NAME} starting ({settings.ENVIRONMENT}); carriers: {carriers}")

    yield

    await carrier_pool.reset()
    logger.info("Carrier adapters closed")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="""
## Carrier Gateway API

Rate quoting, label issuance and tracking across USPS, FedEx, UPS, DHL and Canada Post.

### Authentication
Admin label endpoints require `Authorization: Bearer <SHIPPING_ADMIN_TOKEN>`.

### Rate Limits
Configured per endpoint with `RATE_LIMIT_RATES`, `RATE_LIMIT_TRACKING` and `RATE_LIMIT_LABELS`.
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoint"},
        {"name": "Shipping", "description": "Rate quotes and tracking"},
        {"name": "Admin - Shipping", "description": "Label creation and shipment history"},
    ],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(shipping.router, prefix="/api", tags=["Shipping"])
app.include_router(admin_shipping.router, prefix="/api", tags=["Admin - Shipping"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Returns 503 if the database is unreachable."""
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
