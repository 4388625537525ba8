"""
Pytest configuration and fixtures for carrier gateway tests.
"""
import os
from typing import AsyncGenerator, Callable, Dict, List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

ADMIN_TOKEN = "test-admin-token"

# Set test environment before importing package modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["SHIPPING_ADMIN_TOKEN"] = ADMIN_TOKEN

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from carrier_gateway.core.config import Settings  # noqa: E402
from carrier_gateway.core.database import Base  # noqa: E402
from carrier_gateway.core.rate_limit import reset_rate_limits  # noqa: E402
from carrier_gateway.models import ShippingConfig  # noqa: E402
from carrier_gateway.modules.shipping.carriers import CarrierPool  # noqa: E402
from carrier_gateway.modules.shipping.credentials import CredentialResolver  # noqa: E402
from carrier_gateway.services.encryption import encrypt_credentials  # noqa: E402


@pytest.fixture(autouse=True)
def reset_limits():
    """Fresh rate-limit counters for every test."""
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    """Bearer header carrying the configured admin token."""
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def mock_db() -> AsyncMock:
    """Create mock async database session."""
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    return db


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """In-memory SQLite session with the schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def carrier_settings() -> Settings:
    """Settings with credentials for every carrier (sandbox hosts)."""
    return Settings(
        ENVIRONMENT="development",
        USPS_USER_ID="usps-user",
        USPS_PASSWORD="usps-pass",
        FEDEX_ACCOUNT_NUMBER="510087000",
        FEDEX_METER_NUMBER="100000000",
        FEDEX_API_KEY="fedex-key",
        FEDEX_API_SECRET="fedex-secret",
        UPS_CLIENT_ID="ups-client",
        UPS_CLIENT_SECRET="ups-secret",
        UPS_ACCOUNT_NUMBER="A1B2C3",
        DHL_CLIENT_ID="dhl-client",
        DHL_CLIENT_SECRET="dhl-secret",
        DHL_PICKUP_ACCOUNT="5300000",
        CANADAPOST_USERNAME="cp-user",
        CANADAPOST_PASSWORD="cp-pass",
        CANADAPOST_CUSTOMER_NUMBER="0001234567",
    )


@pytest.fixture
def empty_settings() -> Settings:
    """Settings with no carrier credentials at all."""
    return Settings(ENVIRONMENT="development")


class RecordingTransport:
    """
    httpx.MockTransport handler that routes on (method, path) and records calls.

    Routes map "METHOD /path" to a callable(request) -> httpx.Response
    or to a ready httpx.Response.
    """

    def __init__(self, routes: Dict[str, object]):
        self.routes = routes
        self.calls: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = f"{request.method} {request.url.path}"
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"error": f"unrouted {key}"})
        if callable(handler):
            return handler(request)
        # Fresh response per call so routes can be hit repeatedly
        return httpx.Response(handler.status_code, headers=handler.headers, content=handler.content)

    def count(self, method: str, path: str) -> int:
        return sum(
            1 for call in self.calls
            if call.method == method and call.url.path == path
        )


@pytest.fixture
def make_transport() -> Callable[[Dict[str, object]], RecordingTransport]:
    return RecordingTransport


@pytest.fixture
async def make_pool(carrier_settings):
    """Build a CarrierPool whose adapters talk to a RecordingTransport."""
    created = []

    def _make(transport: RecordingTransport, settings: Settings = None) -> CarrierPool:
        client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        pool = CarrierPool(
            resolver=CredentialResolver(settings or carrier_settings),
            http_client=client,
        )
        created.append((pool, client))
        return pool

    yield _make

    for pool, client in created:
        await pool.reset()
        await client.aclose()


@pytest.fixture
def add_config(db_session):
    """Insert a shipping_configs row."""

    async def _add(carrier: str, is_active: bool = True, **kwargs) -> ShippingConfig:
        credentials = kwargs.pop("credentials", None)
        config = ShippingConfig(
            carrier=carrier,
            is_active=is_active,
            api_credentials=encrypt_credentials(credentials) if credentials else None,
            **kwargs,
        )
        db_session.add(config)
        await db_session.flush()
        return config

    return _add


@pytest.fixture
def sample_address() -> dict:
    """Sample destination address."""
    return {
        "name": "John Doe",
        "address_line1": "123 Main Street",
        "address_line2": "Apt 4B",
        "city": "New York",
        "state": "NY",
        "postal_code": "10001",
        "country": "US",
        "phone": "212-555-1234",
        "is_residential": True,
    }


@pytest.fixture
def sample_origin() -> dict:
    """Sample warehouse address."""
    return {
        "name": "Shipping Dept",
        "company": "Example Goods",
        "address_line1": "500 Warehouse Way",
        "city": "Memphis",
        "state": "TN",
        "postal_code": "38118",
        "country": "US",
        "phone": "901-555-0100",
    }


@pytest.fixture
def sample_label_body(sample_address, sample_origin) -> dict:
    """A valid FedEx label request body."""
    return {
        "order_id": "ORD-1001",
        "carrier": "fedex",
        "service_code": "FEDEX_GROUND",
        "origin": sample_origin,
        "destination": sample_address,
        "packages": [{"weight": 2.5, "length": 12, "width": 10, "height": 4}],
    }


@pytest.fixture
def fedex_routes() -> Dict[str, object]:
    """Happy-path FedEx sandbox responses."""
    return {
        "POST /oauth/token": httpx.Response(
            200, json={"access_token": "fedex-token", "token_type": "bearer", "expires_in": 3600}
        ),
        "POST /ship/v1/shipments": httpx.Response(200, json={
            "output": {
                "transactionShipments": [{
                    "masterTrackingNumber": "794600000000",
                    "pieceResponses": [{
                        "trackingNumber": "794612345678",
                        "netChargeAmount": 12.5,
                        "packageDocuments": [{"encodedLabel": "JVBERi0xLjQK"}],
                    }],
                }],
            },
        }),
        "POST /rate/v1/rates/quotes": httpx.Response(200, json={
            "output": {
                "rateReplyDetails": [
                    {
                        "serviceType": "FEDEX_2_DAY",
                        "ratedShipmentDetails": [{"totalNetCharge": 24.1, "currency": "USD"}],
                        "commit": {"dateDetail": {"transitDays": "2"}},
                    },
                    {
                        "serviceType": "FEDEX_GROUND",
                        "ratedShipmentDetails": [{"totalNetCharge": 9.75, "currency": "USD"}],
                    },
                ],
            },
        }),
        "POST /track/v1/trackingnumbers": httpx.Response(200, json={
            "output": {
                "completeTrackResults": [{
                    "trackResults": [{
                        "latestStatusDetail": {
                            "statusByLocale": "Delivered",
                            "scanLocation": {"city": "NEW YORK", "stateOrProvinceCode": "NY"},
                        },
                        "deliveryDetails": {"actualDeliveryTimestamp": "2026-10-16T14:02:00Z"},
                        "scanEvents": [
                            {
                                "date": "2026-10-16T14:02:00Z",
                                "eventDescription": "Delivered",
                                "scanLocation": {"city": "NEW YORK", "stateOrProvinceCode": "NY"},
                            },
                            {
                                "date": "2026-10-15T08:30:00Z",
                                "eventDescription": "In transit",
                                "scanLocation": {"city": "MEMPHIS", "stateOrProvinceCode": "TN"},
                            },
                        ],
                    }],
                }],
            },
        }),
    }
