"""
Base Carrier Interface

Canonical, carrier-agnostic types plus the abstract adapter every carrier
implements. Carrier-native payloads never leave the adapter: callers only
see ShippingRate, Shipment and TrackingInfo.

Each adapter provides its own:
  - Rate quoting
  - Shipment (label) creation
  - Tracking
  - Public tracking URL
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from carrier_gateway.core.config import settings
from carrier_gateway.core.exceptions import (
    CarrierAPIError,
    CarrierAuthError,
    CarrierTimeoutError,
)
from carrier_gateway.core.utils import epoch_ms, utcnow
from carrier_gateway.models.shipment import ShipmentStatus
from carrier_gateway.models.shipping_config import CarrierCode
from carrier_gateway.modules.shipping.credentials import CarrierCredentials
from carrier_gateway.modules.shipping.token_cache import TokenCache
from carrier_gateway.services.encryption import sanitize_for_logging

logger = logging.getLogger(__name__)


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass
class Address:
    """Origin or destination address. Required fields are non-empty or construction fails."""
    address_line1: str
    city: str
    state: str
    postal_code: str
    country: str
    name: Optional[str] = None
    company: Optional[str] = None
    address_line2: Optional[str] = None
    phone: Optional[str] = None
    is_residential: Optional[bool] = None  # destination only

    REQUIRED_FIELDS = ("address_line1", "city", "state", "postal_code", "country")

    def __post_init__(self):
        for name in self.REQUIRED_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Address {name} is required")

    @property
    def is_us(self) -> bool:
        return self.country.upper() in ("US", "USA")

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Package:
    """Package weight (lb) and optional dimensions (in)."""
    weight: float
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    insured_value: Optional[float] = None
    contents_type: Optional[str] = None
    description: Optional[str] = None

    @property
    def has_dimensions(self) -> bool:
        return bool(self.length and self.width and self.height)


@dataclass
class CustomsItem:
    description: Optional[str] = None
    quantity: int = 1
    value: float = 0.0
    weight: float = 0.0
    origin_country: Optional[str] = None
    hs_tariff_code: Optional[str] = None


@dataclass
class CustomsDeclaration:
    contents_type: Optional[str] = None
    contents_explanation: Optional[str] = None
    non_delivery_option: Optional[str] = None
    invoice_number: Optional[str] = None
    eel_pfc: Optional[str] = None
    items: List[CustomsItem] = field(default_factory=list)


@dataclass
class RateRequest:
    """Request for rate quotes."""
    origin: Address
    destination: Address
    packages: List[Package]
    carriers: Optional[List[CarrierCode]] = None
    service_types: Optional[List[str]] = None


@dataclass
class CreateShipmentRequest:
    """Validated, sanitized label request. Built only by the RequestValidator."""
    order_id: str
    carrier: CarrierCode
    service_code: str
    origin: Address
    destination: Address
    packages: List[Package]
    label_format: str = "PDF"  # PDF, PNG, ZPL
    label_size: str = "4x6"  # 4x6, 8x11
    signature_required: bool = False
    saturday_delivery: bool = False
    insurance_amount: Optional[float] = None
    reference_number: Optional[str] = None
    customs_declaration: Optional[CustomsDeclaration] = None
    is_return_label: bool = False
    pickup_account_number: Optional[str] = None
    billing_account_number: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None


@dataclass
class ShippingRate:
    """Shipping rate quote. Always carries carrier, currency and service code."""
    carrier: CarrierCode
    service_name: str
    service_code: str
    rate: float
    currency: str = "USD"
    retail_rate: Optional[float] = None
    delivery_days: Optional[int] = None
    delivery_date: Optional[str] = None
    billable_weight: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["carrier"] = self.carrier.value
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class Shipment:
    """An issued label, as returned by an adapter."""
    carrier: CarrierCode
    service_code: str
    service_name: str
    tracking_number: str
    rate: float
    currency: str
    origin: Address
    destination: Address
    label_data: Optional[str] = None  # Base64 encoded
    label_format: str = "PDF"
    status: ShipmentStatus = ShipmentStatus.LABEL_CREATED
    order_id: Optional[str] = None
    reference_number: Optional[str] = None
    carrier_shipment_id: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class TrackingEvent:
    """A single carrier-reported scan."""
    timestamp: Optional[datetime]
    status: str
    description: str
    location: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return data


@dataclass
class TrackingInfo:
    """Full tracking information. Events keep carrier order."""
    carrier: CarrierCode
    tracking_number: str
    status: ShipmentStatus
    events: List[TrackingEvent] = field(default_factory=list)
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    current_location: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier": self.carrier.value,
            "tracking_number": self.tracking_number,
            "status": self.status.value,
            "events": [event.to_dict() for event in self.events],
            "estimated_delivery_date": (
                self.estimated_delivery_date.isoformat() if self.estimated_delivery_date else None
            ),
            "actual_delivery_date": (
                self.actual_delivery_date.isoformat() if self.actual_delivery_date else None
            ),
            "current_location": self.current_location,
            "updated_at": self.updated_at.isoformat(),
        }


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseCarrier(ABC):
    """
    Abstract base class for all shipping carriers.

    Owns the HTTP client and wraps every call in the configured timeout.
    Adapters raise core.exceptions errors; the orchestrator converts them.
    """

    carrier_code: CarrierCode
    carrier_name: str

    def __init__(
        self,
        credentials: CarrierCredentials,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._credentials = credentials
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = settings.SHIPPING_CARRIER_TIMEOUT_SECONDS

    @property
    def sandbox(self) -> bool:
        return self._credentials.sandbox

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout)
            )
            self._owns_client = True
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _send(self, method: str, url: str, operation: str, **kwargs) -> httpx.Response:
        """
        Perform one carrier call, bounded by a total deadline.

        Raises:
            CarrierTimeoutError: no complete answer within the timeout
            CarrierAPIError: network failure or non-success status
        """
        client = await self._get_http_client()
        try:
            response = await asyncio.wait_for(client.request(method, url, **kwargs), timeout=self._timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.error(f"{self.carrier_name} {operation} timed out")
            raise CarrierTimeoutError(
                f"{self.carrier_name} {operation} timed out",
                details={"carrier": self.carrier_code.value, "operation": operation},
            )
        except httpx.RequestError as e:
            logger.error(f"{self.carrier_name} {operation} network error: {type(e).__name__}")
            raise CarrierAPIError(
                f"{self.carrier_name} {operation} network error: {type(e).__name__}",
                code="NETWORK_ERROR",
                details={"carrier": self.carrier_code.value, "operation": operation},
            )

        if response.status_code >= 400:
            logger.error(
                f"{self.carrier_name} {operation} failed: {response.status_code} "
                f"{sanitize_for_logging(response.text)}"
            )
            raise CarrierAPIError(
                f"{self.carrier_name} {operation} failed",
                status_code=response.status_code,
                details={"carrier": self.carrier_code.value, "operation": operation},
            )

        return response

    @abstractmethod
    async def get_rates(self, request: RateRequest) -> List[ShippingRate]:
        """
        Get shipping rates from the carrier.

        Returns:
            List of ShippingRate objects for available services
        """
        pass

    @abstractmethod
    async def create_shipment(self, request: CreateShipmentRequest) -> Shipment:
        """
        Create a shipment and generate label.

        Returns:
            Shipment with tracking number, label, and cost
        """
        pass

    @abstractmethod
    async def track_shipment(self, tracking_number: str) -> TrackingInfo:
        """Get tracking information for a shipment."""
        pass

    @abstractmethod
    def get_tracking_url(self, tracking_number: str) -> str:
        """Get the public tracking URL for a shipment."""
        pass


class OAuthCarrier(BaseCarrier):
    """
    Carrier authenticated with an OAuth2 client-credentials bearer token.

    Subclasses implement _request_token; the TokenCache decides when to call it.
    """

    def __init__(
        self,
        credentials: CarrierCredentials,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], int] = epoch_ms,
    ):
        super().__init__(credentials, http_client)
        self.token_cache = TokenCache(self._request_token, clock=clock)

    @abstractmethod
    async def _request_token(self) -> Tuple[str, int]:
        """Perform the grant. Returns (access_token, expires_in_seconds)."""
        pass

    async def _send_token_request(self, url: str, **kwargs) -> Dict[str, Any]:
        """POST to a token endpoint, mapping rejection to CarrierAuthError."""
        try:
            response = await self._send("POST", url, "authentication", **kwargs)
        except CarrierAPIError as e:
            if e.code == "NETWORK_ERROR":
                raise
            raise CarrierAuthError(
                f"{self.carrier_name} authentication failed",
                details=e.details,
            )
        try:
            return response.json()
        except ValueError:
            raise CarrierAuthError(f"{self.carrier_name} authentication returned invalid JSON")

    async def _auth_headers(self) -> Dict[str, str]:
        token = await self.token_cache.get_token()
        return {"Authorization": f"Bearer {token}"}

    async def close(self):
        self.token_cache.reset()
        await super().close()
