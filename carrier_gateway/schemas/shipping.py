"""
Shipping Schemas

Pydantic models for the JSON returned by the shipping endpoints. Request
bodies are validated by services.request_validator, not here, so that
every rejection carries the same {"error", "field"} shape.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from carrier_gateway.models.shipment import ShipmentStatus


# ==================== Rate Schemas ====================


class ShippingRateResponse(BaseModel):
    """A single quote, after markup."""
    carrier: str
    service_name: str
    service_code: str
    rate: float
    currency: str = "USD"
    retail_rate: Optional[float] = None
    delivery_days: Optional[int] = None
    delivery_date: Optional[str] = None
    billable_weight: Optional[float] = None


class CarrierErrorEntry(BaseModel):
    carrier: str
    error: str


class RateListResponse(BaseModel):
    """Quotes from every queried carrier, cheapest first."""
    rates: List[ShippingRateResponse] = []
    errors: List[CarrierErrorEntry] = []


# ==================== Tracking Schemas ====================


class TrackingEventResponse(BaseModel):
    timestamp: Optional[datetime] = None
    status: str
    description: str
    location: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class TrackingResponse(BaseModel):
    """Tracking information for a shipment."""
    carrier: str
    tracking_number: str
    status: ShipmentStatus
    events: List[TrackingEventResponse] = []
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    current_location: Optional[str] = None
    updated_at: datetime
    tracking_url: Optional[str] = None


# ==================== Shipment Schemas ====================


class ShipmentResponse(BaseModel):
    """A recorded shipment."""
    id: str
    order_id: str
    carrier: str
    service_code: str
    service_name: Optional[str] = None
    tracking_number: str
    carrier_shipment_id: Optional[str] = None
    label_data: Optional[str] = None
    label_format: Optional[str] = None
    rate: float
    currency: Optional[str] = None
    status: ShipmentStatus
    origin_address: Optional[Dict[str, Any]] = None
    destination_address: Dict[str, Any]
    reference_number: Optional[str] = None
    metadata: Optional[Dict[str, str]] = Field(
        None, validation_alias=AliasChoices("shipment_metadata", "metadata")
    )
    tracking_events: List[Dict[str, Any]] = []
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tracking_url: Optional[str] = None

    class Config:
        from_attributes = True


class ShipmentListResponse(BaseModel):
    """Shipment history page."""
    data: List[ShipmentResponse] = []
