"""
DHL eCommerce Carrier Implementation

Label creation (outbound and returns) and tracking. DHL eCommerce prices
from pre-negotiated products, so rate quoting returns nothing.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from carrier_gateway.core.exceptions import CarrierAuthError, CarrierResponseError
from carrier_gateway.core.utils import parse_datetime
from carrier_gateway.models.shipping_config import CarrierCode
from carrier_gateway.modules.shipping.carriers import register_carrier
from carrier_gateway.modules.shipping.carriers.base import (
    Address,
    CreateShipmentRequest,
    OAuthCarrier,
    Package,
    RateRequest,
    Shipment,
    ShippingRate,
    TrackingEvent,
    TrackingInfo,
)
from carrier_gateway.modules.shipping.tracking import map_tracking_status

logger = logging.getLogger(__name__)

DHL_API_BASE = "https://api-sandbox.dhlecs.com"
DHL_API_BASE_PROD = "https://api.dhlecs.com"

DHL_DEFAULT_TOKEN_TTL = 3500

# Short service code -> DHL ordered product id
DHL_PRODUCTS = {
    "RLT": "DLH_SM_RETURN_LIGHT",
    "RGN": "DLH_SM_RETURN_GROUND",
    "PARCEL_DIRECT": "DLH_ECOM_PARCL_DIRECT",
    "PARCEL_EXPRESS": "DLH_ECOM_PARCEL_EXPRESS",
}

DHL_SERVICE_NAMES = {
    "DLH_SM_RETURN_LIGHT": "DHL eCommerce Return Light",
    "DLH_SM_RETURN_GROUND": "DHL eCommerce Return Ground",
    "DLH_EXPRESS_WORLDWIDE": "DHL Express Worldwide",
    "DLH_EXPRESS_12": "DHL Express 12:00",
    "DLH_EXPRESS_9": "DHL Express 9:00",
    "DLH_ECOM_PARCL_DIRECT": "DHL eCommerce Parcel Direct",
    "DLH_ECOM_PARCEL_EXPRESS": "DHL eCommerce Parcel Express",
    "DLH_ECOM_PARCEL_PLUS": "DHL eCommerce Parcel Plus",
}


def map_service_code(code: str) -> str:
    normalized = code.upper()
    return DHL_PRODUCTS.get(normalized, normalized)


def get_service_name(code: str) -> str:
    normalized = code.upper()
    return DHL_SERVICE_NAMES.get(normalized, f"DHL {normalized}")


def _first(value: Any) -> Dict[str, Any]:
    if isinstance(value, list):
        return value[0] if value else {}
    return value or {}


@register_carrier(CarrierCode.DHL)
class DHLCarrier(OAuthCarrier):
    """DHL eCommerce implementation."""

    carrier_name = "DHL"

    @property
    def base_url(self) -> str:
        return DHL_API_BASE if self.sandbox else DHL_API_BASE_PROD

    async def _auth_headers(self) -> Dict[str, str]:
        static_token = self._credentials.get("access_token")
        if static_token:
            return {"Authorization": f"Bearer {static_token}"}
        return await super()._auth_headers()

    async def _request_token(self) -> Tuple[str, int]:
        data = await self._send_token_request(
            f"{self.base_url}/auth/v4/token",
            json={
                "clientId": self._credentials.get("client_id"),
                "clientSecret": self._credentials.get("client_secret"),
                "grantType": "client_credentials",
            },
        )
        token = data.get("accessToken") or data.get("access_token")
        if not token:
            raise CarrierAuthError("DHL authentication response missing access token")
        expires_in = data.get("expiresIn") or data.get("expires_in") or DHL_DEFAULT_TOKEN_TTL
        return token, int(expires_in)

    # -------------------------------------------------------------------------
    # Payload builders
    # -------------------------------------------------------------------------

    @staticmethod
    def _map_address(address: Address) -> Dict[str, Any]:
        body = {
            "name": address.name or address.company or "Recipient",
            "address1": address.address_line1,
            "address2": address.address_line2 or "",
            "city": address.city,
            "state": address.state,
            "country": address.country,
            "postalCode": address.postal_code,
            "phone": address.phone or "0000000000",
        }
        if address.company:
            body["companyName"] = address.company
        return body

    @staticmethod
    def _map_package(pkg: Package, index: int) -> Dict[str, Any]:
        weight = max(pkg.weight or 0, 0.1)
        body: Dict[str, Any] = {
            "reference": f"PKG-{index + 1}",
            "weight": {"value": round(weight, 2), "unitOfMeasure": "LB"},
            "description": pkg.description or pkg.contents_type or "General Merchandise",
        }
        if pkg.has_dimensions:
            body["dimensions"] = {
                "length": round(pkg.length, 2),
                "width": round(pkg.width, 2),
                "height": round(pkg.height, 2),
                "unitOfMeasure": "IN",
            }
        if pkg.insured_value:
            body["insuredValue"] = {"amount": pkg.insured_value, "currency": "USD"}
        return body

    def _build_shipment_request(self, request: CreateShipmentRequest) -> Dict[str, Any]:
        # Returns travel back from the customer
        shipper = request.destination if request.is_return_label else request.origin
        recipient = request.origin if request.is_return_label else request.destination

        body: Dict[str, Any] = {
            "pickup": self._credentials.get("pickup_account") or request.pickup_account_number,
            "orderedProductId": map_service_code(request.service_code),
            "shipmentDetails": {
                "orderNumber": request.reference_number,
                "isReturn": request.is_return_label,
            },
            "shipperAddress": self._map_address(shipper),
            "recipientAddress": self._map_address(recipient),
            "packageDetails": [
                self._map_package(pkg, index) for index, pkg in enumerate(request.packages)
            ],
        }
        merchant_id = self._credentials.get("merchant_id")
        if merchant_id:
            body["merchantId"] = merchant_id
        return body

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def get_rates(self, request: RateRequest) -> List[ShippingRate]:
        return []

    async def create_shipment(self, request: CreateShipmentRequest) -> Shipment:
        endpoint = (
            "/returns/v4/label?format=PNG" if request.is_return_label
            else "/shipping/v1/labels/merchant"
        )
        headers = await self._auth_headers()
        response = await self._send(
            "POST",
            f"{self.base_url}{endpoint}",
            "label creation",
            json=self._build_shipment_request(request),
            headers=headers,
        )
        try:
            data = response.json()
        except ValueError:
            raise CarrierResponseError("DHL label creation returned invalid JSON")

        result = _first(data.get("data")) if isinstance(data.get("data"), list) else data
        tracking_number = (
            result.get("trackingNumber")
            or result.get("parcelNumber")
            or _first(result.get("shipments")).get("trackingNumber")
        )
        label = result.get("label")
        label_data = (
            (label.get("content") if isinstance(label, dict) else label)
            or _first(result.get("labels")).get("content")
            or _first(result.get("shipmentLabels")).get("content")
        )
        if not tracking_number or not label_data:
            raise CarrierResponseError("Invalid DHL shipment response")

        pricing_total = (result.get("pricing") or {}).get("total") or {}
        price = result.get("price") or {}
        amount = pricing_total.get("amount", price.get("total"))
        try:
            rate = float(amount or 0)
        except (TypeError, ValueError):
            rate = 0.0

        logger.info(f"DHL label issued for order {request.order_id}: {tracking_number}")
        return Shipment(
            carrier=CarrierCode.DHL,
            service_code=request.service_code,
            service_name=get_service_name(map_service_code(request.service_code)),
            tracking_number=tracking_number,
            label_data=label_data,
            label_format="PNG" if request.is_return_label else request.label_format,
            rate=rate,
            currency=pricing_total.get("currency") or price.get("currency") or "USD",
            origin=request.origin,
            destination=request.destination,
            reference_number=request.reference_number,
            carrier_shipment_id=result.get("shipmentId") or result.get("shipmentIdNumber"),
            metadata=request.metadata,
        )

    async def track_shipment(self, tracking_number: str) -> TrackingInfo:
        headers = await self._auth_headers()
        headers["Accept"] = "application/json"
        response = await self._send(
            "GET",
            f"{self.base_url}/tracking/shipments/{quote(tracking_number, safe='')}",
            "tracking",
            headers=headers,
        )
        try:
            data = response.json()
        except ValueError:
            raise CarrierResponseError("DHL tracking returned invalid JSON")

        shipment = _first(data.get("shipments"))
        if not shipment:
            raise CarrierResponseError("No tracking information found")

        raw_events = shipment.get("events") or shipment.get("trackingEvents") or []
        events = []
        for event in raw_events:
            location = event.get("location") or {}
            events.append(TrackingEvent(
                timestamp=parse_datetime(event.get("timestamp")),
                status=event.get("status") or event.get("description") or "Update",
                description=event.get("description") or event.get("status") or "Shipment update",
                location=location.get("addressLocality"),
                city=location.get("addressLocality"),
                state=location.get("administrativeArea"),
                postal_code=location.get("postalCode"),
                country=location.get("countryCode"),
            ))

        current: Optional[str] = None
        if raw_events:
            current = (raw_events[0].get("location") or {}).get("addressLocality")

        return TrackingInfo(
            carrier=CarrierCode.DHL,
            tracking_number=tracking_number,
            status=map_tracking_status(shipment.get("status") or shipment.get("statusCode") or ""),
            events=events,
            estimated_delivery_date=parse_datetime(shipment.get("estimatedDeliveryDate")),
            actual_delivery_date=parse_datetime((shipment.get("delivery") or {}).get("date")),
            current_location=current,
        )

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://webtrack.dhlecs.com/orders?trackingNumber={tracking_number}"
