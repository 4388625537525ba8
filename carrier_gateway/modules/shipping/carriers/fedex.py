"""
FedEx Carrier Implementation

FedEx REST API (OAuth 2.0 client credentials):
- /rate/v1/rates/quotes
- /ship/v1/shipments
- /track/v1/trackingnumbers
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from carrier_gateway.core.exceptions import CarrierAuthError, CarrierResponseError
from carrier_gateway.core.utils import parse_datetime, utcnow
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

FEDEX_API_URL = "https://apis-sandbox.fedex.com"
FEDEX_API_URL_PROD = "https://apis.fedex.com"

FEDEX_SERVICE_NAMES = {
    "FEDEX_GROUND": "FedEx Ground",
    "GROUND_HOME_DELIVERY": "FedEx Home Delivery",
    "FEDEX_EXPRESS_SAVER": "FedEx Express Saver",
    "FEDEX_2_DAY": "FedEx 2Day",
    "FEDEX_2_DAY_AM": "FedEx 2Day AM",
    "STANDARD_OVERNIGHT": "FedEx Standard Overnight",
    "PRIORITY_OVERNIGHT": "FedEx Priority Overnight",
    "FIRST_OVERNIGHT": "FedEx First Overnight",
    "INTERNATIONAL_ECONOMY": "FedEx International Economy",
    "INTERNATIONAL_PRIORITY": "FedEx International Priority",
    "INTERNATIONAL_FIRST": "FedEx International First",
}


def get_service_name(code: str) -> str:
    return FEDEX_SERVICE_NAMES.get(code, f"FedEx {code}")


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


@register_carrier(CarrierCode.FEDEX)
class FedExCarrier(OAuthCarrier):
    """FedEx REST implementation."""

    carrier_name = "FedEx"

    @property
    def base_url(self) -> str:
        return FEDEX_API_URL if self.sandbox else FEDEX_API_URL_PROD

    async def _request_token(self) -> Tuple[str, int]:
        data = await self._send_token_request(
            f"{self.base_url}/oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self._credentials.get("api_key"),
                "client_secret": self._credentials.get("api_secret"),
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = data.get("access_token")
        if not token:
            raise CarrierAuthError("FedEx authentication returned no access token")
        return token, int(data.get("expires_in") or 3600)

    async def _post(self, path: str, body: Dict[str, Any], operation: str) -> Dict[str, Any]:
        headers = await self._auth_headers()
        headers["X-locale"] = "en_US"
        response = await self._send(
            "POST", f"{self.base_url}{path}", operation, json=body, headers=headers
        )
        try:
            return response.json()
        except ValueError:
            raise CarrierResponseError(f"FedEx {operation} returned invalid JSON")

    # -------------------------------------------------------------------------
    # Payload builders
    # -------------------------------------------------------------------------

    @staticmethod
    def _address(address: Address, residential: bool = False) -> Dict[str, Any]:
        lines = [address.address_line1]
        if address.address_line2:
            lines.append(address.address_line2)
        body = {
            "streetLines": lines,
            "city": address.city,
            "stateOrProvinceCode": address.state,
            "postalCode": address.postal_code,
            "countryCode": address.country,
        }
        if residential:
            body["residential"] = True
        return body

    @staticmethod
    def _contact(address: Address, default_name: Optional[str] = None) -> Dict[str, Any]:
        contact = {
            "personName": address.name or default_name,
            "phoneNumber": address.phone or "0000000000",
        }
        if address.company:
            contact["companyName"] = address.company
        return contact

    @staticmethod
    def _line_item(pkg: Package, sequence: int) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "sequenceNumber": sequence,
            "weight": {"units": "LB", "value": pkg.weight},
        }
        if pkg.has_dimensions:
            item["dimensions"] = {
                "length": pkg.length,
                "width": pkg.width,
                "height": pkg.height,
                "units": "IN",
            }
        if pkg.insured_value:
            item["declaredValue"] = {"amount": pkg.insured_value, "currency": "USD"}
        return item

    def _build_rate_request(self, request: RateRequest) -> Dict[str, Any]:
        return {
            "accountNumber": {"value": self._credentials.get("account_number")},
            "requestedShipment": {
                "shipper": {"address": self._address(request.origin)},
                "recipient": {
                    "address": self._address(
                        request.destination, bool(request.destination.is_residential)
                    )
                },
                "pickupType": "USE_SCHEDULED_PICKUP",
                "rateRequestType": ["ACCOUNT", "LIST"],
                "requestedPackageLineItems": [
                    self._line_item(pkg, index + 1) for index, pkg in enumerate(request.packages)
                ],
            },
        }

    def _build_shipment_request(self, request: CreateShipmentRequest) -> Dict[str, Any]:
        line_items = [self._line_item(pkg, index + 1) for index, pkg in enumerate(request.packages)]
        if request.signature_required:
            for item in line_items:
                item["packageSpecialServices"] = {
                    "specialServiceTypes": ["SIGNATURE_OPTION"],
                    "signatureOptionType": "DIRECT",
                }

        shipment: Dict[str, Any] = {
            "shipper": {
                "contact": self._contact(request.origin),
                "address": self._address(request.origin),
            },
            "recipients": [{
                "contact": self._contact(request.destination, "Customer"),
                "address": self._address(
                    request.destination, bool(request.destination.is_residential)
                ),
            }],
            "shipDatestamp": utcnow().date().isoformat(),
            "serviceType": request.service_code,
            "packagingType": "YOUR_PACKAGING",
            "pickupType": "USE_SCHEDULED_PICKUP",
            "blockInsightVisibility": False,
            "shippingChargesPayment": {"paymentType": "SENDER"},
            "labelSpecification": {
                "imageType": "ZPLII" if request.label_format == "ZPL" else "PDF",
                "labelStockType": (
                    "PAPER_85X11_TOP_HALF_LABEL" if request.label_size == "8x11" else "PAPER_4X6"
                ),
            },
            "requestedPackageLineItems": line_items,
        }

        if request.saturday_delivery:
            shipment["shipmentSpecialServices"] = {"specialServiceTypes": ["SATURDAY_DELIVERY"]}

        if request.reference_number:
            for item in line_items:
                item["customerReferences"] = [{
                    "customerReferenceType": "CUSTOMER_REFERENCE",
                    "value": request.reference_number,
                }]

        customs = request.customs_declaration
        if customs and customs.items:
            shipment["customsClearanceDetail"] = {
                "dutiesPayment": {"paymentType": "SENDER"},
                "commodities": [
                    {
                        "description": item.description,
                        "quantity": item.quantity,
                        "quantityUnits": "PCS",
                        "weight": {"units": "LB", "value": item.weight},
                        "customsValue": {"amount": item.value, "currency": "USD"},
                        "countryOfManufacture": item.origin_country,
                        "harmonizedCode": item.hs_tariff_code,
                    }
                    for item in customs.items
                ],
            }
            if customs.eel_pfc:
                shipment["customsClearanceDetail"]["exportDetail"] = {
                    "exportComplianceStatement": customs.eel_pfc,
                }

        return {
            "labelResponseOptions": "LABEL",
            "requestedShipment": shipment,
            "accountNumber": {"value": self._credentials.get("account_number")},
        }

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def get_rates(self, request: RateRequest) -> List[ShippingRate]:
        data = await self._post("/rate/v1/rates/quotes", self._build_rate_request(request), "rate quote")
        rates = []

        for detail in (data.get("output") or {}).get("rateReplyDetails") or []:
            rated = (detail.get("ratedShipmentDetails") or [None])[0]
            if not rated:
                continue

            date_detail = (detail.get("commit") or {}).get("dateDetail") or {}
            transit_days = date_detail.get("transitDays")
            rates.append(ShippingRate(
                carrier=CarrierCode.FEDEX,
                service_name=get_service_name(detail.get("serviceType", "")),
                service_code=detail.get("serviceType", ""),
                rate=_to_float(rated.get("totalNetCharge")),
                currency=rated.get("currency") or "USD",
                retail_rate=_to_float(rated.get("totalBaseCharge")),
                delivery_days=int(transit_days) if str(transit_days or "").isdigit() else None,
                delivery_date=date_detail.get("dayFormat"),
                billable_weight=_to_float((rated.get("totalBillingWeight") or {}).get("value")),
            ))

        return rates

    async def create_shipment(self, request: CreateShipmentRequest) -> Shipment:
        data = await self._post("/ship/v1/shipments", self._build_shipment_request(request), "label creation")

        output = ((data.get("output") or {}).get("transactionShipments") or [None])[0] or {}
        piece = (output.get("pieceResponses") or [None])[0]
        if not piece or not piece.get("trackingNumber"):
            raise CarrierResponseError("FedEx shipment response missing piece details")

        documents = piece.get("packageDocuments") or [{}]
        logger.info(f"FedEx label issued for order {request.order_id}: {piece['trackingNumber']}")
        return Shipment(
            carrier=CarrierCode.FEDEX,
            service_code=request.service_code,
            service_name=get_service_name(request.service_code),
            tracking_number=piece["trackingNumber"],
            label_data=documents[0].get("encodedLabel"),
            label_format=request.label_format,
            rate=_to_float(
                (output.get("shipmentAdvisoryDetails") or {}).get("totalNetCharge")
                or piece.get("netChargeAmount")
            ),
            currency="USD",
            origin=request.origin,
            destination=request.destination,
            reference_number=request.reference_number,
            carrier_shipment_id=output.get("masterTrackingNumber"),
            metadata=request.metadata,
        )

    async def track_shipment(self, tracking_number: str) -> TrackingInfo:
        body = {
            "includeDetailedScans": True,
            "trackingInfo": [{"trackingNumberInfo": {"trackingNumber": tracking_number}}],
        }
        data = await self._post("/track/v1/trackingnumbers", body, "tracking")

        complete = ((data.get("output") or {}).get("completeTrackResults") or [None])[0] or {}
        result = (complete.get("trackResults") or [None])[0]
        if not result:
            raise CarrierResponseError("No tracking information found")

        events = []
        for scan in result.get("scanEvents") or []:
            location = scan.get("scanLocation") or {}
            events.append(TrackingEvent(
                timestamp=parse_datetime(scan.get("date")),
                status=scan.get("eventDescription") or "Unknown",
                description=scan.get("eventDescription") or "",
                location=f"{location['city']}, {location.get('stateOrProvinceCode', '')}" if location.get("city") else None,
                city=location.get("city"),
                state=location.get("stateOrProvinceCode"),
                postal_code=location.get("postalCode"),
                country=location.get("countryCode"),
            ))

        latest = result.get("latestStatusDetail") or {}
        delivery = result.get("deliveryDetails") or {}
        latest_location = latest.get("scanLocation") or {}
        return TrackingInfo(
            carrier=CarrierCode.FEDEX,
            tracking_number=tracking_number,
            status=map_tracking_status(latest.get("statusByLocale") or latest.get("code") or ""),
            events=events,
            estimated_delivery_date=parse_datetime(delivery.get("estimatedDeliveryTimestamp")),
            actual_delivery_date=parse_datetime(delivery.get("actualDeliveryTimestamp")),
            current_location=(
                f"{latest_location['city']}, {latest_location.get('stateOrProvinceCode', '')}"
                if latest_location.get("city") else None
            ),
        )

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://www.fedex.com/fedextrack/?trknbr={tracking_number}"
