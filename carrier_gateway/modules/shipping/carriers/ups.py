"""
UPS Carrier Implementation

UPS REST API (OAuth 2.0, client credentials presented with Basic auth):
- /api/rating/v1/Rate (Shop)
- /api/shipments/v1/ship
- /api/track/v1/details/{tracking_number}
"""
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from carrier_gateway.core.exceptions import CarrierAuthError, CarrierResponseError
from carrier_gateway.models.shipment import ShipmentStatus
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

UPS_API_URL = "https://wwwcie.ups.com"
UPS_API_URL_PROD = "https://onlinetools.ups.com"

OAUTH_TOKEN_PATH = "/security/v1/oauth/token"
RATING_PATH = "/api/rating/v1/Rate"
SHIPPING_PATH = "/api/shipments/v1/ship"
TRACKING_PATH = "/api/track/v1/details"

UPS_SERVICE_NAMES = {
    "01": "UPS Next Day Air",
    "02": "UPS 2nd Day Air",
    "03": "UPS Ground",
    "07": "UPS Worldwide Express",
    "08": "UPS Worldwide Expedited",
    "11": "UPS Standard",
    "12": "UPS 3 Day Select",
    "13": "UPS Next Day Air Saver",
    "14": "UPS Next Day Air Early",
    "54": "UPS Worldwide Express Plus",
    "59": "UPS 2nd Day Air AM",
    "65": "UPS Express Saver",
    "96": "UPS Worldwide Express Freight",
}

UPS_DELIVERY_DAYS = {
    "01": 1,  # Next Day Air
    "13": 1,  # Next Day Air Saver
    "14": 1,  # Next Day Air Early
    "02": 2,  # 2nd Day Air
    "59": 2,  # 2nd Day Air AM
    "12": 3,  # 3 Day Select
    "03": 5,  # Ground
}

# UPS activity status type -> canonical status
UPS_STATUS_TYPES = {
    "D": ShipmentStatus.DELIVERED,
    "I": ShipmentStatus.IN_TRANSIT,
    "M": ShipmentStatus.IN_TRANSIT,
    "P": ShipmentStatus.IN_TRANSIT,
    "X": ShipmentStatus.EXCEPTION,
}


def get_service_name(code: str) -> str:
    return UPS_SERVICE_NAMES.get(code, f"UPS Service {code}")


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _parse_ups_time(date_str: Optional[str], time_str: Optional[str] = None) -> Optional[datetime]:
    if not date_str:
        return None
    try:
        return datetime.strptime(
            f"{date_str} {time_str or '000000'}",
            "%Y%m%d %H%M%S"
        ).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


@register_carrier(CarrierCode.UPS)
class UPSCarrier(OAuthCarrier):
    """UPS REST implementation."""

    carrier_name = "UPS"

    @property
    def base_url(self) -> str:
        return UPS_API_URL if self.sandbox else UPS_API_URL_PROD

    async def _request_token(self) -> Tuple[str, int]:
        auth_string = f"{self._credentials.get('client_id')}:{self._credentials.get('client_secret')}"
        auth_header = base64.b64encode(auth_string.encode()).decode()

        data = await self._send_token_request(
            f"{self.base_url}{OAUTH_TOKEN_PATH}",
            headers={
                "Authorization": f"Basic {auth_header}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data={"grant_type": "client_credentials"},
        )
        token = data.get("access_token")
        if not token:
            raise CarrierAuthError("UPS authentication returned no access token")
        return token, int(data.get("expires_in") or 3600)

    async def _make_request(
        self,
        method: str,
        path: str,
        operation: str,
        data: Optional[Dict] = None,
    ) -> Dict:
        """Make authenticated API request."""
        headers = await self._auth_headers()
        headers.update({
            "Content-Type": "application/json",
            "transId": f"cg_{datetime.now().strftime('%Y%m%d%H%M%S%f')}",
            "transactionSrc": "CarrierGateway",
        })

        response = await self._send(
            method, f"{self.base_url}{path}", operation, headers=headers, json=data
        )
        logger.debug(f"UPS API {method} {path} -> {response.status_code}")
        try:
            return response.json()
        except ValueError:
            raise CarrierResponseError(f"UPS {operation} returned invalid JSON")

    # -------------------------------------------------------------------------
    # Payload builders
    # -------------------------------------------------------------------------

    @staticmethod
    def _address(address: Address, residential: Optional[bool] = None) -> Dict[str, Any]:
        lines = [address.address_line1]
        if address.address_line2:
            lines.append(address.address_line2)
        body = {
            "AddressLine": lines,
            "City": address.city,
            "StateProvinceCode": address.state,
            "PostalCode": address.postal_code,
            "CountryCode": address.country,
        }
        if residential is not None:
            body["ResidentialAddressIndicator"] = "Y" if residential else "N"
        return body

    @staticmethod
    def _package(pkg: Package, packaging_key: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            packaging_key: {"Code": "02"},  # Customer supplied package
            "PackageWeight": {
                "UnitOfMeasurement": {"Code": "LBS"},
                "Weight": str(pkg.weight),
            },
        }
        if pkg.has_dimensions:
            body["Dimensions"] = {
                "UnitOfMeasurement": {"Code": "IN"},
                "Length": str(pkg.length),
                "Width": str(pkg.width),
                "Height": str(pkg.height),
            }
        return body

    def _parties(self, origin: Address, destination: Address, residential: Optional[bool]) -> Dict[str, Any]:
        shipper_name = origin.company or origin.name or "Shipper"
        return {
            "Shipper": {
                "Name": shipper_name,
                "ShipperNumber": self._credentials.get("account_number"),
                "Address": self._address(origin),
            },
            "ShipTo": {
                "Name": destination.name or "Customer",
                "Address": self._address(destination, residential),
            },
            "ShipFrom": {
                "Name": shipper_name,
                "Address": self._address(origin),
            },
        }

    def _build_rate_request(self, request: RateRequest) -> Dict[str, Any]:
        packages = [self._package(pkg, "PackagingType") for pkg in request.packages]
        shipment = self._parties(
            request.origin, request.destination, bool(request.destination.is_residential)
        )
        shipment["Package"] = packages if len(packages) > 1 else packages[0]

        return {
            "RateRequest": {
                "Request": {
                    "SubVersion": "1703",
                    "RequestOption": "Shop",
                    "TransactionReference": {"CustomerContext": "Carrier Gateway Rating"},
                },
                "Shipment": shipment,
            }
        }

    def _build_shipment_request(self, request: CreateShipmentRequest) -> Dict[str, Any]:
        packages = [self._package(pkg, "Packaging") for pkg in request.packages]
        shipment = self._parties(request.origin, request.destination, None)
        shipment.update({
            "Description": "Merchandise",
            "PaymentInformation": {
                "ShipmentCharge": {
                    "Type": "01",  # Transportation
                    "BillShipper": {
                        "AccountNumber": request.billing_account_number
                        or self._credentials.get("account_number"),
                    },
                },
            },
            "Service": {"Code": request.service_code},
            "Package": packages if len(packages) > 1 else packages[0],
        })

        options: Dict[str, Any] = {}
        if request.saturday_delivery:
            options["SaturdayDeliveryIndicator"] = ""
        if request.signature_required:
            options["DeliveryConfirmation"] = {"DCISType": "1"}
        if options:
            shipment["ShipmentServiceOptions"] = options

        if request.reference_number:
            shipment["ReferenceNumber"] = {"Value": request.reference_number[:35]}

        return {
            "ShipmentRequest": {
                "Request": {
                    "SubVersion": "1703",
                    "TransactionReference": {
                        "CustomerContext": request.reference_number or "Carrier Gateway Shipment",
                    },
                },
                "Shipment": shipment,
                "LabelSpecification": {
                    "LabelImageFormat": {"Code": "ZPL" if request.label_format == "ZPL" else "GIF"},
                    "HTTPUserAgent": "Mozilla/5.0",
                    "LabelStockSize": {
                        "Height": "11" if request.label_size == "8x11" else "6",
                        "Width": "8" if request.label_size == "8x11" else "4",
                    },
                },
            }
        }

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def get_rates(self, request: RateRequest) -> List[ShippingRate]:
        response = await self._make_request("POST", RATING_PATH, "rate quote", self._build_rate_request(request))

        rated_shipments = (response.get("RateResponse") or {}).get("RatedShipment") or []
        if isinstance(rated_shipments, dict):
            rated_shipments = [rated_shipments]

        rates = []
        for rated in rated_shipments:
            service_code = (rated.get("Service") or {}).get("Code", "")
            total = rated.get("TotalCharges") or {}
            negotiated = (rated.get("NegotiatedRateCharges") or {}).get("TotalCharge") or {}
            rates.append(ShippingRate(
                carrier=CarrierCode.UPS,
                service_name=get_service_name(service_code),
                service_code=service_code,
                rate=_to_float(total.get("MonetaryValue")),
                currency=total.get("CurrencyCode") or "USD",
                retail_rate=_to_float(negotiated.get("MonetaryValue")) or None,
                delivery_days=UPS_DELIVERY_DAYS.get(service_code),
                billable_weight=_to_float((rated.get("BillingWeight") or {}).get("Weight")) or None,
            ))

        return rates

    async def create_shipment(self, request: CreateShipmentRequest) -> Shipment:
        response = await self._make_request(
            "POST", SHIPPING_PATH, "label creation", self._build_shipment_request(request)
        )

        results = (response.get("ShipmentResponse") or {}).get("ShipmentResults") or {}
        package_results = results.get("PackageResults") or {}
        if isinstance(package_results, list):
            package_results = package_results[0] if package_results else {}

        tracking_number = package_results.get("TrackingNumber")
        if not tracking_number:
            raise CarrierResponseError("UPS shipment response missing tracking number")

        charges = (results.get("ShipmentCharges") or {}).get("TotalCharges") or {}
        label_format = "ZPL" if request.label_format == "ZPL" else "GIF"

        logger.info(f"UPS label issued for order {request.order_id}: {tracking_number}")
        return Shipment(
            carrier=CarrierCode.UPS,
            service_code=request.service_code,
            service_name=get_service_name(request.service_code),
            tracking_number=tracking_number,
            label_data=(package_results.get("ShippingLabel") or {}).get("GraphicImage"),
            label_format=label_format,
            rate=_to_float(charges.get("MonetaryValue")),
            currency=charges.get("CurrencyCode") or "USD",
            origin=request.origin,
            destination=request.destination,
            reference_number=request.reference_number,
            carrier_shipment_id=results.get("ShipmentIdentificationNumber"),
            metadata=request.metadata,
        )

    async def track_shipment(self, tracking_number: str) -> TrackingInfo:
        response = await self._make_request("GET", f"{TRACKING_PATH}/{tracking_number}", "tracking")

        shipments = (response.get("trackResponse") or {}).get("shipment") or []
        if not shipments:
            raise CarrierResponseError("No tracking information found")

        pkg = (shipments[0].get("package") or [{}])[0]
        activities = pkg.get("activity") or []

        events = []
        for activity in activities:
            status_info = activity.get("status") or {}
            location = (activity.get("location") or {}).get("address") or {}
            events.append(TrackingEvent(
                timestamp=_parse_ups_time(activity.get("date"), activity.get("time")),
                status=status_info.get("description") or "Unknown",
                description=status_info.get("description") or "",
                location=f"{location['city']}, {location.get('stateProvince', '')}" if location.get("city") else None,
                city=location.get("city"),
                state=location.get("stateProvince"),
                postal_code=location.get("postalCode"),
                country=location.get("countryCode") or location.get("country"),
            ))

        latest = activities[0] if activities else {}
        latest_status = latest.get("status") or {}
        status = UPS_STATUS_TYPES.get(latest_status.get("type", "")) or map_tracking_status(
            latest_status.get("description")
        )
        latest_location = (latest.get("location") or {}).get("address") or {}
        delivery_date = (pkg.get("deliveryDate") or [{}])[0]

        return TrackingInfo(
            carrier=CarrierCode.UPS,
            tracking_number=tracking_number,
            status=status,
            events=events,
            estimated_delivery_date=_parse_ups_time(delivery_date.get("date")),
            actual_delivery_date=(
                _parse_ups_time(latest.get("date"), latest.get("time"))
                if latest_status.get("type") == "D" else None
            ),
            current_location=(
                f"{latest_location['city']}, {latest_location.get('stateProvince', '')}"
                if latest_location.get("city") else None
            ),
        )

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://www.ups.com/track?tracknum={tracking_number}"
