"""
Canada Post Carrier Implementation

Shipment (label) creation and tracking over the Canada Post XML web
services with Basic auth. The rate service needs separate certification,
so rate quoting returns nothing.
"""
import base64
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import xmltodict

from carrier_gateway.core.exceptions import CarrierResponseError
from carrier_gateway.core.utils import parse_datetime
from carrier_gateway.models.shipping_config import CarrierCode
from carrier_gateway.modules.shipping.carriers import register_carrier
from carrier_gateway.modules.shipping.carriers.base import (
    Address,
    BaseCarrier,
    CreateShipmentRequest,
    Package,
    RateRequest,
    Shipment,
    ShippingRate,
    TrackingEvent,
    TrackingInfo,
)
from carrier_gateway.modules.shipping.tracking import map_tracking_status

logger = logging.getLogger(__name__)

CANADAPOST_BASE_URL = "https://ct.soa-gw.canadapost.ca"
CANADAPOST_BASE_URL_PROD = "https://soa-gw.canadapost.ca"

SHIPMENT_MEDIA_TYPE = "application/vnd.cpc.shipment-v8+xml"
TRACK_MEDIA_TYPE = "application/vnd.cpc.track-v2+xml"
SHIPMENT_NAMESPACE = "http://www.canadapost.ca/ws/shipment-v8"

CANADAPOST_SERVICE_CODES = {
    "EXPEDITED_PARCEL": "DOM.EP",
    "XPRESSPOST": "DOM.XP",
    "PRIORITY": "DOM.PC",
    "REGULAR_PARCEL": "DOM.RP",
    "XPRESSPOST_USA": "USA.XP",
    "EXPEDITED_PARCEL_USA": "USA.EP",
    "XPRESSPOST_INTL": "INT.XP",
}

CANADAPOST_SERVICE_NAMES = {
    "DOM.EP": "Expedited Parcel",
    "DOM.XP": "Xpresspost",
    "DOM.PC": "Priority",
    "DOM.RP": "Regular Parcel",
    "USA.EP": "Expedited Parcel USA",
    "USA.XP": "Xpresspost USA",
    "INT.XP": "Xpresspost International",
}


def map_service_code(code: str) -> str:
    normalized = code.upper()
    return CANADAPOST_SERVICE_CODES.get(normalized, normalized)


def get_service_name(code: str) -> str:
    normalized = code.upper()
    return CANADAPOST_SERVICE_NAMES.get(normalized, f"Canada Post {normalized}")


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _text(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("#text")
    return value


@register_carrier(CarrierCode.CANADA_POST)
class CanadaPostCarrier(BaseCarrier):
    """Canada Post implementation."""

    carrier_name = "Canada Post"

    @property
    def base_url(self) -> str:
        return CANADAPOST_BASE_URL if self.sandbox else CANADAPOST_BASE_URL_PROD

    @property
    def mailed_by(self) -> str:
        return self._credentials.get("contract_id") or self._credentials.get("customer_number")

    def _auth_header(self) -> str:
        pair = f"{self._credentials.get('username')}:{self._credentials.get('password')}"
        return f"Basic {base64.b64encode(pair.encode()).decode()}"

    def _parse_xml(self, text: str, operation: str) -> Dict[str, Any]:
        try:
            return xmltodict.parse(text)
        except Exception as e:
            logger.error(f"Canada Post {operation} returned unparseable XML: {type(e).__name__}")
            raise CarrierResponseError(f"Canada Post {operation} returned invalid XML")

    # -------------------------------------------------------------------------
    # Payload builders
    # -------------------------------------------------------------------------

    @staticmethod
    def _map_party(address: Address, default_name: str) -> Dict[str, Any]:
        postal = {
            "address-line-1": address.address_line1,
            "address-line-2": address.address_line2,
            "city": address.city,
            "province": address.state,
            "postal-code": address.postal_code,
            "country": address.country,
        }
        return {
            "name": address.name or address.company or default_name,
            "company": address.company or "",
            "contact-phone": address.phone or "0000000000",
            "address": {k: v for k, v in postal.items() if v},
        }

    @staticmethod
    def _map_package(pkg: Package) -> Dict[str, Any]:
        weight = max(pkg.weight or 0, 0.1)
        body: Dict[str, Any] = {
            "weight": f"{weight:.2f}",
            "weight-unit": "lb",
        }
        if pkg.has_dimensions:
            body["dimensions"] = {
                "length": f"{pkg.length:.2f}",
                "width": f"{pkg.width:.2f}",
                "height": f"{pkg.height:.2f}",
                "dimension-unit": "in",
            }
        return body

    @staticmethod
    def _build_options(request: CreateShipmentRequest) -> Optional[Dict[str, Any]]:
        options = []
        if request.signature_required:
            options.append({"option-code": "SO"})
        if request.saturday_delivery:
            options.append({"option-code": "SD"})
        if request.insurance_amount and request.insurance_amount > 0:
            options.append({
                "option-code": "COV",
                "option-amount": {
                    "amount": f"{request.insurance_amount:.2f}",
                    "currency": "CAD",
                },
            })
        return {"option": options} if options else None

    def _build_shipment_request(self, request: CreateShipmentRequest) -> str:
        sender = request.destination if request.is_return_label else request.origin
        recipient = request.origin if request.is_return_label else request.destination

        spec: Dict[str, Any] = {
            "service-code": map_service_code(request.service_code),
            "sender": self._map_party(sender, "Sender"),
            "destination": self._map_party(recipient, "Recipient"),
            "parcel-characteristics": self._map_package(request.packages[0]),
        }
        options = self._build_options(request)
        if options:
            spec["options"] = options

        notification_email = (request.metadata or {}).get("notification_email")
        if notification_email:
            spec["notification"] = {
                "email": notification_email,
                "on-shipment": "true",
                "on-exception": "true",
            }
        if request.reference_number:
            spec["references"] = {"customer-reference": request.reference_number}

        contract_id = self._credentials.get("contract_id")
        if contract_id:
            spec["settlement-info"] = {
                "contract-id": contract_id,
                "intended-method-of-payment": "Account",
            }

        document = {
            "shipment": {
                "@xmlns": SHIPMENT_NAMESPACE,
                "customer-request-id": request.reference_number or str(uuid.uuid4()),
                "pickup-indicator": "false" if request.is_return_label else "true",
                "delivery-spec": spec,
            }
        }
        return xmltodict.unparse(document)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def get_rates(self, request: RateRequest) -> List[ShippingRate]:
        return []

    async def create_shipment(self, request: CreateShipmentRequest) -> Shipment:
        customer_number = self._credentials.get("customer_number")
        response = await self._send(
            "POST",
            f"{self.base_url}/rs/{self.mailed_by}/{customer_number}/shipment",
            "label creation",
            content=self._build_shipment_request(request).encode(),
            headers={
                "Authorization": self._auth_header(),
                "Content-Type": SHIPMENT_MEDIA_TYPE,
                "Accept": SHIPMENT_MEDIA_TYPE,
            },
        )

        info = self._parse_xml(response.text, "label creation").get("shipment-info")
        if not isinstance(info, dict):
            raise CarrierResponseError("Invalid Canada Post shipment response")

        tracking_number = _text(info.get("tracking-pin"))
        links = _as_list((info.get("links") or {}).get("link"))
        label_link = next((link for link in links if link.get("@rel") == "label"), None)
        if not tracking_number or not label_link or not label_link.get("@href"):
            raise CarrierResponseError("Canada Post response missing tracking number or label link")

        label_data = await self._fetch_label(label_link["@href"])
        due = (info.get("shipment-price") or {}).get("due") or {}
        if not isinstance(due, dict):
            due = {"amount": due}

        logger.info(f"Canada Post label issued for order {request.order_id}: {tracking_number}")
        return Shipment(
            carrier=CarrierCode.CANADA_POST,
            service_code=request.service_code,
            service_name=get_service_name(map_service_code(request.service_code)),
            tracking_number=tracking_number,
            label_data=label_data,
            label_format="PDF",
            rate=float(_text(due.get("amount")) or 0),
            currency=_text(due.get("currency")) or "CAD",
            origin=request.origin,
            destination=request.destination,
            reference_number=request.reference_number,
            carrier_shipment_id=_text(info.get("shipment-id")),
            metadata=request.metadata,
        )

    async def _fetch_label(self, url: str) -> str:
        """Download the label PDF and return it base64 encoded."""
        response = await self._send(
            "GET",
            url,
            "label download",
            headers={"Authorization": self._auth_header(), "Accept": "application/pdf"},
        )
        return base64.b64encode(response.content).decode()

    async def track_shipment(self, tracking_number: str) -> TrackingInfo:
        response = await self._send(
            "GET",
            f"{self.base_url}/rs/{self.mailed_by}/track/pin/{quote(tracking_number, safe='')}",
            "tracking",
            headers={"Authorization": self._auth_header(), "Accept": TRACK_MEDIA_TYPE},
        )

        data = self._parse_xml(response.text, "tracking")
        details = data.get("tracking-detail") or data.get("track-detail")
        if not isinstance(details, dict):
            raise CarrierResponseError("Invalid Canada Post tracking response")

        raw_events = (
            _as_list((details.get("significant-events") or {}).get("occurrence"))
            or _as_list((details.get("events") or {}).get("event"))
            or _as_list(details.get("event"))
        )
        events = [self._parse_event(event) for event in raw_events if event]

        status_text = (
            details.get("event-description")
            or details.get("status-description")
            or (events[0].description if events else "")
        )
        return TrackingInfo(
            carrier=CarrierCode.CANADA_POST,
            tracking_number=tracking_number,
            status=map_tracking_status(status_text),
            events=events,
            estimated_delivery_date=parse_datetime(details.get("expected-delivery-date")),
            actual_delivery_date=parse_datetime(details.get("actual-delivery-date")),
            current_location=details.get("event-location") or (events[0].location if events else None),
        )

    @staticmethod
    def _parse_event(event: Dict[str, Any]) -> TrackingEvent:
        if event.get("event-date"):
            timestamp = parse_datetime(f"{event['event-date']}T{event.get('event-time') or '00:00:00'}")
        else:
            timestamp = parse_datetime(event.get("datetime"))
        city = event.get("event-site") or event.get("city")
        description = event.get("event-description") or event.get("description") or "Shipment update"
        return TrackingEvent(
            timestamp=timestamp,
            status=description,
            description=description,
            location=event.get("location") or city,
            city=city,
            state=event.get("event-province") or event.get("province"),
            postal_code=event.get("postal-code"),
            country=event.get("country"),
        )

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://www.canadapost-postescanada.ca/track-reperage/en#/details/{tracking_number}"
