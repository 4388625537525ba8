"""
USPS Carrier Implementation

USPS Web Tools XML API:
- RateV4 (domestic) and IntlRateV2 (international) rate quotes
- eVS label issuance
- TrackV2 tracking

Requests are XML documents passed in the XML query parameter; weights are
pounds + ounces rather than decimal pounds.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import xmltodict

from carrier_gateway.core.exceptions import CarrierAPIError, CarrierResponseError
from carrier_gateway.core.utils import utcnow
from carrier_gateway.models.shipping_config import CarrierCode
from carrier_gateway.modules.shipping.carriers import register_carrier
from carrier_gateway.modules.shipping.carriers.base import (
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
from carrier_gateway.services.encryption import sanitize_for_logging

logger = logging.getLogger(__name__)

USPS_API_URL = "https://secure.shippingapis.com/ShippingAPI.dll"
USPS_TEST_URL = "https://secure.shippingapis.com/ShippingAPITest.dll"

# Substring of MailService -> canonical service code (checked in order)
USPS_SERVICE_CODES = (
    ("Priority Mail Express", "PRIORITY_EXPRESS"),
    ("Priority Mail", "PRIORITY"),
    ("First-Class Package Service", "FIRST_CLASS"),
    ("Parcel Select Ground", "PARCEL_SELECT"),
    ("Media Mail", "MEDIA_MAIL"),
    ("Library Mail", "LIBRARY_MAIL"),
)

USPS_DELIVERY_DAYS = (
    ("Priority Mail Express", 1),
    ("Priority Mail", 2),
    ("First-Class", 3),
    ("Parcel Select", 5),
)

# Canonical service code -> eVS ServiceType
EVS_SERVICE_TYPES = {
    "PRIORITY_EXPRESS": "PRIORITY EXPRESS",
    "PRIORITY": "PRIORITY",
    "FIRST_CLASS": "FIRST CLASS",
    "PARCEL_SELECT": "PARCEL SELECT",
    "MEDIA_MAIL": "MEDIA MAIL",
    "LIBRARY_MAIL": "LIBRARY MAIL",
}


def split_weight(weight: float):
    """Decimal pounds -> (pounds, ounces)."""
    pounds = math.floor(weight)
    ounces = round((weight - pounds) * 16)
    return pounds, ounces


def determine_size(pkg: Package) -> str:
    """REGULAR / LARGE / OVERSIZE from length plus girth."""
    if not pkg.has_dimensions:
        return "REGULAR"

    girth = (pkg.width + pkg.height) * 2
    length_plus_girth = pkg.length + girth

    if length_plus_girth > 108:
        return "OVERSIZE"
    elif length_plus_girth > 84:
        return "LARGE"
    return "REGULAR"


def map_service_code(mail_service: str) -> str:
    for name, code in USPS_SERVICE_CODES:
        if name in mail_service:
            return code
    return "_".join(mail_service.upper().split())


def parse_delivery_days(service_name: str) -> Optional[int]:
    for name, days in USPS_DELIVERY_DAYS:
        if name in service_name:
            return days
    return None


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _num(value: Any) -> str:
    """Render a number without a trailing .0 for whole values."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _text(value: Any) -> str:
    # Elements carrying attributes parse to {"@attr": ..., "#text": ...}
    if isinstance(value, dict):
        return str(value.get("#text", ""))
    return "" if value is None else str(value)


@register_carrier(CarrierCode.USPS)
class USPSCarrier(BaseCarrier):
    """USPS Web Tools implementation."""

    carrier_name = "USPS"

    @property
    def api_url(self) -> str:
        return USPS_TEST_URL if self.sandbox else USPS_API_URL

    async def _call(self, api: str, document: Dict[str, Any], operation: str) -> Dict[str, Any]:
        """Send an XML document to one Web Tools API and parse the reply."""
        xml = xmltodict.unparse(document, full_document=False)
        response = await self._send(
            "GET", self.api_url, operation, params={"API": api, "XML": xml}
        )

        try:
            parsed = xmltodict.parse(response.text)
        except Exception as e:
            logger.error(f"USPS {operation} returned unparseable XML: {type(e).__name__}")
            raise CarrierResponseError(f"USPS {operation} returned invalid XML")

        if "Error" in parsed:
            error = parsed["Error"] or {}
            logger.error(
                f"USPS {operation} error {_text(error.get('Number'))}: "
                f"{sanitize_for_logging(_text(error.get('Description')))}"
            )
            raise CarrierAPIError(
                f"USPS {operation} failed",
                details={"carrier": "usps", "operation": operation, "number": _text(error.get("Number"))},
            )
        return parsed

    # -------------------------------------------------------------------------
    # Rates
    # -------------------------------------------------------------------------

    def _build_domestic_rate_request(self, request: RateRequest) -> Dict[str, Any]:
        packages = []
        for index, pkg in enumerate(request.packages):
            pounds, ounces = split_weight(pkg.weight)
            element = {
                "@ID": str(index),
                "Service": "ALL",
                "ZipOrigination": request.origin.postal_code,
                "ZipDestination": request.destination.postal_code,
                "Pounds": str(pounds),
                "Ounces": str(ounces),
                "Container": "VARIABLE",
                "Size": determine_size(pkg),
            }
            if pkg.has_dimensions:
                element.update({
                    "Width": _num(pkg.width),
                    "Length": _num(pkg.length),
                    "Height": _num(pkg.height),
                })
            packages.append(element)

        return {"RateV4Request": {"@USERID": self._credentials.get("user_id"), "Package": packages}}

    def _build_international_rate_request(self, request: RateRequest) -> Dict[str, Any]:
        packages = []
        for index, pkg in enumerate(request.packages):
            pounds, ounces = split_weight(pkg.weight)
            element = {
                "@ID": str(index),
                "Pounds": str(pounds),
                "Ounces": str(ounces),
                "MailType": "Package",
                "GXG": {"POBoxFlag": "N", "GiftFlag": "N"},
                "ValueOfContents": _num(pkg.insured_value or 0),
                "Country": request.destination.country,
                "Container": "RECTANGULAR",
                "Size": determine_size(pkg),
            }
            if pkg.has_dimensions:
                element.update({
                    "Width": _num(pkg.width),
                    "Length": _num(pkg.length),
                    "Height": _num(pkg.height),
                    "Girth": _num((pkg.width + pkg.height) * 2),
                })
            element["OriginZip"] = request.origin.postal_code
            packages.append(element)

        return {"IntlRateV2Request": {"@USERID": self._credentials.get("user_id"), "Package": packages}}

    async def get_rates(self, request: RateRequest) -> List[ShippingRate]:
        if request.origin.is_us and request.destination.is_us:
            return await self._get_domestic_rates(request)
        return await self._get_international_rates(request)

    async def _get_domestic_rates(self, request: RateRequest) -> List[ShippingRate]:
        parsed = await self._call("RateV4", self._build_domestic_rate_request(request), "rate quote")
        rates = []

        for pkg in _as_list((parsed.get("RateV4Response") or {}).get("Package")):
            if "Error" in pkg:
                # One bad package does not sink the batch
                continue
            for postage in _as_list(pkg.get("Postage")):
                mail_service = _text(postage.get("MailService"))
                rates.append(ShippingRate(
                    carrier=CarrierCode.USPS,
                    service_name=f"USPS {mail_service}",
                    service_code=map_service_code(mail_service),
                    rate=float(postage.get("Rate") or 0),
                    currency="USD",
                    retail_rate=float(postage["Rate"]) if postage.get("CommercialRate") else None,
                    delivery_days=parse_delivery_days(mail_service),
                ))

        return rates

    async def _get_international_rates(self, request: RateRequest) -> List[ShippingRate]:
        parsed = await self._call("IntlRateV2", self._build_international_rate_request(request), "rate quote")
        rates = []

        for pkg in _as_list((parsed.get("IntlRateV2Response") or {}).get("Package")):
            if "Error" in pkg:
                continue
            for service in _as_list(pkg.get("Service")):
                description = _text(service.get("SvcDescription"))
                rates.append(ShippingRate(
                    carrier=CarrierCode.USPS,
                    service_name=f"USPS {description}",
                    service_code=str(service.get("@ID", "")),
                    rate=float(service.get("Postage") or 0),
                    currency="USD",
                    retail_rate=float(service["Postage"]) if service.get("CommercialPostage") else None,
                    delivery_days=parse_delivery_days(description),
                ))

        return rates

    # -------------------------------------------------------------------------
    # Labels (eVS)
    # -------------------------------------------------------------------------

    def _build_label_request(self, request: CreateShipmentRequest) -> Dict[str, Any]:
        origin, destination = request.origin, request.destination
        # eVS issues one label per request; multi-package shipments go out as one piece
        first = request.packages[0]
        weight_oz = round(sum(pkg.weight for pkg in request.packages) * 16)

        document = {
            "@USERID": self._credentials.get("user_id"),
            "@PASSWORD": self._credentials.get("password"),
            "Option": None,
            "Revision": "1",
            "ImageParameters": {"ImageParameter": "4X6LABEL"} if request.label_size == "4x6" else None,
            "FromName": origin.name or "",
            "FromFirm": origin.company or "",
            "FromAddress1": origin.address_line2 or "",
            "FromAddress2": origin.address_line1,
            "FromCity": origin.city,
            "FromState": origin.state,
            "FromZip5": origin.postal_code[:5],
            "FromZip4": None,
            "FromPhone": origin.phone or "",
            "ToName": destination.name or "",
            "ToFirm": destination.company or "",
            "ToAddress1": destination.address_line2 or "",
            "ToAddress2": destination.address_line1,
            "ToCity": destination.city,
            "ToState": destination.state,
            "ToZip5": destination.postal_code[:5],
            "ToZip4": None,
            "ToPhone": destination.phone or "",
            "WeightInOunces": str(weight_oz),
            "ServiceType": EVS_SERVICE_TYPES.get(
                request.service_code, request.service_code.replace("_", " ")
            ),
            "Container": "VARIABLE",
            "Width": _num(first.width) if first.has_dimensions else None,
            "Length": _num(first.length) if first.has_dimensions else None,
            "Height": _num(first.height) if first.has_dimensions else None,
            "CustomerRefNo": request.reference_number or request.order_id,
            "InsuredAmount": _num(request.insurance_amount) if request.insurance_amount else None,
            "ImageType": "PDF",
            "HoldForManifest": "N",
        }
        return {"eVSRequest": document}

    async def create_shipment(self, request: CreateShipmentRequest) -> Shipment:
        parsed = await self._call("eVS", self._build_label_request(request), "label creation")
        reply = parsed.get("eVSResponse") or {}

        tracking_number = _text(reply.get("BarcodeNumber"))
        if not tracking_number:
            raise CarrierResponseError("USPS label response missing tracking number")

        logger.info(f"USPS label issued for order {request.order_id}: {tracking_number}")
        return Shipment(
            carrier=CarrierCode.USPS,
            service_code=request.service_code,
            service_name=f"USPS {EVS_SERVICE_TYPES.get(request.service_code, request.service_code).title()}",
            tracking_number=tracking_number,
            label_data=_text(reply.get("LabelImage")) or None,
            label_format="PDF",
            rate=float(_text(reply.get("Postage")) or 0),
            currency="USD",
            origin=request.origin,
            destination=request.destination,
            reference_number=request.reference_number,
            metadata=request.metadata,
        )

    # -------------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------------

    async def track_shipment(self, tracking_number: str) -> TrackingInfo:
        document = {
            "TrackRequest": {
                "@USERID": self._credentials.get("user_id"),
                "TrackID": {"@ID": tracking_number},
            }
        }
        parsed = await self._call("TrackV2", document, "tracking")

        info = (parsed.get("TrackResponse") or {}).get("TrackInfo")
        if not isinstance(info, dict):
            raise CarrierResponseError("Tracking information not available")
        if "Error" in info:
            raise CarrierAPIError(
                "USPS tracking failed",
                details={"carrier": "usps", "operation": "tracking"},
            )

        events = []
        if info.get("TrackSummary"):
            events.append(self._parse_event(info["TrackSummary"]))
        for detail in _as_list(info.get("TrackDetail")):
            events.append(self._parse_event(detail))

        status_text = _text(info.get("Status") or info.get("StatusSummary"))
        if not status_text and events:
            status_text = events[0].description

        return TrackingInfo(
            carrier=CarrierCode.USPS,
            tracking_number=tracking_number,
            status=map_tracking_status(status_text),
            events=events,
            estimated_delivery_date=self._parse_expected_date(info.get("ExpectedDeliveryDate")),
        )

    def _parse_event(self, event: Any) -> TrackingEvent:
        # Basic TrackV2 replies carry summaries as plain sentences
        if not isinstance(event, dict):
            text = _text(event)
            return TrackingEvent(timestamp=utcnow(), status=text, description=text)

        city = event.get("EventCity")
        state = event.get("EventState")
        zip_code = event.get("EventZIPCode")
        return TrackingEvent(
            timestamp=self._parse_event_time(event.get("EventDate"), event.get("EventTime")),
            status=_text(event.get("Event") or event.get("EventCode") or "Unknown"),
            description=_text(event.get("EventSummary") or event.get("Event")),
            location=f"{city}, {state} {zip_code or ''}".strip() if city else None,
            city=city,
            state=state,
            postal_code=zip_code,
            country=event.get("EventCountry") or "US",
        )

    @staticmethod
    def _parse_event_time(date: Optional[str], time: Optional[str]) -> datetime:
        if date and time:
            try:
                parsed = datetime.strptime(f"{date} {time}", "%B %d, %Y %I:%M %p")
                return parsed.replace(tzinfo=timezone.utc)
            except ValueError:
                pass
        return utcnow()

    @staticmethod
    def _parse_expected_date(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.strptime(value, "%B %d, %Y").replace(tzinfo=timezone.utc)
        except ValueError:
            return None

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://tools.usps.com/go/TrackConfirmAction?tLabels={tracking_number}"
