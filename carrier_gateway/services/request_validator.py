"""
Shipping request validation

Turns untrusted request bodies into typed, sanitized requests before any
carrier is contacted. Every free-text value goes through sanitize_text.
Public methods return either the typed request or a ValidationError that
names the offending field; nothing is partially applied.
"""
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from carrier_gateway.core.config import settings
from carrier_gateway.models.shipping_config import CarrierCode
from carrier_gateway.modules.shipping.carriers.base import (
    Address,
    CreateShipmentRequest,
    CustomsDeclaration,
    CustomsItem,
    Package,
    RateRequest,
)
from carrier_gateway.services.results import ValidationError

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 1000
MAX_PACKAGE_WEIGHT = 150
MAX_PACKAGE_DIMENSION = 108
MAX_TRACKING_NUMBER_LENGTH = 50

LABEL_FORMATS = ("PDF", "PNG", "ZPL")
LABEL_SIZES = ("4x6", "8x11")

LABEL_REQUIRED_FIELDS = ("order_id", "carrier", "service_code", "destination", "packages")
ADDRESS_REQUIRED_FIELDS = ("address_line1", "city", "state", "postal_code", "country")

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_EVENT_HANDLER_RE = re.compile(r"""on\w+\s*=\s*["'][^"']*["']""", re.IGNORECASE)
_JS_URI_RE = re.compile(r"javascript\s*:", re.IGNORECASE)
_US_ZIP_RE = re.compile(r"^[0-9]{5}(-[0-9]{4})?$")
_TRACKING_NUMBER_RE = re.compile(r"^[A-Za-z0-9]+$")


class _Invalid(Exception):
    """Internal short-circuit; converted to ValidationError at the public methods."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


def sanitize_text(value: Any) -> str:
    """Strip markup and script content, trim, and cap length."""
    if value is None:
        return ""
    text = str(value)
    text = _SCRIPT_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    text = _EVENT_HANDLER_RE.sub("", text)
    text = _JS_URI_RE.sub("", text)
    return text.strip()[:MAX_FIELD_LENGTH]


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _to_number(value: Any) -> Optional[float]:
    """Finite float, or None when value is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _optional_text(value: Any) -> Optional[str]:
    if _is_blank(value):
        return None
    text = sanitize_text(value)
    return text or None


class RequestValidator:
    """Validates label, rate and tracking requests."""

    def __init__(self, max_packages: Optional[int] = None):
        self.max_packages = max_packages or settings.SHIPPING_MAX_PACKAGES

    # -------------------------------------------------------------------------
    # Public entry points
    # -------------------------------------------------------------------------

    def validate_label_request(
        self,
        body: Any,
        default_origin: Optional[Dict[str, Any]] = None,
    ) -> Union[CreateShipmentRequest, ValidationError]:
        """
        Validate a label-creation body.

        Args:
            body: decoded JSON body
            default_origin: ship-from address used when the body has none
        """
        try:
            return self._build_label_request(body, default_origin)
        except _Invalid as e:
            logger.info(f"Label request rejected: {e.message}")
            return ValidationError(e.message, field=e.field)

    def validate_rate_request(self, body: Any) -> Union[RateRequest, ValidationError]:
        try:
            return self._build_rate_request(body)
        except _Invalid as e:
            return ValidationError(e.message, field=e.field)

    def validate_tracking_request(
        self,
        carrier: Any,
        tracking_number: Any,
    ) -> Union[Tuple[CarrierCode, str], ValidationError]:
        if _is_blank(carrier) or _is_blank(tracking_number):
            return ValidationError("Missing required fields")

        if (
            not isinstance(tracking_number, str)
            or len(tracking_number) > MAX_TRACKING_NUMBER_LENGTH
            or not _TRACKING_NUMBER_RE.match(tracking_number)
        ):
            return ValidationError("Invalid tracking number format", field="tracking_number")

        try:
            code = CarrierCode.parse(carrier)
        except ValueError:
            return ValidationError("Invalid carrier", field="carrier")

        return code, tracking_number

    # -------------------------------------------------------------------------
    # Label
    # -------------------------------------------------------------------------

    def _build_label_request(
        self,
        body: Any,
        default_origin: Optional[Dict[str, Any]],
    ) -> CreateShipmentRequest:
        if not isinstance(body, dict):
            raise _Invalid("Invalid request payload")

        for name in LABEL_REQUIRED_FIELDS:
            if _is_blank(body.get(name)):
                raise _Invalid(f"Missing required field: {name}", name)

        packages = body.get("packages")
        if not isinstance(packages, list) or not packages:
            raise _Invalid("At least one package is required", "packages")

        try:
            carrier = CarrierCode.parse(body.get("carrier"))
        except ValueError:
            raise _Invalid("Invalid carrier", "carrier")

        order_id = sanitize_text(body["order_id"])
        service_code = sanitize_text(body["service_code"])
        if not order_id:
            raise _Invalid("Missing required field: order_id", "order_id")
        if not service_code:
            raise _Invalid("Missing required field: service_code", "service_code")

        label_format = self._normalize_label_format(body.get("label_format"))
        label_size = self._normalize_label_size(body.get("label_size"))
        origin = self._address("origin", body.get("origin") or default_origin)
        destination = self._address("destination", body.get("destination"))
        parsed_packages = self._packages(packages)
        metadata = self._metadata(body.get("metadata"))
        insurance_amount = self._insurance_amount(body.get("insurance_amount"))
        pickup_account = self._optional_string(body.get("pickup_account_number"), "pickup_account_number")
        billing_account = self._optional_string(body.get("billing_account_number"), "billing_account_number")
        customs = self._customs_declaration(body.get("customs_declaration"))

        reference_number = sanitize_text(body.get("reference_number") or body["order_id"])

        return CreateShipmentRequest(
            order_id=order_id,
            carrier=carrier,
            service_code=service_code,
            origin=origin,
            destination=destination,
            packages=parsed_packages,
            label_format=label_format,
            label_size=label_size,
            signature_required=bool(body.get("signature_required")),
            saturday_delivery=bool(body.get("saturday_delivery")),
            insurance_amount=insurance_amount,
            reference_number=reference_number,
            customs_declaration=customs,
            is_return_label=bool(body.get("is_return_label")),
            pickup_account_number=pickup_account,
            billing_account_number=billing_account,
            metadata=metadata,
        )

    @staticmethod
    def _normalize_label_format(value: Any) -> str:
        if not isinstance(value, str):
            return "PDF"
        normalized = value.upper()
        if normalized not in LABEL_FORMATS:
            raise _Invalid("Invalid label format", "label_format")
        return normalized

    @staticmethod
    def _normalize_label_size(value: Any) -> str:
        if not isinstance(value, str):
            return "4x6"
        normalized = value.lower()
        if normalized not in LABEL_SIZES:
            raise _Invalid("Invalid label size", "label_size")
        return normalized

    @staticmethod
    def _insurance_amount(value: Any) -> Optional[float]:
        if _is_blank(value):
            return None
        amount = _to_number(value)
        if amount is None or amount < 0:
            raise _Invalid("Invalid insurance amount", "insurance_amount")
        return amount

    @staticmethod
    def _metadata(value: Any) -> Optional[Dict[str, str]]:
        if value is None:
            return None
        if not isinstance(value, dict):
            raise _Invalid("Metadata must be a key-value object", "metadata")

        sanitized = {}
        for key, item in value.items():
            if not isinstance(item, str):
                raise _Invalid("Metadata values must be strings", "metadata")
            sanitized[sanitize_text(key)] = sanitize_text(item)
        return sanitized

    @staticmethod
    def _optional_string(value: Any, name: str) -> Optional[str]:
        if _is_blank(value):
            return None
        if not isinstance(value, str):
            raise _Invalid(f"Invalid value for {name}", name)
        return sanitize_text(value)

    @staticmethod
    def _customs_declaration(value: Any) -> Optional[CustomsDeclaration]:
        # Most domestic shipments carry none
        if not value or not isinstance(value, dict):
            return None

        items = []
        raw_items = value.get("items")
        if isinstance(raw_items, list):
            for index, item in enumerate(raw_items):
                if not isinstance(item, dict):
                    raise _Invalid(f"Invalid customs item at index {index}", "customs_declaration.items")
                quantity = _to_number(item.get("quantity"))
                items.append(CustomsItem(
                    description=_optional_text(item.get("description")),
                    quantity=int(quantity) if quantity is not None else 1,
                    value=_to_number(item.get("value")) or 0.0,
                    weight=_to_number(item.get("weight")) or 0.0,
                    origin_country=_optional_text(item.get("origin_country")),
                    hs_tariff_code=_optional_text(item.get("hs_tariff_code")),
                ))

        return CustomsDeclaration(
            contents_type=_optional_text(value.get("contents_type")),
            contents_explanation=_optional_text(value.get("contents_explanation")),
            non_delivery_option=_optional_text(value.get("non_delivery_option")),
            invoice_number=_optional_text(value.get("invoice_number")),
            eel_pfc=_optional_text(value.get("eel_pfc")),
            items=items,
        )

    # -------------------------------------------------------------------------
    # Shared address / package rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _address(kind: str, value: Any) -> Address:
        if not value:
            raise _Invalid(f"{kind} address is required", kind)
        if not isinstance(value, dict):
            raise _Invalid(f"Invalid {kind} address", kind)

        fields = {}
        for name in ADDRESS_REQUIRED_FIELDS:
            raw = value.get(name)
            if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
                text = ""
            else:
                text = sanitize_text(raw)
            if not text:
                raise _Invalid(f"Invalid {kind} {name.replace('_', ' ', 1)}", f"{kind}.{name}")
            fields[name] = text

        residential = value.get("is_residential")
        return Address(
            name=_optional_text(value.get("name")),
            company=_optional_text(value.get("company")),
            address_line2=_optional_text(value.get("address_line2")),
            phone=_optional_text(value.get("phone")),
            is_residential=bool(residential) if residential is not None else None,
            **fields,
        )

    def _packages(self, value: Any) -> List[Package]:
        if not isinstance(value, list) or not value:
            raise _Invalid("At least one package is required", "packages")
        if len(value) > self.max_packages:
            raise _Invalid(f"Maximum of {self.max_packages} packages allowed per shipment", "packages")

        packages = []
        for index, raw in enumerate(value):
            position = index + 1
            if not isinstance(raw, dict):
                raise _Invalid(f"Invalid package weight for package {position}", f"packages[{index}].weight")

            weight = _to_number(raw.get("weight"))
            if weight is None or weight <= 0 or weight > MAX_PACKAGE_WEIGHT:
                raise _Invalid(f"Invalid package weight for package {position}", f"packages[{index}].weight")

            dimensions = {}
            for key in ("length", "width", "height"):
                if _is_blank(raw.get(key)):
                    continue
                number = _to_number(raw.get(key))
                if number is None or number <= 0 or number > MAX_PACKAGE_DIMENSION:
                    raise _Invalid(f"Invalid package {key} for package {position}", f"packages[{index}].{key}")
                dimensions[key] = number

            insured_value = None
            if not _is_blank(raw.get("insured_value")):
                insured_value = _to_number(raw.get("insured_value"))
                if insured_value is None or insured_value < 0:
                    raise _Invalid(
                        f"Invalid insured value for package {position}", f"packages[{index}].insured_value"
                    )

            packages.append(Package(
                weight=weight,
                insured_value=insured_value,
                contents_type=_optional_text(raw.get("contents_type")),
                description=_optional_text(raw.get("description")),
                **dimensions,
            ))
        return packages

    # -------------------------------------------------------------------------
    # Rates
    # -------------------------------------------------------------------------

    def _build_rate_request(self, body: Any) -> RateRequest:
        if not isinstance(body, dict):
            raise _Invalid("Invalid request payload")

        packages = body.get("packages")
        if not body.get("origin") or not body.get("destination") or not packages:
            raise _Invalid("Missing required fields")

        origin = self._address("origin", body.get("origin"))
        destination = self._address("destination", body.get("destination"))
        parsed_packages = self._packages(packages)

        if destination.country == "US" and not _US_ZIP_RE.match(destination.postal_code):
            raise _Invalid("Invalid postal code format", "destination.postal_code")

        carriers = None
        if body.get("carriers") is not None:
            if not isinstance(body["carriers"], list):
                raise _Invalid("Invalid carrier", "carriers")
            try:
                carriers = [CarrierCode.parse(code) for code in body["carriers"]]
            except ValueError:
                raise _Invalid("Invalid carrier", "carriers")

        service_types = None
        if isinstance(body.get("service_types"), list):
            service_types = [sanitize_text(code) for code in body["service_types"] if isinstance(code, str)]

        return RateRequest(
            origin=origin,
            destination=destination,
            packages=parsed_packages,
            carriers=carriers,
            service_types=service_types,
        )
