"""
Shipping Orchestrator

The single entry point the HTTP layer talks to. Each operation runs one
sequential chain (authorize, validate, gate on configuration, pick the
adapter, call the carrier, persist) and returns a tagged result. Carrier
exceptions are logged here with full detail and converted to generic,
operation-specific messages; nothing raised inside the shipping module
reaches the routes.
"""
import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from carrier_gateway.core.exceptions import (
    CarrierAuthError,
    CarrierConfigError,
    CarrierTimeoutError,
    ShippingGatewayError,
)
from carrier_gateway.core.utils import parse_datetime
from carrier_gateway.models.shipment import ShipmentRecord, ShipmentStatus
from carrier_gateway.models.shipping_config import CarrierCode, ShippingConfig
from carrier_gateway.modules.shipping.carriers import CarrierPool, carrier_pool
from carrier_gateway.modules.shipping.carriers.base import Package, RateRequest, ShippingRate
from carrier_gateway.schemas.shipping import (
    CarrierErrorEntry,
    RateListResponse,
    ShipmentListResponse,
    ShipmentResponse,
    ShippingRateResponse,
    TrackingResponse,
)
from carrier_gateway.services.request_validator import RequestValidator
from carrier_gateway.services.results import (
    CarrierAuthFailure,
    CarrierFailure,
    CarrierTimeout,
    ConfigError,
    NotFound,
    Ok,
    Result,
    Unauthorized,
    Unexpected,
    ValidationError,
)
from carrier_gateway.services.shipment_recorder import ShipmentFilters, ShipmentRecorder
from carrier_gateway.services.shipping_config import ShippingConfigStore

logger = logging.getLogger(__name__)

LABEL_FAILED = "Failed to create shipping label"
TRACKING_FAILED = "Unable to retrieve tracking information"
RATES_FAILED = "Unable to fetch rates from carrier"
RATES_UNAVAILABLE = "Unable to retrieve shipping rates"
CARRIER_AUTH_FAILED = "Carrier authentication failed"
CARRIER_TIMED_OUT = "Carrier did not respond in time"
NO_ACTIVE_CARRIERS = "No active shipping carriers configured"
SHIPMENT_NOT_FOUND = "Shipment not found"


def _not_configured(carrier: CarrierCode) -> ConfigError:
    return ConfigError(f"{carrier.value} is not configured or active")


def _int_param(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _date_param(value: Any) -> Optional[datetime]:
    """Epoch milliseconds or an ISO-8601 string."""
    text = str(value).strip()
    if text.isdigit():
        try:
            return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return parse_datetime(text)


def _with_default_dimensions(packages: List[Package], config: ShippingConfig) -> List[Package]:
    """Give packages sent without any dimensions the carrier's default box size."""
    defaults = config.default_package_dimensions or {}
    try:
        box = {key: float(defaults[key]) for key in ("length", "width", "height")}
    except (KeyError, TypeError, ValueError):
        return packages
    return [
        replace(pkg, **box) if pkg.length is None and pkg.width is None and pkg.height is None else pkg
        for pkg in packages
    ]


class ShippingOrchestrator:
    """
    Coordinates validation, configuration, adapters and persistence.

    Args:
        db: request-scoped session
        pool: carrier adapter table (defaults to the process-wide pool)
        validator: request validator
    """

    def __init__(
        self,
        db: AsyncSession,
        pool: Optional[CarrierPool] = None,
        validator: Optional[RequestValidator] = None,
    ):
        self.db = db
        self.pool = pool or carrier_pool
        self.validator = validator or RequestValidator()
        self.configs = ShippingConfigStore(db)
        self.recorder = ShipmentRecorder(db)

    # -------------------------------------------------------------------------
    # Failure conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _convert_error(error: ShippingGatewayError, message: str) -> Result:
        """Map an internal carrier exception to its result variant."""
        if isinstance(error, CarrierConfigError):
            logger.warning(f"Carrier configuration error: {error.to_dict()}")
            return ConfigError(error.message)
        if isinstance(error, CarrierAuthError):
            logger.error(f"Carrier authentication error: {error.to_dict()}")
            return CarrierAuthFailure(CARRIER_AUTH_FAILED)
        if isinstance(error, CarrierTimeoutError):
            logger.error(f"Carrier timeout: {error.to_dict()}")
            return CarrierTimeout(CARRIER_TIMED_OUT)
        logger.error(f"Carrier error: {error.to_dict()}")
        return CarrierFailure(message)

    async def _active_config(self, carrier: CarrierCode) -> Optional[ShippingConfig]:
        return await self.configs.get_active_config(carrier)

    # -------------------------------------------------------------------------
    # Labels
    # -------------------------------------------------------------------------

    async def create_label(self, raw: Any, authorized: bool) -> Result:
        """
        Issue a label and record the shipment.

        Unauthorized callers are rejected before the body is inspected;
        invalid bodies and unprovisioned carriers never reach the network.
        """
        if not authorized:
            return Unauthorized()

        try:
            default_origin = await self._default_origin(raw)
            request = self.validator.validate_label_request(raw, default_origin=default_origin)
            if isinstance(request, ValidationError):
                return request

            config = await self._active_config(request.carrier)
            if config is None:
                return _not_configured(request.carrier)

            request.packages = _with_default_dimensions(request.packages, config)
            adapter = self.pool.get(request.carrier, config)
            shipment = await adapter.create_shipment(request)
            shipment.order_id = request.order_id

            record = await self.recorder.record(shipment)
        except ShippingGatewayError as e:
            return self._convert_error(e, LABEL_FAILED)
        except Exception:
            logger.exception("Unexpected error creating shipping label")
            return Unexpected(LABEL_FAILED)

        logger.info(
            f"Label created: carrier={record.carrier} order={record.order_id} "
            f"tracking={record.tracking_number}"
        )
        response = ShipmentResponse.model_validate(record)
        response.tracking_url = adapter.get_tracking_url(record.tracking_number)
        return Ok(response, created=True)

    async def _default_origin(self, raw: Any) -> Optional[Dict[str, Any]]:
        """The configured ship-from address, used when the body has no origin."""
        if not isinstance(raw, dict) or raw.get("origin"):
            return None
        try:
            carrier = CarrierCode.parse(raw.get("carrier"))
        except ValueError:
            return None
        config = await self.configs.get_config(carrier)
        return config.origin_address if config is not None else None

    # -------------------------------------------------------------------------
    # Rates
    # -------------------------------------------------------------------------

    async def get_rates(self, raw: Any) -> Result:
        """Quote every active carrier concurrently, cheapest first."""
        request = self.validator.validate_rate_request(raw)
        if isinstance(request, ValidationError):
            return request

        try:
            configs = await self.configs.get_active_configs()
        except Exception:
            logger.exception("Failed to load carrier configuration for rate quote")
            return Unexpected(RATES_UNAVAILABLE)

        if request.carriers:
            configs = {code: cfg for code, cfg in configs.items() if code in request.carriers}

        if not configs:
            return Ok(RateListResponse(
                rates=[],
                errors=[CarrierErrorEntry(carrier="system", error=NO_ACTIVE_CARRIERS)],
            ))

        results = await asyncio.gather(*[
            self._quote(code, config, request) for code, config in configs.items()
        ])

        rates: List[ShippingRate] = []
        errors: List[CarrierErrorEntry] = []
        for code, quoted, failed in results:
            if failed:
                errors.append(CarrierErrorEntry(carrier=code.value, error=RATES_FAILED))
            else:
                rates.extend(quoted)

        if request.service_types:
            rates = [rate for rate in rates if rate.service_code in request.service_types]
        rates.sort(key=lambda rate: rate.rate)

        return Ok(RateListResponse(
            rates=[ShippingRateResponse(**rate.to_dict()) for rate in rates],
            errors=errors,
        ))

    async def _quote(
        self,
        code: CarrierCode,
        config: ShippingConfig,
        request: RateRequest,
    ) -> Tuple[CarrierCode, List[ShippingRate], bool]:
        """One carrier's quotes with markup applied. Failures are reported, not raised."""
        try:
            adapter = self.pool.get(code, config)
            quoted = await adapter.get_rates(
                replace(request, packages=_with_default_dimensions(request.packages, config))
            )
        except ShippingGatewayError as e:
            logger.error(f"{code.value} rate quote failed: {e.to_dict()}")
            return code, [], True
        except Exception:
            logger.exception(f"Unexpected error quoting {code.value}")
            return code, [], True

        for rate in quoted:
            rate.rate = config.apply_markup(rate.rate)
        return code, quoted, False

    # -------------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------------

    async def track(self, carrier: Any, tracking_number: Any) -> Result:
        """Live tracking lookup by carrier and tracking number."""
        validated = self.validator.validate_tracking_request(carrier, tracking_number)
        if isinstance(validated, ValidationError):
            return validated
        code, number = validated

        try:
            config = await self._active_config(code)
            if config is None:
                return _not_configured(code)

            adapter = self.pool.get(code, config)
            info = await adapter.track_shipment(number)
        except ShippingGatewayError as e:
            return self._convert_error(e, TRACKING_FAILED)
        except Exception:
            logger.exception(f"Unexpected error tracking {code.value} shipment")
            return Unexpected(TRACKING_FAILED)

        response = TrackingResponse(**info.to_dict())
        response.tracking_url = adapter.get_tracking_url(number)
        return Ok(response)

    async def refresh_tracking(self, shipment_id: str, authorized: bool) -> Result:
        """Poll the carrier for a recorded shipment and apply the result to it."""
        if not authorized:
            return Unauthorized()

        try:
            record = await self.recorder.get_by_id(shipment_id)
            if record is None:
                return NotFound(SHIPMENT_NOT_FOUND)

            code = CarrierCode.parse(record.carrier)
            config = await self._active_config(code)
            if config is None:
                return _not_configured(code)

            adapter = self.pool.get(code, config)
            info = await adapter.track_shipment(record.tracking_number)
            record = await self.recorder.update_status(record, info)
        except ShippingGatewayError as e:
            return self._convert_error(e, TRACKING_FAILED)
        except Exception:
            logger.exception(f"Unexpected error refreshing tracking for shipment {shipment_id}")
            return Unexpected(TRACKING_FAILED)

        return Ok(self._shipment_response(record))

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    @staticmethod
    def _shipment_response(record: ShipmentRecord) -> ShipmentResponse:
        return ShipmentResponse.model_validate(record)

    @staticmethod
    def build_filters(params: Mapping[str, Any]) -> Result:
        """Parse history query parameters into ShipmentFilters."""
        status = params.get("status")
        if status:
            try:
                status = ShipmentStatus(status)
            except ValueError:
                return ValidationError("Invalid status filter", field="status")

        date_from = date_to = None
        if params.get("from"):
            date_from = _date_param(params["from"])
            if date_from is None:
                return ValidationError("Invalid from date", field="from")
        if params.get("to"):
            date_to = _date_param(params["to"])
            if date_to is None:
                return ValidationError("Invalid to date", field="to")

        return Ok(ShipmentFilters(
            order_id=params.get("order_id") or None,
            carrier=params.get("carrier") or None,
            status=status or None,
            search=params.get("search") or None,
            date_from=date_from,
            date_to=date_to,
            limit=_int_param(params.get("limit")),
            offset=_int_param(params.get("offset")),
        ))

    async def list_shipments(self, params: Mapping[str, Any], authorized: bool) -> Result:
        if not authorized:
            return Unauthorized()

        filters = self.build_filters(params)
        if not isinstance(filters, Ok):
            return filters

        try:
            records = await self.recorder.list_shipments(filters.value)
        except Exception:
            logger.exception("Failed to list shipments")
            return Unexpected("Failed to fetch shipment history")

        return Ok(ShipmentListResponse(data=[self._shipment_response(r) for r in records]))

    async def get_shipment(self, shipment_id: str, authorized: bool) -> Result:
        if not authorized:
            return Unauthorized()

        try:
            record = await self.recorder.get_by_id(shipment_id)
        except Exception:
            logger.exception(f"Failed to load shipment {shipment_id}")
            return Unexpected("Failed to retrieve shipment")

        if record is None:
            return NotFound(SHIPMENT_NOT_FOUND)
        return Ok(self._shipment_response(record))
