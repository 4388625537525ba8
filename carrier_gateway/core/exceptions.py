"""
Carrier Gateway Exception Hierarchy

Structured exception classes raised inside the shipping module. Every
exception carries a code, message and details for logging; none of them
cross the orchestrator boundary, which converts them to tagged results.

Exception Hierarchy:
    ShippingGatewayError
    ├── CarrierConfigError
    ├── CarrierAuthError
    ├── CarrierTimeoutError
    └── CarrierAPIError
        └── CarrierResponseError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ShippingGatewayError(Exception):
    """
    Base exception for all carrier gateway errors.

    Attributes:
        message: Human-readable error description (internal, may contain carrier detail)
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "SHIPPING_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# CARRIER ERRORS
# =============================================================================

class CarrierConfigError(ShippingGatewayError):
    """Carrier unconfigured, inactive, or missing credentials. Raised before any network call."""
    default_code = "CARRIER_NOT_CONFIGURED"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        carrier: Optional[str] = None,
        missing_keys: Optional[list] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "carrier": carrier,
            "missing_keys": missing_keys or [],
        })
        super().__init__(message, details=details, **kwargs)


class CarrierAuthError(ShippingGatewayError):
    """Carrier rejected the OAuth client-credentials exchange."""
    default_code = "CARRIER_AUTH_FAILED"
    default_severity = "P1"


class CarrierTimeoutError(ShippingGatewayError):
    """Carrier did not answer within the configured timeout."""
    default_code = "CARRIER_TIMEOUT"
    default_severity = "P2"


class CarrierAPIError(ShippingGatewayError):
    """Non-success response or embedded error payload from a carrier."""
    default_code = "CARRIER_API_ERROR"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        super().__init__(message, details=details, **kwargs)


class CarrierResponseError(CarrierAPIError):
    """Carrier answered 2xx but the payload is missing required fields."""
    default_code = "CARRIER_BAD_RESPONSE"
