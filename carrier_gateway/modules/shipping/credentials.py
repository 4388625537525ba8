"""
Carrier credential resolution

Each carrier declares the settings it reads and which of them are
required. Values come from the environment (Settings) first, then from
the carrier's configuration record. Anything required and still empty
raises CarrierConfigError before an adapter can make a network call.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from carrier_gateway.core.config import Settings, settings as default_settings
from carrier_gateway.core.exceptions import CarrierConfigError
from carrier_gateway.models.shipping_config import CarrierCode

logger = logging.getLogger(__name__)

# credential key -> (settings attribute, required)
CARRIER_CREDENTIAL_KEYS: Dict[CarrierCode, Dict[str, Tuple[str, bool]]] = {
    CarrierCode.USPS: {
        "user_id": ("USPS_USER_ID", True),
        "password": ("USPS_PASSWORD", False),
    },
    CarrierCode.FEDEX: {
        "account_number": ("FEDEX_ACCOUNT_NUMBER", True),
        "meter_number": ("FEDEX_METER_NUMBER", True),
        "api_key": ("FEDEX_API_KEY", True),
        "api_secret": ("FEDEX_API_SECRET", True),
    },
    CarrierCode.UPS: {
        "client_id": ("UPS_CLIENT_ID", True),
        "client_secret": ("UPS_CLIENT_SECRET", True),
        "account_number": ("UPS_ACCOUNT_NUMBER", True),
    },
    CarrierCode.DHL: {
        "client_id": ("DHL_CLIENT_ID", True),
        "client_secret": ("DHL_CLIENT_SECRET", True),
        "pickup_account": ("DHL_PICKUP_ACCOUNT", False),
        "merchant_id": ("DHL_MERCHANT_ID", False),
        "access_token": ("DHL_ACCESS_TOKEN", False),
    },
    CarrierCode.CANADA_POST: {
        "username": ("CANADAPOST_USERNAME", True),
        "password": ("CANADAPOST_PASSWORD", True),
        "customer_number": ("CANADAPOST_CUSTOMER_NUMBER", True),
        "contract_id": ("CANADAPOST_CONTRACT_ID", False),
    },
}


@dataclass
class CarrierCredentials:
    """Resolved, carrier-scoped credentials. Never persisted or logged."""
    carrier: CarrierCode
    values: Dict[str, str] = field(default_factory=dict)
    sandbox: bool = True

    def get(self, key: str, default: str = "") -> str:
        return self.values.get(key) or default

    def __repr__(self) -> str:
        return f"CarrierCredentials(carrier={self.carrier.value!r}, keys={sorted(self.values)!r}, sandbox={self.sandbox})"


class CredentialResolver:
    """Reads per-carrier secrets; fails loudly if any required key is missing."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or default_settings

    def _is_sandbox(self, carrier: CarrierCode) -> bool:
        if carrier == CarrierCode.CANADA_POST:
            return self._settings.CANADAPOST_ENVIRONMENT != "production"
        return not self._settings.is_production

    def needs_stored(self, carrier: CarrierCode) -> bool:
        """True when the environment leaves any of the carrier's keys unset."""
        carrier = CarrierCode.parse(carrier)
        return any(
            not getattr(self._settings, attr, "")
            for attr, _required in CARRIER_CREDENTIAL_KEYS[carrier].values()
        )

    def resolve(
        self,
        carrier: CarrierCode,
        stored: Optional[Dict[str, str]] = None,
    ) -> CarrierCredentials:
        """
        Resolve credentials for a carrier.

        Args:
            carrier: the carrier to resolve
            stored: decrypted api_credentials from the configuration record

        Raises:
            CarrierConfigError: a required key is empty in both sources
        """
        carrier = CarrierCode.parse(carrier)
        stored = stored or {}
        values: Dict[str, str] = {}
        missing = []

        for key, (attr, required) in CARRIER_CREDENTIAL_KEYS[carrier].items():
            value = getattr(self._settings, attr, "") or stored.get(key) or ""
            if value:
                values[key] = str(value).strip()
            elif required and not self._is_optional(carrier, key, stored):
                missing.append(attr)

        if missing:
            logger.warning(f"Carrier {carrier.value} missing credentials: {', '.join(missing)}")
            raise CarrierConfigError(
                f"{carrier.value} credentials are not configured",
                carrier=carrier.value,
                missing_keys=missing,
            )

        return CarrierCredentials(
            carrier=carrier,
            values=values,
            sandbox=self._is_sandbox(carrier),
        )

    def _is_optional(self, carrier: CarrierCode, key: str, stored: Dict[str, str]) -> bool:
        # A static DHL access token replaces the client-credentials exchange
        if carrier == CarrierCode.DHL and key in ("client_id", "client_secret"):
            return bool(self._settings.DHL_ACCESS_TOKEN or stored.get("access_token"))
        return False
