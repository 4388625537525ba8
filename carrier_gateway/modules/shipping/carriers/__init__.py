"""
Carrier Registry and Pool

- register_carrier maps a CarrierCode to its adapter class
- CarrierPool builds adapters lazily and keeps one per carrier, so each
  adapter keeps its HTTP client and token cache across requests
- Orchestration never branches on the carrier string; a new carrier is an
  adapter module plus one registration
"""
from typing import Dict, List, Optional, Type
import logging

import httpx

from carrier_gateway.core.exceptions import CarrierConfigError
from carrier_gateway.models.shipping_config import CarrierCode, ShippingConfig
from carrier_gateway.modules.shipping.carriers.base import BaseCarrier
from carrier_gateway.modules.shipping.credentials import CredentialResolver
from carrier_gateway.services.encryption import decrypt_credentials

logger = logging.getLogger(__name__)

# Registry of carrier implementations
_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Decorator to register a carrier implementation.

    Usage:
        @register_carrier(CarrierCode.UPS)
        class UPSCarrier(BaseCarrier):
            ...
    """
    def decorator(cls: Type[BaseCarrier]):
        cls.carrier_code = carrier_code
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.info(f"Registered carrier: {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


def get_carrier_class(carrier_code: CarrierCode) -> Type[BaseCarrier]:
    carrier_cls = _CARRIER_REGISTRY.get(carrier_code)
    if not carrier_cls:
        raise KeyError(f"No implementation registered for carrier: {carrier_code.value}")
    return carrier_cls


def get_registered_carriers() -> List[CarrierCode]:
    """Get list of all registered carrier codes."""
    return list(_CARRIER_REGISTRY.keys())


class CarrierPool:
    """
    Process-scoped carrier -> adapter lookup table.

    Args:
        resolver: credential resolver (defaults to one over global settings)
        http_client: shared client handed to every adapter (tests pass one
            backed by httpx.MockTransport)
    """

    def __init__(
        self,
        resolver: Optional[CredentialResolver] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._resolver = resolver or CredentialResolver()
        self._http_client = http_client
        self._adapters: Dict[CarrierCode, BaseCarrier] = {}

    def get(self, carrier_code: CarrierCode, config: Optional[ShippingConfig] = None) -> BaseCarrier:
        """
        Get the adapter for a carrier, building it on first use.

        Raises:
            CarrierConfigError: required credentials are missing
        """
        adapter = self._adapters.get(carrier_code)
        if adapter is not None:
            return adapter

        stored = self._stored_credentials(carrier_code, config)
        credentials = self._resolver.resolve(carrier_code, stored=stored)
        adapter = get_carrier_class(carrier_code)(credentials, http_client=self._http_client)
        self._adapters[carrier_code] = adapter
        logger.info(
            f"Created {carrier_code.value} adapter ({'sandbox' if credentials.sandbox else 'production'})"
        )
        return adapter

    def _stored_credentials(self, carrier_code: CarrierCode, config: Optional[ShippingConfig]) -> Dict[str, str]:
        """Decrypt the record's credentials, only when the environment leaves a gap."""
        if config is None or not config.api_credentials:
            return {}
        if not self._resolver.needs_stored(carrier_code):
            return {}
        try:
            return decrypt_credentials(config.api_credentials)
        except ValueError:
            logger.error(f"Stored {carrier_code.value} credentials could not be decrypted")
            raise CarrierConfigError(
                f"{carrier_code.value} stored credentials could not be decrypted",
                carrier=carrier_code.value,
            )

    async def reset(self) -> None:
        """Close and drop every adapter (and with them their cached tokens)."""
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            await adapter.close()


carrier_pool = CarrierPool()


# Import carriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from carrier_gateway.modules.shipping.carriers.usps import USPSCarrier  # noqa: E402, F401
from carrier_gateway.modules.shipping.carriers.fedex import FedExCarrier  # noqa: E402, F401
from carrier_gateway.modules.shipping.carriers.ups import UPSCarrier  # noqa: E402, F401
from carrier_gateway.modules.shipping.carriers.dhl import DHLCarrier  # noqa: E402, F401
from carrier_gateway.modules.shipping.carriers.canada_post import CanadaPostCarrier  # noqa: E402, F401
