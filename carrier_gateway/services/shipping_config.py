"""
Carrier configuration reader

Read-only access to shipping_configs. Rows are managed by operators
outside this service.
"""
import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carrier_gateway.models.shipping_config import CarrierCode, ShippingConfig

logger = logging.getLogger(__name__)


class ShippingConfigStore:
    """Looks up carrier configuration records, cached per session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._cache: Dict[CarrierCode, Optional[ShippingConfig]] = {}

    async def get_config(self, carrier: CarrierCode) -> Optional[ShippingConfig]:
        if carrier in self._cache:
            return self._cache[carrier]

        result = await self.db.execute(
            select(ShippingConfig).where(ShippingConfig.carrier == carrier.value)
        )
        config = result.scalar_one_or_none()
        self._cache[carrier] = config
        return config

    async def get_active_config(self, carrier: CarrierCode) -> Optional[ShippingConfig]:
        """The carrier's record, or None when absent or inactive."""
        config = await self.get_config(carrier)
        if config is None or not config.is_active:
            logger.warning(f"Carrier {carrier.value} is not configured or active")
            return None
        return config

    async def get_active_configs(self) -> Dict[CarrierCode, ShippingConfig]:
        """All active carrier records keyed by carrier, unknown carrier rows skipped."""
        result = await self.db.execute(
            select(ShippingConfig).where(ShippingConfig.is_active.is_(True))
        )
        configs = {}
        for config in result.scalars().all():
            try:
                code = CarrierCode.parse(config.carrier)
            except ValueError:
                logger.warning(f"Ignoring configuration for unknown carrier {config.carrier!r}")
                continue
            configs[code] = config
            self._cache[code] = config
        return configs
