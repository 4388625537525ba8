"""
Tests for carrier configuration lookups and pricing policy.
"""
from unittest.mock import MagicMock

import pytest

from carrier_gateway.models import ShippingConfig
from carrier_gateway.models.shipping_config import CarrierCode
from carrier_gateway.services.shipping_config import ShippingConfigStore


def _scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _scalars_result(values):
    result = MagicMock()
    result.scalars.return_value.all.return_value = values
    return result


class TestShippingConfigStore:
    """Test configuration lookups."""

    @pytest.mark.asyncio
    async def test_active_config(self, mock_db):
        config = ShippingConfig(carrier="ups", is_active=True)
        mock_db.execute.return_value = _scalar_result(config)

        store = ShippingConfigStore(mock_db)

        assert await store.get_active_config(CarrierCode.UPS) is config

    @pytest.mark.asyncio
    async def test_inactive_config_is_hidden(self, mock_db):
        mock_db.execute.return_value = _scalar_result(ShippingConfig(carrier="ups", is_active=False))

        assert await ShippingConfigStore(mock_db).get_active_config(CarrierCode.UPS) is None

    @pytest.mark.asyncio
    async def test_lookup_cached_per_store(self, mock_db):
        mock_db.execute.return_value = _scalar_result(None)
        store = ShippingConfigStore(mock_db)

        await store.get_config(CarrierCode.DHL)
        await store.get_config(CarrierCode.DHL)

        assert mock_db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_active_configs_skip_unknown_carriers(self, mock_db):
        mock_db.execute.return_value = _scalars_result([
            ShippingConfig(carrier="fedex", is_active=True),
            ShippingConfig(carrier="ontrac", is_active=True),
        ])

        configs = await ShippingConfigStore(mock_db).get_active_configs()

        assert list(configs) == [CarrierCode.FEDEX]


class TestMarkup:
    """Test markup applied to quoted rates."""

    def test_no_markup(self):
        assert ShippingConfig(markup_percentage=0, markup_fixed=0).apply_markup(9.99) == 9.99

    def test_percentage_then_fixed(self):
        config = ShippingConfig(markup_percentage=50, markup_fixed=2)
        assert config.apply_markup(10.0) == 17.0

    def test_unset_columns(self):
        assert ShippingConfig().apply_markup(12.5) == 12.5


class TestCarrierCode:
    """Test carrier code parsing."""

    def test_parse(self):
        assert CarrierCode.parse("canada_post") == CarrierCode.CANADA_POST
        assert CarrierCode.parse(CarrierCode.UPS) == CarrierCode.UPS

    @pytest.mark.parametrize("value", ["FEDEX", "ontrac", None, 3])
    def test_parse_rejects(self, value):
        with pytest.raises(ValueError):
            CarrierCode.parse(value)
