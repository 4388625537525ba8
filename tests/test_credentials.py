"""
Tests for carrier credential resolution and the carrier pool.
"""
import pytest

from carrier_gateway.core.config import Settings
from carrier_gateway.core.exceptions import CarrierConfigError
from carrier_gateway.models import ShippingConfig
from carrier_gateway.models.shipping_config import CarrierCode
from carrier_gateway.modules.shipping.carriers import CarrierPool, get_registered_carriers
from carrier_gateway.modules.shipping.carriers.fedex import FedExCarrier
from carrier_gateway.modules.shipping.credentials import CredentialResolver
from carrier_gateway.services.encryption import encrypt_credentials


class TestCredentialResolver:
    """Test environment/stored credential resolution."""

    def test_resolves_from_settings(self, carrier_settings):
        credentials = CredentialResolver(carrier_settings).resolve(CarrierCode.FEDEX)

        assert credentials.get("api_key") == "fedex-key"
        assert credentials.get("account_number") == "510087000"
        assert credentials.sandbox is True

    def test_missing_keys_raise_config_error(self, empty_settings):
        with pytest.raises(CarrierConfigError) as exc_info:
            CredentialResolver(empty_settings).resolve(CarrierCode.UPS)

        error = exc_info.value
        assert error.code == "CARRIER_NOT_CONFIGURED"
        assert error.message == "ups credentials are not configured"
        assert set(error.details["missing_keys"]) == {
            "UPS_CLIENT_ID", "UPS_CLIENT_SECRET", "UPS_ACCOUNT_NUMBER",
        }

    def test_stored_values_fill_gaps(self, empty_settings):
        credentials = CredentialResolver(empty_settings).resolve(
            CarrierCode.USPS, stored={"user_id": "stored-user"}
        )
        assert credentials.get("user_id") == "stored-user"

    def test_environment_wins_over_stored(self, carrier_settings):
        credentials = CredentialResolver(carrier_settings).resolve(
            CarrierCode.USPS, stored={"user_id": "stored-user"}
        )
        assert credentials.get("user_id") == "usps-user"

    def test_dhl_static_token_makes_client_credentials_optional(self):
        settings = Settings(ENVIRONMENT="development", DHL_ACCESS_TOKEN="static-token")

        credentials = CredentialResolver(settings).resolve(CarrierCode.DHL)

        assert credentials.get("access_token") == "static-token"
        assert credentials.get("client_id") == ""

    def test_production_environment_selects_production_hosts(self, carrier_settings):
        settings = carrier_settings.model_copy(update={"ENVIRONMENT": "production"})
        assert CredentialResolver(settings).resolve(CarrierCode.UPS).sandbox is False

    def test_canada_post_uses_its_own_environment(self, carrier_settings):
        settings = carrier_settings.model_copy(update={"CANADAPOST_ENVIRONMENT": "production"})
        assert CredentialResolver(settings).resolve(CarrierCode.CANADA_POST).sandbox is False

    def test_repr_hides_values(self, carrier_settings):
        credentials = CredentialResolver(carrier_settings).resolve(CarrierCode.FEDEX)
        assert "fedex-secret" not in repr(credentials)


class TestCarrierPool:
    """Test adapter registration and lazy construction."""

    def test_all_carriers_registered(self):
        assert set(get_registered_carriers()) == set(CarrierCode)

    @pytest.mark.asyncio
    async def test_builds_once_and_reuses(self, carrier_settings):
        pool = CarrierPool(resolver=CredentialResolver(carrier_settings))

        first = pool.get(CarrierCode.FEDEX)
        second = pool.get(CarrierCode.FEDEX)

        assert isinstance(first, FedExCarrier)
        assert first is second
        await pool.reset()

    def test_unconfigured_carrier_raises(self, empty_settings):
        pool = CarrierPool(resolver=CredentialResolver(empty_settings))

        with pytest.raises(CarrierConfigError):
            pool.get(CarrierCode.CANADA_POST)

    @pytest.mark.asyncio
    async def test_decrypts_stored_credentials(self, empty_settings):
        config = ShippingConfig(
            carrier="usps",
            is_active=True,
            api_credentials=encrypt_credentials({"user_id": "from-db", "password": "pw"}),
        )
        pool = CarrierPool(resolver=CredentialResolver(empty_settings))

        adapter = pool.get(CarrierCode.USPS, config)

        assert adapter._credentials.get("user_id") == "from-db"
        await pool.reset()

    @pytest.mark.asyncio
    async def test_environment_complete_skips_stored_credentials(self, carrier_settings):
        config = ShippingConfig(carrier="fedex", is_active=True, api_credentials="gAAAAABnot-a-valid-token")
        pool = CarrierPool(resolver=CredentialResolver(carrier_settings))

        adapter = pool.get(CarrierCode.FEDEX, config)

        assert adapter._credentials.get("api_key") == "fedex-key"
        await pool.reset()

    def test_undecryptable_stored_credentials_raise_config_error(self, empty_settings):
        config = ShippingConfig(carrier="usps", is_active=True, api_credentials="gAAAAABnot-a-valid-token")
        pool = CarrierPool(resolver=CredentialResolver(empty_settings))

        with pytest.raises(CarrierConfigError) as exc_info:
            pool.get(CarrierCode.USPS, config)

        assert exc_info.value.message == "usps stored credentials could not be decrypted"
        assert exc_info.value.details["carrier"] == "usps"

    def test_needs_stored(self, carrier_settings, empty_settings):
        assert CredentialResolver(carrier_settings).needs_stored(CarrierCode.FEDEX) is False
        assert CredentialResolver(carrier_settings).needs_stored(CarrierCode.CANADA_POST) is True
        assert CredentialResolver(empty_settings).needs_stored(CarrierCode.USPS) is True
