"""
Carrier configuration model

One row per carrier. The shipping layer only reads it: is_active gates
label issuance, origin_address supplies a default ship-from, and the
markup columns are applied to quoted rates.
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime,
    Float, Text, JSON, Index
)

from carrier_gateway.core.database import Base


class CarrierCode(str, enum.Enum):
    """Supported shipping carriers."""
    USPS = "usps"
    FEDEX = "fedex"
    UPS = "ups"
    DHL = "dhl"
    CANADA_POST = "canada_post"

    @classmethod
    def parse(cls, value) -> "CarrierCode":
        """Raise ValueError for anything that is not one of the five carriers."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid carrier: {value!r}")
        return cls(value)


class ShippingConfig(Base):
    """
    Carrier configuration and pricing settings.

    api_credentials holds Fernet-encrypted JSON (see services.encryption).
    """
    __tablename__ = "shipping_configs"
    __table_args__ = (
        Index("ix_shipping_configs_active", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)

    carrier = Column(String(20), unique=True, nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)

    # Credentials (encrypted), used when the environment lacks a key
    api_credentials = Column(Text, nullable=True)

    # Defaults
    origin_address = Column(JSON, nullable=True)
    default_package_dimensions = Column(JSON, nullable=True)

    # Pricing policy (read-only here)
    markup_percentage = Column(Float, default=0.0)
    markup_fixed = Column(Float, default=0.0)
    free_shipping_threshold = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def apply_markup(self, rate: float) -> float:
        """Percentage first, then fixed, rounded to cents."""
        adjusted = rate
        if self.markup_percentage:
            adjusted = adjusted * (1 + self.markup_percentage / 100)
        if self.markup_fixed:
            adjusted = adjusted + self.markup_fixed
        return round(adjusted, 2)

    def __repr__(self):
        return f"<ShippingConfig {self.carrier} active={self.is_active}>"
