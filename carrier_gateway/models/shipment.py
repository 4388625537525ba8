"""
Shipment history model

One row per issued label. Immutable after creation except for status,
delivery dates and the append-only tracking event log.
"""
import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime,
    Float, Text, JSON, Index, Enum as SQLEnum
)

from carrier_gateway.core.database import Base


class ShipmentStatus(str, enum.Enum):
    """Canonical shipment lifecycle status"""
    LABEL_CREATED = "label_created"  # Initial, set at issuance
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"  # Terminal
    EXCEPTION = "exception"  # Terminal, delivery issue
    RETURNED = "returned"  # Terminal


class ShipmentRecord(Base):
    """
    A persisted shipment.

    Owned by exactly one order (order_id); an order may own many shipments.
    """
    __tablename__ = "shipment_history"
    __table_args__ = (
        Index("ix_shipment_history_order_id", "order_id"),
        Index("ix_shipment_history_tracking_number", "tracking_number"),
        Index("ix_shipment_history_created_at", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    order_id = Column(String(100), nullable=False)

    # Carrier + service
    carrier = Column(String(20), nullable=False)
    service_code = Column(String(50), nullable=False)
    service_name = Column(String(100), nullable=True)
    tracking_number = Column(String(100), nullable=False)
    carrier_shipment_id = Column(String(100), nullable=True)

    # Label
    label_data = Column(Text, nullable=True)  # Base64 encoded
    label_format = Column(String(10), default="PDF")

    # Cost
    rate = Column(Float, nullable=False, default=0.0)
    currency = Column(String(3), default="USD")

    status = Column(
        SQLEnum(ShipmentStatus),
        default=ShipmentStatus.LABEL_CREATED,
        nullable=False
    )

    origin_address = Column(JSON, nullable=True)
    destination_address = Column(JSON, nullable=False)
    reference_number = Column(String(100), nullable=True)
    # "metadata" is reserved on declarative classes
    shipment_metadata = Column("metadata", JSON, nullable=True)

    # Tracking (append-only, as received)
    tracking_events = Column(JSON, default=list)
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_date = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self):
        return f"<ShipmentRecord {self.id} {self.carrier} {self.tracking_number} status={self.status}>"
