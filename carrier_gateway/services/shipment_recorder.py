"""
Shipment history persistence

Stores issued labels in shipment_history and serves the admin history
lookups. Rows are immutable after insert apart from the status columns
and the tracking event log, which only grows.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from carrier_gateway.models.shipment import ShipmentRecord, ShipmentStatus
from carrier_gateway.modules.shipping.carriers.base import Shipment, TrackingInfo
from carrier_gateway.modules.shipping.tracking import advance_status

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass
class ShipmentFilters:
    """History lookup filters. Every field is optional."""
    order_id: Optional[str] = None
    carrier: Optional[str] = None
    status: Optional[ShipmentStatus] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    @property
    def page_size(self) -> int:
        if not self.limit or self.limit <= 0:
            return DEFAULT_PAGE_SIZE
        return min(self.limit, MAX_PAGE_SIZE)

    @property
    def page_offset(self) -> int:
        return max(self.offset or 0, 0)


class ShipmentRecorder:
    """Persists and queries shipment records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, shipment: Shipment) -> ShipmentRecord:
        """Insert an issued shipment and return the stored row."""
        record = ShipmentRecord(
            id=shipment.id,
            order_id=shipment.order_id,
            carrier=shipment.carrier.value,
            service_code=shipment.service_code,
            service_name=shipment.service_name,
            tracking_number=shipment.tracking_number,
            carrier_shipment_id=shipment.carrier_shipment_id,
            label_data=shipment.label_data,
            label_format=shipment.label_format,
            rate=shipment.rate,
            currency=shipment.currency,
            status=shipment.status,
            origin_address=shipment.origin.to_dict() if shipment.origin else None,
            destination_address=shipment.destination.to_dict(),
            reference_number=shipment.reference_number,
            shipment_metadata=shipment.metadata,
            tracking_events=[],
            created_at=shipment.created_at,
        )
        self.db.add(record)
        await self.db.flush()
        await self.db.refresh(record)

        logger.info(
            f"Recorded {record.carrier} shipment {record.id} for order {record.order_id}"
        )
        return record

    async def get_by_id(self, shipment_id: str) -> Optional[ShipmentRecord]:
        result = await self.db.execute(
            select(ShipmentRecord).where(ShipmentRecord.id == shipment_id)
        )
        return result.scalar_one_or_none()

    async def list_shipments(self, filters: Optional[ShipmentFilters] = None) -> List[ShipmentRecord]:
        """Filtered history, newest first."""
        filters = filters or ShipmentFilters()
        query = select(ShipmentRecord)

        if filters.order_id:
            query = query.where(ShipmentRecord.order_id == filters.order_id)
        if filters.carrier:
            query = query.where(ShipmentRecord.carrier == filters.carrier)
        if filters.status:
            query = query.where(ShipmentRecord.status == filters.status)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(or_(
                ShipmentRecord.tracking_number.ilike(pattern),
                ShipmentRecord.service_name.ilike(pattern),
                ShipmentRecord.order_id.ilike(pattern),
                ShipmentRecord.carrier_shipment_id.ilike(pattern),
            ))
        if filters.date_from:
            query = query.where(ShipmentRecord.created_at >= filters.date_from)
        if filters.date_to:
            query = query.where(ShipmentRecord.created_at <= filters.date_to)

        query = (
            query.order_by(ShipmentRecord.created_at.desc())
            .limit(filters.page_size)
            .offset(filters.page_offset)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_status(self, record: ShipmentRecord, tracking: TrackingInfo) -> ShipmentRecord:
        """
        Apply a tracking poll to a stored shipment.

        Events are appended as reported; status only moves forward and
        never leaves a terminal state.
        """
        previous = record.status
        record.status = advance_status(previous, tracking.status)

        # Reassign so the JSON column is flagged dirty
        record.tracking_events = list(record.tracking_events or []) + [
            event.to_dict() for event in tracking.events
        ]
        if tracking.estimated_delivery_date:
            record.estimated_delivery_date = tracking.estimated_delivery_date
        if tracking.actual_delivery_date:
            record.actual_delivery_date = tracking.actual_delivery_date

        await self.db.flush()
        await self.db.refresh(record)

        if record.status != previous:
            logger.info(f"Shipment {record.id} status {previous.value} -> {record.status.value}")
        return record
