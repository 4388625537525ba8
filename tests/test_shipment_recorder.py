"""
Tests for shipment history persistence.
"""
from datetime import datetime, timedelta, timezone

import pytest

from carrier_gateway.models.shipment import ShipmentStatus
from carrier_gateway.models.shipping_config import CarrierCode
from carrier_gateway.modules.shipping.carriers.base import (
    Address,
    Shipment,
    TrackingEvent,
    TrackingInfo,
)
from carrier_gateway.services.shipment_recorder import (
    MAX_PAGE_SIZE,
    ShipmentFilters,
    ShipmentRecorder,
)

BASE_TIME = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _shipment(order_id: str, tracking_number: str, minutes: int = 0, carrier=CarrierCode.FEDEX) -> Shipment:
    address = Address(
        address_line1="123 Main Street", city="New York", state="NY", postal_code="10001", country="US",
    )
    return Shipment(
        carrier=carrier,
        service_code="FEDEX_GROUND",
        service_name="FedEx Ground",
        tracking_number=tracking_number,
        rate=12.5,
        currency="USD",
        origin=address,
        destination=address,
        label_data="JVBERi0xLjQK",
        order_id=order_id,
        metadata={"gift": "yes"},
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


def _tracking(status: ShipmentStatus, *descriptions: str, delivered_at=None) -> TrackingInfo:
    return TrackingInfo(
        carrier=CarrierCode.FEDEX,
        tracking_number="794612345678",
        status=status,
        events=[TrackingEvent(timestamp=BASE_TIME, status=d, description=d) for d in descriptions],
        actual_delivery_date=delivered_at,
    )


class TestRecord:
    """Test inserting issued shipments."""

    @pytest.mark.asyncio
    async def test_record_persists_all_fields(self, db_session):
        recorder = ShipmentRecorder(db_session)

        record = await recorder.record(_shipment("ORD-1", "794612345678"))
        stored = await recorder.get_by_id(record.id)

        assert stored is not None
        assert stored.order_id == "ORD-1"
        assert stored.carrier == "fedex"
        assert stored.status == ShipmentStatus.LABEL_CREATED
        assert stored.destination_address["city"] == "New York"
        assert stored.shipment_metadata == {"gift": "yes"}
        assert stored.tracking_events == []

    @pytest.mark.asyncio
    async def test_unknown_id(self, db_session):
        assert await ShipmentRecorder(db_session).get_by_id("missing") is None


class TestListShipments:
    """Test history filters and paging."""

    @pytest.fixture
    async def recorder(self, db_session):
        recorder = ShipmentRecorder(db_session)
        await recorder.record(_shipment("ORD-1", "794600000001", minutes=1))
        await recorder.record(_shipment("ORD-1", "794600000002", minutes=2))
        await recorder.record(_shipment("ORD-2", "1Z999AA10123456784", minutes=3, carrier=CarrierCode.UPS))
        return recorder

    @pytest.mark.asyncio
    async def test_newest_first(self, recorder):
        records = await recorder.list_shipments()
        assert [r.tracking_number for r in records] == [
            "1Z999AA10123456784", "794600000002", "794600000001",
        ]

    @pytest.mark.asyncio
    async def test_filter_by_order(self, recorder):
        records = await recorder.list_shipments(ShipmentFilters(order_id="ORD-1"))
        assert {r.order_id for r in records} == {"ORD-1"}
        assert len(records) == 2

    @pytest.mark.asyncio
    async def test_filter_by_carrier(self, recorder):
        records = await recorder.list_shipments(ShipmentFilters(carrier="ups"))
        assert [r.order_id for r in records] == ["ORD-2"]

    @pytest.mark.asyncio
    async def test_search_matches_tracking_number(self, recorder):
        records = await recorder.list_shipments(ShipmentFilters(search="1z999"))
        assert [r.tracking_number for r in records] == ["1Z999AA10123456784"]

    @pytest.mark.asyncio
    async def test_paging(self, recorder):
        records = await recorder.list_shipments(ShipmentFilters(limit=1, offset=1))
        assert [r.tracking_number for r in records] == ["794600000002"]

    def test_page_size_bounds(self):
        assert ShipmentFilters().page_size == 50
        assert ShipmentFilters(limit=0).page_size == 50
        assert ShipmentFilters(limit=5000).page_size == MAX_PAGE_SIZE
        assert ShipmentFilters(offset=-3).page_offset == 0


class TestUpdateStatus:
    """Test applying tracking polls to stored shipments."""

    @pytest.mark.asyncio
    async def test_appends_events_and_advances(self, db_session):
        recorder = ShipmentRecorder(db_session)
        record = await recorder.record(_shipment("ORD-1", "794612345678"))

        await recorder.update_status(record, _tracking(ShipmentStatus.IN_TRANSIT, "Picked up"))
        record = await recorder.update_status(
            record, _tracking(ShipmentStatus.OUT_FOR_DELIVERY, "On vehicle for delivery")
        )

        assert record.status == ShipmentStatus.OUT_FOR_DELIVERY
        assert [e["description"] for e in record.tracking_events] == [
            "Picked up", "On vehicle for delivery",
        ]

    @pytest.mark.asyncio
    async def test_terminal_status_is_kept(self, db_session):
        recorder = ShipmentRecorder(db_session)
        record = await recorder.record(_shipment("ORD-1", "794612345678"))

        record = await recorder.update_status(
            record, _tracking(ShipmentStatus.DELIVERED, "Delivered", delivered_at=BASE_TIME)
        )
        record = await recorder.update_status(record, _tracking(ShipmentStatus.IN_TRANSIT, "Late scan"))

        assert record.status == ShipmentStatus.DELIVERED
        assert record.actual_delivery_date is not None
        assert len(record.tracking_events) == 2
