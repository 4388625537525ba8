"""
Tests for tracking status normalization and the shipment lifecycle.
"""
import logging

import pytest

from carrier_gateway.models.shipment import ShipmentStatus
from carrier_gateway.modules.shipping.tracking import advance_status, map_tracking_status


class TestStatusMapping:
    """Test carrier status string -> canonical status."""

    @pytest.mark.parametrize("text,expected", [
        ("Delivered, Front Door", ShipmentStatus.DELIVERED),
        ("OUT FOR DELIVERY", ShipmentStatus.OUT_FOR_DELIVERY),
        ("out_for_delivery", ShipmentStatus.OUT_FOR_DELIVERY),
        ("In Transit to Next Facility", ShipmentStatus.IN_TRANSIT),
        ("Picked Up", ShipmentStatus.IN_TRANSIT),
        ("Delivery Exception - weather", ShipmentStatus.EXCEPTION),
        ("Returned to Sender", ShipmentStatus.RETURNED),
    ])
    def test_keywords(self, text, expected):
        assert map_tracking_status(text) == expected

    def test_priority_order(self):
        """A string mentioning several keywords resolves to the highest priority one."""
        assert map_tracking_status("In transit earlier, now delivered") == ShipmentStatus.DELIVERED
        assert map_tracking_status("Out for delivery after exception") == ShipmentStatus.OUT_FOR_DELIVERY

    def test_unknown_defaults_to_in_transit(self):
        assert map_tracking_status("Shipping label created, awaiting item") == ShipmentStatus.IN_TRANSIT
        assert map_tracking_status("") == ShipmentStatus.IN_TRANSIT
        assert map_tracking_status(None) == ShipmentStatus.IN_TRANSIT

    def test_unknown_status_logged_as_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="carrier_gateway.modules.shipping.tracking"):
            map_tracking_status("Shipping label created, awaiting item")

        assert [r.levelno for r in caplog.records] == [logging.WARNING]
        assert "Unmapped carrier status" in caplog.records[0].getMessage()

    def test_deterministic(self):
        results = {map_tracking_status("Arrived at USPS Regional Facility") for _ in range(5)}
        assert len(results) == 1


class TestStatusTransitions:
    """Test the forward-only lifecycle with terminal states."""

    def test_moves_forward(self):
        assert advance_status(ShipmentStatus.LABEL_CREATED, ShipmentStatus.IN_TRANSIT) == ShipmentStatus.IN_TRANSIT
        assert advance_status(ShipmentStatus.IN_TRANSIT, ShipmentStatus.DELIVERED) == ShipmentStatus.DELIVERED

    def test_never_moves_backward(self):
        assert (
            advance_status(ShipmentStatus.OUT_FOR_DELIVERY, ShipmentStatus.IN_TRANSIT)
            == ShipmentStatus.OUT_FOR_DELIVERY
        )

    @pytest.mark.parametrize("terminal", [
        ShipmentStatus.DELIVERED, ShipmentStatus.EXCEPTION, ShipmentStatus.RETURNED,
    ])
    def test_terminal_states_stick(self, terminal):
        for reported in ShipmentStatus:
            assert advance_status(terminal, reported) == terminal

    def test_exception_reachable_from_any_non_terminal(self):
        for current in (ShipmentStatus.LABEL_CREATED, ShipmentStatus.IN_TRANSIT, ShipmentStatus.OUT_FOR_DELIVERY):
            assert advance_status(current, ShipmentStatus.EXCEPTION) == ShipmentStatus.EXCEPTION
            assert advance_status(current, ShipmentStatus.RETURNED) == ShipmentStatus.RETURNED
