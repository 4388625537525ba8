"""
Tracking status normalization

Carrier status vocabularies differ wildly; every adapter funnels its
free-text status through map_tracking_status so callers only ever see
ShipmentStatus values. advance_status applies the shipment lifecycle:

    label_created -> in_transit -> out_for_delivery -> delivered
    any non-terminal -> exception | returned

Terminal states never change.
"""
import logging
from typing import Optional

from carrier_gateway.models.shipment import ShipmentStatus

logger = logging.getLogger(__name__)

# Checked in order; first hit wins
_STATUS_KEYWORDS = (
    (("delivered",), ShipmentStatus.DELIVERED),
    (("out for delivery", "out_for_delivery"), ShipmentStatus.OUT_FOR_DELIVERY),
    (("in transit", "in_transit", "picked up"), ShipmentStatus.IN_TRANSIT),
    (("exception",), ShipmentStatus.EXCEPTION),
    (("returned",), ShipmentStatus.RETURNED),
)

TERMINAL_STATUSES = frozenset({
    ShipmentStatus.DELIVERED,
    ShipmentStatus.EXCEPTION,
    ShipmentStatus.RETURNED,
})

_PROGRESS_RANK = {
    ShipmentStatus.LABEL_CREATED: 0,
    ShipmentStatus.IN_TRANSIT: 1,
    ShipmentStatus.OUT_FOR_DELIVERY: 2,
    ShipmentStatus.DELIVERED: 3,
}


def map_tracking_status(status: Optional[str]) -> ShipmentStatus:
    """
    Map a carrier status string to a canonical status.

    Case-insensitive substring match in priority order; anything
    unrecognized degrades to in_transit.
    """
    text = (status or "").lower()
    for keywords, canonical in _STATUS_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return canonical
    if text:
        logger.warning(f"Unmapped carrier status {status!r}, defaulting to in_transit")
    return ShipmentStatus.IN_TRANSIT


def advance_status(current: ShipmentStatus, reported: ShipmentStatus) -> ShipmentStatus:
    """Return the status after applying a carrier-reported status to current."""
    if current in TERMINAL_STATUSES:
        return current
    if reported in (ShipmentStatus.EXCEPTION, ShipmentStatus.RETURNED):
        return reported
    if _PROGRESS_RANK.get(reported, -1) > _PROGRESS_RANK.get(current, -1):
        return reported
    return current
