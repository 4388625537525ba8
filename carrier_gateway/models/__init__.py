from carrier_gateway.models.shipping_config import CarrierCode, ShippingConfig
from carrier_gateway.models.shipment import ShipmentRecord, ShipmentStatus
