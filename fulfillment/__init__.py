"""Order and shipment fulfillment service."""

__version__ = "1.0.0"
