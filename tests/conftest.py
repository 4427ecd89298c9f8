import datetime as dt
from decimal import Decimal

import pytest

from fulfillment.application.service import OrderService, ShipmentService
from fulfillment.domain.models import Carrier, Order, Shipment
from fulfillment.infrastructure.db import Database
from fulfillment.infrastructure.repositories import OrderRepository, ShipmentRepository


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite store so every connection is a real, separate one"""
    db = Database(f"sqlite:///{tmp_path / 'fulfillment.db'}")
    db.init_models()
    yield db
    db.dispose()


@pytest.fixture
def shipment_repository(database):
    return ShipmentRepository(database)


@pytest.fixture
def order_repository(database):
    return OrderRepository(database)


@pytest.fixture
def shipment_service(database):
    return ShipmentService(database)


@pytest.fixture
def order_service(database):
    return OrderService(database)


@pytest.fixture
def shipment_fields():
    def make(**overrides):
        fields = {
            "tracking_code": "TRK-1",
            "carrier": "CARRIER_A",
            "service_level": "EXPRESS",
            "cost": Decimal("1200.00"),
            "status": "PREPARING",
        }
        fields.update(overrides)
        return fields
    return make


@pytest.fixture
def order_fields():
    def make(**overrides):
        fields = {
            "number": "ORD-1",
            "date": dt.date(2025, 1, 10),
            "customer_name": "Jane Doe",
            "total": Decimal("25000.00"),
            "status": "NEW",
        }
        fields.update(overrides)
        return fields
    return make


@pytest.fixture
def make_shipment():
    def make(tracking_code="TRK-1", **overrides):
        values = {"carrier": Carrier.CARRIER_A, "cost": Decimal("100.00")}
        values.update(overrides)
        return Shipment(tracking_code=tracking_code, **values)
    return make


@pytest.fixture
def make_order():
    def make(number="ORD-1", shipment=None, **overrides):
        values = {
            "date": dt.date(2025, 1, 10),
            "customer_name": "Jane Doe",
            "total": Decimal("250.00"),
        }
        values.update(overrides)
        return Order(number=number, shipment=shipment, **values)
    return make
