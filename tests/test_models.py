import pytest

from fulfillment.domain.errors import EnumParseError, ValidationError
from fulfillment.domain.models import (
    Carrier,
    OrderStatus,
    ServiceLevel,
    ShipmentStatus,
    SoftDeleteState,
)


def test_parse_normalises_case_and_whitespace():
    assert Carrier.parse("  carrier_b ") is Carrier.CARRIER_B
    assert ShipmentStatus.parse("in transit") is ShipmentStatus.IN_TRANSIT
    assert ShipmentStatus.parse("In-Transit") is ShipmentStatus.IN_TRANSIT
    assert OrderStatus.parse("invoiced") is OrderStatus.INVOICED


def test_parse_returns_members_unchanged():
    assert ServiceLevel.parse(ServiceLevel.EXPRESS) is ServiceLevel.EXPRESS


@pytest.mark.parametrize("raw", ["EXPRES", "", "   ", None, 3])
def test_parse_rejects_unknown_values_explicitly(raw):
    with pytest.raises(EnumParseError) as excinfo:
        ServiceLevel.parse(raw, field_name="service_level")
    error = excinfo.value
    assert isinstance(error, ValidationError)
    assert not isinstance(error, ValueError)
    assert error.field == "service_level"
    assert error.allowed == ["STANDARD", "EXPRESS"]


def test_soft_delete_state_defaults(make_shipment, make_order):
    state = SoftDeleteState()
    assert state.id is None
    assert state.deleted is False
    assert not state.is_persisted

    shipment = make_shipment()
    assert shipment.service_level is ServiceLevel.STANDARD
    assert shipment.status is ShipmentStatus.PREPARING
    assert shipment.id is None

    order = make_order(shipment=shipment)
    assert order.status is OrderStatus.NEW
    assert order.shipment_id is None
    shipment.state.id = 7
    assert order.shipment_id == 7


def test_entities_do_not_share_state(make_shipment):
    first, second = make_shipment("A"), make_shipment("B")
    first.state.id = 1
    assert second.state.id is None


def test_soft_delete_state_flags():
    assert SoftDeleteState(id=3).is_persisted
    assert not SoftDeleteState(id=0).is_persisted
    assert SoftDeleteState(id=3).is_active
    assert not SoftDeleteState(id=3, deleted=True).is_active
