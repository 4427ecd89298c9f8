import datetime as dt
from decimal import Decimal

import pytest

from fulfillment.application.validation import (
    OrderValidator,
    ShipmentValidator,
    validate_order,
    validate_shipment,
)
from fulfillment.domain.errors import EnumParseError, ValidationError


def test_valid_shipment_passes(make_shipment):
    validate_shipment(make_shipment(dispatched_on=dt.date(2025, 2, 1), estimated_on=dt.date(2025, 2, 1)))


@pytest.mark.parametrize("field", ["tracking_code", "carrier", "cost", "service_level", "status"])
def test_shipment_required_fields(make_shipment, field):
    shipment = make_shipment()
    setattr(shipment, field, None)
    with pytest.raises(ValidationError) as excinfo:
        validate_shipment(shipment)
    assert excinfo.value.field == field


def test_blank_tracking_code_is_missing(make_shipment):
    with pytest.raises(ValidationError, match="required"):
        validate_shipment(make_shipment("   "))


def test_tracking_code_length_limit(make_shipment):
    validate_shipment(make_shipment("X" * 40))
    with pytest.raises(ValidationError) as excinfo:
        validate_shipment(make_shipment("X" * 41))
    assert excinfo.value.field == "tracking_code"
    assert excinfo.value.limit == 40
    assert "40" in str(excinfo.value)


def test_negative_cost_rejected(make_shipment):
    with pytest.raises(ValidationError) as excinfo:
        validate_shipment(make_shipment(cost=Decimal("-0.01")))
    assert excinfo.value.field == "cost"


def test_estimated_before_dispatched_rejected(make_shipment):
    shipment = make_shipment(dispatched_on=dt.date(2025, 2, 10), estimated_on=dt.date(2025, 2, 5))
    with pytest.raises(ValidationError) as excinfo:
        validate_shipment(shipment)
    assert excinfo.value.field == "estimated_on"


def test_one_sided_dates_are_fine(make_shipment):
    validate_shipment(make_shipment(dispatched_on=dt.date(2025, 2, 10)))
    validate_shipment(make_shipment(estimated_on=dt.date(2025, 2, 5)))


def test_raw_enum_literal_is_checked(make_shipment):
    with pytest.raises(EnumParseError):
        validate_shipment(make_shipment(carrier="CARRIER_Z"))


@pytest.mark.parametrize(
    "field, value, limit",
    [("number", "N" * 21, 20), ("customer_name", "C" * 121, 120)],
)
def test_order_length_limits(make_order, field, value, limit):
    order = make_order()
    setattr(order, field, value)
    with pytest.raises(ValidationError) as excinfo:
        validate_order(order)
    assert excinfo.value.field == field
    assert excinfo.value.limit == limit


@pytest.mark.parametrize("field", ["number", "date", "customer_name", "total", "status"])
def test_order_required_fields(make_order, field):
    order = make_order()
    setattr(order, field, None)
    with pytest.raises(ValidationError) as excinfo:
        validate_order(order)
    assert excinfo.value.field == field


def test_negative_total_rejected(make_order):
    with pytest.raises(ValidationError) as excinfo:
        validate_order(make_order(total=Decimal("-1")))
    assert excinfo.value.field == "total"


def test_tracking_code_uniqueness(shipment_repository, make_shipment):
    validator = ShipmentValidator(shipment_repository)
    stored = make_shipment("TRK-1")
    shipment_repository.create(stored)

    with pytest.raises(ValidationError, match="already exists"):
        validator.ensure_unique(make_shipment("TRK-1"))
    # Updating the row that owns the code is not a conflict
    validator.ensure_unique(stored, updating=True)
    validator.ensure_unique(make_shipment("TRK-2"))


def test_deleted_shipment_frees_its_tracking_code(shipment_repository, make_shipment):
    validator = ShipmentValidator(shipment_repository)
    stored = make_shipment("TRK-1")
    shipment_repository.create(stored)
    shipment_repository.soft_delete(stored.id)
    validator.ensure_unique(make_shipment("TRK-1"))


def test_order_number_uniqueness_on_update(order_repository, shipment_repository, make_order, make_shipment):
    validator = OrderValidator(order_repository, shipment_repository)
    first_shipment, second_shipment = make_shipment("TRK-1"), make_shipment("TRK-2")
    shipment_repository.create(first_shipment)
    shipment_repository.create(second_shipment)
    first = make_order("ORD-1", shipment=first_shipment)
    second = make_order("ORD-2", shipment=second_shipment)
    order_repository.create(first)
    order_repository.create(second)

    second.number = "ORD-1"
    with pytest.raises(ValidationError) as excinfo:
        validator.ensure_unique(second, updating=True)
    assert excinfo.value.field == "number"


def test_shipment_must_be_present_and_unused(order_repository, shipment_repository, make_order, make_shipment):
    validator = OrderValidator(order_repository, shipment_repository)
    with pytest.raises(ValidationError) as excinfo:
        validator.ensure_shipment_available(make_order(shipment=None))
    assert excinfo.value.field == "shipment"

    shipment = make_shipment("TRK-1")
    shipment_repository.create(shipment)
    owner = make_order("ORD-1", shipment=shipment)
    order_repository.create(owner)

    with pytest.raises(ValidationError, match="already assigned"):
        validator.ensure_shipment_available(make_order("ORD-2", shipment=shipment))
    validator.ensure_shipment_available(owner)


@pytest.mark.parametrize("cost", [Decimal("1.005"), Decimal("0.001"), Decimal("12.3456")])
def test_cost_finer_than_cents_rejected(make_shipment, cost):
    with pytest.raises(ValidationError) as excinfo:
        validate_shipment(make_shipment(cost=cost))
    assert excinfo.value.field == "cost"
    assert excinfo.value.limit == 2


def test_trailing_zeros_are_not_extra_precision(make_shipment, make_order):
    validate_shipment(make_shipment(cost=Decimal("1.5000")))
    validate_order(make_order(total=Decimal("10.100")))


@pytest.mark.parametrize(
    "field, too_large, largest",
    [("cost", Decimal("100000000"), Decimal("99999999.99")),
     ("total", Decimal("10000000000"), Decimal("9999999999.99"))],
)
def test_amounts_must_fit_their_columns(make_shipment, make_order, field, too_large, largest):
    check, build = (validate_shipment, make_shipment) if field == "cost" else (validate_order, make_order)
    check(build(**{field: largest}))
    with pytest.raises(ValidationError) as excinfo:
        check(build(**{field: too_large}))
    assert excinfo.value.field == field
    assert excinfo.value.limit == int(too_large)


def test_non_finite_amount_rejected(make_order):
    with pytest.raises(ValidationError) as excinfo:
        validate_order(make_order(total=Decimal("NaN")))
    assert excinfo.value.field == "total"


def test_deleted_shipment_is_not_available(order_repository, shipment_repository, make_order, make_shipment):
    validator = OrderValidator(order_repository, shipment_repository)
    shipment = make_shipment("TRK-1")
    shipment_repository.create(shipment)
    shipment.state.deleted = True
    with pytest.raises(ValidationError, match="does not exist or was deleted"):
        validator.ensure_shipment_available(make_order(shipment=shipment))
