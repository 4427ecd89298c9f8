"""
Validation layer.

``validate_shipment`` / ``validate_order`` are pure field checks. The
validator classes add the checks that must look at the store: natural-key
uniqueness among active rows and the one-Order-per-Shipment rule.

Uniqueness is check-then-act: two concurrent callers can both pass the probe.
The partial unique indexes in ``fulfillment.infrastructure.db`` reject the
second insert, and the services translate that rejection back into the same
ValidationError by probing again.
"""

from decimal import Decimal
from typing import Optional

from fulfillment.core.logging_config import get_logger
from fulfillment.domain.errors import ValidationError
from fulfillment.domain.models import Carrier, Order, OrderStatus, ServiceLevel, Shipment, ShipmentStatus
from fulfillment.infrastructure.repositories import OrderRepository, ShipmentRepository

logger = get_logger(__name__)

TRACKING_CODE_MAX_LENGTH = 40
ORDER_NUMBER_MAX_LENGTH = 20
CUSTOMER_NAME_MAX_LENGTH = 120

# Numeric(10, 2) and Numeric(12, 2) columns
AMOUNT_DECIMAL_PLACES = 2
AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_DECIMAL_PLACES)
COST_UPPER_BOUND = Decimal(10) ** 8
TOTAL_UPPER_BOUND = Decimal(10) ** 10


def _require_text(value: Optional[str], field: str, label: str, limit: int) -> None:
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} is required", field=field)
    if len(value) > limit:
        raise ValidationError(f"{label} cannot exceed {limit} characters", field=field, limit=limit)


def _require_amount(value: Optional[Decimal], field: str, label: str, upper_bound: Decimal) -> None:
    """Non-negative, below ``upper_bound`` and exact at two decimal places"""
    if value is None:
        raise ValidationError(f"{label} is required", field=field)
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if not amount.is_finite():
        raise ValidationError(f"{label} must be a finite amount", field=field)
    if amount < 0:
        raise ValidationError(f"{label} cannot be negative", field=field)
    if amount >= upper_bound:
        raise ValidationError(f"{label} must be less than {upper_bound}", field=field, limit=int(upper_bound))
    # The store keeps two decimal places and would round anything finer
    if amount != amount.quantize(AMOUNT_QUANTUM):
        raise ValidationError(
            f"{label} cannot have more than {AMOUNT_DECIMAL_PLACES} decimal places",
            field=field,
            limit=AMOUNT_DECIMAL_PLACES,
        )


def _require_member(value, enum_cls, field: str, label: str) -> None:
    if value is None:
        raise ValidationError(f"{label} is required", field=field)
    if not isinstance(value, enum_cls):
        enum_cls.parse(value, field_name=field)


def validate_shipment(shipment: Optional[Shipment]) -> None:
    if shipment is None:
        raise ValidationError("Shipment is required", field="shipment")
    _require_text(shipment.tracking_code, "tracking_code", "Tracking code", TRACKING_CODE_MAX_LENGTH)
    _require_member(shipment.carrier, Carrier, "carrier", "Carrier")
    _require_member(shipment.service_level, ServiceLevel, "service_level", "Service level")
    _require_amount(shipment.cost, "cost", "Cost", COST_UPPER_BOUND)
    _require_member(shipment.status, ShipmentStatus, "status", "Shipment status")
    if (
        shipment.dispatched_on is not None
        and shipment.estimated_on is not None
        and shipment.estimated_on < shipment.dispatched_on
    ):
        raise ValidationError(
            f"Estimated date {shipment.estimated_on.isoformat()} cannot be before "
            f"dispatch date {shipment.dispatched_on.isoformat()}",
            field="estimated_on",
        )


def validate_order(order: Optional[Order]) -> None:
    if order is None:
        raise ValidationError("Order is required", field="order")
    _require_text(order.number, "number", "Order number", ORDER_NUMBER_MAX_LENGTH)
    if order.date is None:
        raise ValidationError("Order date is required", field="date")
    _require_text(order.customer_name, "customer_name", "Customer name", CUSTOMER_NAME_MAX_LENGTH)
    _require_amount(order.total, "total", "Total", TOTAL_UPPER_BOUND)
    _require_member(order.status, OrderStatus, "status", "Order status")


class ShipmentValidator:
    def __init__(self, shipments: ShipmentRepository):
        self.shipments = shipments

    def validate(self, shipment: Shipment) -> None:
        validate_shipment(shipment)

    def ensure_unique(self, shipment: Shipment, updating: bool = False) -> None:
        existing = self.shipments.find_by_tracking_code(shipment.tracking_code)
        if existing is None:
            return
        if not updating or existing.id != shipment.id:
            logger.info(
                "Duplicate tracking code rejected",
                extra={'extra_fields': {'tracking_code': shipment.tracking_code, 'existing_id': existing.id}},
            )
            raise ValidationError(
                f"A shipment with tracking code {shipment.tracking_code!r} already exists",
                field="tracking_code",
            )


class OrderValidator:
    def __init__(self, orders: OrderRepository, shipments: ShipmentRepository):
        self.orders = orders
        self.shipments = shipments

    def validate(self, order: Order) -> None:
        validate_order(order)

    def ensure_unique(self, order: Order, updating: bool = False) -> None:
        existing = self.orders.find_by_number(order.number)
        if existing is None:
            return
        if not updating or existing.id != order.id:
            logger.info(
                "Duplicate order number rejected",
                extra={'extra_fields': {'number': order.number, 'existing_id': existing.id}},
            )
            raise ValidationError(
                f"An order with number {order.number!r} already exists",
                field="number",
            )

    def ensure_shipment_available(self, order: Order) -> None:
        """Every order needs a shipment; a persisted one must be active and unused"""
        if order.shipment is None:
            raise ValidationError("The order must have an associated shipment", field="shipment")
        state = order.shipment.state
        if not state.is_persisted:
            # New shipment, inserted together with the order
            return
        shipment_id = state.id
        if not state.is_active or self.shipments.get_by_id(shipment_id) is None:
            raise ValidationError(f"Shipment {shipment_id} does not exist or was deleted", field="shipment_id")
        owner = self.orders.find_by_shipment_id(shipment_id)
        if owner is not None and owner.id != order.id:
            raise ValidationError(
                f"Shipment {shipment_id} is already assigned to order {owner.number!r}",
                field="shipment_id",
            )
