from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel

from fulfillment.core.logging_config import get_logger
from fulfillment.domain.errors import (
    ConstraintViolationError,
    NotFoundError,
    ReferentialIntegrityError,
    TransactionError,
    ValidationError,
)
from fulfillment.domain.models import (
    Carrier,
    Order,
    OrderStatus,
    ServiceLevel,
    Shipment,
    ShipmentStatus,
)
from fulfillment.infrastructure.db import Database
from fulfillment.infrastructure.repositories import OrderRepository, ShipmentRepository
from fulfillment.infrastructure.transaction import run_in_transaction

from .schemas import OrderCreate, OrderUpdate, ShipmentCreate, ShipmentUpdate, parse_fields
from .validation import OrderValidator, ShipmentValidator

logger = get_logger(__name__)

Fields = Union[BaseModel, Mapping[str, Any]]

_SHIPMENT_ENUMS = {"carrier": Carrier, "service_level": ServiceLevel, "status": ShipmentStatus}
_ORDER_ENUMS = {"status": OrderStatus}


def _require_id(value: Optional[int], field: str = "id") -> int:
    if value is None or value <= 0:
        raise ValidationError(f"{field} must be greater than 0", field=field)
    return value


def _require_key(value: Optional[str], field: str, label: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{label} cannot be empty", field=field)
    return value.strip()


def _clean(field: str, value, enums: dict):
    """Normalise one raw input value: strip text, parse enum literals"""
    if isinstance(value, str):
        value = value.strip()
        if not value:
            value = None
    if field in enums and value is not None:
        value = enums[field].parse(value, field_name=field)
    return value


def build_shipment(data: ShipmentCreate) -> Shipment:
    values = {key: _clean(key, value, _SHIPMENT_ENUMS) for key, value in data.model_dump().items()}
    return Shipment(
        tracking_code=values["tracking_code"],
        carrier=values["carrier"],
        cost=values["cost"],
        service_level=values["service_level"] or ServiceLevel.STANDARD,
        dispatched_on=values["dispatched_on"],
        estimated_on=values["estimated_on"],
        status=values["status"] or ShipmentStatus.PREPARING,
    )


def build_order(data: OrderCreate) -> Order:
    values = {key: _clean(key, value, _ORDER_ENUMS) for key, value in data.model_dump().items()}
    return Order(
        number=values["number"],
        date=values["date"],
        customer_name=values["customer_name"],
        total=values["total"],
        status=values["status"] or OrderStatus.NEW,
    )


class ShipmentService:
    def __init__(
        self,
        database: Database,
        shipments: Optional[ShipmentRepository] = None,
        orders: Optional[OrderRepository] = None,
    ):
        self.database = database
        self.shipments = shipments or ShipmentRepository(database)
        self.orders = orders or OrderRepository(database)
        self.validator = ShipmentValidator(self.shipments)

    def create(self, fields: Fields) -> Shipment:
        shipment = build_shipment(parse_fields(ShipmentCreate, fields))
        self.validator.validate(shipment)
        self.validator.ensure_unique(shipment)
        try:
            self.shipments.create(shipment)
        except ConstraintViolationError:
            # Lost a race for the tracking code: report it like the probe would
            self.validator.ensure_unique(shipment)
            raise
        return shipment

    def list(self) -> list[Shipment]:
        return self.shipments.list_active()

    def get(self, shipment_id: int) -> Shipment:
        _require_id(shipment_id)
        shipment = self.shipments.get_by_id(shipment_id)
        if shipment is None:
            raise NotFoundError("Shipment", shipment_id)
        return shipment

    def find_by_tracking(self, tracking_code: str) -> Shipment:
        tracking_code = _require_key(tracking_code, "tracking_code", "Tracking code")
        shipment = self.shipments.find_by_tracking_code(tracking_code)
        if shipment is None:
            raise NotFoundError("Shipment", tracking_code, key_name="tracking code")
        return shipment

    def update(self, shipment_id: int, fields: Fields) -> Shipment:
        data = parse_fields(ShipmentUpdate, fields)
        shipment = self.get(shipment_id)
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(shipment, key, _clean(key, value, _SHIPMENT_ENUMS))
        self.validator.validate(shipment)
        self.validator.ensure_unique(shipment, updating=True)
        try:
            self.shipments.update(shipment)
        except ConstraintViolationError:
            self.validator.ensure_unique(shipment, updating=True)
            raise
        return shipment

    def delete(self, shipment_id: int) -> None:
        self.get(shipment_id)
        owner = self.orders.find_by_shipment_id(shipment_id)
        if owner is not None:
            raise ReferentialIntegrityError(
                f"Shipment {shipment_id} cannot be deleted: it is assigned to order {owner.number!r}"
            )
        self.shipments.soft_delete(shipment_id)


class OrderService:
    def __init__(
        self,
        database: Database,
        orders: Optional[OrderRepository] = None,
        shipments: Optional[ShipmentRepository] = None,
    ):
        self.database = database
        self.orders = orders or OrderRepository(database)
        self.shipments = shipments or ShipmentRepository(database)
        self.validator = OrderValidator(self.orders, self.shipments)
        self.shipment_validator = ShipmentValidator(self.shipments)

    def create_with_shipment(self, order_fields: Fields, shipment_fields: Optional[Fields]) -> tuple[Order, Shipment]:
        """Create an order and its brand-new shipment atomically.

        Both rows become visible together at commit, or neither does.
        Validation failures are raised before anything is written; any
        failure while writing surfaces as one TransactionError after the
        rollback has completed.
        """
        order_data = parse_fields(OrderCreate, order_fields)
        if order_data.shipment_id is not None:
            raise ValidationError(
                "shipment_id cannot be combined with a new shipment", field="shipment_id"
            )
        order = build_order(order_data)
        self.validator.validate(order)
        self.validator.ensure_unique(order)

        if shipment_fields is None:
            raise ValidationError("The order must have an associated shipment", field="shipment")
        shipment = build_shipment(parse_fields(ShipmentCreate, shipment_fields))
        self.shipment_validator.validate(shipment)
        self.shipment_validator.ensure_unique(shipment)
        order.shipment = shipment
        self.validator.ensure_shipment_available(order)

        def work(conn) -> None:
            # The order row needs the shipment's generated id
            self.shipments.create(shipment, conn)
            self.orders.create(order, conn)

        try:
            run_in_transaction(self.database, work, "Create order with shipment")
        except TransactionError:
            shipment.state.id = None
            order.state.id = None
            raise

        logger.info(
            "Order created with shipment",
            extra={'extra_fields': {'order_id': order.id, 'number': order.number,
                                    'shipment_id': shipment.id, 'tracking_code': shipment.tracking_code}},
        )
        return order, shipment

    def create(self, fields: Fields) -> Order:
        """Create an order for a shipment that is already registered"""
        data = parse_fields(OrderCreate, fields)
        shipment_id = _require_id(data.shipment_id, "shipment_id")
        order = build_order(data)
        self.validator.validate(order)
        self.validator.ensure_unique(order)
        shipment = self.shipments.get_by_id(shipment_id)
        if shipment is None:
            raise ValidationError(f"Shipment {shipment_id} does not exist or was deleted", field="shipment_id")
        order.shipment = shipment
        self.validator.ensure_shipment_available(order)
        try:
            self.orders.create(order)
        except ConstraintViolationError:
            self.validator.ensure_unique(order)
            self.validator.ensure_shipment_available(order)
            raise
        return order

    def list(self) -> list[Order]:
        return self.orders.list_active()

    def get(self, order_id: int) -> Order:
        _require_id(order_id)
        order = self.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def find_by_number(self, number: str) -> Order:
        number = _require_key(number, "number", "Order number")
        order = self.orders.find_by_number(number)
        if order is None:
            raise NotFoundError("Order", number, key_name="number")
        return order

    def update(self, order_id: int, fields: Fields) -> Order:
        data = parse_fields(OrderUpdate, fields)
        order = self.get(order_id)
        updates = data.model_dump(exclude_unset=True)
        shipment_id = updates.pop("shipment_id", None)
        for key, value in updates.items():
            setattr(order, key, _clean(key, value, _ORDER_ENUMS))
        if shipment_id is not None and shipment_id != order.shipment_id:
            _require_id(shipment_id, "shipment_id")
            shipment = self.shipments.get_by_id(shipment_id)
            if shipment is None:
                raise ValidationError(f"Shipment {shipment_id} does not exist or was deleted", field="shipment_id")
            order.shipment = shipment
        self.validator.validate(order)
        self.validator.ensure_unique(order, updating=True)
        self.validator.ensure_shipment_available(order)
        try:
            self.orders.update(order)
        except ConstraintViolationError:
            self.validator.ensure_unique(order, updating=True)
            self.validator.ensure_shipment_available(order)
            raise
        return order

    def delete(self, order_id: int) -> None:
        # The shipment stays; deleting an order never cascades
        self.get(order_id)
        self.orders.soft_delete(order_id)
