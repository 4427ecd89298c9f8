"""
Repositories for Shipment and Order.

Every operation runs either on its own ambient connection (acquired for the
call, committed when it writes, released on every exit path) or on a
caller-owned transactional connection passed as ``conn``. A caller-owned
connection is never committed, rolled back or closed here.

Reads return ``None`` when no active row matches; updates and soft deletes
raise NotFoundError. A shipment still referenced by an active order cannot be
soft-deleted (ReferentialIntegrityError).
"""

from typing import Callable, Optional, TypeVar

from sqlalchemy import and_, false, insert, select, true, update
from sqlalchemy.engine import Connection, Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fulfillment.core.logging_config import get_logger
from fulfillment.domain.errors import (
    ConstraintViolationError,
    NotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
    ValidationError,
)
from fulfillment.domain.models import (
    Carrier,
    Order,
    OrderStatus,
    ServiceLevel,
    Shipment,
    ShipmentStatus,
    SoftDeleteState,
)

from .db import Database, order_table, shipment_table

logger = get_logger(__name__)

T = TypeVar("T")

_SHIPMENT_PREFIX = "shipment__"
_joined_shipment_columns = [c.label(f"{_SHIPMENT_PREFIX}{c.name}") for c in shipment_table.c]


class _Repository:
    entity_name = "entity"

    def __init__(self, database: Database):
        self.database = database

    def _run(
        self,
        action: str,
        work: Callable[[Connection], T],
        conn: Optional[Connection] = None,
        write: bool = False,
    ) -> T:
        """Run ``work`` on ``conn`` or on an ambient connection.

        Store errors are translated into PersistenceError; domain errors
        raised by ``work`` propagate unchanged.
        """
        try:
            if conn is not None:
                return work(conn)
            with self.database.connect() as own:
                result = work(own)
                if write:
                    own.commit()
                return result
        except IntegrityError as exc:
            logger.warning(
                f"{self.entity_name} {action} rejected by store constraint",
                extra={'extra_fields': {'error': str(exc.orig)}},
            )
            raise ConstraintViolationError(
                f"Could not {action} {self.entity_name}: {exc.orig}"
            ) from exc
        except SQLAlchemyError as exc:
            logger.error(
                f"{self.entity_name} {action} failed",
                exc_info=True,
            )
            raise PersistenceError(f"Could not {action} {self.entity_name}: {exc}") from exc


def _shipment_from_mapping(row, prefix: str = "") -> Shipment:
    return Shipment(
        tracking_code=row[f"{prefix}tracking_code"],
        carrier=Carrier.parse(row[f"{prefix}carrier"]),
        cost=row[f"{prefix}cost"],
        service_level=ServiceLevel.parse(row[f"{prefix}service_level"]),
        dispatched_on=row[f"{prefix}dispatched_on"],
        estimated_on=row[f"{prefix}estimated_on"],
        status=ShipmentStatus.parse(row[f"{prefix}status"]),
        state=SoftDeleteState(id=row[f"{prefix}id"], deleted=bool(row[f"{prefix}deleted"])),
    )


def _order_from_row(row: Row) -> Order:
    mapping = row._mapping
    shipment = None
    # LEFT JOIN: no (active) shipment leaves every shipment__ column NULL
    if mapping[f"{_SHIPMENT_PREFIX}id"] is not None:
        shipment = _shipment_from_mapping(mapping, _SHIPMENT_PREFIX)
    return Order(
        number=mapping["number"],
        date=mapping["date"],
        customer_name=mapping["customer_name"],
        total=mapping["total"],
        status=OrderStatus.parse(mapping["status"]),
        shipment=shipment,
        state=SoftDeleteState(id=mapping["id"], deleted=bool(mapping["deleted"])),
    )


class ShipmentRepository(_Repository):
    entity_name = "shipment"

    @staticmethod
    def _values(shipment: Shipment) -> dict:
        return {
            "tracking_code": shipment.tracking_code,
            "carrier": shipment.carrier.value,
            "service_level": shipment.service_level.value,
            "cost": shipment.cost,
            "dispatched_on": shipment.dispatched_on,
            "estimated_on": shipment.estimated_on,
            "status": shipment.status.value,
        }

    def _active(self):
        return select(shipment_table).where(shipment_table.c.deleted == false())

    def create(self, shipment: Shipment, conn: Optional[Connection] = None) -> int:
        def work(c: Connection) -> int:
            result = c.execute(insert(shipment_table).values(deleted=False, **self._values(shipment)))
            return result.inserted_primary_key[0]

        new_id = self._run("create", work, conn, write=True)
        shipment.state.id = new_id
        shipment.state.deleted = False
        logger.info(
            "Shipment created",
            extra={'extra_fields': {'shipment_id': new_id, 'tracking_code': shipment.tracking_code,
                                    'transactional': conn is not None}},
        )
        return new_id

    def get_by_id(self, shipment_id: int, conn: Optional[Connection] = None) -> Optional[Shipment]:
        def work(c: Connection) -> Optional[Shipment]:
            row = c.execute(self._active().where(shipment_table.c.id == shipment_id)).first()
            return _shipment_from_mapping(row._mapping) if row else None

        return self._run("read", work, conn)

    def list_active(self, conn: Optional[Connection] = None) -> list[Shipment]:
        def work(c: Connection) -> list[Shipment]:
            rows = c.execute(self._active().order_by(shipment_table.c.id)).all()
            return [_shipment_from_mapping(row._mapping) for row in rows]

        return self._run("list", work, conn)

    def find_by_tracking_code(self, tracking_code: str, conn: Optional[Connection] = None) -> Optional[Shipment]:
        def work(c: Connection) -> Optional[Shipment]:
            row = c.execute(self._active().where(shipment_table.c.tracking_code == tracking_code)).first()
            return _shipment_from_mapping(row._mapping) if row else None

        return self._run("read", work, conn)

    def update(self, shipment: Shipment, conn: Optional[Connection] = None) -> None:
        def work(c: Connection) -> None:
            result = c.execute(
                update(shipment_table)
                .where(shipment_table.c.id == shipment.id, shipment_table.c.deleted == false())
                .values(**self._values(shipment))
            )
            if result.rowcount == 0:
                raise NotFoundError("Shipment", shipment.id)

        self._run("update", work, conn, write=True)
        logger.info("Shipment updated", extra={'extra_fields': {'shipment_id': shipment.id}})

    def soft_delete(self, shipment_id: int, conn: Optional[Connection] = None) -> None:
        """Mark the shipment deleted unless an active order still references it.

        The reference check is part of the UPDATE itself, so an order inserted
        after any earlier probe still blocks the delete.
        """
        referenced = (
            select(order_table.c.id)
            .where(order_table.c.shipment_id == shipment_id, order_table.c.deleted == false())
            .exists()
        )

        def work(c: Connection) -> None:
            result = c.execute(
                update(shipment_table)
                .where(
                    shipment_table.c.id == shipment_id,
                    shipment_table.c.deleted == false(),
                    ~referenced,
                )
                .values(deleted=true())
            )
            if result.rowcount == 1:
                return
            if c.execute(self._active().where(shipment_table.c.id == shipment_id)).first() is None:
                raise NotFoundError("Shipment", shipment_id)
            raise ReferentialIntegrityError(
                f"Shipment {shipment_id} cannot be deleted: an active order references it"
            )

        self._run("delete", work, conn, write=True)
        logger.info("Shipment soft-deleted", extra={'extra_fields': {'shipment_id': shipment_id}})


class OrderRepository(_Repository):
    entity_name = "order"

    @staticmethod
    def _values(order: Order) -> dict:
        if order.shipment_id is None:
            raise ValidationError("Order must reference a persisted shipment", field="shipment")
        return {
            "number": order.number,
            "date": order.date,
            "customer_name": order.customer_name,
            "total": order.total,
            "status": order.status.value,
            "shipment_id": order.shipment_id,
        }

    def _active(self):
        # Only active shipments are attached; a deleted one reads as "no shipment"
        joined = order_table.outerjoin(
            shipment_table,
            and_(order_table.c.shipment_id == shipment_table.c.id, shipment_table.c.deleted == false()),
        )
        return (
            select(order_table, *_joined_shipment_columns)
            .select_from(joined)
            .where(order_table.c.deleted == false())
        )

    def create(self, order: Order, conn: Optional[Connection] = None) -> int:
        values = self._values(order)

        def work(c: Connection) -> int:
            result = c.execute(insert(order_table).values(deleted=False, **values))
            return result.inserted_primary_key[0]

        new_id = self._run("create", work, conn, write=True)
        order.state.id = new_id
        order.state.deleted = False
        logger.info(
            "Order created",
            extra={'extra_fields': {'order_id': new_id, 'number': order.number,
                                    'shipment_id': order.shipment_id, 'transactional': conn is not None}},
        )
        return new_id

    def get_by_id(self, order_id: int, conn: Optional[Connection] = None) -> Optional[Order]:
        def work(c: Connection) -> Optional[Order]:
            row = c.execute(self._active().where(order_table.c.id == order_id)).first()
            return _order_from_row(row) if row else None

        return self._run("read", work, conn)

    def list_active(self, conn: Optional[Connection] = None) -> list[Order]:
        def work(c: Connection) -> list[Order]:
            rows = c.execute(self._active().order_by(order_table.c.id)).all()
            return [_order_from_row(row) for row in rows]

        return self._run("list", work, conn)

    def find_by_number(self, number: str, conn: Optional[Connection] = None) -> Optional[Order]:
        def work(c: Connection) -> Optional[Order]:
            row = c.execute(self._active().where(order_table.c.number == number)).first()
            return _order_from_row(row) if row else None

        return self._run("read", work, conn)

    def find_by_shipment_id(self, shipment_id: int, conn: Optional[Connection] = None) -> Optional[Order]:
        def work(c: Connection) -> Optional[Order]:
            row = c.execute(self._active().where(order_table.c.shipment_id == shipment_id)).first()
            return _order_from_row(row) if row else None

        return self._run("read", work, conn)

    def update(self, order: Order, conn: Optional[Connection] = None) -> None:
        values = self._values(order)

        def work(c: Connection) -> None:
            result = c.execute(
                update(order_table)
                .where(order_table.c.id == order.id, order_table.c.deleted == false())
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("Order", order.id)

        self._run("update", work, conn, write=True)
        logger.info("Order updated", extra={'extra_fields': {'order_id': order.id}})

    def soft_delete(self, order_id: int, conn: Optional[Connection] = None) -> None:
        def work(c: Connection) -> None:
            result = c.execute(
                update(order_table)
                .where(order_table.c.id == order_id, order_table.c.deleted == false())
                .values(deleted=true())
            )
            if result.rowcount == 0:
                raise NotFoundError("Order", order_id)

        self._run("delete", work, conn, write=True)
        logger.info("Order soft-deleted", extra={'extra_fields': {'order_id': order_id}})
