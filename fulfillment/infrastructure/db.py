"""
Store access: schema definition, engine and connection provider.

Both tables keep their natural keys unique among *active* rows only, through
partial unique indexes, so a soft-deleted Shipment or Order frees its
tracking code / number. ``order.shipment_id`` is mandatory, restricted on
delete, and unique among active orders: one Shipment serves at most one
Order.
"""

from functools import lru_cache
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    event,
    false,
    inspect,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from fulfillment.core.logging_config import get_logger, redact_url
from fulfillment.core_settings import get_settings
from fulfillment.domain.errors import StoreConnectionError
from fulfillment.domain.models import Carrier, OrderStatus, ServiceLevel, ShipmentStatus

logger = get_logger(__name__)

metadata = MetaData()


def _in_enum(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


shipment_table = Table(
    "shipment",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("deleted", Boolean, nullable=False, default=False, server_default=false()),
    Column("tracking_code", String(40), nullable=False),
    Column("carrier", String(20), nullable=False),
    Column("service_level", String(10), nullable=False, server_default=ServiceLevel.STANDARD.value),
    Column("cost", Numeric(10, 2), nullable=False),
    Column("dispatched_on", Date, nullable=True),
    Column("estimated_on", Date, nullable=True),
    Column("status", String(15), nullable=False, server_default=ShipmentStatus.PREPARING.value),
    CheckConstraint("cost >= 0", name="chk_shipment_cost"),
    CheckConstraint(
        "dispatched_on IS NULL OR estimated_on IS NULL OR estimated_on >= dispatched_on",
        name="chk_shipment_dates",
    ),
    CheckConstraint(_in_enum("carrier", Carrier), name="chk_shipment_carrier"),
    CheckConstraint(_in_enum("service_level", ServiceLevel), name="chk_shipment_service_level"),
    CheckConstraint(_in_enum("status", ShipmentStatus), name="chk_shipment_status"),
)

order_table = Table(
    "order",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("deleted", Boolean, nullable=False, default=False, server_default=false()),
    Column("number", String(20), nullable=False),
    Column("date", Date, nullable=False),
    Column("customer_name", String(120), nullable=False),
    Column("total", Numeric(12, 2), nullable=False),
    Column("status", String(10), nullable=False, server_default=OrderStatus.NEW.value),
    Column(
        "shipment_id",
        Integer,
        ForeignKey("shipment.id", name="fk_order_shipment", ondelete="RESTRICT", onupdate="CASCADE"),
        nullable=False,
    ),
    CheckConstraint("total >= 0", name="chk_order_total"),
    CheckConstraint(_in_enum("status", OrderStatus), name="chk_order_status"),
)

Index(
    "uq_shipment_tracking_active",
    shipment_table.c.tracking_code,
    unique=True,
    sqlite_where=shipment_table.c.deleted == false(),
    postgresql_where=shipment_table.c.deleted == false(),
)
Index(
    "uq_order_number_active",
    order_table.c.number,
    unique=True,
    sqlite_where=order_table.c.deleted == false(),
    postgresql_where=order_table.c.deleted == false(),
)
Index(
    "uq_order_shipment_active",
    order_table.c.shipment_id,
    unique=True,
    sqlite_where=order_table.c.deleted == false(),
    postgresql_where=order_table.c.deleted == false(),
)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Connection provider for one relational store.

    ``connect()`` hands out a fresh connection that the caller owns and must
    close (``with database.connect() as conn``). Nothing is shared between
    callers apart from the engine's pool.
    """

    def __init__(self, url: str, echo: bool = False, engine: Optional[Engine] = None):
        self.url = url
        self.engine = engine or create_engine(url, echo=echo, future=True, pool_pre_ping=True)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

    def connect(self) -> Connection:
        try:
            return self.engine.connect()
        except DBAPIError as exc:
            logger.error(
                "Could not connect to the store",
                extra={'extra_fields': {'url': redact_url(self.url)}},
            )
            raise StoreConnectionError(f"Could not connect to the store: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StoreConnectionError(f"Could not connect to the store: {exc}") from exc

    def init_models(self) -> None:
        with self.connect() as conn:
            metadata.create_all(conn)
            conn.commit()
        logger.info("Database schema ensured", extra={'extra_fields': {'tables': sorted(metadata.tables)}})

    def ping(self) -> None:
        with self.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()

    def missing_tables(self) -> list[str]:
        with self.connect() as conn:
            present = set(inspect(conn).get_table_names())
        return sorted(set(metadata.tables) - present)

    def dispose(self) -> None:
        self.engine.dispose()


@lru_cache
def get_database() -> Database:
    settings = get_settings()
    return Database(settings.database_url, echo=settings.DATABASE_ECHO)
