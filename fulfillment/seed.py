"""Load sample orders and shipments.

Each order row names the tracking code of its shipment; the pair is created
through the coordinated create, so a failing row leaves nothing behind.
Rows whose order number or tracking code already exists are skipped.

    python -m fulfillment.seed [DATA_DIR]
"""

import csv
import sys
from pathlib import Path
from typing import Optional

from fulfillment.application.service import OrderService
from fulfillment.core import get_logger, setup_logging
from fulfillment.core_settings import get_settings
from fulfillment.domain.errors import FulfillmentError
from fulfillment.infrastructure.db import Database, get_database

logger = get_logger(__name__)

DATA_DIR = Path(__file__).parent / "seed_data"

SHIPMENTS_FILE = "shipments.csv"
ORDERS_FILE = "orders.csv"


def read_rows(path: Path) -> list[dict]:
    with open(path, newline="", encoding="utf-8") as f:
        return [
            {key: (value if value != "" else None) for key, value in row.items()}
            for row in csv.DictReader(f)
        ]


def load(database: Database, data_dir: Path = DATA_DIR) -> dict:
    """Create every sample order with its shipment; returns counters"""
    shipments = {row["tracking_code"]: row for row in read_rows(data_dir / SHIPMENTS_FILE)}
    service = OrderService(database)
    counts = {"created": 0, "skipped": 0, "failed": 0}

    for row in read_rows(data_dir / ORDERS_FILE):
        tracking_code = row.pop("tracking_code")
        shipment_fields = shipments.get(tracking_code)
        if shipment_fields is None:
            logger.warning(f"Order {row['number']} references unknown shipment {tracking_code}")
            counts["failed"] += 1
            continue
        if service.orders.find_by_number(row["number"]) or service.shipments.find_by_tracking_code(tracking_code):
            counts["skipped"] += 1
            continue
        try:
            service.create_with_shipment(row, shipment_fields)
        except FulfillmentError as exc:
            logger.error(f"Could not seed order {row['number']}: {exc}")
            counts["failed"] += 1
            continue
        counts["created"] += 1

    logger.info("Seed finished", extra={'extra_fields': counts})
    return counts


def main(argv: Optional[list[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    settings = get_settings()
    setup_logging(
        service_name=f"{settings.SERVICE_NAME}-seed",
        level=settings.LOG_LEVEL,
        environment=settings.ENVIRONMENT,
        version=settings.SERVICE_VERSION,
        sql_echo=settings.DATABASE_ECHO,
    )
    data_dir = Path(argv[0]) if argv else DATA_DIR
    database = get_database()
    database.init_models()
    counts = load(database, data_dir)
    return 1 if counts["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
