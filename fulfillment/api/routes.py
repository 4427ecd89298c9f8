from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from fulfillment.application.schemas import (
    OrderCreate,
    OrderRead,
    OrderUpdate,
    OrderWithShipmentCreate,
    OrderWithShipmentRead,
    ShipmentCreate,
    ShipmentRead,
    ShipmentUpdate,
)
from fulfillment.application.service import OrderService, ShipmentService
from fulfillment.core.logging_config import get_logger
from fulfillment.domain.errors import (
    ConstraintViolationError,
    FulfillmentError,
    NotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
    StoreConnectionError,
    TransactionError,
    ValidationError,
)
from fulfillment.infrastructure.db import Database, get_database

logger = get_logger(__name__)

shipments_router = APIRouter(prefix="/shipments", tags=["shipments"])
orders_router = APIRouter(prefix="/orders", tags=["orders"])


def get_shipment_service(database: Database = Depends(get_database)) -> ShipmentService:
    return ShipmentService(database)


def get_order_service(database: Database = Depends(get_database)) -> OrderService:
    return OrderService(database)


@shipments_router.get("/", response_model=list[ShipmentRead])
def list_shipments(service: ShipmentService = Depends(get_shipment_service)):
    return [ShipmentRead.model_validate(item) for item in service.list()]


@shipments_router.get("/tracking/{tracking_code}", response_model=ShipmentRead)
def find_shipment_by_tracking(tracking_code: str, service: ShipmentService = Depends(get_shipment_service)):
    return ShipmentRead.model_validate(service.find_by_tracking(tracking_code))


@shipments_router.get("/{shipment_id}", response_model=ShipmentRead)
def get_shipment(shipment_id: int, service: ShipmentService = Depends(get_shipment_service)):
    return ShipmentRead.model_validate(service.get(shipment_id))


@shipments_router.post("/", response_model=ShipmentRead, status_code=201)
def create_shipment(payload: ShipmentCreate, service: ShipmentService = Depends(get_shipment_service)):
    return ShipmentRead.model_validate(service.create(payload))


@shipments_router.put("/{shipment_id}", response_model=ShipmentRead)
def update_shipment(shipment_id: int, payload: ShipmentUpdate,
                    service: ShipmentService = Depends(get_shipment_service)):
    return ShipmentRead.model_validate(service.update(shipment_id, payload))


@shipments_router.delete("/{shipment_id}", status_code=204)
def delete_shipment(shipment_id: int, service: ShipmentService = Depends(get_shipment_service)):
    service.delete(shipment_id)
    return None


@orders_router.get("/", response_model=list[OrderRead])
def list_orders(service: OrderService = Depends(get_order_service)):
    """List active orders, each with its shipment attached"""
    return [OrderRead.model_validate(item) for item in service.list()]


@orders_router.get("/number/{number}", response_model=OrderRead)
def find_order_by_number(number: str, service: OrderService = Depends(get_order_service)):
    return OrderRead.model_validate(service.find_by_number(number))


@orders_router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, service: OrderService = Depends(get_order_service)):
    return OrderRead.model_validate(service.get(order_id))


@orders_router.post("/", response_model=OrderWithShipmentRead, status_code=201)
def create_order_with_shipment(payload: OrderWithShipmentCreate,
                               service: OrderService = Depends(get_order_service)):
    """Create an order together with a new shipment in one transaction"""
    order, shipment = service.create_with_shipment(payload.order, payload.shipment)
    return OrderWithShipmentRead(
        order=OrderRead.model_validate(order),
        shipment=ShipmentRead.model_validate(shipment),
    )


@orders_router.post("/existing-shipment", response_model=OrderRead, status_code=201)
def create_order_for_shipment(payload: OrderCreate, service: OrderService = Depends(get_order_service)):
    """Create an order for an already registered shipment"""
    return OrderRead.model_validate(service.create(payload))


@orders_router.put("/{order_id}", response_model=OrderRead)
def update_order(order_id: int, payload: OrderUpdate, service: OrderService = Depends(get_order_service)):
    return OrderRead.model_validate(service.update(order_id, payload))


@orders_router.delete("/{order_id}", status_code=204)
def delete_order(order_id: int, service: OrderService = Depends(get_order_service)):
    service.delete(order_id)
    return None


ERROR_STATUS_CODES = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (ReferentialIntegrityError, 409),
    (ConstraintViolationError, 409),
    (PersistenceError, 500),
    (StoreConnectionError, 503),
    (TransactionError, 500),
]


def status_code_for(exc: FulfillmentError) -> int:
    for error_cls, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return status_code
    return 500


async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    status_code = status_code_for(exc)
    content = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    if status_code >= 500:
        logger.error(
            f"{request.method} {request.url.path} failed: {exc.message}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )
    return JSONResponse(status_code=status_code, content=content)


def register_routes(app: FastAPI) -> None:
    app.include_router(shipments_router)
    app.include_router(orders_router)
    app.add_exception_handler(FulfillmentError, fulfillment_error_handler)
