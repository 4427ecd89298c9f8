import datetime as dt
from decimal import Decimal
from typing import Any, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from fulfillment.domain.errors import ValidationError
from fulfillment.domain.models import Carrier, OrderStatus, ServiceLevel, ShipmentStatus

# Input field sets are deliberately loose: presence, lengths, ranges and
# enum membership are checked by the validation layer so every failure
# surfaces as a ValidationError naming the field.


class ShipmentCreate(BaseModel):
    tracking_code: Optional[str] = None
    carrier: Optional[str] = None
    service_level: Optional[str] = None
    cost: Optional[Decimal] = None
    dispatched_on: Optional[dt.date] = None
    estimated_on: Optional[dt.date] = None
    status: Optional[str] = None


class ShipmentUpdate(ShipmentCreate):
    pass


class OrderCreate(BaseModel):
    number: Optional[str] = None
    date: Optional[dt.date] = None
    customer_name: Optional[str] = None
    total: Optional[Decimal] = None
    status: Optional[str] = None
    # Only for orders placed against an already registered shipment
    shipment_id: Optional[int] = None


class OrderUpdate(OrderCreate):
    pass


class OrderWithShipmentCreate(BaseModel):
    order: OrderCreate
    shipment: ShipmentCreate


class ShipmentRead(BaseModel):
    id: int
    tracking_code: str
    carrier: Carrier
    service_level: ServiceLevel
    cost: Decimal
    dispatched_on: Optional[dt.date] = None
    estimated_on: Optional[dt.date] = None
    status: ShipmentStatus
    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: int
    number: str
    date: dt.date
    customer_name: str
    total: Decimal
    status: OrderStatus
    shipment_id: Optional[int] = None
    shipment: Optional[ShipmentRead] = None
    model_config = ConfigDict(from_attributes=True)


class OrderWithShipmentRead(BaseModel):
    order: OrderRead
    shipment: ShipmentRead


SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_fields(schema: Type[SchemaT], fields: Union[SchemaT, BaseModel, Mapping[str, Any], None]) -> SchemaT:
    """Coerce ``fields`` into ``schema``, reporting type errors as ValidationError"""
    if isinstance(fields, schema):
        return fields
    if fields is None:
        fields = {}
    elif isinstance(fields, BaseModel):
        fields = fields.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(fields)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or None
        raise ValidationError(f"Invalid value for {field}: {error['msg']}", field=field) from exc
