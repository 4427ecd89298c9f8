import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from .errors import EnumParseError


class ParsableEnum(str, Enum):
    """Closed string enumeration with an explicit, non-guessing parser"""

    @classmethod
    def parse(cls, raw, field_name: Optional[str] = None):
        """Return the member matching ``raw`` or raise EnumParseError.

        Case, surrounding whitespace and space/hyphen separators are
        normalised; anything else that does not match a member fails.
        """
        if isinstance(raw, cls):
            return raw
        allowed = [member.value for member in cls]
        if raw is None or not isinstance(raw, str) or not raw.strip():
            raise EnumParseError(cls.__name__, raw, allowed, field=field_name)
        key = raw.strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls[key]
        except KeyError:
            raise EnumParseError(cls.__name__, raw, allowed, field=field_name) from None


class Carrier(ParsableEnum):
    CARRIER_A = "CARRIER_A"
    CARRIER_B = "CARRIER_B"
    CARRIER_C = "CARRIER_C"


class ServiceLevel(ParsableEnum):
    STANDARD = "STANDARD"
    EXPRESS = "EXPRESS"


class ShipmentStatus(ParsableEnum):
    PREPARING = "PREPARING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"


class OrderStatus(ParsableEnum):
    NEW = "NEW"
    INVOICED = "INVOICED"
    SHIPPED = "SHIPPED"


@dataclass
class SoftDeleteState:
    """Identity and logical-deletion flag shared by every entity"""
    id: Optional[int] = None
    deleted: bool = False

    @property
    def is_persisted(self) -> bool:
        return self.id is not None and self.id > 0

    @property
    def is_active(self) -> bool:
        return not self.deleted


@dataclass
class Shipment:
    tracking_code: Optional[str]
    carrier: Optional[Carrier]
    cost: Optional[Decimal]
    service_level: Optional[ServiceLevel] = ServiceLevel.STANDARD
    dispatched_on: Optional[dt.date] = None
    estimated_on: Optional[dt.date] = None
    status: Optional[ShipmentStatus] = ShipmentStatus.PREPARING
    state: SoftDeleteState = field(default_factory=SoftDeleteState)

    @property
    def id(self) -> Optional[int]:
        return self.state.id

    @property
    def deleted(self) -> bool:
        return self.state.deleted


@dataclass
class Order:
    number: Optional[str]
    date: Optional[dt.date]
    customer_name: Optional[str]
    total: Optional[Decimal]
    status: Optional[OrderStatus] = OrderStatus.NEW
    # Owned, one-directional: the Shipment never points back at its Order
    shipment: Optional[Shipment] = None
    state: SoftDeleteState = field(default_factory=SoftDeleteState)

    @property
    def id(self) -> Optional[int]:
        return self.state.id

    @property
    def deleted(self) -> bool:
        return self.state.deleted

    @property
    def shipment_id(self) -> Optional[int]:
        return self.shipment.id if self.shipment is not None else None
