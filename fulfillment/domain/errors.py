"""
Error taxonomy for the fulfillment service.

Every error carries a human readable message. The HTTP adapter maps each
class to a status code, see ``fulfillment.api.routes``.
"""

from typing import Optional


class FulfillmentError(Exception):
    """Base class for every error raised by the service"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(FulfillmentError):
    """Caller-correctable input problem, detected before any write"""

    def __init__(self, message: str, field: Optional[str] = None, limit: Optional[int] = None):
        super().__init__(message)
        self.field = field
        self.limit = limit


class EnumParseError(ValidationError):
    """A string did not match any member of a closed enumeration"""

    def __init__(self, enum_name: str, raw, allowed: list[str], field: Optional[str] = None):
        super().__init__(
            f"Invalid {enum_name} value {raw!r}; expected one of: {', '.join(allowed)}",
            field=field,
        )
        self.enum_name = enum_name
        self.raw = raw
        self.allowed = allowed


class NotFoundError(FulfillmentError):
    """Addressed entity is absent or logically deleted"""

    def __init__(self, entity: str, key, key_name: str = "id"):
        super().__init__(f"{entity} with {key_name} {key!r} not found")
        self.entity = entity
        self.key = key
        self.key_name = key_name


class ReferentialIntegrityError(FulfillmentError):
    """Attempt to delete a Shipment that an active Order still references"""


class StoreConnectionError(FulfillmentError):
    """The relational store could not be reached"""


class PersistenceError(FulfillmentError):
    """The store rejected a write or a read failed"""


class ConstraintViolationError(PersistenceError):
    """A store-level constraint (unique, check, foreign key) rejected a write"""


class TransactionError(FulfillmentError):
    """A coordinated multi-entity operation failed.

    When raised for a failed unit of work the original error is always
    available as ``__cause__`` (``raise ... from exc``) and as ``cause``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
