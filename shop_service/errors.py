# shop_service/errors.py

"""
Errors raised by the store and the reporting engine.
The API layer maps each of them to an HTTP status in main.py.
"""


class ShopError(Exception):
    """Base class for every domain error of the shop service."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ShopError):
    """The record addressed by id does not exist."""


class ForeignKeyViolation(ShopError):
    """A write references a parent record that does not exist."""

    def __init__(self, table: str, record_id):
        super().__init__(f"{table} with id {record_id} does not exist")
        self.table = table
        self.record_id = record_id


class UniqueConstraintViolation(ShopError):
    """A write would duplicate a unique value (customer email)."""


class ReferentialConflict(ShopError):
    """A delete is blocked because other records still reference the target."""


class InsufficientStock(ShopError):
    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Product {product_id} has {available} in stock, {requested} requested"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidArgument(ShopError):
    """Negative price or stock, non-positive quantity, malformed date range and the like."""


class Timeout(ShopError):
    """A query ran past the deadline supplied by its caller."""
