# backend/utils/errors.py
"""Typed errors raised by the stock services.

Every class carries the HTTP status the API answers with and a short
machine-readable code, so routes and the exception handler in ``main.py``
never have to parse messages.
"""
from typing import Optional


class InventoryError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal error", **data):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        if self.data:
            body.update(self.data)
        return body


# Client errors, never retried automatically
class InvalidInput(InventoryError):
    status_code = 400
    code = "INVALID_INPUT"


class InsufficientStock(InventoryError):
    status_code = 400
    code = "INSUFFICIENT_STOCK"

    def __init__(self, available: int, requested: Optional[int] = None):
        super().__init__(f"Insufficient stock. Available: {available}", available=available)
        self.available = available
        self.requested = requested


class NotFound(InventoryError):
    status_code = 404
    code = "NOT_FOUND"


class Unauthorized(InventoryError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(InventoryError):
    status_code = 403
    code = "FORBIDDEN"


# Store failures
class InternalError(InventoryError):
    status_code = 500
    code = "INTERNAL_ERROR"


class WriteConflict(InternalError):
    """The store refused a write because a concurrent transaction touched the same rows."""
    status_code = 409
    code = "WRITE_CONFLICT"


class LedgerCorrupted(InternalError):
    code = "LEDGER_CORRUPTED"
