# Overview: Business and persistence error kinds raised by the roll engine.

"""
Roll engine error kinds.

Every service raises one of these synchronously; none are swallowed.

- NotFoundError:          referenced roll / SKU / batch / supplier is absent
- StateConflictError:     operation illegal for the roll's current status
- InsufficientStockError: FIFO allocation cannot satisfy the demand
- ValidationError:        malformed input (bad width, non-positive length, ...)
- TransientStoreError:    persistence failure after retries; caller may retry
                          without re-validating business rules
"""

from __future__ import annotations


class RollstockError(Exception):
    """Base class for roll engine errors."""

    code = "ROLLSTOCK_ERROR"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message, **self.context}


class NotFoundError(RollstockError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class StateConflictError(RollstockError):
    code = "STATE_CONFLICT"

    def __init__(self, roll_id, *, event: str, expected, actual):
        expected_names = sorted(_status_name(s) for s in expected)
        actual_name = _status_name(actual)
        super().__init__(
            f"Cannot {event} roll {roll_id}: status is {actual_name}, "
            f"expected {' or '.join(expected_names)}",
            roll_id=roll_id,
            event=event,
            expected=expected_names,
            actual=actual_name,
        )
        self.roll_id = roll_id
        self.event = event
        self.expected = expected_names
        self.actual = actual_name


class InsufficientStockError(RollstockError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, sku_id, *, required: int, available: int):
        super().__init__(
            f"Insufficient stock for SKU {sku_id}. Available: {available}, Required: {required}",
            sku_id=sku_id,
            required=required,
            available=available,
        )
        self.sku_id = sku_id
        self.required = required
        self.available = available


class ValidationError(RollstockError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message, field=field)
        self.field = field


class TransientStoreError(RollstockError):
    code = "TRANSIENT_STORE_ERROR"

    def __init__(self, message: str = "Storage temporarily unavailable; retry the request"):
        super().__init__(message)


def _status_name(status) -> str:
    return getattr(status, "value", status)
