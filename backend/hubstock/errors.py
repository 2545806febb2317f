# Overview: Error taxonomy shared by the ledger services and the HTTP layer.

from __future__ import annotations

import uuid


class InventoryError(Exception):
    """Base class for every failure raised by the stock engine."""

    status_code = 400
    code = "inventory_error"

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class ValidationError(InventoryError, ValueError):
    """400-level input problem."""

    code = "validation_error"


class NotFoundError(InventoryError):
    """Unknown batch, transfer or other addressed entity."""

    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update({"entity": self.entity, "entity_id": self.entity_id})
        return payload


class InsufficientStockError(InventoryError):
    """A decrement would drive a stock record below zero."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: str, location_id: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id} at {location_id}. "
            f"On-hand: {available}, requested: {requested}"
        )
        self.product_id = product_id
        self.location_id = location_id
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update({
            "product_id": self.product_id,
            "location_id": self.location_id,
            "requested": self.requested,
            "available": self.available,
        })
        return payload


class InvalidTransitionError(InventoryError):
    """State machine misuse, e.g. completing a batch that never started."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, entity: str, entity_id, current: str, action: str):
        super().__init__(f"Cannot {action} {entity} {entity_id} in {current} status")
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.action = action

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update({
            "entity": self.entity,
            "entity_id": self.entity_id,
            "current_status": self.current,
            "action": self.action,
        })
        return payload


class StorageFailureError(InventoryError):
    """
    Underlying persistence failed.

    The message shown to clients is generic; driver details stay in the
    server log under the incident reference.
    """

    status_code = 503
    code = "storage_failure"

    def __init__(self, message: str = "Storage failure", *, requires_reconciliation: bool = False,
                 incident_ref: str | None = None):
        if requires_reconciliation:
            message = f"{message} (requires manual reconciliation)"
        super().__init__(message)
        self.requires_reconciliation = requires_reconciliation
        self.incident_ref = incident_ref or new_incident_ref()

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "incident_ref": self.incident_ref,
            "requires_reconciliation": self.requires_reconciliation,
        }


def new_incident_ref() -> str:
    return uuid.uuid4().hex[:12].upper()


class ImmutableTransactionError(InventoryError):
    """Raised when code tries to update or delete a logged stock transaction."""

    status_code = 500
    code = "immutable_transaction"
