# Overview: Order resolution against the stock ledger, and the explicit dispatch step.

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from ..errors import StorageFailureError, ValidationError
from ..extensions import db
from ..models import StockTransaction, TransactionKind
from .concurrency import run_storage_write, stock_key, stock_locks
from .stock_service import apply_adjustment, get_quantity, validate_key
"""
Fulfillment semantics:
- resolve_order() is read-only and takes no locks. It is a snapshot and may
  be stale by the time the order is dispatched.
- available_quantity is the full on-hand quantity, never clamped to the request.
- shortfall = max(0, requested - available); shortage credit = shortfall * unit price.
- dispatch_order() re-resolves while holding every line's stock key, so the
  quantities it decrements are exact at dispatch time.
"""

logger = logging.getLogger(__name__)

DISPATCH_ROLLBACK_NOTE = "dispatch rollback"


class LineAvailability(str, enum.Enum):
    READY = "ready"
    SHORTAGE = "shortage"
    OUT_OF_STOCK = "out-of-stock"


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    location_id: str
    requested_quantity: int
    unit_price_cents: int

    @classmethod
    def from_mapping(cls, raw: Mapping) -> "OrderLine":
        if not isinstance(raw, Mapping):
            raise ValidationError("each order line must be an object")
        missing = [f for f in ("product_id", "location_id", "requested_quantity", "unit_price_cents") if f not in raw]
        if missing:
            raise ValidationError(f"order line missing required field(s): {', '.join(missing)}")
        line = cls(
            product_id=raw["product_id"],
            location_id=raw["location_id"],
            requested_quantity=raw["requested_quantity"],
            unit_price_cents=raw["unit_price_cents"],
        )
        line.validate()
        return line

    def validate(self) -> None:
        validate_key(self.product_id, self.location_id)
        for name in ("requested_quantity", "unit_price_cents"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer")


@dataclass(frozen=True)
class OrderLineResolution:
    product_id: str
    location_id: str
    requested_quantity: int
    available_quantity: int
    unit_price_cents: int

    @property
    def shortfall(self) -> int:
        return max(0, self.requested_quantity - self.available_quantity)

    @property
    def deliverable_quantity(self) -> int:
        return min(self.requested_quantity, self.available_quantity)

    @property
    def shortage_credit_cents(self) -> int:
        return self.shortfall * self.unit_price_cents

    @property
    def availability(self) -> LineAvailability:
        if self.available_quantity <= 0:
            return LineAvailability.OUT_OF_STOCK
        if self.shortfall > 0:
            return LineAvailability.SHORTAGE
        return LineAvailability.READY

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "requested_quantity": self.requested_quantity,
            "available_quantity": self.available_quantity,
            "deliverable_quantity": self.deliverable_quantity,
            "shortfall": self.shortfall,
            "unit_price_cents": self.unit_price_cents,
            "shortage_credit_cents": self.shortage_credit_cents,
            "availability": self.availability.value,
        }


@dataclass(frozen=True)
class OrderResolution:
    lines: tuple[OrderLineResolution, ...]

    @property
    def total_shortage_credit_cents(self) -> int:
        return sum(line.shortage_credit_cents for line in self.lines)

    @property
    def fully_available(self) -> bool:
        return all(line.shortfall == 0 for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "total_shortage_credit_cents": self.total_shortage_credit_cents,
            "fully_available": self.fully_available,
        }


@dataclass(frozen=True)
class DispatchResult:
    order_ref: str | None
    resolution: OrderResolution
    transactions: tuple[StockTransaction, ...]

    def to_dict(self) -> dict:
        return {
            "order_ref": self.order_ref,
            "resolution": self.resolution.to_dict(),
            "transactions": [tx.to_dict() for tx in self.transactions],
        }


def _coerce_lines(lines: Iterable) -> list[OrderLine]:
    coerced = []
    for raw in lines:
        if isinstance(raw, OrderLine):
            raw.validate()
            coerced.append(raw)
        else:
            coerced.append(OrderLine.from_mapping(raw))
    return coerced


def resolve_order(lines: Iterable) -> OrderResolution:
    """
    Compute what an order can be supplied from current stock.

    Never writes. Calling it twice with no stock change in between gives
    identical results.
    """
    return OrderResolution(lines=tuple(
        OrderLineResolution(
            product_id=line.product_id,
            location_id=line.location_id,
            requested_quantity=line.requested_quantity,
            available_quantity=get_quantity(line.product_id, line.location_id),
            unit_price_cents=line.unit_price_cents,
        )
        for line in _coerce_lines(lines)
    ))


def dispatch_order(lines: Iterable, actor_id: str | None = None, order_ref: str | None = None) -> DispatchResult:
    """
    Decrement stock for what an order can actually be supplied.

    Every line's key is held for the duration, the order is re-resolved under
    those locks, and each line removes min(requested, remaining) units, where
    remaining accounts for earlier lines on the same key. Lines with nothing
    deliverable are skipped. If a decrement fails, the lines already applied
    are reversed and the error propagates.
    """
    order_lines = _coerce_lines(lines)
    if not order_lines:
        raise ValidationError("order must have at least one line")

    keys = [stock_key(line.product_id, line.location_id) for line in order_lines]
    with stock_locks.hold(*keys):
        resolution = resolve_order(order_lines)
        applied: list[StockTransaction] = []
        remaining: dict[tuple[str, str], int] = {}

        try:
            for line in resolution.lines:
                key = stock_key(line.product_id, line.location_id)
                left = remaining.setdefault(key, line.available_quantity)
                delivered = min(line.requested_quantity, left)
                if delivered <= 0:
                    continue
                applied.append(_dispatch_line(line, delivered, actor_id, order_ref))
                remaining[key] = left - delivered
        except BaseException:
            # Interruptions as well as business and storage errors: lines
            # already committed must not stay decremented for a failed order.
            db.session.rollback()
            if applied:
                _reverse_dispatch(applied, actor_id, order_ref)
            raise

    logger.info(
        "Dispatched order %s: %s line(s), shortage credit %s",
        order_ref, len(applied), resolution.total_shortage_credit_cents,
    )
    return DispatchResult(order_ref=order_ref, resolution=resolution, transactions=tuple(applied))


def _dispatch_line(line: OrderLineResolution, delivered: int, actor_id, order_ref) -> StockTransaction:
    def _op():
        try:
            result = apply_adjustment(
                product_id=line.product_id,
                location_id=line.location_id,
                delta=-delivered,
                kind=TransactionKind.ADJUST_REMOVE,
                note=f"Dispatch {order_ref}" if order_ref else "Dispatch",
                actor_id=actor_id,
                order_ref=order_ref,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result.transaction

    return run_storage_write(_op, description=f"dispatch {line.location_id}/{line.product_id}")


def _reverse_dispatch(applied: list[StockTransaction], actor_id, order_ref) -> None:
    for tx in reversed(applied):
        def _op(tx=tx):
            apply_adjustment(
                product_id=tx.product_id,
                location_id=tx.location_id,
                delta=-tx.delta,
                kind=TransactionKind.ADJUST_ADD,
                note=DISPATCH_ROLLBACK_NOTE,
                actor_id=actor_id,
                order_ref=order_ref,
            )
            db.session.commit()

        try:
            run_storage_write(_op, description=f"dispatch rollback {tx.location_id}/{tx.product_id}")
        except StorageFailureError as failure:
            logger.critical(
                "Dispatch rollback for order %s failed at %s/%s; manual reconciliation required [incident %s]",
                order_ref, tx.location_id, tx.product_id, failure.incident_ref,
            )
            raise StorageFailureError(
                "Dispatch rollback failed", requires_reconciliation=True, incident_ref=failure.incident_ref
            ) from failure
    logger.warning("Dispatch of order %s rolled back (%s line(s))", order_ref, len(applied))
