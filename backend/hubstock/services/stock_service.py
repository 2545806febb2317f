# Overview: Service-layer operations for the stock ledger; the only code that mutates StockRecord.

# backend/hubstock/services/stock_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import and_

from ..errors import InsufficientStockError, InventoryError, ValidationError
from ..extensions import db
from ..models import MAX_QUANTITY, StockRecord, StockStatus, StockTransaction, TransactionKind, classify_quantity
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_storage_write, stock_key, stock_locks
from .transaction_log_service import append_transaction, replay_all, replay_quantity
"""
Stock Ledger Invariants (authoritative)

Identity:
- A stock record is keyed by (product_id, location_id). Both are opaque strings;
  the same product_id at two locations is "the same" product.
- Absence means zero: get_quantity() of an unknown key is 0 and classifies as
  out-of-stock. Records are created on first inbound touch and never deleted.

Mutation:
- adjust_stock() is the only public mutation entry point. Transfers, dispatch
  and production intake go through apply_adjustment() inside their own DB
  transaction while holding the key lock.
- A decrement that would make quantity negative fails with
  InsufficientStockError and changes nothing. It is never clamped.
- delta must be non-zero and its sign must agree with the transaction kind.
- Quantities stay within MAX_QUANTITY (the integer column range); an
  adjustment past it fails with ValidationError before anything is written.

Atomicity:
- The StockRecord update and its StockTransaction append share one DB
  transaction and one key lock; no reader sees one without the other.
"""

logger = logging.getLogger(__name__)

MAX_ID_LENGTH = 64


@dataclass(frozen=True)
class AdjustmentResult:
    new_quantity: int
    transaction: StockTransaction


def validate_key(product_id, location_id) -> None:
    for name, value in (("product_id", product_id), ("location_id", location_id)):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} is required")
        if len(value) > MAX_ID_LENGTH:
            raise ValidationError(f"{name} must be at most {MAX_ID_LENGTH} characters")


def _coerce_kind(kind) -> TransactionKind:
    if isinstance(kind, TransactionKind):
        return kind
    try:
        return TransactionKind(kind)
    except ValueError:
        allowed = ", ".join(k.value for k in TransactionKind)
        raise ValidationError(f"kind must be one of: {allowed}")


def _validate_delta(delta, kind: TransactionKind) -> None:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("delta must be an integer")
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    if abs(delta) > MAX_QUANTITY:
        raise ValidationError(f"delta must be between -{MAX_QUANTITY} and {MAX_QUANTITY}")
    if kind.is_inbound and delta < 0:
        raise ValidationError(f"{kind.value} requires a positive delta")
    if not kind.is_inbound and delta > 0:
        raise ValidationError(f"{kind.value} requires a negative delta")


def _validate_threshold(threshold) -> None:
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise ValidationError("low_stock_threshold must be a non-negative integer")
    if threshold > MAX_QUANTITY:
        raise ValidationError(f"low_stock_threshold must be at most {MAX_QUANTITY}")


def get_stock_record(product_id: str, location_id: str, *, lock: bool = False) -> StockRecord | None:
    query = db.session.query(StockRecord).filter_by(product_id=product_id, location_id=location_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _get_or_create_record(product_id: str, location_id: str, *, low_stock_threshold: int | None = None) -> StockRecord:
    record = get_stock_record(product_id, location_id, lock=True)
    if record is not None:
        return record

    if low_stock_threshold is None:
        low_stock_threshold = current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 10)

    record = StockRecord(
        product_id=product_id,
        location_id=location_id,
        quantity=0,
        low_stock_threshold=low_stock_threshold,
    )
    db.session.add(record)
    db.session.flush()
    return record


def get_quantity(product_id: str, location_id: str) -> int:
    record = get_stock_record(product_id, location_id)
    return record.quantity if record is not None else 0


def classify(product_id: str, location_id: str) -> StockStatus:
    record = get_stock_record(product_id, location_id)
    if record is None:
        return StockStatus.OUT_OF_STOCK
    return classify_quantity(record.quantity, record.low_stock_threshold)


def apply_adjustment(
    *,
    product_id: str,
    location_id: str,
    delta: int,
    kind: TransactionKind,
    note: str | None = None,
    actor_id: str | None = None,
    transfer_id: int | None = None,
    batch_id: int | None = None,
    order_ref: str | None = None,
) -> AdjustmentResult:
    """Core ADJUST logic without locking, retry, or commit.

    Called by adjust_stock() and by transfer, dispatch and production code
    that bundle the adjustment with their own writes. Callers must hold the
    key lock and have validated the arguments.
    """
    if delta > 0:
        record = _get_or_create_record(product_id, location_id)
    else:
        record = get_stock_record(product_id, location_id, lock=True)

    previous = record.quantity if record is not None else 0
    if previous + delta < 0:
        raise InsufficientStockError(product_id, location_id, requested=-delta, available=previous)
    if previous + delta > MAX_QUANTITY:
        raise ValidationError(
            f"Adjustment would take {location_id}/{product_id} above the maximum quantity {MAX_QUANTITY}"
        )

    occurred_at = utcnow()
    if record.last_movement_at is not None and occurred_at < record.last_movement_at:
        occurred_at = record.last_movement_at

    tx = append_transaction(
        product_id=product_id,
        location_id=location_id,
        kind=kind,
        delta=delta,
        previous_quantity=previous,
        occurred_at=occurred_at,
        note=note,
        actor_id=actor_id,
        transfer_id=transfer_id,
        batch_id=batch_id,
        order_ref=order_ref,
    )

    record.quantity = tx.new_quantity
    record.last_movement_at = occurred_at
    db.session.flush()

    logger.debug(
        "Stock %s/%s %s %+d -> %d (tx %s)",
        location_id, product_id, kind.value, delta, tx.new_quantity, tx.id,
    )
    return AdjustmentResult(new_quantity=tx.new_quantity, transaction=tx)


def adjust_stock(
    product_id: str,
    location_id: str,
    delta: int,
    kind,
    note: str | None = None,
    actor_id: str | None = None,
    *,
    order_ref: str | None = None,
) -> AdjustmentResult:
    """
    Apply a signed quantity change to one stock record and log it.

    Raises:
        ValidationError: malformed key, zero delta or delta/kind sign mismatch
        InsufficientStockError: the record would go negative (nothing changes)
        StorageFailureError: the database write failed after retries
    """
    validate_key(product_id, location_id)
    kind = _coerce_kind(kind)
    _validate_delta(delta, kind)

    def _op():
        try:
            result = apply_adjustment(
                product_id=product_id,
                location_id=location_id,
                delta=delta,
                kind=kind,
                note=note,
                actor_id=actor_id,
                order_ref=order_ref,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    with stock_locks.hold(stock_key(product_id, location_id)):
        return run_storage_write(_op, description=f"adjust {location_id}/{product_id}")


def set_low_stock_threshold(product_id: str, location_id: str, low_stock_threshold: int) -> StockRecord:
    """Set the low-stock threshold, creating the record at quantity 0 if needed."""
    validate_key(product_id, location_id)
    _validate_threshold(low_stock_threshold)

    def _op():
        try:
            record = _get_or_create_record(product_id, location_id, low_stock_threshold=low_stock_threshold)
            record.low_stock_threshold = low_stock_threshold
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return record

    with stock_locks.hold(stock_key(product_id, location_id)):
        return run_storage_write(_op, description=f"threshold {location_id}/{product_id}")


def _status_filter(status: StockStatus):
    if status == StockStatus.OUT_OF_STOCK:
        return StockRecord.quantity <= 0
    if status == StockStatus.LOW_STOCK:
        return and_(StockRecord.quantity > 0, StockRecord.quantity <= StockRecord.low_stock_threshold)
    return StockRecord.quantity > StockRecord.low_stock_threshold


def list_stock(location_id: str | None = None, status=None) -> list[StockRecord]:
    q = db.session.query(StockRecord)
    if location_id is not None:
        q = q.filter(StockRecord.location_id == location_id)
    if status is not None:
        try:
            status = StockStatus(status)
        except ValueError:
            allowed = ", ".join(s.value for s in StockStatus)
            raise ValidationError(f"status must be one of: {allowed}")
        q = q.filter(_status_filter(status))
    return q.order_by(StockRecord.location_id, StockRecord.product_id).all()


def stock_summary(location_id: str | None = None) -> dict:
    records = list_stock(location_id)
    counts = {status: 0 for status in StockStatus}
    for record in records:
        counts[record.status] += 1

    return {
        "location_id": location_id,
        "total_products": len(records),
        "in_stock": counts[StockStatus.IN_STOCK],
        "low_stock": counts[StockStatus.LOW_STOCK],
        "out_of_stock": counts[StockStatus.OUT_OF_STOCK],
        "total_units": sum(record.quantity for record in records),
    }


def find_inconsistencies() -> list[dict]:
    """Records whose quantity disagrees with the log (or log keys with no record)."""
    replayed = replay_all()
    records = {(r.product_id, r.location_id): r for r in db.session.query(StockRecord).all()}

    problems = []
    for key in sorted(set(replayed) | set(records)):
        product_id, location_id = key
        recorded = records[key].quantity if key in records else None
        expected = replayed.get(key, 0)
        if recorded != expected:
            problems.append({
                "product_id": product_id,
                "location_id": location_id,
                "recorded_quantity": recorded,
                "replayed_quantity": expected,
            })
    return problems


def rebuild_stock_records() -> list[dict]:
    """
    Repair the StockRecord projection from the log.

    Each drifted key is re-checked and fixed under its own lock, so live
    adjustments on other keys are not blocked.
    """
    repaired = []
    for problem in find_inconsistencies():
        product_id = problem["product_id"]
        location_id = problem["location_id"]

        def _op():
            # Re-read under the lock; the drift may have been a race with a live write.
            expected = replay_quantity(product_id, location_id)
            record = _get_or_create_record(product_id, location_id)
            before = record.quantity
            if before == expected:
                db.session.rollback()
                return None
            record.quantity = expected
            db.session.commit()
            return before, expected

        with stock_locks.hold(stock_key(product_id, location_id)):
            outcome = run_storage_write(_op, description=f"rebuild {location_id}/{product_id}")

        if outcome is not None:
            before, expected = outcome
            logger.warning(
                "Rebuilt stock %s/%s from log: %s -> %s", location_id, product_id, before, expected
            )
            repaired.append({
                "product_id": product_id,
                "location_id": location_id,
                "previous_quantity": before,
                "quantity": expected,
            })
    return repaired
