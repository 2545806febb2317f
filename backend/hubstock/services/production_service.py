# backend/hubstock/services/production_service.py
"""
Production batch tracking with quality-gated stock intake.

LIFECYCLE:
1. PLANNED: batch created with a target quantity
2. IN_PROGRESS: production started (started_at recorded)
3. COMPLETED: actual output, wastage and quality result recorded
4. CANCELLED: abandoned before starting

Only PLANNED batches can be cancelled; once started a batch must be completed
(a failed quality check records an aborted run with no stock effect).

Intake rule: a completed batch adds exactly actual_quantity units to stock at
its location iff quality_check is PASSED. The intake transaction and the status
change share one DB transaction. Wastage is recorded on the batch only; it was
never counted as stock.
"""
from __future__ import annotations

import logging

from sqlalchemy import func

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import MAX_QUANTITY, BatchStatus, ProductionBatch, QualityCheck, TransactionKind
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_storage_write, stock_key, stock_locks
from .stock_service import apply_adjustment, validate_key


logger = logging.getLogger(__name__)


def _require_non_negative_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer")
    if value > MAX_QUANTITY:
        raise ValidationError(f"{name} must be at most {MAX_QUANTITY}")


def _get_batch_for_update(batch_id: int) -> ProductionBatch:
    batch = lock_for_update(db.session.query(ProductionBatch).filter_by(id=batch_id)).first()
    if batch is None:
        raise NotFoundError("Production batch", batch_id)
    return batch


def get_batch(batch_id: int) -> ProductionBatch:
    batch = db.session.get(ProductionBatch, batch_id)
    if batch is None:
        raise NotFoundError("Production batch", batch_id)
    return batch


def create_batch(
    product_id: str,
    location_id: str,
    target_quantity: int,
    notes: str | None = None,
    actor_id: str | None = None,
) -> ProductionBatch:
    """Plan a batch (status: PLANNED). No stock effect."""
    validate_key(product_id, location_id)
    if isinstance(target_quantity, bool) or not isinstance(target_quantity, int) or target_quantity <= 0:
        raise ValidationError("target_quantity must be a positive integer")
    if target_quantity > MAX_QUANTITY:
        raise ValidationError(f"target_quantity must be at most {MAX_QUANTITY}")

    def _op():
        try:
            batch = ProductionBatch(
                product_id=product_id,
                location_id=location_id,
                target_quantity=target_quantity,
                status=BatchStatus.PLANNED,
                quality_check=QualityCheck.PENDING,
                notes=notes,
                created_by=actor_id,
            )
            db.session.add(batch)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return batch

    batch = run_storage_write(_op, description="create production batch")
    logger.info("Production batch %s planned: %s x%s at %s", batch.id, product_id, target_quantity, location_id)
    return batch


def start_batch(batch_id: int) -> ProductionBatch:
    """PLANNED -> IN_PROGRESS."""
    def _op():
        try:
            batch = _get_batch_for_update(batch_id)
            if batch.status != BatchStatus.PLANNED:
                raise InvalidTransitionError("production batch", batch_id, batch.status.value, "start")
            batch.status = BatchStatus.IN_PROGRESS
            batch.started_at = utcnow()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return batch

    batch = run_storage_write(_op, description=f"start production batch {batch_id}")
    logger.info("Production batch %s started", batch_id)
    return batch


def complete_batch(
    batch_id: int,
    actual_quantity: int,
    wastage: int,
    quality_check,
    notes: str | None = None,
    actor_id: str | None = None,
) -> ProductionBatch:
    """
    IN_PROGRESS -> COMPLETED, taking passed output into stock.

    Raises:
        ValidationError: negative quantities, or a quality result that is not passed/failed
        NotFoundError: unknown batch
        InvalidTransitionError: batch is not IN_PROGRESS
    """
    _require_non_negative_int("actual_quantity", actual_quantity)
    _require_non_negative_int("wastage", wastage)
    try:
        quality_check = QualityCheck(quality_check)
    except ValueError:
        raise ValidationError("quality_check must be passed or failed")
    if quality_check == QualityCheck.PENDING:
        raise ValidationError("quality_check must be passed or failed")

    # The batch's key is only known after loading it; peek unlocked, then
    # take the stock lock and re-check everything under it.
    peek = get_batch(batch_id)
    key = stock_key(peek.product_id, peek.location_id)

    def _op():
        try:
            batch = _get_batch_for_update(batch_id)
            if batch.status != BatchStatus.IN_PROGRESS:
                raise InvalidTransitionError("production batch", batch_id, batch.status.value, "complete")

            batch.status = BatchStatus.COMPLETED
            batch.actual_quantity = actual_quantity
            batch.wastage = wastage
            batch.quality_check = quality_check
            batch.completed_by = actor_id
            batch.ended_at = utcnow()
            if notes:
                batch.notes = f"{batch.notes}\n{notes}" if batch.notes else notes

            if quality_check == QualityCheck.PASSED and actual_quantity > 0:
                intake = apply_adjustment(
                    product_id=batch.product_id,
                    location_id=batch.location_id,
                    delta=actual_quantity,
                    kind=TransactionKind.PRODUCTION_INTAKE,
                    note=f"Production batch {batch.id}",
                    actor_id=actor_id,
                    batch_id=batch.id,
                )
                batch.intake_transaction_id = intake.transaction.id

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return batch

    with stock_locks.hold(key):
        batch = run_storage_write(_op, description=f"complete production batch {batch_id}")

    logger.info(
        "Production batch %s completed: actual=%s wastage=%s quality=%s",
        batch_id, actual_quantity, wastage, quality_check.value,
    )
    return batch


def cancel_batch(batch_id: int, reason: str | None = None) -> ProductionBatch:
    """PLANNED -> CANCELLED. No stock effect, ever."""
    def _op():
        try:
            batch = _get_batch_for_update(batch_id)
            if batch.status != BatchStatus.PLANNED:
                raise InvalidTransitionError("production batch", batch_id, batch.status.value, "cancel")
            batch.status = BatchStatus.CANCELLED
            batch.cancellation_reason = reason
            batch.ended_at = utcnow()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return batch

    batch = run_storage_write(_op, description=f"cancel production batch {batch_id}")
    logger.info("Production batch %s cancelled", batch_id)
    return batch


def list_batches(location_id: str | None = None, status=None) -> list[ProductionBatch]:
    q = db.session.query(ProductionBatch)
    if location_id is not None:
        q = q.filter(ProductionBatch.location_id == location_id)
    if status is not None:
        try:
            status = BatchStatus(status)
        except ValueError:
            allowed = ", ".join(s.value for s in BatchStatus)
            raise ValidationError(f"status must be one of: {allowed}")
        q = q.filter(ProductionBatch.status == status)
    return q.order_by(ProductionBatch.created_at.desc(), ProductionBatch.id.desc()).all()


def production_summary(location_id: str | None = None) -> dict:
    """Batch counts per status, units produced by passed batches, wastage of completed ones."""
    base = db.session.query(ProductionBatch)
    if location_id is not None:
        base = base.filter(ProductionBatch.location_id == location_id)

    counts = {status: 0 for status in BatchStatus}
    rows = base.with_entities(ProductionBatch.status, func.count(ProductionBatch.id)).group_by(ProductionBatch.status)
    for status, count in rows:
        counts[status] = count

    produced = base.filter(
        ProductionBatch.status == BatchStatus.COMPLETED,
        ProductionBatch.quality_check == QualityCheck.PASSED,
    ).with_entities(func.coalesce(func.sum(ProductionBatch.actual_quantity), 0)).scalar()

    wasted = base.filter(
        ProductionBatch.status == BatchStatus.COMPLETED,
    ).with_entities(func.coalesce(func.sum(ProductionBatch.wastage), 0)).scalar()

    return {
        "location_id": location_id,
        "planned": counts[BatchStatus.PLANNED],
        "in_progress": counts[BatchStatus.IN_PROGRESS],
        "completed": counts[BatchStatus.COMPLETED],
        "cancelled": counts[BatchStatus.CANCELLED],
        "total_produced": int(produced or 0),
        "total_wastage": int(wasted or 0),
    }
