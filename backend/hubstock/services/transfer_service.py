# backend/hubstock/services/transfer_service.py
"""
Location-to-location stock transfers.

WHY: Move stock between kitchens, warehouses and hubs without ever losing or
inventing units. A transfer is two ledger adjustments (transfer-out at the
source, transfer-in at the destination) that must both land or both be undone.

LIFECYCLE:
1. PENDING: out leg committed together with the transfer row
2. COMPLETED: in leg committed at the destination
3. ROLLED_BACK: in leg failed; the out leg was reversed with an adjust-add
4. RECONCILIATION_REQUIRED: the reversal failed too; never retried automatically

Both stock keys are held for the whole operation, acquired in canonical
order, so concurrent transfers in opposite directions cannot deadlock.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from ..errors import InsufficientStockError, NotFoundError, StorageFailureError, ValidationError
from ..extensions import db
from ..models import MAX_QUANTITY, TransactionKind, TransferOperation, TransferStatus
from ..time_utils import utcnow
from .concurrency import run_storage_write, stock_key, stock_locks
from .stock_service import apply_adjustment, get_quantity, validate_key


logger = logging.getLogger(__name__)

ROLLBACK_NOTE = "transfer rollback"


def _validate_transfer(product_id, source_location_id, destination_location_id, quantity) -> None:
    validate_key(product_id, source_location_id)
    validate_key(product_id, destination_location_id)
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be an integer")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"Quantity must be at most {MAX_QUANTITY}")
    if source_location_id == destination_location_id:
        raise ValidationError("Cannot transfer to the same location")


def _failure_reason(exc: BaseException, incident_ref: str | None = None) -> str:
    if incident_ref:
        return f"storage failure (incident {incident_ref})"
    if isinstance(exc, SQLAlchemyError):
        return "storage failure"
    return f"{type(exc).__name__}: {exc}"[:255]


def transfer_stock(
    product_id: str,
    source_location_id: str,
    destination_location_id: str,
    quantity: int,
    actor_id: str | None = None,
    note: str | None = None,
) -> TransferOperation:
    """
    Move `quantity` units of a product from one location to another.

    Returns:
        TransferOperation: the COMPLETED transfer

    Raises:
        ValidationError: bad quantity or same source and destination
        InsufficientStockError: source has fewer than `quantity` units (no mutation)
        StorageFailureError: a leg failed; the out leg was reversed, unless
            requires_reconciliation is set
    """
    _validate_transfer(product_id, source_location_id, destination_location_id, quantity)

    source_key = stock_key(product_id, source_location_id)
    destination_key = stock_key(product_id, destination_location_id)

    with stock_locks.hold(source_key, destination_key):
        available = get_quantity(product_id, source_location_id)
        if available < quantity:
            raise InsufficientStockError(product_id, source_location_id, requested=quantity, available=available)

        transfer_id = _ship(product_id, source_location_id, destination_location_id, quantity, actor_id, note)

        try:
            transfer = _receive(transfer_id, actor_id)
        except BaseException as exc:
            # Covers storage errors and interruptions alike: once the out
            # leg is committed it must never be left without a counterpart.
            db.session.rollback()
            failure = None
            if isinstance(exc, SQLAlchemyError):
                failure = StorageFailureError("Transfer failed and was rolled back")
                logger.error(
                    "Transfer %s destination leg failed [incident %s]",
                    transfer_id, failure.incident_ref, exc_info=exc,
                )
            _compensate(transfer_id, actor_id, exc, incident_ref=failure.incident_ref if failure else None)
            if failure is not None:
                raise failure from exc
            raise

    logger.info(
        "Transfer %s: %s x%s %s -> %s",
        transfer.id, product_id, quantity, source_location_id, destination_location_id,
    )
    return transfer


def _ship(product_id, source_location_id, destination_location_id, quantity, actor_id, note) -> int:
    """Leg 1: transfer row + transfer-out adjustment in one commit."""
    def _op():
        try:
            transfer = TransferOperation(
                product_id=product_id,
                source_location_id=source_location_id,
                destination_location_id=destination_location_id,
                quantity=quantity,
                status=TransferStatus.PENDING,
                actor_id=actor_id,
                note=note,
            )
            db.session.add(transfer)
            db.session.flush()  # Get ID

            out_leg = apply_adjustment(
                product_id=product_id,
                location_id=source_location_id,
                delta=-quantity,
                kind=TransactionKind.TRANSFER_OUT,
                note=note or f"Transfer {transfer.id} to {destination_location_id}",
                actor_id=actor_id,
                transfer_id=transfer.id,
            )
            transfer.out_transaction_id = out_leg.transaction.id
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return transfer.id

    return run_storage_write(_op, description=f"transfer out {source_location_id}/{product_id}")


def _receive(transfer_id: int, actor_id: str | None) -> TransferOperation:
    """Leg 2: transfer-in adjustment + COMPLETED status in one commit.

    Storage errors are not wrapped here; the caller compensates first.
    """
    transfer = db.session.get(TransferOperation, transfer_id)
    in_leg = apply_adjustment(
        product_id=transfer.product_id,
        location_id=transfer.destination_location_id,
        delta=transfer.quantity,
        kind=TransactionKind.TRANSFER_IN,
        note=transfer.note or f"Transfer {transfer.id} from {transfer.source_location_id}",
        actor_id=actor_id,
        transfer_id=transfer.id,
    )
    transfer.in_transaction_id = in_leg.transaction.id
    transfer.status = TransferStatus.COMPLETED
    transfer.completed_at = utcnow()
    db.session.commit()
    return transfer


def _compensate(transfer_id: int, actor_id: str | None, cause: BaseException, incident_ref: str | None = None) -> None:
    """
    Reverse the out leg of a transfer whose in leg did not land.

    Never retried blindly: if the reversal fails the transfer is flagged for
    manual reconciliation, since a second attempt could credit the source twice.
    """
    reason = _failure_reason(cause, incident_ref)

    def _op():
        transfer = db.session.get(TransferOperation, transfer_id)
        reversal = apply_adjustment(
            product_id=transfer.product_id,
            location_id=transfer.source_location_id,
            delta=transfer.quantity,
            kind=TransactionKind.ADJUST_ADD,
            note=ROLLBACK_NOTE,
            actor_id=actor_id,
            transfer_id=transfer.id,
        )
        transfer.rollback_transaction_id = reversal.transaction.id
        transfer.status = TransferStatus.ROLLED_BACK
        transfer.failure_reason = reason
        transfer.incident_ref = incident_ref
        transfer.completed_at = utcnow()
        db.session.commit()
        return transfer

    try:
        _op()
    except Exception as exc:
        db.session.rollback()
        failure = StorageFailureError("Transfer rollback failed", requires_reconciliation=True)
        logger.critical(
            "Transfer %s rollback failed; manual reconciliation required [incident %s]",
            transfer_id, failure.incident_ref, exc_info=exc,
        )
        _flag_for_reconciliation(transfer_id, reason, failure.incident_ref)
        raise failure from exc

    logger.warning("Transfer %s rolled back: %s", transfer_id, reason)


def _flag_for_reconciliation(transfer_id: int, reason: str, incident_ref: str) -> None:
    """Best effort: the store just failed, so this write may fail as well."""
    try:
        transfer = db.session.get(TransferOperation, transfer_id)
        if transfer is not None:
            transfer.status = TransferStatus.RECONCILIATION_REQUIRED
            transfer.failure_reason = reason
            transfer.incident_ref = incident_ref
            db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not flag transfer %s for reconciliation [incident %s]", transfer_id, incident_ref)


def get_transfer(transfer_id: int) -> TransferOperation:
    transfer = db.session.get(TransferOperation, transfer_id)
    if transfer is None:
        raise NotFoundError("Transfer", transfer_id)
    return transfer


def list_transfers(location_id: str | None = None, status=None, limit: int = 100) -> list[TransferOperation]:
    q = db.session.query(TransferOperation)
    if location_id is not None:
        q = q.filter(
            (TransferOperation.source_location_id == location_id)
            | (TransferOperation.destination_location_id == location_id)
        )
    if status is not None:
        try:
            status = TransferStatus(status)
        except ValueError:
            allowed = ", ".join(s.value for s in TransferStatus)
            raise ValidationError(f"status must be one of: {allowed}")
        q = q.filter(TransferOperation.status == status)
    return q.order_by(TransferOperation.created_at.desc(), TransferOperation.id.desc()).limit(limit).all()


def recover_pending_transfers(older_than: timedelta = timedelta(minutes=5), now: datetime | None = None) -> list[TransferOperation]:
    """
    Compensate transfers stranded in PENDING by a crash between legs.

    Operator-invoked only. A transfer qualifies when its out leg is in the log
    and neither an in leg nor a reversal exists; anything else is left alone.
    """
    cutoff = (now or utcnow()) - older_than
    candidates = db.session.query(TransferOperation).filter(
        TransferOperation.status == TransferStatus.PENDING,
        TransferOperation.created_at <= cutoff,
    ).order_by(TransferOperation.id).all()

    recovered = []
    for candidate in candidates:
        keys = (
            stock_key(candidate.product_id, candidate.source_location_id),
            stock_key(candidate.product_id, candidate.destination_location_id),
        )
        transfer_id = candidate.id
        with stock_locks.hold(*keys):
            db.session.expire_all()
            transfer = db.session.get(TransferOperation, transfer_id)
            if (
                transfer.status != TransferStatus.PENDING
                or transfer.out_transaction_id is None
                or transfer.in_transaction_id is not None
                or transfer.rollback_transaction_id is not None
            ):
                continue
            _compensate(transfer_id, None, RuntimeError("recovered stranded pending transfer"))
            recovered.append(db.session.get(TransferOperation, transfer_id))
    return recovered
