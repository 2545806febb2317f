from __future__ import annotations

import enum

from sqlalchemy import event

from ..errors import ImmutableTransactionError
from ..extensions import db
from ..time_utils import utcnow, to_utc_z


# Largest value the quantity columns (db.Integer, 32-bit on server databases) can hold
MAX_QUANTITY = 2**31 - 1


def enum_column(enum_cls, length: int = 32):
    """Persist a str-valued Enum by value (not by member name) without a native DB enum."""
    return db.Enum(
        enum_cls,
        native_enum=False,
        length=length,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )


class TransactionKind(str, enum.Enum):
    ADJUST_ADD = "adjust-add"
    ADJUST_REMOVE = "adjust-remove"
    TRANSFER_OUT = "transfer-out"
    TRANSFER_IN = "transfer-in"
    PRODUCTION_INTAKE = "production-intake"

    @property
    def is_inbound(self) -> bool:
        return self in (
            TransactionKind.ADJUST_ADD,
            TransactionKind.TRANSFER_IN,
            TransactionKind.PRODUCTION_INTAKE,
        )


class StockStatus(str, enum.Enum):
    IN_STOCK = "in-stock"
    LOW_STOCK = "low-stock"
    OUT_OF_STOCK = "out-of-stock"


def classify_quantity(quantity: int, low_stock_threshold: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= low_stock_threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


class StockRecord(db.Model):
    """
    Current quantity of one product at one location.

    This is a projection of the stock_transactions log: replaying every
    transaction for the key from zero must reproduce `quantity`. Records are
    created on first touch and never deleted, only driven to zero.
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_stock_records_product_location"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_nonnegative"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_stock_records_threshold_nonnegative"),
        db.Index("ix_stock_records_location", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.String(64), nullable=False, index=True)
    location_id = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    # occurred_at of the newest transaction; keeps per-key log time non-decreasing
    last_movement_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def status(self) -> StockStatus:
        return classify_quantity(self.quantity, self.low_stock_threshold)

    def __repr__(self) -> str:
        return (
            f"<StockRecord product_id={self.product_id!r} location_id={self.location_id!r} "
            f"quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "status": self.status.value,
            "last_movement_at": to_utc_z(self.last_movement_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransaction(db.Model):
    """
    Append-only audit entry for exactly one stock mutation.

    `id` doubles as the insertion sequence number and breaks ties between
    entries that share an occurred_at.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.CheckConstraint("delta <> 0", name="ck_stock_tx_delta_nonzero"),
        db.CheckConstraint("new_quantity = previous_quantity + delta", name="ck_stock_tx_arithmetic"),
        db.CheckConstraint("new_quantity >= 0", name="ck_stock_tx_new_quantity_nonnegative"),
        db.Index("ix_stock_tx_product_location_occurred", "product_id", "location_id", "occurred_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.String(64), nullable=False)
    location_id = db.Column(db.String(64), nullable=False)

    kind = db.Column(enum_column(TransactionKind), nullable=False, index=True)

    delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    note = db.Column(db.String(255), nullable=True)
    actor_id = db.Column(db.String(64), nullable=True, index=True)

    # Cross references to the operation that produced the entry
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("production_batches.id"), nullable=True, index=True)
    order_ref = db.Column(db.String(64), nullable=True, index=True)

    def __repr__(self) -> str:
        return (
            f"<StockTransaction id={self.id} kind={self.kind.value if self.kind else None} "
            f"key=({self.product_id!r}, {self.location_id!r}) delta={self.delta}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "kind": self.kind.value,
            "delta": self.delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "occurred_at": to_utc_z(self.occurred_at, keep_microseconds=True),
            "note": self.note,
            "actor_id": self.actor_id,
            "transfer_id": self.transfer_id,
            "batch_id": self.batch_id,
            "order_ref": self.order_ref,
        }


@event.listens_for(StockTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise ImmutableTransactionError(f"Stock transaction {target.id} is append-only and cannot be modified")


@event.listens_for(StockTransaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise ImmutableTransactionError(f"Stock transaction {target.id} is append-only and cannot be deleted")
