from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import utcnow, to_utc_z
from .stock import enum_column


class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled-back"
    RECONCILIATION_REQUIRED = "reconciliation-required"


class TransferOperation(db.Model):
    """
    Location-to-location stock move.

    LIFECYCLE:
    1. PENDING: transfer-out leg committed at the source
    2. COMPLETED: transfer-in leg committed at the destination
    3. ROLLED_BACK: destination leg failed, source leg reversed by adjust-add
    4. RECONCILIATION_REQUIRED: the reversal itself failed; an operator must
       compare the log with physical stock before anything is retried

    A transfer that stays PENDING means the process died between legs;
    `flask transfers recover` compensates those.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_transfers_quantity_positive"),
        db.CheckConstraint(
            "source_location_id <> destination_location_id",
            name="ck_stock_transfers_distinct_locations",
        ),
        db.Index("ix_stock_transfers_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.String(64), nullable=False, index=True)
    source_location_id = db.Column(db.String(64), nullable=False, index=True)
    destination_location_id = db.Column(db.String(64), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(enum_column(TransferStatus), nullable=False, default=TransferStatus.PENDING)

    # Legs in the transaction log
    out_transaction_id = db.Column(db.Integer, nullable=True)
    in_transaction_id = db.Column(db.Integer, nullable=True)
    rollback_transaction_id = db.Column(db.Integer, nullable=True)

    actor_id = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    failure_reason = db.Column(db.String(255), nullable=True)
    incident_ref = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<TransferOperation id={self.id} product_id={self.product_id!r} "
            f"{self.source_location_id!r}->{self.destination_location_id!r} "
            f"quantity={self.quantity} status={self.status.value if self.status else None}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "source_location_id": self.source_location_id,
            "destination_location_id": self.destination_location_id,
            "quantity": self.quantity,
            "status": self.status.value,
            "out_transaction_id": self.out_transaction_id,
            "in_transaction_id": self.in_transaction_id,
            "rollback_transaction_id": self.rollback_transaction_id,
            "actor_id": self.actor_id,
            "note": self.note,
            "failure_reason": self.failure_reason,
            "incident_ref": self.incident_ref,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
