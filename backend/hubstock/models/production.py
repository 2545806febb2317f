from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import utcnow, to_utc_z
from .stock import enum_column


class BatchStatus(str, enum.Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QualityCheck(str, enum.Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class ProductionBatch(db.Model):
    """
    Planned unit of manufacture at a kitchen location.

    LIFECYCLE:
    1. PLANNED: created with a target quantity
    2. IN_PROGRESS: production started (started_at recorded)
    3. COMPLETED: actual output, wastage and quality result recorded; output
       enters stock only when quality_check is PASSED
    4. CANCELLED: abandoned before starting; never touches stock

    actual_quantity and wastage stay zero until completion.
    """
    __tablename__ = "production_batches"
    __table_args__ = (
        db.CheckConstraint("target_quantity > 0", name="ck_production_batches_target_positive"),
        db.CheckConstraint("actual_quantity >= 0", name="ck_production_batches_actual_nonnegative"),
        db.CheckConstraint("wastage >= 0", name="ck_production_batches_wastage_nonnegative"),
        db.Index("ix_production_batches_location_status", "location_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.String(64), nullable=False, index=True)
    location_id = db.Column(db.String(64), nullable=False)

    target_quantity = db.Column(db.Integer, nullable=False)
    actual_quantity = db.Column(db.Integer, nullable=False, default=0)
    wastage = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(enum_column(BatchStatus), nullable=False, default=BatchStatus.PLANNED)
    quality_check = db.Column(enum_column(QualityCheck), nullable=False, default=QualityCheck.PENDING)

    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)

    # Set only when passed output was taken into stock
    intake_transaction_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ProductionBatch id={self.id} product_id={self.product_id!r} "
            f"status={self.status.value if self.status else None}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "target_quantity": self.target_quantity,
            "actual_quantity": self.actual_quantity,
            "wastage": self.wastage,
            "status": self.status.value,
            "quality_check": self.quality_check.value,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "created_by": self.created_by,
            "completed_by": self.completed_by,
            "intake_transaction_id": self.intake_transaction_id,
            "created_at": to_utc_z(self.created_at),
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at),
        }
