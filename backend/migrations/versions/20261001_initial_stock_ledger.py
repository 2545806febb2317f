"""Initial stock ledger schema

Creates the four ledger tables:
- stock_records: current quantity per (product_id, location_id)
- stock_transfers: location-to-location transfer operations and their legs
- production_batches: planned/in-progress/completed kitchen output
- stock_transactions: append-only log of every stock mutation

Revision ID: 20261001_initial_ledger
Revises:
Create Date: 2026-10-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "stock_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("location_id", sa.String(length=64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=False),
        sa.Column("last_movement_at", sa.DateTime(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_nonnegative"),
        sa.CheckConstraint("low_stock_threshold >= 0", name="ck_stock_records_threshold_nonnegative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "location_id", name="uq_stock_records_product_location"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_records_product_id", "stock_records", ["product_id"], unique=False)
    op.create_index("ix_stock_records_location", "stock_records", ["location_id"], unique=False)

    op.create_table(
        "stock_transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("source_location_id", sa.String(length=64), nullable=False),
        sa.Column("destination_location_id", sa.String(length=64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("out_transaction_id", sa.Integer(), nullable=True),
        sa.Column("in_transaction_id", sa.Integer(), nullable=True),
        sa.Column("rollback_transaction_id", sa.Integer(), nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("incident_ref", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_stock_transfers_quantity_positive"),
        sa.CheckConstraint(
            "source_location_id <> destination_location_id",
            name="ck_stock_transfers_distinct_locations",
        ),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_transfers_product_id", "stock_transfers", ["product_id"], unique=False)
    op.create_index("ix_stock_transfers_source_location_id", "stock_transfers", ["source_location_id"], unique=False)
    op.create_index(
        "ix_stock_transfers_destination_location_id", "stock_transfers", ["destination_location_id"], unique=False
    )
    op.create_index("ix_stock_transfers_status_created", "stock_transfers", ["status", "created_at"], unique=False)

    op.create_table(
        "production_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("location_id", sa.String(length=64), nullable=False),
        sa.Column("target_quantity", sa.Integer(), nullable=False),
        sa.Column("actual_quantity", sa.Integer(), nullable=False),
        sa.Column("wastage", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("quality_check", sa.String(length=32), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("completed_by", sa.String(length=64), nullable=True),
        sa.Column("intake_transaction_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("target_quantity > 0", name="ck_production_batches_target_positive"),
        sa.CheckConstraint("actual_quantity >= 0", name="ck_production_batches_actual_nonnegative"),
        sa.CheckConstraint("wastage >= 0", name="ck_production_batches_wastage_nonnegative"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_production_batches_product_id", "production_batches", ["product_id"], unique=False)
    op.create_index(
        "ix_production_batches_location_status", "production_batches", ["location_id", "status"], unique=False
    )

    op.create_table(
        "stock_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("location_id", sa.String(length=64), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("previous_quantity", sa.Integer(), nullable=False),
        sa.Column("new_quantity", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("transfer_id", sa.Integer(), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("order_ref", sa.String(length=64), nullable=True),
        sa.CheckConstraint("delta <> 0", name="ck_stock_tx_delta_nonzero"),
        sa.CheckConstraint("new_quantity = previous_quantity + delta", name="ck_stock_tx_arithmetic"),
        sa.CheckConstraint("new_quantity >= 0", name="ck_stock_tx_new_quantity_nonnegative"),
        sa.ForeignKeyConstraint(["transfer_id"], ["stock_transfers.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["production_batches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_transactions_kind", "stock_transactions", ["kind"], unique=False)
    op.create_index("ix_stock_transactions_occurred_at", "stock_transactions", ["occurred_at"], unique=False)
    op.create_index("ix_stock_transactions_actor_id", "stock_transactions", ["actor_id"], unique=False)
    op.create_index("ix_stock_transactions_transfer_id", "stock_transactions", ["transfer_id"], unique=False)
    op.create_index("ix_stock_transactions_batch_id", "stock_transactions", ["batch_id"], unique=False)
    op.create_index("ix_stock_transactions_order_ref", "stock_transactions", ["order_ref"], unique=False)
    op.create_index(
        "ix_stock_tx_product_location_occurred",
        "stock_transactions",
        ["product_id", "location_id", "occurred_at", "id"],
        unique=False,
    )


def downgrade():
    op.drop_index("ix_stock_tx_product_location_occurred", table_name="stock_transactions")
    op.drop_index("ix_stock_transactions_order_ref", table_name="stock_transactions")
    op.drop_index("ix_stock_transactions_batch_id", table_name="stock_transactions")
    op.drop_index("ix_stock_transactions_transfer_id", table_name="stock_transactions")
    op.drop_index("ix_stock_transactions_actor_id", table_name="stock_transactions")
    op.drop_index("ix_stock_transactions_occurred_at", table_name="stock_transactions")
    op.drop_index("ix_stock_transactions_kind", table_name="stock_transactions")
    op.drop_table("stock_transactions")

    op.drop_index("ix_production_batches_location_status", table_name="production_batches")
    op.drop_index("ix_production_batches_product_id", table_name="production_batches")
    op.drop_table("production_batches")

    op.drop_index("ix_stock_transfers_status_created", table_name="stock_transfers")
    op.drop_index("ix_stock_transfers_destination_location_id", table_name="stock_transfers")
    op.drop_index("ix_stock_transfers_source_location_id", table_name="stock_transfers")
    op.drop_index("ix_stock_transfers_product_id", table_name="stock_transfers")
    op.drop_table("stock_transfers")

    op.drop_index("ix_stock_records_location", table_name="stock_records")
    op.drop_index("ix_stock_records_product_id", table_name="stock_records")
    op.drop_table("stock_records")
