# Overview: Pytest coverage for the stock ledger service.

"""
Stock Ledger Tests

Covers the adjust path end to end:
1. Non-negativity: a decrement past zero fails and changes nothing
2. Every successful adjustment writes exactly one log entry
3. Classification against the per-record low-stock threshold
4. Projection repair: verify/rebuild against the transaction log
"""

import pytest

from hubstock.errors import ImmutableTransactionError, InsufficientStockError, ValidationError
from hubstock.extensions import db
from hubstock.models import MAX_QUANTITY, StockRecord, StockStatus, StockTransaction, TransactionKind
from hubstock.services import stock_service, transaction_log_service


class TestAdjustStock:
    """adjust_stock() semantics."""

    def test_decrement_past_zero_fails_and_leaves_quantity(self, db_session, stock):
        """45 on hand, remove 50: InsufficientStock, still 45, no new log entry."""
        stock("P1", "KITCHEN", 45)

        with pytest.raises(InsufficientStockError) as excinfo:
            stock_service.adjust_stock("P1", "KITCHEN", -50, "adjust-remove", note="spoilage")

        assert excinfo.value.available == 45
        assert excinfo.value.requested == 50
        assert stock_service.get_quantity("P1", "KITCHEN") == 45
        assert db_session.query(StockTransaction).count() == 1

    def test_unknown_key_reads_as_zero(self, db_session):
        assert stock_service.get_quantity("P404", "NOWHERE") == 0
        assert stock_service.classify("P404", "NOWHERE") == StockStatus.OUT_OF_STOCK

    def test_decrement_unknown_key_fails_without_creating_record(self, db_session):
        with pytest.raises(InsufficientStockError):
            stock_service.adjust_stock("P1", "KITCHEN", -1, "adjust-remove")

        assert db_session.query(StockRecord).count() == 0

    def test_decrement_to_exactly_zero_is_allowed(self, db_session, stock):
        stock("P1", "KITCHEN", 5)
        result = stock_service.adjust_stock("P1", "KITCHEN", -5, "adjust-remove")
        assert result.new_quantity == 0
        assert stock_service.classify("P1", "KITCHEN") == StockStatus.OUT_OF_STOCK

    def test_adjustment_returns_logged_transaction(self, db_session):
        result = stock_service.adjust_stock(
            "P1", "KITCHEN", 12, TransactionKind.ADJUST_ADD, note="delivery", actor_id="u-7"
        )

        tx = result.transaction
        assert result.new_quantity == 12
        assert tx.kind == TransactionKind.ADJUST_ADD
        assert tx.delta == 12
        assert tx.previous_quantity == 0
        assert tx.new_quantity == 12
        assert tx.note == "delivery"
        assert tx.actor_id == "u-7"

    def test_new_record_gets_default_threshold(self, app, db_session, stock):
        stock("P1", "KITCHEN", 1)
        record = stock_service.get_stock_record("P1", "KITCHEN")
        assert record.low_stock_threshold == app.config["DEFAULT_LOW_STOCK_THRESHOLD"]

    @pytest.mark.parametrize("delta", [0, 1.5, "3", True])
    def test_invalid_delta_rejected(self, db_session, delta):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock("P1", "KITCHEN", delta, "adjust-add")

    @pytest.mark.parametrize("kind,delta", [
        ("adjust-add", -3),
        ("adjust-remove", 3),
        ("transfer-in", -3),
        ("transfer-out", 3),
        ("production-intake", -3),
    ])
    def test_delta_sign_must_match_kind(self, db_session, kind, delta):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock("P1", "KITCHEN", delta, kind)

    def test_unknown_kind_rejected(self, db_session):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock("P1", "KITCHEN", 3, "gift")

    @pytest.mark.parametrize("product_id,location_id", [
        ("", "KITCHEN"),
        ("P1", "   "),
        (None, "KITCHEN"),
        ("P" * 65, "KITCHEN"),
    ])
    def test_malformed_key_rejected(self, db_session, product_id, location_id):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(product_id, location_id, 1, "adjust-add")
        assert db_session.query(StockTransaction).count() == 0

    def test_same_product_is_independent_per_location(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        stock("P1", "WAREHOUSE", 7)
        stock_service.adjust_stock("P1", "WAREHOUSE", -7, "adjust-remove")

        assert stock_service.get_quantity("P1", "KITCHEN") == 45
        assert stock_service.get_quantity("P1", "WAREHOUSE") == 0

    def test_delta_beyond_column_range_rejected(self, db_session):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock("P1", "KITCHEN", 10**20, "adjust-add")
        with pytest.raises(ValidationError):
            stock_service.adjust_stock("P1", "KITCHEN", -(MAX_QUANTITY + 1), "adjust-remove")

        # The session is still usable afterwards
        assert stock_service.adjust_stock("P2", "KITCHEN", 5, "adjust-add").new_quantity == 5
        assert db_session.query(StockTransaction).count() == 1

    def test_adjustment_past_maximum_quantity_rejected(self, db_session, stock):
        stock("P1", "KITCHEN", MAX_QUANTITY - 1)

        with pytest.raises(ValidationError):
            stock_service.adjust_stock("P1", "KITCHEN", 5, "adjust-add")

        assert stock_service.get_quantity("P1", "KITCHEN") == MAX_QUANTITY - 1
        assert stock_service.adjust_stock("P1", "KITCHEN", 1, "adjust-add").new_quantity == MAX_QUANTITY

    def test_unexpected_error_rolls_back_partial_write(self, db_session, stock, monkeypatch):
        stock("P1", "KITCHEN", 45)
        real_apply = stock_service.apply_adjustment

        def _apply_then_crash(**kwargs):
            real_apply(**kwargs)
            raise RuntimeError("crashed after flush")

        monkeypatch.setattr(stock_service, "apply_adjustment", _apply_then_crash)
        with pytest.raises(RuntimeError):
            stock_service.adjust_stock("P1", "KITCHEN", -5, "adjust-remove")
        monkeypatch.undo()

        assert stock_service.get_quantity("P1", "KITCHEN") == 45
        assert stock_service.adjust_stock("P1", "KITCHEN", -5, "adjust-remove").new_quantity == 40
        assert db_session.query(StockTransaction).count() == 2


class TestClassification:
    """Threshold boundaries: 0 out, 1..threshold low, above threshold in."""

    @pytest.mark.parametrize("quantity,expected", [
        (0, StockStatus.OUT_OF_STOCK),
        (1, StockStatus.LOW_STOCK),
        (10, StockStatus.LOW_STOCK),
        (11, StockStatus.IN_STOCK),
    ])
    def test_classify_against_threshold(self, db_session, quantity, expected):
        stock_service.set_low_stock_threshold("P1", "KITCHEN", 10)
        if quantity:
            stock_service.adjust_stock("P1", "KITCHEN", quantity, "adjust-add")
        assert stock_service.classify("P1", "KITCHEN") == expected

    def test_zero_threshold_never_low(self, db_session, stock):
        stock_service.set_low_stock_threshold("P1", "KITCHEN", 0)
        stock("P1", "KITCHEN", 1)
        assert stock_service.classify("P1", "KITCHEN") == StockStatus.IN_STOCK

    def test_threshold_change_reclassifies_without_logging(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        assert stock_service.classify("P1", "KITCHEN") == StockStatus.IN_STOCK

        stock_service.set_low_stock_threshold("P1", "KITCHEN", 50)

        assert stock_service.classify("P1", "KITCHEN") == StockStatus.LOW_STOCK
        assert db_session.query(StockTransaction).count() == 1

    def test_negative_threshold_rejected(self, db_session):
        with pytest.raises(ValidationError):
            stock_service.set_low_stock_threshold("P1", "KITCHEN", -1)
        with pytest.raises(ValidationError):
            stock_service.set_low_stock_threshold("P1", "KITCHEN", MAX_QUANTITY + 1)


class TestListingAndSummary:

    def test_list_stock_filters_by_location_and_status(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        stock("P2", "KITCHEN", 3)
        stock("P3", "KITCHEN", 2)
        stock_service.adjust_stock("P3", "KITCHEN", -2, "adjust-remove")
        stock("P1", "WAREHOUSE", 3)

        kitchen = stock_service.list_stock(location_id="KITCHEN")
        assert [r.product_id for r in kitchen] == ["P1", "P2", "P3"]

        low = stock_service.list_stock(status="low-stock")
        assert [(r.location_id, r.product_id) for r in low] == [("KITCHEN", "P2"), ("WAREHOUSE", "P1")]

        out = stock_service.list_stock(location_id="KITCHEN", status=StockStatus.OUT_OF_STOCK)
        assert [r.product_id for r in out] == ["P3"]

    def test_list_stock_rejects_unknown_status(self, db_session):
        with pytest.raises(ValidationError):
            stock_service.list_stock(status="plenty")

    def test_stock_summary_counts(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        stock("P2", "KITCHEN", 3)
        stock("P3", "KITCHEN", 2)
        stock_service.adjust_stock("P3", "KITCHEN", -2, "adjust-remove")
        stock("P1", "WAREHOUSE", 100)

        summary = stock_service.stock_summary("KITCHEN")
        assert summary == {
            "location_id": "KITCHEN",
            "total_products": 3,
            "in_stock": 1,
            "low_stock": 1,
            "out_of_stock": 1,
            "total_units": 48,
        }
        assert stock_service.stock_summary()["total_units"] == 148


class TestProjectionRepair:
    """The log is authoritative; stock records are a repairable projection."""

    def test_clean_ledger_has_no_inconsistencies(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        stock_service.adjust_stock("P1", "KITCHEN", -5, "adjust-remove")
        assert stock_service.find_inconsistencies() == []

    def test_rebuild_repairs_drifted_record(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        stock("P2", "KITCHEN", 8)

        # Simulate drift from an out-of-band write
        db_session.execute(
            StockRecord.__table__.update()
            .where(StockRecord.__table__.c.product_id == "P1")
            .values(quantity=99)
        )
        db_session.commit()
        db_session.expire_all()

        problems = stock_service.find_inconsistencies()
        assert problems == [{
            "product_id": "P1",
            "location_id": "KITCHEN",
            "recorded_quantity": 99,
            "replayed_quantity": 45,
        }]

        repaired = stock_service.rebuild_stock_records()
        assert repaired == [{
            "product_id": "P1",
            "location_id": "KITCHEN",
            "previous_quantity": 99,
            "quantity": 45,
        }]
        assert stock_service.get_quantity("P1", "KITCHEN") == 45
        assert stock_service.find_inconsistencies() == []

    def test_record_without_log_entries_is_reported(self, db_session):
        stock_service.set_low_stock_threshold("P1", "KITCHEN", 5)
        db_session.execute(StockRecord.__table__.update().values(quantity=4))
        db_session.commit()

        problems = stock_service.find_inconsistencies()
        assert problems[0]["recorded_quantity"] == 4
        assert problems[0]["replayed_quantity"] == 0


class TestTransactionImmutability:

    def test_logged_transaction_cannot_be_modified(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        tx = db_session.query(StockTransaction).one()
        tx.note = "rewritten"

        with pytest.raises(ImmutableTransactionError):
            db_session.flush()
        db_session.rollback()

    def test_logged_transaction_cannot_be_deleted(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        tx = db_session.query(StockTransaction).one()
        db_session.delete(tx)

        with pytest.raises(ImmutableTransactionError):
            db_session.flush()
        db_session.rollback()
        assert transaction_log_service.replay_quantity("P1", "KITCHEN") == 45
