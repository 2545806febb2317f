# Overview: Pytest coverage for location-to-location transfers and their compensation path.

"""
Transfer Tests

A transfer is two committed legs. These tests prove that:
1. Successful transfers conserve units across locations
2. Rejected transfers change nothing
3. A failed destination leg is compensated at the source ("transfer rollback")
4. A failed compensation is flagged for manual reconciliation, never retried
5. Transfers stranded in pending are recovered by the operator command path
"""

import logging
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from hubstock.errors import InsufficientStockError, NotFoundError, StorageFailureError, ValidationError
from hubstock.models import MAX_QUANTITY, StockTransaction, TransactionKind, TransferOperation, TransferStatus
from hubstock.services import stock_service, transfer_service
from hubstock.services.concurrency import stock_key, stock_locks
from hubstock.time_utils import utcnow


def _failing_apply(*failing_kinds, exc_factory=None):
    """Wrap apply_adjustment so chosen kinds fail like a dying disk."""
    real_apply = transfer_service.apply_adjustment

    def _apply(**kwargs):
        if kwargs["kind"] in failing_kinds:
            if exc_factory is not None:
                raise exc_factory()
            raise OperationalError("INSERT INTO stock_transactions", {}, Exception("disk I/O error"))
        return real_apply(**kwargs)

    return _apply


class TestTransferStock:

    def test_transfer_moves_stock(self, db_session, stock):
        """45 at KITCHEN, move 20 to WAREHOUSE: 25 / 20."""
        stock("P1", "KITCHEN", 45)

        transfer = transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 20, actor_id="u-1")

        assert transfer.status == TransferStatus.COMPLETED
        assert stock_service.get_quantity("P1", "KITCHEN") == 25
        assert stock_service.get_quantity("P1", "WAREHOUSE") == 20
        assert transfer.completed_at is not None

    def test_transfer_logs_both_legs(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        transfer = transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 20)

        legs = db_session.query(StockTransaction).filter_by(transfer_id=transfer.id).order_by(StockTransaction.id).all()
        assert [(tx.kind, tx.location_id, tx.delta) for tx in legs] == [
            (TransactionKind.TRANSFER_OUT, "KITCHEN", -20),
            (TransactionKind.TRANSFER_IN, "WAREHOUSE", 20),
        ]
        assert transfer.out_transaction_id == legs[0].id
        assert transfer.in_transaction_id == legs[1].id

    def test_transfers_conserve_units(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        stock("P1", "WAREHOUSE", 5)

        transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 20)
        transfer_service.transfer_stock("P1", "WAREHOUSE", "HUB", 11)
        transfer_service.transfer_stock("P1", "HUB", "KITCHEN", 4)

        quantities = [stock_service.get_quantity("P1", loc) for loc in ("KITCHEN", "WAREHOUSE", "HUB")]
        assert quantities == [29, 14, 7]
        assert sum(quantities) == 50
        assert stock_service.find_inconsistencies() == []

    def test_insufficient_source_changes_nothing(self, db_session, stock):
        stock("P1", "KITCHEN", 45)

        with pytest.raises(InsufficientStockError):
            transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 46)

        assert stock_service.get_quantity("P1", "KITCHEN") == 45
        assert stock_service.get_quantity("P1", "WAREHOUSE") == 0
        assert db_session.query(TransferOperation).count() == 0

    def test_same_location_rejected(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        with pytest.raises(ValidationError):
            transfer_service.transfer_stock("P1", "KITCHEN", "KITCHEN", 5)
        assert stock_service.get_quantity("P1", "KITCHEN") == 45

    @pytest.mark.parametrize("quantity", [0, -5, 2.5, "3", MAX_QUANTITY + 1, 10**20])
    def test_invalid_quantity_rejected(self, db_session, stock, quantity):
        stock("P1", "KITCHEN", 45)
        with pytest.raises(ValidationError):
            transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", quantity)

    def test_destination_failure_rolls_back_source(self, db_session, stock, monkeypatch, caplog):
        stock("P1", "KITCHEN", 45)
        monkeypatch.setattr(transfer_service, "apply_adjustment", _failing_apply(TransactionKind.TRANSFER_IN))

        with caplog.at_level(logging.ERROR, logger="hubstock.services.transfer_service"):
            with pytest.raises(StorageFailureError) as excinfo:
                transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 20)

        incident_ref = excinfo.value.incident_ref
        logged = [r for r in caplog.records if incident_ref in r.getMessage()]
        assert logged and logged[0].levelno == logging.ERROR
        assert isinstance(logged[0].exc_info[1], OperationalError)

        assert excinfo.value.requires_reconciliation is False
        assert "disk" not in str(excinfo.value)
        assert stock_service.get_quantity("P1", "KITCHEN") == 45
        assert stock_service.get_quantity("P1", "WAREHOUSE") == 0

        transfer = db_session.query(TransferOperation).one()
        assert transfer.status == TransferStatus.ROLLED_BACK
        assert transfer.in_transaction_id is None
        assert transfer.incident_ref == incident_ref
        assert incident_ref in transfer.failure_reason

        reversal = transfer_service.get_transfer(transfer.id)
        rollback_tx = db_session.get(StockTransaction, reversal.rollback_transaction_id)
        assert rollback_tx.kind == TransactionKind.ADJUST_ADD
        assert rollback_tx.delta == 20
        assert rollback_tx.note == transfer_service.ROLLBACK_NOTE
        assert stock_service.find_inconsistencies() == []

    def test_interrupted_destination_leg_is_compensated(self, db_session, stock, monkeypatch):
        stock("P1", "KITCHEN", 45)
        monkeypatch.setattr(
            transfer_service,
            "apply_adjustment",
            _failing_apply(TransactionKind.TRANSFER_IN, exc_factory=lambda: RuntimeError("worker crashed")),
        )

        with pytest.raises(RuntimeError):
            transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 20)

        assert stock_service.get_quantity("P1", "KITCHEN") == 45
        transfer = db_session.query(TransferOperation).one()
        assert transfer.status == TransferStatus.ROLLED_BACK
        assert "worker crashed" in transfer.failure_reason

    def test_failed_compensation_requires_reconciliation(self, db_session, stock, monkeypatch):
        stock("P1", "KITCHEN", 45)
        monkeypatch.setattr(
            transfer_service,
            "apply_adjustment",
            _failing_apply(TransactionKind.TRANSFER_IN, TransactionKind.ADJUST_ADD),
        )

        with pytest.raises(StorageFailureError) as excinfo:
            transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 20)

        assert excinfo.value.requires_reconciliation is True
        assert "requires manual reconciliation" in str(excinfo.value)

        transfer = db_session.query(TransferOperation).one()
        assert transfer.status == TransferStatus.RECONCILIATION_REQUIRED
        assert transfer.incident_ref == excinfo.value.incident_ref
        # The out leg stays committed until an operator reconciles it
        assert stock_service.get_quantity("P1", "KITCHEN") == 25
        assert stock_service.get_quantity("P1", "WAREHOUSE") == 0


class TestRecoverPendingTransfers:

    def _strand(self, product_id, source, destination, quantity):
        with stock_locks.hold(stock_key(product_id, source), stock_key(product_id, destination)):
            return transfer_service._ship(product_id, source, destination, quantity, None, None)

    def test_stranded_transfer_is_compensated(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        transfer_id = self._strand("P1", "KITCHEN", "WAREHOUSE", 20)
        assert stock_service.get_quantity("P1", "KITCHEN") == 25

        recovered = transfer_service.recover_pending_transfers(
            older_than=timedelta(minutes=5), now=utcnow() + timedelta(minutes=6)
        )

        assert [t.id for t in recovered] == [transfer_id]
        assert recovered[0].status == TransferStatus.ROLLED_BACK
        assert stock_service.get_quantity("P1", "KITCHEN") == 45
        assert stock_service.get_quantity("P1", "WAREHOUSE") == 0

    def test_recent_pending_transfer_is_left_alone(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        self._strand("P1", "KITCHEN", "WAREHOUSE", 20)

        assert transfer_service.recover_pending_transfers(older_than=timedelta(minutes=5)) == []
        assert stock_service.get_quantity("P1", "KITCHEN") == 25

    def test_completed_transfers_are_not_touched(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 20)

        recovered = transfer_service.recover_pending_transfers(
            older_than=timedelta(0), now=utcnow() + timedelta(minutes=1)
        )
        assert recovered == []
        assert stock_service.get_quantity("P1", "WAREHOUSE") == 20


class TestTransferQueries:

    def test_get_unknown_transfer(self, db_session):
        with pytest.raises(NotFoundError):
            transfer_service.get_transfer(12345)

    def test_list_transfers_by_location_and_status(self, db_session, stock):
        stock("P1", "KITCHEN", 45)
        t1 = transfer_service.transfer_stock("P1", "KITCHEN", "WAREHOUSE", 5)
        t2 = transfer_service.transfer_stock("P1", "WAREHOUSE", "HUB", 2)

        assert [t.id for t in transfer_service.list_transfers(location_id="KITCHEN")] == [t1.id]
        assert {t.id for t in transfer_service.list_transfers(location_id="WAREHOUSE")} == {t1.id, t2.id}
        assert transfer_service.list_transfers(status="rolled-back") == []

        with pytest.raises(ValidationError):
            transfer_service.list_transfers(status="lost")
