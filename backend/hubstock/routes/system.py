# backend/hubstock/routes/system.py
"""
System health endpoint.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import StockRecord, StockTransaction, TransferOperation, TransferStatus
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and report ledger counters.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        record_count = db.session.query(StockRecord).count()
        transaction_count = db.session.query(StockTransaction).count()
        reconciliation_count = db.session.query(TransferOperation).filter(
            TransferOperation.status == TransferStatus.RECONCILIATION_REQUIRED
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stock_records": record_count,
                "stock_transactions": transaction_count,
                "transfers_requiring_reconciliation": reconciliation_count,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health_route():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return {
        "status": database["status"],
        "time": to_utc_z(utcnow()),
        "database": database,
    }, status_code
