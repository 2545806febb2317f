# backend/hubstock/routes/stock.py
"""
Stock ledger routes for the hub stock-management screens.

- Reads: current quantity and classification, per-location listings, summary counters
- Writes: manual adjustments (adjust-add / adjust-remove only) and low-stock thresholds
- History: newest-first transaction log per product and location, cursor paged

Time semantics:
- History cursors are "<ISO-8601 with microseconds>Z|<transaction id>".
"""
from flask import Blueprint, current_app, request

from ..errors import ValidationError
from ..models import StockStatus, TransactionKind
from ..services import stock_service, transaction_log_service
from ..validation import Field, current_actor_id, json_body, query_int, validate_payload


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

MANUAL_KINDS = {TransactionKind.ADJUST_ADD.value, TransactionKind.ADJUST_REMOVE.value}

ADJUST_FIELDS = {
    "product_id": Field("str", required=True, max_length=64),
    "location_id": Field("str", required=True, max_length=64),
    "delta": Field("int", required=True),
    "kind": Field("str"),
    "note": Field("str", max_length=255),
}

THRESHOLD_FIELDS = {
    "low_stock_threshold": Field("int", required=True),
}


def _stock_view(product_id: str, location_id: str) -> dict:
    record = stock_service.get_stock_record(product_id, location_id)
    if record is not None:
        return record.to_dict()
    # Absence means zero; nothing has been stocked here yet.
    return {
        "product_id": product_id,
        "location_id": location_id,
        "quantity": 0,
        "low_stock_threshold": current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 10),
        "status": StockStatus.OUT_OF_STOCK.value,
        "last_movement_at": None,
        "version_id": None,
        "created_at": None,
        "updated_at": None,
    }


@stock_bp.get("")
def list_stock_route():
    records = stock_service.list_stock(
        location_id=request.args.get("location_id") or None,
        status=request.args.get("status") or None,
    )
    return {"items": [record.to_dict() for record in records]}, 200


@stock_bp.get("/summary")
def stock_summary_route():
    return stock_service.stock_summary(request.args.get("location_id") or None), 200


@stock_bp.get("/<location_id>/<product_id>")
def get_stock_route(location_id: str, product_id: str):
    return _stock_view(product_id, location_id), 200


@stock_bp.post("/adjust")
def adjust_stock_route():
    """
    Manual stock adjustment (corrections, spoilage, counted deliveries).

    kind defaults from the sign of delta. Transfer and production kinds are
    reserved for their own endpoints.
    """
    patch = validate_payload(json_body(), ADJUST_FIELDS)
    delta = patch["delta"]
    kind = patch.get("kind") or (
        TransactionKind.ADJUST_ADD.value if delta > 0 else TransactionKind.ADJUST_REMOVE.value
    )
    if kind not in MANUAL_KINDS:
        raise ValidationError("kind must be adjust-add or adjust-remove")

    result = stock_service.adjust_stock(
        product_id=patch["product_id"],
        location_id=patch["location_id"],
        delta=delta,
        kind=kind,
        note=patch.get("note"),
        actor_id=current_actor_id(),
    )
    return {
        "transaction": result.transaction.to_dict(),
        "stock": _stock_view(patch["product_id"], patch["location_id"]),
    }, 201


@stock_bp.put("/<location_id>/<product_id>/threshold")
def set_threshold_route(location_id: str, product_id: str):
    patch = validate_payload(json_body(), THRESHOLD_FIELDS)
    record = stock_service.set_low_stock_threshold(product_id, location_id, patch["low_stock_threshold"])
    return record.to_dict(), 200


@stock_bp.get("/<location_id>/<product_id>/history")
def stock_history_route(location_id: str, product_id: str):
    default_size = current_app.config.get("HISTORY_PAGE_SIZE", 100)
    max_size = current_app.config.get("HISTORY_MAX_PAGE_SIZE", 500)
    limit = query_int("limit", default_size, minimum=1, maximum=max_size)
    cursor = transaction_log_service.decode_cursor(request.args.get("cursor"))

    history = transaction_log_service.list_for(product_id, location_id, page_size=limit)
    page = history.page(cursor=cursor, size=limit)
    return {**page.to_dict(), "limit": limit}, 200
