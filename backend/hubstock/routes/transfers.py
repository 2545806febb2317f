# backend/hubstock/routes/transfers.py
"""
Location-to-location transfer API routes.
"""
from flask import Blueprint, request

from ..services import transfer_service
from ..validation import Field, current_actor_id, json_body, query_int, validate_payload


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")

TRANSFER_FIELDS = {
    "product_id": Field("str", required=True, max_length=64),
    "source_location_id": Field("str", required=True, max_length=64),
    "destination_location_id": Field("str", required=True, max_length=64),
    "quantity": Field("int", required=True),
    "note": Field("str", max_length=255),
}


@transfers_bp.route("", methods=["POST"])
def create_transfer():
    """
    Move stock from one location to another.

    Request body:
    {
        "product_id": str,
        "source_location_id": str,
        "destination_location_id": str,
        "quantity": int,
        "note": str (optional)
    }

    Returns:
        201: Transfer completed
        400: Invalid request
        409: Insufficient stock at the source
        503: Storage failure (transfer rolled back, or flagged for reconciliation)
    """
    data = validate_payload(json_body(), TRANSFER_FIELDS)
    transfer = transfer_service.transfer_stock(
        product_id=data["product_id"],
        source_location_id=data["source_location_id"],
        destination_location_id=data["destination_location_id"],
        quantity=data["quantity"],
        actor_id=current_actor_id(),
        note=data.get("note"),
    )
    return transfer.to_dict(), 201


@transfers_bp.route("", methods=["GET"])
def list_transfers():
    transfers = transfer_service.list_transfers(
        location_id=request.args.get("location_id") or None,
        status=request.args.get("status") or None,
        limit=query_int("limit", 100, minimum=1, maximum=500),
    )
    return {"items": [t.to_dict() for t in transfers]}, 200


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
def get_transfer(transfer_id: int):
    return transfer_service.get_transfer(transfer_id).to_dict(), 200
