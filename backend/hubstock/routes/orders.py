# backend/hubstock/routes/orders.py
"""
Order fulfillment routes.

resolve: read-only preview of availability, shortfall and shortage credit.
dispatch: decrements stock for the deliverable quantities, re-resolving first.
"""
from flask import Blueprint

from ..services import fulfillment_service
from ..validation import Field, current_actor_id, json_body, validate_payload


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

RESOLVE_FIELDS = {
    "lines": Field("list", required=True),
}

DISPATCH_FIELDS = {
    "order_ref": Field("str", max_length=64),
    "lines": Field("list", required=True),
}


@orders_bp.post("/resolve")
def resolve_order_route():
    """
    Request body:
    {
        "lines": [
            {"product_id": str, "location_id": str, "requested_quantity": int, "unit_price_cents": int}
        ]
    }
    """
    data = validate_payload(json_body(), RESOLVE_FIELDS)
    resolution = fulfillment_service.resolve_order(data["lines"])
    return resolution.to_dict(), 200


@orders_bp.post("/dispatch")
def dispatch_order_route():
    data = validate_payload(json_body(), DISPATCH_FIELDS)
    result = fulfillment_service.dispatch_order(
        data["lines"],
        actor_id=current_actor_id(),
        order_ref=data.get("order_ref"),
    )
    return result.to_dict(), 201
