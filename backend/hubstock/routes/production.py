# backend/hubstock/routes/production.py
"""
Production batch routes for kitchen locations.
"""
from flask import Blueprint, request

from ..services import production_service
from ..validation import Field, current_actor_id, json_body, validate_payload


production_bp = Blueprint("production", __name__, url_prefix="/api/production")

CREATE_FIELDS = {
    "product_id": Field("str", required=True, max_length=64),
    "location_id": Field("str", required=True, max_length=64),
    "target_quantity": Field("int", required=True),
    "notes": Field("str", max_length=2000),
}

COMPLETE_FIELDS = {
    "actual_quantity": Field("int", required=True),
    "wastage": Field("int", required=True),
    "quality_check": Field("str", required=True, max_length=16),
    "notes": Field("str", max_length=2000),
}

CANCEL_FIELDS = {
    "reason": Field("str", max_length=255),
}


@production_bp.post("/batches")
def create_batch_route():
    data = validate_payload(json_body(), CREATE_FIELDS)
    batch = production_service.create_batch(
        product_id=data["product_id"],
        location_id=data["location_id"],
        target_quantity=data["target_quantity"],
        notes=data.get("notes"),
        actor_id=current_actor_id(),
    )
    return batch.to_dict(), 201


@production_bp.get("/batches")
def list_batches_route():
    batches = production_service.list_batches(
        location_id=request.args.get("location_id") or None,
        status=request.args.get("status") or None,
    )
    return {"items": [b.to_dict() for b in batches]}, 200


@production_bp.get("/batches/<int:batch_id>")
def get_batch_route(batch_id: int):
    return production_service.get_batch(batch_id).to_dict(), 200


@production_bp.post("/batches/<int:batch_id>/start")
def start_batch_route(batch_id: int):
    return production_service.start_batch(batch_id).to_dict(), 200


@production_bp.post("/batches/<int:batch_id>/complete")
def complete_batch_route(batch_id: int):
    """
    Request body:
    {
        "actual_quantity": int,
        "wastage": int,
        "quality_check": "passed" | "failed",
        "notes": str (optional)
    }
    """
    data = validate_payload(json_body(), COMPLETE_FIELDS)
    batch = production_service.complete_batch(
        batch_id,
        actual_quantity=data["actual_quantity"],
        wastage=data["wastage"],
        quality_check=data["quality_check"],
        notes=data.get("notes"),
        actor_id=current_actor_id(),
    )
    return batch.to_dict(), 200


@production_bp.post("/batches/<int:batch_id>/cancel")
def cancel_batch_route(batch_id: int):
    data = validate_payload(json_body(), CANCEL_FIELDS)
    return production_service.cancel_batch(batch_id, reason=data.get("reason")).to_dict(), 200


@production_bp.get("/summary")
def production_summary_route():
    return production_service.production_summary(request.args.get("location_id") or None), 200
