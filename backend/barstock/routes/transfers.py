# backend/barstock/routes/transfers.py
"""
Transfer batch API routes (branch -> central warehouse).

Batches are addressed by their transfer code, or LEGACY-<item id> for
items created before codes existed.
"""
from flask import Blueprint, request, jsonify, g

from barstock.decorators import require_auth, handle_service_errors
from barstock.services import access_service, transfer_service
from barstock.validation import ForbiddenError, ValidationError


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.route("", methods=["POST"])
@require_auth
@handle_service_errors("create transfer")
def create_transfer():
    """
    Ship expired deposits to the warehouse.

    Request body:
    {
        "store_id": int,
        "deposit_ids": [int],
        "destination_store_id": int,
        "photo_url": str (optional),
        "notes": str (optional)
    }

    Returns:
        201: The new batch
        400: Invalid request
        409: A deposit is not expired
    """
    data = request.get_json(silent=True) or {}
    for field in ("store_id", "deposit_ids", "destination_store_id"):
        if field not in data:
            raise ValidationError(f"Missing required field: {field}")

    batch = transfer_service.create_batch(
        store_id=data["store_id"],
        deposit_ids=data["deposit_ids"],
        destination_store_id=data["destination_store_id"],
        actor_id=g.current_user.id,
        photo_url=data.get("photo_url"),
        notes=data.get("notes"),
    )
    return jsonify(batch), 201


@transfers_bp.route("", methods=["GET"])
@require_auth
@handle_service_errors("list transfers")
def list_transfers():
    """
    Query params:
        store_id: required
        perspective: "sending" (default) | "receiving"
        status: optional, one of pending / confirmed / rejected
    """
    store_id = request.args.get("store_id", type=int)
    if store_id is None:
        raise ValidationError("store_id is required")
    access_service.require_store_access(g.current_user.id, store_id, action="view transfers for this store")

    partitions = transfer_service.list_batches(
        store_id,
        perspective=request.args.get("perspective", transfer_service.PERSPECTIVE_SENDING),
        status=request.args.get("status") or None,
    )
    return jsonify(partitions), 200


@transfers_bp.route("/<batch_key>", methods=["GET"])
@require_auth
@handle_service_errors("get transfer")
def get_transfer(batch_key: str):
    batch = transfer_service.get_batch(batch_key)
    user = g.current_user
    if not (
        access_service.user_can_access_store(user, batch["from_store_id"])
        or access_service.user_can_access_store(user, batch["to_store_id"])
    ):
        raise ForbiddenError("Not allowed to view this transfer")
    return jsonify(batch), 200


@transfers_bp.route("/<batch_key>/confirm", methods=["POST"])
@require_auth
@handle_service_errors("confirm transfer")
def confirm_transfer(batch_key: str):
    data = request.get_json(silent=True) or {}
    batch = transfer_service.confirm_batch(
        batch_key,
        actor_id=g.current_user.id,
        photo_url=data.get("photo_url"),
        notes=data.get("notes"),
    )
    return jsonify(batch), 200


@transfers_bp.route("/items/<int:item_id>/confirm", methods=["POST"])
@require_auth
@handle_service_errors("confirm transfer item")
def confirm_transfer_item(item_id: int):
    data = request.get_json(silent=True) or {}
    batch = transfer_service.confirm_batch_item(
        item_id,
        actor_id=g.current_user.id,
        photo_url=data.get("photo_url"),
        notes=data.get("notes"),
    )
    return jsonify(batch), 200


@transfers_bp.route("/<batch_key>/reject", methods=["POST"])
@require_auth
@handle_service_errors("reject transfer")
def reject_transfer(batch_key: str):
    """
    Request body:
    {
        "reason": str (required when the warehouse rejects),
        "store_id": int (optional, the side the actor acts for)
    }
    """
    data = request.get_json(silent=True) or {}
    batch = transfer_service.reject_batch(
        batch_key,
        actor_id=g.current_user.id,
        reason=data.get("reason"),
        actor_store_id=data.get("store_id"),
    )
    return jsonify(batch), 200
