# backend/barstock/routes/borrows.py
"""
Branch-to-branch borrow API routes.

Request bodies use camelCase field names (fromStoreId, lenderPhotoUrl, ...);
responses are Borrow.to_dict().
"""
from flask import Blueprint, request, jsonify, g

from barstock.decorators import require_auth, handle_service_errors
from barstock.services import access_service, borrow_service
from barstock.validation import ForbiddenError, ValidationError


borrows_bp = Blueprint("borrows", __name__, url_prefix="/api/borrows")


def _item_from_json(raw):
    if not isinstance(raw, dict):
        return raw
    return {
        "product_name": raw.get("productName"),
        "category": raw.get("category"),
        "quantity": raw.get("quantity"),
        "unit": raw.get("unit"),
        "notes": raw.get("notes"),
    }


@borrows_bp.route("", methods=["POST"])
@require_auth
@handle_service_errors("create borrow")
def create_borrow():
    """
    Request a borrow from another branch.

    Request body:
    {
        "fromStoreId": int,
        "toStoreId": int,
        "items": [{"productName": str, "category": str?, "quantity": number, "unit": str?}],
        "notes": str (optional),
        "borrowerPhotoUrl": str (optional)
    }

    Returns:
        201: Borrow created (with items)
        400: Invalid request
        403: Not a member of the borrowing store
    """
    data = request.get_json(silent=True) or {}

    items = data.get("items")
    borrow = borrow_service.create_borrow(
        from_store_id=data.get("fromStoreId"),
        to_store_id=data.get("toStoreId"),
        items=[_item_from_json(i) for i in items] if isinstance(items, list) else items,
        actor_id=g.current_user.id,
        notes=data.get("notes"),
        borrower_photo_url=data.get("borrowerPhotoUrl"),
    )
    return jsonify(borrow.to_dict()), 201


@borrows_bp.route("/<int:borrow_id>", methods=["PATCH"])
@require_auth
@handle_service_errors("update borrow")
def update_borrow(borrow_id: int):
    """
    Drive a borrow through its workflow.

    Request body:
    {
        "action": "approve" | "reject" | "confirm_pos" | "upload_photo",
        "lenderPhotoUrl": str (approve, optional),
        "reason": str (reject),
        "side": "borrower" | "lender" (confirm_pos, upload_photo),
        "photoUrl": str (upload_photo)
    }

    Returns:
        200: Updated borrow (with items)
        400: Invalid request
        403: Actor is not at the store this action belongs to
        404: Borrow not found
        409: Borrow is no longer in a state that allows the action
    """
    data = request.get_json(silent=True) or {}
    action = data.get("action")
    actor_id = g.current_user.id

    if not action:
        raise ValidationError("action is required")

    if action == "approve":
        borrow = borrow_service.approve(borrow_id, actor_id=actor_id, lender_photo_url=data.get("lenderPhotoUrl"))
    elif action == "reject":
        borrow = borrow_service.reject(borrow_id, data.get("reason"), actor_id=actor_id)
    elif action == "confirm_pos":
        borrow = borrow_service.confirm_pos(borrow_id, data.get("side"), actor_id=actor_id)
    elif action == "upload_photo":
        borrow = borrow_service.upload_photo(borrow_id, data.get("side"), data.get("photoUrl"), actor_id=actor_id)
    else:
        raise ValidationError(f"Unknown action '{action}'")

    return jsonify(borrow.to_dict()), 200


@borrows_bp.route("", methods=["GET"])
@require_auth
@handle_service_errors("list borrows")
def list_borrows():
    """
    Query params:
        storeId: required
        tab: "outgoing" (default) | "incoming"
        status: optional status filter
    """
    store_id = request.args.get("storeId", type=int)
    if store_id is None:
        raise ValidationError("storeId is required")
    access_service.require_store_access(g.current_user.id, store_id, action="view borrows for this store")

    borrows = borrow_service.list_borrows(
        store_id,
        direction=request.args.get("tab", borrow_service.DIRECTION_OUTGOING),
        status=request.args.get("status") or None,
    )
    return jsonify({"borrows": [b.to_dict() for b in borrows]}), 200


@borrows_bp.route("/<int:borrow_id>", methods=["GET"])
@require_auth
@handle_service_errors("get borrow")
def get_borrow(borrow_id: int):
    borrow = borrow_service.get_borrow(borrow_id)
    user = g.current_user
    if not (
        access_service.user_can_access_store(user, borrow.from_store_id)
        or access_service.user_can_access_store(user, borrow.to_store_id)
    ):
        raise ForbiddenError("Not allowed to view this borrow")
    return jsonify(borrow.to_dict()), 200
