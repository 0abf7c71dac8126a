# backend/barstock/routes/deposits.py
"""
Deposit and withdrawal API routes.
"""
from flask import Blueprint, request, jsonify, g

from barstock.decorators import require_auth, handle_service_errors
from barstock.services import access_service, deposit_service
from barstock.validation import ForbiddenError, ValidationError, parse_flag


deposits_bp = Blueprint("deposits", __name__, url_prefix="/api/deposits")


def _required_store_id() -> int:
    store_id = request.args.get("store_id", type=int)
    if store_id is None:
        raise ValidationError("store_id is required")
    return store_id


@deposits_bp.route("", methods=["POST"])
@require_auth
@handle_service_errors("create deposit")
def create_deposit():
    """
    Request body:
    {
        "store_id": int,
        "product_name": str,
        "quantity": number,
        "customer_id": int (optional),
        "customer_name": str (optional),
        "customer_phone": str (optional),
        "category": str (optional),
        "table_number": str (optional),
        "expiry_days": int (optional, defaults to DEFAULT_DEPOSIT_EXPIRY_DAYS),
        "is_vip": bool (optional),
        "is_no_deposit": bool (optional),
        "photo_url": str (optional),
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    if "store_id" not in data:
        raise ValidationError("Missing required field: store_id")

    deposit = deposit_service.create_deposit(
        store_id=data["store_id"],
        product_name=data.get("product_name"),
        quantity=data.get("quantity"),
        actor_id=g.current_user.id,
        customer_id=data.get("customer_id"),
        customer_name=data.get("customer_name"),
        customer_phone=data.get("customer_phone"),
        category=data.get("category"),
        table_number=data.get("table_number"),
        expiry_days=data.get("expiry_days"),
        is_vip=parse_flag(data.get("is_vip"), "is_vip"),
        is_no_deposit=parse_flag(data.get("is_no_deposit"), "is_no_deposit"),
        photo_url=data.get("photo_url"),
        notes=data.get("notes"),
    )
    return jsonify(deposit.to_dict()), 201


@deposits_bp.route("", methods=["GET"])
@require_auth
@handle_service_errors("list deposits")
def list_deposits():
    store_id = _required_store_id()
    access_service.require_store_access(g.current_user.id, store_id, action="view deposits for this store")
    deposits = deposit_service.list_deposits(store_id, status=request.args.get("status") or None)
    return jsonify({"deposits": [d.to_dict() for d in deposits]}), 200


@deposits_bp.route("/<int:deposit_id>", methods=["GET"])
@require_auth
@handle_service_errors("get deposit")
def get_deposit(deposit_id: int):
    deposit = deposit_service.get_deposit(deposit_id)
    user = g.current_user
    if deposit.customer_id != user.id and not access_service.user_can_access_store(user, deposit.store_id):
        raise ForbiddenError("Not allowed to view this deposit")
    data = deposit.to_dict()
    data["withdrawals"] = [w.to_dict() for w in deposit.withdrawals]
    return jsonify(data), 200


@deposits_bp.route("/<int:deposit_id>/confirm", methods=["POST"])
@require_auth
@handle_service_errors("confirm deposit")
def confirm_deposit(deposit_id: int):
    data = request.get_json(silent=True) or {}
    deposit = deposit_service.confirm_receipt(
        deposit_id,
        actor_id=g.current_user.id,
        photo_url=data.get("photo_url"),
        notes=data.get("notes"),
    )
    return jsonify(deposit.to_dict()), 200


@deposits_bp.route("/<int:deposit_id>/reject", methods=["POST"])
@require_auth
@handle_service_errors("reject deposit")
def reject_deposit(deposit_id: int):
    data = request.get_json(silent=True) or {}
    deposit = deposit_service.reject_receipt(deposit_id, data.get("reason"), actor_id=g.current_user.id)
    return jsonify(deposit.to_dict()), 200


@deposits_bp.route("/<int:deposit_id>/withdrawals", methods=["POST"])
@require_auth
@handle_service_errors("request withdrawal")
def request_withdrawal(deposit_id: int):
    """
    Request body:
    {
        "requested_qty": number (optional, defaults to everything left),
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    withdrawal = deposit_service.request_withdrawal(
        deposit_id,
        actor_id=g.current_user.id,
        requested_qty=data.get("requested_qty"),
        notes=data.get("notes"),
    )
    return jsonify(withdrawal.to_dict()), 201


@deposits_bp.route("/withdrawals", methods=["GET"])
@require_auth
@handle_service_errors("list withdrawals")
def list_withdrawals():
    store_id = _required_store_id()
    access_service.require_store_access(g.current_user.id, store_id, action="view withdrawals for this store")
    withdrawals = deposit_service.list_withdrawals(store_id, status=request.args.get("status") or None)
    return jsonify({"withdrawals": [w.to_dict() for w in withdrawals]}), 200


@deposits_bp.route("/withdrawals/<int:withdrawal_id>/approve", methods=["POST"])
@require_auth
@handle_service_errors("approve withdrawal")
def approve_withdrawal(withdrawal_id: int):
    withdrawal = deposit_service.approve_withdrawal(withdrawal_id, actor_id=g.current_user.id)
    return jsonify(withdrawal.to_dict()), 200


@deposits_bp.route("/withdrawals/<int:withdrawal_id>/complete", methods=["POST"])
@require_auth
@handle_service_errors("complete withdrawal")
def complete_withdrawal(withdrawal_id: int):
    """
    Request body:
    {
        "actual_qty": number,
        "photo_url": str (optional),
        "notes": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    withdrawal = deposit_service.complete_withdrawal(
        withdrawal_id,
        data.get("actual_qty"),
        actor_id=g.current_user.id,
        photo_url=data.get("photo_url"),
        notes=data.get("notes"),
    )
    return jsonify(withdrawal.to_dict()), 200


@deposits_bp.route("/withdrawals/<int:withdrawal_id>/reject", methods=["POST"])
@require_auth
@handle_service_errors("reject withdrawal")
def reject_withdrawal(withdrawal_id: int):
    data = request.get_json(silent=True) or {}
    withdrawal = deposit_service.reject_withdrawal(withdrawal_id, data.get("reason"), actor_id=g.current_user.id)
    return jsonify(withdrawal.to_dict()), 200
