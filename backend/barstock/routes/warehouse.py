# backend/barstock/routes/warehouse.py
from flask import Blueprint, request, jsonify, g

from barstock.decorators import require_auth, handle_service_errors
from barstock.services import access_service, warehouse_service


warehouse_bp = Blueprint("warehouse", __name__, url_prefix="/api/warehouse")


@warehouse_bp.route("/deposits", methods=["GET"])
@require_auth
@handle_service_errors("list warehouse deposits")
def list_hq_deposits():
    """
    Query params:
        status: optional, awaiting_withdrawal / withdrawn
        from_store_id: optional source branch

    Warehouse staff see everything. Branch members may list only the
    records their own branch shipped, by passing from_store_id.
    """
    user = g.current_user
    from_store_id = request.args.get("from_store_id", type=int)
    if not access_service.can_view_warehouse(user):
        access_service.require_store_access(user.id, from_store_id, action="view the central warehouse")

    hq_deposits = warehouse_service.list_hq_deposits(
        status=request.args.get("status") or None,
        from_store_id=from_store_id,
    )
    return jsonify({"hq_deposits": [h.to_dict() for h in hq_deposits]}), 200


@warehouse_bp.route("/deposits/<int:hq_deposit_id>/dispose", methods=["POST"])
@require_auth
@handle_service_errors("dispose warehouse deposit")
def dispose(hq_deposit_id: int):
    data = request.get_json(silent=True) or {}
    hq = warehouse_service.dispose(hq_deposit_id, actor_id=g.current_user.id, notes=data.get("notes"))
    return jsonify(hq.to_dict()), 200


@warehouse_bp.route("/summary", methods=["GET"])
@require_auth
@handle_service_errors("build warehouse summary")
def summary():
    access_service.require_warehouse_access(g.current_user.id)
    return jsonify(warehouse_service.warehouse_summary()), 200
