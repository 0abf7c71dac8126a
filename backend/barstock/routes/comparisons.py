# backend/barstock/routes/comparisons.py
"""
Stock comparison API routes: generate, explain, review.
"""
from flask import Blueprint, request, jsonify, g

from barstock.decorators import require_auth, handle_service_errors
from barstock.services import access_service, comparison_service
from barstock.validation import ValidationError


comparisons_bp = Blueprint("comparisons", __name__, url_prefix="/api/comparisons")


def _dicts(comparisons) -> list[dict]:
    """Serialize with tolerance_class; bulk reviews can span several stores."""
    tolerances = {}
    out = []
    for c in comparisons:
        if c.store_id not in tolerances:
            tolerances[c.store_id] = comparison_service.store_tolerance(access_service.get_store(c.store_id))
        out.append(comparison_service.comparison_to_dict(c, tolerances[c.store_id]))
    return out


@comparisons_bp.route("/generate", methods=["POST"])
@require_auth
@handle_service_errors("generate comparisons")
def generate():
    """
    Request body:
    {
        "store_id": int,
        "comp_date": "YYYY-MM-DD",
        "manual_counts": {product_code: number},
        "pos_counts": {product_code: number},
        "product_names": {product_code: str} (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("store_id") or not data.get("comp_date"):
        raise ValidationError("store_id and comp_date are required")

    rows = comparison_service.generate_comparisons(
        store_id=data["store_id"],
        comp_date=data["comp_date"],
        manual_counts=data.get("manual_counts") or {},
        pos_counts=data.get("pos_counts") or {},
        product_names=data.get("product_names"),
        actor_id=g.current_user.id,
    )
    return jsonify({"comparisons": _dicts(rows)}), 201


@comparisons_bp.route("", methods=["GET"])
@require_auth
@handle_service_errors("list comparisons")
def list_comparisons():
    store_id = request.args.get("store_id", type=int)
    if store_id is None:
        raise ValidationError("store_id is required")
    access_service.require_store_access(g.current_user.id, store_id, action="view comparisons for this store")

    rows = comparison_service.list_comparisons(
        store_id,
        comp_date=request.args.get("comp_date") or None,
        status=request.args.get("status") or None,
    )
    return jsonify({"comparisons": rows}), 200


@comparisons_bp.route("/<int:comparison_id>/explain", methods=["POST"])
@require_auth
@handle_service_errors("submit explanation")
def explain(comparison_id: int):
    data = request.get_json(silent=True) or {}
    comparison = comparison_service.submit_explanation(
        comparison_id, data.get("explanation"), actor_id=g.current_user.id
    )
    return jsonify(_dicts([comparison])[0]), 200


@comparisons_bp.route("/explain", methods=["POST"])
@require_auth
@handle_service_errors("submit explanations")
def explain_many():
    """
    Request body: {"explanations": {comparison_id: text}}

    Each explanation is applied on its own; the response lists which went
    through and why the others did not.
    """
    data = request.get_json(silent=True) or {}
    result = comparison_service.submit_explanations(data.get("explanations"), actor_id=g.current_user.id)
    return jsonify(result), 200


@comparisons_bp.route("/<int:comparison_id>/approve", methods=["POST"])
@require_auth
@handle_service_errors("approve comparison")
def approve(comparison_id: int):
    data = request.get_json(silent=True) or {}
    comparison = comparison_service.approve(
        comparison_id, actor_id=g.current_user.id, owner_notes=data.get("owner_notes")
    )
    return jsonify(_dicts([comparison])[0]), 200


@comparisons_bp.route("/<int:comparison_id>/reject", methods=["POST"])
@require_auth
@handle_service_errors("reject comparison")
def reject(comparison_id: int):
    data = request.get_json(silent=True) or {}
    comparison = comparison_service.reject(
        comparison_id, data.get("owner_notes"), actor_id=g.current_user.id
    )
    return jsonify(_dicts([comparison])[0]), 200


@comparisons_bp.route("/approve", methods=["POST"])
@require_auth
@handle_service_errors("approve comparisons")
def approve_many():
    """Request body: {"ids": [int], "owner_notes": str (optional)}. All or nothing."""
    data = request.get_json(silent=True) or {}
    rows = comparison_service.approve_comparisons(
        data.get("ids") or [], actor_id=g.current_user.id, owner_notes=data.get("owner_notes")
    )
    return jsonify({"comparisons": _dicts(rows)}), 200


@comparisons_bp.route("/reject", methods=["POST"])
@require_auth
@handle_service_errors("reject comparisons")
def reject_many():
    """Request body: {"ids": [int], "owner_notes": str (optional)}. All or nothing."""
    data = request.get_json(silent=True) or {}
    rows = comparison_service.reject_comparisons(
        data.get("ids") or [], actor_id=g.current_user.id, owner_notes=data.get("owner_notes")
    )
    return jsonify({"comparisons": _dicts(rows)}), 200
