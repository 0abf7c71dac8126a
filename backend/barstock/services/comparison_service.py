# backend/barstock/services/comparison_service.py
"""
Stock comparison pipeline: POS figures vs manual counts.

WHY: Every day each store counts its shelves by hand and compares against
what the POS says should be there. Differences beyond the store's
tolerance must be explained by staff and then approved or rejected by an
owner or accountant.

LIFECYCLE (per product per day):
1. pending: over tolerance, waiting for an explanation
2. explained: staff explained it, waiting for review
3. approved / rejected: reviewed (terminal)

Rows that match, sit within tolerance, or could not be measured on both
sides are created approved and never need an explanation.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from barstock.extensions import db
from barstock.models import Comparison, Store
from barstock.services import access_service, audit_service, notification_service
from barstock.services import lifecycle_service as lifecycle
from barstock.services.concurrency import (
    atomic,
    conditional_update,
    conditional_update_where,
    lock_for_update,
    require_updated,
)
from barstock.time_utils import parse_iso_date, utcnow
from barstock.validation import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    optional_text,
    parse_quantity,
    require_text,
)


# Comparison status constants
COMPARISON_STATUS_PENDING = "pending"
COMPARISON_STATUS_EXPLAINED = "explained"
COMPARISON_STATUS_APPROVED = "approved"
COMPARISON_STATUS_REJECTED = "rejected"

# Tolerance classes (derived, never stored)
CLASS_MATCH = "match"
CLASS_WITHIN_TOLERANCE = "within_tolerance"
CLASS_OVER_TOLERANCE = "over_tolerance"
CLASS_UNMEASURED = "unmeasured"

BATCH_REJECT_NOTE = "rejected in batch"

PERCENT_QUANT = Decimal("0.01")


# =============================================================================
# Classification
# =============================================================================

def classify(diff_percent, *, difference=None, tolerance=5) -> str:
    """
    Tolerance class of one comparison.

    - diff_percent 0 (or difference 0): match
    - 0 < |diff_percent| <= tolerance: within_tolerance
    - |diff_percent| > tolerance: over_tolerance
    - no percentage (POS was 0) but a non-zero difference: over_tolerance
    - nothing measurable: unmeasured
    """
    tol = Decimal(str(tolerance))
    if diff_percent is None:
        if difference is None:
            return CLASS_UNMEASURED
        if Decimal(str(difference)) == 0:
            return CLASS_MATCH
        return CLASS_OVER_TOLERANCE

    pct = abs(Decimal(str(diff_percent)))
    if pct == 0:
        return CLASS_MATCH
    if pct <= tol:
        return CLASS_WITHIN_TOLERANCE
    return CLASS_OVER_TOLERANCE


def store_tolerance(store: Store) -> Decimal:
    if store.diff_tolerance is not None:
        return Decimal(str(store.diff_tolerance))
    return Decimal(str(current_app.config["DEFAULT_DIFF_TOLERANCE"]))


def comparison_to_dict(comparison: Comparison, tolerance: Decimal) -> dict:
    data = comparison.to_dict()
    data["tolerance_class"] = classify(
        comparison.diff_percent,
        difference=comparison.difference,
        tolerance=tolerance,
    )
    return data


def compute_difference(manual_qty: Decimal | None, pos_qty: Decimal | None) -> tuple[Decimal | None, Decimal | None]:
    """
    (difference, diff_percent) for one product.

    difference = manual - pos when both sides were counted; diff_percent is
    relative to POS, rounded to 2 places, and None when POS is 0.
    """
    if manual_qty is None or pos_qty is None:
        return None, None
    difference = manual_qty - pos_qty
    if pos_qty == 0:
        return difference, None
    percent = (difference / pos_qty * 100).quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)
    return difference, percent


# =============================================================================
# Generation
# =============================================================================

def _parse_counts(counts, label: str) -> dict[str, Decimal]:
    if counts is None:
        return {}
    if not isinstance(counts, dict):
        raise ValidationError(f"{label} must be an object of product_code -> quantity")
    parsed = {}
    for code, qty in counts.items():
        code = str(code).strip()
        if not code:
            continue
        parsed[code] = parse_quantity(qty, f"{label}[{code}]", minimum=0, allow_equal=True)
    return parsed


def generate_comparisons(
    *,
    store_id: int,
    comp_date,
    manual_counts: dict,
    pos_counts: dict,
    product_names: dict | None = None,
    actor_id: int | None = None,
) -> list[Comparison]:
    """
    Build the day's comparison rows for a store.

    Covers the union of product codes from both sides. Re-running for the
    same day replaces the rows, but only while none has been explained or
    reviewed.

    Args:
        manual_counts: product_code -> counted quantity
        pos_counts: product_code -> POS quantity
        product_names: optional product_code -> display name
        actor_id: None when triggered by the system

    Raises:
        ValidationError: Bad date or quantities
        ConflictError: The day already has explained or reviewed rows
    """
    try:
        day: date = parse_iso_date(comp_date)
    except ValueError:
        raise ValidationError("comp_date must be YYYY-MM-DD")

    manual = _parse_counts(manual_counts, "manual_counts")
    pos = _parse_counts(pos_counts, "pos_counts")
    names = {str(k): v for k, v in (product_names or {}).items()}

    if actor_id is not None:
        access_service.require_store_access(actor_id, store_id, action="run stock comparisons for this store")
    store = access_service.get_store(store_id)
    tolerance = store_tolerance(store)

    summary = {
        "total": 0,
        CLASS_MATCH: 0,
        CLASS_WITHIN_TOLERANCE: 0,
        CLASS_OVER_TOLERANCE: 0,
        "manual_only": 0,
        "pos_only": 0,
    }

    with atomic():
        existing = lock_for_update(
            db.session.query(Comparison).filter_by(store_id=store_id, comp_date=day)
        ).all()
        touched = [
            c for c in existing
            if c.status in (COMPARISON_STATUS_EXPLAINED, COMPARISON_STATUS_REJECTED)
            or c.explained_by is not None
            or c.reviewed_by is not None
        ]
        if touched:
            raise ConflictError(
                f"Comparisons for {day.isoformat()} were already explained or reviewed and cannot be regenerated"
            )
        for c in existing:
            db.session.delete(c)
        db.session.flush()

        rows = []
        for code in sorted(set(manual) | set(pos)):
            manual_qty = manual.get(code)
            pos_qty = pos.get(code)
            if manual_qty is not None and pos_qty is None:
                summary["manual_only"] += 1
            if manual_qty is None and pos_qty is not None:
                summary["pos_only"] += 1

            difference, percent = compute_difference(manual_qty, pos_qty)
            tol_class = classify(percent, difference=difference, tolerance=tolerance)
            if tol_class in summary:
                summary[tol_class] += 1

            rows.append(Comparison(
                store_id=store_id,
                comp_date=day,
                product_code=code,
                product_name=optional_text(names.get(code)),
                pos_quantity=pos_qty,
                manual_quantity=manual_qty,
                difference=difference,
                diff_percent=percent,
                status=COMPARISON_STATUS_PENDING if tol_class == CLASS_OVER_TOLERANCE else COMPARISON_STATUS_APPROVED,
            ))
        summary["total"] = len(rows)
        db.session.add_all(rows)
        db.session.flush()
        row_ids = [r.id for r in rows]

    audit_service.record(
        store_id=store_id,
        action_type=audit_service.STOCK_COMPARISON_GENERATED,
        table_name="comparisons",
        record_id=day.isoformat(),
        new_value={"comp_date": day, **summary},
        actor_id=actor_id,
    )
    if summary[CLASS_OVER_TOLERANCE]:
        notification_service.notify_store_owners(
            store_id=store_id,
            type="stock_alert",
            title="Stock comparison results",
            body=f"{summary[CLASS_OVER_TOLERANCE]} item(s) over tolerance on {day.isoformat()}",
            data={"comp_date": day.isoformat(), "over_tolerance": summary[CLASS_OVER_TOLERANCE]},
        )

    return (
        db.session.query(Comparison)
        .filter(Comparison.id.in_(row_ids))
        .order_by(Comparison.product_code.asc())
        .all()
    ) if row_ids else []


# =============================================================================
# Explanation
# =============================================================================

def get_comparison(comparison_id: int) -> Comparison:
    comparison = db.session.get(Comparison, comparison_id)
    if comparison is None:
        raise NotFoundError(f"Comparison {comparison_id} not found")
    return comparison


def _explain(comparison_id: int, text: str, actor_id: int) -> Comparison:
    with atomic():
        comparison = lock_for_update(db.session.query(Comparison).filter_by(id=comparison_id)).first()
        if comparison is None:
            raise NotFoundError(f"Comparison {comparison_id} not found")
        access_service.require_store_access(actor_id, comparison.store_id, action="explain stock for this store")
        lifecycle.require_transition(
            lifecycle.COMPARISON, comparison.status, COMPARISON_STATUS_EXPLAINED, label="comparison"
        )

        rows = conditional_update(
            Comparison,
            comparison_id,
            {"status": COMPARISON_STATUS_PENDING},
            {
                "status": COMPARISON_STATUS_EXPLAINED,
                "explanation": text,
                "explained_by": actor_id,
                "explained_at": utcnow(),
            },
        )
        require_updated(rows, "Comparison was already explained")
    return get_comparison(comparison_id)


def submit_explanation(comparison_id: int, text: str, *, actor_id: int) -> Comparison:
    """
    Staff explain one over-tolerance difference (pending -> explained).

    Raises:
        ValidationError: Blank explanation
        ConflictError: Not pending any more
    """
    text = require_text(text, "explanation")
    comparison = _explain(comparison_id, text, actor_id)

    audit_service.record(
        store_id=comparison.store_id,
        action_type=audit_service.STOCK_EXPLANATION_SUBMITTED,
        table_name="comparisons",
        record_id=comparison.id,
        old_value={"status": COMPARISON_STATUS_PENDING},
        new_value={"status": comparison.status, "explanation": text},
        actor_id=actor_id,
    )
    notification_service.notify_store_owners(
        store_id=comparison.store_id,
        type="stock_explained",
        title="Stock difference explained",
        body=f"{comparison.product_name or comparison.product_code}: {text}",
        data={"comparison_id": comparison.id},
    )
    return comparison


def submit_explanations(explanations: dict, *, actor_id: int) -> dict:
    """
    "Submit all filled": explain many comparisons at once.

    Each item stands alone, in its own transaction; one failing does not
    stop the others. Blank explanations are reported, not submitted.

    Args:
        explanations: comparison_id -> explanation text

    Returns:
        {"submitted": [ids], "failed": [{"id", "error"}]}
    """
    if not isinstance(explanations, dict) or not explanations:
        raise ValidationError("Provide at least one explanation")

    submitted: list[Comparison] = []
    failed: list[dict] = []
    for raw_id, text in explanations.items():
        try:
            comparison_id = int(raw_id)
        except (TypeError, ValueError):
            failed.append({"id": raw_id, "error": "invalid comparison id"})
            continue
        try:
            submitted.append(_explain(comparison_id, require_text(text, "explanation"), actor_id))
        except (ValidationError, ConflictError, NotFoundError, ForbiddenError) as e:
            failed.append({"id": comparison_id, "error": str(e)})

    stores = sorted({c.store_id for c in submitted})
    for store_id in stores:
        ids = [c.id for c in submitted if c.store_id == store_id]
        audit_service.record(
            store_id=store_id,
            action_type=audit_service.STOCK_EXPLANATION_BATCH,
            table_name="comparisons",
            record_id=None,
            new_value={"comparison_ids": ids, "count": len(ids)},
            actor_id=actor_id,
        )
        notification_service.notify_store_owners(
            store_id=store_id,
            type="stock_explained",
            title="Stock differences explained",
            body=f"{len(ids)} item(s) waiting for review",
            data={"comparison_ids": ids},
        )

    return {"submitted": [c.id for c in submitted], "failed": failed}


# =============================================================================
# Review
# =============================================================================

def _review(comparison_id: int, target: str, owner_notes: str | None, actor_id: int) -> Comparison:
    with atomic():
        comparison = lock_for_update(db.session.query(Comparison).filter_by(id=comparison_id)).first()
        if comparison is None:
            raise NotFoundError(f"Comparison {comparison_id} not found")
        access_service.require_reviewer(actor_id, comparison.store_id)
        lifecycle.require_transition(lifecycle.COMPARISON, comparison.status, target, label="comparison")

        rows = conditional_update(
            Comparison,
            comparison_id,
            {"status": COMPARISON_STATUS_EXPLAINED},
            {
                "status": target,
                "owner_notes": owner_notes,
                "reviewed_by": actor_id,
                "reviewed_at": utcnow(),
            },
        )
        require_updated(rows, "Comparison was already reviewed")
    return get_comparison(comparison_id)


def _after_review(comparison: Comparison, action_type: str, actor_id: int) -> None:
    audit_service.record(
        store_id=comparison.store_id,
        action_type=action_type,
        table_name="comparisons",
        record_id=comparison.id,
        old_value={"status": COMPARISON_STATUS_EXPLAINED},
        new_value={"status": comparison.status, "owner_notes": comparison.owner_notes},
        actor_id=actor_id,
    )
    notification_service.notify_user(
        user_id=comparison.explained_by,
        store_id=comparison.store_id,
        type=f"stock_{comparison.status}",
        title=f"Stock explanation {comparison.status}",
        body=comparison.owner_notes,
        data={"comparison_id": comparison.id},
    )


def approve(comparison_id: int, *, actor_id: int, owner_notes: str | None = None) -> Comparison:
    """explained -> approved (terminal). Owner notes are optional."""
    comparison = _review(comparison_id, COMPARISON_STATUS_APPROVED, optional_text(owner_notes), actor_id)
    _after_review(comparison, audit_service.STOCK_APPROVED, actor_id)
    return comparison


def reject(comparison_id: int, owner_notes: str, *, actor_id: int) -> Comparison:
    """
    explained -> rejected (terminal).

    Raises:
        ValidationError: Blank owner notes
    """
    notes = require_text(owner_notes, "owner_notes")
    comparison = _review(comparison_id, COMPARISON_STATUS_REJECTED, notes, actor_id)
    _after_review(comparison, audit_service.STOCK_REJECTED, actor_id)
    return comparison


def _review_many(ids, target: str, owner_notes: str | None, actor_id: int) -> list[Comparison]:
    ids = list(dict.fromkeys(ids or []))
    if not ids:
        raise ValidationError("Select at least one comparison")
    if any(isinstance(i, bool) or not isinstance(i, int) for i in ids):
        raise ValidationError("ids must be integers")

    with atomic():
        comparisons = lock_for_update(
            db.session.query(Comparison).filter(Comparison.id.in_(ids))
        ).order_by(Comparison.id.asc()).all()
        found = {c.id for c in comparisons}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"Comparison(s) not found: {', '.join(str(i) for i in missing)}")

        for store_id in {c.store_id for c in comparisons}:
            access_service.require_reviewer(actor_id, store_id)
        for c in comparisons:
            lifecycle.require_transition(lifecycle.COMPARISON, c.status, target, label=f"comparison {c.id}")

        rows = conditional_update_where(
            Comparison,
            [Comparison.id.in_(ids)],
            {"status": COMPARISON_STATUS_EXPLAINED},
            {
                "status": target,
                "owner_notes": owner_notes,
                "reviewed_by": actor_id,
                "reviewed_at": utcnow(),
            },
        )
        require_updated(rows, "Some comparisons were reviewed concurrently", expected_rows=len(ids))

    return (
        db.session.query(Comparison)
        .filter(Comparison.id.in_(ids))
        .order_by(Comparison.id.asc())
        .all()
    )


def _after_batch_review(comparisons: list[Comparison], action_type: str, owner_notes: str | None, actor_id: int) -> None:
    for store_id in sorted({c.store_id for c in comparisons}):
        ids = [c.id for c in comparisons if c.store_id == store_id]
        audit_service.record(
            store_id=store_id,
            action_type=action_type,
            table_name="comparisons",
            record_id=None,
            new_value={"comparison_ids": ids, "count": len(ids), "owner_notes": owner_notes},
            actor_id=actor_id,
        )


def approve_comparisons(ids: list[int], *, actor_id: int, owner_notes: str | None = None) -> list[Comparison]:
    """
    Approve many explained comparisons in one transaction.

    If any of them is not explained (or changes underneath), none is approved.
    """
    notes = optional_text(owner_notes)
    comparisons = _review_many(ids, COMPARISON_STATUS_APPROVED, notes, actor_id)
    _after_batch_review(comparisons, audit_service.STOCK_BATCH_APPROVED, notes, actor_id)
    return comparisons


def reject_comparisons(ids: list[int], *, actor_id: int, owner_notes: str | None = None) -> list[Comparison]:
    """Reject many explained comparisons in one transaction; notes default to "rejected in batch"."""
    notes = optional_text(owner_notes) or BATCH_REJECT_NOTE
    comparisons = _review_many(ids, COMPARISON_STATUS_REJECTED, notes, actor_id)
    _after_batch_review(comparisons, audit_service.STOCK_BATCH_REJECTED, notes, actor_id)
    return comparisons


# =============================================================================
# Queries
# =============================================================================

def list_comparisons(store_id: int, *, comp_date=None, status: str | None = None) -> list[dict]:
    store = access_service.get_store(store_id)
    q = db.session.query(Comparison).filter(Comparison.store_id == store_id)
    if comp_date is not None:
        try:
            q = q.filter(Comparison.comp_date == parse_iso_date(comp_date))
        except ValueError:
            raise ValidationError("comp_date must be YYYY-MM-DD")
    if status is not None:
        q = q.filter(Comparison.status == lifecycle.parse_status_filter(lifecycle.COMPARISON, status))

    tolerance = store_tolerance(store)
    rows = q.order_by(Comparison.comp_date.desc(), Comparison.product_code.asc()).all()
    return [comparison_to_dict(c, tolerance) for c in rows]
