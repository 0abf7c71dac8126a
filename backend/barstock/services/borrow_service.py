# backend/barstock/services/borrow_service.py
"""
Branch-to-branch borrow service.

WHY: A branch that runs out of a product borrows it from another branch.
The lender approves; then each side adjusts its own POS stock and says so.
The borrow completes the moment the second side confirms.

LIFECYCLE:
1. pending_approval: requested by the borrower (from_store)
2. approved: lender (to_store) agreed, no POS adjustment yet
3. pos_adjusting: exactly one side has confirmed its POS adjustment
4. completed: both sides confirmed (terminal)
5. rejected: lender refused, reason required (terminal)
"""
from __future__ import annotations

from sqlalchemy import case

from barstock.extensions import db
from barstock.models import Borrow, BorrowItem
from barstock.services import access_service, audit_service, notification_service
from barstock.services import lifecycle_service as lifecycle
from barstock.services.concurrency import (
    atomic,
    conditional_update,
    lock_for_update,
    require_updated,
)
from barstock.time_utils import utcnow
from barstock.validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    optional_text,
    parse_quantity,
    require_text,
)


# Borrow status constants
BORROW_STATUS_PENDING_APPROVAL = "pending_approval"
BORROW_STATUS_APPROVED = "approved"
BORROW_STATUS_POS_ADJUSTING = "pos_adjusting"
BORROW_STATUS_COMPLETED = "completed"
BORROW_STATUS_REJECTED = "rejected"

POS_CONFIRMABLE_STATUSES = (BORROW_STATUS_APPROVED, BORROW_STATUS_POS_ADJUSTING)

SIDE_BORROWER = "borrower"
SIDE_LENDER = "lender"
SIDES = (SIDE_BORROWER, SIDE_LENDER)

DIRECTION_OUTGOING = "outgoing"
DIRECTION_INCOMING = "incoming"


def _validate_side(side: str) -> str:
    if side not in SIDES:
        raise ValidationError("side must be 'borrower' or 'lender'")
    return side


def _side_store_id(borrow: Borrow, side: str) -> int:
    return borrow.from_store_id if side == SIDE_BORROWER else borrow.to_store_id


def _other(side: str) -> str:
    return SIDE_LENDER if side == SIDE_BORROWER else SIDE_BORROWER


def _snapshot(borrow: Borrow) -> dict:
    return {
        "status": borrow.status,
        "borrower_pos_confirmed": borrow.borrower_pos_confirmed,
        "lender_pos_confirmed": borrow.lender_pos_confirmed,
    }


def _require_branch(store_id: int, label: str):
    store = access_service.get_store(store_id)
    if store.is_central:
        raise ValidationError(f"{label} must be a branch, not the central warehouse")
    if not store.active:
        raise ValidationError(f"{label} is not active")
    return store


def _lock_borrow(borrow_id: int) -> Borrow:
    borrow = lock_for_update(db.session.query(Borrow).filter_by(id=borrow_id)).first()
    if borrow is None:
        raise NotFoundError("Borrow not found")
    return borrow


def get_borrow(borrow_id: int) -> Borrow:
    borrow = db.session.get(Borrow, borrow_id)
    if borrow is None:
        raise NotFoundError("Borrow not found")
    return borrow


def _parse_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")

    parsed = []
    for idx, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {idx} must be an object")
        parsed.append({
            "product_name": require_text(raw.get("product_name"), f"items[{idx}].product_name"),
            "category": optional_text(raw.get("category")),
            "quantity": parse_quantity(raw.get("quantity"), f"items[{idx}].quantity", minimum=1, allow_equal=True),
            "unit": optional_text(raw.get("unit")),
            "notes": optional_text(raw.get("notes")),
        })
    return parsed


def create_borrow(
    *,
    from_store_id: int,
    to_store_id: int,
    items: list[dict],
    actor_id: int,
    notes: str | None = None,
    borrower_photo_url: str | None = None,
) -> Borrow:
    """
    Borrower branch asks the lender branch for stock.

    Args:
        from_store_id: Borrowing branch (the actor's store)
        to_store_id: Lending branch
        items: [{product_name, category?, quantity >= 1, unit?, notes?}]

    Raises:
        ValidationError: Same store, central store, no items, bad quantity
        ForbiddenError: Actor is not a member of the borrowing branch
    """
    if from_store_id is None or to_store_id is None:
        raise ValidationError("from_store_id and to_store_id are required")
    for value in (from_store_id, to_store_id):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("store ids must be integers")
    if from_store_id == to_store_id:
        raise ValidationError("Cannot borrow from the same store")
    parsed_items = _parse_items(items)

    access_service.require_store_access(actor_id, from_store_id, action="borrow for this store")
    _require_branch(from_store_id, "Borrowing store")
    _require_branch(to_store_id, "Lending store")

    with atomic():
        borrow = Borrow(
            from_store_id=from_store_id,
            to_store_id=to_store_id,
            status=BORROW_STATUS_PENDING_APPROVAL,
            notes=optional_text(notes),
            requested_by=actor_id,
            borrower_photo_url=optional_text(borrower_photo_url),
            updated_at=utcnow(),
        )
        for data in parsed_items:
            borrow.items.append(BorrowItem(**data))
        db.session.add(borrow)
        db.session.flush()

    borrow = get_borrow(borrow.id)
    audit_service.record(
        store_id=from_store_id,
        action_type=audit_service.BORROW_REQUESTED,
        table_name="borrows",
        record_id=borrow.id,
        new_value={
            "from_store_id": from_store_id,
            "to_store_id": to_store_id,
            "items": [{"product_name": i.product_name, "quantity": i.quantity} for i in borrow.items],
        },
        actor_id=actor_id,
    )
    notification_service.notify_store_staff(
        store_id=to_store_id,
        type="borrow_request",
        title="New borrow request",
        body=f"{borrow.from_store.name} asks to borrow {len(borrow.items)} item(s)",
        data={"borrow_id": borrow.id},
    )
    return borrow


def approve(borrow_id: int, *, actor_id: int, lender_photo_url: str | None = None) -> Borrow:
    """
    Lender agrees (pending_approval -> approved).

    Raises:
        ForbiddenError: Actor is not at the lending store
        ConflictError: Borrow is no longer pending approval
    """
    with atomic():
        borrow = _lock_borrow(borrow_id)
        access_service.require_store_access(actor_id, borrow.to_store_id, action="approve borrows for the lending store")
        if borrow.status != BORROW_STATUS_PENDING_APPROVAL:
            raise ConflictError("Borrow is not pending approval")
        lifecycle.require_transition(lifecycle.BORROW, borrow.status, BORROW_STATUS_APPROVED, label="borrow")

        now = utcnow()
        patch = {
            "status": BORROW_STATUS_APPROVED,
            "approved_by": actor_id,
            "approved_at": now,
            "updated_at": now,
        }
        if optional_text(lender_photo_url):
            patch["lender_photo_url"] = optional_text(lender_photo_url)
        rows = conditional_update(Borrow, borrow_id, {"status": BORROW_STATUS_PENDING_APPROVAL}, patch)
        require_updated(rows, "Borrow is not pending approval")

    borrow = get_borrow(borrow_id)
    audit_service.record(
        store_id=borrow.to_store_id,
        action_type=audit_service.BORROW_APPROVED,
        table_name="borrows",
        record_id=borrow.id,
        old_value={"status": BORROW_STATUS_PENDING_APPROVAL},
        new_value=_snapshot(borrow),
        actor_id=actor_id,
    )
    notification_service.notify_store_staff(
        store_id=borrow.from_store_id,
        type="borrow_approved",
        title="Borrow request approved",
        body=f"{borrow.to_store.name} approved {len(borrow.items)} item(s)",
        data={"borrow_id": borrow.id},
    )
    notification_service.notify_store_staff(
        store_id=borrow.to_store_id,
        type="borrow_approved",
        title="Borrow approved",
        body=f"Lending {len(borrow.items)} item(s) to {borrow.from_store.name}",
        data={"borrow_id": borrow.id},
        exclude_user_id=actor_id,
    )
    return borrow


def reject(borrow_id: int, reason: str, *, actor_id: int) -> Borrow:
    """
    Lender refuses (pending_approval -> rejected, terminal).

    Raises:
        ValidationError: Blank reason
        ForbiddenError: Actor is not at the lending store
        ConflictError: Borrow is no longer pending approval
    """
    reason = require_text(reason, "reason")

    with atomic():
        borrow = _lock_borrow(borrow_id)
        access_service.require_store_access(actor_id, borrow.to_store_id, action="reject borrows for the lending store")
        if borrow.status != BORROW_STATUS_PENDING_APPROVAL:
            raise ConflictError("Borrow is not pending approval")
        lifecycle.require_transition(lifecycle.BORROW, borrow.status, BORROW_STATUS_REJECTED, label="borrow")

        now = utcnow()
        rows = conditional_update(
            Borrow,
            borrow_id,
            {"status": BORROW_STATUS_PENDING_APPROVAL},
            {
                "status": BORROW_STATUS_REJECTED,
                "rejected_by": actor_id,
                "rejected_at": now,
                "rejection_reason": reason,
                "updated_at": now,
            },
        )
        require_updated(rows, "Borrow is not pending approval")

    borrow = get_borrow(borrow_id)
    audit_service.record(
        store_id=borrow.to_store_id,
        action_type=audit_service.BORROW_REJECTED,
        table_name="borrows",
        record_id=borrow.id,
        old_value={"status": BORROW_STATUS_PENDING_APPROVAL},
        new_value={"status": borrow.status, "reason": reason},
        actor_id=actor_id,
    )
    notification_service.notify_store_staff(
        store_id=borrow.from_store_id,
        type="borrow_rejected",
        title="Borrow request rejected",
        body=f"{borrow.to_store.name}: {reason}",
        data={"borrow_id": borrow.id},
    )
    return borrow


def confirm_pos(borrow_id: int, side: str, *, actor_id: int) -> Borrow:
    """
    One side confirms it adjusted its POS stock.

    Setting the flag and deciding completion is a single UPDATE: the new
    status is computed in SQL from the other side's flag as it stands when
    the row is written, so two simultaneous confirmations cannot both miss
    the completion.

    Raises:
        ValidationError: Unknown side
        ForbiddenError: Actor is not at that side's store
        ConflictError: Wrong status, or this side already confirmed
    """
    side = _validate_side(side)
    flag = f"{side}_pos_confirmed"
    other_flag = f"{_other(side)}_pos_confirmed"

    with atomic():
        borrow = _lock_borrow(borrow_id)
        access_service.require_store_access(
            actor_id, _side_store_id(borrow, side), action=f"confirm POS for the {side} store"
        )
        if borrow.status not in POS_CONFIRMABLE_STATUSES:
            raise ConflictError(f"Borrow is '{borrow.status}', POS can only be confirmed once approved")
        if getattr(borrow, flag):
            raise ConflictError(f"{side.capitalize()} POS already confirmed")

        target = BORROW_STATUS_COMPLETED if getattr(borrow, other_flag) else BORROW_STATUS_POS_ADJUSTING
        lifecycle.require_transition(lifecycle.BORROW, borrow.status, target, label="borrow")
        old = _snapshot(borrow)

        now = utcnow()
        other_done = getattr(Borrow, other_flag).is_(True)
        rows = conditional_update(
            Borrow,
            borrow_id,
            {"status": POS_CONFIRMABLE_STATUSES, flag: False},
            {
                flag: True,
                f"{flag}_by": actor_id,
                f"{flag}_at": now,
                "status": case((other_done, BORROW_STATUS_COMPLETED), else_=BORROW_STATUS_POS_ADJUSTING),
                "completed_at": case((other_done, now), else_=Borrow.completed_at),
                "updated_at": now,
            },
        )
        if not rows:
            fresh = _lock_borrow(borrow_id)
            if getattr(fresh, flag):
                raise ConflictError(f"{side.capitalize()} POS already confirmed")
            raise ConflictError(f"Borrow is '{fresh.status}', POS can only be confirmed once approved")

    borrow = get_borrow(borrow_id)
    audit_service.record(
        store_id=_side_store_id(borrow, side),
        action_type=audit_service.BORROW_POS_CONFIRMED,
        table_name="borrows",
        record_id=borrow.id,
        old_value=old,
        new_value={**_snapshot(borrow), "side": side},
        actor_id=actor_id,
    )

    if borrow.status == BORROW_STATUS_COMPLETED:
        audit_service.record(
            store_id=borrow.to_store_id,
            action_type=audit_service.BORROW_COMPLETED,
            table_name="borrows",
            record_id=borrow.id,
            old_value={"status": old["status"]},
            new_value={"status": borrow.status},
            actor_id=actor_id,
        )
        for store_id in (borrow.from_store_id, borrow.to_store_id):
            notification_service.notify_store_staff(
                store_id=store_id,
                type="borrow_completed",
                title="Borrow completed",
                body=f"{borrow.from_store.name} <- {borrow.to_store.name}: both POS adjusted",
                data={"borrow_id": borrow.id},
            )
    else:
        notification_service.notify_store_staff(
            store_id=_side_store_id(borrow, _other(side)),
            type="borrow_pos_confirmed",
            title="Borrow POS confirmed by the other store",
            body=f"The {side} store adjusted its POS; please confirm yours",
            data={"borrow_id": borrow.id},
        )
    return borrow


def upload_photo(borrow_id: int, side: str, photo_url: str, *, actor_id: int) -> Borrow:
    """Attach or replace one side's photo; allowed in any status."""
    side = _validate_side(side)
    photo_url = require_text(photo_url, "photo_url")
    column = f"{side}_photo_url"

    with atomic():
        borrow = _lock_borrow(borrow_id)
        access_service.require_store_access(
            actor_id, _side_store_id(borrow, side), action=f"upload photos for the {side} store"
        )
        old_url = getattr(borrow, column)
        rows = conditional_update(Borrow, borrow_id, {}, {column: photo_url, "updated_at": utcnow()})
        require_updated(rows, "Borrow not found")

    borrow = get_borrow(borrow_id)
    audit_service.record(
        store_id=_side_store_id(borrow, side),
        action_type=audit_service.BORROW_PHOTO_UPLOADED,
        table_name="borrows",
        record_id=borrow.id,
        old_value={column: old_url},
        new_value={column: photo_url},
        actor_id=actor_id,
    )
    return borrow


def list_borrows(store_id: int, *, direction: str = DIRECTION_OUTGOING, status: str | None = None) -> list[Borrow]:
    """
    outgoing: borrows this store requested; incoming: borrows asked of it.
    """
    if direction == DIRECTION_OUTGOING:
        column = Borrow.from_store_id
    elif direction == DIRECTION_INCOMING:
        column = Borrow.to_store_id
    else:
        raise ValidationError("tab must be 'outgoing' or 'incoming'")
    q = db.session.query(Borrow).filter(column == store_id)
    if status is not None:
        q = q.filter(Borrow.status == lifecycle.parse_status_filter(lifecycle.BORROW, status))

    return q.order_by(Borrow.created_at.desc(), Borrow.id.desc()).all()
