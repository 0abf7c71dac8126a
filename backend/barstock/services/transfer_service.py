# backend/barstock/services/transfer_service.py
"""
Transfer batch service: expired deposits shipped to the central warehouse.

WHY: Bottles that expire at a branch are consolidated and sent to HQ.
Everything sent together shares one transfer code and moves in lockstep:
the whole batch is confirmed, or the whole batch is rejected and every
deposit goes back to expired so it can be sent again.

LIFECYCLE (per batch, mirrored on every item):
1. pending: created at the branch, deposits are transfer_pending
2. confirmed: received at HQ, one HqDeposit per item, deposits transferred_out
3. rejected: refused by HQ or cancelled by the branch, deposits expired again
"""
from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal

from barstock.extensions import db
from barstock.models import TransferItem, Deposit
from barstock.services import access_service, audit_service, notification_service, warehouse_service
from barstock.services import lifecycle_service as lifecycle
from barstock.services.concurrency import (
    atomic,
    conditional_update_where,
    lock_for_update,
    require_updated,
)
from barstock.services.sequence_service import next_transfer_code
from barstock.time_utils import to_utc_z, utcnow
from barstock.validation import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    optional_text,
    quantity_to_json,
    require_text,
)


# Transfer status constants
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_CONFIRMED = "confirmed"
TRANSFER_STATUS_REJECTED = "rejected"

BATCH_STATUSES = (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_CONFIRMED, TRANSFER_STATUS_REJECTED)

PERSPECTIVE_SENDING = "sending"
PERSPECTIVE_RECEIVING = "receiving"

LEGACY_PREFIX = "LEGACY-"


# =============================================================================
# Batch helpers
# =============================================================================

def _batch_filter(batch_key: str):
    if not batch_key:
        raise ValidationError("transfer code is required")
    if batch_key.startswith(LEGACY_PREFIX):
        try:
            item_id = int(batch_key[len(LEGACY_PREFIX):])
        except ValueError:
            raise NotFoundError(f"Transfer batch {batch_key} not found")
        return [TransferItem.id == item_id, TransferItem.transfer_code.is_(None)]
    return [TransferItem.transfer_code == batch_key]


def _load_batch(batch_key: str, *, for_update: bool = False) -> list[TransferItem]:
    q = db.session.query(TransferItem).filter(*_batch_filter(batch_key)).order_by(TransferItem.id.asc())
    if for_update:
        q = lock_for_update(q)
    items = q.all()
    if not items:
        raise NotFoundError(f"Transfer batch {batch_key} not found")
    return items


def _batch_status(items: list[TransferItem]) -> str:
    statuses = {item.status for item in items}
    if len(statuses) == 1:
        return statuses.pop()
    # Only reachable through data written outside this service
    return "mixed"


def batch_to_dict(batch_key: str, items: list[TransferItem]) -> dict:
    first = items[0]
    return {
        "batch_key": batch_key,
        "transfer_code": first.transfer_code,
        "from_store_id": first.from_store_id,
        "to_store_id": first.to_store_id,
        "status": _batch_status(items),
        "item_count": len(items),
        "total_quantity": quantity_to_json(sum((i.quantity for i in items), Decimal("0"))),
        "notes": first.notes,
        "photo_url": first.photo_url,
        "created_at": to_utc_z(first.created_at),
        "items": [item.to_dict() for item in items],
    }


def get_batch(batch_key: str) -> dict:
    return batch_to_dict(batch_key, _load_batch(batch_key))


def _require_all_pending(batch_key: str, items: list[TransferItem]) -> None:
    status = _batch_status(items)
    if status != TRANSFER_STATUS_PENDING:
        raise ConflictError(f"Transfer batch {batch_key} is already {status}")
    for item in items:
        lifecycle.require_transition(lifecycle.TRANSFER_ITEM, item.status, TRANSFER_STATUS_CONFIRMED, label="transfer item")


def _require_deposit_transitions(deposit_ids: list[int], target: str) -> None:
    """Lock the batch's deposits and check each may move to target."""
    deposits = (
        lock_for_update(db.session.query(Deposit).filter(Deposit.id.in_(deposit_ids)))
        .order_by(Deposit.id.asc())
        .all()
    )
    for d in deposits:
        lifecycle.require_transition(lifecycle.DEPOSIT, d.status, target, label=f"deposit {d.deposit_code}")


# =============================================================================
# Operations
# =============================================================================

def create_batch(
    *,
    store_id: int,
    deposit_ids: list[int],
    destination_store_id: int,
    actor_id: int,
    photo_url: str | None = None,
    notes: str | None = None,
) -> dict:
    """
    Ship expired deposits to the central warehouse under one transfer code.

    All-or-nothing: if any deposit is missing, belongs to another store or
    is not expired, no item is created and no deposit changes.

    Args:
        store_id: Sending branch
        deposit_ids: Deposits to ship (duplicates ignored)
        destination_store_id: An active central store
        actor_id: Member of the sending branch

    Returns:
        The new batch (see batch_to_dict)

    Raises:
        ValidationError: Empty list, bad destination, foreign deposit
        ConflictError: A deposit is not expired (or changed concurrently)
    """
    ids = list(OrderedDict.fromkeys(deposit_ids or []))
    if not ids:
        raise ValidationError("Select at least one deposit to transfer")
    if any(isinstance(i, bool) or not isinstance(i, int) for i in ids):
        raise ValidationError("deposit_ids must be integers")

    with atomic():
        access_service.require_store_access(actor_id, store_id, action="transfer deposits from this store")

        if destination_store_id == store_id:
            raise ValidationError("Cannot transfer to the same store")
        destination = access_service.get_store(destination_store_id)
        if not destination.is_central or not destination.active:
            raise ValidationError("Destination must be an active central warehouse")

        deposits = (
            lock_for_update(db.session.query(Deposit).filter(Deposit.id.in_(ids)))
            .order_by(Deposit.id.asc())
            .all()
        )
        found = {d.id: d for d in deposits}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"Deposit(s) not found: {', '.join(str(i) for i in missing)}")

        foreign = [d.deposit_code for d in deposits if d.store_id != store_id]
        if foreign:
            raise ValidationError(f"Deposit(s) belong to another store: {', '.join(foreign)}")

        not_expired = [f"{d.deposit_code} ({d.status})" for d in deposits if d.status != "expired"]
        if not_expired:
            raise ConflictError(f"Only expired deposits can be transferred: {', '.join(not_expired)}")
        for d in deposits:
            lifecycle.require_transition(lifecycle.DEPOSIT, d.status, "transfer_pending", label="deposit")

        open_items = (
            db.session.query(TransferItem.deposit_id)
            .filter(
                TransferItem.deposit_id.in_(ids),
                TransferItem.status.in_((TRANSFER_STATUS_PENDING, TRANSFER_STATUS_CONFIRMED)),
            )
            .all()
        )
        if open_items:
            raise ConflictError("A deposit is already part of another open transfer")

        rows_data = [
            {
                "deposit_id": found[i].id,
                "product_name": found[i].product_name,
                "quantity": found[i].remaining_qty,
            }
            for i in ids
        ]

        code = next_transfer_code()
        rows = conditional_update_where(
            Deposit,
            [Deposit.id.in_(ids), Deposit.store_id == store_id],
            {"status": "expired"},
            {"status": "transfer_pending", "updated_at": utcnow()},
        )
        require_updated(rows, "A deposit changed while creating the transfer", expected_rows=len(ids))

        for data in rows_data:
            db.session.add(TransferItem(
                transfer_code=code,
                from_store_id=store_id,
                to_store_id=destination_store_id,
                status=TRANSFER_STATUS_PENDING,
                requested_by=actor_id,
                photo_url=optional_text(photo_url),
                notes=optional_text(notes),
                **data,
            ))
        db.session.flush()

    batch = get_batch(code)
    audit_service.record(
        store_id=store_id,
        action_type=audit_service.TRANSFER_CREATED,
        table_name="transfers",
        record_id=code,
        new_value={
            "transfer_code": code,
            "to_store_id": destination_store_id,
            "deposit_ids": ids,
            "item_count": len(ids),
        },
        actor_id=actor_id,
    )
    notification_service.notify_store_staff(
        store_id=destination_store_id,
        type="transfer_incoming",
        title="Incoming transfer",
        body=f"{code}: {len(ids)} item(s) on the way",
        data={"transfer_code": code},
    )
    return batch


def confirm_batch(
    batch_key: str,
    *,
    actor_id: int,
    photo_url: str | None = None,
    notes: str | None = None,
) -> dict:
    """
    Receive a whole batch at the warehouse.

    In one transaction: every item pending -> confirmed, one HqDeposit per
    item, every deposit transfer_pending -> transferred_out.

    Raises:
        ForbiddenError: Actor is not at the destination store
        ConflictError: Batch no longer pending (or a deposit moved)
    """
    with atomic():
        items = _load_batch(batch_key, for_update=True)
        to_store_id = items[0].to_store_id
        from_store_id = items[0].from_store_id
        access_service.require_store_access(actor_id, to_store_id, action="receive transfers for this store")
        _require_all_pending(batch_key, items)

        item_ids = [i.id for i in items]
        deposit_ids = [i.deposit_id for i in items]
        now = utcnow()

        rows = conditional_update_where(
            TransferItem,
            [TransferItem.id.in_(item_ids)],
            {"status": TRANSFER_STATUS_PENDING},
            {
                "status": TRANSFER_STATUS_CONFIRMED,
                "confirmed_by": actor_id,
                "confirmed_at": now,
                "confirm_photo_url": optional_text(photo_url),
            },
        )
        require_updated(rows, f"Transfer batch {batch_key} was already processed", expected_rows=len(item_ids))

        _require_deposit_transitions(deposit_ids, "transferred_out")
        rows = conditional_update_where(
            Deposit,
            [Deposit.id.in_(deposit_ids)],
            {"status": "transfer_pending"},
            {"status": "transferred_out", "updated_at": now},
        )
        require_updated(rows, "A deposit in this batch is no longer transfer_pending", expected_rows=len(deposit_ids))

        for item in items:
            warehouse_service.receive_transfer_item(
                item,
                db.session.get(Deposit, item.deposit_id),
                received_by=actor_id,
                received_photo_url=photo_url,
                notes=notes,
            )

    batch = get_batch(batch_key)
    audit_service.record(
        store_id=to_store_id,
        action_type=audit_service.TRANSFER_CONFIRMED,
        table_name="transfers",
        record_id=batch_key,
        old_value={"status": TRANSFER_STATUS_PENDING},
        new_value={"status": batch["status"], "item_count": batch["item_count"]},
        actor_id=actor_id,
    )
    notification_service.notify_store_staff(
        store_id=from_store_id,
        type="transfer_confirmed",
        title="Transfer received at the warehouse",
        body=f"{batch_key}: {batch['item_count']} item(s) received",
        data={"transfer_code": batch_key},
    )
    return batch


def confirm_batch_item(
    transfer_item_id: int,
    *,
    actor_id: int,
    photo_url: str | None = None,
    notes: str | None = None,
) -> dict:
    """
    Confirm the batch the item belongs to.

    Items of one batch never diverge, so confirming one confirms them all.
    """
    item = db.session.get(TransferItem, transfer_item_id)
    if item is None:
        raise NotFoundError(f"Transfer item {transfer_item_id} not found")
    return confirm_batch(item.batch_key, actor_id=actor_id, photo_url=photo_url, notes=notes)


def reject_batch(
    batch_key: str,
    *,
    actor_id: int,
    reason: str | None = None,
    actor_store_id: int | None = None,
) -> dict:
    """
    Refuse (destination) or cancel (source) a pending batch.

    Every item goes to rejected and every deposit back to expired in the
    same transaction, so no deposit is left pointing at a dead batch.

    actor_store_id says which side the actor is acting for; without it the
    destination side is assumed when the actor can reach it. A rejection by
    the destination needs a reason; a cancellation by the source does not.

    Raises:
        ValidationError: Destination rejection without a reason
        ForbiddenError: Actor belongs to neither side
        ConflictError: Batch no longer pending
    """
    with atomic():
        items = _load_batch(batch_key, for_update=True)
        to_store_id = items[0].to_store_id
        from_store_id = items[0].from_store_id

        user = access_service.get_user(actor_id)
        if actor_store_id is None:
            if access_service.user_can_access_store(user, to_store_id):
                actor_store_id = to_store_id
            elif access_service.user_can_access_store(user, from_store_id):
                actor_store_id = from_store_id
        if actor_store_id not in (to_store_id, from_store_id) or not access_service.user_can_access_store(user, actor_store_id):
            raise ForbiddenError("Not allowed to reject this transfer")

        is_cancel = actor_store_id == from_store_id and actor_store_id != to_store_id
        reason = optional_text(reason) if is_cancel else require_text(reason, "reason")

        status = _batch_status(items)
        if status != TRANSFER_STATUS_PENDING:
            raise ConflictError(f"Transfer batch {batch_key} is already {status}")
        for item in items:
            lifecycle.require_transition(lifecycle.TRANSFER_ITEM, item.status, TRANSFER_STATUS_REJECTED, label="transfer item")

        item_ids = [i.id for i in items]
        deposit_ids = [i.deposit_id for i in items]
        now = utcnow()

        rows = conditional_update_where(
            TransferItem,
            [TransferItem.id.in_(item_ids)],
            {"status": TRANSFER_STATUS_PENDING},
            {
                "status": TRANSFER_STATUS_REJECTED,
                "rejected_by": actor_id,
                "rejected_at": now,
                "rejection_reason": reason,
            },
        )
        require_updated(rows, f"Transfer batch {batch_key} was already processed", expected_rows=len(item_ids))

        _require_deposit_transitions(deposit_ids, "expired")
        rows = conditional_update_where(
            Deposit,
            [Deposit.id.in_(deposit_ids)],
            {"status": ("transfer_pending", "transferred_out")},
            {"status": "expired", "updated_at": now},
        )
        require_updated(rows, "A deposit in this batch could not be reverted", expected_rows=len(deposit_ids))

    batch = get_batch(batch_key)
    audit_service.record(
        store_id=actor_store_id,
        action_type=audit_service.TRANSFER_CANCELLED if is_cancel else audit_service.TRANSFER_REJECTED,
        table_name="transfers",
        record_id=batch_key,
        old_value={"status": TRANSFER_STATUS_PENDING},
        new_value={"status": batch["status"], "reason": reason, "deposit_ids": deposit_ids},
        actor_id=actor_id,
    )
    notification_service.notify_store_staff(
        store_id=to_store_id if is_cancel else from_store_id,
        type="transfer_cancelled" if is_cancel else "transfer_rejected",
        title="Transfer cancelled" if is_cancel else "Transfer rejected by the warehouse",
        body=f"{batch_key}: {reason}" if reason else batch_key,
        data={"transfer_code": batch_key},
        exclude_user_id=actor_id,
    )
    return batch


# =============================================================================
# Queries
# =============================================================================

def list_batches(store_id: int, *, perspective: str = PERSPECTIVE_SENDING, status: str | None = None) -> dict[str, list[dict]]:
    """
    Batches seen from one store, partitioned by status.

    perspective "sending" lists batches the store shipped, "receiving" the
    ones shipped to it. Uncoded legacy items appear as single-item batches.
    Newest first within each partition.
    """
    if perspective == PERSPECTIVE_SENDING:
        column = TransferItem.from_store_id
    elif perspective == PERSPECTIVE_RECEIVING:
        column = TransferItem.to_store_id
    else:
        raise ValidationError("perspective must be 'sending' or 'receiving'")
    if status is not None and status not in BATCH_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(BATCH_STATUSES)}")

    items = (
        db.session.query(TransferItem)
        .filter(column == store_id)
        .order_by(TransferItem.created_at.desc(), TransferItem.id.desc())
        .all()
    )

    groups: OrderedDict[str, list[TransferItem]] = OrderedDict()
    for item in items:
        groups.setdefault(item.batch_key, []).append(item)

    partitions: dict[str, list[dict]] = {s: [] for s in BATCH_STATUSES}
    for key, members in groups.items():
        members.sort(key=lambda i: i.id)
        batch = batch_to_dict(key, members)
        partitions.setdefault(batch["status"], []).append(batch)

    if status is not None:
        return {status: partitions[status]}
    return partitions
