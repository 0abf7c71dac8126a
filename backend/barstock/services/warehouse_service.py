# backend/barstock/services/warehouse_service.py
"""
Central warehouse receiving service.

LIFECYCLE:
1. awaiting_withdrawal: created when a transfer item is confirmed received
2. withdrawn: disposed of / taken out of the warehouse (terminal, no reversal)
"""
from __future__ import annotations

from sqlalchemy import func

from barstock.extensions import db
from barstock.models import HqDeposit, TransferItem, Deposit, Store
from barstock.services import access_service, audit_service
from barstock.services import lifecycle_service as lifecycle
from barstock.services.concurrency import atomic, conditional_update, lock_for_update, require_updated
from barstock.time_utils import utcnow
from barstock.validation import ConflictError, NotFoundError, optional_text


HQ_STATUS_AWAITING_WITHDRAWAL = "awaiting_withdrawal"
HQ_STATUS_WITHDRAWN = "withdrawn"


def get_hq_deposit(hq_deposit_id: int) -> HqDeposit:
    hq = db.session.get(HqDeposit, hq_deposit_id)
    if hq is None:
        raise NotFoundError(f"Warehouse deposit {hq_deposit_id} not found")
    return hq


def receive_transfer_item(
    item: TransferItem,
    deposit: Deposit,
    *,
    received_by: int | None,
    received_photo_url: str | None = None,
    notes: str | None = None,
) -> HqDeposit:
    """
    Create the warehouse record for a confirmed transfer item.

    Only called by the transfer engine, inside its transaction (flushes,
    never commits). The unique transfer_id makes a second receipt of the
    same item fail at flush time.
    """
    existing = db.session.query(HqDeposit.id).filter_by(transfer_id=item.id).first()
    if existing is not None:
        raise ConflictError(f"Transfer item {item.id} was already received")

    hq = HqDeposit(
        transfer_id=item.id,
        deposit_id=deposit.id,
        from_store_id=item.from_store_id,
        transfer_code=item.transfer_code,
        deposit_code=deposit.deposit_code,
        product_name=item.product_name,
        customer_name=deposit.customer_name,
        category=deposit.category,
        quantity=item.quantity,
        status=HQ_STATUS_AWAITING_WITHDRAWAL,
        received_by=received_by,
        received_at=utcnow(),
        received_photo_url=optional_text(received_photo_url),
        notes=optional_text(notes),
    )
    db.session.add(hq)
    db.session.flush()
    return hq


def dispose(hq_deposit_id: int, *, actor_id: int, notes: str | None = None) -> HqDeposit:
    """
    Take a bottle out of the warehouse (awaiting_withdrawal -> withdrawn).

    Raises:
        ConflictError: Already withdrawn
        ForbiddenError: Actor cannot act for the warehouse store
    """
    with atomic():
        hq = lock_for_update(db.session.query(HqDeposit).filter_by(id=hq_deposit_id)).first()
        if hq is None:
            raise NotFoundError(f"Warehouse deposit {hq_deposit_id} not found")

        warehouse_store_id = hq.transfer.to_store_id
        access_service.require_store_access(actor_id, warehouse_store_id, action="withdraw from the warehouse")
        lifecycle.require_transition(lifecycle.HQ_DEPOSIT, hq.status, HQ_STATUS_WITHDRAWN, label="warehouse deposit")

        rows = conditional_update(
            HqDeposit,
            hq_deposit_id,
            {"status": HQ_STATUS_AWAITING_WITHDRAWAL},
            {
                "status": HQ_STATUS_WITHDRAWN,
                "withdrawn_by": actor_id,
                "withdrawn_at": utcnow(),
                "withdrawal_notes": optional_text(notes),
            },
        )
        require_updated(rows, "Warehouse deposit was already withdrawn")

    hq = get_hq_deposit(hq_deposit_id)
    audit_service.record(
        store_id=warehouse_store_id,
        action_type=audit_service.HQ_DEPOSIT_WITHDRAWN,
        table_name="hq_deposits",
        record_id=hq.id,
        old_value={"status": HQ_STATUS_AWAITING_WITHDRAWAL},
        new_value={"status": hq.status, "notes": hq.withdrawal_notes},
        actor_id=actor_id,
    )
    return hq


def list_hq_deposits(*, status: str | None = None, from_store_id: int | None = None, limit: int = 500) -> list[HqDeposit]:
    if status is not None:
        lifecycle.parse_status_filter(lifecycle.HQ_DEPOSIT, status)
    q = db.session.query(HqDeposit)
    if status is not None:
        q = q.filter(HqDeposit.status == status)
    if from_store_id is not None:
        q = q.filter(HqDeposit.from_store_id == from_store_id)
    return q.order_by(HqDeposit.received_at.desc(), HqDeposit.id.desc()).limit(limit).all()


def _counts_by_store(query) -> dict[int, int]:
    return {store_id: count for store_id, count in query.all()}


def warehouse_summary() -> dict:
    """
    Dashboard figures for the warehouse.

    Per branch (active, non-central): transfer items still pending, items
    received and awaiting withdrawal, expired deposits not yet shipped.
    Branches where all three are zero are left out.
    """
    pending = _counts_by_store(
        db.session.query(TransferItem.from_store_id, func.count(TransferItem.id))
        .filter(TransferItem.status == "pending")
        .group_by(TransferItem.from_store_id)
    )
    awaiting = _counts_by_store(
        db.session.query(HqDeposit.from_store_id, func.count(HqDeposit.id))
        .filter(HqDeposit.status == HQ_STATUS_AWAITING_WITHDRAWAL)
        .group_by(HqDeposit.from_store_id)
    )
    expired = _counts_by_store(
        db.session.query(Deposit.store_id, func.count(Deposit.id))
        .filter(Deposit.status == "expired")
        .group_by(Deposit.store_id)
    )
    withdrawn_total = (
        db.session.query(func.count(HqDeposit.id))
        .filter(HqDeposit.status == HQ_STATUS_WITHDRAWN)
        .scalar()
    ) or 0

    branches = (
        db.session.query(Store)
        .filter(Store.is_central.is_(False), Store.active.is_(True))
        .order_by(Store.code.asc())
        .all()
    )

    rows = []
    for store in branches:
        row = {
            "store_id": store.id,
            "store_code": store.code,
            "store_name": store.name,
            "pending_transfers": pending.get(store.id, 0),
            "awaiting_withdrawal": awaiting.get(store.id, 0),
            "expired_deposits": expired.get(store.id, 0),
        }
        if row["pending_transfers"] or row["awaiting_withdrawal"] or row["expired_deposits"]:
            rows.append(row)

    return {
        "pending_transfers": sum(r["pending_transfers"] for r in rows),
        "awaiting_withdrawal": sum(r["awaiting_withdrawal"] for r in rows),
        "expired_deposits": sum(r["expired_deposits"] for r in rows),
        "withdrawn": withdrawn_total,
        "branches": rows,
    }
