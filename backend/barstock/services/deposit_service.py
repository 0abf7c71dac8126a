# backend/barstock/services/deposit_service.py
"""
Deposit lifecycle service.

WHY: A deposit is the customer's bottle held in store. Its remaining
quantity only goes down, and only through the operations below; every one
of them is a guarded read-modify-write that fails loudly when another actor
got there first.

LIFECYCLE:
1. pending_confirm: created from the customer's request, waiting for the bar
2. in_store: bar confirmed the bottle is on the shelf
3. pending_withdrawal: customer asked for some of it back
4. withdrawn: nothing left (terminal)
5. expired: past expiry, rejected by the bar, or recorded as "no deposit"
6. transfer_pending / transferred_out: owned by the transfer engine
"""
from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app

from barstock.extensions import db
from barstock.models import Deposit, Withdrawal, Store, User
from barstock.services import access_service, audit_service, notification_service
from barstock.services import lifecycle_service as lifecycle
from barstock.services.concurrency import (
    atomic,
    conditional_update,
    conditional_update_where,
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


# Deposit status constants
DEPOSIT_STATUS_PENDING_CONFIRM = "pending_confirm"
DEPOSIT_STATUS_IN_STORE = "in_store"
DEPOSIT_STATUS_PENDING_WITHDRAWAL = "pending_withdrawal"
DEPOSIT_STATUS_WITHDRAWN = "withdrawn"
DEPOSIT_STATUS_EXPIRED = "expired"
DEPOSIT_STATUS_TRANSFER_PENDING = "transfer_pending"
DEPOSIT_STATUS_TRANSFERRED_OUT = "transferred_out"

# Withdrawal status constants
WITHDRAWAL_STATUS_PENDING = "pending"
WITHDRAWAL_STATUS_APPROVED = "approved"
WITHDRAWAL_STATUS_COMPLETED = "completed"
WITHDRAWAL_STATUS_REJECTED = "rejected"

OPEN_WITHDRAWAL_STATUSES = (WITHDRAWAL_STATUS_PENDING, WITHDRAWAL_STATUS_APPROVED)

# Deposits the expiry sweep may touch
EXPIRABLE_STATUSES = (DEPOSIT_STATUS_IN_STORE, DEPOSIT_STATUS_PENDING_WITHDRAWAL)

# Deposits a withdrawal may complete against
WITHDRAWABLE_STATUSES = (DEPOSIT_STATUS_IN_STORE, DEPOSIT_STATUS_PENDING_WITHDRAWAL)

EXPIRED_WITHDRAWAL_REASON = "deposit expired"

_CODE_ALPHABET = string.ascii_uppercase + string.digits


class DepositError(Exception):
    """Raised when deposit bookkeeping cannot proceed (not a user error)."""
    pass


def _snapshot(deposit: Deposit) -> dict:
    return {
        "status": deposit.status,
        "remaining_qty": deposit.remaining_qty,
        "remaining_percent": deposit.remaining_percent,
    }


def _withdrawal_snapshot(withdrawal: Withdrawal) -> dict:
    return {
        "status": withdrawal.status,
        "requested_qty": withdrawal.requested_qty,
        "actual_qty": withdrawal.actual_qty,
    }


def _remaining_percent(remaining: Decimal, quantity: Decimal) -> Decimal:
    if not quantity:
        return Decimal("0")
    return (remaining / quantity * 100).quantize(Decimal("0.01"))


def _generate_deposit_code(store: Store) -> str:
    """DEP-<STORECODE>-<5 random alnum>, unique across all deposits."""
    for _ in range(10):
        suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(5))
        code = f"DEP-{store.code.upper()}-{suffix}"
        exists = db.session.query(Deposit.id).filter_by(deposit_code=code).first()
        if exists is None:
            return code
    raise DepositError("Could not allocate a unique deposit code")


def get_deposit(deposit_id: int) -> Deposit:
    deposit = db.session.get(Deposit, deposit_id)
    if deposit is None:
        raise NotFoundError(f"Deposit {deposit_id} not found")
    return deposit


def get_withdrawal(withdrawal_id: int) -> Withdrawal:
    withdrawal = db.session.get(Withdrawal, withdrawal_id)
    if withdrawal is None:
        raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
    return withdrawal


def _lock_deposit(deposit_id: int) -> Deposit:
    deposit = lock_for_update(db.session.query(Deposit).filter_by(id=deposit_id)).first()
    if deposit is None:
        raise NotFoundError(f"Deposit {deposit_id} not found")
    return deposit


def _lock_withdrawal(withdrawal_id: int) -> Withdrawal:
    withdrawal = lock_for_update(db.session.query(Withdrawal).filter_by(id=withdrawal_id)).first()
    if withdrawal is None:
        raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
    return withdrawal


def _require_deposit_actor(actor_id: int | None, deposit: Deposit, *, action: str):
    """Store members may act on any deposit; a customer only on their own."""
    user = access_service.get_user(actor_id)
    if user.role == "customer" and deposit.customer_id == user.id:
        return user
    return access_service.require_store_access(actor_id, deposit.store_id, action=action)


def _resolve_customer(customer_id) -> User:
    """The depositor named by staff must be an active customer account."""
    if isinstance(customer_id, bool) or not isinstance(customer_id, int):
        raise ValidationError("customer_id must be an integer")
    customer = db.session.get(User, customer_id)
    if customer is None or not customer.active or customer.role != "customer":
        raise ValidationError(f"customer_id {customer_id} is not an active customer")
    return customer


# =============================================================================
# Creation and bar confirmation
# =============================================================================

def create_deposit(
    *,
    store_id: int,
    product_name: str,
    quantity,
    actor_id: int,
    customer_id: int | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    category: str | None = None,
    table_number: str | None = None,
    expiry_days: int | None = None,
    is_vip: bool = False,
    is_no_deposit: bool = False,
    photo_url: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Deposit:
    """
    Record a new deposit.

    A customer creating their own request is recorded as the depositor;
    staff must belong to the store. VIP deposits never expire. A "no
    deposit" entry is stored directly as expired so it can be shipped.

    Raises:
        ValidationError: Bad quantity, blank product, bad expiry_days,
            customer_id that is not an active customer
        ForbiddenError: Actor cannot act for the store
        NotFoundError: Unknown store
    """
    product_name = require_text(product_name, "product_name")
    qty = parse_quantity(quantity)
    now = now or utcnow()

    user = access_service.get_user(actor_id)
    if user.role == "customer":
        customer_id = user.id
        customer_name = customer_name or user.name
    else:
        access_service.require_store_access(actor_id, store_id, action="create deposits for this store")
        if customer_id is not None:
            customer = _resolve_customer(customer_id)
            customer_name = customer_name or customer.name

    store = access_service.get_store(store_id)
    if not store.active:
        raise ValidationError("Store is not active")

    if is_vip:
        expiry_date = None
    else:
        days = current_app.config["DEFAULT_DEPOSIT_EXPIRY_DAYS"] if expiry_days is None else expiry_days
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise ValidationError("expiry_days must be a non-negative integer")
        expiry_date = now + timedelta(days=days)

    status = DEPOSIT_STATUS_EXPIRED if is_no_deposit else DEPOSIT_STATUS_PENDING_CONFIRM
    if is_no_deposit and expiry_date is None:
        expiry_date = now

    with atomic():
        deposit = Deposit(
            deposit_code=_generate_deposit_code(store),
            store_id=store.id,
            customer_id=customer_id,
            customer_name=optional_text(customer_name),
            customer_phone=optional_text(customer_phone),
            table_number=optional_text(table_number),
            product_name=product_name,
            category=optional_text(category),
            quantity=qty,
            remaining_qty=qty,
            remaining_percent=Decimal("100"),
            status=status,
            is_vip=bool(is_vip),
            is_no_deposit=bool(is_no_deposit),
            expiry_date=expiry_date,
            received_by=None if user.role == "customer" else user.id,
            photo_url=optional_text(photo_url),
            notes=optional_text(notes),
            updated_at=now,
        )
        db.session.add(deposit)
        db.session.flush()

    audit_service.record(
        store_id=deposit.store_id,
        action_type=audit_service.DEPOSIT_CREATED,
        table_name="deposits",
        record_id=deposit.id,
        new_value={
            "deposit_code": deposit.deposit_code,
            "product_name": deposit.product_name,
            "quantity": deposit.quantity,
            "status": deposit.status,
        },
        actor_id=actor_id,
    )
    if deposit.status == DEPOSIT_STATUS_PENDING_CONFIRM:
        notification_service.notify_store_staff(
            store_id=deposit.store_id,
            type="deposit_pending_confirm",
            title="New deposit waiting for bar confirmation",
            body=f"{deposit.product_name} x{deposit.quantity} ({deposit.deposit_code})",
            data={"deposit_id": deposit.id},
            exclude_user_id=actor_id,
        )
    return deposit


def confirm_receipt(
    deposit_id: int,
    *,
    actor_id: int,
    photo_url: str | None = None,
    notes: str | None = None,
) -> Deposit:
    """
    Bar confirms the bottle is on the shelf (pending_confirm -> in_store).

    Raises:
        ConflictError: Deposit is no longer pending_confirm
    """
    with atomic():
        deposit = _lock_deposit(deposit_id)
        access_service.require_store_access(actor_id, deposit.store_id, action="confirm deposits for this store")
        lifecycle.require_transition(lifecycle.DEPOSIT, deposit.status, DEPOSIT_STATUS_IN_STORE, label="deposit")
        old = _snapshot(deposit)

        now = utcnow()
        patch = {
            "status": DEPOSIT_STATUS_IN_STORE,
            "confirmed_by": actor_id,
            "confirmed_at": now,
            "updated_at": now,
        }
        if optional_text(photo_url):
            patch["confirm_photo_url"] = optional_text(photo_url)
        if optional_text(notes):
            patch["notes"] = optional_text(notes)

        rows = conditional_update(Deposit, deposit_id, {"status": DEPOSIT_STATUS_PENDING_CONFIRM}, patch)
        require_updated(rows, "Deposit was already processed by someone else")

    deposit = get_deposit(deposit_id)
    audit_service.record(
        store_id=deposit.store_id,
        action_type=audit_service.DEPOSIT_BAR_CONFIRMED,
        table_name="deposits",
        record_id=deposit.id,
        old_value=old,
        new_value=_snapshot(deposit),
        actor_id=actor_id,
    )
    notification_service.notify_user(
        user_id=deposit.customer_id,
        store_id=deposit.store_id,
        type="deposit_confirmed",
        title="Your deposit has been confirmed",
        body=f"{deposit.product_name} ({deposit.deposit_code})",
        data={"deposit_id": deposit.id},
    )
    return deposit


def reject_receipt(deposit_id: int, reason: str, *, actor_id: int) -> Deposit:
    """
    Bar rejects a deposit request (pending_confirm -> expired, nothing left).

    Raises:
        ValidationError: Blank reason
        ConflictError: Deposit is no longer pending_confirm
    """
    reason = require_text(reason, "reason")

    with atomic():
        deposit = _lock_deposit(deposit_id)
        access_service.require_store_access(actor_id, deposit.store_id, action="reject deposits for this store")
        lifecycle.require_transition(lifecycle.DEPOSIT, deposit.status, DEPOSIT_STATUS_EXPIRED, label="deposit")
        old = _snapshot(deposit)

        now = utcnow()
        rows = conditional_update(
            Deposit,
            deposit_id,
            {"status": DEPOSIT_STATUS_PENDING_CONFIRM},
            {
                "status": DEPOSIT_STATUS_EXPIRED,
                "remaining_qty": Decimal("0"),
                "remaining_percent": Decimal("0"),
                "rejection_reason": reason,
                "confirmed_by": actor_id,
                "confirmed_at": now,
                "updated_at": now,
            },
        )
        require_updated(rows, "Deposit was already processed by someone else")

    deposit = get_deposit(deposit_id)
    audit_service.record(
        store_id=deposit.store_id,
        action_type=audit_service.DEPOSIT_BAR_REJECTED,
        table_name="deposits",
        record_id=deposit.id,
        old_value=old,
        new_value={**_snapshot(deposit), "reason": reason},
        actor_id=actor_id,
    )
    notification_service.notify_user(
        user_id=deposit.customer_id,
        store_id=deposit.store_id,
        type="deposit_rejected",
        title="Your deposit request was rejected",
        body=reason,
        data={"deposit_id": deposit.id},
    )
    return deposit


# =============================================================================
# Withdrawals
# =============================================================================

def request_withdrawal(
    deposit_id: int,
    *,
    actor_id: int,
    requested_qty=None,
    notes: str | None = None,
) -> Withdrawal:
    """
    Open a withdrawal against an in_store deposit.

    requested_qty defaults to everything that is left. The deposit moves to
    pending_withdrawal, so a second request fails until this one resolves.

    Raises:
        ValidationError: Quantity not positive or above what is left
        ConflictError: Deposit is not in_store
    """
    with atomic():
        deposit = _lock_deposit(deposit_id)
        _require_deposit_actor(actor_id, deposit, action="withdraw from this deposit")

        if deposit.status != DEPOSIT_STATUS_IN_STORE:
            raise ConflictError(f"Deposit is '{deposit.status}', withdrawals need 'in_store'")
        lifecycle.require_transition(
            lifecycle.DEPOSIT, deposit.status, DEPOSIT_STATUS_PENDING_WITHDRAWAL, label="deposit"
        )

        remaining = deposit.remaining_qty
        qty = remaining if requested_qty is None else parse_quantity(requested_qty, "requested_qty")
        if qty <= 0:
            raise ValidationError("Nothing left to withdraw")
        if qty > remaining:
            raise ValidationError(f"requested_qty {qty} exceeds remaining {remaining}")

        rows = conditional_update(
            Deposit,
            deposit_id,
            {"status": DEPOSIT_STATUS_IN_STORE},
            {"status": DEPOSIT_STATUS_PENDING_WITHDRAWAL, "updated_at": utcnow()},
        )
        require_updated(rows, "Deposit changed while requesting the withdrawal")

        withdrawal = Withdrawal(
            deposit_id=deposit_id,
            store_id=deposit.store_id,
            requested_qty=qty,
            status=WITHDRAWAL_STATUS_PENDING,
            requested_by=actor_id,
            notes=optional_text(notes),
        )
        db.session.add(withdrawal)
        db.session.flush()

    deposit = get_deposit(deposit_id)
    audit_service.record(
        store_id=deposit.store_id,
        action_type=audit_service.WITHDRAWAL_REQUESTED,
        table_name="withdrawals",
        record_id=withdrawal.id,
        new_value={"deposit_id": deposit_id, "requested_qty": withdrawal.requested_qty},
        actor_id=actor_id,
    )
    notification_service.notify_store_staff(
        store_id=deposit.store_id,
        type="withdrawal_request",
        title="Withdrawal requested",
        body=f"{deposit.product_name} x{withdrawal.requested_qty} ({deposit.deposit_code})",
        data={"deposit_id": deposit_id, "withdrawal_id": withdrawal.id},
        exclude_user_id=actor_id,
    )
    return withdrawal


def approve_withdrawal(withdrawal_id: int, *, actor_id: int) -> Withdrawal:
    """pending -> approved; the bottle is being fetched."""
    with atomic():
        withdrawal = _lock_withdrawal(withdrawal_id)
        access_service.require_store_access(actor_id, withdrawal.store_id, action="approve withdrawals for this store")
        lifecycle.require_transition(
            lifecycle.WITHDRAWAL, withdrawal.status, WITHDRAWAL_STATUS_APPROVED, label="withdrawal"
        )

        now = utcnow()
        rows = conditional_update(
            Withdrawal,
            withdrawal_id,
            {"status": WITHDRAWAL_STATUS_PENDING},
            {"status": WITHDRAWAL_STATUS_APPROVED, "approved_by": actor_id, "approved_at": now},
        )
        require_updated(rows, "Withdrawal was already processed by someone else")

    withdrawal = get_withdrawal(withdrawal_id)
    audit_service.record(
        store_id=withdrawal.store_id,
        action_type=audit_service.WITHDRAWAL_APPROVED,
        table_name="withdrawals",
        record_id=withdrawal.id,
        old_value={"status": WITHDRAWAL_STATUS_PENDING},
        new_value=_withdrawal_snapshot(withdrawal),
        actor_id=actor_id,
    )
    return withdrawal


def complete_withdrawal(
    withdrawal_id: int,
    actual_qty,
    *,
    actor_id: int,
    photo_url: str | None = None,
    notes: str | None = None,
) -> Withdrawal:
    """
    Hand the bottle over and book the quantity.

    The deposit write is a compare-and-set on the remaining quantity read in
    this transaction: if anything else changed it in between, nothing is
    written and the caller gets a ConflictError. Reaching zero moves the
    deposit to withdrawn; otherwise it goes back to in_store.

    Raises:
        ValidationError: actual_qty not positive or above what is left
        ConflictError: Withdrawal or deposit moved on concurrently
    """
    qty = parse_quantity(actual_qty, "actual_qty")

    with atomic():
        withdrawal = _lock_withdrawal(withdrawal_id)
        access_service.require_store_access(actor_id, withdrawal.store_id, action="complete withdrawals for this store")
        lifecycle.require_transition(
            lifecycle.WITHDRAWAL, withdrawal.status, WITHDRAWAL_STATUS_COMPLETED, label="withdrawal"
        )
        withdrawal_status = withdrawal.status

        deposit = _lock_deposit(withdrawal.deposit_id)
        if deposit.status not in WITHDRAWABLE_STATUSES:
            raise ConflictError(f"Deposit is '{deposit.status}', cannot withdraw from it")

        remaining = deposit.remaining_qty
        if qty > remaining:
            raise ValidationError(f"actual_qty {qty} exceeds remaining {remaining}")

        new_remaining = remaining - qty
        new_status = DEPOSIT_STATUS_WITHDRAWN if new_remaining <= 0 else DEPOSIT_STATUS_IN_STORE
        lifecycle.require_transition(lifecycle.DEPOSIT, deposit.status, new_status, label="deposit")
        old = _snapshot(deposit)

        now = utcnow()
        rows = conditional_update(
            Deposit,
            deposit.id,
            {"status": deposit.status, "remaining_qty": remaining},
            {
                "remaining_qty": new_remaining,
                "remaining_percent": _remaining_percent(new_remaining, deposit.quantity),
                "status": new_status,
                "updated_at": now,
            },
        )
        require_updated(rows, "Deposit changed while completing the withdrawal")

        rows = conditional_update(
            Withdrawal,
            withdrawal_id,
            {"status": withdrawal_status},
            {
                "status": WITHDRAWAL_STATUS_COMPLETED,
                "actual_qty": qty,
                "processed_by": actor_id,
                "processed_at": now,
                "photo_url": optional_text(photo_url),
                "notes": optional_text(notes) or withdrawal.notes,
            },
        )
        require_updated(rows, "Withdrawal was already processed by someone else")
        deposit_id = deposit.id

    withdrawal = get_withdrawal(withdrawal_id)
    deposit = get_deposit(deposit_id)
    audit_service.record(
        store_id=deposit.store_id,
        action_type=audit_service.WITHDRAWAL_COMPLETED,
        table_name="deposits",
        record_id=deposit.id,
        old_value=old,
        new_value={**_snapshot(deposit), "withdrawal_id": withdrawal.id, "actual_qty": qty},
        actor_id=actor_id,
    )
    notification_service.notify_user(
        user_id=deposit.customer_id,
        store_id=deposit.store_id,
        type="withdrawal_completed",
        title="Withdrawal completed",
        body=f"{deposit.product_name}: {qty} withdrawn, {deposit.remaining_qty} left",
        data={"deposit_id": deposit.id, "withdrawal_id": withdrawal.id},
    )
    return withdrawal


def reject_withdrawal(withdrawal_id: int, reason: str, *, actor_id: int) -> Withdrawal:
    """
    Refuse a withdrawal request.

    The deposit goes back to in_store only if it is still pending_withdrawal;
    if another actor already moved it (e.g. the expiry sweep), it is left
    alone.

    Raises:
        ValidationError: Blank reason
        ConflictError: Withdrawal already completed or rejected
    """
    reason = require_text(reason, "reason")

    with atomic():
        withdrawal = _lock_withdrawal(withdrawal_id)
        access_service.require_store_access(actor_id, withdrawal.store_id, action="reject withdrawals for this store")
        lifecycle.require_transition(
            lifecycle.WITHDRAWAL, withdrawal.status, WITHDRAWAL_STATUS_REJECTED, label="withdrawal"
        )
        old = _withdrawal_snapshot(withdrawal)

        now = utcnow()
        rows = conditional_update(
            Withdrawal,
            withdrawal_id,
            {"status": OPEN_WITHDRAWAL_STATUSES},
            {
                "status": WITHDRAWAL_STATUS_REJECTED,
                "rejection_reason": reason,
                "processed_by": actor_id,
                "processed_at": now,
            },
        )
        require_updated(rows, "Withdrawal was already processed by someone else")

        deposit = _lock_deposit(withdrawal.deposit_id)
        if deposit.status == DEPOSIT_STATUS_PENDING_WITHDRAWAL:
            lifecycle.require_transition(lifecycle.DEPOSIT, deposit.status, DEPOSIT_STATUS_IN_STORE, label="deposit")
            conditional_update(
                Deposit,
                deposit.id,
                {"status": DEPOSIT_STATUS_PENDING_WITHDRAWAL},
                {"status": DEPOSIT_STATUS_IN_STORE, "updated_at": now},
            )

    withdrawal = get_withdrawal(withdrawal_id)
    deposit = get_deposit(withdrawal.deposit_id)
    audit_service.record(
        store_id=withdrawal.store_id,
        action_type=audit_service.WITHDRAWAL_REJECTED,
        table_name="withdrawals",
        record_id=withdrawal.id,
        old_value=old,
        new_value={**_withdrawal_snapshot(withdrawal), "reason": reason, "deposit_status": deposit.status},
        actor_id=actor_id,
    )
    notification_service.notify_user(
        user_id=deposit.customer_id,
        store_id=deposit.store_id,
        type="withdrawal_rejected",
        title="Withdrawal request rejected",
        body=reason,
        data={"deposit_id": deposit.id, "withdrawal_id": withdrawal.id},
    )
    return withdrawal


# =============================================================================
# Expiry
# =============================================================================

def expire_sweep(now: datetime | None = None, store_id: int | None = None) -> list[Deposit]:
    """
    Move every overdue in_store / pending_withdrawal deposit to expired.

    Runs as one transaction. Open withdrawals of an expired deposit are
    rejected with reason "deposit expired". A deposit that changed status
    between the scan and its write is skipped, not failed.

    Returns:
        The deposits this run expired
    """
    now = now or utcnow()

    with atomic():
        q = db.session.query(Deposit).filter(
            Deposit.status.in_(EXPIRABLE_STATUSES),
            Deposit.is_vip.is_(False),
            Deposit.expiry_date.isnot(None),
            Deposit.expiry_date <= now,
        )
        if store_id is not None:
            q = q.filter(Deposit.store_id == store_id)
        candidates = [(d.id, d.status, d.store_id) for d in lock_for_update(q.order_by(Deposit.id.asc())).all()]

        expired: list[tuple[int, str, int]] = []
        for dep_id, status, dep_store_id in candidates:
            lifecycle.require_transition(lifecycle.DEPOSIT, status, DEPOSIT_STATUS_EXPIRED, label="deposit")
            rows = conditional_update(
                Deposit,
                dep_id,
                {"status": status},
                {"status": DEPOSIT_STATUS_EXPIRED, "updated_at": now},
            )
            if not rows:
                continue
            open_withdrawals = lock_for_update(
                db.session.query(Withdrawal).filter(
                    Withdrawal.deposit_id == dep_id,
                    Withdrawal.status.in_(OPEN_WITHDRAWAL_STATUSES),
                )
            ).all()
            for w in open_withdrawals:
                lifecycle.require_transition(
                    lifecycle.WITHDRAWAL, w.status, WITHDRAWAL_STATUS_REJECTED, label="withdrawal"
                )
            conditional_update_where(
                Withdrawal,
                [Withdrawal.deposit_id == dep_id],
                {"status": OPEN_WITHDRAWAL_STATUSES},
                {
                    "status": WITHDRAWAL_STATUS_REJECTED,
                    "rejection_reason": EXPIRED_WITHDRAWAL_REASON,
                    "processed_at": now,
                },
            )
            expired.append((dep_id, status, dep_store_id))

    deposits = []
    for dep_id, old_status, dep_store_id in expired:
        deposit = get_deposit(dep_id)
        deposits.append(deposit)
        audit_service.record(
            store_id=dep_store_id,
            action_type=audit_service.CRON_DEPOSIT_EXPIRED,
            table_name="deposits",
            record_id=dep_id,
            old_value={"status": old_status},
            new_value={"status": DEPOSIT_STATUS_EXPIRED, "expiry_date": deposit.expiry_date},
            actor_id=None,
        )
        notification_service.notify_user(
            user_id=deposit.customer_id,
            store_id=dep_store_id,
            type="deposit_expired",
            title="Your deposit has expired",
            body=f"{deposit.product_name} ({deposit.deposit_code})",
            data={"deposit_id": dep_id},
        )

    if expired:
        current_app.logger.info("Expiry sweep expired %d deposit(s)", len(expired))
    return deposits


def send_expiry_warnings(now: datetime | None = None, warning_days: int | None = None) -> int:
    """
    Remind customers whose in_store deposits expire within the window.

    Read-only on deposits; returns the number of notifications written.
    """
    now = now or utcnow()
    days = current_app.config["EXPIRY_WARNING_DAYS"] if warning_days is None else warning_days
    horizon = now + timedelta(days=days)

    deposits = (
        db.session.query(Deposit)
        .filter(
            Deposit.status == DEPOSIT_STATUS_IN_STORE,
            Deposit.is_vip.is_(False),
            Deposit.customer_id.isnot(None),
            Deposit.expiry_date.isnot(None),
            Deposit.expiry_date > now,
            Deposit.expiry_date <= horizon,
        )
        .order_by(Deposit.expiry_date.asc(), Deposit.id.asc())
        .all()
    )

    sent = 0
    for deposit in deposits:
        days_left = max((deposit.expiry_date - now).days, 0)
        sent += notification_service.notify_user(
            user_id=deposit.customer_id,
            store_id=deposit.store_id,
            type="deposit_expiry_warning",
            title="Your deposit is about to expire",
            body=f"{deposit.product_name} ({deposit.deposit_code}) expires in {days_left} day(s)",
            data={"deposit_id": deposit.id, "days_left": days_left},
        )
    return sent


# =============================================================================
# Queries
# =============================================================================

def list_deposits(
    store_id: int,
    *,
    status: str | None = None,
    customer_id: int | None = None,
    limit: int = 500,
) -> list[Deposit]:
    if status is not None:
        lifecycle.parse_status_filter(lifecycle.DEPOSIT, status)
    q = db.session.query(Deposit).filter(Deposit.store_id == store_id)
    if status is not None:
        q = q.filter(Deposit.status == status)
    if customer_id is not None:
        q = q.filter(Deposit.customer_id == customer_id)
    return q.order_by(Deposit.created_at.desc(), Deposit.id.desc()).limit(limit).all()


def list_withdrawals(store_id: int, *, status: str | None = None, limit: int = 500) -> list[Withdrawal]:
    if status is not None:
        lifecycle.parse_status_filter(lifecycle.WITHDRAWAL, status)
    q = db.session.query(Withdrawal).filter(Withdrawal.store_id == store_id)
    if status is not None:
        q = q.filter(Withdrawal.status == status)
    return q.order_by(Withdrawal.id.desc()).limit(limit).all()
