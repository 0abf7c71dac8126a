# Overview: Audit sink; appends one audit_logs row per committed state transition.

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import AuditLog
from barstock.time_utils import to_utc_z, utcnow


# Deposits / withdrawals
DEPOSIT_CREATED = "DEPOSIT_CREATED"
DEPOSIT_BAR_CONFIRMED = "DEPOSIT_BAR_CONFIRMED"
DEPOSIT_BAR_REJECTED = "DEPOSIT_BAR_REJECTED"
WITHDRAWAL_REQUESTED = "WITHDRAWAL_REQUESTED"
WITHDRAWAL_APPROVED = "WITHDRAWAL_APPROVED"
WITHDRAWAL_COMPLETED = "WITHDRAWAL_COMPLETED"
WITHDRAWAL_REJECTED = "WITHDRAWAL_REJECTED"
CRON_DEPOSIT_EXPIRED = "CRON_DEPOSIT_EXPIRED"

# Transfers / warehouse
TRANSFER_CREATED = "TRANSFER_CREATED"
TRANSFER_CONFIRMED = "TRANSFER_CONFIRMED"
TRANSFER_REJECTED = "TRANSFER_REJECTED"
TRANSFER_CANCELLED = "TRANSFER_CANCELLED"
HQ_DEPOSIT_WITHDRAWN = "HQ_DEPOSIT_WITHDRAWN"

# Borrows
BORROW_REQUESTED = "BORROW_REQUESTED"
BORROW_APPROVED = "BORROW_APPROVED"
BORROW_REJECTED = "BORROW_REJECTED"
BORROW_POS_CONFIRMED = "BORROW_POS_CONFIRMED"
BORROW_COMPLETED = "BORROW_COMPLETED"
BORROW_PHOTO_UPLOADED = "BORROW_PHOTO_UPLOADED"

# Stock comparisons
STOCK_COMPARISON_GENERATED = "STOCK_COMPARISON_GENERATED"
STOCK_EXPLANATION_SUBMITTED = "STOCK_EXPLANATION_SUBMITTED"
STOCK_EXPLANATION_BATCH = "STOCK_EXPLANATION_BATCH"
STOCK_APPROVED = "STOCK_APPROVED"
STOCK_REJECTED = "STOCK_REJECTED"
STOCK_BATCH_APPROVED = "STOCK_BATCH_APPROVED"
STOCK_BATCH_REJECTED = "STOCK_BATCH_REJECTED"


def _jsonable(value: Any) -> Any:
    """NUMERIC and datetime columns are not JSON; flatten them for the JSON columns."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


def record(
    *,
    store_id: int | None,
    action_type: str,
    table_name: str,
    record_id: int | str | None,
    old_value: dict | None = None,
    new_value: dict | None = None,
    actor_id: int | None = None,
) -> AuditLog | None:
    """
    Append an audit entry in its own commit.

    Must be called after the transition it describes has committed. A failure
    here is rolled back and logged; it never undoes the transition, so the
    caller gets None instead of an exception.
    """
    try:
        entry = AuditLog(
            store_id=store_id,
            action_type=action_type,
            table_name=table_name,
            record_id=str(record_id) if record_id is not None else None,
            old_value=_jsonable(old_value),
            new_value=_jsonable(new_value),
            changed_by=actor_id,
            created_at=utcnow(),
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        current_app.logger.warning(
            "Audit write failed: %s %s/%s", action_type, table_name, record_id, exc_info=True
        )
        return None


def list_entries(
    *,
    table_name: str | None = None,
    record_id: int | str | None = None,
    store_id: int | None = None,
    action_type: str | None = None,
    limit: int = 200,
) -> list[AuditLog]:
    q = db.session.query(AuditLog)
    if table_name is not None:
        q = q.filter(AuditLog.table_name == table_name)
    if record_id is not None:
        q = q.filter(AuditLog.record_id == str(record_id))
    if store_id is not None:
        q = q.filter(AuditLog.store_id == store_id)
    if action_type is not None:
        q = q.filter(AuditLog.action_type == action_type)
    return q.order_by(AuditLog.id.asc()).limit(limit).all()
