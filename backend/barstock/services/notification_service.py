# Overview: Notifier; writes in-app notification rows after a transition has committed.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Notification
from .access_service import store_member_ids


STAFF_ROLES = frozenset({"staff", "bar"})
OWNER_ROLES = frozenset({"owner"})


def _write(payloads: list[dict]) -> int:
    """Best-effort: a failed write is logged and reported as 0 sent."""
    if not payloads:
        return 0
    try:
        db.session.add_all([Notification(**p) for p in payloads])
        db.session.commit()
        return len(payloads)
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Notification write failed (%d rows)", len(payloads), exc_info=True)
        return 0


def notify_user(
    *,
    user_id: int | None,
    store_id: int | None,
    type: str,
    title: str,
    body: str | None = None,
    data: dict | None = None,
) -> int:
    if user_id is None:
        return 0
    return _write([
        dict(user_id=user_id, store_id=store_id, type=type, title=title, body=body, data=data)
    ])


def _notify_many(user_ids: list[int], *, store_id, type, title, body, data, exclude_user_id) -> int:
    payloads = [
        dict(user_id=uid, store_id=store_id, type=type, title=title, body=body, data=data)
        for uid in user_ids
        if uid != exclude_user_id
    ]
    return _write(payloads)


def notify_store_staff(
    *,
    store_id: int,
    type: str,
    title: str,
    body: str | None = None,
    data: dict | None = None,
    exclude_user_id: int | None = None,
) -> int:
    """Every staff/bar member of the store, minus the actor when given."""
    try:
        user_ids = store_member_ids(store_id, roles=STAFF_ROLES)
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Could not resolve staff of store %s", store_id, exc_info=True)
        return 0
    return _notify_many(
        user_ids, store_id=store_id, type=type, title=title, body=body, data=data,
        exclude_user_id=exclude_user_id,
    )


def notify_store_owners(
    *,
    store_id: int,
    type: str,
    title: str,
    body: str | None = None,
    data: dict | None = None,
) -> int:
    try:
        user_ids = store_member_ids(store_id, roles=OWNER_ROLES)
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Could not resolve owners of store %s", store_id, exc_info=True)
        return 0
    return _notify_many(
        user_ids, store_id=store_id, type=type, title=title, body=body, data=data,
        exclude_user_id=None,
    )


def list_for_user(user_id: int, *, unread_only: bool = False, limit: int = 100) -> list[Notification]:
    q = db.session.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    return q.order_by(Notification.id.desc()).limit(limit).all()
