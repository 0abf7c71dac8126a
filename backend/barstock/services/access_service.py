from __future__ import annotations

from ..extensions import db
from ..models import User, Store, user_stores
from ..validation import ForbiddenError, NotFoundError


# Roles that reach every store without a user_stores row
GLOBAL_ROLES = frozenset({"owner", "hq"})

# Roles allowed to approve or reject stock explanations
REVIEWER_ROLES = frozenset({"owner", "accountant"})

ROLES = frozenset({"owner", "accountant", "manager", "bar", "staff", "hq", "customer"})


def get_user(user_id: int | None) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.active:
        raise NotFoundError("User not found")
    return user


def get_store(store_id: int | None) -> Store:
    store = db.session.get(Store, store_id) if store_id is not None else None
    if store is None:
        raise NotFoundError("Store not found")
    return store


def get_member_store_ids(user_id: int) -> set[int]:
    rows = db.session.query(user_stores.c.store_id).filter(user_stores.c.user_id == user_id).all()
    return {row[0] for row in rows}


def user_can_access_store(user: User, store_id: int | None) -> bool:
    if store_id is None:
        return False
    if user.role in GLOBAL_ROLES:
        return True
    return store_id in get_member_store_ids(user.id)


def require_store_access(actor_id: int | None, store_id: int | None, *, action: str = "act for this store") -> User:
    """
    Resolve the actor and check they belong to the store.

    Raises:
        NotFoundError: Unknown or inactive actor
        ForbiddenError: Actor is not a member of the store
    """
    user = get_user(actor_id)
    if not user_can_access_store(user, store_id):
        raise ForbiddenError(f"Not allowed to {action}")
    return user


def require_reviewer(actor_id: int | None, store_id: int) -> User:
    """Owner/accountant who can also see the store."""
    user = require_store_access(actor_id, store_id, action="review stock comparisons for this store")
    if user.role not in REVIEWER_ROLES:
        raise ForbiddenError("Only owners and accountants can review stock comparisons")
    return user


def can_view_warehouse(user: User) -> bool:
    """Owners and HQ reach the warehouse; anyone else needs a central-store membership."""
    if user.role in GLOBAL_ROLES:
        return True
    return (
        db.session.query(Store.id)
        .join(user_stores, user_stores.c.store_id == Store.id)
        .filter(user_stores.c.user_id == user.id, Store.is_central.is_(True))
        .first()
        is not None
    )


def require_warehouse_access(actor_id: int | None) -> User:
    user = get_user(actor_id)
    if not can_view_warehouse(user):
        raise ForbiddenError("Not allowed to view the central warehouse")
    return user


def grant_store_access(*, user_id: int, store_id: int) -> bool:
    """Add a user_stores row. Returns False when it already existed."""
    user = get_user(user_id)
    store = get_store(store_id)
    if store in user.stores:
        return False
    user.stores.append(store)
    db.session.commit()
    return True


def store_member_ids(store_id: int, *, roles: set[str] | frozenset[str] | None = None) -> list[int]:
    """Active users attached to a store, optionally restricted to roles."""
    q = (
        db.session.query(User.id)
        .join(user_stores, user_stores.c.user_id == User.id)
        .filter(user_stores.c.store_id == store_id, User.active.is_(True))
    )
    if roles:
        q = q.filter(User.role.in_(list(roles)))
    return [row[0] for row in q.order_by(User.id.asc()).all()]
