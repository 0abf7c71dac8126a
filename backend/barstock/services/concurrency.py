# Overview: Service-layer helpers for guarded writes; every state change in the engines goes through here.

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterable, Mapping

from sqlalchemy import update

from ..extensions import db
from ..validation import ConflictError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The conditional UPDATE that follows is what actually guards the write.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    One engine operation = one transaction.

    Commits when the block exits cleanly, rolls back and re-raises otherwise.
    Callers must not nest atomic() blocks; helpers used inside one only flush.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _expected_clause(model, column: str, value: Any):
    attr = getattr(model, column)
    if isinstance(value, (list, tuple, set, frozenset)):
        return attr.in_(list(value))
    if value is None:
        return attr.is_(None)
    return attr == value


def conditional_update_where(model, criteria: Iterable, expected: Mapping[str, Any], patch: Mapping[str, Any]) -> int:
    """
    UPDATE model SET <patch> WHERE <criteria> AND <expected columns match>.

    ``expected`` maps column name to the value the row must still hold; a
    list/tuple/set means "any of these". Returns the number of rows changed.

    Loaded instances of ``model`` are expired afterwards so the next
    attribute access re-reads the row.
    """
    clauses = list(criteria)
    clauses.extend(_expected_clause(model, column, value) for column, value in expected.items())

    stmt = (
        update(model)
        .where(*clauses)
        .values(**patch)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    for obj in list(db.session.identity_map.values()):
        if isinstance(obj, model):
            db.session.expire(obj)

    return result.rowcount


def conditional_update(model, row_id: int, expected: Mapping[str, Any], patch: Mapping[str, Any]) -> int:
    """Single-row form of conditional_update_where, keyed by primary key."""
    return conditional_update_where(model, [model.id == row_id], expected, patch)


def require_updated(rowcount: int, message: str, *, expected_rows: int = 1) -> None:
    """
    Fail the operation when a conditional write matched fewer rows than it
    had to. Someone else moved the entity first; the caller should refresh.
    """
    if rowcount < expected_rows:
        raise ConflictError(message)
