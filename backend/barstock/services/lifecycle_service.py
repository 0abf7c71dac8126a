# Overview: Service-layer transition tables; the single source of truth for legal status changes.

"""
Barstock Lifecycle Tables

================================================================================
PURPOSE: One explicit state machine per entity, checked before every write
================================================================================

Every engine asks require_transition() before it issues its conditional
UPDATE. A pair that is not listed here cannot be written, whatever the
caller believes the current status to be.

DEPOSIT:
    pending_confirm    -> in_store | expired
    in_store           -> in_store (partial withdrawal) | pending_withdrawal
                          | withdrawn | expired
    pending_withdrawal -> in_store | withdrawn | expired
    expired            -> transfer_pending
    transfer_pending   -> transferred_out | expired (batch rejected)
    transferred_out    -> expired (batch reverted)
    withdrawn          (terminal)

WITHDRAWAL:   pending -> approved | completed | rejected
              approved -> completed | rejected

TRANSFER ITEM: pending -> confirmed | rejected

HQ DEPOSIT:   awaiting_withdrawal -> withdrawn (terminal)

BORROW:       pending_approval -> approved | rejected
              approved -> pos_adjusting | completed
              pos_adjusting -> completed

COMPARISON:   pending -> explained -> approved | rejected
================================================================================
"""

from __future__ import annotations

from ..validation import ConflictError, ValidationError


DEPOSIT = "deposit"
WITHDRAWAL = "withdrawal"
TRANSFER_ITEM = "transfer_item"
HQ_DEPOSIT = "hq_deposit"
BORROW = "borrow"
COMPARISON = "comparison"


TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    DEPOSIT: {
        "pending_confirm": frozenset({"in_store", "expired"}),
        "in_store": frozenset({"in_store", "pending_withdrawal", "withdrawn", "expired"}),
        "pending_withdrawal": frozenset({"in_store", "withdrawn", "expired"}),
        "expired": frozenset({"transfer_pending"}),
        "transfer_pending": frozenset({"transferred_out", "expired"}),
        "transferred_out": frozenset({"expired"}),
        "withdrawn": frozenset(),
    },
    WITHDRAWAL: {
        "pending": frozenset({"approved", "completed", "rejected"}),
        "approved": frozenset({"completed", "rejected"}),
        "completed": frozenset(),
        "rejected": frozenset(),
    },
    TRANSFER_ITEM: {
        "pending": frozenset({"confirmed", "rejected"}),
        "confirmed": frozenset(),
        "rejected": frozenset(),
    },
    HQ_DEPOSIT: {
        "awaiting_withdrawal": frozenset({"withdrawn"}),
        "withdrawn": frozenset(),
    },
    BORROW: {
        "pending_approval": frozenset({"approved", "rejected"}),
        "approved": frozenset({"pos_adjusting", "completed"}),
        "pos_adjusting": frozenset({"completed"}),
        "completed": frozenset(),
        "rejected": frozenset(),
    },
    COMPARISON: {
        "pending": frozenset({"explained"}),
        "explained": frozenset({"approved", "rejected"}),
        "approved": frozenset(),
        "rejected": frozenset(),
    },
}


class LifecycleError(ConflictError):
    """
    Raised when a status change is not in the entity's transition table.

    A ConflictError: the usual cause is a stale view of the entity, and the
    caller should refresh rather than retry.
    """
    pass


def valid_statuses(entity: str) -> frozenset[str]:
    try:
        return frozenset(TRANSITIONS[entity])
    except KeyError:
        raise ValueError(f"Unknown entity '{entity}'")


def validate_status(entity: str, status: str) -> None:
    """
    Raises:
        LifecycleError: If status is not a state of this entity
    """
    if status not in valid_statuses(entity):
        raise LifecycleError(
            f"Invalid {entity} status '{status}'. "
            f"Must be one of: {', '.join(sorted(valid_statuses(entity)))}"
        )


def parse_status_filter(entity: str, status: str) -> str:
    """Query-string status filter; an unknown value is bad input, not a conflict."""
    if status not in valid_statuses(entity):
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(valid_statuses(entity)))}"
        )
    return status


def can_transition(entity: str, from_status: str, to_status: str) -> bool:
    """
    Check whether from_status -> to_status is listed for the entity.

    Unlike a generic state machine, a same-state pair is only legal where
    the table lists it (a partial withdrawal keeps a deposit in_store).
    """
    validate_status(entity, from_status)
    validate_status(entity, to_status)
    return to_status in TRANSITIONS[entity][from_status]


def require_transition(entity: str, from_status: str, to_status: str, *, label: str | None = None) -> None:
    """
    Raises:
        LifecycleError: If the transition is not allowed
    """
    if not can_transition(entity, from_status, to_status):
        what = label or entity
        raise LifecycleError(
            f"Cannot move {what} from '{from_status}' to '{to_status}'"
        )


def sources_for(entity: str, to_status: str) -> frozenset[str]:
    """All states from which ``to_status`` is reachable in one step."""
    validate_status(entity, to_status)
    return frozenset(
        src for src, targets in TRANSITIONS[entity].items() if to_status in targets
    )


def is_terminal(entity: str, status: str) -> bool:
    validate_status(entity, status)
    return not TRANSITIONS[entity][status]
