# Overview: Service-layer operations for document codes; allocates sequential numbers atomically.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..validation import ConflictError
from barstock.time_utils import business_date


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_number(sequence_key: str) -> int:
    """
    Atomically allocate the next number of a named sequence.

    Must run inside the caller's transaction (only flushes). The first
    caller of a new key inserts the row; if two callers race on that insert
    the loser gets a ConflictError and its whole operation rolls back.
    """
    if not sequence_key:
        raise DocumentSequenceError("sequence_key is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.sequence_key == sequence_key)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(sequence_key=sequence_key)
            .scalar()
        )
        return current - 1

    seq = DocumentSequence(sequence_key=sequence_key, next_number=2)
    db.session.add(seq)
    try:
        db.session.flush()
    except IntegrityError:
        raise ConflictError("Document number allocation collided, please submit again")
    return 1


def next_transfer_code(at: datetime | None = None) -> str:
    """
    TRF-YYMMDD-NNNN, numbered per business day.

    The day boundary follows BUSINESS_TIMEZONE, not UTC.
    """
    day = business_date(current_app.config["BUSINESS_TIMEZONE"], at)
    prefix = f"TRF-{day.strftime('%y%m%d')}"
    return f"{prefix}-{next_number(prefix):04d}"
