from __future__ import annotations

from ..extensions import db
from barstock.time_utils import to_utc_z


user_stores = db.Table(
    "user_stores",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("store_id", db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True),
)


class Store(db.Model):
    """
    A bar branch, or the central warehouse (is_central=True).

    Expired deposits travel from branches to a central store; borrows only
    happen between two non-central stores.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_stores_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(120), nullable=False)

    is_central = db.Column(db.Boolean, nullable=False, default=False)
    active = db.Column(db.Boolean, nullable=False, default=True)

    # Percent; NULL means "use DEFAULT_DIFF_TOLERANCE"
    diff_tolerance = db.Column(db.Numeric(5, 2), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id} code={self.code!r} central={self.is_central}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_central": self.is_central,
            "active": self.active,
            "diff_tolerance": float(self.diff_tolerance) if self.diff_tolerance is not None else None,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Staff, owner, warehouse or customer identity.

    Authentication happens upstream; this table only answers "who acted"
    and "which stores may they act for".
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), nullable=False)
    display_name = db.Column(db.String(120), nullable=True)

    # owner, accountant, manager, bar, staff, hq, customer
    role = db.Column(db.String(16), nullable=False, default="staff", index=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    stores = db.relationship(
        "Store",
        secondary=user_stores,
        lazy="selectin",
        backref=db.backref("members", lazy=True),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    @property
    def name(self) -> str:
        return self.display_name or self.username

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "role": self.role,
            "active": self.active,
            "store_ids": sorted(s.id for s in self.stores),
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic named counters for human-readable document codes.

    One row per sequence key (e.g. "TRF-250114" for the transfer codes of
    one business day).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("sequence_key", name="uq_document_sequences_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence_key = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence_key": self.sequence_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
