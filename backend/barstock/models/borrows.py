from __future__ import annotations

from ..extensions import db
from barstock.time_utils import to_utc_z
from barstock.validation import quantity_to_json


class Borrow(db.Model):
    """
    A stock loan between two branches.

    from_store_id is the borrower, to_store_id the lender. The borrow only
    completes once both sides have adjusted their POS stock
    (borrower_pos_confirmed and lender_pos_confirmed).

    Status values: pending_approval, approved, pos_adjusting, completed,
    rejected.
    """
    __tablename__ = "borrows"
    __table_args__ = (
        db.Index("ix_borrows_from_status", "from_store_id", "status"),
        db.Index("ix_borrows_to_status", "to_store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    status = db.Column(db.String(32), nullable=False, default="pending_approval", index=True)
    notes = db.Column(db.Text, nullable=True)

    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    borrower_photo_url = db.Column(db.String(500), nullable=True)
    lender_photo_url = db.Column(db.String(500), nullable=True)

    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    borrower_pos_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    borrower_pos_confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    borrower_pos_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    lender_pos_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    lender_pos_confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    lender_pos_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "BorrowItem",
        backref="borrow",
        lazy="selectin",
        order_by="BorrowItem.id",
        cascade="all, delete-orphan",
    )
    from_store = db.relationship("Store", foreign_keys=[from_store_id])
    to_store = db.relationship("Store", foreign_keys=[to_store_id])

    def __repr__(self) -> str:
        return f"<Borrow id={self.id} {self.from_store_id}->{self.to_store_id} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "from_store_id": self.from_store_id,
            "to_store_id": self.to_store_id,
            "status": self.status,
            "notes": self.notes,
            "requested_by": self.requested_by,
            "borrower_photo_url": self.borrower_photo_url,
            "lender_photo_url": self.lender_photo_url,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "borrower_pos_confirmed": self.borrower_pos_confirmed,
            "borrower_pos_confirmed_by": self.borrower_pos_confirmed_by,
            "borrower_pos_confirmed_at": to_utc_z(self.borrower_pos_confirmed_at),
            "lender_pos_confirmed": self.lender_pos_confirmed,
            "lender_pos_confirmed_by": self.lender_pos_confirmed_by,
            "lender_pos_confirmed_at": to_utc_z(self.lender_pos_confirmed_at),
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class BorrowItem(db.Model):
    __tablename__ = "borrow_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    borrow_id = db.Column(db.Integer, db.ForeignKey("borrows.id", ondelete="CASCADE"), nullable=False, index=True)

    product_name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    unit = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "borrow_id": self.borrow_id,
            "product_name": self.product_name,
            "category": self.category,
            "quantity": quantity_to_json(self.quantity),
            "unit": self.unit,
            "notes": self.notes,
        }
