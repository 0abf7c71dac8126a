from __future__ import annotations

from ..extensions import db
from barstock.time_utils import to_utc_z
from barstock.validation import quantity_to_json


class Comparison(db.Model):
    """
    Daily POS-vs-manual count for one product at one store.

    difference = manual_quantity - pos_quantity; diff_percent is relative
    to the POS figure. Either is NULL when a side was not counted (or POS
    reported zero, for the percentage).

    Status only moves forward: pending -> explained -> approved | rejected.
    The tolerance class is derived at read time, never stored.
    """
    __tablename__ = "comparisons"
    __table_args__ = (
        db.UniqueConstraint("store_id", "comp_date", "product_code", name="uq_comparisons_store_date_product"),
        db.Index("ix_comparisons_store_date", "store_id", "comp_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    comp_date = db.Column(db.Date, nullable=False)

    product_code = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(200), nullable=True)

    pos_quantity = db.Column(db.Numeric(10, 2), nullable=True)
    manual_quantity = db.Column(db.Numeric(10, 2), nullable=True)
    difference = db.Column(db.Numeric(10, 2), nullable=True)
    diff_percent = db.Column(db.Numeric(8, 2), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    explanation = db.Column(db.Text, nullable=True)
    explained_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    explained_at = db.Column(db.DateTime(timezone=True), nullable=True)

    owner_notes = db.Column(db.Text, nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("comparisons", lazy=True))

    def __repr__(self) -> str:
        return f"<Comparison id={self.id} {self.product_code}@{self.comp_date} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "comp_date": self.comp_date.isoformat() if self.comp_date else None,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "pos_quantity": quantity_to_json(self.pos_quantity),
            "manual_quantity": quantity_to_json(self.manual_quantity),
            "difference": quantity_to_json(self.difference),
            "diff_percent": quantity_to_json(self.diff_percent),
            "status": self.status,
            "explanation": self.explanation,
            "explained_by": self.explained_by,
            "explained_at": to_utc_z(self.explained_at),
            "owner_notes": self.owner_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "created_at": to_utc_z(self.created_at),
        }
