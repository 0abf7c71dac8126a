from __future__ import annotations

from ..extensions import db
from barstock.time_utils import to_utc_z
from barstock.validation import quantity_to_json


class TransferItem(db.Model):
    """
    One expired deposit travelling from a branch to the central warehouse.

    Items created together share a transfer_code and move as one batch.
    Rows written before codes existed have transfer_code NULL and form a
    batch of their own.

    Status values: pending, confirmed, rejected.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.Index("ix_transfers_code", "transfer_code"),
        db.Index("ix_transfers_to_status", "to_store_id", "status"),
        db.Index("ix_transfers_from_status", "from_store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_code = db.Column(db.String(32), nullable=True)

    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    deposit_id = db.Column(db.Integer, db.ForeignKey("deposits.id"), nullable=False, index=True)

    product_name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    photo_url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirm_photo_url = db.Column(db.String(500), nullable=True)
    rejected_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    deposit = db.relationship("Deposit", backref=db.backref("transfer_items", lazy=True))
    from_store = db.relationship("Store", foreign_keys=[from_store_id])
    to_store = db.relationship("Store", foreign_keys=[to_store_id])

    @property
    def batch_key(self) -> str:
        return self.transfer_code or f"LEGACY-{self.id}"

    def __repr__(self) -> str:
        return f"<TransferItem id={self.id} code={self.transfer_code} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_code": self.transfer_code,
            "batch_key": self.batch_key,
            "from_store_id": self.from_store_id,
            "to_store_id": self.to_store_id,
            "deposit_id": self.deposit_id,
            "product_name": self.product_name,
            "quantity": quantity_to_json(self.quantity),
            "status": self.status,
            "requested_by": self.requested_by,
            "photo_url": self.photo_url,
            "notes": self.notes,
            "confirmed_by": self.confirmed_by,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirm_photo_url": self.confirm_photo_url,
            "rejected_by": self.rejected_by,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }


class HqDeposit(db.Model):
    """
    Warehouse-side record of a received transfer item.

    Exactly one per confirmed TransferItem (unique transfer_id).
    Status values: awaiting_withdrawal, withdrawn (terminal).
    """
    __tablename__ = "hq_deposits"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", name="uq_hq_deposits_transfer"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False)
    deposit_id = db.Column(db.Integer, db.ForeignKey("deposits.id"), nullable=False, index=True)
    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Copied at receipt so the warehouse list reads without joins
    transfer_code = db.Column(db.String(32), nullable=True)
    deposit_code = db.Column(db.String(32), nullable=True)
    product_name = db.Column(db.String(200), nullable=False)
    customer_name = db.Column(db.String(120), nullable=True)
    category = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(db.String(32), nullable=False, default="awaiting_withdrawal", index=True)

    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_photo_url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    withdrawn_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    withdrawn_at = db.Column(db.DateTime(timezone=True), nullable=True)
    withdrawal_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    transfer = db.relationship("TransferItem", backref=db.backref("hq_deposit", uselist=False))

    def __repr__(self) -> str:
        return f"<HqDeposit id={self.id} transfer_id={self.transfer_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "deposit_id": self.deposit_id,
            "from_store_id": self.from_store_id,
            "transfer_code": self.transfer_code,
            "deposit_code": self.deposit_code,
            "product_name": self.product_name,
            "customer_name": self.customer_name,
            "category": self.category,
            "quantity": quantity_to_json(self.quantity),
            "status": self.status,
            "received_by": self.received_by,
            "received_at": to_utc_z(self.received_at),
            "received_photo_url": self.received_photo_url,
            "notes": self.notes,
            "withdrawn_by": self.withdrawn_by,
            "withdrawn_at": to_utc_z(self.withdrawn_at),
            "withdrawal_notes": self.withdrawal_notes,
            "created_at": to_utc_z(self.created_at),
        }
