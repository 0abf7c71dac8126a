from __future__ import annotations

from ..extensions import db
from barstock.time_utils import to_utc_z
from barstock.validation import quantity_to_json


class Deposit(db.Model):
    """
    One bottle (or partial bottle) a customer left at a store.

    remaining_qty only ever decreases, through completed withdrawals or a
    bar rejection. Rows are never deleted; the audit log refers to them.

    Status values: pending_confirm, in_store, pending_withdrawal, withdrawn,
    expired, transfer_pending, transferred_out.
    """
    __tablename__ = "deposits"
    __table_args__ = (
        db.UniqueConstraint("deposit_code", name="uq_deposits_code"),
        db.CheckConstraint("remaining_qty >= 0", name="ck_deposits_remaining_non_negative"),
        db.CheckConstraint("remaining_qty <= quantity", name="ck_deposits_remaining_le_quantity"),
        db.Index("ix_deposits_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    deposit_code = db.Column(db.String(32), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Customer identity is optional: walk-ins are recorded by name only
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(120), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    table_number = db.Column(db.String(16), nullable=True)

    product_name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    remaining_qty = db.Column(db.Numeric(10, 2), nullable=False)
    remaining_percent = db.Column(db.Numeric(5, 2), nullable=False, default=100)

    status = db.Column(db.String(32), nullable=False, default="pending_confirm", index=True)

    is_vip = db.Column(db.Boolean, nullable=False, default=False)
    is_no_deposit = db.Column(db.Boolean, nullable=False, default=False)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    photo_url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Bar confirmation / rejection
    confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirm_photo_url = db.Column(db.String(500), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    store = db.relationship("Store", backref=db.backref("deposits", lazy=True))
    withdrawals = db.relationship(
        "Withdrawal",
        backref="deposit",
        lazy=True,
        order_by="Withdrawal.id",
    )

    def __repr__(self) -> str:
        return f"<Deposit id={self.id} code={self.deposit_code} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deposit_code": self.deposit_code,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "table_number": self.table_number,
            "product_name": self.product_name,
            "category": self.category,
            "quantity": quantity_to_json(self.quantity),
            "remaining_qty": quantity_to_json(self.remaining_qty),
            "remaining_percent": quantity_to_json(self.remaining_percent),
            "status": self.status,
            "is_vip": self.is_vip,
            "is_no_deposit": self.is_no_deposit,
            "expiry_date": to_utc_z(self.expiry_date),
            "received_by": self.received_by,
            "photo_url": self.photo_url,
            "notes": self.notes,
            "confirmed_by": self.confirmed_by,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirm_photo_url": self.confirm_photo_url,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Withdrawal(db.Model):
    """
    A request to take some of a deposit back out.

    Status values: pending, approved, completed, rejected.
    actual_qty is only set on completion.
    """
    __tablename__ = "withdrawals"
    __table_args__ = (
        db.Index("ix_withdrawals_deposit_status", "deposit_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    deposit_id = db.Column(db.Integer, db.ForeignKey("deposits.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    requested_qty = db.Column(db.Numeric(10, 2), nullable=False)
    actual_qty = db.Column(db.Numeric(10, 2), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    photo_url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Withdrawal id={self.id} deposit_id={self.deposit_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deposit_id": self.deposit_id,
            "store_id": self.store_id,
            "requested_qty": quantity_to_json(self.requested_qty),
            "actual_qty": quantity_to_json(self.actual_qty),
            "status": self.status,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at),
            "photo_url": self.photo_url,
            "notes": self.notes,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }
