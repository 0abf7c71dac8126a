from __future__ import annotations

from ..extensions import db
from barstock.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only trail of state transitions.

    Written after the transition it describes has committed. Rows are never
    updated.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_store_created", "store_id", "created_at"),
        db.Index("ix_audit_logs_record", "table_name", "record_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    action_type = db.Column(db.String(64), nullable=False, index=True)
    table_name = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.String(64), nullable=True)

    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)

    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "action_type": self.action_type,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": self.changed_by,
            "created_at": to_utc_z(self.created_at),
        }


class Notification(db.Model):
    """In-app notification; push and LINE delivery happen elsewhere."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    type = db.Column(db.String(64), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=True)
    data = db.Column(db.JSON, nullable=True)

    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "read": self.read,
            "created_at": to_utc_z(self.created_at),
        }
