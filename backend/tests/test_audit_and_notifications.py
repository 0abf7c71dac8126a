import unittest
from datetime import datetime
from decimal import Decimal

from flask import Flask

from barstock.extensions import db
from barstock.models import AuditLog, Notification, Store, User
from barstock.services import audit_service, notification_service


class AuditAndNotificationTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config.update(
            SECRET_KEY="test",
            SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
            SQLALCHEMY_TRACK_MODIFICATIONS=False,
            TESTING=True,
        )
        db.init_app(cls.app)
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        from barstock import models  # noqa: F401
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(Notification).delete()
        db.session.query(AuditLog).delete()
        for user in db.session.query(User).all():
            db.session.delete(user)
        db.session.query(Store).delete()
        db.session.commit()

        self.store = Store(code="BR1", name="Branch 1", is_central=False, active=True)
        db.session.add(self.store)
        db.session.flush()

        self.staff = User(username="staff", role="staff", active=True)
        self.bar = User(username="bar", role="bar", active=True)
        self.owner = User(username="owner", role="owner", active=True)
        self.retired = User(username="retired", role="staff", active=False)
        for user in (self.staff, self.bar, self.owner, self.retired):
            user.stores.append(self.store)
            db.session.add(user)
        db.session.commit()

    def test_audit_entry_flattens_numbers_and_dates(self):
        entry = audit_service.record(
            store_id=self.store.id,
            action_type=audit_service.DEPOSIT_CREATED,
            table_name="deposits",
            record_id=42,
            new_value={"quantity": Decimal("1.50"), "expiry_date": datetime(2026, 2, 1, 12, 0)},
            actor_id=self.staff.id,
        )

        self.assertIsNotNone(entry)
        stored = db.session.get(AuditLog, entry.id)
        self.assertEqual(stored.record_id, "42")
        self.assertEqual(stored.new_value, {"quantity": 1.5, "expiry_date": "2026-02-01T12:00:00Z"})
        self.assertEqual(stored.changed_by, self.staff.id)

    def test_failed_audit_write_is_swallowed_and_logged(self):
        with self.assertLogs(self.app.logger, level="WARNING"):
            entry = audit_service.record(
                store_id=self.store.id,
                action_type=None,
                table_name="deposits",
                record_id=1,
            )
        self.assertIsNone(entry)
        self.assertEqual(db.session.query(AuditLog).count(), 0)

        # The session is usable again after the rollback
        self.assertIsNotNone(audit_service.record(
            store_id=None, action_type=audit_service.CRON_DEPOSIT_EXPIRED, table_name="deposits", record_id=1,
        ))

    def test_list_entries_filters(self):
        for record_id in (1, 2):
            audit_service.record(
                store_id=self.store.id,
                action_type=audit_service.WITHDRAWAL_REQUESTED,
                table_name="withdrawals",
                record_id=record_id,
            )
        entries = audit_service.list_entries(table_name="withdrawals", record_id=2)
        self.assertEqual([e.record_id for e in entries], ["2"])

    def test_store_staff_excludes_actor_and_inactive(self):
        sent = notification_service.notify_store_staff(
            store_id=self.store.id,
            type="deposit_pending_confirm",
            title="New deposit",
            exclude_user_id=self.staff.id,
        )

        self.assertEqual(sent, 1)
        rows = db.session.query(Notification).all()
        self.assertEqual([n.user_id for n in rows], [self.bar.id])

    def test_owners_only(self):
        sent = notification_service.notify_store_owners(store_id=self.store.id, type="stock_alert", title="Alert")
        self.assertEqual(sent, 1)
        self.assertEqual(db.session.query(Notification).one().user_id, self.owner.id)

    def test_notify_without_recipient_is_noop(self):
        self.assertEqual(
            notification_service.notify_user(user_id=None, store_id=self.store.id, type="x", title="x"), 0
        )
        self.assertEqual(db.session.query(Notification).count(), 0)

    def test_unread_listing(self):
        notification_service.notify_user(user_id=self.bar.id, store_id=None, type="a", title="first")
        notification_service.notify_user(user_id=self.bar.id, store_id=None, type="b", title="second")
        first = db.session.query(Notification).filter_by(type="a").one()
        first.read = True
        db.session.commit()

        unread = notification_service.list_for_user(self.bar.id, unread_only=True)
        self.assertEqual([n.title for n in unread], ["second"])
        self.assertEqual(len(notification_service.list_for_user(self.bar.id)), 2)


if __name__ == "__main__":
    unittest.main()
