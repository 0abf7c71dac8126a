"""
Central warehouse tests: receiving, disposal and the dashboard summary.
"""

import pytest

from barstock.extensions import db
from barstock.models import AuditLog
from barstock.services import audit_service, deposit_service, transfer_service, warehouse_service
from barstock.validation import ConflictError, ForbiddenError, NotFoundError, ValidationError


@pytest.fixture
def received(branch_a, central, staff_a, hq_user):
    """Two bottles from branch A, received at the warehouse."""
    deposits = [
        deposit_service.create_deposit(
            store_id=branch_a.id,
            product_name=name,
            quantity=1,
            actor_id=staff_a.id,
            customer_name="Walk-in",
            is_no_deposit=True,
        )
        for name in ("Absolut", "Jameson")
    ]
    batch = transfer_service.create_batch(
        store_id=branch_a.id,
        deposit_ids=[d.id for d in deposits],
        destination_store_id=central.id,
        actor_id=staff_a.id,
    )
    transfer_service.confirm_batch(batch["batch_key"], actor_id=hq_user.id)
    return warehouse_service.list_hq_deposits(status="awaiting_withdrawal")


class TestDispose:

    def test_dispose_marks_withdrawn(self, received, hq_user):
        hq = warehouse_service.dispose(received[0].id, actor_id=hq_user.id, notes="poured out")

        assert hq.status == "withdrawn"
        assert hq.withdrawn_by == hq_user.id
        assert hq.withdrawn_at is not None
        assert hq.withdrawal_notes == "poured out"

        entry = db.session.query(AuditLog).filter_by(action_type=audit_service.HQ_DEPOSIT_WITHDRAWN).one()
        assert entry.record_id == str(hq.id)

    def test_second_dispose_conflicts(self, received, hq_user):
        warehouse_service.dispose(received[0].id, actor_id=hq_user.id)
        with pytest.raises(ConflictError):
            warehouse_service.dispose(received[0].id, actor_id=hq_user.id)

    def test_branch_staff_cannot_dispose(self, received, staff_a):
        with pytest.raises(ForbiddenError):
            warehouse_service.dispose(received[0].id, actor_id=staff_a.id)
        assert warehouse_service.get_hq_deposit(received[0].id).status == "awaiting_withdrawal"

    def test_unknown_record(self, hq_user):
        with pytest.raises(NotFoundError):
            warehouse_service.dispose(777, actor_id=hq_user.id)


class TestQueries:

    def test_list_filters(self, received, branch_a, branch_b, hq_user):
        warehouse_service.dispose(received[0].id, actor_id=hq_user.id)

        assert len(warehouse_service.list_hq_deposits()) == 2
        assert len(warehouse_service.list_hq_deposits(status="withdrawn")) == 1
        assert len(warehouse_service.list_hq_deposits(from_store_id=branch_a.id)) == 2
        assert warehouse_service.list_hq_deposits(from_store_id=branch_b.id) == []

    def test_bad_status_filter(self, app):
        with pytest.raises(ValidationError):
            warehouse_service.list_hq_deposits(status="lost")

    def test_summary_counts_per_branch(self, received, branch_a, branch_b, central, staff_a, staff_b, hq_user):
        """
        SCENARIO: Branch A has two bottles at HQ (one disposed) and one
                  more expired at the bar; branch B has one batch on the way
        EXPECTED: per-branch rows and totals; idle branches are left out
        """
        warehouse_service.dispose(received[0].id, actor_id=hq_user.id)
        deposit_service.create_deposit(
            store_id=branch_a.id, product_name="Leftover", quantity=1, actor_id=staff_a.id, is_no_deposit=True
        )
        b_deposit = deposit_service.create_deposit(
            store_id=branch_b.id, product_name="Gin", quantity=1, actor_id=staff_b.id, is_no_deposit=True
        )
        transfer_service.create_batch(
            store_id=branch_b.id, deposit_ids=[b_deposit.id], destination_store_id=central.id, actor_id=staff_b.id
        )

        summary = warehouse_service.warehouse_summary()

        assert summary["pending_transfers"] == 1
        assert summary["awaiting_withdrawal"] == 1
        assert summary["expired_deposits"] == 1
        assert summary["withdrawn"] == 1

        rows = {row["store_code"]: row for row in summary["branches"]}
        assert set(rows) == {"BRA", "BRB"}
        assert rows["BRA"]["awaiting_withdrawal"] == 1
        assert rows["BRA"]["expired_deposits"] == 1
        assert rows["BRA"]["pending_transfers"] == 0
        assert rows["BRB"]["pending_transfers"] == 1
        assert rows["BRB"]["store_name"] == "Branch B"

    def test_summary_of_empty_warehouse(self, branch_a, central):
        summary = warehouse_service.warehouse_summary()
        assert summary == {
            "pending_transfers": 0,
            "awaiting_withdrawal": 0,
            "expired_deposits": 0,
            "withdrawn": 0,
            "branches": [],
        }
