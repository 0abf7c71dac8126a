from datetime import timedelta

from barstock.extensions import db
from barstock.models import Store, User
from barstock.services import deposit_service
from barstock.time_utils import utcnow


def test_system_init_is_idempotent(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "init"])
    assert result.exit_code == 0
    assert "Created central store" in result.output

    result = runner.invoke(args=["system", "init"])
    assert "Using existing central store" in result.output
    assert db.session.query(Store).filter_by(is_central=True).count() == 1


def test_store_and_user_bootstrap(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["stores", "add", "--code", "BR1", "--name", "Branch 1", "--tolerance", "3"])
    assert "PASS" in result.output
    store = db.session.query(Store).filter_by(code="BR1").one()
    assert float(store.diff_tolerance) == 3.0

    result = runner.invoke(args=["stores", "add", "--code", "BR1", "--name", "Again"])
    assert "already exists" in result.output

    result = runner.invoke(args=[
        "users", "add", "--username", "somchai", "--role", "bar", "--store-id", str(store.id),
    ])
    assert result.exit_code == 0
    user = db.session.query(User).filter_by(username="somchai").one()
    assert [s.code for s in user.stores] == ["BR1"]

    result = runner.invoke(args=["users", "add", "--username", "ghost", "--role", "staff", "--store-id", "999"])
    assert "not found" in result.output

    result = runner.invoke(args=["users", "grant", "--user-id", str(user.id), "--store-id", str(store.id)])
    assert "already belongs" in result.output

    result = runner.invoke(args=["users", "list"])
    assert "somchai" in result.output


def test_expire_sweep_command(app, branch_a, bar_a):
    deposit = deposit_service.create_deposit(
        store_id=branch_a.id, product_name="Old rum", quantity=1, actor_id=bar_a.id,
        now=utcnow() - timedelta(days=40),
    )
    deposit_service.confirm_receipt(deposit.id, actor_id=bar_a.id)

    result = app.test_cli_runner().invoke(args=["deposits", "expire-sweep"])

    assert result.exit_code == 0
    assert "Expired 1 deposits." in result.output
    assert deposit_service.get_deposit(deposit.id).status == "expired"
