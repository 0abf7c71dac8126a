"""
HTTP tests for the deposit, transfer, warehouse and comparison routes.
"""


def _headers(user):
    return {"X-User-Id": str(user.id)}


class TestDepositRoutes:

    def test_deposit_and_withdrawal_over_http(self, client, branch_a, bar_a, customer):
        resp = client.post(
            "/api/deposits",
            json={"store_id": branch_a.id, "product_name": "Chivas 12", "quantity": 1, "customer_id": customer.id},
            headers=_headers(bar_a),
        )
        assert resp.status_code == 201
        deposit = resp.get_json()
        assert deposit["status"] == "pending_confirm"
        assert deposit["remaining_qty"] == 1.0

        resp = client.post(f"/api/deposits/{deposit['id']}/confirm", json={}, headers=_headers(bar_a))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "in_store"

        resp = client.post(
            f"/api/deposits/{deposit['id']}/withdrawals", json={"requested_qty": 0.25}, headers=_headers(customer)
        )
        assert resp.status_code == 201
        withdrawal_id = resp.get_json()["id"]

        resp = client.post(
            f"/api/deposits/withdrawals/{withdrawal_id}/complete", json={"actual_qty": 0.25}, headers=_headers(bar_a)
        )
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "completed"

        resp = client.get(f"/api/deposits/{deposit['id']}", headers=_headers(customer))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["remaining_qty"] == 0.75
        assert body["remaining_percent"] == 75.0
        assert [w["id"] for w in body["withdrawals"]] == [withdrawal_id]

    def test_error_mapping(self, client, branch_a, bar_a, staff_b):
        resp = client.post("/api/deposits", json={"product_name": "Beer", "quantity": 1}, headers=_headers(bar_a))
        assert resp.status_code == 400

        resp = client.post(
            "/api/deposits", json={"store_id": branch_a.id, "product_name": "Beer", "quantity": 1},
            headers=_headers(staff_b),
        )
        assert resp.status_code == 403

        assert client.post("/api/deposits/999/confirm", json={}, headers=_headers(bar_a)).status_code == 404

        created = client.post(
            "/api/deposits", json={"store_id": branch_a.id, "product_name": "Beer", "quantity": 1},
            headers=_headers(bar_a),
        ).get_json()
        client.post(f"/api/deposits/{created['id']}/confirm", json={}, headers=_headers(bar_a))
        resp = client.post(f"/api/deposits/{created['id']}/confirm", json={}, headers=_headers(bar_a))
        assert resp.status_code == 409

    def test_flags_must_be_json_booleans(self, client, branch_a, bar_a):
        """
        SCENARIO: is_vip arrives as the string "false".
        EXPECTED: 400 and no deposit written, instead of a VIP deposit.
        """
        resp = client.post(
            "/api/deposits",
            json={"store_id": branch_a.id, "product_name": "Beer", "quantity": 1, "is_vip": "false"},
            headers=_headers(bar_a),
        )
        assert resp.status_code == 400
        assert "is_vip" in resp.get_json()["error"]
        assert client.get(f"/api/deposits?store_id={branch_a.id}", headers=_headers(bar_a)).get_json() == {"deposits": []}

        resp = client.post(
            "/api/deposits",
            json={"store_id": branch_a.id, "product_name": "Beer", "quantity": 1, "is_vip": False},
            headers=_headers(bar_a),
        )
        assert resp.status_code == 201
        assert resp.get_json()["is_vip"] is False

    def test_list_requires_store(self, client, branch_a, bar_a):
        assert client.get("/api/deposits", headers=_headers(bar_a)).status_code == 400
        resp = client.get(f"/api/deposits?store_id={branch_a.id}&status=bogus", headers=_headers(bar_a))
        assert resp.status_code == 400
        resp = client.get(f"/api/deposits?store_id={branch_a.id}", headers=_headers(bar_a))
        assert resp.get_json() == {"deposits": []}


class TestTransferAndWarehouseRoutes:

    def test_ship_receive_dispose(self, client, branch_a, central, staff_a, hq_user):
        deposit_id = client.post(
            "/api/deposits",
            json={"store_id": branch_a.id, "product_name": "Gin", "quantity": 1, "is_no_deposit": True},
            headers=_headers(staff_a),
        ).get_json()["id"]

        resp = client.post(
            "/api/transfers",
            json={"store_id": branch_a.id, "deposit_ids": [deposit_id], "destination_store_id": central.id},
            headers=_headers(staff_a),
        )
        assert resp.status_code == 201
        code = resp.get_json()["transfer_code"]

        resp = client.get(f"/api/transfers?store_id={central.id}&perspective=receiving", headers=_headers(hq_user))
        assert [b["batch_key"] for b in resp.get_json()["pending"]] == [code]

        resp = client.post(f"/api/transfers/{code}/reject", json={}, headers=_headers(hq_user))
        assert resp.status_code == 400

        resp = client.post(f"/api/transfers/{code}/confirm", json={}, headers=_headers(hq_user))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "confirmed"

        hq_deposits = client.get("/api/warehouse/deposits", headers=_headers(hq_user)).get_json()["hq_deposits"]
        assert len(hq_deposits) == 1

        resp = client.post(f"/api/warehouse/deposits/{hq_deposits[0]['id']}/dispose", json={}, headers=_headers(hq_user))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "withdrawn"

        summary = client.get("/api/warehouse/summary", headers=_headers(hq_user)).get_json()
        assert summary["withdrawn"] == 1

    def test_missing_fields(self, client, staff_a, branch_a):
        resp = client.post("/api/transfers", json={"store_id": branch_a.id}, headers=_headers(staff_a))
        assert resp.status_code == 400

    def _received_batch(self, client, branch_a, central, staff_a, hq_user):
        deposit_id = client.post(
            "/api/deposits",
            json={"store_id": branch_a.id, "product_name": "Rum", "quantity": 1, "is_no_deposit": True},
            headers=_headers(staff_a),
        ).get_json()["id"]
        code = client.post(
            "/api/transfers",
            json={"store_id": branch_a.id, "deposit_ids": [deposit_id], "destination_store_id": central.id},
            headers=_headers(staff_a),
        ).get_json()["transfer_code"]
        client.post(f"/api/transfers/{code}/confirm", json={}, headers=_headers(hq_user))
        return code

    def test_reads_are_scoped_to_store_members(
        self, client, branch_a, branch_b, central, staff_a, staff_b, hq_user, customer
    ):
        """
        SCENARIO: A customer and staff of an unrelated branch read a received batch.
        EXPECTED: 403 on the batch, the warehouse list and the summary.
        """
        code = self._received_batch(client, branch_a, central, staff_a, hq_user)

        for outsider in (customer, staff_b):
            assert client.get(f"/api/transfers/{code}", headers=_headers(outsider)).status_code == 403
            assert client.get("/api/warehouse/deposits", headers=_headers(outsider)).status_code == 403
            assert client.get("/api/warehouse/summary", headers=_headers(outsider)).status_code == 403
            resp = client.get(f"/api/warehouse/deposits?from_store_id={branch_a.id}", headers=_headers(outsider))
            assert resp.status_code == 403

    def test_branch_members_see_their_own_shipments(self, client, branch_a, central, staff_a, hq_user):
        """
        SCENARIO: The sending branch's staff read their batch and their warehouse records.
        EXPECTED: Allowed when scoped to their branch, refused for the whole warehouse.
        """
        code = self._received_batch(client, branch_a, central, staff_a, hq_user)

        resp = client.get(f"/api/transfers/{code}", headers=_headers(staff_a))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "confirmed"

        resp = client.get(f"/api/warehouse/deposits?from_store_id={branch_a.id}", headers=_headers(staff_a))
        assert resp.status_code == 200
        assert len(resp.get_json()["hq_deposits"]) == 1

        assert client.get("/api/warehouse/deposits", headers=_headers(staff_a)).status_code == 403
        assert client.get("/api/warehouse/summary", headers=_headers(staff_a)).status_code == 403

    def test_central_store_staff_see_the_warehouse(self, client, branch_a, central, staff_a, hq_user, make_user):
        clerk = make_user("warehouse_clerk", "staff", [central])
        self._received_batch(client, branch_a, central, staff_a, hq_user)

        resp = client.get("/api/warehouse/deposits", headers=_headers(clerk))
        assert resp.status_code == 200
        assert len(resp.get_json()["hq_deposits"]) == 1
        assert client.get("/api/warehouse/summary", headers=_headers(clerk)).status_code == 200


class TestComparisonRoutes:

    def test_generate_explain_review(self, client, branch_a, staff_a, owner):
        resp = client.post(
            "/api/comparisons/generate",
            json={
                "store_id": branch_a.id,
                "comp_date": "2026-01-14",
                "manual_counts": {"WINE": 10, "BEER": 100},
                "pos_counts": {"WINE": 12, "BEER": 100},
            },
            headers=_headers(staff_a),
        )
        assert resp.status_code == 201
        rows = {c["product_code"]: c for c in resp.get_json()["comparisons"]}
        assert rows["WINE"]["tolerance_class"] == "over_tolerance"
        assert rows["BEER"]["tolerance_class"] == "match"

        wine_id = rows["WINE"]["id"]
        resp = client.post(
            "/api/comparisons/explain", json={"explanations": {str(wine_id): "spilled"}}, headers=_headers(staff_a)
        )
        assert resp.get_json() == {"submitted": [wine_id], "failed": []}

        resp = client.post(f"/api/comparisons/{wine_id}/approve", json={}, headers=_headers(staff_a))
        assert resp.status_code == 403

        resp = client.post("/api/comparisons/reject", json={"ids": [wine_id]}, headers=_headers(owner))
        assert resp.status_code == 200
        assert resp.get_json()["comparisons"][0]["owner_notes"] == "rejected in batch"
        assert resp.get_json()["comparisons"][0]["tolerance_class"] == "over_tolerance"

        resp = client.get(f"/api/comparisons?store_id={branch_a.id}&status=rejected", headers=_headers(owner))
        assert [c["id"] for c in resp.get_json()["comparisons"]] == [wine_id]

    def test_bulk_approve_reports_tolerance_class(self, client, branch_a, staff_a, owner):
        rows = client.post(
            "/api/comparisons/generate",
            json={
                "store_id": branch_a.id,
                "comp_date": "2026-01-15",
                "manual_counts": {"GIN": 4},
                "pos_counts": {"GIN": 8},
            },
            headers=_headers(staff_a),
        ).get_json()["comparisons"]
        gin_id = rows[0]["id"]
        client.post(f"/api/comparisons/{gin_id}/explain", json={"explanation": "broken bottles"}, headers=_headers(staff_a))

        resp = client.post("/api/comparisons/approve", json={"ids": [gin_id]}, headers=_headers(owner))

        assert resp.status_code == 200
        approved = resp.get_json()["comparisons"]
        assert [c["status"] for c in approved] == ["approved"]
        assert approved[0]["tolerance_class"] == "over_tolerance"
