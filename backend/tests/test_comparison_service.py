"""
Stock comparison tests: classification, generation, explanation and review.
"""

from datetime import date
from decimal import Decimal

import pytest

from barstock.extensions import db
from barstock.models import AuditLog, Comparison, Notification
from barstock.services import audit_service, comparison_service
from barstock.validation import ConflictError, ForbiddenError, NotFoundError, ValidationError


DAY = date(2026, 1, 14)

MANUAL = {"BEER": 95, "WINE": 10, "GIN": 4}
POS = {"BEER": 100, "WINE": 12, "RUM": 3}
NAMES = {"BEER": "Singha 620ml", "WINE": "House red", "GIN": "Bombay", "RUM": "Sailor Jerry"}


def _generate(store, actor=None, manual=MANUAL, pos=POS, day=DAY):
    rows = comparison_service.generate_comparisons(
        store_id=store.id,
        comp_date=day,
        manual_counts=manual,
        pos_counts=pos,
        product_names=NAMES,
        actor_id=actor.id if actor else None,
    )
    return {c.product_code: c for c in rows}


class TestClassify:

    @pytest.mark.parametrize("percent, difference, expected", [
        (0, 0, "match"),
        (Decimal("-5.00"), -5, "within_tolerance"),
        (Decimal("4.99"), 1, "within_tolerance"),
        (Decimal("5.01"), 1, "over_tolerance"),
        (Decimal("-16.67"), -2, "over_tolerance"),
        (None, 3, "over_tolerance"),
        (None, 0, "match"),
        (None, None, "unmeasured"),
    ])
    def test_classes(self, percent, difference, expected):
        assert comparison_service.classify(percent, difference=difference, tolerance=5) == expected

    def test_custom_tolerance(self):
        assert comparison_service.classify(Decimal("8"), tolerance=10) == "within_tolerance"
        assert comparison_service.classify(Decimal("8"), tolerance=Decimal("7.5")) == "over_tolerance"


class TestComputeDifference:

    def test_relative_to_pos(self):
        assert comparison_service.compute_difference(Decimal("95"), Decimal("100")) == (Decimal("-5"), Decimal("-5.00"))

    def test_rounds_half_up(self):
        difference, percent = comparison_service.compute_difference(Decimal("10"), Decimal("12"))
        assert difference == Decimal("-2")
        assert percent == Decimal("-16.67")

    def test_pos_zero_has_no_percent(self):
        assert comparison_service.compute_difference(Decimal("3"), Decimal("0")) == (Decimal("3"), None)

    @pytest.mark.parametrize("manual, pos", [(None, Decimal("1")), (Decimal("1"), None), (None, None)])
    def test_one_side_missing(self, manual, pos):
        assert comparison_service.compute_difference(manual, pos) == (None, None)


class TestGenerate:

    def test_daily_run(self, branch_a, owner, staff_a):
        """
        SCENARIO: BEER 95/100, WINE 10/12, GIN counted only by hand, RUM only in POS
        EXPECTED: only WINE needs an explanation; owners are alerted once
        """
        rows = _generate(branch_a, staff_a)

        assert sorted(rows) == ["BEER", "GIN", "RUM", "WINE"]
        assert rows["BEER"].status == "approved"
        assert rows["BEER"].difference == Decimal("-5")
        assert rows["WINE"].status == "pending"
        assert rows["WINE"].diff_percent == Decimal("-16.67")
        assert rows["WINE"].product_name == "House red"
        assert rows["GIN"].status == "approved"
        assert rows["GIN"].pos_quantity is None
        assert rows["GIN"].difference is None
        assert rows["RUM"].status == "approved"
        assert rows["RUM"].manual_quantity is None

        alert = db.session.query(Notification).filter_by(type="stock_alert").one()
        assert alert.user_id == owner.id
        assert alert.data["over_tolerance"] == 1

        entry = db.session.query(AuditLog).filter_by(action_type=audit_service.STOCK_COMPARISON_GENERATED).one()
        assert entry.new_value["manual_only"] == 1
        assert entry.new_value["pos_only"] == 1
        assert entry.new_value["within_tolerance"] == 1

    def test_no_alert_when_everything_is_close(self, branch_a, owner):
        _generate(branch_a, manual={"BEER": 99}, pos={"BEER": 100})
        assert db.session.query(Notification).filter_by(type="stock_alert").count() == 0

    def test_store_tolerance_overrides_default(self, branch_a):
        branch_a.diff_tolerance = Decimal("20")
        db.session.commit()

        rows = _generate(branch_a)

        assert rows["WINE"].status == "approved"
        listed = {c["product_code"]: c for c in comparison_service.list_comparisons(branch_a.id, comp_date=DAY)}
        assert listed["WINE"]["tolerance_class"] == "within_tolerance"

    def test_rerun_replaces_untouched_rows(self, branch_a):
        _generate(branch_a)
        rows = _generate(branch_a, manual={"BEER": 100}, pos={"BEER": 100})

        assert list(rows) == ["BEER"]
        assert db.session.query(Comparison).filter_by(store_id=branch_a.id, comp_date=DAY).count() == 1

    def test_rerun_after_explanation_conflicts(self, branch_a, staff_a):
        rows = _generate(branch_a)
        comparison_service.submit_explanation(rows["WINE"].id, "two glasses spilled", actor_id=staff_a.id)

        with pytest.raises(ConflictError):
            _generate(branch_a)
        assert db.session.query(Comparison).filter_by(store_id=branch_a.id).count() == 4

    def test_other_day_is_independent(self, branch_a, staff_a):
        rows = _generate(branch_a)
        comparison_service.submit_explanation(rows["WINE"].id, "spilled", actor_id=staff_a.id)

        assert len(_generate(branch_a, day="2026-01-15")) == 4

    @pytest.mark.parametrize("manual, pos, day", [
        ({"BEER": -1}, {}, DAY),
        ({"BEER": "lots"}, {}, DAY),
        (["BEER"], {}, DAY),
        ({"BEER": 1}, {}, "14/01/2026"),
    ])
    def test_bad_input(self, branch_a, manual, pos, day):
        with pytest.raises(ValidationError):
            _generate(branch_a, manual=manual, pos=pos, day=day)

    def test_outsider_cannot_generate(self, branch_a, staff_b):
        with pytest.raises(ForbiddenError):
            _generate(branch_a, staff_b)


class TestExplainAndReview:

    def test_explain_then_approve(self, branch_a, staff_a, accountant):
        """
        SCENARIO: Staff explain the WINE shortfall; the accountant approves
        EXPECTED: pending -> explained -> approved, explainer notified
        """
        wine = _generate(branch_a)["WINE"]

        explained = comparison_service.submit_explanation(wine.id, "  two glasses spilled ", actor_id=staff_a.id)
        assert explained.status == "explained"
        assert explained.explanation == "two glasses spilled"
        assert explained.explained_by == staff_a.id

        approved = comparison_service.approve(wine.id, actor_id=accountant.id, owner_notes="ok")
        assert approved.status == "approved"
        assert approved.reviewed_by == accountant.id
        assert approved.owner_notes == "ok"

        note = db.session.query(Notification).filter_by(type="stock_approved").one()
        assert note.user_id == staff_a.id

    def test_six_percent_short_is_explained_then_rejected(self, branch_a, staff_a, owner):
        """
        SCENARIO: POS 100, counted 94; staff explain; owner rejects with notes
        EXPECTED: -6 / -6% over tolerance, explained, rejected and final
        """
        row = _generate(branch_a, manual={"VODKA": 94}, pos={"VODKA": 100})["VODKA"]
        assert row.difference == Decimal("-6")
        assert row.diff_percent == Decimal("-6")
        assert comparison_service.classify(row.diff_percent, difference=row.difference) == "over_tolerance"
        assert row.status == "pending"

        assert comparison_service.submit_explanation(row.id, "bar tab", actor_id=staff_a.id).status == "explained"
        assert comparison_service.reject(row.id, "count again", actor_id=owner.id).status == "rejected"

        with pytest.raises(ConflictError):
            comparison_service.approve(row.id, actor_id=owner.id)
        with pytest.raises(ConflictError):
            comparison_service.submit_explanation(row.id, "retry", actor_id=staff_a.id)

    def test_explanation_required(self, branch_a, staff_a):
        wine = _generate(branch_a)["WINE"]
        with pytest.raises(ValidationError):
            comparison_service.submit_explanation(wine.id, "", actor_id=staff_a.id)

    def test_cannot_explain_twice(self, branch_a, staff_a):
        wine = _generate(branch_a)["WINE"]
        comparison_service.submit_explanation(wine.id, "spilled", actor_id=staff_a.id)
        with pytest.raises(ConflictError):
            comparison_service.submit_explanation(wine.id, "actually stolen", actor_id=staff_a.id)

    def test_rows_within_tolerance_need_no_explanation(self, branch_a, staff_a):
        beer = _generate(branch_a)["BEER"]
        with pytest.raises(ConflictError):
            comparison_service.submit_explanation(beer.id, "nothing to say", actor_id=staff_a.id)

    def test_staff_cannot_review(self, branch_a, staff_a):
        wine = _generate(branch_a)["WINE"]
        comparison_service.submit_explanation(wine.id, "spilled", actor_id=staff_a.id)

        with pytest.raises(ForbiddenError):
            comparison_service.approve(wine.id, actor_id=staff_a.id)
        assert comparison_service.get_comparison(wine.id).status == "explained"

    def test_pending_row_cannot_be_approved(self, branch_a, owner):
        wine = _generate(branch_a)["WINE"]
        with pytest.raises(ConflictError):
            comparison_service.approve(wine.id, actor_id=owner.id)

    def test_reject_needs_notes(self, branch_a, staff_a, owner):
        wine = _generate(branch_a)["WINE"]
        comparison_service.submit_explanation(wine.id, "spilled", actor_id=staff_a.id)

        with pytest.raises(ValidationError):
            comparison_service.reject(wine.id, " ", actor_id=owner.id)

        rejected = comparison_service.reject(wine.id, "recount tomorrow", actor_id=owner.id)
        assert rejected.status == "rejected"
        assert rejected.owner_notes == "recount tomorrow"

    def test_unknown_comparison(self, owner):
        with pytest.raises(NotFoundError):
            comparison_service.approve(31337, actor_id=owner.id)


class TestBulk:

    MANUAL = {"A1": 1, "A2": 1, "A3": 1}
    POS = {"A1": 10, "A2": 10, "A3": 10}

    def test_submit_all_filled(self, branch_a, staff_a):
        """
        SCENARIO: Staff submit three explanations, one blank and one unknown id
        EXPECTED: valid ones go through, the rest are reported individually
        """
        rows = _generate(branch_a, manual=self.MANUAL, pos=self.POS)

        result = comparison_service.submit_explanations(
            {rows["A1"].id: "spilled", str(rows["A2"].id): "   ", 9999: "ghost", "x": "bad id"},
            actor_id=staff_a.id,
        )

        assert result["submitted"] == [rows["A1"].id]
        failed = {f["id"]: f["error"] for f in result["failed"]}
        assert set(failed) == {rows["A2"].id, 9999, "x"}
        assert comparison_service.get_comparison(rows["A1"].id).status == "explained"
        assert comparison_service.get_comparison(rows["A2"].id).status == "pending"
        assert db.session.query(AuditLog).filter_by(action_type=audit_service.STOCK_EXPLANATION_BATCH).count() == 1

    def test_submit_nothing(self, staff_a):
        with pytest.raises(ValidationError):
            comparison_service.submit_explanations({}, actor_id=staff_a.id)

    def test_bulk_approve_is_all_or_nothing(self, branch_a, staff_a, owner):
        rows = _generate(branch_a, manual=self.MANUAL, pos=self.POS)
        comparison_service.submit_explanation(rows["A1"].id, "spilled", actor_id=staff_a.id)
        comparison_service.submit_explanation(rows["A2"].id, "spilled", actor_id=staff_a.id)

        with pytest.raises(ConflictError):
            comparison_service.approve_comparisons(
                [rows["A1"].id, rows["A2"].id, rows["A3"].id], actor_id=owner.id
            )
        statuses = [comparison_service.get_comparison(rows[k].id).status for k in ("A1", "A2", "A3")]
        assert statuses == ["explained", "explained", "pending"]

        approved = comparison_service.approve_comparisons([rows["A1"].id, rows["A2"].id], actor_id=owner.id)
        assert [c.status for c in approved] == ["approved", "approved"]
        assert db.session.query(AuditLog).filter_by(action_type=audit_service.STOCK_BATCH_APPROVED).count() == 1

    def test_bulk_reject_default_note(self, branch_a, staff_a, accountant):
        rows = _generate(branch_a, manual=self.MANUAL, pos=self.POS)
        for key in ("A1", "A2"):
            comparison_service.submit_explanation(rows[key].id, "spilled", actor_id=staff_a.id)

        rejected = comparison_service.reject_comparisons([rows["A1"].id, rows["A2"].id], actor_id=accountant.id)

        assert {c.status for c in rejected} == {"rejected"}
        assert {c.owner_notes for c in rejected} == {"rejected in batch"}

    @pytest.mark.parametrize("ids", [[], None, ["1"], [True]])
    def test_bulk_bad_ids(self, owner, ids):
        with pytest.raises(ValidationError):
            comparison_service.approve_comparisons(ids, actor_id=owner.id)

    def test_bulk_unknown_id(self, owner):
        with pytest.raises(NotFoundError):
            comparison_service.reject_comparisons([123456], actor_id=owner.id)


class TestListing:

    def test_list_with_classes(self, branch_a):
        _generate(branch_a)

        listed = {c["product_code"]: c for c in comparison_service.list_comparisons(branch_a.id)}

        assert listed["BEER"]["tolerance_class"] == "within_tolerance"
        assert listed["WINE"]["tolerance_class"] == "over_tolerance"
        assert listed["GIN"]["tolerance_class"] == "unmeasured"
        assert listed["WINE"]["diff_percent"] == -16.67

    def test_status_filter(self, branch_a):
        _generate(branch_a)
        pending = comparison_service.list_comparisons(branch_a.id, status="pending")
        assert [c["product_code"] for c in pending] == ["WINE"]

        with pytest.raises(ValidationError):
            comparison_service.list_comparisons(branch_a.id, status="bogus")
