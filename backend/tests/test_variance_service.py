# Overview: Pytest coverage for cash variance records and their follow-up trail.

import pytest
from settlement.services import cashup_service, variance_service
from settlement.services.variance_service import (
    RESOLUTION_INVESTIGATING,
    RESOLUTION_MANAGER_APPROVED,
    RESOLUTION_PENDING,
    RESOLUTION_RESOLVED,
    RESOLUTION_UNRESOLVED,
    VarianceNotAllowed,
    VarianceNotFound,
)
from settlement.validation import ValidationError


@pytest.fixture
def short_session(db_session, cash_session):
    """Closed session R100.00 short."""
    return cashup_service.close_session(cash_session.id, 90000)


class TestRecordVariance:

    def test_record_on_active_session(self, db_session, branch, cash_session):
        record = variance_service.record_variance(
            cash_session.id, "shortage", 2000, "wrong_change_given",
            description="Gave R20 too much", reported_by="Sipho",
        )

        assert record.branch_id == branch.id
        assert record.amount_cents == 2000
        assert variance_service.current_resolution_status(record) == RESOLUTION_PENDING
        assert [a.action_type for a in record.actions] == ["created"]
        assert record.actions[0].action_by == "Sipho"

    def test_type_must_match_closed_session(self, db_session, short_session):
        with pytest.raises(VarianceNotAllowed):
            variance_service.record_variance(short_session.id, "overage", 1000, "counting_error")

        record = variance_service.record_variance(short_session.id, "shortage", 6000, "counting_error")
        assert record.variance_type == "shortage"

    def test_exact_close_has_nothing_to_explain(self, db_session, cash_session):
        cashup_service.close_session(cash_session.id, 100000)
        with pytest.raises(VarianceNotAllowed):
            variance_service.record_variance(cash_session.id, "shortage", 100, "unknown")

    def test_reconciled_session_is_frozen(self, db_session, short_session):
        cashup_service.reconcile_session(short_session.id)
        with pytest.raises(VarianceNotAllowed):
            variance_service.record_variance(short_session.id, "shortage", 100, "unknown")

    @pytest.mark.parametrize("variance_type, amount, category", [
        ("loss", 100, "unknown"),
        ("shortage", 0, "unknown"),
        ("shortage", 100, "aliens"),
    ])
    def test_invalid_input(self, db_session, cash_session, variance_type, amount, category):
        with pytest.raises(ValidationError):
            variance_service.record_variance(cash_session.id, variance_type, amount, category)

    def test_record_whole_session_variance(self, db_session, short_session):
        record = variance_service.record_session_variance(short_session.id, "cash_theft", reported_by="Manager")

        assert record.variance_type == "shortage"
        assert record.amount_cents == 10000
        assert record.category == "cash_theft"
        assert [v.id for v in variance_service.get_session_variances(short_session.id)] == [record.id]

    def test_whole_session_variance_needs_closed_session(self, db_session, cash_session):
        with pytest.raises(VarianceNotAllowed):
            variance_service.record_session_variance(cash_session.id)

    def test_unknown_variance(self, db_session):
        with pytest.raises(VarianceNotFound):
            variance_service.get_variance(99999)


class TestVarianceActions:

    @pytest.fixture
    def record(self, short_session):
        return variance_service.record_session_variance(short_session.id, "unknown")

    def test_resolution_follows_latest_action(self, db_session, record):
        variance_service.add_variance_action(record.id, "investigated", "Supervisor")
        assert variance_service.current_resolution_status(record) == RESOLUTION_INVESTIGATING

        variance_service.add_variance_action(record.id, "comment_added", "Supervisor", notes="Checked CCTV")
        assert variance_service.current_resolution_status(record) == RESOLUTION_INVESTIGATING

        variance_service.add_variance_action(record.id, "approved", "Manager")
        assert variance_service.current_resolution_status(record) == RESOLUTION_MANAGER_APPROVED

    @pytest.mark.parametrize("action_type, status", [
        ("escalated", RESOLUTION_INVESTIGATING),
        ("rejected", RESOLUTION_UNRESOLVED),
        ("resolved", RESOLUTION_RESOLVED),
        ("manager_reviewed", RESOLUTION_PENDING),
    ])
    def test_action_resolutions(self, db_session, record, action_type, status):
        action = variance_service.add_variance_action(record.id, action_type, "Manager")
        assert action.resolution_status == status

    def test_record_itself_is_not_changed(self, db_session, record):
        variance_service.add_variance_action(record.id, "resolved", "Manager", notes="Found in safe")
        fresh = variance_service.get_variance(record.id)
        assert fresh.amount_cents == 10000
        assert fresh.category == "unknown"
        assert len(fresh.actions) == 2

    @pytest.mark.parametrize("action_type", ["created", "category_updated", "deleted"])
    def test_invalid_action_type(self, db_session, record, action_type):
        with pytest.raises(ValidationError):
            variance_service.add_variance_action(record.id, action_type, "Manager")

    def test_action_by_required(self, db_session, record):
        with pytest.raises(ValidationError):
            variance_service.add_variance_action(record.id, "investigated", "")


class TestVarianceStats:

    def test_stats(self, db_session, branch, cash_session):
        shortage = variance_service.record_variance(cash_session.id, "shortage", 3000, "counting_error")
        variance_service.record_variance(cash_session.id, "shortage", 1000, "counting_error")
        variance_service.record_variance(cash_session.id, "overage", 500, "unrecorded_sale")
        variance_service.add_variance_action(shortage.id, "resolved", "Manager")

        stats = variance_service.get_variance_stats(branch.id)

        assert stats["total_variances"] == 3
        assert stats["total_shortage_cents"] == 4000
        assert stats["total_overage_cents"] == 500
        assert stats["net_variance_cents"] == -3500
        assert stats["unresolved_count"] == 2
        assert stats["by_category"]["counting_error"] == {"count": 2, "amount_cents": 4000}
        assert stats["by_status"] == {RESOLUTION_RESOLVED: 1, RESOLUTION_PENDING: 2}

    def test_stats_scoped_to_branch(self, db_session, other_branch, cash_session):
        variance_service.record_variance(cash_session.id, "shortage", 3000, "counting_error")
        assert variance_service.get_variance_stats(other_branch.id)["total_variances"] == 0
