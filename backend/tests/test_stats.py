# Overview: Pytest coverage for department/manager roll-ups, collection alerts and event totals.

import pytest

from bazaar.errors import NotFoundError, PermissionDeniedError
from bazaar.models import DepartmentStats, SellerAccount, SellerManagerStats
from bazaar.permissions import Role
from bazaar.services import cash_submission_service as cash
from bazaar.services import stats_service, transfer_service
from conftest import TEST_PIN


def _sell(ctx_for, seller, customer, *amounts):
    return [transfer_service.seller_sale(ctx_for(seller), customer.id, a, TEST_PIN) for a in amounts]


class TestAlertLevels:

    @pytest.mark.parametrize("ratio,expected", [
        (0, stats_service.ALERT_NONE),
        (1, stats_service.ALERT_LOW),
        (2999, stats_service.ALERT_LOW),
        (3000, stats_service.ALERT_MEDIUM),
        (4999, stats_service.ALERT_MEDIUM),
        (5000, stats_service.ALERT_HIGH),
        (10000, stats_service.ALERT_HIGH),
    ])
    def test_thresholds(self, event, ratio, expected):
        assert stats_service.alert_level(ratio, event) == expected

    def test_ratio_without_sales_is_zero(self):
        assert stats_service.pending_ratio_bps(500, 0) == 0
        assert stats_service.pending_ratio_bps(1500, 40) == 3750


class TestDepartmentRollup:

    def test_rollup_refreshed_after_sale(self, db_session, event, manager, seller, customer, ctx_for):
        transfer_service.allocate_points(ctx_for(manager), seller.id, 50, TEST_PIN)
        _sell(ctx_for, seller, customer, 40)

        row = db_session.query(DepartmentStats).filter_by(event_id=event.id, department_code="CS").one()
        assert row.member_count == 1
        assert row.total_received_points == 50
        assert row.current_balance_points == 10
        assert row.total_sold_points == 40
        assert row.pending_collection_cents == 4000
        assert row.users_with_warnings == 1
        assert row.high_risk_count == 1

        alerts = stats_service.collection_alerts(ctx_for(manager), "CS")
        assert [(a["user_id"], a["alert_level"]) for a in alerts] == [(seller.id, stats_service.ALERT_HIGH)]

    def test_submission_clears_alert(self, db_session, event, manager, seller, customer, ctx_for):
        transfer_service.allocate_points(ctx_for(manager), seller.id, 50, TEST_PIN)
        (sale,) = _sell(ctx_for, seller, customer, 40)
        cash.create_submission(
            ctx_for(seller), 4000, [{"type": "direct_sale", "id": sale.id}], TEST_PIN, receiver_id=manager.id,
        )

        row = stats_service.get_department_stats(ctx_for(manager), "CS")
        assert row.pending_collection_cents == 0
        assert row.pending_submission_cents == 4000
        assert row.users_with_warnings == 0
        assert stats_service.collection_alerts(ctx_for(manager), "CS") == []

    def test_partial_submission_leaves_medium_alert(self, manager, seller, customer, ctx_for):
        transfer_service.allocate_points(ctx_for(manager), seller.id, 50, TEST_PIN)
        first, _second = _sell(ctx_for, seller, customer, 25, 15)
        cash.create_submission(
            ctx_for(seller), 2500, [{"type": "direct_sale", "id": first.id}], TEST_PIN, receiver_id=manager.id,
        )

        (alert,) = stats_service.collection_alerts(ctx_for(manager), "CS")
        assert alert["pending_ratio_bps"] == 3750
        assert alert["alert_level"] == stats_service.ALERT_MEDIUM

    def test_manager_limited_to_own_departments(self, manager, ctx_for):
        with pytest.raises(PermissionDeniedError):
            stats_service.get_department_stats(ctx_for(manager), "EE")

    def test_finance_manager_reads_any_department(self, finance_manager, ctx_for):
        row = stats_service.get_department_stats(ctx_for(finance_manager), "EE")
        assert row.member_count == 0

    def test_seller_cannot_read_stats(self, seller, ctx_for):
        with pytest.raises(PermissionDeniedError):
            stats_service.get_department_stats(ctx_for(seller), "CS")


class TestManagerRollup:

    def test_own_stats(self, manager, seller, ctx_for):
        transfer_service.allocate_points(ctx_for(manager), seller.id, 30, TEST_PIN)
        row = stats_service.get_seller_manager_stats(ctx_for(manager), manager.id)
        assert row.managed_department_count == 1
        assert row.points_allocated == 30
        assert row.total_received_points == 30

    def test_other_manager_denied(self, make_user, manager, ctx_for):
        other = make_user(Role.SELLER_MANAGER, manages=["EE"])
        with pytest.raises(PermissionDeniedError):
            stats_service.get_seller_manager_stats(ctx_for(other), manager.id)

    def test_event_manager_reads_any(self, manager, event_manager, ctx_for):
        row = stats_service.get_seller_manager_stats(ctx_for(event_manager), manager.id)
        assert row.manager_id == manager.id


class TestEventStats:

    def test_minted_and_outstanding_points(self, manager, seller, customer, point_seller, event_manager, ctx_for):
        transfer_service.allocate_points(ctx_for(manager), seller.id, 50, TEST_PIN)
        transfer_service.direct_sale(ctx_for(manager), customer.id, 30, TEST_PIN)
        transfer_service.issue_point_card(ctx_for(point_seller), 20, TEST_PIN)

        row = stats_service.get_event_stats(ctx_for(event_manager))
        assert row.points_minted == 100
        assert row.customer_points == 30
        assert row.seller_points == 50
        assert row.outstanding_card_points == 20

    def test_finance_summary_shape(self, finance_manager, ctx_for):
        result = stats_service.get_finance_summary(ctx_for(finance_manager))
        assert set(result) == {"summary", "by_source", "collectors"}
        assert len(result["collectors"]) == 1


class TestRefreshFailures:

    def test_refresh_failure_does_not_fail_operation(self, db_session, monkeypatch, manager, seller, ctx_for):
        def boom(*args, **kwargs):
            raise RuntimeError("stats store unavailable")

        monkeypatch.setattr(stats_service, "recompute_event_stats", boom)
        txn = transfer_service.allocate_points(ctx_for(manager), seller.id, 10, TEST_PIN)

        assert txn.id is not None
        assert db_session.get(SellerAccount, seller.id).available_points == 10
        assert db_session.query(DepartmentStats).count() == 0

    def test_recompute_all_repairs_missed_refresh(self, db_session, monkeypatch, event, manager, seller, ctx_for):
        with monkeypatch.context() as patch:
            patch.setattr(stats_service, "refresh_after_commit", lambda ctx, user_ids: None)
            transfer_service.allocate_points(ctx_for(manager), seller.id, 10, TEST_PIN)
        assert db_session.query(DepartmentStats).count() == 0

        result = stats_service.recompute_all(db_session, event.id)
        assert result == {"departments": 1, "seller_managers": 1}

        row = db_session.query(DepartmentStats).filter_by(department_code="CS").one()
        assert row.current_balance_points == 10
        assert db_session.query(SellerManagerStats).filter_by(manager_id=manager.id).one().points_allocated == 10

    def test_recompute_requires_capability(self, manager, event_manager, ctx_for):
        with pytest.raises(PermissionDeniedError):
            stats_service.recompute_event(ctx_for(manager))
        assert stats_service.recompute_event(ctx_for(event_manager))["seller_managers"] == 1

    def test_recompute_unknown_event(self, db_session):
        with pytest.raises(NotFoundError):
            stats_service.recompute_all(db_session, 9999)
