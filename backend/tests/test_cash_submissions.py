# Overview: Pytest coverage for the cash submission state machine and its reconciliation.

from datetime import timedelta

import pytest
from sqlalchemy import update

from bazaar.errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    PermissionDeniedError,
)
from bazaar.models import (
    CashSourceSummary,
    CashSubmission,
    CollectorAccount,
    FinanceSummary,
    PointSellerAccount,
    SellerAccount,
    SellerManagerAccount,
    User,
)
from bazaar.permissions import Role
from bazaar.services import cash_submission_service as cash
from bazaar.services import transfer_service
from bazaar.time_utils import utcnow
from conftest import TEST_PIN, WRONG_PIN


@pytest.fixture
def seller_with_sale(db_session, manager, seller, customer, ctx_for):
    """Manager allocates 50 to the seller; seller sells 30 to a customer."""
    transfer_service.allocate_points(ctx_for(manager), seller.id, 50, TEST_PIN)
    return transfer_service.seller_sale(ctx_for(seller), customer.id, 30, TEST_PIN)


@pytest.fixture
def issued_card(point_seller, ctx_for):
    return transfer_service.issue_point_card(ctx_for(point_seller), 40, TEST_PIN)


@pytest.fixture
def pooled_card_submission(point_seller, issued_card, ctx_for):
    return cash.create_submission(
        ctx_for(point_seller), 4000, [{"type": "point_card", "id": issued_card.id}], TEST_PIN,
    )


class TestSellerToManager:

    def test_scenario_b_confirm(self, db_session, manager, seller, seller_with_sale, ctx_for):
        """Seller hands RM30 to their manager; manager cash on hand 50.00 -> 80.00."""
        submission = cash.create_submission(
            ctx_for(seller), 3000, [{"type": "direct_sale", "id": seller_with_sale.id}], TEST_PIN,
            receiver_id=manager.id,
        )
        assert submission.status == cash.STATUS_PENDING
        assert submission.submission_number.startswith("CS-")
        assert submission.receiver_role == Role.SELLER_MANAGER

        account = db_session.get(SellerAccount, seller.id)
        assert account.pending_collection_cents == 0
        assert account.pending_submission_cents == 3000
        assert db_session.get(SellerManagerAccount, manager.id).pending_from_sellers_cents == 3000

        cash.confirm_submission(ctx_for(manager), submission.id, TEST_PIN)

        manager_account = db_session.get(SellerManagerAccount, manager.id)
        assert manager_account.cash_on_hand_cents == 8000
        assert manager_account.confirmed_from_sellers_cents == 3000
        assert manager_account.pending_from_sellers_cents == 0

        account = db_session.get(SellerAccount, seller.id)
        assert account.pending_submission_cents == 0
        assert account.total_submitted_cents == 3000

        stored = db_session.get(CashSubmission, submission.id)
        assert stored.status == cash.STATUS_CONFIRMED
        assert stored.resolved_at is not None

        with pytest.raises(FailedPreconditionError):
            cash.confirm_submission(ctx_for(manager), submission.id, TEST_PIN)
        assert db_session.get(SellerManagerAccount, manager.id).cash_on_hand_cents == 8000

    def test_mismatch_rejected_without_writes(self, db_session, manager, seller, seller_with_sale, ctx_for):
        with pytest.raises(InvalidArgumentError) as exc:
            cash.create_submission(
                ctx_for(seller), 2500, [{"type": "direct_sale", "id": seller_with_sale.id}], TEST_PIN,
                receiver_id=manager.id,
            )
        assert exc.value.details == {"declared_cents": 2500, "computed_cents": 3000}
        assert db_session.query(CashSubmission).count() == 0
        assert db_session.get(SellerAccount, seller.id).pending_collection_cents == 3000

    def test_one_cent_tolerance(self, manager, seller, seller_with_sale, ctx_for):
        submission = cash.create_submission(
            ctx_for(seller), 2999, [{"type": "direct_sale", "id": seller_with_sale.id}], TEST_PIN,
            receiver_id=manager.id,
        )
        assert submission.amount_cents == 2999

    def test_manager_outside_department(self, make_user, seller, seller_with_sale, ctx_for):
        other_manager = make_user(Role.SELLER_MANAGER, manages=["EE"])
        with pytest.raises(PermissionDeniedError):
            cash.create_submission(
                ctx_for(seller), 3000, [{"type": "direct_sale", "id": seller_with_sale.id}], TEST_PIN,
                receiver_id=other_manager.id,
            )

    def test_other_manager_cannot_confirm(self, make_user, manager, seller, seller_with_sale, ctx_for):
        submission = cash.create_submission(
            ctx_for(seller), 3000, [{"type": "direct_sale", "id": seller_with_sale.id}], TEST_PIN,
            receiver_id=manager.id,
        )
        second = make_user(Role.SELLER_MANAGER, manages=["CS"])
        with pytest.raises(PermissionDeniedError):
            cash.confirm_submission(ctx_for(second), submission.id, TEST_PIN)

    def test_cashier_cannot_take_addressed_submission(self, manager, seller, cashier, seller_with_sale, ctx_for):
        submission = cash.create_submission(
            ctx_for(seller), 3000, [{"type": "direct_sale", "id": seller_with_sale.id}], TEST_PIN,
            receiver_id=manager.id,
        )
        with pytest.raises(PermissionDeniedError):
            cash.confirm_submission(ctx_for(cashier), submission.id, TEST_PIN)

    def test_incoming_listing(self, manager, seller, seller_with_sale, ctx_for):
        submission = cash.create_submission(
            ctx_for(seller), 3000, [{"type": "direct_sale", "id": seller_with_sale.id}], TEST_PIN,
            receiver_id=manager.id,
        )
        assert [s.id for s in cash.list_incoming(ctx_for(manager))] == [submission.id]
        assert [s.id for s in cash.list_mine(ctx_for(seller))] == [submission.id]


class TestPool:

    def test_point_seller_card_cash_collected_by_cashier(self, db_session, point_seller, cashier, issued_card, ctx_for):
        submission = cash.create_submission(
            ctx_for(point_seller), 4000, [{"type": "point_card", "id": issued_card.id}], TEST_PIN,
        )
        assert submission.is_pooled
        assert db_session.get(FinanceSummary, submission.event_id).total_pending_cents == 4000
        assert [s.id for s in cash.list_pool(ctx_for(cashier))] == [submission.id]

        cash.confirm_submission(ctx_for(cashier), submission.id, TEST_PIN, note="Counted twice")

        stored = db_session.get(CashSubmission, submission.id)
        assert stored.received_by_user_id == cashier.id
        assert stored.receiver_role == Role.CASHIER
        assert stored.resolution_note == "Counted twice"

        summary = db_session.get(FinanceSummary, submission.event_id)
        assert summary.total_pending_cents == 0
        assert summary.total_collected_cents == 4000
        assert summary.collection_count == 1

        by_source = db_session.query(CashSourceSummary).filter_by(submitter_role=Role.POINT_SELLER).one()
        assert by_source.pending_cents == 0
        assert by_source.collected_cents == 4000

        collector = db_session.query(CollectorAccount).filter_by(user_id=cashier.id).one()
        assert collector.total_collected_cents == 4000
        assert collector.today_collections == 1

        account = db_session.get(PointSellerAccount, point_seller.id)
        assert account.cash_on_hand_cents == 0
        assert account.total_submitted_cents == 4000
        assert cash.list_pool(ctx_for(cashier)) == []

    def test_manager_cannot_address_receiver(self, manager, seller, ctx_for):
        with pytest.raises(InvalidArgumentError):
            cash.create_submission(
                ctx_for(manager), 100, [{"type": "allocation", "id": 1}], TEST_PIN, receiver_id=seller.id,
            )

    def test_manager_submits_allocation_cash(self, db_session, manager, seller, finance_manager, ctx_for):
        allocation = transfer_service.allocate_points(ctx_for(manager), seller.id, 20, TEST_PIN)
        submission = cash.create_submission(
            ctx_for(manager), 2000, [{"type": "allocation", "id": allocation.id}], TEST_PIN,
        )
        cash.confirm_submission(ctx_for(finance_manager), submission.id, TEST_PIN)

        account = db_session.get(SellerManagerAccount, manager.id)
        assert account.cash_on_hand_cents == 0
        assert account.total_submitted_cents == 2000

    def test_source_reuse_blocked_until_rejected(self, db_session, point_seller, cashier, issued_card, ctx_for):
        refs = [{"type": "point_card", "id": issued_card.id}]
        first = cash.create_submission(ctx_for(point_seller), 4000, refs, TEST_PIN)

        with pytest.raises(FailedPreconditionError):
            cash.create_submission(ctx_for(point_seller), 4000, refs, TEST_PIN)

        cash.reject_submission(ctx_for(cashier), first.id, "Envelope empty", TEST_PIN)
        assert db_session.get(PointSellerAccount, point_seller.id).cash_on_hand_cents == 4000
        assert db_session.get(FinanceSummary, first.event_id).total_rejected_cents == 4000

        second = cash.create_submission(ctx_for(point_seller), 4000, refs, TEST_PIN)
        assert second.status == cash.STATUS_PENDING

    def test_dispute_moves_amount_to_disputed(self, db_session, point_seller, finance_manager, issued_card, ctx_for):
        submission = cash.create_submission(
            ctx_for(point_seller), 4000, [{"type": "point_card", "id": issued_card.id}], TEST_PIN,
        )
        cash.dispute_submission(ctx_for(finance_manager), submission.id, "Short by RM5", TEST_PIN)

        account = db_session.get(PointSellerAccount, point_seller.id)
        assert account.disputed_cents == 4000
        assert account.pending_submission_cents == 0
        assert account.cash_on_hand_cents == 0
        summary = db_session.get(FinanceSummary, submission.event_id)
        assert summary.total_disputed_cents == 4000
        assert summary.total_pending_cents == 0
        assert db_session.get(CashSubmission, submission.id).status == cash.STATUS_DISPUTED

    @pytest.mark.parametrize("resolver", [cash.dispute_submission, cash.reject_submission])
    def test_reason_required(self, point_seller, cashier, issued_card, ctx_for, resolver):
        submission = cash.create_submission(
            ctx_for(point_seller), 4000, [{"type": "point_card", "id": issued_card.id}], TEST_PIN,
        )
        with pytest.raises(InvalidArgumentError):
            resolver(ctx_for(cashier), submission.id, "", TEST_PIN)


class TestSourceValidation:

    def test_source_owned_by_someone_else(self, make_user, issued_card, ctx_for):
        other = make_user(Role.POINT_SELLER)
        with pytest.raises(PermissionDeniedError):
            cash.create_submission(ctx_for(other), 4000, [{"type": "point_card", "id": issued_card.id}], TEST_PIN)

    @pytest.mark.parametrize("sources", [
        [],
        "point_card:1",
        [{"type": "cheque", "id": 1}],
        [{"type": "point_card", "id": "1"}],
        [{"type": "point_card", "id": 1}, {"type": "point_card", "id": 1}],
    ])
    def test_malformed_sources(self, point_seller, ctx_for, sources):
        with pytest.raises(InvalidArgumentError):
            cash.create_submission(ctx_for(point_seller), 100, sources, TEST_PIN)

    def test_customer_cannot_submit(self, customer, ctx_for):
        with pytest.raises(PermissionDeniedError):
            cash.create_submission(ctx_for(customer), 100, [{"type": "point_card", "id": 1}], TEST_PIN)


class TestCollectorPin:

    @pytest.mark.parametrize("resolve", [
        lambda ctx, sid, pin: cash.confirm_submission(ctx, sid, pin),
        lambda ctx, sid, pin: cash.dispute_submission(ctx, sid, "Short", pin),
        lambda ctx, sid, pin: cash.reject_submission(ctx, sid, "Empty", pin),
    ], ids=["confirm", "dispute", "reject"])
    def test_wrong_pin_refused_without_writes(
        self, db_session, point_seller, cashier, pooled_card_submission, ctx_for, resolve,
    ):
        with pytest.raises(PermissionDeniedError):
            resolve(ctx_for(cashier), pooled_card_submission.id, WRONG_PIN)

        stored = db_session.get(CashSubmission, pooled_card_submission.id)
        assert stored.status == cash.STATUS_PENDING
        assert stored.received_by_user_id is None
        assert db_session.get(FinanceSummary, pooled_card_submission.event_id).total_pending_cents == 4000
        assert db_session.get(PointSellerAccount, point_seller.id).pending_submission_cents == 4000
        assert db_session.get(User, cashier.id).pin_failed_attempts == 1

    def test_missing_pin(self, cashier, pooled_card_submission, ctx_for):
        with pytest.raises(InvalidArgumentError):
            cash.confirm_submission(ctx_for(cashier), pooled_card_submission.id, None)

    def test_locked_pin_refused(self, db_session, cashier, pooled_card_submission, ctx_for):
        db_session.get(User, cashier.id).pin_locked_until = utcnow() + timedelta(minutes=30)
        db_session.commit()

        with pytest.raises(FailedPreconditionError, match="locked"):
            cash.confirm_submission(ctx_for(cashier), pooled_card_submission.id, TEST_PIN)
        assert db_session.get(CashSubmission, pooled_card_submission.id).status == cash.STATUS_PENDING


class TestCompetingCollectors:

    def test_second_collector_sees_confirmed(self, db_session, make_user, cashier, pooled_card_submission, ctx_for):
        rival = make_user(Role.CASHIER)
        cash.confirm_submission(ctx_for(rival), pooled_card_submission.id, TEST_PIN)

        with pytest.raises(FailedPreconditionError, match="already confirmed"):
            cash.confirm_submission(ctx_for(cashier), pooled_card_submission.id, TEST_PIN)

        summary = db_session.get(FinanceSummary, pooled_card_submission.event_id)
        assert summary.total_collected_cents == 4000
        assert summary.collection_count == 1

    def test_loser_of_claim_race_fails_on_status(
        self, db_session, monkeypatch, make_user, point_seller, cashier, pooled_card_submission, ctx_for,
    ):
        """The rival commits between our read of the pending row and our claim."""
        rival = make_user(Role.CASHIER)
        read_pending = cash._claim
        calls = []

        def claim_then_lose(ctx, submission_id):
            submission = read_pending(ctx, submission_id)
            calls.append(submission.status)
            table = CashSubmission.__table__
            db_session.execute(
                update(table)
                .where(table.c.id == submission_id)
                .values(
                    status=cash.STATUS_CONFIRMED,
                    received_by_user_id=rival.id,
                    version_id=table.c.version_id + 1,
                )
            )
            return submission

        monkeypatch.setattr(cash, "_claim", claim_then_lose)

        with pytest.raises(FailedPreconditionError, match="already confirmed"):
            cash.confirm_submission(ctx_for(cashier), pooled_card_submission.id, TEST_PIN)

        assert calls == [cash.STATUS_PENDING]
        collected = (
            db_session.query(CollectorAccount)
            .filter(CollectorAccount.user_id == cashier.id, CollectorAccount.total_collected_cents > 0)
            .count()
        )
        assert collected == 0
        assert db_session.get(PointSellerAccount, point_seller.id).pending_submission_cents == 4000
        assert db_session.get(FinanceSummary, pooled_card_submission.event_id).total_collected_cents == 0


class TestMultiRoleSubmitter:

    def test_manager_role_acts_before_seller(self, db_session, make_user, customer, ctx_for):
        both = make_user(Role.SELLER, Role.SELLER_MANAGER, department="CS", manages=["CS"])
        sale = transfer_service.direct_sale(ctx_for(both), customer.id, 20, TEST_PIN)

        submission = cash.create_submission(
            ctx_for(both), 2000, [{"type": "direct_sale", "id": sale.id}], TEST_PIN,
        )
        assert submission.submitter_role == Role.SELLER_MANAGER
        assert submission.is_pooled
        assert db_session.get(SellerManagerAccount, both.id).pending_submission_cents == 2000
