# backend/bazaar/services/cash_submission_service.py
"""
Cash Submission State Machine

WHY: Cash collected at the stalls changes hands on paper. A submission is the
ledger's record of one handoff, reconciled against the sales that produced
the cash.

LIFECYCLE:
    pending -> confirmed
    pending -> disputed
    pending -> rejected

Only `pending` is initial; the other three are terminal.

ROUTING:
- Seller -> a seller manager who manages the seller's department (addressed)
- Seller, seller manager, point seller -> unclaimed pool (received_by NULL),
  which any cashier or finance manager may claim

RECONCILIATION: The caller names source records; their cash amounts are read
from the ledger, never from the request. A declared amount more than one cent
away from the source total is rejected before anything is written. A source
may back only one live (non-rejected) submission.

CLAIM: Confirm, dispute and reject need the collector's transaction PIN.
Each re-reads the submission inside one version-checked unit, requires
status == pending and received_by in (NULL, caller), then moves it out of
pending with a conditional UPDATE before touching any balance. Of two
concurrent collectors exactly one wins; the loser matches no pending row
and gets failed-precondition.
"""
from __future__ import annotations

import secrets

from sqlalchemy import func, update

from ..models import (
    CashSubmission,
    CashSubmissionSource,
    PointCard,
    Transaction,
    User,
)
from ..permissions import Capability, Role, SUBMITTER_ROLES
from ..errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    require_non_negative_cents,
)
from . import ledger_service as ledger
from . import stats_service
from .concurrency import lock_for_update, run_with_retry
from .permission_service import require_capability
from .pin_service import require_valid_pin
from .tenant_service import require_user_in_event
from .user_service import managed_departments
from bazaar.time_utils import utcnow, cents_to_amount


STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_DISPUTED = "disputed"
STATUS_REJECTED = "rejected"

SOURCE_POINT_CARD = "point_card"
SOURCE_DIRECT_SALE = "direct_sale"
SOURCE_ALLOCATION = "allocation"
SOURCE_CASH_SUBMISSION = "cash_submission"
SOURCE_TYPES = (SOURCE_POINT_CARD, SOURCE_DIRECT_SALE, SOURCE_ALLOCATION, SOURCE_CASH_SUBMISSION)

# Largest allowed gap between the declared amount and the source total
RECONCILIATION_TOLERANCE_CENTS = 1

# Column holding the cash a submitter has not yet handed in
IN_HAND_FIELDS = {
    Role.SELLER: "pending_collection_cents",
    Role.SELLER_MANAGER: "cash_on_hand_cents",
    Role.POINT_SELLER: "cash_on_hand_cents",
}

COLLECTOR_DAILY_FIELDS = ("today_collected_cents", "today_collections")


def _submitter_account(session, user: User, role: str):
    if role == Role.SELLER:
        return ledger.seller_account(session, user)
    if role == Role.SELLER_MANAGER:
        return ledger.seller_manager_account(session, user)
    return ledger.point_seller_account(session, user)


def _generate_submission_number(session, event_id: int, now) -> str:
    for _ in range(5):
        number = f"CS-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"
        exists = session.query(CashSubmission.id).filter_by(event_id=event_id, submission_number=number).first()
        if not exists:
            return number
    raise FailedPreconditionError("Could not allocate a unique submission number; retry the request")


# =============================================================================
# SOURCE RESOLUTION
# =============================================================================

def _parse_sources(sources) -> list[tuple[str, int]]:
    if not isinstance(sources, list) or not sources:
        raise InvalidArgumentError("sources must be a non-empty list of {type, id} references")

    parsed = []
    for ref in sources:
        if not isinstance(ref, dict):
            raise InvalidArgumentError("Each source must be an object with type and id")
        source_type = ref.get("type")
        source_id = ref.get("id")
        if source_type not in SOURCE_TYPES:
            raise InvalidArgumentError(
                f"Unknown source type {source_type!r}; expected one of {', '.join(SOURCE_TYPES)}"
            )
        if isinstance(source_id, bool) or not isinstance(source_id, int):
            raise InvalidArgumentError("Source id must be an integer")
        key = (source_type, source_id)
        if key in parsed:
            raise InvalidArgumentError(f"Source {source_type}:{source_id} is listed more than once")
        parsed.append(key)
    return parsed


def _resolve_source(ctx, source_type: str, source_id: int) -> int:
    """
    Read the cash amount behind one source reference.

    Raises:
        NotFoundError: record does not exist in this event
        PermissionDeniedError: record does not belong to the submitter
    """
    session = ctx.session
    label = f"{source_type}:{source_id}"

    if source_type == SOURCE_POINT_CARD:
        card = session.get(PointCard, source_id)
        if not card or card.event_id != ctx.event_id:
            raise NotFoundError(f"Source {label} not found")
        if card.issuer_id != ctx.user_id:
            raise PermissionDeniedError(f"Source {label} was issued by another user")
        return card.cash_received_cents

    if source_type in (SOURCE_DIRECT_SALE, SOURCE_ALLOCATION):
        txn = session.get(Transaction, source_id)
        expected = ledger.SALE_TRANSACTION_TYPES if source_type == SOURCE_DIRECT_SALE else (ledger.TXN_ALLOCATION,)
        if not txn or txn.event_id != ctx.event_id or txn.transaction_type not in expected:
            raise NotFoundError(f"Source {label} not found")
        if txn.from_user_id != ctx.user_id:
            raise PermissionDeniedError(f"Source {label} belongs to another user")
        if txn.status != ledger.TXN_STATUS_COMPLETED:
            raise FailedPreconditionError(f"Source {label} is {txn.status}")
        return txn.cash_amount_cents

    received = session.get(CashSubmission, source_id)
    if not received or received.event_id != ctx.event_id:
        raise NotFoundError(f"Source {label} not found")
    if received.received_by_user_id != ctx.user_id:
        raise PermissionDeniedError(f"Source {label} was not received by you")
    if received.status != STATUS_CONFIRMED:
        raise FailedPreconditionError(f"Source {label} is {received.status}, not confirmed")
    return received.amount_cents


def _require_sources_unused(ctx, refs) -> None:
    """A source may back at most one submission that has not been rejected."""
    for source_type, source_id in refs:
        live = (
            ctx.session.query(CashSubmission.submission_number)
            .join(CashSubmissionSource, CashSubmissionSource.submission_id == CashSubmission.id)
            .filter(
                CashSubmission.event_id == ctx.event_id,
                CashSubmission.status != STATUS_REJECTED,
                CashSubmissionSource.source_type == source_type,
                CashSubmissionSource.source_id == source_id,
            )
            .first()
        )
        if live:
            raise FailedPreconditionError(
                f"Source {source_type}:{source_id} already backs submission {live[0]}"
            )


# =============================================================================
# CREATE
# =============================================================================

def create_submission(ctx, amount_cents, sources, pin, receiver_id=None, note=None, as_role=None) -> CashSubmission:
    """
    Hand in cash, either to a seller manager or to the unclaimed pool.

    Args:
        amount_cents: Declared cash amount in cents
        sources: [{"type": "direct_sale", "id": 12}, ...]
        receiver_id: Seller manager to address (sellers only); None = pool
        as_role: Submitter role to act as when the caller holds several

    Raises:
        InvalidArgumentError: malformed sources, amount mismatch, receiver
            given for a role that submits to the pool
        PermissionDeniedError: source not owned by caller, receiver does not
            manage caller's department
        FailedPreconditionError: source already used, cash in hand too low
    """
    amount_cents = require_non_negative_cents(amount_cents, "amount_cents")
    if amount_cents <= 0:
        raise InvalidArgumentError("amount_cents must be greater than 0")
    refs = _parse_sources(sources)
    if note is not None and not isinstance(note, str):
        raise InvalidArgumentError("note must be a string")

    if as_role is None:
        as_role = next((r for r in SUBMITTER_ROLES if r in ctx.caller.roles), None)
    submitter_role = require_capability(ctx, Capability.SUBMIT_CASH, preferred_role=as_role)
    if receiver_id is not None and submitter_role != Role.SELLER:
        raise InvalidArgumentError("Seller managers and point sellers submit to the pool only")
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        resolved = [(t, i, _resolve_source(ctx, t, i)) for t, i in refs]
        computed = sum(amount for _t, _i, amount in resolved)
        if abs(computed - amount_cents) > RECONCILIATION_TOLERANCE_CENTS:
            raise InvalidArgumentError(
                f"Declared amount RM {cents_to_amount(amount_cents)} does not match "
                f"source total RM {cents_to_amount(computed)}",
                details={"declared_cents": amount_cents, "computed_cents": computed},
            )
        _require_sources_unused(ctx, refs)

        submitter = ctx.load_user()
        receiver = None
        if receiver_id is not None:
            receiver = require_user_in_event(ctx, receiver_id)
            if not receiver.has_role(Role.SELLER_MANAGER):
                raise InvalidArgumentError(f"User {receiver.id} is not a seller manager")
            if submitter.department_code not in managed_departments(session, receiver.id):
                raise PermissionDeniedError(
                    f"Seller manager {receiver.id} does not manage your department"
                )

        account = _submitter_account(session, submitter, submitter_role)
        ledger.debit(account, IN_HAND_FIELDS[submitter_role], amount_cents, label="cash in hand", cash=True)
        ledger.credit(account, "pending_submission_cents", amount_cents)
        account.submission_count += 1

        now = utcnow()
        if receiver is not None:
            manager_account = ledger.seller_manager_account(session, receiver)
            ledger.credit(manager_account, "pending_from_sellers_cents", amount_cents)
        else:
            ledger.credit(ledger.finance_summary(session, ctx.event_id), "total_pending_cents", amount_cents)
            source_summary = ledger.cash_source_summary(session, ctx.event_id, submitter_role)
            ledger.credit(source_summary, "pending_cents", amount_cents)
            source_summary.submission_count += 1

        submission = CashSubmission(
            org_id=ctx.org_id,
            event_id=ctx.event_id,
            submission_number=_generate_submission_number(session, ctx.event_id, now),
            submitted_by_user_id=submitter.id,
            submitter_role=submitter_role,
            amount_cents=amount_cents,
            received_by_user_id=receiver.id if receiver else None,
            receiver_role=Role.SELLER_MANAGER if receiver else None,
            status=STATUS_PENDING,
            note=(note or "").strip() or None,
            submitted_at=now,
        )
        for source_type, source_id, amount in resolved:
            submission.sources.append(CashSubmissionSource(
                source_type=source_type, source_id=source_id, amount_cents=amount,
            ))
        session.add(submission)
        session.commit()
        return submission

    submission = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [ctx.user_id])
    return submission


# =============================================================================
# RESOLUTION (confirm / dispute / reject)
# =============================================================================

def _collector_role(ctx, submission_id) -> str:
    """
    Capability check for acting on a submission, done before the atomic unit.

    Addressed submissions need RECEIVE_SELLER_CASH, pooled ones COLLECT_CASH.
    """
    if isinstance(submission_id, bool) or not isinstance(submission_id, int):
        raise InvalidArgumentError("submission id must be an integer")
    submission = ctx.session.get(CashSubmission, submission_id)
    if not submission or submission.event_id != ctx.event_id:
        raise NotFoundError(f"Cash submission {submission_id} not found")
    if submission.receiver_role == Role.SELLER_MANAGER:
        return require_capability(ctx, Capability.RECEIVE_SELLER_CASH)
    return require_capability(ctx, Capability.COLLECT_CASH)


def _claim(ctx, submission_id) -> CashSubmission:
    """Re-read the submission under lock and assert it is claimable by the caller."""
    submission = lock_for_update(ctx.session.query(CashSubmission).filter_by(id=submission_id)).first()
    if not submission or submission.event_id != ctx.event_id:
        raise NotFoundError(f"Cash submission {submission_id} not found")
    if submission.status != STATUS_PENDING:
        raise FailedPreconditionError(
            f"Cash submission {submission.submission_number} is already {submission.status}"
        )
    if submission.received_by_user_id not in (None, ctx.user_id):
        raise PermissionDeniedError(
            f"Cash submission {submission.submission_number} is addressed to another user"
        )
    return submission


def _take_pending(ctx, submission: CashSubmission, to_status: str, role: str, reason) -> None:
    """
    Move the submission out of pending with a conditional UPDATE.

    Runs before any balance write. A collector that read the row as pending
    but lost the race to another collector matches zero rows here and fails
    on the status, not on a counter further down.

    The loaded object keeps its pre-claim values for the rest of the unit and
    is expired by the commit.
    """
    table = CashSubmission.__table__
    result = ctx.session.execute(
        update(table)
        .where(table.c.id == submission.id, table.c.status == STATUS_PENDING)
        .values(
            status=to_status,
            received_by_user_id=ctx.user_id,
            receiver_role=func.coalesce(table.c.receiver_role, role),
            resolution_note=reason,
            resolved_at=utcnow(),
            version_id=table.c.version_id + 1,
        )
    )
    if result.rowcount != 1:
        ctx.session.expire(submission)
        raise FailedPreconditionError(
            f"Cash submission {submission.submission_number} is already {submission.status}"
        )


def _release_receiver(session, submission: CashSubmission) -> None:
    """Take a pending amount off the addressed manager or the pool summaries."""
    amount = submission.amount_cents
    if submission.is_pooled:
        summary = ledger.finance_summary(session, submission.event_id)
        ledger.debit(summary, "total_pending_cents", amount, label="pool pending cash", cash=True)
        source_summary = ledger.cash_source_summary(session, submission.event_id, submission.submitter_role)
        ledger.debit(source_summary, "pending_cents", amount, label="pending cash by source", cash=True)
    else:
        receiver = session.get(User, submission.received_by_user_id)
        manager_account = ledger.seller_manager_account(session, receiver)
        ledger.debit(manager_account, "pending_from_sellers_cents", amount, label="cash pending from sellers", cash=True)


def _resolve(ctx, submission_id, to_status: str, reason, pin, apply):
    role = _collector_role(ctx, submission_id)
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        submission = _claim(ctx, submission_id)
        _take_pending(ctx, submission, to_status, role, reason)
        submitter = session.get(User, submission.submitted_by_user_id)
        account = _submitter_account(session, submitter, submission.submitter_role)
        ledger.debit(account, "pending_submission_cents", submission.amount_cents,
                     label="cash pending submission", cash=True)

        apply(submission, account, role)
        session.commit()
        return submission

    submission = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [submission.submitted_by_user_id, ctx.user_id])
    return submission


def confirm_submission(ctx, submission_id, pin, note=None) -> CashSubmission:
    """
    Collector takes custody of the cash.

    Raises:
        FailedPreconditionError: submission no longer pending, PIN locked
        PermissionDeniedError: addressed to another collector, wrong PIN
    """
    def _apply(submission, account, role):
        session = ctx.session
        amount = submission.amount_cents
        now = utcnow()
        ledger.credit(account, "total_submitted_cents", amount)

        if submission.is_pooled:
            _release_receiver(session, submission)
            collector = ledger.collector_account(session, ctx.load_user(), role)
            ledger.roll_daily(collector, *COLLECTOR_DAILY_FIELDS)
            ledger.credit(collector, "total_collected_cents", amount)
            ledger.credit(collector, "today_collected_cents", amount)
            collector.total_collections += 1
            collector.today_collections += 1
            collector.last_collection_at = now

            summary = ledger.finance_summary(session, submission.event_id)
            ledger.credit(summary, "total_collected_cents", amount)
            summary.collection_count += 1
            summary.last_collection_at = now
            source_summary = ledger.cash_source_summary(session, submission.event_id, submission.submitter_role)
            ledger.credit(source_summary, "collected_cents", amount)
        else:
            _release_receiver(session, submission)
            manager_account = ledger.seller_manager_account(session, ctx.load_user())
            ledger.credit(manager_account, "confirmed_from_sellers_cents", amount)
            ledger.credit(manager_account, "cash_on_hand_cents", amount)

    return _resolve(ctx, submission_id, STATUS_CONFIRMED, _clean_reason(note, required=False), pin, _apply)


def dispute_submission(ctx, submission_id, reason, pin) -> CashSubmission:
    """Collector flags a handoff that does not match; the amount moves to disputed."""
    reason = _clean_reason(reason, required=True)

    def _apply(submission, account, role):
        ledger.credit(account, "disputed_cents", submission.amount_cents)
        _release_receiver(ctx.session, submission)
        if submission.is_pooled:
            summary = ledger.finance_summary(ctx.session, submission.event_id)
            ledger.credit(summary, "total_disputed_cents", submission.amount_cents)

    return _resolve(ctx, submission_id, STATUS_DISPUTED, reason, pin, _apply)


def reject_submission(ctx, submission_id, reason, pin) -> CashSubmission:
    """Collector refuses the handoff; the cash goes back to the submitter's hands."""
    reason = _clean_reason(reason, required=True)

    def _apply(submission, account, role):
        ledger.credit(account, IN_HAND_FIELDS[submission.submitter_role], submission.amount_cents)
        _release_receiver(ctx.session, submission)
        if submission.is_pooled:
            summary = ledger.finance_summary(ctx.session, submission.event_id)
            ledger.credit(summary, "total_rejected_cents", submission.amount_cents)

    return _resolve(ctx, submission_id, STATUS_REJECTED, reason, pin, _apply)


def _clean_reason(reason, *, required: bool):
    if reason is not None and not isinstance(reason, str):
        raise InvalidArgumentError("reason must be a string")
    reason = (reason or "").strip() or None
    if required and not reason:
        raise InvalidArgumentError("A reason is required")
    return reason


# =============================================================================
# QUERIES
# =============================================================================

def list_pool(ctx, limit: int = 100) -> list[CashSubmission]:
    """Unclaimed pending submissions, oldest first (cashiers, finance managers)."""
    require_capability(ctx, Capability.COLLECT_CASH)
    return (
        ctx.session.query(CashSubmission)
        .filter(
            CashSubmission.event_id == ctx.event_id,
            CashSubmission.status == STATUS_PENDING,
            CashSubmission.received_by_user_id.is_(None),
        )
        .order_by(CashSubmission.submitted_at.asc(), CashSubmission.id.asc())
        .limit(limit)
        .all()
    )


def list_incoming(ctx, status: str | None = STATUS_PENDING, limit: int = 100) -> list[CashSubmission]:
    """Submissions addressed to the calling seller manager."""
    require_capability(ctx, Capability.RECEIVE_SELLER_CASH)
    query = ctx.session.query(CashSubmission).filter(
        CashSubmission.event_id == ctx.event_id,
        CashSubmission.received_by_user_id == ctx.user_id,
    )
    if status:
        query = query.filter(CashSubmission.status == status)
    return query.order_by(CashSubmission.submitted_at.desc(), CashSubmission.id.desc()).limit(limit).all()


def list_mine(ctx, status: str | None = None, limit: int = 100) -> list[CashSubmission]:
    query = ctx.session.query(CashSubmission).filter(
        CashSubmission.event_id == ctx.event_id,
        CashSubmission.submitted_by_user_id == ctx.user_id,
    )
    if status:
        query = query.filter(CashSubmission.status == status)
    return query.order_by(CashSubmission.submitted_at.desc(), CashSubmission.id.desc()).limit(limit).all()
