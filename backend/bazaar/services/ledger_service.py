# Overview: Balance ledger primitives; the only code that touches balance columns.

"""
Balance Ledger

WHY: Every balance column (points and cash) is changed through credit() and
debit() so the non-negative balance rule is enforced in one place. A debit that
would drive a balance below zero is rejected with failed-precondition; it is
never clamped.

DESIGN:
- Accounts are loaded with lock_for_update inside the caller's atomic unit
  and created on first use
- Version-checked rows turn concurrent writers into StaleDataError, which
  run_with_retry answers by re-running the whole operation
- Transactions are append-only; only status columns advance, each with a
  history row
"""

from __future__ import annotations

from ..models import (
    SellerAccount,
    SellerManagerAccount,
    PointSellerAccount,
    CustomerAccount,
    CollectorAccount,
    Transaction,
    TransactionStatusHistory,
    FinanceSummary,
    CashSourceSummary,
)
from ..errors import FailedPreconditionError
from ..permissions import Role, COLLECTOR_ROLES
from .concurrency import lock_for_update
from bazaar.time_utils import utcnow, business_date, cents_to_amount


# Fixed 1:1 point:cash assumption (1 point = RM1.00)
POINT_VALUE_CENTS = 100

# Transaction types
TXN_ALLOCATION = "allocation"
TXN_SELLER_MANAGER_SALE = "seller_manager_sale"
TXN_POINT_SELLER_SALE = "point_seller_sale"
TXN_SELLER_SALE = "seller_sale"
TXN_CUSTOMER_TO_MERCHANT = "customer_to_merchant"
TXN_CUSTOMER_TRANSFER = "customer_transfer"
TXN_POINT_CARD_ISSUE = "point_card_issue"
TXN_POINT_CARD_PAYMENT = "point_card_payment"
TXN_POINT_CARD_TOPUP = "point_card_topup"
TXN_FREE_GRANT = "free_grant"

# Sale transactions whose cash can back a cash submission
SALE_TRANSACTION_TYPES = (TXN_SELLER_MANAGER_SALE, TXN_POINT_SELLER_SALE, TXN_SELLER_SALE)

# Transaction statuses
TXN_STATUS_PENDING = "pending"
TXN_STATUS_COMPLETED = "completed"
TXN_STATUS_REFUNDED = "refunded"
TXN_STATUS_CANCELLED = "cancelled"


def points_to_cents(points: int) -> int:
    return points * POINT_VALUE_CENTS


# =============================================================================
# BALANCE MUTATION
# =============================================================================

def credit(record, field: str, amount: int) -> int:
    """Add `amount` to a balance column and return the new value."""
    new_value = (getattr(record, field) or 0) + amount
    setattr(record, field, new_value)
    return new_value


def debit(record, field: str, amount: int, *, label: str, cash: bool = False) -> int:
    """
    Subtract `amount` from a balance column.

    Raises:
        FailedPreconditionError: the balance would go below zero
    """
    current = getattr(record, field) or 0
    if current < amount:
        if cash:
            raise FailedPreconditionError(
                f"Insufficient {label}: available RM {cents_to_amount(current)}, "
                f"required RM {cents_to_amount(amount)}",
                details={"available_cents": current, "required_cents": amount},
            )
        raise FailedPreconditionError(
            f"Insufficient {label}: available {current}, required {amount}",
            details={"available": current, "required": amount},
        )
    new_value = current - amount
    setattr(record, field, new_value)
    return new_value


def roll_daily(record, *fields: str, today=None) -> None:
    """Zero the today_* counters when the record was last written on another day."""
    today = today or business_date()
    if record.stats_date != today:
        for field in fields:
            setattr(record, field, 0)
        record.stats_date = today


# =============================================================================
# ACCOUNT LOOKUP
# =============================================================================

def _locked_account(session, model, user):
    account = lock_for_update(session.query(model).filter_by(user_id=user.id)).first()
    if account is None:
        account = model(user_id=user.id, event_id=user.event_id)
        session.add(account)
        session.flush()
    return account


def seller_account(session, user) -> SellerAccount:
    return _locked_account(session, SellerAccount, user)


def seller_manager_account(session, user) -> SellerManagerAccount:
    return _locked_account(session, SellerManagerAccount, user)


def point_seller_account(session, user) -> PointSellerAccount:
    return _locked_account(session, PointSellerAccount, user)


def customer_account(session, user) -> CustomerAccount:
    return _locked_account(session, CustomerAccount, user)


def collector_account(session, user, role: str) -> CollectorAccount:
    account = lock_for_update(
        session.query(CollectorAccount).filter_by(user_id=user.id, role=role)
    ).first()
    if account is None:
        account = CollectorAccount(user_id=user.id, event_id=user.event_id, role=role)
        session.add(account)
        session.flush()
    return account


def finance_summary(session, event_id: int) -> FinanceSummary:
    summary = lock_for_update(session.query(FinanceSummary).filter_by(event_id=event_id)).first()
    if summary is None:
        summary = FinanceSummary(event_id=event_id)
        session.add(summary)
        session.flush()
    return summary


def cash_source_summary(session, event_id: int, submitter_role: str) -> CashSourceSummary:
    summary = lock_for_update(
        session.query(CashSourceSummary).filter_by(event_id=event_id, submitter_role=submitter_role)
    ).first()
    if summary is None:
        summary = CashSourceSummary(event_id=event_id, submitter_role=submitter_role)
        session.add(summary)
        session.flush()
    return summary


# Accounts opened for each role when a user is registered.
ROLE_ACCOUNT_MODELS = {
    Role.SELLER: SellerAccount,
    Role.SELLER_MANAGER: SellerManagerAccount,
    Role.POINT_SELLER: PointSellerAccount,
    Role.CUSTOMER: CustomerAccount,
}


def open_role_accounts(session, user) -> None:
    """Create the ledger rows a newly registered user needs for their roles."""
    for role in user.roles:
        model = ROLE_ACCOUNT_MODELS.get(role)
        if model is not None and session.get(model, user.id) is None:
            session.add(model(user_id=user.id, event_id=user.event_id))
        elif role in COLLECTOR_ROLES:
            exists = session.query(CollectorAccount).filter_by(user_id=user.id, role=role).first()
            if not exists:
                session.add(CollectorAccount(user_id=user.id, event_id=user.event_id, role=role))


# =============================================================================
# TRANSACTION LOG
# =============================================================================

def record_transaction(
    session,
    ctx,
    *,
    transaction_type: str,
    status: str,
    amount_points: int,
    actor_role: str,
    cash_amount_cents: int = 0,
    from_user_id: int | None = None,
    to_user_id: int | None = None,
    merchant_id: int | None = None,
    point_card_id: int | None = None,
    from_balance: tuple[int, int] | None = None,
    to_balance: tuple[int, int] | None = None,
    collected_by_user_id: int | None = None,
    collector_role: str | None = None,
    note: str | None = None,
) -> Transaction:
    """
    Append a transaction and its initial history row.

    from_balance / to_balance are (before, after) snapshots read inside the
    same atomic unit.
    """
    now = utcnow()
    txn = Transaction(
        org_id=ctx.org_id,
        event_id=ctx.event_id,
        transaction_type=transaction_type,
        status=status,
        amount_points=amount_points,
        cash_amount_cents=cash_amount_cents,
        actor_user_id=ctx.user_id,
        actor_role=actor_role,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        merchant_id=merchant_id,
        point_card_id=point_card_id,
        from_balance_before=from_balance[0] if from_balance else None,
        from_balance_after=from_balance[1] if from_balance else None,
        to_balance_before=to_balance[0] if to_balance else None,
        to_balance_after=to_balance[1] if to_balance else None,
        collected_by_user_id=collected_by_user_id,
        collector_role=collector_role,
        note=note,
        created_at=now,
        completed_at=now if status == TXN_STATUS_COMPLETED else None,
    )
    session.add(txn)
    session.flush()
    session.add(TransactionStatusHistory(
        transaction_id=txn.id,
        from_status=None,
        to_status=status,
        changed_by_user_id=ctx.user_id,
        changed_by_role=actor_role,
        changed_at=now,
    ))
    return txn


def advance_status(session, ctx, txn: Transaction, to_status: str, *, actor_role: str, reason: str | None = None) -> None:
    """Move a transaction to a new status and append the history row."""
    now = utcnow()
    from_status = txn.status
    txn.status = to_status
    if to_status == TXN_STATUS_COMPLETED:
        txn.completed_at = now
    elif to_status == TXN_STATUS_REFUNDED:
        txn.refunded_at = now
    elif to_status == TXN_STATUS_CANCELLED:
        txn.cancelled_at = now
    session.add(TransactionStatusHistory(
        transaction_id=txn.id,
        from_status=from_status,
        to_status=to_status,
        changed_by_user_id=ctx.user_id,
        changed_by_role=actor_role,
        reason=reason,
        changed_at=now,
    ))
