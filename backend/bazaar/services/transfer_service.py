# backend/bazaar/services/transfer_service.py
"""
Transfer Engine: atomic point and cash movements.

WHY: Every way points enter, move through, or leave the economy is one
function here. Each function is a single atomic unit: it reads the latest
state of every row it touches, validates against that snapshot, then writes
all side effects together or not at all.

FLOW PER OPERATION:
1. Capability check (single role->capability table)
2. Transaction PIN check, committed on its own
3. _op(): lock, validate, mutate, log, commit, re-run on write conflict
4. Post-commit statistics refresh (failures logged, never raised)

ISSUERS: Seller managers and point sellers mint points; their own balances
are never decremented. Each minted point is matched by RM1 of cash they now
hold and must later hand in through a cash submission.

PAYMENTS:
1. payment: customer debited, transaction PENDING
2. confirm: merchant revenue credited, COMPLETED
3. cancel: pending only, customer re-credited, CANCELLED
4. refund: completed only, owner only, both sides reversed, REFUNDED
"""
from __future__ import annotations

import secrets
import string
from datetime import timedelta

from ..models import User, UserRole, Merchant, MerchantAssistant, PointCard, Transaction
from ..permissions import Capability, Role
from ..errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    require_positive_points,
    require_non_negative_cents,
)
from . import ledger_service as ledger
from . import stats_service
from .concurrency import lock_for_update, run_with_retry
from .permission_service import has_capability, require_capability
from .pin_service import require_valid_pin
from .tenant_service import require_user_in_event, require_merchant_in_event, find_user_by_phone
from .user_service import managed_departments
from bazaar.time_utils import utcnow, business_date


CARD_NUMBER_PREFIX = "CARD"
CARD_SUFFIX_LENGTH = 5
CARD_NUMBER_ATTEMPTS = 5

MERCHANT_DAILY_FIELDS = (
    "today_revenue_points",
    "today_transaction_count",
    "today_owner_collected_points",
    "today_assistants_collected_points",
)
ASSISTANT_DAILY_FIELDS = ("today_collected_points", "today_transaction_count")
POINT_SELLER_DAILY_FIELDS = (
    "today_cards_issued",
    "today_card_points_issued",
    "today_direct_sales_count",
    "today_direct_sales_points",
    "today_cash_received_cents",
)


# =============================================================================
# SHARED HELPERS
# =============================================================================

def _locked_user(ctx, user_id) -> User:
    return require_user_in_event(ctx, user_id, query=lock_for_update(ctx.session.query(User)))


def _require_customer(user: User, *, label: str = "Recipient") -> None:
    if not user.has_role(Role.CUSTOMER):
        raise InvalidArgumentError(f"{label} {user.id} is not a customer")
    if not user.is_active:
        raise FailedPreconditionError(f"{label} {user.id} is deactivated")


def _clean_note(note) -> str | None:
    if note is None:
        return None
    if not isinstance(note, str):
        raise InvalidArgumentError("note must be a string")
    return note.strip() or None


def _credit_customer(session, customer: User, amount: int, now) -> tuple[int, int]:
    account = ledger.customer_account(session, customer)
    before = account.available_points
    after = ledger.credit(account, "available_points", amount)
    ledger.credit(account, "total_received_points", amount)
    account.transaction_count += 1
    account.last_activity_at = now
    return before, after


def _merchant_staff_role(ctx, merchant: Merchant) -> tuple[str, MerchantAssistant | None]:
    """
    Work out whether the caller collects for this stall as owner or assistant.

    Raises:
        PermissionDeniedError: caller is neither the owner nor an active assistant
    """
    roles = ctx.caller.roles
    if Role.MERCHANT_OWNER in roles and merchant.owner_id == ctx.user_id:
        return Role.MERCHANT_OWNER, None

    if Role.MERCHANT_ASSISTANT in roles:
        assistant = lock_for_update(
            ctx.session.query(MerchantAssistant).filter_by(
                merchant_id=merchant.id, user_id=ctx.user_id, is_active=True,
            )
        ).first()
        if assistant:
            return Role.MERCHANT_ASSISTANT, assistant

    raise PermissionDeniedError(f"You are not the owner or an assistant of merchant {merchant.id}")


def _credit_merchant_revenue(merchant: Merchant, assistant: MerchantAssistant | None, amount: int, collector_role: str) -> None:
    today = business_date()
    ledger.roll_daily(merchant, *MERCHANT_DAILY_FIELDS, today=today)
    ledger.credit(merchant, "total_revenue_points", amount)
    ledger.credit(merchant, "today_revenue_points", amount)
    merchant.transaction_count += 1
    merchant.today_transaction_count += 1

    if collector_role == Role.MERCHANT_OWNER:
        ledger.credit(merchant, "owner_collected_points", amount)
        ledger.credit(merchant, "today_owner_collected_points", amount)
    else:
        ledger.credit(merchant, "assistants_collected_points", amount)
        ledger.credit(merchant, "today_assistants_collected_points", amount)
        ledger.roll_daily(assistant, *ASSISTANT_DAILY_FIELDS, today=today)
        ledger.credit(assistant, "collected_points", amount)
        ledger.credit(assistant, "today_collected_points", amount)
        assistant.transaction_count += 1
        assistant.today_transaction_count += 1


def _locked_merchant(ctx, merchant_id) -> Merchant:
    return require_merchant_in_event(ctx, merchant_id, query=lock_for_update(ctx.session.query(Merchant)))


def _locked_payment(ctx, transaction_id) -> Transaction:
    if isinstance(transaction_id, bool) or not isinstance(transaction_id, int):
        raise InvalidArgumentError("transaction id must be an integer")
    txn = lock_for_update(ctx.session.query(Transaction).filter_by(id=transaction_id)).first()
    if not txn or txn.event_id != ctx.event_id:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    if txn.transaction_type != ledger.TXN_CUSTOMER_TO_MERCHANT:
        raise InvalidArgumentError(f"Transaction {transaction_id} is not a merchant payment")
    return txn


# =============================================================================
# POINT ISSUANCE
# =============================================================================

def allocate_points(ctx, recipient_id, amount, pin, note=None) -> Transaction:
    """
    Seller manager grants points to a seller in one of their departments.

    Args:
        recipient_id: Seller user id
        amount: Points to allocate (1..event.max_points_per_allocation)
        pin: Caller's transaction PIN

    Returns:
        Transaction: completed allocation record with balance snapshots

    Raises:
        InvalidArgumentError: bad amount, over cap, recipient not a seller
        PermissionDeniedError: recipient outside managed departments
        FailedPreconditionError: no managed departments, recipient deactivated
    """
    amount = require_positive_points(amount)
    note = _clean_note(note)
    actor_role = require_capability(ctx, Capability.ALLOCATE_POINTS)
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        event = ctx.load_event()
        if amount > event.max_points_per_allocation:
            raise InvalidArgumentError(
                f"Allocation of {amount} points exceeds the per-allocation cap of {event.max_points_per_allocation}"
            )

        manager = ctx.load_user()
        departments = managed_departments(session, manager.id)
        if not departments:
            raise FailedPreconditionError("You do not manage any departments")

        recipient = _locked_user(ctx, recipient_id)
        if recipient.id == manager.id:
            raise InvalidArgumentError("Cannot allocate points to yourself")
        if not recipient.has_role(Role.SELLER):
            raise InvalidArgumentError(f"User {recipient.id} is not a seller")
        if recipient.department_code not in departments:
            raise PermissionDeniedError(
                f"Seller {recipient.id} is in department {recipient.department_code!r}, which you do not manage"
            )
        if not recipient.is_active:
            raise FailedPreconditionError(f"Seller {recipient.id} is deactivated")

        now = utcnow()
        cash = ledger.points_to_cents(amount)

        seller = ledger.seller_account(session, recipient)
        before = seller.available_points
        after = ledger.credit(seller, "available_points", amount)
        ledger.credit(seller, "total_received_points", amount)
        seller.last_received_at = now

        manager_account = ledger.seller_manager_account(session, manager)
        manager_account.total_allocations += 1
        ledger.credit(manager_account, "total_points_allocated", amount)
        ledger.credit(manager_account, "cash_on_hand_cents", cash)
        ledger.credit(manager_account, "from_point_purchase_cents", cash)
        manager_account.last_allocation_at = now

        txn = ledger.record_transaction(
            session, ctx,
            transaction_type=ledger.TXN_ALLOCATION,
            status=ledger.TXN_STATUS_COMPLETED,
            amount_points=amount,
            cash_amount_cents=cash,
            actor_role=actor_role,
            from_user_id=manager.id,
            to_user_id=recipient.id,
            to_balance=(before, after),
            note=note,
        )
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [ctx.user_id, recipient_id])
    return txn


def direct_sale(ctx, customer_id, amount, pin, as_role=None, note=None) -> Transaction:
    """
    Seller manager or point seller mints points straight to a customer.

    The issuer's balance is untouched; the issuer's cash on hand grows by the
    cash equivalent. Seller managers may only sell to customers in a
    department they manage.
    """
    amount = require_positive_points(amount)
    note = _clean_note(note)
    actor_role = require_capability(ctx, Capability.DIRECT_SALE, preferred_role=as_role)
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        event = ctx.load_event()
        if amount > event.max_points_per_direct_sale:
            raise InvalidArgumentError(
                f"Sale of {amount} points exceeds the per-transaction cap of {event.max_points_per_direct_sale}"
            )

        issuer = ctx.load_user()
        customer = _locked_user(ctx, customer_id)
        if customer.id == issuer.id:
            raise InvalidArgumentError("Cannot sell points to yourself")
        _require_customer(customer, label="Customer")

        if actor_role == Role.SELLER_MANAGER:
            if customer.department_code not in managed_departments(session, issuer.id):
                raise PermissionDeniedError(
                    f"Customer {customer.id} is not in a department you manage"
                )

        now = utcnow()
        cash = ledger.points_to_cents(amount)
        to_balance = _credit_customer(session, customer, amount, now)

        if actor_role == Role.SELLER_MANAGER:
            account = ledger.seller_manager_account(session, issuer)
            account.direct_sales_count += 1
            ledger.credit(account, "direct_sales_points", amount)
            ledger.credit(account, "cash_on_hand_cents", cash)
            ledger.credit(account, "from_point_purchase_cents", cash)
            transaction_type = ledger.TXN_SELLER_MANAGER_SALE
        else:
            account = ledger.point_seller_account(session, issuer)
            ledger.roll_daily(account, *POINT_SELLER_DAILY_FIELDS)
            account.direct_sales_count += 1
            account.today_direct_sales_count += 1
            ledger.credit(account, "direct_sales_points", amount)
            ledger.credit(account, "today_direct_sales_points", amount)
            ledger.credit(account, "total_cash_received_cents", cash)
            ledger.credit(account, "today_cash_received_cents", cash)
            ledger.credit(account, "cash_on_hand_cents", cash)
            transaction_type = ledger.TXN_POINT_SELLER_SALE

        txn = ledger.record_transaction(
            session, ctx,
            transaction_type=transaction_type,
            status=ledger.TXN_STATUS_COMPLETED,
            amount_points=amount,
            cash_amount_cents=cash,
            actor_role=actor_role,
            from_user_id=issuer.id,
            to_user_id=customer.id,
            to_balance=to_balance,
            note=note,
        )
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [ctx.user_id, customer_id])
    return txn


def seller_sale(ctx, customer_id, amount, pin, note=None) -> Transaction:
    """
    Seller resells allocated points to a customer and collects the cash.

    Raises:
        FailedPreconditionError: seller's available points do not cover amount
    """
    amount = require_positive_points(amount)
    note = _clean_note(note)
    actor_role = require_capability(ctx, Capability.SELL_POINTS)
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        seller_user = ctx.load_user()
        customer = _locked_user(ctx, customer_id)
        if customer.id == seller_user.id:
            raise InvalidArgumentError("Cannot sell points to yourself")
        _require_customer(customer, label="Customer")

        now = utcnow()
        seller = ledger.seller_account(session, seller_user)
        before = seller.available_points
        after = ledger.debit(seller, "available_points", amount, label="seller points")
        ledger.credit(seller, "total_sold_points", amount)
        ledger.credit(seller, "pending_collection_cents", ledger.points_to_cents(amount))
        seller.sale_count += 1
        seller.last_sale_at = now

        to_balance = _credit_customer(session, customer, amount, now)

        txn = ledger.record_transaction(
            session, ctx,
            transaction_type=ledger.TXN_SELLER_SALE,
            status=ledger.TXN_STATUS_COMPLETED,
            amount_points=amount,
            cash_amount_cents=ledger.points_to_cents(amount),
            actor_role=actor_role,
            from_user_id=seller_user.id,
            to_user_id=customer.id,
            from_balance=(before, after),
            to_balance=to_balance,
            note=note,
        )
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [ctx.user_id, customer_id])
    return txn


def grant_points(ctx, identity_tag, amount, note=None) -> list[Transaction]:
    """
    Event manager credits free points to every active customer with a tag.

    All recipients are credited in one atomic unit.

    Raises:
        NotFoundError: no active customer carries the tag
    """
    amount = require_positive_points(amount)
    note = _clean_note(note)
    if not identity_tag or not isinstance(identity_tag, str):
        raise InvalidArgumentError("identity_tag is required")
    actor_role = require_capability(ctx, Capability.GRANT_POINTS)
    session = ctx.session

    def _op():
        event = ctx.load_event()
        if amount > event.max_points_per_grant:
            raise InvalidArgumentError(
                f"Grant of {amount} points exceeds the per-grant cap of {event.max_points_per_grant}"
            )

        recipients = lock_for_update(
            session.query(User)
            .join(UserRole, UserRole.user_id == User.id)
            .filter(
                User.event_id == ctx.event_id,
                User.identity_tag == identity_tag,
                User.is_active.is_(True),
                UserRole.role == Role.CUSTOMER,
            )
            .order_by(User.id)
        ).all()
        if not recipients:
            raise NotFoundError(f"No active customers tagged {identity_tag!r}")

        now = utcnow()
        transactions = []
        for customer in recipients:
            to_balance = _credit_customer(session, customer, amount, now)
            transactions.append(ledger.record_transaction(
                session, ctx,
                transaction_type=ledger.TXN_FREE_GRANT,
                status=ledger.TXN_STATUS_COMPLETED,
                amount_points=amount,
                actor_role=actor_role,
                to_user_id=customer.id,
                to_balance=to_balance,
                note=note,
            ))
        session.commit()
        return transactions

    transactions = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [txn.to_user_id for txn in transactions])
    return transactions


# =============================================================================
# CUSTOMER TRANSFERS
# =============================================================================

def transfer_points(ctx, amount, pin, to_user_id=None, to_phone=None, note=None) -> Transaction:
    """Customer sends points to another customer, addressed by user id or phone."""
    amount = require_positive_points(amount)
    note = _clean_note(note)
    if (to_user_id is None) == (to_phone is None):
        raise InvalidArgumentError("Provide exactly one of to_user_id or to_phone")
    actor_role = require_capability(ctx, Capability.TRANSFER_POINTS)
    if to_phone is not None:
        to_user_id = find_user_by_phone(ctx, to_phone).id
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        sender = ctx.load_user()
        recipient = _locked_user(ctx, to_user_id)
        if recipient.id == sender.id:
            raise InvalidArgumentError("Cannot transfer points to yourself")
        _require_customer(recipient)

        now = utcnow()
        sender_account = ledger.customer_account(session, sender)
        from_before = sender_account.available_points
        from_after = ledger.debit(sender_account, "available_points", amount, label="points balance")
        ledger.credit(sender_account, "transferred_out_points", amount)
        sender_account.transaction_count += 1
        sender_account.last_activity_at = now

        recipient_account = ledger.customer_account(session, recipient)
        to_before = recipient_account.available_points
        to_after = ledger.credit(recipient_account, "available_points", amount)
        ledger.credit(recipient_account, "transferred_in_points", amount)
        recipient_account.transaction_count += 1
        recipient_account.last_activity_at = now

        txn = ledger.record_transaction(
            session, ctx,
            transaction_type=ledger.TXN_CUSTOMER_TRANSFER,
            status=ledger.TXN_STATUS_COMPLETED,
            amount_points=amount,
            actor_role=actor_role,
            from_user_id=sender.id,
            to_user_id=recipient.id,
            from_balance=(from_before, from_after),
            to_balance=(to_before, to_after),
            note=note,
        )
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [ctx.user_id, to_user_id])
    return txn


# =============================================================================
# MERCHANT PAYMENTS
# =============================================================================

def create_payment(ctx, merchant_id, amount, pin, note=None) -> Transaction:
    """
    Customer pays a merchant. Points leave the customer immediately; the
    transaction stays PENDING until stall staff confirm it.

    Raises:
        FailedPreconditionError: merchant inactive or balance below amount
    """
    amount = require_positive_points(amount)
    note = _clean_note(note)
    actor_role = require_capability(ctx, Capability.MAKE_PAYMENT)
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        merchant = require_merchant_in_event(ctx, merchant_id)
        if not merchant.is_active:
            raise FailedPreconditionError(f"Merchant {merchant.id} is not accepting payments")

        customer = ctx.load_user()
        account = ledger.customer_account(session, customer)
        before = account.available_points
        after = ledger.debit(account, "available_points", amount, label="points balance")
        ledger.credit(account, "total_spent_points", amount)
        account.transaction_count += 1
        account.last_activity_at = utcnow()

        txn = ledger.record_transaction(
            session, ctx,
            transaction_type=ledger.TXN_CUSTOMER_TO_MERCHANT,
            status=ledger.TXN_STATUS_PENDING,
            amount_points=amount,
            actor_role=actor_role,
            from_user_id=customer.id,
            merchant_id=merchant.id,
            from_balance=(before, after),
            note=note,
        )
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [ctx.user_id])
    return txn


def confirm_payment(ctx, transaction_id) -> Transaction:
    """
    Stall owner or assistant finalizes a pending payment.

    Revenue is credited to the stall and attributed to the collector.

    Raises:
        PermissionDeniedError: caller is not staff at the paid stall
        FailedPreconditionError: payment is not pending
    """
    require_capability(ctx, Capability.COLLECT_PAYMENT)
    session = ctx.session

    def _op():
        txn = _locked_payment(ctx, transaction_id)
        merchant = _locked_merchant(ctx, txn.merchant_id)
        collector_role, assistant = _merchant_staff_role(ctx, merchant)
        if txn.status != ledger.TXN_STATUS_PENDING:
            raise FailedPreconditionError(f"Payment {txn.id} is {txn.status}, not pending")

        _credit_merchant_revenue(merchant, assistant, txn.amount_points, collector_role)

        txn.collected_by_user_id = ctx.user_id
        txn.collector_role = collector_role
        ledger.advance_status(session, ctx, txn, ledger.TXN_STATUS_COMPLETED, actor_role=collector_role)
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [])
    return txn


def cancel_payment(ctx, transaction_id, reason=None) -> Transaction:
    """Stall staff decline a pending payment; the customer gets the points back."""
    reason = _clean_note(reason)
    require_capability(ctx, Capability.COLLECT_PAYMENT)
    session = ctx.session

    def _op():
        txn = _locked_payment(ctx, transaction_id)
        merchant = _locked_merchant(ctx, txn.merchant_id)
        collector_role, _assistant = _merchant_staff_role(ctx, merchant)
        if txn.status != ledger.TXN_STATUS_PENDING:
            raise FailedPreconditionError(f"Payment {txn.id} is {txn.status}, not pending")

        customer = _locked_user(ctx, txn.from_user_id)
        account = ledger.customer_account(session, customer)
        ledger.credit(account, "available_points", txn.amount_points)
        ledger.debit(account, "total_spent_points", txn.amount_points, label="customer spend total")
        account.last_activity_at = utcnow()

        txn.cancel_reason = reason
        ledger.advance_status(session, ctx, txn, ledger.TXN_STATUS_CANCELLED, actor_role=collector_role, reason=reason)
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [txn.from_user_id])
    return txn


def refund_payment(ctx, transaction_id, reason) -> Transaction:
    """
    Stall owner reverses a completed payment.

    Both sides are reversed in one unit: the customer is re-credited, stall
    revenue and the collector's statistics are debited. Today's counters are
    only reduced when the payment was confirmed today.

    Raises:
        InvalidArgumentError: no refund reason
        PermissionDeniedError: caller does not own the stall
        FailedPreconditionError: payment not completed
    """
    reason = _clean_note(reason)
    if not reason:
        raise InvalidArgumentError("A refund reason is required")
    actor_role = require_capability(ctx, Capability.REFUND_PAYMENT)
    session = ctx.session

    def _op():
        txn = _locked_payment(ctx, transaction_id)
        merchant = _locked_merchant(ctx, txn.merchant_id)
        if merchant.owner_id != ctx.user_id:
            raise PermissionDeniedError(f"Only the owner of merchant {merchant.id} can refund its payments")
        if txn.status != ledger.TXN_STATUS_COMPLETED:
            raise FailedPreconditionError(f"Payment {txn.id} is {txn.status}; only completed payments can be refunded")

        amount = txn.amount_points
        customer = _locked_user(ctx, txn.from_user_id)
        account = ledger.customer_account(session, customer)
        ledger.credit(account, "available_points", amount)
        ledger.debit(account, "total_spent_points", amount, label="customer spend total")
        account.last_activity_at = utcnow()

        ledger.debit(merchant, "total_revenue_points", amount, label="merchant revenue")
        ledger.credit(merchant, "refunded_points", amount)
        merchant.refund_count += 1

        confirmed_today = (
            txn.completed_at is not None
            and txn.completed_at.date() == business_date()
            and merchant.stats_date == business_date()
        )
        if confirmed_today:
            ledger.debit(merchant, "today_revenue_points", amount, label="merchant revenue today")

        if txn.collector_role == Role.MERCHANT_ASSISTANT:
            ledger.debit(merchant, "assistants_collected_points", amount, label="assistant-collected revenue")
            if confirmed_today:
                ledger.debit(merchant, "today_assistants_collected_points", amount, label="assistant revenue today")
            assistant = lock_for_update(
                session.query(MerchantAssistant).filter_by(
                    merchant_id=merchant.id, user_id=txn.collected_by_user_id,
                )
            ).first()
            if assistant:
                ledger.debit(assistant, "collected_points", amount, label="assistant collections")
                ledger.credit(assistant, "refunded_points", amount)
                if confirmed_today and assistant.stats_date == business_date():
                    ledger.debit(assistant, "today_collected_points", amount, label="assistant collections today")
        else:
            ledger.debit(merchant, "owner_collected_points", amount, label="owner-collected revenue")
            if confirmed_today:
                ledger.debit(merchant, "today_owner_collected_points", amount, label="owner revenue today")

        txn.refund_reason = reason
        ledger.advance_status(session, ctx, txn, ledger.TXN_STATUS_REFUNDED, actor_role=actor_role, reason=reason)
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [txn.from_user_id])
    return txn


def get_transaction(ctx, transaction_id) -> Transaction:
    """
    Read one transaction.

    Visible to its parties, to staff of the paid stall, and to roles that
    read finance summaries.
    """
    if isinstance(transaction_id, bool) or not isinstance(transaction_id, int):
        raise InvalidArgumentError("transaction id must be an integer")
    txn = ctx.session.get(Transaction, transaction_id)
    if not txn or txn.event_id != ctx.event_id:
        raise NotFoundError(f"Transaction {transaction_id} not found")

    parties = {txn.actor_user_id, txn.from_user_id, txn.to_user_id, txn.collected_by_user_id}
    if ctx.user_id in parties or has_capability(ctx.caller.roles, Capability.VIEW_FINANCE_SUMMARY):
        return txn
    if txn.merchant_id is not None:
        merchant = ctx.session.get(Merchant, txn.merchant_id)
        if merchant.owner_id == ctx.user_id:
            return txn
        staff = ctx.session.query(MerchantAssistant).filter_by(
            merchant_id=txn.merchant_id, user_id=ctx.user_id, is_active=True,
        ).first()
        if staff:
            return txn
    raise PermissionDeniedError(f"You are not a party to transaction {transaction_id}")


# =============================================================================
# POINT CARDS
# =============================================================================

def _generate_card_number(session, event_id: int, now) -> str:
    alphabet = string.ascii_uppercase + string.digits
    for _ in range(CARD_NUMBER_ATTEMPTS):
        suffix = "".join(secrets.choice(alphabet) for _ in range(CARD_SUFFIX_LENGTH))
        number = f"{CARD_NUMBER_PREFIX}-{now:%Y%m%d}-{suffix}"
        exists = session.query(PointCard.id).filter_by(event_id=event_id, card_number=number).first()
        if not exists:
            return number
    raise FailedPreconditionError("Could not allocate a unique card number; retry the request")


def _locked_card(ctx, card_number) -> PointCard:
    if not card_number or not isinstance(card_number, str):
        raise InvalidArgumentError("card_number is required")
    card = lock_for_update(
        ctx.session.query(PointCard).filter_by(event_id=ctx.event_id, card_number=card_number.strip().upper())
    ).first()
    if not card:
        raise NotFoundError(f"Point card {card_number} not found")
    return card


def require_card_usable(card: PointCard, now) -> None:
    """
    Raises:
        FailedPreconditionError: card destroyed, expired or inactive
    """
    if card.is_destroyed:
        raise FailedPreconditionError(f"Point card {card.card_number} has been destroyed")
    if card.is_expired or (card.expires_at is not None and card.expires_at <= now):
        raise FailedPreconditionError(f"Point card {card.card_number} has expired")
    if not card.is_active:
        raise FailedPreconditionError(f"Point card {card.card_number} is not active")


def issue_point_card(ctx, amount, pin, cash_received_cents=None, note=None) -> PointCard:
    """
    Point seller mints a bearer card loaded with `amount` points.

    cash_received_cents defaults to the 1:1 cash equivalent of the points.
    """
    amount = require_positive_points(amount)
    note = _clean_note(note)
    if cash_received_cents is None:
        cash_received_cents = ledger.points_to_cents(amount)
    cash_received_cents = require_non_negative_cents(cash_received_cents, "cash_received_cents")
    actor_role = require_capability(ctx, Capability.ISSUE_POINT_CARD)
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        event = ctx.load_event()
        if amount > event.max_points_per_card:
            raise InvalidArgumentError(
                f"Card value of {amount} points exceeds the per-card cap of {event.max_points_per_card}"
            )

        now = utcnow()
        issuer = ctx.load_user()
        card = PointCard(
            org_id=ctx.org_id,
            event_id=ctx.event_id,
            card_number=_generate_card_number(session, ctx.event_id, now),
            issuer_id=issuer.id,
            cash_received_cents=cash_received_cents,
            initial_points=amount,
            current_points=amount,
            spent_points=0,
            issued_at=now,
            expires_at=(
                now + timedelta(days=event.point_card_validity_days)
                if event.point_card_validity_days else None
            ),
        )
        session.add(card)
        session.flush()

        account = ledger.point_seller_account(session, issuer)
        ledger.roll_daily(account, *POINT_SELLER_DAILY_FIELDS)
        account.cards_issued += 1
        account.today_cards_issued += 1
        ledger.credit(account, "card_points_issued", amount)
        ledger.credit(account, "today_card_points_issued", amount)
        ledger.credit(account, "total_cash_received_cents", cash_received_cents)
        ledger.credit(account, "today_cash_received_cents", cash_received_cents)
        ledger.credit(account, "cash_on_hand_cents", cash_received_cents)

        ledger.record_transaction(
            session, ctx,
            transaction_type=ledger.TXN_POINT_CARD_ISSUE,
            status=ledger.TXN_STATUS_COMPLETED,
            amount_points=amount,
            cash_amount_cents=cash_received_cents,
            actor_role=actor_role,
            from_user_id=issuer.id,
            point_card_id=card.id,
            note=note,
        )
        session.commit()
        return card

    card = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [ctx.user_id])
    return card


def redeem_point_card(ctx, card_number, merchant_id, amount, pin) -> Transaction:
    """
    Stall staff take a payment from a point card.

    Raises:
        FailedPreconditionError: card inactive, expired, destroyed, or short
            of balance; merchant inactive
        PermissionDeniedError: caller is not staff at the stall
    """
    amount = require_positive_points(amount)
    require_capability(ctx, Capability.COLLECT_PAYMENT)
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        merchant = _locked_merchant(ctx, merchant_id)
        collector_role, assistant = _merchant_staff_role(ctx, merchant)
        if not merchant.is_active:
            raise FailedPreconditionError(f"Merchant {merchant.id} is not accepting payments")

        now = utcnow()
        card = _locked_card(ctx, card_number)
        require_card_usable(card, now)

        before = card.current_points
        after = ledger.debit(card, "current_points", amount, label="card balance")
        ledger.credit(card, "spent_points", amount)
        card.transaction_count += 1
        card.first_used_at = card.first_used_at or now
        card.last_used_at = now
        if after == 0:
            card.is_empty = True

        _credit_merchant_revenue(merchant, assistant, amount, collector_role)

        txn = ledger.record_transaction(
            session, ctx,
            transaction_type=ledger.TXN_POINT_CARD_PAYMENT,
            status=ledger.TXN_STATUS_COMPLETED,
            amount_points=amount,
            actor_role=collector_role,
            merchant_id=merchant.id,
            point_card_id=card.id,
            from_balance=(before, after),
            collected_by_user_id=ctx.user_id,
            collector_role=collector_role,
        )
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [])
    return txn


def topup_from_point_card(ctx, card_number, pin) -> Transaction:
    """
    Customer absorbs a card's whole remaining balance into their account.

    The card is spent down to zero and destroyed.
    """
    actor_role = require_capability(ctx, Capability.TOPUP_FROM_CARD)
    require_valid_pin(ctx, pin)
    session = ctx.session

    def _op():
        now = utcnow()
        card = _locked_card(ctx, card_number)
        require_card_usable(card, now)
        amount = card.current_points
        if amount <= 0:
            raise FailedPreconditionError(f"Point card {card.card_number} has no balance left")

        ledger.debit(card, "current_points", amount, label="card balance")
        ledger.credit(card, "spent_points", amount)
        card.transaction_count += 1
        card.first_used_at = card.first_used_at or now
        card.last_used_at = now
        card.is_empty = True
        card.is_active = False
        card.is_destroyed = True
        card.destroyed_at = now

        customer = ctx.load_user()
        to_balance = _credit_customer(session, customer, amount, now)

        txn = ledger.record_transaction(
            session, ctx,
            transaction_type=ledger.TXN_POINT_CARD_TOPUP,
            status=ledger.TXN_STATUS_COMPLETED,
            amount_points=amount,
            actor_role=actor_role,
            to_user_id=customer.id,
            point_card_id=card.id,
            from_balance=(amount, 0),
            to_balance=to_balance,
        )
        session.commit()
        return txn

    txn = run_with_retry(_op, session=session)
    stats_service.refresh_after_commit(ctx, [ctx.user_id])
    return txn


def get_point_card(ctx, card_number) -> PointCard:
    """Look up a card in the caller's event (bearer instruments are readable by number)."""
    if not card_number or not isinstance(card_number, str):
        raise InvalidArgumentError("card_number is required")
    card = ctx.session.query(PointCard).filter_by(
        event_id=ctx.event_id, card_number=card_number.strip().upper(),
    ).first()
    if not card:
        raise NotFoundError(f"Point card {card_number} not found")
    return card
