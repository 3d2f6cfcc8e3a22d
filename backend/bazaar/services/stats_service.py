# Overview: Statistics aggregator; derived read-models rebuilt after each ledger commit.

"""
Statistics Aggregator

WHY: Department and manager dashboards need roll-ups that would be expensive
to compute per request. They are rebuilt by re-scanning the member set after
every ledger commit, never patched with running deltas, so a missed refresh
is repaired by the next one.

FAILURE POLICY: Statistics are derived data. A refresh that fails is logged,
rolled back and dropped; the ledger operation that triggered it has already
committed and still succeeds. `recompute_all` rebuilds everything on demand.

COLLECTION ALERTS: per seller, pending_ratio = pending collection / cash from
sales (bps). high >= event high-risk threshold, medium >= warning threshold,
low > 0, none otherwise.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..models import (
    User,
    UserRole,
    ManagedDepartment,
    SellerAccount,
    SellerManagerAccount,
    CustomerAccount,
    CollectorAccount,
    Merchant,
    PointCard,
    Transaction,
    Event,
    DepartmentStats,
    SellerManagerStats,
    EventPointStats,
    CashSourceSummary,
)
from ..permissions import Capability, Role
from ..errors import NotFoundError, PermissionDeniedError, InvalidArgumentError
from . import ledger_service as ledger
from .permission_service import require_capability
from bazaar.time_utils import utcnow


ALERT_NONE = "none"
ALERT_LOW = "low"
ALERT_MEDIUM = "medium"
ALERT_HIGH = "high"

MINTING_TRANSACTION_TYPES = (
    ledger.TXN_ALLOCATION,
    ledger.TXN_SELLER_MANAGER_SALE,
    ledger.TXN_POINT_SELLER_SALE,
    ledger.TXN_POINT_CARD_ISSUE,
    ledger.TXN_FREE_GRANT,
)


# =============================================================================
# ROLL-UP COMPUTATION
# =============================================================================

def pending_ratio_bps(pending_collection_cents: int, total_sold_points: int) -> int:
    sales_cents = ledger.points_to_cents(total_sold_points or 0)
    if sales_cents <= 0:
        return 0
    return (pending_collection_cents or 0) * 10000 // sales_cents


def alert_level(ratio_bps: int, event: Event) -> str:
    if ratio_bps >= event.collection_high_risk_threshold_bps:
        return ALERT_HIGH
    if ratio_bps >= event.collection_warning_threshold_bps:
        return ALERT_MEDIUM
    if ratio_bps > 0:
        return ALERT_LOW
    return ALERT_NONE


def _seller_rows(session, event_id: int, departments):
    """(User, SellerAccount|None) for every seller in the given departments."""
    if not departments:
        return []
    return (
        session.query(User, SellerAccount)
        .join(UserRole, UserRole.user_id == User.id)
        .outerjoin(SellerAccount, SellerAccount.user_id == User.id)
        .filter(
            User.event_id == event_id,
            User.department_code.in_(sorted(departments)),
            UserRole.role == Role.SELLER,
        )
        .order_by(User.id)
        .all()
    )


def _apply_rollup(row, rows, event: Event, now) -> None:
    totals = {
        "total_received_points": 0,
        "current_balance_points": 0,
        "total_sold_points": 0,
        "pending_collection_cents": 0,
        "pending_submission_cents": 0,
        "total_submitted_cents": 0,
    }
    warnings = 0
    high_risk = 0
    active = 0
    for user, account in rows:
        if user.is_active:
            active += 1
        if account is None:
            continue
        totals["total_received_points"] += account.total_received_points
        totals["current_balance_points"] += account.available_points
        totals["total_sold_points"] += account.total_sold_points
        totals["pending_collection_cents"] += account.pending_collection_cents
        totals["pending_submission_cents"] += account.pending_submission_cents
        totals["total_submitted_cents"] += account.total_submitted_cents

        level = alert_level(pending_ratio_bps(account.pending_collection_cents, account.total_sold_points), event)
        if level in (ALERT_MEDIUM, ALERT_HIGH):
            warnings += 1
        if level == ALERT_HIGH:
            high_risk += 1

    for field, value in totals.items():
        setattr(row, field, value)
    sales_cents = ledger.points_to_cents(totals["total_sold_points"])
    row.collection_rate_bps = totals["total_submitted_cents"] * 10000 // sales_cents if sales_cents else 0
    row.member_count = len(rows)
    row.active_count = active
    row.users_with_warnings = warnings
    row.high_risk_count = high_risk
    row.computed_at = now


def recompute_department_stats(session, event: Event, department_code: str) -> DepartmentStats:
    row = session.query(DepartmentStats).filter_by(event_id=event.id, department_code=department_code).first()
    if row is None:
        row = DepartmentStats(event_id=event.id, department_code=department_code, computed_at=utcnow())
        session.add(row)
    _apply_rollup(row, _seller_rows(session, event.id, {department_code}), event, utcnow())
    return row


def recompute_seller_manager_stats(session, event: Event, manager_id: int) -> SellerManagerStats:
    departments = {
        code for (code,) in session.query(ManagedDepartment.department_code).filter_by(manager_id=manager_id)
    }
    row = session.query(SellerManagerStats).filter_by(event_id=event.id, manager_id=manager_id).first()
    if row is None:
        row = SellerManagerStats(event_id=event.id, manager_id=manager_id, computed_at=utcnow())
        session.add(row)
    _apply_rollup(row, _seller_rows(session, event.id, departments), event, utcnow())
    row.managed_department_count = len(departments)
    account = session.get(SellerManagerAccount, manager_id)
    row.points_allocated = account.total_points_allocated if account else 0
    return row


def recompute_event_stats(session, event_id: int) -> EventPointStats:
    def _sum(column, *criteria):
        return session.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar()

    row = session.get(EventPointStats, event_id)
    if row is None:
        row = EventPointStats(event_id=event_id, computed_at=utcnow())
        session.add(row)

    row.customer_points = _sum(CustomerAccount.available_points, CustomerAccount.event_id == event_id)
    row.seller_points = _sum(SellerAccount.available_points, SellerAccount.event_id == event_id)
    row.outstanding_card_points = _sum(
        PointCard.current_points,
        PointCard.event_id == event_id,
        PointCard.is_destroyed.is_(False),
    )
    row.merchant_revenue_points = _sum(Merchant.total_revenue_points, Merchant.event_id == event_id)
    row.points_minted = _sum(
        Transaction.amount_points,
        Transaction.event_id == event_id,
        Transaction.transaction_type.in_(MINTING_TRANSACTION_TYPES),
        Transaction.status == ledger.TXN_STATUS_COMPLETED,
    )
    row.customer_count = (
        session.query(func.count(CustomerAccount.user_id)).filter(CustomerAccount.event_id == event_id).scalar()
    )
    row.computed_at = utcnow()
    return row


def _affected_scope(session, event_id: int, user_ids) -> tuple[set, set]:
    """Departments and managers whose roll-ups include any of the given users."""
    departments = set()
    managers = set()
    ids = [uid for uid in set(user_ids or []) if uid is not None]
    if ids:
        for user in session.query(User).filter(User.id.in_(ids), User.event_id == event_id):
            if user.department_code and user.has_role(Role.SELLER):
                departments.add(user.department_code)
            if user.has_role(Role.SELLER_MANAGER):
                managers.add(user.id)
    if departments:
        rows = session.query(ManagedDepartment.manager_id).filter(
            ManagedDepartment.event_id == event_id,
            ManagedDepartment.department_code.in_(sorted(departments)),
        )
        managers.update(manager_id for (manager_id,) in rows)
    return departments, managers


def refresh_after_commit(ctx, user_ids) -> None:
    """
    Post-commit hook run by every ledger-affecting operation.

    Never raises: the triggering operation has already committed.
    """
    session = ctx.session
    try:
        event = session.get(Event, ctx.event_id)
        departments, managers = _affected_scope(session, ctx.event_id, user_ids)
        for code in sorted(departments):
            recompute_department_stats(session, event, code)
        for manager_id in sorted(managers):
            recompute_seller_manager_stats(session, event, manager_id)
        recompute_event_stats(session, ctx.event_id)
        session.commit()
    except Exception:
        session.rollback()
        current_app.logger.exception("Statistics refresh failed for event %s", ctx.event_id)


def recompute_all(session, event_id: int) -> dict:
    """Full rebuild of every roll-up in an event (HTTP and CLI)."""
    event = session.get(Event, event_id)
    if not event:
        raise NotFoundError(f"Event {event_id} not found")

    departments = {
        code for (code,) in session.query(User.department_code)
        .join(UserRole, UserRole.user_id == User.id)
        .filter(User.event_id == event_id, User.department_code.isnot(None), UserRole.role == Role.SELLER)
        .distinct()
    }
    departments.update(
        code for (code,) in session.query(ManagedDepartment.department_code)
        .filter_by(event_id=event_id).distinct()
    )
    managers = {
        user_id for (user_id,) in session.query(UserRole.user_id)
        .join(User, User.id == UserRole.user_id)
        .filter(User.event_id == event_id, UserRole.role == Role.SELLER_MANAGER)
    }

    try:
        for code in sorted(departments):
            recompute_department_stats(session, event, code)
        for manager_id in sorted(managers):
            recompute_seller_manager_stats(session, event, manager_id)
        recompute_event_stats(session, event_id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    current_app.logger.info(
        "Recomputed statistics for event %s: %d departments, %d managers",
        event_id, len(departments), len(managers),
    )
    return {"departments": len(departments), "seller_managers": len(managers)}


# =============================================================================
# READS
# =============================================================================

def _require_department_access(ctx, department_code: str) -> None:
    if not department_code or not isinstance(department_code, str):
        raise InvalidArgumentError("department code is required")
    role = require_capability(ctx, Capability.VIEW_DEPARTMENT_STATS)
    if role == Role.SELLER_MANAGER and not (ctx.caller.roles & {Role.EVENT_MANAGER, Role.FINANCE_MANAGER}):
        owned = {
            code for (code,) in ctx.session.query(ManagedDepartment.department_code)
            .filter_by(manager_id=ctx.user_id)
        }
        if department_code not in owned:
            raise PermissionDeniedError(f"You do not manage department {department_code!r}")


def get_department_stats(ctx, department_code: str) -> DepartmentStats:
    _require_department_access(ctx, department_code)
    row = ctx.session.query(DepartmentStats).filter_by(
        event_id=ctx.event_id, department_code=department_code,
    ).first()
    if row is None:
        row = recompute_department_stats(ctx.session, ctx.load_event(), department_code)
        ctx.session.commit()
    return row


def collection_alerts(ctx, department_code: str) -> list[dict]:
    """Sellers in a department with cash still uncollected, highest ratio first."""
    _require_department_access(ctx, department_code)
    event = ctx.load_event()
    alerts = []
    for user, account in _seller_rows(ctx.session, ctx.event_id, {department_code}):
        if account is None:
            continue
        ratio = pending_ratio_bps(account.pending_collection_cents, account.total_sold_points)
        level = alert_level(ratio, event)
        if level == ALERT_NONE:
            continue
        alerts.append({
            "user_id": user.id,
            "display_name": user.display_name,
            "pending_collection_cents": account.pending_collection_cents,
            "sales_cents": ledger.points_to_cents(account.total_sold_points),
            "pending_ratio_bps": ratio,
            "alert_level": level,
        })
    alerts.sort(key=lambda a: (-a["pending_ratio_bps"], a["user_id"]))
    return alerts


def get_seller_manager_stats(ctx, manager_id) -> SellerManagerStats:
    """A manager reads their own roll-up; event and finance managers read any."""
    if isinstance(manager_id, bool) or not isinstance(manager_id, int):
        raise InvalidArgumentError("manager id must be an integer")
    require_capability(ctx, Capability.VIEW_DEPARTMENT_STATS)
    if manager_id != ctx.user_id and not (ctx.caller.roles & {Role.EVENT_MANAGER, Role.FINANCE_MANAGER}):
        raise PermissionDeniedError("You can only view your own manager statistics")

    manager = ctx.session.get(User, manager_id)
    if not manager or manager.event_id != ctx.event_id or not manager.has_role(Role.SELLER_MANAGER):
        raise NotFoundError(f"Seller manager {manager_id} not found")

    row = ctx.session.query(SellerManagerStats).filter_by(event_id=ctx.event_id, manager_id=manager_id).first()
    if row is None:
        row = recompute_seller_manager_stats(ctx.session, ctx.load_event(), manager_id)
        ctx.session.commit()
    return row


def get_event_stats(ctx) -> EventPointStats:
    require_capability(ctx, Capability.VIEW_FINANCE_SUMMARY)
    row = ctx.session.get(EventPointStats, ctx.event_id)
    if row is None:
        row = recompute_event_stats(ctx.session, ctx.event_id)
        ctx.session.commit()
    return row


def get_finance_summary(ctx) -> dict:
    """Pool cash position, per-submitter-role breakdown and per-collector totals."""
    require_capability(ctx, Capability.VIEW_FINANCE_SUMMARY)
    session = ctx.session
    summary = ledger.finance_summary(session, ctx.event_id)
    session.commit()

    sources = (
        session.query(CashSourceSummary)
        .filter_by(event_id=ctx.event_id)
        .order_by(CashSourceSummary.submitter_role)
        .all()
    )
    collectors = (
        session.query(CollectorAccount)
        .filter_by(event_id=ctx.event_id)
        .order_by(CollectorAccount.user_id, CollectorAccount.role)
        .all()
    )
    return {
        "summary": summary.to_dict(),
        "by_source": [row.to_dict() for row in sources],
        "collectors": [row.to_dict() for row in collectors],
    }


def recompute_event(ctx) -> dict:
    require_capability(ctx, Capability.RECOMPUTE_STATS)
    return recompute_all(ctx.session, ctx.event_id)
