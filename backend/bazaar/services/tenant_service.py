"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Every id arriving from client input (user, merchant, card, submission)
must be validated against the caller's event before use. Records from
another tenant are reported as not-found so their existence is not leaked,
and the attempt is logged.

USAGE:
    from bazaar.services.tenant_service import require_user_in_event

    customer = require_user_in_event(ctx, customer_id)
"""

from __future__ import annotations

from flask import current_app

from ..models import User, Merchant
from ..errors import NotFoundError, InvalidArgumentError


def _cross_tenant(ctx, kind: str, record_id) -> None:
    current_app.logger.warning(
        "Cross-tenant access denied: user %s in event %s asked for %s %s",
        ctx.user_id, ctx.event_id, kind, record_id,
    )


def require_user_in_event(ctx, user_id, *, query=None) -> User:
    """
    Validate that a user id belongs to the caller's event.

    `query` lets callers pass a locked query (lock_for_update) for use inside
    an atomic unit.

    Raises:
        InvalidArgumentError: user_id missing or not an integer
        NotFoundError: no such user in this event
    """
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise InvalidArgumentError("user id must be an integer")

    q = query if query is not None else ctx.session.query(User)
    user = q.filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if user.event_id != ctx.event_id:
        _cross_tenant(ctx, "user", user_id)
        raise NotFoundError(f"User {user_id} not found")
    return user


def find_user_by_phone(ctx, phone: str) -> User:
    if not phone or not isinstance(phone, str):
        raise InvalidArgumentError("phone is required")
    user = ctx.session.query(User).filter_by(event_id=ctx.event_id, phone=phone.strip()).first()
    if not user:
        raise NotFoundError(f"No user with phone {phone} in this event")
    return user


def require_merchant_in_event(ctx, merchant_id, *, query=None) -> Merchant:
    if isinstance(merchant_id, bool) or not isinstance(merchant_id, int):
        raise InvalidArgumentError("merchant_id must be an integer")

    q = query if query is not None else ctx.session.query(Merchant)
    merchant = q.filter(Merchant.id == merchant_id).first()
    if not merchant:
        raise NotFoundError(f"Merchant {merchant_id} not found")
    if merchant.event_id != ctx.event_id:
        _cross_tenant(ctx, "merchant", merchant_id)
        raise NotFoundError(f"Merchant {merchant_id} not found")
    return merchant
