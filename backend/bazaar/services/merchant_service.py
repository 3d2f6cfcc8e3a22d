"""
Merchant Registry

Stalls, their owners and their assistants. Revenue columns on these rows are
written only by the transfer engine.

RULES:
- One stall per merchant owner per event
- An assistant helps at most one stall per event
- At most MAX_ASSISTANTS_PER_MERCHANT active assistants per stall
- Removing an assistant deactivates the assignment; collection history stays
"""

from __future__ import annotations

from ..models import Merchant, MerchantAssistant
from ..permissions import Capability, Role
from ..errors import (
    AlreadyExistsError,
    FailedPreconditionError,
    InvalidArgumentError,
    PermissionDeniedError,
)
from .concurrency import lock_for_update, run_with_retry
from .permission_service import has_capability, require_capability
from .tenant_service import require_merchant_in_event, require_user_in_event
from bazaar.time_utils import utcnow


MAX_ASSISTANTS_PER_MERCHANT = 5


def create_merchant(ctx, owner_id, stall_name, description=None) -> Merchant:
    require_capability(ctx, Capability.MANAGE_MERCHANTS)
    if not stall_name or not isinstance(stall_name, str) or not stall_name.strip():
        raise InvalidArgumentError("stall_name is required")
    session = ctx.session

    def _op():
        owner = require_user_in_event(ctx, owner_id)
        if not owner.has_role(Role.MERCHANT_OWNER):
            raise InvalidArgumentError(f"User {owner.id} is not a merchant owner")
        if session.query(Merchant).filter_by(event_id=ctx.event_id, owner_id=owner.id).first():
            raise AlreadyExistsError(f"User {owner.id} already owns a stall in this event")

        merchant = Merchant(
            org_id=ctx.org_id,
            event_id=ctx.event_id,
            owner_id=owner.id,
            stall_name=stall_name.strip(),
            description=description,
            is_active=True,
        )
        session.add(merchant)
        session.commit()
        return merchant

    return run_with_retry(_op, session=session)


def _require_manager_or_owner(ctx, merchant: Merchant) -> None:
    if merchant.owner_id == ctx.user_id and Role.MERCHANT_OWNER in ctx.caller.roles:
        return
    if has_capability(ctx.caller.roles, Capability.MANAGE_MERCHANTS):
        return
    # Logs the denial
    require_capability(ctx, Capability.MANAGE_MERCHANTS)


def _active_assistant_count(session, merchant_id: int) -> int:
    return session.query(MerchantAssistant).filter_by(merchant_id=merchant_id, is_active=True).count()


def assign_assistant(ctx, merchant_id, user_id) -> MerchantAssistant:
    """
    Attach an assistant to a stall (merchant manager or the stall owner).

    A previously removed assignment row for the user is reactivated, so the
    assistant's lifetime statistics carry over.

    Raises:
        AlreadyExistsError: user already assists a stall
        FailedPreconditionError: stall already has the maximum assistants
    """
    merchant = require_merchant_in_event(ctx, merchant_id)
    _require_manager_or_owner(ctx, merchant)
    session = ctx.session

    def _op():
        locked = require_merchant_in_event(ctx, merchant_id, query=lock_for_update(session.query(Merchant)))
        user = require_user_in_event(ctx, user_id)
        if not user.has_role(Role.MERCHANT_ASSISTANT):
            raise InvalidArgumentError(f"User {user.id} is not a merchant assistant")

        existing = lock_for_update(
            session.query(MerchantAssistant).filter_by(event_id=ctx.event_id, user_id=user.id)
        ).first()
        if existing and existing.is_active:
            raise AlreadyExistsError(f"User {user.id} already assists merchant {existing.merchant_id}")

        if _active_assistant_count(session, locked.id) >= MAX_ASSISTANTS_PER_MERCHANT:
            raise FailedPreconditionError(
                f"Merchant {locked.id} already has {MAX_ASSISTANTS_PER_MERCHANT} assistants"
            )

        if existing:
            existing.merchant_id = locked.id
            existing.is_active = True
            existing.assigned_at = utcnow()
            existing.removed_at = None
            assistant = existing
        else:
            assistant = MerchantAssistant(
                event_id=ctx.event_id,
                merchant_id=locked.id,
                user_id=user.id,
                is_active=True,
                assigned_at=utcnow(),
            )
            session.add(assistant)
        session.commit()
        return assistant

    return run_with_retry(_op, session=session)


def remove_assistant(ctx, merchant_id, user_id) -> MerchantAssistant:
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise InvalidArgumentError("user id must be an integer")
    merchant = require_merchant_in_event(ctx, merchant_id)
    _require_manager_or_owner(ctx, merchant)
    session = ctx.session

    def _op():
        assistant = lock_for_update(
            session.query(MerchantAssistant).filter_by(
                merchant_id=merchant.id, user_id=user_id, is_active=True,
            )
        ).first()
        if not assistant:
            raise FailedPreconditionError(f"User {user_id} is not an active assistant of merchant {merchant.id}")
        assistant.is_active = False
        assistant.removed_at = utcnow()
        session.commit()
        return assistant

    return run_with_retry(_op, session=session)


def set_merchant_active(ctx, merchant_id, is_active) -> Merchant:
    """Open or close a stall; a closed stall rejects new payments."""
    require_capability(ctx, Capability.MANAGE_MERCHANTS)
    if not isinstance(is_active, bool):
        raise InvalidArgumentError("is_active must be true or false")
    session = ctx.session

    def _op():
        merchant = require_merchant_in_event(ctx, merchant_id, query=lock_for_update(session.query(Merchant)))
        merchant.is_active = is_active
        session.commit()
        return merchant

    return run_with_retry(_op, session=session)


def get_merchant(ctx, merchant_id) -> Merchant:
    """Stall with revenue statistics; visible to its staff and merchant managers."""
    merchant = require_merchant_in_event(ctx, merchant_id)
    if merchant.owner_id == ctx.user_id or has_capability(ctx.caller.roles, Capability.MANAGE_MERCHANTS):
        return merchant
    staff = ctx.session.query(MerchantAssistant).filter_by(
        merchant_id=merchant.id, user_id=ctx.user_id, is_active=True,
    ).first()
    if staff:
        return merchant
    raise PermissionDeniedError(f"You are not staff at merchant {merchant.id}")

