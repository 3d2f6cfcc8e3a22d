# Overview: Single role-capability check plus security event logging.

"""
Capability Checking and Security Event Logging with Multi-Tenant Support

WHY: Roles are a closed set of tags and every operation asks one question:
does the caller hold a role that grants this capability? Keeping that in one
function replaces scattered role-string tests in handlers.

DESIGN PRINCIPLES:
- Fail closed: deny unless a held role grants the capability
- Log denials only: grants are not logged
- Tenant isolation: events carry org_id and event_id
"""

from __future__ import annotations

from ..models import SecurityEvent
from ..permissions import capabilities_for_roles, roles_granting
from ..errors import PermissionDeniedError
from bazaar.time_utils import utcnow


def log_security_event(
    session,
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
    event_id: int | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    event_type examples:
    - PERMISSION_DENIED
    - PIN_FAILED
    - PIN_LOCKED
    - PIN_SET
    - PIN_RESET

    commit=False lets the caller fold the event into its own atomic unit.
    """
    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        event_id=event_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    session.add(event)
    if commit:
        session.commit()
    return event


def has_capability(roles, capability: str) -> bool:
    return capability in capabilities_for_roles(roles)


def require_capability(ctx, capability: str, *, preferred_role: str | None = None) -> str:
    """
    Require the caller to hold a role granting `capability`.

    Returns the acting role recorded on ledger rows: `preferred_role` when the
    caller holds it and it grants the capability, otherwise the first granting
    role in sorted order.

    Raises:
        PermissionDeniedError: no held role grants the capability (logged)
    """
    granting = roles_granting(capability, ctx.caller.roles)
    if not granting:
        log_security_event(
            ctx.session,
            user_id=ctx.user_id,
            event_type="PERMISSION_DENIED",
            success=False,
            resource=ctx.resource,
            action=capability,
            reason=f"No held role grants {capability} (roles: {', '.join(sorted(ctx.caller.roles)) or 'none'})",
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            org_id=ctx.org_id,
            event_id=ctx.event_id,
        )
        raise PermissionDeniedError(f"Your roles do not allow {capability}")

    if preferred_role and preferred_role in granting:
        return preferred_role
    return granting[0]
