"""
User Registration and Scope Lookups

WHY: Users are provisioned by administrative flows outside the ledger (and by
the dev CLI); this module is the one place that validates role tags against
the closed role set, opens the ledger rows each role needs, and answers
"which departments does this manager look after".

MULTI-TENANT: A user belongs to exactly one event. auth_uid and phone are
unique per event, not globally.
"""

from __future__ import annotations

from ..models import User, UserRole, ManagedDepartment, Event
from ..permissions import Role, validate_role
from ..errors import AlreadyExistsError, InvalidArgumentError, NotFoundError
from .ledger_service import open_role_accounts


def create_user(
    session,
    *,
    event_id: int,
    auth_uid: str,
    phone: str,
    display_name: str,
    roles,
    department_code: str | None = None,
    identity_tag: str | None = None,
    managed_departments=None,
) -> User:
    """
    Register a user in an event with a set of role tags.

    Raises:
        NotFoundError: event does not exist
        InvalidArgumentError: unknown role tag or missing identity fields
        AlreadyExistsError: auth_uid or phone already registered in the event
    """
    event = session.get(Event, event_id)
    if not event:
        raise NotFoundError(f"Event {event_id} not found")

    if not auth_uid or not phone or not display_name:
        raise InvalidArgumentError("auth_uid, phone and display_name are required")

    roles = set(roles or [])
    if not roles:
        raise InvalidArgumentError("At least one role is required")
    unknown = sorted(r for r in roles if not validate_role(r))
    if unknown:
        raise InvalidArgumentError(f"Unknown role(s): {', '.join(unknown)}")

    if managed_departments and Role.SELLER_MANAGER not in roles:
        raise InvalidArgumentError("Only seller managers can manage departments")

    if session.query(User).filter_by(event_id=event_id, auth_uid=auth_uid).first():
        raise AlreadyExistsError(f"Identity {auth_uid} is already registered in this event")
    if session.query(User).filter_by(event_id=event_id, phone=phone).first():
        raise AlreadyExistsError(f"Phone {phone} is already registered in this event")

    user = User(
        org_id=event.org_id,
        event_id=event_id,
        auth_uid=auth_uid,
        phone=phone,
        display_name=display_name,
        department_code=department_code,
        identity_tag=identity_tag,
        is_active=True,
    )
    for role in sorted(roles):
        user.role_links.append(UserRole(role=role))
    session.add(user)
    session.flush()

    for code in sorted(set(managed_departments or [])):
        session.add(ManagedDepartment(event_id=event_id, manager_id=user.id, department_code=code))

    open_role_accounts(session, user)
    session.commit()
    return user


def managed_departments(session, manager_id: int) -> set[str]:
    rows = session.query(ManagedDepartment.department_code).filter_by(manager_id=manager_id).all()
    return {row[0] for row in rows}

