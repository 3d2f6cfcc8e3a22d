# Overview: Identity & role resolver; turns a bearer credential into a ServiceContext.

"""
Caller Identity Resolution with Multi-Tenant Support

WHY: Every operation needs to know who is calling, in which tenant, with
which roles. The login collaborator authenticates phone+password or
phone+PIN and hands the client a bearer credential; this module only
consumes it.

MULTI-TENANT: A credential is bound to (org_id, event_id, auth_uid). The user
is found through the (event_id, auth_uid) secondary index, never by primary
key, because the external identity and the internal user id differ.

SECURITY:
- Tokens are 32 random bytes; only their SHA-256 is stored
- Roles are never taken from the credential or the request payload;
  they are re-read from the user record on every call
- Revoked or expired credentials are unauthenticated
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app

from ..models import CallerCredential, Event, User
from ..errors import UnauthenticatedError, NotFoundError, PermissionDeniedError
from bazaar.time_utils import utcnow


@dataclass(frozen=True)
class CallerIdentity:
    """Verified caller: tenant scope, internal user id and role set."""
    org_id: int
    event_id: int
    user_id: int
    auth_uid: str
    roles: frozenset


@dataclass
class ServiceContext:
    """
    Explicit handle threaded through every service operation.

    session: the SQLAlchemy session all reads and writes go through
    caller:  the verified identity (never rebuilt from request payload)
    """
    session: object
    caller: CallerIdentity
    resource: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    extras: dict = field(default_factory=dict)

    @property
    def event_id(self) -> int:
        return self.caller.event_id

    @property
    def org_id(self) -> int:
        return self.caller.org_id

    @property
    def user_id(self) -> int:
        return self.caller.user_id

    def load_user(self) -> User:
        return self.session.get(User, self.caller.user_id)

    def load_event(self) -> Event:
        return self.session.get(Event, self.caller.event_id)


def generate_token() -> str:
    """Cryptographically secure bearer token (64 hex characters)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 of a high-entropy token; bcrypt is unnecessary here."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_credential(session, *, org_id: int, event_id: int, auth_uid: str, ttl: timedelta | None = None) -> str:
    """
    Issue a bearer credential for an external identity.

    Called by the login collaborator (and the dev CLI / tests). Returns the
    plaintext token; only its hash is stored.
    """
    if ttl is None:
        ttl = timedelta(hours=current_app.config.get("CREDENTIAL_TTL_HOURS", 24))

    token = generate_token()
    now = utcnow()
    session.add(CallerCredential(
        org_id=org_id,
        event_id=event_id,
        auth_uid=auth_uid,
        token_hash=hash_token(token),
        issued_at=now,
        expires_at=now + ttl,
    ))
    session.commit()
    return token


def revoke_credential(session, token: str) -> bool:
    """Revoke a credential. Returns False if it was unknown or already revoked."""
    credential = session.query(CallerCredential).filter_by(token_hash=hash_token(token)).first()
    if not credential or credential.is_revoked:
        return False
    credential.revoked_at = utcnow()
    session.commit()
    return True


def resolve_caller(session, token: str | None) -> CallerIdentity:
    """
    Map a bearer token to (tenant, user id, roles).

    Raises:
        UnauthenticatedError: missing, unknown, expired or revoked credential
        NotFoundError: no user with this external identity in the tenant
        PermissionDeniedError: user or event deactivated
    """
    if not token:
        raise UnauthenticatedError("Authentication required")

    credential = session.query(CallerCredential).filter_by(token_hash=hash_token(token)).first()
    if not credential or credential.is_revoked:
        raise UnauthenticatedError("Invalid or revoked credential")
    if credential.expires_at < utcnow():
        raise UnauthenticatedError("Credential expired")

    event = session.get(Event, credential.event_id)
    if not event or event.org_id != credential.org_id:
        raise NotFoundError("Event not found for this credential")
    if not event.is_active:
        raise PermissionDeniedError("Event is not active")

    # Secondary index lookup: (event_id, auth_uid)
    user = session.query(User).filter_by(
        event_id=credential.event_id,
        auth_uid=credential.auth_uid,
    ).first()
    if not user:
        raise NotFoundError("No user registered for this identity in the event")
    if not user.is_active:
        raise PermissionDeniedError("User account is deactivated")

    return CallerIdentity(
        org_id=user.org_id,
        event_id=user.event_id,
        user_id=user.id,
        auth_uid=user.auth_uid,
        roles=user.roles,
    )


def build_context(session, token: str | None, *, resource=None, ip_address=None, user_agent=None) -> ServiceContext:
    """Resolve the caller and wrap it with the session into a ServiceContext."""
    caller = resolve_caller(session, token)
    return ServiceContext(
        session=session,
        caller=caller,
        resource=resource,
        ip_address=ip_address,
        user_agent=user_agent,
    )
