"""
Transaction PIN Guard

WHY: Moving points or cash needs a second credential on top of the bearer
token. A 6-digit PIN is cheap to brute-force, so repeated failures lock it.

SECURITY FEATURES:
- New PINs are bcrypt hashed (self-salting)
- Legacy sha256(pin + salt) hashes keep verifying and are upgraded to bcrypt
  on the first successful check, so nobody has to re-enroll
- Lock for PIN_LOCKOUT_MINUTES after PIN_MAX_FAILED_ATTEMPTS consecutive
  failures; the counter resets when the lock is set and on every success
- The compare and the counter write run as one version-checked unit, so
  concurrent wrong guesses cannot under-count toward the lock
- Every failure and lock is written to security_events
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta

import bcrypt
from flask import current_app

from ..models import User
from ..errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from ..permissions import Capability
from .concurrency import lock_for_update, run_with_retry
from .permission_service import log_security_event, require_capability
from .tenant_service import require_user_in_event
from bazaar.time_utils import utcnow


PIN_LENGTH = 6

HASH_METHOD_BCRYPT = "bcrypt"
HASH_METHOD_SHA256 = "sha256"

PIN_OK = "ok"
PIN_LOCKED = "locked"
PIN_MISMATCH = "mismatch"

WEAK_PINS = frozenset({
    "000000", "111111", "222222", "333333", "444444",
    "555555", "666666", "777777", "888888", "999999",
    "123456", "654321", "123123", "321321",
    "111222", "222333", "333444", "444555", "555666",
    "666777", "777888", "888999",
    "112233", "121212", "101010", "123321",
})


@dataclass
class PinVerification:
    outcome: str
    remaining_attempts: int | None = None
    locked_until: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == PIN_OK


def _max_attempts() -> int:
    return current_app.config.get("PIN_MAX_FAILED_ATTEMPTS", 5)


def _lockout_duration() -> timedelta:
    return timedelta(minutes=current_app.config.get("PIN_LOCKOUT_MINUTES", 60))


# =============================================================================
# FORMAT AND HASHING
# =============================================================================

def require_pin_format(pin) -> str:
    """Reject anything that is not exactly six digits."""
    if pin is None or pin == "":
        raise InvalidArgumentError("Transaction PIN is required")
    if not isinstance(pin, str) or len(pin) != PIN_LENGTH or not pin.isdigit():
        raise InvalidArgumentError(f"Transaction PIN must be exactly {PIN_LENGTH} digits")
    return pin


def validate_new_pin(pin) -> str:
    """
    Validate a PIN being enrolled.

    Rejects common PINs and straight ascending or descending runs
    (e.g. 234567, 987654).
    """
    pin = require_pin_format(pin)
    if pin in WEAK_PINS:
        raise InvalidArgumentError("PIN is too easy to guess; choose a less predictable combination")

    digits = [int(ch) for ch in pin]
    steps = {b - a for a, b in zip(digits, digits[1:])}
    if steps == {1} or steps == {-1}:
        raise InvalidArgumentError("PIN must not be a run of consecutive digits")
    return pin


def hash_pin(pin: str) -> str:
    rounds = current_app.config.get("PIN_BCRYPT_ROUNDS", 10)
    return bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def legacy_pin_digest(pin: str, salt: str) -> str:
    return hashlib.sha256((pin + salt).encode("utf-8")).hexdigest()


def stored_hash_method(user: User) -> str:
    """The method flag wins; rows written before the flag existed fall back on the salt."""
    if user.pin_hash_method in (HASH_METHOD_BCRYPT, HASH_METHOD_SHA256):
        return user.pin_hash_method
    return HASH_METHOD_SHA256 if user.pin_salt else HASH_METHOD_BCRYPT


def pin_matches(user: User, pin: str) -> bool:
    if stored_hash_method(user) == HASH_METHOD_SHA256:
        return hmac.compare_digest(legacy_pin_digest(pin, user.pin_salt or ""), user.pin_hash)
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), user.pin_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _store_bcrypt_hash(user: User, pin: str) -> None:
    user.pin_hash = hash_pin(pin)
    user.pin_hash_method = HASH_METHOD_BCRYPT
    user.pin_salt = None
    user.pin_updated_at = utcnow()


# =============================================================================
# VERIFICATION
# =============================================================================

def verify(session, user_id: int, pin: str, *, resource: str | None = None) -> PinVerification:
    """
    Check a PIN and update the failure counter in one atomic unit.

    The outcome is committed on its own, so a failed attempt is recorded even
    though the operation it guarded will be aborted.

    Returns:
        PinVerification with outcome ok | locked | mismatch

    Raises:
        NotFoundError: user does not exist
        FailedPreconditionError: no PIN has been set
    """
    def _op():
        user = lock_for_update(session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        if not user.has_pin:
            raise FailedPreconditionError("Transaction PIN has not been set")

        now = utcnow()
        if user.pin_locked_until and user.pin_locked_until > now:
            locked_until = user.pin_locked_until
            session.rollback()
            return PinVerification(PIN_LOCKED, locked_until=locked_until)

        if pin_matches(user, pin):
            if user.pin_failed_attempts or user.pin_locked_until:
                user.pin_failed_attempts = 0
                user.pin_locked_until = None
            if stored_hash_method(user) == HASH_METHOD_SHA256:
                _store_bcrypt_hash(user, pin)
            session.commit()
            return PinVerification(PIN_OK)

        max_attempts = _max_attempts()
        attempts = (user.pin_failed_attempts or 0) + 1
        user.pin_last_failed_at = now
        user.pin_locked_until = None

        if attempts >= max_attempts:
            locked_until = now + _lockout_duration()
            user.pin_failed_attempts = 0
            user.pin_locked_until = locked_until
            log_security_event(
                session,
                user_id=user.id,
                event_type="PIN_LOCKED",
                success=False,
                resource=resource,
                reason=f"{max_attempts} consecutive PIN failures",
                org_id=user.org_id,
                event_id=user.event_id,
                commit=False,
            )
            session.commit()
            current_app.logger.warning("Transaction PIN locked for user %s until %s", user.id, locked_until)
            return PinVerification(PIN_LOCKED, locked_until=locked_until)

        user.pin_failed_attempts = attempts
        log_security_event(
            session,
            user_id=user.id,
            event_type="PIN_FAILED",
            success=False,
            resource=resource,
            reason=f"Failed attempt {attempts} of {max_attempts}",
            org_id=user.org_id,
            event_id=user.event_id,
            commit=False,
        )
        session.commit()
        return PinVerification(PIN_MISMATCH, remaining_attempts=max_attempts - attempts)

    return run_with_retry(_op, session=session)


def require_valid_pin(ctx, pin) -> None:
    """
    Raising form of verify() used in front of every guarded operation.

    Raises:
        InvalidArgumentError: PIN missing or not six digits (not counted)
        FailedPreconditionError: no PIN set, or PIN locked
        PermissionDeniedError: wrong PIN, with remaining attempts
    """
    pin = require_pin_format(pin)
    result = verify(ctx.session, ctx.user_id, pin, resource=ctx.resource)
    if result.ok:
        return
    if result.outcome == PIN_LOCKED:
        remaining = max(0, int((result.locked_until - utcnow()).total_seconds()))
        minutes = max(1, -(-remaining // 60))
        raise FailedPreconditionError(
            f"Transaction PIN is locked. Try again in {minutes} minute(s)",
            details={"locked_until": result.locked_until.isoformat() + "Z"},
        )
    raise PermissionDeniedError(
        f"Incorrect transaction PIN. {result.remaining_attempts} attempt(s) remaining",
        details={"remaining_attempts": result.remaining_attempts},
    )


# =============================================================================
# ENROLLMENT
# =============================================================================

def setup_pin(ctx, new_pin, current_pin=None) -> User:
    """
    Set or change the caller's PIN.

    Changing an existing PIN requires the current one (which counts toward
    the lockout like any other check).
    """
    new_pin = validate_new_pin(new_pin)

    user = ctx.load_user()
    if user.has_pin:
        if current_pin is None:
            raise InvalidArgumentError("current_pin is required to change an existing PIN")
        require_valid_pin(ctx, current_pin)

    def _op():
        locked_user = lock_for_update(ctx.session.query(User).filter_by(id=ctx.user_id)).first()
        _store_bcrypt_hash(locked_user, new_pin)
        locked_user.pin_failed_attempts = 0
        locked_user.pin_locked_until = None
        log_security_event(
            ctx.session,
            user_id=locked_user.id,
            event_type="PIN_SET",
            success=True,
            resource=ctx.resource,
            org_id=ctx.org_id,
            event_id=ctx.event_id,
            commit=False,
        )
        ctx.session.commit()
        return locked_user

    return run_with_retry(_op, session=ctx.session)


def reset_pin(ctx, target_user_id) -> User:
    """Clear another user's PIN and lock so they can enroll again (event manager)."""
    require_capability(ctx, Capability.RESET_PIN)

    def _op():
        target = require_user_in_event(
            ctx, target_user_id, query=lock_for_update(ctx.session.query(User)),
        )
        target.pin_hash = None
        target.pin_salt = None
        target.pin_hash_method = None
        target.pin_failed_attempts = 0
        target.pin_locked_until = None
        target.pin_updated_at = utcnow()
        log_security_event(
            ctx.session,
            user_id=ctx.user_id,
            event_type="PIN_RESET",
            success=True,
            resource=ctx.resource,
            reason=f"PIN cleared for user {target.id}",
            org_id=ctx.org_id,
            event_id=ctx.event_id,
            commit=False,
        )
        ctx.session.commit()
        return target

    return run_with_retry(_op, session=ctx.session)
