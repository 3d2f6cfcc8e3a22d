# Overview: Domain error taxonomy shared by every service and rendered by the API layer.

"""
Service Error Taxonomy

WHY: Every failed check must reach the caller with a stable machine code and
a message naming the specific check, so clients can correct and retry.

CODES:
- unauthenticated      missing/invalid bearer credential            401
- permission-denied    role, ownership or scope mismatch            403
- invalid-argument     malformed input, bad amount, reconciliation  400
- not-found            referenced tenant/user/record absent         404
- failed-precondition  wrong state, insufficient balance, lockout   409
- already-exists       duplicate registration                       409
- internal             unexpected failure                           500
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for all domain failures surfaced to callers."""

    code = "internal"
    http_status = 500

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class UnauthenticatedError(ServiceError):
    code = "unauthenticated"
    http_status = 401


class PermissionDeniedError(ServiceError):
    code = "permission-denied"
    http_status = 403


class InvalidArgumentError(ServiceError):
    code = "invalid-argument"
    http_status = 400


class NotFoundError(ServiceError):
    code = "not-found"
    http_status = 404


class FailedPreconditionError(ServiceError):
    code = "failed-precondition"
    http_status = 409


class AlreadyExistsError(ServiceError):
    code = "already-exists"
    http_status = 409


class InternalServiceError(ServiceError):
    code = "internal"
    http_status = 500


def require_positive_points(value, field: str = "amount") -> int:
    """
    Validate a point amount from client input.

    Points are whole numbers; booleans and floats with a fraction are rejected.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidArgumentError(f"{field} is required and must be a positive integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidArgumentError(f"{field} must be a whole number of points")
        value = int(value)
    if not isinstance(value, int):
        raise InvalidArgumentError(f"{field} must be a positive integer")
    if value <= 0:
        raise InvalidArgumentError(f"{field} must be greater than 0 (got {value})")
    return value


def require_non_negative_cents(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"{field} must be an integer number of cents")
    if value < 0:
        raise InvalidArgumentError(f"{field} cannot be negative (got {value})")
    return value
