# Overview: Optimistic-concurrency helpers; every ledger operation runs its body through run_with_retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Conflicts that mean "someone else wrote first": re-run the whole body.
# IntegrityError covers two writers racing to create the same keyed row.
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns still catch lost updates on SQLite.
    """
    return query.with_for_update()


def run_with_retry(func, *, session=None, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one atomic unit with retry on concurrency conflicts.

    `func` must read, validate and write everything it touches and commit at
    the end. On StaleDataError/OperationalError/IntegrityError the session is
    rolled back and `func` runs again from the top against fresh state.
    Any other exception rolls back and propagates unchanged, so a failed
    validation never leaves partial writes behind.
    """
    session = session or db.session
    config = current_app.config
    if attempts is None:
        attempts = config.get("TXN_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("TXN_RETRY_BACKOFF_SECONDS", 0.1)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Write conflict in %s (attempt %d/%d): %s",
                getattr(func, "__qualname__", "operation"), attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            session.rollback()
            raise
    if last_exc:
        raise last_exc
