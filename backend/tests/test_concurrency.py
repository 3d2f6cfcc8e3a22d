# Overview: Pytest coverage for optimistic-lock conflict detection and the retry wrapper.

"""
Concurrency Tests

Verifies:
- A stale version_id on commit raises StaleDataError
- run_with_retry re-runs the whole unit after a conflict
- Domain errors are never retried and leave no partial writes
"""

import pytest
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from bazaar.errors import FailedPreconditionError
from bazaar.models import CustomerAccount
from bazaar.services.concurrency import run_with_retry


class TestVersionConflicts:

    def test_stale_write_detected(self, db_session, customer):
        account = db_session.get(CustomerAccount, customer.id)
        account.available_points  # load current version

        # Another writer bumps the row behind the session's back
        table = CustomerAccount.__table__
        db_session.execute(
            update(table)
            .where(table.c.user_id == customer.id)
            .values(available_points=7, version_id=table.c.version_id + 1)
        )

        account.available_points = 99
        with pytest.raises(StaleDataError):
            db_session.commit()
        db_session.rollback()

        assert db_session.get(CustomerAccount, customer.id).available_points != 99


class TestRunWithRetry:

    def test_retries_conflict_then_succeeds(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("row changed")
            return "done"

        assert run_with_retry(_op, session=db_session, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_exhausted_attempts_reraise(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise StaleDataError("row changed")

        with pytest.raises(StaleDataError):
            run_with_retry(_op, session=db_session, attempts=2, backoff_base=0)
        assert len(calls) == 2

    def test_domain_error_not_retried(self, db_session, customer):
        calls = []

        def _op():
            calls.append(1)
            account = db_session.get(CustomerAccount, customer.id)
            account.available_points = 500
            raise FailedPreconditionError("insufficient balance")

        with pytest.raises(FailedPreconditionError):
            run_with_retry(_op, session=db_session, attempts=3, backoff_base=0)

        assert len(calls) == 1
        assert db_session.get(CustomerAccount, customer.id).available_points == 0
