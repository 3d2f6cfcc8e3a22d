# Overview: Pytest coverage for transaction PIN verification, lockout and enrollment.

import hashlib
from datetime import timedelta

import pytest

from bazaar.errors import FailedPreconditionError, InvalidArgumentError, PermissionDeniedError
from bazaar.models import SecurityEvent, User
from bazaar.services import pin_service
from bazaar.time_utils import utcnow
from conftest import TEST_PIN, WRONG_PIN


class TestPinFormat:

    @pytest.mark.parametrize("pin", [None, "", "12345", "1234567", "12a456", 123456])
    def test_malformed_pin_rejected(self, pin):
        with pytest.raises(InvalidArgumentError):
            pin_service.require_pin_format(pin)

    @pytest.mark.parametrize("pin", ["000000", "123456", "654321", "234567", "876543", "111222"])
    def test_weak_pin_rejected_on_enrollment(self, pin):
        with pytest.raises(InvalidArgumentError):
            pin_service.validate_new_pin(pin)

    def test_reasonable_pin_accepted(self):
        assert pin_service.validate_new_pin("802413") == "802413"


class TestVerify:

    def test_correct_pin(self, db_session, customer):
        result = pin_service.verify(db_session, customer.id, TEST_PIN)
        assert result.ok

    def test_wrong_pin_counts_down(self, db_session, customer):
        result = pin_service.verify(db_session, customer.id, WRONG_PIN)
        assert result.outcome == pin_service.PIN_MISMATCH
        assert result.remaining_attempts == 4
        assert db_session.get(User, customer.id).pin_failed_attempts == 1

    def test_success_resets_counter(self, db_session, customer):
        pin_service.verify(db_session, customer.id, WRONG_PIN)
        pin_service.verify(db_session, customer.id, WRONG_PIN)
        assert pin_service.verify(db_session, customer.id, TEST_PIN).ok
        assert db_session.get(User, customer.id).pin_failed_attempts == 0

    def test_fifth_failure_locks_and_blocks_correct_pin(self, db_session, customer, ctx_for):
        ctx = ctx_for(customer)
        for remaining in (4, 3, 2, 1):
            with pytest.raises(PermissionDeniedError) as exc:
                pin_service.require_valid_pin(ctx, WRONG_PIN)
            assert exc.value.details["remaining_attempts"] == remaining

        with pytest.raises(FailedPreconditionError):
            pin_service.require_valid_pin(ctx, WRONG_PIN)

        # Locked: even the right PIN fails until the window passes
        with pytest.raises(FailedPreconditionError) as exc:
            pin_service.require_valid_pin(ctx, TEST_PIN)
        assert "locked" in exc.value.message

        user = db_session.get(User, customer.id)
        assert user.pin_locked_until > utcnow() + timedelta(minutes=59)
        assert user.pin_failed_attempts == 0

        locked_events = db_session.query(SecurityEvent).filter_by(user_id=customer.id, event_type="PIN_LOCKED").count()
        failed_events = db_session.query(SecurityEvent).filter_by(user_id=customer.id, event_type="PIN_FAILED").count()
        assert locked_events == 1
        assert failed_events == 4

    def test_expired_lock_allows_verification(self, db_session, customer):
        user = db_session.get(User, customer.id)
        user.pin_locked_until = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert pin_service.verify(db_session, customer.id, TEST_PIN).ok
        assert db_session.get(User, customer.id).pin_locked_until is None

    def test_no_pin_set(self, db_session, make_user):
        user = make_user("customer", pin=None)
        with pytest.raises(FailedPreconditionError):
            pin_service.verify(db_session, user.id, TEST_PIN)

    def test_legacy_hash_upgraded_to_bcrypt(self, db_session, customer):
        user = db_session.get(User, customer.id)
        user.pin_salt = "pepper"
        user.pin_hash = hashlib.sha256((TEST_PIN + "pepper").encode("utf-8")).hexdigest()
        user.pin_hash_method = pin_service.HASH_METHOD_SHA256
        db_session.commit()

        assert pin_service.verify(db_session, customer.id, TEST_PIN).ok

        user = db_session.get(User, customer.id)
        assert user.pin_hash_method == pin_service.HASH_METHOD_BCRYPT
        assert user.pin_salt is None
        assert user.pin_hash.startswith("$2")
        assert pin_service.verify(db_session, customer.id, TEST_PIN).ok


class TestEnrollment:

    def test_first_setup_needs_no_current_pin(self, db_session, make_user, ctx_for):
        user = make_user("customer", pin=None)
        pin_service.setup_pin(ctx_for(user), "802413")
        assert pin_service.verify(db_session, user.id, "802413").ok

    def test_change_requires_current_pin(self, customer, ctx_for):
        with pytest.raises(InvalidArgumentError):
            pin_service.setup_pin(ctx_for(customer), "802413")

    def test_change_with_wrong_current_pin(self, customer, ctx_for):
        with pytest.raises(PermissionDeniedError):
            pin_service.setup_pin(ctx_for(customer), "802413", current_pin=WRONG_PIN)

    def test_change_with_current_pin(self, db_session, customer, ctx_for):
        pin_service.setup_pin(ctx_for(customer), "802413", current_pin=TEST_PIN)
        assert pin_service.verify(db_session, customer.id, "802413").ok
        assert not pin_service.verify(db_session, customer.id, TEST_PIN).ok

    def test_event_manager_resets_pin(self, db_session, customer, event_manager, ctx_for):
        pin_service.reset_pin(ctx_for(event_manager), customer.id)
        user = db_session.get(User, customer.id)
        assert not user.has_pin
        assert db_session.query(SecurityEvent).filter_by(event_type="PIN_RESET").count() == 1

    def test_customer_cannot_reset_pin(self, customer, customer2, ctx_for):
        with pytest.raises(PermissionDeniedError):
            pin_service.reset_pin(ctx_for(customer), customer2.id)
