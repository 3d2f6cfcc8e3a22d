# Overview: Pytest coverage for stall registration and assistant assignment.

import pytest

from bazaar.errors import (
    AlreadyExistsError,
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from bazaar.models import MerchantAssistant
from bazaar.permissions import Role
from bazaar.services import merchant_service


class TestMerchantRegistration:

    def test_create_merchant(self, merchant_manager, make_user, ctx_for):
        stall_owner = make_user(Role.MERCHANT_OWNER)
        created = merchant_service.create_merchant(ctx_for(merchant_manager), stall_owner.id, "  Teh Tarik Bar ")
        assert created.stall_name == "Teh Tarik Bar"
        assert created.is_active
        assert created.owner_id == stall_owner.id

    def test_one_stall_per_owner(self, merchant_manager, owner, merchant, ctx_for):
        with pytest.raises(AlreadyExistsError):
            merchant_service.create_merchant(ctx_for(merchant_manager), owner.id, "Second Stall")

    def test_owner_role_required(self, merchant_manager, customer, ctx_for):
        with pytest.raises(InvalidArgumentError):
            merchant_service.create_merchant(ctx_for(merchant_manager), customer.id, "Stall")

    def test_only_merchant_managers_create(self, owner, ctx_for):
        with pytest.raises(PermissionDeniedError):
            merchant_service.create_merchant(ctx_for(owner), owner.id, "Self Service")

    def test_close_stall(self, merchant_manager, merchant, ctx_for):
        closed = merchant_service.set_merchant_active(ctx_for(merchant_manager), merchant.id, False)
        assert closed.is_active is False
        with pytest.raises(InvalidArgumentError):
            merchant_service.set_merchant_active(ctx_for(merchant_manager), merchant.id, "no")

    def test_foreign_event_stall_not_found(self, make_user, other_event, merchant, ctx_for):
        outsider = make_user(Role.MERCHANT_MANAGER, event_=other_event)
        with pytest.raises(NotFoundError):
            merchant_service.get_merchant(ctx_for(outsider), merchant.id)


class TestAssistants:

    def test_owner_assigns_assistant(self, db_session, owner, assistant, merchant, ctx_for):
        row = merchant_service.assign_assistant(ctx_for(owner), merchant.id, assistant.id)
        assert row.is_active
        assert merchant_service.get_merchant(ctx_for(assistant), merchant.id).id == merchant.id

    def test_assistant_helps_one_stall(self, make_user, merchant_manager, owner, assistant, merchant, ctx_for):
        merchant_service.assign_assistant(ctx_for(owner), merchant.id, assistant.id)
        other_owner = make_user(Role.MERCHANT_OWNER)
        other_stall = merchant_service.create_merchant(ctx_for(merchant_manager), other_owner.id, "Satay Hut")
        with pytest.raises(AlreadyExistsError):
            merchant_service.assign_assistant(ctx_for(other_owner), other_stall.id, assistant.id)

    def test_assistant_cap(self, make_user, owner, merchant, ctx_for):
        for _ in range(merchant_service.MAX_ASSISTANTS_PER_MERCHANT):
            helper = make_user(Role.MERCHANT_ASSISTANT)
            merchant_service.assign_assistant(ctx_for(owner), merchant.id, helper.id)

        extra = make_user(Role.MERCHANT_ASSISTANT)
        with pytest.raises(FailedPreconditionError):
            merchant_service.assign_assistant(ctx_for(owner), merchant.id, extra.id)

    def test_remove_and_reassign_keeps_history(self, db_session, owner, assistant, merchant, ctx_for):
        merchant_service.assign_assistant(ctx_for(owner), merchant.id, assistant.id)
        row = db_session.query(MerchantAssistant).filter_by(user_id=assistant.id).one()
        row.collected_points = 12
        db_session.commit()

        removed = merchant_service.remove_assistant(ctx_for(owner), merchant.id, assistant.id)
        assert removed.is_active is False
        assert removed.removed_at is not None
        with pytest.raises(PermissionDeniedError):
            merchant_service.get_merchant(ctx_for(assistant), merchant.id)

        merchant_service.assign_assistant(ctx_for(owner), merchant.id, assistant.id)
        rows = db_session.query(MerchantAssistant).filter_by(user_id=assistant.id).all()
        assert len(rows) == 1
        assert rows[0].is_active
        assert rows[0].collected_points == 12

    def test_remove_unknown_assistant(self, owner, assistant, merchant, ctx_for):
        with pytest.raises(FailedPreconditionError):
            merchant_service.remove_assistant(ctx_for(owner), merchant.id, assistant.id)

    def test_non_assistant_rejected(self, owner, customer, merchant, ctx_for):
        with pytest.raises(InvalidArgumentError):
            merchant_service.assign_assistant(ctx_for(owner), merchant.id, customer.id)

    def test_other_owner_cannot_manage_staff(self, make_user, assistant, merchant, ctx_for):
        other_owner = make_user(Role.MERCHANT_OWNER)
        with pytest.raises(PermissionDeniedError):
            merchant_service.assign_assistant(ctx_for(other_owner), merchant.id, assistant.id)
