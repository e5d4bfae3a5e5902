"""
Access policy tests.

The policy is a pure function of (actor, action, scope); none of these
tests touch the database.
"""

from uuid import uuid4

import pytest

from settlement_kernel.domain.access_policy import (
    ACTION_ROLES,
    Action,
    Actor,
    ResourceScope,
    Role,
    authorize,
    evaluate,
    visibility_for,
)
from settlement_kernel.exceptions import ForbiddenError, ValidationError

COMPANY = uuid4()
OTHER_COMPANY = uuid4()


def _actor(role: Role, company=COMPANY, user_id=None) -> Actor:
    return Actor(user_id=user_id or uuid4(), role=role, company_id=company)


class TestRoleGate:
    @pytest.mark.parametrize("role", [
        Role.SUPER_ADMIN, Role.AGENCY_ADMIN, Role.LANDLORD, Role.AGENT, Role.CARETAKER,
    ])
    def test_staff_may_create(self, role):
        assert evaluate(_actor(role), Action.CREATE_PAYMENT).allowed

    def test_tenant_may_not_create(self):
        decision = evaluate(_actor(Role.TENANT), Action.CREATE_PAYMENT)
        assert not decision.allowed
        assert "tenant" in decision.reason

    @pytest.mark.parametrize("role", [Role.CARETAKER, Role.TENANT])
    def test_update_excludes_caretaker_and_tenant(self, role):
        assert not evaluate(_actor(role), Action.UPDATE_PAYMENT).allowed

    @pytest.mark.parametrize("role,allowed", [
        (Role.SUPER_ADMIN, True),
        (Role.AGENCY_ADMIN, True),
        (Role.LANDLORD, True),
        (Role.AGENT, False),
        (Role.CARETAKER, False),
        (Role.TENANT, False),
    ])
    def test_delete_roles(self, role, allowed):
        assert evaluate(_actor(role), Action.DELETE_PAYMENT).allowed is allowed

    def test_only_tenants_settle(self):
        assert evaluate(_actor(Role.TENANT), Action.SETTLE_INVOICES).allowed
        assert not evaluate(_actor(Role.AGENCY_ADMIN), Action.SETTLE_INVOICES).allowed

    def test_every_action_has_roles(self):
        assert set(ACTION_ROLES) == set(Action)
        assert all(ACTION_ROLES[a] for a in Action)


class TestScope:
    def test_super_admin_crosses_companies(self):
        scope = ResourceScope(company_id=OTHER_COMPANY, tenant_id=uuid4())
        assert evaluate(_actor(Role.SUPER_ADMIN), Action.VIEW_PAYMENT, scope).allowed

    def test_staff_confined_to_own_company(self):
        actor = _actor(Role.AGENCY_ADMIN)
        assert evaluate(actor, Action.VIEW_PAYMENT, ResourceScope(company_id=COMPANY)).allowed
        denied = evaluate(actor, Action.VIEW_PAYMENT, ResourceScope(company_id=OTHER_COMPANY))
        assert not denied.allowed
        assert denied.reason == "resource outside actor company scope"

    def test_staff_without_company_is_denied(self):
        actor = _actor(Role.AGENT, company=None)
        assert not evaluate(actor, Action.VIEW_PAYMENT, ResourceScope(company_id=COMPANY)).allowed

    def test_landlord_reaches_managed_tenant_in_other_company(self):
        landlord = _actor(Role.LANDLORD)
        scope = ResourceScope(company_id=OTHER_COMPANY, tenant_id=uuid4(), landlord_id=landlord.user_id)
        assert evaluate(landlord, Action.VIEW_PAYMENT, scope).allowed

    def test_landlord_does_not_reach_other_landlords_tenant(self):
        landlord = _actor(Role.LANDLORD)
        scope = ResourceScope(company_id=OTHER_COMPANY, tenant_id=uuid4(), landlord_id=uuid4())
        assert not evaluate(landlord, Action.VIEW_PAYMENT, scope).allowed

    def test_tenant_sees_only_own_records(self):
        me = _actor(Role.TENANT)
        mine = ResourceScope(company_id=COMPANY, tenant_id=me.user_id)
        theirs = ResourceScope(company_id=COMPANY, tenant_id=uuid4())
        assert evaluate(me, Action.VIEW_PAYMENT, mine).allowed
        decision = evaluate(me, Action.VIEW_PAYMENT, theirs)
        assert not decision.allowed
        assert decision.reason == "resource belongs to another tenant"

    def test_tenant_company_mismatch_denied(self):
        me = _actor(Role.TENANT)
        scope = ResourceScope(company_id=OTHER_COMPANY, tenant_id=me.user_id)
        assert not evaluate(me, Action.SETTLE_INVOICES, scope).allowed

    def test_tenant_without_company_denied_company_records(self):
        me = _actor(Role.TENANT, company=None)
        scope = ResourceScope(company_id=COMPANY, tenant_id=me.user_id)
        decision = evaluate(me, Action.SETTLE_INVOICES, scope)
        assert not decision.allowed
        assert decision.reason == "resource belongs to another company"


class TestAuthorize:
    def test_raises_forbidden_with_action_and_reason(self):
        with pytest.raises(ForbiddenError) as exc_info:
            authorize(_actor(Role.CARETAKER), Action.APPROVE_PAYMENT)
        assert exc_info.value.action == "payment.approve"
        assert "caretaker" in exc_info.value.reason
        assert exc_info.value.code == "FORBIDDEN"

    def test_denial_is_logged(self, captured_logs):
        actor = _actor(Role.AGENT)
        with pytest.raises(ForbiddenError):
            authorize(actor, Action.VIEW_PAYMENT, ResourceScope(company_id=OTHER_COMPANY))

        denied = [r for r in captured_logs() if r["message"] == "access_denied"]
        assert len(denied) == 1
        assert denied[0]["level"] == "WARNING"
        assert denied[0]["user_id"] == str(actor.user_id)
        assert denied[0]["scope_company_id"] == str(OTHER_COMPANY)

    def test_allowed_returns_none(self):
        assert authorize(_actor(Role.SUPER_ADMIN), Action.DELETE_PAYMENT) is None


class TestVisibility:
    def test_super_admin_unrestricted(self):
        assert visibility_for(_actor(Role.SUPER_ADMIN)).unrestricted

    def test_tenant_narrowed_to_self(self):
        me = _actor(Role.TENANT)
        vis = visibility_for(me)
        assert not vis.unrestricted
        assert vis.tenant_id == me.user_id

    def test_landlord_carries_landlord_id(self):
        landlord = _actor(Role.LANDLORD)
        vis = visibility_for(landlord)
        assert vis.company_id == COMPANY
        assert vis.landlord_id == landlord.user_id

    def test_agent_company_only(self):
        vis = visibility_for(_actor(Role.AGENT))
        assert vis.company_id == COMPANY
        assert vis.tenant_id is None and vis.landlord_id is None


class TestRoleParse:
    def test_parses_case_insensitively(self):
        assert Role.parse(" Agency_Admin ") is Role.AGENCY_ADMIN

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            Role.parse("janitor")
        assert exc_info.value.field == "role"
