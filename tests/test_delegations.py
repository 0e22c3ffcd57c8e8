"""Delegation tests.

These tests verify:
- Self-delegation, bad date ranges and circular chains are refused
- Only admins create delegations on behalf of others
- Delegate resolution follows chains and ignores inactive entries
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from spendflow import db
from spendflow.errors import DelegationError, PermissionDenied
from spendflow.models import OrganizationMember
from spendflow.services import delegation_service
from spendflow.utils.dates import today


def delegate(seed, delegator_id, delegate_id, days=7, **kwargs):
    return delegation_service.create_delegation(
        seed.org_id, delegator_id, delegate_id, today(), today() + timedelta(days=days), **kwargs
    )


class TestCreateDelegation:
    """Test creating delegations."""

    def test_cannot_delegate_to_yourself(self, app_ctx, seed):
        with pytest.raises(DelegationError, match="yourself"):
            delegate(seed, seed.manager_id, seed.manager_id)

    def test_end_before_start(self, app_ctx, seed):
        with pytest.raises(DelegationError):
            delegation_service.create_delegation(
                seed.org_id, seed.manager_id, seed.admin_id, today(), today() - timedelta(days=1)
            )

    def test_direct_cycle_is_refused(self, app_ctx, seed):
        delegate(seed, seed.manager_id, seed.admin_id)
        with pytest.raises(DelegationError, match="Circular"):
            delegate(seed, seed.admin_id, seed.manager_id)

    def test_longer_cycle_is_refused(self, app_ctx, seed):
        delegate(seed, seed.manager_id, seed.admin_id)
        delegate(seed, seed.admin_id, seed.finance_id)
        with pytest.raises(DelegationError):
            delegate(seed, seed.finance_id, seed.manager_id)

    def test_revoked_delegation_does_not_form_a_cycle(self, app_ctx, seed):
        first = delegate(seed, seed.manager_id, seed.admin_id)
        delegation_service.revoke_delegation(first.id, seed.org_id, seed.manager_id)

        assert delegate(seed, seed.admin_id, seed.manager_id).is_active

    def test_delegate_must_be_active_member(self, app_ctx, seed):
        OrganizationMember.query.filter_by(organization_id=seed.org_id, user_id=seed.admin_id).one().is_active = False
        db.session.commit()

        with pytest.raises(DelegationError):
            delegate(seed, seed.manager_id, seed.admin_id)

    def test_only_admin_acts_for_others(self, app_ctx, seed):
        with pytest.raises(PermissionDenied):
            delegate(seed, seed.manager_id, seed.finance_id, created_by=seed.employee_id)

        delegation = delegate(seed, seed.manager_id, seed.finance_id, created_by=seed.admin_id)
        assert delegation.created_by == seed.admin_id

    def test_recreating_reactivates_the_same_row(self, app_ctx, seed):
        first = delegate(seed, seed.manager_id, seed.admin_id, reason="Holiday")
        delegation_service.revoke_delegation(first.id, seed.org_id, seed.admin_id)

        again = delegate(seed, seed.manager_id, seed.admin_id, days=2)
        assert again.id == first.id
        assert again.is_active
        assert again.reason is None


class TestRevokeAndList:
    """Test revoking and listing delegations."""

    def test_outsider_cannot_revoke(self, app_ctx, seed):
        delegation = delegate(seed, seed.manager_id, seed.admin_id)
        with pytest.raises(PermissionDenied):
            delegation_service.revoke_delegation(delegation.id, seed.org_id, seed.employee_id)

    def test_unknown_delegation(self, app_ctx, seed):
        with pytest.raises(DelegationError):
            delegation_service.revoke_delegation(9999, seed.org_id, seed.admin_id)

    def test_list_for_user(self, app_ctx, seed):
        given = delegate(seed, seed.manager_id, seed.admin_id)
        received = delegate(seed, seed.finance_id, seed.manager_id)
        delegate(seed, seed.finance2_id, seed.admin_id)

        listed = delegation_service.list_delegations(seed.org_id, user_id=seed.manager_id)
        assert {d.id for d in listed} == {given.id, received.id}
        assert len(delegation_service.list_delegations(seed.org_id)) == 3

        delegation_service.revoke_delegation(given.id, seed.org_id, seed.manager_id)
        active = delegation_service.list_delegations(seed.org_id, user_id=seed.manager_id, active_only=True)
        assert [d.id for d in active] == [received.id]


class TestResolveDelegate:
    """Test following delegation chains."""

    def test_no_delegation_returns_user(self, app_ctx, seed):
        assert delegation_service.resolve_delegate(seed.manager_id, seed.org_id) == seed.manager_id

    def test_follows_chain(self, app_ctx, seed):
        delegate(seed, seed.manager_id, seed.admin_id)
        delegate(seed, seed.admin_id, seed.finance_id)

        assert delegation_service.resolve_delegate(seed.manager_id, seed.org_id) == seed.finance_id

    def test_expired_delegation_is_ignored(self, app_ctx, seed):
        delegate(seed, seed.manager_id, seed.admin_id, days=1)

        later = today() + timedelta(days=2)
        assert delegation_service.resolve_delegate(seed.manager_id, seed.org_id, on=later) == seed.manager_id

    def test_inactive_delegate_is_skipped(self, app_ctx, seed):
        delegate(seed, seed.manager_id, seed.admin_id)
        OrganizationMember.query.filter_by(organization_id=seed.org_id, user_id=seed.admin_id).one().is_active = False
        db.session.commit()

        assert delegation_service.resolve_delegate(seed.manager_id, seed.org_id) == seed.manager_id
