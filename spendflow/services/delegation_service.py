"""Approval delegations: one approver temporarily hands their queue to another."""
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Set

from spendflow import db
from spendflow.errors import DelegationError, PermissionDenied
from spendflow.models import ApprovalDelegation, MemberRole, OrganizationMember
from spendflow.utils.dates import today

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 10


def _active_member(organization_id: int, user_id: int) -> Optional[OrganizationMember]:
    return OrganizationMember.query.filter_by(
        organization_id=organization_id, user_id=user_id, is_active=True
    ).first()


def _outgoing(organization_id: int, delegator_id: int, on: date) -> List[ApprovalDelegation]:
    """Delegations from ``delegator_id`` that are active and not yet expired on ``on``."""
    return (
        ApprovalDelegation.query.filter(
            ApprovalDelegation.organization_id == organization_id,
            ApprovalDelegation.delegator_id == delegator_id,
            ApprovalDelegation.is_active.is_(True),
            ApprovalDelegation.end_date >= on,
        )
        .order_by(ApprovalDelegation.created_at.desc(), ApprovalDelegation.id.desc())
        .all()
    )


def _creates_cycle(organization_id: int, delegator_id: int, delegate_id: int, on: date) -> bool:
    frontier = {delegate_id}
    seen: Set[int] = set()
    for _ in range(MAX_CHAIN_DEPTH):
        next_frontier = set()
        for user_id in frontier - seen:
            seen.add(user_id)
            for delegation in _outgoing(organization_id, user_id, on):
                if delegation.delegate_id == delegator_id:
                    return True
                next_frontier.add(delegation.delegate_id)
        if not next_frontier:
            return False
        frontier = next_frontier
    return False


def create_delegation(
    organization_id: int,
    delegator_id: int,
    delegate_id: int,
    start_date: date,
    end_date: date,
    reason: Optional[str] = None,
    created_by: Optional[int] = None,
) -> ApprovalDelegation:
    """Create (or re-activate) a delegation from one member to another."""
    if delegator_id == delegate_id:
        raise DelegationError("Cannot delegate to yourself")
    if end_date < start_date:
        raise DelegationError("Delegation end date must not be before its start date.")

    if created_by is not None and created_by != delegator_id:
        actor = _active_member(organization_id, created_by)
        if actor is None or actor.role is not MemberRole.ADMIN:
            raise PermissionDenied("Only admins can create delegations for other users.")

    if _active_member(organization_id, delegator_id) is None:
        raise DelegationError("Delegator is not an active member of this organization.")
    if _active_member(organization_id, delegate_id) is None:
        raise DelegationError("Delegate is not an active member of this organization.")

    if _creates_cycle(organization_id, delegator_id, delegate_id, today()):
        logger.warning(
            "Rejected circular delegation %s -> %s in organization %s",
            delegator_id, delegate_id, organization_id,
        )
        raise DelegationError(
            "Circular delegation chain detected. This delegation would create a cycle."
        )

    delegation = ApprovalDelegation.query.filter_by(
        organization_id=organization_id, delegator_id=delegator_id, delegate_id=delegate_id
    ).first()
    if delegation is None:
        delegation = ApprovalDelegation(
            organization_id=organization_id,
            delegator_id=delegator_id,
            delegate_id=delegate_id,
        )
        db.session.add(delegation)

    delegation.start_date = start_date
    delegation.end_date = end_date
    delegation.reason = reason
    delegation.created_by = created_by
    delegation.is_active = True
    db.session.commit()

    logger.info(
        "Delegation %s: %s -> %s from %s to %s",
        delegation.id, delegator_id, delegate_id, start_date, end_date,
    )
    return delegation


def revoke_delegation(delegation_id: int, organization_id: int, actor_id: int) -> ApprovalDelegation:
    delegation = ApprovalDelegation.query.filter_by(
        id=delegation_id, organization_id=organization_id
    ).first()
    if delegation is None:
        raise DelegationError("Delegation not found.")

    if actor_id != delegation.delegator_id:
        actor = _active_member(organization_id, actor_id)
        if actor is None or actor.role is not MemberRole.ADMIN:
            raise PermissionDenied("Only the delegator or an admin can revoke a delegation.")

    delegation.is_active = False
    db.session.commit()
    logger.info("Revoked delegation %s by user %s", delegation.id, actor_id)
    return delegation


def list_delegations(
    organization_id: int, user_id: Optional[int] = None, active_only: bool = False
) -> List[ApprovalDelegation]:
    """Delegations given or received by ``user_id``, or all of them when omitted."""
    query = ApprovalDelegation.query.filter_by(organization_id=organization_id)
    if user_id is not None:
        query = query.filter(
            db.or_(
                ApprovalDelegation.delegator_id == user_id,
                ApprovalDelegation.delegate_id == user_id,
            )
        )
    if active_only:
        query = query.filter(
            ApprovalDelegation.is_active.is_(True),
            ApprovalDelegation.end_date >= today(),
        )
    return query.order_by(ApprovalDelegation.start_date.desc(), ApprovalDelegation.id.desc()).all()


def resolve_delegate(user_id: int, organization_id: int, on: Optional[date] = None) -> int:
    """Follow active delegations from ``user_id`` and return who acts for them.

    Only delegations covering ``on`` (today by default) whose delegate is
    still an active member count. The walk stops at the first repeated user.
    """
    on = on or today()
    current = user_id
    visited = {current}
    for _ in range(MAX_CHAIN_DEPTH):
        delegation = next(
            (
                d
                for d in _outgoing(organization_id, current, on)
                if d.covers(on) and _active_member(organization_id, d.delegate_id)
            ),
            None,
        )
        if delegation is None or delegation.delegate_id in visited:
            break
        current = delegation.delegate_id
        visited.add(current)
    return current
