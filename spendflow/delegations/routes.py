"""Delegation routes."""
from __future__ import annotations

from typing import Any

from flask import request
from flask_login import current_user, login_required

from spendflow.errors import SubmissionValidationError
from spendflow.models import MemberRole
from spendflow.services import delegation_service
from spendflow.utils.helpers import current_membership, json_response, parse_date, request_payload

from . import delegations_bp


@delegations_bp.route("", methods=["GET"])
@login_required
def list_delegations() -> Any:
    """Delegations given or received by the user; admins may ask for all."""
    member = current_membership()
    user_id = current_user.id
    if member.role is MemberRole.ADMIN and request.args.get("all") == "true":
        user_id = None
    delegations = delegation_service.list_delegations(
        member.organization_id,
        user_id=user_id,
        active_only=request.args.get("active") == "true",
    )
    return json_response({"delegations": [d.to_dict() for d in delegations]})


@delegations_bp.route("", methods=["POST"])
@login_required
def create_delegation() -> Any:
    member = current_membership()
    payload = request_payload()
    if not payload.get("delegate_id"):
        raise SubmissionValidationError("delegate_id is required.")
    if not payload.get("start_date") or not payload.get("end_date"):
        raise SubmissionValidationError("start_date and end_date are required.")

    try:
        delegator_id = int(payload.get("delegator_id") or current_user.id)
        delegate_id = int(payload["delegate_id"])
    except (TypeError, ValueError):
        raise SubmissionValidationError("delegator_id and delegate_id must be user ids.") from None

    delegation = delegation_service.create_delegation(
        member.organization_id,
        delegator_id=delegator_id,
        delegate_id=delegate_id,
        start_date=parse_date(payload["start_date"], "start_date"),
        end_date=parse_date(payload["end_date"], "end_date"),
        reason=payload.get("reason"),
        created_by=current_user.id,
    )
    return json_response({"message": "Delegation created.", "delegation": delegation.to_dict()}, status=201)


@delegations_bp.route("/<int:delegation_id>/revoke", methods=["POST"])
@login_required
def revoke_delegation(delegation_id: int) -> Any:
    member = current_membership()
    delegation = delegation_service.revoke_delegation(delegation_id, member.organization_id, current_user.id)
    return json_response({"message": "Delegation revoked.", "delegation": delegation.to_dict()})
