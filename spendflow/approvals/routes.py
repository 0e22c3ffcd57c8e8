"""Approver routes: queue, decisions, history and stats."""
from __future__ import annotations

from typing import Any

from flask import request
from flask_login import current_user, login_required

from spendflow.services import approval_queries, state_machine
from spendflow.utils.helpers import (
    current_membership,
    json_response,
    request_audit_context,
    request_payload,
)

from . import approvals_bp


@approvals_bp.route("/pending", methods=["GET"])
@login_required
def pending_approvals() -> Any:
    """Return approvals waiting on the current user."""
    member = current_membership()
    filters = {
        key: request.args[key]
        for key in ("kind", "min_amount", "max_amount")
        if request.args.get(key)
    }
    approvals = approval_queries.get_pending_approvals(current_user.id, member.organization_id, filters)
    return json_response({"approvals": approvals})


@approvals_bp.route("/<int:approval_id>", methods=["GET"])
@login_required
def approval_detail(approval_id: int) -> Any:
    member = current_membership()
    approval = approval_queries.get_approval(approval_id, member.organization_id, current_user.id)
    return json_response({"approval": approval_queries.serialize_approval(approval)})


@approvals_bp.route("/<int:approval_id>/approve", methods=["POST"])
@login_required
def approve(approval_id: int) -> Any:
    member = current_membership()
    approval = state_machine.approve(
        approval_id,
        current_user.id,
        member.organization_id,
        comment=request_payload().get("comment"),
        audit=request_audit_context(),
    )
    return json_response(
        {"message": "Approved.", "approval": approval_queries.serialize_approval(approval)}
    )


@approvals_bp.route("/<int:approval_id>/reject", methods=["POST"])
@login_required
def reject(approval_id: int) -> Any:
    member = current_membership()
    payload = request_payload()
    approval = state_machine.reject(
        approval_id,
        current_user.id,
        member.organization_id,
        rejection_reason=payload.get("rejection_reason") or payload.get("reason"),
        comment=payload.get("comment"),
        audit=request_audit_context(),
    )
    return json_response(
        {"message": "Rejected.", "approval": approval_queries.serialize_approval(approval)}
    )


@approvals_bp.route("/<int:approval_id>/comments", methods=["POST"])
@login_required
def comment(approval_id: int) -> Any:
    member = current_membership()
    approval = state_machine.add_comment(
        approval_id,
        current_user.id,
        member.organization_id,
        request_payload().get("comment"),
        audit=request_audit_context(),
    )
    return json_response({"message": "Comment added.", "history": [a.to_dict() for a in approval.actions]})


@approvals_bp.route("/<int:approval_id>/history", methods=["GET"])
@login_required
def history(approval_id: int) -> Any:
    member = current_membership()
    actions = approval_queries.get_approval_history(approval_id, member.organization_id, current_user.id)
    return json_response({"history": actions})


@approvals_bp.route("/stats", methods=["GET"])
@login_required
def stats() -> Any:
    member = current_membership()
    return json_response(approval_queries.get_approval_stats(current_user.id, member.organization_id))


@approvals_bp.route("/step-types", methods=["GET"])
@login_required
def step_types() -> Any:
    return json_response({"step_types": approval_queries.step_type_metadata()})
