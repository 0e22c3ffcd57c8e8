"""Workflow administration routes."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from flask import request
from flask_login import current_user, login_required

from spendflow.errors import SubmissionValidationError
from spendflow.models import MemberRole
from spendflow.services import chain_builder, workflow_store
from spendflow.services.workflow_selector import Submission
from spendflow.utils.helpers import current_organization_id, json_response, request_payload, role_required

from . import admin_bp


@admin_bp.route("/workflows", methods=["GET"])
@login_required
@role_required(MemberRole.ADMIN)
def list_workflows() -> Any:
    include_inactive = request.args.get("include_inactive", "true").lower() != "false"
    workflows = workflow_store.list_workflows(current_organization_id(), include_inactive=include_inactive)
    return json_response({"workflows": [workflow.to_dict() for workflow in workflows]})


@admin_bp.route("/workflows", methods=["POST"])
@login_required
@role_required(MemberRole.ADMIN)
def create_workflow() -> Any:
    workflow = workflow_store.create_workflow(
        current_organization_id(), request_payload(), created_by=current_user.id
    )
    return json_response({"message": "Workflow created.", "workflow": workflow.to_dict()}, status=201)


@admin_bp.route("/workflows/<int:workflow_id>", methods=["GET"])
@login_required
@role_required(MemberRole.ADMIN)
def get_workflow(workflow_id: int) -> Any:
    workflow = workflow_store.get_workflow(workflow_id, current_organization_id())
    return json_response({"workflow": workflow.to_dict()})


@admin_bp.route("/workflows/<int:workflow_id>", methods=["PUT", "PATCH"])
@login_required
@role_required(MemberRole.ADMIN)
def update_workflow(workflow_id: int) -> Any:
    workflow = workflow_store.update_workflow(workflow_id, current_organization_id(), request_payload())
    return json_response({"message": "Workflow updated.", "workflow": workflow.to_dict()})


@admin_bp.route("/workflows/<int:workflow_id>", methods=["DELETE"])
@login_required
@role_required(MemberRole.ADMIN)
def delete_workflow(workflow_id: int) -> Any:
    workflow_store.delete_workflow(workflow_id, current_organization_id())
    return json_response({"message": "Workflow deleted."})


@admin_bp.route("/workflows/<int:workflow_id>/steps", methods=["PUT"])
@login_required
@role_required(MemberRole.ADMIN)
def update_workflow_steps(workflow_id: int) -> Any:
    """Replace the workflow's steps with the submitted list."""
    steps = request_payload().get("steps")
    workflow = workflow_store.update_workflow_steps(workflow_id, current_organization_id(), steps)
    return json_response({"message": "Workflow steps updated.", "workflow": workflow.to_dict()})


@admin_bp.route("/workflows/defaults", methods=["POST"])
@login_required
@role_required(MemberRole.ADMIN)
def create_default_workflows() -> Any:
    created = workflow_store.create_default_workflows(current_organization_id(), created_by=current_user.id)
    return json_response(
        {"message": f"Created {len(created)} workflows.", "workflows": [w.to_dict() for w in created]},
        status=201 if created else 200,
    )


@admin_bp.route("/workflows/preview", methods=["POST"])
@login_required
@role_required(MemberRole.ADMIN)
def preview_workflow() -> Any:
    """Show which workflow and approvers a hypothetical submission would get."""
    payload = request_payload()
    try:
        amount = Decimal(str(payload.get("amount", "")))
    except InvalidOperation:
        raise SubmissionValidationError("amount must be a number.") from None

    submission = Submission(
        organization_id=current_organization_id(),
        submitter_id=int(payload.get("submitter_id") or current_user.id),
        amount=amount,
        category=payload.get("category"),
        department=payload.get("department"),
        project_code=payload.get("project_code"),
        tags=tuple(payload.get("tags") or ()),
        is_report=bool(payload.get("is_report", False)),
    )
    return json_response(chain_builder.preview_chain(submission))

