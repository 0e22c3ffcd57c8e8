"""Finance routes: payment queue and payouts."""
from __future__ import annotations

from typing import Any

from flask import current_app, request
from flask_login import current_user, login_required

from spendflow.errors import SubmissionValidationError
from spendflow.models import MemberRole
from spendflow.services import approval_queries, payment_queue, state_machine
from spendflow.utils.helpers import (
    current_organization_id,
    json_response,
    request_audit_context,
    request_payload,
    role_required,
)

from . import finance_bp


@finance_bp.route("/queue", methods=["GET"])
@login_required
@role_required(MemberRole.FINANCE, MemberRole.ADMIN)
def queue() -> Any:
    """Approvals awaiting payment, oldest submission first."""
    limit = request.args.get("limit", default=current_app.config["PAYMENT_QUEUE_PAGE_SIZE"], type=int)
    offset = request.args.get("offset", default=0, type=int)
    items = payment_queue.get_payment_queue(current_organization_id(), limit=limit, offset=offset)
    return json_response({"queue": items})


@finance_bp.route("/payments/<int:approval_id>", methods=["POST"])
@login_required
@role_required(MemberRole.FINANCE)
def process_payment(approval_id: int) -> Any:
    approval = state_machine.process_payment(
        approval_id,
        current_user.id,
        current_organization_id(),
        comment=request_payload().get("comment"),
        audit=request_audit_context(),
    )
    return json_response(
        {"message": "Payment processed.", "approval": approval_queries.serialize_approval(approval)}
    )


@finance_bp.route("/payments", methods=["POST"])
@login_required
@role_required(MemberRole.FINANCE)
def process_batch() -> Any:
    """Pay several approvals; each one succeeds or fails on its own."""
    payload = request_payload()
    approval_ids = payload.get("approval_ids")
    if not isinstance(approval_ids, list) or not approval_ids:
        raise SubmissionValidationError("approval_ids must be a non-empty list.")
    try:
        approval_ids = [int(approval_id) for approval_id in approval_ids]
    except (TypeError, ValueError):
        raise SubmissionValidationError("approval_ids must contain approval ids.") from None

    result = payment_queue.process_payments(
        approval_ids,
        current_user.id,
        current_organization_id(),
        comment=payload.get("comment"),
        audit=request_audit_context(),
    )
    return json_response(result)
