"""Finance payment queue."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from spendflow.errors import ApprovalError
from spendflow.models import ApprovalActionType, ApprovalStatus, ExpenseApproval
from spendflow.services import state_machine
from spendflow.services.chain_builder import AuditInfo

logger = logging.getLogger(__name__)


def _approved_at(approval: ExpenseApproval):
    approvals = [a for a in approval.actions if a.action is ApprovalActionType.APPROVED]
    return approvals[-1].action_at if approvals else None


def _queue_row(approval: ExpenseApproval) -> Dict[str, Any]:
    subject = approval.subject
    submitter = subject.submitter
    if approval.expense is not None:
        amount = subject.routing_amount
        description = subject.description or subject.merchant
    else:
        amount = subject.total_amount
        description = subject.description or subject.name
    approved_at = _approved_at(approval)
    return {
        "approval_id": approval.id,
        "expense_id": approval.expense_id,
        "report_id": approval.report_id,
        "submitter_id": subject.user_id,
        "submitter_name": submitter.full_name if submitter else None,
        "amount": float(amount),
        "description": description,
        "current_approver_id": approval.current_approver_id,
        "submitted_at": approval.submitted_at.isoformat() if approval.submitted_at else None,
        "approved_at": approved_at.isoformat() if approved_at else None,
    }


def get_payment_queue(
    organization_id: int, limit: Optional[int] = None, offset: int = 0
) -> List[Dict[str, Any]]:
    """Approvals waiting for payment, oldest submission first.

    ``limit`` defaults to ``PAYMENT_QUEUE_PAGE_SIZE``.
    """
    if limit is None:
        limit = current_app.config["PAYMENT_QUEUE_PAGE_SIZE"]
    approvals = (
        ExpenseApproval.query.filter_by(
            organization_id=organization_id, status=ApprovalStatus.AWAITING_PAYMENT
        )
        .order_by(ExpenseApproval.submitted_at.asc(), ExpenseApproval.id.asc())
        .offset(max(offset, 0))
        .limit(max(limit, 0))
        .all()
    )
    return [_queue_row(approval) for approval in approvals]


def process_payments(
    approval_ids: Iterable[int],
    actor_id: int,
    organization_id: int,
    comment: Optional[str] = None,
    audit: AuditInfo = None,
) -> Dict[str, Any]:
    """Pay several approvals one after another.

    Every payment commits on its own; a failure is collected and the batch
    carries on with the next id.
    """
    processed: List[int] = []
    failed: List[Dict[str, Any]] = []
    for approval_id in approval_ids:
        try:
            state_machine.process_payment(approval_id, actor_id, organization_id, comment=comment, audit=audit)
        except ApprovalError as exc:
            logger.warning("Payment of approval %s failed: %s", approval_id, exc.message)
            failed.append({"approval_id": approval_id, "error": exc.message})
        else:
            processed.append(approval_id)

    logger.info(
        "Batch payment by %s: %d processed, %d failed", actor_id, len(processed), len(failed)
    )
    return {"processed": processed, "failed": failed}
