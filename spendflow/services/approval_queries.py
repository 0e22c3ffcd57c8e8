"""Read-side queries over approvals: queues, history and statistics."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from spendflow import db
from spendflow.errors import ApprovalNotFound, PermissionDenied
from spendflow.models import (
    TERMINAL_STATUSES,
    ApprovalAction,
    ApprovalActionType,
    ApprovalStatus,
    Expense,
    ExpenseApproval,
    ExpenseReport,
    MemberRole,
    OrganizationMember,
)
from spendflow.services.steps import STEP_TYPE_METADATA

STATUS_DISPLAY = {
    ApprovalStatus.PENDING: "Pending Approval",
    ApprovalStatus.APPROVED: "Approved",
    ApprovalStatus.AWAITING_PAYMENT: "Awaiting Payment",
    ApprovalStatus.REJECTED: "Rejected",
    ApprovalStatus.CANCELLED: "Cancelled",
    ApprovalStatus.PAID: "Paid",
}

STATUS_COLOR = {
    ApprovalStatus.PENDING: "warning",
    ApprovalStatus.APPROVED: "success",
    ApprovalStatus.AWAITING_PAYMENT: "info",
    ApprovalStatus.REJECTED: "danger",
    ApprovalStatus.CANCELLED: "muted",
    ApprovalStatus.PAID: "primary",
}


def _as_status(status) -> Optional[ApprovalStatus]:
    if isinstance(status, ApprovalStatus):
        return status
    try:
        return ApprovalStatus(status)
    except ValueError:
        return None


def status_display(status) -> str:
    resolved = _as_status(status)
    return STATUS_DISPLAY[resolved] if resolved else str(status)


def status_color(status) -> str:
    resolved = _as_status(status)
    return STATUS_COLOR.get(resolved, "muted") if resolved else "muted"


def step_type_metadata() -> List[Dict[str, Any]]:
    return [dict(entry) for entry in STEP_TYPE_METADATA]


def serialize_approval(approval: ExpenseApproval) -> Dict[str, Any]:
    """Approval with the summary fields list views need."""
    payload = approval.to_dict()
    subject = approval.subject
    submitter = subject.submitter
    step = approval.current_step_definition
    payload.update(
        {
            "status_display": status_display(approval.status),
            "status_color": status_color(approval.status),
            "is_complete": approval.status in TERMINAL_STATUSES,
            "current_step_type": step.step_type.value if step else None,
            "workflow_name": approval.workflow.name if approval.workflow else None,
            "submitter_name": submitter.full_name if submitter else None,
            "current_approver_name": approval.current_approver.full_name
            if approval.current_approver
            else None,
        }
    )
    if approval.expense is not None:
        payload["expense"] = subject.to_dict()
        payload["amount"] = float(subject.routing_amount)
    else:
        payload["report"] = subject.to_dict()
        payload["amount"] = float(subject.total_amount)
    return payload


def _amount_filter(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _apply_filters(approvals: List[ExpenseApproval], filters: Mapping[str, Any]) -> List[ExpenseApproval]:
    kind = filters.get("kind")
    if kind == "expense":
        approvals = [a for a in approvals if a.expense_id is not None]
    elif kind == "report":
        approvals = [a for a in approvals if a.report_id is not None]

    minimum = _amount_filter(filters.get("min_amount"))
    maximum = _amount_filter(filters.get("max_amount"))
    if minimum is not None or maximum is not None:
        def amount(approval):
            subject = approval.subject
            return subject.routing_amount if approval.expense is not None else subject.total_amount

        approvals = [
            a
            for a in approvals
            if (minimum is None or amount(a) >= minimum) and (maximum is None or amount(a) <= maximum)
        ]
    return approvals


def get_pending_approvals(
    approver_id: int, organization_id: int, filters: Optional[Mapping[str, Any]] = None
) -> List[Dict[str, Any]]:
    """Approvals currently waiting on ``approver_id``, oldest first."""
    approvals = (
        ExpenseApproval.query.filter_by(
            organization_id=organization_id,
            current_approver_id=approver_id,
            status=ApprovalStatus.PENDING,
        )
        .order_by(ExpenseApproval.submitted_at.asc(), ExpenseApproval.id.asc())
        .all()
    )
    approvals = _apply_filters(approvals, filters or {})
    return [serialize_approval(approval) for approval in approvals]


def get_my_submissions(
    user_id: int, organization_id: int, status: Optional[str] = None
) -> List[Dict[str, Any]]:
    query = (
        ExpenseApproval.query.outerjoin(Expense, Expense.id == ExpenseApproval.expense_id)
        .outerjoin(ExpenseReport, ExpenseReport.id == ExpenseApproval.report_id)
        .filter(
            ExpenseApproval.organization_id == organization_id,
            db.or_(Expense.user_id == user_id, ExpenseReport.user_id == user_id),
        )
    )
    if status and (wanted := _as_status(status)):
        query = query.filter(ExpenseApproval.status == wanted)
    approvals = query.order_by(ExpenseApproval.submitted_at.desc(), ExpenseApproval.id.desc()).all()
    return [serialize_approval(approval) for approval in approvals]


def get_approval(approval_id: int, organization_id: int, viewer_id: int) -> ExpenseApproval:
    """Load an approval the viewer is allowed to see.

    Admins and finance users see every approval of the organization; everyone
    else only those they submitted or acted on.
    """
    approval = ExpenseApproval.query.filter_by(id=approval_id, organization_id=organization_id).first()
    if approval is None:
        raise ApprovalNotFound()

    member = OrganizationMember.query.filter_by(
        organization_id=organization_id, user_id=viewer_id, is_active=True
    ).first()
    if member is None:
        raise PermissionDenied()
    if member.role in (MemberRole.ADMIN, MemberRole.FINANCE):
        return approval

    participants = {approval.submitter_id, approval.current_approver_id}
    participants.update(entry.actor_id for entry in approval.actions)
    participants.update(entry.delegated_to for entry in approval.actions if entry.delegated_to)
    if viewer_id not in participants:
        raise PermissionDenied()
    return approval


def get_approval_history(approval_id: int, organization_id: int, viewer_id: int) -> List[Dict[str, Any]]:
    """Audit trail of an approval in the order the actions happened."""
    approval = get_approval(approval_id, organization_id, viewer_id)
    return [entry.to_dict() for entry in approval.actions]


def _hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 3600


def get_approval_stats(approver_id: int, organization_id: int) -> Dict[str, Any]:
    """Dashboard counters for an approver.

    ``pending`` and ``awaiting_payment`` count items currently assigned to
    the approver; the other counters count distinct approvals the approver
    acted on. The average approval time covers the whole organization.
    """
    assigned = dict(
        db.session.query(ExpenseApproval.status, db.func.count(ExpenseApproval.id))
        .filter(
            ExpenseApproval.organization_id == organization_id,
            ExpenseApproval.current_approver_id == approver_id,
            ExpenseApproval.status.in_([ApprovalStatus.PENDING, ApprovalStatus.AWAITING_PAYMENT]),
        )
        .group_by(ExpenseApproval.status)
        .all()
    )

    acted = dict(
        db.session.query(
            ApprovalAction.action, db.func.count(db.distinct(ApprovalAction.expense_approval_id))
        )
        .join(ExpenseApproval, ExpenseApproval.id == ApprovalAction.expense_approval_id)
        .filter(
            ExpenseApproval.organization_id == organization_id,
            ApprovalAction.actor_id == approver_id,
            ApprovalAction.action.in_(
                [ApprovalActionType.APPROVED, ApprovalActionType.PAID, ApprovalActionType.REJECTED]
            ),
        )
        .group_by(ApprovalAction.action)
        .all()
    )

    finished = (
        db.session.query(ExpenseApproval.submitted_at, ExpenseApproval.completed_at)
        .filter(
            ExpenseApproval.organization_id == organization_id,
            ExpenseApproval.status.in_([ApprovalStatus.APPROVED, ApprovalStatus.PAID]),
            ExpenseApproval.completed_at.isnot(None),
        )
        .all()
    )
    durations = [h for h in (_hours_between(s, c) for s, c in finished) if h is not None]

    return {
        "pending_count": assigned.get(ApprovalStatus.PENDING, 0),
        "awaiting_payment_count": assigned.get(ApprovalStatus.AWAITING_PAYMENT, 0),
        "approved_count": acted.get(ApprovalActionType.APPROVED, 0),
        "paid_count": acted.get(ApprovalActionType.PAID, 0),
        "rejected_count": acted.get(ApprovalActionType.REJECTED, 0),
        "avg_approval_time_hours": round(sum(durations) / len(durations), 2) if durations else 0,
    }
