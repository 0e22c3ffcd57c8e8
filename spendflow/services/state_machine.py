"""State transitions of an approval: approve, reject, pay, resubmit, cancel.

Each transition loads the approval row with ``SELECT ... FOR UPDATE`` and
commits through the mapper's version counter, so a request that loses a race
gets ``ConcurrentModification`` instead of overwriting the winner.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm.exc import StaleDataError

from spendflow import db
from spendflow.errors import (
    ApprovalNotFound,
    ConcurrentModification,
    InvalidTransition,
    NotCurrentApprover,
    PermissionDenied,
    SubmissionNotFound,
    SubmissionValidationError,
)
from spendflow.models import (
    ApprovalActionType,
    ApprovalStatus,
    Expense,
    ExpenseApproval,
    ExpenseReport,
    ExpenseStatus,
    MemberRole,
    OrganizationMember,
    ReportStatus,
)
from spendflow.services import chain_builder, email_service
from spendflow.services.chain_builder import AuditInfo, mark_subject_approved, record_action
from spendflow.utils.dates import utcnow

logger = logging.getLogger(__name__)

DECIDING_ROLES = (MemberRole.MANAGER, MemberRole.FINANCE, MemberRole.ADMIN)


@contextmanager
def _transaction() -> Iterator[None]:
    try:
        yield
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConcurrentModification() from None
    except Exception:
        db.session.rollback()
        raise


def lock_approval(approval_id: int, organization_id: int) -> ExpenseApproval:
    approval = (
        ExpenseApproval.query.filter_by(id=approval_id, organization_id=organization_id)
        .with_for_update(of=ExpenseApproval)
        .populate_existing()
        .first()
    )
    if approval is None:
        raise ApprovalNotFound()
    return approval


def _active_member(organization_id: int, user_id: int) -> Optional[OrganizationMember]:
    return OrganizationMember.query.filter_by(
        organization_id=organization_id, user_id=user_id, is_active=True
    ).first()


def _require_current_approver(approval: ExpenseApproval, user_id: int, verb: str) -> None:
    if approval.status is not ApprovalStatus.PENDING:
        raise InvalidTransition(f"Cannot {verb}: approval is {approval.status.value}.")
    if approval.current_approver_id != user_id:
        logger.warning(
            "User %s tried to %s approval %s assigned to %s",
            user_id, verb, approval.id, approval.current_approver_id,
        )
        raise NotCurrentApprover()
    member = _active_member(approval.organization_id, user_id)
    if member is None:
        raise PermissionDenied("You are not an active member of this organization.")
    if member.role not in DECIDING_ROLES:
        raise PermissionDenied(f"Only managers, finance or admins can {verb} approvals.")


def approve(
    approval_id: int,
    approver_id: int,
    organization_id: int,
    comment: Optional[str] = None,
    audit: AuditInfo = None,
) -> ExpenseApproval:
    """Approve the current step and move to the next one.

    Approving the last step finishes the approval as APPROVED. When the next
    step is the payment step the approval becomes AWAITING_PAYMENT.
    """
    with _transaction():
        approval = lock_approval(approval_id, organization_id)
        _require_current_approver(approval, approver_id, "approve")

        record_action(approval, ApprovalActionType.APPROVED, actor_id=approver_id, comment=comment, audit=audit)
        approval.total_steps = max(len(approval.workflow.steps), approval.current_step)

        if approval.current_step < approval.total_steps:
            approval.current_step += 1
            next_step = approval.workflow.step_at(approval.current_step)
            chain_builder.assign_step(approval, next_step, audit=audit)
            if next_step.is_payment_step:
                approval.status = ApprovalStatus.AWAITING_PAYMENT
                mark_subject_approved(approval.subject, approver_id)
        else:
            approval.status = ApprovalStatus.APPROVED
            approval.completed_at = utcnow()
            approval.current_approver_id = None
            mark_subject_approved(approval.subject, approver_id)

    logger.info(
        "Approval %s approved by %s; now %s at step %s/%s",
        approval.id, approver_id, approval.status.value, approval.current_step, approval.total_steps,
    )
    if approval.status is ApprovalStatus.APPROVED:
        email_service.notify_decision(approval, "approved")
    else:
        email_service.notify_approval_requested(approval)
    return approval


def reject(
    approval_id: int,
    approver_id: int,
    organization_id: int,
    rejection_reason: str,
    comment: Optional[str] = None,
    audit: AuditInfo = None,
) -> ExpenseApproval:
    reason = (rejection_reason or "").strip()
    if not reason:
        raise SubmissionValidationError("A rejection reason is required.")

    with _transaction():
        approval = lock_approval(approval_id, organization_id)
        _require_current_approver(approval, approver_id, "reject")

        record_action(
            approval,
            ApprovalActionType.REJECTED,
            actor_id=approver_id,
            comment=comment,
            rejection_reason=reason,
            audit=audit,
        )
        now = utcnow()
        approval.status = ApprovalStatus.REJECTED
        approval.completed_at = now
        approval.current_approver_id = None

        subject = approval.subject
        subject.rejected_by = approver_id
        subject.rejected_at = now
        subject.rejection_reason = reason
        if isinstance(subject, Expense):
            subject.status = ExpenseStatus.REJECTED
        else:
            subject.status = ReportStatus.REJECTED
            for expense in subject.expenses:
                expense.status = ExpenseStatus.REJECTED

    logger.info("Approval %s rejected by %s at step %s", approval.id, approver_id, approval.current_step)
    email_service.notify_decision(approval, "rejected", reason)
    return approval


def process_payment(
    approval_id: int,
    actor_id: int,
    organization_id: int,
    comment: Optional[str] = None,
    audit: AuditInfo = None,
) -> ExpenseApproval:
    """Mark an approved submission as paid. Only Finance can do this."""
    with _transaction():
        approval = lock_approval(approval_id, organization_id)
        if approval.status is not ApprovalStatus.AWAITING_PAYMENT:
            raise InvalidTransition(f"Cannot process payment: approval is {approval.status.value}.")

        member = _active_member(organization_id, actor_id)
        if member is None or member.role is not MemberRole.FINANCE:
            raise PermissionDenied("Only finance users can process payments.")
        if actor_id == approval.submitter_id:
            raise PermissionDenied("You cannot pay out your own submission.")

        record_action(approval, ApprovalActionType.PAID, actor_id=actor_id, comment=comment, audit=audit)
        now = utcnow()
        approval.status = ApprovalStatus.PAID
        approval.completed_at = now
        approval.current_approver_id = None

        subject = approval.subject
        if isinstance(subject, Expense):
            subject.status = ExpenseStatus.REIMBURSED
            subject.reimbursed_by = actor_id
            subject.reimbursed_at = now
        else:
            subject.status = ReportStatus.PAID
            subject.paid_by = actor_id
            subject.paid_at = now
            for expense in subject.expenses:
                expense.status = ExpenseStatus.REIMBURSED
                expense.reimbursed_by = actor_id
                expense.reimbursed_at = now

    logger.info("Approval %s paid by %s", approval.id, actor_id)
    email_service.notify_decision(approval, "paid")
    return approval


def _resubmit(subject, organization_id: int, submitter_id: int, audit: AuditInfo) -> ExpenseApproval:
    if subject is None:
        raise SubmissionNotFound()
    if subject.user_id != submitter_id:
        raise PermissionDenied("Only the submitter can resubmit.")
    if subject.approval is None:
        raise InvalidTransition("This has never been submitted for approval.")

    with _transaction():
        approval = lock_approval(subject.approval.id, organization_id)
        if approval.status is not ApprovalStatus.REJECTED:
            raise InvalidTransition("Only rejected submissions can be resubmitted.")
        if isinstance(subject, ExpenseReport):
            chain_builder.validate_report_for_submission(subject)
        chain_builder.start_round(approval, audit=audit)

    logger.info("Approval %s resubmitted by %s", approval.id, submitter_id)
    email_service.notify_approval_requested(approval)
    return approval


def resubmit_report(
    report_id: int, submitter_id: int, organization_id: int, audit: AuditInfo = None
) -> ExpenseApproval:
    """Send a rejected report through its workflow again, from step 1.

    The existing approval row is reused, so its history stays in one place.
    """
    report = ExpenseReport.query.filter_by(id=report_id, organization_id=organization_id).first()
    return _resubmit(report, organization_id, submitter_id, audit)


def resubmit_expense(
    expense_id: int, submitter_id: int, organization_id: int, audit: AuditInfo = None
) -> ExpenseApproval:
    expense = Expense.query.filter_by(id=expense_id, organization_id=organization_id).first()
    return _resubmit(expense, organization_id, submitter_id, audit)


def cancel(
    approval_id: int, submitter_id: int, organization_id: int, audit: AuditInfo = None
) -> ExpenseApproval:
    """Withdraw a pending approval. The expense or report goes back to draft."""
    with _transaction():
        approval = lock_approval(approval_id, organization_id)
        if approval.submitter_id != submitter_id:
            raise PermissionDenied("Only the submitter can cancel this approval.")
        if approval.status is not ApprovalStatus.PENDING:
            raise InvalidTransition(f"Cannot cancel: approval is {approval.status.value}.")

        record_action(
            approval,
            ApprovalActionType.COMMENTED,
            actor_id=submitter_id,
            comment="Withdrawn by submitter",
            audit=audit,
        )
        approval.status = ApprovalStatus.CANCELLED
        approval.completed_at = utcnow()
        approval.current_approver_id = None

        subject = approval.subject
        if isinstance(subject, Expense):
            subject.status = ExpenseStatus.DRAFT
        else:
            subject.status = ReportStatus.DRAFT
            for expense in subject.expenses:
                expense.status = ExpenseStatus.DRAFT

    logger.info("Approval %s cancelled by submitter %s", approval.id, submitter_id)
    return approval


def add_comment(
    approval_id: int, actor_id: int, organization_id: int, comment: str, audit: AuditInfo = None
) -> ExpenseApproval:
    """Leave a comment on an approval without changing its state."""
    text = (comment or "").strip()
    if not text:
        raise SubmissionValidationError("Comment cannot be empty.")

    with _transaction():
        approval = lock_approval(approval_id, organization_id)
        participants = {approval.submitter_id, approval.current_approver_id}
        participants.update(entry.actor_id for entry in approval.actions)
        if actor_id not in participants:
            raise PermissionDenied("Only participants can comment on this approval.")
        record_action(approval, ApprovalActionType.COMMENTED, actor_id=actor_id, comment=text, audit=audit)

    return approval
