"""Resolve workflow steps to approvers and open approval chains."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

from spendflow import db
from spendflow.errors import (
    ApprovalError,
    InvalidTransition,
    NoEligibleApproverForRole,
    NoManagerAssigned,
    PermissionDenied,
    SubmissionNotFound,
    SubmissionValidationError,
)
from spendflow.models import (
    ApprovalAction,
    ApprovalActionType,
    ApprovalStatus,
    ApprovalStep,
    ApprovalWorkflow,
    Expense,
    ExpenseApproval,
    ExpenseReport,
    ExpenseStatus,
    MemberRole,
    OrganizationMember,
    ReportStatus,
    StepType,
    User,
)
from spendflow.services import delegation_service, email_service
from spendflow.services.steps import (
    DepartmentOwnerStep,
    ManagerStep,
    MultipleUsersStep,
    PaymentStep,
    RoleStep,
    SpecificManagerStep,
    SpecificUserStep,
    StepDefinition,
    definition_from_step,
)
from spendflow.services.workflow_selector import (
    Submission,
    select_workflow,
    submission_for_expense,
    submission_for_report,
)
from spendflow.utils.dates import utcnow

logger = logging.getLogger(__name__)

AuditInfo = Optional[Mapping[str, Optional[str]]]


@dataclass
class ResolutionContext:
    """Who submitted, and who already approved during the current round."""

    organization_id: int
    submitter_id: int
    department: Optional[str] = None
    prior_approvers: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def excluded(self) -> FrozenSet[int]:
        return self.prior_approvers | {self.submitter_id}


def _member(organization_id: int, user_id: int) -> Optional[OrganizationMember]:
    return OrganizationMember.query.filter_by(
        organization_id=organization_id, user_id=user_id
    ).first()


def _active_members(organization_id: int):
    return (
        OrganizationMember.query.join(User, User.id == OrganizationMember.user_id)
        .filter(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.is_active.is_(True),
            User.is_active.is_(True),
        )
        .order_by(OrganizationMember.created_at.asc(), OrganizationMember.id.asc())
    )


def _is_active_member(organization_id: int, user_id: Optional[int]) -> bool:
    if user_id is None:
        return False
    return _active_members(organization_id).filter(OrganizationMember.user_id == user_id).first() is not None


def _resolve_manager(step: ManagerStep, ctx: ResolutionContext) -> int:
    submitter = _member(ctx.organization_id, ctx.submitter_id)
    manager_id = submitter.manager_id if submitter else None
    if not _is_active_member(ctx.organization_id, manager_id):
        logger.warning("User %s has no active manager in organization %s", ctx.submitter_id, ctx.organization_id)
        raise NoManagerAssigned()
    return manager_id


def _resolve_role(step: RoleStep, ctx: ResolutionContext) -> int:
    member = (
        _active_members(ctx.organization_id)
        .filter(
            OrganizationMember.role == step.role,
            OrganizationMember.user_id.notin_(list(ctx.excluded)),
        )
        .first()
    )
    if member is None:
        raise NoEligibleApproverForRole()
    return member.user_id


def _resolve_specific_user(step: SpecificUserStep, ctx: ResolutionContext) -> int:
    if step.user_id == ctx.submitter_id:
        raise NoEligibleApproverForRole("The designated approver cannot approve their own submission.")
    if step.user_id in ctx.prior_approvers:
        raise NoEligibleApproverForRole("The designated approver has already approved this submission.")
    if not _is_active_member(ctx.organization_id, step.user_id):
        raise NoEligibleApproverForRole("The designated approver is no longer an active member.")
    return step.user_id


def _resolve_specific_manager(step: SpecificManagerStep, ctx: ResolutionContext) -> int:
    member = (
        _active_members(ctx.organization_id)
        .filter(
            OrganizationMember.user_id == step.user_id,
            OrganizationMember.role.in_([MemberRole.MANAGER, MemberRole.ADMIN]),
        )
        .first()
    )
    if member is None:
        raise NoEligibleApproverForRole("The designated manager is not an active manager or admin.")
    if step.user_id == ctx.submitter_id:
        raise NoEligibleApproverForRole("The designated manager cannot approve their own submission.")
    return step.user_id


def _resolve_multiple_users(step: MultipleUsersStep, ctx: ResolutionContext) -> int:
    candidates = [user_id for user_id in step.user_ids if user_id not in ctx.excluded]
    for user_id in candidates:
        if _is_active_member(ctx.organization_id, user_id):
            return user_id
    raise NoEligibleApproverForRole("None of the designated approvers is available.")


def _resolve_payment(step: PaymentStep, ctx: ResolutionContext) -> int:
    members = (
        _active_members(ctx.organization_id)
        .filter(
            OrganizationMember.role == MemberRole.FINANCE,
            OrganizationMember.user_id != ctx.submitter_id,
        )
        .all()
    )
    if not members:
        raise NoEligibleApproverForRole("No finance user is available to process the payment.")
    fresh = [m for m in members if m.user_id not in ctx.prior_approvers]
    return (fresh or members)[0].user_id


def _resolve_department_owner(step: DepartmentOwnerStep, ctx: ResolutionContext) -> int:
    if not ctx.department:
        raise NoEligibleApproverForRole("The submitter is not assigned to a department.")
    member = (
        _active_members(ctx.organization_id)
        .filter(
            OrganizationMember.role == MemberRole.MANAGER,
            OrganizationMember.department == ctx.department,
            OrganizationMember.user_id.notin_(list(ctx.excluded)),
        )
        .first()
    )
    if member is None:
        raise NoEligibleApproverForRole(f"No manager is available for department '{ctx.department}'.")
    return member.user_id


_RESOLVERS: Dict[type, Callable[[Any, ResolutionContext], int]] = {
    ManagerStep: _resolve_manager,
    RoleStep: _resolve_role,
    SpecificUserStep: _resolve_specific_user,
    SpecificManagerStep: _resolve_specific_manager,
    MultipleUsersStep: _resolve_multiple_users,
    PaymentStep: _resolve_payment,
    DepartmentOwnerStep: _resolve_department_owner,
}


def resolve_approver(definition: StepDefinition, ctx: ResolutionContext) -> int:
    """Return the user id that has to act on ``definition``, before delegation."""
    return _RESOLVERS[type(definition)](definition, ctx)


def apply_delegation(approver_id: int, ctx: ResolutionContext) -> int:
    """Swap in the approver's delegate, unless that would break separation of duties."""
    delegate_id = delegation_service.resolve_delegate(approver_id, ctx.organization_id)
    if delegate_id in ctx.excluded:
        return approver_id
    return delegate_id


def record_action(
    approval: ExpenseApproval,
    action: ApprovalActionType,
    actor_id: int,
    step_number: Optional[int] = None,
    comment: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    delegated_to: Optional[int] = None,
    actor_role: Optional[str] = None,
    audit: AuditInfo = None,
) -> ApprovalAction:
    if actor_role is None:
        member = _member(approval.organization_id, actor_id)
        actor_role = member.role.value if member else MemberRole.EMPLOYEE.value
    audit = audit or {}
    entry = ApprovalAction(
        step_number=approval.current_step if step_number is None else step_number,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        comment=comment,
        rejection_reason=rejection_reason,
        delegated_to=delegated_to,
        action_at=utcnow(),
        ip_address=audit.get("ip_address"),
        user_agent=audit.get("user_agent"),
    )
    approval.actions.append(entry)
    return entry


def approvers_this_round(approval: ExpenseApproval) -> FrozenSet[int]:
    """Users who approved since the latest submission of ``approval``."""
    approvers = set()
    for entry in approval.actions:
        if entry.action is ApprovalActionType.SUBMITTED:
            approvers.clear()
        elif entry.action is ApprovalActionType.APPROVED:
            approvers.add(entry.actor_id)
    return frozenset(approvers)


def context_for(approval: ExpenseApproval) -> ResolutionContext:
    submitter_id = approval.submitter_id
    member = _member(approval.organization_id, submitter_id)
    return ResolutionContext(
        organization_id=approval.organization_id,
        submitter_id=submitter_id,
        department=member.department if member else None,
        prior_approvers=approvers_this_round(approval),
    )


def assign_step(approval: ExpenseApproval, step: ApprovalStep, audit: AuditInfo = None) -> int:
    """Point ``approval`` at the approver of ``step`` and return their id."""
    ctx = context_for(approval)
    approver_id = resolve_approver(definition_from_step(step), ctx)
    acting_id = apply_delegation(approver_id, ctx)
    if acting_id != approver_id:
        record_action(
            approval,
            ApprovalActionType.DELEGATED,
            actor_id=approver_id,
            step_number=step.step_order,
            delegated_to=acting_id,
            comment="Routed to delegate",
            audit=audit,
        )
        logger.info(
            "Approval %s step %s delegated from %s to %s",
            approval.id, step.step_order, approver_id, acting_id,
        )
    approval.current_approver_id = acting_id
    return acting_id


def check_manager_assignment(organization_id: int, user_id: int) -> Dict[str, Any]:
    """Report whether ``user_id`` has an active manager, for pre-submission hints."""
    member = _member(organization_id, user_id)
    manager_id = member.manager_id if member else None
    has_manager = _is_active_member(organization_id, manager_id)
    manager = db.session.get(User, manager_id) if has_manager else None
    return {
        "has_manager": has_manager,
        "manager_id": manager_id if has_manager else None,
        "manager_name": manager.full_name if manager else None,
    }


def _require_manager_if_needed(workflow: ApprovalWorkflow, submission: Submission) -> None:
    if any(step.step_type is StepType.MANAGER for step in workflow.steps):
        if not check_manager_assignment(submission.organization_id, submission.submitter_id)["has_manager"]:
            raise NoManagerAssigned()


def validate_report_for_submission(report: ExpenseReport) -> None:
    """Refuse empty reports and reports with incomplete expenses."""
    if not report.expenses:
        raise SubmissionValidationError("Cannot submit empty report. Add expenses first.")
    if any(not expense.receipt_path for expense in report.expenses):
        raise SubmissionValidationError("All expenses must have receipts before submitting the report.")
    incomplete = [
        expense
        for expense in report.expenses
        if not expense.merchant or not expense.amount or not expense.expense_date or not expense.category
    ]
    if incomplete:
        raise SubmissionValidationError(
            "All expenses need merchant, amount, category, and date before submission."
        )


def _load_subject(organization_id: int, expense_id: Optional[int], report_id: Optional[int]):
    if (expense_id is None) == (report_id is None):
        raise SubmissionValidationError("Provide exactly one of expense_id or report_id.")
    model = Expense if expense_id is not None else ExpenseReport
    subject = model.query.filter_by(
        id=expense_id if expense_id is not None else report_id,
        organization_id=organization_id,
    ).first()
    if subject is None:
        raise SubmissionNotFound()
    return subject


def _mark_submitted(subject) -> None:
    if isinstance(subject, Expense):
        subject.status = ExpenseStatus.SUBMITTED
    else:
        subject.status = ReportStatus.SUBMITTED
        for expense in subject.expenses:
            expense.status = ExpenseStatus.SUBMITTED
    subject.rejected_by = None
    subject.rejected_at = None
    subject.rejection_reason = None


def mark_subject_approved(subject, actor_id: Optional[int]) -> None:
    now = utcnow()
    subject.approved_by = actor_id
    subject.approved_at = now
    if isinstance(subject, Expense):
        subject.status = ExpenseStatus.APPROVED
    else:
        subject.status = ReportStatus.APPROVED
        for expense in subject.expenses:
            expense.status = ExpenseStatus.APPROVED
            expense.approved_by = actor_id
            expense.approved_at = now


def start_round(approval: ExpenseApproval, audit: AuditInfo = None) -> None:
    """Put ``approval`` on step 1 of its workflow and assign the first approver."""
    workflow = approval.workflow
    first_step = workflow.step_at(1)
    if first_step is None:
        raise SubmissionValidationError(f"Workflow '{workflow.name}' has no steps.")

    approval.total_steps = len(workflow.steps)
    approval.current_step = 1
    approval.completed_at = None
    approval.submitted_at = utcnow()
    record_action(
        approval,
        ApprovalActionType.SUBMITTED,
        actor_id=approval.submitter_id,
        step_number=0,
        actor_role=MemberRole.EMPLOYEE.value,
        audit=audit,
    )
    assign_step(approval, first_step, audit=audit)

    if first_step.is_payment_step:
        approval.status = ApprovalStatus.AWAITING_PAYMENT
        mark_subject_approved(approval.subject, None)
    else:
        approval.status = ApprovalStatus.PENDING
        _mark_submitted(approval.subject)


def create_approval_chain(
    organization_id: int,
    submitter_id: int,
    expense_id: Optional[int] = None,
    report_id: Optional[int] = None,
    audit: AuditInfo = None,
) -> ExpenseApproval:
    """Submit an expense or a report for approval.

    Selects the workflow, checks the submitter can be routed, creates the
    ``ExpenseApproval`` on step 1 and records the ``submitted`` action.
    """
    subject = _load_subject(organization_id, expense_id, report_id)
    if subject.user_id != submitter_id:
        raise PermissionDenied("Only the submitter can submit this for approval.")
    if not _is_active_member(organization_id, submitter_id):
        raise PermissionDenied("You are not an active member of this organization.")
    approval = subject.approval
    if approval is not None and approval.status is not ApprovalStatus.CANCELLED:
        raise InvalidTransition("This has already been submitted for approval.")

    if isinstance(subject, Expense):
        if subject.report_id is not None:
            raise SubmissionValidationError("This expense belongs to a report. Submit the report instead.")
        if subject.status is not ExpenseStatus.DRAFT:
            raise InvalidTransition("Only draft expenses can be submitted.")
        if subject.amount is None or subject.amount <= 0:
            raise SubmissionValidationError("Expense amount must be greater than zero.")
        submission = submission_for_expense(subject)
    else:
        if subject.status is not ReportStatus.DRAFT:
            raise InvalidTransition("Only draft reports can be submitted.")
        validate_report_for_submission(subject)
        submission = submission_for_report(subject)

    workflow = select_workflow(submission)
    _require_manager_if_needed(workflow, submission)

    if approval is None:
        approval = ExpenseApproval(organization_id=organization_id, total_steps=len(workflow.steps))
        if isinstance(subject, Expense):
            approval.expense = subject
        else:
            approval.report = subject
        db.session.add(approval)
    approval.workflow = workflow
    try:
        start_round(approval, audit=audit)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Approval %s opened for %s %s using workflow %s (%d steps), approver %s",
        approval.id,
        "expense" if expense_id is not None else "report",
        subject.id,
        workflow.id,
        approval.total_steps,
        approval.current_approver_id,
    )
    email_service.notify_approval_requested(approval)
    return approval


def preview_chain(submission: Submission) -> Dict[str, Any]:
    """Show which workflow a submission would use and who would approve each step.

    Nothing is persisted. Resolution problems are reported per step instead
    of being raised, so admins can test a workflow configuration.
    """
    workflow = select_workflow(submission)
    department = submission.department
    if department is None:
        member = _member(submission.organization_id, submission.submitter_id)
        department = member.department if member else None

    prior: FrozenSet[int] = frozenset()
    steps: List[Dict[str, Any]] = []
    for step in workflow.steps:
        ctx = ResolutionContext(
            organization_id=submission.organization_id,
            submitter_id=submission.submitter_id,
            department=department,
            prior_approvers=prior,
        )
        entry: Dict[str, Any] = {
            "step_order": step.step_order,
            "step_type": step.step_type.value,
            "approver_id": None,
            "approver_name": None,
            "error": None,
        }
        try:
            approver_id = apply_delegation(resolve_approver(definition_from_step(step), ctx), ctx)
        except ApprovalError as exc:
            entry["error"] = exc.message
        else:
            approver = db.session.get(User, approver_id)
            entry["approver_id"] = approver_id
            entry["approver_name"] = approver.full_name if approver else None
            prior = prior | {approver_id}
        steps.append(entry)

    return {"workflow": workflow.to_dict(include_steps=False), "steps": steps}
