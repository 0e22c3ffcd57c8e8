"""Pick the approval workflow that applies to a submission."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Sequence

from spendflow.errors import NoWorkflowFound
from spendflow.models import ApprovalWorkflow, Expense, ExpenseReport, OrganizationMember

logger = logging.getLogger(__name__)


@dataclass
class Submission:
    """The attributes of an expense or report that workflow conditions look at."""

    organization_id: int
    submitter_id: int
    amount: Decimal
    category: Optional[str] = None
    department: Optional[str] = None
    project_code: Optional[str] = None
    tags: Sequence[str] = field(default_factory=tuple)
    is_report: bool = False


def _submitter_department(organization_id: int, user_id: int) -> Optional[str]:
    member = OrganizationMember.query.filter_by(
        organization_id=organization_id, user_id=user_id
    ).first()
    return member.department if member else None


def submission_for_expense(expense: Expense) -> Submission:
    return Submission(
        organization_id=expense.organization_id,
        submitter_id=expense.user_id,
        amount=expense.routing_amount,
        category=expense.category,
        department=_submitter_department(expense.organization_id, expense.user_id),
        project_code=expense.project_code,
        tags=tuple(expense.tags or ()),
    )


def submission_for_report(report: ExpenseReport) -> Submission:
    return Submission(
        organization_id=report.organization_id,
        submitter_id=report.user_id,
        amount=report.total_amount,
        department=_submitter_department(report.organization_id, report.user_id),
        is_report=True,
    )


def _as_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _amount_in_range(conditions: Mapping[str, Any], amount: Decimal) -> bool:
    for key in ("amount_min", "amount_max"):
        bound = conditions.get(key)
        if bound is None or bound == "":
            continue
        limit = _as_decimal(bound)
        if limit is None:
            return False
        if key == "amount_min" and amount < limit:
            return False
        if key == "amount_max" and amount > limit:
            return False
    return True


def _in_list(values: Any, candidate: Any) -> bool:
    if not values:
        return True
    return candidate is not None and str(candidate) in {str(value) for value in values}


def matches_conditions(conditions: Optional[Mapping[str, Any]], submission: Submission) -> bool:
    """Return True when every present condition matches the submission.

    Missing or empty conditions act as wildcards. Reports carry no single
    category, project code or tags, so those conditions are skipped for them.
    """
    conditions = conditions or {}

    if not _amount_in_range(conditions, submission.amount):
        return False

    if not _in_list(conditions.get("departments"), submission.department):
        return False
    if (department := conditions.get("department")) and department != submission.department:
        return False

    submitter_ids = conditions.get("submitter_ids") or conditions.get("user_ids")
    if not _in_list(submitter_ids, submission.submitter_id):
        return False

    if submission.is_report:
        return True

    if not _in_list(conditions.get("categories"), submission.category):
        return False
    if not _in_list(conditions.get("project_codes"), submission.project_code):
        return False
    if wanted_tags := conditions.get("tags"):
        if not set(map(str, wanted_tags)) & set(map(str, submission.tags or ())):
            return False

    return True


def select_workflow(submission: Submission) -> ApprovalWorkflow:
    """Return the best matching active workflow, else the default one."""
    candidates = (
        ApprovalWorkflow.query.filter_by(
            organization_id=submission.organization_id, is_active=True, is_default=False
        )
        .order_by(
            ApprovalWorkflow.priority.desc(),
            ApprovalWorkflow.created_at.desc(),
            ApprovalWorkflow.id.desc(),
        )
        .all()
    )
    for workflow in candidates:
        if matches_conditions(workflow.conditions, submission):
            logger.debug(
                "Workflow %s matched submission of %s by user %s",
                workflow.id, submission.amount, submission.submitter_id,
            )
            return workflow

    default = (
        ApprovalWorkflow.query.filter_by(
            organization_id=submission.organization_id, is_active=True, is_default=True
        )
        .order_by(ApprovalWorkflow.created_at.desc(), ApprovalWorkflow.id.desc())
        .first()
    )
    if default is None:
        logger.warning(
            "No workflow matched submission by user %s in organization %s",
            submission.submitter_id, submission.organization_id,
        )
        raise NoWorkflowFound()
    return default
