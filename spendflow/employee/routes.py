"""Employee-facing routes: expenses, reports and their submission."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from flask import request
from flask_login import current_user, login_required

from spendflow import db
from spendflow.errors import InvalidTransition, SubmissionNotFound, SubmissionValidationError
from spendflow.models import Expense, ExpenseReport, ExpenseStatus, Organization, ReportStatus
from spendflow.services import approval_queries, chain_builder, currency_service, state_machine
from spendflow.utils.helpers import (
    current_membership,
    json_response,
    parse_date,
    request_audit_context,
    request_payload,
)

from . import employee_bp


def _own_expense(expense_id: int, organization_id: int) -> Expense:
    expense = Expense.query.filter_by(
        id=expense_id, organization_id=organization_id, user_id=current_user.id
    ).first()
    if expense is None:
        raise SubmissionNotFound("Expense not found.")
    return expense


def _own_report(report_id: int, organization_id: int) -> ExpenseReport:
    report = ExpenseReport.query.filter_by(
        id=report_id, organization_id=organization_id, user_id=current_user.id
    ).first()
    if report is None:
        raise SubmissionNotFound("Report not found.")
    return report


@employee_bp.route("/expenses", methods=["GET"])
@login_required
def list_expenses() -> Any:
    """List expenses created by the current user."""
    member = current_membership()
    expenses = (
        Expense.query.filter_by(organization_id=member.organization_id, user_id=current_user.id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .all()
    )
    return json_response({"expenses": [expense.to_dict() for expense in expenses]})


@employee_bp.route("/expenses", methods=["POST"])
@login_required
def create_expense() -> Any:
    """Record a draft expense, converting its amount to the organization currency."""
    member = current_membership()
    payload: Dict[str, Any] = request_payload()

    required_fields = {"amount", "currency"}
    if missing := required_fields - payload.keys():
        raise SubmissionValidationError(f"Missing fields: {', '.join(sorted(missing))}")

    try:
        amount = Decimal(str(payload["amount"]))
    except InvalidOperation:
        raise SubmissionValidationError("Invalid amount.") from None
    if not amount.is_finite() or amount <= 0:
        raise SubmissionValidationError("Amount must be greater than zero.")

    tags = payload.get("tags") or []
    if not isinstance(tags, list):
        raise SubmissionValidationError("tags must be a list.")

    organization = db.session.get(Organization, member.organization_id)
    currency = str(payload["currency"]).upper()

    expense = Expense(
        organization_id=member.organization_id,
        user_id=current_user.id,
        merchant=payload.get("merchant"),
        amount=amount,
        currency=currency,
        amount_in_org_currency=currency_service.convert_currency(
            amount, currency, organization.currency_code
        ),
        category=payload.get("category"),
        expense_date=parse_date(payload["expense_date"], "expense_date")
        if payload.get("expense_date")
        else None,
        description=payload.get("description"),
        receipt_path=payload.get("receipt_path"),
        project_code=payload.get("project_code"),
        tags=[str(tag) for tag in tags],
        status=ExpenseStatus.DRAFT,
    )
    db.session.add(expense)
    db.session.commit()

    return json_response({"message": "Expense created.", "expense": expense.to_dict()}, status=201)


@employee_bp.route("/reports", methods=["POST"])
@login_required
def create_report() -> Any:
    member = current_membership()
    payload = request_payload()
    name = (payload.get("name") or "").strip()
    if not name:
        raise SubmissionValidationError("Report name is required.")

    report = ExpenseReport(
        organization_id=member.organization_id,
        user_id=current_user.id,
        name=name,
        description=payload.get("description"),
        status=ReportStatus.DRAFT,
    )
    db.session.add(report)
    db.session.commit()
    return json_response({"message": "Report created.", "report": report.to_dict()}, status=201)


@employee_bp.route("/reports/<int:report_id>/expenses", methods=["POST"])
@login_required
def add_expense_to_report(report_id: int) -> Any:
    """Attach one of the user's draft expenses to a draft report."""
    member = current_membership()
    report = _own_report(report_id, member.organization_id)
    try:
        expense_id = int(request_payload().get("expense_id"))
    except (TypeError, ValueError):
        raise SubmissionValidationError("expense_id is required.") from None
    expense = _own_expense(expense_id, member.organization_id)

    if report.status is not ReportStatus.DRAFT:
        raise InvalidTransition("Expenses can only be added to draft reports.")
    if expense.status is not ExpenseStatus.DRAFT or expense.approval is not None:
        raise InvalidTransition("Only unsubmitted draft expenses can be added to a report.")
    if expense.report_id not in (None, report.id):
        raise InvalidTransition("This expense already belongs to another report.")

    expense.report = report
    db.session.commit()
    return json_response({"message": "Expense added to report.", "report": report.to_dict()})


@employee_bp.route("/expenses/<int:expense_id>/submit", methods=["POST"])
@login_required
def submit_expense(expense_id: int) -> Any:
    member = current_membership()
    approval = chain_builder.create_approval_chain(
        member.organization_id,
        current_user.id,
        expense_id=expense_id,
        audit=request_audit_context(),
    )
    return json_response(
        {"message": "Expense submitted for approval.", "approval": approval_queries.serialize_approval(approval)},
        status=201,
    )


@employee_bp.route("/reports/<int:report_id>/submit", methods=["POST"])
@login_required
def submit_report(report_id: int) -> Any:
    member = current_membership()
    approval = chain_builder.create_approval_chain(
        member.organization_id,
        current_user.id,
        report_id=report_id,
        audit=request_audit_context(),
    )
    return json_response(
        {"message": "Report submitted for approval.", "approval": approval_queries.serialize_approval(approval)},
        status=201,
    )


@employee_bp.route("/reports/<int:report_id>/resubmit", methods=["POST"])
@login_required
def resubmit_report(report_id: int) -> Any:
    member = current_membership()
    approval = state_machine.resubmit_report(
        report_id, current_user.id, member.organization_id, audit=request_audit_context()
    )
    return json_response(
        {"message": "Report resubmitted.", "approval": approval_queries.serialize_approval(approval)}
    )


@employee_bp.route("/expenses/<int:expense_id>/resubmit", methods=["POST"])
@login_required
def resubmit_expense(expense_id: int) -> Any:
    member = current_membership()
    approval = state_machine.resubmit_expense(
        expense_id, current_user.id, member.organization_id, audit=request_audit_context()
    )
    return json_response(
        {"message": "Expense resubmitted.", "approval": approval_queries.serialize_approval(approval)}
    )


@employee_bp.route("/approvals/<int:approval_id>/cancel", methods=["POST"])
@login_required
def cancel_approval(approval_id: int) -> Any:
    member = current_membership()
    approval = state_machine.cancel(
        approval_id, current_user.id, member.organization_id, audit=request_audit_context()
    )
    return json_response(
        {"message": "Approval cancelled.", "approval": approval_queries.serialize_approval(approval)}
    )


@employee_bp.route("/submissions", methods=["GET"])
@login_required
def my_submissions() -> Any:
    member = current_membership()
    submissions = approval_queries.get_my_submissions(
        current_user.id, member.organization_id, status=request.args.get("status")
    )
    return json_response({"submissions": submissions})


@employee_bp.route("/manager-check", methods=["GET"])
@login_required
def manager_check() -> Any:
    """Whether the user can be routed to a manager, shown before submitting."""
    member = current_membership()
    return json_response(chain_builder.check_manager_assignment(member.organization_id, current_user.id))
