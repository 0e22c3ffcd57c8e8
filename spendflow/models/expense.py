"""Expense and expense report models."""
from __future__ import annotations

import enum
from decimal import Decimal

from spendflow import db


class ExpenseStatus(enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    REIMBURSED = "reimbursed"


class ReportStatus(enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


def _iso(value):
    return value.isoformat() if value else None


class Expense(db.Model):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    report_id = db.Column(db.Integer, db.ForeignKey("expense_reports.id"), nullable=True, index=True)
    merchant = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False)
    amount_in_org_currency = db.Column(db.Numeric(12, 2), nullable=True)
    category = db.Column(db.String(120), nullable=True)
    expense_date = db.Column(db.Date, nullable=True)
    description = db.Column(db.Text, nullable=True)
    receipt_path = db.Column(db.String(255), nullable=True)
    project_code = db.Column(db.String(120), nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.Enum(ExpenseStatus, name="expense_status"), nullable=False, default=ExpenseStatus.DRAFT)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    rejected_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    reimbursed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reimbursed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    submitter = db.relationship("User", foreign_keys=[user_id], lazy="joined")
    report = db.relationship("ExpenseReport", back_populates="expenses", lazy="select")
    approval = db.relationship(
        "ExpenseApproval",
        back_populates="expense",
        uselist=False,
        lazy="select",
        cascade="all, delete-orphan",
    )

    @property
    def routing_amount(self) -> Decimal:
        """Amount used for workflow matching, in the organization's currency."""
        if self.amount_in_org_currency is not None:
            return Decimal(self.amount_in_org_currency)
        return Decimal(self.amount)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "report_id": self.report_id,
            "merchant": self.merchant,
            "amount": float(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "amount_in_org_currency": float(self.amount_in_org_currency)
            if self.amount_in_org_currency is not None
            else None,
            "category": self.category,
            "expense_date": _iso(self.expense_date),
            "description": self.description,
            "receipt_path": self.receipt_path,
            "project_code": self.project_code,
            "tags": list(self.tags or []),
            "status": self.status.value if self.status else None,
            "approved_at": _iso(self.approved_at),
            "rejected_at": _iso(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "reimbursed_at": _iso(self.reimbursed_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Expense id={self.id} status={self.status.value if self.status else None}>"


class ExpenseReport(db.Model):
    __tablename__ = "expense_reports"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.Enum(ReportStatus, name="report_status"), nullable=False, default=ReportStatus.DRAFT)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    rejected_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    paid_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    submitter = db.relationship("User", foreign_keys=[user_id], lazy="joined")
    expenses = db.relationship(
        "Expense",
        back_populates="report",
        lazy="selectin",
        order_by="Expense.id",
    )
    approval = db.relationship(
        "ExpenseApproval",
        back_populates="report",
        uselist=False,
        lazy="select",
        cascade="all, delete-orphan",
    )

    @property
    def total_amount(self) -> Decimal:
        return sum((expense.routing_amount for expense in self.expenses), Decimal("0"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value if self.status else None,
            "total_amount": float(self.total_amount),
            "expense_count": len(self.expenses),
            "approved_at": _iso(self.approved_at),
            "rejected_at": _iso(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "paid_at": _iso(self.paid_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<ExpenseReport {self.name} status={self.status.value if self.status else None}>"
