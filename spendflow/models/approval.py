"""Approval workflow models."""
from __future__ import annotations

import enum

from spendflow import db
from spendflow.utils.dates import utcnow


class StepType(enum.Enum):
    MANAGER = "manager"
    ROLE = "role"
    SPECIFIC_USER = "specific_user"
    SPECIFIC_MANAGER = "specific_manager"
    MULTIPLE_USERS = "multiple_users"
    PAYMENT = "payment"
    DEPARTMENT_OWNER = "department_owner"


class ApprovalStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    AWAITING_PAYMENT = "awaiting_payment"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    PAID = "paid"


TERMINAL_STATUSES = frozenset(
    {ApprovalStatus.APPROVED, ApprovalStatus.PAID, ApprovalStatus.REJECTED, ApprovalStatus.CANCELLED}
)


class ApprovalActionType(enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    COMMENTED = "commented"
    SUBMITTED = "submitted"
    PAID = "paid"


def _iso(value):
    return value.isoformat() if value else None


class ApprovalWorkflow(db.Model):
    __tablename__ = "approval_workflows"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "name", name="uq_workflow_name_per_org"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    conditions = db.Column(db.JSON, nullable=False, default=dict)
    priority = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    organization = db.relationship("Organization", back_populates="workflows", lazy="joined")
    steps = db.relationship(
        "ApprovalStep",
        back_populates="workflow",
        lazy="selectin",
        order_by="ApprovalStep.step_order",
        cascade="all, delete-orphan",
    )

    @property
    def has_payment_step(self) -> bool:
        return any(step.is_payment_step for step in self.steps)

    def step_at(self, step_order: int) -> "ApprovalStep | None":
        return next((step for step in self.steps if step.step_order == step_order), None)

    def to_dict(self, include_steps: bool = True) -> dict:
        payload = {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "conditions": dict(self.conditions or {}),
            "priority": self.priority,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_steps:
            payload["steps"] = [step.to_dict() for step in self.steps]
        return payload

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.name} priority={self.priority}>"


class ApprovalStep(db.Model):
    __tablename__ = "approval_steps"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "step_order", name="uq_step_order_per_workflow"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(db.Integer, db.ForeignKey("approval_workflows.id"), nullable=False, index=True)
    step_order = db.Column(db.Integer, nullable=False)
    step_type = db.Column(db.Enum(StepType, name="approval_step_type"), nullable=False)
    approver_role = db.Column(db.String(50), nullable=True)
    approver_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approver_user_ids = db.Column(db.JSON, nullable=False, default=list)
    is_payment_step = db.Column(db.Boolean, default=False, nullable=False)

    workflow = db.relationship("ApprovalWorkflow", back_populates="steps")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "step_order": self.step_order,
            "step_type": self.step_type.value if self.step_type else None,
            "approver_role": self.approver_role,
            "approver_user_id": self.approver_user_id,
            "approver_user_ids": list(self.approver_user_ids or []),
            "is_payment_step": self.is_payment_step,
        }

    def __repr__(self) -> str:
        return f"<ApprovalStep workflow={self.workflow_id} #{self.step_order} {self.step_type.value}>"


class ExpenseApproval(db.Model):
    """Live state of one submission's walk through its approval chain."""

    __tablename__ = "expense_approvals"
    __table_args__ = (
        db.CheckConstraint(
            "(expense_id IS NOT NULL AND report_id IS NULL) OR "
            "(expense_id IS NULL AND report_id IS NOT NULL)",
            name="ck_expense_or_report",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=True, unique=True)
    report_id = db.Column(db.Integer, db.ForeignKey("expense_reports.id"), nullable=True, unique=True)
    workflow_id = db.Column(db.Integer, db.ForeignKey("approval_workflows.id"), nullable=False)
    current_step = db.Column(db.Integer, nullable=False, default=1)
    total_steps = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum(ApprovalStatus, name="approval_status"),
        nullable=False,
        default=ApprovalStatus.PENDING,
        index=True,
    )
    current_approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    submitted_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    expense = db.relationship("Expense", back_populates="approval", lazy="joined")
    report = db.relationship("ExpenseReport", back_populates="approval", lazy="joined")
    workflow = db.relationship("ApprovalWorkflow", lazy="joined")
    current_approver = db.relationship("User", foreign_keys=[current_approver_id], lazy="joined")
    actions = db.relationship(
        "ApprovalAction",
        back_populates="approval",
        lazy="selectin",
        order_by="ApprovalAction.id",
        cascade="all, delete-orphan",
    )

    @property
    def subject(self):
        """The expense or report under approval."""
        return self.expense if self.expense is not None else self.report

    @property
    def submitter_id(self) -> int:
        return self.subject.user_id

    @property
    def current_step_definition(self) -> "ApprovalStep | None":
        return self.workflow.step_at(self.current_step) if self.workflow else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "expense_id": self.expense_id,
            "report_id": self.report_id,
            "workflow_id": self.workflow_id,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "status": self.status.value if self.status else None,
            "current_approver_id": self.current_approver_id,
            "submitted_at": _iso(self.submitted_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return (
            f"<ExpenseApproval id={self.id} step={self.current_step}/{self.total_steps} "
            f"status={self.status.value if self.status else None}>"
        )


class ApprovalAction(db.Model):
    __tablename__ = "approval_actions"

    id = db.Column(db.Integer, primary_key=True)
    expense_approval_id = db.Column(
        db.Integer, db.ForeignKey("expense_approvals.id"), nullable=False, index=True
    )
    step_number = db.Column(db.Integer, nullable=False)
    action = db.Column(db.Enum(ApprovalActionType, name="approval_action_type"), nullable=False)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    actor_role = db.Column(db.String(50), nullable=False)
    comment = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    delegated_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)

    approval = db.relationship("ExpenseApproval", back_populates="actions")
    actor = db.relationship("User", foreign_keys=[actor_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_approval_id": self.expense_approval_id,
            "step_number": self.step_number,
            "action": self.action.value if self.action else None,
            "actor_id": self.actor_id,
            "actor_name": self.actor.full_name if self.actor else None,
            "actor_role": self.actor_role,
            "comment": self.comment,
            "rejection_reason": self.rejection_reason,
            "delegated_to": self.delegated_to,
            "action_at": _iso(self.action_at),
        }

    def __repr__(self) -> str:
        return f"<ApprovalAction {self.action.value} step={self.step_number} actor={self.actor_id}>"
