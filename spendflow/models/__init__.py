"""Application data models exposed for easy imports."""
from spendflow import db  # noqa: F401
from .organization import MemberRole, Organization, OrganizationMember  # noqa: F401
from .user import User  # noqa: F401
from .expense import Expense, ExpenseReport, ExpenseStatus, ReportStatus  # noqa: F401
from .approval import (
    TERMINAL_STATUSES,
    ApprovalAction,
    ApprovalActionType,
    ApprovalStatus,
    ApprovalStep,
    ApprovalWorkflow,
    ExpenseApproval,
    StepType,
)  # noqa: F401
from .delegation import ApprovalDelegation  # noqa: F401

__all__ = [
    "db",
    "MemberRole",
    "Organization",
    "OrganizationMember",
    "User",
    "Expense",
    "ExpenseReport",
    "ExpenseStatus",
    "ReportStatus",
    "TERMINAL_STATUSES",
    "ApprovalAction",
    "ApprovalActionType",
    "ApprovalStatus",
    "ApprovalStep",
    "ApprovalWorkflow",
    "ExpenseApproval",
    "StepType",
    "ApprovalDelegation",
]
