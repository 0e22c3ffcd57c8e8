"""Exceptions raised by the approval services.

Each error carries the HTTP status the API answers with, so blueprints can
let them propagate to the error handler registered in the app factory.
"""
from __future__ import annotations


class ApprovalError(Exception):
    """Base class for user-facing approval errors."""

    status_code = 400
    default_message = "The approval request could not be processed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthenticated(ApprovalError):
    status_code = 401
    default_message = "User not authenticated"


class NoOrganizationSelected(ApprovalError):
    status_code = 400
    default_message = "No organization selected"


class PermissionDenied(ApprovalError):
    status_code = 403
    default_message = "Insufficient permissions."


class NoManagerAssigned(ApprovalError):
    status_code = 422
    default_message = (
        "Cannot submit for approval: You do not have a manager assigned. "
        "Please contact your organization administrator to assign a manager to your account."
    )


class NoEligibleApproverForRole(ApprovalError):
    status_code = 422
    default_message = (
        "Cannot submit for approval: No approver is available for the required role. "
        "Please contact your organization administrator."
    )


class NoWorkflowFound(ApprovalError):
    status_code = 422
    default_message = "No matching workflow found. Please configure a default workflow."


class WorkflowValidationError(ApprovalError):
    status_code = 400


class SubmissionValidationError(ApprovalError):
    status_code = 400


class ApprovalNotFound(ApprovalError):
    status_code = 404
    default_message = "Approval not found"


class NotCurrentApprover(ApprovalError):
    status_code = 403
    default_message = "User is not the current approver"


class InvalidTransition(ApprovalError):
    status_code = 409


class ConcurrentModification(ApprovalError):
    status_code = 409
    default_message = "The approval was modified by another request. Reload and try again."


class DelegationError(ApprovalError):
    status_code = 400


class WorkflowNotFound(ApprovalError):
    status_code = 404
    default_message = "Workflow not found"


class SubmissionNotFound(ApprovalError):
    status_code = 404
    default_message = "Expense or report not found"
