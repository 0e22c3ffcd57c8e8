"""Typed approval step definitions.

Workflow steps are stored as ``ApprovalStep`` rows with a loose set of
nullable payload columns. The services work with the variants below instead,
one frozen dataclass per step type, each carrying only the payload it needs.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Tuple, Union

from spendflow.errors import WorkflowValidationError
from spendflow.models import ApprovalStep, MemberRole, StepType


@dataclass(frozen=True)
class ManagerStep:
    step_order: int
    step_type: ClassVar[StepType] = StepType.MANAGER


@dataclass(frozen=True)
class RoleStep:
    step_order: int
    role: MemberRole
    step_type: ClassVar[StepType] = StepType.ROLE


@dataclass(frozen=True)
class SpecificUserStep:
    step_order: int
    user_id: int
    step_type: ClassVar[StepType] = StepType.SPECIFIC_USER


@dataclass(frozen=True)
class SpecificManagerStep:
    step_order: int
    user_id: int
    step_type: ClassVar[StepType] = StepType.SPECIFIC_MANAGER


@dataclass(frozen=True)
class MultipleUsersStep:
    step_order: int
    user_ids: Tuple[int, ...]
    step_type: ClassVar[StepType] = StepType.MULTIPLE_USERS


@dataclass(frozen=True)
class PaymentStep:
    step_order: int
    step_type: ClassVar[StepType] = StepType.PAYMENT


@dataclass(frozen=True)
class DepartmentOwnerStep:
    step_order: int
    step_type: ClassVar[StepType] = StepType.DEPARTMENT_OWNER


StepDefinition = Union[
    ManagerStep,
    RoleStep,
    SpecificUserStep,
    SpecificManagerStep,
    MultipleUsersStep,
    PaymentStep,
    DepartmentOwnerStep,
]


def _require_user_id(value: Any, step_type: StepType) -> int:
    if value in (None, ""):
        raise WorkflowValidationError(f"Step type '{step_type.value}' requires approver_user_id.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise WorkflowValidationError(f"Invalid approver_user_id '{value}'.") from None


def _require_role(value: Any) -> MemberRole:
    if not value:
        raise WorkflowValidationError("Step type 'role' requires approver_role.")
    try:
        return MemberRole(str(value).lower())
    except ValueError:
        raise WorkflowValidationError(f"Unknown approver role '{value}'.") from None


def _require_user_ids(value: Any) -> Tuple[int, ...]:
    if not value or not isinstance(value, (list, tuple)):
        raise WorkflowValidationError("Step type 'multiple_users' requires approver_user_ids.")
    try:
        return tuple(int(user_id) for user_id in value)
    except (TypeError, ValueError):
        raise WorkflowValidationError("approver_user_ids must contain user ids.") from None


_PARSERS = {
    StepType.MANAGER: lambda order, data: ManagerStep(order),
    StepType.ROLE: lambda order, data: RoleStep(order, _require_role(data.get("approver_role"))),
    StepType.SPECIFIC_USER: lambda order, data: SpecificUserStep(
        order, _require_user_id(data.get("approver_user_id"), StepType.SPECIFIC_USER)
    ),
    StepType.SPECIFIC_MANAGER: lambda order, data: SpecificManagerStep(
        order, _require_user_id(data.get("approver_user_id"), StepType.SPECIFIC_MANAGER)
    ),
    StepType.MULTIPLE_USERS: lambda order, data: MultipleUsersStep(
        order, _require_user_ids(data.get("approver_user_ids"))
    ),
    StepType.PAYMENT: lambda order, data: PaymentStep(order),
    StepType.DEPARTMENT_OWNER: lambda order, data: DepartmentOwnerStep(order),
}


def parse_step(data: Mapping[str, Any], step_order: int) -> StepDefinition:
    """Build a step definition from an API payload, validating its fields."""
    raw_type = data.get("step_type")
    try:
        step_type = StepType(raw_type)
    except ValueError:
        raise WorkflowValidationError(f"Unknown step type '{raw_type}'.") from None

    flag = data.get("is_payment_step")
    if flag is not None and bool(flag) != (step_type is StepType.PAYMENT):
        raise WorkflowValidationError(
            "is_payment_step must be true exactly when step_type is 'payment'."
        )

    return _PARSERS[step_type](step_order, data)


def definition_from_step(step: ApprovalStep) -> StepDefinition:
    """Rebuild the typed definition of a stored step."""
    return _PARSERS[step.step_type](
        step.step_order,
        {
            "approver_role": step.approver_role,
            "approver_user_id": step.approver_user_id,
            "approver_user_ids": step.approver_user_ids,
        },
    )


def step_columns(definition: StepDefinition) -> Dict[str, Any]:
    """Column values for persisting a definition as an ``ApprovalStep`` row."""
    columns: Dict[str, Any] = {
        "step_order": definition.step_order,
        "step_type": definition.step_type,
        "approver_role": None,
        "approver_user_id": None,
        "approver_user_ids": [],
        "is_payment_step": isinstance(definition, PaymentStep),
    }
    if isinstance(definition, RoleStep):
        columns["approver_role"] = definition.role.value
    elif isinstance(definition, (SpecificUserStep, SpecificManagerStep)):
        columns["approver_user_id"] = definition.user_id
    elif isinstance(definition, MultipleUsersStep):
        columns["approver_user_ids"] = list(definition.user_ids)
    return columns


STEP_TYPE_METADATA = [
    {
        "value": StepType.MANAGER.value,
        "label": "Submitter's Manager",
        "description": "Routes to the expense submitter's direct manager",
        "icon": "supervisor_account",
        "requires_role": False,
        "requires_user": False,
        "requires_multiple_users": False,
        "is_payment_step": False,
    },
    {
        "value": StepType.ROLE.value,
        "label": "User Role",
        "description": "Routes to any user with the specified role",
        "icon": "badge",
        "requires_role": True,
        "requires_user": False,
        "requires_multiple_users": False,
        "is_payment_step": False,
    },
    {
        "value": StepType.SPECIFIC_USER.value,
        "label": "Specific User",
        "description": "Routes to a single named user",
        "icon": "person",
        "requires_role": False,
        "requires_user": True,
        "requires_multiple_users": False,
        "is_payment_step": False,
    },
    {
        "value": StepType.SPECIFIC_MANAGER.value,
        "label": "Specific Manager",
        "description": "Routes to a named manager (not necessarily submitter's)",
        "icon": "manage_accounts",
        "requires_role": False,
        "requires_user": True,
        "requires_multiple_users": False,
        "is_payment_step": False,
        "allowed_roles": [MemberRole.MANAGER.value, MemberRole.ADMIN.value],
    },
    {
        "value": StepType.MULTIPLE_USERS.value,
        "label": "Multiple Approvers",
        "description": "Any of the selected users can approve",
        "icon": "groups",
        "requires_role": False,
        "requires_user": False,
        "requires_multiple_users": True,
        "is_payment_step": False,
    },
    {
        "value": StepType.PAYMENT.value,
        "label": "Payment Step",
        "description": "Final payment processing by Finance",
        "icon": "payments",
        "requires_role": False,
        "requires_user": False,
        "requires_multiple_users": False,
        "is_payment_step": True,
        "allowed_roles": [MemberRole.FINANCE.value],
    },
    {
        "value": StepType.DEPARTMENT_OWNER.value,
        "label": "Department Owner",
        "description": "Routes to a manager of the submitter's department",
        "icon": "corporate_fare",
        "requires_role": False,
        "requires_user": False,
        "requires_multiple_users": False,
        "is_payment_step": False,
        "allowed_roles": [MemberRole.MANAGER.value],
    },
]
