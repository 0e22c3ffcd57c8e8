"""Persistence and validation of approval workflows and their steps."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from spendflow import db
from spendflow.errors import WorkflowNotFound, WorkflowValidationError
from spendflow.models import (
    ApprovalStatus,
    ApprovalStep,
    ApprovalWorkflow,
    ExpenseApproval,
    MemberRole,
    OrganizationMember,
)
from spendflow.services.steps import (
    MultipleUsersStep,
    PaymentStep,
    SpecificManagerStep,
    SpecificUserStep,
    StepDefinition,
    parse_step,
    step_columns,
)

logger = logging.getLogger(__name__)

AMOUNT_CONDITIONS = ("amount_min", "amount_max")
LIST_CONDITIONS = (
    "categories",
    "departments",
    "project_codes",
    "tags",
    "submitter_ids",
    "user_ids",
)
SCALAR_CONDITIONS = ("department",)
IN_FLIGHT_STATUSES = (ApprovalStatus.PENDING, ApprovalStatus.AWAITING_PAYMENT)
KNOWN_CONDITIONS = frozenset(AMOUNT_CONDITIONS + LIST_CONDITIONS + SCALAR_CONDITIONS)

DEFAULT_WORKFLOWS = [
    {
        "name": "Small Expenses ($0-$500)",
        "description": "Manager approval for expenses under $500",
        "conditions": {"amount_min": 0, "amount_max": 500},
        "priority": 1,
        "is_default": False,
        "steps": [{"step_type": "manager"}],
    },
    {
        "name": "Medium Expenses ($501-$1,000)",
        "description": "Manager and Finance approval for expenses $501-$1,000",
        "conditions": {"amount_min": 501, "amount_max": 1000},
        "priority": 2,
        "is_default": False,
        "steps": [
            {"step_type": "manager"},
            {"step_type": "role", "approver_role": "finance"},
            {"step_type": "payment"},
        ],
    },
    {
        "name": "Large Expenses ($1,001+)",
        "description": "Manager, Finance, and Admin approval for expenses over $1,000",
        "conditions": {"amount_min": 1001},
        "priority": 3,
        "is_default": False,
        "steps": [
            {"step_type": "manager"},
            {"step_type": "role", "approver_role": "finance"},
            {"step_type": "role", "approver_role": "admin"},
            {"step_type": "payment"},
        ],
    },
    {
        "name": "Default Workflow",
        "description": "Used when no other workflow conditions match",
        "conditions": {},
        "priority": 0,
        "is_default": True,
        "steps": [
            {"step_type": "manager"},
            {"step_type": "role", "approver_role": "finance"},
            {"step_type": "payment"},
        ],
    },
]


def list_workflows(organization_id: int, include_inactive: bool = True) -> List[ApprovalWorkflow]:
    query = ApprovalWorkflow.query.filter_by(organization_id=organization_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(ApprovalWorkflow.priority.desc(), ApprovalWorkflow.name).all()


def get_workflow(workflow_id: int, organization_id: int) -> ApprovalWorkflow:
    workflow = ApprovalWorkflow.query.filter_by(
        id=workflow_id, organization_id=organization_id
    ).first()
    if workflow is None:
        raise WorkflowNotFound()
    return workflow


def validate_conditions(conditions: Any) -> Dict[str, Any]:
    """Check the shape of a conditions object and return a clean copy.

    Empty values are dropped, since an absent condition already matches
    everything.
    """
    if conditions is None:
        return {}
    if not isinstance(conditions, Mapping):
        raise WorkflowValidationError("conditions must be an object.")

    if unknown := set(conditions) - KNOWN_CONDITIONS:
        raise WorkflowValidationError(f"Unknown conditions: {', '.join(sorted(unknown))}")

    cleaned: Dict[str, Any] = {}
    for key in AMOUNT_CONDITIONS:
        value = conditions.get(key)
        if value is None or value == "":
            continue
        try:
            Decimal(str(value))
        except InvalidOperation:
            raise WorkflowValidationError(f"{key} must be a number.") from None
        cleaned[key] = value

    if "amount_min" in cleaned and "amount_max" in cleaned:
        if Decimal(str(cleaned["amount_min"])) > Decimal(str(cleaned["amount_max"])):
            raise WorkflowValidationError("amount_min cannot be greater than amount_max.")

    for key in LIST_CONDITIONS:
        value = conditions.get(key)
        if not value:
            continue
        if not isinstance(value, (list, tuple)):
            raise WorkflowValidationError(f"{key} must be a list.")
        cleaned[key] = list(value)

    if department := conditions.get("department"):
        cleaned["department"] = str(department)

    return cleaned


def validate_steps(organization_id: int, steps: Any) -> List[StepDefinition]:
    """Parse a list of step payloads into ordered definitions.

    Raises ``WorkflowValidationError`` unless the steps are non-empty, ordered
    contiguously from 1, carry at most one payment step placed last, and only
    reference members of the organization.
    """
    if not isinstance(steps, (list, tuple)) or not steps:
        raise WorkflowValidationError("A workflow needs at least one step.")

    if all(isinstance(step, Mapping) and step.get("step_order") is not None for step in steps):
        try:
            ordered = sorted(steps, key=lambda step: int(step["step_order"]))
        except (TypeError, ValueError):
            raise WorkflowValidationError("step_order must be an integer.") from None
        orders = [int(step["step_order"]) for step in ordered]
        if orders != list(range(1, len(steps) + 1)):
            raise WorkflowValidationError("Step order must be contiguous starting at 1.")
    elif any(isinstance(step, Mapping) and step.get("step_order") is not None for step in steps):
        raise WorkflowValidationError("Provide step_order for every step or for none.")
    else:
        ordered = list(steps)

    definitions = []
    for index, step in enumerate(ordered, start=1):
        if not isinstance(step, Mapping):
            raise WorkflowValidationError("Each step must be an object.")
        definitions.append(parse_step(step, index))

    payment_positions = [d.step_order for d in definitions if isinstance(d, PaymentStep)]
    if len(payment_positions) > 1:
        raise WorkflowValidationError("Only one payment step is allowed per workflow.")
    if payment_positions and payment_positions[0] != len(definitions):
        raise WorkflowValidationError("Payment step must be the last step in the workflow.")

    _validate_step_users(organization_id, definitions)
    return definitions


def _validate_step_users(organization_id: int, definitions: Iterable[StepDefinition]) -> None:
    referenced = set()
    for definition in definitions:
        if isinstance(definition, (SpecificUserStep, SpecificManagerStep)):
            referenced.add(definition.user_id)
        elif isinstance(definition, MultipleUsersStep):
            referenced.update(definition.user_ids)
    if not referenced:
        return

    members = {
        member.user_id: member
        for member in OrganizationMember.query.filter(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id.in_(referenced),
        )
    }
    if missing := referenced - members.keys():
        raise WorkflowValidationError(
            f"Users are not members of this organization: {', '.join(map(str, sorted(missing)))}"
        )

    for definition in definitions:
        if isinstance(definition, SpecificManagerStep):
            if members[definition.user_id].role not in (MemberRole.MANAGER, MemberRole.ADMIN):
                raise WorkflowValidationError(
                    "A specific_manager step must name a manager or admin."
                )


def _coerce_priority(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise WorkflowValidationError("priority must be an integer.") from None


def _clear_other_defaults(workflow: ApprovalWorkflow) -> None:
    query = ApprovalWorkflow.query.filter(
        ApprovalWorkflow.organization_id == workflow.organization_id,
        ApprovalWorkflow.is_default.is_(True),
    )
    if workflow.id is not None:
        query = query.filter(ApprovalWorkflow.id != workflow.id)
    for other in query:
        other.is_default = False


def _ensure_unique_name(organization_id: int, name: str, workflow_id: Optional[int] = None) -> None:
    query = ApprovalWorkflow.query.filter_by(organization_id=organization_id, name=name)
    if workflow_id is not None:
        query = query.filter(ApprovalWorkflow.id != workflow_id)
    if db.session.query(query.exists()).scalar():
        raise WorkflowValidationError(f"A workflow named '{name}' already exists.")


def _replace_steps(workflow: ApprovalWorkflow, definitions: List[StepDefinition]) -> None:
    workflow.steps.clear()
    # Old rows must be gone before the new ones hit the (workflow, order) unique key.
    db.session.flush()
    for definition in definitions:
        workflow.steps.append(ApprovalStep(**step_columns(definition)))


def create_workflow(
    organization_id: int, data: Mapping[str, Any], created_by: Optional[int] = None
) -> ApprovalWorkflow:
    name = (data.get("name") or "").strip()
    if not name:
        raise WorkflowValidationError("Workflow name is required.")
    _ensure_unique_name(organization_id, name)

    definitions = validate_steps(organization_id, data.get("steps"))
    workflow = ApprovalWorkflow(
        organization_id=organization_id,
        name=name,
        description=data.get("description"),
        conditions=validate_conditions(data.get("conditions")),
        priority=_coerce_priority(data.get("priority", 0)),
        is_active=bool(data.get("is_active", True)),
        is_default=bool(data.get("is_default", False)),
        created_by=created_by,
    )
    if workflow.is_default:
        _clear_other_defaults(workflow)

    db.session.add(workflow)
    for definition in definitions:
        workflow.steps.append(ApprovalStep(**step_columns(definition)))
    db.session.commit()

    logger.info(
        "Created workflow %s (%s) for organization %s with %d steps",
        workflow.id, workflow.name, organization_id, len(definitions),
    )
    return workflow


def _ensure_no_approvals_in_flight(workflow: ApprovalWorkflow) -> None:
    in_flight = db.session.query(
        ExpenseApproval.query.filter(
            ExpenseApproval.workflow_id == workflow.id,
            ExpenseApproval.status.in_(IN_FLIGHT_STATUSES),
        ).exists()
    ).scalar()
    if in_flight:
        raise WorkflowValidationError(
            "Workflow has approvals in progress. Create a new workflow instead."
        )


def update_workflow(workflow_id: int, organization_id: int, data: Mapping[str, Any]) -> ApprovalWorkflow:
    """Update workflow attributes and, when ``steps`` is given, its steps."""
    workflow = get_workflow(workflow_id, organization_id)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise WorkflowValidationError("Workflow name is required.")
        _ensure_unique_name(organization_id, name, workflow.id)
        workflow.name = name
    if "description" in data:
        workflow.description = data["description"]
    if "conditions" in data:
        workflow.conditions = validate_conditions(data["conditions"])
    if "priority" in data:
        workflow.priority = _coerce_priority(data["priority"])
    if "is_active" in data:
        workflow.is_active = bool(data["is_active"])
    if "is_default" in data:
        workflow.is_default = bool(data["is_default"])
        if workflow.is_default:
            _clear_other_defaults(workflow)
    if "steps" in data:
        _ensure_no_approvals_in_flight(workflow)
        _replace_steps(workflow, validate_steps(organization_id, data["steps"]))

    db.session.commit()
    logger.info("Updated workflow %s for organization %s", workflow.id, organization_id)
    return workflow


def update_workflow_steps(workflow_id: int, organization_id: int, steps: Any) -> ApprovalWorkflow:
    """Replace every step of a workflow in one transaction.

    Either the whole new list is stored or, on a validation error, nothing
    changes. Steps cannot be replaced while approvals are still walking the
    workflow; rejected approvals pick up the new steps when resubmitted.
    """
    workflow = get_workflow(workflow_id, organization_id)
    _ensure_no_approvals_in_flight(workflow)
    definitions = validate_steps(organization_id, steps)
    _replace_steps(workflow, definitions)
    db.session.commit()

    logger.info("Replaced steps of workflow %s (%d steps)", workflow.id, len(definitions))
    return workflow


def delete_workflow(workflow_id: int, organization_id: int) -> None:
    workflow = get_workflow(workflow_id, organization_id)
    in_use = db.session.query(
        ExpenseApproval.query.filter_by(workflow_id=workflow.id).exists()
    ).scalar()
    if in_use:
        raise WorkflowValidationError(
            "Workflow is used by existing approvals. Deactivate it instead."
        )

    db.session.delete(workflow)
    db.session.commit()
    logger.info("Deleted workflow %s from organization %s", workflow_id, organization_id)


def create_default_workflows(
    organization_id: int, created_by: Optional[int] = None
) -> List[ApprovalWorkflow]:
    """Seed the standard amount-tiered workflows plus a catch-all default.

    Does nothing when the organization already has workflows.
    """
    exists = db.session.query(
        ApprovalWorkflow.query.filter_by(organization_id=organization_id).exists()
    ).scalar()
    if exists:
        logger.info("Organization %s already has workflows; skipping defaults", organization_id)
        return []

    created = []
    for template in DEFAULT_WORKFLOWS:
        workflow = ApprovalWorkflow(
            organization_id=organization_id,
            name=template["name"],
            description=template["description"],
            conditions=dict(template["conditions"]),
            priority=template["priority"],
            is_default=template["is_default"],
            is_active=True,
            created_by=created_by,
        )
        for index, step in enumerate(template["steps"], start=1):
            workflow.steps.append(ApprovalStep(**step_columns(parse_step(step, index))))
        db.session.add(workflow)
        created.append(workflow)

    db.session.commit()
    logger.info("Created %d default workflows for organization %s", len(created), organization_id)
    return created
