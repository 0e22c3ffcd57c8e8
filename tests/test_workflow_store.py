"""Workflow store tests.

These tests verify:
- Step list validation (contiguity, payment step placement, payloads)
- Atomic step replacement, refused while approvals are in progress
- Single default workflow per organization
- Default workflow seeding
"""

from __future__ import annotations

import pytest

from spendflow import db
from spendflow.errors import WorkflowNotFound, WorkflowValidationError
from spendflow.models import ApprovalStatus, ApprovalWorkflow, MemberRole, StepType
from spendflow.services import chain_builder, state_machine, workflow_store
from spendflow.services.steps import PaymentStep, RoleStep, parse_step


class TestStepParsing:
    """Test turning payloads into typed step definitions."""

    def test_role_step_requires_known_role(self):
        assert parse_step({"step_type": "role", "approver_role": "finance"}, 1) == RoleStep(1, MemberRole.FINANCE)
        with pytest.raises(WorkflowValidationError):
            parse_step({"step_type": "role"}, 1)
        with pytest.raises(WorkflowValidationError):
            parse_step({"step_type": "role", "approver_role": "wizard"}, 1)

    def test_unknown_step_type(self):
        with pytest.raises(WorkflowValidationError):
            parse_step({"step_type": "oracle"}, 1)

    def test_payment_flag_must_agree_with_type(self):
        assert isinstance(parse_step({"step_type": "payment", "is_payment_step": True}, 3), PaymentStep)
        with pytest.raises(WorkflowValidationError):
            parse_step({"step_type": "manager", "is_payment_step": True}, 1)
        with pytest.raises(WorkflowValidationError):
            parse_step({"step_type": "payment", "is_payment_step": False}, 1)

    def test_user_steps_need_user_ids(self):
        with pytest.raises(WorkflowValidationError):
            parse_step({"step_type": "specific_user"}, 1)
        with pytest.raises(WorkflowValidationError):
            parse_step({"step_type": "multiple_users", "approver_user_ids": []}, 1)


class TestValidateSteps:
    """Test whole step list validation."""

    def test_empty_list_rejected(self, app_ctx, seed):
        with pytest.raises(WorkflowValidationError):
            workflow_store.validate_steps(seed.org_id, [])

    def test_explicit_orders_must_be_contiguous(self, app_ctx, seed):
        steps = [
            {"step_order": 1, "step_type": "manager"},
            {"step_order": 3, "step_type": "role", "approver_role": "finance"},
        ]
        with pytest.raises(WorkflowValidationError):
            workflow_store.validate_steps(seed.org_id, steps)

    def test_explicit_orders_are_sorted(self, app_ctx, seed):
        steps = [
            {"step_order": 2, "step_type": "payment"},
            {"step_order": 1, "step_type": "manager"},
        ]
        definitions = workflow_store.validate_steps(seed.org_id, steps)
        assert [d.step_type for d in definitions] == [StepType.MANAGER, StepType.PAYMENT]

    def test_payment_step_must_be_last(self, app_ctx, seed):
        steps = [{"step_type": "payment"}, {"step_type": "manager"}]
        with pytest.raises(WorkflowValidationError, match="last"):
            workflow_store.validate_steps(seed.org_id, steps)

    def test_only_one_payment_step(self, app_ctx, seed):
        steps = [{"step_type": "manager"}, {"step_type": "payment"}, {"step_type": "payment"}]
        with pytest.raises(WorkflowValidationError, match="Only one"):
            workflow_store.validate_steps(seed.org_id, steps)

    def test_referenced_users_must_be_members(self, app_ctx, seed):
        with pytest.raises(WorkflowValidationError):
            workflow_store.validate_steps(seed.org_id, [{"step_type": "specific_user", "approver_user_id": 9999}])

    def test_specific_manager_must_be_manager_or_admin(self, app_ctx, seed):
        with pytest.raises(WorkflowValidationError):
            workflow_store.validate_steps(
                seed.org_id, [{"step_type": "specific_manager", "approver_user_id": seed.employee_id}]
            )
        definitions = workflow_store.validate_steps(
            seed.org_id, [{"step_type": "specific_manager", "approver_user_id": seed.admin_id}]
        )
        assert definitions[0].user_id == seed.admin_id


class TestWorkflowCrud:
    """Test creating, updating and deleting workflows."""

    def test_create_persists_steps_in_order(self, app_ctx, seed, make_workflow):
        workflow_id = make_workflow(
            seed.org_id,
            [
                {"step_type": "manager"},
                {"step_type": "role", "approver_role": "finance"},
                {"step_type": "payment"},
            ],
            name="Standard",
            conditions={"amount_min": 10, "categories": ["Travel"]},
        )
        workflow = workflow_store.get_workflow(workflow_id, seed.org_id)
        assert [s.step_order for s in workflow.steps] == [1, 2, 3]
        assert [s.is_payment_step for s in workflow.steps] == [False, False, True]
        assert workflow.steps[1].approver_role == "finance"
        assert workflow.has_payment_step

    def test_duplicate_name_rejected(self, app_ctx, seed, make_workflow):
        make_workflow(seed.org_id, [{"step_type": "manager"}], name="Same")
        with pytest.raises(WorkflowValidationError):
            make_workflow(seed.org_id, [{"step_type": "manager"}], name="Same")

    def test_invalid_conditions_rejected(self, app_ctx, seed, make_workflow):
        with pytest.raises(WorkflowValidationError):
            make_workflow(seed.org_id, [{"step_type": "manager"}], conditions={"amount_min": 10, "amount_max": 5})
        with pytest.raises(WorkflowValidationError):
            make_workflow(seed.org_id, [{"step_type": "manager"}], conditions={"colour": "red"})

    def test_only_one_default(self, app_ctx, seed, make_workflow):
        first = make_workflow(seed.org_id, [{"step_type": "manager"}], name="First", is_default=True)
        second = make_workflow(seed.org_id, [{"step_type": "manager"}], name="Second", is_default=True)

        assert not db.session.get(ApprovalWorkflow, first).is_default
        assert db.session.get(ApprovalWorkflow, second).is_default

    def test_update_workflow_steps_replaces_all(self, app_ctx, seed, make_workflow):
        workflow_id = make_workflow(seed.org_id, [{"step_type": "manager"}, {"step_type": "payment"}])

        workflow = workflow_store.update_workflow_steps(
            workflow_id,
            seed.org_id,
            [{"step_type": "role", "approver_role": "admin"}],
        )
        assert [s.step_type for s in workflow.steps] == [StepType.ROLE]
        assert workflow.steps[0].step_order == 1

    def test_invalid_step_update_changes_nothing(self, app_ctx, seed, make_workflow):
        workflow_id = make_workflow(seed.org_id, [{"step_type": "manager"}, {"step_type": "payment"}])

        with pytest.raises(WorkflowValidationError):
            workflow_store.update_workflow_steps(
                workflow_id, seed.org_id, [{"step_type": "payment"}, {"step_type": "manager"}]
            )
        db.session.rollback()
        workflow = workflow_store.get_workflow(workflow_id, seed.org_id)
        assert [s.step_type for s in workflow.steps] == [StepType.MANAGER, StepType.PAYMENT]

    def test_steps_locked_while_approvals_in_progress(self, app_ctx, seed, make_workflow, make_expense):
        workflow_id = make_workflow(
            seed.org_id,
            [
                {"step_type": "manager"},
                {"step_type": "role", "approver_role": "finance"},
                {"step_type": "payment"},
            ],
        )
        expense_id = make_expense(seed.org_id, seed.employee_id)
        approval = chain_builder.create_approval_chain(seed.org_id, seed.employee_id, expense_id=expense_id)
        state_machine.approve(approval.id, seed.manager_id, seed.org_id)

        shorter = [{"step_type": "manager"}, {"step_type": "payment"}]
        with pytest.raises(WorkflowValidationError):
            workflow_store.update_workflow_steps(workflow_id, seed.org_id, shorter)
        with pytest.raises(WorkflowValidationError):
            workflow_store.update_workflow(workflow_id, seed.org_id, {"steps": shorter})
        db.session.rollback()

        approval = state_machine.approve(approval.id, seed.finance_id, seed.org_id)
        assert approval.status is ApprovalStatus.AWAITING_PAYMENT

        state_machine.process_payment(approval.id, seed.finance2_id, seed.org_id)
        workflow = workflow_store.update_workflow_steps(workflow_id, seed.org_id, shorter)
        assert [s.step_type for s in workflow.steps] == [StepType.MANAGER, StepType.PAYMENT]

    def test_update_attributes(self, app_ctx, seed, make_workflow):
        workflow_id = make_workflow(seed.org_id, [{"step_type": "manager"}], name="Old")
        workflow = workflow_store.update_workflow(
            workflow_id, seed.org_id, {"name": "New", "priority": 4, "is_active": False}
        )
        assert (workflow.name, workflow.priority, workflow.is_active) == ("New", 4, False)

    def test_other_organization_cannot_see_workflow(self, app_ctx, seed, make_workflow):
        workflow_id = make_workflow(seed.org_id, [{"step_type": "manager"}])
        with pytest.raises(WorkflowNotFound):
            workflow_store.get_workflow(workflow_id, seed.org_id + 1)

    def test_delete_unused_workflow(self, app_ctx, seed, make_workflow):
        workflow_id = make_workflow(seed.org_id, [{"step_type": "manager"}])
        workflow_store.delete_workflow(workflow_id, seed.org_id)
        assert db.session.get(ApprovalWorkflow, workflow_id) is None


class TestDefaultWorkflows:
    """Test seeding the standard workflows."""

    def test_creates_four_workflows(self, app_ctx, seed):
        created = workflow_store.create_default_workflows(seed.org_id)

        by_name = {workflow.name: workflow for workflow in created}
        assert len(created) == 4
        assert [s.step_type for s in by_name["Small Expenses ($0-$500)"].steps] == [StepType.MANAGER]
        large = by_name["Large Expenses ($1,001+)"]
        assert [s.approver_role for s in large.steps] == [None, "finance", "admin", None]
        assert large.steps[-1].is_payment_step
        assert [w.name for w in created if w.is_default] == ["Default Workflow"]

    def test_skipped_when_workflows_exist(self, app_ctx, seed):
        workflow_store.create_default_workflows(seed.org_id)
        assert workflow_store.create_default_workflows(seed.org_id) == []
