"""Payment queue and approval query tests.

These tests verify:
- The finance queue lists awaiting-payment approvals oldest first
- Batch payments keep going after individual failures
- Pending queues, submission lists and visibility rules
- Approver statistics
"""

from __future__ import annotations

import pytest

from spendflow.errors import PermissionDenied
from spendflow.models import ApprovalStatus
from spendflow.services import approval_queries, chain_builder, payment_queue, state_machine


@pytest.fixture
def awaiting_payment(app_ctx, seed, make_workflow, make_expense):
    """Three expenses on a payment-only workflow, submitted in order."""
    make_workflow(seed.org_id, [{"step_type": "payment"}])
    approval_ids = []
    for amount in ("10.00", "20.00", "30.00"):
        expense_id = make_expense(seed.org_id, seed.employee_id, amount)
        approval_ids.append(
            chain_builder.create_approval_chain(seed.org_id, seed.employee_id, expense_id=expense_id).id
        )
    return seed, approval_ids


class TestPaymentQueue:
    """Test listing and paying the finance queue."""

    def test_queue_is_oldest_first(self, awaiting_payment):
        seed, approval_ids = awaiting_payment

        queue = payment_queue.get_payment_queue(seed.org_id)

        assert [row["approval_id"] for row in queue] == approval_ids
        assert [row["amount"] for row in queue] == [10.0, 20.0, 30.0]
        assert queue[0]["submitter_name"] == "Eve Tester"
        assert queue[0]["approved_at"] is None

    def test_queue_paging(self, awaiting_payment):
        seed, approval_ids = awaiting_payment

        page = payment_queue.get_payment_queue(seed.org_id, limit=2, offset=1)
        assert [row["approval_id"] for row in page] == approval_ids[1:]

    def test_zero_limit_returns_nothing(self, awaiting_payment):
        seed, _ = awaiting_payment
        assert payment_queue.get_payment_queue(seed.org_id, limit=0) == []

    def test_default_limit_comes_from_config(self, awaiting_payment, app_ctx):
        seed, approval_ids = awaiting_payment
        app_ctx.config["PAYMENT_QUEUE_PAGE_SIZE"] = 2

        queue = payment_queue.get_payment_queue(seed.org_id)
        assert [row["approval_id"] for row in queue] == approval_ids[:2]

    def test_pending_approvals_are_not_queued(self, app_ctx, default_workflows, make_expense):
        seed = default_workflows
        expense_id = make_expense(seed.org_id, seed.employee_id, "750.00")
        chain_builder.create_approval_chain(seed.org_id, seed.employee_id, expense_id=expense_id)

        assert payment_queue.get_payment_queue(seed.org_id) == []

    def test_approved_at_comes_from_last_approval(self, app_ctx, default_workflows, make_expense):
        seed = default_workflows
        expense_id = make_expense(seed.org_id, seed.employee_id, "750.00")
        approval = chain_builder.create_approval_chain(seed.org_id, seed.employee_id, expense_id=expense_id)
        state_machine.approve(approval.id, seed.manager_id, seed.org_id)
        state_machine.approve(approval.id, seed.finance_id, seed.org_id)

        [row] = payment_queue.get_payment_queue(seed.org_id)
        assert row["approved_at"] is not None
        assert row["current_approver_id"] == seed.finance2_id

    def test_batch_payment_collects_failures(self, awaiting_payment):
        seed, approval_ids = awaiting_payment
        state_machine.process_payment(approval_ids[0], seed.finance_id, seed.org_id)

        result = payment_queue.process_payments(approval_ids + [9999], seed.finance_id, seed.org_id)

        assert result["processed"] == approval_ids[1:]
        assert [failure["approval_id"] for failure in result["failed"]] == [approval_ids[0], 9999]
        assert payment_queue.get_payment_queue(seed.org_id) == []


class TestApprovalQueries:
    """Test read-side queues, visibility and statistics."""

    def test_pending_queue_for_approver(self, app_ctx, default_workflows, make_expense):
        seed = default_workflows
        small = make_expense(seed.org_id, seed.employee_id, "50.00")
        large = make_expense(seed.org_id, seed.employee_id, "900.00")
        chain_builder.create_approval_chain(seed.org_id, seed.employee_id, expense_id=small)
        chain_builder.create_approval_chain(seed.org_id, seed.employee_id, expense_id=large)

        pending = approval_queries.get_pending_approvals(seed.manager_id, seed.org_id)
        assert [item["expense"]["id"] for item in pending] == [small, large]
        assert pending[0]["status_display"] == "Pending Approval"
        assert pending[0]["submitter_name"] == "Eve Tester"

        filtered = approval_queries.get_pending_approvals(seed.manager_id, seed.org_id, {"min_amount": "100"})
        assert [item["expense"]["id"] for item in filtered] == [large]
        assert approval_queries.get_pending_approvals(seed.finance_id, seed.org_id) == []

    def test_my_submissions_with_status_filter(self, app_ctx, default_workflows, make_expense):
        seed = default_workflows
        first = chain_builder.create_approval_chain(
            seed.org_id, seed.employee_id, expense_id=make_expense(seed.org_id, seed.employee_id)
        )
        chain_builder.create_approval_chain(
            seed.org_id, seed.employee_id, expense_id=make_expense(seed.org_id, seed.employee_id)
        )
        state_machine.reject(first.id, seed.manager_id, seed.org_id, "No receipt")

        assert len(approval_queries.get_my_submissions(seed.employee_id, seed.org_id)) == 2
        rejected = approval_queries.get_my_submissions(seed.employee_id, seed.org_id, status="rejected")
        assert [item["id"] for item in rejected] == [first.id]

    def test_my_submissions_only_lists_own_expenses_and_reports(
        self, app_ctx, default_workflows, make_expense, make_report
    ):
        seed = default_workflows
        expense = chain_builder.create_approval_chain(
            seed.org_id, seed.employee_id, expense_id=make_expense(seed.org_id, seed.employee_id)
        )
        report = chain_builder.create_approval_chain(
            seed.org_id, seed.employee_id, report_id=make_report(seed.org_id, seed.employee_id)
        )
        chain_builder.create_approval_chain(
            seed.org_id, seed.manager_id, expense_id=make_expense(seed.org_id, seed.manager_id)
        )

        mine = approval_queries.get_my_submissions(seed.employee_id, seed.org_id)
        assert {item["id"] for item in mine} == {expense.id, report.id}
        assert approval_queries.get_my_submissions(seed.finance_id, seed.org_id) == []

    def test_history_visibility(self, app_ctx, default_workflows, make_expense):
        seed = default_workflows
        approval = chain_builder.create_approval_chain(
            seed.org_id, seed.employee_id, expense_id=make_expense(seed.org_id, seed.employee_id)
        )

        history = approval_queries.get_approval_history(approval.id, seed.org_id, seed.employee_id)
        assert [entry["action"] for entry in history] == ["submitted"]
        assert approval_queries.get_approval(approval.id, seed.org_id, seed.finance_id).id == approval.id
        with pytest.raises(PermissionDenied):
            approval_queries.get_approval(approval.id, seed.org_id, seed.loner_id)

    def test_stats(self, app_ctx, default_workflows, make_expense):
        seed = default_workflows
        approved = chain_builder.create_approval_chain(
            seed.org_id, seed.employee_id, expense_id=make_expense(seed.org_id, seed.employee_id)
        )
        rejected = chain_builder.create_approval_chain(
            seed.org_id, seed.employee_id, expense_id=make_expense(seed.org_id, seed.employee_id)
        )
        chain_builder.create_approval_chain(
            seed.org_id, seed.employee_id, expense_id=make_expense(seed.org_id, seed.employee_id)
        )
        state_machine.approve(approved.id, seed.manager_id, seed.org_id)
        state_machine.reject(rejected.id, seed.manager_id, seed.org_id, "No")

        stats = approval_queries.get_approval_stats(seed.manager_id, seed.org_id)

        assert stats["pending_count"] == 1
        assert stats["approved_count"] == 1
        assert stats["rejected_count"] == 1
        assert stats["paid_count"] == 0
        assert stats["avg_approval_time_hours"] >= 0

    def test_status_helpers(self):
        assert approval_queries.status_display(ApprovalStatus.AWAITING_PAYMENT) == "Awaiting Payment"
        assert approval_queries.status_color("paid") == "primary"
        assert approval_queries.status_display("unknown") == "unknown"
        assert {entry["value"] for entry in approval_queries.step_type_metadata()} >= {"manager", "payment"}
