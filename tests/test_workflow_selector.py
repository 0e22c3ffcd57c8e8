"""Workflow selection tests.

These tests verify:
- Condition matching (amount bounds, lists, tags, deprecated aliases)
- Reports skipping category, project code and tag conditions
- Priority ordering, newest-wins tie-break and default fallback
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from spendflow.errors import NoWorkflowFound
from spendflow.services.workflow_selector import Submission, matches_conditions, select_workflow

MANAGER_ONLY = [{"step_type": "manager"}]


def submission(**overrides) -> Submission:
    values = {
        "organization_id": 1,
        "submitter_id": 7,
        "amount": Decimal("250.00"),
        "category": "Travel",
        "department": "Engineering",
        "project_code": "PRJ-1",
        "tags": ("client", "q4"),
    }
    values.update(overrides)
    return Submission(**values)


class TestMatchesConditions:
    """Test condition matching against a submission."""

    def test_empty_conditions_match_everything(self):
        assert matches_conditions({}, submission())
        assert matches_conditions(None, submission())

    def test_amount_bounds_are_inclusive(self):
        conditions = {"amount_min": 100, "amount_max": 250}
        assert matches_conditions(conditions, submission(amount=Decimal("100")))
        assert matches_conditions(conditions, submission(amount=Decimal("250")))
        assert not matches_conditions(conditions, submission(amount=Decimal("250.01")))
        assert not matches_conditions(conditions, submission(amount=Decimal("99.99")))

    def test_non_numeric_bound_never_matches(self):
        assert not matches_conditions({"amount_min": "lots"}, submission())

    def test_list_conditions_require_membership(self):
        assert matches_conditions({"categories": ["Travel", "Meals"]}, submission())
        assert not matches_conditions({"categories": ["Meals"]}, submission())
        assert not matches_conditions({"departments": ["Sales"]}, submission())
        assert matches_conditions({"project_codes": ["PRJ-1"]}, submission())
        assert matches_conditions({"submitter_ids": [7]}, submission())
        assert not matches_conditions({"submitter_ids": [8]}, submission())

    def test_missing_submission_value_fails_list_condition(self):
        assert not matches_conditions({"categories": ["Travel"]}, submission(category=None))

    def test_tags_match_on_any_overlap(self):
        assert matches_conditions({"tags": ["q4", "other"]}, submission())
        assert not matches_conditions({"tags": ["other"]}, submission())

    def test_all_present_conditions_must_match(self):
        conditions = {"amount_min": 100, "categories": ["Travel"], "departments": ["Sales"]}
        assert not matches_conditions(conditions, submission())

    def test_deprecated_aliases(self):
        assert matches_conditions({"department": "Engineering"}, submission())
        assert not matches_conditions({"department": "Sales"}, submission())
        assert matches_conditions({"user_ids": [7]}, submission())
        assert not matches_conditions({"user_ids": [9]}, submission())

    def test_reports_skip_category_project_and_tags(self):
        report = submission(category=None, project_code=None, tags=(), is_report=True)
        conditions = {"categories": ["Travel"], "project_codes": ["X"], "tags": ["y"]}
        assert matches_conditions(conditions, report)

    def test_reports_still_check_amount_and_department(self):
        report = submission(is_report=True)
        assert not matches_conditions({"amount_max": 100}, report)
        assert not matches_conditions({"departments": ["Sales"]}, report)


class TestSelectWorkflow:
    """Test picking a stored workflow."""

    def test_higher_priority_wins(self, app_ctx, seed, make_workflow):
        make_workflow(seed.org_id, MANAGER_ONLY, name="Low", priority=1, conditions={"amount_min": 0})
        high = make_workflow(seed.org_id, MANAGER_ONLY, name="High", priority=5, conditions={"amount_min": 0})

        chosen = select_workflow(submission(organization_id=seed.org_id))
        assert chosen.id == high

    def test_newest_workflow_wins_a_priority_tie(self, app_ctx, seed, make_workflow):
        make_workflow(seed.org_id, MANAGER_ONLY, name="Older", priority=2)
        newer = make_workflow(seed.org_id, MANAGER_ONLY, name="Newer", priority=2)

        assert select_workflow(submission(organization_id=seed.org_id)).id == newer

    def test_threshold_workflow_beats_default(self, app_ctx, seed, make_workflow):
        make_workflow(seed.org_id, MANAGER_ONLY, name="Default", is_default=True)
        large = make_workflow(seed.org_id, MANAGER_ONLY, name="Large", conditions={"amount_min": 500})

        chosen = select_workflow(submission(organization_id=seed.org_id, amount=Decimal("600")))
        assert chosen.id == large

    def test_falls_back_to_default(self, app_ctx, seed, make_workflow):
        default = make_workflow(seed.org_id, MANAGER_ONLY, name="Default", is_default=True, priority=10)
        make_workflow(seed.org_id, MANAGER_ONLY, name="Large", conditions={"amount_min": 500})

        chosen = select_workflow(submission(organization_id=seed.org_id, amount=Decimal("20")))
        assert chosen.id == default

    def test_inactive_workflows_are_ignored(self, app_ctx, seed, make_workflow):
        make_workflow(seed.org_id, MANAGER_ONLY, name="Off", priority=9, is_active=False)
        on = make_workflow(seed.org_id, MANAGER_ONLY, name="On", priority=1)

        assert select_workflow(submission(organization_id=seed.org_id)).id == on

    def test_no_match_and_no_default_raises(self, app_ctx, seed, make_workflow):
        make_workflow(seed.org_id, MANAGER_ONLY, name="Large", conditions={"amount_min": 500})

        with pytest.raises(NoWorkflowFound):
            select_workflow(submission(organization_id=seed.org_id, amount=Decimal("10")))

    def test_default_workflows_route_by_amount(self, app_ctx, default_workflows):
        org_id = default_workflows.org_id
        assert select_workflow(submission(organization_id=org_id, amount=Decimal("500"))).name.startswith("Small")
        assert select_workflow(submission(organization_id=org_id, amount=Decimal("750"))).name.startswith("Medium")
        assert select_workflow(submission(organization_id=org_id, amount=Decimal("5000"))).name.startswith("Large")
        # Falls in the gap between the small and medium tiers.
        assert select_workflow(submission(organization_id=org_id, amount=Decimal("500.50"))).is_default
