"""pytest configuration and fixtures for spendflow tests.

Provides an application on an in-memory SQLite database, a seeded
organization (admin, manager, two finance users and two employees) and
factories for expenses, reports and workflows.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from itertools import count
from types import SimpleNamespace

import pytest
from flask import has_app_context
from werkzeug.security import generate_password_hash

from spendflow import create_app, db
from spendflow.models import (
    Expense,
    ExpenseReport,
    MemberRole,
    Organization,
    OrganizationMember,
    User,
)
from spendflow.services import workflow_store

PASSWORD = "correct-horse"
_PASSWORD_HASH = generate_password_hash(PASSWORD, method="pbkdf2:sha256:1000")
_workflow_names = count(1)


@contextmanager
def _context(app):
    """Reuse the pushed app context, so factories share the test's session."""
    if has_app_context():
        yield
    else:
        with app.app_context():
            yield


@pytest.fixture
def app() -> Generator:
    """Provide an app with a fresh schema; no app context is left pushed."""
    app = create_app("testing")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app) -> Generator:
    """Push an app context for tests that call services directly."""
    with app.app_context():
        yield app
        db.session.remove()


def _add_user(first_name: str, email: str) -> User:
    user = User(first_name=first_name, last_name="Tester", email=email, password_hash=_PASSWORD_HASH)
    db.session.add(user)
    db.session.flush()
    return user


@pytest.fixture
def seed(app) -> SimpleNamespace:
    """Seed one organization and return the ids of everything created."""
    with _context(app):
        org = Organization(name="Acme", currency_code="USD")
        db.session.add(org)
        db.session.flush()

        admin = _add_user("Ada", "admin@acme.test")
        manager = _add_user("Max", "manager@acme.test")
        finance = _add_user("Fay", "finance@acme.test")
        finance2 = _add_user("Finn", "finance2@acme.test")
        employee = _add_user("Eve", "employee@acme.test")
        loner = _add_user("Lou", "loner@acme.test")

        members = [
            (admin, MemberRole.ADMIN, None, "Operations"),
            (manager, MemberRole.MANAGER, admin.id, "Engineering"),
            (finance, MemberRole.FINANCE, admin.id, "Finance"),
            (finance2, MemberRole.FINANCE, admin.id, "Finance"),
            (employee, MemberRole.EMPLOYEE, manager.id, "Engineering"),
            (loner, MemberRole.EMPLOYEE, None, "Engineering"),
        ]
        for user, role, manager_id, department in members:
            db.session.add(
                OrganizationMember(
                    organization_id=org.id,
                    user_id=user.id,
                    role=role,
                    manager_id=manager_id,
                    department=department,
                )
            )
            db.session.flush()
        db.session.commit()

        return SimpleNamespace(
            org_id=org.id,
            admin_id=admin.id,
            manager_id=manager.id,
            finance_id=finance.id,
            finance2_id=finance2.id,
            employee_id=employee.id,
            loner_id=loner.id,
        )


@pytest.fixture
def default_workflows(app, seed):
    """Seed the standard workflows for the organization."""
    with _context(app):
        workflow_store.create_default_workflows(seed.org_id)
    return seed


@pytest.fixture
def make_expense(app):
    """Factory creating a complete draft expense; returns its id."""

    def factory(organization_id: int, user_id: int, amount="100.00", **fields) -> int:
        with _context(app):
            values = {
                "merchant": "Coffee Corner",
                "currency": "USD",
                "category": "Meals",
                "receipt_path": "receipts/1.jpg",
                "expense_date": date(2026, 10, 1),
                "tags": [],
            }
            values.update(fields)
            expense = Expense(
                organization_id=organization_id,
                user_id=user_id,
                amount=Decimal(str(amount)),
                **values,
            )
            db.session.add(expense)
            db.session.commit()
            return expense.id

    return factory


@pytest.fixture
def make_report(app, make_expense):
    """Factory creating a draft report holding expenses of the given amounts."""

    def factory(organization_id: int, user_id: int, amounts=("100.00",), **expense_fields) -> int:
        expense_ids = [make_expense(organization_id, user_id, amount, **expense_fields) for amount in amounts]
        with _context(app):
            report = ExpenseReport(organization_id=organization_id, user_id=user_id, name="Trip")
            db.session.add(report)
            db.session.flush()
            for expense_id in expense_ids:
                db.session.get(Expense, expense_id).report_id = report.id
            db.session.commit()
            return report.id

    return factory


@pytest.fixture
def make_workflow(app):
    """Factory creating a workflow through the store; returns its id."""

    def factory(organization_id: int, steps, **fields) -> int:
        with _context(app):
            data = {"name": fields.pop("name", f"Workflow {next(_workflow_names)}")}
            data.update(fields)
            data["steps"] = steps
            return workflow_store.create_workflow(organization_id, data).id

    return factory


@pytest.fixture
def login(app):
    """Return a logged-in test client for a user email, bound to an organization."""

    def factory(email: str, organization_id: int):
        client = app.test_client()
        response = client.post(
            "/auth/login",
            json={"email": email, "password": PASSWORD, "organization_id": organization_id},
        )
        assert response.status_code == 200, response.get_json()
        return client

    return factory
