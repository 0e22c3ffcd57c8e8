"""Application factory and extension initialization for SpendFlow."""
from __future__ import annotations

import logging
import os
from typing import Optional

import click
from flask import Flask
from flask_login import LoginManager
from flask_mail import Mail
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect
from flask_wtf.csrf import CSRFError

from config import config_by_name

# Global extension instances -------------------------------------------------

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
mail = Mail()


def create_app(config_name: Optional[str] = None) -> Flask:
    """Flask application factory."""
    app = Flask(__name__, instance_relative_config=True)

    config_name = config_name or os.getenv("FLASK_CONFIG", "development")
    config_class = config_by_name.get(config_name.lower())
    if config_class is None:
        raise ValueError(f"Unknown Flask configuration '{config_name}'")

    app.config.from_object(config_class)
    logging.getLogger(__name__).setLevel(app.config["LOG_LEVEL"])

    # Ensure instance folder exists for SQLite DBs
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    mail.init_app(app)

    from spendflow.services.email_service import init_email_service
    init_email_service(mail)

    # Register blueprints
    from spendflow.admin import admin_bp
    from spendflow.approvals import approvals_bp
    from spendflow.auth import auth_bp
    from spendflow.delegations import delegations_bp
    from spendflow.employee import employee_bp
    from spendflow.finance import finance_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(employee_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(finance_bp)
    app.register_blueprint(delegations_bp)

    from spendflow.errors import ApprovalError
    from spendflow.models import User
    from spendflow.utils.helpers import json_response

    @login_manager.user_loader
    def load_user(user_id: str) -> Optional[User]:
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return json_response({"error": "Authentication required."}, status=401)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(error: CSRFError):
        return json_response({"error": error.description}, status=400)

    @app.errorhandler(ApprovalError)
    def handle_approval_error(error: ApprovalError):
        db.session.rollback()
        return json_response({"error": error.message}, status=error.status_code)

    @app.cli.command("create-default-workflows")
    @click.argument("organization_id", type=int)
    def create_default_workflows_command(organization_id: int) -> None:
        """Seed the standard approval workflows for an organization."""
        from spendflow.services import workflow_store

        created = workflow_store.create_default_workflows(organization_id)
        click.echo(f"Created {len(created)} workflows for organization {organization_id}.")

    @app.shell_context_processor
    def shell_context():
        return {"db": db, "User": User}

    return app
