"""Approval delegation blueprint."""
from flask import Blueprint

delegations_bp = Blueprint("delegations", __name__, url_prefix="/delegations")

from . import routes  # noqa: E402,F401
