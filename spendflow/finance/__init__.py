"""Finance payment blueprint."""
from flask import Blueprint

finance_bp = Blueprint("finance", __name__, url_prefix="/finance")

from . import routes  # noqa: E402,F401
