"""General helper utilities."""
from __future__ import annotations

from datetime import date
from functools import wraps
from typing import Any, Callable, Dict, Optional

from flask import jsonify, request, session
from flask_login import current_user

from spendflow.errors import (
    NoOrganizationSelected,
    NotAuthenticated,
    PermissionDenied,
    SubmissionValidationError,
)
from spendflow.models import MemberRole, OrganizationMember

JsonView = Callable[..., Any]

ORGANIZATION_HEADER = "X-Organization-Id"


def json_response(payload: Any, status: int = 200):
    """Return a JSON response with status code."""
    return jsonify(payload), status


def request_payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def current_organization_id() -> int:
    """Organization the request acts on, from the header or the session."""
    raw = request.headers.get(ORGANIZATION_HEADER) or session.get("organization_id")
    if raw in (None, ""):
        raise NoOrganizationSelected()
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise NoOrganizationSelected() from None


def current_membership() -> OrganizationMember:
    member = OrganizationMember.query.filter_by(
        organization_id=current_organization_id(), user_id=current_user.id, is_active=True
    ).first()
    if member is None:
        raise PermissionDenied("You are not an active member of this organization.")
    return member


def request_audit_context() -> Dict[str, Optional[str]]:
    forwarded = request.headers.get("X-Forwarded-For", "")
    return {
        "ip_address": forwarded.split(",")[0].strip() or request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def parse_date(value: Any, field: str) -> date:
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise SubmissionValidationError(f"{field} must be a date (YYYY-MM-DD).") from None


def role_required(*roles: MemberRole):
    """Restrict a route to members holding one of ``roles`` in the current organization."""
    def decorator(view_func: JsonView) -> JsonView:
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                raise NotAuthenticated()
            if current_membership().role not in roles:
                raise PermissionDenied()
            return view_func(*args, **kwargs)

        return wrapped

    return decorator
