"""Authentication routes."""
from __future__ import annotations

from typing import Any, Dict

from flask import session
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from spendflow.models import User
from spendflow.utils.helpers import json_response, request_payload

from . import auth_bp


@auth_bp.route("/login", methods=["POST"])
def login() -> Any:
    """Authenticate a user using email/password."""
    payload: Dict[str, Any] = request_payload()
    email = (payload.get("email") or "").lower()
    password = payload.get("password")

    if not email or not password:
        return json_response({"error": "Email and password are required."}, status=400)

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return json_response({"error": "Invalid credentials."}, status=401)

    if not user.is_active:
        return json_response({"error": "User account is inactive."}, status=403)

    memberships = [m for m in user.memberships if m.is_active]
    organization_id = payload.get("organization_id")
    if organization_id is not None:
        try:
            membership = user.membership_in(int(organization_id))
        except (TypeError, ValueError):
            return json_response({"error": "organization_id must be an integer."}, status=400)
        if membership is None or not membership.is_active:
            return json_response({"error": "You are not a member of that organization."}, status=403)
    elif len(memberships) == 1:
        organization_id = memberships[0].organization_id

    login_user(user)
    if organization_id is not None:
        session["organization_id"] = int(organization_id)

    return json_response(
        {
            "message": "Login successful.",
            "user": user.to_dict(),
            "organization_id": session.get("organization_id"),
            "memberships": [m.to_dict() for m in memberships],
        }
    )


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout() -> Any:
    logout_user()
    session.pop("organization_id", None)
    return json_response({"message": "Logged out."})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me() -> Any:
    return json_response(
        {
            "user": current_user.to_dict(),
            "organization_id": session.get("organization_id"),
            "memberships": [m.to_dict() for m in current_user.memberships if m.is_active],
        }
    )


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token() -> Any:
    """Hand out a CSRF token; clients send it back in the X-CSRFToken header."""
    return json_response({"csrf_token": generate_csrf()})
