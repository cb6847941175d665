"""
Routes for the auth blueprint — the signed-in user and the directory.

Token issuance is handled by the sign-in flow; these routes only
consume the bearer token.
"""

from flask import request
from flask_login import current_user, login_required

from app.blueprints.auth import bp
from app.decorators import role_required
from app.models.user import ROLE_ADMIN
from app.responses import json_body, success
from app.services import user_service


@bp.route("/me", methods=["GET"])
@login_required
def get_me():
    """The authenticated user's profile."""
    return success(current_user.to_dict())


@bp.route("/", methods=["GET"])
@login_required
def list_users():
    include_inactive = request.args.get("include_inactive", "0") == "1"
    users = user_service.get_all_users(include_inactive=include_inactive)
    return success([u.to_dict() for u in users])


@bp.route("/modlist", methods=["GET"])
@login_required
def list_moderators():
    """Admins and purchasers, for the approver pick-list."""
    return success([u.to_summary() for u in user_service.get_moderators()])


@bp.route("/<user_id>/role", methods=["PUT"])
@login_required
@role_required(ROLE_ADMIN)
def update_role(user_id):
    """Body: ``{"role": "admin|purchaser|owner|member"}``."""
    role = json_body().get("role")
    user = user_service.update_user_role(user_id, role, changed_by=current_user)
    return success(user.to_dict(), message=f"User role updated to '{user.role}'")


@bp.route("/push-token", methods=["POST"])
@login_required
def register_push_token():
    """Body: ``{"token": "<device token>"}``."""
    created = user_service.register_push_token(current_user, json_body().get("token"))
    message = "Push token registered" if created else "Push token already registered"
    return success(None, message=message)


@bp.route("/push-token", methods=["DELETE"])
@login_required
def remove_push_token():
    removed = user_service.remove_push_token(current_user, json_body().get("token"))
    message = "Push token removed" if removed else "Push token was not registered"
    return success(None, message=message)
