"""
Routes for the assets blueprint.

Creating, editing and retiring assets is limited to admins and
purchasers.  ``GET /<id>`` takes a *user* id and lists the assets
related to that user.
"""

from flask import request
from flask_login import current_user, login_required

from app.blueprints.assets import bp
from app.decorators import role_required
from app.models.user import ROLE_ADMIN, ROLE_PURCHASER
from app.responses import json_body, success
from app.services import asset_service


@bp.route("", methods=["POST"])
@login_required
@role_required(ROLE_ADMIN, ROLE_PURCHASER)
def create_asset():
    asset = asset_service.create_asset(json_body(), current_user)
    return success(asset.to_dict(), 201)


@bp.route("", methods=["GET"])
@login_required
def list_assets():
    """All active assets; ``?include_inactive=1`` adds retired ones."""
    include_inactive = request.args.get("include_inactive", "0") == "1"
    assets = asset_service.get_assets(include_inactive=include_inactive)
    return success([a.to_dict() for a in assets])


@bp.route("/<asset_id>", methods=["PUT"])
@login_required
@role_required(ROLE_ADMIN, ROLE_PURCHASER)
def update_asset(asset_id):
    asset = asset_service.update_asset(asset_id, json_body())
    return success(asset.to_dict())


@bp.route("/<asset_id>", methods=["DELETE"])
@login_required
@role_required(ROLE_ADMIN, ROLE_PURCHASER)
def delete_asset(asset_id):
    asset_service.delete_asset(asset_id)
    return success({}, message="Asset retired")


@bp.route("/<user_id>", methods=["GET"])
@login_required
def list_user_assets(user_id):
    """Assets the user purchased, owns, or is allocated."""
    assets = asset_service.get_assets_for_user(user_id)
    return success([a.to_dict() for a in assets])
