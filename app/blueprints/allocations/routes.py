"""
Routes for the allocations blueprint.

Every route requires a bearer token.  Approve and reject are limited to
admins, owners and purchasers; the state machine itself lives in
``allocation_service``.
"""

from flask import request
from flask_login import current_user, login_required

from app.blueprints.allocations import bp
from app.decorators import role_required
from app.models.user import ROLE_ADMIN, ROLE_OWNER, ROLE_PURCHASER
from app.responses import json_body, success
from app.services import allocation_service

_REVIEWER_ROLES = (ROLE_ADMIN, ROLE_OWNER, ROLE_PURCHASER)


@bp.route("", methods=["POST"])
@login_required
def create_allocation():
    """Create a pending allocation; the caller is the default requester."""
    allocation = allocation_service.create_allocation(json_body(), current_user)
    return success(allocation.to_dict(), 201)


@bp.route("", methods=["GET"])
@login_required
def list_allocations():
    allocations = allocation_service.get_allocations()
    return success([a.to_dict() for a in allocations])


@bp.route("/<allocation_id>", methods=["GET"])
@login_required
def get_allocation(allocation_id):
    allocation = allocation_service.get_allocation_or_raise(allocation_id)
    return success(allocation.to_dict())


@bp.route("/<allocation_id>", methods=["PUT"])
@login_required
def update_allocation(allocation_id):
    """Edit descriptive fields; status changes go through approve/reject."""
    allocation = allocation_service.update_allocation(allocation_id, json_body())
    return success(allocation.to_dict())


@bp.route("/user/<user_id>", methods=["GET"])
@login_required
def list_user_allocations(user_id):
    """Allocations the user requested or received."""
    allocations = allocation_service.get_allocations_for_user(user_id)
    return success([a.to_dict() for a in allocations])


@bp.route("/asset/<asset_id>", methods=["GET"])
@login_required
def list_asset_allocations(asset_id):
    allocations = allocation_service.get_allocations_for_asset(asset_id)
    return success([a.to_dict() for a in allocations])


@bp.route("/<allocation_id>/approve", methods=["PUT"])
@login_required
@role_required(*_REVIEWER_ROLES)
def approve_allocation(allocation_id):
    """
    Approve a pending allocation.

    Takes the asset out of the pool (and transfers ownership for
    ``Owner`` allocations), then notifies everyone involved.
    """
    allocation = allocation_service.approve_allocation(allocation_id, current_user)
    return success(allocation.to_dict(), message="Allocation approved")


@bp.route("/<allocation_id>/reject", methods=["PUT"])
@login_required
@role_required(*_REVIEWER_ROLES)
def reject_allocation(allocation_id):
    """Reject a pending allocation.  Body: optional ``{"reason": "..."}``."""
    body = request.get_json(silent=True) or {}
    reason = body.get("reason") if isinstance(body, dict) else None
    allocation = allocation_service.reject_allocation(
        allocation_id, current_user, reason
    )
    return success(allocation.to_dict(), message="Allocation rejected")
