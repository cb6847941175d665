"""
Routes for the purchases blueprint.

``PUT /<id>`` records the manager's decision; ``PUT /request/<id>`` is
the purchaser/admin update.  ``GET /<id>`` takes a *user* id.
"""

from flask_login import current_user, login_required

from app.blueprints.purchases import bp
from app.decorators import role_required
from app.models.user import ROLE_ADMIN, ROLE_PURCHASER
from app.responses import json_body, success
from app.services import purchase_service


@bp.route("", methods=["POST"])
@login_required
def create_request():
    purchase = purchase_service.create_request(json_body(), current_user)
    return success(purchase.to_dict(), 201)


@bp.route("", methods=["GET"])
@login_required
def list_requests():
    purchases = purchase_service.get_all_requests()
    return success([p.to_dict() for p in purchases])


@bp.route("/<request_id>", methods=["PUT"])
@login_required
def manager_decision(request_id):
    """Body: ``{"manager_approval": true|false}``."""
    purchase = purchase_service.record_manager_decision(
        request_id, json_body(), current_user
    )
    return success(purchase.to_dict())


@bp.route("/<user_id>", methods=["GET"])
@login_required
def list_user_requests(user_id):
    purchases = purchase_service.get_requests_for_user(user_id)
    return success([p.to_dict() for p in purchases])


@bp.route("/request/<request_id>", methods=["PUT"])
@login_required
@role_required(ROLE_ADMIN, ROLE_PURCHASER)
def update_request(request_id):
    purchase = purchase_service.update_request(request_id, json_body())
    return success(purchase.to_dict())
