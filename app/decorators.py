"""
Authorization decorators for route-level access control.

Used together with Flask-Login's ``@login_required`` (which, with the
bearer-token request loader, answers 401 for anonymous callers)::

    @bp.route("/<allocation_id>/approve", methods=["PUT"])
    @login_required
    @role_required("admin", "owner", "purchaser")
    def approve(allocation_id):
        ...
"""

import logging
from functools import wraps

from flask import abort, request
from flask_login import current_user

logger = logging.getLogger(__name__)


def role_required(*role_names: str):
    """
    Decorator that restricts access to users with one of the specified roles.

    Args:
        role_names: One or more role name strings (e.g., 'admin', 'purchaser').
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if not current_user.has_role(*role_names):
                logger.warning(
                    "Access denied: user %s (%s) with role '%s' "
                    "attempted %s %s (requires one of: %s)",
                    current_user.id,
                    current_user.email,
                    current_user.role,
                    request.method,
                    request.path,
                    ", ".join(role_names),
                )
                abort(403, description=f"User role {current_user.role} is not authorized")
            return func(*args, **kwargs)

        return wrapper

    return decorator
