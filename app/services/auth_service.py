"""
Auth service — signed bearer tokens.

Access tokens are ``itsdangerous`` timed signatures over the user id,
keyed by ``SECRET_KEY``.  Issuing them for real users belongs to the
sign-in flow; ``flask issue-token`` exists for operators and tests.

The Flask-Login request loader registered by the application factory
calls ``load_user_from_request`` on every request.
"""

import logging

from flask import Request, current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.services import user_service

logger = logging.getLogger(__name__)

_TOKEN_SALT = "tagit-access-token"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_TOKEN_SALT)


def generate_access_token(user) -> str:
    """Return a signed bearer token for the user."""
    return _serializer().dumps({"uid": user.id})


def verify_access_token(token: str):
    """
    Return the active user a token belongs to, or None.

    Expired, tampered and malformed tokens all yield None.
    """
    max_age = current_app.config.get("ACCESS_TOKEN_MAX_AGE", 86400)
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        logger.info("Rejected expired access token")
        return None
    except BadSignature:
        logger.warning("Rejected access token with invalid signature")
        return None

    user_id = payload.get("uid") if isinstance(payload, dict) else None
    user = user_service.get_user_by_id(user_id) if isinstance(user_id, str) else None
    if user is None or not user.is_active:
        return None
    return user


def load_user_from_request(request: Request):
    """Flask-Login request loader: ``Authorization: Bearer <token>``."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return verify_access_token(token.strip())
