"""
User service — user lookup, provisioning, roles and push tokens.

Sign-in happens outside this service; the records here hold the role
checked by the route decorators and the email address and device
tokens used by the notification dispatcher.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from app.exceptions import NotFoundError, ValidationError
from app.extensions import db
from app.models.identifiers import is_valid_object_id
from app.models.user import (
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_PURCHASER,
    USER_ROLES,
    User,
    UserPushToken,
)

logger = logging.getLogger(__name__)

_MAX_TOKEN_LENGTH = 512


# -- User lookup -----------------------------------------------------------


def get_user_by_id(user_id: str) -> User | None:
    """Return a user by primary key, or None if not found."""
    if not is_valid_object_id(user_id):
        return None
    return db.session.get(User, user_id.lower())


def get_active_user_or_raise(user_id: Any, field_name: str = "user") -> User:
    """
    Return the active user a request field refers to.

    Args:
        user_id:    The id taken from the request body.
        field_name: Field name used in error messages.

    Raises:
        ValidationError: If the id is missing or malformed.
        NotFoundError:   If no active user has this id.
    """
    if not user_id:
        raise ValidationError(f"{field_name} is required")
    if not is_valid_object_id(user_id):
        raise ValidationError(f"Invalid {field_name} id {user_id}")
    user = db.session.get(User, user_id.lower())
    if user is None or not user.is_active:
        raise NotFoundError(f"User not found with id {user_id}")
    return user


def get_user_by_email(email: str) -> User | None:
    """Return a user by email address (case-insensitive)."""
    return User.query.filter(User.email == email.strip().lower()).first()


def get_all_users(include_inactive: bool = False) -> list[User]:
    """Return users ordered by name."""
    query = User.query.order_by(User.name)
    if not include_inactive:
        query = query.filter(User.is_active == True)  # noqa: E712
    return query.all()


def get_moderators() -> list[User]:
    """Return active admins and purchasers (the approver pick-list)."""
    return (
        User.query.filter(
            User.role.in_((ROLE_ADMIN, ROLE_PURCHASER)),
            User.is_active == True,  # noqa: E712
        )
        .order_by(User.name)
        .all()
    )


# -- Provisioning ------------------------------------------------------------


def provision_user(
    email: str,
    name: str,
    role: str = ROLE_MEMBER,
    **profile: str | bool | None,
) -> User:
    """
    Create a user.

    Args:
        email:   Unique address (stored lower-cased).
        name:    Display name.
        role:    One of ``USER_ROLES``.
        profile: Optional ``emp_id``, ``phone_number``,
                 ``profile_photo_url``, ``manager``, ``is_manager``.

    Raises:
        ValidationError: Bad role, or the email is already registered.
    """
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email address is required")
    if not name or not name.strip():
        raise ValidationError("name is required")
    _check_role(role)
    if get_user_by_email(email) is not None:
        raise ValidationError(f"A user with email {email} already exists")

    user = User(email=email, name=name.strip(), role=role, **profile)
    db.session.add(user)
    db.session.commit()

    logger.info("Provisioned user %s with role %s", email, role)
    return user


def update_user_role(user_id: str, new_role: str, changed_by: User | None = None) -> User:
    """
    Change a user's role.

    Raises:
        ValidationError: Unknown role.
        NotFoundError:   Unknown user.
    """
    new_role = new_role.strip() if isinstance(new_role, str) else new_role
    _check_role(new_role)
    user = get_user_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User not found with id {user_id}")

    old_role = user.role
    user.role = new_role
    user.updated_at = datetime.now(timezone.utc)
    db.session.commit()

    logger.info(
        "Changed role for user %s: %s -> %s (by %s)",
        user.email,
        old_role,
        new_role,
        changed_by.id if changed_by else "system",
    )
    return user


def record_login(user: User) -> None:
    """Stamp ``last_login`` for the authenticated user."""
    user.last_login = datetime.now(timezone.utc)
    db.session.commit()


# -- Push tokens -------------------------------------------------------------


def register_push_token(user: User, token: str) -> bool:
    """
    Register a device token for the user.

    Returns:
        True if the token was new for this user.
    """
    token = _clean_token(token)
    if token in user.token_values:
        return False
    user.push_tokens.append(UserPushToken(token=token))
    db.session.commit()
    logger.info("Registered push token for user %s", user.id)
    return True


def remove_push_token(user: User, token: str) -> bool:
    """
    Remove a device token (e.g. on sign-out).

    Returns:
        True if the token was registered for this user.
    """
    token = _clean_token(token)
    for push_token in list(user.push_tokens):
        if push_token.token == token:
            user.push_tokens.remove(push_token)
            db.session.commit()
            logger.info("Removed push token for user %s", user.id)
            return True
    return False


def _clean_token(token) -> str:
    if not isinstance(token, str) or not token.strip():
        raise ValidationError("Token required")
    token = token.strip()
    if len(token) > _MAX_TOKEN_LENGTH:
        raise ValidationError("Token is too long")
    return token


def _check_role(role) -> None:
    if role not in USER_ROLES:
        raise ValidationError(f"Invalid role. Allowed roles: {', '.join(USER_ROLES)}")
