"""
Recipient service — turns "who should hear about this" into contact
endpoints.

Callers hand over user references in whatever shape they have them:

  - a bare identifier string (``"65f1c0..."``),
  - a ``User`` instance,
  - an embedded document (``{"_id": "65f1c0...", "name": ...}``, also
    ``{"_id": {"$oid": "65f1c0..."}}``),
  - a JSON-encoded string of any of the above,
  - a legacy serialized object such as
    ``"{ _id: new ObjectId('65f1c0...'), name: 'Asha' }"``.

Each value is classified once into a small tagged union
(``IdentityRef`` / ``EmbeddedRef`` / ``RawTextRef``) and then resolved
by ``normalize_identities``.  Anything unrecognized is dropped: this is
a best-effort path, not input validation.

Resolution never raises.  A database error is logged and the affected
step yields an empty result, so notification fan-out can never block
the business transition that triggered it.
"""

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.identifiers import is_valid_object_id
from app.models.user import User

logger = logging.getLogger(__name__)

# ``_id: new ObjectId("...")``, ``"_id": "..."``, ``_id=...``
_ID_FIELD_PATTERN = re.compile(
    r"""_id['"]?\s*[:=]\s*(?:new\s+)?(?:ObjectId\(\s*)?['"]?([0-9a-fA-F]{24})(?![0-9a-fA-F])"""
)
# Any standalone 24-hex run, e.g. ``ObjectId('...')``.
_ANY_ID_PATTERN = re.compile(r"(?<![0-9a-fA-F])([0-9a-fA-F]{24})(?![0-9a-fA-F])")

# Keys that may carry the identity inside an embedded document.
_IDENTITY_KEYS = ("_id", "id", "$oid")

# JSON strings can wrap JSON strings; stop unwrapping after this many levels.
_MAX_NESTING = 4


# =========================================================================
# Reference types
# =========================================================================


@dataclass(frozen=True)
class IdentityRef:
    """A value that already is an identifier."""

    value: str


@dataclass(frozen=True, eq=False)
class EmbeddedRef:
    """A mapping (embedded document) that carries the identity in a field."""

    document: Mapping[str, Any]


@dataclass(frozen=True)
class RawTextRef:
    """Free text that may contain an identity (JSON or legacy notation)."""

    text: str


UserReference = IdentityRef | EmbeddedRef | RawTextRef


@dataclass(frozen=True)
class EmailRecipient:
    """
    An email destination.

    Equality and hashing use the address only, so a set of recipients
    is deduplicated by address regardless of display name.
    """

    address: str
    display_name: str = field(default="", compare=False)


@dataclass(frozen=True)
class ContactEndpoints:
    """Deduplicated push tokens and email recipients for a set of users."""

    push_tokens: frozenset[str] = frozenset()
    emails: frozenset[EmailRecipient] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.push_tokens and not self.emails


# =========================================================================
# Identity normalization
# =========================================================================


def classify_reference(value: Any) -> UserReference | None:
    """
    Classify one loosely-typed user reference.

    Returns:
        The tagged reference, or None for empty / unusable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, User):
        return IdentityRef(value.id) if value.id else None
    if isinstance(value, Mapping):
        return EmbeddedRef(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if is_valid_object_id(text):
            return IdentityRef(text)
        return RawTextRef(text)

    # Driver-specific id objects (e.g. bson.ObjectId) stringify to the id.
    text = str(value)
    if is_valid_object_id(text):
        return IdentityRef(text)
    return None


def _resolve_reference(ref: UserReference | None, depth: int = 0) -> str | None:
    """Resolve a classified reference to a lower-cased identity, or None."""
    if ref is None or depth > _MAX_NESTING:
        return None

    if isinstance(ref, IdentityRef):
        return ref.value.lower() if is_valid_object_id(ref.value) else None

    if isinstance(ref, EmbeddedRef):
        for key in _IDENTITY_KEYS:
            if key in ref.document:
                return _resolve_reference(
                    classify_reference(ref.document[key]), depth + 1
                )
        return None

    # RawTextRef: JSON first, then legacy pattern extraction.
    text = ref.text
    if text[:1] in ('{', '"'):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, (str, Mapping)):
            resolved = _resolve_reference(classify_reference(decoded), depth + 1)
            if resolved:
                return resolved

    match = _ID_FIELD_PATTERN.search(text) or _ANY_ID_PATTERN.search(text)
    if match:
        return match.group(1).lower()
    return None


def normalize_identities(inputs: Any) -> set[str]:
    """
    Normalize one reference or an iterable of references to identities.

    Args:
        inputs: A single reference or any iterable of references, in
                any of the shapes listed in the module docstring.

    Returns:
        The set of valid identities found.  Order and duplicates in
        the input do not matter.
    """
    if inputs is None:
        return set()
    if isinstance(inputs, (str, bytes, Mapping, User)) or not isinstance(
        inputs, Iterable
    ):
        inputs = [inputs]

    identities: set[str] = set()
    for value in inputs:
        identity = _resolve_reference(classify_reference(value))
        if identity is None:
            logger.debug("Dropping unrecognized user reference: %r", value)
            continue
        identities.add(identity)
    return identities


# =========================================================================
# Endpoint lookup
# =========================================================================


def resolve_contact_endpoints(identities: Iterable[str]) -> ContactEndpoints:
    """
    Look up push tokens and email addresses for a set of identities.

    Unknown or inactive users contribute nothing.  Tokens and emails
    are deduplicated across all users (emails by case-insensitive
    address).

    Returns:
        The endpoints, or an empty ``ContactEndpoints`` if the lookup
        failed (the error is logged).
    """
    ids = sorted(normalize_identities(list(identities)))
    if not ids:
        return ContactEndpoints()

    try:
        users = (
            User.query.filter(User.id.in_(ids), User.is_active == True)  # noqa: E712
            .order_by(User.id)
            .all()
        )
    except SQLAlchemyError as exc:
        logger.error("Recipient lookup failed for %d user(s): %s", len(ids), exc)
        return ContactEndpoints()

    tokens: set[str] = set()
    emails: dict[str, EmailRecipient] = {}
    for user in users:
        tokens.update(token for token in user.token_values if token)
        if user.email:
            address = user.email.strip().lower()
            emails.setdefault(address, EmailRecipient(address, user.name or ""))

    return ContactEndpoints(
        push_tokens=frozenset(tokens), emails=frozenset(emails.values())
    )


def resolve_role_group(role: str) -> set[str]:
    """
    Return the identities of every active user holding ``role``.

    Used to fan notifications out to an operational group (e.g. all
    admins) regardless of direct involvement.
    """
    try:
        rows = (
            db.session.query(User.id)
            .filter(User.role == role, User.is_active == True)  # noqa: E712
            .all()
        )
    except SQLAlchemyError as exc:
        logger.error("Role group lookup failed for role '%s': %s", role, exc)
        return set()
    return {row[0].lower() for row in rows}
