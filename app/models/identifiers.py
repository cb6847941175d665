"""
Record identifiers.

Every entity uses a 24-character lowercase hex string as its primary
key: the same shape as the document-store ObjectIds that mobile
clients and older exports still send.  Keeping that shape lets the
recipient resolver recover identities from legacy payloads such as
``ObjectId("...")``.
"""

import re
import secrets
from typing import Any

# Exactly 24 hex characters, case-insensitive.
OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


def new_object_id() -> str:
    """Return a fresh random identifier (12 random bytes as hex)."""
    return secrets.token_hex(12)


def is_valid_object_id(value: Any) -> bool:
    """Return True if ``value`` is a string shaped like an identifier."""
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.match(value))
