"""
Conversation key derivation.

A conversation key identifies the unordered pair of users in a direct
conversation. Identifiers are ordered by code point (``sorted`` on ``str``),
which is locale independent and stable across processes, and joined with a
separator that is not a legal identifier character.
"""

import re
from typing import Tuple

from ..core.exceptions import ValidationException

CONVERSATION_KEY_SEPARATOR = ":"

# Legal user identifier characters; must never include the separator.
USER_ID_PATTERN = r"^[A-Za-z0-9._@+-]{1,128}$"
_USER_ID_RE = re.compile(USER_ID_PATTERN)


def is_valid_user_id(user_id: str) -> bool:
    return isinstance(user_id, str) and _USER_ID_RE.fullmatch(user_id) is not None


def validate_user_id(user_id: str) -> str:
    if not is_valid_user_id(user_id):
        raise ValidationException(
            "Invalid user identifier",
            code="INVALID_USER_ID",
            details={"user_id": user_id},
        )
    return user_id


def ordered_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Return the two identifiers in canonical (code point) order."""
    first, second = sorted((validate_user_id(user_a), validate_user_id(user_b)))
    return first, second


def canonical_pair(user_a: str, user_b: str) -> str:
    """
    Derive the conversation key for two users.

    ``canonical_pair(a, b) == canonical_pair(b, a)`` for every pair of valid
    identifiers, including ``a == b``.
    """
    first, second = ordered_pair(user_a, user_b)
    return f"{first}{CONVERSATION_KEY_SEPARATOR}{second}"

