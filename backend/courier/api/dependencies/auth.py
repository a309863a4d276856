# backend/courier/api/dependencies/auth.py
"""
Caller identity.

Credentials are verified by the upstream authentication service, which
forwards the verified user id in the ``X-User-Id`` header. This service
only checks that the identifier is well formed.
"""

from typing import Optional

from fastapi import Header, HTTPException, status
from starlette.requests import HTTPConnection

from ...utils.conversation_keys import is_valid_user_id

USER_ID_HEADER = "X-User-Id"


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER)
) -> str:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": f"Missing {USER_ID_HEADER} header", "code": "UNAUTHENTICATED"},
        )
    if not is_valid_user_id(x_user_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid user identifier", "code": "INVALID_USER_ID"},
        )
    return x_user_id


def get_websocket_user_id(connection: HTTPConnection) -> Optional[str]:
    """Verified caller id of a websocket handshake, or None when absent or malformed."""
    user_id = connection.headers.get(USER_ID_HEADER)
    if not user_id or not is_valid_user_id(user_id):
        return None
    return user_id
