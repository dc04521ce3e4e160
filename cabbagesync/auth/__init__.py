"""Authentication module."""

from cabbagesync.auth.session import (
    User,
    create_session_token,
    get_current_user,
    verify_session_token,
)

__all__ = [
    "User",
    "create_session_token",
    "get_current_user",
    "verify_session_token",
]
