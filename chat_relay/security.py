# chat_relay/security.py

"""
Password gate for the chat endpoint.

The relay is protected by a single shared password (ACCESS_PASSWORD). The
chat page asks for it once (`action: "check_password"`) and then sends it
along with every chat request. When no password is configured the chat
action is open, but `check_password` reports a configuration error.
"""

import secrets
from typing import Any

from chat_relay.exceptions import ConfigError, Unauthorized


def password_matches(supplied: Any, expected: str) -> bool:
    """Exact comparison of the supplied password against the configured one."""
    candidate = "" if supplied is None else str(supplied)
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def check_password(supplied: Any, expected: str) -> None:
    """
    Handle the explicit `check_password` action.

    Raises:
        ConfigError(500): If no password is configured.
        Unauthorized(401): If the password does not match.
    """
    if not expected:
        raise ConfigError("ACCESS_PASSWORD is not configured on the server")
    if not password_matches(supplied, expected):
        raise Unauthorized("Incorrect password")


def require_password(supplied: Any, expected: str) -> None:
    """
    Gate a chat request. A no-op when no password is configured.

    Raises:
        Unauthorized(401): If a password is configured and the request's is missing or wrong.
    """
    if expected and not password_matches(supplied, expected):
        raise Unauthorized("Unauthorized: password missing or incorrect")
