"""CSRF utilities for the redirect flow.

The state parameter sent to the authorization server is the CSRF token,
optionally followed by "|" and the caller's opaque url_state.
"""

from __future__ import annotations

import base64
import secrets

from pkceflow.models.errors import CsrfMismatchError
from pkceflow.models.flow import CSRF_STRING_SIZE

CSRF_BYTES_SIZE = 16
STATE_SEPARATOR = "|"


def generate_csrf_token() -> str:
    """Generate cryptographically secure CSRF token.

    Returns:
        URL-safe base64 encoding of 16 random bytes (24 characters)
    """
    return base64.urlsafe_b64encode(secrets.token_bytes(CSRF_BYTES_SIZE)).decode(
        "ascii"
    )


def encode_state(csrf_token: str, url_state: str | None) -> str:
    if url_state is None:
        return csrf_token
    return f"{csrf_token}{STATE_SEPARATOR}{url_state}"


def split_state(state: str) -> tuple[str, str | None]:
    """Split a state parameter into (csrf_token, url_state)."""
    csrf_token, sep, url_state = state.partition(STATE_SEPARATOR)
    return csrf_token, (url_state if sep else None)


def is_well_formed_csrf_token(token: str | None) -> bool:
    return token is not None and len(token) >= CSRF_STRING_SIZE


def validate_csrf_token(expected: str, actual: str) -> None:
    """Validate callback CSRF token matches the stored one.

    Args:
        expected: Token saved in the session store at authorization time
        actual: Token recovered from the callback state parameter

    Raises:
        CsrfMismatchError: If the tokens don't match
    """
    if not secrets.compare_digest(expected.encode("utf-8"), actual.encode("utf-8")):
        raise CsrfMismatchError("CSRF token mismatch - possible forged redirect")
