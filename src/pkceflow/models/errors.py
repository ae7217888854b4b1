"""Exception hierarchy for the authorization code flow.

Protocol failures derive from OAuth2Error so callers can handle them as a
group. InvalidUsageError is kept outside that hierarchy: it signals an
integration bug and should never be swallowed by a broad protocol handler.
"""

from __future__ import annotations

from typing import Any


class InvalidUsageError(RuntimeError):
    """Raised when the flow API is used incorrectly.

    Examples: a secret-bearing identity handed to a PKCE flow, finishing a
    flow that was never started, or reusing a completed flow.
    """

    pass


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.0 protocol errors."""

    pass


class AuthorizationCallbackError(OAuth2Error):
    """Raised when redirect callback parameters are malformed.

    Covers missing, duplicated and mutually exclusive parameters (for
    example both "code" and "error" present).
    """

    pass


class StateValidationError(AuthorizationCallbackError):
    """Raised when the CSRF portion of the state parameter fails validation."""

    pass


class MissingCsrfTokenError(StateValidationError):
    """Raised when the session store holds no usable CSRF token."""

    pass


class CsrfMismatchError(StateValidationError):
    """Raised when the callback CSRF token differs from the stored one.

    This implies the redirect request may be forged.
    """

    pass


class AuthorizationError(OAuth2Error):
    """Raised when the provider reports an error in the redirect."""

    def __init__(self, message: str, error: str, description: str | None = None):
        super().__init__(message)
        self.error = error
        self.description = description


class AuthorizationDeniedError(AuthorizationError):
    """Raised when the user declined the authorization request."""

    pass


class AuthorizationProviderError(AuthorizationError):
    """Raised for any OAuth error code other than access_denied."""

    pass


class TokenError(OAuth2Error):
    """Raised when token endpoint interaction fails."""

    pass


class TokenEndpointError(TokenError):
    """Raised when the token endpoint answers with a non-200 status."""

    def __init__(
        self,
        status_code: int,
        error: str | None = None,
        error_description: str | None = None,
        body: Any = None,
    ):
        message = f"Token endpoint returned HTTP {status_code}"
        if error:
            message += f": {error}"
            if error_description:
                message += f" - {error_description}"
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.error_description = error_description
        self.body = body


class TransportError(OAuth2Error):
    """Raised on connectivity, TLS or timeout failures."""

    pass
