"""Redirect callback validation.

Parses the query parameters the authorization server appends to the
redirect URI, checks the CSRF token against the session store and
classifies provider-reported errors.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from urllib.parse import parse_qs, urlparse

from pkceflow.models.errors import (
    AuthorizationCallbackError,
    AuthorizationDeniedError,
    AuthorizationProviderError,
    MissingCsrfTokenError,
)
from pkceflow.models.flow import CallbackResult
from pkceflow.services.security import (
    is_well_formed_csrf_token,
    split_state,
    validate_csrf_token,
)
from pkceflow.services.session_store import SessionStore

logger = logging.getLogger(__name__)

CallbackParams = Mapping[str, Sequence[str]]


def parse_callback_url(callback_url: str) -> dict[str, list[str]]:
    """Parse a redirect URL into a multi-valued parameter mapping.

    Args:
        callback_url: Full callback URL received from authorization server

    Returns:
        Query parameters in the shape returned by urllib.parse.parse_qs

    Raises:
        AuthorizationCallbackError: If URL is malformed
    """
    try:
        return parse_qs(urlparse(callback_url).query, keep_blank_values=True)
    except ValueError as e:
        raise AuthorizationCallbackError(f"Failed to parse callback URL: {e}") from e


class RedirectValidator:
    """Validates redirect callbacks for the authorization code flow."""

    def validate(
        self, params: CallbackParams, session_store: SessionStore
    ) -> CallbackResult:
        """Validate callback parameters and recover the authorization code.

        Args:
            params: Query parameters received on the redirect URI
            session_store: Store holding the CSRF token saved at authorization

        Returns:
            CallbackResult with the code and the caller's url_state

        Raises:
            AuthorizationCallbackError: If parameters are missing, duplicated
                or mutually exclusive
            MissingCsrfTokenError: If the stored CSRF token is absent or malformed
            CsrfMismatchError: If the CSRF token does not match
            AuthorizationDeniedError: If the user denied access
            AuthorizationProviderError: If any other OAuth error was returned
        """
        state = self._get_param(params, "state")
        if state is None:
            raise AuthorizationCallbackError('Missing required parameter: "state"')

        error = self._get_param(params, "error")
        error_description = self._get_param(params, "error_description")
        code = self._get_param(params, "code")

        if code is None and error is None:
            raise AuthorizationCallbackError('Missing both "code" and "error"')
        if code is not None and error is not None:
            raise AuthorizationCallbackError('Both "code" and "error" are set')
        if code is not None and error_description is not None:
            raise AuthorizationCallbackError(
                'Both "code" and "error_description" are set'
            )

        url_state = self._verify_and_strip_csrf_token(state, session_store)

        if error is not None:
            logger.warning(
                f"Authorization callback contained error: {error} - "
                f"{error_description}"
            )
            if error == "access_denied":
                raise AuthorizationDeniedError(
                    error_description or "No additional description from provider",
                    error,
                    error_description,
                )
            message = error if error_description is None else (
                f"{error}: {error_description}"
            )
            raise AuthorizationProviderError(message, error, error_description)

        logger.info("Authorization callback successful - received authorization code")
        return CallbackResult(code=code, url_state=url_state)

    def _verify_and_strip_csrf_token(
        self, state: str, session_store: SessionStore
    ) -> str | None:
        expected = session_store.get()
        if expected is None:
            raise MissingCsrfTokenError("No CSRF token loaded from session store")
        if not is_well_formed_csrf_token(expected):
            raise MissingCsrfTokenError(
                "Token retrieved from session store is too small"
            )

        given, url_state = split_state(state)
        validate_csrf_token(expected, given)

        session_store.clear()
        return url_state

    def _get_param(self, params: CallbackParams, name: str) -> str | None:
        values = params.get(name)
        if values is None:
            return None
        if isinstance(values, str):
            return values
        if len(values) == 0:
            raise AuthorizationCallbackError(f'Parameter "{name}" has no value')
        if len(values) > 1:
            raise AuthorizationCallbackError(
                f'Parameter "{name}" must not occur more than once'
            )
        return values[0]
