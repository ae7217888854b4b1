"""Authorization URL construction.

Assembles the provider authorization URL from the client identity, the
authorization request and any parameters added by the challenge strategy.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from pkceflow.models.flow import AuthorizationRequest
from pkceflow.models.identity import ClientIdentity
from pkceflow.services.security import encode_state, generate_csrf_token

logger = logging.getLogger(__name__)


class AuthorizationUrlBuilder:
    """Builds authorization URLs for the authorization code flow.

    When the request uses a redirect, a fresh CSRF token is generated and
    saved in the request's session store; it becomes the leading part of
    the state parameter.
    """

    def build(
        self,
        identity: ClientIdentity,
        request: AuthorizationRequest,
        locale: str | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> str:
        """Build the complete authorization URL.

        Args:
            identity: Client whose key is sent as client_id
            request: Authorization request configuration
            locale: Optional user locale
            extra_params: Parameters contributed by the challenge strategy

        Returns:
            URL the user should visit to grant access
        """
        params = {
            "client_id": identity.key,
            "response_type": "code",
        }

        if request.redirect_uri is not None:
            csrf_token = generate_csrf_token()
            request.session_store.set(csrf_token)
            params["redirect_uri"] = request.redirect_uri
            params["state"] = encode_state(csrf_token, request.url_state)

        if locale is not None:
            params["locale"] = locale

        params.update(request.to_query_params())

        if extra_params:
            params.update(extra_params)

        endpoint = identity.host.authorize_endpoint
        logger.debug(
            f"Built authorization URL for client {identity.key} at {endpoint} "
            f"(redirect={'yes' if request.redirect_uri else 'no'})"
        )

        return f"{endpoint}?{urlencode(params)}"
