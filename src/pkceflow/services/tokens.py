"""Authorization code to token exchange service.

Implements the RFC 6749 token endpoint interaction, with the PKCE
code_verifier (RFC 7636) standing in for a client secret.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from pkceflow.models.errors import TokenEndpointError, TokenError, TransportError
from pkceflow.models.identity import RequestConfig
from pkceflow.models.tokens import AuthResult, TokenRequest

logger = logging.getLogger(__name__)


class TokenExchanger:
    """Exchanges authorization codes for access tokens.

    Requests use application/x-www-form-urlencoded encoding. The flow never
    retries an exchange; connection retries, when configured, happen in the
    httpx transport.
    """

    def __init__(
        self,
        config: RequestConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the token exchanger.

        Args:
            config: Request configuration (timeout, retries, user agent)
            http_client: Optional preconfigured client, mainly for tests
        """
        self.config = config
        self._http_client = http_client or httpx.AsyncClient(
            timeout=config.timeout,
            transport=httpx.AsyncHTTPTransport(retries=config.max_retries),
        )

    async def exchange(
        self,
        token_request: TokenRequest,
        url_state: str | None = None,
        auth: httpx.Auth | None = None,
    ) -> AuthResult:
        """Exchange an authorization code for an access token.

        Args:
            token_request: Token exchange request parameters
            url_state: Opaque caller state carried through the redirect
            auth: Client authentication; None for PKCE public clients

        Returns:
            AuthResult: Parsed token response

        Raises:
            TokenEndpointError: If the endpoint answers with a non-200 status
            TokenError: If a 200 response cannot be parsed
            TransportError: On network, TLS or timeout failures
        """
        logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "User-Agent": self.config.client_identifier,
        }

        form_data = token_request.to_form_data()

        # Log request details (without sensitive data)
        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}, "
            f"redirect_uri={form_data.get('redirect_uri', 'none')}"
        )

        kwargs: dict[str, Any] = {"data": form_data, "headers": headers}
        if auth is not None:
            kwargs["auth"] = auth

        try:
            response = await self._http_client.post(
                token_request.token_endpoint, **kwargs
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error during token exchange: {e}") from e

        if response.status_code != 200:
            self._raise_endpoint_error(response)

        return self._parse_auth_result(response, url_state)

    def _parse_auth_result(
        self, response: httpx.Response, url_state: str | None
    ) -> AuthResult:
        try:
            response_data = response.json()
        except ValueError as e:
            raise TokenError(f"Invalid token response format: {e}") from e

        if not isinstance(response_data, dict):
            raise TokenError("Token response is not a JSON object")
        if "access_token" not in response_data:
            raise TokenError("Token response missing required access_token")

        try:
            result = AuthResult.model_validate(response_data)
        except ValidationError as e:
            raise TokenError(f"Invalid token response format: {e}") from e

        logger.info("Token exchange successful")
        return result.with_url_state(url_state)

    def _raise_endpoint_error(self, response: httpx.Response) -> None:
        """Raise TokenEndpointError with whatever detail the body offers."""
        try:
            body = response.json()
        except ValueError:
            body = response.text

        error = None
        error_description = None
        if isinstance(body, dict):
            error = body.get("error")
            error_description = body.get("error_description")

        logger.warning(
            f"Token exchange failed with {response.status_code}: "
            f"{error or 'unknown_error'} - {error_description or 'No description provided'}"
        )

        raise TokenEndpointError(
            response.status_code,
            error=error,
            error_description=error_description,
            body=body,
        )

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
