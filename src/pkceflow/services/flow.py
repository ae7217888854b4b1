"""Authorization code flow orchestration.

AuthFlow drives one authorization attempt from URL generation through
token exchange. It is composed with a challenge strategy: S256 PKCE for
public (native) clients, none for confidential clients that authenticate
with their secret. PkceFlowSession is the PKCE-configured flow.
"""

from __future__ import annotations

import logging

from pkceflow.models.errors import InvalidUsageError
from pkceflow.models.flow import AuthorizationRequest, FlowState
from pkceflow.models.identity import ClientIdentity, RequestConfig
from pkceflow.models.tokens import AuthResult, TokenRequest
from pkceflow.primitives.pkce import ChallengeStrategy, S256Challenge
from pkceflow.services.authorize import AuthorizationUrlBuilder
from pkceflow.services.redirect import CallbackParams, RedirectValidator
from pkceflow.services.session_store import SessionStore
from pkceflow.services.tokens import TokenExchanger

logger = logging.getLogger(__name__)


class AuthFlow:
    """A single-use OAuth 2.0 authorization code flow.

    Call start() to obtain the authorization URL, then finish_from_code()
    or finish_from_redirect() on the same instance. The instance cannot be
    restarted: each attempt needs a new flow.

    Not safe for concurrent use; one caller drives one attempt.
    """

    def __init__(
        self,
        config: RequestConfig,
        identity: ClientIdentity,
        challenge: ChallengeStrategy,
        exchanger: TokenExchanger | None = None,
        url_builder: AuthorizationUrlBuilder | None = None,
        redirect_validator: RedirectValidator | None = None,
    ):
        """Initialize the flow.

        Args:
            config: HTTP request configuration
            identity: Client identity of the application
            challenge: Strategy proving the flow started the request
            exchanger: Token exchanger; created from config if omitted, in
                which case the flow closes it after the exchange
            url_builder: Authorization URL builder
            redirect_validator: Redirect callback validator

        Raises:
            InvalidUsageError: If the identity doesn't suit the strategy
        """
        challenge.check_identity(identity)

        self.config = config
        self.identity = identity
        self._challenge = challenge
        self._url_builder = url_builder or AuthorizationUrlBuilder()
        self._redirect_validator = redirect_validator or RedirectValidator()
        self._owns_exchanger = exchanger is None
        self._exchanger = exchanger or TokenExchanger(config)
        self._state = FlowState.NOT_STARTED
        self._request: AuthorizationRequest | None = None

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def redirect_uri(self) -> str | None:
        """Redirect URI used by start(), or None for the copy/paste flow."""
        return self._request.redirect_uri if self._request else None

    def start(self, request: AuthorizationRequest | None = None) -> str:
        """Start authorization and return the URL the user should visit.

        With a redirect URI in the request, the provider sends the user back
        to it; pass the received query parameters to finish_from_redirect().
        Without one, the user is shown an authorization code to paste into
        the app; pass it to finish_from_code().

        Args:
            request: Authorization request; defaults to the copy/paste flow

        Returns:
            Authorization URL

        Raises:
            InvalidUsageError: If the flow was already started
        """
        if self._state is not FlowState.NOT_STARTED:
            raise InvalidUsageError(
                "Flow already started; create a new instance for another attempt"
            )

        request = request or AuthorizationRequest.no_redirect()

        challenge_params = self._challenge.begin()
        url = self._url_builder.build(
            self.identity,
            request,
            locale=self.config.user_locale,
            extra_params=challenge_params,
        )

        self._request = request
        self._state = FlowState.AWAITING_COMPLETION

        logger.info(f"Started authorization flow for client {self.identity.key}")
        return url

    async def finish_from_code(
        self, code: str, redirect_uri: str | None = None
    ) -> AuthResult:
        """Exchange an authorization code obtained without redirect validation.

        Typically the code was copied by the user from the provider page.
        The exchange always uses the redirect URI given to start(), so it
        carries redirect_uri exactly when the authorization request did.

        Raises:
            InvalidUsageError: If the flow is not awaiting completion, or
                redirect_uri differs from the one given to start()
            TokenEndpointError: If the token endpoint rejects the code
            TransportError: On network failures
        """
        self._require_awaiting()
        self._check_redirect_uri(redirect_uri)
        return await self._finish(code, self.redirect_uri, None)

    async def finish_from_redirect(
        self,
        redirect_uri: str,
        session_store: SessionStore,
        params: CallbackParams,
    ) -> AuthResult:
        """Complete the flow from the provider's redirect back to the app.

        Args:
            redirect_uri: The redirect URI given to start()
            session_store: Store holding the CSRF token saved by start()
            params: Query parameters of the redirect request

        Returns:
            AuthResult with url_state set to the caller's state

        Raises:
            InvalidUsageError: If the flow is not awaiting completion, was
                started without a redirect, or redirect_uri differs from
                the one given to start()
            AuthorizationCallbackError: If parameters are malformed
            MissingCsrfTokenError: If the stored CSRF token is unusable
            CsrfMismatchError: If the CSRF token doesn't match
            AuthorizationDeniedError: If the user denied access
            AuthorizationProviderError: If the provider returned another error
            TokenEndpointError: If the token endpoint rejects the code
            TransportError: On network failures
        """
        self._require_awaiting()
        if self.redirect_uri is None:
            raise InvalidUsageError(
                "Flow was started without a redirect_uri; use finish_from_code()"
            )
        self._check_redirect_uri(redirect_uri)
        callback = self._redirect_validator.validate(params, session_store)
        return await self._finish(
            callback.code, self.redirect_uri, callback.url_state
        )

    async def _finish(
        self, code: str, redirect_uri: str | None, url_state: str | None
    ) -> AuthResult:
        if code is None:
            raise InvalidUsageError("code must not be None")
        self._require_awaiting()

        token_request = TokenRequest(
            token_endpoint=self.identity.host.token_endpoint,
            code=code,
            client_id=self.identity.key,
            redirect_uri=redirect_uri,
            locale=self.config.user_locale,
            **self._challenge.token_params(),
        )

        # Any exchange attempt consumes the flow, successful or not.
        self._state = FlowState.COMPLETED
        try:
            return await self._exchanger.exchange(
                token_request,
                url_state=url_state,
                auth=self._challenge.token_auth(self.identity),
            )
        finally:
            self._challenge.erase()
            if self._owns_exchanger:
                await self._exchanger.close()

    def _check_redirect_uri(self, redirect_uri: str | None) -> None:
        # The server rejects an exchange whose redirect_uri doesn't mirror
        # the authorization request.
        if redirect_uri is not None and redirect_uri != self.redirect_uri:
            raise InvalidUsageError(
                "redirect_uri must match the one given to start() "
                f"(expected {self.redirect_uri!r}, got {redirect_uri!r})"
            )

    def _require_awaiting(self) -> None:
        if self._state is FlowState.NOT_STARTED:
            raise InvalidUsageError(
                "Must initialize the flow by calling start() first"
            )
        if self._state is FlowState.COMPLETED:
            raise InvalidUsageError(
                "Flow already completed; create a new instance for another attempt"
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._exchanger.close()


class PkceFlowSession(AuthFlow):
    """Authorization code flow with PKCE for native applications.

    Native apps can't keep a client secret confidential, so the flow proves
    possession of a per-attempt code verifier instead (RFC 7636). start()
    and finish_*() must be called on the same instance, which holds the
    verifier in memory until the exchange.
    """

    def __init__(
        self,
        config: RequestConfig,
        identity: ClientIdentity,
        exchanger: TokenExchanger | None = None,
        url_builder: AuthorizationUrlBuilder | None = None,
        redirect_validator: RedirectValidator | None = None,
    ):
        """Initialize the PKCE flow.

        Raises:
            InvalidUsageError: If the identity carries a client secret
        """
        super().__init__(
            config,
            identity,
            S256Challenge(),
            exchanger=exchanger,
            url_builder=url_builder,
            redirect_validator=redirect_validator,
        )

    @property
    def challenge(self) -> S256Challenge:
        return self._challenge
