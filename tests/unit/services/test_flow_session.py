"""Tests for the PKCE authorization flow lifecycle.

High-impact tests covering the session state machine:
- Construction guard against secret-bearing identities
- start/finish ordering and single-use behavior
- redirect_uri symmetry between authorization and exchange
- Verifier erasure after any exchange attempt
"""

from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from pkceflow.models.errors import (
    CsrfMismatchError,
    InvalidUsageError,
    OAuth2Error,
    TokenEndpointError,
    TransportError,
)
from pkceflow.models.flow import AuthorizationRequest, FlowState
from pkceflow.models.identity import ClientIdentity, Host, RequestConfig
from pkceflow.primitives.pkce import CodeChallengeDeriver, NoChallenge
from pkceflow.services.flow import AuthFlow, PkceFlowSession
from pkceflow.services.session_store import InMemorySessionStore
from pkceflow.services.tokens import TokenExchanger

TOKEN_RESPONSE = {
    "access_token": "access-token-xyz",
    "token_type": "bearer",
    "expires_in": 14400,
    "account_id": "dbid:account",
    "uid": "12345",
}


def make_response(status_code, payload):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


class FlowSessionTest:
    def setup_method(self):
        # Arrange
        self.config = RequestConfig("test-app/1.0", user_locale="en_US")
        self.identity = ClientIdentity(
            key="app-key", host=Host(api="api.example.com", web="www.example.com")
        )
        self.session = PkceFlowSession(self.config, self.identity)
        self.http_client = AsyncMock()
        self.session._exchanger._http_client = self.http_client
        self.http_client.post.return_value = make_response(200, TOKEN_RESPONSE)

    def sent_form_data(self) -> dict[str, str]:
        return self.http_client.post.call_args[1]["data"]


class TestConstruction:
    def test_secret_bearing_identity_is_rejected(self):
        # Arrange
        identity = ClientIdentity(key="app-key", secret="app-secret")
        exchanger = MagicMock()

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            PkceFlowSession(RequestConfig("test-app/1.0"), identity, exchanger=exchanger)

        assert not exchanger.mock_calls

    def test_invalid_usage_is_not_a_protocol_error(self):
        assert not issubclass(InvalidUsageError, OAuth2Error)

    def test_new_session_is_not_started(self):
        session = PkceFlowSession(RequestConfig("test-app/1.0"), ClientIdentity(key="k"))

        assert session.state is FlowState.NOT_STARTED
        assert session.redirect_uri is None


class TestStart(FlowSessionTest):
    def test_start_returns_url_with_challenge(self):
        # Act
        url = self.session.start()

        # Assert
        parsed = urlparse(url)
        query_params = parse_qs(parsed.query)

        assert parsed.netloc == "www.example.com"
        assert query_params["client_id"] == ["app-key"]
        assert query_params["response_type"] == ["code"]
        assert query_params["code_challenge_method"] == ["S256"]
        assert query_params["locale"] == ["en_US"]
        assert query_params["code_challenge"] == [
            CodeChallengeDeriver().derive(self.session.challenge.verifier)
        ]
        assert "code_verifier" not in query_params
        assert self.session.challenge.verifier.reveal() not in url
        assert self.session.state is FlowState.AWAITING_COMPLETION

    def test_start_twice_raises(self):
        # Arrange
        self.session.start()

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            self.session.start()

    def test_each_session_gets_its_own_verifier(self):
        # Arrange
        other = PkceFlowSession(self.config, self.identity)

        # Act
        self.session.start()
        other.start()

        # Assert
        assert (
            self.session.challenge.verifier.reveal()
            != other.challenge.verifier.reveal()
        )


class TestFinishPreconditions(FlowSessionTest):
    async def test_finish_from_code_before_start(self):
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_code("abc123")

        self.http_client.post.assert_not_called()

    async def test_finish_from_redirect_before_start(self):
        store = InMemorySessionStore()

        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_redirect(
                "myapp://oauth", store, {"code": ["abc"], "state": ["x"]}
            )

    async def test_none_code_is_invalid_usage(self):
        # Arrange
        self.session.start()

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_code(None)

        assert self.session.state is FlowState.AWAITING_COMPLETION

    async def test_second_exchange_after_success(self):
        # Arrange
        self.session.start()
        await self.session.finish_from_code("abc123")

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_code("abc123")

        self.http_client.post.assert_awaited_once()

    async def test_second_exchange_after_provider_error(self):
        # Arrange
        self.http_client.post.return_value = make_response(
            400, {"error": "invalid_grant"}
        )
        self.session.start()
        verifier = self.session.challenge.verifier

        # Act
        with pytest.raises(TokenEndpointError):
            await self.session.finish_from_code("abc123")

        # Assert - verifier is gone, retry is a usage error, not a provider error
        assert verifier.is_erased
        assert self.session.state is FlowState.COMPLETED
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_code("abc123")

    async def test_second_exchange_after_transport_error(self):
        # Arrange
        self.http_client.post.side_effect = httpx.ConnectError("Connection failed")
        self.session.start()
        verifier = self.session.challenge.verifier

        # Act
        with pytest.raises(TransportError):
            await self.session.finish_from_code("abc123")

        # Assert
        assert verifier.is_erased
        assert self.session.state is FlowState.COMPLETED
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_code("abc123")

        self.http_client.post.assert_awaited_once()

    async def test_owned_http_client_is_closed_after_exchange(self):
        # Arrange
        self.session.start()

        # Act
        await self.session.finish_from_code("abc123")

        # Assert
        self.http_client.aclose.assert_awaited_once()

    async def test_injected_exchanger_is_left_open(self):
        # Arrange
        exchanger = MagicMock()
        exchanger.exchange = AsyncMock()
        exchanger.close = AsyncMock()
        session = PkceFlowSession(self.config, self.identity, exchanger=exchanger)
        session.start()

        # Act
        await session.finish_from_code("abc123")

        # Assert
        exchanger.exchange.assert_awaited_once()
        exchanger.close.assert_not_awaited()

    async def test_start_after_completion_is_rejected(self):
        # Arrange
        self.session.start()
        await self.session.finish_from_code("abc123")

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            self.session.start()


class TestRedirectSymmetry(FlowSessionTest):
    async def test_no_redirect_omits_redirect_uri(self):
        # Arrange
        self.session.start(AuthorizationRequest.no_redirect())

        # Act
        result = await self.session.finish_from_code("abc123")

        # Assert
        assert "redirect_uri" not in self.sent_form_data()
        assert result.url_state is None

    async def test_redirect_includes_redirect_uri_from_code(self):
        # Arrange
        store = InMemorySessionStore()
        self.session.start(
            AuthorizationRequest(redirect_uri="myapp://oauth", session_store=store)
        )

        # Act
        await self.session.finish_from_code("abc123")

        # Assert
        assert self.sent_form_data()["redirect_uri"] == "myapp://oauth"

    async def test_redirect_includes_redirect_uri_from_redirect(self):
        # Arrange
        store = InMemorySessionStore()
        url = self.session.start(
            AuthorizationRequest(
                redirect_uri="myapp://oauth",
                session_store=store,
                url_state="caller-state",
            )
        )
        state = parse_qs(urlparse(url).query)["state"][0]

        # Act
        result = await self.session.finish_from_redirect(
            "myapp://oauth", store, {"code": ["abc123"], "state": [state]}
        )

        # Assert
        form_data = self.sent_form_data()
        assert form_data["redirect_uri"] == "myapp://oauth"
        assert form_data["code"] == "abc123"
        assert form_data["locale"] == "en_US"
        assert result.url_state == "caller-state"
        assert self.session.state is FlowState.COMPLETED

    async def test_redirect_uri_on_code_flow_without_redirect_is_rejected(self):
        # Arrange
        self.session.start()

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_code("abc123", redirect_uri="myapp://oauth")

        self.http_client.post.assert_not_called()
        assert self.session.state is FlowState.AWAITING_COMPLETION

    async def test_matching_redirect_uri_on_code_flow_is_accepted(self):
        # Arrange
        store = InMemorySessionStore()
        self.session.start(
            AuthorizationRequest(redirect_uri="myapp://oauth", session_store=store)
        )

        # Act
        await self.session.finish_from_code("abc123", redirect_uri="myapp://oauth")

        # Assert
        assert self.sent_form_data()["redirect_uri"] == "myapp://oauth"

    async def test_different_redirect_uri_on_code_flow_is_rejected(self):
        # Arrange
        store = InMemorySessionStore()
        self.session.start(
            AuthorizationRequest(redirect_uri="myapp://oauth", session_store=store)
        )

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_code("abc123", redirect_uri="myapp://other")

        self.http_client.post.assert_not_called()

    async def test_different_redirect_uri_on_redirect_is_rejected(self):
        # Arrange
        store = InMemorySessionStore()
        url = self.session.start(
            AuthorizationRequest(redirect_uri="myapp://oauth", session_store=store)
        )
        state = parse_qs(urlparse(url).query)["state"][0]

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_redirect(
                "myapp://other", store, {"code": ["abc123"], "state": [state]}
            )

        self.http_client.post.assert_not_called()
        assert store.get() is not None
        assert self.session.state is FlowState.AWAITING_COMPLETION

    async def test_redirect_finish_without_redirect_start_is_rejected(self):
        # Arrange
        self.session.start()

        # Act & Assert
        with pytest.raises(InvalidUsageError):
            await self.session.finish_from_redirect(
                "myapp://oauth",
                InMemorySessionStore(),
                {"code": ["abc123"], "state": ["x"]},
            )

        self.http_client.post.assert_not_called()

    async def test_redirect_validation_failure_keeps_session_open(self):
        # Arrange
        store = InMemorySessionStore()
        url = self.session.start(
            AuthorizationRequest(redirect_uri="myapp://oauth", session_store=store)
        )
        state = parse_qs(urlparse(url).query)["state"][0]

        # Act
        with pytest.raises(CsrfMismatchError):
            await self.session.finish_from_redirect(
                "myapp://oauth",
                store,
                {"code": ["abc123"], "state": ["forged-forged-forged-forged"]},
            )

        # Assert - the genuine redirect can still complete the flow
        self.http_client.post.assert_not_called()
        assert self.session.state is FlowState.AWAITING_COMPLETION

        await self.session.finish_from_redirect(
            "myapp://oauth", store, {"code": ["abc123"], "state": [state]}
        )
        assert self.session.state is FlowState.COMPLETED


class TestEndToEnd:
    async def test_start_and_finish_from_code_over_http(self):
        # Arrange
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=TOKEN_RESPONSE)

        config = RequestConfig("test-app/1.0")
        identity = ClientIdentity(
            key="app-key", host=Host(api="api.example.com", web="www.example.com")
        )
        exchanger = TokenExchanger(
            config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        session = PkceFlowSession(config, identity, exchanger=exchanger)

        # Act
        url = session.start()
        verifier = session.challenge.verifier.reveal()
        result = await session.finish_from_code("abc123")

        # Assert - authorization URL
        query_params = parse_qs(urlparse(url).query)
        assert "code_challenge" in query_params
        assert query_params["code_challenge_method"] == ["S256"]
        assert "code_verifier" not in query_params

        # Assert - exchange request
        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.example.com/oauth2/token"
        assert "authorization" not in request.headers
        body = parse_qs(request.content.decode("ascii"))
        assert body["code_verifier"] == [verifier]
        assert body["code"] == ["abc123"]
        assert body["grant_type"] == ["authorization_code"]
        assert body["client_id"] == ["app-key"]
        assert "redirect_uri" not in body

        assert result.access_token == "access-token-xyz"

        # Assert - session is spent
        with pytest.raises(InvalidUsageError):
            await session.finish_from_code("abc123")

        await session.close()


class TestConfidentialFlow:
    async def test_no_challenge_flow_uses_basic_auth(self):
        # Arrange
        identity = ClientIdentity(key="app-key", secret="app-secret")
        flow = AuthFlow(RequestConfig("test-app/1.0"), identity, NoChallenge())
        flow._exchanger._http_client = AsyncMock()
        flow._exchanger._http_client.post.return_value = make_response(
            200, TOKEN_RESPONSE
        )

        # Act
        url = flow.start()
        await flow.finish_from_code("abc123")

        # Assert
        assert "code_challenge" not in parse_qs(urlparse(url).query)
        call_kwargs = flow._exchanger._http_client.post.call_args[1]
        assert "code_verifier" not in call_kwargs["data"]
        assert isinstance(call_kwargs["auth"], httpx.BasicAuth)
