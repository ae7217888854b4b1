"""Authorization flow models.

Contains the caller-facing authorization request, the flow lifecycle
states and the result of a validated redirect callback.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pkceflow.services.session_store import SessionStore

# CSRF token (24 chars) + "|" + url_state must fit in the state parameter.
MAX_STATE_SIZE = 500
CSRF_STRING_SIZE = 24

TOKEN_ACCESS_TYPES = ("online", "offline", "legacy")
INCLUDE_GRANTED_SCOPES = ("user", "team")


class FlowState(Enum):
    """Lifecycle of a single authorization attempt."""

    NOT_STARTED = "not_started"
    AWAITING_COMPLETION = "awaiting_completion"
    COMPLETED = "completed"


@dataclass(frozen=True)
class AuthorizationRequest:
    """Parameters of one authorization attempt.

    With a redirect URI the provider sends the user back to the app and a
    session store is required to hold the CSRF token. Without one the user
    is shown the authorization code and pastes it into the app.
    """

    redirect_uri: str | None = None
    session_store: SessionStore | None = None
    url_state: str | None = None
    scope: tuple[str, ...] | None = None
    include_granted_scopes: str | None = None
    token_access_type: str | None = None
    require_role: str | None = None
    force_reapprove: bool | None = None
    disable_signup: bool | None = None

    def __post_init__(self) -> None:
        """Validate the combination of parameters."""
        if self.scope is not None and not isinstance(self.scope, tuple):
            object.__setattr__(self, "scope", tuple(self.scope))

        if self.redirect_uri is None:
            if self.session_store is not None:
                raise ValueError("session_store requires a redirect_uri")
            if self.url_state is not None:
                raise ValueError("Cannot specify a url_state without a redirect_uri")
        elif self.session_store is None:
            raise ValueError("redirect_uri requires a session_store")

        if self.url_state is not None:
            state_size = len(self.url_state.encode("utf-8"))
            if state_size > MAX_STATE_SIZE - CSRF_STRING_SIZE - 1:
                raise ValueError(
                    "UTF-8 encoded url_state cannot be greater than "
                    f"{MAX_STATE_SIZE - CSRF_STRING_SIZE - 1} bytes"
                )

        if (
            self.token_access_type is not None
            and self.token_access_type not in TOKEN_ACCESS_TYPES
        ):
            raise ValueError(f"Unknown token_access_type: {self.token_access_type}")

        if self.include_granted_scopes is not None:
            if self.include_granted_scopes not in INCLUDE_GRANTED_SCOPES:
                raise ValueError(
                    f"Unknown include_granted_scopes: {self.include_granted_scopes}"
                )
            if not self.scope:
                raise ValueError("include_granted_scopes requires a scope")

    @classmethod
    def no_redirect(cls, **kwargs) -> AuthorizationRequest:
        """Request for the copy/paste flow, where no redirect happens."""
        return cls(redirect_uri=None, session_store=None, **kwargs)

    def to_query_params(self) -> dict[str, str]:
        """Optional request fields as authorization URL query parameters."""
        params: dict[str, str] = {}

        if self.require_role is not None:
            params["require_role"] = self.require_role
        if self.force_reapprove is not None:
            params["force_reapprove"] = str(self.force_reapprove).lower()
        if self.disable_signup is not None:
            params["disable_signup"] = str(self.disable_signup).lower()
        if self.token_access_type is not None:
            params["token_access_type"] = self.token_access_type
        if self.scope:
            params["scope"] = " ".join(self.scope)
        if self.include_granted_scopes is not None:
            params["include_granted_scopes"] = self.include_granted_scopes

        return params


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of a successfully validated redirect callback."""

    code: str
    url_state: str | None = None
