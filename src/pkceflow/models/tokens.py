"""Token exchange request and result models."""

from __future__ import annotations

import time
from dataclasses import dataclass

from pydantic import BaseModel, Field, field_validator


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code exchange parameters (RFC 6749 Section 4.1.3).

    redirect_uri must be present exactly when one was sent in the
    authorization request; the server checks that they match.
    """

    token_endpoint: str
    code: str
    client_id: str

    code_verifier: str | None = None  # RFC 7636 PKCE
    redirect_uri: str | None = None
    locale: str | None = None
    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        Returns:
            Dictionary suitable for httpx data parameter
        """
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "client_id": self.client_id,
        }

        if self.code_verifier is not None:
            data["code_verifier"] = self.code_verifier
        if self.locale is not None:
            data["locale"] = self.locale
        if self.redirect_uri is not None:
            data["redirect_uri"] = self.redirect_uri

        return data

    def __repr__(self) -> str:
        return (
            f"TokenRequest(token_endpoint={self.token_endpoint!r}, "
            f"client_id={self.client_id!r}, "
            f"redirect_uri={self.redirect_uri!r})"
        )


class AuthResult(BaseModel):
    """Successful token endpoint response.

    url_state is not part of the server response: it is the opaque caller
    state carried through the redirect, or None when no redirect was used.
    """

    access_token: str
    token_type: str = "bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: str | None = None
    scope: str | None = None
    account_id: str | None = None
    team_id: str | None = None
    uid: str | None = None
    url_state: str | None = None
    issued_at: float = Field(default_factory=time.time)

    @field_validator("token_type")
    @classmethod
    def validate_token_type(cls, v: str) -> str:
        if v.lower() != "bearer":
            raise ValueError(f"unknown token_type: {v!r}")
        return v

    @property
    def expires_at(self) -> float | None:
        """Absolute expiry timestamp, or None if the token does not expire."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    def with_url_state(self, url_state: str | None) -> AuthResult:
        return self.model_copy(update={"url_state": url_state})
