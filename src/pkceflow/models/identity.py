"""Client identity and request configuration models."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


@dataclass(frozen=True)
class Host:
    """Hostnames of the authorization server.

    The token endpoint lives on the API host, the authorization page on
    the web host.
    """

    api: str = "api.dropboxapi.com"
    web: str = "www.dropbox.com"

    @property
    def token_endpoint(self) -> str:
        return f"https://{self.api}/oauth2/token"

    @property
    def authorize_endpoint(self) -> str:
        return f"https://{self.web}/oauth2/authorize"


@dataclass(frozen=True)
class RequestConfig:
    """HTTP request configuration shared by one flow.

    Attributes:
        client_identifier: Sent as the User-Agent header
        user_locale: Optional locale forwarded to the server
        timeout: HTTP request timeout in seconds
        max_retries: Connection-level retries performed by the transport
    """

    client_identifier: str
    user_locale: str | None = None
    timeout: float = 30.0
    max_retries: int = 0

    def __post_init__(self) -> None:
        if not self.client_identifier:
            raise ValueError("client_identifier must not be empty")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")


class ClientIdentity(BaseModel):
    """Application credentials registered with the authorization server.

    Public (native) clients carry only the key. A secret is present only
    for confidential clients and is never shown in repr().
    """

    model_config = ConfigDict(frozen=True)

    key: str
    secret: SecretStr | None = None
    host: Host = Field(default_factory=Host)

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        if not v:
            raise ValueError("key can't be empty")
        for i, ch in enumerate(v):
            if not ("\x21" <= ch <= "\x7e"):
                raise ValueError(f"invalid character at index {i}: {ch!r}")
        return v

    def has_secret(self) -> bool:
        return self.secret is not None
