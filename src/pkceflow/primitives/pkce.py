"""PKCE (Proof Key for Code Exchange) primitives.

Implements RFC 7636 code verifier generation and S256 code challenge
derivation, plus the challenge strategies an authorization flow is
composed with. The plain challenge method is deliberately not offered.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string
from typing import Protocol

import httpx

from pkceflow.models.errors import InvalidUsageError
from pkceflow.models.identity import ClientIdentity

CODE_VERIFIER_CHAR_SET = string.ascii_letters + string.digits + "-._~"
CODE_VERIFIER_SIZE = 128
CODE_CHALLENGE_METHOD = "S256"


class CodeVerifier:
    """A PKCE code verifier held in an erasable buffer.

    The value is kept in a bytearray so it can be overwritten in place once
    consumed. repr() never reveals it.
    """

    __slots__ = ("_buffer", "_erased")

    def __init__(self, value: str):
        self._buffer = bytearray(value.encode("ascii"))
        self._erased = False

    @property
    def is_erased(self) -> bool:
        return self._erased

    def reveal(self) -> str:
        """Return the verifier as a string.

        Raises:
            InvalidUsageError: If the verifier has already been erased
        """
        if self._erased:
            raise InvalidUsageError("Code verifier has already been consumed")
        return self._buffer.decode("ascii")

    def erase(self) -> None:
        """Overwrite the buffer with zeros."""
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._erased = True

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        status = "erased" if self._erased else "present"
        return f"CodeVerifier(<{status}>)"


class CodeVerifierGenerator:
    """Generates 128-character code verifiers from the OS randomness source.

    RFC 7636 Section 4.1: the verifier uses only unreserved characters
        [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"
    and the maximum length is used for the widest entropy margin.
    """

    def __init__(self):
        self._random = secrets.SystemRandom()
        # Draw once so a platform without os.urandom raises
        # NotImplementedError now; there is no fallback to a weaker generator.
        self._random.getrandbits(8)

    def generate(self) -> CodeVerifier:
        return CodeVerifier(
            "".join(
                self._random.choice(CODE_VERIFIER_CHAR_SET)
                for _ in range(CODE_VERIFIER_SIZE)
            )
        )


class CodeChallengeDeriver:
    """Derives S256 code challenges.

    RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
    with the trailing padding removed.
    """

    method = CODE_CHALLENGE_METHOD

    def derive(self, verifier: CodeVerifier | str) -> str:
        if isinstance(verifier, CodeVerifier):
            verifier = verifier.reveal()

        digest = hashlib.sha256(verifier.encode("ascii")).digest()

        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class ChallengeStrategy(Protocol):
    """How an authorization flow proves it started the request.

    Public clients use a PKCE challenge; confidential clients authenticate
    with their secret instead.
    """

    def check_identity(self, identity: ClientIdentity) -> None:
        """Reject identities this strategy cannot be used with."""
        ...

    def begin(self) -> dict[str, str]:
        """Prepare a new attempt and return extra authorization parameters."""
        ...

    def token_params(self) -> dict[str, str]:
        """Extra token request fields for the current attempt."""
        ...

    def token_auth(self, identity: ClientIdentity) -> httpx.Auth | None:
        """HTTP authentication for the token request, if any."""
        ...

    def erase(self) -> None:
        """Forget any secret material belonging to the current attempt."""
        ...


class S256Challenge:
    """PKCE challenge strategy for public clients."""

    def __init__(
        self,
        generator: CodeVerifierGenerator | None = None,
        deriver: CodeChallengeDeriver | None = None,
    ):
        self._generator = generator or CodeVerifierGenerator()
        self._deriver = deriver or CodeChallengeDeriver()
        self._verifier: CodeVerifier | None = None

    @property
    def verifier(self) -> CodeVerifier | None:
        return self._verifier

    @property
    def code_challenge(self) -> str:
        """Challenge of the current verifier, derived on each access."""
        if self._verifier is None:
            raise InvalidUsageError("No code verifier has been generated")
        return self._deriver.derive(self._verifier)

    def check_identity(self, identity: ClientIdentity) -> None:
        if identity.has_secret():
            raise InvalidUsageError(
                "PKCE flow doesn't require an app secret. If you decide to "
                "embed it in your app, use a confidential client flow instead."
            )

    def begin(self) -> dict[str, str]:
        self._verifier = self._generator.generate()
        return {
            "code_challenge": self.code_challenge,
            "code_challenge_method": self._deriver.method,
        }

    def token_params(self) -> dict[str, str]:
        if self._verifier is None or self._verifier.is_erased:
            raise InvalidUsageError(
                "Must initialize the PKCE flow by calling start() first"
            )
        return {"code_verifier": self._verifier.reveal()}

    def token_auth(self, identity: ClientIdentity) -> httpx.Auth | None:
        return None

    def erase(self) -> None:
        if self._verifier is not None:
            self._verifier.erase()
            self._verifier = None


class NoChallenge:
    """Strategy for confidential clients authenticating with a secret."""

    def check_identity(self, identity: ClientIdentity) -> None:
        if not identity.has_secret():
            raise InvalidUsageError(
                "Confidential client flow requires an app secret; "
                "use a PKCE flow for public clients"
            )

    def begin(self) -> dict[str, str]:
        return {}

    def token_params(self) -> dict[str, str]:
        return {}

    def token_auth(self, identity: ClientIdentity) -> httpx.Auth | None:
        return httpx.BasicAuth(identity.key, identity.secret.get_secret_value())

    def erase(self) -> None:
        pass
