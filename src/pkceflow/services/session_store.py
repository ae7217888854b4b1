"""Storage for the CSRF token between authorization and redirect."""

from __future__ import annotations

from typing import Protocol


class SessionStore(Protocol):
    """Where the CSRF token lives while the user is at the provider.

    Web apps typically back this with the user's HTTP session; native apps
    can keep it in memory.
    """

    def get(self) -> str | None: ...

    def set(self, value: str) -> None: ...

    def clear(self) -> None: ...


class InMemorySessionStore:
    """Session store holding a single value in process memory."""

    def __init__(self):
        self._value: str | None = None

    def get(self) -> str | None:
        return self._value

    def set(self, value: str) -> None:
        self._value = value

    def clear(self) -> None:
        self._value = None
