"""Credential callbacks injected into each remote.

A handler has three hooks: supply credentials when the remote first asks
for them, hear that they were accepted, and hear that they were rejected
(optionally offering new ones). Returning None from either supplier stops
the exchange and the remote raises ``AuthError``.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

import httpx

T = TypeVar("T")


@dataclass(frozen=True)
class Credentials:
    """Basic-auth credentials plus optional extra headers (e.g. tokens)."""

    username: str | None = None
    password: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        """Return a copy of ``headers`` with the extra credential headers applied."""
        return {**headers, **self.headers}

    def httpx_auth(self) -> httpx.Auth | None:
        """Basic auth for httpx, or None when only headers are carried."""
        if self.username is None and self.password is None:
            return None
        return httpx.BasicAuth(self.username or "", self.password or "")

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password=***, headers={sorted(self.headers)})"


class AuthHandler(Protocol):
    """Credential provider consulted by a remote on 401 responses."""

    async def request_credentials(self, url: str) -> Credentials | None:
        ...

    async def report_success(self, url: str, credentials: Credentials) -> None:
        ...

    async def report_failure(self, url: str, credentials: Credentials) -> Credentials | None:
        ...


async def maybe_await(value: T | Awaitable[T]) -> T:
    """Await ``value`` if a callback handed back a coroutine."""
    if inspect.isawaitable(value):
        return await value  # type: ignore[no-any-return]
    return value


class CallbackAuth:
    """Adapt three loose callables (sync or async) to ``AuthHandler``."""

    def __init__(
        self,
        on_auth: Callable[[str], Any] | None = None,
        on_auth_success: Callable[[str, Credentials], Any] | None = None,
        on_auth_failure: Callable[[str, Credentials], Any] | None = None,
    ) -> None:
        self._on_auth = on_auth
        self._on_auth_success = on_auth_success
        self._on_auth_failure = on_auth_failure

    async def request_credentials(self, url: str) -> Credentials | None:
        if self._on_auth is None:
            return None
        result: Credentials | None = await maybe_await(self._on_auth(url))
        return result

    async def report_success(self, url: str, credentials: Credentials) -> None:
        if self._on_auth_success is not None:
            await maybe_await(self._on_auth_success(url, credentials))

    async def report_failure(self, url: str, credentials: Credentials) -> Credentials | None:
        if self._on_auth_failure is None:
            return None
        result: Credentials | None = await maybe_await(self._on_auth_failure(url, credentials))
        return result


class StaticCredentials:
    """Offer one fixed set of credentials and give up if they are rejected."""

    def __init__(self, credentials: Credentials) -> None:
        self.credentials = credentials

    async def request_credentials(self, url: str) -> Credentials | None:
        return self.credentials

    async def report_success(self, url: str, credentials: Credentials) -> None:
        return None

    async def report_failure(self, url: str, credentials: Credentials) -> Credentials | None:
        return None
