"""Smart-HTTP remote: ref discovery and service round trips over httpx."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from dulwich.protocol import (
    CAPABILITIES_REF,
    CAPABILITY_SYMREF,
    extract_capabilities,
    parse_capability,
)

from gitferry.auth import AuthHandler, Credentials
from gitferry.errors import AuthError, NetworkError, ProtocolError
from gitferry.models import RemoteInfo, Service
from gitferry.wire import split_pkt_lines

logger = logging.getLogger(__name__)

PEELED_SUFFIX = "^{}"
AUTH_CHALLENGE_STATUSES = (401, 203)


def parse_advertisement(body: bytes, service: Service | str) -> RemoteInfo:
    """Parse a smart-HTTP ``info/refs`` advertisement.

    Args:
        body: Raw response body
        service: Service the advertisement was requested for

    Returns:
        RemoteInfo with refs, symrefs, capabilities and peeled tag targets

    Raises:
        ProtocolError: If the advertisement is malformed or reports ERR
    """
    service_name = Service(service).value
    packets = iter(split_pkt_lines(body))

    first = next(packets, None)
    if first is None or first.rstrip(b"\n") != f"# service={service_name}".encode():
        raise ProtocolError(f"Unexpected first line {first!r} in {service_name} advertisement")
    if next(packets, None) is not None:
        raise ProtocolError("Missing flush after service announcement")

    refs: dict[str, str] = {}
    peeled: dict[str, str] = {}
    capabilities: list[bytes] | None = None
    for pkt in packets:
        if pkt is None:
            break
        line = pkt.rstrip(b"\n")
        if line.startswith(b"ERR "):
            raise ProtocolError(f"Remote error: {line[4:].decode('utf-8', 'replace')}")
        if capabilities is None:
            line, capabilities = extract_capabilities(line)
        try:
            oid_raw, name_raw = line.split(b" ", 1)
        except ValueError as e:
            raise ProtocolError(f"Malformed ref line {line!r}") from e
        if name_raw == CAPABILITIES_REF:
            continue
        oid = oid_raw.decode("ascii")
        name = name_raw.decode("utf-8")
        if name.endswith(PEELED_SUFFIX):
            peeled[name[: -len(PEELED_SUFFIX)]] = oid
        else:
            refs[name] = oid

    symrefs: dict[str, str] = {}
    decoded_caps: set[str] = set()
    for capability in capabilities or []:
        key, value = parse_capability(capability)
        if key == CAPABILITY_SYMREF and value:
            src, _, dst = value.partition(b":")
            symrefs[src.decode("utf-8")] = dst.decode("utf-8")
            continue
        decoded_caps.add(capability.decode("utf-8"))

    return RemoteInfo(
        refs=refs,
        symrefs=symrefs,
        capabilities=frozenset(decoded_caps),
        peeled=peeled,
    )


class GitHttpRemote:
    """One remote repository reached over the git smart-HTTP protocol.

    Credentials accepted during ``discover`` are reused by ``connect``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        auth: AuthHandler | None = None,
        agent: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.http = http
        self.url = url.rstrip("/")
        self.auth = auth
        self.timeout = timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT
        self.credentials: Credentials | None = None
        self._headers = dict(headers or {})
        if agent:
            self._headers.setdefault("User-Agent", f"git/{agent}")

    def _request_headers(self, extra: dict[str, str]) -> dict[str, str]:
        headers = {**self._headers, **extra}
        if self.credentials is not None:
            headers = self.credentials.apply(headers)
        return headers

    def _request_auth(self) -> Any:
        auth = self.credentials.httpx_auth() if self.credentials is not None else None
        return auth if auth is not None else httpx.USE_CLIENT_DEFAULT

    async def discover(self, service: Service) -> RemoteInfo:
        """Fetch and parse the ref advertisement for ``service``.

        Runs the credential exchange on 401/203: the handler's
        ``request_credentials`` is asked first, ``report_failure`` for every
        later rejection, ``report_success`` once credentials are accepted.

        Raises:
            AuthError: If credentials are missing or rejected
            NetworkError: On transport failures or non-2xx responses
            ProtocolError: If the advertisement is malformed
        """
        url = f"{self.url}/info/refs"
        params = {"service": service.value}
        offered = False

        while True:
            headers = self._request_headers({"Accept": "*/*"})
            try:
                response = await self.http.get(
                    url,
                    params=params,
                    headers=headers,
                    auth=self._request_auth(),
                    follow_redirects=True,
                    timeout=self.timeout,
                )
            except httpx.RequestError as e:
                raise NetworkError(f"Request to {url} failed: {e!s}", url=url) from e

            logger.debug("GET %s?service=%s -> %s", url, service.value, response.status_code)
            if response.status_code not in AUTH_CHALLENGE_STATUSES:
                break
            if self.auth is None:
                raise AuthError(f"Authentication required for {self.url}", self.url, response.status_code)
            if offered and self.credentials is not None:
                credentials = await self.auth.report_failure(self.url, self.credentials)
            else:
                credentials = await self.auth.request_credentials(self.url)
            if credentials is None:
                raise AuthError(f"Authentication failed for {self.url}", self.url, response.status_code)
            self.credentials = credentials
            offered = True

        if response.is_success and offered and self.auth is not None and self.credentials is not None:
            await self.auth.report_success(self.url, self.credentials)

        if not response.is_success:
            raise NetworkError(
                f"Discovery of {self.url} failed with HTTP {response.status_code}",
                url=self.url,
                status_code=response.status_code,
            )

        final_path = response.url.path
        if final_path.endswith("/info/refs"):
            redirected = str(response.url).split("?", 1)[0][: -len("/info/refs")]
            if redirected != self.url:
                logger.info("Remote %s redirected to %s", self.url, redirected)
                self.url = redirected

        content_type = response.headers.get("content-type", "")
        expected = f"application/x-{service.value}-advertisement"
        if content_type.split(";")[0].strip() != expected:
            raise ProtocolError(
                f"Unexpected content type {content_type!r} from {self.url} (dumb HTTP is not supported)"
            )

        info = parse_advertisement(response.content, service)
        logger.info(
            "Discovered %d refs and %d capabilities at %s",
            len(info.refs),
            len(info.capabilities),
            self.url,
        )
        return info

    @asynccontextmanager
    async def connect(
        self,
        service: Service,
        body: bytes | AsyncIterable[bytes],
        *,
        content_length: int | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """POST ``body`` to the service endpoint and yield the streamed response.

        The response body is read by the caller (``response.aiter_bytes()``).
        Transport errors raised while the caller reads are mapped too.

        Raises:
            AuthError: On 401/203 (after ``report_failure``)
            NetworkError: On transport failures or non-2xx responses
            ProtocolError: If the result content type is wrong
        """
        url = f"{self.url}/{service.value}"
        result_type = f"application/x-{service.value}-result"
        extra = {
            "Content-Type": f"application/x-{service.value}-request",
            "Accept": result_type,
        }
        if isinstance(body, bytes):
            extra["Content-Length"] = str(len(body))
        elif content_length is not None:
            extra["Content-Length"] = str(content_length)
        headers = self._request_headers(extra)

        try:
            async with self.http.stream(
                "POST",
                url,
                content=body,
                headers=headers,
                auth=self._request_auth(),
                timeout=self.timeout,
            ) as response:
                logger.debug("POST %s -> %s", url, response.status_code)
                if response.status_code in AUTH_CHALLENGE_STATUSES:
                    if self.auth is not None and self.credentials is not None:
                        await self.auth.report_failure(self.url, self.credentials)
                    raise AuthError(
                        f"{service.value} at {self.url} rejected credentials",
                        self.url,
                        response.status_code,
                    )
                if not response.is_success:
                    raise NetworkError(
                        f"{service.value} at {self.url} failed with HTTP {response.status_code}",
                        url=self.url,
                        status_code=response.status_code,
                    )
                content_type = response.headers.get("content-type", "")
                if content_type.split(";")[0].strip() != result_type:
                    raise ProtocolError(f"Invalid content type {content_type!r} from {url}")
                yield response
        except httpx.RequestError as e:
            raise NetworkError(f"Request to {url} failed: {e!s}", url=url) from e
