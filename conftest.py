"""Pytest configuration and fixtures.

This module provides shared fixtures and configuration for the test suite.
It puts ``src/`` on the import path and provides an in-process fake git
smart-HTTP server built on ``httpx.MockTransport``.
"""

from __future__ import annotations

import hashlib
import sys
from base64 import b64encode
from collections.abc import Iterator
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path

import httpx
import pytest
from dulwich.protocol import pkt_line

PROJECT_ROOT = Path(__file__).resolve().parent
SRC_PATH = PROJECT_ROOT / "src"


if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


ZERO = "0" * 40
BASE_URL = "https://git.example.com"

UPLOAD_PACK_CAPABILITIES = [
    "multi_ack",
    "thin-pack",
    "side-band",
    "side-band-64k",
    "ofs-delta",
    "shallow",
    "no-progress",
    "include-tag",
    "multi_ack_detailed",
    "no-done",
    "symref=HEAD:refs/heads/main",
    "agent=git/2.43.0",
]

RECEIVE_PACK_CAPABILITIES = [
    "report-status",
    "report-status-v2",
    "delete-refs",
    "side-band-64k",
    "quiet",
    "atomic",
    "ofs-delta",
    "object-format=sha1",
    "agent=git/2.43.0",
]


def make_pack(body: bytes = b"", objects: int = 0) -> bytes:
    """Build pack-shaped bytes: header, opaque body, SHA-1 trailer."""
    data = b"PACK" + (2).to_bytes(4, "big") + objects.to_bytes(4, "big") + body
    return data + hashlib.sha1(data).digest()


def side_band(channel: int, data: bytes) -> bytes:
    return pkt_line(bytes([channel]) + data)


def text_pkt(text: str) -> bytes:
    return pkt_line(text.encode("utf-8"))


FLUSH = pkt_line(None)


def read_packets(body: bytes) -> tuple[list[bytes], bytes]:
    """Split a request body into its pkt-lines (up to flush) and the rest."""
    stream = BytesIO(body)
    packets = []
    while True:
        size = int(stream.read(4), 16)
        if size == 0:
            break
        packets.append(stream.read(size - 4))
    return packets, stream.read()


@dataclass
class FakeRemote:
    """State of one repository served by ``FakeGitServer``."""

    name: str
    refs: dict[str, str] = field(default_factory=dict)
    upload_capabilities: list[str] = field(default_factory=lambda: list(UPLOAD_PACK_CAPABILITIES))
    receive_capabilities: list[str] = field(default_factory=lambda: list(RECEIVE_PACK_CAPABILITIES))
    pack: bytes = field(default_factory=lambda: make_pack(b"\x95\x0bcommit-and-tree-objects", objects=2))
    progress: list[bytes] = field(
        default_factory=lambda: [b"Counting objects: 50% (1/2)\r", b"Counting objects: 100% (2/2), done.\n"]
    )
    upload_response: bytes | None = None
    receive_response: bytes | None = None
    rejections: dict[str, str] = field(default_factory=dict)
    unpack_error: str | None = None
    credentials: tuple[str, str] | None = None
    fail_status: int | None = None
    requests: list[httpx.Request] = field(default_factory=list)
    fetch_bodies: list[bytes] = field(default_factory=list)
    push_bodies: list[bytes] = field(default_factory=list)
    received_packs: list[bytes] = field(default_factory=list)

    @property
    def url(self) -> str:
        return f"{BASE_URL}/{self.name}.git"

    def advertisement(self, service: str) -> bytes:
        caps = self.upload_capabilities if service == "git-upload-pack" else self.receive_capabilities
        lines = [text_pkt(f"# service={service}\n"), FLUSH]
        entries = list(self.refs.items())
        if not entries:
            lines.append(text_pkt(f"{ZERO} capabilities^{{}}\0{' '.join(caps)}\n"))
        for index, (name, oid) in enumerate(entries):
            suffix = f"\0{' '.join(caps)}" if index == 0 else ""
            lines.append(text_pkt(f"{oid} {name}{suffix}\n"))
        lines.append(FLUSH)
        return b"".join(lines)

    def build_upload_response(self, request_body: bytes) -> bytes:
        packets, _ = read_packets(request_body)
        uses_side_band = bool(packets) and b"side-band-64k" in packets[0]
        parts = [text_pkt("NAK\n")]
        if not uses_side_band:
            return b"".join(parts) + self.pack
        for message in self.progress:
            parts.append(side_band(2, message))
        for start in range(0, len(self.pack), 1000):
            parts.append(side_band(1, self.pack[start : start + 1000]))
        parts.append(FLUSH)
        return b"".join(parts)

    def build_receive_response(self, request_body: bytes) -> bytes:
        packets, pack = read_packets(request_body)
        self.received_packs.append(pack)
        first, _, caps = packets[0].partition(b"\0")
        commands = [first] + packets[1:]
        report = [text_pkt(f"unpack {self.unpack_error or 'ok'}\n")]
        for line in commands:
            old, new, ref = line.decode("utf-8").strip().split(" ")
            if self.unpack_error:
                report.append(text_pkt(f"ng {ref} unpacker error\n"))
            elif ref in self.rejections:
                report.append(text_pkt(f"ng {ref} {self.rejections[ref]}\n"))
            else:
                report.append(text_pkt(f"ok {ref}\n"))
                self.refs[ref] = new
        report.append(FLUSH)
        body = b"".join(report)
        if b"side-band-64k" not in caps:
            return body
        return side_band(2, b"Resolving deltas: 100% (1/1), done.\n") + side_band(1, body) + FLUSH


class FakeGitServer:
    """Serve ``FakeRemote`` repositories over a mock smart-HTTP transport."""

    def __init__(self) -> None:
        self.remotes: dict[str, FakeRemote] = {}
        self.requests: list[httpx.Request] = []

    def add(self, name: str, **kwargs) -> FakeRemote:
        remote = FakeRemote(name=name, **kwargs)
        self.remotes[f"/{name}.git"] = remote
        return remote

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def _authorized(self, remote: FakeRemote, request: httpx.Request) -> bool:
        if remote.credentials is None:
            return True
        user, password = remote.credentials
        token = b64encode(f"{user}:{password}".encode()).decode("ascii")
        return request.headers.get("authorization") == f"Basic {token}"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        for prefix, remote in self.remotes.items():
            if path.startswith(prefix + "/"):
                break
        else:
            return httpx.Response(404, text="repository not found")

        remote.requests.append(request)
        if not self._authorized(remote, request):
            return httpx.Response(401, headers={"WWW-Authenticate": 'Basic realm="git"'})
        if remote.fail_status is not None:
            return httpx.Response(remote.fail_status, text="server error")

        endpoint = path[len(prefix) :]
        if endpoint == "/info/refs":
            service = request.url.params["service"]
            return httpx.Response(
                200,
                content=remote.advertisement(service),
                headers={"Content-Type": f"application/x-{service}-advertisement"},
            )
        if endpoint == "/git-upload-pack":
            remote.fetch_bodies.append(request.content)
            body = remote.upload_response or remote.build_upload_response(request.content)
            return httpx.Response(
                200,
                content=body,
                headers={"Content-Type": "application/x-git-upload-pack-result"},
            )
        if endpoint == "/git-receive-pack":
            remote.push_bodies.append(request.content)
            body = remote.receive_response or remote.build_receive_response(request.content)
            return httpx.Response(
                200,
                content=body,
                headers={"Content-Type": "application/x-git-receive-pack-result"},
            )
        return httpx.Response(404, text="not found")


@pytest.fixture
def git_server() -> FakeGitServer:
    """An empty fake smart-HTTP server; add repositories with ``add``."""
    return FakeGitServer()


@pytest.fixture
def pack_bytes() -> bytes:
    """A small pack-shaped payload with a valid SHA-1 trailer."""
    return make_pack(b"\x95\x0bcommit-and-tree-objects", objects=2)


@pytest.fixture
def wire() -> Iterator[type]:
    """Byte builders for hand-written protocol responses."""

    class Wire:
        ZERO = ZERO
        FLUSH = FLUSH
        pkt = staticmethod(text_pkt)
        pkt_line = staticmethod(pkt_line)
        side_band = staticmethod(side_band)
        make_pack = staticmethod(make_pack)
        read_packets = staticmethod(read_packets)

    yield Wire
