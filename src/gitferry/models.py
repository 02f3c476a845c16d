"""Typed models shared by discovery, negotiation, relay and push."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from dulwich.protocol import ZERO_SHA

ZERO_OID = ZERO_SHA.decode("ascii")


class Service(str, Enum):
    """Smart-HTTP services spoken by a remote."""

    UPLOAD_PACK = "git-upload-pack"
    RECEIVE_PACK = "git-receive-pack"


@dataclass(frozen=True)
class RemoteInfo:
    """Refs and capabilities advertised by one remote for one service."""

    refs: dict[str, str] = field(default_factory=dict)
    symrefs: dict[str, str] = field(default_factory=dict)
    capabilities: frozenset[str] = field(default_factory=frozenset)
    peeled: dict[str, str] = field(default_factory=dict)

    def has_capability(self, name: str) -> bool:
        """Check whether a capability with this name was advertised."""
        return any(cap.split("=", 1)[0] == name for cap in self.capabilities)


@dataclass(frozen=True)
class RefUpdateCommand:
    """A single push instruction moving ``ref_name`` from ``old_oid`` to ``new_oid``."""

    old_oid: str
    new_oid: str
    ref_name: str

    @property
    def is_create(self) -> bool:
        return self.old_oid == ZERO_OID


@dataclass(frozen=True)
class ProgressEvent:
    """Parsed remote progress line, e.g. ``Receiving objects: 50% (1/2)``."""

    phase: str
    loaded: int
    total: int


@dataclass
class SyncResult:
    """Outcome of one synchronization run."""

    ok: bool
    per_ref_status: dict[str, str] = field(default_factory=dict)
    commands: list[RefUpdateCommand] = field(default_factory=list)
    unpack_error: str | None = None
    pack_size: int = 0
    pack_checksum: str | None = None

    @property
    def is_noop(self) -> bool:
        """True when source and target already agreed on every selected ref."""
        return not self.commands


ProgressCallback = Callable[[ProgressEvent], "Awaitable[None] | None"]
MessageCallback = Callable[[str], "Awaitable[None] | None"]
