"""git-receive-pack request encoding."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator, Sequence

from dulwich.protocol import pkt_line

from gitferry.errors import ProtocolError
from gitferry.models import RefUpdateCommand
from gitferry.sync.relay import PACK_CHECKSUM_SIZE, PackPayload

logger = logging.getLogger(__name__)


class PushRequestBuilder:
    """Encode ref-update commands followed by the relayed pack.

    The first command carries the capabilities after a NUL byte; a flush
    ends the command list and the pack bytes follow unframed. The builder
    counts what it streams so the relay can be checked afterwards.
    """

    def __init__(self, capabilities: Sequence[str], commands: Sequence[RefUpdateCommand]) -> None:
        if not commands:
            raise ProtocolError("Cannot build a push request without ref commands")
        self.capabilities = list(capabilities)
        self.commands = list(commands)
        self.sent_size = 0
        self._sent_tail = b""

    def iter_commands(self) -> Iterator[bytes]:
        for index, command in enumerate(self.commands):
            line = f"{command.old_oid} {command.new_oid} {command.ref_name}".encode("utf-8")
            if index == 0:
                line += b"\0" + " ".join(self.capabilities).encode("utf-8")
            yield pkt_line(line + b"\n")
        yield pkt_line(None)

    def header(self) -> bytes:
        return b"".join(self.iter_commands())

    def content_length(self, pack: PackPayload) -> int:
        return len(self.header()) + pack.size

    async def aiter_body(self, pack: PackPayload) -> AsyncIterator[bytes]:
        """Yield the command header, then the pack exactly as received."""
        self.sent_size = 0
        self._sent_tail = b""
        yield self.header()
        async for chunk in pack.aiter_chunks():
            self.sent_size += len(chunk)
            self._sent_tail = (self._sent_tail + chunk)[-PACK_CHECKSUM_SIZE:]
            yield chunk

    def verify_relayed(self, pack: PackPayload) -> None:
        """Check the pushed pack matches the fetched one in length and checksum.

        Raises:
            ProtocolError: If the bytes changed in transit
        """
        if self.sent_size != pack.size or self._sent_tail != pack.checksum:
            raise ProtocolError(
                f"Relayed pack mismatch: sent {self.sent_size} bytes ending "
                f"{self._sent_tail.hex()}, received {pack.size} bytes ending {pack.checksum_hex}"
            )
        logger.debug("Relayed pack verified: %d bytes, checksum %s", pack.size, pack.checksum_hex)
