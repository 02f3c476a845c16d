"""git-upload-pack request encoding."""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from dulwich.protocol import COMMAND_DONE, COMMAND_HAVE, COMMAND_WANT, pkt_line

from gitferry.errors import ProtocolError


class FetchRequestBuilder:
    """Encode a stateless want/have negotiation for the source remote.

    Layout: ``want <oid> <caps>`` on the first line, one ``want <oid>`` per
    further object, a flush, one ``have <oid>`` per hint, then ``done``.
    ``done`` is always sent, since one round trip is all a stateless
    relay gets, and servers accept it with or without ``no-done``.
    """

    def __init__(
        self,
        capabilities: Sequence[str],
        wants: Sequence[str],
        haves: Sequence[str] = (),
    ) -> None:
        self.capabilities = list(capabilities)
        self.wants = list(wants)
        self.haves = list(haves)

    def iter_frames(self) -> Iterator[bytes]:
        if not self.wants:
            raise ProtocolError("Cannot build a fetch request without wants")
        for index, oid in enumerate(self.wants):
            line = COMMAND_WANT + b" " + oid.encode("ascii")
            if index == 0 and self.capabilities:
                line += b" " + " ".join(self.capabilities).encode("utf-8")
            yield pkt_line(line + b"\n")
        yield pkt_line(None)
        for oid in self.haves:
            yield pkt_line(COMMAND_HAVE + b" " + oid.encode("ascii") + b"\n")
        yield pkt_line(COMMAND_DONE + b"\n")

    def build(self) -> bytes:
        """Drain the frames into the single payload sent over HTTP."""
        return b"".join(self.iter_frames())
