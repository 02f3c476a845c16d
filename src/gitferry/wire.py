"""pkt-line helpers on top of ``dulwich.protocol``.

Framing and the capability grammar come from dulwich. Its ``Protocol``
reads from a blocking file object, so response bodies that must be
streamed (the fetch response carrying the pack) are read through
``PacketReader``, which pulls frames off an async byte iterator instead.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator

from dulwich.protocol import PktLineParser

from gitferry.errors import ProtocolError

PKT_HEADER_SIZE = 4


def _parse_length(header: bytes) -> int:
    try:
        size = int(header, 16)
    except ValueError as e:
        raise ProtocolError(f"Invalid pkt-line length prefix {header!r}") from e
    if 0 < size < PKT_HEADER_SIZE:
        raise ProtocolError(f"Invalid pkt-line length {size}")
    return size


def split_pkt_lines(body: bytes) -> list[bytes | None]:
    """Split a fully buffered body into packets; None marks a flush.

    Raises:
        ProtocolError: If the body is not a well-formed pkt-line sequence.
    """
    packets: list[bytes | None] = []
    parser = PktLineParser(packets.append)
    # Length prefixes are checked up front; lengths 1-3 are invalid in v0.
    offset = 0
    while offset + PKT_HEADER_SIZE <= len(body):
        size = _parse_length(body[offset : offset + PKT_HEADER_SIZE])
        offset += size or PKT_HEADER_SIZE
    try:
        parser.parse(body)
    except ValueError as e:
        raise ProtocolError(f"Malformed pkt-line data: {e}") from e
    tail = parser.get_tail()
    if tail:
        raise ProtocolError(f"Truncated pkt-line: {len(tail)} trailing bytes {tail[:8]!r}")
    return packets


class PacketReader:
    """Read pkt-lines from an async byte stream without buffering it all."""

    def __init__(self, chunks: AsyncIterable[bytes]) -> None:
        self._chunks = chunks.__aiter__()
        self._buffer = bytearray()
        self._eof = False

    async def _fill(self, size: int) -> None:
        while len(self._buffer) < size and not self._eof:
            try:
                chunk = await anext(self._chunks)
            except StopAsyncIteration:
                self._eof = True
                break
            self._buffer.extend(chunk)

    async def read_exact(self, size: int) -> bytes:
        """Read exactly ``size`` bytes or fail on a short stream."""
        await self._fill(size)
        if len(self._buffer) < size:
            raise ProtocolError(
                f"Unexpected end of stream: wanted {size} bytes, got {len(self._buffer)}"
            )
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def read_pkt_line(self) -> bytes | None:
        """Read one packet; None for a flush."""
        size = _parse_length(await self.read_exact(PKT_HEADER_SIZE))
        if size == 0:
            return None
        return await self.read_exact(size - PKT_HEADER_SIZE)

    async def iter_pkt_lines(self) -> AsyncIterator[bytes]:
        """Yield packets up to (not including) the next flush."""
        while True:
            pkt = await self.read_pkt_line()
            if pkt is None:
                return
            yield pkt

    async def iter_remaining(self) -> AsyncIterator[bytes]:
        """Yield whatever is left in the stream as raw bytes."""
        if self._buffer:
            data = bytes(self._buffer)
            self._buffer.clear()
            yield data
        if self._eof:
            return
        async for chunk in self._chunks:
            if chunk:
                yield chunk
        self._eof = True
