"""Fetch-response demultiplexing and pack spooling.

The source's response is read frame by frame: acknowledgement lines first,
then (with ``side-band-64k``) multiplexed packets carrying pack data on
channel 1, progress text on channel 2 and fatal errors on channel 3. Pack
bytes go straight into a spool that stays in memory up to a bound and
spills to a temporary file beyond it. The push reads them back from there
verbatim. Nothing here looks inside the pack.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from tempfile import SpooledTemporaryFile

import anyio
from dulwich.protocol import (
    CAPABILITY_SIDE_BAND_64K,
    SIDE_BAND_CHANNEL_DATA,
    SIDE_BAND_CHANNEL_FATAL,
    SIDE_BAND_CHANNEL_PROGRESS,
)

from gitferry.auth import maybe_await
from gitferry.errors import ProtocolError
from gitferry.models import MessageCallback, ProgressCallback, ProgressEvent
from gitferry.wire import PacketReader

logger = logging.getLogger(__name__)

PACK_CHECKSUM_SIZE = 20
RELAY_CHUNK_SIZE = 64 * 1024
PROGRESS_PATTERN = re.compile(r"([^:]*).*\((\d+)/(\d+)\)")
LINE_BREAK = re.compile(r"[\r\n]")
NEGOTIATION_STATUSES = (b"common", b"ready", b"continue")


class ProgressForwarder:
    """Pass remote progress text to the caller's callbacks."""

    def __init__(
        self,
        on_progress: ProgressCallback | None = None,
        on_message: MessageCallback | None = None,
    ) -> None:
        self.on_progress = on_progress
        self.on_message = on_message
        self._pending = ""

    async def feed(self, data: bytes) -> None:
        text = data.decode("utf-8", "replace")
        if self.on_message is not None:
            await maybe_await(self.on_message(text))
        if self.on_progress is None:
            return
        *lines, self._pending = LINE_BREAK.split(self._pending + text)
        for line in lines:
            match = PROGRESS_PATTERN.match(line.strip())
            if match is None:
                continue
            event = ProgressEvent(
                phase=match.group(1).strip(),
                loaded=int(match.group(2)),
                total=int(match.group(3)),
            )
            await maybe_await(self.on_progress(event))


class PackPayload:
    """Relayed pack bytes, their length and trailing checksum."""

    def __init__(self, max_memory: int) -> None:
        self._file = anyio.wrap_file(SpooledTemporaryFile(max_size=max_memory))
        self._tail = b""
        self.size = 0

    async def write(self, data: bytes) -> None:
        if not data:
            return
        await self._file.write(data)
        self.size += len(data)
        self._tail = (self._tail + data)[-PACK_CHECKSUM_SIZE:]

    @property
    def checksum(self) -> bytes:
        """The final 20 bytes as received; empty if the pack is shorter."""
        if self.size < PACK_CHECKSUM_SIZE:
            return b""
        return self._tail

    @property
    def checksum_hex(self) -> str:
        return self.checksum.hex()

    async def aiter_chunks(self, chunk_size: int = RELAY_CHUNK_SIZE) -> AsyncIterator[bytes]:
        await self._file.seek(0)
        while True:
            chunk = await self._file.read(chunk_size)
            if not chunk:
                return
            yield chunk

    async def aclose(self) -> None:
        await self._file.aclose()


class PackRelay:
    """Read the source's upload-pack response into a ``PackPayload``."""

    def __init__(
        self,
        capabilities: Sequence[str],
        *,
        on_progress: ProgressCallback | None = None,
        on_message: MessageCallback | None = None,
        max_memory: int = 32 * 1024 * 1024,
    ) -> None:
        self.side_band = CAPABILITY_SIDE_BAND_64K.decode("ascii") in capabilities
        self.progress = ProgressForwarder(on_progress, on_message)
        self.max_memory = max_memory

    async def relay(self, chunks: AsyncIterable[bytes]) -> PackPayload:
        """Consume the response body and return the spooled pack.

        Raises:
            ProtocolError: On ERR lines, channel-3 errors, bad framing or a
                pack too short to carry a checksum
        """
        reader = PacketReader(chunks)
        payload = PackPayload(self.max_memory)
        try:
            await self._read_acknowledgements(reader)
            if self.side_band:
                await self._demultiplex(reader, payload)
            else:
                async for chunk in reader.iter_remaining():
                    await payload.write(chunk)
            if payload.size < PACK_CHECKSUM_SIZE:
                raise ProtocolError(f"Pack of {payload.size} bytes is too short to carry a checksum")
        except BaseException:
            with anyio.CancelScope(shield=True):
                await payload.aclose()
            raise

        logger.info(
            "Relayed pack of %d bytes (checksum %s)",
            payload.size,
            payload.checksum_hex,
        )
        return payload

    async def _read_acknowledgements(self, reader: PacketReader) -> None:
        while True:
            pkt = await reader.read_pkt_line()
            if pkt is None:
                continue
            line = pkt.rstrip(b"\n")
            parts = line.split(b" ")
            logger.debug("upload-pack: %s", line.decode("utf-8", "replace"))
            if parts[0] == b"ERR":
                raise ProtocolError(f"Source error: {line[4:].decode('utf-8', 'replace')}")
            if parts[0] == b"NAK":
                return
            if parts[0] == b"ACK":
                if len(parts) < 3 or parts[2] not in NEGOTIATION_STATUSES:
                    return
                continue
            if parts[0] in (b"shallow", b"unshallow"):
                continue
            raise ProtocolError(f"Unexpected negotiation line {line!r}")

    async def _demultiplex(self, reader: PacketReader, payload: PackPayload) -> None:
        async for pkt in reader.iter_pkt_lines():
            if not pkt:
                continue
            channel, data = pkt[0], pkt[1:]
            if channel == SIDE_BAND_CHANNEL_DATA:
                await payload.write(data)
            elif channel == SIDE_BAND_CHANNEL_PROGRESS:
                await self.progress.feed(data)
            elif channel == SIDE_BAND_CHANNEL_FATAL:
                message = data.decode("utf-8", "replace").strip()
                raise ProtocolError(f"Source aborted the fetch: {message}")
            else:
                raise ProtocolError(f"Invalid side-band channel {channel}")
