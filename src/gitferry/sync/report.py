"""report-status parsing for the target's push response."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from dulwich.client import ReportStatusParser
from dulwich.errors import GitProtocolError, SendPackError
from dulwich.protocol import (
    CAPABILITY_SIDE_BAND_64K,
    SIDE_BAND_CHANNEL_DATA,
    SIDE_BAND_CHANNEL_FATAL,
    SIDE_BAND_CHANNEL_PROGRESS,
    PktLineParser,
)

from gitferry.errors import ProtocolError
from gitferry.models import MessageCallback, ProgressCallback, RefUpdateCommand, SyncResult
from gitferry.sync.relay import ProgressForwarder
from gitferry.wire import split_pkt_lines

logger = logging.getLogger(__name__)

MISSING_STATUS = "no status reported"
UNPACK_PREFIX = b"unpack "


def _unpack_status(error: SendPackError) -> bytes:
    status = error.args[0] if error.args else b""
    if isinstance(status, str):
        status = status.encode("utf-8")
    return status


class PushResultValidator:
    """Turn the target's response into a ``SyncResult``.

    ``ok`` holds only when the pack unpacked and every requested ref
    reported ``ok``; a ref the target did not mention counts as failed.
    """

    def __init__(
        self,
        capabilities: Sequence[str],
        *,
        on_progress: ProgressCallback | None = None,
        on_message: MessageCallback | None = None,
    ) -> None:
        self.side_band = CAPABILITY_SIDE_BAND_64K.decode("ascii") in capabilities
        self.progress = ProgressForwarder(on_progress, on_message)

    async def read_report(self, body: bytes) -> ReportStatusParser:
        """Feed the report-status block, unwrapping side-band if negotiated."""
        report = ReportStatusParser()
        received = False

        def handle_packet(pkt: bytes | None) -> None:
            nonlocal received
            received = received or pkt is not None
            report.handle_packet(pkt)

        try:
            if self.side_band:
                parser = PktLineParser(handle_packet)
                for pkt in split_pkt_lines(body):
                    if pkt is None:
                        break
                    if not pkt:
                        continue
                    channel, data = pkt[0], pkt[1:]
                    if channel == SIDE_BAND_CHANNEL_DATA:
                        parser.parse(data)
                    elif channel == SIDE_BAND_CHANNEL_PROGRESS:
                        await self.progress.feed(data)
                    elif channel == SIDE_BAND_CHANNEL_FATAL:
                        message = data.decode("utf-8", "replace").strip()
                        raise ProtocolError(f"Target aborted the push: {message}")
                    else:
                        raise ProtocolError(f"Invalid side-band channel {channel}")
            else:
                for pkt in split_pkt_lines(body):
                    handle_packet(pkt)
                    if pkt is None:
                        break
        except (GitProtocolError, ValueError) as e:
            raise ProtocolError(f"Malformed report-status: {e}") from e

        if not received:
            raise ProtocolError("Target sent no report-status")
        return report

    async def validate(self, body: bytes, commands: Sequence[RefUpdateCommand]) -> SyncResult:
        report = await self.read_report(body)
        unpack_error: str | None = None
        reported: dict[str, str] = {}
        try:
            for ref, error in report.check():
                reported[ref.decode("utf-8")] = "ok" if error is None else error
        except SendPackError as e:
            status = _unpack_status(e)
            if not status.startswith(UNPACK_PREFIX):
                raise ProtocolError(f"Expected unpack status, got {status!r}") from e
            unpack_error = status[len(UNPACK_PREFIX) :].decode("utf-8", "replace")
        except (GitProtocolError, ValueError) as e:
            raise ProtocolError(f"Invalid ref status line: {e}") from e

        per_ref_status: dict[str, str] = {}
        for command in commands:
            status = reported.get(command.ref_name, MISSING_STATUS)
            per_ref_status[command.ref_name] = status
            if status != "ok":
                logger.warning("Target rejected %s: %s", command.ref_name, status)
        ok = unpack_error is None and all(status == "ok" for status in per_ref_status.values())
        return SyncResult(
            ok=ok,
            per_ref_status=per_ref_status,
            commands=list(commands),
            unpack_error=unpack_error,
        )
