"""Tests for the upload-pack request encoding."""

from __future__ import annotations

import pytest

from gitferry.errors import ProtocolError
from gitferry.sync.fetch import FetchRequestBuilder

OID_A = "a" * 40
OID_B = "b" * 40
OID_C = "c" * 40


def test_layout(wire) -> None:
    builder = FetchRequestBuilder(
        ["multi_ack_detailed", "side-band-64k", "agent=gitferry/test"],
        wants=[OID_A, OID_B],
        haves=[OID_C],
    )

    assert builder.build() == (
        wire.pkt(f"want {OID_A} multi_ack_detailed side-band-64k agent=gitferry/test\n")
        + wire.pkt(f"want {OID_B}\n")
        + wire.FLUSH
        + wire.pkt(f"have {OID_C}\n")
        + wire.pkt("done\n")
    )


def test_without_capabilities_or_haves(wire) -> None:
    body = FetchRequestBuilder([], wants=[OID_A]).build()

    assert body == wire.pkt(f"want {OID_A}\n") + wire.FLUSH + wire.pkt("done\n")


def test_build_matches_frames() -> None:
    builder = FetchRequestBuilder(["ofs-delta"], wants=[OID_A], haves=[OID_B, OID_C])

    assert builder.build() == b"".join(builder.iter_frames())
    assert builder.build() == builder.build()


def test_no_wants_is_an_error() -> None:
    with pytest.raises(ProtocolError, match="without wants"):
        FetchRequestBuilder(["ofs-delta"], wants=[]).build()
