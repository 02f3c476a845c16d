"""Capability negotiation against a fixed, ordered whitelist."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from dulwich.protocol import parse_capability

logger = logging.getLogger(__name__)


def capability_name(capability: str) -> str:
    """Return the key of a ``key=value`` capability (the token itself otherwise)."""
    key, _value = parse_capability(capability.encode("utf-8"))
    return key.decode("utf-8")


class CapabilityNegotiator:
    """Intersect a server advertisement with the capabilities we support.

    The result keeps the whitelist's order, never the advertisement's, so
    the request bytes are identical across runs. A capability missing from
    the whitelist is never requested, however the server advertises it.
    Matching is by name: our ``agent=gitferry/x`` is sent whenever the
    server advertises any ``agent=...``.
    """

    def __init__(self, whitelist: Sequence[str]) -> None:
        self.whitelist = tuple(whitelist)

    def negotiate(self, advertised: Iterable[str]) -> list[str]:
        offered = {capability_name(cap) for cap in advertised}
        negotiated = [cap for cap in self.whitelist if capability_name(cap) in offered]
        logger.debug("Negotiated capabilities: %s", " ".join(negotiated))
        return negotiated
