"""HTTP client construction for the CLI."""

from __future__ import annotations

import httpx

from gitferry.config import SyncSettings


def create_client(settings: SyncSettings) -> httpx.AsyncClient:
    """Create the async client shared by both remotes of one run."""
    return httpx.AsyncClient(timeout=settings.http_timeout)
