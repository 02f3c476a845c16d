"""Caller-facing entry point."""

from __future__ import annotations

import httpx

from gitferry.auth import AuthHandler
from gitferry.config import SyncSettings
from gitferry.errors import ParameterError
from gitferry.models import MessageCallback, ProgressCallback
from gitferry.sync.orchestrator import CALLER, SyncOrchestrator


async def sync_remotes(
    http: httpx.AsyncClient | None,
    source_url: str | None,
    target_url: str | None,
    *,
    headers: dict[str, str] | None = None,
    on_progress: ProgressCallback | None = None,
    on_message: MessageCallback | None = None,
    auth: AuthHandler | None = None,
    settings: SyncSettings | None = None,
) -> None:
    """Push every selected ref the target is missing, straight from the source.

    Args:
        http: Client used for every request to both remotes
        source_url: Smart-HTTP URL to fetch from
        target_url: Smart-HTTP URL to push to
        headers: Extra headers sent with every request
        on_progress: Called with parsed ``ProgressEvent`` values
        on_message: Called with raw progress text from either remote
        auth: Credential handler consulted on 401 responses
        settings: Per-run configuration (defaults to ``SyncSettings()``)

    Raises:
        ParameterError: If a required argument is missing (before any request)
        SyncError: Any other subclass, annotated by the orchestrator
    """
    for name, value in (("http", http), ("source_url", source_url), ("target_url", target_url)):
        if not value:
            error = ParameterError(name)
            error.annotate(CALLER)
            raise error

    orchestrator = SyncOrchestrator(
        http,
        source_url,
        target_url,
        headers=headers,
        auth=auth,
        on_progress=on_progress,
        on_message=on_message,
        settings=settings,
    )
    await orchestrator.run()
