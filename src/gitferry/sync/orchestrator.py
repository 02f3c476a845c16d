"""End-to-end remote-to-remote synchronization.

The run is a forward-only state machine. Each step receives the shared
``SyncContext``, does its part and returns the next state; any error moves
the machine to ``FAILED``, is annotated with the caller and the state it
surfaced in, and is re-raised unchanged in kind. Nothing is retried.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import anyio
import httpx

from gitferry.auth import AuthHandler
from gitferry.config import SyncSettings
from gitferry.errors import Cancelled, ProtocolError, PushRejected, SyncError
from gitferry.models import (
    MessageCallback,
    ProgressCallback,
    RemoteInfo,
    Service,
    SyncResult,
)
from gitferry.remote import GitHttpRemote
from gitferry.sync.capabilities import CapabilityNegotiator
from gitferry.sync.fetch import FetchRequestBuilder
from gitferry.sync.push import PushRequestBuilder
from gitferry.sync.refs import RefDiff, RefDiffEngine
from gitferry.sync.relay import PackPayload, PackRelay
from gitferry.sync.report import PushResultValidator

logger = logging.getLogger(__name__)

CALLER = "gitferry.sync"
# 12-byte pack header plus the 20-byte trailing checksum.
MIN_PACK_SIZE = 32


class SyncState(str, Enum):
    """Steps of one synchronization run."""

    DISCOVER_SOURCE = "discover_source"
    DISCOVER_TARGET = "discover_target"
    NEGOTIATE = "negotiate"
    DIFF = "diff"
    FETCH = "fetch"
    RELAY_CHECK = "relay_check"
    PUSH = "push"
    VALIDATE = "validate"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncContext:
    """Values handed from one step to the next."""

    source_info: RemoteInfo | None = None
    target_info: RemoteInfo | None = None
    fetch_capabilities: list[str] = field(default_factory=list)
    push_capabilities: list[str] = field(default_factory=list)
    diff: RefDiff | None = None
    pack: PackPayload | None = None
    push_response: bytes = b""
    result: SyncResult | None = None


Step = Callable[[SyncContext], Awaitable[SyncState]]


class SyncOrchestrator:
    """Fetch what the target is missing from the source and push it there."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        source_url: str,
        target_url: str,
        *,
        headers: dict[str, str] | None = None,
        auth: AuthHandler | None = None,
        on_progress: ProgressCallback | None = None,
        on_message: MessageCallback | None = None,
        settings: SyncSettings | None = None,
    ) -> None:
        self.settings = settings or SyncSettings()
        self.on_progress = on_progress
        self.on_message = on_message
        self.source = GitHttpRemote(
            http,
            source_url,
            headers=headers,
            auth=auth,
            agent=self.settings.agent,
            timeout=self.settings.http_timeout,
        )
        self.target = GitHttpRemote(
            http,
            target_url,
            headers=headers,
            auth=auth,
            agent=self.settings.agent,
            timeout=self.settings.http_timeout,
        )
        self.engine = RefDiffEngine(self.settings.ref_prefixes, self.settings.refs)
        self.state = SyncState.DISCOVER_SOURCE
        self._steps: dict[SyncState, Step] = {
            SyncState.DISCOVER_SOURCE: self._discover_source,
            SyncState.DISCOVER_TARGET: self._discover_target,
            SyncState.NEGOTIATE: self._negotiate,
            SyncState.DIFF: self._diff,
            SyncState.FETCH: self._fetch,
            SyncState.RELAY_CHECK: self._relay_check,
            SyncState.PUSH: self._push,
            SyncState.VALIDATE: self._validate,
        }

    async def run(self) -> SyncResult:
        """Run every step once and return the target's verdict.

        Raises:
            SyncError: Any subclass, annotated with ``caller`` and ``state``
        """
        ctx = SyncContext()
        self.state = SyncState.DISCOVER_SOURCE
        try:
            try:
                with anyio.fail_after(self.settings.timeout):
                    while self.state is not SyncState.DONE:
                        next_state = await self._steps[self.state](ctx)
                        logger.info("%s -> %s", self.state.value, next_state.value)
                        self.state = next_state
            except TimeoutError as e:
                raise Cancelled(
                    f"Synchronization timed out after {self.settings.timeout}s in {self.state.value}"
                ) from e
        except SyncError as e:
            failed_in = self._fail()
            e.annotate(CALLER, failed_in.value)
            logger.error("Synchronization failed in %s: %s", failed_in.value, e)
            raise
        except Exception as e:
            failed_in = self._fail()
            e.add_note(f"{CALLER}: failed in {failed_in.value}")
            logger.error("Synchronization failed in %s: %s", failed_in.value, e)
            raise
        finally:
            if ctx.pack is not None:
                with anyio.CancelScope(shield=True):
                    await ctx.pack.aclose()

        assert ctx.result is not None
        return ctx.result

    def _fail(self) -> SyncState:
        failed_in = self.state
        self.state = SyncState.FAILED
        return failed_in

    async def _discover_source(self, ctx: SyncContext) -> SyncState:
        if self.settings.concurrent_discovery:
            await self._discover_both(ctx)
            return SyncState.NEGOTIATE
        ctx.source_info = await self.source.discover(Service.UPLOAD_PACK)
        return SyncState.DISCOVER_TARGET

    async def _discover_target(self, ctx: SyncContext) -> SyncState:
        ctx.target_info = await self.target.discover(Service.RECEIVE_PACK)
        return SyncState.NEGOTIATE

    async def _discover_both(self, ctx: SyncContext) -> None:
        """Discover both remotes at once; the source's error wins if both fail."""
        errors: dict[SyncState, Exception] = {}

        async def discover_source() -> None:
            try:
                ctx.source_info = await self.source.discover(Service.UPLOAD_PACK)
            except Exception as e:
                errors[SyncState.DISCOVER_SOURCE] = e

        async def discover_target() -> None:
            try:
                ctx.target_info = await self.target.discover(Service.RECEIVE_PACK)
            except Exception as e:
                errors[SyncState.DISCOVER_TARGET] = e

        async with anyio.create_task_group() as tg:
            tg.start_soon(discover_source)
            tg.start_soon(discover_target)

        for state in (SyncState.DISCOVER_SOURCE, SyncState.DISCOVER_TARGET):
            error = errors.get(state)
            if error is None:
                continue
            if isinstance(error, SyncError):
                error.annotate(CALLER, state.value)
            raise error

    async def _negotiate(self, ctx: SyncContext) -> SyncState:
        assert ctx.source_info is not None and ctx.target_info is not None
        fetch_capabilities = CapabilityNegotiator(self.settings.upload_whitelist).negotiate(
            ctx.source_info.capabilities
        )
        if not ctx.target_info.has_capability("ofs-delta"):
            fetch_capabilities = [cap for cap in fetch_capabilities if cap != "ofs-delta"]
        ctx.fetch_capabilities = fetch_capabilities
        ctx.push_capabilities = CapabilityNegotiator(self.settings.receive_whitelist).negotiate(
            ctx.target_info.capabilities
        )
        logger.debug("Fetch capabilities: %s", " ".join(ctx.fetch_capabilities))
        logger.debug("Push capabilities: %s", " ".join(ctx.push_capabilities))
        return SyncState.DIFF

    async def _diff(self, ctx: SyncContext) -> SyncState:
        assert ctx.source_info is not None and ctx.target_info is not None
        diff = self.engine.diff(ctx.source_info, ctx.target_info)
        ctx.diff = diff
        if not diff.commands:
            logger.info(
                "Target %s is up to date with %s (%d refs)",
                self.target.url,
                self.source.url,
                len(diff.unchanged),
            )
            ctx.result = SyncResult(ok=True)
            return SyncState.DONE

        if not ctx.target_info.has_capability("report-status"):
            raise ProtocolError(f"Target {self.target.url} does not support report-status")
        for command in diff.commands:
            logger.info(
                "%s: %s -> %s",
                command.ref_name,
                command.old_oid[:12],
                command.new_oid[:12],
            )
        return SyncState.FETCH

    async def _fetch(self, ctx: SyncContext) -> SyncState:
        assert ctx.diff is not None
        request = FetchRequestBuilder(ctx.fetch_capabilities, ctx.diff.wants, ctx.diff.haves)
        relay = PackRelay(
            ctx.fetch_capabilities,
            on_progress=self.on_progress,
            on_message=self.on_message,
            max_memory=self.settings.spool_max_size,
        )
        async with self.source.connect(Service.UPLOAD_PACK, request.build()) as response:
            ctx.pack = await relay.relay(response.aiter_bytes())
        return SyncState.RELAY_CHECK

    async def _relay_check(self, ctx: SyncContext) -> SyncState:
        assert ctx.pack is not None
        if ctx.pack.size < MIN_PACK_SIZE:
            raise ProtocolError(f"Source sent a truncated pack of {ctx.pack.size} bytes")
        return SyncState.PUSH

    async def _push(self, ctx: SyncContext) -> SyncState:
        assert ctx.diff is not None and ctx.pack is not None
        request = PushRequestBuilder(ctx.push_capabilities, ctx.diff.commands)
        async with self.target.connect(
            Service.RECEIVE_PACK,
            request.aiter_body(ctx.pack),
            content_length=request.content_length(ctx.pack),
        ) as response:
            ctx.push_response = await response.aread()
        request.verify_relayed(ctx.pack)
        return SyncState.VALIDATE

    async def _validate(self, ctx: SyncContext) -> SyncState:
        assert ctx.diff is not None and ctx.pack is not None
        validator = PushResultValidator(
            ctx.push_capabilities,
            on_progress=self.on_progress,
            on_message=self.on_message,
        )
        result = await validator.validate(ctx.push_response, ctx.diff.commands)
        result.pack_size = ctx.pack.size
        result.pack_checksum = ctx.pack.checksum_hex
        ctx.result = result
        if not result.ok:
            raise PushRejected(result)
        logger.info(
            "Pushed %d ref updates to %s (%d bytes, pack checksum %s)",
            len(result.commands),
            self.target.url,
            result.pack_size,
            result.pack_checksum,
        )
        return SyncState.DONE
