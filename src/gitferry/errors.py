"""Error taxonomy for remote-to-remote synchronization."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gitferry.models import SyncResult


class SyncError(Exception):
    """Base exception for synchronization failures.

    ``caller`` and ``state`` are filled in by the orchestrator when the error
    passes through it, so callers can tell which operation and which step
    failed without parsing the message.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.caller: str | None = None
        self.state: str | None = None

    def annotate(self, caller: str, state: str | None = None) -> None:
        """Record the originating operation, keeping the first annotation."""
        if self.caller is None:
            self.caller = caller
        if self.state is None:
            self.state = state


class ParameterError(SyncError):
    """A required argument was missing."""

    def __init__(self, parameter: str) -> None:
        super().__init__(f"Missing required parameter: {parameter}")
        self.parameter = parameter


class AuthError(SyncError):
    """The remote rejected (or never received) credentials."""

    def __init__(self, message: str, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class NetworkError(SyncError):
    """Transport-level failure or a non-2xx response without a protocol body."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class Cancelled(NetworkError):
    """The run was aborted by its timeout."""

    pass


class ProtocolError(SyncError):
    """The remote spoke the git protocol incorrectly or reported a fatal error."""

    pass


class PushRejected(SyncError):
    """The target refused the pack or one of the ref updates."""

    def __init__(self, result: SyncResult) -> None:
        failed = {ref: status for ref, status in result.per_ref_status.items() if status != "ok"}
        if result.unpack_error:
            message = f"Target failed to unpack: {result.unpack_error}"
        else:
            details = ", ".join(f"{ref} ({reason})" for ref, reason in sorted(failed.items()))
            message = f"Target rejected ref updates: {details}"
        super().__init__(message)
        self.result = result

    @property
    def per_ref_status(self) -> dict[str, str]:
        """Per-ref status as reported by the target (``ok`` or the reason)."""
        return dict(self.result.per_ref_status)
