"""Fetch-negotiate-relay-push pipeline between two remotes."""

from gitferry.sync.capabilities import CapabilityNegotiator
from gitferry.sync.fetch import FetchRequestBuilder
from gitferry.sync.orchestrator import SyncContext, SyncOrchestrator, SyncState
from gitferry.sync.push import PushRequestBuilder
from gitferry.sync.refs import RefDiff, RefDiffEngine
from gitferry.sync.relay import PackPayload, PackRelay, ProgressForwarder
from gitferry.sync.report import PushResultValidator

__all__ = [
    "CapabilityNegotiator",
    "FetchRequestBuilder",
    "PackPayload",
    "PackRelay",
    "ProgressForwarder",
    "PushRequestBuilder",
    "PushResultValidator",
    "RefDiff",
    "RefDiffEngine",
    "SyncContext",
    "SyncOrchestrator",
    "SyncState",
]
