"""Ref comparison between the source and target advertisements."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from gitferry.models import ZERO_OID, RefUpdateCommand, RemoteInfo

HEAD_REF = "HEAD"


@dataclass(frozen=True)
class RefDiff:
    """What the target is missing relative to the source."""

    wants: list[str] = field(default_factory=list)
    haves: list[str] = field(default_factory=list)
    commands: list[RefUpdateCommand] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)


class RefDiffEngine:
    """Select the refs to synchronize and compute wants, haves and commands.

    By default every source ref under one of ``ref_prefixes`` is selected;
    passing ``refs`` selects exactly those names instead. ``HEAD`` is never
    pushed, and refs that exist only at the target are left untouched.
    """

    def __init__(
        self,
        ref_prefixes: Sequence[str] = ("refs/heads/", "refs/tags/"),
        refs: Sequence[str] | None = None,
    ) -> None:
        self.ref_prefixes = tuple(ref_prefixes)
        self.refs = tuple(refs) if refs is not None else None

    def select(self, source: RemoteInfo) -> list[str]:
        """Return the sorted source ref names under synchronization."""
        if self.refs is not None:
            names = [name for name in self.refs if name in source.refs]
        else:
            names = [
                name
                for name in source.refs
                if name.startswith(self.ref_prefixes)
            ]
        return sorted(name for name in set(names) if name != HEAD_REF)

    def diff(self, source: RemoteInfo, target: RemoteInfo) -> RefDiff:
        commands: list[RefUpdateCommand] = []
        unchanged: list[str] = []
        wants: list[str] = []

        for name in self.select(source):
            new_oid = source.refs[name]
            old_oid = target.refs.get(name, ZERO_OID)
            if old_oid == new_oid:
                unchanged.append(name)
                continue
            commands.append(RefUpdateCommand(old_oid=old_oid, new_oid=new_oid, ref_name=name))
            if new_oid not in wants:
                wants.append(new_oid)

        haves = sorted({oid for oid in target.refs.values() if oid != ZERO_OID})
        return RefDiff(wants=wants, haves=haves, commands=commands, unchanged=unchanged)
