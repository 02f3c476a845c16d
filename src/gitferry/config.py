"""Run settings, capability whitelists and XDG-compliant CLI defaults."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gitferry import __version__

DEFAULT_AGENT = f"gitferry/{__version__}"
DEFAULT_REF_PREFIXES = ("refs/heads/", "refs/tags/")
DEFAULT_SPOOL_MAX_SIZE = 32 * 1024 * 1024

# Capabilities requested from the source's git-upload-pack, in wire order.
# `thin-pack` is never requested: a thin pack holds deltas against objects
# outside the pack, and the pack is relayed verbatim without being fattened,
# so a strict receiver (canonical git) fails with "pack has N unresolved
# deltas". Server advertisements never widen this list.
UPLOAD_CAPABILITIES = (
    "multi_ack_detailed",
    "no-done",
    "side-band-64k",
    "ofs-delta",
)

# Capabilities sent with the first ref-update command to git-receive-pack.
RECEIVE_CAPABILITIES = (
    "report-status",
    "side-band-64k",
)


@dataclass(frozen=True)
class SyncSettings:
    """Stateless per-run configuration supplied by the caller."""

    agent: str = DEFAULT_AGENT
    ref_prefixes: tuple[str, ...] = DEFAULT_REF_PREFIXES
    refs: tuple[str, ...] | None = None
    concurrent_discovery: bool = False
    timeout: float | None = None
    http_timeout: float = 30.0
    spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE

    @property
    def agent_capability(self) -> str:
        return f"agent={self.agent}"

    @property
    def upload_whitelist(self) -> tuple[str, ...]:
        return (*UPLOAD_CAPABILITIES, self.agent_capability)

    @property
    def receive_whitelist(self) -> tuple[str, ...]:
        return (*RECEIVE_CAPABILITIES, self.agent_capability)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(part) for part in value)


# Keys accepted in config.json, with the coercion applied when settings are
# built. Values written by `gitferry config set` are always strings.
CONFIG_KEYS: dict[str, Callable[[Any], Any]] = {
    "agent": str,
    "ref_prefixes": _as_tuple,
    "refs": _as_tuple,
    "concurrent_discovery": _as_bool,
    "timeout": float,
    "http_timeout": float,
    "spool_max_size": int,
}


def get_config_dir() -> Path:
    """Return (and create) ``$XDG_CONFIG_HOME/gitferry``, defaulting to ``~/.config``."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    config_dir = base / "gitferry"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Read the persisted CLI defaults; a missing file means no defaults."""
    config_file = get_config_file()
    if not config_file.exists():
        return {}
    data: dict[str, Any] = json.loads(config_file.read_text())
    return data


def save_config(config: dict[str, Any]) -> None:
    get_config_file().write_text(json.dumps(config, indent=2, sort_keys=True))


def set_config_value(key: str, value: str) -> None:
    """Persist one default after checking that it coerces.

    Raises:
        KeyError: If ``key`` is not a known setting
        ValueError: If ``value`` cannot be coerced for ``key``
    """
    if key not in CONFIG_KEYS:
        raise KeyError(key)
    CONFIG_KEYS[key](value)
    config = load_config()
    config[key] = value
    save_config(config)


def load_settings(**overrides: Any) -> SyncSettings:
    """Build ``SyncSettings`` from the config file, then apply overrides.

    Unknown keys in the file are ignored. Overrides that are None are ignored.
    """
    values = {
        key: CONFIG_KEYS[key](value)
        for key, value in load_config().items()
        if key in CONFIG_KEYS
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return SyncSettings(**values)
