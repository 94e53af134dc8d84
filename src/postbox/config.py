"""TOML-based configuration for postbox endpoints.

Provides ``load_config`` / ``discover_config`` for loading ``postbox.toml``
and the frozen ``PostboxConfig`` passed to every ``Postbox`` at
construction. Settings are read once; changing the file does not affect
running endpoints.
"""

from __future__ import annotations

import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, TypeAlias

__all__ = [
    "CONFIG_FILENAME",
    "PostboxConfig",
    "SerializationConfig",
    "SerializerKind",
    "default_base_path",
    "discover_config",
    "load_config",
]

CONFIG_FILENAME = "postbox.toml"

SerializerKind: TypeAlias = Literal["pickle", "json", "msgpack"]

_SHM = Path("/dev/shm")


def default_base_path() -> Path:
    """Return the default mailbox root.

    Prefers the RAM-backed ``/dev/shm`` when the host has one, falling back
    to the platform temp directory.
    """
    root = _SHM if _SHM.is_dir() else Path(tempfile.gettempdir())
    return root / "postbox"


@dataclass(frozen=True)
class SerializationConfig:
    """Serialization settings for mailbox files.

    Parameters
    ----------
    serializer : SerializerKind
        ``"pickle"`` (default, arbitrary Python payloads), ``"json"`` or
        ``"msgpack"`` (dataclasses and builtins only).

    Examples
    --------
    >>> SerializationConfig(serializer="msgpack")
    SerializationConfig(serializer='msgpack')
    """

    serializer: SerializerKind = "pickle"


@dataclass(frozen=True)
class PostboxConfig:
    """Top-level configuration for a ``Postbox`` endpoint.

    Parameters
    ----------
    base_path : Path
        Directory holding one mailbox subdirectory per actor id. Every
        process that wants to talk must use the same value.
    poll_interval : float
        Seconds slept between mailbox drains while a blocking ``call``
        waits, and between pumps in ``serve``.
    default_timeout : float
        Timeout used by ``call`` when none is given.
    serialization : SerializationConfig
        Codec used for mailbox files.

    Examples
    --------
    >>> config = PostboxConfig(base_path=Path("/tmp/ipc"), poll_interval=0.01)
    >>> config.default_timeout
    30.0
    """

    base_path: Path = field(default_factory=default_base_path)
    poll_interval: float = 0.1
    default_timeout: float = 30.0
    serialization: SerializationConfig = field(default_factory=SerializationConfig)

    def __post_init__(self) -> None:
        if not isinstance(self.base_path, Path):
            object.__setattr__(self, "base_path", Path(self.base_path))
        if self.poll_interval <= 0:
            msg = f"poll_interval must be positive, got {self.poll_interval}"
            raise ValueError(msg)
        if self.default_timeout <= 0:
            msg = f"default_timeout must be positive, got {self.default_timeout}"
            raise ValueError(msg)


def discover_config(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for ``postbox.toml``.

    Returns
    -------
    Path | None
        Path to the discovered config file, or ``None`` if not found.
    """
    current = start or Path.cwd()
    current = current.resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(path: Path | None = None) -> PostboxConfig:
    """Load a ``PostboxConfig`` from a TOML file.

    If *path* is ``None``, auto-discovers ``postbox.toml`` by walking up from
    the current working directory. Returns default config if no file is found.

    Parameters
    ----------
    path : Path | None
        Explicit path to a TOML config file.

    Returns
    -------
    PostboxConfig

    Raises
    ------
    FileNotFoundError
        If an explicit *path* is given but does not exist.

    Examples
    --------
    >>> config = load_config(Path("postbox.toml"))
    >>> config.poll_interval
    0.05
    """
    if path is None:
        discovered = discover_config()
        if discovered is None:
            return PostboxConfig()
        path = discovered

    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open("rb") as f:
        raw = tomllib.load(f)

    mailbox_raw: dict[str, Any] = raw.get("mailbox", {})
    rpc_raw: dict[str, Any] = raw.get("rpc", {})
    serialization = SerializationConfig(**raw.get("serialization", {}))

    kwargs: dict[str, Any] = {}
    if "base_path" in mailbox_raw:
        base_path = Path(mailbox_raw["base_path"]).expanduser()
        if not base_path.is_absolute():
            base_path = path.parent / base_path
        kwargs["base_path"] = base_path
    if "poll_interval" in mailbox_raw:
        kwargs["poll_interval"] = float(mailbox_raw["poll_interval"])
    if "default_timeout" in rpc_raw:
        kwargs["default_timeout"] = float(rpc_raw["default_timeout"])

    return PostboxConfig(serialization=serialization, **kwargs)
