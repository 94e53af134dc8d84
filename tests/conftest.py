"""Shared fixtures and test payloads for postbox tests."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import pytest

from postbox import MailboxStore, PostboxConfig, Postbox


# Test payload types


@dataclass(frozen=True)
class Greet:
    """Simple dataclass payload."""

    name: str


@dataclass(frozen=True)
class Order:
    """Nested payload exercising tuples and dicts."""

    order_id: int
    items: tuple[str, ...]
    quantities: dict[str, int]


class Color(Enum):
    RED = "red"
    GREEN = "green"


# Fixtures


@pytest.fixture
def config(tmp_path: Path) -> PostboxConfig:
    return PostboxConfig(
        base_path=tmp_path / "ipc",
        poll_interval=0.01,
        default_timeout=5.0,
    )


@pytest.fixture
def store(config: PostboxConfig) -> MailboxStore:
    return MailboxStore(config.base_path)


@pytest.fixture
def svc(config: PostboxConfig) -> Postbox:
    """Service actor exposing ``echo``, ``add`` and ``boom``."""
    postbox = Postbox("svc", config)
    postbox.set_method("echo", lambda value: value)
    postbox.set_method("add", lambda a, b: a + b)

    def boom() -> None:
        msg = "kaboom"
        raise ValueError(msg)

    postbox.set_method("boom", boom)
    return postbox


@pytest.fixture
def client(config: PostboxConfig) -> Postbox:
    return Postbox("client", config)


@pytest.fixture
def serving() -> Callable[[Postbox], AbstractContextManager[None]]:
    """Run ``postbox.serve`` on a background thread for the ``with`` block.

    Stands in for the separate service process of a real deployment.
    """

    @contextmanager
    def _serving(postbox: Postbox) -> Iterator[None]:
        stop = threading.Event()
        thread = threading.Thread(
            target=postbox.serve,
            kwargs={"until": stop.is_set},
            name=f"serve-{postbox.id}",
            daemon=True,
        )
        thread.start()
        try:
            yield
        finally:
            stop.set()
            thread.join(timeout=5.0)

    return _serving
