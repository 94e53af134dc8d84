"""Identifier generation for message files and calls.

Message ids name files inside a receiver's mailbox, so two pending messages
sharing an id would silently overwrite one another. ``SequenceIdGenerator``
hands out ids that are unique and strictly increasing per sender→receiver
channel; call ids are random 128-bit values.
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable
from uuid import uuid4

_WIDTH = 20
_DIGEST_CHARS = 12
_INSTANCE_CHARS = 8


def channel_key(sender: str, receiver: str) -> str:
    return f"{sender}:{receiver}"


def new_call_id() -> str:
    """Return a fresh, collision-resistant call id."""
    return uuid4().hex


class SequenceIdGenerator:
    """Monotonic, per-channel message id generator.

    Each id is ``"<counter>-<channel digest>-<instance>"``. The counter starts
    from the wall clock in nanoseconds and always advances by at least one, so
    ids keep increasing across process restarts as well as within one process.
    The counter is zero-padded to a fixed width, which makes lexicographic
    order match numeric order. The channel digest keeps two senders that draw
    the same counter value from writing the same file name, and the random
    per-generator instance token does the same for two endpoints sharing one
    sender id (two short-lived processes, say). Ordering between such
    endpoints only follows their clocks.

    Examples
    --------
    >>> ids = SequenceIdGenerator()
    >>> a = ids.next("client:svc")
    >>> b = ids.next("client:svc")
    >>> a < b
    True
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or time.time_ns
        self._last: dict[str, int] = {}
        self._lock = threading.Lock()
        self._instance = uuid4().hex[:_INSTANCE_CHARS]

    def next(self, channel: str) -> str:
        """Return the next id for *channel*."""
        with self._lock:
            value = max(self._clock(), self._last.get(channel, 0) + 1)
            self._last[channel] = value
        digest = hashlib.md5(channel.encode("utf-8"), usedforsecurity=False).hexdigest()
        return f"{value:0{_WIDTH}d}-{digest[:_DIGEST_CHARS]}-{self._instance}"
