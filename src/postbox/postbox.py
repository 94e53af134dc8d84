"""Actor endpoint: messaging and RPC over filesystem mailboxes.

A ``Postbox`` is one actor's handle on the shared mailbox directory. It
sends messages, exposes methods to other actors, and issues calls to theirs.
Nothing runs in the background: incoming messages are only seen while the
owning process calls ``process`` (directly, through ``serve``, or while a
blocking ``call`` waits).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from postbox.config import PostboxConfig
from postbox.dispatch import (
    Dispatcher,
    MethodHandler,
    Observer,
    TagListener,
)
from postbox.exceptions import CallTimeoutError
from postbox.ids import SequenceIdGenerator, new_call_id
from postbox.messages import Call, Message, Outcome
from postbox.serialization import build_serializer
from postbox.store import MailboxStore

logger = logging.getLogger("postbox.postbox")


class Postbox:
    """Messaging and RPC endpoint for one actor id.

    Parameters
    ----------
    actor_id : str
        This endpoint's id. Exactly one process may own (and drain) a given
        id at a time.
    config : PostboxConfig | None
        Storage location, poll interval, default timeout and codec. Every
        process exchanging messages must agree on ``base_path`` and codec.

    Examples
    --------
    Service side:

    >>> svc = Postbox("svc", config)
    >>> svc.set_method("add", lambda a, b: a + b)
    >>> svc.serve()

    Client side:

    >>> client = Postbox("client", config)
    >>> client.call("svc", "add", 2, 3, timeout=5)
    5
    """

    def __init__(self, actor_id: str, config: PostboxConfig | None = None) -> None:
        self._id = actor_id
        self._config = config or PostboxConfig()
        self._store = MailboxStore(
            self._config.base_path,
            build_serializer(self._config.serialization),
        )
        self._dispatcher = Dispatcher(actor_id, self._store, SequenceIdGenerator())

    @property
    def id(self) -> str:
        return self._id

    @property
    def config(self) -> PostboxConfig:
        return self._config

    @property
    def store(self) -> MailboxStore:
        return self._store

    @property
    def pending_calls(self) -> int:
        """Number of issued calls whose ``Result`` has not been dispatched yet."""
        return self._dispatcher.pending_calls

    # -- messaging ---------------------------------------------------------

    def send(self, receiver_id: str, payload: Any) -> Message:
        """Deliver *payload* to *receiver_id*'s mailbox.

        Raises
        ------
        EncodeError
            If the payload cannot be serialized with the configured codec.
        StorageError
            If the message file cannot be written.
        """
        return self._dispatcher.post(receiver_id, payload)

    def process(self, observer: Observer | None = None) -> int:
        """Drain this actor's mailbox once and dispatch every message.

        Must be called periodically by any actor expecting to receive
        anything. *observer*, if given, sees every raw ``Message`` first.

        Returns
        -------
        int
            Number of messages dispatched.
        """
        return self._dispatcher.process(observer)

    def serve(
        self,
        *,
        until: Callable[[], bool] | None = None,
        observer: Observer | None = None,
    ) -> None:
        """Pump ``process`` every ``poll_interval`` seconds.

        Runs until *until* returns true, or forever when it is ``None``.
        Sleeping is skipped while messages keep arriving.
        """
        logger.info("%s serving mailbox at %s", self._id, self._store.mailbox_path(self._id))
        while until is None or not until():
            if self.process(observer) == 0:
                time.sleep(self._config.poll_interval)

    # -- registration ------------------------------------------------------

    def set_method(self, name: str, handler: MethodHandler) -> None:
        """Expose *handler* to other actors' ``call`` under *name*."""
        self._dispatcher.set_method(name, handler)

    def remove_method(self, name: str) -> None:
        self._dispatcher.remove_method(name)

    def set_listener(self, tag: str, handler: TagListener) -> None:
        """Call ``handler(data, message)`` for every ``Tagged(tag, data)`` received."""
        self._dispatcher.set_listener(tag, handler)

    def remove_listener(self, tag: str) -> None:
        self._dispatcher.remove_listener(tag)

    def set_message_listener(self, handler: Observer) -> None:
        """Call ``handler(message)`` for every message received."""
        self._dispatcher.set_message_listener(handler)

    def remove_message_listener(self) -> None:
        self._dispatcher.remove_message_listener()

    # -- rpc ---------------------------------------------------------------

    def call(
        self,
        target_id: str,
        method: str,
        *args: Any,
        timeout: float | None = None,
    ) -> Any:
        """Call *method* on *target_id* and block until its result arrives.

        While waiting, this actor's own mailbox keeps being processed, so
        its methods and listeners stay responsive.

        Parameters
        ----------
        target_id : str
            Actor exposing the method.
        method : str
            Method name registered with ``set_method`` on the target.
        *args : Any
            Positional arguments for the remote handler.
        timeout : float | None
            Seconds to wait; ``config.default_timeout`` when ``None``.

        Returns
        -------
        Any
            The remote handler's return value.

        Raises
        ------
        CallTimeoutError
            If no result arrived in time. A result arriving later is dropped.
        MethodNotFoundError
            If the target has no such method.
        HandlerFailureError
            If the remote handler raised.
        """
        if timeout is None:
            timeout = self._config.default_timeout
        outcomes: list[Outcome] = []
        call = Call(new_call_id(), method, args)
        self._dispatcher.expect(call.id, outcomes.append)
        try:
            self.send(target_id, call)
            logger.debug("call %s -> %s.%s (timeout=%.1fs)", call.id, target_id, method, timeout)

            deadline = time.monotonic() + timeout
            while True:
                self.process()
                if outcomes:
                    return outcomes[0].unwrap()
                if time.monotonic() >= deadline:
                    raise CallTimeoutError(method, target_id, timeout)
                time.sleep(self._config.poll_interval)
        finally:
            self._dispatcher.forget(call.id)

    def call_async(
        self,
        target_id: str,
        method: str,
        *args: Any,
        callback: Callable[[Outcome], None] | None = None,
    ) -> str:
        """Call *method* on *target_id* without waiting.

        When *callback* is given it is invoked once with the ``Ok`` or
        ``Err`` outcome, from inside a later ``process`` call on this actor;
        ``outcome.unwrap()`` returns the value or raises like ``call`` does.
        Without a callback the result is discarded on arrival.

        Returns
        -------
        str
            Id of the issued ``Call``.
        """
        call = Call(new_call_id(), method, args)
        if callback is not None:
            self._dispatcher.expect(call.id, callback)
        try:
            self.send(target_id, call)
        except Exception:
            self._dispatcher.forget(call.id)
            raise
        logger.debug("call_async %s -> %s.%s", call.id, target_id, method)
        return call.id

    def cancel(self, call_id: str) -> bool:
        """Stop waiting for the result of an asynchronous call.

        Returns ``True`` if a callback was still registered.
        """
        return self._dispatcher.forget(call_id)

    def __repr__(self) -> str:
        return f"Postbox(id={self._id!r}, base_path={str(self._config.base_path)!r})"
