"""Mailbox draining and message routing.

``Dispatcher.process`` drains one actor's mailbox and hands every message to
each interested party, in this order:

1. the observer passed to ``process`` (raw ``Message``),
2. the catch-all listener (raw ``Message``),
3. the listener registered for a ``Tagged`` payload's tag
   (``data``, ``Message``),
4. for a ``Call``, the method table; the outcome goes back to the sender as
   a ``Result``,
5. for a ``Result``, the one-shot correlation listener for its ``call_id``.

Steps 1-3 are not exclusive with 4-5. A method handler that raises produces
an ``Err`` outcome instead of unwinding out of ``process``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, TypeAlias

from postbox.exceptions import CodecError, StorageError
from postbox.ids import SequenceIdGenerator, channel_key
from postbox.messages import Call, Err, Message, Ok, Outcome, Result, Tagged
from postbox.store import MailboxStore

logger = logging.getLogger("postbox.dispatch")

CATCH_ALL = "*"

MethodHandler: TypeAlias = Callable[..., Any]
Observer: TypeAlias = Callable[[Message], None]
TagListener: TypeAlias = Callable[[Any, Message], None]
CorrelationListener: TypeAlias = Callable[[Outcome], None]


class Dispatcher:
    """Routes an actor's drained messages to its registered handlers.

    Parameters
    ----------
    actor_id : str
        Id of the actor owning the mailbox. Exactly one dispatcher per id
        may drain at a time.
    store : MailboxStore
        Storage for both draining and sending replies.
    ids : SequenceIdGenerator | None
        Message id source for outgoing messages.
    """

    def __init__(
        self,
        actor_id: str,
        store: MailboxStore,
        ids: SequenceIdGenerator | None = None,
    ) -> None:
        self._actor_id = actor_id
        self._store = store
        self._ids = ids or SequenceIdGenerator()
        self._methods: dict[str, MethodHandler] = {}
        self._listeners: dict[str, TagListener | Observer] = {}
        self._correlations: dict[str, CorrelationListener] = {}

    @property
    def actor_id(self) -> str:
        return self._actor_id

    @property
    def pending_calls(self) -> int:
        """Number of correlation listeners still waiting for a ``Result``."""
        return len(self._correlations)

    # -- registration ------------------------------------------------------

    def set_method(self, name: str, handler: MethodHandler) -> None:
        self._methods[name] = handler

    def remove_method(self, name: str) -> None:
        self._methods.pop(name, None)

    def set_listener(self, tag: str, handler: TagListener) -> None:
        """Subscribe *handler* to ``Tagged`` payloads carrying *tag*.

        Registering under ``CATCH_ALL`` is the same as
        ``set_message_listener``; that handler receives the raw ``Message``.
        """
        self._listeners[tag] = handler

    def remove_listener(self, tag: str) -> None:
        self._listeners.pop(tag, None)

    def set_message_listener(self, handler: Observer) -> None:
        self._listeners[CATCH_ALL] = handler

    def remove_message_listener(self) -> None:
        self._listeners.pop(CATCH_ALL, None)

    def expect(self, call_id: str, handler: CorrelationListener) -> None:
        """Register a one-shot listener for the ``Result`` of *call_id*."""
        self._correlations[call_id] = handler

    def forget(self, call_id: str) -> bool:
        """Drop the correlation listener for *call_id*, if still registered."""
        return self._correlations.pop(call_id, None) is not None

    # -- sending -----------------------------------------------------------

    def post(self, receiver_id: str, payload: Any) -> Message:
        """Wrap *payload* in a new ``Message`` and enqueue it for *receiver_id*."""
        message = Message(
            id=self._ids.next(channel_key(self._actor_id, receiver_id)),
            sender=self._actor_id,
            receiver=receiver_id,
            payload=payload,
            created_at=time.time(),
        )
        self._store.enqueue(receiver_id, message)
        return message

    # -- processing --------------------------------------------------------

    def process(self, observer: Observer | None = None) -> int:
        """Drain the mailbox once and dispatch every message.

        Returns
        -------
        int
            Number of messages dispatched.
        """
        messages = self._store.drain(self._actor_id)
        for message in messages:
            self._dispatch(message, observer)
        return len(messages)

    def _dispatch(self, message: Message, observer: Observer | None) -> None:
        payload = message.payload
        logger.debug(
            "%s <- %s: %s (%s)",
            self._actor_id, message.sender, type(payload).__name__, message.id,
        )

        if observer is not None:
            self._notify("observer", observer, message)

        catch_all = self._listeners.get(CATCH_ALL)
        if catch_all is not None:
            self._notify("catch-all listener", catch_all, message)

        match payload:
            case Tagged(tag=tag, data=data) if tag != CATCH_ALL and tag in self._listeners:
                self._notify(f"listener {tag!r}", self._listeners[tag], data, message)
            case Call():
                self._answer(message, payload)
            case Result(call_id=call_id, outcome=outcome):
                handler = self._correlations.pop(call_id, None)
                if handler is None:
                    logger.debug("Dropping result for unknown or expired call %s", call_id)
                else:
                    self._notify(f"result listener {call_id}", handler, outcome)
            case _:
                pass

    def _answer(self, message: Message, call: Call) -> None:
        handler = self._methods.get(call.method)
        outcome: Outcome
        if handler is None:
            logger.warning(
                "No method %r on %s (call from %s)",
                call.method, self._actor_id, message.sender,
            )
            outcome = Err("method_not_found", f"No such method: {call.method}")
        else:
            try:
                outcome = Ok(handler(*call.args))
            except Exception as exc:
                logger.warning(
                    "Method %r on %s raised %s: %s",
                    call.method, self._actor_id, type(exc).__name__, exc,
                )
                outcome = Err("handler_failure", str(exc), type(exc).__name__)

        try:
            self.post(message.sender, Result(call.id, outcome))
        except CodecError as exc:
            logger.error(
                "Cannot encode result of %r for %s, replying with failure: %s",
                call.method, message.sender, exc,
            )
            self._reply_unencodable(message, call, exc)
        except StorageError as exc:
            logger.error("Cannot deliver result of %r to %s: %s", call.method, message.sender, exc)

    def _reply_unencodable(self, message: Message, call: Call, exc: CodecError) -> None:
        error = Err("handler_failure", str(exc), type(exc).__name__)
        try:
            self.post(message.sender, Result(call.id, error))
        except (CodecError, StorageError) as retry_exc:
            logger.error("Cannot deliver result of %r to %s: %s", call.method, message.sender, retry_exc)

    def _notify(self, what: str, handler: Callable[..., Any], *args: Any) -> None:
        try:
            handler(*args)
        except Exception:
            logger.exception("%s on %s raised", what.capitalize(), self._actor_id)
