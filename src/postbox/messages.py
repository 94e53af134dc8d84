"""Envelope and payload types exchanged through mailboxes.

``Message`` is the routing envelope stored as one file per delivery. Its
payload is either one of the protocol kinds (``Call``, ``Result``), a
``Tagged`` user payload routed to a listener by tag, or any other
serializable object that only observers and the catch-all listener see.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, NoReturn, TypeAlias

from postbox.exceptions import HandlerFailureError, MethodNotFoundError

ErrorKind: TypeAlias = Literal["method_not_found", "handler_failure"]


@dataclass(frozen=True)
class Message:
    """Routing envelope for one delivery.

    Parameters
    ----------
    id : str
        Unique, increasing id within the (sender, receiver) channel. Also the
        name of the file holding the message while it is pending.
    sender : str
        Actor id of the sender; ``Result`` replies are addressed here.
    receiver : str
        Actor id whose mailbox holds the message.
    payload : Any
        The delivered object.
    created_at : float
        Unix timestamp taken when the sender built the envelope.
    """

    id: str
    sender: str
    receiver: str
    payload: Any
    created_at: float


@dataclass(frozen=True)
class Call:
    """RPC request naming a method on the receiving actor."""

    id: str
    method: str
    args: tuple[Any, ...] = ()


@dataclass(frozen=True)
class Ok:
    """Successful outcome of a ``Call``."""

    value: Any = None

    def unwrap(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Err:
    """Failed outcome of a ``Call``.

    Parameters
    ----------
    kind : ErrorKind
        ``"method_not_found"`` or ``"handler_failure"``.
    message : str
        Human-readable description.
    error_type : str
        Class name of the exception raised by the remote handler, empty for
        ``method_not_found``.
    """

    kind: ErrorKind
    message: str
    error_type: str = ""

    def unwrap(self) -> NoReturn:
        """Raise the local exception matching this error's kind."""
        if self.kind == "method_not_found":
            raise MethodNotFoundError(self)
        raise HandlerFailureError(self)


Outcome: TypeAlias = Ok | Err


@dataclass(frozen=True)
class Result:
    """RPC response correlated to its ``Call`` by ``call_id``."""

    call_id: str
    outcome: Outcome = field(default_factory=Ok)


@dataclass(frozen=True)
class Tagged:
    """User payload routed to the listener registered for ``tag``.

    Examples
    --------
    >>> Tagged("price", {"symbol": "ACME", "bid": 10.5}).tag
    'price'
    """

    tag: str
    data: Any = None
