"""Exception hierarchy for postbox.

Storage and codec failures propagate to whichever operation touched the
mailbox. Failures while servicing someone else's ``Call`` never raise
locally; they travel back to the caller as an ``Err`` outcome and surface
there as a ``RemoteCallError``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from postbox.messages import Err


class PostboxError(Exception):
    """Base class for every error raised by postbox."""


class StorageError(PostboxError):
    """A mailbox file could not be written, read, or deleted."""


class CodecError(PostboxError):
    """An envelope could not be converted to or from bytes."""


class EncodeError(CodecError):
    """An outgoing envelope could not be serialized."""


class DecodeError(CodecError):
    """A stored envelope could not be deserialized."""


class CallTimeoutError(PostboxError, TimeoutError):
    """A blocking ``call`` did not see its result before the deadline.

    Parameters
    ----------
    method : str
        Name of the remote method that was called.
    target : str
        Actor id the call was sent to.
    timeout : float
        Seconds the caller waited.
    """

    def __init__(self, method: str, target: str, timeout: float) -> None:
        self.method = method
        self.target = target
        self.timeout = timeout
        super().__init__(
            f"Call to {target!r}.{method}() timed out after {timeout:.2f}s"
        )


class RemoteCallError(PostboxError):
    """The remote side answered a ``Call`` with an ``Err`` outcome.

    Parameters
    ----------
    error : Err
        The error outcome as delivered in the ``Result``.
    """

    def __init__(self, error: Err) -> None:
        self.error = error
        super().__init__(error.message)


class MethodNotFoundError(RemoteCallError):
    """The target has no handler registered under the called method name."""


class HandlerFailureError(RemoteCallError):
    """The target's method handler raised while servicing the call."""
