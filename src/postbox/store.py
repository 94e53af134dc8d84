"""Filesystem-backed mailboxes.

One directory per actor id (named by ``routing.mailbox_name``) and one file
per pending message (named by ``Message.id``). Any number of processes may
enqueue into a mailbox concurrently; exactly one process is expected to
drain it.

Files whose name starts with a dot are never drained: they are either
in-flight writes or quarantined entries that failed to decode. Quarantined
entries stay on disk for inspection until ``purge``.
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path

from postbox.exceptions import DecodeError, StorageError
from postbox.messages import Message
from postbox.routing import mailbox_name
from postbox.serialization import PickleSerializer, Serializer

logger = logging.getLogger("postbox.store")

_HIDDEN = "."
_CORRUPT_SUFFIX = ".corrupt"
_TEMP_SUFFIX = ".tmp"


class MailboxStore:
    """Enqueue and drain ``Message`` files under *base_path*.

    Parameters
    ----------
    base_path : Path
        Root directory shared by every participating process.
    serializer : Serializer | None
        Codec for message files. Defaults to ``PickleSerializer``.

    Examples
    --------
    >>> store = MailboxStore(Path("/tmp/ipc"))
    >>> store.enqueue("svc", message)
    >>> [m.payload for m in store.drain("svc")]
    ['hello']
    """

    def __init__(self, base_path: Path, serializer: Serializer | None = None) -> None:
        self._base_path = base_path
        self._serializer = serializer or PickleSerializer()

    @property
    def base_path(self) -> Path:
        return self._base_path

    def mailbox_path(self, actor_id: str) -> Path:
        return self._base_path / mailbox_name(actor_id)

    def enqueue(self, receiver_id: str, message: Message) -> None:
        """Write *message* into *receiver_id*'s mailbox.

        The envelope is written to a hidden temp file and renamed into
        place, so a concurrent drain never observes a partial file.

        Raises
        ------
        EncodeError
            If the envelope cannot be serialized.
        StorageError
            If the mailbox directory or file cannot be written.
        """
        data = self._serializer.serialize(message)
        directory = self.mailbox_path(receiver_id)
        target = directory / message.id
        temp_path = directory / f"{_HIDDEN}{message.id}{_TEMP_SUFFIX}"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            temp_path.write_bytes(data)
            temp_path.rename(target)
        except OSError as exc:
            with contextlib.suppress(OSError):
                temp_path.unlink(missing_ok=True)
            msg = f"Cannot write message {message.id} to mailbox of {receiver_id!r}: {exc}"
            raise StorageError(msg) from exc
        logger.debug("Enqueued %s -> %s (%d bytes)", message.id, receiver_id, len(data))

    def drain(self, actor_id: str) -> list[Message]:
        """Read and delete every pending message for *actor_id*.

        Each file is deleted only after it was read and decoded. Unreadable
        files are skipped and undecodable ones are quarantined; neither stops
        the rest of the batch.

        Returns
        -------
        list[Message]
            Decoded messages sorted by ``Message.id``, which restores send
            order within each sender→receiver channel.
        """
        messages: list[Message] = []
        for path in self._pending_files(actor_id):
            message = self._read(path)
            if message is None:
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning(
                    "Cannot delete %s after reading it, it may be delivered again: %s",
                    path, exc,
                )
            messages.append(message)
        messages.sort(key=lambda m: m.id)
        return messages

    def peek(self, actor_id: str) -> list[Message]:
        """Return pending messages for *actor_id* without consuming them."""
        messages = [
            message
            for path in self._pending_files(actor_id)
            if (message := self._read(path, quarantine=False)) is not None
        ]
        messages.sort(key=lambda m: m.id)
        return messages

    def pending(self, actor_id: str) -> int:
        """Return the number of messages waiting in *actor_id*'s mailbox."""
        return len(self._pending_files(actor_id))

    def purge(self, actor_id: str) -> int:
        """Delete every pending message for *actor_id* unread.

        Quarantined ``.corrupt`` files are removed as well. In-flight temp
        files are left alone.

        Returns
        -------
        int
            Number of files removed.
        """
        removed = 0
        for path in [*self._pending_files(actor_id), *self._quarantined_files(actor_id)]:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                msg = f"Cannot purge {path}: {exc}"
                raise StorageError(msg) from exc
            removed += 1
        if removed:
            logger.info("Purged %d file(s) from mailbox of %r", removed, actor_id)
        return removed

    def _pending_files(self, actor_id: str) -> list[Path]:
        return [p for p in self._entries(actor_id) if not p.name.startswith(_HIDDEN)]

    def _quarantined_files(self, actor_id: str) -> list[Path]:
        return [
            p
            for p in self._entries(actor_id)
            if p.name.startswith(_HIDDEN) and p.name.endswith(_CORRUPT_SUFFIX)
        ]

    def _entries(self, actor_id: str) -> list[Path]:
        directory = self.mailbox_path(actor_id)
        try:
            entries = list(directory.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            msg = f"Cannot list mailbox of {actor_id!r}: {exc}"
            raise StorageError(msg) from exc
        return entries

    def _read(self, path: Path, *, quarantine: bool = True) -> Message | None:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Skipping unreadable mailbox file %s: %s", path, exc)
            return None

        # Serializers are pluggable: whatever one raises counts as undecodable.
        try:
            message = self._serializer.deserialize(data)
            if not isinstance(message, Message):
                msg = f"Expected Message, got {type(message).__name__}"
                raise DecodeError(msg)
        except Exception as exc:
            logger.warning(
                "Skipping undecodable mailbox file %s: %s: %s", path, type(exc).__name__, exc,
            )
            if quarantine:
                self._quarantine(path)
            return None
        return message

    def _quarantine(self, path: Path) -> None:
        target = path.with_name(f"{_HIDDEN}{path.name}{_CORRUPT_SUFFIX}")
        try:
            path.rename(target)
        except OSError as exc:
            logger.warning("Cannot quarantine %s: %s", path, exc)
