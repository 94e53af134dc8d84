from __future__ import annotations

import logging
import pickle
from pathlib import Path

import pytest

from conftest import Greet
from postbox.exceptions import EncodeError, StorageError
from postbox.ids import SequenceIdGenerator, channel_key
from postbox.messages import Message
from postbox.routing import mailbox_name
from postbox.serialization import JsonSerializer
from postbox.store import MailboxStore

_ids = SequenceIdGenerator()


class _BrokenState:
    """Pickles fine, but raises when unpickled."""

    def __init__(self) -> None:
        self.value = 1

    def __setstate__(self, state: object) -> None:
        msg = "bad state"
        raise RuntimeError(msg)


def _message(payload: object, sender: str = "client", receiver: str = "svc") -> Message:
    return Message(
        id=_ids.next(channel_key(sender, receiver)),
        sender=sender,
        receiver=receiver,
        payload=payload,
        created_at=0.0,
    )


# ---------------------------------------------------------------------------
# enqueue
# ---------------------------------------------------------------------------


class TestEnqueue:
    def test_writes_one_file_named_by_message_id(self, store: MailboxStore) -> None:
        message = _message("hello")
        store.enqueue("svc", message)

        directory = store.base_path / mailbox_name("svc")
        assert [p.name for p in directory.iterdir()] == [message.id]

    def test_creates_base_path_lazily(self, tmp_path: Path) -> None:
        store = MailboxStore(tmp_path / "deep" / "root")
        store.enqueue("svc", _message(1))
        assert store.pending("svc") == 1

    def test_write_failure_raises_storage_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = MailboxStore(blocker)
        with pytest.raises(StorageError):
            store.enqueue("svc", _message("x"))

    def test_encode_failure_raises_and_writes_nothing(self, store: MailboxStore) -> None:
        with pytest.raises(EncodeError):
            store.enqueue("svc", _message(lambda: None))
        assert store.pending("svc") == 0


# ---------------------------------------------------------------------------
# drain
# ---------------------------------------------------------------------------


class TestDrain:
    @pytest.mark.parametrize(
        "payload",
        ["text", 0, None, [1, 2], {"k": "v"}, b"bytes", Greet("Ann")],
        ids=repr,
    )
    def test_send_then_drain_returns_exactly_that_payload(
        self, store: MailboxStore, payload: object
    ) -> None:
        store.enqueue("svc", _message(payload))
        drained = store.drain("svc")
        assert [m.payload for m in drained] == [payload]

    def test_drain_consumes(self, store: MailboxStore) -> None:
        store.enqueue("svc", _message("once"))
        assert len(store.drain("svc")) == 1
        assert store.drain("svc") == []
        assert store.pending("svc") == 0

    def test_missing_mailbox_is_empty(self, store: MailboxStore) -> None:
        assert store.drain("nobody") == []

    def test_sorted_by_message_id(self, store: MailboxStore) -> None:
        first, second, third = _message("A"), _message("B"), _message("C")
        for message in (third, first, second):
            store.enqueue("svc", message)
        assert [m.payload for m in store.drain("svc")] == ["A", "B", "C"]

    def test_two_sends_before_drain_are_both_delivered_in_order(
        self, store: MailboxStore
    ) -> None:
        store.enqueue("svc", _message("A"))
        store.enqueue("svc", _message("B"))
        assert [m.payload for m in store.drain("svc")] == ["A", "B"]

    def test_mailboxes_are_isolated(self, store: MailboxStore) -> None:
        store.enqueue("svc", _message("for svc"))
        store.enqueue("other", _message("for other", receiver="other"))
        assert [m.payload for m in store.drain("svc")] == ["for svc"]
        assert [m.payload for m in store.drain("other")] == ["for other"]

    def test_hidden_files_are_ignored(self, store: MailboxStore) -> None:
        message = _message("visible")
        store.enqueue("svc", message)
        directory = store.mailbox_path("svc")
        (directory / f".{message.id}.tmp").write_bytes(b"half-written")
        assert [m.payload for m in store.drain("svc")] == ["visible"]
        assert (directory / f".{message.id}.tmp").exists()

    def test_corrupt_file_is_quarantined_and_rest_delivered(
        self, store: MailboxStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        store.enqueue("svc", _message("good-1"))
        directory = store.mailbox_path("svc")
        (directory / "00000000000000000001-corrupt").write_bytes(b"\x00not a pickle")
        store.enqueue("svc", _message("good-2"))

        with caplog.at_level(logging.WARNING, logger="postbox.store"):
            drained = store.drain("svc")

        assert [m.payload for m in drained] == ["good-1", "good-2"]
        assert any("undecodable" in r.message for r in caplog.records)
        assert (directory / ".00000000000000000001-corrupt.corrupt").exists()
        assert store.pending("svc") == 0

    def test_non_message_file_is_quarantined(self, store: MailboxStore) -> None:
        directory = store.mailbox_path("svc")
        directory.mkdir(parents=True)
        (directory / "00000000000000000001-stray").write_bytes(pickle.dumps({"not": "a message"}))
        assert store.drain("svc") == []
        assert store.pending("svc") == 0

    def test_malformed_json_file_does_not_abort_drain(self, json_store: MailboxStore) -> None:
        json_store.enqueue("svc", _message("first"))
        directory = json_store.mailbox_path("svc")
        (directory / "00000000000000000001-malformed").write_bytes(b'{"__dict__": [[1]]}')
        json_store.enqueue("svc", _message("third"))

        assert [m.payload for m in json_store.drain("svc")] == ["first", "third"]
        assert json_store.pending("svc") == 0
        assert (directory / ".00000000000000000001-malformed.corrupt").exists()

    def test_payload_failing_to_restore_does_not_abort_drain(
        self, store: MailboxStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        store.enqueue("svc", _message("first"))
        poisoned = _message(_BrokenState())
        store.enqueue("svc", poisoned)
        store.enqueue("svc", _message("third"))

        with caplog.at_level(logging.WARNING, logger="postbox.store"):
            drained = store.drain("svc")

        assert [m.payload for m in drained] == ["first", "third"]
        assert store.pending("svc") == 0
        assert (store.mailbox_path("svc") / f".{poisoned.id}.corrupt").exists()
        assert any("RuntimeError" in r.message for r in caplog.records)
        assert store.drain("svc") == []

    def test_json_codec(self, json_store: MailboxStore) -> None:
        json_store.enqueue("svc", _message(Greet("json")))
        raw = next(json_store.mailbox_path("svc").iterdir()).read_bytes()
        assert b"conftest.Greet" in raw
        assert json_store.drain("svc")[0].payload == Greet("json")


@pytest.fixture
def json_store(tmp_path: Path) -> MailboxStore:
    return MailboxStore(tmp_path / "json-ipc", JsonSerializer())


# ---------------------------------------------------------------------------
# peek / pending / purge
# ---------------------------------------------------------------------------


class TestInspection:
    def test_peek_does_not_consume(self, store: MailboxStore) -> None:
        store.enqueue("svc", _message("A"))
        store.enqueue("svc", _message("B"))
        assert [m.payload for m in store.peek("svc")] == ["A", "B"]
        assert store.pending("svc") == 2
        assert [m.payload for m in store.drain("svc")] == ["A", "B"]

    def test_peek_leaves_corrupt_file_in_place(self, store: MailboxStore) -> None:
        directory = store.mailbox_path("svc")
        directory.mkdir(parents=True)
        (directory / "00000000000000000001-corrupt").write_bytes(b"junk")
        assert store.peek("svc") == []
        assert store.pending("svc") == 1

    def test_purge(self, store: MailboxStore) -> None:
        for i in range(3):
            store.enqueue("svc", _message(i))
        assert store.purge("svc") == 3
        assert store.pending("svc") == 0
        assert store.purge("svc") == 0

    def test_purge_removes_quarantined_files(self, store: MailboxStore) -> None:
        store.enqueue("svc", _message("delivered"))
        directory = store.mailbox_path("svc")
        (directory / "00000000000000000001-corrupt").write_bytes(b"junk")
        (directory / ".in-flight.tmp").write_bytes(b"half-written")
        assert [m.payload for m in store.drain("svc")] == ["delivered"]
        assert (directory / ".00000000000000000001-corrupt.corrupt").exists()

        assert store.purge("svc") == 1
        assert sorted(p.name for p in directory.iterdir()) == [".in-flight.tmp"]
