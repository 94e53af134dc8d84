from postbox.config import (
    PostboxConfig,
    SerializationConfig,
    discover_config,
    load_config,
)
from postbox.dispatch import CATCH_ALL, Dispatcher
from postbox.exceptions import (
    CallTimeoutError,
    CodecError,
    DecodeError,
    EncodeError,
    HandlerFailureError,
    MethodNotFoundError,
    PostboxError,
    RemoteCallError,
    StorageError,
)
from postbox.ids import SequenceIdGenerator, new_call_id
from postbox.messages import Call, Err, Message, Ok, Outcome, Result, Tagged
from postbox.postbox import Postbox
from postbox.routing import mailbox_name
from postbox.serialization import (
    JsonSerializer,
    MsgpackSerializer,
    PickleSerializer,
    Serializer,
    TypeRegistry,
    build_serializer,
)
from postbox.store import MailboxStore

__all__ = [
    "CATCH_ALL",
    "Call",
    "CallTimeoutError",
    "CodecError",
    "DecodeError",
    "Dispatcher",
    "EncodeError",
    "Err",
    "HandlerFailureError",
    "JsonSerializer",
    "MailboxStore",
    "Message",
    "MethodNotFoundError",
    "MsgpackSerializer",
    "Ok",
    "Outcome",
    "PickleSerializer",
    "Postbox",
    "PostboxConfig",
    "PostboxError",
    "RemoteCallError",
    "Result",
    "SequenceIdGenerator",
    "SerializationConfig",
    "Serializer",
    "StorageError",
    "Tagged",
    "TypeRegistry",
    "build_serializer",
    "discover_config",
    "load_config",
    "mailbox_name",
    "new_call_id",
]
