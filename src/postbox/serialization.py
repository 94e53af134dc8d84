"""Envelope serialization for mailbox files.

Provides the ``Serializer`` protocol and concrete implementations
(``PickleSerializer``, ``JsonSerializer``, ``MsgpackSerializer``), plus
``TypeRegistry`` for mapping between type names and Python classes.
Every implementation reports failures as ``EncodeError`` / ``DecodeError``.
"""

from __future__ import annotations

import base64
import dataclasses
import enum
import importlib
import json
import logging
import pickle
from typing import TYPE_CHECKING, Any, Protocol, cast, runtime_checkable

import msgpack

from postbox.exceptions import DecodeError, EncodeError

if TYPE_CHECKING:
    from postbox.config import SerializationConfig

logger = logging.getLogger("postbox.serialization")


class TypeRegistry:
    """Bidirectional mapping between fully-qualified type names and Python classes.

    Supports both explicit registration and auto-resolution via
    ``importlib``.

    Examples
    --------
    >>> from dataclasses import dataclass
    >>> @dataclass(frozen=True)
    ... class Ping:
    ...     value: int
    >>> registry = TypeRegistry()
    >>> registry.register(Ping)
    >>> registry.resolve(registry.type_name(Ping)) is Ping
    True
    """

    def __init__(self) -> None:
        self._name_to_type: dict[str, type] = {}
        self._type_to_name: dict[type, str] = {}

    def register(self, cls: type) -> None:
        name = f"{cls.__module__}.{cls.__qualname__}"
        self._name_to_type[name] = cls
        self._type_to_name[cls] = name

    def resolve(self, name: str) -> type:
        """Resolve a fully-qualified type name to a Python class.

        Falls back to auto-resolution via ``importlib`` if the name is
        not explicitly registered.

        Raises
        ------
        KeyError
            If the type cannot be resolved.
        """
        if name in self._name_to_type:
            return self._name_to_type[name]
        cls = self._auto_resolve(name)
        self.register(cls)
        return cls

    def type_name(self, cls: type) -> str:
        if cls not in self._type_to_name:
            self.register(cls)
        return self._type_to_name[cls]

    def _auto_resolve(self, name: str) -> type:
        parts = name.split(".")
        for i in range(len(parts) - 1, 0, -1):
            module_path = ".".join(parts[:i])
            attr_path = parts[i:]
            try:
                mod = importlib.import_module(module_path)
                obj: Any = mod
                for attr in attr_path:
                    obj = getattr(obj, attr)
                if isinstance(obj, type):
                    return obj
            except (ImportError, AttributeError):
                continue
        logger.warning("Failed to resolve type: %s", name)
        msg = f"Cannot resolve type: {name}"
        raise KeyError(msg)


@runtime_checkable
class Serializer(Protocol):
    """Protocol for envelope serialization and deserialization.

    Examples
    --------
    Minimal implementation:

    >>> class MySerializer:
    ...     def serialize(self, obj: object) -> bytes: ...
    ...     def deserialize(self, data: bytes) -> object: ...
    """

    def serialize(self, obj: Any) -> bytes: ...

    def deserialize(self, data: bytes) -> Any: ...


class PickleSerializer:
    """Pickle-based serializer using protocol 5.

    The default: it carries arbitrary Python payloads, including classes
    that are not dataclasses. Only suitable when every process sharing the
    mailbox directory is trusted.

    Examples
    --------
    >>> ser = PickleSerializer()
    >>> ser.deserialize(ser.serialize({"key": "value"}))
    {'key': 'value'}
    """

    def serialize(self, obj: Any) -> bytes:
        try:
            return pickle.dumps(obj, protocol=5)
        except (pickle.PicklingError, TypeError, AttributeError) as exc:
            msg = f"Cannot pickle {type(obj).__name__}: {exc}"
            raise EncodeError(msg) from exc

    def deserialize(self, data: bytes) -> Any:
        try:
            return pickle.loads(data)  # noqa: S301
        except (
            pickle.UnpicklingError,
            EOFError,
            AttributeError,
            ImportError,
            IndexError,
            KeyError,
            MemoryError,
            OverflowError,
            RecursionError,
            TypeError,
            ValueError,
        ) as exc:
            msg = f"Cannot unpickle {len(data)} bytes: {exc}"
            raise DecodeError(msg) from exc


class _Converter:
    """Recursive conversion between Python objects and plain data trees.

    Dataclasses are tagged with their registered type name; enums, tuples,
    frozensets and dicts with non-string keys get marker objects so they
    survive formats that only know maps and arrays.
    """

    def __init__(self, registry: TypeRegistry, *, binary: bool) -> None:
        self._registry = registry
        self._binary = binary

    def to_data(self, value: Any) -> object:
        match value:
            case enum.Enum():
                enum_cls = type(value)
                return {
                    "__enum__": f"{enum_cls.__module__}.{enum_cls.__qualname__}",
                    "value": value.name,
                }
            case bytes() if not self._binary:
                return {"__bytes__": base64.b64encode(value).decode("ascii")}
            case frozenset():
                return {
                    "__frozenset__": [
                        self.to_data(item) for item in cast(frozenset[object], value)
                    ]
                }
            case _ if dataclasses.is_dataclass(value) and not isinstance(value, type):
                type_name = self._registry.type_name(type(value))
                result: dict[str, object] = {"_type": type_name}
                for f in dataclasses.fields(value):
                    result[f.name] = self.to_data(getattr(value, f.name))
                return result
            case dict():
                return {
                    "__dict__": [
                        [self.to_data(k), self.to_data(v)]
                        for k, v in cast(dict[object, object], value).items()
                    ]
                }
            case list():
                return [self.to_data(item) for item in cast(list[object], value)]
            case tuple():
                return {
                    "__tuple__": [
                        self.to_data(item) for item in cast(tuple[object, ...], value)
                    ]
                }
            case _:
                return value

    def from_data(self, value: object) -> Any:
        match value:
            case {"__enum__": str() as enum_type_name, "value": str() as member_name}:
                enum_cls = self._registry.resolve(enum_type_name)
                return enum_cls[member_name]  # type: ignore[index]
            case {"__bytes__": str() as encoded}:
                return base64.b64decode(encoded)
            case {"__frozenset__": list() as items}:
                return frozenset(self.from_data(item) for item in items)
            case {"__dict__": list() as pairs}:
                return {
                    self.from_data(pair[0]): self.from_data(pair[1])
                    for pair in cast(list[list[object]], pairs)
                }
            case {"__tuple__": list() as items}:
                return tuple(self.from_data(item) for item in items)
            case {"_type": str() as type_name}:
                cls = self._registry.resolve(type_name)
                str_dict = cast(dict[str, object], value)
                kwargs: dict[str, Any] = {
                    f.name: self.from_data(str_dict[f.name])
                    for f in dataclasses.fields(cls)
                    if f.name in str_dict
                }
                return cls(**kwargs)
            case dict():
                return cast(dict[str, object], value)
            case list():
                return [self.from_data(item) for item in cast(list[object], value)]
            case _:
                return value


class JsonSerializer:
    """JSON-based serializer with recursive handling of dataclasses.

    Human-readable mailbox files, at the cost of only carrying dataclasses,
    enums and the JSON-representable builtins (``bytes`` is base64-encoded).

    Parameters
    ----------
    registry : TypeRegistry | None
        Registry for resolving type names.

    Examples
    --------
    >>> ser = JsonSerializer()
    >>> ser.deserialize(ser.serialize({"key": (1, 2)}))
    {'key': (1, 2)}
    """

    def __init__(self, registry: TypeRegistry | None = None) -> None:
        self._registry = registry or TypeRegistry()
        self._converter = _Converter(self._registry, binary=False)

    @property
    def registry(self) -> TypeRegistry:
        return self._registry

    def serialize(self, obj: Any) -> bytes:
        try:
            return json.dumps(self._converter.to_data(obj)).encode("utf-8")
        except (TypeError, ValueError) as exc:
            msg = f"Cannot encode {type(obj).__name__} as JSON: {exc}"
            raise EncodeError(msg) from exc

    def deserialize(self, data: bytes) -> Any:
        try:
            payload: object = json.loads(data.decode("utf-8"))
            return self._converter.from_data(payload)
        except (
            UnicodeDecodeError,
            IndexError,
            KeyError,
            RecursionError,
            TypeError,
            ValueError,
        ) as exc:
            msg = f"Cannot decode JSON envelope: {exc}"
            raise DecodeError(msg) from exc


class MsgpackSerializer:
    """MessagePack serializer with structured type handling.

    Reuses the same recursive conversion as ``JsonSerializer`` but encodes
    to MessagePack binary format, giving compact files with native
    ``bytes`` support.

    Examples
    --------
    >>> ser = MsgpackSerializer()
    >>> ser.deserialize(ser.serialize({"key": b"raw"}))
    {'key': b'raw'}
    """

    def __init__(self, registry: TypeRegistry | None = None) -> None:
        self._registry = registry or TypeRegistry()
        self._converter = _Converter(self._registry, binary=True)

    @property
    def registry(self) -> TypeRegistry:
        return self._registry

    def serialize(self, obj: Any) -> bytes:
        try:
            return msgpack.packb(self._converter.to_data(obj), use_bin_type=True)
        except (TypeError, ValueError, OverflowError) as exc:
            msg = f"Cannot encode {type(obj).__name__} as msgpack: {exc}"
            raise EncodeError(msg) from exc

    def deserialize(self, data: bytes) -> Any:
        try:
            payload: object = msgpack.unpackb(data, raw=False, strict_map_key=False)
            return self._converter.from_data(payload)
        except (
            msgpack.exceptions.UnpackException,
            IndexError,
            KeyError,
            RecursionError,
            TypeError,
            ValueError,
        ) as exc:
            msg = f"Cannot decode msgpack envelope: {exc}"
            raise DecodeError(msg) from exc


def build_serializer(config: SerializationConfig) -> Serializer:
    """Create the serializer named by *config*.

    Examples
    --------
    >>> from postbox.config import SerializationConfig
    >>> build_serializer(SerializationConfig(serializer="json"))
    <postbox.serialization.JsonSerializer object at ...>
    """
    match config.serializer:
        case "pickle":
            return PickleSerializer()
        case "json":
            return JsonSerializer()
        case "msgpack":
            return MsgpackSerializer()
        case other:
            msg = f"Unknown serializer: {other!r}"
            raise ValueError(msg)
