"""Descriptor records and handles.

Every descriptor lives in one of the pool's arenas (a tuple per kind) and is
addressed by a Handle. Records are frozen once the pool is finalized.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum, StrEnum, auto
from types import MappingProxyType
from typing import Any


class FieldType(IntEnum):
    """Wire-level field type; numbering matches the protobuf FieldType."""

    NONE = 0
    DOUBLE = 1
    FLOAT = 2
    INT64 = 3
    UINT64 = 4
    INT32 = 5
    FIXED64 = 6
    FIXED32 = 7
    BOOL = 8
    STRING = 9
    GROUP = 10
    MESSAGE = 11
    BYTES = 12
    UINT32 = 13
    ENUM = 14
    SFIXED32 = 15
    SFIXED64 = 16
    SINT32 = 17
    SINT64 = 18

    @property
    def type_name(self) -> str:
        return "" if self is FieldType.NONE else self.name.lower()


MAX_FIELD_TYPE = max(FieldType)

SCALAR_FIELD_TYPES: dict[str, FieldType] = {
    "double": FieldType.DOUBLE,
    "float": FieldType.FLOAT,
    "int64": FieldType.INT64,
    "uint64": FieldType.UINT64,
    "int32": FieldType.INT32,
    "fixed64": FieldType.FIXED64,
    "fixed32": FieldType.FIXED32,
    "bool": FieldType.BOOL,
    "string": FieldType.STRING,
    "bytes": FieldType.BYTES,
    "uint32": FieldType.UINT32,
    "sfixed32": FieldType.SFIXED32,
    "sfixed64": FieldType.SFIXED64,
    "sint32": FieldType.SINT32,
    "sint64": FieldType.SINT64,
}

# Repeated fields of these types may use packed encoding.
PACKABLE_TYPES = frozenset(SCALAR_FIELD_TYPES.values()) - {FieldType.STRING, FieldType.BYTES} | {
    FieldType.ENUM
}

INT32_TYPES = frozenset([FieldType.INT32, FieldType.SINT32, FieldType.SFIXED32])
INT64_TYPES = frozenset([FieldType.INT64, FieldType.SINT64, FieldType.SFIXED64])
UINT32_TYPES = frozenset([FieldType.UINT32, FieldType.FIXED32])
UINT64_TYPES = frozenset([FieldType.UINT64, FieldType.FIXED64])

INTEGER_RANGES: dict[FieldType, tuple[int, int]] = {
    **{t: (-(2**31), 2**31 - 1) for t in INT32_TYPES},
    **{t: (-(2**63), 2**63 - 1) for t in INT64_TYPES},
    **{t: (0, 2**32 - 1) for t in UINT32_TYPES},
    **{t: (0, 2**64 - 1) for t in UINT64_TYPES},
}


def field_type_name(field_type: int) -> str:
    """Return the keyword for a field type number, or "" if unknown."""
    try:
        return FieldType(field_type).type_name
    except ValueError:
        return ""


class Label(StrEnum):
    OPTIONAL = auto()
    REQUIRED = auto()
    REPEATED = auto()


class Syntax(StrEnum):
    PROTO2 = auto()
    PROTO3 = auto()


class HandleKind(StrEnum):
    MESSAGE = auto()
    FIELD = auto()
    ENUM = auto()
    ENUM_VALUE = auto()
    METHOD = auto()


@dataclass(frozen=True, slots=True)
class Handle:
    """Opaque reference to a descriptor owned by a pool.

    A handle is only valid for the pool and generation that issued it.
    """

    pool_id: int
    generation: int
    kind: HandleKind
    index: int


@dataclass(frozen=True, slots=True)
class MessageRecord:
    name: str
    full_name: str
    file: str
    parent: int | None
    fields: tuple[int, ...]
    extensions: tuple[int, ...]
    messages: tuple[int, ...]
    enums: tuple[int, ...]
    fields_by_number: Mapping[int, int]
    fields_by_name: Mapping[str, int]
    is_map_entry: bool = False


@dataclass(frozen=True, slots=True)
class FieldRecord:
    """A field or extension.

    message_type and enum_type are arena indexes and are only set when the
    type reference was resolved. default is meaningful only when has_default.
    """

    name: str
    full_name: str
    number: int
    type: FieldType
    type_name: str
    label: Label
    packed: bool
    has_default: bool
    default: Any
    containing_type: int | None
    message_type: int | None = None
    enum_type: int | None = None
    oneof: str | None = None
    extension_scope: str | None = None


@dataclass(frozen=True, slots=True)
class EnumRecord:
    name: str
    full_name: str
    file: str
    parent: int | None
    values: tuple[int, ...]
    values_by_number: Mapping[int, int]
    values_by_name: Mapping[str, int]


@dataclass(frozen=True, slots=True)
class EnumValueRecord:
    name: str
    full_name: str
    number: int
    enum: int


@dataclass(frozen=True, slots=True)
class MethodRecord:
    name: str
    full_name: str
    service: str
    input_type: int | None
    output_type: int | None
    client_streaming: bool = False
    server_streaming: bool = False


@dataclass(frozen=True, slots=True)
class DescriptorTables:
    """The finalized arenas and name indexes of one pool generation."""

    messages: tuple[MessageRecord, ...]
    fields: tuple[FieldRecord, ...]
    enums: tuple[EnumRecord, ...]
    enum_values: tuple[EnumValueRecord, ...]
    methods: tuple[MethodRecord, ...]
    messages_by_name: Mapping[str, int]
    enums_by_name: Mapping[str, int]
    methods_by_name: Mapping[str, int]


_NO_NAMES: Mapping[str, int] = MappingProxyType({})

EMPTY_TABLES = DescriptorTables((), (), (), (), (), _NO_NAMES, _NO_NAMES, _NO_NAMES)
