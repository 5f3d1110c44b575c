"""Declaration tree produced by the parser, one per schema file.

Type references are kept as written in the source; they are resolved later
by the linker.
"""

from dataclasses import dataclass, field
from typing import Any

from dataclasses_json import DataClassJsonMixin


@dataclass
class ProtoConstant(DataClassJsonMixin):
    """A literal value used by an option.

    kind is one of "int", "float", "ident", "string" or "aggregate". String
    values are decoded with surrogateescape so the raw bytes survive.
    """

    kind: str
    value: Any
    line: int | None = None
    column: int | None = None

    def as_bytes(self) -> bytes:
        return str(self.value).encode("utf-8", "surrogateescape")


@dataclass
class ProtoOption(DataClassJsonMixin):
    """Represents `name = value` in an option statement or option list."""

    name: str
    value: ProtoConstant
    line: int | None = None
    column: int | None = None


@dataclass
class ProtoField(DataClassJsonMixin):
    """Represents a field declaration.

    For maps, type_name is empty and map_key/map_value carry the entry types.
    For groups, type_name names the nested message holding the group body.
    """

    name: str
    number: int
    type_name: str
    label: str | None
    options: list[ProtoOption] = field(default_factory=list)
    oneof: str | None = None
    is_group: bool = False
    map_key: str | None = None
    map_value: str | None = None
    line: int | None = None
    column: int | None = None
    type_line: int | None = None
    type_column: int | None = None

    def option(self, name: str) -> ProtoOption | None:
        for opt in self.options:
            if opt.name == name:
                return opt
        return None

    def type_position(self) -> tuple[int | None, int | None]:
        """Where the type reference was written, falling back to the field name."""
        if self.type_line is None:
            return self.line, self.column
        return self.type_line, self.type_column


@dataclass
class ProtoEnumValue(DataClassJsonMixin):
    name: str
    number: int
    options: list[ProtoOption] = field(default_factory=list)
    line: int | None = None
    column: int | None = None


@dataclass
class ProtoEnum(DataClassJsonMixin):
    name: str
    values: list[ProtoEnumValue] = field(default_factory=list)
    options: list[ProtoOption] = field(default_factory=list)
    reserved_ranges: list[tuple[int, int | None]] = field(default_factory=list)
    reserved_names: list[str] = field(default_factory=list)
    line: int | None = None
    column: int | None = None


@dataclass
class ProtoExtend(DataClassJsonMixin):
    """Represents `extend Extendee { ... }`."""

    extendee: str
    fields: list[ProtoField] = field(default_factory=list)
    line: int | None = None
    column: int | None = None


@dataclass
class ProtoMessage(DataClassJsonMixin):
    """Represents a message type definition.

    Fields are in declaration order, including those inside oneofs. Range
    ends of None mean "max".
    """

    name: str
    fields: list[ProtoField] = field(default_factory=list)
    messages: list["ProtoMessage"] = field(default_factory=list)
    enums: list[ProtoEnum] = field(default_factory=list)
    extends: list[ProtoExtend] = field(default_factory=list)
    oneofs: list[str] = field(default_factory=list)
    options: list[ProtoOption] = field(default_factory=list)
    extension_ranges: list[tuple[int, int | None]] = field(default_factory=list)
    reserved_ranges: list[tuple[int, int | None]] = field(default_factory=list)
    reserved_names: list[str] = field(default_factory=list)
    is_map_entry: bool = False
    line: int | None = None
    column: int | None = None


@dataclass
class ProtoMethod(DataClassJsonMixin):
    name: str
    input_type: str
    output_type: str
    client_streaming: bool = False
    server_streaming: bool = False
    options: list[ProtoOption] = field(default_factory=list)
    line: int | None = None
    column: int | None = None


@dataclass
class ProtoService(DataClassJsonMixin):
    name: str
    methods: list[ProtoMethod] = field(default_factory=list)
    options: list[ProtoOption] = field(default_factory=list)
    line: int | None = None
    column: int | None = None


@dataclass
class ProtoImport(DataClassJsonMixin):
    """Represents an import; modifier is None, "public" or "weak"."""

    path: str
    modifier: str | None = None
    line: int | None = None
    column: int | None = None


@dataclass
class ProtoFile(DataClassJsonMixin):
    """Represents a complete schema file."""

    name: str
    syntax: str = "proto2"
    package: str | None = None
    imports: list[ProtoImport] = field(default_factory=list)
    messages: list[ProtoMessage] = field(default_factory=list)
    enums: list[ProtoEnum] = field(default_factory=list)
    services: list[ProtoService] = field(default_factory=list)
    extends: list[ProtoExtend] = field(default_factory=list)
    options: list[ProtoOption] = field(default_factory=list)


SCALAR_TYPES = frozenset(
    [
        "double",
        "float",
        "int32",
        "int64",
        "uint32",
        "uint64",
        "sint32",
        "sint64",
        "fixed32",
        "fixed64",
        "sfixed32",
        "sfixed64",
        "bool",
        "string",
        "bytes",
    ]
)

MAP_KEY_TYPES = SCALAR_TYPES - {"double", "float", "bytes"}


def scalar_types() -> list[str]:
    """Return a list of scalar type keywords."""
    return sorted(SCALAR_TYPES)


def is_scalar(type_name: str) -> bool:
    """Check if a type reference names a built-in scalar type."""
    return type_name in SCALAR_TYPES
