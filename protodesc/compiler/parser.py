"""Schema file parser using Lark."""

from dataclasses import dataclass
from typing import Any, TypeVar

from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedToken, VisitError
from lark.lexer import PatternStr
from lark.visitors import Transformer

from .diagnostics import LexicalError, ProtoError, ProtoSyntaxError
from .lexer import get_lark, lexical_error, parse_int, unescape
from .types import (
    MAP_KEY_TYPES,
    ProtoConstant,
    ProtoEnum,
    ProtoEnumValue,
    ProtoExtend,
    ProtoField,
    ProtoFile,
    ProtoImport,
    ProtoMessage,
    ProtoMethod,
    ProtoOption,
    ProtoService,
)

SYNTAXES = ("proto2", "proto3")


@dataclass
class _Name:
    value: str
    line: int | None
    column: int | None


@dataclass
class _Ident:
    value: str
    line: int | None
    column: int | None


@dataclass
class _Strings:
    value: bytes
    line: int | None
    column: int | None


@dataclass
class _Syntax:
    value: str
    line: int | None
    column: int | None


@dataclass
class _Package:
    value: str
    line: int | None
    column: int | None


@dataclass
class _Label:
    value: str


@dataclass
class _FieldNumber:
    value: int


@dataclass
class _FieldOptions:
    value: list[ProtoOption]


@dataclass
class _ImportModifier:
    value: str


@dataclass
class _Sign:
    value: str


@dataclass
class _Ranges:
    value: list[tuple[int, int | None]]


@dataclass
class _ExtensionRanges:
    value: list[tuple[int, int | None]]


@dataclass
class _ReservedNames:
    value: list[str]


@dataclass
class _Reserved:
    ranges: list[tuple[int, int | None]]
    names: list[str]


@dataclass
class _Oneof:
    name: str
    fields: list[ProtoField]


@dataclass
class _Group:
    field: ProtoField
    message: ProtoMessage


@dataclass
class _RpcType:
    value: str
    streaming: bool


class _LeadingDot:
    pass


class _Stream:
    pass


TFilter = TypeVar("TFilter", bound=object)


def _filter(args: list[Any], class_type: type[TFilter]) -> list[TFilter]:
    return [v for v in args if isinstance(v, class_type)]


def _find_one(args: list[Any], class_type: type[object], unwrap: bool = True) -> Any:
    filtered = _filter(args, class_type)
    if len(filtered) == 0:
        return None
    if len(filtered) > 1:
        raise RuntimeError(f"Found more than one {class_type}")

    if unwrap and hasattr(filtered[0], "value"):
        return filtered[0].value
    return filtered[0]


TMany = TypeVar("TMany")


def _find_many(args: list[Any], class_type: type[TMany]) -> list[TMany]:
    return _filter(args, class_type)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


def _plain(value: Any) -> Any:
    if isinstance(value, ProtoConstant):
        return value.value
    return value


def _build_message(name: _Name, items: list[Any]) -> ProtoMessage:
    message = ProtoMessage(name=name.value, line=name.line, column=name.column)

    for item in items:
        if isinstance(item, ProtoField):
            message.fields.append(item)
        elif isinstance(item, _Group):
            message.fields.append(item.field)
            message.messages.append(item.message)
        elif isinstance(item, _Oneof):
            message.oneofs.append(item.name)
            message.fields.extend(item.fields)
        elif isinstance(item, ProtoMessage):
            message.messages.append(item)
        elif isinstance(item, ProtoEnum):
            message.enums.append(item)
        elif isinstance(item, ProtoExtend):
            message.extends.append(item)
        elif isinstance(item, _ExtensionRanges):
            message.extension_ranges.extend(item.value)
        elif isinstance(item, _Reserved):
            message.reserved_ranges.extend(item.ranges)
            message.reserved_names.extend(item.names)
        elif isinstance(item, ProtoOption):
            message.options.append(item)

    return message


class TreeTransformer(Transformer):
    """Transform parse tree into declaration tree types."""

    def name(self, args: list[Any]) -> _Name:
        return _Name(value=str(args[0]), line=args[0].line, column=args[0].column)

    def leading_dot(self, _args: list[Any]) -> _LeadingDot:
        return _LeadingDot()

    def full_ident(self, args: list[Any]) -> _Ident:
        names = _find_many(args, _Name)
        prefix = "." if _find_many(args, _LeadingDot) else ""
        return _Ident(
            value=prefix + ".".join(n.value for n in names),
            line=names[0].line,
            column=names[0].column,
        )

    def strings(self, args: list[Any]) -> _Strings:
        data = bytearray()
        for tok in args:
            try:
                data.extend(unescape(str(tok)))
            except ValueError as exc:
                raise LexicalError(str(exc), None, tok.line, tok.column) from exc
        return _Strings(value=bytes(data), line=args[0].line, column=args[0].column)

    def sign(self, args: list[Any]) -> _Sign:
        return _Sign(value=str(args[0]))

    def number(self, args: list[Any]) -> ProtoConstant:
        sign = _find_one(args, _Sign) or ""
        tok = args[-1]

        if tok.type == "INT":
            value = parse_int(tok)
            return ProtoConstant("int", -value if sign == "-" else value, tok.line, tok.column)
        if tok.type == "FLOAT":
            return ProtoConstant("float", float(sign + tok), tok.line, tok.column)
        if tok in ("inf", "nan"):
            return ProtoConstant("float", float(sign + tok), tok.line, tok.column)
        return ProtoConstant("ident", sign + tok, tok.line, tok.column)

    def signed_int(self, args: list[Any]) -> int:
        value = parse_int(args[-1])
        return -value if len(args) == 2 else value

    def constant(self, args: list[Any]) -> ProtoConstant:
        item = args[0]
        if isinstance(item, _Ident):
            return ProtoConstant("ident", item.value, item.line, item.column)
        if isinstance(item, _Strings):
            return ProtoConstant("string", _decode(item.value), item.line, item.column)
        return item

    def aggregate(self, args: list[Any]) -> ProtoConstant:
        entries: dict[str, Any] = {}
        for key, value in args:
            if key not in entries:
                entries[key] = value
            elif isinstance(entries[key], list):
                entries[key].append(value)
            else:
                entries[key] = [entries[key], value]
        return ProtoConstant("aggregate", entries)

    def agg_field(self, args: list[Any]) -> tuple[str, Any]:
        return (args[0], _plain(args[1]))

    def agg_name(self, args: list[Any]) -> str:
        if isinstance(args[0], _Ident):
            return f"[{args[0].value}]"
        return args[0].value

    def agg_list(self, args: list[Any]) -> list[Any]:
        return [_plain(a) for a in args]

    def extension_name(self, args: list[Any]) -> _Name:
        return _Name(value=f"({args[0].value})", line=args[0].line, column=args[0].column)

    def option_name(self, args: list[Any]) -> _Name:
        return _Name(
            value=".".join(part.value for part in args),
            line=args[0].line,
            column=args[0].column,
        )

    def option_stmt(self, args: list[Any]) -> ProtoOption:
        name, value = args
        return ProtoOption(name=name.value, value=value, line=name.line, column=name.column)

    def field_option(self, args: list[Any]) -> ProtoOption:
        return self.option_stmt(args)

    def field_options(self, args: list[Any]) -> _FieldOptions:
        return _FieldOptions(value=list(args))

    def label(self, args: list[Any]) -> _Label:
        return _Label(value=str(args[0]))

    def field_number(self, args: list[Any]) -> _FieldNumber:
        return _FieldNumber(value=parse_int(args[0]))

    def field(self, args: list[Any]) -> ProtoField:
        name = _find_one(args, _Name, unwrap=False)
        type_ref = _find_one(args, _Ident, unwrap=False)
        return ProtoField(
            name=name.value,
            number=_find_one(args, _FieldNumber),
            type_name=type_ref.value,
            label=_find_one(args, _Label),
            options=_find_one(args, _FieldOptions) or [],
            line=name.line,
            column=name.column,
            type_line=type_ref.line,
            type_column=type_ref.column,
        )

    def oneof_field(self, args: list[Any]) -> ProtoField:
        return self.field(args)

    def map_field(self, args: list[Any]) -> ProtoField:
        key, value = _find_many(args, _Ident)
        name = _find_one(args, _Name, unwrap=False)
        return ProtoField(
            name=name.value,
            number=_find_one(args, _FieldNumber),
            type_name="",
            label=None,
            options=_find_one(args, _FieldOptions) or [],
            map_key=key.value,
            map_value=value.value,
            line=name.line,
            column=name.column,
            type_line=value.line,
            type_column=value.column,
        )

    def group(self, args: list[Any]) -> _Group:
        # label name number [options] body...
        name = args[1]
        body = [a for a in args[2:] if not isinstance(a, _FieldNumber | _FieldOptions)]
        field = ProtoField(
            name=name.value.lower(),
            number=_find_one(args, _FieldNumber),
            type_name=name.value,
            label=args[0].value,
            options=_find_one(args, _FieldOptions) or [],
            is_group=True,
            line=name.line,
            column=name.column,
        )
        return _Group(field=field, message=_build_message(name, body))

    def oneof(self, args: list[Any]) -> _Oneof:
        name = args[0].value
        fields = _find_many(args, ProtoField)
        for field in fields:
            field.oneof = name
        return _Oneof(name=name, fields=fields)

    def extend(self, args: list[Any]) -> ProtoExtend:
        extendee = args[0]
        return ProtoExtend(
            extendee=extendee.value,
            fields=_find_many(args, ProtoField),
            line=extendee.line,
            column=extendee.column,
        )

    def range(self, args: list[Any]) -> tuple[int, int | None]:
        if len(args) == 1:
            return (args[0], args[0])
        return (args[0], args[1])

    def range_max(self, args: list[Any]) -> tuple[int, int | None]:
        return (args[0], None)

    def ranges(self, args: list[Any]) -> _Ranges:
        return _Ranges(value=list(args))

    def reserved_names(self, args: list[Any]) -> _ReservedNames:
        return _ReservedNames(value=[_decode(s.value) for s in args])

    def reserved(self, args: list[Any]) -> _Reserved:
        return _Reserved(
            ranges=_find_one(args, _Ranges) or [],
            names=_find_one(args, _ReservedNames) or [],
        )

    def extensions(self, args: list[Any]) -> _ExtensionRanges:
        return _ExtensionRanges(value=_find_one(args, _Ranges))

    def message(self, args: list[Any]) -> ProtoMessage:
        return _build_message(args[0], args[1:])

    def enum_value_name(self, args: list[Any]) -> _Name:
        return self.name(args)

    def enum_value(self, args: list[Any]) -> ProtoEnumValue:
        name, number = args[0], args[1]
        return ProtoEnumValue(
            name=name.value,
            number=number,
            options=_find_one(args, _FieldOptions) or [],
            line=name.line,
            column=name.column,
        )

    def enum(self, args: list[Any]) -> ProtoEnum:
        name = args[0]
        reserved = _find_many(args, _Reserved)
        return ProtoEnum(
            name=name.value,
            values=_find_many(args, ProtoEnumValue),
            options=_find_many(args, ProtoOption),
            reserved_ranges=[r for item in reserved for r in item.ranges],
            reserved_names=[n for item in reserved for n in item.names],
            line=name.line,
            column=name.column,
        )

    def stream(self, _args: list[Any]) -> _Stream:
        return _Stream()

    def rpc_type(self, args: list[Any]) -> _RpcType:
        return _RpcType(
            value=_find_one(args, _Ident),
            streaming=bool(_find_many(args, _Stream)),
        )

    def rpc(self, args: list[Any]) -> ProtoMethod:
        name = args[0]
        input_type, output_type = _find_many(args, _RpcType)
        return ProtoMethod(
            name=name.value,
            input_type=input_type.value,
            output_type=output_type.value,
            client_streaming=input_type.streaming,
            server_streaming=output_type.streaming,
            options=_find_many(args, ProtoOption),
            line=name.line,
            column=name.column,
        )

    def service(self, args: list[Any]) -> ProtoService:
        name = args[0]
        return ProtoService(
            name=name.value,
            methods=_find_many(args, ProtoMethod),
            options=_find_many(args, ProtoOption),
            line=name.line,
            column=name.column,
        )

    def import_modifier(self, args: list[Any]) -> _ImportModifier:
        return _ImportModifier(value=str(args[0]))

    def import_stmt(self, args: list[Any]) -> ProtoImport:
        path = _find_one(args, _Strings, unwrap=False)
        return ProtoImport(
            path=_decode(path.value),
            modifier=_find_one(args, _ImportModifier),
            line=path.line,
            column=path.column,
        )

    def package(self, args: list[Any]) -> _Package:
        return _Package(value=args[0].value, line=args[0].line, column=args[0].column)

    def syntax(self, args: list[Any]) -> _Syntax:
        value = _decode(args[0].value)
        if value not in SYNTAXES:
            raise ProtoSyntaxError(
                f'Unrecognized syntax identifier "{value}"; expected "proto2" or "proto3"',
                None,
                args[0].line,
                args[0].column,
            )
        return _Syntax(value=value, line=args[0].line, column=args[0].column)

    def start(self, args: list[Any]) -> ProtoFile:
        packages = _find_many(args, _Package)
        if len(packages) > 1:
            raise ProtoSyntaxError(
                "Multiple package definitions", None, packages[1].line, packages[1].column
            )

        return ProtoFile(
            name="",
            syntax=_find_one(args, _Syntax) or "proto2",
            package=packages[0].value if packages else None,
            imports=_find_many(args, ProtoImport),
            messages=_find_many(args, ProtoMessage),
            enums=_find_many(args, ProtoEnum),
            services=_find_many(args, ProtoService),
            extends=_find_many(args, ProtoExtend),
            options=_find_many(args, ProtoOption),
        )


_TERMINAL_NAMES = {
    "NAME": "identifier",
    "INT": "integer",
    "FLOAT": "number",
    "STRING": "string",
    "$END": "end of input",
}


def _describe_terminal(name: str) -> str:
    if name in _TERMINAL_NAMES:
        return _TERMINAL_NAMES[name]
    try:
        terminal = get_lark().get_terminal(name)
    except KeyError:
        return name
    if isinstance(terminal.pattern, PatternStr):
        return f"'{terminal.pattern.value}'"
    return name


def _syntax_error(exc: UnexpectedToken, filename: str) -> ProtoSyntaxError:
    if exc.token.type == "$END":
        found = "end of input"
    else:
        found = f"'{exc.token}'"
    expected = sorted(_describe_terminal(t) for t in exc.expected)
    message = f"Unexpected {found}"
    if expected:
        shown = ", ".join(expected[:8])
        message += f", expected {shown}" + (", ..." if len(expected) > 8 else "")
    return ProtoSyntaxError(message, filename, exc.line, exc.column)


def _relocate(err: ProtoError, filename: str) -> ProtoError:
    diag = err.diagnostic
    return type(err)(diag.message, filename, diag.line, diag.column)


def _validate_field(field: ProtoField, syntax: str, filename: str) -> None:
    if field.map_key is not None:
        if field.map_key not in MAP_KEY_TYPES:
            raise ProtoSyntaxError(
                f"Key in map field '{field.name}' cannot be {field.map_key}; "
                "use an integral or string type",
                filename,
                field.line,
                field.column,
            )
        return

    if field.oneof is not None:
        return

    if syntax == "proto2" and field.label is None:
        raise ProtoSyntaxError(
            f"Field '{field.name}' needs a label (optional, required or repeated) in proto2",
            filename,
            field.line,
            field.column,
        )
    if syntax == "proto3" and field.label == "required":
        raise ProtoSyntaxError(
            f"Field '{field.name}': required fields are not allowed in proto3",
            filename,
            field.line,
            field.column,
        )
    if syntax == "proto3" and field.is_group:
        raise ProtoSyntaxError(
            f"Group '{field.type_name}': groups are not supported in proto3",
            filename,
            field.line,
            field.column,
        )


def _validate_message(message: ProtoMessage, syntax: str, filename: str) -> None:
    for field in message.fields:
        _validate_field(field, syntax, filename)
    for extend in message.extends:
        for field in extend.fields:
            _validate_field(field, syntax, filename)
    for nested in message.messages:
        _validate_message(nested, syntax, filename)


def validate(proto_file: ProtoFile) -> None:
    """Check the syntax-level rules the grammar cannot express.

    Raises:
        ProtoSyntaxError: on the first violation found.
    """
    for message in proto_file.messages:
        _validate_message(message, proto_file.syntax, proto_file.name)
    for extend in proto_file.extends:
        for field in extend.fields:
            _validate_field(field, proto_file.syntax, proto_file.name)


def parse(text: str, filename: str = "<string>") -> ProtoFile:
    """Parse one schema file into its declaration tree.

    Raises:
        LexicalError: on an illegal character or malformed literal.
        ProtoSyntaxError: on a grammar violation.
    """
    try:
        tree = get_lark().parse(text)
        proto_file = TreeTransformer().transform(tree)
    except UnexpectedCharacters as exc:
        raise lexical_error(exc, filename) from exc
    except UnexpectedToken as exc:
        raise _syntax_error(exc, filename) from exc
    except UnexpectedEOF as exc:
        raise ProtoSyntaxError("Unexpected end of input", filename, exc.line, exc.column) from exc
    except VisitError as exc:
        if isinstance(exc.orig_exc, ProtoError):
            raise _relocate(exc.orig_exc, filename) from exc
        raise

    proto_file.name = filename
    validate(proto_file)

    return proto_file
