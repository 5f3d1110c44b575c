"""Two-pass name resolution over parsed schema files.

Pass 1 (declare) registers the fully qualified name of every message, enum,
service and method as each file is loaded, and records fields and extensions
as deferred references. Pass 2 (link) resolves those references once every
file is known, computes defaults and packed flags, and freezes the result into
DescriptorTables.
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum, auto
from types import MappingProxyType
from typing import Any

from ..descriptors.types import (
    INTEGER_RANGES,
    PACKABLE_TYPES,
    SCALAR_FIELD_TYPES,
    DescriptorTables,
    EnumRecord,
    EnumValueRecord,
    FieldRecord,
    FieldType,
    Label,
    MessageRecord,
    MethodRecord,
    Syntax,
)
from .diagnostics import DiagnosticKind, DiagnosticReporter
from .types import (
    ProtoConstant,
    ProtoEnum,
    ProtoEnumValue,
    ProtoExtend,
    ProtoField,
    ProtoFile,
    ProtoImport,
    ProtoMessage,
    ProtoMethod,
    ProtoService,
)

logger = logging.getLogger(__name__)

MAX_FIELD_NUMBER = 2**29 - 1
MAX_ENUM_NUMBER = 2**31 - 1
MIN_ENUM_NUMBER = -(2**31)
RESERVED_FIELD_NUMBERS = range(19000, 20000)


class SymbolKind(StrEnum):
    PACKAGE = auto()
    MESSAGE = auto()
    ENUM = auto()
    SERVICE = auto()
    METHOD = auto()


@dataclass
class FileScope:
    """Package, syntax and imports of one loaded file."""

    name: str
    syntax: Syntax
    package: str
    imports: list[ProtoImport]


@dataclass
class _Symbol:
    kind: SymbolKind
    full_name: str
    file: str | None
    index: int = -1


@dataclass
class _PendingField:
    decl: ProtoField
    full_name: str
    scope: str
    file: FileScope
    owner: int | None
    extendee: str | None = None
    type: FieldType = FieldType.NONE
    type_name: str = ""
    message_type: int | None = None
    enum_type: int | None = None


@dataclass
class _PendingMessage:
    decl: ProtoMessage
    full_name: str
    file: FileScope
    parent: int | None
    fields: list[int] = field(default_factory=list)
    extensions: list[int] = field(default_factory=list)
    messages: list[int] = field(default_factory=list)
    enums: list[int] = field(default_factory=list)


@dataclass
class _PendingEnum:
    decl: ProtoEnum
    full_name: str
    file: FileScope
    parent: int | None
    values: list[ProtoEnumValue] = field(default_factory=list)


@dataclass
class _PendingMethod:
    decl: ProtoMethod
    full_name: str
    service: str
    file: FileScope


def _join(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name


def _in_ranges(number: int, ranges: list[tuple[int, int | None]], max_value: int) -> bool:
    for start, end in ranges:
        if start <= number <= (max_value if end is None else end):
            return True
    return False


def map_entry_name(field_name: str) -> str:
    """Return the synthesized entry message name for a map field."""
    parts = []
    upper_next = True
    for ch in field_name:
        if ch == "_":
            upper_next = True
        elif upper_next:
            parts.append(ch.upper())
            upper_next = False
        else:
            parts.append(ch)
    return "".join(parts) + "Entry"


def _describe(const: ProtoConstant) -> str:
    if const.kind == "string":
        return "a string"
    if const.kind == "aggregate":
        return "an aggregate value"
    return f"'{const.value}'"


def _flag(const: ProtoConstant) -> bool | None:
    if const.kind == "ident" and const.value in ("true", "false"):
        return const.value == "true"
    return None


class Linker:
    """Symbol table and deferred references for one pool build session."""

    def __init__(self, reporter: DiagnosticReporter):
        self.reporter = reporter
        self.files: dict[str, FileScope] = {}
        self._symbols: dict[str, _Symbol] = {}
        self._messages: list[_PendingMessage] = []
        self._fields: list[_PendingField] = []
        self._extensions: list[_PendingField] = []
        self._enums: list[_PendingEnum] = []
        self._methods: list[_PendingMethod] = []
        self._visible: dict[str, set[str]] = {}

    def _error(self, file: FileScope, line: int | None, column: int | None, message: str) -> None:
        self.reporter.error(DiagnosticKind.SEMANTIC, message, file.name, line, column)

    def _field_error(self, pf: _PendingField, message: str) -> None:
        self._error(pf.file, pf.decl.line, pf.decl.column, message)

    # Pass 1

    def declare(self, proto_file: ProtoFile) -> None:
        """Register every named declaration of a parsed file."""
        scope = FileScope(
            name=proto_file.name,
            syntax=Syntax(proto_file.syntax),
            package=proto_file.package or "",
            imports=proto_file.imports,
        )
        self.files[scope.name] = scope

        if scope.package:
            self._declare_package(scope)
        for message in proto_file.messages:
            self._declare_message(message, scope.package, None, scope)
        for enum in proto_file.enums:
            self._declare_enum(enum, scope.package, None, scope)
        for extend in proto_file.extends:
            self._declare_extend(extend, scope.package, scope)
        for service in proto_file.services:
            self._declare_service(service, scope)

        logger.debug("Declared %s (package %r)", scope.name, scope.package)

    def _register(
        self,
        full_name: str,
        kind: SymbolKind,
        file: FileScope,
        line: int | None,
        column: int | None,
        index: int = -1,
    ) -> bool:
        existing = self._symbols.get(full_name)
        if existing is not None:
            if existing.kind == SymbolKind.PACKAGE and kind == SymbolKind.PACKAGE:
                return True
            where = f" in '{existing.file}'" if existing.file else " as a package"
            self._error(file, line, column, f"'{full_name}' is already defined{where}")
            return False

        owner = None if kind == SymbolKind.PACKAGE else file.name
        self._symbols[full_name] = _Symbol(kind, full_name, owner, index)
        return True

    def _declare_package(self, file: FileScope) -> None:
        parts = file.package.split(".")
        for i in range(1, len(parts) + 1):
            self._register(".".join(parts[:i]), SymbolKind.PACKAGE, file, None, None)

    def _declare_message(
        self, decl: ProtoMessage, scope: str, parent: int | None, file: FileScope
    ) -> int | None:
        full_name = _join(scope, decl.name)
        index = len(self._messages)
        if not self._register(full_name, SymbolKind.MESSAGE, file, decl.line, decl.column, index):
            return None

        entry = _PendingMessage(decl, full_name, file, parent)
        self._messages.append(entry)
        if parent is not None:
            self._messages[parent].messages.append(index)

        for nested_enum in decl.enums:
            self._declare_enum(nested_enum, full_name, index, file)
        for nested in decl.messages:
            self._declare_message(nested, full_name, index, file)

        numbers: dict[int, str] = {}
        for field_decl in decl.fields:
            if not self._check_field(field_decl, entry, numbers):
                continue
            if field_decl.map_key is not None:
                field_decl = self._declare_map_entry(field_decl, entry, index)
                if field_decl is None:
                    continue
            self._fields.append(
                _PendingField(field_decl, _join(full_name, field_decl.name), full_name, file, index)
            )
            entry.fields.append(len(self._fields) - 1)

        for extend in decl.extends:
            self._declare_extend(extend, full_name, file)

        return index

    def _check_field(
        self, decl: ProtoField, message: _PendingMessage, numbers: dict[int, str]
    ) -> bool:
        def reject(reason: str) -> bool:
            self._error(message.file, decl.line, decl.column, reason)
            return False

        number = decl.number
        if not 1 <= number <= MAX_FIELD_NUMBER:
            return reject(
                f"Field '{decl.name}' number {number} is out of range (1 to {MAX_FIELD_NUMBER})"
            )
        if number in RESERVED_FIELD_NUMBERS:
            return reject(
                f"Field '{decl.name}' number {number}: numbers 19000 through 19999 "
                "are reserved for the protocol buffer library implementation"
            )
        if _in_ranges(number, message.decl.reserved_ranges, MAX_FIELD_NUMBER):
            return reject(f"Field '{decl.name}' uses reserved number {number}")
        if decl.name in message.decl.reserved_names:
            return reject(f"Field name '{decl.name}' is reserved in '{message.full_name}'")
        if decl.name in numbers.values():
            return reject(f"Field '{decl.name}' is already defined in '{message.full_name}'")
        if number in numbers:
            return reject(
                f"Field number {number} has already been used in '{message.full_name}' "
                f"by field '{numbers[number]}'"
            )

        numbers[number] = decl.name
        return True

    def _declare_map_entry(
        self, decl: ProtoField, message: _PendingMessage, index: int
    ) -> ProtoField | None:
        entry_name = map_entry_name(decl.name)
        where = {"line": decl.line, "column": decl.column}
        entry = ProtoMessage(
            name=entry_name,
            fields=[
                ProtoField("key", 1, decl.map_key or "", "optional", **where),
                ProtoField(
                    "value",
                    2,
                    decl.map_value or "",
                    "optional",
                    **where,
                    type_line=decl.type_line,
                    type_column=decl.type_column,
                ),
            ],
            is_map_entry=True,
            line=decl.line,
            column=decl.column,
        )
        if self._declare_message(entry, message.full_name, index, message.file) is None:
            return None

        return ProtoField(
            name=decl.name,
            number=decl.number,
            type_name=entry_name,
            label="repeated",
            options=decl.options,
            line=decl.line,
            column=decl.column,
        )

    def _enum_value_problem(
        self, value: ProtoEnumValue, entry: _PendingEnum, numbers: dict[int, str], allow_alias: bool
    ) -> str | None:
        decl = entry.decl
        if any(v.name == value.name for v in entry.values):
            return f"Enum value '{value.name}' is already defined in '{entry.full_name}'"
        if not MIN_ENUM_NUMBER <= value.number <= MAX_ENUM_NUMBER:
            return f"Enum value '{value.name}' number {value.number} is out of the int32 range"
        if _in_ranges(value.number, decl.reserved_ranges, MAX_ENUM_NUMBER):
            return f"Enum value '{value.name}' uses reserved number {value.number}"
        if value.name in decl.reserved_names:
            return f"Enum value name '{value.name}' is reserved in '{entry.full_name}'"
        if value.number in numbers and not allow_alias:
            return (
                f"'{value.name}' uses number {value.number} already used by "
                f"'{numbers[value.number]}' in '{entry.full_name}'; "
                "set option allow_alias = true to allow aliases"
            )
        return None

    def _declare_enum(
        self, decl: ProtoEnum, scope: str, parent: int | None, file: FileScope
    ) -> None:
        full_name = _join(scope, decl.name)
        index = len(self._enums)
        if not self._register(full_name, SymbolKind.ENUM, file, decl.line, decl.column, index):
            return

        allow_alias = any(opt.name == "allow_alias" and _flag(opt.value) for opt in decl.options)
        entry = _PendingEnum(decl, full_name, file, parent)
        numbers: dict[int, str] = {}
        for value in decl.values:
            problem = self._enum_value_problem(value, entry, numbers, allow_alias)
            if problem is not None:
                self._error(file, value.line, value.column, problem)
                continue
            numbers.setdefault(value.number, value.name)
            entry.values.append(value)

        if not entry.values:
            self._error(
                file, decl.line, decl.column, f"Enum '{full_name}' must contain at least one value"
            )

        self._enums.append(entry)
        if parent is not None:
            self._messages[parent].enums.append(index)

    def _declare_extend(self, decl: ProtoExtend, scope: str, file: FileScope) -> None:
        for field_decl in decl.fields:
            self._extensions.append(
                _PendingField(
                    field_decl,
                    _join(scope, field_decl.name),
                    scope,
                    file,
                    owner=None,
                    extendee=decl.extendee,
                )
            )

    def _declare_service(self, decl: ProtoService, file: FileScope) -> None:
        full_name = _join(file.package, decl.name)
        if not self._register(full_name, SymbolKind.SERVICE, file, decl.line, decl.column):
            return

        for method in decl.methods:
            method_name = _join(full_name, method.name)
            index = len(self._methods)
            where = (method.line, method.column)
            if self._register(method_name, SymbolKind.METHOD, file, *where, index):
                self._methods.append(_PendingMethod(method, method_name, full_name, file))

    # Pass 2

    def _visible_files(self, file: FileScope) -> set[str]:
        """The file itself, its direct imports, and public re-exports of those."""
        visible = {file.name}
        pending = []
        for imp in file.imports:
            visible.add(imp.path)
            pending.append(imp.path)

        while pending:
            imported = self.files.get(pending.pop())
            if imported is None:
                continue
            for imp in imported.imports:
                if imp.modifier == "public" and imp.path not in visible:
                    visible.add(imp.path)
                    pending.append(imp.path)

        return visible

    def _visible_symbol(self, full_name: str, visible: set[str] | None) -> _Symbol | None:
        symbol = self._symbols.get(full_name)
        if symbol is None:
            return None
        if visible is None or symbol.file is None or symbol.file in visible:
            return symbol
        return None

    def _lookup(self, name: str, scope: str, visible: set[str] | None) -> _Symbol | None:
        if name.startswith("."):
            return self._visible_symbol(name[1:], visible)

        # Innermost scope first, then each enclosing message and package.
        parts = scope.split(".") if scope else []
        while True:
            symbol = self._visible_symbol(".".join([*parts, name]), visible)
            if symbol is not None:
                return symbol
            if not parts:
                return None
            parts.pop()

    def resolve(
        self,
        name: str,
        scope: str,
        file: FileScope,
        line: int | None = None,
        column: int | None = None,
    ) -> _Symbol | None:
        """Resolve a type reference as seen from a scope in a file.

        Unresolved and invisible references are reported and yield None.
        """
        visible = self._visible.get(file.name)
        if visible is None:
            visible = self._visible[file.name] = self._visible_files(file)

        symbol = self._lookup(name, scope, visible)
        if symbol is not None:
            return symbol

        hidden = self._lookup(name, scope, None)
        if hidden is not None:
            self._error(
                file,
                line,
                column,
                f"'{name}' seems to be defined in '{hidden.file}', "
                f"which is not imported by '{file.name}'",
            )
        else:
            self._error(file, line, column, f"'{name}' is not defined")
        return None

    def _resolve_type(self, pf: _PendingField) -> None:
        decl = pf.decl
        scalar = SCALAR_FIELD_TYPES.get(decl.type_name)
        if scalar is not None:
            pf.type = scalar
            pf.type_name = decl.type_name
            return

        pf.type_name = decl.type_name
        symbol = self.resolve(decl.type_name, pf.scope, pf.file, *decl.type_position())
        if symbol is None:
            return

        if symbol.kind == SymbolKind.MESSAGE:
            pf.type = FieldType.GROUP if decl.is_group else FieldType.MESSAGE
            pf.message_type = symbol.index
        elif symbol.kind == SymbolKind.ENUM and not decl.is_group:
            pf.type = FieldType.ENUM
            pf.enum_type = symbol.index
        else:
            self._field_error(
                pf,
                f"'{decl.type_name}' is not a type (it is a {symbol.kind})",
            )
            return
        pf.type_name = symbol.full_name

    def _attach_extensions(self) -> list[_PendingField]:
        used: dict[int, dict[int, str]] = {}
        attached: list[_PendingField] = []

        for pf in self._extensions:
            decl = pf.decl
            symbol = self.resolve(pf.extendee or "", pf.scope, pf.file, decl.line, decl.column)
            if symbol is None:
                continue
            if symbol.kind != SymbolKind.MESSAGE:
                self._field_error(pf, f"'{pf.extendee}' is not a message type")
                continue

            target = self._messages[symbol.index]
            if symbol.index not in used:
                used[symbol.index] = {
                    self._fields[i].decl.number: self._fields[i].full_name for i in target.fields
                }
            numbers = used[symbol.index]

            if not _in_ranges(decl.number, target.decl.extension_ranges, MAX_FIELD_NUMBER):
                self._field_error(
                    pf,
                    f"'{target.full_name}' does not declare {decl.number} as an extension number",
                )
                continue
            if decl.number in numbers:
                self._field_error(
                    pf,
                    f"Extension number {decl.number} has already been used in "
                    f"'{target.full_name}' by '{numbers[decl.number]}'",
                )
                continue

            numbers[decl.number] = pf.full_name
            pf.owner = symbol.index
            target.extensions.append(len(self._fields) + len(attached))
            attached.append(pf)

        return attached

    def _default(self, pf: _PendingField, label: Label) -> tuple[bool, Any]:
        opt = pf.decl.option("default")
        if opt is None:
            return False, None

        def reject(reason: str) -> tuple[bool, Any]:
            self._error(pf.file, opt.line, opt.column, f"Field '{pf.full_name}': {reason}")
            return False, None

        if pf.file.syntax == Syntax.PROTO3:
            return reject("explicit default values are not allowed in proto3")
        if label == Label.REPEATED:
            return reject("repeated fields can't have default values")
        if pf.type in (FieldType.MESSAGE, FieldType.GROUP):
            return reject("message fields can't have default values")
        if pf.type == FieldType.NONE:
            return False, None

        try:
            return True, self._convert_default(pf, opt.value)
        except ValueError as exc:
            return reject(str(exc))

    def _convert_default(self, pf: _PendingField, const: ProtoConstant) -> Any:
        """Convert a default literal to the field's type.

        Enum defaults are returned as the value name.

        Raises:
            ValueError: when the literal does not match the field type.
        """
        ftype = pf.type
        type_name = ftype.type_name
        got = _describe(const)
        if ftype in INTEGER_RANGES:
            if const.kind != "int":
                raise ValueError(f"expected an integer default for {type_name}, got {got}")
            low, high = INTEGER_RANGES[ftype]
            if not low <= const.value <= high:
                raise ValueError(f"default value {const.value} is out of range for {type_name}")
            return const.value

        if ftype in (FieldType.FLOAT, FieldType.DOUBLE):
            if const.kind in ("int", "float"):
                return float(const.value)
            if const.kind == "ident" and const.value in ("inf", "nan"):
                return float(const.value)
            raise ValueError(f"expected a number default for {type_name}, got {got}")

        if ftype == FieldType.BOOL:
            flag = _flag(const)
            if flag is None:
                raise ValueError(f"expected true or false as bool default, got {got}")
            return flag

        if ftype in (FieldType.STRING, FieldType.BYTES):
            if const.kind != "string":
                raise ValueError(f"expected a string default for {type_name}, got {got}")
            if ftype == FieldType.BYTES:
                return const.as_bytes()
            try:
                return const.as_bytes().decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ValueError("string default is not valid UTF-8") from exc

        # Enum
        enum = self._enums[pf.enum_type] if pf.enum_type is not None else None
        if const.kind != "ident" or enum is None:
            raise ValueError(f"expected an enum value name as default, got {got}")
        if not any(v.name == const.value for v in enum.values):
            raise ValueError(f"enum type '{enum.full_name}' has no value named '{const.value}'")
        return const.value

    def _packed(self, pf: _PendingField, label: Label) -> bool:
        if label != Label.REPEATED or pf.type not in PACKABLE_TYPES:
            return False

        opt = pf.decl.option("packed")
        if opt is not None:
            flag = _flag(opt.value)
            if flag is not None:
                return flag
            self._error(
                pf.file,
                opt.line,
                opt.column,
                f"Field '{pf.full_name}': packed expects true or false, "
                f"got {_describe(opt.value)}",
            )
        return pf.file.syntax == Syntax.PROTO3

    def link(self) -> DescriptorTables:
        """Resolve every deferred reference and freeze the descriptor tables."""
        for pf in self._fields:
            self._resolve_type(pf)

        extensions = self._attach_extensions()
        for pf in extensions:
            self._resolve_type(pf)

        method_links = []
        for method in self._methods:
            decl = method.decl
            where = (decl.line, decl.column)
            ends = []
            for type_name in (decl.input_type, decl.output_type):
                symbol = self.resolve(type_name, method.service, method.file, *where)
                if symbol is not None and symbol.kind != SymbolKind.MESSAGE:
                    self._error(
                        method.file,
                        *where,
                        f"Method '{method.full_name}': '{type_name}' is not a message type",
                    )
                    symbol = None
                ends.append(symbol.index if symbol is not None else None)
            method_links.append(ends)

        tables = self._build(extensions, method_links)
        logger.info(
            "Linked %d messages, %d enums, %d methods from %d files",
            len(tables.messages),
            len(tables.enums),
            len(tables.methods),
            len(self.files),
        )
        return tables

    def _build(
        self, extensions: list[_PendingField], method_links: list[list[int | None]]
    ) -> DescriptorTables:
        enums: list[EnumRecord] = []
        enum_values: list[EnumValueRecord] = []
        for index, pe in enumerate(self._enums):
            scope = pe.full_name.rpartition(".")[0]
            value_ids = []
            by_number: dict[int, int] = {}
            by_name: dict[str, int] = {}
            for value in pe.values:
                value_id = len(enum_values)
                enum_values.append(
                    EnumValueRecord(value.name, _join(scope, value.name), value.number, index)
                )
                value_ids.append(value_id)
                by_number.setdefault(value.number, value_id)
                by_name[value.name] = value_id
            enums.append(
                EnumRecord(
                    name=pe.decl.name,
                    full_name=pe.full_name,
                    file=pe.file.name,
                    parent=pe.parent,
                    values=tuple(value_ids),
                    values_by_number=MappingProxyType(by_number),
                    values_by_name=MappingProxyType(by_name),
                )
            )

        fields: list[FieldRecord] = []
        for pf in self._fields + extensions:
            label = Label(pf.decl.label) if pf.decl.label else Label.OPTIONAL
            has_default, default = self._default(pf, label)
            if has_default and pf.type == FieldType.ENUM and pf.enum_type is not None:
                default = enums[pf.enum_type].values_by_name[default]
            fields.append(
                FieldRecord(
                    name=pf.decl.name,
                    full_name=pf.full_name,
                    number=pf.decl.number,
                    type=pf.type,
                    type_name=pf.type_name,
                    label=label,
                    packed=self._packed(pf, label),
                    has_default=has_default,
                    default=default,
                    containing_type=pf.owner,
                    message_type=pf.message_type,
                    enum_type=pf.enum_type,
                    oneof=pf.decl.oneof,
                    extension_scope=pf.scope if pf.extendee is not None else None,
                )
            )

        messages: list[MessageRecord] = []
        for pm in self._messages:
            by_number = {fields[i].number: i for i in pm.fields + pm.extensions}
            by_name = {fields[i].name: i for i in pm.fields}
            messages.append(
                MessageRecord(
                    name=pm.decl.name,
                    full_name=pm.full_name,
                    file=pm.file.name,
                    parent=pm.parent,
                    fields=tuple(pm.fields),
                    extensions=tuple(pm.extensions),
                    messages=tuple(pm.messages),
                    enums=tuple(pm.enums),
                    fields_by_number=MappingProxyType(by_number),
                    fields_by_name=MappingProxyType(by_name),
                    is_map_entry=pm.decl.is_map_entry,
                )
            )

        methods = [
            MethodRecord(
                name=pm.decl.name,
                full_name=pm.full_name,
                service=pm.service,
                input_type=input_type,
                output_type=output_type,
                client_streaming=pm.decl.client_streaming,
                server_streaming=pm.decl.server_streaming,
            )
            for pm, (input_type, output_type) in zip(self._methods, method_links, strict=True)
        ]

        return DescriptorTables(
            messages=tuple(messages),
            fields=tuple(fields),
            enums=tuple(enums),
            enum_values=tuple(enum_values),
            methods=tuple(methods),
            messages_by_name=MappingProxyType({m.full_name: i for i, m in enumerate(messages)}),
            enums_by_name=MappingProxyType({e.full_name: i for i, e in enumerate(enums)}),
            methods_by_name=MappingProxyType({m.full_name: i for i, m in enumerate(methods)}),
        )
