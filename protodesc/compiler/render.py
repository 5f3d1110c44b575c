"""Render linked messages back to schema text."""

import math
from typing import Any

from jinja2 import Environment, PackageLoader

from ..descriptors import query
from ..descriptors.pool import DescriptorPool
from ..descriptors.types import FieldType, Handle, HandleKind

env = Environment(
    loader=PackageLoader("protodesc.compiler", "templates"),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    line_comment_prefix="%%",
    line_statement_prefix="%",
)

template = env.get_template("message.proto.j2")


def _quote(value: str | bytes) -> str:
    data = value if isinstance(value, bytes) else value.encode("utf-8", "surrogateescape")
    out = []
    for byte in data:
        ch = chr(byte)
        if ch in "\"\\":
            out.append("\\" + ch)
        elif 0x20 <= byte < 0x7F:
            out.append(ch)
        else:
            out.append(f"\\{byte:03o}")
    return '"' + "".join(out) + '"'


def format_default(pool: DescriptorPool, field: Handle) -> str | None:
    """Return the explicit default of a field as a schema literal."""
    if not query.field_has_default_value(pool, field):
        return None

    ftype = query.field_type(pool, field)
    if ftype == FieldType.ENUM:
        value = query.field_default_value_enum(pool, field)
        return query.enum_value_name(pool, value) if value is not None else None

    default = pool.field(field).default
    if ftype == FieldType.BOOL:
        return "true" if default else "false"
    if ftype in (FieldType.STRING, FieldType.BYTES):
        return _quote(default)
    if isinstance(default, float) and (math.isinf(default) or math.isnan(default)):
        return str(default)
    return repr(default)


def _type_reference(pool: DescriptorPool, field: Handle) -> str:
    ftype = query.field_type(pool, field)
    if ftype in (FieldType.MESSAGE, FieldType.GROUP):
        target = query.field_message_type(pool, field)
        if target is not None:
            return "." + query.message_full_name(pool, target)
    if ftype == FieldType.ENUM:
        target = query.field_enum_type(pool, field)
        if target is not None:
            return "." + query.enum_full_name(pool, target)
    # Scalars, and references that never resolved
    return query.field_type_name(ftype) or pool.field(field).type_name


def _field_view(pool: DescriptorPool, field: Handle) -> dict[str, Any]:
    record = pool.field(field)
    options = []
    default = format_default(pool, field)
    if default is not None:
        options.append(f"default = {default}")
    if query.field_is_packed(pool, field):
        options.append("packed = true")

    declared = f"{record.label} {_type_reference(pool, field)}"
    target = query.field_message_type(pool, field)
    if target is not None and pool.message(target).is_map_entry:
        key, value = (_type_reference(pool, f) for f in _fields(pool, target))
        declared = f"map<{key}, {value}>"

    return {
        "name": record.name,
        "number": record.number,
        "declaration": f"{declared} {record.name} = {record.number}",
        "options": f" [{', '.join(options)}]" if options else "",
        "comment": f"  // oneof {record.oneof}" if record.oneof else "",
    }


def _fields(pool: DescriptorPool, message: Handle) -> list[Handle]:
    count = query.message_field_count(pool, message)
    return [h for h in (query.message_field(pool, message, i) for i in range(count)) if h]


def _enum_view(pool: DescriptorPool, enum: Handle) -> dict[str, Any]:
    values = []
    for i in range(query.enum_value_count(pool, enum)):
        value = query.enum_value(pool, enum, i)
        if value is not None:
            values.append(
                {
                    "name": query.enum_value_name(pool, value),
                    "number": query.enum_value_number(pool, value),
                }
            )
    return {"name": query.enum_name(pool, enum), "members": values}


def message_view(pool: DescriptorPool, message: Handle) -> dict[str, Any]:
    """Collect what the template needs to print one message and its nested types."""
    record = pool.message(message)
    nested = [pool.handle(HandleKind.MESSAGE, i) for i in record.messages]
    return {
        "name": record.name,
        "full_name": record.full_name,
        "file": record.file,
        "fields": [_field_view(pool, f) for f in _fields(pool, message)],
        "enums": [_enum_view(pool, pool.handle(HandleKind.ENUM, i)) for i in record.enums],
        "messages": [
            message_view(pool, h) for h in nested if not pool.message(h).is_map_entry
        ],
        "extensions": [
            f"{pool.field(pool.handle(HandleKind.FIELD, i)).full_name} = "
            f"{pool.field(pool.handle(HandleKind.FIELD, i)).number}"
            for i in record.extensions
        ],
    }


def render_message(pool: DescriptorPool, message: Handle) -> str:
    """Render a linked message as schema text with fully qualified type names."""
    return template.render(message=message_view(pool, message))
