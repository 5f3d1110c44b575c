"""Flat, handle-based accessors over a finalized descriptor pool.

Every function takes the pool and a handle it issued. Links that were never
resolved come back as None; handles from another pool or an older generation
raise StaleHandleError.
"""

from typing import Any

from .pool import DescriptorPool, MessageVisitor
from .types import (
    INT32_TYPES,
    INT64_TYPES,
    UINT32_TYPES,
    UINT64_TYPES,
    FieldType,
    Handle,
    HandleKind,
    Label,
)
from .types import field_type_name as _field_type_name

# Message


def message_name(pool: DescriptorPool, message: Handle) -> str:
    return pool.message(message).name


def message_full_name(pool: DescriptorPool, message: Handle) -> str:
    return pool.message(message).full_name


def message_field_count(pool: DescriptorPool, message: Handle) -> int:
    """Number of fields declared in the message, extensions excluded."""
    return len(pool.message(message).fields)


def message_field(pool: DescriptorPool, message: Handle, index: int) -> Handle | None:
    """Return the field at a declaration-order index, or None if out of range."""
    fields = pool.message(message).fields
    if not 0 <= index < len(fields):
        return None
    return pool.handle(HandleKind.FIELD, fields[index])


def message_find_field_by_number(
    pool: DescriptorPool, message: Handle, number: int
) -> Handle | None:
    """Look up a field or an attached extension by its number."""
    index = pool.message(message).fields_by_number.get(number)
    return None if index is None else pool.handle(HandleKind.FIELD, index)


def message_find_field_by_name(pool: DescriptorPool, message: Handle, name: str) -> Handle | None:
    index = pool.message(message).fields_by_name.get(name)
    return None if index is None else pool.handle(HandleKind.FIELD, index)


# Field


def field_name(pool: DescriptorPool, field: Handle) -> str:
    return pool.field(field).name


def field_full_name(pool: DescriptorPool, field: Handle) -> str:
    return pool.field(field).full_name


def field_number(pool: DescriptorPool, field: Handle) -> int:
    return pool.field(field).number


def field_type(pool: DescriptorPool, field: Handle) -> FieldType:
    return pool.field(field).type


def field_type_name(field_type: int) -> str:
    """Return the keyword of a field type, e.g. "int32" for FieldType.INT32."""
    return _field_type_name(field_type)


def field_is_repeated(pool: DescriptorPool, field: Handle) -> bool:
    return pool.field(field).label == Label.REPEATED


def field_is_required(pool: DescriptorPool, field: Handle) -> bool:
    return pool.field(field).label == Label.REQUIRED


def field_is_packed(pool: DescriptorPool, field: Handle) -> bool:
    return pool.field(field).packed


def field_message_type(pool: DescriptorPool, field: Handle) -> Handle | None:
    index = pool.field(field).message_type
    return None if index is None else pool.handle(HandleKind.MESSAGE, index)


def field_enum_type(pool: DescriptorPool, field: Handle) -> Handle | None:
    index = pool.field(field).enum_type
    return None if index is None else pool.handle(HandleKind.ENUM, index)


def field_containing_type(pool: DescriptorPool, field: Handle) -> Handle | None:
    index = pool.field(field).containing_type
    return None if index is None else pool.handle(HandleKind.MESSAGE, index)


def field_has_default_value(pool: DescriptorPool, field: Handle) -> bool:
    return pool.field(field).has_default


def _explicit_default(
    pool: DescriptorPool, field: Handle, types: frozenset[FieldType] | set[FieldType]
) -> Any:
    record = pool.field(field)
    if not record.has_default or record.type not in types:
        return None
    return record.default


def field_default_value_int32(pool: DescriptorPool, field: Handle) -> int | None:
    return _explicit_default(pool, field, INT32_TYPES)


def field_default_value_int64(pool: DescriptorPool, field: Handle) -> int | None:
    return _explicit_default(pool, field, INT64_TYPES)


def field_default_value_uint32(pool: DescriptorPool, field: Handle) -> int | None:
    return _explicit_default(pool, field, UINT32_TYPES)


def field_default_value_uint64(pool: DescriptorPool, field: Handle) -> int | None:
    return _explicit_default(pool, field, UINT64_TYPES)


def field_default_value_float(pool: DescriptorPool, field: Handle) -> float | None:
    return _explicit_default(pool, field, {FieldType.FLOAT})


def field_default_value_double(pool: DescriptorPool, field: Handle) -> float | None:
    return _explicit_default(pool, field, {FieldType.DOUBLE})


def field_default_value_bool(pool: DescriptorPool, field: Handle) -> bool | None:
    return _explicit_default(pool, field, {FieldType.BOOL})


def field_default_value_string(pool: DescriptorPool, field: Handle) -> str | bytes | None:
    """Explicit default of a string (str) or bytes (bytes) field."""
    return _explicit_default(pool, field, {FieldType.STRING, FieldType.BYTES})


def field_default_value_enum(pool: DescriptorPool, field: Handle) -> Handle | None:
    """Return the explicit default enum value, else the enum's first value.

    Returns None for non-enum fields and for unresolved enum types.
    """
    record = pool.field(field)
    if record.type != FieldType.ENUM or record.enum_type is None:
        return None
    if record.has_default:
        return pool.handle(HandleKind.ENUM_VALUE, record.default)

    values = pool.tables.enums[record.enum_type].values
    if not values:
        return None
    return pool.handle(HandleKind.ENUM_VALUE, values[0])


_ZERO_VALUES: dict[FieldType, Any] = {
    FieldType.DOUBLE: 0.0,
    FieldType.FLOAT: 0.0,
    FieldType.BOOL: False,
    FieldType.STRING: "",
    FieldType.BYTES: b"",
}


def field_implicit_default(pool: DescriptorPool, field: Handle) -> Any:
    """Value a decoder substitutes when the field is absent from the wire.

    This is the explicit default when there is one, else the type's zero
    value. Enum fields yield an enum value handle; message fields yield None.
    """
    record = pool.field(field)
    if record.type == FieldType.ENUM:
        return field_default_value_enum(pool, field)
    if record.has_default:
        return record.default
    if record.type in _ZERO_VALUES:
        return _ZERO_VALUES[record.type]
    if record.type in (FieldType.NONE, FieldType.MESSAGE, FieldType.GROUP):
        return None
    return 0


# Enum


def enum_name(pool: DescriptorPool, enum: Handle) -> str:
    return pool.enum(enum).name


def enum_full_name(pool: DescriptorPool, enum: Handle) -> str:
    return pool.enum(enum).full_name


def enum_value_count(pool: DescriptorPool, enum: Handle) -> int:
    return len(pool.enum(enum).values)


def enum_value(pool: DescriptorPool, enum: Handle, index: int) -> Handle | None:
    values = pool.enum(enum).values
    if not 0 <= index < len(values):
        return None
    return pool.handle(HandleKind.ENUM_VALUE, values[index])


def enum_find_value_by_number(pool: DescriptorPool, enum: Handle, number: int) -> Handle | None:
    """Return the first declared value with the number; aliases are not returned."""
    index = pool.enum(enum).values_by_number.get(number)
    return None if index is None else pool.handle(HandleKind.ENUM_VALUE, index)


def enum_find_value_by_name(pool: DescriptorPool, enum: Handle, name: str) -> Handle | None:
    index = pool.enum(enum).values_by_name.get(name)
    return None if index is None else pool.handle(HandleKind.ENUM_VALUE, index)


def enum_value_name(pool: DescriptorPool, value: Handle) -> str:
    return pool.enum_value(value).name


def enum_value_full_name(pool: DescriptorPool, value: Handle) -> str:
    return pool.enum_value(value).full_name


def enum_value_number(pool: DescriptorPool, value: Handle) -> int:
    return pool.enum_value(value).number


# Method


def method_name(pool: DescriptorPool, method: Handle) -> str:
    return pool.method(method).name


def method_full_name(pool: DescriptorPool, method: Handle) -> str:
    return pool.method(method).full_name


def method_input_type(pool: DescriptorPool, method: Handle) -> Handle | None:
    index = pool.method(method).input_type
    return None if index is None else pool.handle(HandleKind.MESSAGE, index)


def method_output_type(pool: DescriptorPool, method: Handle) -> Handle | None:
    index = pool.method(method).output_type
    return None if index is None else pool.handle(HandleKind.MESSAGE, index)


# Pool


def pool_find_message_by_name(pool: DescriptorPool, full_name: str) -> Handle | None:
    return pool.find_message_by_name(full_name)


def pool_find_enum_by_name(pool: DescriptorPool, full_name: str) -> Handle | None:
    return pool.find_enum_by_name(full_name)


def pool_find_method_by_name(pool: DescriptorPool, full_name: str) -> Handle | None:
    return pool.find_method_by_name(full_name)


def pool_for_each_message(pool: DescriptorPool, visitor: MessageVisitor) -> int:
    return pool.for_each_message(visitor)
