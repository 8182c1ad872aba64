"""
Versioned binary contract schema.

A module schema describes, per contract and entrypoint, the types of the
parameter, return value and error. The versioned format is a ``0xffff`` magic
prefix, a version byte and the module body; all integers are little-endian.
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Optional, Tuple

from ..exceptions import DecodeError

VERSIONED_SCHEMA_MAGIC = b"\xff\xff"
SUPPORTED_VERSIONS = (1, 2, 3)
MAX_TYPE_DEPTH = 64


class SchemaVersion(IntEnum):
    V0 = 0
    V1 = 1
    V2 = 2
    V3 = 3


class TypeTag(IntEnum):
    UNIT = 0
    BOOL = 1
    U8 = 2
    U16 = 3
    U32 = 4
    U64 = 5
    I8 = 6
    I16 = 7
    I32 = 8
    I64 = 9
    AMOUNT = 10
    ACCOUNT_ADDRESS = 11
    CONTRACT_ADDRESS = 12
    TIMESTAMP = 13
    DURATION = 14
    PAIR = 15
    LIST = 16
    SET = 17
    MAP = 18
    ARRAY = 19
    STRUCT = 20
    ENUM = 21
    STRING = 22
    U128 = 23
    I128 = 24
    CONTRACT_NAME = 25
    RECEIVE_NAME = 26
    ULEB128 = 27
    ILEB128 = 28
    BYTE_LIST = 29
    BYTE_ARRAY = 30
    TAGGED_ENUM = 31


class SizeLength(IntEnum):
    U8 = 0
    U16 = 1
    U32 = 2
    U64 = 3


class FieldsKind(IntEnum):
    NAMED = 0
    UNNAMED = 1
    NONE = 2


# Tags whose layout is just the tag byte.
_PLAIN_TAGS = {
    TypeTag.UNIT, TypeTag.BOOL, TypeTag.U8, TypeTag.U16, TypeTag.U32,
    TypeTag.U64, TypeTag.I8, TypeTag.I16, TypeTag.I32, TypeTag.I64,
    TypeTag.AMOUNT, TypeTag.ACCOUNT_ADDRESS, TypeTag.CONTRACT_ADDRESS,
    TypeTag.TIMESTAMP, TypeTag.DURATION, TypeTag.U128, TypeTag.I128,
}
_SIZED_TAGS = {
    TypeTag.STRING, TypeTag.CONTRACT_NAME, TypeTag.RECEIVE_NAME, TypeTag.BYTE_LIST,
}


@dataclass(frozen=True)
class Fields:
    kind: FieldsKind = FieldsKind.NONE
    named: Tuple[Tuple[str, "SchemaType"], ...] = ()
    unnamed: Tuple["SchemaType", ...] = ()


@dataclass(frozen=True)
class Variant:
    name: str
    fields: Fields = Fields()
    tag: Optional[int] = None


@dataclass(frozen=True)
class SchemaType:
    """One node of a schema type tree."""

    tag: TypeTag
    items: Tuple["SchemaType", ...] = ()
    size_length: Optional[SizeLength] = None
    length: Optional[int] = None
    fields: Optional[Fields] = None
    variants: Tuple[Variant, ...] = ()


@dataclass(frozen=True)
class FunctionSchema:
    parameter: Optional[SchemaType] = None
    return_value: Optional[SchemaType] = None
    error: Optional[SchemaType] = None


@dataclass(frozen=True)
class ContractSchema:
    init: Optional[FunctionSchema] = None
    receive: Dict[str, FunctionSchema] = field(default_factory=dict)
    event: Optional[SchemaType] = None


@dataclass(frozen=True)
class ModuleSchema:
    version: int
    contracts: Dict[str, ContractSchema] = field(default_factory=dict)


# Type builders


def plain(tag: TypeTag) -> SchemaType:
    if tag not in _PLAIN_TAGS:
        raise ValueError(f"{tag.name} is not a plain type")
    return SchemaType(tag)


def sized(tag: TypeTag, size_length: SizeLength = SizeLength.U32) -> SchemaType:
    if tag not in _SIZED_TAGS:
        raise ValueError(f"{tag.name} is not a sized type")
    return SchemaType(tag, size_length=size_length)


def pair(first: SchemaType, second: SchemaType) -> SchemaType:
    return SchemaType(TypeTag.PAIR, items=(first, second))


def list_of(item: SchemaType, size_length: SizeLength = SizeLength.U32) -> SchemaType:
    return SchemaType(TypeTag.LIST, items=(item,), size_length=size_length)


def set_of(item: SchemaType, size_length: SizeLength = SizeLength.U32) -> SchemaType:
    return SchemaType(TypeTag.SET, items=(item,), size_length=size_length)


def map_of(
    key: SchemaType, value: SchemaType, size_length: SizeLength = SizeLength.U32
) -> SchemaType:
    return SchemaType(TypeTag.MAP, items=(key, value), size_length=size_length)


def array_of(item: SchemaType, length: int) -> SchemaType:
    return SchemaType(TypeTag.ARRAY, items=(item,), length=length)


def named_fields(*pairs: Tuple[str, SchemaType]) -> Fields:
    return Fields(FieldsKind.NAMED, named=tuple(pairs))


def unnamed_fields(*types: SchemaType) -> Fields:
    return Fields(FieldsKind.UNNAMED, unnamed=tuple(types))


def struct_type(*pairs: Tuple[str, SchemaType]) -> SchemaType:
    return SchemaType(TypeTag.STRUCT, fields=named_fields(*pairs))


def enum(*variants: Tuple[str, Fields]) -> SchemaType:
    return SchemaType(
        TypeTag.ENUM, variants=tuple(Variant(name, fields) for name, fields in variants)
    )


def tagged_enum(*variants: Tuple[int, str, Fields]) -> SchemaType:
    return SchemaType(
        TypeTag.TAGGED_ENUM,
        variants=tuple(Variant(name, fields, tag) for tag, name, fields in variants),
    )


def uleb128(max_bytes: int = 37) -> SchemaType:
    return SchemaType(TypeTag.ULEB128, length=max_bytes)


def ileb128(max_bytes: int = 37) -> SchemaType:
    return SchemaType(TypeTag.ILEB128, length=max_bytes)


def byte_array(length: int) -> SchemaType:
    return SchemaType(TypeTag.BYTE_ARRAY, length=length)


class ByteReader:
    """Cursor over a bytes buffer; running past the end raises DecodeError."""

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, size: int) -> bytes:
        if size < 0 or self.offset + size > len(self.data):
            raise DecodeError(
                f"unexpected end of data: need {size} byte(s) at offset {self.offset}, "
                f"have {self.remaining}"
            )
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def u8(self) -> int:
        return self.read(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self.read(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self.read(8))[0]

    def size(self, size_length: SizeLength) -> int:
        if size_length == SizeLength.U8:
            return self.u8()
        if size_length == SizeLength.U16:
            return self.u16()
        if size_length == SizeLength.U32:
            return self.u32()
        return self.u64()

    def string(self) -> str:
        raw = self.read(self.u32())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecodeError(f"invalid utf-8 string in schema: {err}") from err

    def expect_end(self) -> None:
        if self.remaining:
            raise DecodeError(f"{self.remaining} trailing byte(s) after value")


def pack_size(size_length: SizeLength, value: int) -> bytes:
    fmt = {SizeLength.U8: "<B", SizeLength.U16: "<H", SizeLength.U32: "<I", SizeLength.U64: "<Q"}
    return struct.pack(fmt[size_length], value)


def _pack_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


# Parsing


def read_schema_version(raw: bytes) -> int:
    """
    Read the version byte of a versioned module schema.

    Raises:
        DecodeError: If the schema does not carry the versioned header
    """
    if len(raw) < 3 or raw[:2] != VERSIONED_SCHEMA_MAGIC:
        raise DecodeError("schema is not versioned; refusing to infer its version")
    return raw[2]


def parse_module_schema(raw: bytes) -> ModuleSchema:
    """Parse a versioned module schema."""
    version = read_schema_version(raw)
    if version not in SUPPORTED_VERSIONS:
        raise DecodeError(f"unsupported schema version {version}")

    reader = ByteReader(raw[3:])
    contracts: Dict[str, ContractSchema] = {}
    for _ in range(reader.u32()):
        name = reader.string()
        contracts[name] = _read_contract(reader, version)
    reader.expect_end()
    return ModuleSchema(version=version, contracts=contracts)


def _read_option(reader: ByteReader) -> bool:
    flag = reader.u8()
    if flag not in (0, 1):
        raise DecodeError(f"invalid option flag {flag}")
    return flag == 1


def _read_contract(reader: ByteReader, version: int) -> ContractSchema:
    read_function = _read_function_v1 if version == 1 else _read_function_v2
    init = read_function(reader) if _read_option(reader) else None
    receive = {}
    for _ in range(reader.u32()):
        name = reader.string()
        receive[name] = read_function(reader)
    event = None
    if version == 3 and _read_option(reader):
        event = read_type(reader)
    return ContractSchema(init=init, receive=receive, event=event)


def _read_function_v1(reader: ByteReader) -> FunctionSchema:
    tag = reader.u8()
    if tag == 0:
        return FunctionSchema(parameter=read_type(reader))
    if tag == 1:
        return FunctionSchema(return_value=read_type(reader))
    if tag == 2:
        return FunctionSchema(parameter=read_type(reader), return_value=read_type(reader))
    raise DecodeError(f"invalid function schema tag {tag}")


def _read_function_v2(reader: ByteReader) -> FunctionSchema:
    tag = reader.u8()
    if tag > 6:
        raise DecodeError(f"invalid function schema tag {tag}")
    # bit 0: parameter, bit 1: return value, bit 2: error (tags are 1-based)
    mask = tag + 1
    parameter = read_type(reader) if mask & 1 else None
    return_value = read_type(reader) if mask & 2 else None
    error = read_type(reader) if mask & 4 else None
    return FunctionSchema(parameter=parameter, return_value=return_value, error=error)


def _read_fields(reader: ByteReader, depth: int) -> Fields:
    kind = reader.u8()
    if kind == FieldsKind.NAMED:
        named = []
        for _ in range(reader.u32()):
            name = reader.string()
            named.append((name, read_type(reader, depth + 1)))
        return Fields(FieldsKind.NAMED, named=tuple(named))
    if kind == FieldsKind.UNNAMED:
        return Fields(
            FieldsKind.UNNAMED,
            unnamed=tuple(read_type(reader, depth + 1) for _ in range(reader.u32())),
        )
    if kind == FieldsKind.NONE:
        return Fields()
    raise DecodeError(f"invalid fields tag {kind}")


def _read_size_length(reader: ByteReader) -> SizeLength:
    value = reader.u8()
    try:
        return SizeLength(value)
    except ValueError as err:
        raise DecodeError(f"invalid size length {value}") from err


def read_type(reader: ByteReader, depth: int = 0) -> SchemaType:
    """Read one schema type."""
    if depth > MAX_TYPE_DEPTH:
        raise DecodeError("schema type nesting too deep")

    raw_tag = reader.u8()
    try:
        tag = TypeTag(raw_tag)
    except ValueError as err:
        raise DecodeError(f"unknown schema type tag {raw_tag}") from err

    if tag in _PLAIN_TAGS:
        return SchemaType(tag)
    if tag in _SIZED_TAGS:
        return SchemaType(tag, size_length=_read_size_length(reader))
    if tag == TypeTag.PAIR:
        return SchemaType(tag, items=(read_type(reader, depth + 1), read_type(reader, depth + 1)))
    if tag in (TypeTag.LIST, TypeTag.SET):
        size_length = _read_size_length(reader)
        return SchemaType(tag, items=(read_type(reader, depth + 1),), size_length=size_length)
    if tag == TypeTag.MAP:
        size_length = _read_size_length(reader)
        key = read_type(reader, depth + 1)
        value = read_type(reader, depth + 1)
        return SchemaType(tag, items=(key, value), size_length=size_length)
    if tag == TypeTag.ARRAY:
        length = reader.u32()
        return SchemaType(tag, items=(read_type(reader, depth + 1),), length=length)
    if tag == TypeTag.STRUCT:
        return SchemaType(tag, fields=_read_fields(reader, depth))
    if tag == TypeTag.ENUM:
        variants = []
        for _ in range(reader.u32()):
            name = reader.string()
            variants.append(Variant(name, _read_fields(reader, depth)))
        return SchemaType(tag, variants=tuple(variants))
    if tag == TypeTag.TAGGED_ENUM:
        variants = []
        for _ in range(reader.u32()):
            variant_tag = reader.u8()
            name = reader.string()
            variants.append(Variant(name, _read_fields(reader, depth), variant_tag))
        return SchemaType(tag, variants=tuple(variants))
    if tag in (TypeTag.ULEB128, TypeTag.ILEB128, TypeTag.BYTE_ARRAY):
        return SchemaType(tag, length=reader.u32())

    raise DecodeError(f"unhandled schema type tag {tag.name}")


# Serialization


def serialize_module_schema(module: ModuleSchema) -> bytes:
    """Write a module schema in the versioned binary format."""
    if module.version not in SUPPORTED_VERSIONS:
        raise ValueError(f"unsupported schema version {module.version}")

    out = bytearray(VERSIONED_SCHEMA_MAGIC)
    out.append(module.version)
    out += struct.pack("<I", len(module.contracts))
    for name, contract in module.contracts.items():
        out += _pack_string(name)
        out += _write_contract(contract, module.version)
    return bytes(out)


def _write_contract(contract: ContractSchema, version: int) -> bytes:
    write_function = _write_function_v1 if version == 1 else _write_function_v2
    out = bytearray()
    if contract.init is None:
        out.append(0)
    else:
        out.append(1)
        out += write_function(contract.init)
    out += struct.pack("<I", len(contract.receive))
    for name, function in contract.receive.items():
        out += _pack_string(name)
        out += write_function(function)
    if version == 3:
        if contract.event is None:
            out.append(0)
        else:
            out.append(1)
            out += write_type(contract.event)
    return bytes(out)


def _write_function_v1(function: FunctionSchema) -> bytes:
    if function.error is not None:
        raise ValueError("schema V1 cannot describe error types")
    if function.parameter is not None and function.return_value is not None:
        return b"\x02" + write_type(function.parameter) + write_type(function.return_value)
    if function.parameter is not None:
        return b"\x00" + write_type(function.parameter)
    if function.return_value is not None:
        return b"\x01" + write_type(function.return_value)
    raise ValueError("schema V1 function needs a parameter or return value")


def _write_function_v2(function: FunctionSchema) -> bytes:
    parts = (function.parameter, function.return_value, function.error)
    mask = sum(1 << i for i, part in enumerate(parts) if part is not None)
    if mask == 0:
        raise ValueError("function schema needs at least one type")
    out = bytearray([mask - 1])
    for part in parts:
        if part is not None:
            out += write_type(part)
    return bytes(out)


def _write_fields(fields: Fields) -> bytes:
    out = bytearray([fields.kind])
    if fields.kind == FieldsKind.NAMED:
        out += struct.pack("<I", len(fields.named))
        for name, field_type in fields.named:
            out += _pack_string(name)
            out += write_type(field_type)
    elif fields.kind == FieldsKind.UNNAMED:
        out += struct.pack("<I", len(fields.unnamed))
        for field_type in fields.unnamed:
            out += write_type(field_type)
    return bytes(out)


def write_type(schema_type: SchemaType) -> bytes:
    """Write one schema type."""
    tag = schema_type.tag
    out = bytearray([tag])
    if tag in _PLAIN_TAGS:
        return bytes(out)
    if tag in _SIZED_TAGS:
        out.append(schema_type.size_length)
    elif tag == TypeTag.PAIR:
        out += write_type(schema_type.items[0]) + write_type(schema_type.items[1])
    elif tag in (TypeTag.LIST, TypeTag.SET):
        out.append(schema_type.size_length)
        out += write_type(schema_type.items[0])
    elif tag == TypeTag.MAP:
        out.append(schema_type.size_length)
        out += write_type(schema_type.items[0]) + write_type(schema_type.items[1])
    elif tag == TypeTag.ARRAY:
        out += struct.pack("<I", schema_type.length)
        out += write_type(schema_type.items[0])
    elif tag == TypeTag.STRUCT:
        out += _write_fields(schema_type.fields or Fields())
    elif tag == TypeTag.ENUM:
        out += struct.pack("<I", len(schema_type.variants))
        for variant in schema_type.variants:
            out += _pack_string(variant.name)
            out += _write_fields(variant.fields)
    elif tag == TypeTag.TAGGED_ENUM:
        out += struct.pack("<I", len(schema_type.variants))
        for variant in schema_type.variants:
            out.append(variant.tag)
            out += _pack_string(variant.name)
            out += _write_fields(variant.fields)
    elif tag in (TypeTag.ULEB128, TypeTag.ILEB128, TypeTag.BYTE_ARRAY):
        out += struct.pack("<I", schema_type.length)
    return bytes(out)
