"""
Encode and decode values against a schema type.

Value conventions: named structs are dicts, unnamed fields are lists, enums are
single-key dicts ``{"Variant": fields}``, account addresses are base58check
strings, contract addresses are ``{"index", "subindex"}`` dicts, byte lists are
hex strings and maps are lists of ``[key, value]`` pairs.
"""

import struct
from typing import Any, Dict, List

from ..exceptions import DecodeError, InvalidAddressError, SchemaMismatchError
from .addresses import (
    ContractAddress,
    account_address_from_bytes,
    account_address_to_bytes,
)
from .schema import (
    ByteReader,
    Fields,
    FieldsKind,
    SchemaType,
    SizeLength,
    TypeTag,
    pack_size,
)

# (struct format, signed) for the fixed-width integer tags
_INT_FORMATS = {
    TypeTag.U8: ("<B", False),
    TypeTag.U16: ("<H", False),
    TypeTag.U32: ("<I", False),
    TypeTag.U64: ("<Q", False),
    TypeTag.I8: ("<b", True),
    TypeTag.I16: ("<h", True),
    TypeTag.I32: ("<i", True),
    TypeTag.I64: ("<q", True),
    TypeTag.AMOUNT: ("<Q", False),
    TypeTag.TIMESTAMP: ("<Q", False),
    TypeTag.DURATION: ("<Q", False),
}
_INT_BITS = {"<B": 8, "<H": 16, "<I": 32, "<Q": 64, "<b": 8, "<h": 16, "<i": 32, "<q": 64}
_SIZE_MAX = {
    SizeLength.U8: 0xFF,
    SizeLength.U16: 0xFFFF,
    SizeLength.U32: 0xFFFFFFFF,
    SizeLength.U64: 0xFFFFFFFFFFFFFFFF,
}
_UNIT_VALUES = (None, [], {}, ())

# Collections of zero-width items are not bounded by the input length
MAX_ZERO_WIDTH_ITEMS = 1 << 16


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_range(value: Any, bits: int, signed: bool, path: str) -> int:
    if not _is_int(value):
        raise SchemaMismatchError(f"{path}: expected integer, got {type(value).__name__}")
    low, high = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed else (0, (1 << bits) - 1)
    if not low <= value <= high:
        raise SchemaMismatchError(f"{path}: {value} out of range for {bits}-bit integer")
    return value


def _to_bytes(value: Any, path: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return bytes.fromhex(value)
        except ValueError as err:
            raise SchemaMismatchError(f"{path}: invalid hex string") from err
    raise SchemaMismatchError(f"{path}: expected bytes or hex string")


# Encoding


def encode_value(schema_type: SchemaType, value: Any, path: str = "$") -> bytes:
    """
    Encode a value with the given schema type.

    Raises:
        SchemaMismatchError: If the value's shape does not match the type
    """
    tag = schema_type.tag

    if tag == TypeTag.UNIT:
        if value not in _UNIT_VALUES:
            raise SchemaMismatchError(f"{path}: expected unit")
        return b""

    if tag == TypeTag.BOOL:
        if not isinstance(value, bool):
            raise SchemaMismatchError(f"{path}: expected boolean")
        return b"\x01" if value else b"\x00"

    if tag in _INT_FORMATS:
        fmt, signed = _INT_FORMATS[tag]
        return struct.pack(fmt, _check_range(value, _INT_BITS[fmt], signed, path))

    if tag in (TypeTag.U128, TypeTag.I128):
        signed = tag == TypeTag.I128
        return _check_range(value, 128, signed, path).to_bytes(16, "little", signed=signed)

    if tag == TypeTag.ACCOUNT_ADDRESS:
        try:
            return account_address_to_bytes(value)
        except InvalidAddressError as err:
            raise SchemaMismatchError(f"{path}: {err.msg}") from err

    if tag == TypeTag.CONTRACT_ADDRESS:
        try:
            address = ContractAddress.from_value(value)
        except InvalidAddressError as err:
            raise SchemaMismatchError(f"{path}: {err.msg}") from err
        return struct.pack("<QQ", address.index, address.subindex)

    if tag == TypeTag.PAIR:
        items = _expect_sequence(value, path, 2)
        return encode_value(schema_type.items[0], items[0], f"{path}[0]") + encode_value(
            schema_type.items[1], items[1], f"{path}[1]"
        )

    if tag in (TypeTag.LIST, TypeTag.SET):
        items = _expect_sequence(value, path)
        if tag == TypeTag.SET and len(set(map(repr, items))) != len(items):
            raise SchemaMismatchError(f"{path}: set contains duplicates")
        out = bytearray(_encode_size(schema_type.size_length, len(items), path))
        for i, item in enumerate(items):
            out += encode_value(schema_type.items[0], item, f"{path}[{i}]")
        return bytes(out)

    if tag == TypeTag.MAP:
        entries = list(value.items()) if isinstance(value, dict) else _expect_sequence(value, path)
        out = bytearray(_encode_size(schema_type.size_length, len(entries), path))
        for i, entry in enumerate(entries):
            key, item = _expect_sequence(entry, f"{path}[{i}]", 2)
            out += encode_value(schema_type.items[0], key, f"{path}[{i}].key")
            out += encode_value(schema_type.items[1], item, f"{path}[{i}].value")
        return bytes(out)

    if tag == TypeTag.ARRAY:
        items = _expect_sequence(value, path, schema_type.length)
        return b"".join(
            encode_value(schema_type.items[0], item, f"{path}[{i}]")
            for i, item in enumerate(items)
        )

    if tag == TypeTag.STRUCT:
        return _encode_fields(schema_type.fields or Fields(), value, path)

    if tag in (TypeTag.ENUM, TypeTag.TAGGED_ENUM):
        return _encode_enum(schema_type, value, path)

    if tag in (TypeTag.STRING, TypeTag.CONTRACT_NAME, TypeTag.RECEIVE_NAME):
        if not isinstance(value, str):
            raise SchemaMismatchError(f"{path}: expected string")
        raw = value.encode("utf-8")
        return _encode_size(schema_type.size_length, len(raw), path) + raw

    if tag == TypeTag.ULEB128:
        return _encode_uleb128(value, schema_type.length, path)

    if tag == TypeTag.ILEB128:
        return _encode_ileb128(value, schema_type.length, path)

    if tag == TypeTag.BYTE_LIST:
        raw = _to_bytes(value, path)
        return _encode_size(schema_type.size_length, len(raw), path) + raw

    if tag == TypeTag.BYTE_ARRAY:
        raw = _to_bytes(value, path)
        if len(raw) != schema_type.length:
            raise SchemaMismatchError(
                f"{path}: expected {schema_type.length} bytes, got {len(raw)}"
            )
        return raw

    raise SchemaMismatchError(f"{path}: unsupported type {tag.name}")


def _expect_sequence(value: Any, path: str, length: int = None) -> List[Any]:
    if not isinstance(value, (list, tuple)):
        raise SchemaMismatchError(f"{path}: expected sequence, got {type(value).__name__}")
    if length is not None and len(value) != length:
        raise SchemaMismatchError(f"{path}: expected {length} item(s), got {len(value)}")
    return list(value)


def _encode_size(size_length: SizeLength, size: int, path: str) -> bytes:
    if size > _SIZE_MAX[size_length]:
        raise SchemaMismatchError(f"{path}: length {size} exceeds {size_length.name} prefix")
    return pack_size(size_length, size)


def _encode_fields(fields: Fields, value: Any, path: str) -> bytes:
    if fields.kind == FieldsKind.NONE:
        if value not in _UNIT_VALUES:
            raise SchemaMismatchError(f"{path}: expected no fields")
        return b""

    if fields.kind == FieldsKind.UNNAMED:
        items = _expect_sequence(value, path, len(fields.unnamed))
        return b"".join(
            encode_value(field_type, item, f"{path}[{i}]")
            for i, (field_type, item) in enumerate(zip(fields.unnamed, items))
        )

    if not isinstance(value, dict):
        raise SchemaMismatchError(f"{path}: expected object, got {type(value).__name__}")
    expected = [name for name, _ in fields.named]
    missing = [name for name in expected if name not in value]
    extra = [name for name in value if name not in expected]
    if missing or extra:
        raise SchemaMismatchError(f"{path}: missing fields {missing}, unexpected {extra}")
    return b"".join(
        encode_value(field_type, value[name], f"{path}.{name}")
        for name, field_type in fields.named
    )


def _encode_enum(schema_type: SchemaType, value: Any, path: str) -> bytes:
    if not isinstance(value, dict) or len(value) != 1:
        raise SchemaMismatchError(f"{path}: expected single-key object naming a variant")
    name, payload = next(iter(value.items()))
    for index, variant in enumerate(schema_type.variants):
        if variant.name == name:
            break
    else:
        raise SchemaMismatchError(f"{path}: unknown variant {name!r}")

    if schema_type.tag == TypeTag.TAGGED_ENUM:
        prefix = bytes([variant.tag])
    elif len(schema_type.variants) <= 0x100:
        prefix = struct.pack("<B", index)
    elif len(schema_type.variants) <= 0x10000:
        prefix = struct.pack("<H", index)
    else:
        prefix = struct.pack("<I", index)
    return prefix + _encode_fields(variant.fields, payload, f"{path}.{name}")


def _encode_uleb128(value: Any, max_bytes: int, path: str) -> bytes:
    if not _is_int(value) or value < 0:
        raise SchemaMismatchError(f"{path}: expected non-negative integer")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            break
    if len(out) > max_bytes:
        raise SchemaMismatchError(f"{path}: value needs more than {max_bytes} LEB128 bytes")
    return bytes(out)


def _encode_ileb128(value: Any, max_bytes: int, path: str) -> bytes:
    if not _is_int(value):
        raise SchemaMismatchError(f"{path}: expected integer")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        done = (value == 0 and not byte & 0x40) or (value == -1 and byte & 0x40)
        out.append(byte if done else byte | 0x80)
        if done:
            break
    if len(out) > max_bytes:
        raise SchemaMismatchError(f"{path}: value needs more than {max_bytes} LEB128 bytes")
    return bytes(out)


# Decoding


def decode_value(schema_type: SchemaType, reader: ByteReader, path: str = "$") -> Any:
    """
    Decode one value from the reader.

    Raises:
        DecodeError: If the bytes do not form a valid value of the type
    """
    tag = schema_type.tag

    if tag == TypeTag.UNIT:
        return None

    if tag == TypeTag.BOOL:
        byte = reader.u8()
        if byte not in (0, 1):
            raise DecodeError(f"{path}: invalid boolean byte {byte}")
        return byte == 1

    if tag in _INT_FORMATS:
        fmt, _ = _INT_FORMATS[tag]
        return struct.unpack(fmt, reader.read(struct.calcsize(fmt)))[0]

    if tag in (TypeTag.U128, TypeTag.I128):
        return int.from_bytes(reader.read(16), "little", signed=tag == TypeTag.I128)

    if tag == TypeTag.ACCOUNT_ADDRESS:
        return account_address_from_bytes(reader.read(32))

    if tag == TypeTag.CONTRACT_ADDRESS:
        index, subindex = struct.unpack("<QQ", reader.read(16))
        return {"index": index, "subindex": subindex}

    if tag == TypeTag.PAIR:
        return [
            decode_value(schema_type.items[0], reader, f"{path}[0]"),
            decode_value(schema_type.items[1], reader, f"{path}[1]"),
        ]

    if tag in (TypeTag.LIST, TypeTag.SET):
        size = _decode_size(reader, schema_type.size_length, *schema_type.items)
        return [
            decode_value(schema_type.items[0], reader, f"{path}[{i}]") for i in range(size)
        ]

    if tag == TypeTag.MAP:
        size = _decode_size(reader, schema_type.size_length, *schema_type.items)
        return [
            [
                decode_value(schema_type.items[0], reader, f"{path}[{i}].key"),
                decode_value(schema_type.items[1], reader, f"{path}[{i}].value"),
            ]
            for i in range(size)
        ]

    if tag == TypeTag.ARRAY:
        return [
            decode_value(schema_type.items[0], reader, f"{path}[{i}]")
            for i in range(schema_type.length)
        ]

    if tag == TypeTag.STRUCT:
        return _decode_fields(schema_type.fields or Fields(), reader, path)

    if tag in (TypeTag.ENUM, TypeTag.TAGGED_ENUM):
        return _decode_enum(schema_type, reader, path)

    if tag in (TypeTag.STRING, TypeTag.CONTRACT_NAME, TypeTag.RECEIVE_NAME):
        raw = reader.read(_decode_size(reader, schema_type.size_length))
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecodeError(f"{path}: invalid utf-8") from err

    if tag == TypeTag.ULEB128:
        return _decode_leb128(reader, schema_type.length, False, path)

    if tag == TypeTag.ILEB128:
        return _decode_leb128(reader, schema_type.length, True, path)

    if tag == TypeTag.BYTE_LIST:
        return reader.read(_decode_size(reader, schema_type.size_length)).hex()

    if tag == TypeTag.BYTE_ARRAY:
        return reader.read(schema_type.length).hex()

    raise DecodeError(f"{path}: unsupported type {tag.name}")


def decode_exact(schema_type: SchemaType, data: bytes) -> Any:
    """Decode a value that must consume all of ``data``."""
    reader = ByteReader(data)
    value = decode_value(schema_type, reader)
    reader.expect_end()
    return value


def _is_zero_width(schema_type: SchemaType) -> bool:
    """True when every value of the type encodes to no bytes at all."""
    tag = schema_type.tag
    if tag == TypeTag.UNIT:
        return True
    if tag == TypeTag.PAIR:
        return all(_is_zero_width(item) for item in schema_type.items)
    if tag == TypeTag.ARRAY:
        return schema_type.length == 0 or _is_zero_width(schema_type.items[0])
    if tag == TypeTag.BYTE_ARRAY:
        return schema_type.length == 0
    if tag == TypeTag.STRUCT:
        fields = schema_type.fields
        if fields is None or fields.kind == FieldsKind.NONE:
            return True
        if fields.kind == FieldsKind.UNNAMED:
            return all(_is_zero_width(item) for item in fields.unnamed)
        return all(_is_zero_width(item) for _, item in fields.named)
    return False


def _decode_size(reader: ByteReader, size_length: SizeLength, *items: SchemaType) -> int:
    size = reader.size(size_length)
    if items and all(_is_zero_width(item) for item in items):
        if size > MAX_ZERO_WIDTH_ITEMS:
            raise DecodeError(
                f"declared length {size} exceeds the limit of {MAX_ZERO_WIDTH_ITEMS} empty items"
            )
        return size
    if size > reader.remaining:
        raise DecodeError(f"declared length {size} exceeds remaining {reader.remaining} bytes")
    return size


def _decode_fields(fields: Fields, reader: ByteReader, path: str) -> Any:
    if fields.kind == FieldsKind.NONE:
        return None
    if fields.kind == FieldsKind.UNNAMED:
        return [
            decode_value(field_type, reader, f"{path}[{i}]")
            for i, field_type in enumerate(fields.unnamed)
        ]
    result: Dict[str, Any] = {}
    for name, field_type in fields.named:
        result[name] = decode_value(field_type, reader, f"{path}.{name}")
    return result


def _decode_enum(schema_type: SchemaType, reader: ByteReader, path: str) -> Dict[str, Any]:
    if schema_type.tag == TypeTag.TAGGED_ENUM:
        tag = reader.u8()
        variant = next((v for v in schema_type.variants if v.tag == tag), None)
        if variant is None:
            raise DecodeError(f"{path}: unknown variant tag {tag}")
    else:
        count = len(schema_type.variants)
        if count <= 0x100:
            index = reader.u8()
        elif count <= 0x10000:
            index = reader.u16()
        else:
            index = reader.u32()
        if index >= count:
            raise DecodeError(f"{path}: variant index {index} out of range")
        variant = schema_type.variants[index]
    return {variant.name: _decode_fields(variant.fields, reader, f"{path}.{variant.name}")}


def _decode_leb128(reader: ByteReader, max_bytes: int, signed: bool, path: str) -> int:
    result = 0
    shift = 0
    for _ in range(max_bytes):
        byte = reader.u8()
        result |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            if signed and byte & 0x40:
                result -= 1 << shift
            return result
    raise DecodeError(f"{path}: LEB128 value longer than {max_bytes} bytes")
