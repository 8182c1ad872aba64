"""
Contract schema codec.

Parses versioned module schemas and encodes/decodes parameters and return
values against them.
"""

from .addresses import (
    ContractAddress,
    account_address_from_bytes,
    account_address_to_bytes,
    is_account_address,
)
from .codec import Schema, SchemaCodec, SchemaSource
from .schema import (
    ContractSchema,
    FunctionSchema,
    ModuleSchema,
    SchemaType,
    SchemaVersion,
    SizeLength,
    TypeTag,
    parse_module_schema,
    serialize_module_schema,
)
from .values import decode_exact, decode_value, encode_value
from . import cis2

__all__ = [
    "ContractAddress",
    "account_address_from_bytes",
    "account_address_to_bytes",
    "is_account_address",
    "Schema",
    "SchemaCodec",
    "SchemaSource",
    "ContractSchema",
    "FunctionSchema",
    "ModuleSchema",
    "SchemaType",
    "SchemaVersion",
    "SizeLength",
    "TypeTag",
    "parse_module_schema",
    "serialize_module_schema",
    "decode_exact",
    "decode_value",
    "encode_value",
    "cis2",
]
