"""
Schema codec: fetches and caches versioned module schemas and uses them to
encode contract parameters and decode return values.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

from ..exceptions import (
    DecodeError,
    NetworkError,
    SchemaMismatchError,
    StakingClientException,
)
from .schema import (
    FunctionSchema,
    ModuleSchema,
    parse_module_schema,
    read_schema_version,
    serialize_module_schema,
)
from .values import decode_exact, encode_value


class SchemaSource(Protocol):
    """Anything able to return the embedded schema of a module."""

    async def get_embedded_schema(self, module_ref: str) -> bytes: ...


@dataclass(frozen=True)
class Schema:
    """A fetched module schema; immutable once cached."""

    module_ref: str
    version: int
    raw: bytes = field(repr=False)
    fetched_at: float = 0.0

    @classmethod
    def from_module(cls, module_ref: str, module: ModuleSchema) -> "Schema":
        """Wrap a locally described module schema."""
        return cls(
            module_ref=module_ref,
            version=module.version,
            raw=serialize_module_schema(module),
            fetched_at=time.time(),
        )


class SchemaCodec:
    """
    Versioned schema cache plus parameter/return value codec.

    Schemas are cached per (module reference, version). The expected version
    is configured explicitly and matched exactly; a module whose schema carries
    any other version is refused rather than parsed best-effort.
    """

    def __init__(self, source: SchemaSource, schema_version: int = 1):
        self.logger = logging.getLogger("SchemaCodec")
        self.source = source
        self.schema_version = schema_version

        self._cache: Dict[Tuple[str, int], Schema] = {}
        self._modules: Dict[bytes, ModuleSchema] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def fetch_schema(self, module_ref: str) -> Schema:
        """
        Fetch the embedded schema of a module, served from cache when present.

        Raises:
            NetworkError: If the node is unreachable
            SchemaMismatchError: If the schema version is not the expected one
            DecodeError: If the schema bytes are malformed
        """
        key = (module_ref, self.schema_version)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(module_ref, asyncio.Lock())
        async with lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            try:
                raw = await self.source.get_embedded_schema(module_ref)
            except StakingClientException:
                raise
            except (OSError, ConnectionError) as err:
                raise NetworkError(f"failed to fetch schema for {module_ref}: {err}") from err

            version = read_schema_version(raw)
            if version != self.schema_version:
                raise SchemaMismatchError(
                    f"module {module_ref} carries schema version {version}, "
                    f"expected {self.schema_version}"
                )

            schema = Schema(module_ref=module_ref, version=version, raw=raw, fetched_at=time.time())
            self._modules[raw] = parse_module_schema(raw)
            self._cache[key] = schema
            self.logger.info(f"Cached schema for module {module_ref[:12]} (V{version})")
            return schema

    def invalidate(self, module_ref: Optional[str] = None) -> None:
        """Drop cached schemas for one module, or all of them."""
        if module_ref is None:
            self._cache.clear()
            self._modules.clear()
            self.logger.info("Schema cache cleared")
            return

        for key in [key for key in self._cache if key[0] == module_ref]:
            schema = self._cache.pop(key)
            self._modules.pop(schema.raw, None)
        self.logger.info(f"Schema cache invalidated for module {module_ref[:12]}")

    def cached(self, module_ref: str) -> Optional[Schema]:
        return self._cache.get((module_ref, self.schema_version))

    def encode_parameter(
        self, schema: Schema, contract_name: str, entrypoint: str, value: Any
    ) -> bytes:
        """
        Encode an entrypoint parameter.

        Raises:
            SchemaMismatchError: If the entrypoint is absent, takes no parameter,
                or the value's shape does not match
        """
        function = self._function(schema, contract_name, entrypoint)
        if function.parameter is None:
            raise SchemaMismatchError(
                f"{contract_name}.{entrypoint} declares no parameter type"
            )
        return encode_value(function.parameter, value)

    def decode_return_value(
        self,
        schema: Schema,
        contract_name: str,
        entrypoint: str,
        data: bytes,
        version: Optional[int] = None,
    ) -> Any:
        """
        Decode an entrypoint return value.

        Raises:
            DecodeError: On malformed bytes or a schema version mismatch
            SchemaMismatchError: If the entrypoint is absent from the schema
        """
        expected = self.schema_version if version is None else version
        if schema.version != expected:
            raise DecodeError(
                f"schema version {schema.version} does not match expected version {expected}"
            )

        function = self._function(schema, contract_name, entrypoint)
        if function.return_value is None:
            raise SchemaMismatchError(
                f"{contract_name}.{entrypoint} declares no return value type"
            )
        return decode_exact(function.return_value, data)

    def _module(self, schema: Schema) -> ModuleSchema:
        module = self._modules.get(schema.raw)
        if module is None:
            module = parse_module_schema(schema.raw)
            self._modules[schema.raw] = module
        if module.version != schema.version:
            raise DecodeError(
                f"schema record says V{schema.version} but bytes carry V{module.version}"
            )
        return module

    def _function(self, schema: Schema, contract_name: str, entrypoint: str) -> FunctionSchema:
        contract = self._module(schema).contracts.get(contract_name)
        if contract is None:
            raise SchemaMismatchError(
                f"contract {contract_name!r} not found in schema of {schema.module_ref}"
            )
        function = contract.receive.get(entrypoint)
        if function is None:
            raise SchemaMismatchError(
                f"entrypoint {contract_name}.{entrypoint} not found in schema"
            )
        return function
