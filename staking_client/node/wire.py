"""
Wire frames for the node gateway protocol.

Each frame is a 4-byte big-endian length prefix followed by a JSON document.
Requests are ``{"id", "method", "params"}``, responses ``{"id", "result",
"error"}``; binary values travel hex-encoded.
"""

import struct
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from .client import FinalizationOutcome, InvokeOutcome
from .exceptions import MarshalError, UnmarshalError

LENGTH_PREFIX = struct.Struct(">I")
MAX_FRAME_SIZE = 16 * 1024 * 1024

ModelT = TypeVar("ModelT", bound=BaseModel)


class RpcRequest(BaseModel):
    id: int
    method: str
    params: Dict[str, Any] = Field(default_factory=dict)


class RpcError(BaseModel):
    code: int = 1
    msg: str = ""


class RpcResponse(BaseModel):
    id: int
    result: Optional[Dict[str, Any]] = None
    error: Optional[RpcError] = None


class InvokeContractResult(BaseModel):
    """``invokeContract`` result body."""

    success: bool
    return_value: Optional[str] = Field(default=None, alias="returnValue")
    used_energy: int = Field(default=0, alias="usedEnergy")
    reject_code: Optional[int] = Field(default=None, alias="rejectCode")
    reason: Optional[str] = None

    def to_outcome(self) -> InvokeOutcome:
        return InvokeOutcome(
            success=self.success,
            return_value=bytes.fromhex(self.return_value) if self.return_value is not None else None,
            used_energy=self.used_energy,
            reject_code=self.reject_code,
            reason=self.reason,
        )


class FinalizationResult(BaseModel):
    """``waitForFinalization`` result body."""

    status: str
    block_hash: Optional[str] = Field(default=None, alias="blockHash")
    energy_cost: int = Field(default=0, alias="energyCost")
    reject_code: Optional[int] = Field(default=None, alias="rejectCode")
    reason: Optional[str] = None

    def to_outcome(self, transaction_hash: str) -> FinalizationOutcome:
        return FinalizationOutcome(
            transaction_hash=transaction_hash,
            success=self.status == "success",
            timed_out=self.status == "timeout",
            block_hash=self.block_hash,
            energy_cost=self.energy_cost,
            reject_code=self.reject_code,
            reason=self.reason,
            out_of_energy=self.status == "outOfEnergy",
        )


def marshal(message: BaseModel) -> bytes:
    """
    Marshal a frame model to JSON bytes.

    Raises:
        MarshalError: If serialization fails
    """
    try:
        return message.model_dump_json(by_alias=True).encode("utf-8")
    except (TypeError, ValueError) as err:
        raise MarshalError(err) from err


def unmarshal(model: Type[ModelT], data: bytes) -> ModelT:
    """
    Unmarshal JSON bytes into a frame model.

    Raises:
        UnmarshalError: If the bytes are not a valid frame
    """
    try:
        return model.model_validate_json(data)
    except ValidationError as err:
        raise UnmarshalError(err) from err


def join_len_prefix(data: bytes) -> bytes:
    """Prefix a frame with its 4-byte big-endian length."""
    if len(data) > MAX_FRAME_SIZE:
        raise MarshalError(f"frame too large: {len(data)} bytes")
    return LENGTH_PREFIX.pack(len(data)) + data
