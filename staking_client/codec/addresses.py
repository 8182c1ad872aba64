"""
Address primitives for contract parameters.

Account addresses are 32 bytes rendered as base58check with version byte 1;
contract addresses are an (index, subindex) pair of u64 values.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

import base58

from ..exceptions import InvalidAddressError

ACCOUNT_ADDRESS_LENGTH = 32
ACCOUNT_ADDRESS_VERSION = b"\x01"
U64_MAX = (1 << 64) - 1

AccountLike = Union[str, bytes]


def account_address_to_bytes(address: AccountLike) -> bytes:
    """
    Convert a base58check account address (or raw bytes) to its 32 raw bytes.

    Raises:
        InvalidAddressError: If the checksum, version or length is wrong
    """
    if isinstance(address, (bytes, bytearray)):
        raw = bytes(address)
        if len(raw) != ACCOUNT_ADDRESS_LENGTH:
            raise InvalidAddressError(raw)
        return raw

    if not isinstance(address, str) or not address:
        raise InvalidAddressError(str(address))

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as err:
        raise InvalidAddressError(address) from err

    if (
        len(decoded) != ACCOUNT_ADDRESS_LENGTH + 1
        or decoded[:1] != ACCOUNT_ADDRESS_VERSION
    ):
        raise InvalidAddressError(address)

    return decoded[1:]


def account_address_from_bytes(raw: bytes) -> str:
    """Render 32 raw bytes as a base58check account address."""
    if len(raw) != ACCOUNT_ADDRESS_LENGTH:
        raise InvalidAddressError(raw)
    return base58.b58encode_check(ACCOUNT_ADDRESS_VERSION + raw).decode("ascii")


def is_account_address(address: Any) -> bool:
    """True if address parses as an account address."""
    try:
        account_address_to_bytes(address)
        return True
    except InvalidAddressError:
        return False


@dataclass(frozen=True)
class ContractAddress:
    """On-chain contract instance address."""

    index: int
    subindex: int = 0

    def __post_init__(self) -> None:
        for value in (self.index, self.subindex):
            if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= U64_MAX:
                raise InvalidAddressError(f"<{self.index},{self.subindex}>")

    @classmethod
    def from_value(cls, value: Any) -> "ContractAddress":
        """Accept a ContractAddress, a {"index", "subindex"} dict or a pair."""
        if isinstance(value, ContractAddress):
            return value
        if isinstance(value, dict):
            try:
                return cls(value["index"], value.get("subindex", 0))
            except KeyError as err:
                raise InvalidAddressError(str(value)) from err
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return cls(value[0], value[1])
        raise InvalidAddressError(str(value))

    def to_dict(self) -> Dict[str, int]:
        return {"index": self.index, "subindex": self.subindex}

    def __str__(self) -> str:
        return f"<{self.index},{self.subindex}>"
