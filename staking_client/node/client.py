"""
Interfaces of the external collaborators: the ledger node and the wallet.

Both are consumed through typing protocols so the core never depends on a
particular node transport or wallet implementation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from ..codec.addresses import ContractAddress


class AccountTransactionType(str, Enum):
    """Account transaction kinds the client submits."""

    UPDATE = "Update"


@dataclass(frozen=True)
class UpdateContractPayload:
    """Payload of a contract update transaction."""

    address: ContractAddress
    receive_name: str
    max_contract_execution_energy: int
    amount: int = 0


@dataclass(frozen=True)
class InvokeOutcome:
    """Result of a read-only invocation as reported by the node."""

    success: bool
    return_value: Optional[bytes] = None
    used_energy: int = 0
    reject_code: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class FinalizationOutcome:
    """Inclusion result of a submitted transaction."""

    transaction_hash: str
    success: bool = False
    timed_out: bool = False
    block_hash: Optional[str] = None
    energy_cost: int = 0
    reject_code: Optional[int] = None
    reason: Optional[str] = None
    out_of_energy: bool = False


class LedgerNodeClient(Protocol):
    """Ledger node RPC surface used by the client."""

    async def invoke_contract(
        self,
        contract: ContractAddress,
        method: str,
        parameter: Optional[bytes] = None,
        invoker: Optional[str] = None,
        energy: int = 30000,
    ) -> InvokeOutcome: ...

    async def get_embedded_schema(self, module_ref: str) -> bytes: ...

    async def submit_transaction(self, payload: bytes) -> str: ...

    async def wait_for_finalization(
        self, transaction_hash: str, timeout: float
    ) -> FinalizationOutcome: ...


class WalletCapability(Protocol):
    """
    Signing authority.

    ``sign_and_send`` raises UserRejectedError when the user declines.
    """

    @property
    def account(self) -> Optional[str]: ...

    async def sign_and_send(
        self,
        account: str,
        transaction_type: AccountTransactionType,
        payload: UpdateContractPayload,
        parameter: bytes,
    ) -> str: ...
