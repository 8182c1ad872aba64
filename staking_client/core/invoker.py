"""
Read-only contract invocation.

Invocations are dry-runs on the node: no signature, no state change, safe to
repeat. The invoker never retries on its own.
"""

import logging
from typing import Any, Optional

from ..codec.addresses import ContractAddress
from ..codec.codec import Schema, SchemaCodec
from ..exceptions import (
    DecodeError,
    InvokeRevertError,
    NetworkError,
    StakingClientException,
    map_revert_reason,
)
from ..node.client import LedgerNodeClient
from .types import ContractRef, InvokeResult

DEFAULT_INVOKE_ENERGY = 30000


class ContractInvoker:
    """Runs read-only receive functions and maps rejections to revert reasons."""

    def __init__(
        self,
        node: LedgerNodeClient,
        codec: SchemaCodec,
        max_energy: int = DEFAULT_INVOKE_ENERGY,
    ):
        self.logger = logging.getLogger("ContractInvoker")
        self.node = node
        self.codec = codec
        self.max_energy = max_energy

    async def invoke(
        self,
        contract_address: ContractAddress,
        receive_name: str,
        parameter: Optional[bytes] = None,
        invoker: Optional[str] = None,
        energy: Optional[int] = None,
    ) -> InvokeResult:
        """
        Invoke a receive function without submitting a transaction.

        Args:
            contract_address: Contract instance to invoke
            receive_name: Full receive name, ``<contract>.<entrypoint>``
            parameter: Schema-encoded parameter bytes
            invoker: Account the call is made on behalf of
            energy: Energy allowance, defaults to the configured ceiling

        Returns:
            Raw return value and the energy used

        Raises:
            NetworkError: If the node is unreachable
            InvokeRevertError: If the contract rejected the call
            DecodeError: If a successful call carried no return value
        """
        try:
            outcome = await self.node.invoke_contract(
                contract_address,
                receive_name,
                parameter=parameter,
                invoker=invoker,
                energy=energy or self.max_energy,
            )
        except StakingClientException:
            raise
        except OSError as err:
            raise NetworkError(f"invoke of {receive_name} failed: {err}") from err

        if not outcome.success:
            reason = map_revert_reason(outcome.reject_code, outcome.reason)
            self.logger.debug(
                f"{receive_name} on {contract_address} reverted: "
                f"{reason.value} (code {outcome.reject_code})"
            )
            raise InvokeRevertError(reason, reject_code=outcome.reject_code, detail=outcome.reason)

        if outcome.return_value is None:
            raise DecodeError(f"{receive_name} succeeded without a return value")

        return InvokeResult(return_value=outcome.return_value, energy_used=outcome.used_energy)

    async def invoke_entrypoint(
        self,
        contract: ContractRef,
        entrypoint: str,
        schema: Schema,
        value: Any = None,
        invoker: Optional[str] = None,
    ) -> Any:
        """Encode ``value`` (if any), invoke, and decode the return value."""
        parameter = None
        if value is not None:
            parameter = self.codec.encode_parameter(schema, contract.name, entrypoint, value)

        result = await self.invoke(
            contract.address, contract.receive_name(entrypoint), parameter, invoker=invoker
        )
        return self.codec.decode_return_value(
            schema, contract.name, entrypoint, result.return_value
        )
