"""
Staking contract operations.

Builds the transaction steps for each user-level operation and runs them
through the orchestrator. Tokens enter the staking contract through a CIS-2
``transfer`` on the token contract whose receive hook is a staking
entrypoint.
"""

import logging
from typing import Any, Optional

from ..codec import cis2
from ..codec.addresses import ContractAddress
from ..codec.codec import Schema, SchemaCodec
from ..config import Config
from .orchestrator import TransactionOrchestrator
from .types import ContractRef, TransactionStep
from .validation import normalize_amount

# Staking entrypoints
STAKE = "stake"
UNSTAKE = "unstake"
COMPLETE_UNSTAKE = "completeUnstake"
CLAIM_REWARDS = "claimRewards"
FUND_REWARDS = "fundRewards"
ON_RECEIVING_CIS2 = cis2.DEFAULT_RECEIVE_HOOK

# Read-only entrypoints
GET_STAKE_INFO = "getStakeInfo"
VIEW = "view"
GET_EARNED_REWARDS = "getEarnedRewards"


def staking_contract_ref(config: Config) -> ContractRef:
    """The configured staking contract instance."""
    return ContractRef(
        address=ContractAddress(config.contract_index, config.contract_subindex),
        name=config.contract_name,
        module_ref=config.module_ref,
    )


class StakingContract:
    """User-level staking operations against one deployed staking contract."""

    def __init__(
        self,
        orchestrator: TransactionOrchestrator,
        codec: SchemaCodec,
        config: Optional[Config] = None,
    ):
        self.logger = logging.getLogger("StakingContract")
        self.config = config or Config()
        self.orchestrator = orchestrator
        self.codec = codec

        self.staking = staking_contract_ref(self.config)
        self.token = ContractRef(
            address=ContractAddress(self.config.token_contract_index, 0),
            name=self.config.token_contract_name,
            module_ref="",
        )
        self._token_schema = Schema.from_module(
            f"cis2:{self.token.name}", cis2.token_module_schema(self.token.name)
        )

    async def stake(self, account: str, amount: int) -> str:
        """Move ``amount`` tokens into the staking contract's ``stake`` hook."""
        amount = normalize_amount(amount)
        self.logger.info(f"Staking {amount} for {account[:8]}")
        return await self.orchestrator.execute([self._transfer_step(account, amount, STAKE)], account)

    async def fund_rewards(self, account: str, amount: int) -> str:
        """
        Fund the rewards pool (admin only).

        Two steps: the token transfer into the contract, then ``fundRewards``.
        If the second step fails the transfer stays finalized and
        PartialFailureError names step 1.
        """
        amount = normalize_amount(amount)
        schema = await self.codec.fetch_schema(self.staking.module_ref)
        steps = [
            self._transfer_step(account, amount, ON_RECEIVING_CIS2),
            self._staking_step(schema, FUND_REWARDS, amount),
        ]
        self.logger.info(f"Funding rewards pool with {amount} from {account[:8]}")
        return await self.orchestrator.execute(steps, account)

    async def initiate_unstake(self, account: str, amount: int) -> str:
        """Move ``amount`` from the active stake into the unbonding queue."""
        amount = normalize_amount(amount)
        schema = await self.codec.fetch_schema(self.staking.module_ref)
        step = self._staking_step(schema, UNSTAKE, {"amount": amount})
        return await self.orchestrator.execute([step], account)

    async def complete_unstake(self, account: str) -> str:
        """Withdraw every unbonding entry whose unlock time has passed."""
        return await self.orchestrator.execute([self._staking_step(None, COMPLETE_UNSTAKE)], account)

    async def claim_rewards(self, account: str) -> str:
        return await self.orchestrator.execute([self._staking_step(None, CLAIM_REWARDS)], account)

    def _transfer_step(self, account: str, amount: int, hook: str) -> TransactionStep:
        value = cis2.transfer_to_contract(account, self.staking.address, amount, hook=hook)
        return TransactionStep(
            target=self.token.address,
            contract_name=self.token.name,
            entrypoint=cis2.TRANSFER_ENTRYPOINT,
            parameter=self.codec.encode_parameter(
                self._token_schema, self.token.name, cis2.TRANSFER_ENTRYPOINT, value
            ),
        )

    def _staking_step(
        self, schema: Optional[Schema], entrypoint: str, value: Any = None
    ) -> TransactionStep:
        parameter = b""
        if schema is not None:
            parameter = self.codec.encode_parameter(schema, self.staking.name, entrypoint, value)
        return TransactionStep(
            target=self.staking.address,
            contract_name=self.staking.name,
            entrypoint=entrypoint,
            parameter=parameter,
        )
