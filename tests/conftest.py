"""
Shared fixtures: an in-memory ledger running a simplified staking contract.

The fake ledger speaks the real binary formats: it serves a serialized module
schema, decodes parameters and encodes return values with the codec, so the
client stack is exercised end to end without a node.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import pytest

from staking_client.codec import cis2
from staking_client.codec.addresses import ContractAddress, account_address_from_bytes
from staking_client.codec.codec import SchemaCodec
from staking_client.codec.schema import (
    ContractSchema,
    FunctionSchema,
    ModuleSchema,
    SizeLength,
    TypeTag,
    list_of,
    plain,
    serialize_module_schema,
    struct_type,
    uleb128,
)
from staking_client.codec.values import decode_exact, encode_value
from staking_client.config import Config
from staking_client.core.contract import StakingContract, staking_contract_ref
from staking_client.core.invoker import ContractInvoker
from staking_client.core.orchestrator import TransactionOrchestrator
from staking_client.core.store import StakeStateStore
from staking_client.exceptions import UserRejectedError
from staking_client.node.client import (
    AccountTransactionType,
    FinalizationOutcome,
    InvokeOutcome,
    UpdateContractPayload,
)

DAY = 86400
START_TIME = 1_700_000_000

ALICE = account_address_from_bytes(bytes([1]) * 32)
BOB = account_address_from_bytes(bytes([2]) * 32)
ADMIN = account_address_from_bytes(bytes([9]) * 32)

# Error enum reject codes of the staking contract
NO_STAKE_FOUND = -4
ONLY_ADMIN = -6
CONTRACT_PAUSED = -15
INVALID_UNSTAKE_AMOUNT = -25
UNBONDING_PERIOD_NOT_MET = -26
ALREADY_SLASHED = -27
NO_REWARDS_AVAILABLE = -29

UNBONDING_INFO = struct_type(("amount", uleb128(37)), ("unlock_time", plain(TypeTag.U64)))

STAKE_INFO = struct_type(
    ("amount", plain(TypeTag.U64)),
    ("timestamp", plain(TypeTag.U64)),
    ("unbonding", list_of(UNBONDING_INFO, SizeLength.U32)),
    ("slashed", plain(TypeTag.BOOL)),
    ("pending_rewards", plain(TypeTag.U64)),
)

VIEW_RESULT = struct_type(
    ("paused", plain(TypeTag.BOOL)),
    ("admin", plain(TypeTag.ACCOUNT_ADDRESS)),
    ("total_staked", plain(TypeTag.U64)),
    ("apr", plain(TypeTag.U64)),
    ("token_address", plain(TypeTag.CONTRACT_ADDRESS)),
    ("total_participants", plain(TypeTag.U64)),
    ("total_rewards_paid", plain(TypeTag.U64)),
    ("rewards_pool", plain(TypeTag.U64)),
)

UNSTAKE_PARAMS = struct_type(("amount", uleb128(37)))


def staking_module_schema(contract_name: str = "concordium_staking", version: int = 1) -> ModuleSchema:
    """Schema of the staking contract's entrypoints used by the client."""
    account = plain(TypeTag.ACCOUNT_ADDRESS)
    return ModuleSchema(
        version=version,
        contracts={
            contract_name: ContractSchema(
                receive={
                    "getStakeInfo": FunctionSchema(parameter=account, return_value=STAKE_INFO),
                    "view": FunctionSchema(return_value=VIEW_RESULT),
                    "getEarnedRewards": FunctionSchema(
                        parameter=account, return_value=plain(TypeTag.U64)
                    ),
                    "unstake": FunctionSchema(parameter=UNSTAKE_PARAMS),
                    "fundRewards": FunctionSchema(parameter=uleb128(37)),
                }
            )
        },
    )


class FakeLedger:
    """
    In-memory ledger node hosting a staking contract and its token contract.

    Implements the LedgerNodeClient protocol. Transactions are applied when
    sent (see FakeWallet); their outcomes are served by wait_for_finalization.
    """

    def __init__(self, config: Config):
        self.config = config
        self.now = START_TIME
        self.staking = staking_contract_ref(config)
        self.token_address = ContractAddress(config.token_contract_index, 0)
        self.schema_bytes = serialize_module_schema(staking_module_schema(config.contract_name))

        self.stakes: Dict[str, Dict[str, Any]] = {}
        self.paused = False
        self.admin = ADMIN
        self.apr = 50_000
        self.total_rewards_paid = 0
        self.rewards_pool = 0
        self.received_tokens = 0

        self.outcomes: Dict[str, FinalizationOutcome] = {}
        self.calls: List[str] = []
        self.schema_fetches = 0
        self.unreachable = False
        self.corrupt_reads: Dict[str, bytes] = {}
        self.time_out: set = set()
        self.fail_entrypoints: Dict[str, int] = {}
        self.holds: Dict[str, List[asyncio.Event]] = {}
        self._hashes = itertools.count(1)

    def hold(self, entrypoint: str) -> asyncio.Event:
        """Keep the next read of ``entrypoint`` from returning until the event is set."""
        gate = asyncio.Event()
        self.holds.setdefault(entrypoint, []).append(gate)
        return gate

    # LedgerNodeClient

    async def get_embedded_schema(self, module_ref: str) -> bytes:
        await asyncio.sleep(0)
        self._check_reachable()
        self.schema_fetches += 1
        return self.schema_bytes

    async def invoke_contract(
        self,
        contract: ContractAddress,
        method: str,
        parameter: Optional[bytes] = None,
        invoker: Optional[str] = None,
        energy: int = 30000,
    ) -> InvokeOutcome:
        await asyncio.sleep(0)
        self._check_reachable()
        self.calls.append(method)
        entrypoint = method.split(".", 1)[1]

        # State is read before waiting, so a held read returns what it saw on entry
        outcome = self._read(entrypoint, parameter)
        gates = self.holds.get(entrypoint)
        if gates:
            await gates.pop(0).wait()
        return outcome

    def _read(self, entrypoint: str, parameter: Optional[bytes]) -> InvokeOutcome:
        if entrypoint in self.corrupt_reads:
            return InvokeOutcome(success=True, return_value=self.corrupt_reads[entrypoint])

        if entrypoint == "view":
            value = {
                "paused": self.paused,
                "admin": self.admin,
                "total_staked": sum(stake["amount"] for stake in self.stakes.values()),
                "apr": self.apr,
                "token_address": self.token_address.to_dict(),
                "total_participants": len(self.stakes),
                "total_rewards_paid": self.total_rewards_paid,
                "rewards_pool": self.rewards_pool,
            }
            return InvokeOutcome(success=True, return_value=encode_value(VIEW_RESULT, value))

        account = decode_exact(plain(TypeTag.ACCOUNT_ADDRESS), parameter or b"")
        stake = self.stakes.get(account)

        if entrypoint == "getStakeInfo":
            value = stake or {
                "amount": 0,
                "timestamp": 0,
                "unbonding": [],
                "slashed": False,
                "pending_rewards": 0,
            }
            return InvokeOutcome(success=True, return_value=encode_value(STAKE_INFO, value))

        if entrypoint == "getEarnedRewards":
            earned = 0 if stake is None or stake["slashed"] else stake["pending_rewards"]
            return InvokeOutcome(success=True, return_value=encode_value(plain(TypeTag.U64), earned))

        return InvokeOutcome(success=False, reject_code=-1, reason="unknown entrypoint")

    async def submit_transaction(self, payload: bytes) -> str:
        raise NotImplementedError("transactions are sent through FakeWallet")

    async def wait_for_finalization(self, transaction_hash: str, timeout: float) -> FinalizationOutcome:
        await asyncio.sleep(0)
        self._check_reachable()
        if transaction_hash in self.time_out:
            return FinalizationOutcome(transaction_hash=transaction_hash, timed_out=True)
        return self.outcomes[transaction_hash]

    # Contract execution

    def apply(self, sender: str, payload: UpdateContractPayload, parameter: bytes) -> str:
        """Execute a contract update and record its outcome."""
        transaction_hash = f"{next(self._hashes):064x}"
        contract_name, entrypoint = payload.receive_name.split(".", 1)

        reject_code = self.fail_entrypoints.pop(entrypoint, None)
        if reject_code is None:
            reject_code = self._execute(sender, payload.address, entrypoint, parameter)

        if reject_code is None:
            outcome = FinalizationOutcome(transaction_hash, success=True, block_hash="ab" * 32)
        else:
            outcome = FinalizationOutcome(transaction_hash, success=False, reject_code=reject_code)
        self.outcomes[transaction_hash] = outcome
        return transaction_hash

    def _execute(
        self, sender: str, address: ContractAddress, entrypoint: str, parameter: bytes
    ) -> Optional[int]:
        if address == self.token_address and entrypoint == cis2.TRANSFER_ENTRYPOINT:
            (transfer,) = decode_exact(cis2.TRANSFER_PARAMETER_TYPE, parameter)
            contract, hook = transfer["to"]["Contract"]
            if hook == "stake":
                return self._stake(sender, transfer["amount"])
            self.received_tokens += transfer["amount"]
            return None

        if self.paused:
            return CONTRACT_PAUSED

        stake = self.stakes.get(sender)
        if entrypoint == "unstake":
            amount = decode_exact(UNSTAKE_PARAMS, parameter)["amount"]
            if stake is None:
                return NO_STAKE_FOUND
            if stake["slashed"]:
                return ALREADY_SLASHED
            if stake["amount"] < amount:
                return INVALID_UNSTAKE_AMOUNT
            stake["amount"] -= amount
            stake["unbonding"].append({"amount": amount, "unlock_time": self.now + DAY})
            return None

        if entrypoint == "completeUnstake":
            if stake is None:
                return NO_STAKE_FOUND
            eligible = [e for e in stake["unbonding"] if self.now >= e["unlock_time"]]
            if not eligible:
                return UNBONDING_PERIOD_NOT_MET
            stake["unbonding"] = [e for e in stake["unbonding"] if self.now < e["unlock_time"]]
            return None

        if entrypoint == "claimRewards":
            if stake is None:
                return NO_STAKE_FOUND
            if stake["pending_rewards"] == 0:
                return NO_REWARDS_AVAILABLE
            self.total_rewards_paid += stake["pending_rewards"]
            stake["pending_rewards"] = 0
            return None

        if entrypoint == "fundRewards":
            if sender != self.admin:
                return ONLY_ADMIN
            self.rewards_pool += decode_exact(uleb128(37), parameter)
            return None

        return -1

    def _stake(self, sender: str, amount: int) -> Optional[int]:
        if self.paused:
            return CONTRACT_PAUSED
        stake = self.stakes.setdefault(
            sender,
            {"amount": 0, "timestamp": self.now, "unbonding": [], "slashed": False, "pending_rewards": 0},
        )
        stake["amount"] += amount
        stake["timestamp"] = self.now
        return None

    def _check_reachable(self) -> None:
        if self.unreachable:
            raise ConnectionRefusedError("node unreachable")


class FakeWallet:
    """Wallet capability signing for one account on the fake ledger."""

    def __init__(self, ledger: FakeLedger, account: Optional[str] = ALICE):
        self.ledger = ledger
        self._account = account
        self.decline = False
        self.sent: List[UpdateContractPayload] = []

    @property
    def account(self) -> Optional[str]:
        return self._account

    async def sign_and_send(
        self,
        account: str,
        transaction_type: AccountTransactionType,
        payload: UpdateContractPayload,
        parameter: bytes,
    ) -> str:
        await asyncio.sleep(0)
        if self.decline:
            raise UserRejectedError()
        self.sent.append(payload)
        return self.ledger.apply(account, payload, parameter)


@pytest.fixture
def config():
    return Config(refresh_grace_delay=0.01, step_retention_delay=0.05, finalization_timeout=1.0)


@pytest.fixture
def ledger(config):
    return FakeLedger(config)


@pytest.fixture
def wallet(ledger):
    return FakeWallet(ledger)


@pytest.fixture
def codec(ledger, config):
    return SchemaCodec(ledger, config.schema_version)


@pytest.fixture
def invoker(ledger, codec, config):
    return ContractInvoker(ledger, codec, config.max_contract_execution_energy)


@pytest.fixture
def orchestrator(ledger, wallet, config):
    return TransactionOrchestrator(ledger, wallet, config)


@pytest.fixture
def store(invoker, codec, config):
    return StakeStateStore(invoker, codec, config)


@pytest.fixture
def staking(orchestrator, codec, config):
    return StakingContract(orchestrator, codec, config)


@pytest.fixture
def contract(config):
    return staking_contract_ref(config)
